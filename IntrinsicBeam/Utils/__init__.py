from IntrinsicBeam.Utils.discretize import discretize_beam
from IntrinsicBeam.Utils.vtk_export import VTKExporter, export_vtk

__all__ = ['discretize_beam', 'VTKExporter', 'export_vtk']
