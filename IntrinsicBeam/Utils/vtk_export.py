"""
VTK export utilities for IntrinsicBeam results.

This module writes beam assemblies and their states to the legacy ASCII VTK
format for visualization in ParaView, VisIt, or other VTK-compatible software.
"""

import os

import numpy as np

VTK_LINE = 3


class VTKExporter:
    """
    Export beam assemblies and AssemblyState results to VTK format.

    Supports:
    - Line cells for beam elements
    - Point data: displacement, rotation parameters, point forces and moments
    - Cell data: internal forces, moments, strains and curvatures (local frame)
    """

    def __init__(self, assembly):
        """
        Initialize VTK exporter.

        Parameters
        ----------
        assembly : Assembly
            Assembly whose connectivity is written.
        """
        self.assembly = assembly

    @staticmethod
    def _write_vectors(f, name, values):
        f.write(f"VECTORS {name} float\n")
        for v in values:
            f.write(f"{v[0]:.6e} {v[1]:.6e} {v[2]:.6e}\n")

    def export_to_vtk(self, file_path, state=None, deformation_scale: float = 1.0):
        """
        Export the assembly to VTK legacy format (.vtk file).

        Parameters
        ----------
        file_path : str
            Output file path (.vtk extension added if missing)
        state : AssemblyState, optional
            Results written as point and cell data. Geometry is undeformed if None.
        deformation_scale : float
            Scale factor for deformed geometry (default: 1.0 = actual displacements)

        Returns
        -------
        str
            Path to created file
        """
        file_path = str(file_path)
        if not file_path.endswith('.vtk'):
            file_path += '.vtk'

        points = np.asarray(self.assembly.points, dtype=float)
        if state is not None:
            points = points + deformation_scale * state.point_field("u")
        nelem = self.assembly.nb_elements

        with open(file_path, 'w') as f:
            f.write("# vtk DataFile Version 3.0\n")
            title = "IntrinsicBeam Analysis Results"
            if state is not None:
                title += f" t={state.t:g}"
            f.write(title + "\n")
            f.write("ASCII\n")
            f.write("DATASET UNSTRUCTURED_GRID\n\n")

            f.write(f"POINTS {len(points)} float\n")
            for x, y, z in points:
                f.write(f"{x:.6e} {y:.6e} {z:.6e}\n")

            f.write(f"\nCELLS {nelem} {3 * nelem}\n")
            for p1, p2 in zip(self.assembly.start, self.assembly.stop):
                f.write(f"2 {p1} {p2}\n")

            f.write(f"\nCELL_TYPES {nelem}\n")
            for _ in range(nelem):
                f.write(f"{VTK_LINE}\n")

            if state is None:
                return file_path

            f.write(f"\nPOINT_DATA {len(points)}\n")
            for name, field in (("displacement", "u"), ("rotation", "theta"),
                                ("force", "F"), ("moment", "M"),
                                ("velocity", "V"), ("angular_velocity", "Omega")):
                self._write_vectors(f, name, state.point_field(field))

            u = state.point_field("u")
            f.write("\nSCALARS displacement_magnitude float 1\n")
            f.write("LOOKUP_TABLE default\n")
            for mag in np.linalg.norm(u, axis=1):
                f.write(f"{mag:.6e}\n")

            f.write(f"\nCELL_DATA {nelem}\n")
            for name, field in (("internal_force", "F"), ("internal_moment", "M"),
                                ("strain", "gamma"), ("curvature", "kappa")):
                self._write_vectors(f, name, state.element_field(field))

        return file_path

    def export_history(self, prefix, history, deformation_scale: float = 1.0):
        """
        Write one file per state of a time history (prefix_0000.vtk, ...).

        Returns
        -------
        list of str
        """
        directory = os.path.dirname(str(prefix))
        if directory:
            os.makedirs(directory, exist_ok=True)
        return [self.export_to_vtk(f"{prefix}_{i:04d}.vtk", state, deformation_scale)
                for i, state in enumerate(history)]


def export_vtk(assembly, file_path, state=None, deformation_scale: float = 1.0):
    """
    Convenience function to export an assembly and its state to VTK format.

    Examples
    --------
    >>> export_vtk(assembly, 'results.vtk', state)
    """
    return VTKExporter(assembly).export_to_vtk(file_path, state, deformation_scale)
