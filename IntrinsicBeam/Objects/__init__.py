"""
IntrinsicBeam Objects

Model definition: geometry, sections, boundary conditions and loads.

Modules
-------
Assembly : Points, beam elements and connectivity
    - Assembly: Immutable point/element graph with section data
    - Element: Beam element (length, midpoint, frame, compliance, mass)
    - build_assembly: Build from (start, stop) pairs
    - AssemblyError: Validation error

Conditions : Boundary conditions and loads
    - PrescribedConditions: Per point displacements or (follower) loads
    - DistributedLoads: Per element loads per unit length

Rotations : Wiener-Milenkovic rotation parameters

Section : Homogeneous cross-section properties
"""

from IntrinsicBeam.Objects.Assembly import Assembly, AssemblyError, Element, build_assembly
from IntrinsicBeam.Objects.Conditions import DistributedLoads, PrescribedConditions
from IntrinsicBeam.Objects.Section import SectionBeam

__all__ = [
    'Assembly',
    'AssemblyError',
    'Element',
    'build_assembly',
    'PrescribedConditions',
    'DistributedLoads',
    'SectionBeam',
]
