"""
IntrinsicBeam Structures

The numerical system of an assembly and the results extracted from it.
"""

from IntrinsicBeam.Structures.State import AssemblyState, ElementState, PointState, extract_state
from IntrinsicBeam.Structures.System import System, allocate_system, default_force_scaling

__all__ = [
    'System',
    'allocate_system',
    'default_force_scaling',
    'AssemblyState',
    'PointState',
    'ElementState',
    'extract_state',
]
