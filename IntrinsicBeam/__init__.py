"""
IntrinsicBeam - Geometrically Exact Beam Assemblies

A Python framework for the static, transient and modal analysis of assemblies
of slender elastic beams under arbitrarily large displacements and rotations:
- Intrinsic (mixed) beam elements: displacements, rotations, forces and moments
  are all unknowns, rotations carried by Wiener-Milenkovic parameters
- Newton-Raphson equilibrium with exact (complex-step) sparse Jacobians
- Implicit time marching and linearized eigen-analysis about a steady state

Main Components
---------------
Objects : Model definition
    - Assembly: Points, beam elements and connectivity
    - PrescribedConditions: Point boundary conditions and loads
    - DistributedLoads: Element loads per unit length
    - SectionBeam: Compliance and mass of a homogeneous section

Structures : Numerical state
    - System: Unknowns, residual, sparse Jacobian, warm start
    - AssemblyState: Extracted point and element results

Solvers : Analysis algorithms
    - StaticLinear / StaticNonLinear: Static equilibrium (force control)
    - Dynamic: Implicit time marching (trapezoidal, backward Euler)
    - Modal: Eigenvalues with right and left eigenvectors
    - Plotter: Matplotlib plots of assemblies and histories

Utils : Helpers
    - discretize_beam: Straight or curved beam discretization
    - VTKExporter: Legacy VTK export

Quick Start
-----------
>>> import numpy as np
>>> from IntrinsicBeam import build_assembly, PrescribedConditions, solve_static
>>> from IntrinsicBeam import extract_state
>>>
>>> points = np.column_stack((np.linspace(0, 1, 11), np.zeros(11), np.zeros(11)))
>>> endpoints = [(i, i + 1) for i in range(10)]
>>> assembly = build_assembly(points, endpoints, np.diag([1e-6, 0, 0, 1e-2, 1e-2, 1e-2]))
>>>
>>> conditions = {
...     0: PrescribedConditions(ux=0, uy=0, uz=0, theta_x=0, theta_y=0, theta_z=0),
...     10: PrescribedConditions(Fz=1.0),
... }
>>> system, converged = solve_static(assembly, conditions)
>>> state = extract_state(system, assembly)
>>> state.points[10].u

Version: 1.0
Author: IntrinsicBeam Development Team
"""

# Version information
__version__ = '1.0.0'
__author__ = 'IntrinsicBeam Development Team'

from IntrinsicBeam import Objects

# Model definition
from IntrinsicBeam.Objects import (
    Assembly,
    AssemblyError,
    DistributedLoads,
    Element,
    PrescribedConditions,
    SectionBeam,
    build_assembly,
)

# Numerical state
from IntrinsicBeam.Structures import (
    AssemblyState,
    ElementState,
    PointState,
    System,
    allocate_system,
    extract_state,
)

# Solvers
from IntrinsicBeam.Solvers import (
    Dynamic,
    Modal,
    Plotter,
    SingularSystemError,
    Solver,
    SolverConstants,
    StaticLinear,
    StaticNonLinear,
    advance_time_step,
    derive_left_eigenvectors,
    solve_eigen,
    solve_static,
    solve_time_domain,
)

# Helpers
from IntrinsicBeam.Utils import VTKExporter, discretize_beam, export_vtk

# Define public API
__all__ = [
    # Version info
    '__version__',
    '__author__',

    # Model definition
    'Assembly',
    'AssemblyError',
    'Element',
    'build_assembly',
    'PrescribedConditions',
    'DistributedLoads',
    'SectionBeam',

    # Numerical state
    'System',
    'allocate_system',
    'AssemblyState',
    'PointState',
    'ElementState',
    'extract_state',

    # Analyses (primary API)
    'solve_static',
    'solve_time_domain',
    'advance_time_step',
    'solve_eigen',
    'derive_left_eigenvectors',

    # Solver classes
    'StaticLinear',
    'StaticNonLinear',
    'Dynamic',
    'Modal',
    'Solver',
    'SolverConstants',
    'Plotter',

    # Exceptions
    'SingularSystemError',

    # Helpers
    'discretize_beam',
    'VTKExporter',
    'export_vtk',

    # Objects (subpackage)
    'Objects',
]
