"""
IntrinsicBeam Solvers

Static, time-domain and eigen analyses of beam assemblies, plus plotting.
"""

from .Dynamic import Dynamic, advance_time_step, solve_time_domain
from .Modal import Modal, derive_left_eigenvectors, solve_eigen
from .Plotter import Plotter
from .Solver import Solver
from .Static import (
    SingularSystemError,
    SolverConstants,
    StaticBase,
    StaticLinear,
    StaticNonLinear,
    solve_static,
)

__all__ = [
    # Solver classes
    'StaticLinear',
    'StaticNonLinear',
    'StaticBase',
    'Dynamic',
    'Modal',
    'Solver',

    # Analyses
    'solve_static',
    'solve_time_domain',
    'advance_time_step',
    'solve_eigen',
    'derive_left_eigenvectors',

    # Visualization
    'Plotter',

    # Exceptions
    'SingularSystemError',

    # Constants
    'SolverConstants',
]
