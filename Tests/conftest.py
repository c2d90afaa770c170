"""
Shared fixtures for IntrinsicBeam tests.

This module provides simple, reusable fixtures and builders for testing.
"""
import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from IntrinsicBeam.Objects.Assembly import Assembly
from IntrinsicBeam.Objects.Conditions import PrescribedConditions
from IntrinsicBeam.Objects.Section import SectionBeam

# Section rigidities used throughout (shear-rigid)
EA = 1.0e6
GJ = 50.0
EI = 100.0


# =============================================================================
# Section Fixtures
# =============================================================================

@pytest.fixture
def compliance():
    """Shear-rigid section: EA=1e6, GJ=50, EIy=EIz=100."""
    return np.diag([1 / EA, 0.0, 0.0, 1 / GJ, 1 / EI, 1 / EI])


@pytest.fixture
def rect_compliance():
    """Shear-rigid section with distinct bending rigidities: EIy=100, EIz=400."""
    return np.diag([1 / EA, 0.0, 0.0, 1 / GJ, 1 / EI, 1 / (4 * EI)])


@pytest.fixture
def mass():
    """Unit mass per length with small rotary inertia."""
    return np.diag([1.0, 1.0, 1.0, 2e-4, 1e-4, 1e-4])


@pytest.fixture
def steel_section():
    """20 mm x 10 mm steel section."""
    return SectionBeam.rectangle(E=210e9, G=81e9, b=0.02, h=0.01, rho=7850.0)


# =============================================================================
# Assembly Fixtures
# =============================================================================

@pytest.fixture
def cantilever(compliance):
    """Straight beam along x, L=1, 10 elements."""
    return make_cantilever(10, compliance)


@pytest.fixture
def t_frame(compliance):
    """
    T-shaped frame.

    0 ---- 1 ---- 2      (along x)
           |
           3             (at (1, 1, 0))
    """
    points = [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0], [1.0, 1.0, 0.0]]
    return Assembly(points, [0, 1, 1], [1, 2, 3], compliance)


@pytest.fixture
def clamped():
    """All six DOFs fixed."""
    return clamp()


# =============================================================================
# Helper Functions
# =============================================================================

def make_cantilever(n, compliance, mass=None, L=1.0, frames=None, origin=(0.0, 0.0, 0.0)):
    """Beam of ``n`` equal elements from origin along global x."""
    x = np.linspace(0.0, L, n + 1)
    points = np.column_stack((x, np.zeros(n + 1), np.zeros(n + 1))) + np.asarray(origin)
    return Assembly(points, np.arange(n), np.arange(1, n + 1), compliance, mass=mass,
                    frames=frames)


def clamp():
    return PrescribedConditions(ux=0, uy=0, uz=0, theta_x=0, theta_y=0, theta_z=0)


def is_symmetric(matrix, tol=1e-10):
    """Check if matrix is symmetric."""
    return np.allclose(matrix, matrix.T, rtol=tol, atol=tol)


def is_orthonormal(matrix, tol=1e-10):
    """Check if matrix is a rotation (orthonormal with positive determinant)."""
    return (np.allclose(matrix.T @ matrix, np.eye(3), atol=tol)
            and np.isclose(np.linalg.det(matrix), 1.0, atol=tol))
