"""
Beam discretization helpers.

A beam of constant curvature k (local frame components) starting at ``start``
with initial frame C0 has the frame and centerline

    C(s) = C0 exp(s [k]x)
    r(s) = start + C0 (s I + (1 - cos ks)/k^2 [k]x + (ks - sin ks)/k^3 [k]x^2) e1
"""

import numpy as np

from IntrinsicBeam.Objects.Rotations import skew


def _breakpoints(discretization):
    if isinstance(discretization, (int, np.integer)):
        if discretization < 1:
            raise ValueError(f"Number of elements must be positive, got {discretization}")
        return np.linspace(0.0, 1.0, int(discretization) + 1)
    s = np.array(discretization, dtype=float).ravel()
    if s.size < 2 or not np.isclose(s[0], 0.0) or not np.isclose(s[-1], 1.0):
        raise ValueError("Breakpoints must run from 0 to 1")
    if np.any(np.diff(s) <= 0):
        raise ValueError("Breakpoints must be strictly increasing")
    return s


def _frame_and_position(s, curvature):
    K = skew(curvature)
    k = np.linalg.norm(curvature)
    e1 = np.array([1.0, 0.0, 0.0])
    if k * abs(s) < 1e-12:
        return np.eye(3), s * e1
    ks = k * s
    rot = np.eye(3) + np.sin(ks) / k * K + (1.0 - np.cos(ks)) / k ** 2 * (K @ K)
    integral = (s * np.eye(3) + (1.0 - np.cos(ks)) / k ** 2 * K
                + (ks - np.sin(ks)) / k ** 3 * (K @ K))
    return rot, integral @ e1


def discretize_beam(length, start, discretization, frame=None, curvature=None):
    """
    Split a straight or constant-curvature beam into elements.

    Parameters
    ----------
    length : float
        Beam arclength.
    start : array_like, shape (3,)
        Position of the first point.
    discretization : int or array_like
        Number of equal elements, or normalized breakpoints from 0 to 1.
    frame : array_like, shape (3, 3), optional
        Local frame at the start (columns = local axes). Identity if None.
    curvature : array_like, shape (3,), optional
        Constant curvature in local components. Straight beam if None.

    Returns
    -------
    lengths : ndarray, shape (nelem,)
    points : ndarray, shape (nelem + 1, 3)
    midpoints : ndarray, shape (nelem, 3)
    frames : ndarray, shape (nelem, 3, 3)
    """
    if not length > 0:
        raise ValueError(f"Beam length must be positive, got {length}")
    start = np.array(start, dtype=float)
    C0 = np.eye(3) if frame is None else np.array(frame, dtype=float)
    k = np.zeros(3) if curvature is None else np.array(curvature, dtype=float)
    s = _breakpoints(discretization) * length

    points = np.array([start + C0 @ _frame_and_position(si, k)[1] for si in s])
    smid = 0.5 * (s[:-1] + s[1:])
    midpoints = np.empty((smid.size, 3))
    frames = np.empty((smid.size, 3, 3))
    for i, si in enumerate(smid):
        rot, pos = _frame_and_position(si, k)
        midpoints[i] = start + C0 @ pos
        frames[i] = C0 @ rot
    return np.diff(s), points, midpoints, frames
