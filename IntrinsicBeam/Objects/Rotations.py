"""
Rotation Parameters - Wiener-Milenkovic Kinematics
===================================================

Finite rotations are carried by the three Wiener-Milenkovic parameters

    c = 4 tan(phi/4) n

where phi is the rotation angle and n the unit rotation axis. They are free of
singularities for |phi| < 2*pi and only use polynomial operations, so every
function below accepts complex input (complex-step differentiation) and leading
batch dimensions (arrays of shape (..., 3)).

Key Concepts:
-------------

**Rotation matrix** (active, maps reference vectors to rotated vectors):

    c0 = 2 - c.c / 8
    R  = [(c0^2 - c.c) I + 2 c c^T + 2 c0 [c]x] / (4 - c0)^2

**Tangent operator** (material angular velocity, R^T dR = [Q dc]x):

    Q    = 2 / (4 - c0)^2 * (c0 I - [c]x + c c^T / 4)
    Q^-1 = 1/2 * (c0 I + [c]x + c c^T / 4)

**Complementary set** (same rotation, angle phi - 2 pi):

    c' = -16 c / (c.c)

    Solvers switch to it once a rotation passes a half turn, which keeps the
    parameters bounded for rotations of any size.
"""

import numpy as np


def skew(v):
    """Cross-product matrix [v]x of a (..., 3) array."""
    v = np.asarray(v)
    out = np.zeros(v.shape[:-1] + (3, 3), dtype=np.result_type(v, float))
    out[..., 0, 1] = -v[..., 2]
    out[..., 0, 2] = v[..., 1]
    out[..., 1, 0] = v[..., 2]
    out[..., 1, 2] = -v[..., 0]
    out[..., 2, 0] = -v[..., 1]
    out[..., 2, 1] = v[..., 0]
    return out


def _outer(c):
    return c[..., :, None] * c[..., None, :]


def _c0(c):
    # Plain dot product, no conjugation: keeps the function complex-analytic.
    cc = np.einsum("...i,...i->...", c, c)
    return 2.0 - cc / 8.0, cc


def rotation_matrix(theta):
    """
    Rotation matrix R(c) of Wiener-Milenkovic parameters.

    Parameters
    ----------
    theta : array_like, shape (..., 3)

    Returns
    -------
    ndarray, shape (..., 3, 3)
    """
    c = np.asarray(theta)
    c0, cc = _c0(c)
    scale = (1.0 / (4.0 - c0) ** 2)[..., None, None]
    eye = np.eye(3)
    return scale * ((c0 ** 2 - cc)[..., None, None] * eye
                    + 2.0 * _outer(c)
                    + 2.0 * c0[..., None, None] * skew(c))


def tangent_operator(theta):
    """Q(c) such that R^T dR = [Q dc]x."""
    c = np.asarray(theta)
    c0, _ = _c0(c)
    scale = (2.0 / (4.0 - c0) ** 2)[..., None, None]
    return scale * (c0[..., None, None] * np.eye(3) - skew(c) + _outer(c) / 4.0)


def tangent_operator_inverse(theta):
    """Q(c)^-1, maps a material curvature or angular velocity to parameter rates."""
    c = np.asarray(theta)
    c0, _ = _c0(c)
    return 0.5 * (c0[..., None, None] * np.eye(3) + skew(c) + _outer(c) / 4.0)


def rotation_parameters(R):
    """
    Wiener-Milenkovic parameters of a rotation matrix (angle taken in [0, pi]).

    The quaternion is recovered with the largest-pivot rule, then
    c = 4 q / (1 + q0).
    """
    R = np.asarray(R, dtype=float)
    trace = np.trace(R)
    diag = np.diag(R)
    k = int(np.argmax(np.concatenate(([trace], diag))))
    if k == 0:
        q0 = 0.5 * np.sqrt(1.0 + trace)
        q = np.array([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]]) / (4.0 * q0)
    else:
        i = k - 1
        j, l = (i + 1) % 3, (i + 2) % 3
        q = np.zeros(3)
        q[i] = 0.5 * np.sqrt(1.0 + 2.0 * R[i, i] - trace)
        q[j] = (R[j, i] + R[i, j]) / (4.0 * q[i])
        q[l] = (R[l, i] + R[i, l]) / (4.0 * q[i])
        q0 = (R[l, j] - R[j, l]) / (4.0 * q[i])
    if q0 < 0.0:
        q0, q = -q0, -q
    return 4.0 * q / (1.0 + q0)


def complementary_parameters(theta):
    """
    Parameters of the same rotation taken the other way around the axis.

    c' = -16 c / (c.c), i.e. phi' = phi - 2 pi. Both sets give the same
    rotation matrix; the complementary one is smaller past a half turn.
    """
    c = np.asarray(theta)
    _, cc = _c0(c)
    cc = np.where(cc == 0, 1.0, cc)
    return -16.0 * c / cc[..., None]


def complementary_jacobian(theta):
    """Derivative of complementary_parameters, maps parameter rates across branches."""
    c = np.asarray(theta)
    _, cc = _c0(c)
    cc = np.where(cc == 0, 1.0, cc)
    return (-16.0 / cc)[..., None, None] * (np.eye(3) - 2.0 * _outer(c) / cc[..., None, None])


def closest_branch(theta, reference):
    """
    ``theta`` or its complementary set, whichever lies closer to ``reference``.

    The choice is made on real parts, so complex perturbations are carried
    through the selected branch unchanged.
    """
    c = np.asarray(theta)
    ref = np.real(reference)
    comp = complementary_parameters(c)
    d_same = np.sum(np.real(c - ref) ** 2, axis=-1)
    d_comp = np.sum(np.real(comp - ref) ** 2, axis=-1)
    return np.where((d_comp < d_same)[..., None], comp, c)
