"""
Residual Equations of the Intrinsic Beam Formulation
====================================================

Element and point residuals, written with leading batch dimensions so a whole
set of complex-step perturbations is evaluated in one call.

Local variable vector of an element (``nes`` = 12 static, 18 dynamic):

    z = [u, theta, F/fs, M/fs, (V, Omega) | start point (6) | stop point (6)]

Local residual vector of an element:

    [f_start, m_start, f_stop, m_stop]   end equilibrium contributions (/ fs)
    [u_start, theta_start] - point       start compatibility
    [u_stop, theta_stop] - point         stop compatibility
    [T V - du/dt, Omega - Cab^T Q dtheta/dt]   velocity equations (dynamic)

with T = R(theta) Cab and [gamma; kappa] = C [F; M].
"""

import numpy as np

from IntrinsicBeam.Objects.Rotations import (
    closest_branch,
    rotation_matrix,
    tangent_operator,
    tangent_operator_inverse,
)

E1 = np.array([1.0, 0.0, 0.0])


def _mv(A, v):
    return np.einsum("...ij,...j->...i", A, v)


def element_fields(element, z, force_scaling):
    """
    Kinematic and stress fields of an element evaluated from its local states.

    Returns a dict with u, theta, F, M (physical), R, T, gamma, kappa and the
    half-length end offsets du, dtheta (end = center -/+ offset).
    """
    L = element.L
    Cab = element.Cab
    u = z[..., 0:3]
    theta = z[..., 3:6]
    F = force_scaling * z[..., 6:9]
    M = force_scaling * z[..., 9:12]

    R = rotation_matrix(theta)
    T = R @ Cab
    strain = _mv(element.compliance, np.concatenate((F, M), axis=-1))
    gamma = strain[..., 0:3]
    kappa = strain[..., 3:6]

    du = 0.5 * L * (_mv(T, E1 + gamma) - Cab[:, 0])
    dtheta = 0.5 * L * _mv(tangent_operator_inverse(theta), _mv(Cab, kappa))
    return {"u": u, "theta": theta, "F": F, "M": M, "R": R, "T": T,
            "gamma": gamma, "kappa": kappa, "du": du, "dtheta": dtheta}


def element_residual(element, z, zdot, force_scaling, dynamic, loads, gravity, ends):
    """
    Local residual of one element.

    Parameters
    ----------
    element : Element
    z, zdot : ndarray, shape (..., nes + 12)
        Local states and their time derivatives (real or complex).
    force_scaling : float
    dynamic : bool
    loads : ndarray, shape (4, 6)
        Integrated distributed loads (dead start/stop, follower start/stop).
    gravity : ndarray, shape (3,) or None
    ends : sequence of two (has_states, mask, value, reference)
        Point data of the start and stop ends. When the point carries states,
        ``mask`` selects the prescribed displacements ``value``. Otherwise
        ``reference`` holds the end rotation of the element on the other side
        of an eliminated point (None on the side written with a minus sign).

    Returns
    -------
    ndarray, shape (..., 24) static or (..., 30) dynamic
    """
    L = element.L
    Cab = element.Cab
    fs = force_scaling
    nes = 18 if dynamic else 12
    fields = element_fields(element, z, fs)
    R, T = fields["R"], fields["T"]
    F, M = fields["F"], fields["M"]

    # Compatibility at both ends, rotations compared on the same branch
    compat = []
    for side, sgn in ((0, -1.0), (1, 1.0)):
        has_states, mask, value, reference = ends[side]
        u_end = fields["u"] + sgn * fields["du"]
        theta_end = fields["theta"] + sgn * fields["dtheta"]
        if has_states:
            zp = z[..., nes + 6 * side: nes + 6 * side + 6]
            target = np.where(mask, value, zp)
            u_end = u_end - target[..., :3]
            theta_end = theta_end - closest_branch(target[..., 3:], theta_end)
        elif reference is not None:
            theta_end = closest_branch(theta_end, reference)
        compat.append(np.concatenate((u_end, theta_end), axis=-1))

    # Distributed loads, follower parts rotate with the element
    f1 = loads[0, :3] + _mv(R, loads[2, :3])
    f2 = loads[1, :3] + _mv(R, loads[3, :3])
    m1 = loads[0, 3:] + _mv(R, loads[2, 3:])
    m2 = loads[1, 3:] + _mv(R, loads[3, 3:])
    if gravity is not None:
        g_local = _mv(np.swapaxes(T, -1, -2), gravity)
        fg = 0.5 * L * _mv(T, _mv(element.mass[:3, :3], g_local))
        mg = 0.5 * L * _mv(T, _mv(element.mass[3:, :3], g_local))
        f1, f2 = f1 + fg, f2 + fg
        m1, m2 = m1 + mg, m2 + mg

    TF = _mv(T, F)
    TM = _mv(T, M)
    arm = 0.5 * L * _mv(T, np.cross(E1 + fields["gamma"], F))

    f_start = -TF - f1
    f_stop = TF - f2
    m_start = -TM - m1 - arm
    m_stop = TM - m2 - arm

    parts = []
    if dynamic:
        mass = element.mass
        V = z[..., 12:15]
        Omega = z[..., 15:18]
        udot = zdot[..., 0:3]
        thetadot = zdot[..., 3:6]
        Vdot = zdot[..., 12:15]
        Omegadot = zdot[..., 15:18]

        P = _mv(mass[:3, :3], V) + _mv(mass[:3, 3:], Omega)
        H = _mv(mass[3:, :3], V) + _mv(mass[3:, 3:], Omega)
        Pdot = _mv(mass[:3, :3], Vdot) + _mv(mass[:3, 3:], Omegadot)
        Hdot = _mv(mass[3:, :3], Vdot) + _mv(mass[3:, 3:], Omegadot)

        # R^T dR/dt = [w]x
        w = _mv(tangent_operator(fields["theta"]), thetadot)
        dTP = _mv(R, np.cross(w, _mv(Cab, P))) + _mv(T, Pdot)
        dTH = (_mv(R, np.cross(w, _mv(Cab, H))) + _mv(T, Hdot)
               + _mv(T, np.cross(V, P)))

        f_start = f_start + 0.5 * L * dTP
        f_stop = f_stop + 0.5 * L * dTP
        m_start = m_start + 0.5 * L * dTH
        m_stop = m_stop + 0.5 * L * dTH

        parts = [_mv(T, V) - udot, Omega - _mv(Cab.T, w)]

    return np.concatenate([f_start / fs, m_start / fs, f_stop / fs, m_stop / fs]
                          + compat + parts, axis=-1)


def point_residual(zp, force_scaling, mask, value, follower):
    """
    External load part of a point equilibrium equation.

    The element end contributions are added by the element residuals; this
    returns -F_ext / fs where F_ext is the reaction (the point state) on
    prescribed DOFs and the dead plus rotated follower load elsewhere.
    """
    theta = np.where(mask[3:], value[3:], zp[..., 3:6])
    R = rotation_matrix(theta)
    follower_global = np.concatenate((_mv(R, follower[:3]), _mv(R, follower[3:])), axis=-1)
    applied = (value + follower_global) / force_scaling
    return -np.where(mask, zp, applied)
