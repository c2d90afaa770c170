"""
Boundary Conditions and Loads
=============================

PrescribedConditions
    Per point and per degree of freedom (ux, uy, uz, theta_x, theta_y, theta_z):
    either a prescribed displacement/rotation, or a prescribed force/moment.
    Forces may be dead (fixed global direction) or follower (rotate with the
    point). Values are floats or callables of time.

DistributedLoads
    Per element, forces and moments per unit length as constants or callables of
    the normalized arclength s in [0, 1]. Dead loads are expressed in the global
    frame (or the element local frame with ``frame="local"``); follower loads are
    given in the undeformed frame and rotate with the element.

Time variation of a whole load case is expressed by passing a callable
``t -> {index: PrescribedConditions}`` (or DistributedLoads) to the solvers.
"""

import numpy as np

DOF_LABELS = ("x", "y", "z")


def _value(v, t):
    if v is None:
        return 0.0
    return float(v(t)) if callable(v) else float(v)


class PrescribedConditions:
    """
    Conditions applied to a single point.

    Parameters
    ----------
    ux, uy, uz : float or callable, optional
        Prescribed displacements.
    theta_x, theta_y, theta_z : float or callable, optional
        Prescribed Wiener-Milenkovic rotation parameters.
    Fx, Fy, Fz, Mx, My, Mz : float or callable, optional
        Dead forces and moments.
    Fx_follower, ..., Mz_follower : float or callable, optional
        Follower forces and moments.

    Raises
    ------
    ValueError
        If a degree of freedom has both a displacement and a force.
    """

    def __init__(self, ux=None, uy=None, uz=None, theta_x=None, theta_y=None, theta_z=None,
                 Fx=None, Fy=None, Fz=None, Mx=None, My=None, Mz=None,
                 Fx_follower=None, Fy_follower=None, Fz_follower=None,
                 Mx_follower=None, My_follower=None, Mz_follower=None):
        self.displacement = (ux, uy, uz, theta_x, theta_y, theta_z)
        self.force = (Fx, Fy, Fz, Mx, My, Mz)
        self.follower = (Fx_follower, Fy_follower, Fz_follower,
                         Mx_follower, My_follower, Mz_follower)

        for i in range(6):
            if self.displacement[i] is not None and (self.force[i] is not None
                                                     or self.follower[i] is not None):
                kind = "u" if i < 3 else "theta_"
                raise ValueError(f"DOF {kind}{DOF_LABELS[i % 3]} cannot have both a prescribed "
                                 f"displacement and a prescribed load")

    @property
    def is_displacement(self):
        """Boolean mask of the DOFs with prescribed displacement/rotation."""
        return np.array([d is not None for d in self.displacement])

    def evaluate(self, t=0.0):
        """
        Values at time t.

        Returns
        -------
        mask : ndarray of bool, shape (6,)
            True where the displacement is prescribed.
        value : ndarray, shape (6,)
            Prescribed displacement where ``mask`` is True, dead load elsewhere.
        follower : ndarray, shape (6,)
            Follower loads (zero where ``mask`` is True).
        """
        mask = self.is_displacement
        value = np.array([_value(self.displacement[i], t) if mask[i] else _value(self.force[i], t)
                          for i in range(6)])
        follower = np.array([_value(f, t) for f in self.follower])
        return mask, value, follower

    def __repr__(self):
        names = ["ux", "uy", "uz", "theta_x", "theta_y", "theta_z"]
        parts = [f"{n}={d}" for n, d in zip(names, self.displacement) if d is not None]
        parts += [f"{n}={f}" for n, f in zip(["Fx", "Fy", "Fz", "Mx", "My", "Mz"], self.force)
                  if f is not None]
        return f"PrescribedConditions({', '.join(parts)})"


class DistributedLoads:
    """
    Distributed loads on a single element.

    Each component is a float (uniform) or a callable f(s) of the normalized
    arclength s in [0, 1].

    Parameters
    ----------
    fx, fy, fz, mx, my, mz : float or callable, optional
        Dead force and moment per unit length.
    fx_follower, ..., mz_follower : float or callable, optional
        Follower force and moment per unit length.
    frame : {"global", "local"}
        Frame in which the components are given.
    nodes : int
        Number of Gauss-Legendre points used for callable components.
    """

    def __init__(self, fx=None, fy=None, fz=None, mx=None, my=None, mz=None,
                 fx_follower=None, fy_follower=None, fz_follower=None,
                 mx_follower=None, my_follower=None, mz_follower=None,
                 frame="global", nodes=4):
        if frame not in ("global", "local"):
            raise ValueError(f"frame must be 'global' or 'local', got {frame!r}")
        if nodes < 1:
            raise ValueError(f"Number of quadrature nodes must be positive, got {nodes}")
        self.dead = (fx, fy, fz, mx, my, mz)
        self.follower = (fx_follower, fy_follower, fz_follower,
                         mx_follower, my_follower, mz_follower)
        self.frame = frame
        self.nodes = nodes

    def _integrate(self, components, L):
        # Linear shape weights: start gets (1 - s), stop gets s.
        first = np.zeros(6)
        second = np.zeros(6)
        xi, wi = np.polynomial.legendre.leggauss(self.nodes)
        s = 0.5 * (xi + 1.0)
        w = 0.5 * wi
        for i, f in enumerate(components):
            if f is None:
                continue
            if callable(f):
                vals = np.array([float(f(si)) for si in s])
                first[i] = L * np.sum(w * (1.0 - s) * vals)
                second[i] = L * np.sum(w * s * vals)
            else:
                first[i] = second[i] = 0.5 * L * float(f)
        return first, second

    def integrate(self, element):
        """
        Loads lumped at the two ends of ``element``.

        Returns
        -------
        ndarray, shape (4, 6)
            Rows: dead start, dead stop, follower start, follower stop;
            columns: force (3) then moment (3), in the global (undeformed) frame.
        """
        out = np.zeros((4, 6))
        out[0], out[1] = self._integrate(self.dead, element.L)
        out[2], out[3] = self._integrate(self.follower, element.L)
        if self.frame == "local":
            Cab = np.asarray(element.Cab)
            out[:, :3] = out[:, :3] @ Cab.T
            out[:, 3:] = out[:, 3:] @ Cab.T
        return out


def evaluate_mapping(mapping, t):
    """Resolve a time-dependent mapping (callable of t) to a plain dict."""
    if mapping is None:
        return {}
    if callable(mapping):
        mapping = mapping(t)
    if not isinstance(mapping, dict):
        raise TypeError(f"Expected a dict of conditions, got {type(mapping).__name__}")
    return mapping
