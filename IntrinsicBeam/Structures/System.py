"""
System - Global Unknowns, Residual and Sparse Jacobian
======================================================

The System owns everything the solvers iterate on for one assembly
connectivity:

- the unknown vector ``x`` and its rate ``xdot``
- the residual ``R`` and the sparse Jacobian ``K`` (CSC, pattern fixed here)
- the current loading (prescribed conditions and distributed loads at time t)
- the warm-start state reused by the next solve

State layout
------------
Elements are visited in order. Before each element the states of its start
point are allocated (if that point carries states and was not seen yet), then
the element states, then the states of its stop point.

    element:   u(3) theta(3) F(3) M(3) [V(3) Omega(3)]
    point:     6 entries, displacement/rotation for load-prescribed DOFs,
               reaction force/moment for displacement-prescribed DOFs

A point carries states when it has at least one element and is kept or does
not have exactly two element ends. The two ends (A, B) of an eliminated
point are tied directly: A's compatibility rows hold u_end(B) - u_end(A),
B's compatibility rows hold the summed end equilibrium.

Force scaling
-------------
Forces and moments are stored divided by ``force_scaling`` and equilibrium
rows are divided by it, so both residual families have comparable magnitude.

Rotations
---------
Rotation parameters are switched to their complementary set past a half
turn, so the two sides of a compatibility equation may sit on different
branches. One side is always mapped to the branch closest to the other
before they are compared.
"""

import logging
import warnings
from copy import deepcopy

import numpy as np
import scipy.sparse as sp

from IntrinsicBeam.Objects.Assembly import Assembly
from IntrinsicBeam.Objects.Conditions import PrescribedConditions, DistributedLoads, evaluate_mapping
from IntrinsicBeam.Objects.Rotations import complementary_jacobian, complementary_parameters
from IntrinsicBeam.Structures.Residual import element_fields, element_residual, point_residual

logger = logging.getLogger(__name__)

COMPLEX_STEP = 1e-20  # Complex-step size for Jacobian columns
RESCALE_THRESHOLD = 16.0 * 1.2  # c.c past which rotations switch branch (about 190 deg)


def default_force_scaling(assembly):
    """Power of two close to the inverse mean compliance magnitude / 100."""
    nsum = 0
    csum = 0.0
    for element in assembly.elements:
        vals = np.abs(element.compliance)
        nonzero = vals > np.finfo(float).eps
        nsum += int(np.count_nonzero(nonzero))
        csum += float(np.sum(vals[nonzero]))
    if nsum == 0:
        return 1.0
    return float(2.0 ** np.ceil(np.log2(nsum / csum / 100.0)))


class System:
    """
    Persistent numerical state of an assembly analysis.

    Parameters
    ----------
    assembly : Assembly
    kept_points : iterable of int, optional
        Points that keep their own states even with exactly two element ends.
        None keeps every point.
    dynamic : bool
        Allocate velocity states (V, Omega) for time-domain and eigen analyses.
    force_scaling : float, optional
        Scale of the force/moment unknowns. Derived from the compliances if None.
    """

    def __init__(self, assembly, kept_points=None, dynamic=False, force_scaling=None):
        if not isinstance(assembly, Assembly):
            raise TypeError(f"Expected an Assembly, got {type(assembly).__name__}")

        self.dynamic = bool(dynamic)
        self.nb_points = assembly.nb_points
        self.nb_elements = assembly.nb_elements
        self.nb_element_states = 18 if self.dynamic else 12
        self._key = assembly.connectivity_key()

        if force_scaling is None:
            force_scaling = default_force_scaling(assembly)
        if not force_scaling > 0:
            raise ValueError(f"Force scaling must be positive, got {force_scaling}")
        self.force_scaling = float(force_scaling)

        degree = np.array([assembly.point_degree(p) for p in range(self.nb_points)])
        if kept_points is None:
            kept = np.ones(self.nb_points, dtype=bool)
        else:
            kept = np.zeros(self.nb_points, dtype=bool)
            for p in kept_points:
                if not 0 <= int(p) < self.nb_points:
                    raise ValueError(f"Kept point {p} outside the {self.nb_points} points")
                kept[int(p)] = True
        self.point_degree = degree
        self.state_points = (degree > 0) & (kept | (degree != 2))

        self._allocate_offsets(assembly)
        self._map_rows(assembly)
        self._build_pattern(assembly)

        n = self.nb_states
        self.x = np.zeros(n)
        self.xdot = np.zeros(n)
        self.R = np.zeros(n)
        self.K = None
        self.t = 0.0
        self.istep = 0
        self.converged = False
        self.iterations = 0
        self.point_rates = np.zeros((self.nb_points, 6))
        self.has_rates = False

        self.point_mask = np.zeros((self.nb_points, 6), dtype=bool)
        self.point_value = np.zeros((self.nb_points, 6))
        self.point_follower = np.zeros((self.nb_points, 6))
        self.element_loads = np.zeros((self.nb_elements, 4, 6))
        self.gravity = None

        logger.debug("Allocated system: %d states, %d state points, %d nonzeros, "
                     "force scaling %g", n, int(self.state_points.sum()),
                     self._indices.size, self.force_scaling)

    # =========================================================================
    # LAYOUT
    # =========================================================================

    def _allocate_offsets(self, assembly):
        nes = self.nb_element_states
        self.point_offsets = np.full(self.nb_points, -1, dtype=int)
        self.element_offsets = np.zeros(self.nb_elements, dtype=int)
        n = 0
        for ielem in range(self.nb_elements):
            p1, p2 = assembly.element_points(ielem)
            if self.state_points[p1] and self.point_offsets[p1] < 0:
                self.point_offsets[p1] = n
                n += 6
            self.element_offsets[ielem] = n
            n += nes
            if self.state_points[p2] and self.point_offsets[p2] < 0:
                self.point_offsets[p2] = n
                n += 6
        self.nb_states = n

    def _map_rows(self, assembly):
        six = np.arange(6)
        self.end_eq_rows = np.full((self.nb_elements, 2, 6), -1, dtype=int)
        self.end_compat_rows = np.full((self.nb_elements, 2, 6), -1, dtype=int)
        self.end_compat_sign = np.ones((self.nb_elements, 2))
        self.end_partner = {}
        self._partner_end = {}

        for p, conns in enumerate(assembly.point_connections):
            if self.state_points[p]:
                for ielem, side in conns:
                    self.end_eq_rows[ielem, side] = self.point_offsets[p] + six
                    self.end_compat_rows[ielem, side] = self.element_offsets[ielem] + 6 * side + six
            elif len(conns) == 2:
                (ea, sa), (eb, sb) = conns
                block_a = self.element_offsets[ea] + 6 * sa + six
                block_b = self.element_offsets[eb] + 6 * sb + six
                self.end_compat_rows[ea, sa] = block_a
                self.end_compat_rows[eb, sb] = block_a
                self.end_compat_sign[ea, sa] = -1.0
                self.end_eq_rows[ea, sa] = block_b
                self.end_eq_rows[eb, sb] = block_b
                self.end_partner[p] = (ea, sa)
                self._partner_end[(eb, sb)] = (ea, sa)

    def _build_pattern(self, assembly):
        nes = self.nb_element_states
        nz = nes + 12
        six = np.arange(6)

        rows, cols = [], []
        self._element_gather = []
        self._element_active = []
        self._element_rows = []
        self._element_sign = []
        self._element_slices = []
        count = 0

        for ielem in range(self.nb_elements):
            p1, p2 = assembly.element_points(ielem)
            gather = np.full(nz, -1, dtype=int)
            gather[:nes] = self.element_offsets[ielem] + np.arange(nes)
            for side, p in ((0, p1), (1, p2)):
                if self.state_points[p]:
                    gather[nes + 6 * side: nes + 6 * side + 6] = self.point_offsets[p] + six
            active = np.flatnonzero(gather >= 0)

            local_rows = [self.end_eq_rows[ielem, 0], self.end_eq_rows[ielem, 1],
                          self.end_compat_rows[ielem, 0], self.end_compat_rows[ielem, 1]]
            sign = [np.ones(12), np.full(6, self.end_compat_sign[ielem, 0]),
                    np.full(6, self.end_compat_sign[ielem, 1])]
            if self.dynamic:
                local_rows.append(self.element_offsets[ielem] + 12 + six)
                sign.append(np.ones(6))
            local_rows = np.concatenate(local_rows)

            self._element_gather.append(gather)
            self._element_active.append(active)
            self._element_rows.append(local_rows)
            self._element_sign.append(np.concatenate(sign))

            na, nr = active.size, local_rows.size
            rows.append(np.repeat(local_rows, na))
            cols.append(np.tile(gather[active], nr))
            self._element_slices.append(slice(count, count + na * nr))
            count += na * nr

        self._point_slices = {}
        for p in np.flatnonzero(self.state_points):
            idx = self.point_offsets[p] + six
            rows.append(np.repeat(idx, 6))
            cols.append(np.tile(idx, 6))
            self._point_slices[int(p)] = slice(count, count + 36)
            count += 36

        rows = np.concatenate(rows)
        cols = np.concatenate(cols)
        n = self.nb_states

        # Column-major keys sort exactly like CSC storage
        keys = cols.astype(np.int64) * n + rows
        unique, self._coo_to_csc = np.unique(keys, return_inverse=True)
        self._indices = (unique % n).astype(np.int32)
        col_of = unique // n
        self._indptr = np.concatenate(([0], np.cumsum(np.bincount(col_of, minlength=n)))).astype(np.int32)
        self._nnz_coo = count

    def _csc(self, coo_data):
        data = np.zeros(self._indices.size, dtype=coo_data.dtype)
        np.add.at(data, self._coo_to_csc, coo_data)
        return sp.csc_matrix((data, self._indices, self._indptr),
                             shape=(self.nb_states, self.nb_states))

    # =========================================================================
    # LOADING
    # =========================================================================

    def check_assembly(self, assembly):
        """Raise ValueError if ``assembly`` does not match the allocated connectivity."""
        if assembly.connectivity_key() != self._key:
            raise ValueError("System was allocated for a different assembly connectivity")

    def apply_conditions(self, assembly, prescribed_conditions=None, distributed_loads=None,
                         t=0.0, gravity=None, load_factor=1.0):
        """
        Evaluate the load case at time ``t`` and store it on the system.

        All prescribed values, distributed loads and gravity are multiplied by
        ``load_factor``.
        """
        self.check_assembly(assembly)
        pc = evaluate_mapping(prescribed_conditions, t)
        dl = evaluate_mapping(distributed_loads, t)

        self.point_mask[:] = False
        self.point_value[:] = 0.0
        self.point_follower[:] = 0.0
        for p, cond in pc.items():
            if not isinstance(cond, PrescribedConditions):
                raise TypeError(f"Point {p}: expected PrescribedConditions, "
                                f"got {type(cond).__name__}")
            if not 0 <= int(p) < self.nb_points:
                raise ValueError(f"Prescribed conditions given for point {p}, "
                                 f"outside the {self.nb_points} points")
            p = int(p)
            if self.point_degree[p] == 0:
                warnings.warn(f"Point {p} is not connected to any element, "
                              f"its prescribed conditions are ignored")
                continue
            if not self.state_points[p]:
                raise ValueError(f"Point {p} has no state variables; include it in "
                                 f"kept_points to prescribe conditions on it")
            mask, value, follower = cond.evaluate(t)
            self.point_mask[p] = mask
            self.point_value[p] = load_factor * value
            self.point_follower[p] = load_factor * follower

        self.element_loads[:] = 0.0
        for ielem, load in dl.items():
            if not isinstance(load, DistributedLoads):
                raise TypeError(f"Element {ielem}: expected DistributedLoads, "
                                f"got {type(load).__name__}")
            if not 0 <= int(ielem) < self.nb_elements:
                raise ValueError(f"Distributed loads given for element {ielem}, "
                                 f"outside the {self.nb_elements} elements")
            self.element_loads[int(ielem)] = load_factor * load.integrate(assembly.elements[int(ielem)])

        if gravity is None:
            self.gravity = None
        else:
            gravity = np.array(gravity, dtype=float)
            if gravity.shape != (3,):
                raise ValueError(f"Gravity must be a 3-vector, got shape {gravity.shape}")
            self.gravity = load_factor * gravity

    def _end_references(self, assembly):
        """End rotations of the minus side of every eliminated point, at the current x."""
        return {end: self.element_end_displacement(assembly, *partner)[3:]
                for end, partner in self._partner_end.items()}

    def _ends(self, assembly, ielem, references):
        ends = []
        for side, p in enumerate(assembly.element_points(ielem)):
            ends.append((bool(self.state_points[p]), self.point_mask[p], self.point_value[p],
                         references.get((ielem, side))))
        return ends

    # =========================================================================
    # RESIDUAL AND JACOBIANS
    # =========================================================================

    def _local(self, vec, gather):
        return np.where(gather >= 0, vec[np.maximum(gather, 0)], 0.0)

    def get_R(self, assembly):
        """Residual at the current (x, xdot), stored in ``self.R``."""
        R = np.zeros(self.nb_states)
        references = self._end_references(assembly)
        for ielem, element in enumerate(assembly.elements):
            gather = self._element_gather[ielem]
            z = self._local(self.x, gather)[None]
            zdot = self._local(self.xdot, gather)[None]
            res = element_residual(element, z, zdot, self.force_scaling, self.dynamic,
                                   self.element_loads[ielem], self.gravity,
                                   self._ends(assembly, ielem, references))[0]
            np.add.at(R, self._element_rows[ielem], self._element_sign[ielem] * res)

        for p in self._point_slices:
            idx = self.point_offsets[p] + np.arange(6)
            R[idx] += point_residual(self.x[idx], self.force_scaling, self.point_mask[p],
                                     self.point_value[p], self.point_follower[p])
        self.R = R
        return R

    def _jacobian_data(self, assembly, x_weight, xdot_weight):
        data = np.zeros(self._nnz_coo)
        R = np.zeros(self.nb_states)
        h = COMPLEX_STEP
        references = self._end_references(assembly)

        for ielem, element in enumerate(assembly.elements):
            gather = self._element_gather[ielem]
            active = self._element_active[ielem]
            na = active.size
            z = np.tile(self._local(self.x, gather).astype(complex), (na, 1))
            zdot = np.tile(self._local(self.xdot, gather).astype(complex), (na, 1))
            z[np.arange(na), active] += 1j * h * x_weight
            zdot[np.arange(na), active] += 1j * h * xdot_weight

            res = element_residual(element, z, zdot, self.force_scaling, self.dynamic,
                                   self.element_loads[ielem], self.gravity,
                                   self._ends(assembly, ielem, references))
            sign = self._element_sign[ielem]
            data[self._element_slices[ielem]] = (sign[:, None] * res.imag.T / h).ravel()
            np.add.at(R, self._element_rows[ielem], sign * res[0].real)

        for p, slc in self._point_slices.items():
            idx = self.point_offsets[p] + np.arange(6)
            zp = np.tile(self.x[idx].astype(complex), (6, 1)) + 1j * h * x_weight * np.eye(6)
            res = point_residual(zp, self.force_scaling, self.point_mask[p],
                                 self.point_value[p], self.point_follower[p])
            data[slc] = (res.imag.T / h).ravel()
            R[idx] += res[0].real
        return data, R

    def get_K(self, assembly, xdot_scale=0.0):
        """
        Jacobian dR/dx + xdot_scale * dR/dxdot, stored in ``self.K``.

        The residual is refreshed as a by-product.
        """
        data, R = self._jacobian_data(assembly, 1.0, xdot_scale)
        if self.K is None:
            self.K = self._csc(data)
        else:
            self.K.data[:] = 0.0
            np.add.at(self.K.data, self._coo_to_csc, data)
        self.R = R
        return self.K

    def get_M(self, assembly):
        """Rate Jacobian dR/dxdot (a new matrix with the same pattern)."""
        data, _ = self._jacobian_data(assembly, 0.0, 1.0)
        return self._csc(data)

    # =========================================================================
    # STATE MANAGEMENT
    # =========================================================================

    def element_slice(self, ielem):
        off = self.element_offsets[ielem]
        return slice(off, off + self.nb_element_states)

    def point_slice(self, ipoint):
        off = self.point_offsets[ipoint]
        if off < 0:
            raise ValueError(f"Point {ipoint} has no state variables")
        return slice(off, off + 6)

    def point_displacements(self, assembly, x=None, mask=None, value=None):
        """
        Displacement and rotation parameters of every point, shape (npoint, 6).

        Eliminated points take the values implied by their first element end,
        isolated points are zero.
        """
        x = self.x if x is None else x
        mask = self.point_mask if mask is None else mask
        value = self.point_value if value is None else value
        out = np.zeros((self.nb_points, 6))
        for p in range(self.nb_points):
            if self.state_points[p]:
                out[p] = np.where(mask[p], value[p], x[self.point_slice(p)])
            elif p in self.end_partner:
                ielem, side = self.end_partner[p]
                out[p] = self.element_end_displacement(assembly, ielem, side, x)
        return out

    def element_end_displacement(self, assembly, ielem, side, x=None):
        x = self.x if x is None else x
        fields = element_fields(assembly.elements[ielem], x[self.element_slice(ielem)],
                                self.force_scaling)
        sgn = -1.0 if side == 0 else 1.0
        return np.concatenate((fields["u"] + sgn * fields["du"],
                               fields["theta"] + sgn * fields["dtheta"]))

    def rescale_rotations(self):
        """
        Switch rotation parameters past a half turn to the complementary set.

        Applies to element rotations and to point rotations with no prescribed
        component. Rates in ``xdot`` are mapped along. The switch happens a
        little beyond the half turn so that a rotation close to it does not
        flip back and forth between iterations.

        Returns
        -------
        int
            Number of rotations switched.
        """
        blocks = [self.element_offsets[:, None] + np.arange(3, 6)]
        points = np.flatnonzero(self.state_points)
        free = ~self.point_mask[points, 3:].any(axis=1)
        blocks.append(self.point_offsets[points[free], None] + np.arange(3, 6))
        rows = np.vstack(blocks)

        c = self.x[rows]
        flip = np.einsum("ij,ij->i", c, c) > RESCALE_THRESHOLD
        if not flip.any():
            return 0
        rows, c = rows[flip], c[flip]
        self.xdot[rows] = np.einsum("kij,kj->ki", complementary_jacobian(c), self.xdot[rows])
        self.x[rows] = complementary_parameters(c)
        logger.debug("Switched %d rotations to the complementary parameters", int(flip.sum()))
        return int(flip.sum())

    def capture(self):
        """Snapshot of the mutable solution state."""
        return {"x": self.x.copy(), "xdot": self.xdot.copy(), "t": self.t,
                "istep": self.istep, "point_rates": self.point_rates.copy(),
                "has_rates": self.has_rates}

    def restore(self, snapshot):
        self.x = snapshot["x"].copy()
        self.xdot = snapshot["xdot"].copy()
        self.t = snapshot["t"]
        self.istep = snapshot["istep"]
        self.point_rates = snapshot["point_rates"].copy()
        self.has_rates = snapshot["has_rates"]

    def reset_state(self):
        self.x[:] = 0.0
        self.xdot[:] = 0.0
        self.point_rates[:] = 0.0
        self.has_rates = False
        self.t = 0.0
        self.istep = 0
        self.converged = False
        self.iterations = 0

    def copy(self):
        return deepcopy(self)

    # =========================================================================
    # ANALYSES
    # =========================================================================

    def solve_static(self, assembly, prescribed_conditions, distributed_loads=None,
                     linear=False, **kwargs):
        from IntrinsicBeam.Solvers.Static import solve_static
        return solve_static(assembly, prescribed_conditions, distributed_loads,
                            linear=linear, system=self, **kwargs)

    def advance_time_step(self, assembly, dt, prescribed_conditions, distributed_loads=None,
                          **kwargs):
        from IntrinsicBeam.Solvers.Dynamic import advance_time_step
        return advance_time_step(self, assembly, dt, prescribed_conditions, distributed_loads,
                                 **kwargs)

    def solve_eigen(self, assembly, prescribed_conditions, num_modes, **kwargs):
        from IntrinsicBeam.Solvers.Modal import solve_eigen
        return solve_eigen(assembly, prescribed_conditions, num_modes, system=self, **kwargs)

    def __repr__(self):
        kind = "dynamic" if self.dynamic else "static"
        return f"System({kind}, {self.nb_states} states, t={self.t})"


def allocate_system(assembly, kept_points=None, dynamic=False, force_scaling=None):
    """Allocate a System for ``assembly``."""
    return System(assembly, kept_points=kept_points, dynamic=dynamic,
                  force_scaling=force_scaling)
