"""
Assembly - Points, Beam Elements and Connectivity
==================================================

An assembly is an immutable graph of points (3-D coordinates) joined by beam
elements. Each element stores everything the intrinsic equations need:

    L           reference length (arclength) [m]
    x           reference midpoint [m]
    Cab         reference frame, columns are the local axes in global coordinates
    compliance  6x6 cross-section compliance, [gamma; kappa] = C [F; M]
    mass        6x6 cross-section mass per unit length, [P; H] = M [V; Omega]

Elements are addressed by index into ``Assembly.elements``; points by index into
``Assembly.points``. The point-to-element adjacency is derived once, at
construction, and stored as lists of (element, side) pairs (side 0 = start,
side 1 = stop).
"""

from dataclasses import dataclass, field

import numpy as np


class AssemblyError(ValueError):
    """Raised when the assembly geometry, connectivity or section data is invalid.

    This typically indicates:
    - Element endpoint outside the point array
    - Zero-length or degenerate element
    - Compliance or mass matrix that is not symmetric positive semi-definite
    """
    pass


SYMMETRY_TOLERANCE = 1e-8     # Relative tolerance on C - C^T
DEFINITENESS_TOLERANCE = 1e-10  # Relative tolerance on negative eigenvalues
FRAME_TOLERANCE = 1e-8        # Orthonormality tolerance on Cab


def _check_section_matrix(mat, name, ielem):
    if mat.shape != (6, 6):
        raise AssemblyError(f"Element {ielem}: {name} must be 6x6, got {mat.shape}")
    if not np.all(np.isfinite(mat)):
        raise AssemblyError(f"Element {ielem}: {name} contains non-finite entries")
    scale = max(np.max(np.abs(mat)), np.finfo(float).tiny)
    if not np.allclose(mat, mat.T, rtol=0.0, atol=SYMMETRY_TOLERANCE * scale):
        raise AssemblyError(f"Element {ielem}: {name} is not symmetric")
    eigs = np.linalg.eigvalsh(0.5 * (mat + mat.T))
    if eigs[0] < -DEFINITENESS_TOLERANCE * scale:
        raise AssemblyError(f"Element {ielem}: {name} is not positive semi-definite "
                            f"(smallest eigenvalue {eigs[0]:.3e})")


def default_frame(tangent):
    """
    Orthonormal frame with its first axis along ``tangent``.

    The second axis is taken normal to the global z axis when possible
    (global z x e1), otherwise the global y axis is used.
    """
    e1 = np.asarray(tangent, dtype=float)
    e1 = e1 / np.linalg.norm(e1)
    e2 = np.cross([0.0, 0.0, 1.0], e1)
    if np.linalg.norm(e2) < 1e-8:
        e2 = np.array([0.0, 1.0, 0.0])
    e2 = e2 / np.linalg.norm(e2)
    e3 = np.cross(e1, e2)
    return np.column_stack((e1, e2, e3))


@dataclass(frozen=True)
class Element:
    """
    Beam element of the intrinsic formulation.

    Attributes:
        L: Reference length [m]
        x: Reference midpoint, shape (3,)
        compliance: 6x6 compliance matrix
        mass: 6x6 mass matrix per unit length
        Cab: Reference frame (local to global), shape (3, 3)
    """
    L: float
    x: np.ndarray
    compliance: np.ndarray
    mass: np.ndarray
    Cab: np.ndarray = field(default_factory=lambda: np.eye(3))

    def __post_init__(self):
        if not np.isfinite(self.L) or self.L <= 0:
            raise AssemblyError(f"Element length must be positive, got {self.L}")

    @property
    def has_mass(self):
        return bool(np.any(self.mass != 0.0))


class Assembly:
    """
    Immutable set of points and beam elements.

    Parameters
    ----------
    points : array_like, shape (npoint, 3)
        Point coordinates.
    start, stop : array_like of int, shape (nelem,)
        Point index of the first and second end of each element.
    compliance : array_like, shape (6, 6) or (nelem, 6, 6)
        Section compliance matrices. A single matrix is shared by all elements.
    mass : array_like, shape (6, 6) or (nelem, 6, 6), optional
        Section mass matrices per unit length. Zero when omitted.
    minv : array_like, shape (6, 6) or (nelem, 6, 6), optional
        Inverse mass matrices, inverted once here. Exclusive with ``mass``.
    frames : array_like, shape (3, 3) or (nelem, 3, 3), optional
        Element reference frames. Defaults to the chord-aligned frame.
    lengths : array_like, shape (nelem,), optional
        Element arclengths. Defaults to the chord lengths.
    midpoints : array_like, shape (nelem, 3), optional
        Element midpoints. Defaults to the chord midpoints.

    Raises
    ------
    AssemblyError
        On any inconsistent or invalid input.
    """

    def __init__(self, points, start, stop, compliance, mass=None, minv=None,
                 frames=None, lengths=None, midpoints=None):
        points = np.array(points, dtype=float)
        if points.ndim != 2 or points.shape[1] != 3:
            raise AssemblyError(f"Points must have shape (npoint, 3), got {points.shape}")
        if not np.all(np.isfinite(points)):
            raise AssemblyError("Point coordinates must be finite")

        start = np.array(start, dtype=int).ravel()
        stop = np.array(stop, dtype=int).ravel()
        if start.shape != stop.shape:
            raise AssemblyError("start and stop must have the same number of entries")
        nelem = start.size
        npoint = points.shape[0]
        if nelem == 0:
            raise AssemblyError("An assembly needs at least one element")

        for ielem, (p1, p2) in enumerate(zip(start, stop)):
            if not (0 <= p1 < npoint) or not (0 <= p2 < npoint):
                raise AssemblyError(f"Element {ielem}: endpoint ({p1}, {p2}) outside "
                                    f"the {npoint} points")
            if p1 == p2:
                raise AssemblyError(f"Element {ielem}: start and stop are the same point {p1}")

        compliance = self._per_element(compliance, nelem, (6, 6), "compliance")
        if mass is not None and minv is not None:
            raise AssemblyError("Provide either mass or minv, not both")
        if minv is not None:
            minv = self._per_element(minv, nelem, (6, 6), "minv")
            try:
                mass = np.linalg.inv(minv)
            except np.linalg.LinAlgError as err:
                raise AssemblyError(f"Inverse mass matrix is singular: {err}") from err
        elif mass is not None:
            mass = self._per_element(mass, nelem, (6, 6), "mass")
        else:
            mass = np.zeros((nelem, 6, 6))

        chord = points[stop] - points[start]
        if lengths is None:
            lengths = np.linalg.norm(chord, axis=1)
        else:
            lengths = np.array(lengths, dtype=float).ravel()
            if lengths.size != nelem:
                raise AssemblyError(f"Expected {nelem} lengths, got {lengths.size}")

        if midpoints is None:
            midpoints = 0.5 * (points[start] + points[stop])
        else:
            midpoints = np.array(midpoints, dtype=float)
            if midpoints.shape != (nelem, 3):
                raise AssemblyError(f"Midpoints must have shape ({nelem}, 3), "
                                    f"got {midpoints.shape}")

        if frames is None:
            frames = np.empty((nelem, 3, 3))
            for ielem in range(nelem):
                if lengths[ielem] <= 0 or np.linalg.norm(chord[ielem]) == 0:
                    raise AssemblyError(f"Element {ielem}: zero length, cannot build a frame")
                frames[ielem] = default_frame(chord[ielem])
        else:
            frames = self._per_element(frames, nelem, (3, 3), "frames")

        elements = []
        for ielem in range(nelem):
            _check_section_matrix(compliance[ielem], "compliance", ielem)
            _check_section_matrix(mass[ielem], "mass", ielem)
            Cab = frames[ielem]
            if (not np.allclose(Cab.T @ Cab, np.eye(3), atol=FRAME_TOLERANCE)
                    or np.linalg.det(Cab) < 0):
                raise AssemblyError(f"Element {ielem}: frame is not a proper rotation")
            if not np.isfinite(lengths[ielem]) or lengths[ielem] <= 0:
                raise AssemblyError(f"Element {ielem}: length must be positive, "
                                    f"got {lengths[ielem]}")
            elements.append(Element(L=float(lengths[ielem]),
                                    x=self._frozen(midpoints[ielem]),
                                    compliance=self._frozen(compliance[ielem]),
                                    mass=self._frozen(mass[ielem]),
                                    Cab=self._frozen(Cab)))

        self.points = self._frozen(points)
        self.start = self._frozen(start)
        self.stop = self._frozen(stop)
        self.elements = tuple(elements)

        # Point -> [(element, side)] adjacency, in element order
        connections = [[] for _ in range(npoint)]
        for ielem in range(nelem):
            connections[start[ielem]].append((ielem, 0))
            connections[stop[ielem]].append((ielem, 1))
        self.point_connections = tuple(tuple(c) for c in connections)

    @staticmethod
    def _frozen(arr):
        arr = np.array(arr)
        arr.setflags(write=False)
        return arr

    @staticmethod
    def _per_element(value, nelem, shape, name):
        arr = np.array(value, dtype=float)
        if arr.shape == shape:
            return np.broadcast_to(arr, (nelem,) + shape).copy()
        if arr.shape != (nelem,) + shape:
            raise AssemblyError(f"{name} must have shape {shape} or {(nelem,) + shape}, "
                                f"got {arr.shape}")
        return arr

    @property
    def nb_points(self):
        return self.points.shape[0]

    @property
    def nb_elements(self):
        return len(self.elements)

    def point_degree(self, ipoint):
        """Number of element ends attached to a point."""
        return len(self.point_connections[ipoint])

    def element_points(self, ielem):
        return int(self.start[ielem]), int(self.stop[ielem])

    def connectivity_key(self):
        """Hashable description of the connectivity, used to match a System."""
        return (self.nb_points, tuple(self.start.tolist()), tuple(self.stop.tolist()))

    def __repr__(self):
        return f"Assembly({self.nb_points} points, {self.nb_elements} elements)"


def build_assembly(points, element_endpoints, compliance, mass=None, **kwargs):
    """
    Build an Assembly from a list of (start, stop) pairs.

    >>> asm = build_assembly([[0, 0, 0], [1, 0, 0]], [(0, 1)], np.eye(6))
    """
    endpoints = np.array(element_endpoints, dtype=int)
    if endpoints.ndim != 2 or endpoints.shape[1] != 2:
        raise AssemblyError(f"element_endpoints must have shape (nelem, 2), got {endpoints.shape}")
    return Assembly(points, endpoints[:, 0], endpoints[:, 1], compliance, mass=mass, **kwargs)
