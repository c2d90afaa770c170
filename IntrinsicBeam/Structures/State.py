"""
Assembly state snapshots extracted from a solved System.

Point fields are global. Element fields are taken at the element midpoint:
u and theta global, F, M, V, Omega, gamma and kappa in the deformed local frame.
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from IntrinsicBeam.Objects.Conditions import evaluate_mapping
from IntrinsicBeam.Objects.Rotations import rotation_matrix, tangent_operator
from IntrinsicBeam.Structures.Residual import element_fields


@dataclass(frozen=True)
class PointState:
    u: np.ndarray
    theta: np.ndarray
    F: np.ndarray
    M: np.ndarray
    V: np.ndarray
    Omega: np.ndarray


@dataclass(frozen=True)
class ElementState:
    u: np.ndarray
    theta: np.ndarray
    F: np.ndarray
    M: np.ndarray
    V: np.ndarray
    Omega: np.ndarray
    gamma: np.ndarray
    kappa: np.ndarray


@dataclass(frozen=True)
class AssemblyState:
    """Immutable snapshot of an assembly at time ``t``."""
    points: Tuple[PointState, ...]
    elements: Tuple[ElementState, ...]
    t: float = 0.0

    def point_field(self, name):
        """Stack a point field into an (npoint, 3) array."""
        return np.array([getattr(p, name) for p in self.points])

    def element_field(self, name):
        """Stack an element field into an (nelem, 3) array."""
        return np.array([getattr(e, name) for e in self.elements])


def _point_loading(system, prescribed_conditions):
    if prescribed_conditions is None:
        return system.point_mask, system.point_value, system.point_follower
    mask = np.zeros_like(system.point_mask)
    value = np.zeros_like(system.point_value)
    follower = np.zeros_like(system.point_follower)
    for p, cond in evaluate_mapping(prescribed_conditions, system.t).items():
        if system.state_points[int(p)]:
            mask[p], value[p], follower[p] = cond.evaluate(system.t)
    return mask, value, follower


def extract_state(system, assembly, prescribed_conditions=None, x=None):
    """
    Build an AssemblyState from the current solution of ``system``.

    Parameters
    ----------
    system : System
    assembly : Assembly
    prescribed_conditions : dict or callable, optional
        Conditions used to interpret the point states. Defaults to the
        conditions of the last solve.
    x : ndarray, optional
        State vector to extract instead of ``system.x``.
    """
    system.check_assembly(assembly)
    x = system.x if x is None else np.asarray(x)
    fs = system.force_scaling
    mask, value, follower = _point_loading(system, prescribed_conditions)
    disp = system.point_displacements(assembly, x, mask, value)

    points = []
    for p in range(system.nb_points):
        u, theta = disp[p, :3], disp[p, 3:]
        F = np.zeros(3)
        M = np.zeros(3)
        if system.state_points[p]:
            R = rotation_matrix(theta)
            applied = value[p] + np.concatenate((R @ follower[p, :3], R @ follower[p, 3:]))
            loads = np.where(mask[p], fs * x[system.point_slice(p)], applied)
            F, M = loads[:3], loads[3:]
        rates = system.point_rates[p]
        Omega = rotation_matrix(theta) @ tangent_operator(theta) @ rates[3:]
        points.append(PointState(u=u.copy(), theta=theta.copy(), F=F.copy(), M=M.copy(),
                                 V=rates[:3].copy(), Omega=Omega))

    elements = []
    for ielem, element in enumerate(assembly.elements):
        xe = x[system.element_slice(ielem)]
        fields = element_fields(element, xe, fs)
        if system.dynamic:
            V, Omega = xe[12:15].copy(), xe[15:18].copy()
        else:
            V, Omega = np.zeros(3), np.zeros(3)
        elements.append(ElementState(u=fields["u"].copy(), theta=fields["theta"].copy(),
                                     F=fields["F"], M=fields["M"], V=V, Omega=Omega,
                                     gamma=fields["gamma"], kappa=fields["kappa"]))

    return AssemblyState(points=tuple(points), elements=tuple(elements), t=system.t)
