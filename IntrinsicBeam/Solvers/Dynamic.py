"""
Dynamic Solver - Implicit Time Marching
=======================================

Time-domain analysis of beam assemblies. The dynamic System adds the element
velocities V, Omega (deformed local frame) to the unknowns, and the residual
contains the state rates xdot. Each step is solved with Newton-Raphson.

Key Concepts:
-------------

**First-order Newmark (gamma) rule** on the whole state vector:

    xdot_{n+1} = (x_{n+1} - x_n) / (gamma dt) - (1 - gamma) / gamma * xdot_n

    - CAA: gamma = 1/2, trapezoidal rule (second order, no numerical damping)
    - BE:  gamma = 1,   backward Euler (first order, strongly damped)

    The Jacobian of a step is dR/dx + 1/(gamma dt) * dR/dxdot.

**Starting a march**:
    Without stored rates (first step from a static state or initial
    velocities) the step is taken with backward Euler, which needs no xdot_n.

**Point velocities**:
    Points carry no velocity unknowns. Their displacement rates are advanced
    with the same gamma rule after each converged step.
"""

import logging
import time
import warnings

import numpy as np

from IntrinsicBeam.Objects.Rotations import closest_branch, complementary_jacobian
from IntrinsicBeam.Solvers.Static import StaticBase, SolverConstants
from IntrinsicBeam.Structures.State import extract_state

logger = logging.getLogger(__name__)


class Dynamic(StaticBase):
    """Nonlinear implicit time-history analysis solver."""

    def __init__(self, dt, num_steps, Meth="CAA", gravity=None,
                 atol=SolverConstants.ABS_TOLERANCE, rtol=SolverConstants.REL_TOLERANCE,
                 max_iter=SolverConstants.MAX_ITERATIONS, filename=None, dir_name=""):
        if not dt > 0:
            raise ValueError(f"Time step must be positive, got {dt}")
        if int(num_steps) < 0:
            raise ValueError(f"Number of steps must be non-negative, got {num_steps}")
        self.dt = float(dt)
        self.num_steps = int(num_steps)
        self.Meth, self.params = Dynamic.ask_method(Meth)
        self.gravity = gravity
        self.atol = atol
        self.rtol = rtol
        self.max_iter = max_iter
        self.filename = filename
        self.dir_name = dir_name

    @staticmethod
    def ask_method(Meth=None):
        """
        Configure the time integration rule.

        Returns: (method_name, parameters_dict)
        """
        params_list = []
        if Meth is None:
            name = "CAA"
        elif isinstance(Meth, str):
            name = Meth
        elif isinstance(Meth, (list, tuple)):
            name = Meth[0]
            params_list = list(Meth[1:])
        else:
            raise TypeError(f"Method must be a name or [name, parameters], got {Meth!r}")

        if name == "CAA":
            return "NWK", {"g": 0.5}
        elif name == "BE":
            return "NWK", {"g": 1.0}
        elif name == "NWK":
            g = float(params_list[0]) if params_list else 0.5
            if not 0.0 < g <= 1.0:
                raise ValueError(f"Newmark gamma must be in (0, 1], got {g}")
            if g < 0.5:
                warnings.warn("Newmark gamma < 0.5 is unstable")
            return "NWK", {"g": g}
        raise ValueError(f"Unknown time integration method {name!r}, use CAA, BE or NWK")

    @staticmethod
    def _follow_branch(before, after, rates):
        """Point rates re-expressed on the rotation branch of ``after``."""
        rates = rates.copy()
        theta = before[:, 3:]
        switched = np.any(closest_branch(theta, after[:, 3:]) != theta, axis=1)
        if switched.any():
            J = complementary_jacobian(theta[switched])
            rates[switched, 3:] = np.einsum("kij,kj->ki", J, rates[switched, 3:])
        return rates

    def step(self, system, assembly, prescribed_conditions, distributed_loads=None):
        """
        Advance ``system`` by one time step.

        On failure the system keeps the last iterate, with ``t`` and ``istep``
        set to the failed step.

        Returns:
            converged (bool)
        """
        dt = self.dt
        g = self.params["g"] if system.has_rates else 1.0
        if not system.has_rates:
            system.xdot = np.zeros(system.nb_states)
            system.point_rates = np.zeros_like(system.point_rates)

        system.apply_conditions(assembly, prescribed_conditions, distributed_loads,
                                t=system.t, gravity=self.gravity)
        # Rotations switch branch only between steps, rates follow the switch
        disp_before = system.point_displacements(assembly)
        system.rescale_rotations()
        disp_prev = system.point_displacements(assembly)
        rates_prev = Dynamic._follow_branch(disp_before, disp_prev, system.point_rates)
        x_prev = system.x.copy()
        xdot_prev = system.xdot.copy()

        t_new = system.t + dt
        system.apply_conditions(assembly, prescribed_conditions, distributed_loads,
                                t=t_new, gravity=self.gravity)

        a = 1.0 / (g * dt)
        b = (1.0 - g) / g

        def rate(x):
            return a * (x - x_prev) - b * xdot_prev

        converged, residuals = StaticBase._newton(system, assembly, self.atol, self.rtol,
                                                  self.max_iter, xdot_scale=a, rate=rate)
        system.t = t_new
        system.istep += 1
        if converged:
            disp_new = system.point_displacements(assembly)
            system.point_rates = a * (disp_new - disp_prev) - b * rates_prev
            system.has_rates = True
            logger.debug("Step %d (t = %g) converged after %d iterations",
                         system.istep, t_new, system.iterations)
        return converged

    def nonlinear(self, assembly, prescribed_conditions, distributed_loads=None, system=None,
                  V0=None, Omega0=None):
        """
        March ``num_steps`` steps from the current system state.

        Args:
            V0, Omega0: Initial element velocities, shape (nelem, 3), local frame.

        Returns:
            (system, history, converged), history is the list of AssemblyState
            of every converged step, starting with the initial state.
        """
        time_start = time.time()
        system = StaticBase._prepare_system(assembly, prescribed_conditions, system, dynamic=True)

        for name, values, offset in (("V0", V0, 12), ("Omega0", Omega0, 15)):
            if values is None:
                continue
            values = np.array(values, dtype=float)
            if values.shape != (system.nb_elements, 3):
                raise ValueError(f"{name} must have shape ({system.nb_elements}, 3), "
                                 f"got {values.shape}")
            for ielem in range(system.nb_elements):
                start = system.element_offsets[ielem] + offset
                system.x[start:start + 3] = values[ielem]
            system.has_rates = False

        system.apply_conditions(assembly, prescribed_conditions, distributed_loads,
                                t=system.t, gravity=self.gravity)
        history = [extract_state(system, assembly)]

        store = {
            'x_conv': np.zeros((system.nb_states, self.num_steps + 1)),
            'Time': np.zeros(self.num_steps + 1),
            'iterations': np.zeros(self.num_steps, dtype=int),
        }
        store['x_conv'][:, 0] = system.x
        store['Time'][0] = system.t

        converged = True
        for i in range(1, self.num_steps + 1):
            converged = self.step(system, assembly, prescribed_conditions, distributed_loads)
            if not converged:
                warnings.warn(f"Method did not converge at step {system.istep} "
                              f"(t = {system.t:g})")
                break
            history.append(extract_state(system, assembly))
            store['x_conv'][:, i] = system.x
            store['Time'][i] = system.t
            store['iterations'][i - 1] = system.iterations

        metadata = {"Method": self.Meth, "gamma": self.params["g"], "dt": self.dt,
                    "Converged": converged}
        StaticBase._export_results(self.filename, self.dir_name, store, metadata,
                                   time.time() - time_start)
        return system, history, converged

    @staticmethod
    def solve_dyn_nonlinear(assembly, dt, prescribed_conditions, distributed_loads=None,
                            num_steps=1, system=None, Meth="CAA", V0=None, Omega0=None,
                            **kwargs):
        """Create a Dynamic solver and run the march."""
        solver = Dynamic(dt, num_steps, Meth=Meth, **kwargs)
        return solver.nonlinear(assembly, prescribed_conditions, distributed_loads, system,
                                V0=V0, Omega0=Omega0)


def solve_time_domain(assembly, dt, prescribed_conditions, distributed_loads=None,
                      num_steps=1, system=None, **kwargs):
    """
    Transient response of ``assembly`` over ``num_steps`` steps of size ``dt``.

    The march starts from the state held by ``system`` (zero when a new system
    is allocated), e.g. a static solution computed on a dynamic System.

    Returns
    -------
    (System, list of AssemblyState, bool)
    """
    return Dynamic.solve_dyn_nonlinear(assembly, dt, prescribed_conditions, distributed_loads,
                                       num_steps=num_steps, system=system, **kwargs)


def advance_time_step(system, assembly, dt, prescribed_conditions, distributed_loads=None,
                      Meth="CAA", **kwargs):
    """
    Single implicit step from ``system.t`` to ``system.t + dt``.

    Returns
    -------
    (System, bool)
    """
    system = StaticBase._prepare_system(assembly, prescribed_conditions, system, dynamic=True)
    solver = Dynamic(dt, 1, Meth=Meth, **kwargs)
    converged = solver.step(system, assembly, prescribed_conditions, distributed_loads)
    if not converged:
        warnings.warn(f"Method did not converge at step {system.istep} (t = {system.t:g})")
    return system, converged
