"""
Static Solvers - Linear and Nonlinear Equilibrium
=================================================

This module provides solvers for the static equilibrium of beam assemblies:

1. **StaticLinear**: One Newton step about a linearization state
2. **StaticNonLinear**: Newton-Raphson on the full intrinsic equations, with
   optional load stepping (force control)

Key Concepts:
-------------

**Mixed (intrinsic) unknowns**:
    Every element carries its midpoint displacement u, rotation parameters
    theta and internal force/moment F, M. Points carry either their
    displacement (load prescribed) or their reaction (displacement prescribed).
    The residual R(x) gathers

    - element end compatibility:   u_end - u_point = 0
    - point equilibrium:           sum(f_end) - F_ext = 0

**Newton-Raphson (StaticNonLinear.solve)**:
    At each iteration:
    1. Compute residual: R = R(x)
    2. Compute tangent: K = dR/dx  (complex-step, exact to machine precision)
    3. Solve increment: K * dx = -R   (sparse LU)
    4. Update: x = x + dx
    5. Check convergence: ||R||_inf <= max(atol, rtol * ||R_0||_inf)

**Linear Analysis (StaticLinear.solve)**:
    A single step from the linearization state x_0 (zero by default):
    x = x_0 - K(x_0)^-1 R(x_0)

**Force Control (StaticNonLinear.solve_forcecontrol)**:
    Loads and prescribed displacements are ramped by a load factor lambda,
    each increment warm-started from the previous converged state.
"""

import logging
import os
import time
import warnings

import h5py
import numpy as np
import scipy.sparse.linalg as spla  # Sparse Linear Algebra

from IntrinsicBeam.Objects.Conditions import evaluate_mapping
from IntrinsicBeam.Solvers.Solver import Solver
from IntrinsicBeam.Structures.System import System

logger = logging.getLogger(__name__)


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class SingularSystemError(RuntimeError):
    """Raised when the Jacobian is singular and cannot be factorized.

    This typically indicates:
    - Insufficient boundary conditions (rigid body modes)
    - A point or element left without any constraint
    - Zero stiffness in some direction at the linearization state
    """
    pass


# =============================================================================
# SOLVER CONSTANTS
# =============================================================================

class SolverConstants:
    """Global constants for the Newton-Raphson iterations.

    These can be overridden by passing explicit values to solver methods.
    """
    ABS_TOLERANCE = 1e-9     # Absolute tolerance on the scaled residual (inf-norm)
    REL_TOLERANCE = 1e-12    # Tolerance relative to the first residual
    MAX_ITERATIONS = 20      # Max Newton-Raphson iterations per solve/step


# =============================================================================
# BASE SOLVER CLASS
# =============================================================================

class StaticBase(Solver):
    """
    Base class containing shared utilities for the static, time-domain and
    eigen solvers.

    Provides helper methods for:
    - System allocation from a load case
    - Sparse factorization with singularity detection
    - The Newton-Raphson loop
    - Results export to HDF5
    """

    @staticmethod
    def _parse_load_steps(steps):
        """Parse load steps into load factors."""
        if isinstance(steps, (list, tuple, np.ndarray)):
            lam = [float(s) for s in steps]
            if len(lam) < 2:
                raise ValueError("A list of load factors needs at least two entries")
            nb_steps = len(lam) - 1
        elif isinstance(steps, int):
            if steps < 1:
                raise ValueError(f"Number of steps must be positive, got {steps}")
            nb_steps = steps
            lam = np.linspace(0, 1, nb_steps + 1).tolist()
        else:
            raise TypeError("Steps must be either a list or an int (number of steps)")
        return nb_steps, lam

    @staticmethod
    def _initialize_storage(nb_states, nb_steps):
        """Initialize arrays for storing convergence history."""
        return {
            'x_conv': np.zeros((nb_states, nb_steps + 1), dtype=float),
            'LoadFactor_conv': np.zeros(nb_steps + 1, dtype=float),
            'iterations': np.zeros(nb_steps, dtype=int),
            'residuals': np.zeros(nb_steps, dtype=float),
        }

    @staticmethod
    def _prepare_system(assembly, prescribed_conditions, system=None, dynamic=False):
        """Allocate a system keeping the loaded points, or validate a given one."""
        if system is None:
            kept = list(evaluate_mapping(prescribed_conditions, 0.0).keys())
            return System(assembly, kept_points=kept, dynamic=dynamic)
        system.check_assembly(assembly)
        if dynamic and not system.dynamic:
            raise ValueError("This analysis needs a System allocated with dynamic=True")
        return system

    @staticmethod
    def _factorize(K):
        """Sparse LU factorization of K, SingularSystemError if it fails."""
        try:
            return spla.splu(K.tocsc())
        except RuntimeError as err:
            raise SingularSystemError(f"Jacobian is singular: {err}") from err

    @staticmethod
    def _linear_solve(K, rhs):
        dx = StaticBase._factorize(K).solve(rhs)
        if not np.all(np.isfinite(dx)):
            raise SingularSystemError("Jacobian solve produced non-finite values")
        return dx

    @staticmethod
    def _newton(system, assembly, atol=SolverConstants.ABS_TOLERANCE,
                rtol=SolverConstants.REL_TOLERANCE, max_iter=SolverConstants.MAX_ITERATIONS,
                xdot_scale=0.0, rate=None):
        """
        Newton-Raphson loop on the loading stored in ``system``.

        ``rate`` maps x to xdot for implicit time steps; the Jacobian then
        includes ``xdot_scale * dR/dxdot``. Without it, rotations past a half
        turn are switched to their complementary parameters after each update.
        The last iterate is kept whether or not the loop converged.

        Returns
        -------
        converged : bool
        residuals : list of float
            Residual inf-norm at each iterate.
        """
        if rate is not None:
            system.xdot = rate(system.x)
        R = system.get_R(assembly)
        res = float(np.max(np.abs(R))) if R.size else 0.0
        tol = max(atol, rtol * res)
        residuals = [res]
        converged = res <= tol
        iteration = 0

        while not converged and iteration < max_iter:
            K = system.get_K(assembly, xdot_scale)
            try:
                dx = StaticBase._linear_solve(K, -system.R)
            except SingularSystemError:
                if iteration == 0:
                    raise
                warnings.warn(f"Singular Jacobian at iteration {iteration}, stopping")
                break

            system.x = system.x + dx
            iteration += 1
            if rate is None:
                system.rescale_rotations()
            else:
                system.xdot = rate(system.x)
            R = system.get_R(assembly)
            res = float(np.max(np.abs(R)))
            residuals.append(res)
            logger.debug("Iteration %d: residual %.3e", iteration, res)

            if not np.isfinite(res):
                break
            converged = res <= tol

        system.converged = converged
        system.iterations = iteration
        return converged, residuals

    @staticmethod
    def _export_results(filepath, dir_name, storage, metadata, total_time):
        """Export results to HDF5 file."""
        hours, rem = divmod(total_time, 3600)
        minutes, seconds = divmod(rem, 60)
        logger.info("Simulation done in %dh %dm %.2fs.", int(hours), int(minutes), seconds)
        if not filepath:
            return None

        # Handle extension
        if not filepath.endswith('.h5'):
            filepath += ".h5"

        if dir_name:
            os.makedirs(dir_name, exist_ok=True)
        full_path = os.path.join(dir_name, filepath)

        with h5py.File(full_path, "w") as hf:
            for key, val in storage.items():
                hf.create_dataset(key, data=val)
            hf.attrs["Simulation_Time"] = total_time
            for k, v in metadata.items():
                # HDF5 doesn't support None or complex objects in attrs easily
                if v is not None:
                    try:
                        hf.attrs[k] = v
                    except TypeError:
                        hf.attrs[k] = str(v)
        logger.info("Results saved to: %s", full_path)
        return full_path


class StaticLinear(StaticBase):
    """
    Solver for linearized static equilibrium (one-shot resolution).
    """

    @staticmethod
    def solve(assembly, prescribed_conditions, distributed_loads=None, system=None,
              linearization_state=None, gravity=None, t=0.0, filename=None, dir_name=""):
        """
        Solve K(x_0) dx = -R(x_0) once.

        Args:
            linearization_state: State vector x_0 (zeros if None).

        Returns:
            (system, converged), converged is always True on return.
        """
        time_start = time.time()
        system = StaticBase._prepare_system(assembly, prescribed_conditions, system)
        system.apply_conditions(assembly, prescribed_conditions, distributed_loads, t=t,
                                gravity=gravity)
        system.t = t
        system.has_rates = False
        system.point_rates[:] = 0.0

        if linearization_state is None:
            x0 = np.zeros(system.nb_states)
        else:
            x0 = np.array(linearization_state, dtype=float)
            if x0.shape != (system.nb_states,):
                raise ValueError(f"Linearization state must have shape ({system.nb_states},), "
                                 f"got {x0.shape}")
        system.x = x0.copy()
        system.xdot = np.zeros(system.nb_states)
        system.get_K(assembly)
        system.x = x0 + StaticBase._linear_solve(system.K, -system.R)
        system.converged = True
        system.iterations = 1

        storage = {'x_conv': system.x.copy()}
        StaticBase._export_results(filename, dir_name, storage, {"Linear": True},
                                   time.time() - time_start)
        return system, True


class StaticNonLinear(StaticBase):
    """
    Solver for nonlinear static equilibrium (Newton-Raphson).
    """

    @staticmethod
    def solve(assembly, prescribed_conditions, distributed_loads=None, system=None,
              gravity=None, t=0.0, atol=SolverConstants.ABS_TOLERANCE,
              rtol=SolverConstants.REL_TOLERANCE, max_iter=SolverConstants.MAX_ITERATIONS,
              filename=None, dir_name=""):
        """
        Newton-Raphson from the current system state (warm start).

        Returns:
            (system, converged)
        """
        time_start = time.time()
        system = StaticBase._prepare_system(assembly, prescribed_conditions, system)
        system.apply_conditions(assembly, prescribed_conditions, distributed_loads, t=t,
                                gravity=gravity)
        system.t = t
        system.has_rates = False
        system.point_rates[:] = 0.0
        if system.dynamic:
            system.xdot = np.zeros(system.nb_states)

        converged, residuals = StaticBase._newton(system, assembly, atol, rtol, max_iter)
        if converged:
            logger.info("Static solve converged after %d iterations", system.iterations)
        else:
            warnings.warn(f"Static solve did not converge after {system.iterations} "
                          f"iterations (residual {residuals[-1]:.3e})")

        storage = {'x_conv': system.x.copy(), 'residuals': np.array(residuals)}
        metadata = {"Tolerance": atol, "Converged": converged}
        StaticBase._export_results(filename, dir_name, storage, metadata,
                                   time.time() - time_start)
        return system, converged

    @staticmethod
    def solve_forcecontrol(assembly, prescribed_conditions, distributed_loads=None, steps=10,
                           system=None, gravity=None, atol=SolverConstants.ABS_TOLERANCE,
                           rtol=SolverConstants.REL_TOLERANCE,
                           max_iter=SolverConstants.MAX_ITERATIONS,
                           filename=None, dir_name=""):
        """
        Nonlinear force control: ramp the whole load case by the load factors.

        Args:
            steps: Number of equal increments, or the list of load factors.

        Returns:
            (system, converged) where converged refers to the last attempted step.
        """
        time_start = time.time()
        nb_steps, lam = StaticBase._parse_load_steps(steps)
        system = StaticBase._prepare_system(assembly, prescribed_conditions, system)
        store = StaticBase._initialize_storage(system.nb_states, nb_steps)
        store['x_conv'][:, 0] = system.x.copy()
        store['LoadFactor_conv'][0] = lam[0]
        system.has_rates = False
        system.point_rates[:] = 0.0
        if system.dynamic:
            system.xdot = np.zeros(system.nb_states)

        converged = True
        for i in range(1, nb_steps + 1):
            system.apply_conditions(assembly, prescribed_conditions, distributed_loads,
                                    gravity=gravity, load_factor=lam[i])
            converged, residuals = StaticBase._newton(system, assembly, atol, rtol, max_iter)

            if converged:
                store['residuals'][i - 1] = residuals[-1]
                store['iterations'][i - 1] = system.iterations
                store['x_conv'][:, i] = system.x.copy()
                store['LoadFactor_conv'][i] = lam[i]
                logger.info("Step %d converged after %d iterations", i, system.iterations)
            else:
                warnings.warn(f"Method did not converge at step {i} (load factor {lam[i]})")
                break

        metadata = {"Tolerance": atol, "Steps": nb_steps, "Converged": converged}
        StaticBase._export_results(filename, dir_name, store, metadata, time.time() - time_start)
        return system, converged


def solve_static(assembly, prescribed_conditions, distributed_loads=None, linear=False,
                 system=None, **kwargs):
    """
    Static equilibrium of ``assembly``.

    Parameters
    ----------
    assembly : Assembly
    prescribed_conditions : dict or callable
        ``{point: PrescribedConditions}``.
    distributed_loads : dict or callable, optional
        ``{element: DistributedLoads}``.
    linear : bool
        Single step about the linearization state instead of full Newton.
    system : System, optional
        Reused (warm start) when given.
    **kwargs
        Forwarded to StaticLinear.solve or StaticNonLinear.solve.

    Returns
    -------
    (System, bool)
    """
    if linear:
        return StaticLinear.solve(assembly, prescribed_conditions, distributed_loads,
                                  system=system, **kwargs)
    return StaticNonLinear.solve(assembly, prescribed_conditions, distributed_loads,
                                 system=system, **kwargs)
