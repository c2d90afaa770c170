"""
Tests for the implicit time-domain solver.

Tests cover:
- Method selection (trapezoidal, backward Euler, Newmark gamma)
- Rest state and static equilibrium as fixed points
- Free vibration of a cantilever released from a static deflection
- Initial velocities and time-dependent loads
- Step failure bookkeeping and result export
- Point rates carried across a rotation branch switch
"""
import os

import h5py
import numpy as np
import pytest

from conftest import EI, clamp, make_cantilever
from IntrinsicBeam.Objects.Conditions import PrescribedConditions
from IntrinsicBeam.Objects.Rotations import complementary_jacobian, complementary_parameters
from IntrinsicBeam.Solvers.Dynamic import Dynamic, advance_time_step, solve_time_domain
from IntrinsicBeam.Solvers.Static import solve_static
from IntrinsicBeam.Structures.State import extract_state
from IntrinsicBeam.Structures.System import System

# First bending frequency of a clamped-free beam, unit length and mass
OMEGA_1 = 1.8751 ** 2 * np.sqrt(EI)


@pytest.fixture
def dyn_cantilever(compliance, mass):
    return make_cantilever(10, compliance, mass=mass)


@pytest.mark.unit
class TestAskMethod:
    """Tests for Dynamic.ask_method."""

    def test_default_is_trapezoidal(self):
        assert Dynamic.ask_method() == ("NWK", {"g": 0.5})
        assert Dynamic.ask_method("CAA") == ("NWK", {"g": 0.5})

    def test_backward_euler(self):
        assert Dynamic.ask_method("BE") == ("NWK", {"g": 1.0})

    def test_newmark_gamma(self):
        assert Dynamic.ask_method(["NWK", 0.7]) == ("NWK", {"g": 0.7})

    def test_unstable_gamma_warns(self):
        with pytest.warns(UserWarning, match="unstable"):
            Dynamic.ask_method(["NWK", 0.3])

    def test_unknown_method(self):
        with pytest.raises(ValueError, match="Unknown"):
            Dynamic.ask_method("RK4")

    def test_invalid_time_step(self):
        with pytest.raises(ValueError):
            Dynamic(dt=0.0, num_steps=10)


@pytest.mark.integration
@pytest.mark.solver
class TestTimeMarching:
    """Tests for solve_time_domain."""

    def test_rest_state_stays_at_rest(self, dyn_cantilever):
        system, history, converged = solve_time_domain(dyn_cantilever, 0.01, {0: clamp()},
                                                       num_steps=5)
        assert converged
        assert len(history) == 6
        assert system.istep == 5
        assert system.t == pytest.approx(0.05)
        assert np.allclose(system.x, 0.0)
        assert [s.t for s in history] == pytest.approx([0.0, 0.01, 0.02, 0.03, 0.04, 0.05])

    def test_static_state_is_fixed_point(self, dyn_cantilever):
        """Test that a static equilibrium does not move under constant load."""
        pc = {0: clamp(), 10: PrescribedConditions(Fz=10.0, Mx=2.0)}
        system = System(dyn_cantilever, kept_points=[0, 10], dynamic=True)
        system, _ = solve_static(dyn_cantilever, pc, system=system)
        u_static = extract_state(system, dyn_cantilever).points[10].u

        system, history, converged = solve_time_domain(dyn_cantilever, 0.005, pc,
                                                       num_steps=4, system=system)
        assert converged
        for state in history:
            assert np.allclose(state.points[10].u, u_static, atol=1e-9)
            assert np.allclose(state.element_field("V"), 0.0, atol=1e-8)

    def test_free_vibration_half_period(self, dyn_cantilever):
        """Test that the tip swings to the opposite side after half a period."""
        P = 0.3
        system = System(dyn_cantilever, kept_points=[0, 10], dynamic=True)
        system, _ = solve_static(dyn_cantilever, {0: clamp(), 10: PrescribedConditions(Fz=P)},
                                 system=system)
        w0 = extract_state(system, dyn_cantilever).points[10].u[2]
        assert w0 == pytest.approx(P / (3 * EI), rel=1e-2)

        period = 2 * np.pi / OMEGA_1
        system, history, converged = solve_time_domain(
            dyn_cantilever, period / 100, {0: clamp(), 10: PrescribedConditions()},
            num_steps=50, system=system)
        assert converged
        tip = np.array([s.points[10].u[2] for s in history])
        assert tip[0] == pytest.approx(w0)
        assert tip[-1] < -0.8 * w0
        assert np.max(np.abs(tip)) < 1.1 * w0

    def test_backward_euler_damps(self, dyn_cantilever):
        """Test that backward Euler loses amplitude compared to the trapezoidal rule."""
        pc0 = {0: clamp(), 10: PrescribedConditions(Fz=0.3)}
        free = {0: clamp(), 10: PrescribedConditions()}
        dt = 2 * np.pi / OMEGA_1 / 20
        peaks = {}
        for meth in ("CAA", "BE"):
            system = System(dyn_cantilever, kept_points=[0, 10], dynamic=True)
            system, _ = solve_static(dyn_cantilever, pc0, system=system)
            system, history, _ = solve_time_domain(dyn_cantilever, dt, free, num_steps=40,
                                                   system=system, Meth=meth)
            peaks[meth] = np.max(np.abs([s.points[10].u[2] for s in history[20:]]))
        assert peaks["BE"] < peaks["CAA"]

    def test_initial_velocity(self, dyn_cantilever):
        """Test that an initial transverse velocity moves the beam."""
        V0 = np.zeros((10, 3))
        V0[:, 2] = 0.1 * np.linspace(0.05, 0.95, 10)
        system, history, converged = solve_time_domain(dyn_cantilever, 1e-3, {0: clamp()},
                                                       num_steps=2, V0=V0)
        assert converged
        assert np.allclose(history[0].element_field("V"), V0)
        assert history[1].elements[-1].u[2] > 0.0
        assert history[2].elements[-1].u[2] > history[1].elements[-1].u[2]

    def test_time_dependent_load(self, dyn_cantilever):
        def conditions(t):
            return {0: clamp(), 10: PrescribedConditions(Fz=100.0 * t)}
        _, history, converged = solve_time_domain(dyn_cantilever, 0.01, conditions,
                                                  num_steps=3)
        assert converged
        for state in history:
            assert state.points[10].F[2] == pytest.approx(100.0 * state.t)
        assert history[-1].points[10].u[2] > 0.0

    def test_point_velocities(self, dyn_cantilever):
        """Test that point rates follow the displacement history."""
        pc = {0: clamp(), 10: PrescribedConditions(Fz=5.0)}
        system, history, _ = solve_time_domain(dyn_cantilever, 1e-3, pc, num_steps=3,
                                               Meth="BE")
        u = [s.points[10].u for s in history]
        assert np.allclose(history[-1].points[10].V, (u[-1] - u[-2]) / 1e-3)
        assert np.allclose(history[-1].points[0].V, 0.0)

    def test_static_system_rejected(self, dyn_cantilever):
        with pytest.raises(ValueError, match="dynamic=True"):
            solve_time_domain(dyn_cantilever, 0.01, {0: clamp()}, system=System(dyn_cantilever))

    def test_initial_velocity_shape(self, dyn_cantilever):
        with pytest.raises(ValueError, match="V0"):
            solve_time_domain(dyn_cantilever, 0.01, {0: clamp()}, V0=np.zeros((3, 3)))

    def test_failed_step(self, dyn_cantilever):
        """Test that a failed step stops the march at the failed time."""
        pc = {0: clamp(), 10: PrescribedConditions(Fz=10.0)}
        with pytest.warns(UserWarning, match="did not converge"):
            system, history, converged = solve_time_domain(dyn_cantilever, 0.01, pc,
                                                           num_steps=5, max_iter=0)
        assert not converged
        assert len(history) == 1
        assert system.istep == 1
        assert system.t == pytest.approx(0.01)

    def test_export(self, dyn_cantilever, tmp_path):
        solve_time_domain(dyn_cantilever, 0.01, {0: clamp()}, num_steps=3, filename="march",
                          dir_name=str(tmp_path))
        path = os.path.join(str(tmp_path), "march.h5")
        with h5py.File(path, "r") as hf:
            assert np.allclose(hf["Time"][:], [0.0, 0.01, 0.02, 0.03])
            assert hf.attrs["Method"] == "NWK"
            assert hf.attrs["gamma"] == 0.5


@pytest.mark.unit
@pytest.mark.solver
class TestAdvanceTimeStep:
    """Tests for single steps."""

    def test_single_step(self, dyn_cantilever):
        system = System(dyn_cantilever, kept_points=[0, 10], dynamic=True)
        pc = {0: clamp(), 10: PrescribedConditions(Fz=1.0)}
        system, converged = advance_time_step(system, dyn_cantilever, 1e-3, pc)
        assert converged
        assert system.t == pytest.approx(1e-3)
        assert system.istep == 1
        assert system.has_rates

    def test_method_on_system(self, dyn_cantilever):
        """Test the System convenience method."""
        system = System(dyn_cantilever, kept_points=[0, 10], dynamic=True)
        pc = {0: clamp(), 10: PrescribedConditions(Fz=1.0)}
        for _ in range(3):
            system, converged = system.advance_time_step(dyn_cantilever, 1e-3, pc)
            assert converged
        assert system.istep == 3
        assert system.t == pytest.approx(3e-3)

    def test_static_solve_clears_rates(self, dyn_cantilever):
        system = System(dyn_cantilever, kept_points=[0, 10], dynamic=True)
        pc = {0: clamp(), 10: PrescribedConditions(Fz=1.0)}
        system, _ = advance_time_step(system, dyn_cantilever, 1e-3, pc)
        system, _ = solve_static(dyn_cantilever, pc, system=system)
        assert not system.has_rates
        assert np.allclose(system.point_rates, 0.0)


@pytest.mark.unit
class TestRotationBranch:
    """Rates across a switch to the complementary rotation parameters."""

    def test_point_rates_follow_branch(self):
        c = np.array([0.0, 0.0, 4.5])
        before = np.zeros((2, 6))
        before[1, 3:] = c
        after = before.copy()
        after[1, 3:] = complementary_parameters(c)
        rates = np.ones((2, 6))
        out = Dynamic._follow_branch(before, after, rates)
        assert np.allclose(out[0], 1.0)
        assert np.allclose(out[1, :3], 1.0)
        assert np.allclose(out[1, 3:], complementary_jacobian(c) @ np.ones(3))
        assert np.allclose(rates, 1.0)

    def test_step_keeps_physical_rates(self, dyn_cantilever):
        """Test that switching the tip element branch leaves the next step unchanged."""
        pc = {0: clamp(), 10: PrescribedConditions(Fz=1.0)}
        system, _ = advance_time_step(None, dyn_cantilever, 1e-3, pc)
        reference, _ = advance_time_step(system.copy(), dyn_cantilever, 1e-3, pc)

        # Same rotation and angular rate, expressed with complementary parameters
        elem = system.element_slice(9)
        rot = slice(elem.start + 3, elem.start + 6)
        c = system.x[rot].copy()
        system.x[rot] = complementary_parameters(c)
        system.xdot[rot] = complementary_jacobian(c) @ system.xdot[rot]
        switched, _ = advance_time_step(system, dyn_cantilever, 1e-3, pc)

        a = extract_state(reference, dyn_cantilever)
        b = extract_state(switched, dyn_cantilever)
        assert np.allclose(b.points[10].u, a.points[10].u, atol=1e-9)
        assert np.allclose(b.points[10].theta, a.points[10].theta, atol=1e-9)
        assert np.allclose(switched.point_rates, reference.point_rates, atol=1e-6)
