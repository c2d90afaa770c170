"""
Tests for the System: state layout, loading and Jacobians.

Tests cover:
- State counts with kept, eliminated and isolated points
- Force scaling
- Load case validation
- Complex-step Jacobians against finite differences
- Sparse pattern reuse and state snapshots
- Rotation parameters switched past a half turn
"""
import numpy as np
import pytest

from conftest import clamp, make_cantilever
from IntrinsicBeam.Objects.Assembly import Assembly
from IntrinsicBeam.Objects.Conditions import DistributedLoads, PrescribedConditions
from IntrinsicBeam.Objects.Rotations import (
    complementary_jacobian,
    complementary_parameters,
    rotation_matrix,
)
from IntrinsicBeam.Structures.System import System, allocate_system, default_force_scaling


def finite_difference_jacobian(system, assembly, wrt="x", h=1e-7):
    """Central-difference Jacobian of get_R with respect to x or xdot."""
    n = system.nb_states
    J = np.zeros((n, n))
    base = getattr(system, wrt).copy()
    for j in range(n):
        vec = base.copy()
        vec[j] += h
        setattr(system, wrt, vec)
        r_plus = system.get_R(assembly).copy()
        vec[j] -= 2 * h
        setattr(system, wrt, vec)
        r_minus = system.get_R(assembly).copy()
        J[:, j] = (r_plus - r_minus) / (2 * h)
    setattr(system, wrt, base)
    return J


@pytest.mark.unit
class TestLayout:
    """Tests for state allocation."""

    def test_all_points_kept(self, compliance):
        asm = make_cantilever(4, compliance)
        system = System(asm)
        assert system.nb_states == 5 * 6 + 4 * 12

    def test_interior_points_eliminated(self, compliance):
        """Test that degree-2 points not kept carry no states."""
        asm = make_cantilever(4, compliance)
        system = System(asm, kept_points=[0, 4])
        assert system.nb_states == 2 * 6 + 4 * 12
        assert system.state_points.tolist() == [True, False, False, False, True]
        assert set(system.end_partner) == {1, 2, 3}

    def test_dynamic_states(self, compliance):
        asm = make_cantilever(4, compliance)
        system = allocate_system(asm, dynamic=True)
        assert system.nb_element_states == 18
        assert system.nb_states == 5 * 6 + 4 * 18

    def test_junction_always_has_states(self, t_frame):
        """Test that points of degree 1 and 3 keep states even if not listed."""
        system = System(t_frame, kept_points=[])
        assert system.state_points.tolist() == [True, True, True, True]

    def test_isolated_point_has_no_states(self, compliance):
        asm = Assembly([[0, 0, 0], [1, 0, 0], [4, 4, 4]], [0], [1], compliance)
        system = System(asm)
        assert not system.state_points[2]
        assert system.nb_states == 2 * 6 + 12

    def test_allocation_order(self, compliance):
        """Test start point, element, stop point ordering."""
        asm = make_cantilever(2, compliance)
        system = System(asm)
        assert system.point_offsets.tolist() == [0, 18, 36]
        assert system.element_offsets.tolist() == [6, 24]

    def test_kept_point_out_of_range(self, compliance):
        with pytest.raises(ValueError, match="outside"):
            System(make_cantilever(2, compliance), kept_points=[5])

    def test_not_an_assembly(self):
        with pytest.raises(TypeError):
            System("beam")


@pytest.mark.unit
class TestForceScaling:
    """Tests for default_force_scaling."""

    def test_power_of_two(self, steel_section):
        asm = Assembly([[0, 0, 0], [1, 0, 0]], [0], [1], steel_section.compliance())
        fs = default_force_scaling(asm)
        assert fs > 0
        assert np.log2(fs) == pytest.approx(round(np.log2(fs)))

    def test_unit_section(self, cantilever):
        """Test the scaling of the reference section (mean compliance ~ 1e-2)."""
        assert default_force_scaling(cantilever) == 1.0

    def test_explicit_scaling(self, cantilever):
        assert System(cantilever, force_scaling=8.0).force_scaling == 8.0

    def test_invalid_scaling(self, cantilever):
        with pytest.raises(ValueError):
            System(cantilever, force_scaling=0.0)


@pytest.mark.unit
class TestApplyConditions:
    """Tests for System.apply_conditions."""

    def test_values_and_load_factor(self, cantilever):
        system = System(cantilever)
        pc = {0: clamp(), 10: PrescribedConditions(Fz=4.0, Mx_follower=2.0)}
        system.apply_conditions(cantilever, pc, load_factor=0.5)
        assert system.point_mask[0].all()
        assert system.point_value[10, 2] == pytest.approx(2.0)
        assert system.point_follower[10, 3] == pytest.approx(1.0)

    def test_distributed_loads_stored(self, cantilever):
        system = System(cantilever)
        system.apply_conditions(cantilever, {0: clamp()}, {3: DistributedLoads(fz=1.0)})
        assert np.allclose(system.element_loads[3, :2, 2], 0.05)
        assert np.allclose(system.element_loads[4], 0.0)

    def test_condition_on_eliminated_point(self, cantilever):
        system = System(cantilever, kept_points=[0, 10])
        with pytest.raises(ValueError, match="kept_points"):
            system.apply_conditions(cantilever, {5: PrescribedConditions(Fz=1.0)})

    def test_condition_on_isolated_point_warns(self, compliance):
        asm = Assembly([[0, 0, 0], [1, 0, 0], [4, 4, 4]], [0], [1], compliance)
        system = System(asm)
        with pytest.warns(UserWarning, match="not connected"):
            system.apply_conditions(asm, {2: PrescribedConditions(Fx=1.0)})
        assert not system.point_mask[2].any()

    def test_point_out_of_range(self, cantilever):
        with pytest.raises(ValueError, match="outside"):
            System(cantilever).apply_conditions(cantilever, {42: clamp()})

    def test_wrong_condition_type(self, cantilever):
        with pytest.raises(TypeError):
            System(cantilever).apply_conditions(cantilever, {0: {"ux": 0.0}})

    def test_bad_gravity(self, cantilever):
        with pytest.raises(ValueError, match="Gravity"):
            System(cantilever).apply_conditions(cantilever, {0: clamp()}, gravity=[0, 9.81])

    def test_different_connectivity(self, cantilever, compliance):
        system = System(cantilever)
        with pytest.raises(ValueError, match="different assembly"):
            system.apply_conditions(make_cantilever(3, compliance), {0: clamp()})


@pytest.fixture
def loaded_static(compliance):
    """Static cantilever with dead, follower and distributed loads at a random state."""
    asm = make_cantilever(3, compliance)
    system = System(asm, kept_points=[0, 3])
    pc = {0: clamp(), 3: PrescribedConditions(Fz=2.0, My=0.5, Fy_follower=1.0, Mz_follower=0.3)}
    dl = {1: DistributedLoads(fy=lambda s: 1.0 + s, mz_follower=0.2),
          2: DistributedLoads(fx=0.5, frame="local")}
    system.apply_conditions(asm, pc, dl)
    rng = np.random.default_rng(42)
    system.x = 0.05 * rng.standard_normal(system.nb_states)
    return asm, system


@pytest.fixture
def loaded_dynamic(compliance, mass):
    """Dynamic cantilever with gravity at a random state and rate."""
    asm = make_cantilever(2, compliance, mass=mass)
    system = System(asm, dynamic=True)
    system.apply_conditions(asm, {0: clamp(), 2: PrescribedConditions(Fx_follower=1.0)},
                            gravity=[0.0, 0.0, -9.81])
    rng = np.random.default_rng(7)
    system.x = 0.05 * rng.standard_normal(system.nb_states)
    system.xdot = 0.05 * rng.standard_normal(system.nb_states)
    return asm, system


@pytest.mark.unit
class TestResidualAndJacobian:
    """Tests for get_R, get_K and get_M."""

    def test_zero_state_zero_residual(self, cantilever):
        """Test that the unloaded reference state is an equilibrium."""
        system = System(cantilever)
        system.apply_conditions(cantilever, {0: clamp()})
        assert np.allclose(system.get_R(cantilever), 0.0, atol=1e-15)

    def test_static_jacobian_matches_finite_differences(self, loaded_static):
        asm, system = loaded_static
        K = system.get_K(asm).toarray()
        J = finite_difference_jacobian(system, asm)
        assert np.allclose(K, J, rtol=1e-5, atol=1e-6)

    def test_dynamic_jacobians_match_finite_differences(self, loaded_dynamic):
        asm, system = loaded_dynamic
        K = system.get_K(asm).toarray()
        M = system.get_M(asm).toarray()
        assert np.allclose(K, finite_difference_jacobian(system, asm, "x"), rtol=1e-5, atol=1e-6)
        assert np.allclose(M, finite_difference_jacobian(system, asm, "xdot"),
                           rtol=1e-5, atol=1e-6)

    def test_combined_jacobian(self, loaded_dynamic):
        """Test dR/dx + a dR/dxdot."""
        asm, system = loaded_dynamic
        K0 = system.get_K(asm).toarray()
        Ka = system.get_K(asm, xdot_scale=50.0).toarray()
        M = system.get_M(asm).toarray()
        assert np.allclose(Ka - K0, 50.0 * M, atol=1e-9)

    def test_get_k_refreshes_residual(self, loaded_static):
        asm, system = loaded_static
        system.get_K(asm)
        R_from_k = system.R.copy()
        assert np.allclose(R_from_k, system.get_R(asm), atol=1e-14)

    def test_pattern_reused(self, loaded_static):
        """Test that K keeps its sparsity pattern between evaluations."""
        asm, system = loaded_static
        K1 = system.get_K(asm)
        indices = K1.indices.copy()
        first = K1.toarray()
        system.x = system.x * 2.0
        K2 = system.get_K(asm)
        assert K2 is K1
        assert np.array_equal(K2.indices, indices)
        assert not np.allclose(K2.toarray(), first)

    def test_residual_does_not_modify_state(self, loaded_static):
        asm, system = loaded_static
        x = system.x.copy()
        system.get_R(asm)
        system.get_K(asm)
        assert np.array_equal(system.x, x)


@pytest.mark.unit
class TestStateManagement:
    """Tests for snapshots and point displacements."""

    def test_capture_restore(self, loaded_dynamic):
        asm, system = loaded_dynamic
        snap = system.capture()
        x = system.x.copy()
        system.x[:] = 1.0
        system.t = 3.0
        system.restore(snap)
        assert np.array_equal(system.x, x)
        assert system.t == 0.0

    def test_reset_state(self, loaded_dynamic):
        _, system = loaded_dynamic
        system.t = 1.0
        system.has_rates = True
        system.reset_state()
        assert not system.x.any() and not system.xdot.any()
        assert system.t == 0.0 and not system.has_rates

    def test_copy_is_independent(self, loaded_static):
        _, system = loaded_static
        other = system.copy()
        other.x[:] = 0.0
        assert system.x.any()

    def test_eliminated_point_displacement(self, loaded_static):
        """Test that eliminated points take their first element end values."""
        asm, system = loaded_static
        disp = system.point_displacements(asm)
        ielem, side = system.end_partner[1]
        assert np.allclose(disp[1], system.element_end_displacement(asm, ielem, side))

    def test_prescribed_point_displacement(self, loaded_static):
        """Test that prescribed DOFs report the prescribed value."""
        asm, system = loaded_static
        assert np.allclose(system.point_displacements(asm)[0], 0.0)

    def test_point_slice_of_eliminated_point(self, loaded_static):
        _, system = loaded_static
        with pytest.raises(ValueError, match="no state"):
            system.point_slice(1)


@pytest.mark.unit
class TestRotationBranches:
    """Tests for rotation parameters past a half turn."""

    def test_rescale_rotations(self, compliance):
        asm = make_cantilever(2, compliance)
        system = System(asm)
        system.apply_conditions(asm, {0: clamp()})
        c = np.array([0.0, 0.0, 4.0 * np.tan(0.3 * np.pi)])
        elem = system.element_slice(1)
        rot = slice(elem.start + 3, elem.start + 6)
        system.x[rot] = c
        system.xdot[rot] = [0.0, 0.0, 1.0]
        tip = system.point_slice(2)
        system.x[tip.start + 3:tip.stop] = c
        # Just past a half turn: left alone
        mid = system.point_slice(1)
        system.x[mid.start + 3:mid.stop] = [0.0, 4.2, 0.0]
        # Reaction moments of the clamp are not rotations
        root = system.point_slice(0)
        system.x[root.start + 3:root.stop] = [0.0, 0.0, 10.0]

        assert system.rescale_rotations() == 2
        assert np.linalg.norm(system.x[rot]) < 4.0
        assert np.allclose(rotation_matrix(system.x[rot]), rotation_matrix(c))
        assert np.allclose(system.x[tip.start + 3:tip.stop], complementary_parameters(c))
        assert np.allclose(system.xdot[rot], complementary_jacobian(c) @ [0.0, 0.0, 1.0])
        assert np.allclose(system.x[mid.start + 3:mid.stop], [0.0, 4.2, 0.0])
        assert np.allclose(system.x[root.start + 3:root.stop], [0.0, 0.0, 10.0])
        assert system.rescale_rotations() == 0

    def test_residual_independent_of_point_branch(self, compliance):
        """Test that a point rotation and its complementary set give the same residual."""
        asm = make_cantilever(4, compliance)
        system = System(asm)
        system.apply_conditions(asm, {0: clamp(), 4: PrescribedConditions(Fz=1.0, Mx_follower=2.0)})
        rng = np.random.default_rng(3)
        system.x = 0.1 * rng.standard_normal(system.nb_states)
        c = np.array([0.0, 3.0, 1.0])
        for p in (2, 4):
            s = system.point_slice(p)
            system.x[s.start + 3:s.stop] = c
        R0 = system.get_R(asm).copy()
        for p in (2, 4):
            s = system.point_slice(p)
            system.x[s.start + 3:s.stop] = complementary_parameters(c)
        assert np.allclose(system.get_R(asm), R0, atol=1e-12)

    def test_residual_independent_of_element_end_branch(self, compliance):
        """Test eliminated points comparing element ends on different branches."""
        asm = make_cantilever(2, compliance)
        system = System(asm, kept_points=[0, 2])
        system.apply_conditions(asm, {0: clamp()})
        # Both elements rotated by about 200 deg about z, one on each branch
        c = np.array([0.0, 0.0, 4.0 * np.tan(200.0 / 720.0 * np.pi)])
        first = system.element_slice(0)
        second = system.element_slice(1)
        system.x[first.start + 3:first.start + 6] = c
        system.x[second.start + 3:second.start + 6] = c
        R_same = system.get_R(asm).copy()
        system.x[second.start + 3:second.start + 6] = complementary_parameters(c)
        R_mixed = system.get_R(asm)
        eliminated = system.end_compat_rows[0, 1][3:]
        assert np.allclose(R_mixed[eliminated], R_same[eliminated], atol=1e-12)
