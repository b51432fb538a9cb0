"""
Comprehensive tests for ibsphere core functionality.

Run with: pytest tests/ -v
"""

import numpy as np
import pytest
import tempfile
from pathlib import Path

from ibsphere import (
    KernelType,
    CoordSys,
    CoordType,
    EulerianField,
    RigidBody,
    DirectForcingEngine,
    ForcingConfig,
    SphereSystem,
    PrescribedFlow,
    CouplingSolver,
    create_body,
    compute_kernel_normalization,
    compute_slip_error,
    compute_hydrodynamic_loads,
    compute_volume_fraction_error,
    compute_marker_hull,
    compute_all_diagnostics,
)
from ibsphere.core.kernels import delta_weight, locate_markers
from ibsphere.core.bodies import marker_count, marker_volume, sample_markers
from ibsphere.core.transfer import (
    prepare_stencils,
    check_stencil_bounds,
    spread_forces,
    interpolate_velocity,
    zero_block,
    saxpy_block,
    direct_forcing,
)
from ibsphere.core.dynamics import update_rigid_body, hydrodynamic_force_torque
from ibsphere.core.diagnostics import compute_level_set, nodal_phi_to_volume_fraction
from ibsphere.io.config_manager import ConfigManager
from ibsphere.io.data_handler import DataHandler
from ibsphere.utils.logger import SimulationLogger
from ibsphere.utils.timer import Timer


FOUR = int(KernelType.FOUR_POINT)
THREE = int(KernelType.THREE_POINT)


class TestDeltaKernel:
    """Test regularized delta functions."""

    @pytest.mark.parametrize("kernel", ['four_point', 'three_point'])
    def test_normalization_on_node(self, unit_coords, kernel):
        """Weights times cell volume sum to one for a marker on a grid node."""
        total = compute_kernel_normalization((8.5, 8.5, 8.5), unit_coords, kernel)
        assert abs(total - 1.0) < 1e-12

    def test_three_point_normalization_off_node(self, unit_coords):
        """Three-point kernel is a partition of unity at arbitrary positions."""
        rng = np.random.default_rng(7)
        for position in rng.uniform(6.0, 10.0, size=(20, 3)):
            total = compute_kernel_normalization(position, unit_coords, 'three_point')
            assert abs(total - 1.0) < 1e-12

    def test_normalization_scales_with_cell_size(self):
        """Normalization holds for non-unit spacing."""
        coords = CoordSys(dx=(0.5, 0.5, 0.5))
        total = compute_kernel_normalization((2.25, 2.25, 2.25), coords, 'four_point')
        assert abs(total - 1.0) < 1e-12

    def test_on_node_values(self):
        """Central and neighbour weights of both kernels."""
        assert delta_weight(0.0, 1.0, FOUR) == pytest.approx(0.5)
        assert delta_weight(1.0, 1.0, FOUR) == pytest.approx(0.25)
        assert delta_weight(0.0, 1.0, THREE) == pytest.approx(2.0 / 3.0)
        assert delta_weight(1.0, 1.0, THREE) == pytest.approx(1.0 / 6.0)

    def test_zero_outside_support(self):
        """No weight at or beyond the support radius."""
        assert delta_weight(2.0, 1.0, FOUR) == 0.0
        assert delta_weight(2.5, 1.0, FOUR) == 0.0
        assert delta_weight(1.5, 1.0, THREE) == 0.0
        assert delta_weight(-3.0, 1.0, THREE) == 0.0

    def test_four_point_gap(self):
        """Four-point kernel evaluates to zero on [0.5, 1)."""
        for r in (0.5, 0.6, 0.75, 0.99):
            assert delta_weight(r, 1.0, FOUR) == 0.0

    def test_symmetry(self):
        """Kernel depends only on |distance|."""
        for d in (0.1, 0.3, 1.2, 1.7):
            assert delta_weight(d, 1.0, FOUR) == delta_weight(-d, 1.0, FOUR)
            assert delta_weight(d, 1.0, THREE) == delta_weight(-d, 1.0, THREE)

    def test_cell_size_scaling(self):
        """Kernel returns φ(r) / h."""
        assert delta_weight(0.0, 2.0, FOUR) == pytest.approx(0.25)
        assert delta_weight(2.0, 2.0, FOUR) == pytest.approx(0.125)

    def test_kernel_names(self):
        """Kernel variants resolve from names and values."""
        assert KernelType.from_name('four_point') == KernelType.FOUR_POINT
        assert KernelType.from_name('Three-Point') == KernelType.THREE_POINT
        assert KernelType.from_name(1) == KernelType.THREE_POINT
        assert KernelType.from_name(KernelType.FOUR_POINT) == KernelType.FOUR_POINT

    def test_unknown_kernel(self):
        """Unknown variants are rejected."""
        with pytest.raises(ValueError):
            KernelType.from_name('five_point')
        with pytest.raises(ValueError):
            KernelType.from_name(7)

    def test_locate_markers(self, unit_coords):
        """Containing cell is floor((x - lo) / dx)."""
        positions = np.array([[0.2, 3.7, 5.0], [-0.5, 1.0, 2.999]])
        cells = locate_markers(positions, unit_coords.prob_lo, unit_coords.dx)
        np.testing.assert_array_equal(cells, [[0, 3, 5], [-1, 1, 2]])


class TestCoordSys:
    """Test grid metrics."""

    def test_cell_center(self):
        """Cell centres sit half a cell from the low corner."""
        cs = CoordSys(dx=(0.5, 0.5, 0.5), prob_lo=(1.0, 0.0, -1.0))
        np.testing.assert_allclose(cs.cell_center((0, 0, 0)), [1.25, 0.25, -0.75])
        np.testing.assert_allclose(cs.cell_centers(0, 2, 0), [1.25, 1.75, 2.25])

    def test_cell_index(self):
        """A cell centre maps back to its own index."""
        cs = CoordSys(dx=(0.5, 1.0, 2.0))
        idx = (3, 4, 5)
        np.testing.assert_array_equal(cs.cell_index(cs.cell_center(idx)), idx)

    def test_edges_faces_nodes(self):
        """Edge, face and node locations."""
        cs = CoordSys(dx=(1.0, 2.0, 4.0))
        assert cs.lo_edge(2, 1) == 4.0
        assert cs.hi_edge(2, 1) == 6.0
        np.testing.assert_allclose(cs.edge_locations(0, 2, 0), [0.0, 1.0, 2.0, 3.0])
        np.testing.assert_allclose(cs.lo_face((1, 1, 1), 0), [1.0, 3.0, 6.0])
        np.testing.assert_allclose(cs.hi_face((1, 1, 1), 2), [1.5, 3.0, 8.0])
        np.testing.assert_allclose(cs.lo_node((1, 1, 1)), [1.0, 2.0, 4.0])
        np.testing.assert_allclose(cs.hi_node((1, 1, 1)), [2.0, 4.0, 8.0])

    def test_cartesian_volume_and_area(self):
        """Cartesian volumes and face areas are products of spacings."""
        cs = CoordSys(dx=(1.0, 2.0, 3.0))
        assert cs.cell_volume == 6.0
        assert cs.volume((4, 5, 6)) == pytest.approx(6.0)
        assert cs.area_lo((0, 0, 0), 0) == 6.0
        assert cs.area_hi((0, 0, 0), 1) == 3.0

    def test_rz_volume(self):
        """Axisymmetric volume carries the 2π factor."""
        cs = CoordSys(dx=(1.0, 1.0, 1.0), coord=CoordType.RZ)
        assert cs.volume((0, 0, 0)) == pytest.approx(np.pi)
        assert cs.volume((1, 0, 0)) == pytest.approx(3.0 * np.pi)

    def test_rz_areas(self):
        """Radial faces scale with r, axial faces with the annulus."""
        cs = CoordSys(dx=(1.0, 1.0, 1.0), coord=CoordType.RZ)
        assert cs.area_lo((1, 0, 0), 0) == pytest.approx(2.0 * np.pi)
        assert cs.area_hi((1, 0, 0), 0) == pytest.approx(4.0 * np.pi)
        assert cs.area_lo((1, 0, 0), 1) == pytest.approx(3.0 * np.pi)
        assert cs.area_hi((1, 0, 0), 1) == pytest.approx(3.0 * np.pi)

    def test_rz_volume_coordinates(self):
        """Radial volume coordinate is r²/2."""
        cs = CoordSys(dx=(1.0, 1.0, 1.0), coord=CoordType.RZ)
        np.testing.assert_allclose(cs.edge_vol_coord(0, 1, 0), [0.0, 0.5, 2.0])
        np.testing.assert_allclose(cs.cell_vol_coord(0, 0, 0), [0.125])
        np.testing.assert_allclose(cs.edge_vol_coord(0, 1, 1), [0.0, 1.0, 2.0])

    def test_invalid_spacing(self):
        """Non-positive spacing is rejected."""
        with pytest.raises(ValueError):
            CoordSys(dx=(1.0, 0.0, 1.0))
        with pytest.raises(ValueError):
            CoordSys(dx=(1.0, 1.0))

    def test_same_grid(self):
        """Metric comparison."""
        a = CoordSys(dx=(1.0, 1.0, 1.0))
        assert a.same_grid(CoordSys(dx=(1.0, 1.0, 1.0)))
        assert not a.same_grid(CoordSys(dx=(0.5, 1.0, 1.0)))
        assert not a.same_grid(CoordSys(dx=(1.0, 1.0, 1.0), prob_lo=(1.0, 0.0, 0.0)))


class TestEulerianField:
    """Test the ghosted field container."""

    def test_zeros_shape(self, unit_coords):
        """Allocation adds the ghost band on every side."""
        field = EulerianField.zeros((8, 6, 4), 6, unit_coords, n_ghost=2)
        assert field.data.shape == (12, 10, 8, 6)
        assert field.n_cells == (8, 6, 4)
        assert field.n_components == 6

    def test_block_view(self, unit_coords):
        """Block views cover the valid region only."""
        field = EulerianField.zeros((8, 8, 8), 6, unit_coords)
        block = field.block(3)
        assert block.shape == (8, 8, 8, 3)
        block[...] = 1.0
        assert field.data[..., 3:6].sum() == 3 * 8**3

    def test_fill_includes_ghosts(self, unit_coords):
        """fill() sets the whole component."""
        field = EulerianField.zeros((4, 4, 4), 2, unit_coords)
        field.fill(1, 2.5)
        assert np.all(field.data[..., 1] == 2.5)
        assert np.all(field.data[..., 0] == 0.0)

    def test_domain_and_centers(self, unit_coords):
        """Cell centres and upper corner."""
        field = EulerianField.zeros((4, 4, 4), 1, unit_coords)
        np.testing.assert_allclose(field.cell_centers(0), [0.5, 1.5, 2.5, 3.5])
        np.testing.assert_allclose(field.domain_hi(), [4.0, 4.0, 4.0])

    def test_invalid_data(self, unit_coords):
        """Field data must be 4-D with valid cells."""
        with pytest.raises(ValueError):
            EulerianField(np.zeros((4, 4, 4)), unit_coords)
        with pytest.raises(ValueError):
            EulerianField(np.zeros((4, 4, 4, 1)), unit_coords, n_ghost=2)


class TestMarkers:
    """Test body records and marker sampling."""

    def test_marker_count(self):
        """M = floor(π/3 · 12 (R/h)²)."""
        assert marker_count(4.0, 1.0) == 201
        assert marker_count(2.0, 1.0) == 50

    def test_marker_volume(self):
        """dV = π h / (3M) · (12R² + h²)."""
        assert marker_volume(4.0, 1.0, 201) == pytest.approx(np.pi * 193.0 / 603.0)

    def test_markers_on_sphere(self):
        """Every marker lies on the sphere surface."""
        center = np.array([3.0, -2.0, 5.0])
        positions = sample_markers(center, 4.0, 201)
        radii = np.linalg.norm(positions - center, axis=1)
        np.testing.assert_allclose(radii, 4.0, rtol=1e-12)

    def test_markers_spiral_azimuth(self):
        """Compiled sampling matches the golden-spiral recurrence with azimuth wrapped to [0, 2π)."""
        n = 201
        positions = sample_markers(np.zeros(3), 4.0, n)

        expected = np.zeros((n, 3))
        phi = 0.0
        for k in range(n):
            hk = -1.0 + 2.0 * k / (n - 1.0)
            theta = np.arccos(hk)
            if 0 < k < n - 1:
                phi = (phi + 3.809 / np.sqrt(n) / np.sqrt(1.0 - hk * hk)) % (2.0 * np.pi)
            else:
                phi = 0.0
            expected[k] = 4.0 * np.array([
                np.sin(theta) * np.cos(phi), np.sin(theta) * np.sin(phi), np.cos(theta)
            ])

        assert np.all(np.isfinite(positions))
        np.testing.assert_allclose(positions, expected, atol=1e-10)

    def test_markers_at_poles(self):
        """First and last markers sit on the z-axis poles."""
        center = np.zeros(3)
        positions = sample_markers(center, 2.0, 50)
        np.testing.assert_allclose(positions[0], [0.0, 0.0, -2.0], atol=1e-12)
        np.testing.assert_allclose(positions[-1], [0.0, 0.0, 2.0], atol=1e-12)

    def test_markers_deterministic(self):
        """Identical pose gives bit-identical markers."""
        body = create_body((8.0, 8.0, 8.0), 4.0, 2.0, 1.0)
        np.testing.assert_array_equal(body.markers(), body.markers())

    def test_markers_follow_center(self):
        """Markers translate with the body."""
        a = sample_markers(np.zeros(3), 3.0, 100)
        b = sample_markers(np.array([1.0, 2.0, 3.0]), 3.0, 100)
        np.testing.assert_allclose(b - a, np.tile([1.0, 2.0, 3.0], (100, 1)), atol=1e-12)

    def test_create_body(self):
        """New bodies start at rest with derived marker count."""
        body = create_body((1.0, 2.0, 3.0), 4.0, 2.0, 1.0)
        assert body.n_markers == 201
        assert body.marker_force.shape == (201, 3)
        assert np.all(body.velocity == 0.0)
        assert np.all(body.omega == 0.0)
        assert body.volume == pytest.approx(4.0 / 3.0 * np.pi * 64.0)
        assert body.moment == pytest.approx(8.0 / 15.0 * np.pi * 2.0 * 4.0**5)

    def test_create_body_invalid(self):
        """Degenerate bodies are rejected."""
        with pytest.raises(ValueError):
            create_body((0, 0, 0), 0.5, 2.0, 1.0)
        with pytest.raises(ValueError):
            create_body((0, 0, 0), 4.0, 0.0, 1.0)
        with pytest.raises(ValueError):
            create_body((0, 0, 0), 4.0, 2.0, 0.0)

    def test_too_few_markers(self):
        """A body needs at least two markers."""
        with pytest.raises(ValueError):
            RigidBody(center=np.zeros(3), radius=1.0, rho=2.0, n_markers=1, dv=1.0)

    def test_record_round_trip(self):
        """to_record / from_record preserve the persistent state."""
        body = create_body((1.0, 2.0, 3.0), 4.0, 2.0, 1.0)
        body.velocity = np.array([0.1, 0.2, 0.3])
        body.omega = np.array([-0.1, 0.0, 0.5])
        body.varphi = np.array([0.01, 0.02, 0.03])

        restored = RigidBody.from_record(body.to_record())

        np.testing.assert_array_equal(restored.center, body.center)
        np.testing.assert_array_equal(restored.velocity, body.velocity)
        np.testing.assert_array_equal(restored.omega, body.omega)
        np.testing.assert_array_equal(restored.varphi, body.varphi)
        assert restored.n_markers == body.n_markers
        assert restored.dv == body.dv

    def test_repr(self):
        """Test string representation."""
        body = create_body((1.0, 2.0, 3.0), 4.0, 2.0, 1.0)
        assert 'RigidBody' in repr(body)
        assert 'M=201' in repr(body)


class TestTransferOperators:
    """Test spreading, interpolation and grid kernels."""

    @pytest.mark.parametrize("kernel", [KernelType.FOUR_POINT, KernelType.THREE_POINT])
    def test_adjointness(self, unit_coords, kernel):
        """Σ f·u over the grid equals Σ F·U over the markers."""
        rng = np.random.default_rng(3)
        field = EulerianField.zeros((12, 12, 12), 6, unit_coords)
        field.data[..., 0:3] = rng.standard_normal(field.data[..., 0:3].shape)

        positions = rng.uniform(4.0, 8.0, size=(25, 3))
        forces = rng.standard_normal((25, 3))
        cells, weights = prepare_stencils(
            positions, unit_coords.prob_lo, unit_coords.dx, kernel
        )

        spread_forces(field.data, 3, forces, cells, weights, 2, unit_coords.cell_volume)
        u_markers = interpolate_velocity(
            field.data, 0, cells, weights, 2, unit_coords.cell_volume
        )

        lhs = np.sum(field.data[..., 3:6] * field.data[..., 0:3])
        rhs = np.sum(forces * u_markers)
        assert lhs == pytest.approx(rhs, rel=1e-10)

    @pytest.mark.parametrize("kernel", [KernelType.FOUR_POINT, KernelType.THREE_POINT])
    def test_spread_then_interpolate(self, kernel):
        """Round trip of one marker returns F · Σ(w ΔV)²."""
        coords = CoordSys(dx=(0.5, 0.5, 0.5))
        field = EulerianField.zeros((16, 16, 16), 3, coords)
        positions = np.array([[3.9, 4.1, 4.33]])
        force = np.array([[1.0, -2.0, 0.5]])
        cells, weights = prepare_stencils(positions, coords.prob_lo, coords.dx, kernel)

        spread_forces(field.data, 0, force, cells, weights, 2, coords.cell_volume)
        back = interpolate_velocity(field.data, 0, cells, weights, 2, coords.cell_volume)

        factor = np.sum((weights * coords.cell_volume)**2)
        np.testing.assert_allclose(back, force * factor, rtol=1e-12)

    def test_spread_conserves_total_force(self):
        """Three-point spreading deposits the full marker force."""
        coords = CoordSys(dx=(0.5, 0.5, 0.5))
        field = EulerianField.zeros((16, 16, 16), 3, coords)
        positions = np.array([[3.9, 4.1, 4.33], [2.2, 5.6, 3.05]])
        forces = np.array([[1.0, -2.0, 0.5], [0.3, 0.3, -1.0]])
        cells, weights = prepare_stencils(
            positions, coords.prob_lo, coords.dx, KernelType.THREE_POINT
        )

        spread_forces(field.data, 0, forces, cells, weights, 2, coords.cell_volume)

        total = field.data.reshape(-1, 3).sum(axis=0)
        np.testing.assert_allclose(total, forces.sum(axis=0), rtol=1e-12)

    def test_interpolate_uniform_field(self, unit_coords):
        """Three-point interpolation reproduces a uniform field exactly."""
        field = EulerianField.zeros((12, 12, 12), 3, unit_coords)
        u0 = np.array([0.3, -0.1, 0.7])
        for c in range(3):
            field.fill(c, u0[c])

        positions = np.random.default_rng(1).uniform(3.0, 9.0, size=(30, 3))
        cells, weights = prepare_stencils(
            positions, unit_coords.prob_lo, unit_coords.dx, KernelType.THREE_POINT
        )
        u = interpolate_velocity(field.data, 0, cells, weights, 2, unit_coords.cell_volume)
        np.testing.assert_allclose(u, np.tile(u0, (30, 1)), rtol=1e-12)

    def test_stencil_bounds(self):
        """Stencils past the ghost band raise IndexError."""
        cells = np.array([[0, 4, 4]], dtype=np.int64)
        check_stencil_bounds(cells, (8, 8, 8), 2)
        with pytest.raises(IndexError):
            check_stencil_bounds(cells, (8, 8, 8), 1)
        with pytest.raises(IndexError):
            check_stencil_bounds(np.array([[4, 4, 8]]), (8, 8, 8), 2)

    def test_zero_block_includes_ghosts(self, unit_coords):
        """Force block is cleared over the whole allocated array."""
        field = EulerianField.zeros((4, 4, 4), 6, unit_coords)
        field.data[...] = 1.0
        zero_block(field.data, 3, 3)
        assert np.all(field.data[..., 3:6] == 0.0)
        assert np.all(field.data[..., 0:3] == 1.0)

    def test_saxpy_valid_region_only(self, unit_coords):
        """Velocity correction touches valid cells only."""
        field = EulerianField.zeros((4, 4, 4), 6, unit_coords)
        field.data[..., 3:6] = 2.0
        saxpy_block(field.data, 0, 3, 0.5, 3, 2)

        assert np.all(field.block(0) == 1.0)
        assert field.data[..., 0:3].sum() == pytest.approx(3 * 4**3)
        assert field.data[0, 0, 0, 0] == 0.0

    def test_direct_forcing(self):
        """F = (U_body - U_marker) / dt."""
        u_markers = np.array([[0.1, 0.0, 0.0], [0.0, 0.2, -0.2]])
        forces = direct_forcing(np.array([0.1, 0.1, 0.1]), u_markers, 0.5)
        np.testing.assert_allclose(forces, [[0.0, 0.2, 0.2], [0.2, -0.2, 0.6]])


class TestRigidBodyIntegrator:
    """Test the rigid-body update."""

    def test_at_rest_unchanged(self):
        """No load and no motion leaves the body unchanged."""
        body = create_body((8.0, 8.0, 8.0), 4.0, 2.0, 1.0)
        positions = body.markers()
        force, torque = update_rigid_body(body, positions, 0.1, 0.5, 1.0)

        assert np.all(force == 0.0)
        assert np.all(torque == 0.0)
        np.testing.assert_array_equal(body.center, [8.0, 8.0, 8.0])
        assert np.all(body.velocity == 0.0)
        assert np.all(body.omega == 0.0)
        assert np.all(body.marker_force == 0.0)

    def test_known_load(self):
        """Uniform marker force gives the expected velocity, spin and pose."""
        body = create_body((8.0, 8.0, 8.0), 4.0, 2.0, 1.0)
        positions = body.markers()
        f = np.array([1.0, 0.5, -0.25])
        body.marker_force[:] = f

        dt, alpha, rho_f = 0.1, 0.5, 1.0
        expected_force = body.n_markers * body.dv * f
        expected_torque = body.dv * np.cross(positions - body.center, body.marker_force).sum(axis=0)
        contrast = body.rho - rho_f

        force, torque = update_rigid_body(body, positions, dt, alpha, rho_f)

        np.testing.assert_allclose(force, expected_force, rtol=1e-10)
        np.testing.assert_allclose(torque, expected_torque, rtol=1e-8, atol=1e-10)

        v = -2.0 * alpha * dt / body.volume / contrast * expected_force
        w = -2.0 * alpha * dt * body.rho / body.moment / contrast * expected_torque
        np.testing.assert_allclose(body.velocity, v, rtol=1e-10)
        np.testing.assert_allclose(body.omega, w, rtol=1e-8, atol=1e-14)
        np.testing.assert_allclose(body.center, 8.0 + alpha * dt * v, rtol=1e-12)
        np.testing.assert_allclose(body.varphi, alpha * dt * w, rtol=1e-8, atol=1e-16)

    def test_marker_force_reset(self):
        """Marker forces become ρ_b/Δt · (U + ω × (c⁺ - X))."""
        body = create_body((8.0, 8.0, 8.0), 4.0, 2.0, 1.0)
        body.omega = np.array([0.0, 0.0, 0.2])
        rng = np.random.default_rng(5)
        body.marker_velocity = rng.standard_normal((body.n_markers, 3))
        positions = body.markers()

        update_rigid_body(body, positions, 0.1, 0.5, 1.0)

        expected = body.rho / 0.1 * (
            body.marker_velocity + np.cross(body.omega, body.center - positions)
        )
        np.testing.assert_allclose(body.marker_force, expected, rtol=1e-12, atol=1e-12)

    def test_force_torque_reduction(self):
        """Net torque matches a direct cross-product sum."""
        rng = np.random.default_rng(11)
        positions = rng.uniform(-1.0, 1.0, size=(40, 3))
        forces = rng.standard_normal((40, 3))
        center = np.array([0.1, -0.2, 0.3])

        force, torque = hydrodynamic_force_torque(positions, forces, center, 0.5)

        np.testing.assert_allclose(force, 0.5 * forces.sum(axis=0), rtol=1e-12)
        np.testing.assert_allclose(
            torque, 0.5 * np.cross(positions - center, forces).sum(axis=0),
            rtol=1e-12, atol=1e-12
        )

    def test_zero_contrast(self):
        """Matched densities make the update undefined."""
        body = create_body((8.0, 8.0, 8.0), 4.0, 1.0, 1.0)
        with pytest.raises(ValueError):
            update_rigid_body(body, body.markers(), 0.1, 0.5, 1.0)


class TestDirectForcingEngine:
    """Test the coupling engine."""

    def test_init_bodies(self, engine):
        """Bodies are created in order with shared parameters."""
        assert engine.n_bodies == 1
        np.testing.assert_array_equal(engine.centers(), [[12.0, 12.0, 12.0]])
        assert engine.markers(0).shape == (201, 3)

    def test_still_fluid(self, engine, still_field):
        """A body at rest in still fluid produces no forcing."""
        for _ in range(3):
            still_field = engine.advance(still_field, dt=0.1)

        assert np.all(still_field.data == 0.0)
        np.testing.assert_array_equal(engine.centers(), [[12.0, 12.0, 12.0]])
        assert np.all(engine.velocities() == 0.0)
        assert np.all(engine.angular_velocities() == 0.0)
        assert engine.step_count == 3

    def test_body_moving_with_stream(self, unit_coords, default_body_params, still_field):
        """Slip vanishes for a body moving with a uniform stream."""
        eng = DirectForcingEngine(
            unit_coords, ForcingConfig(kernel='three_point', sub_iterations=2)
        )
        eng.init_bodies(**default_body_params)

        u0 = np.array([0.1, -0.05, 0.02])
        for c in range(3):
            still_field.fill(c, u0[c])
        eng.bodies[0].velocity = u0.copy()

        eng.advance(still_field, dt=0.1)

        slip = compute_slip_error(eng, still_field)
        assert slip['slip_max'] < 1e-12
        np.testing.assert_allclose(eng.velocities()[0], u0, rtol=1e-12)
        for c in range(3):
            np.testing.assert_allclose(still_field.valid(c), u0[c], atol=1e-12)

    def test_two_bodies(self, unit_coords, still_field):
        """Several bodies share one field."""
        eng = DirectForcingEngine(unit_coords)
        eng.init_bodies([7.0, 17.0], [12.0, 12.0], [12.0, 12.0], 3.0, 2.0, 1.0, 3, 0)
        eng.advance(still_field, dt=0.1)
        assert eng.centers().shape == (2, 3)
        assert eng.n_bodies == 2

    def test_matched_density_rejected(self, unit_coords, default_body_params):
        """Equal body and fluid densities are rejected."""
        params = dict(default_body_params, body_density=1.0)
        with pytest.raises(ValueError):
            DirectForcingEngine(unit_coords).init_bodies(**params)

    def test_mismatched_lengths(self, unit_coords, default_body_params):
        """Position arrays must have equal lengths."""
        params = dict(default_body_params, y=[1.0, 2.0])
        with pytest.raises(ValueError):
            DirectForcingEngine(unit_coords).init_bodies(**params)

    def test_radius_below_cell(self, unit_coords, default_body_params):
        """Bodies smaller than one cell are rejected."""
        params = dict(default_body_params, radius=0.5)
        with pytest.raises(ValueError):
            DirectForcingEngine(unit_coords).init_bodies(**params)

    def test_overlapping_blocks(self, unit_coords, default_body_params):
        """Force and velocity blocks must not overlap."""
        params = dict(default_body_params, force_index=1)
        with pytest.raises(ValueError):
            DirectForcingEngine(unit_coords).init_bodies(**params)

    def test_requires_cartesian(self):
        """Axisymmetric metrics are rejected."""
        with pytest.raises(ValueError):
            DirectForcingEngine(CoordSys(dx=(1.0, 1.0, 1.0), coord=CoordType.RZ))

    def test_invalid_step_parameters(self, engine, still_field):
        """Bad dt, sub-iteration count, relaxation or kernel raise ValueError."""
        with pytest.raises(ValueError):
            engine.advance(still_field, dt=0.0)
        with pytest.raises(ValueError):
            engine.advance(still_field, dt=0.1, sub_iterations=0)
        with pytest.raises(ValueError):
            engine.advance(still_field, dt=0.1, relaxation=1.5)
        with pytest.raises(ValueError):
            engine.advance(still_field, dt=0.1, kernel='five_point')

    def test_advance_before_init(self, unit_coords, still_field):
        """Advancing without bodies is a configuration error."""
        with pytest.raises(ValueError):
            DirectForcingEngine(unit_coords).advance(still_field, dt=0.1)

    def test_insufficient_ghosts(self, engine, unit_coords):
        """Fewer than two ghost cells raise IndexError."""
        field = EulerianField.zeros((24, 24, 24), 6, unit_coords, n_ghost=1)
        with pytest.raises(IndexError):
            engine.advance(field, dt=0.1)

    def test_too_few_components(self, engine, unit_coords):
        """The force block must fit in the field."""
        field = EulerianField.zeros((24, 24, 24), 4, unit_coords)
        with pytest.raises(ValueError):
            engine.advance(field, dt=0.1)

    def test_stencil_outside_field(self, unit_coords, still_field):
        """A body reaching past the ghost band raises IndexError."""
        eng = DirectForcingEngine(unit_coords)
        eng.init_bodies([2.0], [12.0], [12.0], 4.0, 2.0, 1.0, 3, 0)
        with pytest.raises(IndexError):
            eng.advance(still_field, dt=0.1)

    def test_restart_round_trip(self, engine, still_field, unit_coords):
        """Body records restore an identical engine state."""
        engine.bodies[0].velocity = np.array([0.1, 0.0, -0.05])
        engine.advance(still_field, dt=0.1)

        other = DirectForcingEngine(unit_coords)
        other.restore_body_states(engine.body_states(), 1.0, 3, 0)

        np.testing.assert_array_equal(other.centers(), engine.centers())
        np.testing.assert_array_equal(other.velocities(), engine.velocities())
        np.testing.assert_array_equal(other.angular_velocities(), engine.angular_velocities())
        np.testing.assert_array_equal(other.markers(0), engine.markers(0))

    def test_restart_rejects_bad_coupling(self, engine, unit_coords):
        """Restoring checks the same density and block rules as init_bodies."""
        records = engine.body_states()
        other = DirectForcingEngine(unit_coords)
        with pytest.raises(ValueError):
            other.restore_body_states([], 1.0, 3, 0)
        with pytest.raises(ValueError):
            other.restore_body_states(records, 0.0, 3, 0)
        with pytest.raises(ValueError):
            other.restore_body_states(records, 2.0, 3, 0)
        with pytest.raises(ValueError):
            other.restore_body_states(records, 1.0, 1, 0)
        with pytest.raises(ValueError):
            other.restore_body_states(records, 1.0, -3, 0)
        assert other.n_bodies == 0

    def test_repeat_init_keeps_fluid(self, unit_coords, default_body_params):
        """Later init_bodies calls must reuse the fluid density and blocks."""
        eng = DirectForcingEngine(unit_coords)
        eng.init_bodies(**default_body_params)
        with pytest.raises(ValueError):
            eng.init_bodies([6.0], [6.0], [6.0], 2.0, 3.0, 2.0, 3, 0)
        with pytest.raises(ValueError):
            eng.init_bodies([6.0], [6.0], [6.0], 2.0, 3.0, 1.0, 0, 3)
        assert eng.n_bodies == 1

        eng.init_bodies([6.0], [6.0], [6.0], 2.0, 3.0, 1.0, 3, 0)
        assert eng.n_bodies == 2
        assert eng.rho_fluid == 1.0

    def test_logger_records_bodies(self, unit_coords, default_body_params, still_field):
        """Engine writes body creation and step summaries to the log."""
        with tempfile.TemporaryDirectory() as tmp:
            logger = SimulationLogger('engine test', tmp, verbose=False)
            eng = DirectForcingEngine(unit_coords, logger=logger)
            eng.init_bodies(**default_body_params)
            eng.advance(still_field, dt=0.1)
            logger.finalize()

            text = logger.log_file.read_text()
            assert 'Initialized 1 bodies' in text
            assert 'step 0 body 0' in text


class TestDiagnostics:
    """Test coupling diagnostics."""

    def test_slip_stencil_outside_field(self, unit_coords, still_field):
        """Slip diagnostic raises IndexError when a stencil leaves the field."""
        eng = DirectForcingEngine(unit_coords)
        eng.init_bodies([21.5], [12.0], [12.0], 4.0, 2.0, 1.0, 3, 0)
        with pytest.raises(IndexError):
            compute_slip_error(eng, still_field)

    def test_slip_and_loads_at_rest(self, engine, still_field):
        """Still fluid gives zero slip and zero load."""
        engine.advance(still_field, dt=0.1)
        slip = compute_slip_error(engine, still_field)
        loads = compute_hydrodynamic_loads(engine)

        assert slip['slip_max'] == 0.0
        assert np.all(loads['force'] == 0.0)
        assert loads['torque'].shape == (1, 3)

    def test_level_set(self, unit_coords):
        """Signed distance on cell corners."""
        phi = compute_level_set(unit_coords, (16, 16, 16), np.array([[8.0, 8.0, 8.0]]), 4.0)
        assert phi.shape == (17, 17, 17)
        assert phi[8, 8, 8] == pytest.approx(-4.0)
        assert phi[8, 8, 16] == pytest.approx(4.0)

    def test_volume_fraction_limits(self):
        """Fully inside gives 1, fully outside gives 0."""
        inside = nodal_phi_to_volume_fraction(np.full((3, 3, 3), -1.0))
        outside = nodal_phi_to_volume_fraction(np.full((3, 3, 3), 1.0))
        np.testing.assert_allclose(inside, 1.0, rtol=1e-10)
        assert np.all(outside == 0.0)

    def test_volume_fraction_planar(self):
        """Axis-aligned interface gives the exact fraction."""
        x = np.array([0.0, 1.0])
        phi = np.broadcast_to((x - 0.3)[:, None, None], (2, 2, 2)).copy()
        pvf = nodal_phi_to_volume_fraction(phi)
        assert pvf[0, 0, 0] == pytest.approx(0.3)

    def test_solid_volume(self, unit_coords):
        """Recovered solid volume approximates (4/3)πR³."""
        result = compute_volume_fraction_error(
            unit_coords, (32, 32, 32), np.array([[16.0, 16.0, 16.0]]), 6.0
        )
        assert result['solid_volume_exact'] == pytest.approx(4.0 / 3.0 * np.pi * 216.0)
        assert result['solid_volume_error_relative'] < 0.05

    def test_marker_hull(self):
        """Marker hull is slightly smaller than the sphere."""
        body = create_body((0.0, 0.0, 0.0), 4.0, 2.0, 1.0)
        hull = compute_marker_hull(body.markers(), body.radius)
        assert 0.9 < hull['hull_volume_ratio'] < 1.0
        assert 0.9 < hull['hull_area_ratio'] < 1.0

    def test_all_diagnostics(self, small_system, small_solver):
        """Full diagnostics for a short run."""
        result = small_solver.solve(small_system, dt=0.1, n_steps=2,
                                    output_interval=1, verbose=False)
        diagnostics = compute_all_diagnostics(result, verbose=False)

        for key in ('slip_max', 'kernel_normalization', 'force_x_final',
                    'solid_volume_error_relative', 'hull_volume_ratio',
                    'max_displacement', 'all_finite'):
            assert key in diagnostics
        assert diagnostics['all_finite']
        assert diagnostics['kernel_normalization'] == pytest.approx(1.0, abs=1e-12)
        assert diagnostics['n_markers'] == 50


class TestCouplingSolver:
    """Test the scenario driver."""

    def test_system_properties(self):
        """Derived sphere properties and string forms."""
        system = SphereSystem(radius=3.0, rho_body=3.0, rho_fluid=1.5,
                              body_x=[1.0, 2.0], body_y=[1.0, 2.0], body_z=[1.0, 2.0],
                              u_inf=0.2)
        assert system.n_bodies == 2
        assert system.density_ratio == 2.0
        assert system.diameter == 6.0
        np.testing.assert_array_equal(system.far_field_velocity, [0.2, 0.0, 0.0])
        assert 'SphereSystem' in repr(system)
        assert 'rho_b' in system.describe()

    def test_prescribed_flow(self, still_field):
        """Far-field velocity fills the velocity block including ghosts."""
        PrescribedFlow([0.1, 0.2, 0.3]).apply(still_field)
        assert np.all(still_field.data[..., 1] == 0.2)
        assert np.all(still_field.data[..., 3:6] == 0.0)

    def test_result_shapes(self, small_system, small_solver):
        """Output arrays follow the output interval."""
        result = small_solver.solve(small_system, dt=0.1, n_steps=4,
                                    output_interval=2, verbose=False)

        assert len(result.time) == 3
        np.testing.assert_allclose(result.time, [0.0, 0.2, 0.4])
        assert result.centers.shape == (3, 1, 3)
        assert result.velocities.shape == (3, 1, 3)
        assert result.forces.shape == (3, 1, 3)
        assert result.slip_max.shape == (3,)
        assert result.speed_slices.shape == (3, 16, 16)
        assert result.config['n_steps'] == 4

    def test_still_fluid_scenario(self, small_solver):
        """A sphere in still fluid stays at rest."""
        system = SphereSystem(radius=2.0, body_x=[8.0], body_y=[8.0], body_z=[8.0])
        result = small_solver.solve(system, dt=0.1, n_steps=3,
                                    output_interval=1, verbose=False)

        assert np.all(result.velocities == 0.0)
        assert np.all(result.speed_slices == 0.0)
        np.testing.assert_array_equal(result.centers[-1], result.centers[0])

    def test_stream_drags_heavy_sphere(self, small_system, small_solver):
        """A heavy sphere starts moving downstream."""
        result = small_solver.solve(small_system, dt=0.1, n_steps=2, output_interval=1,
                                    forcing=ForcingConfig(sub_iterations=1), verbose=False)

        assert result.velocities[-1, 0, 0] > 0.0
        assert abs(result.velocities[-1, 0, 1]) < 1e-12
        assert abs(result.velocities[-1, 0, 2]) < 1e-12

    def test_invalid_output_interval(self, small_system, small_solver):
        """Output interval must be positive."""
        with pytest.raises(ValueError):
            small_solver.solve(small_system, dt=0.1, n_steps=2,
                               output_interval=0, verbose=False)


class TestConfigManager:
    """Test configuration file handling."""

    def test_load_config(self):
        """Test loading configuration from file."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.txt', delete=False) as f:
            f.write("# Test config\n")
            f.write("nx = 24\n")
            f.write("dx = 0.5\n")
            f.write("body_x = 4.0, 8.0  # two bodies\n")
            f.write("kernel = three_point\n")
            f.write("save_gif = false\n")
            f.write("scenario_name = Test\n")
            config_path = f.name

        config = ConfigManager.load(config_path)

        assert config['nx'] == 24
        assert config['dx'] == 0.5
        assert config['body_x'] == [4.0, 8.0]
        assert config['kernel'] == 'three_point'
        assert config['save_gif'] is False
        assert config['scenario_name'] == 'Test'

        Path(config_path).unlink()

    def test_all_default_configs(self):
        """All built-in cases are complete and valid."""
        for case in ['case1', 'case2', 'case3']:
            config = ConfigManager.get_default_config(case)
            assert 'radius' in config
            assert 'scenario_name' in config
            assert ConfigManager.validate_config(config) is True

    def test_case3_has_two_bodies(self):
        """Two-sphere case seeds two bodies."""
        config = ConfigManager.get_default_config('case3')
        assert len(config['body_x']) == 2

    def test_unknown_case(self):
        """Unknown case names raise ValueError."""
        with pytest.raises(ValueError):
            ConfigManager.get_default_config('case9')

    def test_save_config(self):
        """Test saving configuration to file."""
        config = {'radius': 4.0, 'body_z': [10.0, 22.0], 'save_gif': True, 'nx': 32}

        with tempfile.NamedTemporaryFile(mode='w', suffix='.txt', delete=False) as f:
            config_path = f.name

        ConfigManager.save(config, config_path)

        loaded = ConfigManager.load(config_path)
        assert loaded['radius'] == 4.0
        assert loaded['body_z'] == [10.0, 22.0]
        assert loaded['save_gif'] is True
        assert loaded['nx'] == 32

        Path(config_path).unlink()

    def test_validate_config(self):
        """Test configuration validation."""
        valid_config = {
            'nx': 32,
            'ny': 32,
            'nz': 32,
            'dx': 1.0,
            'radius': 4.0,
            'dt': 0.1,
        }
        assert ConfigManager.validate_config(valid_config) is True

    def test_validate_config_missing_param(self):
        """Test validation fails with missing parameter."""
        with pytest.raises(ValueError):
            ConfigManager.validate_config({'nx': 32})

    def test_validate_config_ranges(self):
        """Out-of-range values are rejected."""
        base = ConfigManager.get_default_config('case1')
        for key, value in (('relaxation', 0.0), ('n_ghost', 1), ('dt', -0.1),
                           ('radius', 0.5), ('kernel', 'cubic'), ('rho_body', 1.0)):
            config = dict(base, **{key: value})
            with pytest.raises(ValueError):
                ConfigManager.validate_config(config)


class TestDataHandler:
    """Test data saving functionality."""

    def test_save_diagnostics_csv(self):
        """Test diagnostics CSV saving."""
        diagnostics = {
            'slip_max': 1e-3,
            'kernel_normalization': 1.0,
            'n_markers': 201,
            'slip_max_per_body': np.zeros(2),
        }

        with tempfile.NamedTemporaryFile(suffix='.csv', delete=False) as f:
            filepath = f.name

        DataHandler.save_diagnostics_csv(filepath, diagnostics)

        import pandas as pd
        df = pd.read_csv(filepath)
        assert list(df.columns) == ['Metric', 'Value', 'Units']
        assert len(df) == 3

        Path(filepath).unlink()

    def test_body_states_round_trip(self, engine, still_field, unit_coords):
        """Restart records survive a CSV round trip."""
        engine.bodies[0].velocity = np.array([0.1, 0.0, -0.05])
        engine.advance(still_field, dt=0.1)

        with tempfile.TemporaryDirectory() as tmp:
            filepath = Path(tmp) / 'bodies.csv'
            DataHandler.save_body_states_csv(str(filepath), engine.body_states())
            records = DataHandler.load_body_states_csv(str(filepath))

        other = DirectForcingEngine(unit_coords)
        other.restore_body_states(records, 1.0, 3, 0)

        np.testing.assert_allclose(other.centers(), engine.centers(), rtol=1e-15)
        np.testing.assert_allclose(other.velocities(), engine.velocities(), rtol=1e-15)
        assert other.bodies[0].n_markers == engine.bodies[0].n_markers

    def test_trajectory_and_markers_csv(self, small_system, small_solver):
        """Trajectory rows per output and body; one marker row per marker."""
        result = small_solver.solve(small_system, dt=0.1, n_steps=2,
                                    output_interval=1, verbose=False)

        import pandas as pd
        with tempfile.TemporaryDirectory() as tmp:
            traj = Path(tmp) / 'traj.csv'
            markers = Path(tmp) / 'markers.csv'
            DataHandler.save_trajectory_csv(str(traj), result)
            DataHandler.save_markers_csv(str(markers), result.engine, 0)

            df_traj = pd.read_csv(traj)
            df_markers = pd.read_csv(markers)

        assert len(df_traj) == 3
        assert 'force_x' in df_traj.columns
        assert len(df_markers) == 50
        np.testing.assert_allclose(
            np.linalg.norm(df_markers[['x', 'y', 'z']].values - result.engine.centers()[0], axis=1),
            2.0, rtol=1e-6
        )

    def test_save_netcdf(self, small_system, small_solver):
        """Test NetCDF saving."""
        result = small_solver.solve(small_system, dt=0.1, n_steps=2,
                                    output_interval=1, verbose=False)
        result.diagnostics = compute_all_diagnostics(result, verbose=False)

        with tempfile.TemporaryDirectory() as tmp:
            filepath = Path(tmp) / 'run.nc'
            DataHandler.save_netcdf(str(filepath), result, {'scenario_name': 'Test'})

            from netCDF4 import Dataset
            with Dataset(filepath, 'r') as nc:
                for name in ('time', 'x', 'y', 'z', 'u', 'force_x', 'volume_fraction',
                             'body_center_x', 'speed_slice', 'slip_max', 'diag_slip_max'):
                    assert name in nc.variables
                assert nc.variables['u'].shape == (16, 16, 16)
                assert nc.variables['body_velocity_x'].shape == (3, 1)
                assert nc.n_bodies == 1
                assert nc.scenario_name == 'Test'


class TestUtilities:
    """Test logger and timer."""

    def test_timer_sections(self):
        """Sections accumulate elapsed time."""
        timer = Timer()
        with timer.time_section("a"):
            pass
        with timer.time_section("a"):
            pass
        times = timer.get_times()
        assert 'a' in times
        assert times['a'] >= 0.0

    def test_timer_stop_without_start(self):
        """Stopping an unknown section raises KeyError."""
        with pytest.raises(KeyError):
            Timer().stop("missing")

    def test_logger_collects_warnings(self):
        """Warnings and errors are collected and written to file."""
        with tempfile.TemporaryDirectory() as tmp:
            logger = SimulationLogger('Logger Test', tmp, verbose=False)
            logger.warning("watch out")
            logger.error("broken")
            logger.finalize()

            assert logger.warnings == ["watch out"]
            assert logger.errors == ["broken"]
            assert logger.log_file.name == 'logger_test.log'
            assert 'WARNINGS: 1' in logger.log_file.read_text()


class TestCommandLine:
    """Test the end-to-end scenario runner."""

    def test_run_scenario(self):
        """A small scenario writes CSV, NetCDF and figure outputs."""
        from ibsphere.cli import run_scenario, normalize_scenario_name

        config = {
            'scenario_name': 'CLI Test',
            'nx': 16, 'ny': 16, 'nz': 16, 'dx': 1.0,
            'radius': 2.0,
            'body_x': 8.0, 'body_y': 8.0, 'body_z': 8.0,
            'u_inf': 0.05,
            'dt': 0.1, 'n_steps': 2, 'output_interval': 1,
            'save_gif': False,
        }

        assert normalize_scenario_name('Case 1 - Sphere') == 'case_1_sphere'

        with tempfile.TemporaryDirectory() as tmp:
            result, diagnostics = run_scenario(
                config, output_dir=tmp, verbose=False, log_dir=str(Path(tmp) / 'logs')
            )

            assert (Path(tmp) / 'csv' / 'cli_test_diagnostics.csv').exists()
            assert (Path(tmp) / 'csv' / 'cli_test_bodies.csv').exists()
            assert (Path(tmp) / 'netcdf' / 'cli_test.nc').exists()
            assert (Path(tmp) / 'figs' / 'cli_test_summary.png').exists()
            assert (Path(tmp) / 'logs' / 'cli_test.log').exists()

        assert diagnostics['all_finite']
        assert result.diagnostics is diagnostics
