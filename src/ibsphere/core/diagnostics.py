"""
Coupling Diagnostics for Immersed-Boundary Quality Assessment.
==============================================================

Physics Background:
------------------
Direct forcing enforces no-slip only approximately. The quality of the
coupling is controlled by:

1. KERNEL NORMALIZATION: Σ δ_h ΔV should be 1 so that spreading neither
   creates nor destroys momentum
2. SLIP ERROR: after the correction cycles the interpolated fluid velocity
   at every marker should match the rigid-body velocity
3. HYDRODYNAMIC LOAD: Σ F ΔV and Σ r × F ΔV, the force and torque the
   fluid exerts through the markers
4. GEOMETRIC RESOLUTION: the solid volume fraction recovered from a nodal
   level set, and the convex hull of the marker cloud, should both
   reproduce the exact sphere volume

References:
    - Uhlmann, M. (2005). J. Comput. Phys., 209(2), 448-476.
    - Breugem, W.-P. (2012). J. Comput. Phys., 231(13), 4469-4498.
"""

import numpy as np
from numba import njit, prange
from typing import Dict, Any, Optional, Sequence
from scipy.spatial import ConvexHull

from .kernels import KernelType
from .geometry import CoordSys, EulerianField
from .bodies import sphere_volume
from .transfer import prepare_stencils, check_stencil_bounds, interpolate_velocity
from .dynamics import hydrodynamic_force_torque


# =============================================================================
# KERNEL NORMALIZATION
# =============================================================================

def compute_kernel_normalization(
    position: Sequence[float],
    coords: CoordSys,
    kernel=KernelType.FOUR_POINT
) -> float:
    """
    Sum of 3-D delta weights times cell volume over one marker's stencil.

    Equals 1 for a marker on a grid node for both kernels; the three-point
    kernel also sums to 1 for arbitrary marker positions.

    Args:
        position: Marker position (3,)
        coords: Grid metrics
        kernel: Delta kernel variant

    Returns:
        Σ δ_h ΔV
    """
    positions = np.asarray(position, dtype=np.float64).reshape(1, 3)
    _, weights = prepare_stencils(
        positions, coords.prob_lo, coords.dx, KernelType.from_name(kernel)
    )
    return float(weights.sum() * coords.cell_volume)


# =============================================================================
# SLIP AND LOADS
# =============================================================================

def compute_slip_error(
    engine: 'DirectForcingEngine',
    field: EulerianField,
    kernel=None
) -> Dict[str, Any]:
    """
    Residual no-slip error |U_body - U_marker| at every body's markers.

    Args:
        engine: Coupling engine holding the bodies
        field: Current Eulerian field
        kernel: Kernel for interpolation (default: engine config)

    Returns:
        Dictionary with per-body and overall maximum/mean slip

    Raises:
        IndexError: If a marker stencil leaves the allocated field
    """
    kernel = KernelType.from_name(engine.config.kernel if kernel is None else kernel)
    coords = engine.coords

    max_slip = np.zeros(engine.n_bodies)
    mean_slip = np.zeros(engine.n_bodies)

    for b, body in enumerate(engine.bodies):
        cells, weights = prepare_stencils(body.markers(), coords.prob_lo, coords.dx, kernel)
        check_stencil_bounds(cells, field.n_cells, field.n_ghost)
        u_markers = interpolate_velocity(
            field.data, engine.velocity_index, cells, weights,
            field.n_ghost, coords.cell_volume
        )
        slip = np.linalg.norm(u_markers - body.velocity[None, :], axis=1)
        max_slip[b] = slip.max()
        mean_slip[b] = slip.mean()

    return {
        'slip_max_per_body': max_slip,
        'slip_mean_per_body': mean_slip,
        'slip_max': float(max_slip.max()) if len(max_slip) else 0.0,
        'slip_mean': float(mean_slip.mean()) if len(mean_slip) else 0.0,
    }


def compute_hydrodynamic_loads(engine: 'DirectForcingEngine') -> Dict[str, np.ndarray]:
    """
    Net force Σ F ΔV and torque Σ r × F ΔV carried by each body's markers.

    Args:
        engine: Coupling engine holding the bodies

    Returns:
        Dictionary with 'force' and 'torque' arrays, shape (n_bodies, 3)
    """
    forces = np.zeros((engine.n_bodies, 3))
    torques = np.zeros((engine.n_bodies, 3))

    for b, body in enumerate(engine.bodies):
        forces[b], torques[b] = hydrodynamic_force_torque(
            body.markers(), body.marker_force, body.center, float(body.dv)
        )

    return {'force': forces, 'torque': torques}


# =============================================================================
# VOLUME FRACTION
# =============================================================================

def compute_level_set(
    coords: CoordSys,
    n_cells: Sequence[int],
    centers: np.ndarray,
    radius: float
) -> np.ndarray:
    """
    Signed distance to the nearest sphere on cell corners (negative inside).

    Args:
        coords: Grid metrics
        n_cells: Valid cell counts (nx, ny, nz)
        centers: Sphere centres (n_bodies, 3)
        radius: Sphere radius

    Returns:
        Nodal level set, shape (nx + 1, ny + 1, nz + 1)
    """
    nx, ny, nz = (int(n) for n in n_cells)
    x = coords.edge_locations(0, nx - 1, 0)
    y = coords.edge_locations(0, ny - 1, 1)
    z = coords.edge_locations(0, nz - 1, 2)
    X, Y, Z = np.meshgrid(x, y, z, indexing='ij')

    phi = np.full(X.shape, np.inf)
    for c in np.asarray(centers, dtype=np.float64).reshape(-1, 3):
        dist = np.sqrt((X - c[0])**2 + (Y - c[1])**2 + (Z - c[2])**2) - radius
        phi = np.minimum(phi, dist)

    return phi


@njit(cache=True, parallel=True)
def nodal_phi_to_volume_fraction(phi: np.ndarray) -> np.ndarray:
    """
    Solid volume fraction per cell from a nodal level set.

    pvf = Σ(-φ H(-φ)) / (Σ|φ| + 1e-12) over the 8 cell corners.

    Args:
        phi: Nodal level set (nx + 1, ny + 1, nz + 1), negative inside

    Returns:
        Volume fraction in [0, 1], shape (nx, ny, nz)
    """
    nx = phi.shape[0] - 1
    ny = phi.shape[1] - 1
    nz = phi.shape[2] - 1
    pvf = np.zeros((nx, ny, nz), dtype=np.float64)

    for i in prange(nx):
        for j in range(ny):
            for k in range(nz):
                num = 0.0
                den = 0.0
                for kk in range(k, k + 2):
                    for jj in range(j, j + 2):
                        for ii in range(i, i + 2):
                            value = phi[ii, jj, kk]
                            if value < 0.0:
                                num -= value
                            den += abs(value)
                pvf[i, j, k] = num / (den + 1e-12)

    return pvf


def compute_volume_fraction_error(
    coords: CoordSys,
    n_cells: Sequence[int],
    centers: np.ndarray,
    radius: float
) -> Dict[str, float]:
    """
    Compare the grid-recovered solid volume with the exact sphere volume.

    Returns:
        Dictionary with recovered and exact volumes and their relative error
    """
    centers = np.asarray(centers, dtype=np.float64).reshape(-1, 3)
    phi = compute_level_set(coords, n_cells, centers, radius)
    pvf = nodal_phi_to_volume_fraction(phi)

    recovered = float(pvf.sum() * coords.cell_volume)
    exact = sphere_volume(radius) * len(centers)

    return {
        'solid_volume_grid': recovered,
        'solid_volume_exact': exact,
        'solid_volume_error_relative': abs(recovered - exact) / exact,
    }


# =============================================================================
# MARKER SAMPLING QUALITY
# =============================================================================

def compute_marker_hull(positions: np.ndarray, radius: float) -> Dict[str, float]:
    """
    Convex hull of the marker cloud compared with the exact sphere.

    Args:
        positions: Marker positions (M, 3), M >= 4
        radius: Sphere radius

    Returns:
        Dictionary with hull volume/area and their ratios to the sphere
    """
    hull = ConvexHull(positions)
    exact_volume = sphere_volume(radius)
    exact_area = 4.0 * np.pi * radius**2

    return {
        'hull_volume': float(hull.volume),
        'hull_area': float(hull.area),
        'hull_volume_ratio': float(hull.volume / exact_volume),
        'hull_area_ratio': float(hull.area / exact_area),
    }


# =============================================================================
# ALL DIAGNOSTICS
# =============================================================================

def compute_all_diagnostics(
    result: 'SimulationResult',
    verbose: bool = True
) -> Dict[str, Any]:
    """
    Compute all coupling diagnostics for a finished run.

    Args:
        result: SimulationResult from CouplingSolver
        verbose: Print progress

    Returns:
        Dictionary of scalar diagnostics
    """
    engine = result.engine
    field = result.final_field
    system = result.system
    diagnostics: Dict[str, Any] = {}

    if verbose:
        print("      Computing slip error...")
    slip = compute_slip_error(engine, field)
    diagnostics['slip_max'] = slip['slip_max']
    diagnostics['slip_mean'] = slip['slip_mean']

    u_ref = max(float(np.linalg.norm(system.far_field_velocity)), 1e-30)
    diagnostics['slip_max_normalized'] = slip['slip_max'] / u_ref

    if verbose:
        print("      Computing hydrodynamic loads...")
    loads = compute_hydrodynamic_loads(engine)
    diagnostics['force_x_final'] = float(loads['force'][:, 0].sum())
    diagnostics['force_y_final'] = float(loads['force'][:, 1].sum())
    diagnostics['force_z_final'] = float(loads['force'][:, 2].sum())
    diagnostics['torque_magnitude_final'] = float(np.linalg.norm(loads['torque'], axis=1).max())

    if verbose:
        print("      Computing kernel normalization...")
    centre_node = field.coords.cell_center(np.asarray(field.n_cells) // 2)
    diagnostics['kernel_normalization'] = compute_kernel_normalization(
        centre_node, field.coords, engine.config.kernel
    )

    if verbose:
        print("      Computing solid volume fraction...")
    diagnostics.update(compute_volume_fraction_error(
        field.coords, field.n_cells, engine.centers(), system.radius
    ))

    if verbose:
        print("      Computing marker hull...")
    body = engine.bodies[0]
    diagnostics.update(compute_marker_hull(body.markers(), body.radius))
    diagnostics['n_markers'] = int(body.n_markers)

    displacement = result.centers[-1] - result.centers[0]
    diagnostics['max_displacement'] = float(np.linalg.norm(displacement, axis=1).max())
    diagnostics['max_displacement_normalized'] = diagnostics['max_displacement'] / system.radius
    diagnostics['max_speed_final'] = float(np.linalg.norm(result.velocities[-1], axis=1).max())

    finite = (
        np.isfinite(field.data).all()
        and np.isfinite(result.centers).all()
        and np.isfinite(result.velocities).all()
    )
    diagnostics['all_finite'] = bool(finite)

    if verbose:
        print(f"      Max slip: {diagnostics['slip_max']:.3e}")
        print(f"      Solid volume error: {diagnostics['solid_volume_error_relative']:.3e}")

    return diagnostics
