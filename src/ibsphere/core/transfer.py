"""
Lagrangian ↔ Eulerian Transfer Operators.

Implements the two coupling operators and the grid-wide kernels of the
direct-forcing loop using Numba:

    Spreading (scatter):      f(x_n) += δ_h(x_n - X_k) F_k ΔV
    Interpolation (gather):   U_k     = Σ_n δ_h(x_n - X_k) u(x_n) ΔV

where ΔV is the cell volume and δ_h the separable delta kernel. With the
same kernel and stencil the two operators are exact adjoints:

    Σ_n f(x_n) · u(x_n) = Σ_k F_k · U_k

Spreading writes into shared grid nodes. Stencil weights are computed in
parallel, then accumulated into the grid in one serial pass in marker order,
so the result does not depend on thread scheduling.
"""

import numpy as np
from numba import njit, prange
from typing import Tuple

from .kernels import (
    STENCIL_HALF_WIDTH,
    STENCIL_WIDTH,
    locate_markers,
    compute_stencil_weights,
)


def prepare_stencils(
    positions: np.ndarray,
    prob_lo: np.ndarray,
    dx: np.ndarray,
    kernel: int
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Locate markers and evaluate their stencil weights.

    Args:
        positions: Marker positions (M, 3)
        prob_lo: Physical origin
        dx: Cell sizes
        kernel: KernelType value

    Returns:
        Tuple of (cells (M, 3), weights (M, 5, 5, 5))
    """
    positions = np.ascontiguousarray(positions, dtype=np.float64)
    prob_lo = np.asarray(prob_lo, dtype=np.float64)
    dx = np.asarray(dx, dtype=np.float64)

    cells = locate_markers(positions, prob_lo, dx)
    weights = compute_stencil_weights(positions, cells, prob_lo, dx, int(kernel))
    return cells, weights


def check_stencil_bounds(
    cells: np.ndarray,
    n_cells,
    n_ghost: int
) -> None:
    """
    Verify every marker stencil stays inside the allocated region.

    Raises:
        IndexError: If a stencil reaches past the ghost band
    """
    if len(cells) == 0:
        return

    lo = cells.min(axis=0) - STENCIL_HALF_WIDTH
    hi = cells.max(axis=0) + STENCIL_HALF_WIDTH
    n_cells = np.asarray(n_cells)

    if np.any(lo < -n_ghost) or np.any(hi > n_cells - 1 + n_ghost):
        raise IndexError(
            f"Marker stencil spans cells {lo.tolist()}..{hi.tolist()}, outside the "
            f"allocated region {[-n_ghost] * 3}..{(n_cells - 1 + n_ghost).tolist()}; "
            f"the ghost band must cover {STENCIL_HALF_WIDTH} cells around every marker"
        )


@njit(cache=True)
def spread_forces(
    data: np.ndarray,
    force_index: int,
    forces: np.ndarray,
    cells: np.ndarray,
    weights: np.ndarray,
    n_ghost: int,
    cell_volume: float
) -> None:
    """
    Spread marker forces into the force block of the field (in place).

    Args:
        data: Field array (nx+2g, ny+2g, nz+2g, ncomp)
        force_index: First component of the force block
        forces: Marker force densities (M, 3)
        cells: Containing cells (M, 3)
        weights: Stencil weights (M, 5, 5, 5)
        n_ghost: Ghost width
        cell_volume: ΔV
    """
    n_markers = forces.shape[0]
    w = STENCIL_WIDTH
    h = STENCIL_HALF_WIDTH

    for p in range(n_markers):
        fx = forces[p, 0] * cell_volume
        fy = forces[p, 1] * cell_volume
        fz = forces[p, 2] * cell_volume
        i0 = cells[p, 0] - h + n_ghost
        j0 = cells[p, 1] - h + n_ghost
        k0 = cells[p, 2] - h + n_ghost

        for a in range(w):
            for b in range(w):
                for c in range(w):
                    wt = weights[p, a, b, c]
                    if wt == 0.0:
                        continue
                    data[i0 + a, j0 + b, k0 + c, force_index] += wt * fx
                    data[i0 + a, j0 + b, k0 + c, force_index + 1] += wt * fy
                    data[i0 + a, j0 + b, k0 + c, force_index + 2] += wt * fz


@njit(cache=True, parallel=True)
def interpolate_velocity(
    data: np.ndarray,
    velocity_index: int,
    cells: np.ndarray,
    weights: np.ndarray,
    n_ghost: int,
    cell_volume: float
) -> np.ndarray:
    """
    Interpolate the velocity block onto the markers.

    Args:
        data: Field array (nx+2g, ny+2g, nz+2g, ncomp)
        velocity_index: First component of the velocity block
        cells: Containing cells (M, 3)
        weights: Stencil weights (M, 5, 5, 5)
        n_ghost: Ghost width
        cell_volume: ΔV

    Returns:
        Marker velocities (M, 3)
    """
    n_markers = cells.shape[0]
    w = STENCIL_WIDTH
    h = STENCIL_HALF_WIDTH
    result = np.zeros((n_markers, 3), dtype=np.float64)

    for p in prange(n_markers):
        i0 = cells[p, 0] - h + n_ghost
        j0 = cells[p, 1] - h + n_ghost
        k0 = cells[p, 2] - h + n_ghost
        u = 0.0
        v = 0.0
        ww = 0.0

        for a in range(w):
            for b in range(w):
                for c in range(w):
                    wt = weights[p, a, b, c] * cell_volume
                    u += wt * data[i0 + a, j0 + b, k0 + c, velocity_index]
                    v += wt * data[i0 + a, j0 + b, k0 + c, velocity_index + 1]
                    ww += wt * data[i0 + a, j0 + b, k0 + c, velocity_index + 2]

        result[p, 0] = u
        result[p, 1] = v
        result[p, 2] = ww

    return result


@njit(cache=True, parallel=True)
def zero_block(data: np.ndarray, start: int, n_components: int) -> None:
    """Zero a block of components over the whole allocated array."""
    nx, ny, nz = data.shape[0], data.shape[1], data.shape[2]

    for i in prange(nx):
        for j in range(ny):
            for k in range(nz):
                for c in range(n_components):
                    data[i, j, k, start + c] = 0.0


@njit(cache=True, parallel=True)
def saxpy_block(
    data: np.ndarray,
    dst_index: int,
    src_index: int,
    alpha: float,
    n_components: int,
    n_ghost: int
) -> None:
    """
    dst += alpha * src over the valid region, component-wise (in place).

    Args:
        data: Field array
        dst_index: First destination component
        src_index: First source component
        alpha: Scale factor
        n_components: Block size
        n_ghost: Ghost width (excluded from the update)
    """
    nx = data.shape[0] - 2 * n_ghost
    ny = data.shape[1] - 2 * n_ghost
    nz = data.shape[2] - 2 * n_ghost

    for i in prange(nx):
        ii = i + n_ghost
        for j in range(ny):
            jj = j + n_ghost
            for k in range(nz):
                kk = k + n_ghost
                for c in range(n_components):
                    data[ii, jj, kk, dst_index + c] += alpha * data[ii, jj, kk, src_index + c]


@njit(cache=True, parallel=True)
def direct_forcing(
    body_velocity: np.ndarray,
    marker_velocity: np.ndarray,
    dt: float
) -> np.ndarray:
    """
    Direct-forcing law F = (U_body - U_marker) / dt.

    Args:
        body_velocity: Rigid translational velocity (3,)
        marker_velocity: Interpolated fluid velocity (M, 3)
        dt: Time step

    Returns:
        Marker force densities (M, 3)
    """
    n_markers = marker_velocity.shape[0]
    forces = np.zeros((n_markers, 3), dtype=np.float64)

    for p in prange(n_markers):
        for d in range(3):
            forces[p, d] = (body_velocity[d] - marker_velocity[p, d]) / dt

    return forces
