"""
Regularized Delta Kernels for Particle-Mesh Transfer.

Implements the discrete delta functions used to exchange quantities between
Lagrangian markers and the Eulerian grid, using Numba for high performance.

Two interchangeable variants are provided:
    - FOUR_POINT: piecewise kernel with branches on [0, 0.5) and [1, 2);
      the interval [0.5, 1) evaluates to zero
    - THREE_POINT: regularized three-point kernel (Roma et al., 1999)

Both have support inside a half-width of 2 cells, so every marker touches
at most a 5×5×5 stencil of grid nodes. The 3-D weight is the product of
three 1-D weights:

    δ_h(x - X) = φ(r_x) φ(r_y) φ(r_z) / h³,   r = |x - X| / h

References:
    Peskin, C. S. (2002). The immersed boundary method. Acta Numerica, 11, 479-517.
    Roma, A. M., Peskin, C. S., & Berger, M. J. (1999). J. Comput. Phys., 153(2), 509-534.
"""

import math
from enum import IntEnum

import numpy as np
from numba import njit, prange


STENCIL_HALF_WIDTH = 2
STENCIL_WIDTH = 2 * STENCIL_HALF_WIDTH + 1


class KernelType(IntEnum):
    """Delta kernel variant."""
    FOUR_POINT = 0
    THREE_POINT = 1

    @classmethod
    def from_name(cls, name) -> 'KernelType':
        """
        Resolve a kernel from its name or value.

        Accepts a KernelType, an integer value, or a name such as
        'four_point', 'four-point', '4-point' or 'three_point'.
        """
        if isinstance(name, cls):
            return name
        if isinstance(name, (int, np.integer)):
            try:
                return cls(int(name))
            except ValueError:
                raise ValueError(f"Unknown kernel variant: {name}")

        key = str(name).strip().lower().replace('-', '_').replace(' ', '_')
        aliases = {
            'four_point': cls.FOUR_POINT,
            '4_point': cls.FOUR_POINT,
            'four': cls.FOUR_POINT,
            'three_point': cls.THREE_POINT,
            '3_point': cls.THREE_POINT,
            'three': cls.THREE_POINT,
        }
        if key not in aliases:
            raise ValueError(f"Unknown kernel variant: {name}")
        return aliases[key]


@njit(cache=True)
def delta_weight(distance: float, h: float, kernel: int) -> float:
    """
    One-dimensional regularized delta function.

    Args:
        distance: Signed separation between grid node and marker
        h: Cell width along this axis
        kernel: KernelType value

    Returns:
        φ(|distance / h|) / h
    """
    r = abs(distance / h)

    if kernel == 0:
        if r >= 0.0 and r < 0.5:
            return (3.0 - 2.0 * r + math.sqrt(1.0 + 4.0 * r - 4.0 * r * r)) / 8.0 / h
        elif r >= 1.0 and r < 2.0:
            return (5.0 - 2.0 * r - math.sqrt(-7.0 + 12.0 * r - 4.0 * r * r)) / 8.0 / h
        else:
            return 0.0

    if kernel == 1:
        if r < 0.5:
            return (1.0 + math.sqrt(1.0 - 3.0 * r * r)) / 3.0 / h
        elif r < 1.5:
            s = 1.0 - r
            return (5.0 - 3.0 * r - math.sqrt(1.0 - 3.0 * s * s)) / 6.0 / h
        else:
            return 0.0

    return 0.0


@njit(cache=True, parallel=True)
def locate_markers(
    positions: np.ndarray,
    prob_lo: np.ndarray,
    dx: np.ndarray
) -> np.ndarray:
    """
    Find the containing cell of every marker.

    Args:
        positions: Marker positions, shape (M, 3)
        prob_lo: Physical origin of the grid
        dx: Cell sizes

    Returns:
        Integer cell indices, shape (M, 3)
    """
    n_markers = positions.shape[0]
    cells = np.zeros((n_markers, 3), dtype=np.int64)

    for p in prange(n_markers):
        for d in range(3):
            cells[p, d] = int(math.floor((positions[p, d] - prob_lo[d]) / dx[d]))

    return cells


@njit(cache=True, parallel=True)
def compute_stencil_weights(
    positions: np.ndarray,
    cells: np.ndarray,
    prob_lo: np.ndarray,
    dx: np.ndarray,
    kernel: int
) -> np.ndarray:
    """
    Compute separable 3-D delta weights over each marker's stencil.

    Stencil entry [a, b, c] refers to node
    (i + a - 2, j + b - 2, k + c - 2) where (i, j, k) is the containing cell.

    Args:
        positions: Marker positions, shape (M, 3)
        cells: Containing cells, shape (M, 3)
        prob_lo: Physical origin of the grid
        dx: Cell sizes
        kernel: KernelType value

    Returns:
        Weights δ_h, shape (M, 5, 5, 5)
    """
    n_markers = positions.shape[0]
    w = STENCIL_WIDTH
    weights = np.zeros((n_markers, w, w, w), dtype=np.float64)

    for p in prange(n_markers):
        wx = np.zeros(w)
        wy = np.zeros(w)
        wz = np.zeros(w)

        for a in range(w):
            off = a - STENCIL_HALF_WIDTH
            xi = prob_lo[0] + (cells[p, 0] + off + 0.5) * dx[0]
            yj = prob_lo[1] + (cells[p, 1] + off + 0.5) * dx[1]
            zk = prob_lo[2] + (cells[p, 2] + off + 0.5) * dx[2]
            wx[a] = delta_weight(positions[p, 0] - xi, dx[0], kernel)
            wy[a] = delta_weight(positions[p, 1] - yj, dx[1], kernel)
            wz[a] = delta_weight(positions[p, 2] - zk, dx[2], kernel)

        for a in range(w):
            for b in range(w):
                for c in range(w):
                    weights[p, a, b, c] = wx[a] * wy[b] * wz[c]

    return weights
