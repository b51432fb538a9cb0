"""
Grid Geometry and Eulerian Field Container.

Provides:
    - CoordSys: cell-centre, face, node and volume metrics for Cartesian or
      axisymmetric (RZ) coordinate systems
    - EulerianField: multi-component cell-centred array with a ghost band,
      shared between the fluid solver and the coupling engine

Index convention:
    Valid cell (i, j, k) is stored at data[i + g, j + g, k + g, :] where g is
    the ghost width. Its centre sits at prob_lo + (index + 0.5) * dx.

Axisymmetric convention (RZ):
    axis 0 is the radial direction r, axis 1 the axial direction z; axis 2 is
    unused. Volumes and areas carry the 2π azimuthal factor.
"""

import numpy as np
from enum import IntEnum
from dataclasses import dataclass, field
from typing import Sequence, Tuple


RZ_FACTOR = 2.0 * np.pi


class CoordType(IntEnum):
    """Coordinate system of the grid."""
    CARTESIAN = 0
    RZ = 1


@dataclass(eq=False)
class CoordSys:
    """
    Grid metrics for a single refinement level.

    Attributes:
        dx: Cell size per axis
        prob_lo: Physical coordinates of the lower domain corner
        coord: Coordinate system type

    Example:
        >>> cs = CoordSys(dx=(0.5, 0.5, 0.5), prob_lo=(0.0, 0.0, 0.0))
        >>> cs.cell_center((0, 0, 0))
        array([0.25, 0.25, 0.25])
    """
    dx: Tuple[float, float, float]
    prob_lo: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    coord: CoordType = CoordType.CARTESIAN

    def __post_init__(self):
        self.dx = np.asarray(self.dx, dtype=np.float64)
        self.prob_lo = np.asarray(self.prob_lo, dtype=np.float64)
        self.coord = CoordType(self.coord)

        if self.dx.shape != (3,) or self.prob_lo.shape != (3,):
            raise ValueError("dx and prob_lo must have exactly 3 components")
        if not np.all(np.isfinite(self.dx)) or np.any(self.dx <= 0.0):
            raise ValueError(f"Cell size must be positive, got {self.dx.tolist()}")

    @property
    def is_cartesian(self) -> bool:
        return self.coord == CoordType.CARTESIAN

    @property
    def is_rz(self) -> bool:
        return self.coord == CoordType.RZ

    @property
    def cell_volume(self) -> float:
        """Cartesian cell volume dx·dy·dz."""
        return float(np.prod(self.dx))

    def same_grid(self, other: 'CoordSys') -> bool:
        """Check whether two metrics describe the same level."""
        return (
            self.coord == other.coord
            and np.allclose(self.dx, other.dx, rtol=1e-12, atol=0.0)
            and np.allclose(self.prob_lo, other.prob_lo, rtol=1e-12, atol=1e-14)
        )

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    def cell_center(self, index: Sequence[int]) -> np.ndarray:
        """Physical location of a cell centre."""
        return self.prob_lo + self.dx * (0.5 + np.asarray(index, dtype=np.float64))

    def cell_centers(self, lo: int, hi: int, direction: int) -> np.ndarray:
        """Cell-centre coordinates for indices lo..hi (inclusive) along one axis."""
        idx = np.arange(lo, hi + 1, dtype=np.float64)
        return self.prob_lo[direction] + self.dx[direction] * (0.5 + idx)

    def edge_locations(self, lo: int, hi: int, direction: int) -> np.ndarray:
        """Face coordinates bounding cells lo..hi along one axis (hi - lo + 2 values)."""
        idx = np.arange(lo, hi + 2, dtype=np.float64)
        return self.prob_lo[direction] + self.dx[direction] * idx

    def lo_edge(self, index: int, direction: int) -> float:
        return float(self.prob_lo[direction] + self.dx[direction] * index)

    def hi_edge(self, index: int, direction: int) -> float:
        return float(self.prob_lo[direction] + self.dx[direction] * (index + 1))

    def lo_face(self, index: Sequence[int], direction: int) -> np.ndarray:
        """Centre of the low face of a cell normal to `direction`."""
        off = np.full(3, 0.5)
        off[direction] = 0.0
        return self.prob_lo + self.dx * (off + np.asarray(index, dtype=np.float64))

    def hi_face(self, index: Sequence[int], direction: int) -> np.ndarray:
        """Centre of the high face of a cell normal to `direction`."""
        off = np.full(3, 0.5)
        off[direction] = 1.0
        return self.prob_lo + self.dx * (off + np.asarray(index, dtype=np.float64))

    def lo_node(self, index: Sequence[int]) -> np.ndarray:
        return self.prob_lo + self.dx * np.asarray(index, dtype=np.float64)

    def hi_node(self, index: Sequence[int]) -> np.ndarray:
        return self.prob_lo + self.dx * (np.asarray(index, dtype=np.float64) + 1.0)

    def cell_index(self, point: Sequence[float]) -> np.ndarray:
        """Index of the cell containing a physical point."""
        rel = (np.asarray(point, dtype=np.float64) - self.prob_lo) / self.dx
        return np.floor(rel).astype(np.int64)

    # ------------------------------------------------------------------
    # Volume coordinates
    # ------------------------------------------------------------------

    def cell_vol_coord(self, lo: int, hi: int, direction: int) -> np.ndarray:
        """Cell-centre volume coordinate (r²/2 in the RZ radial direction)."""
        loc = self.cell_centers(lo, hi, direction)
        if self.is_rz and direction == 0:
            return 0.5 * loc * loc
        return loc

    def edge_vol_coord(self, lo: int, hi: int, direction: int) -> np.ndarray:
        """Face volume coordinate (r²/2 in the RZ radial direction)."""
        loc = self.edge_locations(lo, hi, direction)
        if self.is_rz and direction == 0:
            return 0.5 * loc * loc
        return loc

    # ------------------------------------------------------------------
    # Volumes and areas
    # ------------------------------------------------------------------

    def volume(self, index: Sequence[int]) -> float:
        """Volume of a single cell."""
        xlo = self.lo_node(index)
        xhi = self.hi_node(index)

        if self.is_cartesian:
            return float(np.prod(xhi - xlo))

        return float(0.5 * RZ_FACTOR * (xhi[1] - xlo[1]) * (xhi[0]**2 - xlo[0]**2))

    def area_lo(self, index: Sequence[int], direction: int) -> float:
        """Area of the low face of a cell normal to `direction`."""
        if self.is_cartesian:
            others = [d for d in range(3) if d != direction]
            return float(self.dx[others[0]] * self.dx[others[1]])

        xlo = self.lo_node(index)
        if direction == 0:
            return float(RZ_FACTOR * self.dx[1] * xlo[0])
        if direction == 1:
            return float(((xlo[0] + self.dx[0])**2 - xlo[0]**2) * 0.5 * RZ_FACTOR)
        raise ValueError("RZ coordinates only define directions 0 (r) and 1 (z)")

    def area_hi(self, index: Sequence[int], direction: int) -> float:
        """Area of the high face of a cell normal to `direction`."""
        if self.is_cartesian:
            return self.area_lo(index, direction)

        xhi = self.hi_node(index)
        if direction == 0:
            return float(RZ_FACTOR * self.dx[1] * xhi[0])
        if direction == 1:
            return float((xhi[0]**2 - (xhi[0] - self.dx[0])**2) * 0.5 * RZ_FACTOR)
        raise ValueError("RZ coordinates only define directions 0 (r) and 1 (z)")

    def __repr__(self) -> str:
        return (
            f"CoordSys({self.coord.name}, dx={self.dx.tolist()}, "
            f"prob_lo={self.prob_lo.tolist()})"
        )


@dataclass(eq=False)
class EulerianField:
    """
    Cell-centred multi-component field with a ghost band.

    Attributes:
        data: Array of shape (nx + 2g, ny + 2g, nz + 2g, n_components)
        coords: Grid metrics of the level holding the field
        n_ghost: Ghost width g on every side
    """
    data: np.ndarray
    coords: CoordSys
    n_ghost: int = 2
    n_cells: Tuple[int, int, int] = field(init=False)

    def __post_init__(self):
        if self.data.ndim != 4:
            raise ValueError(
                f"Field data must be 4-D (x, y, z, component), got {self.data.ndim}-D"
            )
        if self.n_ghost < 0:
            raise ValueError("Ghost width must be non-negative")

        g = self.n_ghost
        n_cells = tuple(int(s - 2 * g) for s in self.data.shape[:3])
        if min(n_cells) <= 0:
            raise ValueError("Field has no valid cells after removing the ghost band")
        self.n_cells = n_cells

    @classmethod
    def zeros(
        cls,
        n_cells: Sequence[int],
        n_components: int,
        coords: CoordSys,
        n_ghost: int = 2
    ) -> 'EulerianField':
        """Allocate a zero field with the given valid shape."""
        g = int(n_ghost)
        shape = tuple(int(n) + 2 * g for n in n_cells) + (int(n_components),)
        return cls(data=np.zeros(shape, dtype=np.float64), coords=coords, n_ghost=g)

    @property
    def n_components(self) -> int:
        return self.data.shape[3]

    def valid(self, component: int) -> np.ndarray:
        """View of one component restricted to the valid region."""
        g = self.n_ghost
        nx, ny, nz = self.n_cells
        return self.data[g:g + nx, g:g + ny, g:g + nz, component]

    def block(self, start: int, n: int = 3) -> np.ndarray:
        """View of n consecutive components over the valid region."""
        g = self.n_ghost
        nx, ny, nz = self.n_cells
        return self.data[g:g + nx, g:g + ny, g:g + nz, start:start + n]

    def fill(self, component: int, value: float) -> None:
        """Set one component everywhere, ghosts included."""
        self.data[..., component] = value

    def cell_centers(self, direction: int) -> np.ndarray:
        """Cell-centre coordinates of the valid region along one axis."""
        return self.coords.cell_centers(0, self.n_cells[direction] - 1, direction)

    def domain_hi(self) -> np.ndarray:
        """Upper physical corner of the valid region."""
        return self.coords.prob_lo + self.coords.dx * np.asarray(self.n_cells)

    def copy(self) -> 'EulerianField':
        return EulerianField(data=self.data.copy(), coords=self.coords, n_ghost=self.n_ghost)
