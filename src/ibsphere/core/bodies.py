"""
Rigid Spherical Bodies and their Lagrangian Surface Markers.

Each immersed sphere is represented by a RigidBody record plus M surface
markers. Marker positions are never stored: they are a deterministic function
of the body pose, regenerated whenever needed.

Marker sampling (generalized spiral on the sphere):
    H_k     = -1 + 2k / (M - 1)
    θ_k     = arccos(H_k)
    φ_0     = φ_{M-1} = 0
    φ_k     = (φ_{k-1} + 3.809 / √M / √(1 - H_k²)) mod 2π
    X_k     = c + R (sin θ_k cos φ_k, sin θ_k sin φ_k, cos θ_k)

Marker count and volume (h = cell size):
    M  = ⌊ (π/3) · 12 (R/h)² ⌋
    dV = π h / (3M) · (12 R² + h²)      (shell of thickness h shared evenly)

References:
    Saff, E. B., & Kuijlaars, A. B. J. (1997). Math. Intelligencer, 19(1), 5-11.
    Uhlmann, M. (2005). J. Comput. Phys., 209(2), 448-476.
"""

import math
import numpy as np
from numba import njit
from dataclasses import dataclass, field
from typing import Dict, Any


def marker_count(radius: float, h: float) -> int:
    """Number of surface markers for a sphere of given radius on cell size h."""
    return int(math.pi / 3.0 * (12.0 * (radius / h)**2))


def marker_volume(radius: float, h: float, n_markers: int) -> float:
    """Volume associated with each marker."""
    return math.pi * h / 3.0 / n_markers * (12.0 * radius * radius + h * h)


def sphere_volume(radius: float) -> float:
    """V = (4/3) π R³."""
    return 4.0 * math.pi * radius**3 / 3.0


def sphere_moment(rho: float, radius: float) -> float:
    """Rotational momentum scale of a solid sphere, I = (8/15) π ρ R⁵."""
    return 8.0 * math.pi * rho * radius**5 / 15.0


@njit(cache=True)
def sample_markers(center: np.ndarray, radius: float, n_markers: int) -> np.ndarray:
    """
    Generate marker positions on a sphere surface.

    The azimuth recurrence is sequential, so this loop is not parallelized;
    index k always maps to the same point on the unit sphere.

    Args:
        center: Sphere centre (3,)
        radius: Sphere radius
        n_markers: Number of markers M (>= 2)

    Returns:
        Marker positions, shape (M, 3)
    """
    positions = np.zeros((n_markers, 3), dtype=np.float64)
    two_pi = 2.0 * math.pi
    phi = 0.0

    for k in range(n_markers):
        hk = -1.0 + 2.0 * k / (n_markers - 1.0)
        theta = math.acos(hk)

        if k == 0 or k == n_markers - 1:
            phi = 0.0
        else:
            phi = np.fmod(
                phi + 3.809 / math.sqrt(n_markers) / math.sqrt(1.0 - hk * hk),
                two_pi
            )

        positions[k, 0] = center[0] + radius * math.sin(theta) * math.cos(phi)
        positions[k, 1] = center[1] + radius * math.sin(theta) * math.sin(phi)
        positions[k, 2] = center[2] + radius * math.cos(theta)

    return positions


@dataclass(eq=False)
class RigidBody:
    """
    State of one immersed rigid sphere.

    Attributes:
        center: Centre position (3,)
        velocity: Translational velocity (3,)
        omega: Angular velocity (3,)
        varphi: Running integral of omega (3,), not a rotation
        radius: Sphere radius
        rho: Body density
        n_markers: Marker count M, fixed at creation
        dv: Volume per marker, fixed at creation
        marker_velocity: Interpolated fluid velocity at markers (M, 3)
        marker_force: Corrective force density at markers (M, 3)
    """
    center: np.ndarray
    radius: float
    rho: float
    n_markers: int
    dv: float
    velocity: np.ndarray = None
    omega: np.ndarray = None
    varphi: np.ndarray = None
    marker_velocity: np.ndarray = field(init=False, repr=False)
    marker_force: np.ndarray = field(init=False, repr=False)

    def __post_init__(self):
        self.center = np.asarray(self.center, dtype=np.float64).copy()
        self.velocity = _vector_or_zero(self.velocity)
        self.omega = _vector_or_zero(self.omega)
        self.varphi = _vector_or_zero(self.varphi)

        if self.n_markers < 2:
            raise ValueError(
                f"A body needs at least 2 markers, got {self.n_markers}"
            )

        self.marker_velocity = np.zeros((self.n_markers, 3), dtype=np.float64)
        self.marker_force = np.zeros((self.n_markers, 3), dtype=np.float64)

    @property
    def volume(self) -> float:
        return sphere_volume(self.radius)

    @property
    def moment(self) -> float:
        return sphere_moment(self.rho, self.radius)

    def markers(self) -> np.ndarray:
        """Marker positions for the current pose."""
        return sample_markers(self.center, float(self.radius), int(self.n_markers))

    def to_record(self) -> Dict[str, Any]:
        """Flat record of the persistent state (no marker positions)."""
        record = {
            'radius': float(self.radius),
            'rho': float(self.rho),
            'n_markers': int(self.n_markers),
            'dv': float(self.dv),
        }
        for name in ('center', 'velocity', 'omega', 'varphi'):
            values = getattr(self, name)
            for axis, label in enumerate('xyz'):
                record[f'{name}_{label}'] = float(values[axis])
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'RigidBody':
        """Rebuild a body from a record produced by to_record()."""
        def vec(name):
            return np.array([float(record[f'{name}_{a}']) for a in 'xyz'])

        return cls(
            center=vec('center'),
            radius=float(record['radius']),
            rho=float(record['rho']),
            n_markers=int(record['n_markers']),
            dv=float(record['dv']),
            velocity=vec('velocity'),
            omega=vec('omega'),
            varphi=vec('varphi'),
        )

    def __repr__(self) -> str:
        c = self.center
        v = self.velocity
        return (
            f"RigidBody(center=({c[0]:.4g}, {c[1]:.4g}, {c[2]:.4g}), "
            f"velocity=({v[0]:.3g}, {v[1]:.3g}, {v[2]:.3g}), "
            f"R={self.radius:.4g}, rho={self.rho:.4g}, M={self.n_markers})"
        )


def _vector_or_zero(value) -> np.ndarray:
    if value is None:
        return np.zeros(3, dtype=np.float64)
    vec = np.asarray(value, dtype=np.float64).copy()
    if vec.shape != (3,):
        raise ValueError(f"Expected a 3-vector, got shape {vec.shape}")
    return vec


def create_body(
    position,
    radius: float,
    rho: float,
    h: float
) -> RigidBody:
    """
    Create a body at rest with marker count and volume derived from h.

    Args:
        position: Centre (3,)
        radius: Sphere radius
        rho: Body density
        h: Cell size of the coupling level

    Returns:
        New RigidBody
    """
    if h <= 0.0:
        raise ValueError(f"Cell size must be positive, got {h}")
    if radius < h:
        raise ValueError(
            f"Radius {radius} is below one cell width {h}; markers cannot resolve the body"
        )
    if rho <= 0.0:
        raise ValueError(f"Body density must be positive, got {rho}")

    n_markers = marker_count(radius, h)
    if n_markers < 2:
        raise ValueError(f"Degenerate marker count {n_markers} for radius {radius}")

    return RigidBody(
        center=np.asarray(position, dtype=np.float64),
        radius=float(radius),
        rho=float(rho),
        n_markers=n_markers,
        dv=marker_volume(radius, h, n_markers),
    )
