"""
Multidirect-Forcing Coupling Engine.

Coordinates the rigid bodies, their markers and the Eulerian field for one
macro time step:

    for each body:
        1. sample markers from the current pose
        2. rigid-body pre-update from last step's marker forces
        3. repeat sub_iterations times:
             a. zero the force block
             b. interpolate velocity onto markers
             c. F = (U_body - U_marker) / Δt
             d. spread F into the force block
             e. velocity += Δt · force

The sub-iteration count is fixed; there is no residual check.
"""

import numpy as np
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .kernels import KernelType
from .geometry import CoordSys, EulerianField
from .bodies import RigidBody, create_body
from .transfer import (
    prepare_stencils,
    check_stencil_bounds,
    spread_forces,
    interpolate_velocity,
    zero_block,
    saxpy_block,
    direct_forcing,
)
from .dynamics import update_rigid_body


MIN_GHOST_CELLS = 2


@dataclass
class ForcingConfig:
    """
    Direct-forcing parameters.

    Attributes:
        kernel: Delta kernel variant
        sub_iterations: Correction cycles per macro step (>= 1)
        relaxation: Rigid-body relaxation coefficient α in (0, 1]
    """
    kernel: KernelType = KernelType.FOUR_POINT
    sub_iterations: int = 2
    relaxation: float = 0.5

    def __post_init__(self):
        self.kernel = KernelType.from_name(self.kernel)
        self.sub_iterations = _check_sub_iterations(self.sub_iterations)
        self.relaxation = _check_relaxation(self.relaxation)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'ForcingConfig':
        return cls(
            kernel=config.get('kernel', KernelType.FOUR_POINT),
            sub_iterations=config.get('sub_iterations', 2),
            relaxation=config.get('relaxation', 0.5),
        )


def _check_sub_iterations(value) -> int:
    if int(value) != value or int(value) < 1:
        raise ValueError(f"Sub-iteration count must be a positive integer, got {value}")
    return int(value)


def _check_relaxation(value) -> float:
    value = float(value)
    if not (0.0 < value <= 1.0):
        raise ValueError(f"Relaxation must lie in (0, 1], got {value}")
    return value


def _check_coupling(
    body_densities: Sequence[float],
    fluid_density: float,
    force_index: int,
    velocity_index: int
) -> None:
    """Validate the density contrast and component blocks shared by all bodies."""
    if len(body_densities) == 0:
        raise ValueError("At least one body is required")
    if fluid_density <= 0.0:
        raise ValueError(f"Fluid density must be positive, got {fluid_density}")
    for rho in body_densities:
        if rho == fluid_density:
            raise ValueError(
                f"Body density equals fluid density ({rho}); "
                f"a nonzero density contrast is required"
            )
    if force_index < 0 or velocity_index < 0:
        raise ValueError("Component offsets must be non-negative")
    if abs(force_index - velocity_index) < 3:
        raise ValueError(
            f"Force block at {force_index} overlaps velocity block at {velocity_index}"
        )


class DirectForcingEngine:
    """
    Immersed-boundary coupling engine for rigid spheres.

    Owns the body records across calls and corrects the Eulerian velocity
    in place on every advance().

    Attributes:
        coords: Metrics of the coupling level
        config: Default forcing parameters
        bodies: Rigid body records in creation order

    Example:
        >>> coords = CoordSys(dx=(1.0, 1.0, 1.0))
        >>> engine = DirectForcingEngine(coords)
        >>> engine.init_bodies([16.0], [16.0], [16.0], radius=4.0,
        ...                    body_density=2.0, fluid_density=1.0,
        ...                    force_index=3, velocity_index=0)
        >>> field = EulerianField.zeros((32, 32, 32), 6, coords)
        >>> field = engine.advance(field, dt=0.01)
    """

    def __init__(
        self,
        coords: CoordSys,
        config: Optional[ForcingConfig] = None,
        logger=None
    ):
        """
        Initialize engine.

        Args:
            coords: Grid metrics of the level used for coupling
            config: Forcing parameters (defaults if None)
            logger: Optional SimulationLogger
        """
        if not coords.is_cartesian:
            raise ValueError("Immersed-boundary coupling requires Cartesian coordinates")

        self.coords = coords
        self.config = config if config is not None else ForcingConfig()
        self.logger = logger

        self.bodies: List[RigidBody] = []
        self.rho_fluid: Optional[float] = None
        self.force_index: Optional[int] = None
        self.velocity_index: Optional[int] = None
        self.step_count = 0

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def init_bodies(
        self,
        x: Sequence[float],
        y: Sequence[float],
        z: Sequence[float],
        radius: float,
        body_density: float,
        fluid_density: float,
        force_index: int,
        velocity_index: int
    ) -> List[RigidBody]:
        """
        Create one body per seed position; all bodies share radius and density.

        Args:
            x, y, z: Seed centre coordinates (equal lengths)
            radius: Sphere radius
            body_density: Body density ρ_b
            fluid_density: Fluid density ρ_f (ρ_b - ρ_f must be nonzero)
            force_index: First component of the force block
            velocity_index: First component of the velocity block

        Returns:
            The created bodies
        """
        if not (len(x) == len(y) == len(z)):
            raise ValueError(
                f"Position arrays differ in length: {len(x)}, {len(y)}, {len(z)}"
            )
        if len(x) == 0:
            raise ValueError("At least one body position is required")
        _check_coupling([body_density], fluid_density, force_index, velocity_index)

        if self.bodies and (
            float(fluid_density) != self.rho_fluid
            or int(force_index) != self.force_index
            or int(velocity_index) != self.velocity_index
        ):
            raise ValueError(
                f"Existing bodies use rho_f = {self.rho_fluid}, force block "
                f"{self.force_index}, velocity block {self.velocity_index}; "
                f"later calls must pass the same values"
            )

        h = float(self.coords.dx[0])
        created = [
            create_body((xi, yi, zi), radius, body_density, h)
            for xi, yi, zi in zip(x, y, z)
        ]

        self.bodies.extend(created)
        self.rho_fluid = float(fluid_density)
        self.force_index = int(force_index)
        self.velocity_index = int(velocity_index)

        if self.logger is not None:
            body = created[0]
            self.logger.info(
                f"Initialized {len(created)} bodies: R = {radius}, rho_s = {body_density}, "
                f"rho_f = {fluid_density}, M = {body.n_markers}, dV = {body.dv:.4e}"
            )

        return created

    # ------------------------------------------------------------------
    # Time stepping
    # ------------------------------------------------------------------

    def advance(
        self,
        field: EulerianField,
        dt: float,
        sub_iterations: Optional[int] = None,
        relaxation: Optional[float] = None,
        kernel=None
    ) -> EulerianField:
        """
        Run one macro step: rigid-body pre-update plus correction cycles.

        Args:
            field: Eulerian field, corrected in place
            dt: Time step
            sub_iterations: Correction cycles (default: config)
            relaxation: Relaxation α (default: config)
            kernel: Delta kernel variant (default: config)

        Returns:
            The corrected field
        """
        n_sub = _check_sub_iterations(
            self.config.sub_iterations if sub_iterations is None else sub_iterations
        )
        alpha = _check_relaxation(
            self.config.relaxation if relaxation is None else relaxation
        )
        kernel = KernelType.from_name(self.config.kernel if kernel is None else kernel)

        if dt <= 0.0:
            raise ValueError(f"Time step must be positive, got {dt}")
        self._check_field(field)

        for index, body in enumerate(self.bodies):
            force, torque = self._advance_body(body, field, dt, n_sub, alpha, kernel)

            if self.logger is not None:
                self.logger.debug(
                    f"step {self.step_count} body {index}: "
                    f"F = {np.array2string(force, precision=4)}, "
                    f"T = {np.array2string(torque, precision=4)}, "
                    f"v = {np.array2string(body.velocity, precision=4)}"
                )

        self.step_count += 1
        return field

    def _advance_body(
        self,
        body: RigidBody,
        field: EulerianField,
        dt: float,
        n_sub: int,
        alpha: float,
        kernel: KernelType
    ):
        coords = self.coords
        g = field.n_ghost
        cell_volume = coords.cell_volume

        # Sampling and rigid-body pre-update
        positions = body.markers()
        force, torque = update_rigid_body(body, positions, dt, alpha, self.rho_fluid)

        # Markers follow the updated pose
        positions = body.markers()
        cells, weights = prepare_stencils(positions, coords.prob_lo, coords.dx, kernel)
        check_stencil_bounds(cells, field.n_cells, g)

        data = field.data
        for _ in range(n_sub):
            zero_block(data, self.force_index, 3)

            body.marker_velocity = interpolate_velocity(
                data, self.velocity_index, cells, weights, g, cell_volume
            )
            body.marker_force = direct_forcing(body.velocity, body.marker_velocity, dt)

            spread_forces(
                data, self.force_index, body.marker_force, cells, weights, g, cell_volume
            )
            saxpy_block(data, self.velocity_index, self.force_index, dt, 3, g)

        return force, torque

    def _check_field(self, field: EulerianField) -> None:
        if self.force_index is None:
            raise ValueError("No bodies initialized; call init_bodies() first")
        if not field.coords.same_grid(self.coords):
            raise ValueError(
                f"Field geometry {field.coords} differs from engine geometry {self.coords}"
            )
        if field.n_ghost < MIN_GHOST_CELLS:
            raise IndexError(
                f"Field has {field.n_ghost} ghost cells; at least {MIN_GHOST_CELLS} are required"
            )

        n_comp = field.n_components
        for name, start in (('force', self.force_index), ('velocity', self.velocity_index)):
            if start + 3 > n_comp:
                raise ValueError(
                    f"The {name} block [{start}, {start + 3}) exceeds the "
                    f"{n_comp} field components"
                )

    # ------------------------------------------------------------------
    # Queries and restart
    # ------------------------------------------------------------------

    @property
    def n_bodies(self) -> int:
        return len(self.bodies)

    def centers(self) -> np.ndarray:
        """Body centres, shape (n_bodies, 3)."""
        return np.array([b.center for b in self.bodies]).reshape(-1, 3)

    def velocities(self) -> np.ndarray:
        """Body translational velocities, shape (n_bodies, 3)."""
        return np.array([b.velocity for b in self.bodies]).reshape(-1, 3)

    def angular_velocities(self) -> np.ndarray:
        """Body angular velocities, shape (n_bodies, 3)."""
        return np.array([b.omega for b in self.bodies]).reshape(-1, 3)

    def markers(self, body_index: int) -> np.ndarray:
        """Marker positions of one body for its current pose."""
        return self.bodies[body_index].markers()

    def body_states(self) -> List[Dict[str, Any]]:
        """One persistent record per body, in creation order."""
        records = []
        for index, body in enumerate(self.bodies):
            record = {'body_id': index}
            record.update(body.to_record())
            records.append(record)
        return records

    def restore_body_states(
        self,
        records: List[Dict[str, Any]],
        fluid_density: float,
        force_index: int,
        velocity_index: int
    ) -> None:
        """Replace all bodies with the ones described by restart records."""
        bodies = [RigidBody.from_record(r) for r in sorted(records, key=lambda r: r.get('body_id', 0))]
        _check_coupling([b.rho for b in bodies], fluid_density, force_index, velocity_index)

        self.bodies = bodies
        self.rho_fluid = float(fluid_density)
        self.force_index = int(force_index)
        self.velocity_index = int(velocity_index)
