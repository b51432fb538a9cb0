"""
Scenario Driver for Immersed Sphere Coupling.

Main solver class that coordinates:
    - Eulerian field allocation on a uniform Cartesian level
    - Body seeding through the coupling engine
    - Prescribed far-field flow standing in for the fluid solver
    - Macro time stepping with progress tracking
    - Output data collection

The prescribed flow resets the velocity block to a uniform far-field value
before every macro step. It exercises the coupling only; pressure projection,
diffusion and advection are not modelled.
"""

import numpy as np
from typing import Dict, Any, Optional, Sequence, Tuple
from dataclasses import dataclass, field
from tqdm import tqdm

from .geometry import CoordSys, EulerianField
from .engine import DirectForcingEngine, ForcingConfig
from .diagnostics import compute_slip_error, compute_hydrodynamic_loads


VELOCITY_INDEX = 0
FORCE_INDEX = 3
N_COMPONENTS = 6


@dataclass
class SphereSystem:
    """
    Immersed sphere configuration.

    Attributes:
        radius: Sphere radius
        rho_body: Body density ρ_b
        rho_fluid: Fluid density ρ_f
        body_x, body_y, body_z: Seed centre coordinates
        u_inf, v_inf, w_inf: Far-field velocity
        name: Scenario label

    Example:
        >>> system = SphereSystem(radius=4.0, rho_body=2.0, rho_fluid=1.0,
        ...                       body_x=[16.0], body_y=[16.0], body_z=[16.0])
    """
    radius: float = 4.0
    rho_body: float = 2.0
    rho_fluid: float = 1.0
    body_x: Sequence[float] = field(default_factory=lambda: [16.0])
    body_y: Sequence[float] = field(default_factory=lambda: [16.0])
    body_z: Sequence[float] = field(default_factory=lambda: [16.0])
    u_inf: float = 0.0
    v_inf: float = 0.0
    w_inf: float = 0.0
    name: str = "Sphere"

    @property
    def n_bodies(self) -> int:
        return len(self.body_x)

    @property
    def density_ratio(self) -> float:
        """ρ_b / ρ_f."""
        return self.rho_body / self.rho_fluid

    @property
    def far_field_velocity(self) -> np.ndarray:
        return np.array([self.u_inf, self.v_inf, self.w_inf], dtype=np.float64)

    @property
    def diameter(self) -> float:
        return 2.0 * self.radius

    def __repr__(self) -> str:
        u = self.far_field_velocity
        return (
            f"SphereSystem({self.n_bodies} bodies, R={self.radius:.3g}, "
            f"rho_b/rho_f={self.density_ratio:.3g}, "
            f"U_inf=({u[0]:.3g}, {u[1]:.3g}, {u[2]:.3g}))"
        )

    def describe(self) -> str:
        """Return detailed description of the system."""
        lines = [
            "",
            "Immersed Sphere System",
            "======================",
            "Bodies:",
            f"  Count  = {self.n_bodies}",
            f"  Radius = {self.radius:.4g}",
        ]
        for i, (x, y, z) in enumerate(zip(self.body_x, self.body_y, self.body_z)):
            lines.append(f"  [{i}] centre = ({x:.4g}, {y:.4g}, {z:.4g})")
        lines += [
            "",
            "Densities:",
            f"  rho_b = {self.rho_body:.4g}",
            f"  rho_f = {self.rho_fluid:.4g}",
            f"  ratio = {self.density_ratio:.4g}",
            "",
            "Far field:",
            f"  U_inf = {self.far_field_velocity.tolist()}",
            "",
        ]
        return "\n".join(lines)


class PrescribedFlow:
    """Uniform far-field velocity imposed on the velocity block."""

    def __init__(self, velocity: Sequence[float], velocity_index: int = VELOCITY_INDEX):
        self.velocity = np.asarray(velocity, dtype=np.float64)
        self.velocity_index = velocity_index

    def apply(self, field: EulerianField) -> EulerianField:
        """Overwrite the velocity block, ghosts included."""
        for c in range(3):
            field.fill(self.velocity_index + c, self.velocity[c])
        return field


@dataclass
class SimulationResult:
    """
    Container for simulation output data.

    Attributes:
        time: Output times
        centers: Body centres over time (n_out, n_bodies, 3)
        velocities: Body velocities over time (n_out, n_bodies, 3)
        omegas: Body angular velocities over time (n_out, n_bodies, 3)
        forces: Net marker force per body over time (n_out, n_bodies, 3)
        slip_max: Maximum no-slip residual over time (n_out,)
        speed_slices: |u| on the z-slice through the first body (n_out, nx, ny)
        slice_index: z-index of the stored slice
        final_field: Eulerian field after the last step
        engine: Coupling engine with final body states
        system: Sphere configuration
        config: Run configuration
        diagnostics: Dictionary of computed diagnostics
    """
    time: np.ndarray
    centers: np.ndarray
    velocities: np.ndarray
    omegas: np.ndarray
    forces: np.ndarray
    slip_max: np.ndarray
    speed_slices: np.ndarray
    slice_index: int
    final_field: EulerianField
    engine: DirectForcingEngine
    system: SphereSystem
    config: Dict[str, Any]
    diagnostics: Dict[str, Any]


class CouplingSolver:
    """
    Immersed sphere coupling driver on a uniform Cartesian level.

    Attributes:
        nx, ny, nz: Valid cells per axis
        dx: Cell size (uniform)
        n_ghost: Ghost width (>= 2)

    Example:
        >>> solver = CouplingSolver(nx=32, ny=32, nz=32, dx=1.0)
        >>> system = SphereSystem(radius=4.0)
        >>> result = solver.solve(system, dt=0.05, n_steps=20)
    """

    def __init__(
        self,
        nx: int = 32,
        ny: int = 32,
        nz: int = 32,
        dx: float = 1.0,
        n_ghost: int = 2,
        prob_lo: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    ):
        """
        Initialize solver.

        Args:
            nx, ny, nz: Number of cells per axis
            dx: Cell size
            n_ghost: Ghost width
            prob_lo: Lower domain corner
        """
        self.nx = nx
        self.ny = ny
        self.nz = nz
        self.dx = dx
        self.n_ghost = n_ghost
        self.coords = CoordSys(dx=(dx, dx, dx), prob_lo=prob_lo)

        # Will be set during solve()
        self.engine: Optional[DirectForcingEngine] = None
        self.field: Optional[EulerianField] = None

    @property
    def domain_hi(self) -> np.ndarray:
        return self.coords.prob_lo + self.dx * np.array([self.nx, self.ny, self.nz])

    def solve(
        self,
        system: SphereSystem,
        dt: float,
        n_steps: int,
        output_interval: int = 10,
        forcing: Optional[ForcingConfig] = None,
        logger=None,
        verbose: bool = True
    ) -> SimulationResult:
        """
        Run a coupled simulation in a prescribed far-field flow.

        Args:
            system: SphereSystem configuration
            dt: Macro time step
            n_steps: Number of macro steps
            output_interval: Save output every N steps
            forcing: Direct-forcing parameters (defaults if None)
            logger: Optional SimulationLogger
            verbose: Print progress information

        Returns:
            SimulationResult with all output data
        """
        forcing = forcing if forcing is not None else ForcingConfig()
        if output_interval < 1:
            raise ValueError(f"Output interval must be >= 1, got {output_interval}")

        if verbose:
            print(f"[1/4] Allocating Eulerian field ({self.nx}×{self.ny}×{self.nz} cells)...")

        self.field = EulerianField.zeros(
            (self.nx, self.ny, self.nz), N_COMPONENTS, self.coords, self.n_ghost
        )
        flow = PrescribedFlow(system.far_field_velocity, VELOCITY_INDEX)
        flow.apply(self.field)

        cfl = float(np.abs(system.far_field_velocity).max()) * dt / self.dx
        if verbose:
            print(f"      Cell size: {self.dx:.4g}")
            print(f"      CFL number: {cfl:.3f}")
            if cfl > 0.5:
                print("      WARNING: CFL > 0.5, consider reducing dt")
        if cfl > 0.5 and logger is not None:
            logger.warning(f"CFL number {cfl:.3f} exceeds 0.5")

        if verbose:
            print(f"[2/4] Seeding {system.n_bodies} bodies (R = {system.radius:.3g})...")

        self.engine = DirectForcingEngine(self.coords, forcing, logger)
        self.engine.init_bodies(
            system.body_x, system.body_y, system.body_z,
            radius=system.radius,
            body_density=system.rho_body,
            fluid_density=system.rho_fluid,
            force_index=FORCE_INDEX,
            velocity_index=VELOCITY_INDEX,
        )

        if verbose:
            print(f"      Markers per body: {self.engine.bodies[0].n_markers}")

        n_outputs = n_steps // output_interval + 1
        n_bodies = self.engine.n_bodies

        time_out = np.zeros(n_outputs, dtype=np.float64)
        centers_out = np.zeros((n_outputs, n_bodies, 3), dtype=np.float64)
        velocities_out = np.zeros((n_outputs, n_bodies, 3), dtype=np.float64)
        omegas_out = np.zeros((n_outputs, n_bodies, 3), dtype=np.float64)
        forces_out = np.zeros((n_outputs, n_bodies, 3), dtype=np.float64)
        slip_out = np.zeros(n_outputs, dtype=np.float64)
        slices_out = np.zeros((n_outputs, self.nx, self.ny), dtype=np.float64)

        slice_index = int(self.coords.cell_index(self.engine.centers()[0])[2])
        slice_index = max(0, min(self.nz - 1, slice_index))

        self._record(0, 0.0, slice_index, time_out, centers_out, velocities_out,
                     omegas_out, forces_out, slip_out, slices_out)

        if verbose:
            print(f"[3/4] Running coupled steps ({n_steps} steps, "
                  f"{forcing.sub_iterations} sub-iterations, {forcing.kernel.name})...")

        iterator = tqdm(
            range(1, n_steps + 1),
            desc="      Coupling",
            disable=not verbose,
            ncols=70,
            unit="step"
        )

        output_idx = 1
        for step in iterator:
            flow.apply(self.field)
            self.engine.advance(self.field, dt)

            if step % output_interval == 0:
                self._record(output_idx, step * dt, slice_index, time_out, centers_out,
                             velocities_out, omegas_out, forces_out, slip_out, slices_out)
                output_idx += 1

        config = {
            'nx': self.nx,
            'ny': self.ny,
            'nz': self.nz,
            'dx': self.dx,
            'n_ghost': self.n_ghost,
            'dt': dt,
            'n_steps': n_steps,
            'output_interval': output_interval,
            'n_outputs': output_idx,
            'kernel': forcing.kernel.name.lower(),
            'sub_iterations': forcing.sub_iterations,
            'relaxation': forcing.relaxation,
            'cfl': cfl,
        }

        if verbose:
            print("[4/4] Simulation complete!")
            print(f"      Outputs saved: {output_idx}")

        return SimulationResult(
            time=time_out[:output_idx],
            centers=centers_out[:output_idx],
            velocities=velocities_out[:output_idx],
            omegas=omegas_out[:output_idx],
            forces=forces_out[:output_idx],
            slip_max=slip_out[:output_idx],
            speed_slices=slices_out[:output_idx],
            slice_index=slice_index,
            final_field=self.field,
            engine=self.engine,
            system=system,
            config=config,
            diagnostics={},
        )

    def _record(self, idx, t, slice_index, time_out, centers_out, velocities_out,
                omegas_out, forces_out, slip_out, slices_out) -> None:
        """Store the current engine and field state at output slot idx."""
        time_out[idx] = t
        centers_out[idx] = self.engine.centers()
        velocities_out[idx] = self.engine.velocities()
        omegas_out[idx] = self.engine.angular_velocities()
        forces_out[idx] = compute_hydrodynamic_loads(self.engine)['force']
        slip_out[idx] = compute_slip_error(self.engine, self.field)['slip_max']

        u = self.field.block(VELOCITY_INDEX, 3)[:, :, slice_index, :]
        slices_out[idx] = np.sqrt((u**2).sum(axis=-1))
