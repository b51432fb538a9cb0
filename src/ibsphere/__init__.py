"""
ibsphere: Numba-Accelerated Direct-Forcing Immersed Boundaries for Rigid Spheres

A Python library coupling rigid spherical particles to a cell-centred
Eulerian velocity field with the multidirect-forcing immersed-boundary
method.

Each macro step, for every body:
    1. Rigid-body update from the previous marker forces
    2. Interpolate fluid velocity onto surface markers
    3. F = (U_body - U_marker) / Δt
    4. Spread F back onto the grid and correct the velocity
    (steps 2-4 repeated for a fixed number of sub-iterations)

Features:
    - Numba JIT compilation with parallel stencil evaluation
    - Four-point and three-point regularized delta kernels
    - Deterministic spiral marker sampling
    - Restartable body state (CSV) and NetCDF4 output
    - Coupling diagnostics (slip, loads, solid volume fraction)
    - Dark-themed summary plots and GIF animations

Example:
    >>> from ibsphere import SphereSystem, CouplingSolver
    >>> system = SphereSystem(radius=4.0, rho_body=2.0, u_inf=0.1)
    >>> solver = CouplingSolver(nx=32, ny=32, nz=32, dx=1.0)
    >>> result = solver.solve(system, dt=0.1, n_steps=20)

License: MIT
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .core.kernels import KernelType
from .core.geometry import CoordSys, CoordType, EulerianField
from .core.bodies import RigidBody, create_body
from .core.engine import DirectForcingEngine, ForcingConfig
from .core.solver import SphereSystem, PrescribedFlow, CouplingSolver, SimulationResult
from .core.diagnostics import (
    compute_kernel_normalization,
    compute_slip_error,
    compute_hydrodynamic_loads,
    compute_volume_fraction_error,
    compute_marker_hull,
    compute_all_diagnostics,
)
from .io.config_manager import ConfigManager
from .io.data_handler import DataHandler

__all__ = [
    # Core classes
    "KernelType",
    "CoordSys",
    "CoordType",
    "EulerianField",
    "RigidBody",
    "DirectForcingEngine",
    "ForcingConfig",
    "SphereSystem",
    "PrescribedFlow",
    "CouplingSolver",
    "SimulationResult",
    # Body functions
    "create_body",
    # Diagnostics
    "compute_kernel_normalization",
    "compute_slip_error",
    "compute_hydrodynamic_loads",
    "compute_volume_fraction_error",
    "compute_marker_hull",
    "compute_all_diagnostics",
    # IO
    "ConfigManager",
    "DataHandler",
]
