"""Core components for immersed sphere coupling."""

from .kernels import KernelType, delta_weight
from .geometry import CoordSys, CoordType, EulerianField
from .bodies import RigidBody, create_body, sample_markers
from .transfer import spread_forces, interpolate_velocity, prepare_stencils
from .dynamics import update_rigid_body, hydrodynamic_force_torque
from .engine import DirectForcingEngine, ForcingConfig
from .solver import SphereSystem, PrescribedFlow, CouplingSolver, SimulationResult
from .diagnostics import (
    compute_kernel_normalization,
    compute_slip_error,
    compute_hydrodynamic_loads,
    compute_level_set,
    nodal_phi_to_volume_fraction,
    compute_volume_fraction_error,
    compute_marker_hull,
    compute_all_diagnostics,
)

__all__ = [
    "KernelType",
    "delta_weight",
    "CoordSys",
    "CoordType",
    "EulerianField",
    "RigidBody",
    "create_body",
    "sample_markers",
    "spread_forces",
    "interpolate_velocity",
    "prepare_stencils",
    "update_rigid_body",
    "hydrodynamic_force_torque",
    "DirectForcingEngine",
    "ForcingConfig",
    "SphereSystem",
    "PrescribedFlow",
    "CouplingSolver",
    "SimulationResult",
    "compute_kernel_normalization",
    "compute_slip_error",
    "compute_hydrodynamic_loads",
    "compute_level_set",
    "nodal_phi_to_volume_fraction",
    "compute_volume_fraction_error",
    "compute_marker_hull",
    "compute_all_diagnostics",
]
