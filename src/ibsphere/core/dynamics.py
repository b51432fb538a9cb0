"""
Rigid-Body Integrator for Immersed Spheres.

Advances translational and angular velocity and pose of a body from the
hydrodynamic load accumulated over its markers:

    F = Σ_k F_k ΔV_k                     (net force)
    T = Σ_k (X_k - c) × F_k ΔV_k         (net torque)

Update law (relaxation α, semi-implicit in the position update):

    v⁺ = v - 2α Δt / V / (ρ_b - ρ_f) · F
    ω⁺ = ω - 2α Δt ρ_b / I / (ρ_b - ρ_f) · T
    c⁺ = c + α Δt (v⁺ + v)
    ϕ⁺ = ϕ + α Δt (ω⁺ + ω)

with V = (4/3) π R³ and I = (8/15) π ρ_b R⁵.
"""

import numpy as np
from numba import njit, prange
from typing import Tuple

from .bodies import RigidBody


@njit(cache=True, parallel=True)
def hydrodynamic_force_torque(
    positions: np.ndarray,
    forces: np.ndarray,
    center: np.ndarray,
    dv: float
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Reduce marker forces to net force and torque about the centre.

    Args:
        positions: Marker positions (M, 3)
        forces: Marker force densities (M, 3)
        center: Body centre (3,)
        dv: Volume per marker

    Returns:
        Tuple of (force (3,), torque (3,))
    """
    n_markers = positions.shape[0]
    fx = 0.0
    fy = 0.0
    fz = 0.0
    tx = 0.0
    ty = 0.0
    tz = 0.0

    for p in prange(n_markers):
        rx = positions[p, 0] - center[0]
        ry = positions[p, 1] - center[1]
        rz = positions[p, 2] - center[2]
        gx = forces[p, 0] * dv
        gy = forces[p, 1] * dv
        gz = forces[p, 2] * dv

        fx += gx
        fy += gy
        fz += gz
        tx += ry * gz - rz * gy
        ty += rz * gx - rx * gz
        tz += rx * gy - ry * gx

    force = np.array([fx, fy, fz])
    torque = np.array([tx, ty, tz])
    return force, torque


@njit(cache=True, parallel=True)
def rotational_marker_forces(
    positions: np.ndarray,
    marker_velocity: np.ndarray,
    omega: np.ndarray,
    center: np.ndarray,
    rho: float,
    dt: float
) -> np.ndarray:
    """
    Marker force estimate ρ_b / Δt · (U_k + ω × (c - X_k)).

    Args:
        positions: Marker positions before the pose update (M, 3)
        marker_velocity: Interpolated fluid velocity at markers (M, 3)
        omega: Updated angular velocity (3,)
        center: Updated centre (3,)
        rho: Body density
        dt: Time step

    Returns:
        Marker force densities (M, 3)
    """
    n_markers = positions.shape[0]
    forces = np.zeros((n_markers, 3), dtype=np.float64)
    scale = rho / dt

    for p in prange(n_markers):
        dx = center[0] - positions[p, 0]
        dy = center[1] - positions[p, 1]
        dz = center[2] - positions[p, 2]
        forces[p, 0] = scale * (marker_velocity[p, 0] + omega[1] * dz - omega[2] * dy)
        forces[p, 1] = scale * (marker_velocity[p, 1] + omega[2] * dx - omega[0] * dz)
        forces[p, 2] = scale * (marker_velocity[p, 2] + omega[0] * dy - omega[1] * dx)

    return forces


def update_rigid_body(
    body: RigidBody,
    positions: np.ndarray,
    dt: float,
    alpha: float,
    rho_fluid: float
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Advance one body's velocity and pose (in place).

    Uses the marker forces stored on the body from the previous macro step,
    then overwrites them with the rotational estimate for the new pose.

    Args:
        body: Body to update
        positions: Marker positions for the pose before the update (M, 3)
        dt: Time step
        alpha: Relaxation coefficient in (0, 1]
        rho_fluid: Fluid density (must differ from body.rho)

    Returns:
        Tuple of (net force, net torque) used for the update
    """
    contrast = body.rho - rho_fluid
    if contrast == 0.0:
        raise ValueError("Body and fluid densities are equal; the update is undefined")

    force, torque = hydrodynamic_force_torque(
        positions, body.marker_force, body.center, float(body.dv)
    )

    old_velocity = body.velocity.copy()
    old_omega = body.omega.copy()

    body.velocity = old_velocity - 2.0 * alpha * dt / body.volume / contrast * force
    body.omega = old_omega - 2.0 * alpha * dt * body.rho / body.moment / contrast * torque

    body.center = body.center + alpha * dt * (body.velocity + old_velocity)
    body.varphi = body.varphi + alpha * dt * (body.omega + old_omega)

    body.marker_force = rotational_marker_forces(
        positions, body.marker_velocity, body.omega, body.center, float(body.rho), dt
    )

    return force, torque
