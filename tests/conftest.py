"""Pytest configuration and fixtures for ibsphere tests."""

import pytest
import numpy as np


@pytest.fixture(scope="session")
def random_seed():
    """Set random seed for reproducibility."""
    np.random.seed(42)
    return 42


@pytest.fixture
def unit_coords():
    """Unit-spaced Cartesian metrics anchored at the origin."""
    from ibsphere import CoordSys
    return CoordSys(dx=(1.0, 1.0, 1.0), prob_lo=(0.0, 0.0, 0.0))


@pytest.fixture
def default_body_params():
    """Single sphere at the centre of a 24³ box."""
    return {
        'x': [12.0],
        'y': [12.0],
        'z': [12.0],
        'radius': 4.0,
        'body_density': 2.0,
        'fluid_density': 1.0,
        'force_index': 3,
        'velocity_index': 0,
    }


@pytest.fixture
def still_field(unit_coords):
    """Zero 24³ field with velocity (0-2) and force (3-5) blocks."""
    from ibsphere import EulerianField
    return EulerianField.zeros((24, 24, 24), 6, unit_coords, n_ghost=2)


@pytest.fixture
def engine(unit_coords, default_body_params):
    """Engine with one body at rest, three correction cycles."""
    from ibsphere import DirectForcingEngine, ForcingConfig
    eng = DirectForcingEngine(unit_coords, ForcingConfig(sub_iterations=3))
    eng.init_bodies(**default_body_params)
    return eng


@pytest.fixture
def small_system():
    """Small sphere in a 16³ box for quick solver runs."""
    from ibsphere import SphereSystem
    return SphereSystem(
        radius=2.0,
        rho_body=2.0,
        rho_fluid=1.0,
        body_x=[8.0],
        body_y=[8.0],
        body_z=[8.0],
        u_inf=0.1,
        name='Test Sphere'
    )


@pytest.fixture
def small_solver():
    """Create a small solver for quick tests."""
    from ibsphere import CouplingSolver
    return CouplingSolver(nx=16, ny=16, nz=16, dx=1.0, n_ghost=2)
