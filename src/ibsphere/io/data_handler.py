"""
Data Handler for Immersed Sphere Simulations.

Saves results to:
    - CSV: Diagnostic metrics, body trajectories, marker dumps and
      body-state restart records
    - NetCDF: body histories, velocity-magnitude slices and the final
      Eulerian field (velocity, force, solid volume fraction)

Array convention:
    Field variables are written as (z, y, x) so that x varies fastest.
"""

import numpy as np
import pandas as pd
from netCDF4 import Dataset
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, List, Optional

from ..core.diagnostics import compute_level_set, nodal_phi_to_volume_fraction


class DataHandler:
    """Handle saving simulation data to various formats."""

    @staticmethod
    def save_trajectory_csv(filepath: str, result: 'SimulationResult'):
        """
        Save body trajectories to CSV (one row per output time and body).

        Args:
            filepath: Output file path
            result: SimulationResult from solver
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        n_times, n_bodies = result.centers.shape[:2]

        rows = []
        for t_idx in range(n_times):
            for b in range(n_bodies):
                c = result.centers[t_idx, b]
                v = result.velocities[t_idx, b]
                w = result.omegas[t_idx, b]
                f = result.forces[t_idx, b]
                rows.append({
                    'time': result.time[t_idx],
                    'body_id': b,
                    'x': c[0], 'y': c[1], 'z': c[2],
                    'u': v[0], 'v': v[1], 'w': v[2],
                    'omega_x': w[0], 'omega_y': w[1], 'omega_z': w[2],
                    'force_x': f[0], 'force_y': f[1], 'force_z': f[2],
                })

        df = pd.DataFrame(rows)
        df.to_csv(filepath, index=False, float_format='%.8e')

    @staticmethod
    def save_markers_csv(
        filepath: str,
        engine: 'DirectForcingEngine',
        body_index: int = 0
    ):
        """
        Dump one body's marker positions, velocities and forces.

        Args:
            filepath: Output file path
            engine: Coupling engine
            body_index: Body to dump
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        body = engine.bodies[body_index]
        positions = body.markers()

        df = pd.DataFrame({
            'marker_id': np.arange(body.n_markers),
            'x': positions[:, 0],
            'y': positions[:, 1],
            'z': positions[:, 2],
            'u': body.marker_velocity[:, 0],
            'v': body.marker_velocity[:, 1],
            'w': body.marker_velocity[:, 2],
            'force_x': body.marker_force[:, 0],
            'force_y': body.marker_force[:, 1],
            'force_z': body.marker_force[:, 2],
        })
        df.to_csv(filepath, index=False, float_format='%.8e')

    @staticmethod
    def save_body_states_csv(filepath: str, records: List[Dict[str, Any]]):
        """
        Save body-state restart records, one row per body.

        Args:
            filepath: Output file path
            records: Output of DirectForcingEngine.body_states()
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        df = pd.DataFrame(records)
        df.to_csv(filepath, index=False, float_format='%.17e')

    @staticmethod
    def load_body_states_csv(filepath: str) -> List[Dict[str, Any]]:
        """
        Load body-state restart records written by save_body_states_csv.

        Returns:
            List of records ordered by body_id
        """
        df = pd.read_csv(filepath)
        if 'body_id' in df.columns:
            df = df.sort_values('body_id')
        return df.to_dict('records')

    @staticmethod
    def save_diagnostics_csv(filepath: str, diagnostics: Dict[str, Any]):
        """
        Save diagnostic metrics to CSV.

        Args:
            filepath: Output file path
            diagnostics: Dictionary of metrics
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        rows = []
        for key, value in sorted(diagnostics.items()):
            if isinstance(value, (int, float, bool, np.integer, np.floating)):
                rows.append({
                    'Metric': key,
                    'Value': value,
                    'Units': DataHandler._get_metric_units(key),
                })

        df = pd.DataFrame(rows)
        df.to_csv(filepath, index=False)

    @staticmethod
    def _get_metric_units(metric_name: str) -> str:
        """Get units for a metric."""
        units_map = {
            'slip_max': 'velocity',
            'slip_mean': 'velocity',
            'slip_max_normalized': 'U_inf',
            'force_x_final': 'density * velocity / time * volume',
            'force_y_final': 'density * velocity / time * volume',
            'force_z_final': 'density * velocity / time * volume',
            'torque_magnitude_final': 'density * velocity / time * volume * length',
            'kernel_normalization': 'dimensionless',
            'solid_volume_grid': 'length³',
            'solid_volume_exact': 'length³',
            'solid_volume_error_relative': 'dimensionless',
            'hull_volume': 'length³',
            'hull_area': 'length²',
            'hull_volume_ratio': 'dimensionless',
            'hull_area_ratio': 'dimensionless',
            'n_markers': 'count',
            'max_displacement': 'length',
            'max_displacement_normalized': 'R',
            'max_speed_final': 'velocity',
            'all_finite': 'boolean',
        }
        return units_map.get(metric_name, 'unknown')

    @staticmethod
    def save_netcdf(
        filepath: str,
        result: 'SimulationResult',
        config: Optional[Dict[str, Any]] = None
    ):
        """
        Save complete simulation data to NetCDF4.

        Args:
            filepath: Output file path
            result: SimulationResult from solver
            config: Optional configuration dictionary
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        system = result.system
        field = result.final_field
        engine = result.engine
        coords = field.coords

        n_time, n_bodies = result.centers.shape[:2]
        nx, ny, nz = field.n_cells

        velocity = field.block(engine.velocity_index, 3)
        force = field.block(engine.force_index, 3)
        phi = compute_level_set(coords, field.n_cells, engine.centers(), system.radius)
        pvf = nodal_phi_to_volume_fraction(phi)

        with Dataset(filepath, 'w', format='NETCDF4') as nc:
            # ================================================================
            # DIMENSIONS
            # ================================================================
            nc.createDimension('time', n_time)
            nc.createDimension('body', n_bodies)
            nc.createDimension('x', nx)
            nc.createDimension('y', ny)
            nc.createDimension('z', nz)

            # ================================================================
            # COORDINATE VARIABLES
            # ================================================================
            nc_time = nc.createVariable('time', 'f8', ('time',), zlib=True)
            nc_time[:] = result.time
            nc_time.units = 'time units since simulation start'
            nc_time.long_name = 'time'
            nc_time.axis = 'T'

            for name in ('x', 'y', 'z'):
                axis = 'xyz'.index(name)
                var = nc.createVariable(name, 'f8', (name,), zlib=True)
                var[:] = field.cell_centers(axis)
                var.units = 'length'
                var.long_name = f'{name}-coordinate of cell centres'
                var.axis = name.upper()

            nc_bid = nc.createVariable('body_id', 'i4', ('body',), zlib=True)
            nc_bid[:] = np.arange(n_bodies)
            nc_bid.long_name = 'body identifier'

            # ================================================================
            # BODY HISTORIES
            # ================================================================
            histories = [
                ('center', result.centers, 'length', 'body centre'),
                ('velocity', result.velocities, 'velocity', 'body translational velocity'),
                ('omega', result.omegas, 'rad / time', 'body angular velocity'),
                ('force', result.forces, 'density * velocity / time * volume',
                 'net marker force'),
            ]
            for name, values, units, long_name in histories:
                for axis, label in enumerate('xyz'):
                    var = nc.createVariable(
                        f'body_{name}_{label}', 'f8', ('time', 'body'), zlib=True
                    )
                    var[:] = values[:, :, axis]
                    var.units = units
                    var.long_name = f'{long_name} ({label})'
                    var.coordinates = 'time body_id'

            nc_slip = nc.createVariable('slip_max', 'f8', ('time',), zlib=True)
            nc_slip[:] = result.slip_max
            nc_slip.units = 'velocity'
            nc_slip.long_name = 'maximum no-slip residual at markers'

            nc_speed = nc.createVariable(
                'speed_slice', 'f8', ('time', 'y', 'x'), zlib=True,
                chunksizes=(min(10, n_time), ny, nx)
            )
            # Transpose from (time, x, y) to (time, y, x)
            nc_speed[:] = np.transpose(result.speed_slices, (0, 2, 1))
            nc_speed.units = 'velocity'
            nc_speed.long_name = 'velocity magnitude on the body-centre z-slice'
            nc_speed.slice_index = int(result.slice_index)

            # ================================================================
            # FINAL FIELD
            # ================================================================
            final = [
                ('u', velocity[..., 0], 'velocity', 'x-velocity'),
                ('v', velocity[..., 1], 'velocity', 'y-velocity'),
                ('w', velocity[..., 2], 'velocity', 'z-velocity'),
                ('force_x', force[..., 0], 'velocity / time', 'x-forcing'),
                ('force_y', force[..., 1], 'velocity / time', 'y-forcing'),
                ('force_z', force[..., 2], 'velocity / time', 'z-forcing'),
                ('volume_fraction', pvf, 'dimensionless', 'solid volume fraction'),
            ]
            for name, values, units, long_name in final:
                var = nc.createVariable(name, 'f8', ('z', 'y', 'x'), zlib=True)
                var[:] = np.transpose(values, (2, 1, 0))
                var.units = units
                var.long_name = long_name

            # ================================================================
            # DIAGNOSTICS (as scalar variables)
            # ================================================================
            if result.diagnostics:
                for key, value in result.diagnostics.items():
                    if isinstance(value, (int, float, np.integer, np.floating)) \
                            and not isinstance(value, bool):
                        nc_var = nc.createVariable(f'diag_{key}', 'f8')
                        nc_var[()] = float(value)
                        nc_var.long_name = key.replace('_', ' ')
                        nc_var.units = DataHandler._get_metric_units(key)

            # ================================================================
            # GLOBAL ATTRIBUTES
            # ================================================================
            nc.title = f'Immersed Sphere Coupling: {system.name}'
            nc.source = 'ibsphere v0.1.0'
            nc.history = f'Created {datetime.now().isoformat()}'

            nc.radius = float(system.radius)
            nc.rho_body = float(system.rho_body)
            nc.rho_fluid = float(system.rho_fluid)
            nc.far_field_velocity = system.far_field_velocity
            nc.dx = float(coords.dx[0])
            nc.n_ghost = int(field.n_ghost)
            nc.n_markers = int(engine.bodies[0].n_markers)

            run = dict(result.config)
            if config:
                run.update(config)
            nc.scenario_name = str(run.get('scenario_name', system.name))
            nc.dt = float(run.get('dt', 0.0))
            nc.n_steps = int(run.get('n_steps', 0))
            nc.kernel = str(run.get('kernel', 'four_point'))
            nc.sub_iterations = int(run.get('sub_iterations', 0))
            nc.relaxation = float(run.get('relaxation', 0.0))

            nc.n_bodies = n_bodies
            nc.n_time_outputs = n_time
