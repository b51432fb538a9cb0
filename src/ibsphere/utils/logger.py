"""Simulation logger for immersed sphere coupling runs."""

import logging
import numpy as np
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, List


class SimulationLogger:
    """Logger for immersed-boundary coupling simulations."""

    def __init__(
        self,
        scenario_name: str,
        log_dir: str = "logs",
        verbose: bool = True
    ):
        """
        Initialize simulation logger.

        Args:
            scenario_name: Scenario name (for log filename)
            log_dir: Directory for log files
            verbose: Print warnings and errors to console
        """
        self.scenario_name = scenario_name
        self.log_dir = Path(log_dir)
        self.verbose = verbose

        self.log_dir.mkdir(parents=True, exist_ok=True)

        # Clean scenario name for filename
        clean_name = scenario_name.lower().replace(' ', '_').replace('-', '_')
        self.log_file = self.log_dir / f"{clean_name}.log"

        self.logger = self._setup_logger()
        self.warnings: List[str] = []
        self.errors: List[str] = []

    def _setup_logger(self) -> logging.Logger:
        """Configure Python logging."""
        logger = logging.getLogger(f"ibsphere_{self.scenario_name}")
        logger.setLevel(logging.DEBUG)
        for handler in logger.handlers:
            handler.close()
        logger.handlers = []
        logger.propagate = False

        handler = logging.FileHandler(self.log_file, mode='w')
        handler.setLevel(logging.DEBUG)

        formatter = logging.Formatter(
            '%(asctime)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)

        logger.addHandler(handler)
        return logger

    def debug(self, msg: str):
        """Log per-step detail."""
        self.logger.debug(msg)

    def info(self, msg: str):
        """Log informational message."""
        self.logger.info(msg)

    def warning(self, msg: str):
        """Log warning message."""
        self.logger.warning(msg)
        self.warnings.append(msg)

        if self.verbose:
            print(f"  WARNING: {msg}")

    def error(self, msg: str):
        """Log error message."""
        self.logger.error(msg)
        self.errors.append(msg)

        if self.verbose:
            print(f"  ERROR: {msg}")

    def log_system(self, system: 'SphereSystem'):
        """Log sphere configuration."""
        self.info("=" * 70)
        self.info("IMMERSED SPHERE COUPLING SIMULATION")
        self.info(f"Scenario: {self.scenario_name}")
        self.info("=" * 70)
        self.info("")

        self.info("BODIES:")
        self.info(f"  Count = {system.n_bodies}")
        self.info(f"  R = {system.radius:.4g}")
        for i, (x, y, z) in enumerate(zip(system.body_x, system.body_y, system.body_z)):
            self.info(f"  [{i}] centre = ({x:.4g}, {y:.4g}, {z:.4g})")

        self.info("")
        self.info("DENSITIES:")
        self.info(f"  rho_b = {system.rho_body:.4g}")
        self.info(f"  rho_f = {system.rho_fluid:.4g}")
        self.info(f"  rho_b / rho_f = {system.density_ratio:.4g}")

        self.info("")
        self.info("FAR FIELD:")
        u = system.far_field_velocity
        self.info(f"  U_inf = ({u[0]:.4g}, {u[1]:.4g}, {u[2]:.4g})")

        self.info("=" * 70)

    def log_config(self, config: Dict[str, Any]):
        """Log simulation configuration."""
        self.info("")
        self.info("SIMULATION PARAMETERS:")
        self.info(
            f"  nx × ny × nz = {config.get('nx', '?')} × {config.get('ny', '?')} "
            f"× {config.get('nz', '?')}"
        )
        self.info(f"  dx = {config.get('dx', '?')}")
        self.info(f"  Ghost cells = {config.get('n_ghost', '?')}")
        self.info(f"  dt = {config.get('dt', '?')}")
        self.info(f"  Steps = {config.get('n_steps', '?')}")
        self.info(f"  Output interval = {config.get('output_interval', '?')} steps")

        self.info("")
        self.info("DIRECT FORCING:")
        self.info(f"  Kernel = {config.get('kernel', '?')}")
        self.info(f"  Sub-iterations = {config.get('sub_iterations', '?')}")
        self.info(f"  Relaxation = {config.get('relaxation', '?')}")

        cfl = config.get('cfl', None)
        if cfl is not None:
            self.info(f"  CFL number = {cfl:.3f}")

        self.info("=" * 70)

    def log_diagnostics(self, diagnostics: Dict[str, Any]):
        """Log diagnostic metrics."""
        self.info("")
        self.info("=" * 70)
        self.info("COUPLING DIAGNOSTICS")
        self.info("=" * 70)

        self.info("")
        self.info("NO-SLIP:")
        self.info(f"  Max slip: {diagnostics.get('slip_max', np.nan):.3e}")
        self.info(f"  Mean slip: {diagnostics.get('slip_mean', np.nan):.3e}")
        self.info(f"  Kernel normalization: {diagnostics.get('kernel_normalization', np.nan):.6f}")

        self.info("")
        self.info("LOADS:")
        self.info(
            f"  Force = ({diagnostics.get('force_x_final', np.nan):.4e}, "
            f"{diagnostics.get('force_y_final', np.nan):.4e}, "
            f"{diagnostics.get('force_z_final', np.nan):.4e})"
        )
        self.info(f"  |Torque| max: {diagnostics.get('torque_magnitude_final', np.nan):.4e}")

        self.info("")
        self.info("GEOMETRY:")
        self.info(f"  Markers per body: {diagnostics.get('n_markers', '?')}")
        self.info(f"  Hull volume ratio: {diagnostics.get('hull_volume_ratio', np.nan):.4f}")
        self.info(
            f"  Solid volume error (relative): "
            f"{diagnostics.get('solid_volume_error_relative', np.nan):.3e}"
        )

        self.info("")
        self.info("MOTION:")
        self.info(f"  Max displacement: {diagnostics.get('max_displacement_normalized', np.nan):.4f} R")
        self.info(f"  Max final speed: {diagnostics.get('max_speed_final', np.nan):.4e}")

        self.info("=" * 70)

    def log_timing(self, timing: Dict[str, float]):
        """Log timing breakdown."""
        self.info("")
        self.info("=" * 70)
        self.info("TIMING")
        self.info("=" * 70)

        for key, value in sorted(timing.items()):
            if key != 'total':
                self.info(f"  {key}: {value:.3f} s")

        self.info(f"  {'-' * 40}")
        total = timing.get('total', sum(timing.values()))
        self.info(f"  TOTAL: {total:.3f} s")

        self.info("=" * 70)

    def finalize(self):
        """Write final summary."""
        self.info("")
        self.info("=" * 70)
        self.info("SUMMARY")
        self.info("=" * 70)

        if self.errors:
            self.info(f"ERRORS: {len(self.errors)}")
            for i, err in enumerate(self.errors, 1):
                self.info(f"  {i}. {err}")
        else:
            self.info("ERRORS: None")

        if self.warnings:
            self.info(f"WARNINGS: {len(self.warnings)}")
            for i, warn in enumerate(self.warnings, 1):
                self.info(f"  {i}. {warn}")
        else:
            self.info("WARNINGS: None")

        self.info("")
        self.info(f"Log file: {self.log_file}")
        self.info(f"Completed: {datetime.now().isoformat()}")
        self.info("=" * 70)

        for handler in self.logger.handlers:
            handler.flush()
