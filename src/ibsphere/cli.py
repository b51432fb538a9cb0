#!/usr/bin/env python
"""
Command Line Interface for ibsphere Immersed Sphere Coupling.

Usage:
    ibsphere case1              # Sphere in still fluid
    ibsphere case2              # Sphere in a uniform stream
    ibsphere case3              # Two heavy spheres in a uniform stream
    ibsphere --all              # Run all cases
    ibsphere --config path.txt  # Custom config
"""

import argparse
import sys
from pathlib import Path

from .core.engine import ForcingConfig
from .core.solver import SphereSystem, CouplingSolver
from .core.diagnostics import compute_all_diagnostics
from .io.config_manager import ConfigManager
from .io.data_handler import DataHandler
from .visualization.animator import Animator
from .utils.logger import SimulationLogger
from .utils.timer import Timer


def print_header():
    """Print ASCII art header."""
    print("\n" + "=" * 70)
    print(" " * 10 + "ibsphere: Direct-Forcing Immersed Boundaries for Spheres")
    print(" " * 25 + "Version 0.1.0")
    print("=" * 70)
    print("\n  Numba-Accelerated Multidirect-Forcing Coupling")
    print("  Regularized Delta Kernels | Spiral Markers | Rigid-Body Update")
    print("  License: MIT")
    print("=" * 70 + "\n")


def normalize_scenario_name(scenario_name: str) -> str:
    """Convert scenario name to clean filename format."""
    clean = scenario_name.lower()
    clean = clean.replace(' - ', '_')
    clean = clean.replace('-', '_')
    clean = clean.replace(' ', '_')

    while '__' in clean:
        clean = clean.replace('__', '_')

    clean = clean.rstrip('_')
    return clean


def run_scenario(
    config: dict,
    output_dir: str = "outputs",
    verbose: bool = True,
    log_dir: str = "logs"
):
    """Run a complete immersed sphere coupling scenario."""

    config = ConfigManager.with_defaults(config)
    scenario_name = config.get('scenario_name', 'simulation')
    clean_name = normalize_scenario_name(scenario_name)

    if verbose:
        print(f"\n{'=' * 70}")
        print(f"SCENARIO: {scenario_name}")
        print(f"{'=' * 70}")

    logger = SimulationLogger(clean_name, log_dir, verbose)
    timer = Timer()
    timer.start("total")

    try:
        ConfigManager.validate_config(config)

        # [1/7] Define bodies
        with timer.time_section("system_init"):
            if verbose:
                print("\n[1/7] Defining immersed spheres...")

            system = SphereSystem(
                radius=config['radius'],
                rho_body=config['rho_body'],
                rho_fluid=config['rho_fluid'],
                body_x=config['body_x'],
                body_y=config['body_y'],
                body_z=config['body_z'],
                u_inf=config['u_inf'],
                v_inf=config['v_inf'],
                w_inf=config['w_inf'],
                name=scenario_name,
            )

            logger.log_system(system)

            if verbose:
                print(f"      {system}")

        # [2/7] Initialize solver
        with timer.time_section("solver_init"):
            if verbose:
                print("\n[2/7] Initializing coupling solver...")

            solver = CouplingSolver(
                nx=config['nx'],
                ny=config['ny'],
                nz=config['nz'],
                dx=config['dx'],
                n_ghost=config['n_ghost'],
            )
            forcing = ForcingConfig.from_dict(config)

            if verbose:
                print(f"      Grid: {solver.nx}×{solver.ny}×{solver.nz}, dx = {solver.dx}")
                print(f"      Kernel: {forcing.kernel.name}, "
                      f"sub-iterations: {forcing.sub_iterations}")

        # [3/7] Run simulation
        with timer.time_section("simulation"):
            if verbose:
                print("\n[3/7] Running coupled steps...")

            result = solver.solve(
                system,
                dt=config['dt'],
                n_steps=config['n_steps'],
                output_interval=config['output_interval'],
                forcing=forcing,
                logger=logger,
                verbose=verbose
            )

            result.config.update(config)
            logger.log_config(result.config)

        # [4/7] Compute diagnostics
        with timer.time_section("diagnostics"):
            if verbose:
                print("\n[4/7] Computing coupling diagnostics...")

            diagnostics = compute_all_diagnostics(result, verbose=verbose)
            result.diagnostics = diagnostics
            logger.log_diagnostics(diagnostics)

            if not diagnostics['all_finite']:
                logger.warning("Non-finite values in field or body state")

        # [5/7] Save CSV data
        with timer.time_section("csv_save"):
            if verbose:
                print("\n[5/7] Saving CSV data...")

            csv_dir = Path(output_dir) / "csv"
            csv_dir.mkdir(parents=True, exist_ok=True)

            diag_file = csv_dir / f"{clean_name}_diagnostics.csv"
            DataHandler.save_diagnostics_csv(str(diag_file), diagnostics)

            traj_file = csv_dir / f"{clean_name}_trajectory.csv"
            DataHandler.save_trajectory_csv(str(traj_file), result)

            state_file = csv_dir / f"{clean_name}_bodies.csv"
            DataHandler.save_body_states_csv(str(state_file), result.engine.body_states())

            marker_file = csv_dir / f"{clean_name}_markers.csv"
            DataHandler.save_markers_csv(str(marker_file), result.engine, 0)

            if verbose:
                for f in (diag_file, traj_file, state_file, marker_file):
                    print(f"      Saved: {f}")

        # [6/7] Save NetCDF
        with timer.time_section("netcdf_save"):
            if verbose:
                print("\n[6/7] Saving NetCDF data...")

            nc_dir = Path(output_dir) / "netcdf"
            nc_dir.mkdir(parents=True, exist_ok=True)

            nc_file = nc_dir / f"{clean_name}.nc"
            DataHandler.save_netcdf(str(nc_file), result, config)

            if verbose:
                print(f"      Saved: {nc_file}")

        # [7/7] Generate visualizations
        with timer.time_section("visualization"):
            if verbose:
                print("\n[7/7] Generating visualizations...")

            animator = Animator(fps=15, dpi=150)

            fig_dir = Path(output_dir) / "figs"
            fig_dir.mkdir(parents=True, exist_ok=True)

            png_file = fig_dir / f"{clean_name}_summary.png"
            animator.create_static_plot(result, str(png_file), diagnostics)

            if verbose:
                print(f"      Saved: {png_file}")

            if config.get('save_gif', True):
                gif_dir = Path(output_dir) / "gifs"
                gif_dir.mkdir(parents=True, exist_ok=True)

                gif_file = gif_dir / f"{clean_name}_animation.gif"
                animator.create_animation(
                    result, str(gif_file),
                    n_frames=config.get('animation_frames', 30),
                    duration_seconds=config.get('animation_duration', 5.0),
                    verbose=verbose
                )

        timer.stop("total")
        logger.log_timing(timer.get_times())

        if verbose:
            total_time = timer.times.get('total', 0)
            print(f"\n{'=' * 70}")
            print("SIMULATION COMPLETED")
            print(f"{'=' * 70}")
            print(f"  Max slip: {diagnostics.get('slip_max', 0):.2e}")
            print(f"  Max displacement: {diagnostics.get('max_displacement_normalized', 0):.4f} R")
            print(f"  Total time: {total_time:.2f} s")
            print(f"{'=' * 70}\n")

        return result, diagnostics

    except Exception as e:
        logger.error(f"Simulation failed: {str(e)}")

        if verbose:
            print(f"\n{'=' * 70}")
            print(f"SIMULATION FAILED: {str(e)}")
            print(f"{'=' * 70}\n")

        raise

    finally:
        logger.finalize()


def main():
    """Main entry point for command-line interface."""
    parser = argparse.ArgumentParser(
        description='ibsphere: Direct-Forcing Immersed Boundaries for Rigid Spheres',
        epilog='Example: ibsphere case1'
    )

    parser.add_argument(
        'case',
        nargs='?',
        choices=sorted(ConfigManager.CASES),
        help='Test case to run (case1-3)'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        help='Path to custom configuration file'
    )

    parser.add_argument(
        '--all', '-a',
        action='store_true',
        help='Run all test cases sequentially'
    )

    parser.add_argument(
        '--output-dir', '-o',
        type=str,
        default='outputs',
        help='Output directory for results (default: outputs)'
    )

    parser.add_argument(
        '--quiet', '-q',
        action='store_true',
        help='Quiet mode (minimal output)'
    )

    parser.add_argument(
        '--no-gif',
        action='store_true',
        help='Skip GIF animation generation'
    )

    args = parser.parse_args()
    verbose = not args.quiet

    if verbose:
        print_header()

    # Custom config
    if args.config:
        config = ConfigManager.load(args.config)
        if args.no_gif:
            config['save_gif'] = False
        run_scenario(config, args.output_dir, verbose)

    # All cases
    elif args.all:
        for case_name in sorted(ConfigManager.CASES):
            config = ConfigManager.get_default_config(case_name)
            if args.no_gif:
                config['save_gif'] = False
            run_scenario(config, args.output_dir, verbose)

    # Single case
    elif args.case:
        config = ConfigManager.get_default_config(args.case)
        if args.no_gif:
            config['save_gif'] = False
        run_scenario(config, args.output_dir, verbose)

    else:
        parser.print_help()
        sys.exit(0)


if __name__ == '__main__':
    main()
