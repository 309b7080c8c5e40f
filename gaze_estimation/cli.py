"""Command-line interface for gaze calibration."""

import argparse
import logging
import sys
from pathlib import Path

import numpy as np

from gaze_estimation.api import create_session_config, run_gaze_session
from gaze_estimation.core.calibration import CalibrationConfig
from gaze_estimation.core.synthesis import generate_measurement_pairs, screen_target_grid
from gaze_estimation.io.loaders import load_measurements_csv, load_scene
from gaze_estimation.io.savers import save_measurements_csv

logger = logging.getLogger(__name__)


def cmd_simulate(*, args: argparse.Namespace) -> None:
    """Render calibration and test CSVs for the scene's subject."""

    scene = load_scene(filepath=Path(args.scene))
    if scene.subject is None:
        raise ValueError(f"{args.scene}: a [subject] table is required to simulate")
    if scene.display is None:
        raise ValueError(f"{args.scene}: a [display] table is required to simulate screen targets")

    parameters = scene.to_parameters(scene.subject.eye)
    rng = np.random.default_rng(seed=args.seed)
    output_dir = Path(args.output)

    for name, n_columns, n_rows in (
        ("calibration", args.calibration_columns, args.calibration_rows),
        ("test", args.test_columns, args.test_rows),
    ):
        pairs = generate_measurement_pairs(
            parameters=parameters,
            targets=screen_target_grid(
                resolution_x=scene.display.resolution_x,
                resolution_y=scene.display.resolution_y,
                n_columns=n_columns,
                n_rows=n_rows,
            ),
            cornea_center=np.array(scene.subject.cornea_center),
            z_shift=scene.z_shift,
            wcs_offset=np.array(scene.wcs_offset),
            display=scene.display,
            head_jitter=scene.subject.head_jitter,
            noise_std_px=scene.subject.noise_std_px,
            rng=rng,
        )
        save_measurements_csv(filepath=output_dir / f"{name}.csv", pairs=pairs)

    logger.info(f"\n✓ Simulated measurements saved to: {output_dir}")


def cmd_run(*, args: argparse.Namespace) -> None:
    """Calibrate on one CSV, evaluate on another."""

    scene = load_scene(filepath=Path(args.scene))
    if args.max_evaluations is not None:
        calibration = CalibrationConfig.model_validate(
            {**scene.calibration.model_dump(), "max_function_evaluations": args.max_evaluations}
        )
        scene = scene.model_copy(update={"calibration": calibration})

    config = create_session_config(scene=scene)
    calibration_pairs = load_measurements_csv(filepath=Path(args.calibration))
    test_pairs = load_measurements_csv(filepath=Path(args.test)) if args.test else []

    result = run_gaze_session(
        config=config,
        calibration_pairs=calibration_pairs,
        test_pairs=test_pairs,
    )
    if not result.calibration.converged:
        logger.warning("Reported values come from a non-converged calibration")


def main() -> None:
    """Main CLI entry point."""

    parser = argparse.ArgumentParser(
        description="Spherical cornea gaze estimation calibration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:

  # Render synthetic calibration/test measurements for a scene
  gaze-calibration simulate scenes/one_camera.toml --output output/one_camera

  # Calibrate and evaluate
  gaze-calibration run scenes/one_camera.toml \\
      --calibration output/one_camera/calibration.csv \\
      --test output/one_camera/test.csv
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # ========== SIMULATE command ==========
    simulate_parser = subparsers.add_parser(
        'simulate',
        help='Render synthetic measurement CSVs from a scene'
    )
    simulate_parser.add_argument(
        'scene',
        help='Scene TOML file (needs [subject] and [display])'
    )
    simulate_parser.add_argument(
        '--output', '-o',
        default='output',
        help='Output directory (default: output/)'
    )
    simulate_parser.add_argument(
        '--calibration-columns',
        type=int,
        default=3,
        help='Calibration grid columns (default: 3)'
    )
    simulate_parser.add_argument(
        '--calibration-rows',
        type=int,
        default=3,
        help='Calibration grid rows (default: 3)'
    )
    simulate_parser.add_argument(
        '--test-columns',
        type=int,
        default=5,
        help='Test grid columns (default: 5)'
    )
    simulate_parser.add_argument(
        '--test-rows',
        type=int,
        default=4,
        help='Test grid rows (default: 4)'
    )
    simulate_parser.add_argument(
        '--seed',
        type=int,
        default=42,
        help='Random seed for head jitter and pixel noise (default: 42)'
    )

    # ========== RUN command ==========
    run_parser = subparsers.add_parser(
        'run',
        help='Calibrate and evaluate'
    )
    run_parser.add_argument(
        'scene',
        help='Scene TOML file'
    )
    run_parser.add_argument(
        '--calibration', '-c',
        required=True,
        help='Calibration measurements CSV'
    )
    run_parser.add_argument(
        '--test', '-t',
        help='Held-out test measurements CSV'
    )
    run_parser.add_argument(
        '--max-evaluations',
        type=int,
        help='Override the scene\'s calibration evaluation cap'
    )

    # Parse arguments
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    # Setup logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(levelname)s | %(message)s'
    )

    # Execute command
    if args.command == 'simulate':
        cmd_simulate(args=args)
    elif args.command == 'run':
        cmd_run(args=args)


if __name__ == "__main__":
    main()
