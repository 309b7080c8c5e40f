"""Synthetic calibration demo: render a known eye, perturb it, calibrate it back."""

import logging

import numpy as np

from gaze_estimation.api import GazeSessionConfig, run_gaze_session
from gaze_estimation.core.calibration import CalibrationConfig
from gaze_estimation.core.camera_model import PinholeCameraModel
from gaze_estimation.core.eye_parameters import EyeAndCameraParameters, deg_to_rad, rad_to_deg
from gaze_estimation.core.forward_models import create_forward_model
from gaze_estimation.core.parameter_layout import LAYOUTS
from gaze_estimation.core.projection import DisplaySurface
from gaze_estimation.core.synthesis import generate_measurement_pairs, screen_target_grid

logger = logging.getLogger(__name__)

# Rig in gecs (cm): cameras at the origin plane, display 10 cm behind them,
# subject about 60 cm in front, looking at the display center.
DEMO_DISPLAY = DisplaySurface(size_x=48.7, size_y=27.4, resolution_x=1680, resolution_y=1050)
DEMO_Z_SHIFT = -10.0
DEMO_WCS_OFFSET = np.array([-24.35, 35.0, -10.0])
"""Top-left display corner in gecs; wcs is x right, y up from that corner"""

DEMO_CORNEA_CENTER = np.array([0.0, 21.3, 55.0])
DEMO_LIGHT_POSITIONS = [np.array([-13.0, 0.0, 0.0]), np.array([13.0, 0.0, 0.0])]


def create_demo_camera(*, position: np.ndarray) -> PinholeCameraModel:
    """2.4 um pixels, 11.9 mm lens, aimed at DEMO_CORNEA_CENTER."""
    camera = PinholeCameraModel(
        principal_point_x=299.5,
        principal_point_y=399.5,
        pixel_size_x=2.4e-4,
        pixel_size_y=2.4e-4,
        focal_length=1.19144,
        position=np.asarray(position, dtype=np.float64),
    )
    # Rx(ax) @ Ry(ay) maps +Z to (sin ay, -sin ax cos ay, cos ax cos ay)
    direction = DEMO_CORNEA_CENTER - camera.position
    direction = direction / np.linalg.norm(direction)
    angle_y = float(np.arcsin(direction[0]))
    angle_x = float(np.arcsin(-direction[1] / np.cos(angle_y)))
    camera.set_camera_angles(angle_y, 0.0, angle_x)
    return camera


def create_demo_parameters(
    *,
    n_cameras: int = 1,
    alpha_deg: float = -5.0,
    beta_deg: float = 1.5,
    R: float = 0.78,
    K: float = 0.42
) -> EyeAndCameraParameters:
    """
    Eye and rig parameters for the demo scene.

    Args:
        n_cameras: 1 (camera at the origin) or 2 (cameras at x = -5 and x = +5)
        alpha_deg: Horizontal visual axis offset
        beta_deg: Vertical visual axis offset
        R: Cornea radius
        K: Cornea center to pupil center distance

    Returns:
        EyeAndCameraParameters
    """
    if n_cameras == 1:
        camera_positions = [np.zeros(3)]
    elif n_cameras == 2:
        camera_positions = [np.array([-5.0, 0.0, 0.0]), np.array([5.0, 0.0, 0.0])]
    else:
        raise ValueError(f"Demo rig supports 1 or 2 cameras, got {n_cameras}")

    return EyeAndCameraParameters(
        alpha=deg_to_rad(alpha_deg),
        beta=deg_to_rad(beta_deg),
        R=R,
        K=K,
        cameras=[create_demo_camera(position=position) for position in camera_positions],
        light_positions=[light.copy() for light in DEMO_LIGHT_POSITIONS],
        distance_to_camera_estimate=60.0,
    )


def run_synthetic_demo() -> None:
    """Run complete synthetic calibration and evaluation."""

    logging.basicConfig(
        level=logging.INFO,
        format='%(levelname)s | %(message)s'
    )

    logger.info("=" * 80)
    logger.info("SYNTHETIC GAZE CALIBRATION DEMO")
    logger.info("=" * 80)

    true_parameters = create_demo_parameters(n_cameras=1)
    rng = np.random.default_rng(seed=42)

    logger.info("\nGenerating synthetic data...")
    calibration_pairs = generate_measurement_pairs(
        parameters=true_parameters,
        targets=screen_target_grid(resolution_x=1680, resolution_y=1050, n_columns=3, n_rows=3),
        cornea_center=DEMO_CORNEA_CENTER,
        z_shift=DEMO_Z_SHIFT,
        wcs_offset=DEMO_WCS_OFFSET,
        display=DEMO_DISPLAY,
        head_jitter=0.5,
        noise_std_px=0.05,
        rng=rng,
    )
    test_pairs = generate_measurement_pairs(
        parameters=true_parameters,
        targets=screen_target_grid(resolution_x=1680, resolution_y=1050, n_columns=5, n_rows=4),
        cornea_center=DEMO_CORNEA_CENTER,
        z_shift=DEMO_Z_SHIFT,
        wcs_offset=DEMO_WCS_OFFSET,
        display=DEMO_DISPLAY,
        head_jitter=0.5,
        noise_std_px=0.05,
        rng=rng,
    )
    logger.info(f"  Calibration samples: {len(calibration_pairs)}")
    logger.info(f"  Test samples:        {len(test_pairs)}")

    # Start from population averages instead of the true subject
    initial_parameters = create_demo_parameters(n_cameras=1, alpha_deg=0.0, beta_deg=0.0, R=0.8, K=0.45)

    result = run_gaze_session(
        config=GazeSessionConfig(
            forward_model=create_forward_model("one_camera"),
            parameters=initial_parameters,
            layout=LAYOUTS["eye_geometry"](),
            z_shift=DEMO_Z_SHIFT,
            wcs_offset=DEMO_WCS_OFFSET,
            display=DEMO_DISPLAY,
            calibration=CalibrationConfig(max_function_evaluations=100),
        ),
        calibration_pairs=calibration_pairs,
        test_pairs=test_pairs,
    )

    logger.info("\n" + "=" * 80)
    logger.info("DEMO COMPLETE")
    logger.info("=" * 80)
    logger.info(f"True alpha/beta:       {rad_to_deg(true_parameters.alpha):.3f} / {rad_to_deg(true_parameters.beta):.3f} deg")
    logger.info(
        f"Calibrated alpha/beta: {rad_to_deg(result.parameters.alpha):.3f} / "
        f"{rad_to_deg(result.parameters.beta):.3f} deg"
    )
    logger.info(f"True R/K:              {true_parameters.R:.4f} / {true_parameters.K:.4f}")
    logger.info(f"Calibrated R/K:        {result.parameters.R:.4f} / {result.parameters.K:.4f}")


if __name__ == "__main__":
    run_synthetic_demo()
