"""Calibrate-then-evaluate pipeline for spherical cornea gaze estimation."""

import logging
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from gaze_estimation.core.calibration import CalibrationConfig, CalibrationResult, calibrate_layout
from gaze_estimation.core.eye_parameters import EyeAndCameraParameters, PupilCenterGlintInputs, rad_to_deg
from gaze_estimation.core.forward_models import ForwardModel, create_forward_model
from gaze_estimation.core.metrics import EvaluationReport, evaluate_test_samples, log_evaluation_report
from gaze_estimation.core.parameter_layout import LAYOUTS, ParameterLayout
from gaze_estimation.core.projection import DisplaySurface, PointOfInterestProcessor, screen_point_to_world
from gaze_estimation.io.loaders import SceneConfig

logger = logging.getLogger(__name__)

MeasurementPair = tuple[PupilCenterGlintInputs, np.ndarray]


@dataclass
class GazeSessionConfig:
    """Complete configuration for one calibrate-and-evaluate run."""

    forward_model: ForwardModel
    """Forward model variant, chosen once"""

    parameters: EyeAndCameraParameters
    """Initial parameters; calibrated slots are overwritten in the result only"""

    layout: ParameterLayout
    """Which parameters to calibrate, and their bounds"""

    z_shift: float
    """Display plane depth in gecs"""

    wcs_offset: np.ndarray = field(default_factory=lambda: np.zeros(3))
    """poi_wcs = poi_gecs - wcs_offset"""

    display: DisplaySurface | None = None
    """Display for pixel targets (None: targets are physical xy in wcs)"""

    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)


@dataclass
class GazeSessionResult:
    calibration: CalibrationResult
    parameters: EyeAndCameraParameters
    """Final parameters used for every test sample"""

    evaluation: EvaluationReport | None


def targets_to_world(
    *,
    targets: np.ndarray,
    processor: PointOfInterestProcessor,
    display: DisplaySurface | None
) -> np.ndarray:
    """
    Express 2D ground-truth targets in the processor's wcs output space.

    Pixel targets are scaled by the display pixel pitch (with the same y flip
    as the screen conversion). The z coordinate is the display plane in wcs.
    """
    plane_z = processor.z_shift - processor.wcs_offset[2]
    world = []
    for target in np.atleast_2d(targets):
        if display is not None:
            point = screen_point_to_world(target, display.pixel_size_x, display.pixel_size_y)
        else:
            point = np.array([target[0], target[1], 0.0])
        point[2] = plane_z
        world.append(point)
    return np.array(world)


def run_gaze_session(
    *,
    config: GazeSessionConfig,
    calibration_pairs: Sequence[MeasurementPair],
    test_pairs: Sequence[MeasurementPair] = ()
) -> GazeSessionResult:
    """
    Complete gaze estimation pipeline.

    Pipeline:
    1. Convert calibration targets to world coordinates
    2. Calibrate the layout's parameters
    3. Apply the optimized values once to get the final parameters
    4. Evaluate on the test samples (if any)

    Args:
        config: GazeSessionConfig
        calibration_pairs: (inputs, 2D target) pairs used for fitting
        test_pairs: (inputs, 2D target) held-out pairs

    Returns:
        GazeSessionResult
    """
    processor = PointOfInterestProcessor(z_shift=config.z_shift, wcs_offset=np.asarray(config.wcs_offset, dtype=np.float64))

    logger.info("=" * 80)
    logger.info("GAZE ESTIMATION SESSION")
    logger.info("=" * 80)
    logger.info(f"Model:              {type(config.forward_model).__name__}")
    logger.info(f"Calibrated slots:   {config.layout.names}")
    logger.info(f"Calibration samples: {len(calibration_pairs)}")
    logger.info(f"Test samples:       {len(test_pairs)}")

    # =========================================================================
    # STEP 1: CALIBRATE
    # =========================================================================
    world_targets = targets_to_world(
        targets=np.array([target for _, target in calibration_pairs]).reshape(-1, 2),
        processor=processor,
        display=config.display,
    )
    training_pairs = [(inputs, target) for (inputs, _), target in zip(calibration_pairs, world_targets)]

    calibration = calibrate_layout(
        forward_model=config.forward_model,
        base_parameters=config.parameters,
        layout=config.layout,
        processor=processor,
        training_pairs=training_pairs,
        config=config.calibration,
    )
    parameters = config.layout.apply(config.parameters, calibration.values)

    logger.info("Calibration finished.")
    logger.info(f"  Alpha: {parameters.alpha:.6f} ({rad_to_deg(parameters.alpha):.3f} deg)")
    logger.info(f"  Beta:  {parameters.beta:.6f} ({rad_to_deg(parameters.beta):.3f} deg)")
    logger.info(f"  R:     {parameters.R:.6f}")
    logger.info(f"  K:     {parameters.K:.6f}")
    for index, camera in enumerate(parameters.cameras):
        logger.info(f"  Camera {index} angles (y, z): {camera.camera_angle_y():.6f}, {camera.camera_angle_z():.6f}")

    # =========================================================================
    # STEP 2: EVALUATE
    # =========================================================================
    evaluation = None
    if len(test_pairs) > 0:
        evaluation = evaluate_test_samples(
            forward_model=config.forward_model,
            parameters=parameters,
            processor=processor,
            test_pairs=test_pairs,
            display=config.display,
        )
        log_evaluation_report(report=evaluation)

    return GazeSessionResult(
        calibration=calibration,
        parameters=parameters,
        evaluation=evaluation,
    )


def create_session_config(*, scene: SceneConfig) -> GazeSessionConfig:
    """Resolve a loaded scene into a session config (model, layout, parameters)."""
    if scene.layout not in LAYOUTS:
        raise ValueError(f"Unknown parameter layout '{scene.layout}', expected one of {sorted(LAYOUTS)}")
    return GazeSessionConfig(
        forward_model=create_forward_model(scene.forward_model),
        parameters=scene.to_parameters(),
        layout=LAYOUTS[scene.layout](),
        z_shift=scene.z_shift,
        wcs_offset=np.array(scene.wcs_offset, dtype=np.float64),
        display=scene.display,
        calibration=scene.calibration,
    )
