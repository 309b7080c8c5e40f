"""Measurement CSV and scene TOML loading."""

import logging
import re
import tomllib
from pathlib import Path

import numpy as np
import pandas as pd
from pydantic import BaseModel, Field

from gaze_estimation.core.calibration import CalibrationConfig
from gaze_estimation.core.camera_model import PinholeCameraModel
from gaze_estimation.core.eye_parameters import (
    CameraObservation,
    EyeAndCameraParameters,
    PupilCenterGlintInputs,
    deg_to_rad,
)
from gaze_estimation.core.projection import DisplaySurface

logger = logging.getLogger(__name__)

PUPIL_COLUMN = re.compile(r"^cam(\d+)_pupil_x$")
GLINT_COLUMN = re.compile(r"^cam(\d+)_glint(\d+)_x$")


def load_measurements_csv(*, filepath: Path) -> list[tuple[PupilCenterGlintInputs, np.ndarray]]:
    """
    Load (inputs, target) pairs from a wide-format measurement CSV.

    Expected format:
        target_x, target_y, cam0_pupil_x, cam0_pupil_y, cam0_glint0_x, cam0_glint0_y, ...
        840.0, 525.0, 301.2, 402.7, 296.1, 398.3, ...

    Camera and glint counts are inferred from the column names.

    Args:
        filepath: Path to CSV file

    Returns:
        List of (PupilCenterGlintInputs, (2,) target) pairs
    """
    logger.info(f"Loading measurements: {filepath.name}")
    df = pd.read_csv(filepath)

    for column in ("target_x", "target_y"):
        if column not in df.columns:
            raise ValueError(f"{filepath.name}: missing column '{column}'")

    camera_indices = sorted(
        int(match.group(1)) for column in df.columns if (match := PUPIL_COLUMN.match(column))
    )
    if not camera_indices:
        raise ValueError(f"{filepath.name}: no 'cam<j>_pupil_x' columns found")
    if camera_indices != list(range(len(camera_indices))):
        raise ValueError(f"{filepath.name}: camera indices {camera_indices} are not contiguous from 0")

    glint_counts = {}
    for camera_index in camera_indices:
        glint_indices = sorted(
            int(match.group(2)) for column in df.columns
            if (match := GLINT_COLUMN.match(column)) and int(match.group(1)) == camera_index
        )
        if glint_indices != list(range(len(glint_indices))):
            raise ValueError(f"{filepath.name}: camera {camera_index} glint indices {glint_indices} are not contiguous")
        glint_counts[camera_index] = len(glint_indices)

    values = df.to_numpy(dtype=np.float64)
    column_index = {name: i for i, name in enumerate(df.columns)}

    pairs = []
    for row in values:
        observations = []
        for camera_index in camera_indices:
            prefix = f"cam{camera_index}"
            glints = np.array([
                [row[column_index[f"{prefix}_glint{i}_x"]], row[column_index[f"{prefix}_glint{i}_y"]]]
                for i in range(glint_counts[camera_index])
            ]).reshape(-1, 2)
            observations.append(CameraObservation(
                pupil_center_px=np.array([row[column_index[f"{prefix}_pupil_x"]], row[column_index[f"{prefix}_pupil_y"]]]),
                glints_px=glints,
            ))
        target = np.array([row[column_index["target_x"]], row[column_index["target_y"]]])
        pairs.append((PupilCenterGlintInputs(observations=observations), target))

    logger.info(f"  Loaded {len(pairs)} samples × {len(camera_indices)} cameras ({glint_counts} glints)")
    return pairs


# =============================================================================
# SCENE FILES
# =============================================================================

class EyeConfig(BaseModel):
    """Eye constants; angles in degrees."""
    alpha_deg: float = -5.0
    beta_deg: float = 1.5
    R: float = Field(default=0.78, gt=0)
    K: float = Field(default=0.42, gt=0)
    n1: float = 1.3375
    n2: float = 1.0
    D: float = 0.53
    distance_to_camera_estimate: float = Field(default=60.0, gt=0)


class CameraConfig(BaseModel):
    principal_point: tuple[float, float]
    pixel_size: tuple[float, float]
    focal_length: float = Field(gt=0)
    position: tuple[float, float, float] = (0.0, 0.0, 0.0)
    angle_x_deg: float = 0.0
    angle_y_deg: float = 0.0
    angle_z_deg: float = 0.0

    def to_camera(self) -> PinholeCameraModel:
        camera = PinholeCameraModel(
            principal_point_x=self.principal_point[0],
            principal_point_y=self.principal_point[1],
            pixel_size_x=self.pixel_size[0],
            pixel_size_y=self.pixel_size[1],
            focal_length=self.focal_length,
            position=np.array(self.position, dtype=np.float64),
        )
        camera.set_camera_angles(
            deg_to_rad(self.angle_y_deg),
            deg_to_rad(self.angle_z_deg),
            deg_to_rad(self.angle_x_deg),
        )
        return camera


class LightConfig(BaseModel):
    position: tuple[float, float, float]


class SubjectConfig(BaseModel):
    """Synthetic subject for the simulate command."""
    cornea_center: tuple[float, float, float]
    eye: EyeConfig | None = None
    """True eye constants (None: same as the scene's initial eye)"""

    head_jitter: float = Field(default=0.5, ge=0)
    noise_std_px: float = Field(default=0.0, ge=0)


class SceneConfig(BaseModel):
    """Rig, subject, display, and calibration settings for one run."""

    forward_model: str = "one_camera"
    layout: str = "six_variable"
    z_shift: float
    wcs_offset: tuple[float, float, float] = (0.0, 0.0, 0.0)

    eye: EyeConfig = Field(default_factory=EyeConfig)
    cameras: list[CameraConfig] = Field(min_length=1, max_length=2)
    lights: list[LightConfig] = Field(min_length=2)
    display: DisplaySurface | None = None
    calibration: CalibrationConfig = Field(default_factory=CalibrationConfig)
    subject: SubjectConfig | None = None

    def to_parameters(self, eye: EyeConfig | None = None) -> EyeAndCameraParameters:
        """Parameters from the scene rig and `eye` (default: the scene's own eye)."""
        eye = eye or self.eye
        return EyeAndCameraParameters(
            alpha=deg_to_rad(eye.alpha_deg),
            beta=deg_to_rad(eye.beta_deg),
            R=eye.R,
            K=eye.K,
            n1=eye.n1,
            n2=eye.n2,
            D=eye.D,
            cameras=[camera.to_camera() for camera in self.cameras],
            light_positions=[np.array(light.position, dtype=np.float64) for light in self.lights],
            distance_to_camera_estimate=eye.distance_to_camera_estimate,
        )


def load_scene(*, filepath: Path) -> SceneConfig:
    """Load and validate a scene TOML file."""
    logger.info(f"Loading scene: {filepath}")
    with open(filepath, "rb") as f:
        scene = SceneConfig.model_validate(tomllib.load(f))
    logger.info(f"  Cameras: {len(scene.cameras)}, lights: {len(scene.lights)}, model: {scene.forward_model}")
    return scene
