"""Eye/camera parameter set, per-sample inputs, and forward model results."""

import numpy as np
from numpydantic import NDArray, Shape
from pydantic import BaseModel, Field, model_validator

from gaze_estimation.core.camera_model import PinholeCameraModel


def deg_to_rad(degrees: float) -> float:
    return float(np.deg2rad(degrees))


def rad_to_deg(radians: float) -> float:
    return float(np.rad2deg(radians))


class EyeAndCameraParameters(BaseModel):
    """
    Everything the spherical cornea forward models need for one subject and rig.

    Units follow the rig description (centimeters in the bundled scenes).
    """

    model_config = {"arbitrary_types_allowed": True}

    alpha: float
    """Horizontal angle between optical and visual axis (radians)"""

    beta: float
    """Vertical angle between optical and visual axis (radians)"""

    R: float = Field(gt=0)
    """Radius of corneal curvature"""

    K: float = Field(gt=0)
    """Distance between center of corneal curvature and pupil center"""

    n1: float = Field(default=1.3375, gt=0)
    """Effective refractive index of cornea and aqueous humour"""

    n2: float = Field(default=1.0, gt=0)
    """Refractive index of air"""

    D: float = Field(default=0.53, ge=0)
    """Distance between center of corneal curvature and eye rotation center"""

    cameras: list[PinholeCameraModel] = Field(default_factory=list)
    light_positions: list[NDArray[Shape["3 xyz"], float]] = Field(default_factory=list)

    distance_to_camera_estimate: float = Field(default=60.0, gt=0)
    """Seed for the distance from a camera to its glint reflection points"""

    @model_validator(mode="after")
    def validate_geometry(self) -> "EyeAndCameraParameters":
        if self.K >= self.R:
            raise ValueError(f"K ({self.K}) must be smaller than R ({self.R})")
        return self


class CameraObservation(BaseModel):
    """Pupil center and glints as seen by a single camera."""

    model_config = {"arbitrary_types_allowed": True}

    pupil_center_px: NDArray[Shape["2 uv"], float]
    glints_px: NDArray[Shape["*, 2"], float]
    """Glint i is the corneal reflection of light_positions[i]"""

    @property
    def n_glints(self) -> int:
        return len(self.glints_px)


class PupilCenterGlintInputs(BaseModel):
    """Per-sample input bundle, one observation per camera in camera order."""

    observations: list[CameraObservation]

    @property
    def n_cameras(self) -> int:
        return len(self.observations)


class GazeEstimationResult(BaseModel):
    """Output of a forward model for one sample."""

    model_config = {"arbitrary_types_allowed": True}

    cornea_center: NDArray[Shape["3 xyz"], float]
    visual_axis: NDArray[Shape["3 xyz"], float]
    optical_axis: NDArray[Shape["3 xyz"], float]
    pupil_center: NDArray[Shape["3 xyz"], float]
    eye_rotation_center: NDArray[Shape["3 xyz"], float]


def gaze_estimation_result_to_string(result: GazeEstimationResult) -> str:
    def fmt(v: np.ndarray) -> str:
        return f"[{v[0]:.4f}, {v[1]:.4f}, {v[2]:.4f}]"

    return (
        f"Cornea center\t: {fmt(result.cornea_center)}\n"
        f"Pupil center\t: {fmt(result.pupil_center)}\n"
        f"Optical axis\t: {fmt(result.optical_axis)}\n"
        f"Visual axis\t: {fmt(result.visual_axis)}\n"
    )
