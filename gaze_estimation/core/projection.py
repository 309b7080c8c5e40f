"""Gaze ray to display plane projection and screen coordinate conversion."""

from dataclasses import dataclass, field

import numpy as np
from pydantic import BaseModel, Field, computed_field

from gaze_estimation.core.eye_parameters import GazeEstimationResult


class DegenerateRayError(ValueError):
    """The gaze ray is (nearly) parallel to the target plane and never meets it."""


class DisplaySurface(BaseModel):
    """Physical display the subject looks at."""

    size_x: float = Field(gt=0)
    """Display width in physical units"""

    size_y: float = Field(gt=0)
    """Display height in physical units"""

    resolution_x: int = Field(gt=0)
    resolution_y: int = Field(gt=0)

    @computed_field
    @property
    def pixel_size_x(self) -> float:
        """Physical width of one screen pixel."""
        return self.size_x / self.resolution_x

    @computed_field
    @property
    def pixel_size_y(self) -> float:
        """Physical height of one screen pixel."""
        return self.size_y / self.resolution_y


def calculate_point_of_interest(
    cornea_center: np.ndarray,
    visual_axis: np.ndarray,
    z_shift: float,
    tolerance: float = 1e-6
) -> np.ndarray:
    """
    Intersect the gaze ray with the plane z = z_shift.

    Args:
        cornea_center: (3,) ray origin
        visual_axis: (3,) ray direction
        z_shift: z coordinate of the target plane
        tolerance: smallest |sin| of the angle between ray and plane accepted as non-parallel

    Returns:
        (3,) point of interest

    Raises:
        DegenerateRayError: if the ray is (nearly) parallel to the plane
    """
    if abs(visual_axis[2]) < tolerance * np.linalg.norm(visual_axis):
        raise DegenerateRayError(f"Visual axis {visual_axis} is parallel to the plane z={z_shift}")

    k = (z_shift - cornea_center[2]) / visual_axis[2]
    poi = cornea_center + k * visual_axis
    if not np.all(np.isfinite(poi)):
        raise DegenerateRayError(f"Point of interest is not finite for visual axis {visual_axis}")
    return poi


def estimate_screen_point(poi: np.ndarray, screen_pixel_size_x: float, screen_pixel_size_y: float) -> np.ndarray:
    """World point to screen pixels. World y points up, screen rows point down."""
    return np.array([poi[0] / screen_pixel_size_x, -poi[1] / screen_pixel_size_y])


def screen_point_to_world(point_px: np.ndarray, screen_pixel_size_x: float, screen_pixel_size_y: float) -> np.ndarray:
    """Screen pixels to a (3,) world point on the display plane (z = 0)."""
    return np.array([point_px[0] * screen_pixel_size_x, -point_px[1] * screen_pixel_size_y, 0.0])


@dataclass(frozen=True)
class PointOfInterestProcessor:
    """
    Maps a forward model result to its point of interest in wcs.

    The plane depth and coordinate offset are fixed for a whole calibration
    run, so they are captured once here.
    """

    z_shift: float
    """Target plane depth in gecs"""

    wcs_offset: np.ndarray = field(default_factory=lambda: np.zeros(3))
    """poi_wcs = poi_gecs - wcs_offset"""

    parallel_tolerance: float = 1e-6
    """Rays within asin(parallel_tolerance) of the plane are degenerate"""

    def point_of_interest_gecs(self, result: GazeEstimationResult) -> np.ndarray:
        return calculate_point_of_interest(
            result.cornea_center,
            result.visual_axis,
            self.z_shift,
            tolerance=self.parallel_tolerance,
        )

    def __call__(self, result: GazeEstimationResult) -> np.ndarray:
        return self.point_of_interest_gecs(result) - self.wcs_offset
