"""
Render synthetic pupil/glint measurements from a known eye state.

This is the inverse of the forward models: given a cornea center and the point
the subject fixates, find where the pupil center and every glint appear in
each camera image.
"""

import logging

import numpy as np
from scipy.optimize import brentq

from gaze_estimation.core.cornea_geometry import angles_to_axis, axis_to_angles, normalize
from gaze_estimation.core.eye_parameters import (
    CameraObservation,
    EyeAndCameraParameters,
    PupilCenterGlintInputs,
)
from gaze_estimation.core.projection import DisplaySurface, screen_point_to_world

logger = logging.getLogger(__name__)


def _plane_basis(*, primary: np.ndarray, secondary: np.ndarray) -> tuple[np.ndarray, np.ndarray, float]:
    """
    Orthonormal in-plane basis (e1 along primary) and the angle from primary to secondary.

    Returns a zero angle when the two directions are parallel.
    """
    e1 = normalize(primary)
    perpendicular = secondary - np.dot(secondary, e1) * e1
    norm = np.linalg.norm(perpendicular)
    if norm < 1e-12:
        return e1, np.zeros(3), 0.0
    e2 = perpendicular / norm
    angle = float(np.arctan2(np.dot(secondary, e2), np.dot(secondary, e1)))
    return e1, e2, angle


def _angle_between(a: np.ndarray, b: np.ndarray) -> float:
    cos_angle = np.dot(a, b) / (np.linalg.norm(a) * np.linalg.norm(b))
    return float(np.arccos(np.clip(cos_angle, -1.0, 1.0)))


def glint_reflection_point(
    *,
    camera_position: np.ndarray,
    light_position: np.ndarray,
    cornea_center: np.ndarray,
    cornea_radius: float
) -> np.ndarray:
    """
    Point on the corneal sphere that reflects the light into the camera.

    The point lies in the plane through camera, light and cornea center,
    between the directions towards camera and light, where incidence and
    reflection angles against the surface normal are equal.
    """
    e1, e2, max_angle = _plane_basis(
        primary=camera_position - cornea_center,
        secondary=light_position - cornea_center,
    )
    if max_angle == 0.0:
        return cornea_center + cornea_radius * e1

    def surface_point(angle: float) -> np.ndarray:
        return cornea_center + cornea_radius * (np.cos(angle) * e1 + np.sin(angle) * e2)

    def angle_imbalance(angle: float) -> float:
        point = surface_point(angle)
        normal = point - cornea_center
        return _angle_between(normal, camera_position - point) - _angle_between(normal, light_position - point)

    return surface_point(brentq(angle_imbalance, 0.0, max_angle, xtol=1e-15))


def pupil_refraction_point(
    *,
    camera_position: np.ndarray,
    pupil_center: np.ndarray,
    cornea_center: np.ndarray,
    cornea_radius: float,
    n_cornea: float,
    n_air: float
) -> np.ndarray:
    """
    Point on the corneal sphere where light from the pupil center refracts into the camera.

    Solved in the plane through camera, cornea center and pupil center by
    balancing the tangential components of the inside and outside rays
    (n1 * sin(inside) = n2 * sin(outside)).
    """
    e1, e2, max_angle = _plane_basis(
        primary=camera_position - cornea_center,
        secondary=pupil_center - cornea_center,
    )
    if max_angle == 0.0:
        return cornea_center + cornea_radius * e1

    def in_plane(vector: np.ndarray) -> np.ndarray:
        return np.array([np.dot(vector, e1), np.dot(vector, e2)])

    def tangential(normal_2d: np.ndarray, vector: np.ndarray) -> float:
        v = normalize(in_plane(vector))
        return float(normal_2d[0] * v[1] - normal_2d[1] * v[0])

    def snell_imbalance(angle: float) -> float:
        normal_2d = np.array([np.cos(angle), np.sin(angle)])
        point = cornea_center + cornea_radius * (normal_2d[0] * e1 + normal_2d[1] * e2)
        return (
            n_cornea * tangential(normal_2d, point - pupil_center)
            - n_air * tangential(normal_2d, camera_position - point)
        )

    angle = brentq(snell_imbalance, 0.0, max_angle, xtol=1e-15)
    return cornea_center + cornea_radius * (np.cos(angle) * e1 + np.sin(angle) * e2)


def render_measurement(
    *,
    parameters: EyeAndCameraParameters,
    cornea_center: np.ndarray,
    gaze_target: np.ndarray
) -> PupilCenterGlintInputs:
    """
    Render what every camera sees while the eye fixates a 3D target.

    Args:
        parameters: Eye and rig parameters (true values)
        cornea_center: (3,) center of corneal curvature in gecs
        gaze_target: (3,) fixated point in gecs

    Returns:
        PupilCenterGlintInputs with one observation per camera
    """
    visual_axis = normalize(gaze_target - cornea_center)
    theta, phi = axis_to_angles(visual_axis)
    optical_axis = angles_to_axis(theta - parameters.alpha, phi - parameters.beta)
    pupil_center = cornea_center + parameters.K * optical_axis

    observations = []
    for camera in parameters.cameras:
        refraction_point = pupil_refraction_point(
            camera_position=camera.position,
            pupil_center=pupil_center,
            cornea_center=cornea_center,
            cornea_radius=parameters.R,
            n_cornea=parameters.n1,
            n_air=parameters.n2,
        )
        glints = [
            camera.project(glint_reflection_point(
                camera_position=camera.position,
                light_position=light_position,
                cornea_center=cornea_center,
                cornea_radius=parameters.R,
            ))
            for light_position in parameters.light_positions
        ]
        observations.append(CameraObservation(
            pupil_center_px=camera.project(refraction_point),
            glints_px=np.array(glints),
        ))

    return PupilCenterGlintInputs(observations=observations)


def screen_target_grid(
    *,
    resolution_x: int,
    resolution_y: int,
    n_columns: int = 3,
    n_rows: int = 3,
    margin_fraction: float = 0.1
) -> np.ndarray:
    """(n_rows * n_columns, 2) evenly spaced screen targets in pixels, row-major."""
    xs = np.linspace(resolution_x * margin_fraction, resolution_x * (1 - margin_fraction), n_columns)
    ys = np.linspace(resolution_y * margin_fraction, resolution_y * (1 - margin_fraction), n_rows)
    return np.array([[x, y] for y in ys for x in xs])


def add_pixel_noise(
    *,
    inputs: PupilCenterGlintInputs,
    noise_std_px: float,
    rng: np.random.Generator
) -> PupilCenterGlintInputs:
    """Copy of the inputs with Gaussian noise on every pupil and glint coordinate."""
    return PupilCenterGlintInputs(observations=[
        CameraObservation(
            pupil_center_px=observation.pupil_center_px + rng.normal(0.0, noise_std_px, size=2),
            glints_px=observation.glints_px + rng.normal(0.0, noise_std_px, size=observation.glints_px.shape),
        )
        for observation in inputs.observations
    ])


def generate_measurement_pairs(
    *,
    parameters: EyeAndCameraParameters,
    targets: np.ndarray,
    cornea_center: np.ndarray,
    z_shift: float,
    wcs_offset: np.ndarray,
    display: DisplaySurface | None = None,
    head_jitter: float = 0.0,
    noise_std_px: float = 0.0,
    rng: np.random.Generator | None = None
) -> list[tuple[PupilCenterGlintInputs, np.ndarray]]:
    """
    Render one (inputs, target) pair per 2D target.

    Args:
        parameters: True eye and rig parameters
        targets: (N, 2) screen pixels (with a display) or physical wcs xy
        cornea_center: (3,) nominal cornea center in gecs
        z_shift: Display plane depth in gecs
        wcs_offset: poi_wcs = poi_gecs - wcs_offset
        display: Display the pixel targets refer to (None: physical targets)
        head_jitter: Uniform per-axis head displacement range around cornea_center
        noise_std_px: Gaussian noise added to every pupil and glint coordinate
        rng: Random generator (required for jitter or noise)

    Returns:
        List of (PupilCenterGlintInputs, (2,) target) pairs
    """
    if (head_jitter > 0 or noise_std_px > 0) and rng is None:
        raise ValueError("rng is required when head_jitter or noise_std_px is non-zero")

    wcs_offset = np.asarray(wcs_offset, dtype=np.float64)
    pairs = []
    for target in np.atleast_2d(targets):
        if display is not None:
            target_wcs = screen_point_to_world(target, display.pixel_size_x, display.pixel_size_y)
        else:
            target_wcs = np.array([target[0], target[1], 0.0])
        gaze_target = np.array([
            target_wcs[0] + wcs_offset[0],
            target_wcs[1] + wcs_offset[1],
            z_shift,
        ])

        center = np.asarray(cornea_center, dtype=np.float64)
        if head_jitter > 0:
            center = center + rng.uniform(-head_jitter, head_jitter, size=3)

        inputs = render_measurement(parameters=parameters, cornea_center=center, gaze_target=gaze_target)
        if noise_std_px > 0:
            inputs = add_pixel_noise(inputs=inputs, noise_std_px=noise_std_px, rng=rng)
        pairs.append((inputs, np.array(target, dtype=np.float64)))

    logger.debug(f"Rendered {len(pairs)} samples (jitter={head_jitter}, noise={noise_std_px}px)")
    return pairs
