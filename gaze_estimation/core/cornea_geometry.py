"""
Geometry shared by the spherical cornea forward models.

World frame (gecs): x right, y up, z pointing from the display towards the
subject. A neutral optical axis therefore points along -Z, and the optical
axis angles follow

    omega = (cos(phi) sin(theta), sin(phi), -cos(phi) cos(theta))

with theta the pan and phi the tilt of the axis.
"""

from dataclasses import dataclass

import numpy as np
from scipy.optimize import least_squares


@dataclass(frozen=True)
class GlintRay:
    """Back-projected glint: camera node, unit ray towards the glint, and its light."""
    camera_position: np.ndarray
    direction: np.ndarray
    light_position: np.ndarray


def normalize(vector: np.ndarray) -> np.ndarray:
    return vector / np.linalg.norm(vector)


def ray_sphere_intersection(
    *,
    origin: np.ndarray,
    direction: np.ndarray,
    center: np.ndarray,
    radius: float
) -> np.ndarray:
    """
    First intersection of a ray with a sphere.

    A ray that misses the sphere is clamped to its point of closest approach
    (tangent), which keeps the function total for use inside optimizers.
    """
    oc = origin - center
    b = np.dot(direction, oc)
    discriminant = b * b - (np.dot(oc, oc) - radius * radius)
    k = -b - np.sqrt(max(discriminant, 0.0))
    return origin + k * direction


def refract(
    *,
    direction: np.ndarray,
    normal: np.ndarray,
    eta: float
) -> np.ndarray:
    """
    Refract a unit direction at a surface (vector form of Snell's law).

    Args:
        direction: (3,) unit incident direction
        normal: (3,) unit surface normal, facing against the incident ray
        eta: n_incident / n_transmitted

    Returns:
        (3,) unit transmitted direction. Total internal reflection is clamped
        to a grazing ray.
    """
    cos_i = -np.dot(normal, direction)
    sin2_t = min(eta * eta * (1.0 - cos_i * cos_i), 1.0)
    transmitted = eta * direction + (eta * cos_i - np.sqrt(1.0 - sin2_t)) * normal
    return normalize(transmitted)


def cornea_center_from_glints(
    *,
    glint_rays: list[GlintRay],
    cornea_radius: float,
    distance_estimate: float
) -> np.ndarray:
    """
    Solve for the center of corneal curvature from two or more glints.

    For a candidate distance k along a glint ray, the reflection point is
    q = o + k * d. The law of reflection makes the surface normal at q the
    bisector of the directions towards the light and towards the camera, so
    each glint implies a center c(k) = q - R * normal. One distance per glint
    is solved such that all implied centers coincide.

    Args:
        glint_rays: Back-projected glints (any mix of cameras)
        cornea_radius: R
        distance_estimate: Seed for every ray distance

    Returns:
        (3,) cornea center
    """
    if len(glint_rays) < 2:
        raise ValueError(f"Need at least 2 glints to locate the cornea, got {len(glint_rays)}")

    def implied_centers(distances: np.ndarray) -> np.ndarray:
        centers = np.empty((len(glint_rays), 3))
        for index, (ray, k) in enumerate(zip(glint_rays, distances)):
            reflection_point = ray.camera_position + k * ray.direction
            to_light = normalize(ray.light_position - reflection_point)
            to_camera = normalize(ray.camera_position - reflection_point)
            surface_normal = normalize(to_light + to_camera)
            centers[index] = reflection_point - cornea_radius * surface_normal
        return centers

    def residuals(distances: np.ndarray) -> np.ndarray:
        centers = implied_centers(distances)
        return (centers[1:] - centers[0]).ravel()

    result = least_squares(
        fun=residuals,
        x0=np.full(len(glint_rays), distance_estimate, dtype=np.float64),
        method="lm",
        xtol=1e-14,
        ftol=1e-14,
        gtol=1e-14,
    )
    return implied_centers(result.x).mean(axis=0)


def pupil_center_by_refraction(
    *,
    camera_position: np.ndarray,
    pupil_ray: np.ndarray,
    cornea_center: np.ndarray,
    cornea_radius: float,
    pupil_distance: float,
    n_cornea: float,
    n_air: float
) -> np.ndarray:
    """
    Trace the pupil image ray into the cornea and find the pupil center.

    The ray enters the corneal sphere at its first intersection, refracts from
    air into the aqueous humour, and meets the pupil on the sphere of radius
    K around the cornea center.
    """
    refraction_point = ray_sphere_intersection(
        origin=camera_position,
        direction=pupil_ray,
        center=cornea_center,
        radius=cornea_radius,
    )
    surface_normal = normalize(refraction_point - cornea_center)
    inside_direction = refract(direction=pupil_ray, normal=surface_normal, eta=n_air / n_cornea)

    offset = refraction_point - cornea_center
    b = np.dot(inside_direction, offset)
    discriminant = b * b - (np.dot(offset, offset) - pupil_distance * pupil_distance)
    k = -b - np.sqrt(max(discriminant, 0.0))
    return refraction_point + k * inside_direction


def axis_to_angles(axis: np.ndarray) -> tuple[float, float]:
    """(theta, phi) pan/tilt of a unit axis."""
    phi = float(np.arcsin(np.clip(axis[1], -1.0, 1.0)))
    theta = float(np.arctan2(axis[0], -axis[2]))
    return theta, phi


def angles_to_axis(theta: float, phi: float) -> np.ndarray:
    return np.array([
        np.cos(phi) * np.sin(theta),
        np.sin(phi),
        -np.cos(phi) * np.cos(theta),
    ])


def optical_to_visual_axis(*, optical_axis: np.ndarray, alpha: float, beta: float) -> np.ndarray:
    """Offset the optical axis by the subject's alpha (pan) and beta (tilt)."""
    theta, phi = axis_to_angles(optical_axis)
    return angles_to_axis(theta + alpha, phi + beta)


def visual_to_optical_axis(*, visual_axis: np.ndarray, alpha: float, beta: float) -> np.ndarray:
    theta, phi = axis_to_angles(visual_axis)
    return angles_to_axis(theta - alpha, phi - beta)
