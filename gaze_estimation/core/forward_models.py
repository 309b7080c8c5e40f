"""Spherical cornea gaze estimation models (pupil center / corneal reflection)."""

import logging
from typing import Protocol, TypeVar

import numpy as np

from gaze_estimation.core.cornea_geometry import (
    GlintRay,
    cornea_center_from_glints,
    normalize,
    optical_to_visual_axis,
    pupil_center_by_refraction,
)
from gaze_estimation.core.eye_parameters import (
    EyeAndCameraParameters,
    GazeEstimationResult,
    PupilCenterGlintInputs,
)

logger = logging.getLogger(__name__)

InputT = TypeVar("InputT", contravariant=True)
ParamsT = TypeVar("ParamsT", contravariant=True)
ResultT = TypeVar("ResultT", covariant=True)


class ForwardModel(Protocol[InputT, ParamsT, ResultT]):
    """Anything that maps one sample's inputs plus a parameter set to a gaze result."""

    def estimate(self, inputs: InputT, parameters: ParamsT) -> ResultT:
        ...


def _glint_rays(
    *,
    inputs: PupilCenterGlintInputs,
    parameters: EyeAndCameraParameters,
    camera_indices: list[int]
) -> list[GlintRay]:
    rays: list[GlintRay] = []
    for camera_index in camera_indices:
        camera = parameters.cameras[camera_index]
        observation = inputs.observations[camera_index]
        if observation.n_glints != len(parameters.light_positions):
            raise ValueError(
                f"Camera {camera_index} has {observation.n_glints} glints "
                f"but {len(parameters.light_positions)} lights are configured"
            )
        for glint_px, light_position in zip(observation.glints_px, parameters.light_positions):
            rays.append(GlintRay(
                camera_position=camera.position,
                direction=camera.pixel_ray(glint_px),
                light_position=light_position,
            ))
    return rays


def _refracted_pupil_center(
    *,
    inputs: PupilCenterGlintInputs,
    parameters: EyeAndCameraParameters,
    camera_index: int,
    cornea_center: np.ndarray
) -> np.ndarray:
    camera = parameters.cameras[camera_index]
    return pupil_center_by_refraction(
        camera_position=camera.position,
        pupil_ray=camera.pixel_ray(inputs.observations[camera_index].pupil_center_px),
        cornea_center=cornea_center,
        cornea_radius=parameters.R,
        pupil_distance=parameters.K,
        n_cornea=parameters.n1,
        n_air=parameters.n2,
    )


def _build_result(
    *,
    parameters: EyeAndCameraParameters,
    cornea_center: np.ndarray,
    optical_axis: np.ndarray
) -> GazeEstimationResult:
    visual_axis = optical_to_visual_axis(
        optical_axis=optical_axis,
        alpha=parameters.alpha,
        beta=parameters.beta,
    )
    return GazeEstimationResult(
        cornea_center=cornea_center,
        visual_axis=visual_axis,
        optical_axis=optical_axis,
        pupil_center=cornea_center + parameters.K * optical_axis,
        eye_rotation_center=cornea_center - parameters.D * optical_axis,
    )


class OneCameraSphericalModel:
    """
    Single camera, two or more lights.

    Cornea center from the glints, pupil center by explicit refraction at the
    corneal surface, optical axis through both.
    """

    camera_index: int = 0

    def estimate(
        self,
        inputs: PupilCenterGlintInputs,
        parameters: EyeAndCameraParameters
    ) -> GazeEstimationResult:
        cornea_center = cornea_center_from_glints(
            glint_rays=_glint_rays(inputs=inputs, parameters=parameters, camera_indices=[self.camera_index]),
            cornea_radius=parameters.R,
            distance_estimate=parameters.distance_to_camera_estimate,
        )
        pupil_center = _refracted_pupil_center(
            inputs=inputs,
            parameters=parameters,
            camera_index=self.camera_index,
            cornea_center=cornea_center,
        )
        return _build_result(
            parameters=parameters,
            cornea_center=cornea_center,
            optical_axis=normalize(pupil_center - cornea_center),
        )


class TwoCameraSphericalModel:
    """
    Two cameras, two or more lights, no explicit refraction.

    Refraction at the cornea keeps each pupil ray in the plane spanned by the
    camera node, the cornea center and the pupil image, and that plane
    contains the optical axis. The axis is the intersection of both planes.
    """

    def estimate(
        self,
        inputs: PupilCenterGlintInputs,
        parameters: EyeAndCameraParameters
    ) -> GazeEstimationResult:
        cornea_center = cornea_center_from_glints(
            glint_rays=_glint_rays(inputs=inputs, parameters=parameters, camera_indices=[0, 1]),
            cornea_radius=parameters.R,
            distance_estimate=parameters.distance_to_camera_estimate,
        )

        plane_normals = []
        for camera_index in (0, 1):
            camera = parameters.cameras[camera_index]
            pupil_ray = camera.pixel_ray(inputs.observations[camera_index].pupil_center_px)
            plane_normals.append(np.cross(cornea_center - camera.position, pupil_ray))

        optical_axis = normalize(np.cross(plane_normals[0], plane_normals[1]))

        # the eye looks towards the rig
        camera_centroid = np.mean([camera.position for camera in parameters.cameras[:2]], axis=0)
        if np.dot(optical_axis, camera_centroid - cornea_center) < 0:
            optical_axis = -optical_axis

        return _build_result(
            parameters=parameters,
            cornea_center=cornea_center,
            optical_axis=optical_axis,
        )


class TwoCameraRefractionModel:
    """
    Two cameras, two or more lights, explicit refraction per camera.

    Each camera yields its own refracted pupil center; their mean defines the
    optical axis together with the shared cornea center.
    """

    def estimate(
        self,
        inputs: PupilCenterGlintInputs,
        parameters: EyeAndCameraParameters
    ) -> GazeEstimationResult:
        cornea_center = cornea_center_from_glints(
            glint_rays=_glint_rays(inputs=inputs, parameters=parameters, camera_indices=[0, 1]),
            cornea_radius=parameters.R,
            distance_estimate=parameters.distance_to_camera_estimate,
        )
        pupil_centers = [
            _refracted_pupil_center(
                inputs=inputs,
                parameters=parameters,
                camera_index=camera_index,
                cornea_center=cornea_center,
            )
            for camera_index in (0, 1)
        ]
        return _build_result(
            parameters=parameters,
            cornea_center=cornea_center,
            optical_axis=normalize(np.mean(pupil_centers, axis=0) - cornea_center),
        )


FORWARD_MODELS: dict[str, type] = {
    "one_camera": OneCameraSphericalModel,
    "two_camera": TwoCameraSphericalModel,
    "two_camera_refraction": TwoCameraRefractionModel,
}


def create_forward_model(name: str) -> ForwardModel:
    try:
        model_class = FORWARD_MODELS[name]
    except KeyError:
        raise ValueError(f"Unknown forward model '{name}', expected one of {sorted(FORWARD_MODELS)}") from None
    logger.info(f"Using forward model: {model_class.__name__}")
    return model_class()
