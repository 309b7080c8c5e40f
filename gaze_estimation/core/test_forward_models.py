"""
Tests for cornea geometry, the synthetic renderer and the forward models.

Rendering a known eye state and estimating it back must recover the cornea
center and the visual axis for every model.
"""
import numpy as np
import pytest

from gaze_estimation.core.cornea_geometry import (
    angles_to_axis,
    axis_to_angles,
    normalize,
    optical_to_visual_axis,
    ray_sphere_intersection,
    refract,
    visual_to_optical_axis,
)
from gaze_estimation.core.eye_parameters import CameraObservation, PupilCenterGlintInputs
from gaze_estimation.core.forward_models import (
    OneCameraSphericalModel,
    TwoCameraRefractionModel,
    TwoCameraSphericalModel,
    create_forward_model,
)
from gaze_estimation.core.synthesis import render_measurement, screen_target_grid
from gaze_estimation.examples.synthetic_demo import DEMO_CORNEA_CENTER, create_demo_parameters


# =============================================================================
# GEOMETRY PRIMITIVES
# =============================================================================


def test_axis_angle_conventions() -> None:
    print("\n=== Test: Axis angles ===")
    assert np.allclose(angles_to_axis(0.0, 0.0), [0.0, 0.0, -1.0])
    theta, phi = axis_to_angles(normalize(np.array([0.3, -0.2, -1.0])))
    assert np.allclose(angles_to_axis(theta, phi), normalize(np.array([0.3, -0.2, -1.0])))

    optical = normalize(np.array([0.1, 0.2, -1.0]))
    visual = optical_to_visual_axis(optical_axis=optical, alpha=0.05, beta=-0.02)
    assert np.allclose(visual_to_optical_axis(visual_axis=visual, alpha=0.05, beta=-0.02), optical)
    print("  ✓ Neutral axis points along -Z and offsets invert")


def test_ray_sphere_intersection() -> None:
    hit = ray_sphere_intersection(
        origin=np.zeros(3),
        direction=np.array([0.0, 0.0, 1.0]),
        center=np.array([0.0, 0.0, 10.0]),
        radius=1.0,
    )
    assert np.allclose(hit, [0.0, 0.0, 9.0])

    # A miss clamps to the closest approach
    miss = ray_sphere_intersection(
        origin=np.zeros(3),
        direction=np.array([0.0, 0.0, 1.0]),
        center=np.array([5.0, 0.0, 10.0]),
        radius=1.0,
    )
    assert np.allclose(miss, [0.0, 0.0, 10.0])


def test_refract_obeys_snell() -> None:
    incident = normalize(np.array([1.0, 0.0, -1.0]))
    normal = np.array([0.0, 0.0, 1.0])
    transmitted = refract(direction=incident, normal=normal, eta=1.0 / 1.3375)

    sin_i = np.linalg.norm(np.cross(incident, normal))
    sin_t = np.linalg.norm(np.cross(transmitted, normal))
    assert sin_i == pytest.approx(1.3375 * sin_t)
    assert transmitted[2] < 0


# =============================================================================
# RENDER -> ESTIMATE
# =============================================================================


def assert_recovers_eye_state(*, model, n_cameras: int) -> None:
    parameters = create_demo_parameters(n_cameras=n_cameras)
    gaze_targets = [
        np.array([-20.0, 30.0, -10.0]),
        np.array([0.0, 21.3, -10.0]),
        np.array([15.0, 10.0, -10.0]),
    ]
    for offset, gaze_target in zip([np.zeros(3), np.array([0.4, -0.3, 0.5]), np.array([-0.5, 0.2, -0.6])], gaze_targets):
        cornea_center = DEMO_CORNEA_CENTER + offset
        inputs = render_measurement(parameters=parameters, cornea_center=cornea_center, gaze_target=gaze_target)
        assert inputs.n_cameras == n_cameras
        assert inputs.observations[0].n_glints == 2

        result = model.estimate(inputs, parameters)

        expected_axis = normalize(gaze_target - cornea_center)
        assert np.allclose(result.cornea_center, cornea_center, atol=1e-6), (
            f"Cornea center {result.cornea_center} != {cornea_center}"
        )
        assert np.allclose(result.visual_axis, expected_axis, atol=1e-6), (
            f"Visual axis {result.visual_axis} != {expected_axis}"
        )
        assert np.allclose(result.pupil_center, cornea_center + parameters.K * result.optical_axis)
        assert np.allclose(result.eye_rotation_center, cornea_center - parameters.D * result.optical_axis)


def test_one_camera_model_recovers_eye_state() -> None:
    print("\n=== Test: One camera render -> estimate ===")
    assert_recovers_eye_state(model=OneCameraSphericalModel(), n_cameras=1)
    print("  ✓ Cornea center and visual axis recovered")


def test_two_camera_model_recovers_eye_state() -> None:
    print("\n=== Test: Two camera (plane intersection) render -> estimate ===")
    assert_recovers_eye_state(model=TwoCameraSphericalModel(), n_cameras=2)
    print("  ✓ Cornea center and visual axis recovered")


def test_two_camera_refraction_model_recovers_eye_state() -> None:
    print("\n=== Test: Two camera (refraction) render -> estimate ===")
    assert_recovers_eye_state(model=TwoCameraRefractionModel(), n_cameras=2)
    print("  ✓ Cornea center and visual axis recovered")


def test_glint_count_must_match_lights() -> None:
    parameters = create_demo_parameters(n_cameras=1)
    inputs = PupilCenterGlintInputs(observations=[
        CameraObservation(pupil_center_px=np.array([300.0, 400.0]), glints_px=np.array([[290.0, 400.0]])),
    ])
    with pytest.raises(ValueError):
        OneCameraSphericalModel().estimate(inputs, parameters)


def test_create_forward_model_registry() -> None:
    assert isinstance(create_forward_model("one_camera"), OneCameraSphericalModel)
    assert isinstance(create_forward_model("two_camera"), TwoCameraSphericalModel)
    assert isinstance(create_forward_model("two_camera_refraction"), TwoCameraRefractionModel)
    with pytest.raises(ValueError):
        create_forward_model("three_camera")


def test_screen_target_grid() -> None:
    grid = screen_target_grid(resolution_x=1000, resolution_y=500, n_columns=3, n_rows=2, margin_fraction=0.1)
    assert grid.shape == (6, 2)
    assert np.allclose(grid[0], [100.0, 50.0])
    assert np.allclose(grid[-1], [900.0, 450.0])
