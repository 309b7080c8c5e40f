"""
Tests for ParameterLayout: slot order, bounds, and the applicator.

Run with: pytest gaze_estimation/core/test_parameter_layout.py
"""
import numpy as np
import pytest

from gaze_estimation.core.camera_model import PinholeCameraModel
from gaze_estimation.core.eye_parameters import EyeAndCameraParameters, deg_to_rad
from gaze_estimation.core.parameter_layout import (
    LAYOUTS,
    ParameterLayout,
    ParameterSlot,
    alpha_slot,
    angular_offset_layout,
    flatten,
    six_variable_layout,
    unflatten,
)


# =============================================================================
# TEST FIXTURES
# =============================================================================


def create_test_parameters() -> EyeAndCameraParameters:
    camera = PinholeCameraModel(
        principal_point_x=299.5,
        principal_point_y=399.5,
        pixel_size_x=2.4e-4,
        pixel_size_y=2.4e-4,
        focal_length=1.19144,
    )
    camera.set_camera_angles(0.01, -0.02, -0.3)
    return EyeAndCameraParameters(
        alpha=deg_to_rad(-5.0),
        beta=deg_to_rad(1.5),
        R=0.78,
        K=0.42,
        cameras=[camera],
        light_positions=[np.array([-13.0, 0.0, 0.0]), np.array([13.0, 0.0, 0.0])],
    )


# =============================================================================
# FLAT VECTOR TESTS
# =============================================================================


def test_flatten_unflatten() -> None:
    print("\n=== Test: flatten / unflatten ===")
    values = [np.array([1.0]), np.array([2.0, 3.0]), np.array([4.0])]
    flat = flatten(values)
    assert np.allclose(flat, [1.0, 2.0, 3.0, 4.0])

    restored = unflatten(flat, [1, 2, 1])
    assert len(restored) == 3
    for original, back in zip(values, restored):
        assert np.allclose(original, back)
    print(f"  ✓ {values} <-> {flat}")


def test_unflatten_length_mismatch_raises() -> None:
    with pytest.raises(ValueError):
        unflatten(np.zeros(3), [1, 1])


def test_no_slots_unflatten_to_no_values() -> None:
    assert unflatten(np.zeros(0), []) == []
    assert len(flatten([])) == 0


# =============================================================================
# LAYOUT TESTS
# =============================================================================


def test_six_variable_layout_order() -> None:
    layout = six_variable_layout()
    assert layout.names == ["alpha", "beta", "R", "K", "camera0_angle_y", "camera0_angle_z"]
    assert layout.slot_sizes == [1, 1, 1, 1, 1, 1]
    assert len(layout.bounds()) == 6
    assert set(LAYOUTS) == {"angular_offsets", "eye_geometry", "six_variable"}


def test_read_apply_round_trip() -> None:
    print("\n=== Test: read(apply(base, v)) == v ===")
    base = create_test_parameters()
    layout = six_variable_layout()

    values = [np.array([v]) for v in (0.05, -0.02, 0.8, 0.45, 0.03, -0.01)]
    updated = layout.apply(base, values)

    for expected, actual in zip(values, layout.read(updated)):
        assert np.allclose(expected, actual)
    assert updated.cameras[0].camera_angle_y() == pytest.approx(0.03)
    assert updated.cameras[0].camera_angle_z() == pytest.approx(-0.01)
    # angle_x is not a slot and must be carried over
    assert updated.cameras[0].angle_x == pytest.approx(-0.3)
    print("  ✓ All six slots round-trip")


def test_apply_does_not_mutate_base() -> None:
    print("\n=== Test: Applicator leaves base untouched ===")
    base = create_test_parameters()
    before = six_variable_layout().read(base)

    six_variable_layout().apply(base, [np.array([0.0])] * 2 + [np.array([1.0]), np.array([0.5])] + [np.array([0.0])] * 2)

    after = six_variable_layout().read(base)
    for a, b in zip(before, after):
        assert np.allclose(a, b)
    print("  ✓ Base parameters unchanged")


def test_apply_wrong_slot_count_raises() -> None:
    layout = angular_offset_layout()
    with pytest.raises(ValueError):
        layout.apply(create_test_parameters(), [np.array([0.0])])
    with pytest.raises(ValueError):
        layout.apply(create_test_parameters(), [np.array([0.0, 1.0]), np.array([0.0])])


def test_initial_values_inside_bounds() -> None:
    base = create_test_parameters()
    layout = six_variable_layout()
    for values, slot_bounds in zip(layout.initial_values(base), layout.bounds()):
        for value, (low, high) in zip(values, slot_bounds):
            assert low <= value <= high


def test_duplicate_slot_names_rejected() -> None:
    with pytest.raises(ValueError):
        ParameterLayout(slots=(alpha_slot(), alpha_slot()))


def test_slot_with_inverted_bounds_rejected() -> None:
    with pytest.raises(ValueError):
        ParameterSlot.scalar(
            name="bad",
            getter=lambda params: params.alpha,
            setter=lambda params, value: None,
            low=1.0,
            high=0.0,
        )


def test_layout_concatenation() -> None:
    combined = angular_offset_layout() + ParameterLayout(slots=())
    assert combined.names == ["alpha", "beta"]
    assert combined.describe([np.array([0.1]), np.array([0.2])]) == {"alpha": 0.1, "beta": 0.2}
