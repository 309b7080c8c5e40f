"""
Tests for the gaze ray to display plane projection.

Run with: pytest gaze_estimation/core/test_projection.py
"""
import numpy as np
import pytest

from gaze_estimation.core.eye_parameters import GazeEstimationResult
from gaze_estimation.core.projection import (
    DegenerateRayError,
    DisplaySurface,
    PointOfInterestProcessor,
    calculate_point_of_interest,
    estimate_screen_point,
    screen_point_to_world,
)


def create_result(*, cornea_center: list[float], visual_axis: list[float]) -> GazeEstimationResult:
    center = np.array(cornea_center, dtype=np.float64)
    axis = np.array(visual_axis, dtype=np.float64)
    return GazeEstimationResult(
        cornea_center=center,
        visual_axis=axis,
        optical_axis=axis,
        pupil_center=center + 0.42 * axis,
        eye_rotation_center=center - 0.53 * axis,
    )


def test_point_of_interest_straight_ahead() -> None:
    print("\n=== Test: POI straight ahead ===")
    poi = calculate_point_of_interest(np.array([0.0, 0.0, 5.0]), np.array([0.0, 0.0, -1.0]), 0.0)
    assert np.allclose(poi, [0.0, 0.0, 0.0]), f"Expected origin, got {poi}"
    print(f"  ✓ POI = {poi}")


def test_point_of_interest_oblique_ray() -> None:
    print("\n=== Test: POI oblique ray ===")
    axis = np.array([1.0, 1.0, -2.0]) / np.sqrt(6.0)
    poi = calculate_point_of_interest(np.array([1.0, 2.0, 4.0]), axis, -2.0)
    # 6 units down in z means 3 units along x and y
    assert np.allclose(poi, [4.0, 5.0, -2.0]), f"Got {poi}"
    print(f"  ✓ POI = {poi}")


def test_point_of_interest_parallel_ray_raises() -> None:
    print("\n=== Test: Parallel ray ===")
    with pytest.raises(DegenerateRayError):
        calculate_point_of_interest(np.array([0.0, 0.0, 5.0]), np.array([1.0, 0.0, 0.0]), 0.0)
    print("  ✓ DegenerateRayError raised for V.z = 0")


def test_point_of_interest_nearly_parallel_ray_raises() -> None:
    print("\n=== Test: Nearly parallel ray ===")
    grazing = np.array([1.0, 0.0, -1e-11])
    with pytest.raises(DegenerateRayError):
        calculate_point_of_interest(np.array([0.0, 0.0, 5.0]), grazing, 0.0)

    # Scaling the direction does not change the verdict
    with pytest.raises(DegenerateRayError):
        calculate_point_of_interest(np.array([0.0, 0.0, 5.0]), 1e6 * grazing, 0.0)
    print("  ✓ DegenerateRayError raised for |V.z| = 1e-11")


def test_processor_parallel_tolerance() -> None:
    # about 5.7 degrees below the plane
    result = create_result(cornea_center=[0.0, 0.0, 5.0], visual_axis=[0.995, 0.0, -0.1])

    assert np.allclose(PointOfInterestProcessor(z_shift=0.0)(result), [49.75, 0.0, 0.0])
    with pytest.raises(DegenerateRayError):
        PointOfInterestProcessor(z_shift=0.0, parallel_tolerance=0.2)(result)


def test_point_of_interest_non_finite_raises() -> None:
    with pytest.raises(DegenerateRayError):
        calculate_point_of_interest(np.array([np.nan, 0.0, 5.0]), np.array([0.0, 0.0, -1.0]), 0.0)


def test_degenerate_ray_error_is_value_error() -> None:
    assert issubclass(DegenerateRayError, ValueError)


def test_estimate_screen_point_flips_y() -> None:
    print("\n=== Test: World to screen ===")
    screen = estimate_screen_point(np.array([2.4, -1.2, 0.0]), 0.001, 0.002)
    assert np.allclose(screen, [2400.0, 600.0]), f"Expected (2400, 600), got {screen}"
    print(f"  ✓ (2.4, -1.2) -> {screen}")


def test_screen_point_to_world_inverts_screen_point() -> None:
    world = screen_point_to_world(np.array([2400.0, 600.0]), 0.001, 0.002)
    assert np.allclose(world, [2.4, -1.2, 0.0])
    assert np.allclose(estimate_screen_point(world, 0.001, 0.002), [2400.0, 600.0])


def test_display_surface_pixel_pitch() -> None:
    print("\n=== Test: Display pixel pitch ===")
    display = DisplaySurface(size_x=48.0, size_y=27.0, resolution_x=1920, resolution_y=1080)
    assert display.pixel_size_x == pytest.approx(0.025)
    assert display.pixel_size_y == pytest.approx(0.025)
    assert "pixel_size_x" in display.model_dump()
    print(f"  ✓ Pitch: {display.pixel_size_x} x {display.pixel_size_y}")


def test_processor_subtracts_wcs_offset() -> None:
    print("\n=== Test: Processor ===")
    processor = PointOfInterestProcessor(z_shift=-10.0, wcs_offset=np.array([-20.0, 30.0, -10.0]))
    result = create_result(cornea_center=[0.0, 20.0, 50.0], visual_axis=[0.0, 0.0, -1.0])

    poi_gecs = processor.point_of_interest_gecs(result)
    poi_wcs = processor(result)

    assert np.allclose(poi_gecs, [0.0, 20.0, -10.0])
    assert np.allclose(poi_wcs, [20.0, -10.0, 0.0])
    print(f"  ✓ gecs {poi_gecs} -> wcs {poi_wcs}")


def test_processor_propagates_degenerate_ray() -> None:
    processor = PointOfInterestProcessor(z_shift=0.0)
    result = create_result(cornea_center=[0.0, 0.0, 5.0], visual_axis=[0.0, 1.0, 0.0])
    with pytest.raises(DegenerateRayError):
        processor(result)
