"""Tests for measurement CSV and scene TOML I/O."""
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
from pydantic import ValidationError

from gaze_estimation.api import create_session_config
from gaze_estimation.core.eye_parameters import rad_to_deg
from gaze_estimation.core.forward_models import TwoCameraRefractionModel
from gaze_estimation.core.synthesis import generate_measurement_pairs, screen_target_grid
from gaze_estimation.examples.synthetic_demo import (
    DEMO_CORNEA_CENTER,
    DEMO_DISPLAY,
    DEMO_WCS_OFFSET,
    DEMO_Z_SHIFT,
    create_demo_parameters,
)
from gaze_estimation.io.loaders import load_measurements_csv, load_scene
from gaze_estimation.io.savers import save_measurements_csv

SCENES_DIR = Path(__file__).resolve().parents[2] / "scenes"

MINIMAL_SCENE = """
z_shift = -10.0

[[cameras]]
principal_point = [299.5, 399.5]
pixel_size = [2.4e-4, 2.4e-4]
focal_length = 1.19144
angle_x_deg = -21.17

[[lights]]
position = [-13.0, 0.0, 0.0]

[[lights]]
position = [13.0, 0.0, 0.0]
"""


def test_measurement_csv_round_trip(tmp_path: Path) -> None:
    print("\n=== Test: Measurement CSV round trip ===")
    pairs = generate_measurement_pairs(
        parameters=create_demo_parameters(n_cameras=2),
        targets=screen_target_grid(resolution_x=1680, resolution_y=1050, n_columns=2, n_rows=2),
        cornea_center=DEMO_CORNEA_CENTER,
        z_shift=DEMO_Z_SHIFT,
        wcs_offset=DEMO_WCS_OFFSET,
        display=DEMO_DISPLAY,
        head_jitter=0.3,
        noise_std_px=0.1,
        rng=np.random.default_rng(seed=3),
    )
    filepath = tmp_path / "measurements.csv"
    save_measurements_csv(filepath=filepath, pairs=pairs)

    loaded = load_measurements_csv(filepath=filepath)
    assert len(loaded) == len(pairs)
    for (inputs, target), (loaded_inputs, loaded_target) in zip(pairs, loaded):
        assert np.allclose(target, loaded_target)
        assert loaded_inputs.n_cameras == 2
        for observation, loaded_observation in zip(inputs.observations, loaded_inputs.observations):
            assert np.allclose(observation.pupil_center_px, loaded_observation.pupil_center_px, atol=1e-8)
            assert np.allclose(observation.glints_px, loaded_observation.glints_px, atol=1e-8)
    print(f"  ✓ {len(loaded)} samples survive save -> load")


def test_measurement_csv_columns(tmp_path: Path) -> None:
    pairs = generate_measurement_pairs(
        parameters=create_demo_parameters(n_cameras=1),
        targets=np.array([[840.0, 525.0]]),
        cornea_center=DEMO_CORNEA_CENTER,
        z_shift=DEMO_Z_SHIFT,
        wcs_offset=DEMO_WCS_OFFSET,
        display=DEMO_DISPLAY,
    )
    filepath = tmp_path / "one.csv"
    save_measurements_csv(filepath=filepath, pairs=pairs)
    assert list(pd.read_csv(filepath).columns) == [
        "target_x", "target_y",
        "cam0_pupil_x", "cam0_pupil_y",
        "cam0_glint0_x", "cam0_glint0_y",
        "cam0_glint1_x", "cam0_glint1_y",
    ]


def test_missing_target_column_raises(tmp_path: Path) -> None:
    filepath = tmp_path / "bad.csv"
    pd.DataFrame({"target_x": [1.0], "cam0_pupil_x": [1.0], "cam0_pupil_y": [1.0]}).to_csv(filepath, index=False)
    with pytest.raises(ValueError):
        load_measurements_csv(filepath=filepath)


def test_no_camera_columns_raises(tmp_path: Path) -> None:
    filepath = tmp_path / "bad.csv"
    pd.DataFrame({"target_x": [1.0], "target_y": [1.0]}).to_csv(filepath, index=False)
    with pytest.raises(ValueError):
        load_measurements_csv(filepath=filepath)


def test_minimal_scene_defaults(tmp_path: Path) -> None:
    print("\n=== Test: Minimal scene ===")
    filepath = tmp_path / "scene.toml"
    filepath.write_text(MINIMAL_SCENE)

    scene = load_scene(filepath=filepath)
    assert scene.forward_model == "one_camera"
    assert scene.display is None
    assert scene.calibration.max_function_evaluations == 200

    parameters = scene.to_parameters()
    assert rad_to_deg(parameters.alpha) == pytest.approx(-5.0)
    assert parameters.cameras[0].angle_x == pytest.approx(np.deg2rad(-21.17))
    assert len(parameters.light_positions) == 2
    print("  ✓ Defaults filled in")


def test_scene_with_one_light_rejected(tmp_path: Path) -> None:
    filepath = tmp_path / "scene.toml"
    filepath.write_text(MINIMAL_SCENE.split("[[lights]]")[0] + "[[lights]]\nposition = [0.0, 0.0, 0.0]\n")
    with pytest.raises(ValidationError):
        load_scene(filepath=filepath)


def test_bundled_scenes_load() -> None:
    print("\n=== Test: Bundled scenes ===")
    one_camera = create_session_config(scene=load_scene(filepath=SCENES_DIR / "one_camera.toml"))
    assert one_camera.layout.names[-2:] == ["camera0_angle_y", "camera0_angle_z"]
    assert one_camera.display is not None
    assert one_camera.display.pixel_size_x == pytest.approx(48.7 / 1680)

    two_camera_scene = load_scene(filepath=SCENES_DIR / "two_camera.toml")
    two_camera = create_session_config(scene=two_camera_scene)
    assert isinstance(two_camera.forward_model, TwoCameraRefractionModel)
    assert len(two_camera.parameters.cameras) == 2
    assert two_camera_scene.subject is not None
    assert two_camera_scene.subject.eye.R == pytest.approx(0.78)
    print("  ✓ one_camera.toml and two_camera.toml resolve to session configs")


def test_unknown_layout_rejected(tmp_path: Path) -> None:
    filepath = tmp_path / "scene.toml"
    filepath.write_text('layout = "everything"\n' + MINIMAL_SCENE)
    with pytest.raises(ValueError):
        create_session_config(scene=load_scene(filepath=filepath))
