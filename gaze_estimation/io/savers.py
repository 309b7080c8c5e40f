"""Write measurement CSVs in the format read by loaders.load_measurements_csv."""

import logging
from pathlib import Path
from typing import Sequence

import numpy as np
import pandas as pd

from gaze_estimation.core.eye_parameters import PupilCenterGlintInputs

logger = logging.getLogger(__name__)


def measurements_to_dataframe(*, pairs: Sequence[tuple[PupilCenterGlintInputs, np.ndarray]]) -> pd.DataFrame:
    rows = []
    for inputs, target in pairs:
        row = {"target_x": float(target[0]), "target_y": float(target[1])}
        for camera_index, observation in enumerate(inputs.observations):
            prefix = f"cam{camera_index}"
            row[f"{prefix}_pupil_x"] = float(observation.pupil_center_px[0])
            row[f"{prefix}_pupil_y"] = float(observation.pupil_center_px[1])
            for glint_index, glint in enumerate(observation.glints_px):
                row[f"{prefix}_glint{glint_index}_x"] = float(glint[0])
                row[f"{prefix}_glint{glint_index}_y"] = float(glint[1])
        rows.append(row)
    return pd.DataFrame(rows)


def save_measurements_csv(
    *,
    filepath: Path,
    pairs: Sequence[tuple[PupilCenterGlintInputs, np.ndarray]]
) -> None:
    filepath.parent.mkdir(parents=True, exist_ok=True)
    measurements_to_dataframe(pairs=pairs).to_csv(filepath, index=False, float_format="%.10f")
    logger.info(f"Saved {len(pairs)} samples to: {filepath}")
