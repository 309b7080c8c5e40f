"""Held-out evaluation: gaze error in screen pixels and physical units, plus timing."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np

from gaze_estimation.core.eye_parameters import gaze_estimation_result_to_string
from gaze_estimation.core.forward_models import ForwardModel
from gaze_estimation.core.projection import (
    DegenerateRayError,
    DisplaySurface,
    PointOfInterestProcessor,
    estimate_screen_point,
    screen_point_to_world,
)

logger = logging.getLogger(__name__)


@dataclass
class EvaluationReport:
    """Per-sample errors and aggregate statistics for one test pass."""

    errors_physical: np.ndarray  # (n_evaluated,) distance on the display plane
    errors_pixels: np.ndarray | None  # (n_evaluated,) None when targets are physical
    estimates: np.ndarray  # (n_evaluated, 2) screen pixels, or physical xy
    sample_indices: np.ndarray  # (n_evaluated,) index of each evaluated test sample
    skipped_indices: list[int] = field(default_factory=list)
    time_seconds: float = 0.0

    @property
    def num_evaluated(self) -> int:
        return len(self.errors_physical)

    @property
    def num_skipped(self) -> int:
        return len(self.skipped_indices)

    @property
    def mean_error_physical(self) -> float:
        return float(np.mean(self.errors_physical)) if self.num_evaluated else float("nan")

    @property
    def mean_error_pixels(self) -> float | None:
        if self.errors_pixels is None:
            return None
        return float(np.mean(self.errors_pixels)) if self.num_evaluated else float("nan")

    @property
    def time_per_estimate_us(self) -> float:
        n_samples = self.num_evaluated + self.num_skipped
        return self.time_seconds / n_samples * 1e6 if n_samples else float("nan")

    @property
    def fps_upper_limit(self) -> float:
        return 1e6 / self.time_per_estimate_us if self.time_per_estimate_us > 0 else float("inf")

    def to_dict(self) -> dict[str, float | int | None]:
        return {
            "num_evaluated": self.num_evaluated,
            "num_skipped": self.num_skipped,
            "mean_error_pixels": self.mean_error_pixels,
            "mean_error_physical": self.mean_error_physical,
            "std_error_physical": float(np.std(self.errors_physical)) if self.num_evaluated else float("nan"),
            "time_ms": self.time_seconds * 1e3,
            "time_per_estimate_us": self.time_per_estimate_us,
            "fps_upper_limit": self.fps_upper_limit,
        }


def evaluate_test_samples(
    *,
    forward_model: ForwardModel,
    parameters: Any,
    processor: PointOfInterestProcessor,
    test_pairs: Sequence[tuple[Any, np.ndarray]],
    display: DisplaySurface | None = None
) -> EvaluationReport:
    """
    Run the calibrated model over test samples and measure gaze error.

    With a display, targets are screen pixels and both pixel and physical
    errors are reported. Without one, targets are physical (x, y) on the
    display plane in wcs and only physical errors are reported.

    Samples whose gaze ray never meets the display plane are skipped and
    excluded from every statistic.
    """
    errors_physical: list[float] = []
    errors_pixels: list[float] = []
    estimates: list[np.ndarray] = []
    sample_indices: list[int] = []
    skipped: list[int] = []

    start_time = time.perf_counter()
    for index, (inputs, true_point) in enumerate(test_pairs):
        result = forward_model.estimate(inputs, parameters)
        try:
            poi_wcs = processor(result)
        except DegenerateRayError as error:
            logger.debug(f"Skipping test sample {index}: {error}\n{gaze_estimation_result_to_string(result)}")
            skipped.append(index)
            continue

        true_point = np.asarray(true_point, dtype=np.float64)
        if display is not None:
            pos_on_screen = estimate_screen_point(poi_wcs, display.pixel_size_x, display.pixel_size_y)
            true_world = screen_point_to_world(true_point, display.pixel_size_x, display.pixel_size_y)
            errors_pixels.append(float(np.linalg.norm(pos_on_screen - true_point)))
            errors_physical.append(float(np.linalg.norm(true_world[:2] - poi_wcs[:2])))
            estimates.append(pos_on_screen)
        else:
            errors_physical.append(float(np.linalg.norm(poi_wcs[:2] - true_point[:2])))
            estimates.append(poi_wcs[:2])
        sample_indices.append(index)
    elapsed = time.perf_counter() - start_time

    if skipped:
        logger.warning(f"Skipped {len(skipped)} of {len(test_pairs)} test samples (gaze parallel to display)")

    return EvaluationReport(
        errors_physical=np.array(errors_physical),
        errors_pixels=np.array(errors_pixels) if display is not None else None,
        estimates=np.array(estimates).reshape(-1, 2),
        sample_indices=np.array(sample_indices, dtype=int),
        skipped_indices=skipped,
        time_seconds=elapsed,
    )


def log_evaluation_report(*, report: EvaluationReport) -> None:
    logger.info("=" * 80)
    logger.info("EVALUATION")
    logger.info("=" * 80)
    logger.info(f"Samples evaluated: {report.num_evaluated} (skipped: {report.num_skipped})")
    if report.mean_error_pixels is not None:
        logger.info(f"avg error pixels:  {report.mean_error_pixels:.3f}")
    logger.info(f"avg error physical: {report.mean_error_physical:.4f}")
    logger.info(f"time in ms:        {report.time_seconds * 1e3:.1f}")
    logger.info(
        f"time per estimate: {report.time_per_estimate_us:.1f} us (f: {report.fps_upper_limit:.0f})"
    )
