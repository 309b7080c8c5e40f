"""Generic bounded least-squares calibration of an arbitrary parameter subset."""

import copy
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Literal, Sequence

import numpy as np
from pydantic import BaseModel, Field
from scipy.optimize import least_squares

from gaze_estimation.core.forward_models import ForwardModel
from gaze_estimation.core.parameter_layout import (
    FlatParameterVector,
    ParameterLayout,
    SlotBounds,
    flatten,
    unflatten,
)
from gaze_estimation.core.projection import DegenerateRayError

logger = logging.getLogger(__name__)

Applicator = Callable[[Any, FlatParameterVector], Any]
Processor = Callable[[Any], np.ndarray]


class CalibrationError(Exception):
    """Calibration call cannot start."""


class ShapeMismatchError(CalibrationError, ValueError):
    """Initial values and bounds disagree on slot count or slot size."""


class EmptyTrainingSetError(CalibrationError, ValueError):
    """No (input, target) pairs to calibrate against."""


class InvalidBoundsError(CalibrationError, ValueError):
    """A bound has low > high, or an initial value lies outside its bound."""


class CalibrationConfig(BaseModel):
    """Optimizer settings for one calibration call."""

    max_function_evaluations: int = Field(default=200, gt=0)
    """Iteration cap; reaching it is reported as non-convergence"""

    function_tolerance: float = Field(default=1e-10, gt=0)
    gradient_tolerance: float = Field(default=1e-10, gt=0)
    parameter_tolerance: float = Field(default=1e-10, gt=0)

    method: Literal["trf", "dogbox"] = "trf"
    """Bounded least-squares algorithm"""

    loss: Literal["linear", "soft_l1", "huber", "cauchy", "arctan"] = "linear"
    loss_scale: float = Field(default=1.0, gt=0)

    finite_difference_step: float | None = Field(default=1e-6, gt=0)
    """Relative step for the numerical Jacobian (None lets scipy choose)"""

    x_scale: Literal["jac"] | float = "jac"
    """Characteristic scale of each free component; "jac" rescales from Jacobian column norms"""

    max_restarts: int = Field(default=5, ge=0)
    """Fresh trust-region restarts after an ftol/xtol stop while the cost keeps falling"""

    degenerate_residual: float = Field(default=1e3, gt=0)
    """Residual per component for samples whose gaze ray misses the target plane"""


@dataclass
class CalibrationResult:
    """Results from calibration."""
    values: FlatParameterVector
    converged: bool
    status_message: str
    initial_cost: float  # sum of squared residual norms
    final_cost: float
    num_function_evaluations: int
    num_degenerate_samples: int  # at the final vector
    time_seconds: float

    @property
    def flat(self) -> np.ndarray:
        return flatten(self.values)


def _validate_inputs(
    *,
    training_pairs: Sequence[tuple[Any, np.ndarray]],
    initial_values: Sequence[Sequence[float] | np.ndarray],
    bounds: Sequence[SlotBounds]
) -> tuple[list[int], np.ndarray, np.ndarray, np.ndarray]:
    if len(training_pairs) == 0:
        raise EmptyTrainingSetError("Training set is empty")

    if len(initial_values) == 0 and len(bounds) == 0:
        raise ShapeMismatchError("No parameter slots to calibrate")

    if len(initial_values) != len(bounds):
        raise ShapeMismatchError(
            f"{len(initial_values)} initial value slots but {len(bounds)} bound slots"
        )

    slot_sizes = []
    for slot_index, (slot_values, slot_bounds) in enumerate(zip(initial_values, bounds)):
        n_values = len(np.atleast_1d(slot_values))
        if n_values != len(slot_bounds):
            raise ShapeMismatchError(
                f"Slot {slot_index}: {n_values} initial values but {len(slot_bounds)} bounds"
            )
        if n_values == 0:
            raise ShapeMismatchError(f"Slot {slot_index} is empty")
        slot_sizes.append(n_values)

    x0 = flatten([np.atleast_1d(np.asarray(v, dtype=np.float64)) for v in initial_values])
    lower = np.array([low for slot_bounds in bounds for low, _ in slot_bounds], dtype=np.float64)
    upper = np.array([high for slot_bounds in bounds for _, high in slot_bounds], dtype=np.float64)

    if np.any(lower > upper):
        index = int(np.argmax(lower > upper))
        raise InvalidBoundsError(f"Component {index}: lower bound {lower[index]} > upper bound {upper[index]}")

    outside = (x0 < lower) | (x0 > upper)
    if np.any(outside):
        index = int(np.argmax(outside))
        raise InvalidBoundsError(
            f"Component {index}: initial value {x0[index]} outside [{lower[index]}, {upper[index]}]"
        )

    return slot_sizes, x0, lower, upper


def calibrate(
    *,
    forward_model: ForwardModel,
    base_parameters: Any,
    applicator: Applicator,
    processor: Processor,
    training_pairs: Sequence[tuple[Any, np.ndarray]],
    initial_values: Sequence[Sequence[float] | np.ndarray],
    bounds: Sequence[SlotBounds],
    config: CalibrationConfig | None = None
) -> CalibrationResult:
    """
    Fit the slots written by `applicator` so processed model outputs match the targets.

    Every objective evaluation applies the candidate vector to a fresh deep
    copy of `base_parameters`, runs the forward model on every training
    input, maps each result through `processor`, and stacks
    (output - target) into one residual vector.

    Args:
        forward_model: Object with estimate(inputs, parameters)
        base_parameters: Parameter set the calibrated slots are written into
        applicator: (parameters, values) -> parameters with the slots overwritten
        processor: Forward model result -> value in target space
        training_pairs: (inputs, target) pairs
        initial_values: One array per slot
        bounds: One list of (low, high) per slot, parallel to initial_values
        config: Optimizer settings (defaults if None)

    Returns:
        CalibrationResult with the optimized slot values, always inside bounds

    Raises:
        EmptyTrainingSetError, ShapeMismatchError, InvalidBoundsError
    """
    config = config or CalibrationConfig()
    slot_sizes, x0, lower, upper = _validate_inputs(
        training_pairs=training_pairs,
        initial_values=initial_values,
        bounds=bounds,
    )
    targets = [np.asarray(target, dtype=np.float64) for _, target in training_pairs]

    logger.info("=" * 80)
    logger.info("CALIBRATION")
    logger.info("=" * 80)
    logger.info(f"Samples:    {len(training_pairs)}")
    logger.info(f"Slots:      {len(slot_sizes)} ({len(x0)} parameters)")
    logger.info(f"Method:     {config.method} (loss: {config.loss})")
    logger.info(f"Max evals:  {config.max_function_evaluations}")

    degenerate_count = 0

    def residuals(flat: np.ndarray) -> np.ndarray:
        nonlocal degenerate_count
        degenerate_count = 0
        parameters = applicator(copy.deepcopy(base_parameters), unflatten(flat, slot_sizes))
        stacked = []
        for (inputs, _), target in zip(training_pairs, targets):
            result = forward_model.estimate(inputs, parameters)
            try:
                stacked.append(processor(result) - target)
            except DegenerateRayError:
                degenerate_count += 1
                stacked.append(np.full(target.shape, config.degenerate_residual))
        return np.concatenate(stacked)

    # Components with low == high are pinned and never reach the optimizer
    free = lower < upper

    def free_residuals(x_free: np.ndarray) -> np.ndarray:
        flat = x0.copy()
        flat[free] = x_free
        return residuals(flat)

    start_time = time.perf_counter()
    initial_cost = float(np.sum(residuals(x0) ** 2))
    logger.info(f"Initial cost: {initial_cost:.6e}")

    optimized = x0.copy()
    if np.any(free):
        x_free = x0[free]
        previous_cost = np.inf
        num_evaluations = 0
        converged = False
        status_message = ""
        for restart in range(config.max_restarts + 1):
            remaining_evaluations = config.max_function_evaluations - num_evaluations
            if remaining_evaluations <= 0:
                converged = False
                status_message = f"Evaluation cap reached after {restart} restarts"
                break

            solution = least_squares(
                fun=free_residuals,
                x0=x_free,
                bounds=(lower[free], upper[free]),
                method=config.method,
                loss=config.loss,
                f_scale=config.loss_scale,
                x_scale=config.x_scale,
                ftol=config.function_tolerance,
                xtol=config.parameter_tolerance,
                gtol=config.gradient_tolerance,
                diff_step=config.finite_difference_step,
                max_nfev=remaining_evaluations,
            )
            x_free = solution.x
            num_evaluations += int(solution.nfev)
            status_message = str(solution.message)
            cost = 2.0 * float(solution.cost)
            if restart > 0:
                logger.info(f"Restart {restart}: cost {cost:.6e}")

            # status 0: evaluation cap reached, status 1: gradient tolerance met
            if solution.status <= 1:
                converged = bool(solution.status == 1)
                break
            # ftol/xtol stops are only trusted once a fresh trust region no longer lowers the cost
            if np.isfinite(previous_cost) and previous_cost - cost <= config.function_tolerance * initial_cost:
                converged = True
                break
            previous_cost = cost
        else:
            converged = config.max_restarts == 0
            if not converged:
                status_message = f"Cost still falling after {config.max_restarts} restarts"

        optimized[free] = x_free
    else:
        converged = True
        status_message = "All components pinned by their bounds"
        num_evaluations = 0

    optimized = np.clip(optimized, lower, upper)
    final_cost = float(np.sum(residuals(optimized) ** 2))
    elapsed = time.perf_counter() - start_time

    logger.info(f"Final cost:   {final_cost:.6e}")
    logger.info(f"Evaluations:  {num_evaluations}")
    logger.info(f"Time:         {elapsed:.2f}s")
    if not converged:
        logger.warning(f"Calibration did not converge: {status_message}. Returning best vector found.")
    if degenerate_count > 0:
        logger.warning(f"{degenerate_count} training samples have gaze rays parallel to the target plane")

    return CalibrationResult(
        values=unflatten(optimized, slot_sizes),
        converged=converged,
        status_message=status_message,
        initial_cost=initial_cost,
        final_cost=final_cost,
        num_function_evaluations=num_evaluations,
        num_degenerate_samples=degenerate_count,
        time_seconds=elapsed,
    )


def calibrate_layout(
    *,
    forward_model: ForwardModel,
    base_parameters: Any,
    layout: ParameterLayout,
    processor: Processor,
    training_pairs: Sequence[tuple[Any, np.ndarray]],
    config: CalibrationConfig | None = None
) -> CalibrationResult:
    """calibrate() with applicator, initial values and bounds all taken from one layout."""
    result = calibrate(
        forward_model=forward_model,
        base_parameters=base_parameters,
        applicator=layout.apply,
        processor=processor,
        training_pairs=training_pairs,
        initial_values=layout.initial_values(base_parameters),
        bounds=layout.bounds(),
        config=config,
    )
    for name, value in layout.describe(result.values).items():
        logger.info(f"  {name}: {value}")
    return result
