"""
Typed description of which domain parameters occupy which optimizer slots.

A ParameterLayout is the single source for the three things a calibration
call needs to agree on: the initial values, the bounds, and the applicator
that writes optimizer values back into a parameter set.
"""

import copy
from dataclasses import dataclass
from typing import Any, Callable, Sequence

import numpy as np

from gaze_estimation.core.eye_parameters import EyeAndCameraParameters, deg_to_rad

FlatParameterVector = list[np.ndarray]
"""One 1-D array per slot"""

SlotBounds = list[tuple[float, float]]
"""One inclusive (low, high) pair per slot component"""


def flatten(values: Sequence[np.ndarray]) -> np.ndarray:
    """Concatenate per-slot values into the optimizer's 1-D vector."""
    if len(values) == 0:
        return np.zeros(0)
    return np.concatenate([np.atleast_1d(np.asarray(v, dtype=np.float64)) for v in values])


def unflatten(flat: np.ndarray, slot_sizes: Sequence[int]) -> FlatParameterVector:
    """Split the optimizer's 1-D vector back into per-slot arrays (copies)."""
    if len(flat) != sum(slot_sizes):
        raise ValueError(f"Vector of length {len(flat)} does not match slot sizes {list(slot_sizes)}")
    if len(slot_sizes) == 0:
        return []
    split_points = np.cumsum(slot_sizes)[:-1]
    return [chunk.copy() for chunk in np.split(np.asarray(flat, dtype=np.float64), split_points)]


@dataclass(frozen=True)
class ParameterSlot:
    """One calibrated quantity: how to read it, how to write it, and its box."""

    name: str
    getter: Callable[[Any], np.ndarray | float]
    setter: Callable[[Any, np.ndarray], None]
    """Writes the slot's values into a (copied) parameter object in place"""

    lower: tuple[float, ...]
    upper: tuple[float, ...]

    def __post_init__(self) -> None:
        if len(self.lower) != len(self.upper):
            raise ValueError(f"Slot '{self.name}': {len(self.lower)} lower bounds vs {len(self.upper)} upper bounds")
        for low, high in zip(self.lower, self.upper):
            if low > high:
                raise ValueError(f"Slot '{self.name}': lower bound {low} > upper bound {high}")

    @property
    def size(self) -> int:
        return len(self.lower)

    @classmethod
    def scalar(
        cls,
        *,
        name: str,
        getter: Callable[[Any], float],
        setter: Callable[[Any, float], None],
        low: float,
        high: float
    ) -> "ParameterSlot":
        """Slot holding a single float."""
        return cls(
            name=name,
            getter=getter,
            setter=lambda params, values: setter(params, float(values[0])),
            lower=(low,),
            upper=(high,),
        )


@dataclass(frozen=True)
class ParameterLayout:
    """Ordered slots; slot i of every derived vector refers to slots[i]."""

    slots: tuple[ParameterSlot, ...]

    def __post_init__(self) -> None:
        names = [slot.name for slot in self.slots]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate slot names in layout: {names}")

    @property
    def names(self) -> list[str]:
        return [slot.name for slot in self.slots]

    @property
    def slot_sizes(self) -> list[int]:
        return [slot.size for slot in self.slots]

    def initial_values(self, parameters: Any) -> FlatParameterVector:
        """Current values of every slot, read from a parameter set."""
        return self.read(parameters)

    def bounds(self) -> list[SlotBounds]:
        return [list(zip(slot.lower, slot.upper)) for slot in self.slots]

    def read(self, parameters: Any) -> FlatParameterVector:
        return [np.atleast_1d(np.asarray(slot.getter(parameters), dtype=np.float64)).copy() for slot in self.slots]

    def apply(self, parameters: Any, values: Sequence[np.ndarray]) -> Any:
        """
        Applicator: copy of `parameters` with every slot overwritten from `values`.

        The input object is never modified.
        """
        if len(values) != len(self.slots):
            raise ValueError(f"Layout has {len(self.slots)} slots but {len(values)} values were given")
        updated = copy.deepcopy(parameters)
        for slot, slot_values in zip(self.slots, values):
            slot_values = np.atleast_1d(np.asarray(slot_values, dtype=np.float64))
            if len(slot_values) != slot.size:
                raise ValueError(f"Slot '{slot.name}' expects {slot.size} values, got {len(slot_values)}")
            slot.setter(updated, slot_values)
        return updated

    def describe(self, values: Sequence[np.ndarray]) -> dict[str, float | list[float]]:
        """Slot name to value(s), for logging."""
        described: dict[str, float | list[float]] = {}
        for slot, slot_values in zip(self.slots, values):
            slot_values = np.atleast_1d(slot_values)
            described[slot.name] = float(slot_values[0]) if slot.size == 1 else [float(v) for v in slot_values]
        return described

    def __add__(self, other: "ParameterLayout") -> "ParameterLayout":
        return ParameterLayout(slots=self.slots + other.slots)


# =============================================================================
# STANDARD SLOTS
# =============================================================================

def _set_alpha(params: EyeAndCameraParameters, value: float) -> None:
    params.alpha = value


def _set_beta(params: EyeAndCameraParameters, value: float) -> None:
    params.beta = value


def _set_cornea_radius(params: EyeAndCameraParameters, value: float) -> None:
    params.R = value


def _set_pupil_distance(params: EyeAndCameraParameters, value: float) -> None:
    params.K = value


def alpha_slot(*, max_abs_deg: float = 10.0) -> ParameterSlot:
    return ParameterSlot.scalar(
        name="alpha",
        getter=lambda params: params.alpha,
        setter=_set_alpha,
        low=deg_to_rad(-max_abs_deg),
        high=deg_to_rad(max_abs_deg),
    )


def beta_slot(*, max_abs_deg: float = 5.0) -> ParameterSlot:
    return ParameterSlot.scalar(
        name="beta",
        getter=lambda params: params.beta,
        setter=_set_beta,
        low=deg_to_rad(-max_abs_deg),
        high=deg_to_rad(max_abs_deg),
    )


def cornea_radius_slot(*, low: float = 0.3, high: float = 2.0) -> ParameterSlot:
    return ParameterSlot.scalar(
        name="R",
        getter=lambda params: params.R,
        setter=_set_cornea_radius,
        low=low,
        high=high,
    )


def pupil_distance_slot(*, low: float = 0.2, high: float = 1.5) -> ParameterSlot:
    return ParameterSlot.scalar(
        name="K",
        getter=lambda params: params.K,
        setter=_set_pupil_distance,
        low=low,
        high=high,
    )


def camera_angle_y_slot(*, camera_index: int = 0, max_abs_deg: float = 8.0) -> ParameterSlot:
    return ParameterSlot.scalar(
        name=f"camera{camera_index}_angle_y",
        getter=lambda params: params.cameras[camera_index].camera_angle_y(),
        setter=lambda params, value: params.cameras[camera_index].set_camera_angle_y(value),
        low=deg_to_rad(-max_abs_deg),
        high=deg_to_rad(max_abs_deg),
    )


def camera_angle_z_slot(*, camera_index: int = 0, max_abs_deg: float = 5.0) -> ParameterSlot:
    return ParameterSlot.scalar(
        name=f"camera{camera_index}_angle_z",
        getter=lambda params: params.cameras[camera_index].camera_angle_z(),
        setter=lambda params, value: params.cameras[camera_index].set_camera_angle_z(value),
        low=deg_to_rad(-max_abs_deg),
        high=deg_to_rad(max_abs_deg),
    )


def angular_offset_layout() -> ParameterLayout:
    """alpha, beta"""
    return ParameterLayout(slots=(alpha_slot(), beta_slot()))


def eye_geometry_layout() -> ParameterLayout:
    """alpha, beta, R, K"""
    return angular_offset_layout() + ParameterLayout(slots=(cornea_radius_slot(), pupil_distance_slot()))


def six_variable_layout(*, camera_index: int = 0) -> ParameterLayout:
    """alpha, beta, R, K, camera angle y, camera angle z"""
    return eye_geometry_layout() + ParameterLayout(slots=(
        camera_angle_y_slot(camera_index=camera_index),
        camera_angle_z_slot(camera_index=camera_index),
    ))


LAYOUTS: dict[str, Callable[[], ParameterLayout]] = {
    "angular_offsets": angular_offset_layout,
    "eye_geometry": eye_geometry_layout,
    "six_variable": six_variable_layout,
}
