"""
Temporal Filters for Tracked Poses

Every filter here remembers at most one value (plus a velocity for the
spring-damper, or a short window for the weighted moving average) and has
two states:

    UNINITIALIZED --first sample--> TRACKING --reset()--> UNINITIALIZED

The first sample after construction or reset() is returned exactly, so a
hand that is re-acquired after a tracking gap snaps to its new pose instead
of interpolating from the stale one. reset(value) re-seeds the filter at
``value`` and leaves it TRACKING.

Filters:
    ExponentialFilter    - vector lerp toward the target
    QuaternionFilter     - slerp toward the target orientation
    SpringDamperFilter   - second-order position response (actuator inertia)
    WeightedMovingFilter - weighted window over recent samples
    PoseFilter           - position filter + orientation filter -> Goal
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import numpy as np
from scipy.spatial.transform import Rotation, Slerp

logger = logging.getLogger(__name__)


class FilterState(Enum):
    """Smoothing memory state."""
    UNINITIALIZED = "uninitialized"
    TRACKING = "tracking"


def _check_alpha(alpha: float) -> float:
    alpha = float(alpha)
    if not 0.0 < alpha <= 1.0:
        raise ValueError(f"alpha must be in (0, 1], got {alpha}")
    return alpha


class ExponentialFilter:
    """Exponential smoothing: v' = v + (target - v) * alpha."""

    def __init__(self, alpha: float = 0.3):
        self.alpha = _check_alpha(alpha)
        self.value: Optional[np.ndarray] = None

    @property
    def state(self) -> FilterState:
        return FilterState.UNINITIALIZED if self.value is None else FilterState.TRACKING

    def update(self, target) -> np.ndarray:
        target = np.array(target, dtype=float)
        if self.value is None:
            self.value = target
            return self.value.copy()

        self.value = self.value + (target - self.value) * self.alpha
        return self.value.copy()

    def reset(self, value=None):
        self.value = None if value is None else np.array(value, dtype=float)


class QuaternionFilter:
    """Orientation smoothing by spherical interpolation (scalar-last quaternions)."""

    def __init__(self, alpha: float = 0.3):
        self.alpha = _check_alpha(alpha)
        self.value: Optional[np.ndarray] = None

    @property
    def state(self) -> FilterState:
        return FilterState.UNINITIALIZED if self.value is None else FilterState.TRACKING

    def update(self, target) -> np.ndarray:
        target = np.array(target, dtype=float)
        if self.value is None:
            self.value = target
            return self.value.copy()

        # Scipy's Slerp requires Rotation objects and takes the shorter arc
        r_prev = Rotation.from_quat(self.value)
        r_next = Rotation.from_quat(target)
        slerp = Slerp([0.0, 1.0], Rotation.concatenate([r_prev, r_next]))
        quat = slerp([self.alpha]).as_quat()[0]

        # Stay in the target's hemisphere so consumers see a continuous sign
        if np.dot(quat, target) < 0.0:
            quat = -quat
        self.value = quat
        return self.value.copy()

    def reset(self, value=None):
        self.value = None if value is None else np.array(value, dtype=float)


class SpringDamperFilter:
    """
    Second-order position filter emulating actuator inertia.

    Per update:
        force = -K (pos - target) - C vel
        vel  += force / M * dt
        pos  += vel * dt

    The defaults (M=1, K=64, C=14.4) give a damping ratio of 0.9: near
    critical, no visible overshoot. ``dt`` is clamped to ``max_dt`` so a
    stalled frame cannot blow the integration up.
    """

    def __init__(
        self,
        mass: float = 1.0,
        stiffness: float = 64.0,
        damping: float = 14.4,
        max_dt: float = 0.05,
    ):
        if mass <= 0.0:
            raise ValueError(f"mass must be positive, got {mass}")
        self.mass = float(mass)
        self.stiffness = float(stiffness)
        self.damping = float(damping)
        self.max_dt = float(max_dt)

        self.position: Optional[np.ndarray] = None
        self.velocity: Optional[np.ndarray] = None

    @property
    def state(self) -> FilterState:
        return FilterState.UNINITIALIZED if self.position is None else FilterState.TRACKING

    @property
    def damping_ratio(self) -> float:
        return self.damping / (2.0 * np.sqrt(self.stiffness * self.mass))

    def update(self, target, dt: float) -> np.ndarray:
        target = np.array(target, dtype=float)
        if self.position is None:
            self.position = target
            self.velocity = np.zeros_like(target)
            return self.position.copy()

        dt = min(max(float(dt), 0.0), self.max_dt)
        force = -self.stiffness * (self.position - target) - self.damping * self.velocity
        self.velocity = self.velocity + (force / self.mass) * dt
        self.position = self.position + self.velocity * dt
        return self.position.copy()

    def reset(self, value=None):
        if value is None:
            self.position = None
            self.velocity = None
        else:
            self.position = np.array(value, dtype=float)
            self.velocity = np.zeros_like(self.position)


class WeightedMovingFilter:
    """
    Weighted moving average over the last N samples.

    ``weights[0]`` applies to the newest sample. Weights must be
    non-increasing and are normalized to sum to one. Until the window is
    full the newest raw sample is passed through unchanged.
    """

    def __init__(self, weights: Sequence[float] = (0.4, 0.3, 0.2, 0.1), data_size: int = 7):
        weights = np.asarray(weights, dtype=float)
        if weights.ndim != 1 or len(weights) == 0:
            raise ValueError("weights must be a non-empty 1-D sequence")
        if np.any(weights < 0.0) or np.any(np.diff(weights) > 0.0):
            raise ValueError(f"weights must be non-negative and non-increasing, got {weights}")
        if weights.sum() <= 0.0:
            raise ValueError("weights must not all be zero")

        self.weights = weights / weights.sum()
        self.window_size = len(weights)
        self.data_size = data_size
        self._queue: deque = deque(maxlen=self.window_size)
        self.filtered_data = np.zeros(data_size)

    @property
    def state(self) -> FilterState:
        return FilterState.TRACKING if self._queue else FilterState.UNINITIALIZED

    @property
    def is_full(self) -> bool:
        return len(self._queue) == self.window_size

    def add_data(self, new_data) -> np.ndarray:
        sample = np.array(new_data, dtype=float).reshape(self.data_size)
        self._queue.append(sample)

        if not self.is_full:
            self.filtered_data = sample.copy()
            return self.filtered_data.copy()

        # Newest sample first so weights[0] pairs with it
        stacked = np.stack(list(reversed(self._queue)))
        self.filtered_data = self.weights @ stacked
        return self.filtered_data.copy()

    def reset(self, value=None):
        self._queue.clear()
        if value is None:
            self.filtered_data = np.zeros(self.data_size)
        else:
            self.filtered_data = np.array(value, dtype=float).reshape(self.data_size)
            self._queue.append(self.filtered_data.copy())


@dataclass
class Goal:
    """World-frame target for a chain's end effector. Orientation is optional."""
    position: np.ndarray
    orientation: Optional[np.ndarray] = None

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=float).reshape(3)
        if self.orientation is not None:
            self.orientation = np.asarray(self.orientation, dtype=float).reshape(4)


class PoseFilter:
    """
    Wrist pose filter producing IK goals.

    Position goes through a spring-damper (default) or an exponential
    filter; orientation through a slerp filter. Both halves share one
    lifecycle: reset() clears both, and the first pose after a reset is
    returned unchanged.
    """

    def __init__(
        self,
        position_mode: str = "spring",
        position_alpha: float = 0.3,
        orientation_alpha: float = 0.3,
        spring: Optional[SpringDamperFilter] = None,
    ):
        if position_mode == "spring":
            self.position_filter = spring or SpringDamperFilter()
        elif position_mode == "exponential":
            self.position_filter = ExponentialFilter(position_alpha)
        else:
            raise ValueError(f"Unknown position filter mode: {position_mode}")
        self.position_mode = position_mode
        self.orientation_filter = QuaternionFilter(orientation_alpha)

    @property
    def state(self) -> FilterState:
        return self.position_filter.state

    def update(self, position, orientation, dt: float) -> Goal:
        if self.position_mode == "spring":
            pos = self.position_filter.update(position, dt)
        else:
            pos = self.position_filter.update(position)
        quat = self.orientation_filter.update(orientation)
        return Goal(position=pos, orientation=quat)

    def reset(self, position=None, orientation=None):
        self.position_filter.reset(position)
        self.orientation_filter.reset(orientation)
