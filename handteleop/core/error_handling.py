"""
Error Handling and Graceful Degradation for the Teleoperation Core

Teleoperation must degrade gracefully rather than stall: every tick produces
a best-effort set of joint targets. Nothing raised by the pipeline itself or
by an external collaborator is allowed to escape a control tick.

Error Taxonomy:
===============
1. Missing data        → skip the hand's update / keep the previous value
2. Geometric degeneracy → skip that joint's correction for this iteration
3. Unreachable target   → clamp distance, report reachable=False
4. Non-convergence      → accept best effort, report converged=False
5. Collider failure     → skip the link for physics, log, keep ticking

Only configuration problems (bad alpha, empty filter window) raise, and they
do so at construction time before the first tick runs.

Components record their failures on an ErrorTracker, which turns the
failures inside a sliding time window into a HEALTHY / DEGRADED / FAILED
state that recovers by itself once the failures age out.
"""

import time
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, TypeVar
from enum import Enum

logger = logging.getLogger(__name__)

T = TypeVar('T')


class ErrorSeverity(Enum):
    WARNING = "warning"    # degraded input, fallback used
    ERROR = "error"        # collaborator call failed
    CRITICAL = "critical"  # component unusable until errors age out


class ComponentState(Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass
class ErrorEvent:
    timestamp: float
    component: str
    severity: ErrorSeverity
    message: str
    exception: Optional[Exception] = None
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_failure(self) -> bool:
        return self.severity is not ErrorSeverity.WARNING


_LOG_LEVEL = {
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


class ErrorTracker:
    """
    Health of one component over a sliding time window.

    The state is derived from the failures (ERROR or CRITICAL) still inside
    the window, so it decays back to HEALTHY on its own once a faulty
    collaborator stops raising:

        no failures in window            -> HEALTHY
        1 .. error_threshold-1 failures  -> DEGRADED
        error_threshold failures, or any
        CRITICAL                         -> FAILED

    Warnings are kept for inspection but never change the state.

    Usage:
        tracker = ErrorTracker("collision_monitor", window_s=5.0)
        contacts = safe_call(world.contact_pairs_with, collider, fallback=(), tracker=tracker)
        if tracker.state is ComponentState.FAILED:
            ...
    """

    def __init__(
        self,
        component_name: str,
        error_threshold: int = 5,
        window_s: float = 5.0,
        max_events: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ):
        if error_threshold < 1:
            raise ValueError("error_threshold must be at least 1")
        if window_s <= 0.0:
            raise ValueError("window_s must be positive")
        self.component_name = component_name
        self.error_threshold = error_threshold
        self.window_s = window_s
        self._clock = clock

        self._events: Deque[ErrorEvent] = deque(maxlen=max_events)
        self._state = ComponentState.HEALTHY
        self._lock = threading.Lock()

    def record_error(
        self,
        severity: ErrorSeverity,
        message: str,
        exception: Optional[Exception] = None,
        context: Optional[Dict] = None,
    ):
        event = ErrorEvent(
            timestamp=self._clock(),
            component=self.component_name,
            severity=severity,
            message=message,
            exception=exception,
            context=context or {},
        )
        logger.log(_LOG_LEVEL[severity], f"[{self.component_name}] {message}")

        with self._lock:
            self._events.append(event)
            self._refresh(event.timestamp)

    def record_success(self):
        """Note a successful call; lets the state decay once old failures age out."""
        with self._lock:
            self._refresh(self._clock())

    def _refresh(self, now: float):
        cutoff = now - self.window_s
        while self._events and self._events[0].timestamp <= cutoff:
            self._events.popleft()

        failures = [e for e in self._events if e.is_failure]
        if not failures:
            new_state = ComponentState.HEALTHY
        elif (len(failures) >= self.error_threshold
              or any(e.severity is ErrorSeverity.CRITICAL for e in failures)):
            new_state = ComponentState.FAILED
        else:
            new_state = ComponentState.DEGRADED

        if new_state is not self._state:
            logger.info(f"[{self.component_name}] State: {self._state.value} -> {new_state.value}")
            self._state = new_state

    @property
    def state(self) -> ComponentState:
        with self._lock:
            self._refresh(self._clock())
            return self._state

    @property
    def error_count(self) -> int:
        """Events (warnings included) inside the window."""
        with self._lock:
            self._refresh(self._clock())
            return len(self._events)

    @property
    def recent_errors(self) -> List[ErrorEvent]:
        with self._lock:
            self._refresh(self._clock())
            return list(self._events)


def safe_call(
    func: Callable[..., T],
    *args,
    fallback: T = None,
    tracker: Optional[ErrorTracker] = None,
    context: Optional[Dict] = None,
    **kwargs
) -> T:
    """
    Call ``func`` and turn any exception into ``fallback``.

    Failures are recorded on ``tracker`` (or just logged without one);
    successes are reported to it too, so its state can recover.

    Args:
        func: Collaborator or pipeline stage to call
        *args: Positional arguments
        fallback: Value returned when the call raises
        tracker: ErrorTracker for this component
        context: Extra fields attached to the recorded ErrorEvent
        **kwargs: Keyword arguments

    Returns:
        Function result or fallback value
    """
    try:
        result = func(*args, **kwargs)
    except Exception as e:
        name = getattr(func, '__name__', repr(func))
        message = f"{name} failed: {e}"
        if tracker is not None:
            tracker.record_error(ErrorSeverity.ERROR, message, exception=e, context=context)
        else:
            logger.error(message)
        return fallback

    if tracker is not None:
        tracker.record_success()
    return result
