"""Per-engine circuit breaker that short-circuits routing to failing providers."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from threading import Lock

from scout.observability.metrics import metrics

logger = logging.getLogger(__name__)

FAILURE_THRESHOLD = 3
OPEN_DURATION_SECONDS = 60.0


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class _Circuit:
    state: CircuitState = CircuitState.CLOSED
    failures: int = 0
    opened_at: float = 0.0
    trial_started_at: float | None = None


class CircuitBreaker:
    """Opens after consecutive failures; lets a single trial call through once the open window lapses."""

    def __init__(
        self,
        *,
        failure_threshold: int = FAILURE_THRESHOLD,
        open_duration_seconds: float = OPEN_DURATION_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self._threshold = failure_threshold
        self._open_duration = open_duration_seconds
        self._clock = clock
        self._circuits: dict[str, _Circuit] = {}
        self._lock = Lock()

    def state(self, engine: str) -> CircuitState:
        with self._lock:
            return self._current_locked(engine).state

    def is_open(self, engine: str) -> bool:
        """True while requests to ``engine`` should be skipped, including while a trial call is in flight."""
        with self._lock:
            circuit = self._current_locked(engine)
            if circuit.state == CircuitState.HALF_OPEN:
                return circuit.trial_started_at is not None
            return circuit.state == CircuitState.OPEN

    def allow_request(self, engine: str) -> bool:
        """Admit a call; in half-open only the first caller gets through as the trial call."""
        with self._lock:
            circuit = self._current_locked(engine)
            if circuit.state == CircuitState.CLOSED:
                return True
            if circuit.state == CircuitState.OPEN or circuit.trial_started_at is not None:
                return False
            circuit.trial_started_at = self._clock()
            return True

    def record_success(self, engine: str) -> None:
        with self._lock:
            circuit = self._circuits.setdefault(engine, _Circuit())
            if circuit.state != CircuitState.CLOSED:
                logger.info("circuit.closed", extra={"engine": engine})
            circuit.state = CircuitState.CLOSED
            circuit.failures = 0
            circuit.trial_started_at = None

    def record_failure(self, engine: str) -> None:
        with self._lock:
            circuit = self._current_locked(engine)
            circuit.failures += 1
            if circuit.state == CircuitState.HALF_OPEN or circuit.failures >= self._threshold:
                if circuit.state != CircuitState.OPEN:
                    logger.warning(
                        "circuit.opened",
                        extra={"engine": engine, "failures": circuit.failures},
                    )
                    metrics.increment("circuit.opened", tags={"engine": engine})
                circuit.state = CircuitState.OPEN
                circuit.opened_at = self._clock()
                circuit.trial_started_at = None

    def _current_locked(self, engine: str) -> _Circuit:
        circuit = self._circuits.setdefault(engine, _Circuit())
        if (
            circuit.state == CircuitState.OPEN
            and self._clock() - circuit.opened_at >= self._open_duration
        ):
            circuit.state = CircuitState.HALF_OPEN
        elif (
            circuit.state == CircuitState.HALF_OPEN
            and circuit.trial_started_at is not None
            and self._clock() - circuit.trial_started_at >= self._open_duration
        ):
            # Trial call never reported back; let another caller try.
            circuit.trial_started_at = None
        return circuit
