"""Circuit breaker guarding the render pipeline against repeated runtime faults."""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_THRESHOLD = 3
DEFAULT_COOLDOWN_SECONDS = 60.0


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """Stop calling a failing operation for a cool-down period after repeated failures.

    ``CLOSED`` runs every call. ``threshold`` consecutive failures open the
    circuit; while ``OPEN`` the operation is never invoked and the fallback is
    returned. Once ``cooldown`` seconds have passed the next call runs in
    ``HALF_OPEN``: success closes the circuit, failure opens it again.
    """

    def __init__(
        self,
        *,
        threshold: int = DEFAULT_THRESHOLD,
        cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = threshold
        self.cooldown = cooldown
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def last_failure(self) -> Optional[float]:
        return self._last_failure

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            return {
                "state": self._state.value,
                "failures": self._failures,
                "last_failure": self._last_failure,
            }

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._last_failure = None

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        fallback: T,
        *,
        fallback_for: Optional[Callable[[BaseException], T]] = None,
    ) -> T:
        """Run ``operation`` unless the circuit is open; any exception yields the fallback.

        ``fallback_for`` may derive a fallback from the exception that was raised.
        """

        if not self._allow_call():
            logger.warning("Circuit is OPEN, using fallback")
            return fallback

        try:
            result = await operation()
        except Exception as exc:  # noqa: BLE001 - every fault is recorded and replaced by the fallback
            self._on_failure()
            logger.error("Protected operation failed: %s", exc)
            if fallback_for is not None:
                return fallback_for(exc)
            return fallback

        self._on_success()
        return result

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------
    def _allow_call(self) -> bool:
        with self._lock:
            if self._state is not CircuitState.OPEN:
                return True
            if self._last_failure is not None and self._clock() - self._last_failure < self.cooldown:
                return False
            self._state = CircuitState.HALF_OPEN
        logger.info("Circuit cool-down elapsed, trying HALF_OPEN")
        return True

    def _on_success(self) -> None:
        with self._lock:
            recovered = self._state is CircuitState.HALF_OPEN
            self._failures = 0
            self._state = CircuitState.CLOSED
        if recovered:
            logger.info("Circuit recovered, closing")

    def _on_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure = self._clock()
            if self._state is CircuitState.HALF_OPEN or self._failures >= self.threshold:
                self._state = CircuitState.OPEN
                opened = True
            else:
                opened = False
            failures = self._failures
        if opened:
            logger.error("Circuit breaker threshold reached (%d failures), opening circuit", failures)
