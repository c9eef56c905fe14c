# search/breaker.py
"""Circuit breaker guarding calls to the primary search index."""
import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .config import (
    BREAKER_FAILURE_RATE,
    BREAKER_MINIMUM_CALLS,
    BREAKER_OPEN_SECONDS,
    BREAKER_WINDOW_SIZE,
)

logger = logging.getLogger("search")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised instead of calling the protected function while the circuit is open."""


@dataclass
class CircuitBreakerConfig:
    window_size: int = BREAKER_WINDOW_SIZE  # outcomes kept in the rolling window
    minimum_calls: int = BREAKER_MINIMUM_CALLS  # before the failure rate counts
    failure_rate: float = BREAKER_FAILURE_RATE  # open when failures/window >= this
    open_seconds: float = BREAKER_OPEN_SECONDS  # wait before a half-open trial
    half_open_calls: int = 1  # concurrent trial calls allowed


class CircuitBreaker:
    """
    Count-based circuit breaker for async calls.

    CLOSED: calls go through and outcomes fill a rolling window; once the
    window holds ``minimum_calls`` outcomes and the failure rate reaches the
    threshold the circuit opens.
    OPEN: calls fail fast with CircuitOpenError until ``open_seconds`` pass.
    HALF_OPEN: a single trial call decides; success closes, failure re-opens.
    """

    def __init__(
        self,
        name="search-index",
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        on_transition: Optional[Callable[[CircuitState, CircuitState], None]] = None,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.clock = clock
        self.on_transition = on_transition
        self._state = CircuitState.CLOSED
        self._window = deque(maxlen=self.config.window_size)
        self._opened_at: Optional[float] = None
        self._trials = 0

    @property
    def state(self) -> CircuitState:
        if (
            self._state == CircuitState.OPEN
            and self.clock() - self._opened_at >= self.config.open_seconds
        ):
            self._transition(CircuitState.HALF_OPEN)
        return self._state

    def failure_rate(self) -> float:
        if not self._window:
            return 0.0
        return self._window.count(False) / len(self._window)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        self._trials = 0
        if new_state == CircuitState.OPEN:
            self._opened_at = self.clock()
        else:
            self._opened_at = None
        if new_state == CircuitState.CLOSED:
            self._window.clear()
        logger.warning(f"Circuit breaker '{self.name}' {old_state.value} -> {new_state.value}")
        if self.on_transition:
            self.on_transition(old_state, new_state)

    async def call(self, func, *args, **kwargs):
        """
        Await ``func(*args, **kwargs)`` under breaker protection.

        Raises:
            CircuitOpenError: The circuit is open, or a half-open trial is
                already in flight.
            Exception: Whatever ``func`` raised (after being recorded).
        """
        state = self.state
        if state == CircuitState.OPEN:
            raise CircuitOpenError(f"Circuit '{self.name}' is open")
        trial = state == CircuitState.HALF_OPEN
        if trial:
            if self._trials >= self.config.half_open_calls:
                raise CircuitOpenError(f"Circuit '{self.name}' is half-open, trial in progress")
            self._trials += 1

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._on_failure(trial)
            raise
        except BaseException:
            # cancelled: no verdict on the index, free the trial slot
            if trial:
                self._release_trial()
            raise
        self._on_success(trial)
        return result

    def _release_trial(self) -> None:
        if self._state == CircuitState.HALF_OPEN and self._trials > 0:
            self._trials -= 1

    def _on_success(self, trial: bool) -> None:
        if trial:
            self._transition(CircuitState.CLOSED)
            return
        self._window.append(True)

    def _on_failure(self, trial: bool) -> None:
        if trial:
            self._transition(CircuitState.OPEN)
            return
        self._window.append(False)
        if (
            self._state == CircuitState.CLOSED
            and len(self._window) >= self.config.minimum_calls
            and self.failure_rate() >= self.config.failure_rate
        ):
            self._transition(CircuitState.OPEN)

    def reset(self) -> None:
        self._transition(CircuitState.CLOSED)
        self._window.clear()

    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN
