"""
Circuit breaker guarding calls to a remote store.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Optional

from moontv_storage.exceptions import StorageUnavailableError

from .retry import is_transient_error

log = logging.getLogger(__name__)


class CircuitState(Enum):
    """States of the circuit breaker."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking calls
    HALF_OPEN = "half_open"  # Testing if the store recovered


class CircuitOpenError(StorageUnavailableError):
    """Raised when the circuit breaker is open."""


class CircuitBreaker:
    """
    Stops hammering a store that keeps refusing connections.

    Only transient connection failures count towards opening the circuit; a
    malformed command or an auth error says nothing about availability.

    States:
    - CLOSED: Normal operation, calls pass through
    - OPEN: Too many failures, calls fail fast with CircuitOpenError
    - HALF_OPEN: Testing recovery, limited calls allowed
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30,
        success_threshold: int = 1,
    ):
        """
        Args:
            name: Store name used in log messages.
            failure_threshold: Consecutive transient failures before opening.
            recovery_timeout: Seconds to wait before attempting recovery.
            success_threshold: Consecutive successes needed to close again.
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    def _check_state(self) -> None:
        """Moves from OPEN to HALF_OPEN once the recovery timeout has passed."""
        if self._state != CircuitState.OPEN or self._last_failure_time is None:
            return
        elapsed = time.monotonic() - self._last_failure_time
        if elapsed >= self.recovery_timeout:
            log.info(
                f"[yellow]{self.name}: circuit half-open, "
                f"testing recovery after {elapsed:.0f}s[/yellow]"
            )
            self._state = CircuitState.HALF_OPEN
            self._success_count = 0

    async def _on_success(self) -> None:
        async with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    log.info(f"[green]✓ {self.name}: connection recovered.[/green]")
                    self._state = CircuitState.CLOSED
                    self._success_count = 0

    async def _on_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            self._last_failure_time = time.monotonic()

            if self._state == CircuitState.HALF_OPEN:
                log.warning(
                    f"[yellow]{self.name}: recovery test failed, "
                    "circuit open again.[/yellow]"
                )
                self._state = CircuitState.OPEN
                self._failure_count = 0
                self._success_count = 0
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                log.error(
                    f"[red]✗ {self.name}: circuit opened after "
                    f"{self._failure_count} consecutive connection failures. "
                    f"Calls blocked for {self.recovery_timeout}s.[/red]"
                )
                self._state = CircuitState.OPEN

    async def __aenter__(self):
        async with self._lock:
            self._check_state()
            if self._state == CircuitState.OPEN:
                raise CircuitOpenError(
                    f"{self.name} is unavailable; circuit open for up to "
                    f"{self.recovery_timeout}s."
                )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_val is None:
            await self._on_success()
        elif is_transient_error(exc_val):
            await self._on_failure()
        return False
