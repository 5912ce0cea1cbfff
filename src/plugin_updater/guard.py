"""Single-flight and cooldown guard for plugin updates."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from plugin_updater.constants import UPDATE_COOLDOWN_SECONDS
from plugin_updater.errors import UpdateInFlightError, UpdateTooRecentError


class UpdateGuard:
    """Admit at most one update at a time, and none within the cooldown.

    Every check and state change happens under one mutex, so concurrent
    triggers (a periodic timer and a manual request, say) can never both
    be admitted. Rejections leave the state untouched.
    """

    def __init__(
        self,
        cooldown_seconds: float = UPDATE_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cooldown = cooldown_seconds
        self._clock = clock
        self._mutex = threading.Lock()
        self._in_flight = False
        self._last_attempt: float | None = None

    @property
    def in_flight(self) -> bool:
        with self._mutex:
            return self._in_flight

    @property
    def last_attempt(self) -> float | None:
        with self._mutex:
            return self._last_attempt

    def acquire(self) -> None:
        """Mark an attempt as in flight.

        The cooldown is measured from the last ``stamp()``, so an attempt that
        fails before reaching the remote does not delay the next one.

        Raises:
            UpdateInFlightError: another attempt holds the guard.
            UpdateTooRecentError: the previous fetch started too recently.
        """
        with self._mutex:
            if self._in_flight:
                raise UpdateInFlightError()
            if self._last_attempt is not None:
                elapsed = self._clock() - self._last_attempt
                if elapsed < self._cooldown:
                    raise UpdateTooRecentError(self._cooldown - elapsed)
            self._in_flight = True

    def stamp(self) -> None:
        """Record that the held attempt is about to contact the remote."""
        with self._mutex:
            self._last_attempt = self._clock()

    def release(self) -> None:
        with self._mutex:
            self._in_flight = False

    @contextmanager
    def hold(self) -> Iterator[None]:
        """Acquire for the duration of the block; always release on exit."""
        self.acquire()
        try:
            yield
        finally:
            self.release()
