"""Cooperative cancellation of a run between tags."""

from __future__ import annotations

import signal
import threading
import time
from collections.abc import Callable
from typing import Any

from loguru import logger


class CancellationToken:
    """Set externally (signal, job timeout) and polled by the synchronizer between tags.

    A token created with `timeout_seconds` cancels itself once that much time has passed.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._event = threading.Event()
        self._clock = clock
        self._deadline = clock() + timeout_seconds if timeout_seconds is not None else None
        self.reason = ""
        self._previous_handlers: dict[int, Any] = {}

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if not self._event.is_set() and self._deadline is not None and self._clock() >= self._deadline:
            self.cancel("deadline exceeded")
        return self._event.is_set()

    def install_signal_handlers(self) -> None:
        """Cancel the token on SIGINT and SIGTERM."""

        def _signal_handler(signum: int, frame: Any) -> None:  # noqa: ANN401
            signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
            logger.warning(f"{signal_name} received. Finishing the current tag, then stopping...")
            self.cancel(f"{signal_name} received")

        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.signal(signum, _signal_handler)

    def restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()
