"""Out-of-band observation of dispatched commands."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from .errors import Cancelled
from .fleet.base import LogSinkClient
from .schemas import ExecutionStatus


LOGGER = logging.getLogger("fleet_dispatch.poller")

StatusCallback = Callable[[ExecutionStatus], None]


class StatusPoller:
    """
    Map log sink contents to an :class:`ExecutionStatus`.

    Nothing links submission to sink visibility, so an empty sink reads as
    ``PENDING`` rather than an error.
    """

    def __init__(
        self,
        sink: LogSinkClient,
        interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval <= 0:
            raise ValueError("poll interval must be positive")
        self._sink = sink
        self._interval = interval
        self._clock = clock

    def poll(self, log_sink: str, command_id: str) -> ExecutionStatus:
        """Return the current best-known status with a single sink read."""
        status = self._sink.query(log_sink, command_id)
        LOGGER.debug("Command %s in %s is %s", command_id, log_sink, status.value)
        return status

    def follow(
        self,
        log_sink: str,
        command_id: str,
        timeout: float,
        cancel_event: Optional[threading.Event] = None,
        on_status: Optional[StatusCallback] = None,
    ) -> ExecutionStatus:
        """
        Poll until a terminal status, the timeout, or cancellation.

        Returns the terminal status, or ``TIMED_OUT`` once *timeout* seconds
        have passed. Raises :class:`Cancelled` as soon as *cancel_event* is
        set, including while waiting between polls.
        """
        cancel = cancel_event or threading.Event()
        deadline = self._clock() + timeout
        last: Optional[ExecutionStatus] = None
        LOGGER.info("Following command %s in %s (timeout %.1fs)", command_id, log_sink, timeout)

        while True:
            if cancel.is_set():
                raise Cancelled(command_id)
            status = self.poll(log_sink, command_id)
            if status is not last:
                LOGGER.info("Command %s status: %s", command_id, status.value)
                if on_status is not None:
                    on_status(status)
                last = status
            if status.is_terminal:
                return status

            remaining = deadline - self._clock()
            if remaining <= 0:
                LOGGER.warning("Command %s reached no terminal status in %s within %.1fs", command_id, log_sink, timeout)
                return ExecutionStatus.TIMED_OUT
            if cancel.wait(min(self._interval, remaining)):
                raise Cancelled(command_id)


__all__ = ["StatusPoller"]
