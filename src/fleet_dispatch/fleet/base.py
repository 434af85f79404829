"""Capabilities the coordinator needs from the outside world."""
from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from ..schemas import DispatchRequest, DispatchResult, ExecutionStatus


class FleetManager(ABC):
    """Accepts remote command requests for fleet-managed nodes."""

    @abstractmethod
    def submit(self, request: DispatchRequest, idempotency_key: Optional[str] = None) -> DispatchResult:
        """Schedule *request* and return once the fleet manager has accepted it."""


class LogSinkClient(ABC):
    """Reads a command's output back out of a log sink."""

    @abstractmethod
    def query(self, log_sink: str, command_id: str) -> ExecutionStatus:
        """Return the best-known status of *command_id* as recorded in *log_sink*."""


class StatusMarkers:
    """Classify log lines by terminal / non-terminal markers only."""

    def __init__(self, success_pattern: str, failure_pattern: str) -> None:
        self.success = re.compile(success_pattern, re.MULTILINE)
        self.failure = re.compile(failure_pattern, re.MULTILINE)

    def classify(self, lines: Iterable[str]) -> ExecutionStatus:
        entries = [line for line in lines if line is not None]
        if not entries:
            return ExecutionStatus.PENDING
        text = "\n".join(entries)
        if self.failure.search(text):
            return ExecutionStatus.FAILED
        if self.success.search(text):
            return ExecutionStatus.SUCCEEDED
        return ExecutionStatus.IN_PROGRESS


__all__ = ["FleetManager", "LogSinkClient", "StatusMarkers"]
