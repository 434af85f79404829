"""Error taxonomy shared by the dispatch coordinator."""
from __future__ import annotations

from typing import Optional


class DispatchError(Exception):
    """Base class for every user-facing coordinator failure."""

    kind = "DispatchError"


class MissingParameter(DispatchError):
    """A required dispatch parameter is absent or empty."""

    kind = "MissingParameter"

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"missing required parameter: {key}")


class InvalidParameter(DispatchError):
    """A dispatch parameter is present but malformed."""

    kind = "InvalidParameter"

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"invalid parameter {key}: {reason}")


class SubmissionError(DispatchError):
    """The fleet manager rejected the command or could not be reached."""

    kind = "SubmissionError"

    def __init__(self, target_id: str, reason: str, code: Optional[str] = None) -> None:
        self.target_id = target_id
        self.reason = reason
        self.code = code
        suffix = f" [{code}]" if code else ""
        super().__init__(f"submission to {target_id} failed{suffix}: {reason}")


class PollError(DispatchError):
    """The log sink could not be read or returned malformed data."""

    kind = "PollError"

    def __init__(self, log_sink: str, command_id: str, reason: str) -> None:
        self.log_sink = log_sink
        self.command_id = command_id
        self.reason = reason
        super().__init__(f"polling {log_sink} for command {command_id} failed: {reason}")


class Cancelled(DispatchError):
    """The caller cancelled a wait on the command's outcome."""

    kind = "Cancelled"

    def __init__(self, command_id: Optional[str] = None) -> None:
        self.command_id = command_id
        target = f"command {command_id}" if command_id else "run"
        super().__init__(f"{target} observation cancelled")


class TimedOut(DispatchError):
    """No terminal status was observed within the allotted time."""

    kind = "TimedOut"

    def __init__(self, command_id: str, log_sink: str, timeout: float) -> None:
        self.command_id = command_id
        self.log_sink = log_sink
        self.timeout = timeout
        super().__init__(
            f"command {command_id} reached no terminal status in {log_sink} within {timeout:g}s"
        )


class RemoteExecutionFailed(DispatchError):
    """The remote command ran and reported failure in the log sink."""

    kind = "RemoteExecutionFailed"

    def __init__(self, command_id: str, log_sink: str) -> None:
        self.command_id = command_id
        self.log_sink = log_sink
        super().__init__(f"command {command_id} reported failure in {log_sink}")


class BuildError(DispatchError):
    """The artifact build command failed."""

    kind = "BuildError"


class UploadError(DispatchError):
    """The payload artifact could not be placed at its destination."""

    kind = "UploadError"

    def __init__(self, destination: str, reason: str) -> None:
        self.destination = destination
        self.reason = reason
        super().__init__(f"upload to {destination} failed: {reason}")


class TemplateError(RuntimeError):
    """A command template references a field the parameter set lacks."""


class WorkflowDefinitionError(ValueError):
    """Steps do not form a valid dependency graph."""


__all__ = [
    "BuildError",
    "Cancelled",
    "DispatchError",
    "InvalidParameter",
    "MissingParameter",
    "PollError",
    "RemoteExecutionFailed",
    "SubmissionError",
    "TemplateError",
    "TimedOut",
    "UploadError",
    "WorkflowDefinitionError",
]
