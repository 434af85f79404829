"""File-backed fleet and log sink used for dry runs and local rehearsals."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from ..errors import PollError, SubmissionError
from ..schemas import DispatchRequest, DispatchResult, ExecutionStatus
from .base import FleetManager, LogSinkClient, StatusMarkers


LOGGER = logging.getLogger("fleet_dispatch.fleet.local")

SIMULATED_RECAP = (
    "PLAY RECAP *********************************************************************\n"
    "{target} : ok=0    changed=0    unreachable=0    failed=0    skipped=0"
)


def sink_log_path(root: Path, log_sink: str, command_id: str) -> Path:
    """Location of a command's log inside a file-backed sink."""
    return Path(root) / log_sink.strip("/") / f"{command_id}.log"


class LocalFleetManager(FleetManager):
    """
    Accept requests without contacting any fleet.

    Each accepted request gets a log file in the file-backed sink. With
    ``simulate_success`` the file also receives a clean recap so that follow
    mode terminates during rehearsals.
    """

    def __init__(self, sink_root: Path, simulate_success: bool = True) -> None:
        self._sink_root = Path(sink_root)
        self._simulate_success = simulate_success
        self._by_key: Dict[str, DispatchResult] = {}
        self.submissions: List[DispatchRequest] = []

    def submit(self, request: DispatchRequest, idempotency_key: Optional[str] = None) -> DispatchResult:
        if idempotency_key and idempotency_key in self._by_key:
            LOGGER.info("Idempotency key %s already accepted; returning existing command", idempotency_key)
            return self._by_key[idempotency_key]

        command_id = f"local-{uuid.uuid4().hex[:12]}"
        log_path = sink_log_path(self._sink_root, request.log_sink, command_id)
        lines = [f"[dry-run] accepted {request.execution_directive} from {request.payload_uri} for {request.target_id}"]
        if self._simulate_success:
            lines.append(SIMULATED_RECAP.format(target=request.target_id))
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            log_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        except OSError as exc:
            raise SubmissionError(request.target_id, f"cannot write local sink {log_path}: {exc}") from exc

        result = DispatchResult(
            command_id=command_id,
            submitted_at=datetime.now(timezone.utc),
            target_id=request.target_id,
            log_sink=request.log_sink,
            idempotency_key=idempotency_key,
        )
        self.submissions.append(request)
        if idempotency_key:
            self._by_key[idempotency_key] = result
        return result


class FileLogSink(LogSinkClient):
    """Read ``<root>/<log_sink>/<command_id>.log``."""

    def __init__(self, root: Path, markers: StatusMarkers) -> None:
        self._root = Path(root)
        self._markers = markers

    def query(self, log_sink: str, command_id: str) -> ExecutionStatus:
        path = sink_log_path(self._root, log_sink, command_id)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ExecutionStatus.PENDING
        except UnicodeDecodeError as exc:
            raise PollError(log_sink, command_id, f"{path} is not UTF-8 text") from exc
        except OSError as exc:
            raise PollError(log_sink, command_id, str(exc)) from exc
        return self._markers.classify(text.splitlines())


__all__ = ["FileLogSink", "LocalFleetManager", "sink_log_path"]
