from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

import pytest

from fleet_dispatch.errors import SubmissionError
from fleet_dispatch.fleet.base import FleetManager, LogSinkClient
from fleet_dispatch.schemas import DispatchRequest, DispatchResult, ExecutionStatus


class RecordingFleet(FleetManager):
    """Fleet manager stub returning a fixed command id."""

    def __init__(self, command_id: str = "cmd-0123456789", failures: int = 0) -> None:
        self.command_id = command_id
        self.failures = failures
        self.calls: List[DispatchRequest] = []
        self.keys: List[Optional[str]] = []

    def submit(self, request: DispatchRequest, idempotency_key: Optional[str] = None) -> DispatchResult:
        self.calls.append(request)
        self.keys.append(idempotency_key)
        if self.failures:
            self.failures -= 1
            raise SubmissionError(request.target_id, "ThrottlingException", code="ThrottlingException")
        return DispatchResult(
            command_id=self.command_id,
            submitted_at=datetime.now(timezone.utc),
            target_id=request.target_id,
            log_sink=request.log_sink,
            idempotency_key=idempotency_key,
        )


class ScriptedSink(LogSinkClient):
    """Log sink returning a scripted sequence, repeating the last entry."""

    def __init__(self, statuses: Iterable[ExecutionStatus]) -> None:
        self.statuses = list(statuses)
        self.queries = 0

    def query(self, log_sink: str, command_id: str) -> ExecutionStatus:
        index = min(self.queries, len(self.statuses) - 1)
        self.queries += 1
        return self.statuses[index]


@pytest.fixture
def params() -> Dict[str, str]:
    return {
        "target_id": "i-0abc1234def567890",
        "payload_uri": "s3://release-bucket/greeter/greeter-1.4.2.zip",
        "execution_directive": "deploy/greeter.yml",
        "log_sink": "/ssm/greeter-release",
        "region": "eu-west-1",
    }


@pytest.fixture
def request_model(params) -> DispatchRequest:
    return DispatchRequest(**params)
