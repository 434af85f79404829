"""AWS Systems Manager and CloudWatch Logs adapters."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import PollError, SubmissionError
from ..schemas import DispatchRequest, DispatchResult, ExecutionStatus
from .base import FleetManager, LogSinkClient, StatusMarkers


LOGGER = logging.getLogger("fleet_dispatch.fleet.aws")

ClientFactory = Callable[[str], Any]


def _client_error_code(exc: Exception) -> Optional[str]:
    if isinstance(exc, ClientError):
        return str(exc.response.get("Error", {}).get("Code") or "ClientError")
    return None


class _RegionalClients:
    """Cache one boto3 client per region."""

    def __init__(self, service: str, factory: Optional[ClientFactory] = None) -> None:
        self._service = service
        self._factory = factory or (lambda region: boto3.client(service, region_name=region))
        self._clients: Dict[str, Any] = {}

    def get(self, region: str) -> Any:
        if region not in self._clients:
            self._clients[region] = self._factory(region)
        return self._clients[region]


class SsmFleetManager(FleetManager):
    """Submit requests through ``ssm.send_command`` with CloudWatch output enabled."""

    def __init__(
        self,
        document_name: str = "AWS-ApplyAnsiblePlaybooks",
        execution_timeout_seconds: int = 3600,
        comment_prefix: str = "fleet-dispatch",
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self._document_name = document_name
        self._execution_timeout = execution_timeout_seconds
        self._comment_prefix = comment_prefix
        self._clients = _RegionalClients("ssm", client_factory)

    def submit(self, request: DispatchRequest, idempotency_key: Optional[str] = None) -> DispatchResult:
        wire = request.to_wire()
        parameters = dict(wire["Parameters"])
        parameters["TimeoutSeconds"] = [str(self._execution_timeout)]
        comment = self._comment_prefix
        if idempotency_key:
            comment = f"{comment} {idempotency_key}"

        try:
            ssm = self._clients.get(request.region)
            response = ssm.send_command(
                InstanceIds=wire["InstanceIds"],
                DocumentName=self._document_name,
                Parameters=parameters,
                CloudWatchOutputConfig=wire["CloudWatchOutputConfig"],
                Comment=comment[:100],
            )
        except (BotoCoreError, ClientError) as exc:
            raise SubmissionError(request.target_id, str(exc), code=_client_error_code(exc)) from exc

        command_id = (response.get("Command") or {}).get("CommandId")
        if not command_id:
            raise SubmissionError(request.target_id, "send_command response carried no CommandId")
        LOGGER.debug("ssm accepted command %s for %s in %s", command_id, request.target_id, request.region)
        return DispatchResult(
            command_id=command_id,
            submitted_at=datetime.now(timezone.utc),
            target_id=request.target_id,
            log_sink=request.log_sink,
            idempotency_key=idempotency_key,
        )


class CloudWatchLogSink(LogSinkClient):
    """Read command output from the log streams SSM writes per command id."""

    def __init__(self, region: str, markers: StatusMarkers, client_factory: Optional[ClientFactory] = None) -> None:
        self._region = region
        self._markers = markers
        self._clients = _RegionalClients("logs", client_factory)

    def query(self, log_sink: str, command_id: str) -> ExecutionStatus:
        events: List[Dict[str, Any]] = []
        try:
            logs = self._clients.get(self._region)
            paginator = logs.get_paginator("filter_log_events")
            for page in paginator.paginate(logGroupName=log_sink, logStreamNamePrefix=command_id):
                events.extend(page.get("events", []))
        except (BotoCoreError, ClientError) as exc:
            code = _client_error_code(exc)
            reason = f"{code}: {exc}" if code else str(exc)
            raise PollError(log_sink, command_id, reason) from exc

        events.sort(key=lambda event: event.get("timestamp", 0))
        try:
            lines = [str(event["message"]) for event in events]
        except KeyError as exc:
            raise PollError(log_sink, command_id, "log event without message") from exc
        return self._markers.classify(lines)


__all__ = ["CloudWatchLogSink", "SsmFleetManager"]
