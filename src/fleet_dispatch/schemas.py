"""Shared data models for the dispatch coordinator."""
from __future__ import annotations

import json
import re
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import jsonschema
from pydantic import BaseModel, ConfigDict, Field, field_validator


SCHEMA_PATH = Path(__file__).parent / "json_schema" / "dispatch_request.schema.json"

REQUEST_FIELDS = ("target_id", "payload_uri", "execution_directive", "log_sink", "region")

_REGION_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
_S3_HTTPS_PATTERN = re.compile(
    r"^https://s3\.[a-z0-9]+(?:-[a-z0-9]+)*\.amazonaws\.com/(?P<bucket>[^/]+)/(?P<key>.+)$"
)


def load_schema() -> Dict:
    """Load the wire-form JSON schema from disk."""

    with SCHEMA_PATH.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def object_store_location(uri: str) -> Optional[str]:
    """Return why *uri* is not an object store location, or ``None`` if it is."""

    parsed = urlparse(uri)
    if not parsed.scheme:
        return "expected a URI such as s3://bucket/key"
    if parsed.scheme == "file":
        return None if parsed.path not in ("", "/") else "file URI has no path"
    if not parsed.netloc:
        return f"{parsed.scheme} URI has no bucket or host"
    if not parsed.path.strip("/"):
        return f"{parsed.scheme} URI has no object key"
    if parsed.scheme == "s3" and ("?" in uri or "#" in uri):
        return "s3 URI cannot carry a query or fragment"
    return None


def region_name(region: str) -> Optional[str]:
    """Return why *region* is not a region name such as ``eu-west-1``, or ``None``."""

    if not _REGION_PATTERN.match(region):
        return "expected a lowercase region name such as eu-west-1"
    return None


class ExecutionStatus(str, Enum):
    """Observed state of a dispatched command."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.SUCCEEDED, ExecutionStatus.FAILED)


class StepStatus(str, Enum):
    """Lifecycle states of a single workflow step."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    """Lifecycle states tracked for a workflow run."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class DispatchRequest(BaseModel):
    """Remote command request handed to the fleet manager."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    target_id: str = Field(..., min_length=1, description="Fleet-managed node identifier.")
    payload_uri: str = Field(..., min_length=1, description="Object store location of the payload bundle.")
    execution_directive: str = Field(..., min_length=1, description="Playbook or script run on the node.")
    log_sink: str = Field(..., min_length=1, description="Destination the node writes command output to.")
    region: str = Field(..., min_length=1)

    @field_validator("payload_uri")
    @classmethod
    def _check_payload_uri(cls, value: str) -> str:
        problem = object_store_location(value)
        if problem:
            raise ValueError(problem)
        return value

    @field_validator("region")
    @classmethod
    def _check_region(cls, value: str) -> str:
        problem = region_name(value)
        if problem:
            raise ValueError(problem)
        return value

    def to_wire(self) -> Dict[str, Any]:
        """Render the request as a remote-execution template document."""

        parsed = urlparse(self.payload_uri)
        if parsed.scheme == "s3":
            source_type = "S3"
            # path always starts with the one "/" separating bucket and key
            path = f"https://s3.{self.region}.amazonaws.com/{parsed.netloc}/{parsed.path[1:]}"
        else:
            source_type = "HTTP"
            path = self.payload_uri
        return {
            "InstanceIds": [self.target_id],
            "Parameters": {
                "SourceType": [source_type],
                "SourceInfo": [json.dumps({"path": path}, sort_keys=True)],
                "PlaybookFile": [self.execution_directive],
            },
            "CloudWatchOutputConfig": {
                "CloudWatchOutputEnabled": True,
                "CloudWatchLogGroupName": self.log_sink,
            },
            "Region": self.region,
        }

    @classmethod
    def from_wire(cls, document: Dict[str, Any]) -> "DispatchRequest":
        """Validate a template document against the schema and parse it back."""

        jsonschema.validate(document, load_schema())
        parameters = document["Parameters"]
        try:
            source_info = json.loads(parameters["SourceInfo"][0])
        except json.JSONDecodeError as exc:
            raise ValueError(f"SourceInfo is not valid JSON: {exc}") from exc
        path = source_info.get("path")
        if not isinstance(path, str):
            raise ValueError("SourceInfo has no path")
        payload_uri = path
        if parameters["SourceType"][0] == "S3":
            match = _S3_HTTPS_PATTERN.match(path)
            if not match:
                raise ValueError(f"S3 source path is not an S3 URL: {path}")
            payload_uri = f"s3://{match.group('bucket')}/{match.group('key')}"
        return cls(
            target_id=document["InstanceIds"][0],
            payload_uri=payload_uri,
            execution_directive=parameters["PlaybookFile"][0],
            log_sink=document["CloudWatchOutputConfig"]["CloudWatchLogGroupName"],
            region=document["Region"],
        )


class DispatchResult(BaseModel):
    """Acknowledgement returned once the fleet manager accepts a request."""

    model_config = ConfigDict(frozen=True)

    command_id: str = Field(..., min_length=1)
    submitted_at: datetime
    target_id: str
    log_sink: str
    idempotency_key: Optional[str] = None


__all__ = [
    "DispatchRequest",
    "DispatchResult",
    "ExecutionStatus",
    "REQUEST_FIELDS",
    "RunStatus",
    "StepStatus",
    "load_schema",
    "object_store_location",
    "region_name",
]
