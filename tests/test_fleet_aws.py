from __future__ import annotations

import boto3
import pytest
from botocore.exceptions import InvalidRegionError
from botocore.stub import ANY, Stubber

from fleet_dispatch.config import DEFAULT_FAILURE_MARKER, DEFAULT_SUCCESS_MARKER
from fleet_dispatch.errors import PollError, SubmissionError
from fleet_dispatch.fleet.aws import CloudWatchLogSink, SsmFleetManager
from fleet_dispatch.fleet.base import StatusMarkers
from fleet_dispatch.schemas import ExecutionStatus


RECAP_OK = "i-0abc1234def567890 : ok=4    changed=2    unreachable=0    failed=0    skipped=0"
RECAP_FAILED = "i-0abc1234def567890 : ok=2    changed=0    unreachable=0    failed=1    skipped=0"


@pytest.fixture
def credentials(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.delenv("AWS_PROFILE", raising=False)


@pytest.fixture
def markers():
    return StatusMarkers(DEFAULT_SUCCESS_MARKER, DEFAULT_FAILURE_MARKER)


def test_send_command_carries_template_and_key(credentials, request_model):
    ssm = boto3.client("ssm", region_name="eu-west-1")
    expected = {
        "InstanceIds": [request_model.target_id],
        "DocumentName": "AWS-ApplyAnsiblePlaybooks",
        "Parameters": {
            "SourceType": ["S3"],
            "SourceInfo": ANY,
            "PlaybookFile": ["deploy/greeter.yml"],
            "TimeoutSeconds": ["600"],
        },
        "CloudWatchOutputConfig": {
            "CloudWatchOutputEnabled": True,
            "CloudWatchLogGroupName": "/ssm/greeter-release",
        },
        "Comment": "fleet-dispatch release-20261018-abc123",
    }
    with Stubber(ssm) as stubber:
        stubber.add_response("send_command", {"Command": {"CommandId": "3f1c6a2e-0000-4bb0-9a8e-2f1d7c9e1a55"}}, expected)
        fleet = SsmFleetManager(execution_timeout_seconds=600, client_factory=lambda region: ssm)
        result = fleet.submit(request_model, idempotency_key="release-20261018-abc123")
        stubber.assert_no_pending_responses()

    assert result.command_id == "3f1c6a2e-0000-4bb0-9a8e-2f1d7c9e1a55"
    assert result.log_sink == "/ssm/greeter-release"
    assert result.idempotency_key == "release-20261018-abc123"


def test_send_command_client_error_is_submission_error(credentials, request_model):
    ssm = boto3.client("ssm", region_name="eu-west-1")
    with Stubber(ssm) as stubber:
        stubber.add_client_error("send_command", service_error_code="InvalidInstanceId", service_message="not managed")
        fleet = SsmFleetManager(client_factory=lambda region: ssm)
        with pytest.raises(SubmissionError) as excinfo:
            fleet.submit(request_model)

    assert excinfo.value.code == "InvalidInstanceId"
    assert request_model.target_id in str(excinfo.value)


def _events(*messages):
    return [
        {"logStreamName": "cmd-1/i-0abc/runShellScript/stdout", "timestamp": 1760000000000 + index, "message": message}
        for index, message in enumerate(messages)
    ]


@pytest.mark.parametrize(
    "messages, expected",
    [
        ((), ExecutionStatus.PENDING),
        (("TASK [Install greeter] ***", "changed: [localhost]"), ExecutionStatus.IN_PROGRESS),
        (("PLAY RECAP ***", RECAP_OK), ExecutionStatus.SUCCEEDED),
        (("PLAY RECAP ***", RECAP_FAILED), ExecutionStatus.FAILED),
    ],
)
def test_cloudwatch_sink_maps_markers(credentials, markers, messages, expected):
    logs = boto3.client("logs", region_name="eu-west-1")
    with Stubber(logs) as stubber:
        stubber.add_response(
            "filter_log_events",
            {"events": _events(*messages)},
            {"logGroupName": "/ssm/greeter-release", "logStreamNamePrefix": "cmd-1"},
        )
        sink = CloudWatchLogSink("eu-west-1", markers, client_factory=lambda region: logs)
        assert sink.query("/ssm/greeter-release", "cmd-1") is expected


def test_cloudwatch_sink_error_is_poll_error(credentials, markers):
    logs = boto3.client("logs", region_name="eu-west-1")
    with Stubber(logs) as stubber:
        stubber.add_client_error("filter_log_events", service_error_code="ResourceNotFoundException")
        sink = CloudWatchLogSink("eu-west-1", markers, client_factory=lambda region: logs)
        with pytest.raises(PollError) as excinfo:
            sink.query("/ssm/missing", "cmd-1")

    assert "ResourceNotFoundException" in str(excinfo.value)
    assert excinfo.value.log_sink == "/ssm/missing"


def test_cloudwatch_sink_malformed_region_is_poll_error(credentials, markers):
    sink = CloudWatchLogSink("eu_west_1", markers)
    with pytest.raises(PollError) as excinfo:
        sink.query("/ssm/greeter-release", "cmd-1")
    assert excinfo.value.command_id == "cmd-1"


def test_send_command_client_creation_failure_is_submission_error(credentials, request_model):
    def broken_factory(region):
        raise InvalidRegionError(region_name=region)

    fleet = SsmFleetManager(client_factory=broken_factory)
    with pytest.raises(SubmissionError) as excinfo:
        fleet.submit(request_model)
    assert excinfo.value.target_id == request_model.target_id
