from __future__ import annotations

import json

import jsonschema
import pytest
from pydantic import ValidationError

from fleet_dispatch.builder import CommandTemplate, build_request
from fleet_dispatch.errors import TemplateError
from fleet_dispatch.schemas import DispatchRequest


def test_build_is_order_independent(params):
    reordered = dict(reversed(list(params.items())))
    reordered["unrelated"] = "ignored"
    first = build_request(params)
    second = build_request(reordered)
    assert first == second
    assert first == build_request(params)
    assert first.target_id == params["target_id"]


def test_custom_template_maps_parameter_keys(params):
    renamed = {
        "INSTANCE_ID": params["target_id"],
        "S3_URI": params["payload_uri"],
        "PLAYBOOK": params["execution_directive"],
        "LOG_GROUP": params["log_sink"],
        "AWS_REGION": params["region"],
    }
    template = CommandTemplate.from_mapping(
        {
            "target_id": "INSTANCE_ID",
            "payload_uri": "S3_URI",
            "execution_directive": "PLAYBOOK",
            "log_sink": "LOG_GROUP",
            "region": "AWS_REGION",
        }
    )
    assert build_request(renamed, template) == build_request(params)


def test_absent_template_field_is_an_invariant_violation(params):
    del params["region"]
    with pytest.raises(TemplateError):
        build_request(params)


def test_template_must_cover_every_request_field():
    with pytest.raises(TemplateError):
        CommandTemplate.from_mapping({"target_id": "target_id"})


def test_request_is_immutable(request_model):
    with pytest.raises(ValidationError):
        request_model.region = "us-east-1"


def test_request_rejects_empty_fields(params):
    params["execution_directive"] = " "
    with pytest.raises(ValidationError):
        DispatchRequest(**params)


def test_wire_form_round_trip(request_model):
    wire = request_model.to_wire()
    assert wire["InstanceIds"] == [request_model.target_id]
    assert wire["Parameters"]["SourceType"] == ["S3"]
    source = json.loads(wire["Parameters"]["SourceInfo"][0])
    assert source["path"] == "https://s3.eu-west-1.amazonaws.com/release-bucket/greeter/greeter-1.4.2.zip"
    assert wire["CloudWatchOutputConfig"]["CloudWatchLogGroupName"] == "/ssm/greeter-release"

    parsed = DispatchRequest.from_wire(json.loads(json.dumps(wire)))
    assert parsed == request_model
    assert parsed.model_dump() == request_model.model_dump()


def test_wire_round_trip_for_non_s3_payload(params):
    params["payload_uri"] = "https://artifacts.example.com/greeter/greeter-1.4.2.zip"
    request = DispatchRequest(**params)
    wire = request.to_wire()
    assert wire["Parameters"]["SourceType"] == ["HTTP"]
    assert DispatchRequest.from_wire(wire) == request


def test_wire_form_is_schema_checked(request_model):
    wire = request_model.to_wire()
    del wire["Region"]
    with pytest.raises(jsonschema.ValidationError):
        DispatchRequest.from_wire(wire)


@pytest.mark.parametrize(
    "payload_uri",
    [
        "s3://release-bucket//greeter.zip",
        "s3://release-bucket/greeter/with space/greeter-1.4.2.zip",
        "s3://release-bucket/greeter/",
        "https://artifacts.example.com/greeter.zip?version=3#sha256",
    ],
)
def test_wire_round_trip_keeps_payload_exactly(params, payload_uri):
    params["payload_uri"] = payload_uri
    request = DispatchRequest(**params)
    assert DispatchRequest.from_wire(json.loads(json.dumps(request.to_wire()))) == request


@pytest.mark.parametrize("region", ["us-gov-west-1", "cn-north-1", "ap-southeast-2"])
def test_wire_round_trip_across_regions(params, region):
    params["region"] = region
    request = DispatchRequest(**params)
    assert DispatchRequest.from_wire(request.to_wire()) == request


@pytest.mark.parametrize(
    "field, value",
    [
        ("payload_uri", "s3://release-bucket/greeter.zip?versionId=3"),
        ("payload_uri", "s3://release-bucket/greeter.zip#latest"),
        ("region", "EU-WEST-1"),
        ("region", "eu_west_1"),
    ],
)
def test_request_rejects_values_without_a_wire_form(params, field, value):
    params[field] = value
    with pytest.raises(ValidationError):
        DispatchRequest(**params)
