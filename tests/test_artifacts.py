from __future__ import annotations

import boto3
import pytest
from botocore.stub import ANY, Stubber

from fleet_dispatch.artifacts import DryRunUploader, LocalUploader, S3Uploader, uploader_for
from fleet_dispatch.errors import UploadError


@pytest.fixture
def artifact(tmp_path):
    path = tmp_path / "greeter.zip"
    path.write_bytes(b"PK\x03\x04payload")
    return path


def test_s3_upload_puts_object(monkeypatch, artifact):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    s3 = boto3.client("s3", region_name="eu-west-1")
    with Stubber(s3) as stubber:
        stubber.add_response("put_object", {"ETag": '"abc"'}, {"Bucket": "release-bucket", "Key": "greeter/1.4.2.zip", "Body": ANY})
        uri = S3Uploader("eu-west-1", client=s3).upload(artifact, "s3://release-bucket/greeter/1.4.2.zip")
        stubber.assert_no_pending_responses()
    assert uri == "s3://release-bucket/greeter/1.4.2.zip"


def test_s3_upload_error(monkeypatch, artifact):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    s3 = boto3.client("s3", region_name="eu-west-1")
    with Stubber(s3) as stubber:
        stubber.add_client_error("put_object", service_error_code="AccessDenied")
        with pytest.raises(UploadError) as excinfo:
            S3Uploader("eu-west-1", client=s3).upload(artifact, "s3://release-bucket/greeter.zip")
    assert excinfo.value.destination == "s3://release-bucket/greeter.zip"


def test_local_upload_copies_file(tmp_path, artifact):
    destination = tmp_path / "bucket" / "greeter.zip"
    LocalUploader().upload(artifact, destination.as_uri())
    assert destination.read_bytes() == artifact.read_bytes()


def test_dry_run_upload_leaves_missing_artifact_to_build(tmp_path):
    uri = DryRunUploader().upload(tmp_path / "absent.zip", "s3://release-bucket/greeter.zip")
    assert uri == "s3://release-bucket/greeter.zip"
    assert not (tmp_path / "absent.zip").exists()


def test_s3_upload_keeps_key_verbatim(monkeypatch, artifact):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    s3 = boto3.client("s3", region_name="eu-west-1")
    with Stubber(s3) as stubber:
        stubber.add_response("put_object", {"ETag": '"abc"'}, {"Bucket": "release-bucket", "Key": "/greeter.zip", "Body": ANY})
        S3Uploader("eu-west-1", client=s3).upload(artifact, "s3://release-bucket//greeter.zip")
        stubber.assert_no_pending_responses()


def test_s3_upload_with_malformed_region_is_upload_error(monkeypatch, artifact):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    with pytest.raises(UploadError) as excinfo:
        S3Uploader("eu_west_1").upload(artifact, "s3://release-bucket/greeter.zip")
    assert excinfo.value.destination == "s3://release-bucket/greeter.zip"


def test_uploader_for_scheme(monkeypatch):
    monkeypatch.setattr("fleet_dispatch.artifacts.boto3.client", lambda *args, **kwargs: object())
    assert isinstance(uploader_for("file:///tmp/greeter.zip", "eu-west-1"), LocalUploader)
    assert isinstance(uploader_for("s3://bucket/greeter.zip", "eu-west-1", dry_run=True), DryRunUploader)
    assert isinstance(uploader_for("s3://bucket/greeter.zip", "eu-west-1"), S3Uploader)
    with pytest.raises(UploadError):
        uploader_for("ftp://host/greeter.zip", "eu-west-1")
