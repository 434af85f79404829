"""Payload preparation: building the artifact and placing it in object storage."""
from __future__ import annotations

import logging
import shlex
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional, Sequence, Union
from urllib.parse import urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import BuildError, UploadError
from .runner import CommandRunner


LOGGER = logging.getLogger("fleet_dispatch.artifacts")


def run_build(runner: CommandRunner, command: Union[str, Sequence[str]], cwd: Path) -> Path:
    """Run the build command and return its log path, raising :class:`BuildError` on failure."""

    argv = shlex.split(command) if isinstance(command, str) else list(command)
    result = runner.run(argv, cwd=cwd)
    if result.reason == "dry-run":
        LOGGER.info("Dry-run: build command not executed (%s)", " ".join(argv))
    elif not result.ok or result.reason:
        detail = result.stderr.strip().splitlines()[-1] if result.stderr.strip() else result.reason or "no output"
        raise BuildError(f"build command {' '.join(argv)!r} exited {result.return_code}: {detail} (log: {result.log_path})")
    return result.log_path


class ArtifactUploader(ABC):
    """Places a local artifact at a payload location."""

    @abstractmethod
    def upload(self, source: Path, destination: str) -> str:
        """Copy *source* to *destination* and return the destination URI."""


class S3Uploader(ArtifactUploader):
    """Upload to ``s3://bucket/key`` with ``put_object``."""

    def __init__(self, region: str, client: Optional[Any] = None) -> None:
        self._region = region
        self._client = client

    def _s3(self) -> Any:
        if self._client is None:
            self._client = boto3.client("s3", region_name=self._region)
        return self._client

    def upload(self, source: Path, destination: str) -> str:
        parsed = urlparse(destination)
        if parsed.scheme != "s3" or not parsed.netloc or not parsed.path.strip("/"):
            raise UploadError(destination, "expected s3://bucket/key")
        bucket, key = parsed.netloc, parsed.path[1:]
        try:
            s3 = self._s3()
            with Path(source).open("rb") as body:
                s3.put_object(Bucket=bucket, Key=key, Body=body)
        except OSError as exc:
            raise UploadError(destination, f"cannot read {source}: {exc}") from exc
        except (BotoCoreError, ClientError) as exc:
            raise UploadError(destination, str(exc)) from exc
        LOGGER.info("Uploaded %s to %s", source, destination)
        return destination


class LocalUploader(ArtifactUploader):
    """Copy to a ``file://`` destination, for rehearsals against the local backend."""

    def upload(self, source: Path, destination: str) -> str:
        parsed = urlparse(destination)
        if parsed.scheme != "file":
            raise UploadError(destination, "expected a file:// URI")
        target = Path(parsed.path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
        except OSError as exc:
            raise UploadError(destination, str(exc)) from exc
        LOGGER.info("Copied %s to %s", source, target)
        return destination


class DryRunUploader(ArtifactUploader):
    """Log the upload but leave remote storage untouched."""

    def upload(self, source: Path, destination: str) -> str:
        if not Path(source).is_file():
            LOGGER.warning("Dry-run: artifact %s does not exist yet", source)
        LOGGER.info("Dry-run: would upload %s to %s", source, destination)
        return destination


def uploader_for(destination: str, region: str, dry_run: bool = False) -> ArtifactUploader:
    """Pick the uploader matching the scheme of *destination*."""

    scheme = urlparse(destination).scheme
    if scheme == "file":
        return LocalUploader()
    if dry_run:
        return DryRunUploader()
    if scheme == "s3":
        return S3Uploader(region)
    raise UploadError(destination, f"unsupported payload scheme {scheme or '(none)'}")


__all__ = [
    "ArtifactUploader",
    "DryRunUploader",
    "LocalUploader",
    "S3Uploader",
    "run_build",
    "uploader_for",
]
