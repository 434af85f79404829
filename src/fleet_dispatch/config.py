"""Application configuration using Pydantic settings."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SUCCESS_MARKER = r"PLAY RECAP[\s\S]*\bunreachable=0\s+failed=0\b"
DEFAULT_FAILURE_MARKER = r"\bfailed=[1-9]\d*|\bunreachable=[1-9]\d*|^ERROR!|failed to run commands"


class FleetConfig(BaseModel):
    """Which fleet-management backend receives dispatched commands."""

    backend: Literal["aws", "local"] = "aws"
    document_name: str = "AWS-ApplyAnsiblePlaybooks"
    execution_timeout_seconds: int = 3600
    comment_prefix: str = "fleet-dispatch"


class PollConfig(BaseModel):
    """How the status poller reads the log sink."""

    interval_seconds: float = 5.0
    follow_timeout_seconds: float = 900.0
    success_marker: str = DEFAULT_SUCCESS_MARKER
    failure_marker: str = DEFAULT_FAILURE_MARKER


class PathsConfig(BaseModel):
    """Filesystem layout for run logs and the local backend."""

    state_dir: Path = Field(default_factory=lambda: Path.cwd() / ".fleet-dispatch")

    @property
    def runs_dir(self) -> Path:
        return self.state_dir / "runs"

    @property
    def local_sink_dir(self) -> Path:
        return self.state_dir / "sinks"


class Settings(BaseSettings):
    """Central application settings."""

    model_config = SettingsConfigDict(env_prefix="FLEET_DISPATCH_", env_nested_delimiter="__")

    dry_run: bool = False
    fleet: FleetConfig = Field(default_factory=FleetConfig)
    poll: PollConfig = Field(default_factory=PollConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Return settings as a JSON serialisable dictionary."""

        return self.model_dump(mode="json")


def load_settings(path: Optional[Path] = None, dry_run: bool = False) -> Settings:
    """
    Load settings from the environment, then apply JSON overrides from *path*.

    Keys missing from the file keep their environment or default values. The
    ``dry_run`` flag forces the local backend regardless of the file.
    """
    settings = Settings()
    if path is not None:
        with Path(path).expanduser().open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        settings = _apply_overrides(settings, data)

    if dry_run:
        settings.dry_run = True
    if settings.dry_run:
        settings.fleet.backend = "local"
    return settings


def _apply_overrides(settings: Settings, payload: Dict[str, Any]) -> Settings:
    merged = settings.model_dump()
    for section in ("fleet", "poll", "paths"):
        if section in payload:
            merged[section].update(payload[section])
    if "dry_run" in payload:
        merged["dry_run"] = bool(payload["dry_run"])
    return Settings.model_validate(merged)


__all__ = ["FleetConfig", "PathsConfig", "PollConfig", "Settings", "load_settings"]
