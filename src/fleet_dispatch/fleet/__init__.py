"""
Fleet-management and log-sink capabilities.

The coordinator only talks to these interfaces; the AWS adapters and the
file-backed local backend are chosen by :class:`FleetClientFactory`.
"""

from __future__ import annotations

from typing import Tuple

from ..config import Settings
from .aws import CloudWatchLogSink, SsmFleetManager
from .base import FleetManager, LogSinkClient, StatusMarkers
from .local import FileLogSink, LocalFleetManager


class FleetClientFactory:
    """Factory for building the fleet manager and log sink from settings."""

    @staticmethod
    def markers(settings: Settings) -> StatusMarkers:
        return StatusMarkers(settings.poll.success_marker, settings.poll.failure_marker)

    @staticmethod
    def create(settings: Settings, region: str) -> Tuple[FleetManager, LogSinkClient]:
        markers = FleetClientFactory.markers(settings)
        if settings.dry_run or settings.fleet.backend == "local":
            sink_root = settings.paths.local_sink_dir
            return LocalFleetManager(sink_root), FileLogSink(sink_root, markers)
        fleet = SsmFleetManager(
            document_name=settings.fleet.document_name,
            execution_timeout_seconds=settings.fleet.execution_timeout_seconds,
            comment_prefix=settings.fleet.comment_prefix,
        )
        return fleet, CloudWatchLogSink(region, markers)


__all__ = [
    "CloudWatchLogSink",
    "FileLogSink",
    "FleetClientFactory",
    "FleetManager",
    "LocalFleetManager",
    "LogSinkClient",
    "SsmFleetManager",
    "StatusMarkers",
]
