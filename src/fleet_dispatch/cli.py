from __future__ import annotations

import signal
import sys
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .artifacts import uploader_for
from .builder import build_request
from .config import Settings, load_settings
from .dispatcher import Dispatcher, submit_with_retry
from .errors import Cancelled, DispatchError
from .fleet import FleetClientFactory
from .fleet.local import sink_log_path
from .logging_config import configure_logging
from .orchestrator import ReleaseCoordinator, ReleasePlan, WorkflowRun, generate_run_id
from .poller import StatusPoller
from .runner import CommandRunner
from .schemas import DispatchResult, ExecutionStatus, RunStatus
from .validation import validate_parameters


EXIT_FAILED = 1
EXIT_TIMED_OUT = 3
EXIT_CANCELLED = 130

console = Console()


def _dispatch_parameters(func):
    options = [
        click.option("--target-id", envvar="FLEET_TARGET_ID", default=None, help="Fleet-managed node to run on."),
        click.option("--payload-uri", envvar="FLEET_PAYLOAD_URI", default=None, help="Object store location of the payload."),
        click.option(
            "--execution-directive",
            envvar="FLEET_EXECUTION_DIRECTIVE",
            default=None,
            help="Playbook or script the node executes.",
        ),
        click.option("--log-sink", envvar="FLEET_LOG_SINK", default=None, help="Log group receiving command output."),
        click.option("--region", envvar="FLEET_REGION", default=None, help="Region of the fleet manager."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _collect(**values: Optional[str]) -> Dict[str, Optional[str]]:
    return dict(values)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, message="Fleet Dispatch CLI %(version)s")
@click.option("--config", "config_path", type=click.Path(exists=True, path_type=Path), default=None)
@click.option("--dry-run", is_flag=True, default=False, help="Use the local backend; nothing leaves this machine.")
@click.option("--verbose", is_flag=True, default=False, help="Increase logging verbosity.")
@click.option("--rich-logs", is_flag=True, default=False, help="Render log records with Rich.")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[Path], dry_run: bool, verbose: bool, rich_logs: bool) -> None:
    """Dispatch release commands to fleet-managed nodes without SSH."""

    configure_logging(verbose=verbose, rich_output=rich_logs)
    ctx.obj = load_settings(config_path, dry_run=dry_run)


@main.command()
@_dispatch_parameters
@click.option("--follow", is_flag=True, default=False, help="Wait for a terminal status in the log sink.")
@click.option("--timeout", type=float, default=None, help="Seconds to follow before giving up.")
@click.option("--attempts", type=click.IntRange(min=1), default=1, help="Submission attempts (same idempotency key).")
@click.option("--idempotency-key", type=str, default=None, help="Reuse a key from an earlier attempt.")
@click.pass_obj
def dispatch(
    settings: Settings,
    target_id: Optional[str],
    payload_uri: Optional[str],
    execution_directive: Optional[str],
    log_sink: Optional[str],
    region: Optional[str],
    follow: bool,
    timeout: Optional[float],
    attempts: int,
    idempotency_key: Optional[str],
) -> None:
    """Submit one remote command and print its command id."""

    params = _collect(
        target_id=target_id,
        payload_uri=payload_uri,
        execution_directive=execution_directive,
        log_sink=log_sink,
        region=region,
    )
    try:
        request = build_request(validate_parameters(params))
    except DispatchError as exc:
        raise click.ClickException(str(exc)) from exc

    fleet, sink = FleetClientFactory.create(settings, request.region)
    key = idempotency_key or uuid.uuid4().hex
    try:
        result = submit_with_retry(Dispatcher(fleet), request, attempts=attempts, idempotency_key=key)
    except DispatchError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(f"Command ID: {result.command_id}")
    click.echo(f"Idempotency key: {key}")
    click.echo(_tail_hint(settings, request.region, result))

    if follow:
        poller = StatusPoller(sink, interval=settings.poll.interval_seconds)
        _follow_and_exit(poller, result.log_sink, result.command_id, _timeout(settings, timeout))


@main.command()
@click.argument("command_id")
@click.option("--log-sink", envvar="FLEET_LOG_SINK", default=None, help="Log group receiving command output.")
@click.option("--region", envvar="FLEET_REGION", default=None, help="Region of the log sink.")
@click.option("--follow", is_flag=True, default=False, help="Wait for a terminal status.")
@click.option("--timeout", type=float, default=None, help="Seconds to follow before giving up.")
@click.pass_obj
def status(
    settings: Settings,
    command_id: str,
    log_sink: Optional[str],
    region: Optional[str],
    follow: bool,
    timeout: Optional[float],
) -> None:
    """Read a dispatched command's status from the log sink."""

    try:
        params = validate_parameters(_collect(log_sink=log_sink, region=region), required=("log_sink", "region"))
    except DispatchError as exc:
        raise click.ClickException(str(exc)) from exc

    _, sink = FleetClientFactory.create(settings, params["region"])
    poller = StatusPoller(sink, interval=settings.poll.interval_seconds)
    if follow:
        _follow_and_exit(poller, params["log_sink"], command_id, _timeout(settings, timeout))
        return
    try:
        current = poller.poll(params["log_sink"], command_id)
    except DispatchError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"{command_id}: {current.value}")
    if current is ExecutionStatus.FAILED:
        sys.exit(EXIT_FAILED)


@main.command()
@_dispatch_parameters
@click.option("--artifact", type=click.Path(path_type=Path), required=True, help="Payload bundle to upload.")
@click.option("--build-command", type=str, default=None, help="Command that produces the artifact.")
@click.option("--build-cwd", type=click.Path(file_okay=False, path_type=Path), default=None)
@click.option("--follow", is_flag=True, default=False, help="Observe the command until it finishes.")
@click.option("--timeout", type=float, default=None, help="Seconds to follow before giving up.")
@click.option("--attempts", type=click.IntRange(min=1), default=1, help="Submission attempts (same idempotency key).")
@click.option("--run-id", type=str, default=None, help="Override generated run identifier.")
@click.pass_obj
def release(
    settings: Settings,
    target_id: Optional[str],
    payload_uri: Optional[str],
    execution_directive: Optional[str],
    log_sink: Optional[str],
    region: Optional[str],
    artifact: Path,
    build_command: Optional[str],
    build_cwd: Optional[Path],
    follow: bool,
    timeout: Optional[float],
    attempts: int,
    run_id: Optional[str],
) -> None:
    """Run build -> upload -> dispatch (-> observe) as one release."""

    params = _collect(
        target_id=target_id,
        payload_uri=payload_uri,
        execution_directive=execution_directive,
        log_sink=log_sink,
        region=region,
    )
    try:
        validated = validate_parameters(params)
        uploader = uploader_for(validated["payload_uri"], validated["region"], dry_run=settings.dry_run)
    except DispatchError as exc:
        raise click.ClickException(str(exc)) from exc

    run_id = run_id or generate_run_id()
    fleet, sink = FleetClientFactory.create(settings, validated["region"])
    coordinator = ReleaseCoordinator(
        dispatcher=Dispatcher(fleet),
        poller=StatusPoller(sink, interval=settings.poll.interval_seconds),
        uploader=uploader,
        runner=CommandRunner(settings.paths.runs_dir / run_id, dry_run=settings.dry_run),
    )
    plan = ReleasePlan(
        params=validated,
        artifact=artifact.resolve(),
        build_command=build_command,
        build_cwd=build_cwd,
        follow=follow,
        follow_timeout=_timeout(settings, timeout),
        submit_attempts=attempts,
    )
    with _cancel_on_interrupt(coordinator.cancel):
        run = coordinator.release(plan, run_id=run_id)

    _print_run(run)
    result = run.dispatch_result
    if result is not None and not follow:
        click.echo(_tail_hint(settings, validated["region"], result))
    if run.status is not RunStatus.SUCCEEDED:
        failed = run.failed_step
        if failed is not None and failed.error_kind == "Cancelled":
            sys.exit(EXIT_CANCELLED)
        if failed is not None and failed.error_kind == "TimedOut":
            sys.exit(EXIT_TIMED_OUT)
        sys.exit(EXIT_FAILED)


def _timeout(settings: Settings, override: Optional[float]) -> float:
    return settings.poll.follow_timeout_seconds if override is None else override


def _tail_hint(settings: Settings, region: str, result: DispatchResult) -> str:
    if settings.dry_run or settings.fleet.backend == "local":
        path = sink_log_path(settings.paths.local_sink_dir, result.log_sink, result.command_id)
        return f"Tail the log sink with: tail -f {path}"
    return (
        "Tail the log sink with: "
        f"aws logs tail {result.log_sink} --follow --log-stream-name-prefix {result.command_id} --region {region}"
    )


@contextmanager
def _cancel_on_interrupt(cancel) -> Iterator[None]:
    """Route Ctrl-C into *cancel* while a run or follow wait is in progress."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    previous = signal.getsignal(signal.SIGINT)
    signal.signal(signal.SIGINT, lambda *_: cancel())
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _follow_and_exit(poller: StatusPoller, log_sink: str, command_id: str, timeout: float) -> None:
    cancel_event = threading.Event()
    try:
        with _cancel_on_interrupt(cancel_event.set):
            outcome = poller.follow(log_sink, command_id, timeout=timeout, cancel_event=cancel_event)
    except Cancelled as exc:
        click.echo(str(exc), err=True)
        sys.exit(EXIT_CANCELLED)
    except DispatchError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(f"{command_id}: {outcome.value}")
    if outcome is ExecutionStatus.FAILED:
        sys.exit(EXIT_FAILED)
    if outcome is ExecutionStatus.TIMED_OUT:
        sys.exit(EXIT_TIMED_OUT)


def _print_run(run: WorkflowRun) -> None:
    table = Table(title=f"Release {run.run_id}", show_lines=True)
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Details")

    for record in run.steps:
        if record.error:
            details = f"{record.error_kind}: {record.error}"
        elif isinstance(record.artifact, DispatchResult):
            details = f"command {record.artifact.command_id}"
        elif record.artifact is not None:
            details = str(getattr(record.artifact, "value", record.artifact))
        else:
            details = ""
        table.add_row(record.name, record.status.value, details)

    console.print(table)
    console.print(f"Status: {run.status.value}")


if __name__ == "__main__":  # pragma: no cover
    main()
