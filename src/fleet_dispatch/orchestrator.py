from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence

from .artifacts import ArtifactUploader, run_build
from .builder import DEFAULT_TEMPLATE, CommandTemplate, build_request
from .dispatcher import Dispatcher, submit_with_retry
from .errors import BuildError, RemoteExecutionFailed, TimedOut, WorkflowDefinitionError
from .poller import StatusPoller
from .runner import CommandRunner
from .schemas import DispatchRequest, DispatchResult, ExecutionStatus, RunStatus, StepStatus
from .validation import validate_parameters


LOGGER = logging.getLogger("fleet_dispatch.orchestrator")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def generate_run_id() -> str:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"release-{timestamp}-{uuid.uuid4().hex[:6]}"


@dataclass
class StepContext:
    """State handed to each step action."""

    run_id: str
    cancel_event: threading.Event
    artifacts: Dict[str, Any] = field(default_factory=dict)


StepAction = Callable[[StepContext], Any]


@dataclass(frozen=True)
class Step:
    """A named unit of work and the steps it waits on."""

    name: str
    action: StepAction
    depends_on: FrozenSet[str] = frozenset()

    @classmethod
    def of(cls, name: str, action: StepAction, depends_on: Iterable[str] = ()) -> "Step":
        return cls(name=name, action=action, depends_on=frozenset(depends_on))


@dataclass
class StepRecord:
    """Observed state of one step within a run."""

    name: str
    depends_on: FrozenSet[str]
    status: StepStatus = StepStatus.PENDING
    artifact: Any = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass
class WorkflowRun:
    """One release attempt. Lives only as long as the invocation that created it."""

    run_id: str
    steps: List[StepRecord]
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None
    request: Optional[DispatchRequest] = None

    def step(self, name: str) -> StepRecord:
        for record in self.steps:
            if record.name == name:
                return record
        raise KeyError(name)

    @property
    def failed_step(self) -> Optional[StepRecord]:
        return next((record for record in self.steps if record.status is StepStatus.FAILED), None)

    @property
    def dispatch_result(self) -> Optional[DispatchResult]:
        for record in self.steps:
            if isinstance(record.artifact, DispatchResult):
                return record.artifact
        return None


def _topological_order(steps: Sequence[Step]) -> List[Step]:
    names = [step.name for step in steps]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise WorkflowDefinitionError(f"duplicate step names: {', '.join(duplicates)}")
    declared = set(names)
    for step in steps:
        unknown = sorted(step.depends_on - declared)
        if unknown:
            raise WorkflowDefinitionError(f"step {step.name} depends on undeclared steps: {', '.join(unknown)}")

    ordered: List[Step] = []
    placed: set = set()
    remaining = list(steps)
    while remaining:
        ready = [step for step in remaining if step.depends_on <= placed]
        if not ready:
            cycle = ", ".join(step.name for step in remaining)
            raise WorkflowDefinitionError(f"dependency cycle among steps: {cycle}")
        for step in ready:
            ordered.append(step)
            placed.add(step.name)
        remaining = [step for step in remaining if step.name not in placed]
    return ordered


class WorkflowOrchestrator:
    """
    Run steps in dependency order on the calling thread.

    The first failing step halts the run: it is recorded as failed with its
    error kind and every step that has not started is skipped. Nothing is
    retried.
    """

    def __init__(self, steps: Sequence[Step], cancel_event: Optional[threading.Event] = None) -> None:
        self._steps = _topological_order(steps)
        self._cancel = cancel_event or threading.Event()

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel

    def cancel(self) -> None:
        """Ask the run to stop; a follow wait in progress returns at once."""
        LOGGER.info("Cancellation requested")
        self._cancel.set()

    def execute(self, run_id: Optional[str] = None, request: Optional[DispatchRequest] = None) -> WorkflowRun:
        run = WorkflowRun(
            run_id=run_id or generate_run_id(),
            steps=[StepRecord(name=step.name, depends_on=step.depends_on) for step in self._steps],
            request=request,
        )
        context = StepContext(run_id=run.run_id, cancel_event=self._cancel)
        LOGGER.info("Starting run %s", run.run_id)

        for step in self._steps:
            record = run.step(step.name)
            if record.status is not StepStatus.PENDING:
                continue
            blocked = [dep for dep in step.depends_on if run.step(dep).status is not StepStatus.SUCCEEDED]
            if blocked:
                record.status = StepStatus.SKIPPED
                continue

            record.started_at = _now()
            if self._cancel.is_set():
                self._fail(run, record, "Cancelled", "run cancelled before step started")
                break

            record.status = StepStatus.RUNNING
            LOGGER.info("-> %s", step.name)
            try:
                artifact = step.action(context)
            except Exception as exc:
                kind = getattr(exc, "kind", type(exc).__name__)
                LOGGER.error("Step %s failed in run %s: %s: %s", step.name, run.run_id, kind, exc)
                self._fail(run, record, kind, str(exc))
                break

            record.status = StepStatus.SUCCEEDED
            record.artifact = artifact
            record.completed_at = _now()
            context.artifacts[step.name] = artifact
            LOGGER.info("completed %s", step.name)

        run.status = RunStatus.FAILED if run.failed_step else RunStatus.SUCCEEDED
        run.completed_at = _now()
        LOGGER.info("Run %s finished with status %s", run.run_id, run.status.value)
        return run

    @staticmethod
    def _fail(run: WorkflowRun, record: StepRecord, kind: str, message: str) -> None:
        record.status = StepStatus.FAILED
        record.error_kind = kind
        record.error = message
        record.completed_at = _now()
        for other in run.steps:
            if other.status is StepStatus.PENDING:
                other.status = StepStatus.SKIPPED


@dataclass
class ReleasePlan:
    """Inputs for one release: parameters, artifact, and how to observe it."""

    params: Mapping[str, Optional[str]]
    artifact: Path
    build_command: Optional[str] = None
    build_cwd: Optional[Path] = None
    follow: bool = False
    follow_timeout: float = 900.0
    submit_attempts: int = 1
    template: CommandTemplate = DEFAULT_TEMPLATE


class ReleaseCoordinator:
    """Sequence build -> upload -> dispatch -> observe for a single release."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        poller: StatusPoller,
        uploader: ArtifactUploader,
        runner: Optional[CommandRunner] = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._poller = poller
        self._uploader = uploader
        self._runner = runner
        self._cancel = threading.Event()

    def cancel(self) -> None:
        self._cancel.set()

    def plan_steps(self, plan: ReleasePlan, request: DispatchRequest, idempotency_key: str) -> List[Step]:
        artifact = Path(plan.artifact)

        def build(_: StepContext) -> str:
            if plan.build_command:
                if self._runner is None:
                    raise BuildError("a build command was given but no command runner is configured")
                log_path = run_build(self._runner, plan.build_command, plan.build_cwd or Path.cwd())
                LOGGER.info("Build log: %s", log_path)
                if self._runner.dry_run and not artifact.is_file():
                    LOGGER.info("Dry-run: %s would be produced by %r", artifact, plan.build_command)
                    return str(artifact)
            if not artifact.is_file():
                raise BuildError(f"artifact {artifact} was not produced")
            return str(artifact)

        def upload(_: StepContext) -> str:
            return self._uploader.upload(artifact, request.payload_uri)

        def dispatch(_: StepContext) -> DispatchResult:
            return submit_with_retry(
                self._dispatcher,
                request,
                attempts=plan.submit_attempts,
                idempotency_key=idempotency_key,
            )

        def observe(context: StepContext) -> ExecutionStatus:
            result: DispatchResult = context.artifacts["dispatch"]
            status = self._poller.follow(
                result.log_sink,
                result.command_id,
                timeout=plan.follow_timeout,
                cancel_event=context.cancel_event,
            )
            if status is ExecutionStatus.TIMED_OUT:
                raise TimedOut(result.command_id, result.log_sink, plan.follow_timeout)
            if status is ExecutionStatus.FAILED:
                raise RemoteExecutionFailed(result.command_id, result.log_sink)
            return status

        steps = [
            Step.of("build", build),
            Step.of("upload", upload, depends_on=["build"]),
            Step.of("dispatch", dispatch, depends_on=["upload"]),
        ]
        if plan.follow:
            steps.append(Step.of("observe", observe, depends_on=["dispatch"]))
        return steps

    def release(self, plan: ReleasePlan, run_id: Optional[str] = None) -> WorkflowRun:
        """
        Validate *plan* and run the release workflow.

        Parameter problems raise before any step runs. The run id doubles as
        the idempotency key for every submission attempt in this release.
        """
        params = validate_parameters(plan.params, required=tuple(plan.template.fields.values()))
        request = build_request(params, plan.template)
        run_id = run_id or generate_run_id()
        # cancellation is scoped to a single release
        self._cancel.clear()
        orchestrator = WorkflowOrchestrator(self.plan_steps(plan, request, run_id), cancel_event=self._cancel)
        return orchestrator.execute(run_id=run_id, request=request)


__all__ = [
    "ReleaseCoordinator",
    "ReleasePlan",
    "Step",
    "StepContext",
    "StepRecord",
    "WorkflowOrchestrator",
    "WorkflowRun",
    "generate_run_id",
]
