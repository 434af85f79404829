from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path
from shutil import which
from typing import Iterable, List, Optional


@dataclass
class CommandResult:
    command: List[str]
    cwd: Path
    return_code: int
    stdout: str
    stderr: str
    skipped: bool = False
    log_path: Optional[Path] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.return_code == 0


class CommandRunner:
    """
    Local command runner with dry-run support used by the build step.

    Output of every command is kept under the run's `logs/` directory so a
    failed build can be inspected after the run is discarded.
    """

    def __init__(self, run_dir: Path, dry_run: bool = False) -> None:
        self._run_dir = Path(run_dir)
        self._dry_run = dry_run
        self._logs_dir = self._run_dir / "logs"
        self._logs_dir.mkdir(parents=True, exist_ok=True)

    @property
    def logs_dir(self) -> Path:
        return self._logs_dir

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    def run(self, command: Iterable[str], cwd: Path) -> CommandResult:
        command_list = list(command)
        cwd = Path(cwd)
        log_path = self._create_log_path(command_list)
        printable = " ".join(command_list)

        if not command_list:
            log_path.write_text("[skipped:empty-command]\n", encoding="utf-8")
            return CommandResult(command_list, cwd, 0, "", "", skipped=True, log_path=log_path, reason="empty-command")

        if self._dry_run:
            log_path.write_text(f"[dry-run] command skipped: {printable}\n", encoding="utf-8")
            return CommandResult(command_list, cwd, 0, "", "", skipped=True, log_path=log_path, reason="dry-run")

        if which(command_list[0]) is None:
            log_path.write_text(f"[missing-executable] command not executed: {printable}\n", encoding="utf-8")
            return CommandResult(
                command_list, cwd, 127, "", f"{command_list[0]}: not found", log_path=log_path, reason="missing-executable"
            )

        try:
            completed = subprocess.run(
                command_list,
                cwd=cwd,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            log_path.write_text(f"[missing-executable] command failed: {printable}\n{exc}\n", encoding="utf-8")
            return CommandResult(command_list, cwd, 127, "", str(exc), log_path=log_path, reason="missing-executable")
        except OSError as exc:
            log_path.write_text(f"[os-error] command failed: {printable}\n{exc}\n", encoding="utf-8")
            return CommandResult(
                command_list, cwd, getattr(exc, "errno", 1) or 1, "", str(exc), log_path=log_path, reason="os-error"
            )

        log_path.write_text(
            f"$ {printable}\n\nSTDOUT:\n{completed.stdout}\n\nSTDERR:\n{completed.stderr}",
            encoding="utf-8",
        )
        return CommandResult(
            command=command_list,
            cwd=cwd,
            return_code=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            log_path=log_path,
        )

    def _create_log_path(self, command: List[str]) -> Path:
        safe = "-".join(part.replace("/", "_").replace(" ", "_") for part in command if part) or "empty"
        if len(safe) > 60:
            safe = safe[:57] + "..."
        index = len(list(self._logs_dir.glob("*.log"))) + 1
        return self._logs_dir / f"{index:02d}-{safe}.log"
