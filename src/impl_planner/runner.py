"""Step execution: running a chain step's test file and reading back its data."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from impl_planner.models import ChainStep
from impl_planner.readiness import normalize_platform
from impl_planner.snapshot import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    """Outcome of running one step's executable."""

    status: str
    returncode: int = 0
    output: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0


class StepExecutionError(Exception):
    """Raised when a step's executable fails or times out."""

    def __init__(self, message: str, result: StepResult | None = None) -> None:
        super().__init__(message)
        self.result = result


class StepRunner(Protocol):
    """Drives a live automation session for the planner."""

    def supports(self, platform: str) -> bool: ...

    def run_step(self, step: ChainStep, snapshot: dict[str, Any]) -> dict[str, Any]: ...

    def end_session(self, platform: str | None) -> None: ...


class SubprocessStepRunner:
    """Runs each step as a command, e.g. ``["npx", "playwright", "test", "{test_file}"]``.

    Placeholders ``{test_file}``, ``{action}``, ``{platform}`` and
    ``{data_path}`` are substituted per step. After the process exits the
    snapshot at ``data_path`` is re-read and returned as the step's result.
    """

    def __init__(
        self,
        command: list[str],
        data_path: Path,
        timeout: int = 300,
        platforms: Iterable[str] | None = None,
        cwd: Path | None = None,
    ) -> None:
        if not command:
            raise ValueError("runner command is empty")
        self.command = list(command)
        self.data_path = Path(data_path)
        self.timeout = timeout
        self.platforms = {normalize_platform(p) for p in platforms} if platforms else None
        self.cwd = cwd

    def supports(self, platform: str) -> bool:
        return self.platforms is None or normalize_platform(platform) in self.platforms

    def build_command(self, step: ChainStep) -> list[str]:
        values = {
            "test_file": step.test_file,
            "action": step.action_name,
            "platform": step.platform,
            "data_path": str(self.data_path),
        }
        return [part.format(**values) for part in self.command]

    def run_step(self, step: ChainStep, snapshot: dict[str, Any]) -> dict[str, Any]:
        args = self.build_command(step)
        logger.info("Executing %s (%s) on %s", step.status, step.action_name, step.platform)
        try:
            proc = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                cwd=self.cwd,
            )
        except subprocess.TimeoutExpired:
            raise StepExecutionError(
                f"Step {step.status} timed out after {self.timeout}s",
                StepResult(status=step.status, returncode=-1),
            ) from None
        except FileNotFoundError as e:
            raise StepExecutionError(
                f"Runner command not found: {args[0]}",
                StepResult(status=step.status, returncode=-1, output=str(e)),
            ) from e

        result = StepResult(status=step.status, returncode=proc.returncode,
                            output=proc.stdout + proc.stderr)
        if not result.success:
            raise StepExecutionError(
                f"Step {step.status} failed with exit code {proc.returncode}", result
            )

        data = SnapshotStore(self.data_path).load()
        return {k: v for k, v in data.items() if not k.startswith("_")}

    def end_session(self, platform: str | None) -> None:
        # Each subprocess owns its automation session.
        logger.debug("Session for %s ended", platform or "unknown")
