# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - the JSON run report
      - debugging without full tracebacks
    """
    kind: str
    message: str
    job: Optional[str] = None
    step: Optional[str] = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConfigurationError(CIError):
    """Malformed matrix, duplicate job identity, unknown action, bad YAML.

    Always raised before any job runs.
    """

    def __init__(
        self,
        message: str,
        *,
        errors: Optional[Iterable[str]] = None,
        suggestions: Optional[Iterable[str]] = None,
        job: Optional[str] = None,
        step: Optional[str] = None,
    ):
        super().__init__(kind="configuration_error", message=message, job=job, step=step)
        self.errors: List[str] = list(errors or [])
        self.suggestions: List[str] = list(suggestions or [])

    def __str__(self) -> str:
        lines = [super().__str__()]
        for e in self.errors:
            lines.append(f"  - {e}")
        return "\n".join(lines)


class StepFailure(CIError):
    """An action exited non-zero. Handled inside its job instance."""

    def __init__(self, job: str, step: str, cmd: str, exit_code: Optional[int]):
        super().__init__(
            kind="step_failure",
            message=f"step '{step}' failed (exit={exit_code}): {cmd}",
            job=job,
            step=step,
            details={"exit_code": exit_code},
        )
        self.cmd = cmd
        self.exit_code = exit_code


class JobEnvironmentError(CIError):
    """Acquiring or tearing down a job's execution environment failed."""

    def __init__(self, message: str, *, job: Optional[str] = None, phase: str = "acquire"):
        super().__init__(kind="environment_error", message=message, job=job, details={"phase": phase})
        self.phase = phase


class Cancelled(CIError):
    """Cooperative cancellation of a job instance or the whole run."""

    def __init__(self, job: Optional[str] = None, step: Optional[str] = None, reason: str = "cancelled"):
        super().__init__(kind="cancelled", message=reason, job=job, step=step)
        self.reason = reason
