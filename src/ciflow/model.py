# model.py
from __future__ import annotations

import itertools
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple


class Status(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self not in (Status.PENDING, Status.RUNNING)


class PipelineStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


def normalize_kind(kind: str) -> str:
    """`pull-request` and `pull_request` name the same event kind."""
    return kind.strip().lower().replace("-", "_")


# ---------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class EventDescriptor:
    """
    The occurrence that may start a run.

    For pull requests `branch` is the target (base) branch.
    """
    kind: str
    branch: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TriggerRule:
    kind: str
    branches: Optional[Tuple[str, ...]] = None  # None -> any branch


# ---------------------------------------------------------------------
# Definitions (read-only after load)
# ---------------------------------------------------------------------

# `${{ secrets.NAME }}`, alone or embedded in a longer string
SECRET_EXPR = re.compile(r"\$\{\{\s*secrets\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


@dataclass(frozen=True)
class SecretRef:
    """Opaque reference to a secret, resolved only when a step is invoked."""
    name: str

    def __str__(self) -> str:
        return f"${{{{ secrets.{self.name} }}}}"


@dataclass(frozen=True)
class StepDefinition:
    """A single action inside a CI job."""
    name: str
    uses: str
    with_: Mapping[str, Any] = field(default_factory=dict)
    continue_on_error: bool = False
    env: Mapping[str, str] = field(default_factory=dict)

    @property
    def action(self) -> str:
        # "actions-rs/cargo@v1" -> "actions-rs/cargo"
        return self.uses.split("@", 1)[0]


@dataclass(frozen=True)
class MatrixSpec:
    """
    Named axes of discrete values.

    Iterating yields one dict per matrix point, first axis varying slowest.
    Every iteration starts from scratch, so the sequence is restartable.
    """
    axes: Mapping[str, Tuple[Any, ...]]

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        names = list(self.axes)
        for values in itertools.product(*(self.axes[n] for n in names)):
            yield dict(zip(names, values))

    def __len__(self) -> int:
        size = 1
        for values in self.axes.values():
            size *= len(values)
        return size


@dataclass(frozen=True)
class JobDefinition:
    name: str
    steps: Tuple[StepDefinition, ...]
    matrix: Optional[MatrixSpec] = None
    runs_on: str = "ubuntu-latest"
    display_name: Optional[str] = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout_minutes: Optional[float] = None


@dataclass(frozen=True)
class Pipeline:
    """Parsed, typed workflow: triggers + job definitions."""
    name: str
    triggers: Tuple[TriggerRule, ...]
    jobs: Tuple[JobDefinition, ...]


# ---------------------------------------------------------------------
# Run-time records
# ---------------------------------------------------------------------

@dataclass
class StepExecution:
    step: StepDefinition
    status: Status = Status.PENDING
    exit_code: Optional[int] = None
    duration: float = 0.0
    output: str = ""
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.step.name,
            "uses": self.step.uses,
            "continue_on_error": self.step.continue_on_error,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "duration": round(self.duration, 3),
            "error": self.error,
        }


@dataclass
class JobInstance:
    """
    A job definition bound to one matrix point.

    Owned by exactly one worker while it runs; nothing else mutates it.
    """
    definition: JobDefinition
    label: str
    runs_on: str
    steps: List[StepDefinition]
    matrix_point: Dict[str, Any] = field(default_factory=dict)
    status: Status = Status.PENDING
    executions: List[StepExecution] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def key(self) -> Tuple[str, str]:
        return (self.definition.name, self.label)

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.name,
            "label": self.label,
            "runs_on": self.runs_on,
            "matrix": dict(self.matrix_point),
            "status": self.status.value,
            "duration": None if self.duration is None else round(self.duration, 3),
            "error": self.error,
            "steps": [e.to_dict() for e in self.executions],
        }


@dataclass
class PipelineRun:
    event: EventDescriptor
    instances: List[JobInstance]
    status: Optional[PipelineStatus] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def exit_code(self) -> int:
        from .results import exit_code_for

        if self.status is None:
            raise RuntimeError("Pipeline run has not been aggregated yet")
        return exit_code_for(self.status)

    def to_dict(self) -> Dict[str, Any]:
        """Structured run report."""
        return {
            "event": {
                "kind": self.event.kind,
                "branch": self.event.branch,
                "metadata": dict(self.event.metadata),
            },
            "status": None if self.status is None else self.status.value,
            "exit_code": None if self.status is None else self.exit_code,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "jobs": [i.to_dict() for i in self.instances],
        }
