# results.py
from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, List, Tuple

from .model import JobInstance, PipelineStatus, Status

if TYPE_CHECKING:
    from .model import PipelineRun

EXIT_SUCCESS = 0
EXIT_JOB_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def aggregate(instances: Iterable[JobInstance]) -> PipelineStatus:
    """Success iff every instance succeeded. Cancelled counts as failed."""
    instances = list(instances)
    if all(i.status is Status.SUCCEEDED for i in instances):
        return PipelineStatus.SUCCESS
    return PipelineStatus.FAILED


def exit_code_for(status: PipelineStatus) -> int:
    return EXIT_SUCCESS if status is PipelineStatus.SUCCESS else EXIT_JOB_FAILED


def summary_rows(instances: Iterable[JobInstance]) -> List[Tuple[str, str]]:
    return [(i.label, i.status.value) for i in instances]


def write_report(run: "PipelineRun", path: str | Path) -> Path:
    """Write the structured run report as JSON."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(run.to_dict(), indent=2, sort_keys=False), encoding="utf-8")
    return out
