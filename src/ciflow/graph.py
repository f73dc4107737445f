# graph.py
from __future__ import annotations

import re
from collections import Counter
from dataclasses import replace
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Sequence, Tuple

from .errors import ConfigurationError
from .model import JobDefinition, JobInstance, MatrixSpec, StepDefinition

MATRIX_EXPR = re.compile(r"\$\{\{\s*matrix\.([A-Za-z0-9_-]+)\s*\}\}")


def matrix_label(name: str, point: Mapping[str, Any]) -> str:
    """`test` + {"os": "windows-latest"} -> `test (windows-latest)`."""
    if not point:
        return name
    return f"{name} ({', '.join(str(v) for v in point.values())})"


def substitute(value: Any, point: Mapping[str, Any], *, job: str) -> Any:
    """Replace `${{ matrix.<axis> }}` in strings; other values pass through."""
    if not isinstance(value, str):
        return value

    def _sub(m: re.Match) -> str:
        axis = m.group(1)
        if axis not in point:
            raise ConfigurationError(
                f"Unknown matrix axis '{axis}' in expression {m.group(0)!r}",
                job=job,
                suggestions=[f"Known axes: {sorted(point)}" if point else "Declare a strategy.matrix for this job"],
            )
        return str(point[axis])

    return MATRIX_EXPR.sub(_sub, value)


def _bind_step(step: StepDefinition, point: Mapping[str, Any], job: str) -> StepDefinition:
    return replace(
        step,
        name=substitute(step.name, point, job=job),
        with_={k: substitute(v, point, job=job) for k, v in step.with_.items()},
        env={k: substitute(v, point, job=job) for k, v in step.env.items()},
    )


def _check_matrix(job: JobDefinition, spec: MatrixSpec) -> MatrixSpec:
    if not spec.axes:
        raise ConfigurationError("Matrix declares no axes", job=job.name)
    empty = sorted(axis for axis, values in spec.axes.items() if len(values) == 0)
    if empty:
        raise ConfigurationError(
            f"Matrix axis has no values: {empty}",
            job=job.name,
            suggestions=["Give every matrix axis at least one value, or drop the matrix"],
        )
    return spec


def _points(job: JobDefinition) -> Iterator[Dict[str, Any]]:
    if job.matrix is None:
        yield {}
        return
    yield from _check_matrix(job, job.matrix)


def expand(job: JobDefinition) -> Iterator[JobInstance]:
    """Lazily yield one instance per matrix point (one for plain jobs)."""
    for point in _points(job):
        yield JobInstance(
            definition=job,
            label=matrix_label(job.name, point),
            runs_on=substitute(job.runs_on, point, job=job.name),
            # each instance owns its copy of the step list
            steps=[_bind_step(s, point, job.name) for s in job.steps],
            matrix_point=dict(point),
        )


def build(definitions: Sequence[JobDefinition]) -> List[JobInstance]:
    """
    Expand job definitions into concrete job instances.

    Raises ConfigurationError for empty matrix axes, unknown matrix
    expressions, or two instances with the same (job name, label).
    """
    instances: List[JobInstance] = []
    for job in definitions:
        instances.extend(expand(job))

    keys = Counter(i.key for i in instances)
    dupes = sorted(k for k, n in keys.items() if n > 1)
    if dupes:
        raise ConfigurationError(
            "Duplicate job identity",
            errors=[f"{name} [{label}]" for name, label in dupes],
            suggestions=["Give every job a unique name"],
        )
    return instances


def plan(definitions: Iterable[JobDefinition]) -> List[Tuple[str, str, str, int]]:
    """(job, label, runs_on, step count) per instance, without running anything."""
    return [(i.name, i.label, i.runs_on, len(i.steps)) for i in build(list(definitions))]
