# src/ciflow/dsl.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from .actions import RUN
from .model import JobDefinition, MatrixSpec, Pipeline, SecretRef, StepDefinition, TriggerRule


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    shell: str | None = None,
    continue_on_error: bool = False,
    env: Optional[Dict[str, str]] = None,
) -> StepDefinition:
    """Create a shell step."""
    params: Dict[str, Any] = {"run": cmd}
    if cwd is not None:
        params["working-directory"] = cwd
    if shell is not None:
        params["shell"] = shell
    return StepDefinition(name=name, uses=RUN, with_=params, continue_on_error=continue_on_error, env=env or {})


def step(
    name: str,
    uses: str,
    *,
    with_: Optional[Dict[str, Any]] = None,
    continue_on_error: bool = False,
    env: Optional[Dict[str, str]] = None,
) -> StepDefinition:
    """Create a step that runs a registered action, e.g. step("Build", "actions-rs/cargo@v1", with_={"command": "build"})."""
    return StepDefinition(
        name=name,
        uses=uses,
        with_=dict(with_ or {}),
        continue_on_error=continue_on_error,
        env=env or {},
    )


def secret(name: str) -> SecretRef:
    return SecretRef(name)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

def matrix(**axes: Iterable[Any]) -> MatrixSpec:
    """
    Named axes, expanded by the job graph builder.

    Example:
        job("test", sh(...), matrix=matrix(os=["ubuntu-latest", "macos-latest"]),
            runs_on="${{ matrix.os }}")
    """
    return MatrixSpec(axes={k: tuple(v) for k, v in axes.items()})


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: StepDefinition,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[StepDefinition]] = None,  # allow: job("x", steps_list=[...])
    matrix: Optional[MatrixSpec] = None,
    runs_on: str = "ubuntu-latest",
    display_name: str | None = None,
    env: Optional[Dict[str, str]] = None,
    timeout_minutes: float | None = None,
    cwd: str | None = None,  # default working directory for shell steps missing one
) -> JobDefinition:
    steps_final: List[StepDefinition] = []
    if steps_list:
        steps_final.extend(steps_list)
    steps_final.extend(steps)

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [
            s if s.uses != RUN or "working-directory" in s.with_
            else StepDefinition(s.name, s.uses, {**s.with_, "working-directory": cwd}, s.continue_on_error, s.env)
            for s in steps_final
        ]

    return JobDefinition(
        name=name,
        steps=tuple(steps_final),
        matrix=matrix,
        runs_on=runs_on,
        display_name=display_name,
        env={k: str(v) for k, v in (env or {}).items()},
        timeout_minutes=timeout_minutes,
    )


# ---------------------------------------------------------------------
# Triggers + pipeline
# ---------------------------------------------------------------------

def on_push(*branches: str) -> TriggerRule:
    """Push trigger; no branches means any branch."""
    return TriggerRule(kind="push", branches=tuple(branches) if branches else None)


def on_pull_request(*branches: str) -> TriggerRule:
    """Pull-request trigger, filtered on the target branch."""
    return TriggerRule(kind="pull_request", branches=tuple(branches) if branches else None)


def pipeline(name: str, *jobs: JobDefinition, triggers: Iterable[TriggerRule] = ()) -> Pipeline:
    """
    Workflow definition helper.

    Users can write:
        from ciflow import pipeline, job, sh, on_push

        def workflow():
            return pipeline("ci", job(...), job(...), triggers=[on_push("main")])

    Or define PIPELINE = pipeline(...) directly.
    """
    return Pipeline(name=name, triggers=tuple(triggers), jobs=tuple(jobs))
