"""YAML workflow loader.

Reads GitHub-Actions-shaped workflow files, validates them with pydantic and
turns them into the typed model (`ciflow.model.Pipeline`). Every problem is
reported as a ConfigurationError before anything runs.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .actions import RUN
from .errors import ConfigurationError
from .model import SECRET_EXPR, JobDefinition, MatrixSpec, Pipeline, SecretRef, StepDefinition, TriggerRule

UNSUPPORTED_JOB_KEYS = {
    "needs": "jobs always run independently; inter-job dependencies are not supported",
    "if": "conditional jobs are not supported",
    "services": "service containers are not supported",
    "container": "job containers are not supported",
}


# ---------------------------------------------------------------------
# YAML
# ---------------------------------------------------------------------

class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects duplicate mapping keys instead of keeping the last."""

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _value in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                raise ConfigurationError(
                    f"Duplicate key {key!r} (line {key_node.start_mark.line + 1})",
                    suggestions=["Job ids and step keys must be unique"],
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


# ---------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------

class TriggerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    branches: Optional[List[str]] = None


class StepConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    id: Optional[str] = None
    name: Optional[str] = None
    uses: Optional[str] = None
    run: Optional[str] = None
    shell: Optional[str] = None
    working_directory: Optional[str] = Field(default=None, alias="working-directory")
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    env: Dict[str, Any] = Field(default_factory=dict)
    continue_on_error: bool = Field(default=False, alias="continue-on-error")

    @model_validator(mode="after")
    def _uses_or_run(self) -> "StepConfig":
        if bool(self.uses) == bool(self.run):
            raise ValueError("a step needs exactly one of `uses` or `run`")
        return self


class StrategyConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    matrix: Dict[str, List[Any]] = Field(default_factory=dict)
    fail_fast: Optional[bool] = Field(default=None, alias="fail-fast")
    max_parallel: Optional[int] = Field(default=None, alias="max-parallel")

    @field_validator("matrix")
    @classmethod
    def _plain_axes(cls, v: Dict[str, List[Any]]) -> Dict[str, List[Any]]:
        for key in ("include", "exclude"):
            if key in v:
                raise ValueError(f"matrix `{key}` is not supported")
        return v


class JobConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: Optional[str] = None
    runs_on: str = Field(default="ubuntu-latest", alias="runs-on")
    strategy: Optional[StrategyConfig] = None
    env: Dict[str, Any] = Field(default_factory=dict)
    timeout_minutes: Optional[float] = Field(default=None, alias="timeout-minutes", gt=0)
    steps: List[StepConfig] = Field(min_length=1)


class WorkflowConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: Optional[str] = None
    on: Union[str, List[str], Dict[str, Optional[TriggerConfig]]]
    env: Dict[str, Any] = Field(default_factory=dict)
    jobs: Dict[str, JobConfig] = Field(min_length=1)


# ---------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------

def _param(value: Any) -> Any:
    """`${{ secrets.X }}` -> SecretRef("X").

    Expressions embedded in a longer string stay as text and are resolved
    when the step is invoked.
    """
    if isinstance(value, str):
        m = SECRET_EXPR.fullmatch(value.strip())
        if m:
            return SecretRef(m.group(1))
    return value


def _step_name(step: StepConfig) -> str:
    if step.name:
        return step.name
    if step.uses:
        command = step.with_.get("command")
        return f"Run {step.uses} ({command})" if command else f"Run {step.uses}"
    return f"Run {step.run.strip().splitlines()[0]}"


def _to_step(step: StepConfig) -> StepDefinition:
    if step.run:
        params = {"run": step.run, "shell": step.shell, "working-directory": step.working_directory}
        uses = RUN
    else:
        params = {k: _param(v) for k, v in step.with_.items()}
        if step.working_directory:
            params["working-directory"] = step.working_directory
        uses = step.uses
    return StepDefinition(
        name=_step_name(step),
        uses=uses,
        with_={k: v for k, v in params.items() if v is not None},
        continue_on_error=step.continue_on_error,
        env={k: _param(v) for k, v in step.env.items()},
    )


def _to_triggers(on: Union[str, List[str], Dict[str, Optional[TriggerConfig]]]) -> tuple:
    if isinstance(on, str):
        return (TriggerRule(kind=on),)
    if isinstance(on, list):
        return tuple(TriggerRule(kind=k) for k in on)
    rules = []
    for kind, cfg in on.items():
        branches = tuple(cfg.branches) if cfg is not None and cfg.branches is not None else None
        rules.append(TriggerRule(kind=kind, branches=branches))
    return tuple(rules)


def _to_job(job_id: str, job: JobConfig, workflow_env: Dict[str, Any]) -> JobDefinition:
    matrix = None
    if job.strategy is not None and job.strategy.matrix:
        matrix = MatrixSpec(axes={axis: tuple(values) for axis, values in job.strategy.matrix.items()})
    env = {k: str(v) for k, v in workflow_env.items()}
    env.update({k: str(v) for k, v in job.env.items()})
    return JobDefinition(
        name=job_id,
        display_name=job.name,
        steps=tuple(_to_step(s) for s in job.steps),
        matrix=matrix,
        runs_on=job.runs_on,
        env=env,
        timeout_minutes=job.timeout_minutes,
    )


def _format_errors(e: ValidationError) -> List[str]:
    errors = []
    for error in e.errors():
        field_path = " -> ".join(str(loc) for loc in error["loc"])
        if error["type"] == "missing":
            errors.append(f"Missing required field: {field_path}")
        elif error["type"] == "extra_forbidden":
            key = str(error["loc"][-1]) if error["loc"] else ""
            hint = UNSUPPORTED_JOB_KEYS.get(key, "unknown key")
            errors.append(f"{field_path}: {hint}")
        else:
            errors.append(f"{field_path}: {error['msg']}")
    return errors


def parse_workflow(data: Any, *, source: str = "<workflow>") -> Pipeline:
    """Validate an already-loaded YAML document and build the Pipeline."""
    if not data:
        raise ConfigurationError(f"Workflow {source} is empty")
    if not isinstance(data, dict):
        raise ConfigurationError(f"Workflow {source} must be a mapping, got {type(data).__name__}")

    data = dict(data)
    # YAML 1.1 reads a bare `on:` key as boolean True
    if True in data:
        data["on"] = data.pop(True)

    try:
        cfg = WorkflowConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Workflow {source} is invalid",
            errors=_format_errors(e),
            suggestions=["Check the workflow against the supported keys"],
        ) from None

    return Pipeline(
        name=cfg.name or Path(source).stem,
        triggers=_to_triggers(cfg.on),
        jobs=tuple(_to_job(job_id, job, cfg.env) for job_id, job in cfg.jobs.items()),
    )


def loads(text: str, *, source: str = "<string>") -> Pipeline:
    try:
        data = yaml.load(text, Loader=_UniqueKeyLoader)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse YAML workflow {source}: {e}",
            suggestions=["Check YAML syntax and indentation (spaces, not tabs)"],
        ) from None
    return parse_workflow(data, source=source)


def load_yaml_workflow(path: str | Path) -> Pipeline:
    wf_path = Path(path)
    try:
        text = wf_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Failed to read workflow file {wf_path}: {e}") from None
    return loads(text, source=str(wf_path))
