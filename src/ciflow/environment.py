# environment.py
from __future__ import annotations

import logging
import os
import platform
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import ContextManager, Dict, Iterator, Mapping, Optional, Protocol, Set

from .errors import JobEnvironmentError
from .model import SECRET_EXPR, JobInstance, SecretRef

log = logging.getLogger(__name__)

# never copied into an isolated workspace
WORKSPACE_IGNORE = (".git", ".ciflow", "__pycache__")

RUNNER_OS = {
    "ubuntu": "Linux",
    "linux": "Linux",
    "windows": "Windows",
    "macos": "macOS",
}


@dataclass(frozen=True)
class ExecutionEnvironment:
    """What a job instance runs inside. Read-only for the steps."""
    workspace: Path
    runs_on: str
    env: Mapping[str, str] = field(default_factory=dict)
    secrets: Mapping[str, str] = field(default_factory=dict)


class EnvironmentProvider(Protocol):
    def acquire(self, instance: JobInstance) -> ContextManager[ExecutionEnvironment]:
        ...


def runner_os(runs_on: str) -> Optional[str]:
    """`windows-latest` -> `Windows`; None if the label names no known OS."""
    head = runs_on.split("-", 1)[0].lower()
    return RUNNER_OS.get(head)


def host_os() -> str:
    return {"Linux": "Linux", "Windows": "Windows", "Darwin": "macOS"}.get(platform.system(), platform.system())


def secret_names(instance: JobInstance) -> Set[str]:
    """Every secret a step refers to, from its parameters or its env."""
    names: Set[str] = set()
    for step in instance.steps:
        for value in (*step.with_.values(), *step.env.values()):
            if isinstance(value, SecretRef):
                names.add(value.name)
            elif isinstance(value, str):
                names.update(SECRET_EXPR.findall(value))
    return names


def instance_env(instance: JobInstance) -> Dict[str, str]:
    env: Dict[str, str] = {
        "CI": "true",
        "CIFLOW": "true",
        "CIFLOW_JOB": instance.name,
        "CIFLOW_JOB_LABEL": instance.label,
        "CIFLOW_RUNS_ON": instance.runs_on,
    }
    os_name = runner_os(instance.runs_on)
    if os_name:
        env["RUNNER_OS"] = os_name
    for axis, value in instance.matrix_point.items():
        env[f"CIFLOW_MATRIX_{axis.upper().replace('-', '_')}"] = str(value)
    env.update({k: str(v) for k, v in instance.definition.env.items()})
    return env


class LocalEnvironmentProvider:
    """
    Runs every instance on this machine.

    isolate=True:  fresh temporary copy of the repository per instance,
                   deleted on teardown.
    isolate=False: steps run in the repository itself; teardown is a no-op.

    `runs_on` is only a label here; a host mismatch is logged, not enforced.
    """

    def __init__(
        self,
        repo_root: str | Path = ".",
        *,
        isolate: bool = True,
        secrets: Optional[Mapping[str, str]] = None,
        work_root: str | Path | None = None,
    ):
        self.repo_root = Path(repo_root).resolve()
        self.isolate = isolate
        self._secrets = secrets
        self.work_root = Path(work_root).resolve() if work_root is not None else None

    def _resolve_secrets(self, instance: JobInstance) -> Mapping[str, str]:
        source = self._secrets if self._secrets is not None else os.environ
        resolved: Dict[str, str] = {}
        for name in sorted(secret_names(instance)):
            if name not in source:
                log.debug("secret %s not set for %s; using empty value", name, instance.label)
            resolved[name] = source.get(name, "")
        return MappingProxyType(resolved)

    def _make_workspace(self, instance: JobInstance) -> Path:
        if not self.isolate:
            return self.repo_root
        if self.work_root is not None:
            self.work_root.mkdir(parents=True, exist_ok=True)
        tmp = Path(tempfile.mkdtemp(prefix="ciflow-", dir=self.work_root))
        workspace = tmp / "workspace"
        try:
            shutil.copytree(
                self.repo_root,
                workspace,
                ignore=shutil.ignore_patterns(*WORKSPACE_IGNORE),
                symlinks=True,
            )
        except OSError:
            shutil.rmtree(tmp, ignore_errors=True)
            raise
        return workspace

    def _teardown(self, instance: JobInstance, workspace: Path) -> None:
        if not self.isolate:
            return
        try:
            shutil.rmtree(workspace.parent)
        except OSError as e:
            raise JobEnvironmentError(
                f"could not remove workspace {workspace.parent}: {e}",
                job=instance.label,
                phase="teardown",
            ) from e
        log.debug("released workspace %s for %s", workspace.parent, instance.label)

    @contextmanager
    def acquire(self, instance: JobInstance) -> Iterator[ExecutionEnvironment]:
        wanted = runner_os(instance.runs_on)
        if wanted and wanted != host_os():
            log.debug("%s asks for %s, running on %s host", instance.label, instance.runs_on, host_os())

        try:
            workspace = self._make_workspace(instance)
        except OSError as e:
            raise JobEnvironmentError(
                f"could not prepare workspace from {self.repo_root}: {e}",
                job=instance.label,
                phase="acquire",
            ) from e
        log.debug("acquired workspace %s for %s", workspace, instance.label)

        try:
            yield ExecutionEnvironment(
                workspace=workspace,
                runs_on=instance.runs_on,
                env=MappingProxyType(instance_env(instance)),
                secrets=self._resolve_secrets(instance),
            )
        finally:
            self._teardown(instance, workspace)
