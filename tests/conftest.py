"""Shared fixtures: scripted step runner, recording environment provider, quiet console."""

import io
import logging
import threading
from contextlib import contextmanager
from pathlib import Path

import pytest

from ciflow import job, matrix, on_pull_request, on_push, pipeline, step
from ciflow.environment import ExecutionEnvironment
from ciflow.errors import JobEnvironmentError
from ciflow.executor import StepExecutor
from ciflow.runner import StepOutcome
from ciflow.ui.console import Console, set_console

FIXTURES_DIR = Path(__file__).parent / "fixtures"


class ScriptedRunner:
    """Step runner that never spawns anything.

    `script` maps a step name, or a (label, step name) pair, to an exit code
    or to a callable(instance, step, env, cancel) -> StepOutcome.
    Unscripted steps exit with `default`.
    """

    def __init__(self, script=None, default=0):
        self.script = dict(script or {})
        self.default = default
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, instance, step, env, cancel):
        with self._lock:
            self.calls.append((instance.label, step.name))
        rule = self.script.get((instance.label, step.name), self.script.get(step.name, self.default))
        if callable(rule):
            return rule(instance, step, env, cancel)
        return StepOutcome(exit_code=rule, output=f"{step.name} exit {rule}\n", cmd=step.name)

    def calls_for(self, label):
        return [name for lbl, name in self.calls if lbl == label]


class RecordingProvider:
    """Environment provider that records acquire/release per instance."""

    def __init__(self, fail_acquire=False, fail_teardown=False, workspace=Path(".")):
        self.fail_acquire = fail_acquire
        self.fail_teardown = fail_teardown
        self.workspace = workspace
        self.acquired = []
        self.released = []
        self._lock = threading.Lock()

    @contextmanager
    def acquire(self, instance):
        if self.fail_acquire:
            raise JobEnvironmentError("no runner available", job=instance.label, phase="acquire")
        with self._lock:
            self.acquired.append(instance.label)
        try:
            yield ExecutionEnvironment(workspace=self.workspace, runs_on=instance.runs_on)
        finally:
            with self._lock:
                self.released.append(instance.label)
            if self.fail_teardown:
                raise JobEnvironmentError("workspace busy", job=instance.label, phase="teardown")


@pytest.fixture(autouse=True)
def quiet_console():
    """Route console output into a buffer for every test."""
    console = Console(stream=io.StringIO())
    set_console(console)
    yield console
    set_console(Console())


@pytest.fixture(autouse=True)
def _drop_ciflow_log_handlers():
    yield
    logger = logging.getLogger("ciflow")
    for handler in list(logger.handlers):
        if getattr(handler, "_ciflow", False):
            logger.removeHandler(handler)


@pytest.fixture
def provider():
    return RecordingProvider()


@pytest.fixture
def make_executor(quiet_console):
    def _make(runner, provider):
        return StepExecutor(runner, provider, console=quiet_console)
    return _make


@pytest.fixture
def rust_pipeline():
    """The lint + cross-platform test pipeline, with named steps."""
    return pipeline(
        "CI",
        job(
            "lints",
            step("fmt-check", "actions-rs/cargo@v1", with_={"command": "fmt", "args": "-- --check"}),
            step("clippy-check", "actions-rs/clippy-check@v1", with_={"args": "-- --deny warnings"}),
        ),
        job(
            "test",
            step("build", "actions-rs/cargo@v1", with_={"command": "build"}),
            step("test", "actions-rs/cargo@v1", with_={"command": "test"}),
            matrix=matrix(os=["ubuntu-latest", "windows-latest", "macos-latest"]),
            runs_on="${{ matrix.os }}",
        ),
        triggers=[on_push("master"), on_pull_request()],
    )
