# executor.py
from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional

from .environment import EnvironmentProvider, ExecutionEnvironment
from .errors import Cancelled, CIError, JobEnvironmentError, StepFailure
from .model import JobInstance, Status, StepExecution
from .runner import StepRunner
from .ui.console import Console, get_console

log = logging.getLogger(__name__)

# Per-instance state machine. Terminal states have no way out.
TRANSITIONS: Dict[Status, FrozenSet[Status]] = {
    Status.PENDING: frozenset({Status.RUNNING, Status.FAILED, Status.CANCELLED}),
    Status.RUNNING: frozenset({Status.SUCCEEDED, Status.FAILED, Status.CANCELLED}),
    Status.SUCCEEDED: frozenset(),
    Status.FAILED: frozenset(),
    Status.CANCELLED: frozenset(),
}


def transition(instance: JobInstance, to: Status) -> None:
    allowed = TRANSITIONS.get(instance.status, frozenset())
    if to not in allowed:
        raise RuntimeError(f"[{instance.label}] illegal transition {instance.status.value} -> {to.value}")
    instance.status = to


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StepExecutor:
    """
    Runs one job instance's steps in declaration order.

    - environment acquired before the first step, released on every exit path
    - first failing step without continue-on-error fails the instance and
      skips the rest
    - failing continue-on-error steps are recorded but tolerated
    - a set cancel event stops the current step and skips the rest
    """

    def __init__(self, runner: StepRunner, provider: EnvironmentProvider, console: Optional[Console] = None):
        self.runner = runner
        self.provider = provider
        self.console = console

    @property
    def _console(self) -> Console:
        return self.console or get_console()

    def run(self, instance: JobInstance, cancel: Optional[threading.Event] = None) -> JobInstance:
        if instance.status is not Status.PENDING:
            raise RuntimeError(f"[{instance.label}] already {instance.status.value}")
        cancel = cancel or threading.Event()
        instance.executions = [StepExecution(step=s) for s in instance.steps]
        instance.started_at = _now()
        self._console.print_job_start(instance.label, instance.runs_on)

        outcome: Optional[Status] = None
        try:
            with self.provider.acquire(instance) as env:
                outcome = self._run_steps(instance, env, cancel)
        except JobEnvironmentError as e:
            log.debug("[%s] environment error: %s", instance.label, e)
            instance.error = str(e)
            # acquisition failed before any step ran, or teardown failed after
            if outcome is not Status.CANCELLED:
                outcome = Status.FAILED

        self._skip_pending(instance)
        transition(instance, outcome or Status.FAILED)
        instance.finished_at = _now()
        self._console.print_job_finished(instance.label, instance.status.value, instance.error)
        return instance

    def _run_steps(self, instance: JobInstance, env: ExecutionEnvironment, cancel: threading.Event) -> Status:
        fatal = False
        for execution in instance.executions:
            if cancel.is_set():
                instance.error = instance.error or "cancelled"
                return Status.CANCELLED

            if instance.status is Status.PENDING:
                transition(instance, Status.RUNNING)

            step = execution.step
            self._console.print_step(instance.label, step.name)
            execution.status = Status.RUNNING
            started = time.monotonic()
            try:
                result = self.runner(instance, step, env, cancel)
            except Cancelled:
                execution.duration = time.monotonic() - started
                execution.status = Status.CANCELLED
                execution.error = "cancelled"
                instance.error = f"cancelled during step '{step.name}'"
                self._report(instance, execution)
                return Status.CANCELLED
            except (CIError, OSError) as e:
                # tool missing, bad working directory, spawn failure ...
                execution.duration = time.monotonic() - started
                execution.status = Status.FAILED
                execution.error = str(e)
                failed_hard = not step.continue_on_error
            else:
                execution.duration = time.monotonic() - started
                execution.exit_code = result.exit_code
                execution.output = result.output
                execution.status = Status.SUCCEEDED if result.ok else Status.FAILED
                if not result.ok:
                    execution.error = StepFailure(instance.label, step.name, result.cmd, result.exit_code).message
                failed_hard = not result.ok and not step.continue_on_error

            self._report(instance, execution)
            if failed_hard:
                instance.error = execution.error
                fatal = True
                break

        if instance.status is Status.PENDING:
            # no steps at all
            transition(instance, Status.RUNNING)
        return Status.FAILED if fatal else Status.SUCCEEDED

    def _report(self, instance: JobInstance, execution: StepExecution) -> None:
        tolerated = execution.status is Status.FAILED and execution.step.continue_on_error
        self._console.print_step_result(
            instance.label,
            execution.step.name,
            execution.status.value,
            exit_code=execution.exit_code,
            duration=execution.duration,
            tolerated=tolerated,
        )
        if execution.status is Status.FAILED:
            if execution.error:
                self._console.print_step_output(instance.label, execution.error)
            self._console.print_step_output(instance.label, execution.output)

    @staticmethod
    def _skip_pending(instance: JobInstance) -> None:
        for execution in instance.executions:
            if execution.status is Status.PENDING:
                execution.status = Status.SKIPPED
