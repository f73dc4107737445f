# runner.py
from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Tuple

from .actions import ActionRegistry, Invocation, default_registry, resolve_param
from .environment import ExecutionEnvironment
from .errors import Cancelled
from .model import JobInstance, StepDefinition

log = logging.getLogger(__name__)

OUTPUT_TAIL = 4000


@dataclass(frozen=True)
class StepOutcome:
    """What the orchestrator observes of one step: exit status and output."""
    exit_code: int
    output: str = ""
    cmd: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class StepRunner(Protocol):
    def __call__(
        self,
        instance: JobInstance,
        step: StepDefinition,
        env: ExecutionEnvironment,
        cancel: threading.Event,
    ) -> StepOutcome:
        ...


def step_env(step: StepDefinition, env: ExecutionEnvironment) -> Dict[str, str]:
    """os.environ + instance env + step env (secrets resolved)."""
    merged = os.environ.copy()
    merged.update(env.env)
    merged.update({k: str(resolve_param(v, env)) for k, v in step.env.items()})
    return merged


class ShellRunner:
    """
    Default step runner: resolves the step's action and spawns its processes.

    Cancellation is polled while a process runs. A cancelled process gets
    SIGTERM, then SIGKILL after `grace_period` seconds.
    """

    def __init__(
        self,
        registry: Optional[ActionRegistry] = None,
        *,
        poll_interval: float = 0.2,
        grace_period: float = 10.0,
    ):
        self.registry = registry or default_registry()
        self.poll_interval = poll_interval
        self.grace_period = grace_period

    def __call__(
        self,
        instance: JobInstance,
        step: StepDefinition,
        env: ExecutionEnvironment,
        cancel: threading.Event,
    ) -> StepOutcome:
        handler = self.registry.resolve(step.uses)
        invocations = handler(step, env)
        proc_env = step_env(step, env)

        outputs: List[str] = []
        for inv in invocations:
            if cancel.is_set():
                raise Cancelled(job=instance.label, step=step.name)
            log.debug("[%s] %s: %s", instance.label, step.name, inv.display)
            code, out = self._spawn(inv, proc_env, cancel, instance, step)
            outputs.append(out)
            if code != 0:
                return StepOutcome(exit_code=code, output="".join(outputs)[-OUTPUT_TAIL:], cmd=inv.display)

        return StepOutcome(
            exit_code=0,
            output="".join(outputs)[-OUTPUT_TAIL:],
            cmd="; ".join(i.display for i in invocations),
        )

    def _spawn(
        self,
        inv: Invocation,
        proc_env: Dict[str, str],
        cancel: threading.Event,
        instance: JobInstance,
        step: StepDefinition,
    ) -> Tuple[int, str]:
        proc = subprocess.Popen(
            inv.args,
            shell=inv.shell,
            cwd=str(inv.cwd),
            env=proc_env,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            # own process group so a cancel reaches the shell's children too
            start_new_session=(os.name == "posix"),
        )
        while True:
            try:
                out, _ = proc.communicate(timeout=self.poll_interval)
                return proc.returncode, out or ""
            except subprocess.TimeoutExpired:
                if cancel.is_set():
                    self._stop(proc)
                    raise Cancelled(job=instance.label, step=step.name)

    def _stop(self, proc: subprocess.Popen) -> None:
        self._signal(proc, signal.SIGTERM if os.name == "posix" else None)
        try:
            proc.communicate(timeout=self.grace_period)
        except subprocess.TimeoutExpired:
            self._signal(proc, signal.SIGKILL if os.name == "posix" else None, kill=True)
            proc.communicate()

    @staticmethod
    def _signal(proc: subprocess.Popen, sig, kill: bool = False) -> None:
        if proc.poll() is not None:
            return
        if sig is not None:
            try:
                os.killpg(proc.pid, sig)
                return
            except ProcessLookupError:
                return
        if kill:
            proc.kill()
        else:
            proc.terminate()
