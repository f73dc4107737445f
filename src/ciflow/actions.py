# actions.py
from __future__ import annotations

import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from .environment import ExecutionEnvironment
from .errors import CIError, ConfigurationError
from .model import SECRET_EXPR, JobDefinition, SecretRef, StepDefinition

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# A step's `uses` reference is opaque to the orchestrator. The registry maps
# the reference (minus its @version) to a handler that turns the step's
# parameters into zero or more process invocations. The orchestrator only
# ever observes the invocations' exit status.
#
# An empty invocation list means "nothing to run" and counts as success
# (e.g. actions/checkout: the workspace is already checked out on acquire).
# ---------------------------------------------------------------------

RUN = "run"

TOOL_HINTS = {
    "cargo": "Install Rust via rustup (https://rustup.rs) or fix PATH.",
    "rustup": "Install rustup (https://rustup.rs) or fix PATH.",
    "bash": "Install bash or pick another `shell:` for this step.",
    "pwsh": "Install PowerShell or pick another `shell:` for this step.",
    "python3": "Install Python 3 or fix PATH (python3).",
}


@dataclass(frozen=True)
class Invocation:
    """One process to spawn for a step."""
    args: str | List[str]
    cwd: Path
    shell: bool = False

    @property
    def display(self) -> str:
        if isinstance(self.args, str):
            return self.args
        return " ".join(shlex.quote(a) for a in self.args)


ActionHandler = Callable[[StepDefinition, ExecutionEnvironment], List[Invocation]]


def resolve_param(value: Any, env: ExecutionEnvironment) -> Any:
    """Secret references become their value only at invocation time.

    Covers a whole-value SecretRef and `${{ secrets.X }}` embedded in a string.
    """
    if isinstance(value, SecretRef):
        return env.secrets.get(value.name, "")
    if isinstance(value, str):
        return SECRET_EXPR.sub(lambda m: env.secrets.get(m.group(1), ""), value)
    return value


def param(step: StepDefinition, env: ExecutionEnvironment, key: str, default: Any = None) -> Any:
    return resolve_param(step.with_.get(key, default), env)


def require_tool(tool: str) -> str:
    """Return the tool's path, or raise with an install hint."""
    path = shutil.which(tool)
    if path is None:
        raise CIError(
            kind="tool_unavailable",
            message=f"{tool} is not available",
            details={"hint": TOOL_HINTS.get(tool, f"Install {tool} or fix PATH."), "tool": tool},
        )
    return path


def _split(args: Any, step: StepDefinition) -> List[str]:
    if args is None:
        return []
    if isinstance(args, (list, tuple)):
        return [str(a) for a in args]
    try:
        return shlex.split(str(args))
    except ValueError as e:
        raise ConfigurationError(
            f"step '{step.name}' has malformed `args`: {e}",
            step=step.name,
            suggestions=["Close every quote in `with.args`"],
        ) from None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


# ---------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------

class ActionRegistry:
    def __init__(self) -> None:
        self._handlers: Dict[str, ActionHandler] = {}

    def register(self, ref: str, handler: Optional[ActionHandler] = None):
        """Register a handler; usable as a decorator."""
        def _add(fn: ActionHandler) -> ActionHandler:
            self._handlers[ref.split("@", 1)[0]] = fn
            return fn

        if handler is not None:
            return _add(handler)
        return _add

    def __contains__(self, ref: str) -> bool:
        return ref.split("@", 1)[0] in self._handlers

    def known(self) -> List[str]:
        return sorted(self._handlers)

    def resolve(self, ref: str) -> ActionHandler:
        try:
            return self._handlers[ref.split("@", 1)[0]]
        except KeyError:
            raise ConfigurationError(
                f"Unresolvable action reference: {ref}",
                suggestions=[f"Known actions: {', '.join(self.known())}"],
            ) from None

    def validate(self, jobs: Iterable[JobDefinition]) -> None:
        """Fail before anything runs if any step names an unknown action or has unparsable `args`."""
        jobs = list(jobs)
        missing = [
            f"{job.name} -> {step.name}: {step.uses}"
            for job in jobs
            for step in job.steps
            if step.uses not in self
        ]
        if missing:
            raise ConfigurationError(
                "Unresolvable step action reference",
                errors=missing,
                suggestions=[f"Known actions: {', '.join(self.known())}"],
            )

        malformed = []
        for job in jobs:
            for step in job.steps:
                try:
                    _split(step.with_.get("args"), step)
                except ConfigurationError as e:
                    malformed.append(f"{job.name} -> {e.message}")
        if malformed:
            raise ConfigurationError(
                "Malformed step arguments",
                errors=malformed,
                suggestions=["Close every quote in `with.args`"],
            )


# ---------------------------------------------------------------------
# Built-in actions
# ---------------------------------------------------------------------

def _cwd(step: StepDefinition, env: ExecutionEnvironment) -> Path:
    sub = param(step, env, "working-directory") or "."
    cwd = (env.workspace / sub).resolve()
    if not cwd.exists():
        raise FileNotFoundError(f"step '{step.name}' working-directory not found: {cwd}")
    return cwd


def run_shell(step: StepDefinition, env: ExecutionEnvironment) -> List[Invocation]:
    cmd = param(step, env, "run")
    if not cmd:
        raise ConfigurationError(f"step '{step.name}' has an empty `run`", step=step.name)
    shell = param(step, env, "shell")
    cwd = _cwd(step, env)
    if not shell:
        return [Invocation(args=str(cmd), cwd=cwd, shell=True)]
    if shell in ("pwsh", "powershell"):
        return [Invocation(args=[require_tool(shell), "-Command", str(cmd)], cwd=cwd)]
    if shell == "bash":
        return [Invocation(args=[require_tool("bash"), "-eo", "pipefail", "-c", str(cmd)], cwd=cwd)]
    return [Invocation(args=[require_tool(shell), "-c", str(cmd)], cwd=cwd)]


def checkout(step: StepDefinition, env: ExecutionEnvironment) -> List[Invocation]:
    return []


def rust_toolchain(step: StepDefinition, env: ExecutionEnvironment) -> List[Invocation]:
    rustup = require_tool("rustup")
    toolchain = str(param(step, env, "toolchain", "stable"))
    cmd = [rustup, "toolchain", "install", toolchain]
    profile = param(step, env, "profile")
    if profile:
        cmd += ["--profile", str(profile)]
    components = param(step, env, "components")
    if components:
        names = components if isinstance(components, (list, tuple)) else str(components).split(",")
        for c in names:
            if str(c).strip():
                cmd += ["--component", str(c).strip()]

    out = [Invocation(args=cmd, cwd=env.workspace)]
    if _as_bool(param(step, env, "override", False)):
        out.append(Invocation(args=[rustup, "override", "set", toolchain], cwd=env.workspace))
    return out


def cargo(step: StepDefinition, env: ExecutionEnvironment) -> List[Invocation]:
    command = param(step, env, "command")
    if not command:
        raise ConfigurationError(f"step '{step.name}' needs `with.command`", step=step.name)
    args = [require_tool("cargo"), str(command), *_split(param(step, env, "args"), step)]
    return [Invocation(args=args, cwd=_cwd(step, env))]


def clippy_check(step: StepDefinition, env: ExecutionEnvironment) -> List[Invocation]:
    # the token only matters for annotating a hosted check run
    args = [require_tool("cargo"), "clippy", *_split(param(step, env, "args"), step)]
    return [Invocation(args=args, cwd=_cwd(step, env))]


def default_registry() -> ActionRegistry:
    registry = ActionRegistry()
    registry.register(RUN, run_shell)
    registry.register("actions/checkout", checkout)
    registry.register("actions-rs/toolchain", rust_toolchain)
    registry.register("actions-rs/cargo", cargo)
    registry.register("actions-rs/clippy-check", clippy_check)
    return registry
