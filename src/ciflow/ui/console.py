"""Console output formatting utilities for ciflow."""

from __future__ import annotations

import sys
import threading
from typing import Iterable, Optional


class Console:
    """Centralized console output formatting.

    Jobs run on worker threads, so every print holds a lock to keep lines
    from interleaving.
    """

    def __init__(self, debug: bool = False, stream=None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            stream: Where normal output goes (defaults to stdout)
        """
        self.debug = debug
        self.stream = stream
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        target = sys.stderr if err else (self.stream or sys.stdout)
        with self._lock:
            for line in lines:
                print(line, file=target)

    def print_run_started(
        self,
        pipeline: str,
        workflow: str,
        event: str,
        branch: Optional[str],
        job_count: int,
    ) -> None:
        """Print run start information."""
        self._out(
            "\nRUN STARTED",
            f"Pipeline: {pipeline}",
            f"Workflow: {workflow}",
            f"Event: {event}" + (f" ({branch})" if branch else ""),
            f"Jobs: {job_count}",
            "",
        )

    def print_not_triggered(self, event: str, branch: Optional[str]) -> None:
        self._out(f"\nNOT TRIGGERED: no trigger matches {event}" + (f" on {branch}" if branch else ""))

    def print_job_start(self, label: str, runs_on: str) -> None:
        """Print job start message."""
        self._out(f"[{label}] JOB STARTED on {runs_on}")

    def print_step(self, label: str, name: str) -> None:
        """Print step start message."""
        self._out(f"[{label}] ▶ {name}")

    def print_step_result(
        self,
        label: str,
        name: str,
        status: str,
        exit_code: Optional[int] = None,
        duration: Optional[float] = None,
        tolerated: bool = False,
    ) -> None:
        parts = [f"[{label}] {status.upper()}: {name}"]
        if exit_code is not None and exit_code != 0:
            parts.append(f"exit={exit_code}")
        if duration is not None:
            parts.append(f"{duration:.1f}s")
        if tolerated:
            parts.append("(continue-on-error)")
        self._out(" ".join(parts))

    def print_step_output(self, label: str, output: str) -> None:
        """Show captured output of a failed step."""
        if not output:
            return
        lines = output.rstrip().splitlines()
        if not self.debug:
            lines = lines[-20:]
        self._out(*(f"[{label}]   | {line}" for line in lines))

    def print_job_finished(self, label: str, status: str, error: Optional[str] = None) -> None:
        lines = [f"[{label}] JOB {status.upper()}"]
        if error:
            first = error.split("\n")[0]
            lines.append(f"[{label}]   {error if self.debug else first}")
        self._out(*lines)

    def print_plan(self, rows: Iterable[tuple]) -> None:
        """Print expanded job instances."""
        self._out("\nPLAN")
        for job, label, runs_on, steps in rows:
            self._out(f"  {label}  [{runs_on}]  {steps} step(s)")

    def print_results(self, rows: Iterable[tuple], verdict: str, exit_code: int) -> None:
        """Print final results summary."""
        self._out("\n" + "=" * 40, "RESULTS", "=" * 40)
        for label, status in rows:
            self._out(f"  {label}: {status.upper()}")
        self._out("-" * 40, f"PIPELINE: {verdict.upper()} (exit {exit_code})")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", f"{message}"]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
