# cli.py
from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from ciflow.errors import ConfigurationError
from ciflow.environment import LocalEnvironmentProvider
from ciflow.git_facts.git import current_branch, head_sha
from ciflow.graph import plan as plan_instances
from ciflow.loader import find_workflow_files, load_workflow
from ciflow.logging_config import configure_logging
from ciflow.model import EventDescriptor, Pipeline
from ciflow.pipeline import run_pipeline
from ciflow.actions import default_registry
from ciflow.results import EXIT_CONFIG_ERROR, EXIT_INTERRUPTED, summary_rows, write_report
from ciflow.triggers import should_run
from ciflow.ui.console import Console, get_console, set_console


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix not in (".py", ".yml", ".yaml"):
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Specify a different path:\n  ciflow run --workflow .github/workflows/ci.yml",
            )
            sys.exit(EXIT_CONFIG_ERROR)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                "  ciflow_workflow.py",
                "  *_workflow.py",
                "  .github/workflows/*.yml",
            ],
            suggestion="Specify a workflow explicitly:\n  ciflow run --workflow my_workflow.py",
        )
        sys.exit(EXIT_CONFIG_ERROR)

    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[f"  {f}" for f in workflow_files],
            suggestion="Specify a workflow explicitly:\n  ciflow run --workflow .github/workflows/ci.yml",
        )
        sys.exit(EXIT_CONFIG_ERROR)

    return workflow_files[0]


def _config_error(e: ConfigurationError) -> None:
    get_console().print_error(
        "Invalid configuration",
        e.message,
        details=e.errors or None,
        suggestion="\n".join(e.suggestions) if e.suggestions else None,
    )
    sys.exit(EXIT_CONFIG_ERROR)


def _load(workflow: str | None) -> Tuple[Path, Pipeline]:
    workflow_path = discover_workflow(workflow)
    try:
        pipeline = load_workflow(workflow_path)
        default_registry().validate(pipeline.jobs)
    except ConfigurationError as e:
        _config_error(e)
    return workflow_path, pipeline


def _parse_meta(meta: Tuple[str, ...]) -> dict:
    out = {}
    for item in meta:
        key, sep, value = item.partition("=")
        if not sep:
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint="--meta")
        out[key] = value
    return out


def build_event(kind: str, branch: Optional[str], meta: Tuple[str, ...] = ()) -> EventDescriptor:
    """Event from CLI flags; branch and sha default to the local checkout."""
    metadata = _parse_meta(meta)
    try:
        if branch is None:
            branch = current_branch()
        metadata.setdefault("sha", head_sha())
    except (subprocess.CalledProcessError, FileNotFoundError):
        get_console().print_debug("not a git checkout; event has no branch/sha defaults")
    return EventDescriptor(kind=kind, branch=branch, metadata=metadata)


# ---------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------

workflow_option = click.option(
    "--workflow",
    default=None,
    envvar="CIFLOW_WORKFLOW",
    help="Workflow file (.py, .yml); discovered if omitted",
)
event_option = click.option(
    "--event",
    default="push",
    show_default=True,
    envvar="CIFLOW_EVENT",
    help="Event kind (push, pull_request, ...)",
)
branch_option = click.option(
    "--branch",
    default=None,
    envvar="CIFLOW_BRANCH",
    help="Branch pushed to, or PR target branch (defaults to current git branch)",
)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    envvar="CIFLOW_DEBUG",
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--log-level", default="WARNING", show_default=True, envvar="CIFLOW_LOG_LEVEL", help="Diagnostics log level")
@click.pass_context
def cli(ctx, debug, log_level):
    """ciflow: run CI pipelines locally: triggers, matrix jobs, fail-fast steps."""
    set_console(Console(debug=debug))
    configure_logging(log_level, debug=debug)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@workflow_option
@event_option
@branch_option
@click.option("--meta", multiple=True, help="Event metadata KEY=VALUE (repeatable)")
@click.option("--workers", default=None, type=click.IntRange(min=1), envvar="CIFLOW_WORKERS", help="Max parallel job instances")
@click.option("--report", default=None, type=click.Path(dir_okay=False), envvar="CIFLOW_REPORT", help="Write a JSON run report here")
@click.option("--isolate/--in-place", default=True, show_default=True, help="Run each job instance in a fresh copy of the repo")
@click.option("--repo-root", default=".", type=click.Path(file_okay=False, exists=True), help="Repository to run against")
@click.pass_context
def run(ctx, workflow, event, branch, meta, workers, report, isolate, repo_root):
    """Run a workflow for one event."""
    console = get_console()
    workflow_path, pipeline = _load(workflow)
    descriptor = build_event(event, branch, meta)

    if not should_run(descriptor, pipeline.triggers):
        console.print_not_triggered(descriptor.kind, descriptor.branch)
        return

    console.print_run_started(
        pipeline=pipeline.name,
        workflow=workflow_path.name,
        event=descriptor.kind,
        branch=descriptor.branch,
        job_count=len(pipeline.jobs),
    )

    try:
        result = run_pipeline(
            pipeline,
            descriptor,
            registry=default_registry(),
            provider=LocalEnvironmentProvider(repo_root, isolate=isolate),
            max_workers=workers,
            console=console,
        )
    except ConfigurationError as e:
        _config_error(e)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user; all job instances cancelled")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    console.print_results(summary_rows(result.instances), result.status.value, result.exit_code)
    if report:
        out = write_report(result, report)
        console.print_info(f"Report: {out}")
    sys.exit(result.exit_code)


@cli.command()
@workflow_option
@event_option
@branch_option
def plan(workflow, event, branch):
    """Show whether an event triggers the workflow and which job instances it would run."""
    console = get_console()
    _path, pipeline = _load(workflow)
    descriptor = build_event(event, branch)

    try:
        rows = plan_instances(pipeline.jobs)
    except ConfigurationError as e:
        _config_error(e)

    triggered = should_run(descriptor, pipeline.triggers)
    branch_note = f" on {descriptor.branch}" if descriptor.branch else ""
    console.print_info(f"{pipeline.name}: {descriptor.kind}{branch_note} -> {'runs' if triggered else 'not triggered'}")
    console.print_plan(rows)


@cli.command()
@workflow_option
def check(workflow):
    """Load and validate a workflow without running it."""
    console = get_console()
    path, pipeline = _load(workflow)
    try:
        rows = plan_instances(pipeline.jobs)
    except ConfigurationError as e:
        _config_error(e)
    console.print_info(f"{path}: OK ({len(pipeline.jobs)} job(s), {len(rows)} instance(s))")


if __name__ == "__main__":
    cli()
