# pipeline.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from .actions import ActionRegistry, default_registry
from .environment import EnvironmentProvider, LocalEnvironmentProvider
from .executor import StepExecutor
from .graph import build
from .model import EventDescriptor, Pipeline, PipelineRun
from .results import aggregate
from .runner import ShellRunner, StepRunner
from .scheduler import JobScheduler
from .triggers import should_run
from .ui.console import Console, get_console

log = logging.getLogger(__name__)


def run_pipeline(
    pipeline: Pipeline,
    event: EventDescriptor,
    *,
    runner: Optional[StepRunner] = None,
    provider: Optional[EnvironmentProvider] = None,
    registry: Optional[ActionRegistry] = None,
    max_workers: Optional[int] = None,
    repo_root: str | Path = ".",
    console: Optional[Console] = None,
    on_scheduler: Optional[Callable[[JobScheduler], None]] = None,
) -> Optional[PipelineRun]:
    """
    Trigger gate -> job graph -> concurrent execution -> verdict.

    Returns None when no trigger admits the event. Configuration errors
    (bad matrix, duplicate identity, unknown action) raise before any job
    starts.

    `on_scheduler` receives the scheduler before dispatch so a caller can
    cancel instances (Ctrl-C, external request).
    """
    console = console or get_console()

    if not should_run(event, pipeline.triggers):
        log.info("event %s (%s) does not trigger %s", event.kind, event.branch, pipeline.name)
        return None

    if runner is None:
        registry = registry or default_registry()
        runner = ShellRunner(registry)
    if registry is not None:
        registry.validate(pipeline.jobs)

    instances = build(pipeline.jobs)
    log.info("%s: %d job instance(s) from %d job(s)", pipeline.name, len(instances), len(pipeline.jobs))

    provider = provider or LocalEnvironmentProvider(repo_root)
    scheduler = JobScheduler(StepExecutor(runner, provider, console), max_workers=max_workers)
    if on_scheduler is not None:
        on_scheduler(scheduler)

    run = PipelineRun(event=event, instances=instances, started_at=datetime.now(timezone.utc))
    scheduler.execute(instances)
    run.status = aggregate(instances)
    run.finished_at = datetime.now(timezone.utc)
    log.info("%s finished: %s", pipeline.name, run.status.value)
    return run
