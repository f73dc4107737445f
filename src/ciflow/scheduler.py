# scheduler.py
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from .executor import StepExecutor
from .model import JobInstance, Status

log = logging.getLogger(__name__)

Key = Tuple[str, str]


class JobScheduler:
    """
    Runs every job instance concurrently and waits for all of them.

    Instances are independent: no ordering between them, no shared state,
    a failure or cancellation of one never touches its siblings. Failed
    instances are not retried.
    """

    def __init__(self, executor: StepExecutor, max_workers: Optional[int] = None):
        self.executor = executor
        self.max_workers = max_workers
        self._cancel: Dict[Key, threading.Event] = {}
        self._timers: List[threading.Timer] = []
        self._lock = threading.Lock()

    def cancel(self, key: Key, reason: str = "cancelled") -> bool:
        """Cancel one instance by (job name, label). False if unknown."""
        with self._lock:
            event = self._cancel.get(key)
        if event is None:
            return False
        log.info("cancelling %s (%s)", key[1], reason)
        event.set()
        return True

    def cancel_all(self) -> None:
        with self._lock:
            events = list(self._cancel.values())
        for event in events:
            event.set()

    def _arm_timeout(self, instance: JobInstance) -> None:
        minutes = instance.definition.timeout_minutes
        if not minutes:
            return
        timer = threading.Timer(minutes * 60, self.cancel, args=(instance.key, "timeout"))
        timer.daemon = True
        timer.start()
        self._timers.append(timer)

    def _run_one(self, instance: JobInstance) -> JobInstance:
        self._arm_timeout(instance)
        return self.executor.run(instance, self._cancel[instance.key])

    def execute(self, instances: Iterable[JobInstance]) -> List[JobInstance]:
        """Dispatch all instances; return once every one is terminal."""
        instances = list(instances)
        if not instances:
            return []

        with self._lock:
            self._cancel = {i.key: threading.Event() for i in instances}

        workers = len(instances) if self.max_workers is None else max(1, min(self.max_workers, len(instances)))
        try:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ciflow-job") as pool:
                futures: Dict[Future, JobInstance] = {pool.submit(self._run_one, i): i for i in instances}
                done = set()
                try:
                    for future in as_completed(futures):
                        done.add(future)
                        self._collect(future, futures[future])
                except KeyboardInterrupt:
                    log.warning("interrupted; cancelling %d job instance(s)", len(futures) - len(done))
                    self.cancel_all()
                    # still wait, so every environment gets torn down
                    for future, instance in futures.items():
                        if future not in done:
                            self._collect(future, instance)
                    raise
        finally:
            for timer in self._timers:
                timer.cancel()
            self._timers.clear()

        return instances

    @staticmethod
    def _collect(future: Future, instance: JobInstance) -> None:
        try:
            future.result()
        except Exception as e:
            log.exception("[%s] executor crashed", instance.label)
            _force_failed(instance, e)
        log.debug("[%s] finished: %s", instance.label, instance.status.value)


def _force_failed(instance: JobInstance, exc: BaseException) -> None:
    """An unexpected crash still leaves the instance terminal."""
    for execution in instance.executions:
        if execution.status is Status.RUNNING:
            execution.status = Status.FAILED
            execution.error = str(exc)
        elif execution.status is Status.PENDING:
            execution.status = Status.SKIPPED
    if not instance.status.terminal:
        instance.status = Status.FAILED
    instance.error = instance.error or f"{type(exc).__name__}: {exc}"
    if instance.finished_at is None:
        instance.finished_at = datetime.now(timezone.utc)
