# ciflow_workflow.py
# ciflow's own CI: lint, then tests on every supported Python.
from __future__ import annotations

from ciflow import job, matrix, on_pull_request, on_push, pipeline, sh


def workflow():
    return pipeline(
        "ciflow",
        # Lint job - ruff check + format check; format drift is reported, not fatal
        job(
            "lint",
            sh("Ruff check", "ruff check src tests"),
            sh("Ruff format check", "ruff format --check src tests", continue_on_error=True),
        ),

        # Test job - one instance per Python version
        job(
            "test",
            sh("Install package", "python${{ matrix.python }} -m pip install -e '.[test]'"),
            sh("Run pytest", "python${{ matrix.python }} -m pytest -q"),
            matrix=matrix(python=["3.10", "3.11", "3.12"]),
            timeout_minutes=20,
        ),
        triggers=[on_push("main"), on_pull_request()],
    )
