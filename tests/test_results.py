"""Tests for result aggregation and exit codes."""

import pytest

from ciflow import job, matrix, sh
from ciflow.graph import build
from ciflow.model import EventDescriptor, PipelineRun, PipelineStatus, Status
from ciflow.results import EXIT_JOB_FAILED, EXIT_SUCCESS, aggregate, exit_code_for, summary_rows


def instances_with(*statuses):
    definition = job("t", sh("x", "true"), matrix=matrix(n=[str(i) for i in range(len(statuses))]))
    out = build([definition])
    for instance, status in zip(out, statuses):
        instance.status = status
    return out


class TestAggregate:
    def test_all_succeeded(self):
        assert aggregate(instances_with(Status.SUCCEEDED, Status.SUCCEEDED)) is PipelineStatus.SUCCESS

    @pytest.mark.parametrize("bad", [Status.FAILED, Status.CANCELLED])
    def test_any_other_terminal_state_fails(self, bad):
        assert aggregate(instances_with(Status.SUCCEEDED, bad)) is PipelineStatus.FAILED

    def test_exit_codes(self):
        assert exit_code_for(PipelineStatus.SUCCESS) == EXIT_SUCCESS
        assert exit_code_for(PipelineStatus.FAILED) == EXIT_JOB_FAILED

    def test_summary_rows(self):
        rows = summary_rows(instances_with(Status.SUCCEEDED, Status.FAILED))
        assert rows == [("t (0)", "succeeded"), ("t (1)", "failed")]


class TestPipelineRun:
    def test_exit_code_needs_verdict(self):
        run = PipelineRun(event=EventDescriptor("push", "main"), instances=[])
        with pytest.raises(RuntimeError):
            run.exit_code
        assert run.to_dict()["status"] is None
