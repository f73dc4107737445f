"""CLI tests: real workflows with tiny python steps, run through click's test runner."""

import json
import os
import sys

import pytest
import yaml
from click.testing import CliRunner

from ciflow.cli import cli

from conftest import FIXTURES_DIR

pytestmark = pytest.mark.skipif(os.name != "posix", reason="shell commands assume a POSIX shell")


def py(code):
    return f'"{sys.executable}" -c "{code}"'


def write_workflow(tmp_path, *, test_exit=0, uses=None):
    lint_steps = [{"name": "lint", "run": py("print('lint ok')")}]
    if uses:
        lint_steps.append({"uses": uses})
    doc = {
        "name": "demo",
        "on": {"push": {"branches": ["main"]}, "pull_request": None},
        "jobs": {
            "lint": {"steps": lint_steps},
            "test": {
                "runs-on": "${{ matrix.os }}",
                "strategy": {"matrix": {"os": ["ubuntu-latest", "macos-latest"]}},
                "steps": [
                    {"name": "build", "run": py("print('built')")},
                    {"name": "test", "run": py(f"import sys; sys.exit({test_exit})")},
                ],
            },
        },
    }
    path = tmp_path / "ci.yml"
    path.write_text(yaml.safe_dump(doc, sort_keys=False))
    return path


@pytest.fixture
def runner():
    return CliRunner()


def invoke(runner, *args):
    return runner.invoke(cli, list(args), catch_exceptions=False)


class TestRun:
    def test_successful_run(self, runner, tmp_path):
        wf = write_workflow(tmp_path)
        result = invoke(
            runner, "run", "--workflow", str(wf), "--branch", "main", "--repo-root", str(tmp_path)
        )
        assert result.exit_code == 0, result.output
        assert "RUN STARTED" in result.output
        assert "test (macos-latest): SUCCEEDED" in result.output
        assert "PIPELINE: SUCCESS (exit 0)" in result.output

    def test_failing_step_exits_nonzero(self, runner, tmp_path):
        wf = write_workflow(tmp_path, test_exit=3)
        report = tmp_path / "out" / "report.json"
        result = invoke(
            runner,
            "run", "--workflow", str(wf), "--branch", "main",
            "--repo-root", str(tmp_path), "--in-place", "--report", str(report),
        )
        assert result.exit_code == 1, result.output
        assert "lint: SUCCEEDED" in result.output
        assert "test (ubuntu-latest): FAILED" in result.output

        data = json.loads(report.read_text())
        assert data["status"] == "failed"
        failing = next(j for j in data["jobs"] if j["label"] == "test (ubuntu-latest)")
        assert [s["exit_code"] for s in failing["steps"]] == [0, 3]

    def test_event_not_triggered(self, runner, tmp_path):
        wf = write_workflow(tmp_path)
        result = invoke(runner, "run", "--workflow", str(wf), "--branch", "develop")
        assert result.exit_code == 0
        assert "NOT TRIGGERED" in result.output
        assert "RESULTS" not in result.output

    def test_pull_request_any_branch(self, runner, tmp_path):
        wf = write_workflow(tmp_path)
        result = invoke(
            runner,
            "run", "--workflow", str(wf), "--event", "pull_request", "--branch", "develop",
            "--repo-root", str(tmp_path), "--in-place",
        )
        assert result.exit_code == 0, result.output

    def test_unknown_action_is_config_error(self, runner, tmp_path):
        wf = write_workflow(tmp_path, uses="acme/not-installed@v1")
        result = invoke(runner, "run", "--workflow", str(wf), "--branch", "main")
        assert result.exit_code == 2
        assert "RUN STARTED" not in result.output

    def test_missing_workflow(self, runner, tmp_path):
        result = invoke(runner, "run", "--workflow", str(tmp_path / "nope.yml"))
        assert result.exit_code == 2

    def test_bad_meta(self, runner, tmp_path):
        wf = write_workflow(tmp_path)
        result = runner.invoke(cli, ["run", "--workflow", str(wf), "--branch", "main", "--meta", "novalue"])
        assert result.exit_code == 2


class TestPlanAndCheck:
    def test_plan_lists_instances(self, runner, tmp_path):
        wf = write_workflow(tmp_path)
        result = invoke(runner, "plan", "--workflow", str(wf), "--branch", "main")
        assert result.exit_code == 0, result.output
        assert "demo: push on main -> runs" in result.output
        assert "test (ubuntu-latest)  [ubuntu-latest]  2 step(s)" in result.output
        assert "lint  [ubuntu-latest]  1 step(s)" in result.output

    def test_plan_not_triggered(self, runner, tmp_path):
        wf = write_workflow(tmp_path)
        result = invoke(runner, "plan", "--workflow", str(wf), "--branch", "develop")
        assert "-> not triggered" in result.output

    def test_check_rust_fixture(self, runner):
        result = runner.invoke(cli, ["check", "--workflow", str(FIXTURES_DIR / "rust_ci.yml")])
        assert result.exit_code == 0, result.output
        assert "OK (2 job(s), 4 instance(s))" in result.output

    def test_check_invalid(self, runner, tmp_path):
        path = tmp_path / "broken.yml"
        path.write_text("on: push\njobs:\n  a:\n    needs: [b]\n    steps: [{run: 'true'}]\n")
        result = runner.invoke(cli, ["check", "--workflow", str(path)])
        assert result.exit_code == 2
