"""Tests for YAML workflow loading and validation."""

import textwrap

import pytest

from ciflow.actions import RUN, default_registry
from ciflow.config import load_yaml_workflow, loads
from ciflow.errors import ConfigurationError
from ciflow.graph import build
from ciflow.model import SecretRef, TriggerRule

from conftest import FIXTURES_DIR


def yaml_text(s):
    return textwrap.dedent(s).lstrip()


class TestRustWorkflow:
    """The lint + cross-platform test workflow fixture."""

    @pytest.fixture
    def pipeline(self):
        return load_yaml_workflow(FIXTURES_DIR / "rust_ci.yml")

    def test_triggers(self, pipeline):
        assert pipeline.name == "CI"
        assert pipeline.triggers == (TriggerRule("push", ("master",)), TriggerRule("pull_request", None))

    def test_jobs(self, pipeline):
        lints, test = pipeline.jobs
        assert lints.name == "lints"
        assert lints.display_name == "Rust lints"
        assert lints.matrix is None
        assert lints.env == {"CARGO_INCREMENTAL": "0"}
        assert test.runs_on == "${{ matrix.os }}"
        assert dict(test.matrix.axes) == {"os": ("ubuntu-latest", "windows-latest", "macos-latest")}

    def test_steps(self, pipeline):
        lints = pipeline.jobs[0]
        names = [s.name for s in lints.steps]
        assert names == [
            "Run actions/checkout@v2",
            "Run actions-rs/toolchain@v1",
            "Run cargo fmt",
            "Run cargo clippy",
        ]
        fmt = lints.steps[2]
        assert fmt.uses == "actions-rs/cargo@v1"
        assert fmt.action == "actions-rs/cargo"
        assert dict(fmt.with_) == {"command": "fmt", "args": "-- --check"}
        assert fmt.continue_on_error is False

    def test_secret_reference_stays_opaque(self, pipeline):
        clippy = pipeline.jobs[0].steps[3]
        assert clippy.with_["token"] == SecretRef("GITHUB_TOKEN")

    def test_unnamed_cargo_steps_are_told_apart(self, pipeline):
        test = pipeline.jobs[1]
        assert [s.name for s in test.steps] == [
            "Run actions/checkout@v2",
            "Run actions-rs/toolchain@v1",
            "Run actions-rs/cargo@v1 (build)",
            "Run actions-rs/cargo@v1 (test)",
        ]

    def test_every_action_resolves(self, pipeline):
        default_registry().validate(pipeline.jobs)

    def test_expands_to_four_instances(self, pipeline):
        instances = build(pipeline.jobs)
        assert [i.label for i in instances] == [
            "lints",
            "test (ubuntu-latest)",
            "test (windows-latest)",
            "test (macos-latest)",
        ]
        assert [i.runs_on for i in instances][1:] == ["ubuntu-latest", "windows-latest", "macos-latest"]


class TestParsing:
    def test_run_step(self):
        pipeline = loads(yaml_text("""
            on: push
            jobs:
              build:
                steps:
                  - run: make all
                    working-directory: src
                    continue-on-error: true
        """))
        (st,) = pipeline.jobs[0].steps
        assert st.uses == RUN
        assert st.name == "Run make all"
        assert dict(st.with_) == {"run": "make all", "working-directory": "src"}
        assert st.continue_on_error is True

    def test_secrets_in_env_and_embedded_in_run(self):
        pipeline = loads(yaml_text("""
            on: push
            jobs:
              deploy:
                steps:
                  - run: echo token=${{ secrets.TOKEN }}
                    env:
                      TOKEN: ${{ secrets.TOKEN }}
        """))
        (st,) = pipeline.jobs[0].steps
        assert st.env == {"TOKEN": SecretRef("TOKEN")}
        # resolved when the step is invoked, never at load time
        assert st.with_["run"] == "echo token=${{ secrets.TOKEN }}"

    def test_on_as_list(self):
        pipeline = loads(yaml_text("""
            on: [push, pull_request]
            jobs:
              a:
                steps: [{run: "true"}]
        """))
        assert pipeline.triggers == (TriggerRule("push"), TriggerRule("pull_request"))

    def test_workflow_env_merges_under_job_env(self):
        pipeline = loads(yaml_text("""
            on: push
            env: {A: "1", B: "1"}
            jobs:
              a:
                env: {B: "2"}
                steps: [{run: "true"}]
        """))
        assert pipeline.jobs[0].env == {"A": "1", "B": "2"}

    def test_name_defaults_to_file_stem(self, tmp_path):
        path = tmp_path / "nightly.yml"
        path.write_text("on: push\njobs:\n  a:\n    steps: [{run: 'true'}]\n")
        assert load_yaml_workflow(path).name == "nightly"


class TestInvalidWorkflows:
    def assert_invalid(self, text, needle):
        with pytest.raises(ConfigurationError) as exc_info:
            loads(yaml_text(text))
        rendered = str(exc_info.value)
        assert needle in rendered, rendered

    def test_duplicate_job_ids(self):
        self.assert_invalid("""
            on: push
            jobs:
              a:
                steps: [{run: "true"}]
              a:
                steps: [{run: "false"}]
        """, "Duplicate key 'a'")

    def test_needs_is_rejected(self):
        self.assert_invalid("""
            on: push
            jobs:
              a:
                steps: [{run: "true"}]
              b:
                needs: [a]
                steps: [{run: "true"}]
        """, "independently")

    def test_step_with_uses_and_run(self):
        self.assert_invalid("""
            on: push
            jobs:
              a:
                steps:
                  - uses: actions/checkout@v2
                    run: echo hi
        """, "exactly one of")

    def test_job_without_steps(self):
        self.assert_invalid("""
            on: push
            jobs:
              a:
                steps: []
        """, "steps")

    def test_missing_on(self):
        self.assert_invalid("""
            jobs:
              a:
                steps: [{run: "true"}]
        """, "Missing required field: on")

    def test_matrix_include_not_supported(self):
        self.assert_invalid("""
            on: push
            jobs:
              a:
                strategy:
                  matrix:
                    os: [ubuntu-latest]
                    include: [{os: windows-latest}]
                steps: [{run: "true"}]
        """, "include")

    def test_bad_yaml(self):
        with pytest.raises(ConfigurationError) as exc_info:
            loads("on: [push\njobs: {")
        assert "Failed to parse YAML" in exc_info.value.message

    def test_empty_document(self):
        with pytest.raises(ConfigurationError):
            loads("")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_yaml_workflow(tmp_path / "nope.yml")

    def test_empty_axis_loads_but_does_not_build(self):
        pipeline = loads(yaml_text("""
            on: push
            jobs:
              a:
                strategy:
                  matrix:
                    os: []
                steps: [{run: "true"}]
        """))
        with pytest.raises(ConfigurationError):
            build(pipeline.jobs)
