"""Tests for trigger evaluation."""

import pytest

from ciflow.model import EventDescriptor, TriggerRule
from ciflow.triggers import should_run

RULES = [TriggerRule("push", ("master",)), TriggerRule("pull_request")]


class TestShouldRun:
    """Event admission against push/pull-request rules."""

    def test_push_to_named_branch_runs(self):
        assert should_run(EventDescriptor("push", "master"), RULES) is True

    @pytest.mark.parametrize("branch", ["main", "feature/x", "master-old", None])
    def test_push_to_other_branch_does_not_run(self, branch):
        assert should_run(EventDescriptor("push", branch), RULES) is False

    @pytest.mark.parametrize("target", ["master", "develop", "release/1.0", None])
    def test_pull_request_without_filter_matches_any_target(self, target):
        assert should_run(EventDescriptor("pull_request", target), RULES) is True

    def test_kind_alias_with_dash(self):
        assert should_run(EventDescriptor("pull-request", "dev"), RULES) is True

    def test_unknown_kind_yields_false(self):
        assert should_run(EventDescriptor("schedule"), RULES) is False

    def test_no_rules_never_runs(self):
        assert should_run(EventDescriptor("push", "master"), []) is False

    def test_branch_glob_filter(self):
        rules = [TriggerRule("push", ("release/*",))]
        assert should_run(EventDescriptor("push", "release/2.1"), rules) is True
        assert should_run(EventDescriptor("push", "main"), rules) is False

    def test_push_rule_without_filter_matches_any_branch(self):
        assert should_run(EventDescriptor("push", "anything"), [TriggerRule("push")]) is True
