# triggers.py
from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Iterable

from .model import EventDescriptor, TriggerRule, normalize_kind


def _branch_matches(branch: str | None, patterns: Iterable[str]) -> bool:
    if branch is None:
        return False
    return any(fnmatchcase(branch, p) for p in patterns)


def rule_matches(event: EventDescriptor, rule: TriggerRule) -> bool:
    if normalize_kind(rule.kind) != normalize_kind(event.kind):
        return False
    # no filter -> any branch (including an event without one)
    if rule.branches is None:
        return True
    return _branch_matches(event.branch, rule.branches)


def should_run(event: EventDescriptor, rules: Iterable[TriggerRule]) -> bool:
    """
    Decide whether `event` starts a pipeline run.

    Admits the event if any rule has the same kind and either declares no
    branch filter or lists the event's branch (glob patterns allowed).
    Never raises; an event matching nothing yields False.
    """
    return any(rule_matches(event, r) for r in rules)
