#!/usr/bin/env python3
"""
Tests for the capped version log: snapshot recording, cursor movement,
branch truncation and eviction.
"""

from __future__ import annotations

import pytest

from playground.chat import Direction, VersionHistory
from playground.history import Message, VersionLog


def _msgs(*texts: str) -> list[Message]:
    roles = ["user", "assistant"]
    return [Message(role=roles[i % 2], content=text) for i, text in enumerate(texts)]


def _texts(messages) -> list[str]:
    return [m.text for m in messages]


def test_before_snapshot_keeps_cursor_until_after_exists():
    history = VersionHistory()
    log = history.record_before(VersionLog(), _msgs("A", "R1"), edit_index=0)

    assert len(log.versions) == 1
    assert log.version_index == -1
    assert log.reverted_at_index == 0
    assert log.versions[0].edit_index == 0


def test_after_snapshot_moves_cursor_onto_it():
    history = VersionHistory()
    before = history.record_before(VersionLog(), _msgs("A", "R1"), 0)
    after = history.record_after(before, _msgs("B", "R2"), 0)

    assert [_texts(v.messages) for v in after.versions] == [["A", "R1"], ["B", "R2"]]
    assert after.version_index == 1
    assert history.can_go_back(after)
    assert not history.can_go_forward(after)


def test_navigate_back_and_forward():
    history = VersionHistory()
    log = history.record_after(history.record_before(VersionLog(), _msgs("A"), 0), _msgs("B", "R2"), 0)

    back = history.navigate(log, Direction.BACK)
    assert back is not None
    log, messages = back
    assert _texts(messages) == ["A"]
    assert log.version_index == 0
    assert history.navigate(log, Direction.BACK) is None

    forward = history.navigate(log, Direction.FORWARD)
    assert forward is not None
    assert _texts(forward[1]) == ["B", "R2"]
    assert forward[0].version_index == 1
    assert history.navigate(forward[0], Direction.FORWARD) is None


def test_navigate_on_empty_log():
    history = VersionHistory()
    assert history.navigate(VersionLog(), Direction.BACK) is None
    assert history.navigate(VersionLog(), Direction.FORWARD) is None
    assert not history.can_go_back(VersionLog())
    assert not history.can_go_forward(VersionLog())


def test_edit_after_navigating_back_discards_later_snapshots():
    history = VersionHistory()
    log = VersionLog()
    log = history.record_after(history.record_before(log, _msgs("A", "R1"), 0), _msgs("B", "R2"), 0)
    log = history.record_after(history.record_before(log, _msgs("B", "R2"), 0), _msgs("C", "R3"), 0)
    assert len(log.versions) == 4

    log, _ = history.navigate(log, Direction.BACK)  # cursor on before-snapshot of second edit
    log = history.record_before(log, _msgs("B", "R2"), 0)

    assert len(log.versions) == 4
    assert _texts(log.versions[-1].messages) == ["B", "R2"]
    assert all(_texts(v.messages) != ["C", "R3"] for v in log.versions)


def test_cap_evicts_oldest_and_keeps_length():
    history = VersionHistory(max_versions=10)
    log = VersionLog()
    for i in range(5):
        log = history.record_before(log, _msgs(f"before {i}"), 0)
        log = history.record_after(log, _msgs(f"after {i}"), 0)
    assert len(log.versions) == 10
    oldest = log.versions[0]

    log = history.record_after(log, _msgs("one more"), 0)

    assert len(log.versions) == 10
    assert log.versions[0] is not oldest
    assert _texts(log.versions[0].messages) == ["after 0"]
    assert _texts(log.versions[-1].messages) == ["one more"]
    assert log.version_index == 9


def test_cap_shifts_cursor_with_eviction():
    history = VersionHistory(max_versions=2)
    log = history.record_after(history.record_before(VersionLog(), _msgs("A"), 0), _msgs("B"), 0)

    log = history.record_before(log, _msgs("B"), 0)

    assert len(log.versions) == 2
    assert log.version_index == 0
    assert _texts(log.versions[log.version_index].messages) == ["B"]


def test_operations_do_not_mutate_input_log():
    history = VersionHistory()
    original = VersionLog()
    history.record_before(original, _msgs("A"), 0)

    assert original.versions == ()
    assert original.version_index == -1


def test_cap_must_hold_a_pair():
    with pytest.raises(ValueError):
        VersionHistory(max_versions=1)


def test_log_rejects_cursor_out_of_range():
    with pytest.raises(ValueError):
        VersionLog(version_index=0)
