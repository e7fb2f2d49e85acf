"""
Conversation Version History

Undo/redo log of full message-list snapshots taken around edits. Every
operation is a pure function of the previous VersionLog and returns the new
one, so callers persist exactly the log they just computed.

Layout after two edits (b = before-snapshot, a = after-snapshot):

    [b0, a0, b1, a1]          cursor -> a1
    navigate(BACK)            cursor -> b1
    edit again                [b0, a0, b1, b2, ...] (a1 discarded)

The log is capped; the oldest snapshots are evicted first, so very old revert
targets become unreachable.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from playground.chat.models import Direction
from playground.history.models import Message, VersionLog, VersionSnapshot

logger = logging.getLogger(__name__)

DEFAULT_MAX_VERSIONS = 10


class VersionHistory:
    """Pure operations over a capped version log."""

    def __init__(self, max_versions: int = DEFAULT_MAX_VERSIONS):
        if max_versions < 2:
            raise ValueError("max_versions must hold at least a before/after pair")
        self.max_versions = max_versions

    def record_before(self, log: VersionLog, messages: Sequence[Message], edit_index: int) -> VersionLog:
        """
        Record the message list as it was before an edit.

        Snapshots after the cursor are discarded (branch truncation). The
        cursor is not advanced until the matching after-snapshot exists, so a
        failed edit leaves the cursor where it was.
        """
        kept = log.versions[: log.version_index + 1]
        snapshot = VersionSnapshot(messages=tuple(messages), edit_index=edit_index)
        if len(kept) < len(log.versions):
            logger.debug("Discarding %d snapshot(s) after cursor", len(log.versions) - len(kept))

        return self._capped(kept + (snapshot,), log.version_index, edit_index)

    def record_after(self, log: VersionLog, messages: Sequence[Message], edit_index: int) -> VersionLog:
        """Record the regenerated message list and move the cursor onto it."""
        snapshot = VersionSnapshot(messages=tuple(messages), edit_index=edit_index)
        versions = log.versions + (snapshot,)
        return self._capped(versions, len(versions) - 1, log.reverted_at_index)

    def navigate(self, log: VersionLog, direction: Direction) -> tuple[VersionLog, list[Message]] | None:
        """
        Move the cursor one step.

        Returns:
            The new log and the snapshot's messages, or None at either end
        """
        target = log.version_index + int(direction)
        if not log.versions or not 0 <= target < len(log.versions):
            return None

        new_log = log.model_copy(update={"version_index": target})
        return new_log, list(log.versions[target].messages)

    def can_go_back(self, log: VersionLog) -> bool:
        return log.version_index > 0

    def can_go_forward(self, log: VersionLog) -> bool:
        return 0 <= log.version_index < len(log.versions) - 1

    def _capped(self, versions: tuple[VersionSnapshot, ...], version_index: int, reverted_at_index: int) -> VersionLog:
        overflow = len(versions) - self.max_versions
        if overflow > 0:
            logger.info("Version log over cap (%d); evicting %d oldest snapshot(s)", self.max_versions, overflow)
            versions = versions[overflow:]
            version_index = max(version_index - overflow, -1)

        return VersionLog(
            versions=versions,
            version_index=version_index,
            reverted_at_index=reverted_at_index,
        )
