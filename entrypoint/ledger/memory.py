"""
EntryPoint — In-Memory Ledger

Reference LedgerState backed by a dict and an undo journal.

Every write appends (key, previous value or a missing marker) to the journal. A snapshot
handle records the journal length at the time it was taken; revert_to() pops
journal entries back to that length, restoring previous values in reverse order.
Handles taken after the target are invalidated, the target itself stays valid
so a caller can revert to the same point more than once.

commit() folds the journal into the durable state and invalidates all handles.
release() drops a single handle, so a run of reverted bundles between commits
does not accumulate checkpoints.

Not thread-safe. The controller serialises bundles on one ledger.
"""

from __future__ import annotations

import copy
from typing import Any

import structlog

from entrypoint.ledger.base import LedgerState, UnknownSnapshot

logger = structlog.get_logger()

_MISSING = object()


class InMemoryLedger(LedgerState):
    """Dict-backed ledger with snapshot/revert journaling."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._state: dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._journal: list[tuple[str, Any]] = []
        self._checkpoints: dict[int, int] = {}
        self._next_handle: int = 0
        self.committed_version: int = 0
        self._logger = logger.bind(system="ledger.memory")

    # ── Reads & writes ───────────────────────────────────────────

    def read(self, key: str, default: Any = None) -> Any:
        value = self._state.get(key, _MISSING)
        if value is _MISSING:
            return default
        return copy.deepcopy(value)

    def write(self, key: str, value: Any) -> None:
        self._journal.append((key, self._state.get(key, _MISSING)))
        self._state[key] = copy.deepcopy(value)

    # ── Transaction boundaries ───────────────────────────────────

    def snapshot(self) -> int:
        handle = self._next_handle
        self._next_handle += 1
        self._checkpoints[handle] = len(self._journal)
        return handle

    def revert_to(self, handle: int) -> None:
        position = self._checkpoints.get(handle)
        if position is None:
            raise UnknownSnapshot(handle)

        undone = 0
        while len(self._journal) > position:
            key, previous = self._journal.pop()
            if previous is _MISSING:
                self._state.pop(key, None)
            else:
                self._state[key] = previous
            undone += 1

        # Later checkpoints point into the discarded journal tail
        self._checkpoints = {
            h: pos for h, pos in self._checkpoints.items() if h <= handle
        }
        self._logger.debug("ledger_reverted", handle=handle, writes_undone=undone)

    def release(self, handle: int) -> None:
        self._checkpoints.pop(handle, None)

    def commit(self) -> None:
        writes = len(self._journal)
        self._journal.clear()
        self._checkpoints.clear()
        self.committed_version += 1
        self._logger.debug(
            "ledger_committed",
            version=self.committed_version,
            writes=writes,
        )

    # ── Introspection ────────────────────────────────────────────

    def as_dict(self) -> dict[str, Any]:
        """Deep copy of the current working state (testing / diagnostics)."""
        return copy.deepcopy(self._state)

    @property
    def open_snapshots(self) -> int:
        """Snapshot handles still valid for revert_to()."""
        return len(self._checkpoints)

    @property
    def pending_writes(self) -> int:
        """Writes made since the last commit."""
        return len(self._journal)

    def __contains__(self, key: str) -> bool:
        return key in self._state

    def __len__(self) -> int:
        return len(self._state)
