# -*- coding: utf-8 -*-
"""
Per-workflow mutual exclusion for read-modify-write operations.

Stage advances, certificate claims and commits, and event recording on
the same workflow are serialized; different workflows never contend.
Collaborator calls (ledger, satellite) must happen outside ``hold()``.
A workflow's lock only exists while some thread holds or waits for it.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Set


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class WorkflowLocks:
    """Registry of one lock per workflow id plus the in-flight operation set."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, _Entry] = {}
        self._in_flight: Set[str] = set()

    @contextmanager
    def hold(self, workflow_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(workflow_id)
            if entry is None:
                entry = self._locks[workflow_id] = _Entry()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[workflow_id]

    @property
    def lock_count(self) -> int:
        """Number of workflows currently held or waited on."""
        with self._guard:
            return len(self._locks)

    def try_begin(self, workflow_id: str, operation: str) -> bool:
        """Mark ``operation`` in flight for a workflow; False if it already is."""
        key = f"{workflow_id}:{operation}"
        with self._guard:
            if key in self._in_flight:
                return False
            self._in_flight.add(key)
            return True

    def end(self, workflow_id: str, operation: str) -> None:
        with self._guard:
            self._in_flight.discard(f"{workflow_id}:{operation}")

    def is_in_flight(self, workflow_id: str, operation: str) -> bool:
        with self._guard:
            return f"{workflow_id}:{operation}" in self._in_flight


__all__ = ["WorkflowLocks"]
