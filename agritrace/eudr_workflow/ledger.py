# -*- coding: utf-8 -*-
"""
Ledger Recorder - AT-EUDR-WF: Compliance Workflow Engine

Runs ledger calls on a bounded worker pool so they never block the
mutation that triggered them. Two uses:

- ``record()``: fire-and-forget event recording. A failure is logged
  and counted; the only follow-up allowed on success is the
  ``on_recorded`` callback attaching the transaction id to a record.
- ``submit()``: arbitrary background work (asynchronous certificate
  issuance), returning the future or ``None`` when the pool is saturated.

Example:
    >>> recorder = LedgerRecorder(SandboxLedgerClient())
    >>> recorder.record("COLLECTION", {"workflow_id": "WF-1"})
    >>> recorder.drain(timeout=5)
    True

Author: AgriTrace Platform Team
Date: March 2026
PRD: AT-EUDR-WF Compliance Workflow Engine
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, Optional, Set

from agritrace.eudr_workflow.collaborators import LedgerClient
from agritrace.eudr_workflow.metrics import record_ledger_write

logger = logging.getLogger(__name__)


class LedgerRecorder:
    """Bounded background executor for ledger collaborator calls.

    Attributes:
        _ledger: Ledger collaborator.
        _executor: Worker pool.
        _slots: Bounds queued plus running tasks.
        _pending: Futures not yet completed.
    """

    def __init__(self, ledger: LedgerClient, config: Any = None) -> None:
        """Initialize LedgerRecorder.

        Args:
            ledger: Ledger collaborator used by every task.
            config: Optional EUDRWorkflowConfig or dict.
        """
        self._ledger = ledger
        self._config = config or {}
        workers = int(self._get_cfg("ledger_worker_count", 5))
        max_pending = int(self._get_cfg("ledger_max_pending", 100))
        self._drain_timeout = float(self._get_cfg("ledger_drain_timeout_seconds", 30.0))

        self._executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="ledger-async",
        )
        self._slots = threading.BoundedSemaphore(max_pending)
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()

        logger.info(
            "LedgerRecorder initialized: workers=%d, max_pending=%d",
            workers, max_pending,
        )

    @property
    def ledger(self) -> LedgerClient:
        return self._ledger

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, fn: Callable[..., Any], *args: Any) -> Optional[Future]:
        """Queue ``fn(*args)``; returns None when the pool is saturated."""
        if not self._slots.acquire(blocking=False):
            return None
        try:
            future = self._executor.submit(fn, *args)
        except RuntimeError:
            self._slots.release()
            raise
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)
        return future

    def record(
        self,
        event_type: str,
        payload: Dict[str, Any],
        on_recorded: Optional[Callable[[str], None]] = None,
    ) -> Optional[Future]:
        """Record ``payload`` on the ledger without waiting for the result.

        Args:
            event_type: Ledger event type, e.g. COLLECTION or STAGE_ADVANCE.
            payload: JSON-serializable event data.
            on_recorded: Called with the transaction id after success.

        Returns:
            The task future, or None when the record was dropped.
        """
        body = dict(payload, event_type=event_type)

        def _task() -> Optional[str]:
            try:
                tx_id = self._ledger.record_event(body)
            except Exception as exc:
                logger.warning(
                    "Ledger recording failed for %s (workflow %s): %s",
                    event_type, body.get("workflow_id"), exc,
                )
                record_ledger_write(event_type, "failed")
                return None
            record_ledger_write(event_type, "success")
            if on_recorded is not None:
                try:
                    on_recorded(tx_id)
                except Exception:
                    logger.exception(
                        "Failed to attach ledger transaction %s for %s",
                        tx_id, event_type,
                    )
            return tx_id

        future = self.submit(_task)
        if future is None:
            logger.warning(
                "Ledger queue full; dropping %s record for workflow %s",
                event_type, body.get("workflow_id"),
            )
            record_ledger_write(event_type, "dropped")
        return future

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued tasks, including ones queued while waiting.

        Returns:
            True if nothing is pending when the call returns.
        """
        limit = self._drain_timeout if timeout is None else timeout
        deadline = time.monotonic() + limit
        while True:
            with self._pending_lock:
                pending = set(self._pending)
            if not pending:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            wait(pending, timeout=remaining)

    @property
    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def shutdown(self, wait_for_pending: bool = True) -> None:
        if wait_for_pending:
            self.drain()
        self._executor.shutdown(wait=wait_for_pending)
        logger.info("LedgerRecorder shut down")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _on_done(self, future: Future) -> None:
        # Free the slot first so an empty pending set implies free slots
        self._slots.release()
        with self._pending_lock:
            self._pending.discard(future)

    def _get_cfg(self, key: str, default: Any) -> Any:
        if isinstance(self._config, dict):
            return self._config.get(key, default)
        return getattr(self._config, key, default)


__all__ = ["LedgerRecorder"]
