# -*- coding: utf-8 -*-
"""
Provenance Tracking for the Compliance Workflow Engine - AT-EUDR-WF

SHA-256 chain-hashed audit trail of every state-changing workflow
operation. Each entry links to the previous one, so rewriting any entry
breaks verification of every later entry.

Operation Types:
    - stage_transition: Stage advance or revert (revert carries the reason)
    - risk_assessment: Stage display risk persisted on the workflow
    - certificate: Certificate claim, commit, rollback, transfer, lifecycle step
    - traceability_event: Collection, consolidation, processing, shipment
    - production_unit: Link, unlink, verification signals
    - due_diligence: Due diligence statement generated

Example:
    >>> tracker = ProvenanceTracker()
    >>> tracker.record("stage_transition", "WF-abc", "advance", "ab12...")
    >>> valid, chain = tracker.verify_chain("WF-abc")
    >>> assert valid is True

Author: AgriTrace Platform Team
Date: March 2026
PRD: AT-EUDR-WF Compliance Workflow Engine
Status: Production Ready
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return current UTC datetime with microseconds zeroed."""
    return datetime.now(timezone.utc).replace(microsecond=0)


VALID_OPERATION_TYPES = frozenset({
    "workflow",
    "stage_transition",
    "risk_assessment",
    "certificate",
    "traceability_event",
    "production_unit",
    "due_diligence",
})


class ProvenanceTracker:
    """Chain-hashed operation log grouped by workflow.

    Attributes:
        _chain_store: Entries grouped by entity id.
        _global_chain: All entries in recording order.
        _last_chain_hash: Hash the next entry links to.
    """

    _GENESIS_HASH = hashlib.sha256(b"agritrace-eudr-workflow-genesis").hexdigest()

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._chain_store: Dict[str, List[Dict[str, Any]]] = {}
        self._global_chain: List[Dict[str, Any]] = []
        self._last_chain_hash: str = self._GENESIS_HASH
        logger.info("ProvenanceTracker initialized for compliance workflow engine")

    def record(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        data_hash: str,
        user_id: str = "system",
    ) -> str:
        """Append an entry and return its chain hash.

        Args:
            entity_type: One of VALID_OPERATION_TYPES.
            entity_id: Usually the workflow id.
            action: advance, revert, issue, rollback, transfer, record, ...
            data_hash: SHA-256 of the operation payload (see build_hash).
            user_id: Actor performing the operation.
        """
        if entity_type not in VALID_OPERATION_TYPES:
            logger.warning("Unknown provenance entity type: %s", entity_type)

        with self._lock:
            timestamp = _utcnow().isoformat()
            previous = self._last_chain_hash
            chain_hash = self._compute_chain_hash(
                previous, data_hash, action, timestamp,
            )
            entry = {
                "entity_type": entity_type,
                "entity_id": entity_id,
                "action": action,
                "data_hash": data_hash,
                "user_id": user_id,
                "timestamp": timestamp,
                "previous_hash": previous,
                "chain_hash": chain_hash,
            }
            self._chain_store.setdefault(entity_id, []).append(entry)
            self._global_chain.append(entry)
            self._last_chain_hash = chain_hash

        logger.debug(
            "Recorded provenance: %s/%s action=%s hash=%s",
            entity_type, entity_id, action, chain_hash[:16],
        )
        return chain_hash

    def verify_chain(self, entity_id: str) -> Tuple[bool, List[Dict[str, Any]]]:
        """Recompute every chain hash recorded for ``entity_id``.

        Returns:
            Tuple of (is_valid, chain entries oldest first).
        """
        chain = self.get_chain(entity_id)
        for i, entry in enumerate(chain):
            expected = self._compute_chain_hash(
                entry["previous_hash"],
                entry["data_hash"],
                entry["action"],
                entry["timestamp"],
            )
            if expected != entry["chain_hash"]:
                logger.warning(
                    "Chain verification failed for %s at index %d",
                    entity_id, i,
                )
                return False, chain
        return True, chain

    def get_chain(self, entity_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(e) for e in self._chain_store.get(entity_id, [])]

    def _compute_chain_hash(
        self,
        previous_hash: str,
        data_hash: str,
        action: str,
        timestamp: str,
    ) -> str:
        combined = json.dumps({
            "previous": previous_hash,
            "data": data_hash,
            "action": action,
            "timestamp": timestamp,
        }, sort_keys=True)
        return hashlib.sha256(combined.encode("utf-8")).hexdigest()

    @property
    def entry_count(self) -> int:
        return len(self._global_chain)

    def export_json(self) -> str:
        """Export all provenance entries as a JSON string."""
        with self._lock:
            return json.dumps(self._global_chain, indent=2, default=str)

    def build_hash(self, data: Any) -> str:
        """Build a deterministic SHA-256 hash for a model, dict, or list."""
        if hasattr(data, "model_dump"):
            data = data.model_dump(mode="json")
        raw = json.dumps(data, sort_keys=True, default=str)
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


__all__ = [
    "VALID_OPERATION_TYPES",
    "ProvenanceTracker",
]
