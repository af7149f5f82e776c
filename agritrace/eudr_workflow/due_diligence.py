# -*- coding: utf-8 -*-
"""
Due Diligence Engine - AT-EUDR-WF: Compliance Workflow Engine

Builds the summary backing a Due Diligence Statement (EUDR Article 4)
for a workflow: production unit and farmer counts, countries of
production, the persisted stage risk, deforestation status and the
traceability hash. Rendering the statement document is left to callers.

A statement can only be generated once risk has been assessed. Each
statement is recorded on the ledger fire-and-forget.

Example:
    >>> engine = DueDiligenceEngine(store, risk_engine=risk)
    >>> summary = engine.generate_statement(wf_id)
    >>> summary.dds_reference
    'DDS-3F9A1C2B'

Author: AgriTrace Platform Team
Date: March 2026
PRD: AT-EUDR-WF Compliance Workflow Engine
Status: Production Ready
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import date
from typing import Any, Dict, List, Optional

from agritrace.exceptions import NotFoundError, PreconditionFailedError
from agritrace.eudr_workflow.certificate_gate import (
    deforestation_status,
    traceability_hash,
)
from agritrace.eudr_workflow.ledger import LedgerRecorder
from agritrace.eudr_workflow.metrics import observe_duration
from agritrace.eudr_workflow.models import DueDiligenceSummary
from agritrace.eudr_workflow.risk_assessment import RiskAssessmentEngine
from agritrace.eudr_workflow.store import TraceabilityStore, WorkflowAggregates

logger = logging.getLogger(__name__)


class DueDiligenceEngine:
    """Generates and keeps due diligence statement summaries.

    Attributes:
        _store: Traceability store.
        _risk: Risk engine used to resolve countries of production.
        _ledger: Optional LedgerRecorder.
        _statements: In-memory summaries keyed by DDS reference.
        _provenance: Optional ProvenanceTracker.
    """

    def __init__(
        self,
        store: TraceabilityStore,
        config: Any = None,
        risk_engine: Optional[RiskAssessmentEngine] = None,
        ledger: Optional[LedgerRecorder] = None,
        provenance: Any = None,
    ) -> None:
        self._store = store
        self._config = config or {}
        self._risk = risk_engine or RiskAssessmentEngine(store, config=config)
        self._ledger = ledger
        self._provenance = provenance
        self._lock = threading.Lock()
        self._statements: Dict[str, DueDiligenceSummary] = {}
        self._cutoff = date.fromisoformat(
            self._get_cfg("deforestation_cutoff_date", "2020-12-31")
        )

        logger.info("DueDiligenceEngine initialized")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate_statement(self, workflow_id: str) -> DueDiligenceSummary:
        """Generate the due diligence summary for a workflow.

        Raises:
            NotFoundError: If the workflow does not exist.
            PreconditionFailedError: If risk has not been assessed.
        """
        start_time = time.monotonic()
        agg = WorkflowAggregates.load(self._store, workflow_id)
        workflow = agg.workflow
        if not workflow.risk.is_assessed:
            raise PreconditionFailedError(
                "Risk assessment must be completed before generating a "
                "due diligence statement",
                workflow_id=workflow_id,
                failure_reasons=["Risk assessment not completed"],
            )

        recent = [a for a in agg.alerts if a.alert_date > self._cutoff]
        summary = DueDiligenceSummary(
            workflow_id=workflow_id,
            exporter_id=workflow.exporter_id,
            produce_type=workflow.produce_type,
            total_quantity_kg=agg.collected_kg,
            production_unit_count=len(agg.links),
            farmer_count=len(agg.farmer_ids()),
            countries=self._risk.resolve_countries(agg),
            risk_classification=workflow.risk.classification,
            risk_score=workflow.risk.score,
            deforestation_status=deforestation_status(agg, recent),
            traceability_hash=traceability_hash(agg),
        )
        with self._lock:
            self._statements[summary.dds_reference] = summary

        if self._provenance is not None:
            self._provenance.record(
                "due_diligence", workflow_id, "generate",
                self._provenance.build_hash(summary),
            )
        if self._ledger is not None:
            self._ledger.record(
                "DUE_DILIGENCE_STATEMENT",
                summary.model_dump(mode="json", exclude={"ledger_transaction_id"}),
                on_recorded=lambda tx_id: self._attach_transaction(
                    summary.dds_reference, tx_id,
                ),
            )

        elapsed = time.monotonic() - start_time
        observe_duration("due_diligence", elapsed)
        logger.info(
            "Due diligence statement %s generated for %s: units=%d farmers=%d "
            "risk=%s in %.1fms",
            summary.dds_reference, workflow_id, summary.production_unit_count,
            summary.farmer_count, summary.risk_classification.value,
            elapsed * 1000,
        )
        return summary

    def get_statement(self, dds_reference: str) -> DueDiligenceSummary:
        with self._lock:
            summary = self._statements.get(dds_reference)
        if summary is None:
            raise NotFoundError(
                f"Due diligence statement {dds_reference} not found",
                entity_type="due_diligence_statement",
                entity_id=dds_reference,
            )
        return summary.model_copy(deep=True)

    def list_statements(self, workflow_id: Optional[str] = None) -> List[DueDiligenceSummary]:
        with self._lock:
            statements = list(self._statements.values())
        if workflow_id is not None:
            statements = [s for s in statements if s.workflow_id == workflow_id]
        return [s.model_copy(deep=True) for s in statements]

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            statements = list(self._statements.values())
        by_class: Dict[str, int] = {}
        for s in statements:
            key = s.risk_classification.value
            by_class[key] = by_class.get(key, 0) + 1
        return {
            "total_statements": len(statements),
            "by_risk_classification": by_class,
            "recorded_on_ledger": sum(
                1 for s in statements if s.ledger_transaction_id
            ),
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _attach_transaction(self, dds_reference: str, tx_id: str) -> None:
        with self._lock:
            summary = self._statements.get(dds_reference)
            if summary is not None and not summary.ledger_transaction_id:
                summary.ledger_transaction_id = tx_id

    def _get_cfg(self, key: str, default: Any) -> Any:
        if hasattr(self._config, key):
            return getattr(self._config, key)
        if isinstance(self._config, dict):
            return self._config.get(key, default)
        return default


__all__ = ["DueDiligenceEngine"]
