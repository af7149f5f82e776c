# -*- coding: utf-8 -*-
"""
Traceability Event Engine - AT-EUDR-WF: Compliance Workflow Engine

Records the data the compliance stages are evaluated against:

- Production unit registration, linking and unlinking (unlinking is
  refused once collection events reference the unit)
- Verification signals: geolocation verification, manual deforestation
  checks, satellite vegetation-index screening, alert review
- Append-only collection, consolidation, processing and shipment
  events with quantity conservation enforced before persistence:
  consolidated <= collected, processed <= consolidated-or-collected,
  shipped <= processed-or-consolidated

Every saved event is recorded on the immutable ledger fire-and-forget;
the event stands even if the ledger write never completes.

Example:
    >>> engine = TraceabilityEventEngine(store=store, ledger=recorder)
    >>> engine.record_collection(wf_id, RecordCollectionRequest(
    ...     production_unit_id="PU-1", farmer_id="F-1",
    ...     collector_id="AGG-1", quantity_kg=1000.0,
    ... ))

Author: AgriTrace Platform Team
Date: March 2026
PRD: AT-EUDR-WF Compliance Workflow Engine
Status: Production Ready
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Optional

from agritrace.exceptions import (
    InsufficientQuantityError,
    NotFoundError,
    PreconditionFailedError,
    SatelliteAnalysisError,
    TraceabilityIntegrityError,
)
from agritrace.eudr_workflow.collaborators import SatelliteAnalysisClient
from agritrace.eudr_workflow.compliance_validator import check_quantity_conservation
from agritrace.eudr_workflow.ledger import LedgerRecorder
from agritrace.eudr_workflow.locks import WorkflowLocks
from agritrace.eudr_workflow.metrics import (
    observe_duration,
    record_processing_error,
    record_quantity_rejection,
)
from agritrace.eudr_workflow.models import (
    AlertSeverity,
    CollectionEvent,
    ConsolidationEvent,
    CreateWorkflowRequest,
    DateRange,
    DeforestationAlert,
    EventKind,
    ProcessingEvent,
    ProductionUnit,
    ProductionUnitLink,
    RecordCollectionRequest,
    RecordConsolidationRequest,
    RecordProcessingRequest,
    RecordShipmentRequest,
    ShipmentEvent,
    TraceabilityEvent,
    Workflow,
)
from agritrace.eudr_workflow.store import TraceabilityStore, WorkflowAggregates

logger = logging.getLogger(__name__)

# Float tolerance when comparing cumulative quantities
_QUANTITY_EPSILON = 1e-9

_EVENT_LISTS = {
    EventKind.CONSOLIDATION: "consolidations",
    EventKind.PROCESSING: "processings",
    EventKind.SHIPMENT: "shipments",
}


def _utcnow() -> datetime:
    """Return current UTC datetime with microseconds zeroed."""
    return datetime.now(timezone.utc).replace(microsecond=0)


class TraceabilityEventEngine:
    """Maintains production unit links, verification flags and events.

    Attributes:
        _store: Traceability store.
        _ledger: Optional LedgerRecorder for fire-and-forget recording.
        _satellite: Optional satellite analysis collaborator.
        _locks: Per-workflow locks shared with the other engines.
        _provenance: Optional ProvenanceTracker.
    """

    def __init__(
        self,
        store: TraceabilityStore,
        config: Any = None,
        ledger: Optional[LedgerRecorder] = None,
        satellite: Optional[SatelliteAnalysisClient] = None,
        locks: Optional[WorkflowLocks] = None,
        provenance: Any = None,
    ) -> None:
        self._store = store
        self._config = config or {}
        self._ledger = ledger
        self._satellite = satellite
        self._locks = locks or WorkflowLocks()
        self._provenance = provenance

        self._cutoff = date.fromisoformat(
            self._get_cfg("deforestation_cutoff_date", "2020-12-31")
        )
        self._ndvi_loss = self._get_cfg("ndvi_loss_threshold", -0.15)
        self._ndvi_clearcut = self._get_cfg("ndvi_clearcut_threshold", -0.30)
        self._window_days = int(self._get_cfg("satellite_window_days", 365))

        logger.info(
            "TraceabilityEventEngine initialized: cutoff=%s, ndvi_loss=%.2f, "
            "satellite=%s",
            self._cutoff, self._ndvi_loss,
            "configured" if satellite is not None else "none",
        )

    # ------------------------------------------------------------------
    # Workflows and production units
    # ------------------------------------------------------------------

    def create_workflow(self, request: CreateWorkflowRequest) -> Workflow:
        workflow = Workflow(**request.model_dump())
        workflow.stage_updated_at = workflow.created_at
        self._store.save_workflow(workflow)
        self._track("workflow", workflow.workflow_id, "create_workflow", workflow)
        logger.info(
            "Workflow %s created for exporter %s (%s)",
            workflow.workflow_id, workflow.exporter_id, workflow.produce_type,
        )
        return workflow

    def set_skip_processing(self, workflow_id: str, skip: bool) -> Workflow:
        with self._locks.hold(workflow_id):
            workflow = self._require_workflow(workflow_id)
            workflow.skip_processing = skip
            self._store.save_workflow(workflow)
        logger.info("Workflow %s skip_processing=%s", workflow_id, skip)
        return workflow

    def register_production_unit(self, unit: ProductionUnit) -> ProductionUnit:
        self._store.save_production_unit(unit)
        logger.info(
            "Production unit %s (%s) registered: coordinates=%s",
            unit.production_unit_id, unit.name, unit.has_coordinates,
        )
        return unit

    def link_production_unit(
        self, workflow_id: str, production_unit_id: str,
    ) -> ProductionUnitLink:
        """Link a registered unit to a workflow; returns the existing link if present."""
        with self._locks.hold(workflow_id):
            self._require_workflow(workflow_id)
            self._require_unit(production_unit_id)
            existing = self._store.find_link(workflow_id, production_unit_id)
            if existing is not None:
                logger.debug(
                    "Production unit %s already linked to %s",
                    production_unit_id, workflow_id,
                )
                return existing
            link = ProductionUnitLink(
                workflow_id=workflow_id,
                production_unit_id=production_unit_id,
            )
            self._store.save_link(link)
        self._track("production_unit", workflow_id, "link", link)
        logger.info("Production unit %s linked to %s", production_unit_id, workflow_id)
        return link

    def unlink_production_unit(self, workflow_id: str, production_unit_id: str) -> None:
        """Remove a link unless collection events reference the unit.

        Raises:
            NotFoundError: If the unit is not linked to the workflow.
            TraceabilityIntegrityError: If collections reference the unit.
        """
        with self._locks.hold(workflow_id):
            link = self._require_link(workflow_id, production_unit_id)
            referencing = [
                e for e in self._store.find_events(workflow_id, EventKind.COLLECTION)
                if getattr(e, "production_unit_id", None) == production_unit_id
            ]
            if referencing:
                raise TraceabilityIntegrityError(
                    f"Production unit {production_unit_id} is referenced by "
                    f"{len(referencing)} collection event(s) and cannot be unlinked",
                    workflow_id=workflow_id,
                    context={"collection_event_count": len(referencing)},
                )
            self._store.delete_link(link.link_id)
        self._track("production_unit", workflow_id, "unlink", {"unit": production_unit_id})
        logger.info("Production unit %s unlinked from %s", production_unit_id, workflow_id)

    # ------------------------------------------------------------------
    # Verification signals
    # ------------------------------------------------------------------

    def verify_geolocation(
        self, workflow_id: str, production_unit_id: str, verified: bool = True,
    ) -> ProductionUnitLink:
        with self._locks.hold(workflow_id):
            link = self._require_link(workflow_id, production_unit_id)
            unit = self._require_unit(production_unit_id)
            if verified and not unit.has_coordinates:
                raise PreconditionFailedError(
                    f"Production unit {unit.name} has no coordinates to verify",
                    workflow_id=workflow_id,
                    failure_reasons=["Production unit missing GPS coordinates"],
                )
            link.geolocation_verified = verified
            link.updated_at = _utcnow()
            self._store.save_link(link)
            if verified:
                unit.last_verified_at = link.updated_at
                self._store.save_production_unit(unit)
        self._track("production_unit", workflow_id, "verify_geolocation", link)
        return link

    def record_deforestation_check(
        self, workflow_id: str, production_unit_id: str, clear: bool,
    ) -> ProductionUnitLink:
        """Record the outcome of a deforestation check done outside the engine."""
        with self._locks.hold(workflow_id):
            link = self._require_link(workflow_id, production_unit_id)
            link.deforestation_checked = True
            link.deforestation_clear = clear
            link.updated_at = _utcnow()
            self._store.save_link(link)
        self._track("production_unit", workflow_id, "deforestation_check", link)
        logger.info(
            "Deforestation check for %s on %s: clear=%s",
            production_unit_id, workflow_id, clear,
        )
        return link

    def screen_deforestation(
        self,
        workflow_id: str,
        production_unit_id: str,
        today: Optional[date] = None,
    ) -> ProductionUnitLink:
        """Screen a unit by comparing vegetation index before and after the cutoff.

        A drop at or below the loss threshold marks the unit not clear and
        raises a HIGH alert (CRITICAL at or below the clear-cut threshold).
        A collaborator failure is logged and leaves the link unchanged.

        Raises:
            SatelliteAnalysisError: If no satellite client is configured.
            PreconditionFailedError: If the unit has no coordinates.
        """
        if self._satellite is None:
            raise SatelliteAnalysisError(
                "No satellite analysis client configured",
                workflow_id=workflow_id,
                operation="query_vegetation_index",
            )
        link = self._require_link(workflow_id, production_unit_id)
        unit = self._require_unit(production_unit_id)
        if not unit.has_coordinates:
            raise PreconditionFailedError(
                f"Production unit {unit.name} has no coordinates to screen",
                workflow_id=workflow_id,
                failure_reasons=["Production unit missing GPS coordinates"],
            )

        today = today or _utcnow().date()
        window = timedelta(days=self._window_days)
        before = DateRange(start=self._cutoff - window, end=self._cutoff)
        after_start = max(self._cutoff + timedelta(days=1), today - window)
        after = DateRange(start=min(after_start, today), end=today)

        start_time = time.monotonic()
        try:
            stats = self._satellite.query_vegetation_index(unit.geometry(), before, after)
        except Exception as exc:
            record_processing_error("satellite", type(exc).__name__)
            logger.warning(
                "Satellite screening failed for %s on %s: %s",
                production_unit_id, workflow_id, exc,
            )
            return link
        observe_duration("satellite_screening", time.monotonic() - start_time)

        delta = stats.delta
        clear = delta > self._ndvi_loss
        with self._locks.hold(workflow_id):
            link = self._require_link(workflow_id, production_unit_id)
            link.deforestation_checked = True
            link.deforestation_clear = clear
            link.updated_at = _utcnow()
            self._store.save_link(link)
            if not clear:
                severity = (
                    AlertSeverity.CRITICAL
                    if delta <= self._ndvi_clearcut
                    else AlertSeverity.HIGH
                )
                self._store.save_alert(DeforestationAlert(
                    production_unit_id=production_unit_id,
                    severity=severity,
                    alert_date=today,
                    source="satellite",
                    description=f"Vegetation index dropped by {abs(delta):.3f} since cutoff",
                    ndvi_delta=round(delta, 6),
                ))

        self._track("production_unit", workflow_id, "satellite_screening", {
            "unit": production_unit_id, "delta": round(delta, 6), "clear": clear,
        })
        logger.info(
            "Satellite screening for %s: dNDVI=%.4f clear=%s",
            production_unit_id, delta, clear,
        )
        return link

    def raise_alert(self, alert: DeforestationAlert) -> DeforestationAlert:
        self._require_unit(alert.production_unit_id)
        self._store.save_alert(alert)
        logger.info(
            "Deforestation alert %s (%s) raised on %s",
            alert.alert_id, alert.severity.value, alert.production_unit_id,
        )
        return alert

    def review_alert(self, alert_id: str) -> DeforestationAlert:
        alert = self._store.find_alert(alert_id)
        if alert is None:
            raise NotFoundError(
                f"Deforestation alert {alert_id} not found",
                entity_type="deforestation_alert",
                entity_id=alert_id,
            )
        alert.is_reviewed = True
        self._store.save_alert(alert)
        logger.info("Deforestation alert %s reviewed", alert_id)
        return alert

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def record_collection(
        self, workflow_id: str, request: RecordCollectionRequest,
    ) -> CollectionEvent:
        def build(agg: WorkflowAggregates) -> CollectionEvent:
            if self._store.find_link(workflow_id, request.production_unit_id) is None:
                raise NotFoundError(
                    f"Production unit {request.production_unit_id} is not "
                    f"linked to workflow {workflow_id}",
                    entity_type="production_unit_link",
                    entity_id=request.production_unit_id,
                    workflow_id=workflow_id,
                )
            return CollectionEvent(
                workflow_id=workflow_id,
                production_unit_id=request.production_unit_id,
                quantity_kg=request.quantity_kg,
                source_id=request.farmer_id,
                destination_id=request.collector_id,
                occurred_at=request.occurred_at or _utcnow(),
            )

        return self._record(workflow_id, EventKind.COLLECTION, request.quantity_kg, build)

    def record_consolidation(
        self, workflow_id: str, request: RecordConsolidationRequest,
    ) -> ConsolidationEvent:
        return self._record(
            workflow_id, EventKind.CONSOLIDATION, request.quantity_kg,
            lambda agg: ConsolidationEvent(
                workflow_id=workflow_id,
                quantity_kg=request.quantity_kg,
                source_id=request.aggregator_id,
                destination_id=request.processor_id,
                occurred_at=request.occurred_at or _utcnow(),
            ),
        )

    def record_processing(
        self, workflow_id: str, request: RecordProcessingRequest,
    ) -> ProcessingEvent:
        return self._record(
            workflow_id, EventKind.PROCESSING, request.input_quantity_kg,
            lambda agg: ProcessingEvent(
                workflow_id=workflow_id,
                quantity_kg=request.input_quantity_kg,
                output_quantity_kg=request.output_quantity_kg,
                processing_type=request.processing_type,
                source_id=request.processor_id,
                destination_id=request.processor_id,
                occurred_at=request.occurred_at or _utcnow(),
            ),
        )

    def record_shipment(
        self, workflow_id: str, request: RecordShipmentRequest,
    ) -> ShipmentEvent:
        return self._record(
            workflow_id, EventKind.SHIPMENT, request.quantity_kg,
            lambda agg: ShipmentEvent(
                workflow_id=workflow_id,
                quantity_kg=request.quantity_kg,
                source_id=request.exporter_id,
                destination_id=request.importer_id,
                destination_country=request.destination_country,
                shipment_reference=request.shipment_reference,
                occurred_at=request.occurred_at or _utcnow(),
            ),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _record(
        self,
        workflow_id: str,
        kind: EventKind,
        quantity_kg: float,
        build: Callable[[WorkflowAggregates], TraceabilityEvent],
    ) -> Any:
        start_time = time.monotonic()
        with self._locks.hold(workflow_id):
            agg = WorkflowAggregates.load(self._store, workflow_id)
            if kind != EventKind.COLLECTION:
                available = agg.available_kg(kind)
                if quantity_kg > available + _QUANTITY_EPSILON:
                    record_quantity_rejection(kind.value)
                    logger.warning(
                        "Rejected %s of %.3f kg on %s: only %.3f kg available",
                        kind.value, quantity_kg, workflow_id, available,
                    )
                    raise InsufficientQuantityError(
                        available_kg=available,
                        requested_kg=quantity_kg,
                        workflow_id=workflow_id,
                        event_kind=kind.value,
                    )
            event = build(agg)
            if kind != EventKind.COLLECTION:
                self._check_chain(agg, event)
            self._store.save_event(event)
            if kind == EventKind.COLLECTION:
                workflow = agg.workflow
                workflow.total_quantity_kg = agg.collected_kg + event.quantity_kg
                self._store.save_workflow(workflow)

        self._track("traceability_event", workflow_id, kind.value.lower(), event)
        if self._ledger is not None:
            self._ledger.record(
                kind.value,
                event.model_dump(mode="json", exclude={"ledger_transaction_id"}),
                on_recorded=lambda tx_id: self._attach_transaction(
                    workflow_id, kind, event.event_id, tx_id,
                ),
            )

        elapsed = time.monotonic() - start_time
        observe_duration(f"record_{kind.value.lower()}", elapsed)
        logger.info(
            "Recorded %s %s on %s: %.3f kg in %.1fms",
            kind.value, event.event_id, workflow_id, quantity_kg, elapsed * 1000,
        )
        return event

    def _check_chain(self, agg: WorkflowAggregates, event: TraceabilityEvent) -> None:
        """Reject an event that would break conservation further downstream.

        The first consolidation or processing event changes the upstream
        total that later stages are measured against.
        """
        getattr(agg, _EVENT_LISTS[event.kind]).append(event)
        violations = check_quantity_conservation(agg, tolerance=_QUANTITY_EPSILON)
        if violations:
            detail = "; ".join(violations)
            record_quantity_rejection(event.kind.value)
            logger.warning(
                "Rejected %s on %s: %s", event.kind.value, event.workflow_id, detail,
            )
            raise TraceabilityIntegrityError(
                f"Recording this {event.kind.value.lower()} event would break "
                f"quantity conservation: {detail}",
                workflow_id=event.workflow_id,
                context={
                    "event_kind": event.kind.value,
                    "violations": violations,
                },
            )

    def _attach_transaction(
        self, workflow_id: str, kind: EventKind, event_id: str, tx_id: str,
    ) -> None:
        with self._locks.hold(workflow_id):
            event = self._store.find_event(workflow_id, kind, event_id)
            if event is None or event.ledger_transaction_id:
                return
            event.ledger_transaction_id = tx_id
            self._store.save_event(event)

    def _require_workflow(self, workflow_id: str) -> Workflow:
        workflow = self._store.find_workflow(workflow_id)
        if workflow is None:
            raise NotFoundError(
                f"Workflow {workflow_id} not found",
                entity_type="workflow",
                entity_id=workflow_id,
                workflow_id=workflow_id,
            )
        return workflow

    def _require_unit(self, production_unit_id: str) -> ProductionUnit:
        unit = self._store.find_production_unit(production_unit_id)
        if unit is None:
            raise NotFoundError(
                f"Production unit {production_unit_id} not found",
                entity_type="production_unit",
                entity_id=production_unit_id,
            )
        return unit

    def _require_link(self, workflow_id: str, production_unit_id: str) -> ProductionUnitLink:
        link = self._store.find_link(workflow_id, production_unit_id)
        if link is None:
            raise NotFoundError(
                f"Production unit {production_unit_id} is not linked to "
                f"workflow {workflow_id}",
                entity_type="production_unit_link",
                entity_id=production_unit_id,
                workflow_id=workflow_id,
            )
        return link

    def _track(self, entity_type: str, workflow_id: str, action: str, data: Any) -> None:
        if self._provenance is None:
            return
        self._provenance.record(
            entity_type, workflow_id, action, self._provenance.build_hash(data),
        )

    def _get_cfg(self, key: str, default: Any) -> Any:
        if hasattr(self._config, key):
            return getattr(self._config, key)
        if isinstance(self._config, dict):
            return self._config.get(key, default)
        return default


__all__ = ["TraceabilityEventEngine"]
