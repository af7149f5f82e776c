# -*- coding: utf-8 -*-
"""
Compliance Validator - AT-EUDR-WF: Compliance Workflow Engine

Per-stage requirement checks over a ``WorkflowAggregates`` snapshot.
Every rule is boolean; a stage's requirements are met only when every
item passes. Unmet requirements are returned as data, never raised:
the stage state machine and certificate gate decide what a non-empty
blocker list means for their operation.

Stage rules:
    - PRODUCTION_REGISTRATION: >= 1 linked unit, all with coordinates
    - GEOLOCATION_VERIFICATION: all links geolocation-verified
    - DEFORESTATION_CHECK: no unreviewed alerts, all links checked
    - COLLECTION_AGGREGATION: >= 1 collection event
    - PROCESSING: optional, always passes (SKIPPED without events)
    - RISK_ASSESSMENT: always passes (computed automatically)
    - DUE_DILIGENCE_STATEMENT: risk assessed, certificate created
    - EXPORT_SHIPMENT: shipment recorded, certificate transferred
    - CUSTOMS_CLEARANCE: certificate customs-verified
    - DELIVERY_COMPLETE: certificate delivered

Example:
    >>> validator = ComplianceValidator()
    >>> result = validator.validate(aggregates, ComplianceStage.PRODUCTION_REGISTRATION)
    >>> result.all_requirements_met, result.blockers
    (False, ['No production units linked to this workflow...'])

Author: AgriTrace Platform Team
Date: March 2026
PRD: AT-EUDR-WF Compliance Workflow Engine
Status: Production Ready
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List

from agritrace.eudr_workflow.models import (
    CertificateStatus,
    ComplianceStage,
    EventKind,
    RequirementState,
    StageValidationResult,
    ValidationItem,
    certificate_rank,
)
from agritrace.eudr_workflow.store import WorkflowAggregates

logger = logging.getLogger(__name__)


def _names(names: List[str], limit: int = 5) -> str:
    shown = ", ".join(names[:limit])
    if len(names) > limit:
        shown += f" and {len(names) - limit} more"
    return shown


def check_quantity_conservation(
    aggregates: WorkflowAggregates, tolerance: float = 0.0,
) -> List[str]:
    """Return a message for each downstream stage exceeding its upstream.

    A relation is only checked once the downstream stage has events,
    since consolidation and processing are optional.
    """
    violations = []
    relations = (
        (EventKind.CONSOLIDATION, aggregates.consolidations, "Consolidated", "collected"),
        (EventKind.PROCESSING, aggregates.processings, "Processed", "upstream"),
        (EventKind.SHIPMENT, aggregates.shipments, "Shipped", "upstream"),
    )
    for kind, events, label, upstream_label in relations:
        if not events:
            continue
        downstream = aggregates.downstream_kg(kind)
        upstream = aggregates.upstream_kg(kind)
        if downstream > upstream + tolerance:
            violations.append(
                f"{label} quantity ({downstream} kg) exceeds "
                f"{upstream_label} quantity ({upstream} kg)"
            )
    return violations


class ComplianceValidator:
    """Pure per-stage requirement checks.

    Holds no state; safe to share between threads.
    """

    def __init__(self) -> None:
        self._rules: Dict[
            ComplianceStage,
            Callable[[WorkflowAggregates], List[ValidationItem]],
        ] = {
            ComplianceStage.PRODUCTION_REGISTRATION: self._production_registration,
            ComplianceStage.GEOLOCATION_VERIFICATION: self._geolocation_verification,
            ComplianceStage.DEFORESTATION_CHECK: self._deforestation_check,
            ComplianceStage.COLLECTION_AGGREGATION: self._collection_aggregation,
            ComplianceStage.PROCESSING: self._processing,
            ComplianceStage.RISK_ASSESSMENT: self._risk_assessment,
            ComplianceStage.DUE_DILIGENCE_STATEMENT: self._due_diligence_statement,
            ComplianceStage.EXPORT_SHIPMENT: self._export_shipment,
            ComplianceStage.CUSTOMS_CLEARANCE: self._customs_clearance,
            ComplianceStage.DELIVERY_COMPLETE: self._delivery_complete,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def validate(
        self,
        aggregates: WorkflowAggregates,
        stage: ComplianceStage,
    ) -> StageValidationResult:
        """Check every requirement of ``stage`` against ``aggregates``."""
        items = self._rules[stage](aggregates)

        if stage == ComplianceStage.PROCESSING:
            state = (
                RequirementState.SATISFIED
                if aggregates.processings
                else RequirementState.SKIPPED
            )
        elif all(item.passed for item in items):
            state = RequirementState.SATISFIED
        else:
            state = RequirementState.REQUIRED_PENDING

        result = StageValidationResult(
            stage=stage, items=items, requirement_state=state,
        )
        logger.debug(
            "Validated %s for workflow %s: met=%s, failed=%d",
            stage.value, aggregates.workflow.workflow_id,
            result.all_requirements_met, len(result.blockers),
        )
        return result

    def blockers(
        self,
        aggregates: WorkflowAggregates,
        stage: ComplianceStage,
    ) -> List[str]:
        return self.validate(aggregates, stage).blockers

    # ------------------------------------------------------------------
    # Stage rules
    # ------------------------------------------------------------------

    def _production_registration(self, agg: WorkflowAggregates) -> List[ValidationItem]:
        has_links = bool(agg.links)
        missing = agg.units_without_coordinates()
        return [
            ValidationItem(
                requirement="At least one production unit linked",
                passed=has_links,
                detail=None if has_links else (
                    "No production units linked to this workflow. "
                    "Link at least one production unit."
                ),
            ),
            ValidationItem(
                requirement="All production units have GPS coordinates",
                passed=not missing,
                detail=None if not missing else (
                    f"{len(missing)} production unit(s) missing GPS "
                    f"coordinates: {_names(missing)}"
                ),
            ),
        ]

    def _geolocation_verification(self, agg: WorkflowAggregates) -> List[ValidationItem]:
        unverified = [
            agg.unit_name(link.production_unit_id)
            for link in agg.links
            if not link.geolocation_verified
        ]
        return [
            ValidationItem(
                requirement="All production units have verified geolocation",
                passed=not unverified,
                detail=None if not unverified else (
                    f"{len(unverified)} production unit(s) need geolocation "
                    f"verification: {_names(unverified)}"
                ),
            ),
        ]

    def _deforestation_check(self, agg: WorkflowAggregates) -> List[ValidationItem]:
        alerted = sorted({
            agg.unit_name(alert.production_unit_id)
            for alert in agg.unreviewed_alerts()
        })
        unchecked = [
            agg.unit_name(link.production_unit_id)
            for link in agg.links
            if not link.deforestation_checked
        ]
        return [
            ValidationItem(
                requirement="No unresolved deforestation alerts",
                passed=not alerted,
                detail=None if not alerted else (
                    f"Production unit(s) with active deforestation alerts: "
                    f"{_names(alerted)}"
                ),
            ),
            ValidationItem(
                requirement="Deforestation check completed for all production units",
                passed=not unchecked,
                detail=None if not unchecked else (
                    f"Deforestation check not completed for: {_names(unchecked)}"
                ),
            ),
        ]

    def _collection_aggregation(self, agg: WorkflowAggregates) -> List[ValidationItem]:
        has_collections = bool(agg.collections)
        return [
            ValidationItem(
                requirement="At least one collection event recorded",
                passed=has_collections,
                detail=None if has_collections else (
                    "No collection events recorded. Record at least one "
                    "collection from a linked production unit."
                ),
            ),
        ]

    def _processing(self, agg: WorkflowAggregates) -> List[ValidationItem]:
        if agg.processings:
            detail = f"{len(agg.processings)} processing event(s) recorded"
        elif agg.workflow.skip_processing:
            detail = "Processing skipped for raw commodity chain"
        else:
            detail = "No processing recorded; stage reported as skipped"
        return [
            ValidationItem(
                requirement="Processing recorded or skipped",
                passed=True,
                detail=detail,
            ),
        ]

    def _risk_assessment(self, agg: WorkflowAggregates) -> List[ValidationItem]:
        risk = agg.workflow.risk
        if risk.is_assessed:
            detail = f"Risk classified {risk.classification.value} ({risk.score})"
        else:
            detail = "Risk assessment runs automatically on entering this stage"
        return [
            ValidationItem(
                requirement="Risk assessment computed",
                passed=True,
                detail=detail,
            ),
        ]

    def _due_diligence_statement(self, agg: WorkflowAggregates) -> List[ValidationItem]:
        assessed = agg.workflow.risk.is_assessed
        created = agg.workflow.certificate.status != CertificateStatus.NOT_CREATED
        return [
            ValidationItem(
                requirement="Risk assessment completed",
                passed=assessed,
                detail=None if assessed else "Risk assessment not completed",
            ),
            ValidationItem(
                requirement="Compliance certificate created",
                passed=created,
                detail=None if created else "Compliance certificate not yet created",
            ),
        ]

    def _export_shipment(self, agg: WorkflowAggregates) -> List[ValidationItem]:
        shipped = bool(agg.shipments)
        status = agg.workflow.certificate.status
        transferred = certificate_rank(status) >= certificate_rank(
            CertificateStatus.TRANSFERRED_TO_IMPORTER
        )
        return [
            ValidationItem(
                requirement="Export shipment recorded",
                passed=shipped,
                detail=None if shipped else "No export shipment recorded",
            ),
            ValidationItem(
                requirement="Certificate transferred to importer",
                passed=transferred,
                detail=None if transferred else (
                    f"Certificate must be transferred to the importer "
                    f"(current status: {status.value})"
                ),
            ),
        ]

    def _customs_clearance(self, agg: WorkflowAggregates) -> List[ValidationItem]:
        status = agg.workflow.certificate.status
        verified = certificate_rank(status) >= certificate_rank(
            CertificateStatus.CUSTOMS_VERIFIED
        )
        return [
            ValidationItem(
                requirement="Certificate verified by customs",
                passed=verified,
                detail=None if verified else (
                    f"Certificate awaiting customs verification "
                    f"(current status: {status.value})"
                ),
            ),
        ]

    def _delivery_complete(self, agg: WorkflowAggregates) -> List[ValidationItem]:
        status = agg.workflow.certificate.status
        delivered = status == CertificateStatus.DELIVERED
        return [
            ValidationItem(
                requirement="Delivery confirmed",
                passed=delivered,
                detail=None if delivered else (
                    f"Delivery not yet confirmed (current status: {status.value})"
                ),
            ),
        ]


__all__ = [
    "ComplianceValidator",
    "check_quantity_conservation",
]
