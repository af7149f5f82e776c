# -*- coding: utf-8 -*-
"""
Stage State Machine - AT-EUDR-WF: Compliance Workflow Engine

Owns a workflow's position among the ten compliance stages. The stored
``current_stage`` is only a hint: every read re-derives the stage from
the recorded data, falling back to the earliest stage whose requirements
no longer hold. Derivation never moves a workflow forward; only
``advance`` does, and only when the current stage has no blockers.

Transitions:
    - advance: validator gate, entry actions from the stage table
      (entering RISK_ASSESSMENT persists the stage display risk), audit
      record, fire-and-forget ledger record
    - revert: one stage back with a mandatory reason, no entry actions

Example:
    >>> machine = StageStateMachine(store, ComplianceValidator(), risk_engine)
    >>> machine.get_current_stage(wf_id).can_advance
    False

Author: AgriTrace Platform Team
Date: March 2026
PRD: AT-EUDR-WF Compliance Workflow Engine
Status: Production Ready
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from agritrace.eudr_workflow.compliance_validator import ComplianceValidator
from agritrace.eudr_workflow.ledger import LedgerRecorder
from agritrace.eudr_workflow.locks import WorkflowLocks
from agritrace.eudr_workflow.metrics import (
    observe_duration,
    record_stage_blocked,
    record_stage_transition,
)
from agritrace.eudr_workflow.models import (
    ActionItem,
    ActionType,
    CertificateStatus,
    ComplianceStage,
    RequirementState,
    StageAdvancementResult,
    StageGuidance,
    StageProgressItem,
    StageStatus,
    StageStatusDTO,
    StageTransition,
    WorkflowProgress,
    certificate_rank,
)
from agritrace.eudr_workflow.risk_assessment import RiskAssessmentEngine
from agritrace.eudr_workflow.stages import (
    ACTION_ASSESS_RISK,
    ACTION_RECORD_LEDGER,
    LAST_STAGE,
    STAGE_TABLE,
    TOTAL_STAGES,
    describe,
    help_text_for,
    next_stage,
    previous_stage,
    stage_order,
    stages_before,
)
from agritrace.eudr_workflow.store import TraceabilityStore, WorkflowAggregates

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return current UTC datetime with microseconds zeroed."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def _ratio_percent(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return int(part * 100 / whole)


def stage_progress_percent(agg: WorkflowAggregates, stage: ComplianceStage) -> int:
    """Progress of ``stage`` in percent, computed from the recorded data."""
    linked = len(agg.links)
    cert = agg.workflow.certificate.status
    rank = certificate_rank(cert)

    if stage == ComplianceStage.PRODUCTION_REGISTRATION:
        return _ratio_percent(linked - len(agg.units_without_coordinates()), linked)
    if stage == ComplianceStage.GEOLOCATION_VERIFICATION:
        verified = sum(1 for link in agg.links if link.geolocation_verified)
        return _ratio_percent(verified, linked)
    if stage == ComplianceStage.DEFORESTATION_CHECK:
        clear = sum(
            1 for link in agg.links
            if link.deforestation_checked and link.deforestation_clear
        )
        return _ratio_percent(clear, linked)
    if stage == ComplianceStage.COLLECTION_AGGREGATION:
        return 100 if agg.collections else 0
    if stage == ComplianceStage.PROCESSING:
        return 100 if agg.collections or agg.consolidations else 0
    if stage == ComplianceStage.RISK_ASSESSMENT:
        if not agg.collections:
            return 0
        return 100 if agg.workflow.risk.is_assessed else 50
    if stage == ComplianceStage.DUE_DILIGENCE_STATEMENT:
        if cert == CertificateStatus.NOT_CREATED:
            return 0
        return 50 if cert == CertificateStatus.PENDING_VERIFICATION else 100
    if stage == ComplianceStage.EXPORT_SHIPMENT:
        if not agg.shipments:
            return 0
        transferred = rank >= certificate_rank(CertificateStatus.TRANSFERRED_TO_IMPORTER)
        return 100 if transferred else 50
    if stage == ComplianceStage.CUSTOMS_CLEARANCE:
        if rank >= certificate_rank(CertificateStatus.CUSTOMS_VERIFIED):
            return 100
        return 50 if cert == CertificateStatus.TRANSFERRED_TO_IMPORTER else 0
    # DELIVERY_COMPLETE
    return 100 if cert == CertificateStatus.DELIVERED else 50


class StageStateMachine:
    """Derives, advances and reverts the compliance stage of workflows.

    Attributes:
        _store: Traceability store.
        _validator: Per-stage requirement checks.
        _risk: Risk engine used by the RISK_ASSESSMENT entry action.
        _ledger: Optional LedgerRecorder for transition records.
        _locks: Per-workflow locks shared with the other engines.
        _provenance: Optional ProvenanceTracker.
    """

    def __init__(
        self,
        store: TraceabilityStore,
        validator: Optional[ComplianceValidator] = None,
        risk_engine: Optional[RiskAssessmentEngine] = None,
        ledger: Optional[LedgerRecorder] = None,
        config: Any = None,
        locks: Optional[WorkflowLocks] = None,
        provenance: Any = None,
    ) -> None:
        """Initialize StageStateMachine.

        Args:
            store: Traceability store.
            validator: ComplianceValidator; a new one when omitted.
            risk_engine: RiskAssessmentEngine; built on ``store`` when omitted.
            ledger: Optional LedgerRecorder.
            config: Optional EUDRWorkflowConfig or dict.
            locks: Shared WorkflowLocks.
            provenance: Optional ProvenanceTracker instance.
        """
        self._store = store
        self._config = config or {}
        self._locks = locks or WorkflowLocks()
        self._validator = validator or ComplianceValidator()
        self._risk = risk_engine or RiskAssessmentEngine(
            store, config=config, locks=self._locks, provenance=provenance,
        )
        self._ledger = ledger
        self._provenance = provenance
        self._days_per_stage = int(self._get_cfg("days_per_stage", 2))

        logger.info(
            "StageStateMachine initialized: %d stages, ledger=%s",
            TOTAL_STAGES, "enabled" if ledger is not None else "disabled",
        )

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def derive_stage(self, aggregates: WorkflowAggregates) -> ComplianceStage:
        """Return the effective stage for a snapshot.

        The stored stage is kept unless a stage before it no longer meets
        its requirements, in which case that earliest stage is returned.
        """
        hint = aggregates.workflow.current_stage
        for stage in stages_before(hint):
            if not self._validator.validate(aggregates, stage).all_requirements_met:
                logger.debug(
                    "Workflow %s derived back to %s from stored %s",
                    aggregates.workflow.workflow_id, stage.value, hint.value,
                )
                return stage
        return hint

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    def get_current_stage(self, workflow_id: str) -> StageStatusDTO:
        """Current stage with progress, blockers and whether it can advance.

        Raises:
            NotFoundError: If the workflow does not exist.
        """
        agg = WorkflowAggregates.load(self._store, workflow_id)
        stage = self.derive_stage(agg)
        validation = self._validator.validate(agg, stage)
        descriptor = describe(stage)
        return StageStatusDTO(
            workflow_id=workflow_id,
            stage=stage,
            display_name=descriptor.display_name,
            order=descriptor.order,
            total_stages=TOTAL_STAGES,
            progress_percent=stage_progress_percent(agg, stage),
            blockers=validation.blockers,
            can_advance=validation.all_requirements_met and stage != LAST_STAGE,
            requirement_state=validation.requirement_state,
            stored_stage=agg.workflow.current_stage,
            stage_updated_at=agg.workflow.stage_updated_at,
        )

    def get_workflow_progress(self, workflow_id: str) -> WorkflowProgress:
        """Overview of every stage plus the pre-compliance checklist counts."""
        agg = WorkflowAggregates.load(self._store, workflow_id)
        current = self.derive_stage(agg)
        current_order = stage_order(current)
        validation = self._validator.validate(agg, current)

        items: List[StageProgressItem] = []
        completed = 0
        for descriptor in STAGE_TABLE:
            if descriptor.order < current_order:
                skipped = (
                    descriptor.optional
                    and self._validator.validate(agg, descriptor.stage).requirement_state
                    == RequirementState.SKIPPED
                )
                status = StageStatus.SKIPPED if skipped else StageStatus.COMPLETED
                percent = 100
                completed += 1
            elif descriptor.order == current_order:
                percent = stage_progress_percent(agg, descriptor.stage)
                if current == LAST_STAGE and validation.all_requirements_met:
                    status = StageStatus.COMPLETED
                    completed += 1
                elif validation.blockers:
                    status = StageStatus.BLOCKED
                else:
                    status = StageStatus.IN_PROGRESS
            else:
                status = StageStatus.NOT_STARTED
                percent = 0
            items.append(StageProgressItem(
                stage=descriptor.stage,
                display_name=descriptor.display_name,
                order=descriptor.order,
                status=status,
                progress_percent=percent,
            ))

        remaining = TOTAL_STAGES - current_order
        workflow = agg.workflow
        return WorkflowProgress(
            workflow_id=workflow_id,
            current_stage=current,
            overall_progress_percent=int((current_order - 1) * 100 / TOTAL_STAGES),
            completed_stages=completed,
            total_stages=TOTAL_STAGES,
            stages=items,
            linked_production_units=len(agg.links),
            verified_production_units=sum(
                1 for link in agg.links if link.geolocation_verified
            ),
            deforestation_clear_units=sum(
                1 for link in agg.links
                if link.deforestation_checked and link.deforestation_clear
            ),
            collection_event_count=len(agg.collections),
            blockers=validation.blockers,
            estimated_completion=_utcnow() + timedelta(
                days=remaining * self._days_per_stage,
            ),
            risk_classification=workflow.risk.classification,
            risk_score=workflow.risk.score,
            certificate_status=workflow.certificate.status,
        )

    def get_stage_guidance(self, workflow_id: str) -> StageGuidance:
        agg = WorkflowAggregates.load(self._store, workflow_id)
        stage = self.derive_stage(agg)
        descriptor = describe(stage)

        action_type = ActionType.OPTIONAL if descriptor.optional else ActionType.REQUIRED
        actions = [
            ActionItem(
                description=action,
                action_type=action_type,
                help_text=help_text_for(action),
            )
            for action in descriptor.required_actions
        ]
        actions.extend(
            ActionItem(description=action, action_type=ActionType.AUTOMATED)
            for action in descriptor.automated_actions
        )

        return StageGuidance(
            workflow_id=workflow_id,
            stage=stage,
            display_name=descriptor.display_name,
            description=descriptor.description,
            article_reference=descriptor.article_reference,
            actions=actions,
            tips=list(descriptor.tips),
            blockers=self._validator.blockers(agg, stage),
            next_stage=next_stage(stage),
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def advance(self, workflow_id: str) -> StageAdvancementResult:
        """Move the workflow one stage forward if its current stage is complete.

        A blocked or terminal workflow yields ``success=False``; nothing
        is raised for unmet requirements.

        Raises:
            NotFoundError: If the workflow does not exist.
        """
        start_time = time.monotonic()
        with self._locks.hold(workflow_id):
            agg = WorkflowAggregates.load(self._store, workflow_id)
            current = self.derive_stage(agg)

            if current == LAST_STAGE:
                return StageAdvancementResult(
                    success=False,
                    previous_stage=current,
                    current_stage=current,
                    message="Workflow is already at the final stage",
                )

            blockers = self._validator.blockers(agg, current)
            if blockers:
                record_stage_blocked(current.value)
                logger.warning(
                    "Advance of %s blocked at %s: %d blocker(s)",
                    workflow_id, current.value, len(blockers),
                )
                return StageAdvancementResult(
                    success=False,
                    previous_stage=current,
                    current_stage=current,
                    message=f"Cannot advance from {describe(current).display_name}",
                    blockers=blockers,
                )

            target = next_stage(current)
            workflow = agg.workflow
            workflow.current_stage = target
            workflow.stage_updated_at = _utcnow()
            descriptor = describe(target)
            if ACTION_ASSESS_RISK in descriptor.entry_actions:
                self._risk.apply(workflow, self._risk.assess(agg))
            self._store.save_workflow(workflow)

            transition = StageTransition(
                workflow_id=workflow_id,
                from_stage=current,
                to_stage=target,
                direction="advance",
                transitioned_at=workflow.stage_updated_at,
            )
            self._store.save_transition(transition)

        self._after_transition(transition, descriptor.entry_actions)
        elapsed = time.monotonic() - start_time
        observe_duration("stage_advance", elapsed)
        logger.info(
            "Workflow %s advanced %s -> %s in %.1fms",
            workflow_id, current.value, target.value, elapsed * 1000,
        )
        return StageAdvancementResult(
            success=True,
            previous_stage=current,
            current_stage=target,
            message=f"Advanced to {descriptor.display_name}",
        )

    def revert(self, workflow_id: str, reason: str) -> StageAdvancementResult:
        """Move the workflow one stage back, recording ``reason``.

        Raises:
            ValueError: If ``reason`` is blank.
            NotFoundError: If the workflow does not exist.
        """
        if not reason or not reason.strip():
            raise ValueError("A reason is required to revert a workflow stage")

        with self._locks.hold(workflow_id):
            agg = WorkflowAggregates.load(self._store, workflow_id)
            current = self.derive_stage(agg)
            target = previous_stage(current)
            if target is None:
                return StageAdvancementResult(
                    success=False,
                    previous_stage=current,
                    current_stage=current,
                    message="Cannot revert from the first stage",
                )

            workflow = agg.workflow
            workflow.current_stage = target
            workflow.stage_updated_at = _utcnow()
            self._store.save_workflow(workflow)

            transition = StageTransition(
                workflow_id=workflow_id,
                from_stage=current,
                to_stage=target,
                direction="revert",
                reason=reason.strip(),
                transitioned_at=workflow.stage_updated_at,
            )
            self._store.save_transition(transition)

        self._after_transition(transition, (ACTION_RECORD_LEDGER,))
        logger.info(
            "Workflow %s reverted %s -> %s: %s",
            workflow_id, current.value, target.value, transition.reason,
        )
        return StageAdvancementResult(
            success=True,
            previous_stage=current,
            current_stage=target,
            message=f"Reverted to {describe(target).display_name}",
        )

    def get_transitions(self, workflow_id: str) -> List[StageTransition]:
        return self._store.find_transitions(workflow_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _after_transition(self, transition: StageTransition, actions: Any) -> None:
        record_stage_transition(transition.direction, transition.to_stage.value)
        if self._provenance is not None:
            self._provenance.record(
                "stage_transition",
                transition.workflow_id,
                transition.direction,
                self._provenance.build_hash(transition),
            )
        if self._ledger is not None and ACTION_RECORD_LEDGER in actions:
            event_type = (
                "STAGE_ADVANCE" if transition.direction == "advance" else "STAGE_REVERT"
            )
            self._ledger.record(
                event_type,
                transition.model_dump(mode="json", exclude={"ledger_transaction_id"}),
                on_recorded=lambda tx_id: self._attach_transaction(transition, tx_id),
            )

    def _attach_transaction(self, transition: StageTransition, tx_id: str) -> None:
        with self._locks.hold(transition.workflow_id):
            for stored in self._store.find_transitions(transition.workflow_id):
                if stored.transition_id != transition.transition_id:
                    continue
                if not stored.ledger_transaction_id:
                    stored.ledger_transaction_id = tx_id
                    self._store.save_transition(stored)
                return

    def _get_cfg(self, key: str, default: Any) -> Any:
        if hasattr(self._config, key):
            return getattr(self._config, key)
        if isinstance(self._config, dict):
            return self._config.get(key, default)
        return default


__all__ = [
    "StageStateMachine",
    "stage_progress_percent",
]
