"""Tests for the compliance stage state machine.

Covers:
- Stage derivation from recorded data
- Guarded advance and reasoned revert
- Workflow progress and stage guidance
- Risk assessment on entering RISK_ASSESSMENT
- A full walk from registration to delivery

Author: AgriTrace Platform Team
Date: March 2026
Status: Production Ready
"""

import pytest

from agritrace.exceptions import NotFoundError
from agritrace.eudr_workflow.models import (
    ActionType,
    CertificateStatus,
    ComplianceStage,
    CreateWorkflowRequest,
    ProductionUnit,
    RecordShipmentRequest,
    RequirementState,
    RiskClassification,
    StageStatus,
    WorkflowStatus,
)


def _advance(service, workflow_id, times):
    for _ in range(times):
        result = service.advance_stage(workflow_id)
        assert result.success, result.blockers
    return result


# ==============================================================================
# Current Stage Tests
# ==============================================================================

class TestCurrentStage:
    """Tests for get_current_stage."""

    def test_new_workflow(self, service):
        """A new workflow sits at registration with a blocker."""
        wf = service.create_workflow(CreateWorkflowRequest(
            name="Lot 1", exporter_id="EXP-001", produce_type="coffee",
        ))

        status = service.get_current_stage(wf.workflow_id)

        assert status.stage == ComplianceStage.PRODUCTION_REGISTRATION
        assert status.order == 1
        assert status.total_stages == 10
        assert status.progress_percent == 0
        assert status.can_advance is False
        assert status.blockers

    def test_missing_coordinates_then_fixed(self, service):
        """A unit missing coordinates blocks until it is located."""
        wf = service.create_workflow(CreateWorkflowRequest(
            name="Lot 1", exporter_id="EXP-001", produce_type="coffee",
        ))
        located = service.register_production_unit(ProductionUnit(
            name="North plot", farmer_id="F-1", latitude=-1.17, longitude=36.83,
        ))
        unlocated = service.register_production_unit(ProductionUnit(
            name="River plot", farmer_id="F-2",
        ))
        service.link_production_unit(wf.workflow_id, located.production_unit_id)
        service.link_production_unit(wf.workflow_id, unlocated.production_unit_id)

        status = service.get_current_stage(wf.workflow_id)
        assert status.can_advance is False
        assert len(status.blockers) >= 1
        assert "River plot" in status.blockers[0]
        assert status.progress_percent == 50

        service.register_production_unit(
            unlocated.model_copy(update={"latitude": -1.18, "longitude": 36.84})
        )

        status = service.get_current_stage(wf.workflow_id)
        assert status.can_advance is True
        assert status.blockers == []
        assert status.progress_percent == 100

    def test_unknown_workflow(self, service):
        """Unknown workflows raise NotFoundError."""
        with pytest.raises(NotFoundError):
            service.get_current_stage("WF-missing")

    def test_derivation_falls_back(self, service, workflow_factory):
        """Withdrawn verification pulls the effective stage back."""
        workflow_id, (unit_id,) = workflow_factory()
        _advance(service, workflow_id, 3)
        assert service.get_current_stage(workflow_id).stage == (
            ComplianceStage.COLLECTION_AGGREGATION
        )

        service.verify_geolocation(workflow_id, unit_id, verified=False)

        status = service.get_current_stage(workflow_id)
        assert status.stage == ComplianceStage.GEOLOCATION_VERIFICATION
        assert status.stored_stage == ComplianceStage.COLLECTION_AGGREGATION
        assert status.can_advance is False

    def test_derivation_never_moves_forward(self, service, workflow_factory):
        """Meeting later requirements does not advance the stage by itself."""
        workflow_id, _ = workflow_factory()

        status = service.get_current_stage(workflow_id)

        assert status.stage == ComplianceStage.PRODUCTION_REGISTRATION
        assert status.can_advance is True


# ==============================================================================
# Transition Tests
# ==============================================================================

class TestTransitions:
    """Tests for advance and revert."""

    def test_blocked_advance_is_not_an_error(self, service):
        """A blocked advance reports failure with blockers."""
        wf = service.create_workflow(CreateWorkflowRequest(
            name="Lot 1", exporter_id="EXP-001", produce_type="coffee",
        ))

        result = service.advance_stage(wf.workflow_id)

        assert result.success is False
        assert result.message == "Cannot advance from Production Registration"
        assert result.blockers
        assert service.get_workflow(wf.workflow_id).current_stage == (
            ComplianceStage.PRODUCTION_REGISTRATION
        )
        assert service.stage_machine.get_transitions(wf.workflow_id) == []

    def test_advance_one_stage(self, service, workflow_factory):
        """Advance moves exactly one stage and audits it."""
        workflow_id, _ = workflow_factory()

        result = service.advance_stage(workflow_id)

        assert result.success is True
        assert result.previous_stage == ComplianceStage.PRODUCTION_REGISTRATION
        assert result.current_stage == ComplianceStage.GEOLOCATION_VERIFICATION
        assert result.message == "Advanced to Geolocation Verification"
        (transition,) = service.stage_machine.get_transitions(workflow_id)
        assert transition.direction == "advance"

    def test_entering_risk_assessment_persists_risk(self, service, workflow_factory):
        """Risk is assessed and stored when RISK_ASSESSMENT is entered."""
        workflow_id, _ = workflow_factory()
        _advance(service, workflow_id, 4)
        assert service.get_workflow(workflow_id).risk.is_assessed is False

        result = service.advance_stage(workflow_id)

        assert result.current_stage == ComplianceStage.RISK_ASSESSMENT
        risk = service.get_workflow(workflow_id).risk
        assert risk.is_assessed is True
        assert risk.score == 25.25
        assert risk.classification == RiskClassification.LOW

    def test_revert_requires_reason(self, service, workflow_factory):
        """A blank reason is rejected."""
        workflow_id, _ = workflow_factory()
        _advance(service, workflow_id, 1)

        with pytest.raises(ValueError):
            service.revert_stage(workflow_id, "   ")

    def test_revert_from_first_stage(self, service, workflow_factory):
        """Reverting at the first stage is a failed no-op."""
        workflow_id, _ = workflow_factory()

        result = service.revert_stage(workflow_id, "re-check plots")

        assert result.success is False
        assert result.message == "Cannot revert from the first stage"

    def test_revert_records_reason(self, service, ledger_client, workflow_factory):
        """Revert moves back one stage and records the reason."""
        workflow_id, _ = workflow_factory()
        _advance(service, workflow_id, 2)

        result = service.revert_stage(workflow_id, "  Parcel boundary disputed  ")

        assert result.success is True
        assert result.current_stage == ComplianceStage.GEOLOCATION_VERIFICATION
        assert result.message == "Reverted to Geolocation Verification"
        revert = service.stage_machine.get_transitions(workflow_id)[-1]
        assert revert.direction == "revert"
        assert revert.reason == "Parcel boundary disputed"

        assert service.drain(timeout=5)
        assert ledger_client.event_types().count("STAGE_ADVANCE") == 2
        assert "STAGE_REVERT" in ledger_client.event_types()
        stored = service.stage_machine.get_transitions(workflow_id)
        assert all(t.ledger_transaction_id for t in stored)

    def test_transitions_on_provenance_chain(self, service, workflow_factory):
        """Transitions are recorded on a verifiable provenance chain."""
        workflow_id, _ = workflow_factory()
        _advance(service, workflow_id, 2)

        valid, chain = service.provenance.verify_chain(workflow_id)

        assert valid is True
        assert sum(1 for e in chain if e["entity_type"] == "stage_transition") == 2


# ==============================================================================
# Progress and Guidance Tests
# ==============================================================================

class TestProgressAndGuidance:
    """Tests for workflow progress and stage guidance."""

    def test_progress_at_risk_assessment(self, service, workflow_factory):
        """Earlier stages complete, processing skipped, later not started."""
        workflow_id, _ = workflow_factory()
        _advance(service, workflow_id, 5)

        progress = service.get_workflow_progress(workflow_id)

        statuses = {item.stage: item.status for item in progress.stages}
        assert progress.current_stage == ComplianceStage.RISK_ASSESSMENT
        assert progress.overall_progress_percent == 50
        assert statuses[ComplianceStage.COLLECTION_AGGREGATION] == StageStatus.COMPLETED
        assert statuses[ComplianceStage.PROCESSING] == StageStatus.SKIPPED
        assert statuses[ComplianceStage.RISK_ASSESSMENT] == StageStatus.IN_PROGRESS
        assert statuses[ComplianceStage.DELIVERY_COMPLETE] == StageStatus.NOT_STARTED
        assert progress.completed_stages == 5
        assert progress.linked_production_units == 1
        assert progress.verified_production_units == 1
        assert progress.deforestation_clear_units == 1
        assert progress.collection_event_count == 1
        assert progress.risk_classification == RiskClassification.LOW
        assert progress.certificate_status == CertificateStatus.NOT_CREATED

    def test_blocked_stage_in_progress(self, service):
        """The current stage shows BLOCKED while it has blockers."""
        wf = service.create_workflow(CreateWorkflowRequest(
            name="Lot 1", exporter_id="EXP-001", produce_type="coffee",
        ))

        progress = service.get_workflow_progress(wf.workflow_id)

        assert progress.stages[0].status == StageStatus.BLOCKED
        assert progress.overall_progress_percent == 0
        assert progress.blockers

    def test_guidance_actions(self, service, workflow_factory):
        """Guidance lists required and automated actions with help text."""
        workflow_id, _ = workflow_factory()

        guidance = service.get_stage_guidance(workflow_id)

        assert guidance.stage == ComplianceStage.PRODUCTION_REGISTRATION
        assert guidance.next_stage == ComplianceStage.GEOLOCATION_VERIFICATION
        required = [a for a in guidance.actions if a.action_type == ActionType.REQUIRED]
        automated = [a for a in guidance.actions if a.action_type == ActionType.AUTOMATED]
        assert len(required) == 2
        assert required[1].help_text is not None
        assert len(automated) == 1
        assert guidance.blockers == []

    def test_guidance_for_optional_stage(self, service, workflow_factory):
        """The optional processing stage has no required actions."""
        workflow_id, _ = workflow_factory()
        _advance(service, workflow_id, 4)

        guidance = service.get_stage_guidance(workflow_id)

        assert guidance.stage == ComplianceStage.PROCESSING
        assert all(a.action_type != ActionType.REQUIRED for a in guidance.actions)
        assert service.get_current_stage(workflow_id).requirement_state == (
            RequirementState.SKIPPED
        )


# ==============================================================================
# End-to-End Tests
# ==============================================================================

class TestFullLifecycle:
    """Walks a workflow through every stage."""

    def test_registration_to_delivery(self, service, workflow_factory):
        """A compliant workflow reaches DELIVERY_COMPLETE and stops there."""
        workflow_id, _ = workflow_factory()
        _advance(service, workflow_id, 6)
        assert service.get_current_stage(workflow_id).stage == (
            ComplianceStage.DUE_DILIGENCE_STATEMENT
        )
        assert service.advance_stage(workflow_id).success is False

        service.issue_certificate(workflow_id)
        _advance(service, workflow_id, 1)

        service.record_shipment(workflow_id, RecordShipmentRequest(
            exporter_id="EXP-001", importer_id="IMP-001", quantity_kg=1000.0,
        ))
        service.transfer_certificate(workflow_id, "IMP-001")
        _advance(service, workflow_id, 1)

        service.mark_customs_verified(workflow_id)
        result = _advance(service, workflow_id, 1)
        assert result.current_stage == ComplianceStage.DELIVERY_COMPLETE

        status = service.get_current_stage(workflow_id)
        assert status.can_advance is False
        assert status.progress_percent == 50

        service.mark_delivered(workflow_id)
        final = service.advance_stage(workflow_id)
        assert final.success is False
        assert final.message == "Workflow is already at the final stage"

        progress = service.get_workflow_progress(workflow_id)
        assert progress.completed_stages == 10
        assert progress.stages[-1].status == StageStatus.COMPLETED
        workflow = service.get_workflow(workflow_id)
        assert workflow.status == WorkflowStatus.COMPLETED
        assert workflow.completed_at is not None
