# -*- coding: utf-8 -*-
"""
EUDR Workflow Service Facade - AT-EUDR-WF: Compliance Workflow Engine

Provides the main service class composing every engine over one store,
one set of per-workflow locks, one ledger worker pool and one
provenance tracker:

- TraceabilityEventEngine: workflows, production units, events
- StageStateMachine: stage derivation, advance, revert, progress
- RiskAssessmentEngine: stage display risk and certificate gate risk
- CertificateIssuanceGate: certificate validation and lifecycle
- DueDiligenceEngine: due diligence statement summaries

Author: AgriTrace Platform Team
Date: March 2026
PRD: AT-EUDR-WF Compliance Workflow Engine
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Any, Dict, List, Optional

from agritrace.eudr_workflow.collaborators import (
    AccountProvisioner,
    CountryRiskTable,
    LedgerClient,
    SandboxAccountProvisioner,
    SandboxLedgerClient,
    SatelliteAnalysisClient,
)
from agritrace.eudr_workflow.models import (
    CertificateIssuanceResult,
    CertificateStatus,
    CertificateTransferResult,
    ComplianceResult,
    CreateWorkflowRequest,
    DeforestationAlert,
    DueDiligenceSummary,
    ProductionUnit,
    ProductionUnitLink,
    RecordCollectionRequest,
    RecordConsolidationRequest,
    RecordProcessingRequest,
    RecordShipmentRequest,
    RiskAssessmentResult,
    StageAdvancementResult,
    StageGuidance,
    StageStatusDTO,
    Workflow,
    WorkflowProgress,
    WorkflowStatus,
)
from agritrace.eudr_workflow.store import InMemoryTraceabilityStore, TraceabilityStore

logger = logging.getLogger(__name__)


class EUDRWorkflowService:
    """Facade composing all compliance workflow engines.

    Attributes:
        config: EUDRWorkflowConfig instance.
        store: Traceability store shared by every engine.
        ledger: LedgerRecorder wrapping the ledger collaborator.
        provenance: ProvenanceTracker shared by every engine.
        events: TraceabilityEventEngine instance.
        risk_assessment: RiskAssessmentEngine instance.
        stage_machine: StageStateMachine instance.
        certificate_gate: CertificateIssuanceGate instance.
        due_diligence: DueDiligenceEngine instance.
    """

    def __init__(
        self,
        config: Optional[Any] = None,
        store: Optional[TraceabilityStore] = None,
        ledger_client: Optional[LedgerClient] = None,
        provisioner: Optional[AccountProvisioner] = None,
        satellite: Optional[SatelliteAnalysisClient] = None,
        country_table: Optional[CountryRiskTable] = None,
    ):
        """Initialize the service with all engines.

        Args:
            config: EUDRWorkflowConfig instance. If None, loads from env.
            store: Traceability store; in-memory when omitted.
            ledger_client: Ledger collaborator; sandbox ledger when omitted
                and ``config.ledger_sandbox`` is set.
            provisioner: Account provisioner; sandbox when omitted.
            satellite: Optional satellite analysis collaborator.
            country_table: Country risk lookup; static table when omitted.

        Raises:
            ValueError: If no ledger client is given and sandbox mode is off.
        """
        if config is None:
            from agritrace.eudr_workflow.config import get_config
            config = get_config()

        self.config = config
        logging.getLogger("agritrace").setLevel(config.log_level)

        if ledger_client is None:
            if not config.ledger_sandbox:
                raise ValueError(
                    "A ledger client is required when ledger_sandbox is disabled"
                )
            ledger_client = SandboxLedgerClient()

        # Initialize engines
        from agritrace.eudr_workflow.certificate_gate import CertificateIssuanceGate
        from agritrace.eudr_workflow.compliance_validator import ComplianceValidator
        from agritrace.eudr_workflow.due_diligence import DueDiligenceEngine
        from agritrace.eudr_workflow.ledger import LedgerRecorder
        from agritrace.eudr_workflow.locks import WorkflowLocks
        from agritrace.eudr_workflow.provenance import ProvenanceTracker
        from agritrace.eudr_workflow.risk_assessment import RiskAssessmentEngine
        from agritrace.eudr_workflow.stage_machine import StageStateMachine
        from agritrace.eudr_workflow.traceability_events import TraceabilityEventEngine

        self.store = store or InMemoryTraceabilityStore()
        self.locks = WorkflowLocks()
        self.provenance = ProvenanceTracker()
        self.ledger = LedgerRecorder(ledger_client, config)
        self.validator = ComplianceValidator()

        self.risk_assessment = RiskAssessmentEngine(
            self.store,
            config=config,
            country_table=country_table,
            locks=self.locks,
            provenance=self.provenance,
        )
        self.events = TraceabilityEventEngine(
            self.store,
            config=config,
            ledger=self.ledger,
            satellite=satellite,
            locks=self.locks,
            provenance=self.provenance,
        )
        self.stage_machine = StageStateMachine(
            self.store,
            validator=self.validator,
            risk_engine=self.risk_assessment,
            ledger=self.ledger,
            config=config,
            locks=self.locks,
            provenance=self.provenance,
        )
        self.certificate_gate = CertificateIssuanceGate(
            self.store,
            ledger_client,
            risk_engine=self.risk_assessment,
            recorder=self.ledger,
            provisioner=provisioner or SandboxAccountProvisioner(),
            config=config,
            locks=self.locks,
            provenance=self.provenance,
        )
        self.due_diligence = DueDiligenceEngine(
            self.store,
            config=config,
            risk_engine=self.risk_assessment,
            ledger=self.ledger,
            provenance=self.provenance,
        )

        logger.info(
            "EUDRWorkflowService initialized with all 5 engines (ledger=%s)",
            type(ledger_client).__name__,
        )

    # =========================================================================
    # Workflow and production unit delegation
    # =========================================================================

    def create_workflow(self, request: CreateWorkflowRequest) -> Workflow:
        return self.events.create_workflow(request)

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        return self.store.find_workflow(workflow_id)

    def list_workflows(self) -> List[Workflow]:
        return self.store.list_workflows()

    def set_skip_processing(self, workflow_id: str, skip: bool) -> Workflow:
        return self.events.set_skip_processing(workflow_id, skip)

    def register_production_unit(self, unit: ProductionUnit) -> ProductionUnit:
        return self.events.register_production_unit(unit)

    def link_production_unit(
        self, workflow_id: str, production_unit_id: str,
    ) -> ProductionUnitLink:
        return self.events.link_production_unit(workflow_id, production_unit_id)

    def unlink_production_unit(self, workflow_id: str, production_unit_id: str) -> None:
        self.events.unlink_production_unit(workflow_id, production_unit_id)

    def verify_geolocation(
        self, workflow_id: str, production_unit_id: str, verified: bool = True,
    ) -> ProductionUnitLink:
        return self.events.verify_geolocation(workflow_id, production_unit_id, verified)

    def record_deforestation_check(
        self, workflow_id: str, production_unit_id: str, clear: bool,
    ) -> ProductionUnitLink:
        return self.events.record_deforestation_check(
            workflow_id, production_unit_id, clear,
        )

    def screen_deforestation(
        self, workflow_id: str, production_unit_id: str,
    ) -> ProductionUnitLink:
        return self.events.screen_deforestation(workflow_id, production_unit_id)

    def raise_alert(self, alert: DeforestationAlert) -> DeforestationAlert:
        return self.events.raise_alert(alert)

    def review_alert(self, alert_id: str) -> DeforestationAlert:
        return self.events.review_alert(alert_id)

    # =========================================================================
    # Event delegation
    # =========================================================================

    def record_collection(self, workflow_id: str, request: RecordCollectionRequest) -> Any:
        return self.events.record_collection(workflow_id, request)

    def record_consolidation(
        self, workflow_id: str, request: RecordConsolidationRequest,
    ) -> Any:
        return self.events.record_consolidation(workflow_id, request)

    def record_processing(self, workflow_id: str, request: RecordProcessingRequest) -> Any:
        return self.events.record_processing(workflow_id, request)

    def record_shipment(self, workflow_id: str, request: RecordShipmentRequest) -> Any:
        return self.events.record_shipment(workflow_id, request)

    # =========================================================================
    # Stage delegation
    # =========================================================================

    def get_current_stage(self, workflow_id: str) -> StageStatusDTO:
        return self.stage_machine.get_current_stage(workflow_id)

    def advance_stage(self, workflow_id: str) -> StageAdvancementResult:
        return self.stage_machine.advance(workflow_id)

    def revert_stage(self, workflow_id: str, reason: str) -> StageAdvancementResult:
        return self.stage_machine.revert(workflow_id, reason)

    def get_workflow_progress(self, workflow_id: str) -> WorkflowProgress:
        return self.stage_machine.get_workflow_progress(workflow_id)

    def get_stage_guidance(self, workflow_id: str) -> StageGuidance:
        return self.stage_machine.get_stage_guidance(workflow_id)

    # =========================================================================
    # Risk, certificate and due diligence delegation
    # =========================================================================

    def assess_risk(self, workflow_id: str) -> RiskAssessmentResult:
        return self.risk_assessment.assess_workflow(workflow_id)

    def validate_for_certificate(self, workflow_id: str) -> ComplianceResult:
        return self.certificate_gate.validate_for_certificate(workflow_id)

    def issue_certificate(self, workflow_id: str) -> CertificateIssuanceResult:
        return self.certificate_gate.issue(workflow_id)

    def issue_certificate_async(self, workflow_id: str) -> Future:
        return self.certificate_gate.issue_async(workflow_id)

    def transfer_certificate(
        self, workflow_id: str, importer_id: str,
    ) -> CertificateTransferResult:
        return self.certificate_gate.transfer(workflow_id, importer_id)

    def mark_in_transit(self, workflow_id: str) -> Workflow:
        return self.certificate_gate.mark_in_transit(workflow_id)

    def mark_customs_verified(self, workflow_id: str) -> Workflow:
        return self.certificate_gate.mark_customs_verified(workflow_id)

    def mark_delivered(self, workflow_id: str) -> Workflow:
        return self.certificate_gate.mark_delivered(workflow_id)

    def generate_due_diligence_statement(self, workflow_id: str) -> DueDiligenceSummary:
        return self.due_diligence.generate_statement(workflow_id)

    # =========================================================================
    # Statistics and lifecycle
    # =========================================================================

    def get_statistics(self) -> Dict[str, Any]:
        """Get service statistics across engines.

        Returns:
            Dictionary with workflow, certificate, ledger and provenance counts.
        """
        workflows = self.store.list_workflows()
        by_stage: Dict[str, int] = {}
        by_certificate: Dict[str, int] = {}
        for wf in workflows:
            by_stage[wf.current_stage.value] = by_stage.get(wf.current_stage.value, 0) + 1
            status = wf.certificate.status.value
            by_certificate[status] = by_certificate.get(status, 0) + 1
        return {
            "engine": "AT-EUDR-WF",
            "version": "1.0.0",
            "total_workflows": len(workflows),
            "completed_workflows": sum(
                1 for wf in workflows if wf.status == WorkflowStatus.COMPLETED
            ),
            "workflows_by_stored_stage": by_stage,
            "certificates_by_status": by_certificate,
            "certificates_issued": sum(
                1 for wf in workflows
                if wf.certificate.status not in (
                    CertificateStatus.NOT_CREATED,
                    CertificateStatus.PENDING_VERIFICATION,
                )
            ),
            "pending_ledger_tasks": self.ledger.pending_count,
            "provenance_entries": self.provenance.entry_count,
            "due_diligence": self.due_diligence.get_statistics(),
        }

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued ledger work; True if nothing is left pending."""
        return self.ledger.drain(timeout)

    def shutdown(self) -> None:
        self.ledger.shutdown(wait_for_pending=True)
        logger.info("EUDRWorkflowService shut down")


__all__ = ["EUDRWorkflowService"]
