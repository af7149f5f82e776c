# -*- coding: utf-8 -*-
"""
AT-EUDR-WF: AgriTrace EUDR Compliance Workflow Engine
=====================================================

This package tracks an agricultural commodity batch ("workflow") through
the ten ordered EU Deforestation Regulation (EUDR) compliance stages and
gates issuance of an immutable compliance certificate behind a
multi-factor risk score and completeness checks. It supports:

- Stage derivation on read, guarded advance and reasoned revert
- Per-stage requirement validation with blocker lists
- Stage display risk (three factors, four bands) and certificate gate
  risk (four factors, three bands), kept as separate algorithms
- Certificate issuance with claim, mint, commit or rollback, plus
  transfer and lifecycle steps up to delivery
- Quantity-conserving collection, consolidation, processing and
  shipment events
- Satellite vegetation-index deforestation screening
- Fire-and-forget ledger recording on a bounded worker pool
- SHA-256 provenance chain tracking for complete audit trails
- 10 Prometheus metrics for observability
- Thread-safe configuration with AGRITRACE_EUDR_WORKFLOW_ env prefix

Key Components:
    - config: EUDRWorkflowConfig with AGRITRACE_EUDR_WORKFLOW_ env prefix
    - models: Pydantic v2 models for all data structures
    - stages: Static descriptor table of the ten stages
    - store: Traceability store interface, in-memory store, aggregates
    - collaborators: Ledger, accounts, satellite and country risk interfaces
    - compliance_validator: Per-stage requirement checks
    - risk_assessment: Stage display and certificate gate risk
    - stage_machine: Stage state machine
    - certificate_gate: Certificate issuance gate
    - traceability_events: Links, verification signals and events
    - due_diligence: Due diligence statement summaries
    - provenance: SHA-256 chain-hashed audit trails
    - metrics: 10 Prometheus metrics
    - setup: EUDRWorkflowService facade

Example:
    >>> from agritrace.eudr_workflow import EUDRWorkflowService
    >>> service = EUDRWorkflowService()
    >>> wf = service.create_workflow(CreateWorkflowRequest(
    ...     name="Kiambu coffee 2026", exporter_id="EXP-1", produce_type="coffee",
    ... ))
    >>> service.get_current_stage(wf.workflow_id).stage
    <ComplianceStage.PRODUCTION_REGISTRATION: 'PRODUCTION_REGISTRATION'>
"""

__version__ = "1.0.0"
__engine_id__ = "AT-EUDR-WF"
__engine_name__ = "EUDR Compliance Workflow Engine"

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
from agritrace.eudr_workflow.config import (
    EUDRWorkflowConfig,
    get_config,
    set_config,
    reset_config,
)

# ---------------------------------------------------------------------------
# Models (enums, data models, request models)
# ---------------------------------------------------------------------------
from agritrace.eudr_workflow.models import (
    # Enumerations
    ComplianceStage,
    WorkflowStatus,
    StageStatus,
    RequirementState,
    ActionType,
    RiskClassification,
    GateRiskLevel,
    CountryRiskLevel,
    RiskFactorType,
    AlertSeverity,
    LinkStatus,
    CertificateStatus,
    DeforestationStatus,
    EventKind,
    PartyType,
    # Records
    Workflow,
    RiskSnapshot,
    CertificateRecord,
    ProductionUnit,
    ProductionUnitLink,
    DeforestationAlert,
    TraceabilityEvent,
    CollectionEvent,
    ConsolidationEvent,
    ProcessingEvent,
    ShipmentEvent,
    StageTransition,
    IssuingAccount,
    # Collaborator payloads
    DateRange,
    VegetationIndexStats,
    MintReceipt,
    # Results
    StageValidationResult,
    StageStatusDTO,
    StageAdvancementResult,
    WorkflowProgress,
    StageGuidance,
    RiskAssessmentResult,
    GateRiskResult,
    ComplianceResult,
    CertificateIssuanceResult,
    CertificateTransferResult,
    DueDiligenceSummary,
    # Request models
    CreateWorkflowRequest,
    RecordCollectionRequest,
    RecordConsolidationRequest,
    RecordProcessingRequest,
    RecordShipmentRequest,
)

# ---------------------------------------------------------------------------
# Store and collaborators
# ---------------------------------------------------------------------------
from agritrace.eudr_workflow.store import (
    TraceabilityStore,
    InMemoryTraceabilityStore,
    WorkflowAggregates,
)
from agritrace.eudr_workflow.collaborators import (
    LedgerClient,
    SandboxLedgerClient,
    AccountProvisioner,
    SandboxAccountProvisioner,
    SatelliteAnalysisClient,
    CountryRiskTable,
    StaticCountryRiskTable,
)

# ---------------------------------------------------------------------------
# Core engines
# ---------------------------------------------------------------------------
from agritrace.eudr_workflow.compliance_validator import ComplianceValidator
from agritrace.eudr_workflow.risk_assessment import (
    RiskAssessmentEngine,
    stage_display_risk,
    certificate_gate_risk,
)
from agritrace.eudr_workflow.stage_machine import StageStateMachine
from agritrace.eudr_workflow.certificate_gate import CertificateIssuanceGate
from agritrace.eudr_workflow.traceability_events import TraceabilityEventEngine
from agritrace.eudr_workflow.due_diligence import DueDiligenceEngine
from agritrace.eudr_workflow.ledger import LedgerRecorder
from agritrace.eudr_workflow.provenance import ProvenanceTracker

# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------
from agritrace.eudr_workflow.metrics import PROMETHEUS_AVAILABLE

# ---------------------------------------------------------------------------
# Service setup facade
# ---------------------------------------------------------------------------
from agritrace.eudr_workflow.setup import EUDRWorkflowService

__all__ = [
    # Version
    "__version__",
    "__engine_id__",
    "__engine_name__",
    # Configuration
    "EUDRWorkflowConfig",
    "get_config",
    "set_config",
    "reset_config",
    # Enumerations
    "ComplianceStage",
    "WorkflowStatus",
    "StageStatus",
    "RequirementState",
    "ActionType",
    "RiskClassification",
    "GateRiskLevel",
    "CountryRiskLevel",
    "RiskFactorType",
    "AlertSeverity",
    "LinkStatus",
    "CertificateStatus",
    "DeforestationStatus",
    "EventKind",
    "PartyType",
    # Records
    "Workflow",
    "RiskSnapshot",
    "CertificateRecord",
    "ProductionUnit",
    "ProductionUnitLink",
    "DeforestationAlert",
    "TraceabilityEvent",
    "CollectionEvent",
    "ConsolidationEvent",
    "ProcessingEvent",
    "ShipmentEvent",
    "StageTransition",
    "IssuingAccount",
    # Collaborator payloads
    "DateRange",
    "VegetationIndexStats",
    "MintReceipt",
    # Results
    "StageValidationResult",
    "StageStatusDTO",
    "StageAdvancementResult",
    "WorkflowProgress",
    "StageGuidance",
    "RiskAssessmentResult",
    "GateRiskResult",
    "ComplianceResult",
    "CertificateIssuanceResult",
    "CertificateTransferResult",
    "DueDiligenceSummary",
    # Request models
    "CreateWorkflowRequest",
    "RecordCollectionRequest",
    "RecordConsolidationRequest",
    "RecordProcessingRequest",
    "RecordShipmentRequest",
    # Store and collaborators
    "TraceabilityStore",
    "InMemoryTraceabilityStore",
    "WorkflowAggregates",
    "LedgerClient",
    "SandboxLedgerClient",
    "AccountProvisioner",
    "SandboxAccountProvisioner",
    "SatelliteAnalysisClient",
    "CountryRiskTable",
    "StaticCountryRiskTable",
    # Core engines
    "ComplianceValidator",
    "RiskAssessmentEngine",
    "stage_display_risk",
    "certificate_gate_risk",
    "StageStateMachine",
    "CertificateIssuanceGate",
    "TraceabilityEventEngine",
    "DueDiligenceEngine",
    "LedgerRecorder",
    "ProvenanceTracker",
    # Metrics
    "PROMETHEUS_AVAILABLE",
    # Service facade
    "EUDRWorkflowService",
]
