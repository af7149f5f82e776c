# -*- coding: utf-8 -*-
"""
EUDR Compliance Workflow Data Models - AT-EUDR-WF: Compliance Workflow Engine

Pydantic v2 data models for the compliance workflow engine. Defines all
enumerations, traceability records, result DTOs, and request wrappers used
to move a commodity workflow through the ten EUDR compliance stages and
gate its compliance certificate.

Models:
    - Enumerations: ComplianceStage, WorkflowStatus, StageStatus,
        RequirementState, ActionType, RiskClassification, GateRiskLevel,
        CountryRiskLevel, RiskFactorType, AlertSeverity, LinkStatus,
        CertificateStatus, DeforestationStatus, EventKind, PartyType
    - Records: Workflow (with RiskSnapshot and CertificateRecord groups),
        ProductionUnit, ProductionUnitLink, CollectionEvent,
        ConsolidationEvent, ProcessingEvent, ShipmentEvent,
        DeforestationAlert, StageTransition, IssuingAccount
    - Results: ValidationItem, StageValidationResult, StageStatusDTO,
        StageAdvancementResult, StageProgressItem, WorkflowProgress,
        ActionItem, StageGuidance, RiskFactor, RiskAssessmentResult,
        GateRiskResult, ComplianceResult, CertificateIssuanceResult,
        CertificateTransferResult, DueDiligenceSummary
    - Collaborator payloads: DateRange, VegetationIndexStats, MintReceipt
    - Requests: CreateWorkflowRequest, RecordCollectionRequest,
        RecordConsolidationRequest, RecordProcessingRequest,
        RecordShipmentRequest

Author: AgriTrace Platform Team
Date: March 2026
PRD: AT-EUDR-WF Compliance Workflow Engine
Status: Production Ready
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    """Return current UTC datetime with microseconds zeroed."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _normalize_country(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip().upper()
    if len(v) != 2 or not v.isalpha():
        raise ValueError("country code must be an ISO 3166-1 alpha-2 code")
    return v


# =============================================================================
# Enumerations
# =============================================================================


class ComplianceStage(str, Enum):
    """The ten ordered EUDR compliance stages of a workflow."""

    PRODUCTION_REGISTRATION = "PRODUCTION_REGISTRATION"
    GEOLOCATION_VERIFICATION = "GEOLOCATION_VERIFICATION"
    DEFORESTATION_CHECK = "DEFORESTATION_CHECK"
    COLLECTION_AGGREGATION = "COLLECTION_AGGREGATION"
    PROCESSING = "PROCESSING"
    RISK_ASSESSMENT = "RISK_ASSESSMENT"
    DUE_DILIGENCE_STATEMENT = "DUE_DILIGENCE_STATEMENT"
    EXPORT_SHIPMENT = "EXPORT_SHIPMENT"
    CUSTOMS_CLEARANCE = "CUSTOMS_CLEARANCE"
    DELIVERY_COMPLETE = "DELIVERY_COMPLETE"


class WorkflowStatus(str, Enum):
    """Overall workflow status."""

    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class StageStatus(str, Enum):
    """Status of one stage as shown in the workflow progress overview."""

    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    BLOCKED = "BLOCKED"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"


class RequirementState(str, Enum):
    """Tri-state outcome of a stage's requirements.

    Optional stages report SKIPPED when they have no events; required
    stages report REQUIRED_PENDING until every requirement passes.
    """

    REQUIRED_PENDING = "REQUIRED_PENDING"
    SKIPPED = "SKIPPED"
    SATISFIED = "SATISFIED"


class ActionType(str, Enum):
    """Kind of action listed in stage guidance."""

    REQUIRED = "REQUIRED"
    AUTOMATED = "AUTOMATED"
    OPTIONAL = "OPTIONAL"


class RiskClassification(str, Enum):
    """Four-band classification used for the stage risk display."""

    NEGLIGIBLE = "NEGLIGIBLE"
    LOW = "LOW"
    STANDARD = "STANDARD"
    HIGH = "HIGH"


class GateRiskLevel(str, Enum):
    """Three-band classification used to gate certificate issuance."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class CountryRiskLevel(str, Enum):
    """EUDR Article 29 country benchmarking level."""

    LOW = "LOW"
    STANDARD = "STANDARD"
    HIGH = "HIGH"


class RiskFactorType(str, Enum):
    """Component of the stage display risk score."""

    COUNTRY = "COUNTRY"
    DEFORESTATION = "DEFORESTATION"
    SUPPLY_CHAIN = "SUPPLY_CHAIN"


class AlertSeverity(str, Enum):
    """Severity of a deforestation alert."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class LinkStatus(str, Enum):
    """Derived verification status of a production unit link."""

    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    DEFORESTATION_CLEAR = "DEFORESTATION_CLEAR"


class CertificateStatus(str, Enum):
    """Compliance certificate lifecycle, independent of the stage."""

    NOT_CREATED = "NOT_CREATED"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    COMPLIANT = "COMPLIANT"
    IN_TRANSIT = "IN_TRANSIT"
    TRANSFERRED_TO_IMPORTER = "TRANSFERRED_TO_IMPORTER"
    CUSTOMS_VERIFIED = "CUSTOMS_VERIFIED"
    DELIVERED = "DELIVERED"


class DeforestationStatus(str, Enum):
    """Deforestation verdict reported by certificate validation."""

    VERIFIED_FREE = "VERIFIED_FREE"
    ALERTS_UNDER_REVIEW = "ALERTS_UNDER_REVIEW"
    VERIFICATION_INCOMPLETE = "VERIFICATION_INCOMPLETE"
    DEFORESTATION_DETECTED = "DEFORESTATION_DETECTED"


class EventKind(str, Enum):
    """Kinds of append-only traceability events, upstream first."""

    COLLECTION = "COLLECTION"
    CONSOLIDATION = "CONSOLIDATION"
    PROCESSING = "PROCESSING"
    SHIPMENT = "SHIPMENT"


class PartyType(str, Enum):
    """Supply chain party holding an issuing account."""

    EXPORTER = "EXPORTER"
    IMPORTER = "IMPORTER"
    AGGREGATOR = "AGGREGATOR"
    PROCESSOR = "PROCESSOR"


# Certificate lifecycle in order; each status may only follow its predecessor.
CERTIFICATE_LIFECYCLE: List[CertificateStatus] = list(CertificateStatus)


def certificate_rank(status: CertificateStatus) -> int:
    """Return the position of ``status`` in the certificate lifecycle."""
    return CERTIFICATE_LIFECYCLE.index(status)


# =============================================================================
# Workflow
# =============================================================================


class RiskSnapshot(BaseModel):
    """Persisted outcome of the last stage display risk assessment.

    All fields stay ``None`` until the risk engine runs.
    """

    model_config = ConfigDict(from_attributes=True)

    classification: Optional[RiskClassification] = Field(
        None, description="Four-band risk classification",
    )
    score: Optional[float] = Field(
        None, ge=0.0, le=100.0, description="Overall risk score (0-100)",
    )
    assessed_at: Optional[datetime] = Field(
        None, description="Timestamp of the assessment",
    )

    @property
    def is_assessed(self) -> bool:
        return self.assessed_at is not None


class CertificateRecord(BaseModel):
    """Certificate lifecycle fields of a workflow.

    Attributes:
        status: Current certificate lifecycle status.
        transaction_id: Ledger transaction that minted the certificate.
        serial_number: Serial number of the minted certificate token.
        asset_id: Ledger asset identifier of the certificate token.
        owner_account_id: Issuing account currently holding the token.
        importer_id: Importer the certificate was transferred to.
        issued_at: When minting was confirmed.
        transferred_at: When the transfer to the importer was confirmed.
        ledger_event_ids: Best-effort ledger transaction ids per lifecycle step.
    """

    model_config = ConfigDict(from_attributes=True)

    status: CertificateStatus = Field(
        default=CertificateStatus.NOT_CREATED,
        description="Current certificate lifecycle status",
    )
    transaction_id: Optional[str] = Field(None, description="Mint transaction id")
    serial_number: Optional[int] = Field(None, description="Token serial number")
    asset_id: Optional[str] = Field(None, description="Ledger asset id")
    owner_account_id: Optional[str] = Field(
        None, description="Issuing account currently holding the token",
    )
    importer_id: Optional[str] = Field(None, description="Receiving importer")
    issued_at: Optional[datetime] = Field(None, description="Mint confirmation time")
    transferred_at: Optional[datetime] = Field(
        None, description="Transfer confirmation time",
    )
    ledger_event_ids: Dict[str, str] = Field(
        default_factory=dict,
        description="Ledger transaction id per recorded lifecycle step",
    )


class Workflow(BaseModel):
    """A commodity batch tracked through the compliance stages.

    Fields are partitioned by lifecycle phase: identity and quantity at
    the top level, the stage fields, the ``risk`` snapshot written by the
    risk engine, and the ``certificate`` record written by the gate.
    """

    model_config = ConfigDict(from_attributes=True)

    workflow_id: str = Field(
        default_factory=lambda: _new_id("WF"),
        description="Unique workflow identifier",
    )
    name: str = Field(..., description="Human-readable workflow name")
    exporter_id: str = Field(..., description="Exporter owning the workflow")
    produce_type: str = Field(..., description="Produce type, e.g. coffee")
    origin_country: Optional[str] = Field(
        None, description="Declared ISO 3166-1 alpha-2 country of origin",
    )
    total_quantity_kg: float = Field(
        default=0.0, ge=0.0, description="Total collected quantity in kg",
    )
    created_at: datetime = Field(default_factory=_utcnow)

    # -- Stage fields --------------------------------------------------------
    current_stage: ComplianceStage = Field(
        default=ComplianceStage.PRODUCTION_REGISTRATION,
        description="Last stage reached by an advance or revert",
    )
    stage_updated_at: Optional[datetime] = Field(None)
    status: WorkflowStatus = Field(default=WorkflowStatus.IN_PROGRESS)
    skip_processing: bool = Field(
        default=False,
        description="Processing intentionally bypassed for raw commodity chains",
    )
    completed_at: Optional[datetime] = Field(None)

    # -- Lifecycle groups ----------------------------------------------------
    risk: RiskSnapshot = Field(default_factory=RiskSnapshot)
    certificate: CertificateRecord = Field(default_factory=CertificateRecord)

    @field_validator("name", "exporter_id", "produce_type")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("value must be non-empty")
        return v

    @field_validator("origin_country")
    @classmethod
    def validate_origin_country(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_country(v)


# =============================================================================
# Production units
# =============================================================================


class ProductionUnit(BaseModel):
    """A geolocated parcel of land supplying raw material.

    Attributes:
        production_unit_id: Unique identifier.
        name: Parcel name shown in blockers and reports.
        farmer_id: Farmer operating the parcel.
        latitude: WGS84 latitude of the parcel point.
        longitude: WGS84 longitude of the parcel point.
        parcel_geometry: Polygon ring as [longitude, latitude] pairs.
        country_code: ISO alpha-2 country resolved from the geometry.
        administrative_region: Free-text region, e.g. "Kiambu, Central".
        area_hectares: Parcel area.
        last_verified_at: Last geolocation verification time.
    """

    model_config = ConfigDict(from_attributes=True)

    production_unit_id: str = Field(default_factory=lambda: _new_id("PU"))
    name: str = Field(..., description="Parcel name")
    farmer_id: str = Field(..., description="Farmer operating the parcel")
    latitude: Optional[float] = Field(None, ge=-90.0, le=90.0)
    longitude: Optional[float] = Field(None, ge=-180.0, le=180.0)
    parcel_geometry: Optional[List[List[float]]] = Field(
        None, description="Polygon ring as [longitude, latitude] pairs",
    )
    country_code: Optional[str] = Field(None)
    administrative_region: Optional[str] = Field(None)
    area_hectares: Optional[float] = Field(None, ge=0.0)
    last_verified_at: Optional[datetime] = Field(None)

    @field_validator("country_code")
    @classmethod
    def validate_country_code(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_country(v)

    @field_validator("parcel_geometry")
    @classmethod
    def validate_geometry(
        cls, v: Optional[List[List[float]]],
    ) -> Optional[List[List[float]]]:
        if v is None:
            return v
        if v and len(v) < 3:
            raise ValueError("parcel geometry requires at least 3 vertices")
        for point in v:
            if len(point) != 2:
                raise ValueError("each vertex must be [longitude, latitude]")
        return v

    @property
    def has_coordinates(self) -> bool:
        if self.latitude is not None and self.longitude is not None:
            return True
        return bool(self.parcel_geometry)

    def geometry(self) -> Dict[str, Any]:
        """Return a GeoJSON geometry for satellite queries."""
        if self.parcel_geometry:
            ring = [list(p) for p in self.parcel_geometry]
            if ring[0] != ring[-1]:
                ring.append(list(ring[0]))
            return {"type": "Polygon", "coordinates": [ring]}
        if self.latitude is not None and self.longitude is not None:
            return {"type": "Point", "coordinates": [self.longitude, self.latitude]}
        return {}


class ProductionUnitLink(BaseModel):
    """Association of a production unit to a workflow with its verification flags."""

    model_config = ConfigDict(from_attributes=True)

    link_id: str = Field(default_factory=lambda: _new_id("LNK"))
    workflow_id: str = Field(...)
    production_unit_id: str = Field(...)
    geolocation_verified: bool = Field(default=False)
    deforestation_checked: bool = Field(default=False)
    deforestation_clear: bool = Field(default=False)
    linked_at: datetime = Field(default_factory=_utcnow)
    updated_at: Optional[datetime] = Field(None)

    @property
    def status(self) -> LinkStatus:
        if (
            self.geolocation_verified
            and self.deforestation_checked
            and self.deforestation_clear
        ):
            return LinkStatus.DEFORESTATION_CLEAR
        if self.geolocation_verified:
            return LinkStatus.VERIFIED
        return LinkStatus.PENDING


class DeforestationAlert(BaseModel):
    """A deforestation alert raised against a production unit."""

    model_config = ConfigDict(from_attributes=True)

    alert_id: str = Field(default_factory=lambda: _new_id("ALR"))
    production_unit_id: str = Field(...)
    severity: AlertSeverity = Field(...)
    alert_date: date = Field(...)
    is_reviewed: bool = Field(default=False)
    source: str = Field(default="internal", description="glad, radd, satellite, ...")
    description: Optional[str] = Field(None)
    ndvi_delta: Optional[float] = Field(None)


# =============================================================================
# Traceability events
# =============================================================================


class TraceabilityEvent(BaseModel):
    """Common fields of the append-only traceability events.

    Attributes:
        event_id: Unique event identifier.
        workflow_id: Owning workflow.
        kind: Event kind.
        quantity_kg: Quantity moved by this event.
        source_id: Party handing over the goods.
        destination_id: Party receiving the goods.
        occurred_at: When the physical movement happened.
        recorded_at: When the event was saved.
        ledger_transaction_id: Best-effort ledger reference.
    """

    model_config = ConfigDict(from_attributes=True)

    event_id: str = Field(default_factory=lambda: _new_id("EVT"))
    workflow_id: str = Field(...)
    kind: EventKind = Field(...)
    quantity_kg: float = Field(..., gt=0.0)
    source_id: str = Field(...)
    destination_id: str = Field(...)
    occurred_at: datetime = Field(default_factory=_utcnow)
    recorded_at: datetime = Field(default_factory=_utcnow)
    ledger_transaction_id: Optional[str] = Field(None)


class CollectionEvent(TraceabilityEvent):
    """Farmer to aggregator collection of raw produce."""

    kind: EventKind = Field(default=EventKind.COLLECTION)
    production_unit_id: str = Field(...)


class ConsolidationEvent(TraceabilityEvent):
    """Aggregator to processor consolidation."""

    kind: EventKind = Field(default=EventKind.CONSOLIDATION)


class ProcessingEvent(TraceabilityEvent):
    """Processing step; ``quantity_kg`` is the input quantity."""

    kind: EventKind = Field(default=EventKind.PROCESSING)
    processing_type: str = Field(default="processing")
    output_quantity_kg: Optional[float] = Field(None, gt=0.0)

    @property
    def effective_output_kg(self) -> float:
        if self.output_quantity_kg is not None:
            return self.output_quantity_kg
        return self.quantity_kg


class ShipmentEvent(TraceabilityEvent):
    """Export shipment to an importer."""

    kind: EventKind = Field(default=EventKind.SHIPMENT)
    destination_country: Optional[str] = Field(None)
    shipment_reference: Optional[str] = Field(None)


# =============================================================================
# Audit and accounts
# =============================================================================


class StageTransition(BaseModel):
    """Audit record of one stage advance or revert."""

    model_config = ConfigDict(from_attributes=True)

    transition_id: str = Field(default_factory=lambda: _new_id("TRN"))
    workflow_id: str = Field(...)
    from_stage: ComplianceStage = Field(...)
    to_stage: ComplianceStage = Field(...)
    direction: str = Field(..., description="advance or revert")
    reason: Optional[str] = Field(None)
    transitioned_at: datetime = Field(default_factory=_utcnow)
    ledger_transaction_id: Optional[str] = Field(None)


class IssuingAccount(BaseModel):
    """Ledger account able to hold certificate tokens."""

    model_config = ConfigDict(from_attributes=True)

    party_type: PartyType = Field(...)
    party_id: str = Field(...)
    account_id: str = Field(...)
    created_at: datetime = Field(default_factory=_utcnow)


# =============================================================================
# Collaborator payloads
# =============================================================================


class DateRange(BaseModel):
    """Inclusive date window for satellite queries."""

    start: date
    end: date

    @model_validator(mode="after")
    def validate_order(self) -> DateRange:
        if self.end < self.start:
            raise ValueError("end must not precede start")
        return self


class VegetationIndexStats(BaseModel):
    """Mean vegetation index before and after a reference date."""

    mean_index_before: float
    mean_index_after: float

    @property
    def delta(self) -> float:
        return self.mean_index_after - self.mean_index_before


class MintReceipt(BaseModel):
    """Ledger confirmation of a minted certificate token."""

    transaction_id: str
    serial_number: int
    asset_id: str


# =============================================================================
# Results
# =============================================================================


class ValidationItem(BaseModel):
    """One boolean requirement checked for a stage."""

    requirement: str
    passed: bool
    detail: Optional[str] = None


class StageValidationResult(BaseModel):
    """Outcome of validating a workflow against one stage.

    ``all_requirements_met`` is always recomputed from ``items``.
    """

    stage: ComplianceStage
    items: List[ValidationItem] = Field(default_factory=list)
    requirement_state: RequirementState = RequirementState.REQUIRED_PENDING
    all_requirements_met: bool = False

    @model_validator(mode="after")
    def derive_overall(self) -> StageValidationResult:
        self.all_requirements_met = all(item.passed for item in self.items)
        return self

    @property
    def blockers(self) -> List[str]:
        return [
            item.detail or item.requirement
            for item in self.items
            if not item.passed
        ]


class StageStatusDTO(BaseModel):
    """Current stage of a workflow with progress and blockers."""

    workflow_id: str
    stage: ComplianceStage
    display_name: str
    order: int
    total_stages: int
    progress_percent: int
    blockers: List[str] = Field(default_factory=list)
    can_advance: bool
    requirement_state: RequirementState
    stored_stage: ComplianceStage
    stage_updated_at: Optional[datetime] = None


class StageAdvancementResult(BaseModel):
    """Outcome of an advance or revert attempt."""

    success: bool
    previous_stage: ComplianceStage
    current_stage: ComplianceStage
    message: str
    blockers: List[str] = Field(default_factory=list)


class StageProgressItem(BaseModel):
    stage: ComplianceStage
    display_name: str
    order: int
    status: StageStatus
    progress_percent: int


class WorkflowProgress(BaseModel):
    """Overview of all stages for one workflow."""

    workflow_id: str
    current_stage: ComplianceStage
    overall_progress_percent: int
    completed_stages: int
    total_stages: int
    stages: List[StageProgressItem] = Field(default_factory=list)
    linked_production_units: int = 0
    verified_production_units: int = 0
    deforestation_clear_units: int = 0
    collection_event_count: int = 0
    blockers: List[str] = Field(default_factory=list)
    estimated_completion: Optional[datetime] = None
    risk_classification: Optional[RiskClassification] = None
    risk_score: Optional[float] = None
    certificate_status: CertificateStatus


class ActionItem(BaseModel):
    description: str
    action_type: ActionType
    help_text: Optional[str] = None


class StageGuidance(BaseModel):
    """Guidance for completing the current stage."""

    workflow_id: str
    stage: ComplianceStage
    display_name: str
    description: str
    article_reference: str
    actions: List[ActionItem] = Field(default_factory=list)
    tips: List[str] = Field(default_factory=list)
    blockers: List[str] = Field(default_factory=list)
    next_stage: Optional[ComplianceStage] = None


class RiskFactor(BaseModel):
    factor_type: RiskFactorType
    description: str
    score: float
    details: Dict[str, Any] = Field(default_factory=dict)


class RiskAssessmentResult(BaseModel):
    """Stage display risk assessment (three factors, four bands)."""

    assessment_id: str = Field(default_factory=lambda: _new_id("RISK"))
    workflow_id: str
    country_score: float
    deforestation_score: float
    complexity_score: float
    overall_score: float
    classification: RiskClassification
    countries: List[str] = Field(default_factory=list)
    risk_factors: List[RiskFactor] = Field(default_factory=list)
    recommended_actions: List[str] = Field(default_factory=list)
    assessed_at: datetime = Field(default_factory=_utcnow)
    provenance_hash: str = ""


class GateRiskResult(BaseModel):
    """Certificate gate risk (four factors, three bands), scores in [0, 1]."""

    score: float = Field(..., ge=0.0, le=1.0)
    level: GateRiskLevel
    deforestation_factor: float
    geospatial_factor: float
    country_factor: float
    traceability_factor: float
    gps_gap_penalty_applied: bool = False


class ComplianceResult(BaseModel):
    """Outcome of certificate validation."""

    workflow_id: str
    is_compliant: bool
    failure_reasons: List[str] = Field(default_factory=list)
    total_farmers: int = 0
    total_production_units: int = 0
    gps_coordinates_count: int = 0
    gps_coverage: float = Field(0.0, description="Percent of units with GPS data")
    deforestation_status: DeforestationStatus = DeforestationStatus.VERIFICATION_INCOMPLETE
    origin_country: Optional[str] = None
    risk_level: Optional[GateRiskLevel] = None
    risk_score: Optional[float] = None
    traceability_hash: str = ""
    validated_at: datetime = Field(default_factory=_utcnow)


class CertificateIssuanceResult(BaseModel):
    workflow_id: str
    status: CertificateStatus
    transaction_id: Optional[str] = None
    serial_number: Optional[int] = None
    asset_id: Optional[str] = None
    owner_account_id: Optional[str] = None
    issued_at: Optional[datetime] = None
    traceability_hash: str = ""


class CertificateTransferResult(BaseModel):
    workflow_id: str
    status: CertificateStatus
    asset_id: str
    from_account_id: str
    to_account_id: str
    importer_id: str
    transferred_at: datetime


class DueDiligenceSummary(BaseModel):
    """Summary data backing a due diligence statement (EUDR Article 4)."""

    dds_reference: str = Field(
        default_factory=lambda: f"DDS-{uuid.uuid4().hex[:8].upper()}",
    )
    workflow_id: str
    exporter_id: str
    produce_type: str
    total_quantity_kg: float
    production_unit_count: int
    farmer_count: int
    countries: List[str] = Field(default_factory=list)
    risk_classification: RiskClassification
    risk_score: float
    deforestation_status: DeforestationStatus
    traceability_hash: str
    generated_at: datetime = Field(default_factory=_utcnow)
    ledger_transaction_id: Optional[str] = None


# =============================================================================
# Requests
# =============================================================================


class CreateWorkflowRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    exporter_id: str
    produce_type: str
    origin_country: Optional[str] = None
    skip_processing: bool = False


class RecordCollectionRequest(BaseModel):
    """Request to record a collection from a linked production unit."""

    model_config = ConfigDict(extra="forbid")

    production_unit_id: str
    farmer_id: str
    collector_id: str
    quantity_kg: float = Field(..., gt=0.0)
    occurred_at: Optional[datetime] = None


class RecordConsolidationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    aggregator_id: str
    processor_id: str
    quantity_kg: float = Field(..., gt=0.0)
    occurred_at: Optional[datetime] = None


class RecordProcessingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    processor_id: str
    processing_type: str = "processing"
    input_quantity_kg: float = Field(..., gt=0.0)
    output_quantity_kg: Optional[float] = Field(None, gt=0.0)
    occurred_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_yield(self) -> RecordProcessingRequest:
        if (
            self.output_quantity_kg is not None
            and self.output_quantity_kg > self.input_quantity_kg
        ):
            raise ValueError("output quantity cannot exceed input quantity")
        return self


class RecordShipmentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    exporter_id: str
    importer_id: str
    quantity_kg: float = Field(..., gt=0.0)
    destination_country: Optional[str] = None
    shipment_reference: Optional[str] = None
    occurred_at: Optional[datetime] = None


__all__ = [
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
    "CERTIFICATE_LIFECYCLE",
    "certificate_rank",
    "RiskSnapshot",
    "CertificateRecord",
    "Workflow",
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
    "DateRange",
    "VegetationIndexStats",
    "MintReceipt",
    "ValidationItem",
    "StageValidationResult",
    "StageStatusDTO",
    "StageAdvancementResult",
    "StageProgressItem",
    "WorkflowProgress",
    "ActionItem",
    "StageGuidance",
    "RiskFactor",
    "RiskAssessmentResult",
    "GateRiskResult",
    "ComplianceResult",
    "CertificateIssuanceResult",
    "CertificateTransferResult",
    "DueDiligenceSummary",
    "CreateWorkflowRequest",
    "RecordCollectionRequest",
    "RecordConsolidationRequest",
    "RecordProcessingRequest",
    "RecordShipmentRequest",
]
