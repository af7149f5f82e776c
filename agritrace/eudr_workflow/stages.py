# -*- coding: utf-8 -*-
"""
Compliance Stage Descriptors - AT-EUDR-WF: Compliance Workflow Engine

Static lookup table describing the ten EUDR compliance stages. Each
descriptor carries display text, the EUDR article it implements, the
required and automated actions shown to operators, tips, and the names
of the entry actions the stage state machine runs on transitions.

Behaviour stays data-driven: the state machine reads this table instead
of branching per stage.

Example:
    >>> from agritrace.eudr_workflow.stages import describe, next_stage
    >>> describe(ComplianceStage.RISK_ASSESSMENT).article_reference
    'Article 10 - Risk assessment requirements'

Author: AgriTrace Platform Team
Date: March 2026
PRD: AT-EUDR-WF Compliance Workflow Engine
Status: Production Ready
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from agritrace.eudr_workflow.models import ComplianceStage


# Action names understood by StageStateMachine._run_actions
ACTION_ASSESS_RISK = "assess_risk"
ACTION_RECORD_LEDGER = "record_ledger"


@dataclass(frozen=True)
class StageDescriptor:
    """Display and behaviour data for one compliance stage."""

    stage: ComplianceStage
    order: int
    display_name: str
    description: str
    article_reference: str
    required_actions: Tuple[str, ...] = ()
    automated_actions: Tuple[str, ...] = ()
    tips: Tuple[str, ...] = ()
    optional: bool = False
    entry_actions: Tuple[str, ...] = ()


STAGE_TABLE: Tuple[StageDescriptor, ...] = (
    StageDescriptor(
        stage=ComplianceStage.PRODUCTION_REGISTRATION,
        order=1,
        display_name="Production Registration",
        description=(
            "Register the production units (farms, plots) supplying "
            "this workflow with their geolocation."
        ),
        article_reference="Article 9(1)(a) - Geolocation of plots",
        required_actions=(
            "Link at least one production unit to the workflow",
            "Capture GPS coordinates or parcel boundary for every unit",
        ),
        automated_actions=(
            "Resolve country of production from parcel geometry",
        ),
        tips=(
            "Plots above 4 hectares need a full polygon, not a single point",
            "Use WGS84 coordinates with at least 6 decimal places",
        ),
        entry_actions=(ACTION_RECORD_LEDGER,),
    ),
    StageDescriptor(
        stage=ComplianceStage.GEOLOCATION_VERIFICATION,
        order=2,
        display_name="Geolocation Verification",
        description=(
            "Verify that every linked production unit's coordinates are "
            "accurate and correspond to the declared parcel."
        ),
        article_reference="Article 9(1)(d) - Geolocation verification",
        required_actions=(
            "Verify GPS coordinates for each production unit",
        ),
        automated_actions=(
            "Cross-check coordinates against parcel boundaries",
        ),
        tips=(
            "Field visits or satellite imagery can confirm parcel location",
        ),
        entry_actions=(ACTION_RECORD_LEDGER,),
    ),
    StageDescriptor(
        stage=ComplianceStage.DEFORESTATION_CHECK,
        order=3,
        display_name="Deforestation Check",
        description=(
            "Confirm that no deforestation occurred on the production "
            "units after the 31 December 2020 cutoff date."
        ),
        article_reference="Article 3 - Deforestation-free requirement",
        required_actions=(
            "Complete the deforestation check for every production unit",
            "Review all open deforestation alerts",
        ),
        automated_actions=(
            "Compare satellite vegetation index before and after the cutoff",
            "Raise alerts for significant vegetation loss",
        ),
        tips=(
            "Alerts must be reviewed before the workflow can advance",
        ),
        entry_actions=(ACTION_RECORD_LEDGER,),
    ),
    StageDescriptor(
        stage=ComplianceStage.COLLECTION_AGGREGATION,
        order=4,
        display_name="Collection & Aggregation",
        description=(
            "Record the collection of produce from farmers by aggregators."
        ),
        article_reference="Article 9(1)(e) - Supply chain information",
        required_actions=(
            "Record at least one collection event",
        ),
        automated_actions=(
            "Record collection events on the immutable ledger",
            "Update workflow total quantity",
        ),
        tips=(
            "Record each delivery separately to keep quantities traceable",
        ),
        entry_actions=(ACTION_RECORD_LEDGER,),
    ),
    StageDescriptor(
        stage=ComplianceStage.PROCESSING,
        order=5,
        display_name="Processing",
        description=(
            "Record consolidation and processing steps. Raw commodity "
            "chains may skip processing."
        ),
        article_reference="Article 9(1)(e) - Supply chain information",
        required_actions=(),
        automated_actions=(
            "Check processed quantity against consolidated quantity",
        ),
        tips=(
            "Processing is optional; raw commodities can move straight to risk assessment",
        ),
        optional=True,
        entry_actions=(ACTION_RECORD_LEDGER,),
    ),
    StageDescriptor(
        stage=ComplianceStage.RISK_ASSESSMENT,
        order=6,
        display_name="Risk Assessment",
        description=(
            "Assess the risk of non-compliance from country, "
            "deforestation and supply chain complexity signals."
        ),
        article_reference="Article 10 - Risk assessment requirements",
        required_actions=(),
        automated_actions=(
            "Calculate country, deforestation and supply chain risk",
            "Classify overall risk",
        ),
        tips=(
            "High risk requires mitigation measures under Article 11",
        ),
        entry_actions=(ACTION_ASSESS_RISK, ACTION_RECORD_LEDGER),
    ),
    StageDescriptor(
        stage=ComplianceStage.DUE_DILIGENCE_STATEMENT,
        order=7,
        display_name="Due Diligence Statement",
        description=(
            "Prepare the due diligence statement and issue the "
            "compliance certificate."
        ),
        article_reference="Article 4 - Due Diligence Statement",
        required_actions=(
            "Issue the compliance certificate",
        ),
        automated_actions=(
            "Generate the due diligence statement summary",
            "Mint the certificate on the immutable ledger",
        ),
        tips=(
            "Certificate issuance is blocked while the gate risk level is HIGH",
        ),
        entry_actions=(ACTION_RECORD_LEDGER,),
    ),
    StageDescriptor(
        stage=ComplianceStage.EXPORT_SHIPMENT,
        order=8,
        display_name="Export Shipment",
        description=(
            "Record the export shipment and transfer the certificate "
            "to the importer."
        ),
        article_reference="Article 12 - Placing on the market",
        required_actions=(
            "Record the export shipment",
            "Transfer the certificate to the importer",
        ),
        automated_actions=(
            "Update certificate status to IN_TRANSIT",
        ),
        tips=(
            "The importer's ledger account is created automatically if missing",
        ),
        entry_actions=(ACTION_RECORD_LEDGER,),
    ),
    StageDescriptor(
        stage=ComplianceStage.CUSTOMS_CLEARANCE,
        order=9,
        display_name="Customs Clearance",
        description="Customs authorities verify the compliance certificate.",
        article_reference="Article 26 - Checks by competent authorities",
        required_actions=(
            "Obtain customs verification of the certificate",
        ),
        automated_actions=(),
        tips=(
            "Customs can verify the certificate directly on the ledger",
        ),
        entry_actions=(ACTION_RECORD_LEDGER,),
    ),
    StageDescriptor(
        stage=ComplianceStage.DELIVERY_COMPLETE,
        order=10,
        display_name="Delivery Complete",
        description="The shipment has been delivered to the importer.",
        article_reference="Article 12 - Placing on the market",
        required_actions=(
            "Confirm delivery to the importer",
        ),
        automated_actions=(
            "Mark workflow as COMPLETED",
        ),
        tips=(),
        entry_actions=(ACTION_RECORD_LEDGER,),
    ),
)

_BY_STAGE: Dict[ComplianceStage, StageDescriptor] = {
    d.stage: d for d in STAGE_TABLE
}

TOTAL_STAGES = len(STAGE_TABLE)
FIRST_STAGE = STAGE_TABLE[0].stage
LAST_STAGE = STAGE_TABLE[-1].stage


def describe(stage: ComplianceStage) -> StageDescriptor:
    return _BY_STAGE[stage]


def stage_order(stage: ComplianceStage) -> int:
    return _BY_STAGE[stage].order


def next_stage(stage: ComplianceStage) -> Optional[ComplianceStage]:
    """Return the successor of ``stage``, or None for the last stage."""
    order = stage_order(stage)
    if order >= TOTAL_STAGES:
        return None
    return STAGE_TABLE[order].stage


def previous_stage(stage: ComplianceStage) -> Optional[ComplianceStage]:
    """Return the predecessor of ``stage``, or None for the first stage."""
    order = stage_order(stage)
    if order <= 1:
        return None
    return STAGE_TABLE[order - 2].stage


def stages_before(stage: ComplianceStage) -> List[ComplianceStage]:
    return [d.stage for d in STAGE_TABLE[: stage_order(stage) - 1]]


# Help text keyed by keywords found in an action description, first match wins
_HELP_RULES: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (
        ("gps", "coordinates", "boundary"),
        "Capture coordinates with a GPS device or mobile app at the "
        "parcel; draw a polygon for plots above 4 hectares.",
    ),
    (
        ("upload", "document"),
        "Attach clear scans or photos of the supporting documents.",
    ),
    (
        ("verify", "verification", "review"),
        "Check each item against field evidence or satellite imagery "
        "before confirming.",
    ),
    (
        ("ledger", "certificate", "transfer"),
        "Ledger records are immutable; confirm details before submitting.",
    ),
)


def help_text_for(action: str) -> Optional[str]:
    """Return operator help text for an action description, if any rule matches."""
    lowered = action.lower()
    for keywords, text in _HELP_RULES:
        if any(k in lowered for k in keywords):
            return text
    return None


__all__ = [
    "ACTION_ASSESS_RISK",
    "ACTION_RECORD_LEDGER",
    "StageDescriptor",
    "STAGE_TABLE",
    "TOTAL_STAGES",
    "FIRST_STAGE",
    "LAST_STAGE",
    "describe",
    "stage_order",
    "next_stage",
    "previous_stage",
    "stages_before",
    "help_text_for",
]
