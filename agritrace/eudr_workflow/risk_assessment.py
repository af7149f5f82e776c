# -*- coding: utf-8 -*-
"""
Risk Assessment Engine - AT-EUDR-WF: Compliance Workflow Engine

Two independent, deterministic risk algorithms per EUDR Article 10:

``stage_display_risk``
    Three factors scored 0-100 (country 0.35, deforestation 0.40,
    supply chain complexity 0.25) and four bands: < 20 NEGLIGIBLE,
    < 40 LOW, < 60 STANDARD, else HIGH. Shown at the RISK_ASSESSMENT
    stage and persisted on the workflow.

``certificate_gate_risk``
    Four factors scored 0-1 (deforestation 0.40, geospatial 0.25,
    country 0.20, traceability completeness 0.15) plus a 0.10 GPS gap
    penalty, clamped to [0, 1], and three bands: >= 0.7 HIGH,
    >= 0.4 MEDIUM, else LOW. Used only to gate certificate issuance.

The algorithms disagree on weights, factor count and band count and
must not be merged. A HIGH-risk country can still produce a LOW stage
display classification (e.g. 85/10/15 gives 37.5).

Example:
    >>> engine = RiskAssessmentEngine(store=store)
    >>> result = engine.assess_workflow("WF-abc123")
    >>> result.classification
    <RiskClassification.LOW: 'LOW'>

Author: AgriTrace Platform Team
Date: March 2026
PRD: AT-EUDR-WF Compliance Workflow Engine
Status: Production Ready
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence, Tuple

from agritrace.eudr_workflow.collaborators import (
    CountryRiskTable,
    StaticCountryRiskTable,
)
from agritrace.eudr_workflow.locks import WorkflowLocks
from agritrace.eudr_workflow.metrics import observe_duration, record_risk_assessment
from agritrace.eudr_workflow.models import (
    AlertSeverity,
    CountryRiskLevel,
    DeforestationAlert,
    GateRiskLevel,
    GateRiskResult,
    RiskAssessmentResult,
    RiskClassification,
    RiskFactor,
    RiskFactorType,
    Workflow,
)
from agritrace.eudr_workflow.store import TraceabilityStore, WorkflowAggregates

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

COUNTRY_LEVEL_SCORES: Dict[CountryRiskLevel, float] = {
    CountryRiskLevel.LOW: 15.0,
    CountryRiskLevel.STANDARD: 50.0,
    CountryRiskLevel.HIGH: 85.0,
}

UNKNOWN_RISK_SCORE = 50.0

# (country, deforestation, complexity)
DISPLAY_WEIGHTS: Tuple[float, float, float] = (0.35, 0.40, 0.25)

# (deforestation, geospatial, country, traceability)
GATE_WEIGHTS: Tuple[float, float, float, float] = (0.40, 0.25, 0.20, 0.15)

# Region keywords mapped to ISO alpha-2 codes, matched as substrings of the
# lower-cased administrative region; first match wins.
REGION_COUNTRY_HINTS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("kenya", "nairobi", "mombasa", "kiambu", "nakuru", "kisumu"), "KE"),
    (("ethiopia", "addis", "oromia", "amhara"), "ET"),
    (("uganda", "kampala"), "UG"),
    (("tanzania", "dar es salaam"), "TZ"),
    (("rwanda", "kigali"), "RW"),
    (("brazil", "brasil"), "BR"),
    (("colombia", "bogota"), "CO"),
    (("indonesia", "jakarta"), "ID"),
    (("vietnam", "hanoi"), "VN"),
    (("ghana", "accra"), "GH"),
    (("ivory coast", "côte d'ivoire", "cote d'ivoire"), "CI"),
    (("peru", "lima"), "PE"),
    (("malaysia", "kuala lumpur"), "MY"),
    (("india", "mumbai", "delhi"), "IN"),
    (("mexico", "méxico"), "MX"),
    (("guatemala",), "GT"),
    (("honduras",), "HN"),
    (("costa rica",), "CR"),
    (("nicaragua",), "NI"),
    (("ecuador", "quito"), "EC"),
)

RECOMMENDED_ACTIONS: Dict[RiskClassification, List[str]] = {
    RiskClassification.NEGLIGIBLE: [
        "Standard documentation is sufficient",
        "Proceed with simplified due diligence",
    ],
    RiskClassification.LOW: [
        "Ensure all documentation is complete",
        "Verify supplier certifications",
    ],
    RiskClassification.STANDARD: [
        "Conduct thorough documentation review",
        "Verify all geolocation data",
        "Check deforestation databases",
    ],
    RiskClassification.HIGH: [
        "Engage third-party verification",
        "Implement enhanced monitoring",
        "Consider on-site inspections",
        "Document all mitigation measures",
    ],
}


# ---------------------------------------------------------------------------
# Pure scoring functions
# ---------------------------------------------------------------------------


def infer_country_from_region(region: Optional[str]) -> Optional[str]:
    """Infer an alpha-2 country code from a free-text region string."""
    if not region:
        return None
    lowered = region.lower()
    for keywords, code in REGION_COUNTRY_HINTS:
        if any(k in lowered for k in keywords):
            return code
    return None


def country_risk_score(
    countries: Sequence[str],
    table: CountryRiskTable,
) -> Tuple[float, Dict[str, str]]:
    """Average the level scores of the countries found in ``table``.

    Returns:
        (score, {country: level}) with score 50 when nothing resolves.
    """
    levels: Dict[str, str] = {}
    scores: List[float] = []
    for code in countries:
        level = table.lookup_country_risk(code)
        if level is None:
            continue
        levels[code] = level.value
        scores.append(COUNTRY_LEVEL_SCORES[level])
    if not scores:
        return UNKNOWN_RISK_SCORE, levels
    return sum(scores) / len(scores), levels


def deforestation_risk_score(
    unit_count: int,
    alerts: Sequence[DeforestationAlert],
) -> float:
    if any(not a.is_reviewed for a in alerts):
        return 80.0
    if alerts:
        return 30.0
    if unit_count == 0:
        return UNKNOWN_RISK_SCORE
    return 10.0


def complexity_risk_score(collection_count: int) -> float:
    if collection_count == 0:
        return UNKNOWN_RISK_SCORE
    if collection_count <= 3:
        return 15.0
    if collection_count <= 10:
        return 35.0
    if collection_count <= 25:
        return 55.0
    return 75.0


def classify_display_score(
    score: float,
    negligible_below: float = 20.0,
    low_below: float = 40.0,
    standard_below: float = 60.0,
) -> RiskClassification:
    if score < negligible_below:
        return RiskClassification.NEGLIGIBLE
    if score < low_below:
        return RiskClassification.LOW
    if score < standard_below:
        return RiskClassification.STANDARD
    return RiskClassification.HIGH


def stage_display_risk(
    country_score: float,
    deforestation_score: float,
    complexity_score: float,
    weights: Tuple[float, float, float] = DISPLAY_WEIGHTS,
    bands: Tuple[float, float, float] = (20.0, 40.0, 60.0),
) -> Tuple[float, RiskClassification]:
    """Three-factor, four-band risk used for the stage display.

    Weights differ from ``certificate_gate_risk`` and the bands are on a
    0-100 scale; keep the two separate.

    Returns:
        (overall score rounded to 2 decimals, classification)
    """
    w_country, w_deforestation, w_complexity = weights
    overall = (
        country_score * w_country
        + deforestation_score * w_deforestation
        + complexity_score * w_complexity
    )
    overall = round(overall, 2)
    return overall, classify_display_score(overall, *bands)


def gate_deforestation_factor(recent_alerts: Sequence[DeforestationAlert]) -> float:
    """Deforestation factor (0-1) from alerts dated after the cutoff."""
    severe = [
        a for a in recent_alerts
        if a.severity in (AlertSeverity.HIGH, AlertSeverity.CRITICAL)
    ]
    if severe:
        return 0.9
    medium = sum(1 for a in recent_alerts if a.severity == AlertSeverity.MEDIUM)
    if medium > 2:
        return 0.7
    if medium > 0:
        return 0.5
    if recent_alerts:
        return 0.3
    return 0.1


def gate_geospatial_factor(unit_count: int, verified: int, with_gps: int) -> float:
    """Share of missing verification and GPS data across units (0-1)."""
    if unit_count == 0:
        return 1.0
    return 1.0 - (verified + with_gps) / (2.0 * unit_count)


def certificate_gate_risk(
    deforestation_factor: float,
    geospatial_factor: float,
    country_factor: float,
    traceability_factor: float,
    has_gps_gaps: bool,
    weights: Tuple[float, float, float, float] = GATE_WEIGHTS,
    high_threshold: float = 0.7,
    medium_threshold: float = 0.4,
    gps_gap_penalty: float = 0.1,
) -> GateRiskResult:
    """Four-factor, three-band risk used to gate certificate issuance.

    Factors are on a 0-1 scale, unlike ``stage_display_risk``; the
    penalty is added after weighting and the result clamped to [0, 1].
    """
    w_def, w_geo, w_country, w_trace = weights
    score = (
        deforestation_factor * w_def
        + geospatial_factor * w_geo
        + country_factor * w_country
        + traceability_factor * w_trace
    )
    if has_gps_gaps:
        score += gps_gap_penalty
    score = round(min(1.0, max(0.0, score)), 4)

    if score >= high_threshold:
        level = GateRiskLevel.HIGH
    elif score >= medium_threshold:
        level = GateRiskLevel.MEDIUM
    else:
        level = GateRiskLevel.LOW

    return GateRiskResult(
        score=score,
        level=level,
        deforestation_factor=deforestation_factor,
        geospatial_factor=round(geospatial_factor, 4),
        country_factor=country_factor,
        traceability_factor=traceability_factor,
        gps_gap_penalty_applied=has_gps_gaps,
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class RiskAssessmentEngine:
    """Computes and persists workflow risk.

    The stage display assessment is the one place risk mutates state:
    score, classification and timestamp are written to the workflow so
    later checks can ask "was risk assessed" without recomputing.

    Attributes:
        _store: Traceability store.
        _country_table: Country risk lookup.
        _locks: Per-workflow locks shared with the other engines.
        _provenance: Optional ProvenanceTracker.
    """

    def __init__(
        self,
        store: TraceabilityStore,
        config: Any = None,
        country_table: Optional[CountryRiskTable] = None,
        locks: Optional[WorkflowLocks] = None,
        provenance: Any = None,
    ) -> None:
        """Initialize RiskAssessmentEngine.

        Args:
            store: Traceability store.
            config: Optional EUDRWorkflowConfig or dict.
            country_table: Country risk lookup; defaults to the static table.
            locks: Shared WorkflowLocks.
            provenance: Optional ProvenanceTracker instance.
        """
        self._store = store
        self._config = config or {}
        self._country_table = country_table or StaticCountryRiskTable()
        self._locks = locks or WorkflowLocks()
        self._provenance = provenance

        self._display_weights = (
            self._get_cfg("display_country_weight", DISPLAY_WEIGHTS[0]),
            self._get_cfg("display_deforestation_weight", DISPLAY_WEIGHTS[1]),
            self._get_cfg("display_complexity_weight", DISPLAY_WEIGHTS[2]),
        )
        self._display_bands = (
            self._get_cfg("display_negligible_below", 20.0),
            self._get_cfg("display_low_below", 40.0),
            self._get_cfg("display_standard_below", 60.0),
        )
        self._gate_weights = (
            self._get_cfg("gate_deforestation_weight", GATE_WEIGHTS[0]),
            self._get_cfg("gate_geospatial_weight", GATE_WEIGHTS[1]),
            self._get_cfg("gate_country_weight", GATE_WEIGHTS[2]),
            self._get_cfg("gate_traceability_weight", GATE_WEIGHTS[3]),
        )
        self._gate_high = self._get_cfg("gate_high_threshold", 0.7)
        self._gate_medium = self._get_cfg("gate_medium_threshold", 0.4)
        self._gps_gap_penalty = self._get_cfg("gps_gap_penalty", 0.1)

        logger.info(
            "RiskAssessmentEngine initialized: display_weights=[%.2f,%.2f,%.2f], "
            "gate_weights=[%.2f,%.2f,%.2f,%.2f]",
            *self._display_weights, *self._gate_weights,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve_countries(self, aggregates: WorkflowAggregates) -> List[str]:
        """Distinct country codes of the linked units.

        Each unit contributes its geometry-derived code, else a code
        inferred from its region text. With no unit resolving, the
        workflow's declared origin is used.
        """
        codes = set()
        for link in aggregates.links:
            unit = aggregates.unit_for(link)
            if unit is None:
                continue
            code = unit.country_code or infer_country_from_region(
                unit.administrative_region
            )
            if code:
                codes.add(code)
        if not codes and aggregates.workflow.origin_country:
            codes.add(aggregates.workflow.origin_country)
        return sorted(codes)

    def resolve_origin_country(self, aggregates: WorkflowAggregates) -> Optional[str]:
        """Most common unit country (ties broken alphabetically), else declared origin."""
        counts: Counter = Counter()
        for link in aggregates.links:
            unit = aggregates.unit_for(link)
            if unit is None:
                continue
            code = unit.country_code or infer_country_from_region(
                unit.administrative_region
            )
            if code:
                counts[code] += 1
        if counts:
            return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]
        return aggregates.workflow.origin_country

    def assess(self, aggregates: WorkflowAggregates) -> RiskAssessmentResult:
        """Compute the stage display risk without persisting it."""
        start_time = time.monotonic()
        workflow_id = aggregates.workflow.workflow_id

        countries = self.resolve_countries(aggregates)
        country_score, country_levels = country_risk_score(
            countries, self._country_table,
        )
        deforestation_score = deforestation_risk_score(
            len(aggregates.links), aggregates.alerts,
        )
        complexity_score = complexity_risk_score(len(aggregates.collections))

        overall, classification = stage_display_risk(
            country_score, deforestation_score, complexity_score,
            weights=self._display_weights, bands=self._display_bands,
        )

        unreviewed = len(aggregates.unreviewed_alerts())
        risk_factors = [
            RiskFactor(
                factor_type=RiskFactorType.COUNTRY,
                description="Country of production risk level",
                score=country_score,
                details={"countries": countries, "levels": country_levels},
            ),
            RiskFactor(
                factor_type=RiskFactorType.DEFORESTATION,
                description="Deforestation alerts on linked production units",
                score=deforestation_score,
                details={
                    "production_units": len(aggregates.links),
                    "alerts": len(aggregates.alerts),
                    "unreviewed_alerts": unreviewed,
                },
            ),
            RiskFactor(
                factor_type=RiskFactorType.SUPPLY_CHAIN,
                description="Supply chain complexity from collection events",
                score=complexity_score,
                details={"collection_events": len(aggregates.collections)},
            ),
        ]

        result = RiskAssessmentResult(
            workflow_id=workflow_id,
            country_score=country_score,
            deforestation_score=deforestation_score,
            complexity_score=complexity_score,
            overall_score=overall,
            classification=classification,
            countries=countries,
            risk_factors=risk_factors,
            recommended_actions=list(RECOMMENDED_ACTIONS[classification]),
        )
        if self._provenance is not None:
            result.provenance_hash = self._provenance.build_hash(
                result.model_dump(mode="json", exclude={"assessment_id", "assessed_at"})
            )

        record_risk_assessment("stage_display", classification.value)
        elapsed = time.monotonic() - start_time
        observe_duration("risk_assessment", elapsed)
        logger.info(
            "Stage display risk for %s: country=%.1f deforestation=%.1f "
            "complexity=%.1f overall=%.2f (%s) in %.1fms",
            workflow_id, country_score, deforestation_score,
            complexity_score, overall, classification.value, elapsed * 1000,
        )
        return result

    def apply(self, workflow: Workflow, result: RiskAssessmentResult) -> Workflow:
        """Write ``result`` into the workflow's risk snapshot; caller saves."""
        workflow.risk.classification = result.classification
        workflow.risk.score = result.overall_score
        workflow.risk.assessed_at = result.assessed_at
        if self._provenance is not None:
            self._provenance.record(
                "risk_assessment", workflow.workflow_id, "assess",
                result.provenance_hash or self._provenance.build_hash(result),
            )
        return workflow

    def assess_workflow(self, workflow_id: str) -> RiskAssessmentResult:
        """Assess a workflow and persist the outcome on it.

        Raises:
            NotFoundError: If the workflow does not exist.
        """
        with self._locks.hold(workflow_id):
            aggregates = WorkflowAggregates.load(self._store, workflow_id)
            result = self.assess(aggregates)
            self._store.save_workflow(self.apply(aggregates.workflow, result))
        return result

    def gate_risk(
        self,
        aggregates: WorkflowAggregates,
        recent_alerts: Sequence[DeforestationAlert],
    ) -> GateRiskResult:
        """Compute the certificate gate risk for a workflow snapshot.

        Args:
            aggregates: Workflow snapshot.
            recent_alerts: Alerts dated after the deforestation cutoff.
        """
        unit_count = len(aggregates.links)
        verified = sum(1 for link in aggregates.links if link.geolocation_verified)
        with_gps = unit_count - len(aggregates.units_without_coordinates())

        country_levels = [
            self._country_table.lookup_country_risk(code)
            for code in self.resolve_countries(aggregates)
        ]
        country_factor = 0.8 if CountryRiskLevel.HIGH in country_levels else 0.3
        traceability_factor = 0.1 if aggregates.consolidations else 0.8

        result = certificate_gate_risk(
            deforestation_factor=gate_deforestation_factor(recent_alerts),
            geospatial_factor=gate_geospatial_factor(unit_count, verified, with_gps),
            country_factor=country_factor,
            traceability_factor=traceability_factor,
            has_gps_gaps=with_gps < unit_count,
            weights=self._gate_weights,
            high_threshold=self._gate_high,
            medium_threshold=self._gate_medium,
            gps_gap_penalty=self._gps_gap_penalty,
        )
        record_risk_assessment("certificate_gate", result.level.value)
        logger.debug(
            "Certificate gate risk for %s: %.4f (%s)",
            aggregates.workflow.workflow_id, result.score, result.level.value,
        )
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _get_cfg(self, key: str, default: float) -> float:
        if hasattr(self._config, key):
            return getattr(self._config, key)
        if isinstance(self._config, dict):
            return self._config.get(key, default)
        return default


__all__ = [
    "COUNTRY_LEVEL_SCORES",
    "DISPLAY_WEIGHTS",
    "GATE_WEIGHTS",
    "RECOMMENDED_ACTIONS",
    "REGION_COUNTRY_HINTS",
    "infer_country_from_region",
    "country_risk_score",
    "deforestation_risk_score",
    "complexity_risk_score",
    "classify_display_score",
    "stage_display_risk",
    "gate_deforestation_factor",
    "gate_geospatial_factor",
    "certificate_gate_risk",
    "RiskAssessmentEngine",
]
