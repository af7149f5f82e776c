"""Tests for the stage display risk and the certificate gate risk.

Covers:
- Pure scoring functions for both algorithms
- Country resolution from units, regions and declared origin
- Persisting the stage display risk on a workflow

Author: AgriTrace Platform Team
Date: March 2026
Status: Production Ready
"""

from datetime import date

import pytest

from agritrace.eudr_workflow.collaborators import StaticCountryRiskTable
from agritrace.eudr_workflow.models import (
    AlertSeverity,
    CollectionEvent,
    ConsolidationEvent,
    CountryRiskLevel,
    DeforestationAlert,
    GateRiskLevel,
    ProductionUnit,
    ProductionUnitLink,
    RiskClassification,
    Workflow,
)
from agritrace.eudr_workflow.provenance import ProvenanceTracker
from agritrace.eudr_workflow.risk_assessment import (
    RiskAssessmentEngine,
    certificate_gate_risk,
    classify_display_score,
    complexity_risk_score,
    country_risk_score,
    deforestation_risk_score,
    gate_deforestation_factor,
    gate_geospatial_factor,
    infer_country_from_region,
    stage_display_risk,
)
from agritrace.eudr_workflow.store import WorkflowAggregates


def _alert(severity: AlertSeverity, reviewed: bool = False) -> DeforestationAlert:
    return DeforestationAlert(
        production_unit_id="PU-1",
        severity=severity,
        alert_date=date(2024, 2, 1),
        is_reviewed=reviewed,
    )


def _aggregates(units, links=None, collections=0, consolidated=False, alerts=(),
                origin=None) -> WorkflowAggregates:
    workflow = Workflow(
        workflow_id="WF-1", name="Lot 1", exporter_id="EXP-1",
        produce_type="coffee", origin_country=origin,
    )
    if links is None:
        links = [
            ProductionUnitLink(workflow_id="WF-1", production_unit_id=u.production_unit_id)
            for u in units
        ]
    agg = WorkflowAggregates(
        workflow=workflow,
        links=links,
        units={u.production_unit_id: u for u in units},
        alerts=list(alerts),
    )
    agg.collections = [
        CollectionEvent(
            workflow_id="WF-1", production_unit_id=units[0].production_unit_id,
            quantity_kg=100.0, source_id="F-1", destination_id="AGG-1",
        )
        for _ in range(collections)
    ]
    if consolidated:
        agg.consolidations = [ConsolidationEvent(
            workflow_id="WF-1", quantity_kg=100.0,
            source_id="AGG-1", destination_id="PROC-1",
        )]
    return agg


@pytest.fixture
def engine(store):
    return RiskAssessmentEngine(store, provenance=ProvenanceTracker())


# ==============================================================================
# Stage Display Risk Tests
# ==============================================================================

class TestStageDisplayRisk:
    """Tests for the three-factor, four-band display algorithm."""

    def test_high_country_can_still_classify_low(self):
        """A HIGH country with clean signals classifies LOW overall."""
        score, classification = stage_display_risk(85.0, 10.0, 15.0)

        assert score == 37.5
        assert classification == RiskClassification.LOW

    @pytest.mark.parametrize("score,expected", [
        (0.0, RiskClassification.NEGLIGIBLE),
        (19.99, RiskClassification.NEGLIGIBLE),
        (20.0, RiskClassification.LOW),
        (40.0, RiskClassification.STANDARD),
        (59.99, RiskClassification.STANDARD),
        (60.0, RiskClassification.HIGH),
    ])
    def test_band_edges(self, score, expected):
        """Band lower edges are inclusive."""
        assert classify_display_score(score) == expected

    @pytest.mark.parametrize("count,expected", [
        (0, 50.0), (1, 15.0), (3, 15.0), (4, 35.0), (10, 35.0),
        (11, 55.0), (25, 55.0), (26, 75.0),
    ])
    def test_complexity_score(self, count, expected):
        """Complexity grows with the number of collection events."""
        assert complexity_risk_score(count) == expected

    def test_deforestation_score(self):
        """Unreviewed alerts dominate; no units is unknown."""
        assert deforestation_risk_score(2, [_alert(AlertSeverity.LOW)]) == 80.0
        assert deforestation_risk_score(2, [_alert(AlertSeverity.LOW, True)]) == 30.0
        assert deforestation_risk_score(0, []) == 50.0
        assert deforestation_risk_score(2, []) == 10.0

    def test_country_score_average(self):
        """Resolved countries are averaged; unknown ones are ignored."""
        table = StaticCountryRiskTable()

        score, levels = country_risk_score(["BR", "DE", "ZZ"], table)

        assert score == 50.0
        assert levels == {"BR": "HIGH", "DE": "LOW"}

    def test_country_score_unknown(self):
        """Nothing resolving yields the neutral score."""
        score, levels = country_risk_score([], StaticCountryRiskTable())

        assert score == 50.0
        assert levels == {}


# ==============================================================================
# Certificate Gate Risk Tests
# ==============================================================================

class TestCertificateGateRisk:
    """Tests for the four-factor, three-band gate algorithm."""

    def test_deforestation_factor(self):
        """Severe alerts dominate, then medium counts."""
        assert gate_deforestation_factor([]) == 0.1
        assert gate_deforestation_factor([_alert(AlertSeverity.LOW)]) == 0.3
        assert gate_deforestation_factor([_alert(AlertSeverity.MEDIUM)]) == 0.5
        assert gate_deforestation_factor([_alert(AlertSeverity.MEDIUM)] * 3) == 0.7
        assert gate_deforestation_factor([_alert(AlertSeverity.CRITICAL, True)]) == 0.9

    def test_geospatial_factor(self):
        """Missing verification and GPS raise the factor."""
        assert gate_geospatial_factor(0, 0, 0) == 1.0
        assert gate_geospatial_factor(4, 4, 4) == 0.0
        assert gate_geospatial_factor(4, 2, 4) == pytest.approx(0.25)

    def test_score_is_clamped(self):
        """The GPS penalty cannot push the score above one."""
        result = certificate_gate_risk(1.0, 1.0, 1.0, 1.0, has_gps_gaps=True)

        assert result.score == 1.0
        assert result.level == GateRiskLevel.HIGH
        assert result.gps_gap_penalty_applied is True

    def test_medium_band(self):
        """Scores between the thresholds are MEDIUM."""
        result = certificate_gate_risk(0.5, 0.5, 0.3, 0.8, has_gps_gaps=False)

        assert result.score == pytest.approx(0.505)
        assert result.level == GateRiskLevel.MEDIUM


# ==============================================================================
# Engine Tests
# ==============================================================================

class TestRiskAssessmentEngine:
    """Tests for RiskAssessmentEngine."""

    def test_resolve_countries(self, engine):
        """Units contribute their code or a region-inferred one."""
        units = [
            ProductionUnit(production_unit_id="PU-1", name="A", farmer_id="F1",
                           country_code="KE"),
            ProductionUnit(production_unit_id="PU-2", name="B", farmer_id="F2",
                           administrative_region="Oromia, Jimma"),
        ]

        assert engine.resolve_countries(_aggregates(units)) == ["ET", "KE"]

    def test_declared_origin_fallback(self, engine):
        """The declared origin is used when no unit resolves."""
        units = [ProductionUnit(production_unit_id="PU-1", name="A", farmer_id="F1")]

        agg = _aggregates(units, origin="ug")

        assert engine.resolve_countries(agg) == ["UG"]
        assert engine.resolve_origin_country(agg) == "UG"

    def test_origin_is_most_common_country(self, engine):
        """Ties between unit countries break alphabetically."""
        units = [
            ProductionUnit(production_unit_id=f"PU-{i}", name=str(i), farmer_id="F",
                           country_code=code)
            for i, code in enumerate(["UG", "KE", "UG", "KE", "RW"])
        ]

        assert engine.resolve_origin_country(_aggregates(units)) == "KE"

    def test_region_inference(self):
        """Region keywords map to alpha-2 codes."""
        assert infer_country_from_region("Kiambu County") == "KE"
        assert infer_country_from_region("Atlantis") is None
        assert infer_country_from_region(None) is None

    def test_assess_clean_kenyan_workflow(self, engine):
        """A clean Kenyan workflow with two collections is LOW."""
        unit = ProductionUnit(production_unit_id="PU-1", name="A", farmer_id="F1",
                              country_code="KE")

        result = engine.assess(_aggregates([unit], collections=2))

        assert result.country_score == 50.0
        assert result.deforestation_score == 10.0
        assert result.complexity_score == 15.0
        assert result.overall_score == 25.25
        assert result.classification == RiskClassification.LOW
        assert len(result.risk_factors) == 3
        assert result.provenance_hash

    def test_assess_workflow_persists(self, engine, store):
        """assess_workflow writes the snapshot on the stored workflow."""
        workflow = Workflow(name="Lot 1", exporter_id="EXP-1", produce_type="coffee")
        store.save_workflow(workflow)

        result = engine.assess_workflow(workflow.workflow_id)

        stored = store.find_workflow(workflow.workflow_id)
        assert stored.risk.is_assessed is True
        assert stored.risk.score == result.overall_score
        assert stored.risk.classification == result.classification

    def test_gate_risk_clean_workflow(self, engine):
        """Verified, located, consolidated Kenyan units are LOW at the gate."""
        unit = ProductionUnit(production_unit_id="PU-1", name="A", farmer_id="F1",
                              latitude=-1.1, longitude=36.8, country_code="KE")
        link = ProductionUnitLink(
            workflow_id="WF-1", production_unit_id="PU-1",
            geolocation_verified=True, deforestation_checked=True,
            deforestation_clear=True,
        )

        result = engine.gate_risk(
            _aggregates([unit], links=[link], collections=1, consolidated=True), [],
        )

        assert result.score == pytest.approx(0.115)
        assert result.level == GateRiskLevel.LOW

    def test_gate_risk_high(self, engine):
        """A HIGH alert on an unlocated Brazilian unit is HIGH at the gate."""
        unit = ProductionUnit(production_unit_id="PU-1", name="A", farmer_id="F1",
                              country_code="BR")
        alert = _alert(AlertSeverity.HIGH)

        result = engine.gate_risk(
            _aggregates([unit], collections=1, alerts=[alert]), [alert],
        )

        assert result.score == pytest.approx(0.99)
        assert result.level == GateRiskLevel.HIGH
        assert result.gps_gap_penalty_applied is True

    def test_custom_country_table(self, store):
        """A custom table overrides the default levels."""
        table = StaticCountryRiskTable({"KE": CountryRiskLevel.HIGH})
        engine = RiskAssessmentEngine(store, country_table=table)
        unit = ProductionUnit(production_unit_id="PU-1", name="A", farmer_id="F1",
                              country_code="KE")

        result = engine.assess(_aggregates([unit], collections=1))

        assert result.country_score == 85.0
