"""Tests for production unit links, verification signals and traceability events.

Covers:
- Linking, unlinking and verifying production units
- Quantity conservation across collection, consolidation, processing
  and shipment
- Satellite deforestation screening with a mocked collaborator
- Best-effort ledger recording of events

Author: AgriTrace Platform Team
Date: March 2026
Status: Production Ready
"""

from datetime import date
from unittest.mock import Mock

import pytest

from agritrace.exceptions import (
    InsufficientQuantityError,
    NotFoundError,
    PreconditionFailedError,
    SatelliteAnalysisError,
    TraceabilityIntegrityError,
)
from agritrace.eudr_workflow.collaborators import SatelliteAnalysisClient
from agritrace.eudr_workflow.models import (
    AlertSeverity,
    CreateWorkflowRequest,
    DeforestationAlert,
    EventKind,
    ProductionUnit,
    RecordCollectionRequest,
    RecordConsolidationRequest,
    RecordProcessingRequest,
    RecordShipmentRequest,
    VegetationIndexStats,
)
from agritrace.eudr_workflow.setup import EUDRWorkflowService


def _shipment(kg: float) -> RecordShipmentRequest:
    return RecordShipmentRequest(exporter_id="EXP-001", importer_id="IMP-001", quantity_kg=kg)


def _consolidation(kg: float) -> RecordConsolidationRequest:
    return RecordConsolidationRequest(
        aggregator_id="AGG-001", processor_id="PROC-001", quantity_kg=kg,
    )


# ==============================================================================
# Production Unit Tests
# ==============================================================================

class TestProductionUnitLinks:
    """Tests for linking and verification signals."""

    def test_create_workflow_on_provenance(self, service):
        """Workflow creation is the first entry of its provenance chain."""
        workflow = service.create_workflow(CreateWorkflowRequest(
            name="Lot 1", exporter_id="EXP-001", produce_type="coffee",
        ))

        (entry,) = service.provenance.get_chain(workflow.workflow_id)

        assert entry["entity_type"] == "workflow"
        assert entry["action"] == "create_workflow"

    def test_link_is_idempotent(self, service, workflow_factory):
        """Linking the same unit twice returns the existing link."""
        workflow_id, (unit_id,) = workflow_factory(collection_kg=0, consolidation_kg=None)

        first = service.store.find_link(workflow_id, unit_id)
        again = service.link_production_unit(workflow_id, unit_id)

        assert again.link_id == first.link_id
        assert len(service.store.find_linked_units(workflow_id)) == 1

    def test_link_unknown_unit(self, service, workflow_factory):
        """Linking an unregistered unit raises NotFoundError."""
        workflow_id, _ = workflow_factory(units=0, collection_kg=0, consolidation_kg=None)

        with pytest.raises(NotFoundError):
            service.link_production_unit(workflow_id, "PU-missing")

    def test_unlink_referenced_unit_rejected(self, service, workflow_factory):
        """Units referenced by collections cannot be unlinked."""
        workflow_id, (unit_id,) = workflow_factory(consolidation_kg=None)

        with pytest.raises(TraceabilityIntegrityError):
            service.unlink_production_unit(workflow_id, unit_id)

        assert service.store.find_link(workflow_id, unit_id) is not None

    def test_unlink_unreferenced_unit(self, service, workflow_factory):
        """Units without collections can be unlinked."""
        workflow_id, (unit_id,) = workflow_factory(collection_kg=0, consolidation_kg=None)

        service.unlink_production_unit(workflow_id, unit_id)

        assert service.store.find_link(workflow_id, unit_id) is None

    def test_verify_requires_coordinates(self, service, workflow_factory):
        """A unit without coordinates cannot be verified."""
        workflow_id, (unit_id,) = workflow_factory(
            with_coordinates=False, collection_kg=0, consolidation_kg=None,
        )

        with pytest.raises(PreconditionFailedError):
            service.verify_geolocation(workflow_id, unit_id)

    def test_verify_stamps_unit(self, service, workflow_factory):
        """Verification records the time on the unit."""
        workflow_id, (unit_id,) = workflow_factory(collection_kg=0, consolidation_kg=None)

        assert service.store.find_link(workflow_id, unit_id).geolocation_verified
        assert service.store.find_production_unit(unit_id).last_verified_at is not None

    def test_review_alert(self, service, workflow_factory):
        """Reviewing an alert marks it reviewed."""
        _, (unit_id,) = workflow_factory(collection_kg=0, consolidation_kg=None)
        alert = service.raise_alert(DeforestationAlert(
            production_unit_id=unit_id,
            severity=AlertSeverity.MEDIUM,
            alert_date=date(2024, 6, 1),
        ))

        reviewed = service.review_alert(alert.alert_id)

        assert reviewed.is_reviewed is True
        assert service.store.find_alert(alert.alert_id).is_reviewed is True

    def test_review_unknown_alert(self, service):
        """Reviewing an unknown alert raises NotFoundError."""
        with pytest.raises(NotFoundError):
            service.review_alert("ALR-missing")


# ==============================================================================
# Quantity Conservation Tests
# ==============================================================================

class TestQuantityConservation:
    """Tests for quantity checks on downstream events."""

    def test_consolidation_over_collection_rejected(self, service, workflow_factory):
        """1200 kg cannot be consolidated from 1000 kg collected."""
        workflow_id, _ = workflow_factory(collection_kg=1000.0, consolidation_kg=None)

        with pytest.raises(InsufficientQuantityError) as exc_info:
            service.record_consolidation(workflow_id, _consolidation(1200.0))

        assert "Insufficient quantity" in exc_info.value.message
        assert exc_info.value.available_kg == 1000.0
        assert service.store.find_events(workflow_id, EventKind.CONSOLIDATION) == []

    def test_consolidation_is_cumulative(self, service, workflow_factory):
        """Earlier consolidations count against the collected quantity."""
        workflow_id, _ = workflow_factory(collection_kg=1000.0, consolidation_kg=None)

        service.record_consolidation(workflow_id, _consolidation(600.0))
        with pytest.raises(InsufficientQuantityError) as exc_info:
            service.record_consolidation(workflow_id, _consolidation(600.0))

        assert exc_info.value.available_kg == pytest.approx(400.0)
        service.record_consolidation(workflow_id, _consolidation(400.0))
        assert service.store.sum_quantity(workflow_id, EventKind.CONSOLIDATION) == 1000.0

    def test_processing_draws_on_consolidation(self, service, workflow_factory):
        """Processing input is bounded by the consolidated quantity."""
        workflow_id, _ = workflow_factory(collection_kg=1000.0, consolidation_kg=800.0)

        with pytest.raises(InsufficientQuantityError):
            service.record_processing(workflow_id, RecordProcessingRequest(
                processor_id="PROC-001", input_quantity_kg=900.0,
            ))

        event = service.record_processing(workflow_id, RecordProcessingRequest(
            processor_id="PROC-001", processing_type="wet_milling",
            input_quantity_kg=800.0, output_quantity_kg=640.0,
        ))
        assert event.quantity_kg == 800.0
        assert event.effective_output_kg == 640.0

    def test_shipment_draws_on_processing_output(self, service, workflow_factory):
        """Shipments are bounded by processed output once processing exists."""
        workflow_id, _ = workflow_factory(collection_kg=1000.0, consolidation_kg=1000.0)
        service.record_processing(workflow_id, RecordProcessingRequest(
            processor_id="PROC-001", input_quantity_kg=1000.0, output_quantity_kg=820.0,
        ))

        with pytest.raises(InsufficientQuantityError):
            service.record_shipment(workflow_id, _shipment(900.0))

        shipment = service.record_shipment(workflow_id, _shipment(820.0))
        assert shipment.destination_id == "IMP-001"

    def test_shipment_without_processing(self, service, workflow_factory):
        """Without processing, shipments draw on the consolidated quantity."""
        workflow_id, _ = workflow_factory(collection_kg=1000.0, consolidation_kg=700.0)

        with pytest.raises(InsufficientQuantityError):
            service.record_shipment(workflow_id, _shipment(800.0))

    def test_late_consolidation_cannot_starve_processing(self, service, workflow_factory):
        """A first consolidation below processed input is rejected."""
        workflow_id, _ = workflow_factory(collection_kg=1000.0, consolidation_kg=None)
        service.record_processing(workflow_id, RecordProcessingRequest(
            processor_id="PROC-001", input_quantity_kg=800.0,
        ))

        with pytest.raises(TraceabilityIntegrityError) as exc_info:
            service.record_consolidation(workflow_id, _consolidation(100.0))

        assert exc_info.value.context["violations"] == [
            "Processed quantity (800.0 kg) exceeds upstream quantity (100.0 kg)"
        ]
        assert service.store.find_events(workflow_id, EventKind.CONSOLIDATION) == []
        service.record_consolidation(workflow_id, _consolidation(800.0))
        assert service.validate_for_certificate(workflow_id).is_compliant is True

    def test_late_processing_cannot_starve_shipment(self, service, workflow_factory):
        """A first processing event below shipped quantity is rejected."""
        workflow_id, _ = workflow_factory(collection_kg=1000.0, consolidation_kg=1000.0)
        service.record_shipment(workflow_id, _shipment(900.0))

        with pytest.raises(TraceabilityIntegrityError) as exc_info:
            service.record_processing(workflow_id, RecordProcessingRequest(
                processor_id="PROC-001", input_quantity_kg=100.0,
                output_quantity_kg=50.0,
            ))

        assert exc_info.value.context["violations"] == [
            "Shipped quantity (900.0 kg) exceeds upstream quantity (50.0 kg)"
        ]
        assert service.store.find_events(workflow_id, EventKind.PROCESSING) == []
        assert service.validate_for_certificate(workflow_id).is_compliant is True

    def test_collection_requires_link(self, service, workflow_factory):
        """Collections only come from linked units."""
        workflow_id, _ = workflow_factory(collection_kg=0, consolidation_kg=None)
        stranger = service.register_production_unit(
            ProductionUnit(name="Other plot", farmer_id="F-9", latitude=0.1, longitude=35.0)
        )

        with pytest.raises(NotFoundError) as exc_info:
            service.record_collection(workflow_id, RecordCollectionRequest(
                production_unit_id=stranger.production_unit_id,
                farmer_id="F-9", collector_id="AGG-001", quantity_kg=50.0,
            ))

        assert exc_info.value.entity_type == "production_unit_link"

    def test_collection_updates_total(self, service, workflow_factory):
        """Collections accumulate into the workflow total."""
        workflow_id, unit_ids = workflow_factory(
            units=2, collection_kg=1000.0, consolidation_kg=None,
        )

        assert service.get_workflow(workflow_id).total_quantity_kg == 1000.0
        assert len(unit_ids) == 2

    def test_unknown_workflow(self, service):
        """Events on an unknown workflow raise NotFoundError."""
        with pytest.raises(NotFoundError):
            service.record_consolidation("WF-missing", _consolidation(10.0))


# ==============================================================================
# Ledger Recording Tests
# ==============================================================================

class TestEventLedgerRecording:
    """Tests for best-effort ledger recording of events."""

    def test_events_recorded_and_attached(self, service, ledger_client, workflow_factory):
        """Each event is recorded and gets its transaction id attached."""
        workflow_id, _ = workflow_factory()

        assert service.drain(timeout=5)
        assert "COLLECTION" in ledger_client.event_types()
        assert "CONSOLIDATION" in ledger_client.event_types()
        collection = service.store.find_events(workflow_id, EventKind.COLLECTION)[0]
        assert collection.ledger_transaction_id.startswith("TX-")

    def test_ledger_failure_keeps_event(self, service, ledger_client, workflow_factory):
        """A failing ledger does not undo the saved event."""
        ledger_client.record_event = Mock(side_effect=RuntimeError("ledger down"))

        workflow_id, _ = workflow_factory(consolidation_kg=None)

        assert service.drain(timeout=5)
        events = service.store.find_events(workflow_id, EventKind.COLLECTION)
        assert len(events) == 1
        assert events[0].ledger_transaction_id is None


# ==============================================================================
# Satellite Screening Tests
# ==============================================================================

class TestSatelliteScreening:
    """Tests for vegetation index deforestation screening."""

    @pytest.fixture
    def satellite(self):
        return Mock(spec=SatelliteAnalysisClient)

    @pytest.fixture
    def screening_service(self, config, satellite, ledger_client):
        svc = EUDRWorkflowService(
            config=config, ledger_client=ledger_client, satellite=satellite,
        )
        yield svc
        svc.shutdown()

    def _linked_unit(self, svc, located=True):
        workflow = svc.create_workflow(CreateWorkflowRequest(
            name="Lot 9", exporter_id="EXP-001", produce_type="cocoa",
        ))
        unit = svc.register_production_unit(ProductionUnit(
            name="Hill plot", farmer_id="F-1",
            latitude=6.7 if located else None,
            longitude=-1.6 if located else None,
            country_code="GH",
        ))
        svc.link_production_unit(workflow.workflow_id, unit.production_unit_id)
        return workflow.workflow_id, unit.production_unit_id

    def test_clear_unit(self, screening_service, satellite):
        """A small vegetation change marks the unit clear."""
        satellite.query_vegetation_index.return_value = VegetationIndexStats(
            mean_index_before=0.78, mean_index_after=0.74,
        )
        workflow_id, unit_id = self._linked_unit(screening_service)

        link = screening_service.screen_deforestation(workflow_id, unit_id)

        assert link.deforestation_checked is True
        assert link.deforestation_clear is True
        assert screening_service.store.find_alerts([unit_id]) == []

    def test_clearcut_raises_critical_alert(self, screening_service, satellite):
        """A drop past the clear-cut threshold raises a CRITICAL alert."""
        satellite.query_vegetation_index.return_value = VegetationIndexStats(
            mean_index_before=0.80, mean_index_after=0.35,
        )
        workflow_id, unit_id = self._linked_unit(screening_service)

        link = screening_service.events.screen_deforestation(
            workflow_id, unit_id, today=date(2026, 3, 1),
        )

        assert link.deforestation_clear is False
        (alert,) = screening_service.store.find_alerts([unit_id])
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.source == "satellite"
        assert alert.alert_date == date(2026, 3, 1)

    def test_moderate_loss_raises_high_alert(self, screening_service, satellite):
        """A drop between the thresholds raises a HIGH alert."""
        satellite.query_vegetation_index.return_value = VegetationIndexStats(
            mean_index_before=0.80, mean_index_after=0.60,
        )
        workflow_id, unit_id = self._linked_unit(screening_service)

        screening_service.screen_deforestation(workflow_id, unit_id)

        (alert,) = screening_service.store.find_alerts([unit_id])
        assert alert.severity == AlertSeverity.HIGH

    def test_query_windows(self, screening_service, satellite):
        """Windows straddle the cutoff date."""
        satellite.query_vegetation_index.return_value = VegetationIndexStats(
            mean_index_before=0.8, mean_index_after=0.8,
        )
        workflow_id, unit_id = self._linked_unit(screening_service)

        screening_service.events.screen_deforestation(
            workflow_id, unit_id, today=date(2026, 3, 1),
        )

        geometry, before, after = satellite.query_vegetation_index.call_args[0]
        assert geometry["type"] == "Point"
        assert before.start == date(2020, 1, 1)
        assert before.end == date(2020, 12, 31)
        assert after.start == date(2025, 3, 1)
        assert after.end == date(2026, 3, 1)

    def test_collaborator_failure_leaves_link(self, screening_service, satellite):
        """A satellite failure leaves the link unchecked."""
        satellite.query_vegetation_index.side_effect = TimeoutError("scene unavailable")
        workflow_id, unit_id = self._linked_unit(screening_service)

        link = screening_service.screen_deforestation(workflow_id, unit_id)

        assert link.deforestation_checked is False
        assert screening_service.store.find_alerts([unit_id]) == []

    def test_unlocated_unit_rejected(self, screening_service):
        """Units without coordinates cannot be screened."""
        workflow_id, unit_id = self._linked_unit(screening_service, located=False)

        with pytest.raises(PreconditionFailedError):
            screening_service.screen_deforestation(workflow_id, unit_id)

    def test_no_client_configured(self, service, workflow_factory):
        """Screening without a satellite client raises SatelliteAnalysisError."""
        workflow_id, (unit_id,) = workflow_factory(collection_kg=0, consolidation_kg=None)

        with pytest.raises(SatelliteAnalysisError):
            service.screen_deforestation(workflow_id, unit_id)
