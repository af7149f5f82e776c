# -*- coding: utf-8 -*-
"""Pytest configuration and shared fixtures for the compliance workflow engine."""

import threading
from typing import Any, Dict, List, Optional, Tuple

import pytest

from agritrace.eudr_workflow.collaborators import LedgerClient
from agritrace.eudr_workflow.config import EUDRWorkflowConfig, reset_config, set_config
from agritrace.eudr_workflow.models import (
    CreateWorkflowRequest,
    MintReceipt,
    ProductionUnit,
    RecordCollectionRequest,
    RecordConsolidationRequest,
)
from agritrace.eudr_workflow.setup import EUDRWorkflowService
from agritrace.eudr_workflow.store import InMemoryTraceabilityStore


class RecordingLedgerClient(LedgerClient):
    """Ledger double that records every call.

    ``fail_mint`` and ``confirm_transfers`` switch failure modes per test.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: List[Dict[str, Any]] = []
        self.mints: List[Tuple[str, Dict[str, Any]]] = []
        self.transfers: List[Tuple[str, str, str]] = []
        self.fail_mint = False
        self.confirm_transfers = True

    def record_event(self, payload: Dict[str, Any]) -> str:
        with self._lock:
            self.events.append(payload)
            return f"TX-{len(self.events)}"

    def mint_certificate(self, owner_account: str, compliance_data: Dict[str, Any]) -> MintReceipt:
        if self.fail_mint:
            raise RuntimeError("ledger unavailable")
        with self._lock:
            self.mints.append((owner_account, compliance_data))
            serial = len(self.mints)
        return MintReceipt(
            transaction_id=f"MINT-TX-{serial}",
            serial_number=serial,
            asset_id=f"ASSET-{serial}",
        )

    def transfer_asset(self, from_account: str, to_account: str, asset_id: str) -> bool:
        with self._lock:
            self.transfers.append((from_account, to_account, asset_id))
        return self.confirm_transfers

    def event_types(self) -> List[str]:
        with self._lock:
            return [e["event_type"] for e in self.events]


@pytest.fixture
def config():
    """Default configuration installed as the process-wide singleton."""
    cfg = EUDRWorkflowConfig(ledger_worker_count=2)
    set_config(cfg)
    yield cfg
    reset_config()


@pytest.fixture
def store():
    return InMemoryTraceabilityStore()


@pytest.fixture
def ledger_client():
    return RecordingLedgerClient()


@pytest.fixture
def service(config, store, ledger_client):
    """Fully wired service over the in-memory store and recording ledger."""
    svc = EUDRWorkflowService(config=config, store=store, ledger_client=ledger_client)
    yield svc
    svc.shutdown()


@pytest.fixture
def workflow_factory(service):
    """Build a workflow with linked units and optional events.

    The defaults produce a Kenyan coffee workflow that passes every
    check up to and including certificate issuance.
    """

    def _build(
        units: int = 1,
        country_code: Optional[str] = "KE",
        with_coordinates: bool = True,
        verify: bool = True,
        deforestation_clear: Optional[bool] = True,
        collection_kg: float = 1000.0,
        consolidation_kg: Optional[float] = 1000.0,
        origin_country: Optional[str] = None,
    ) -> Tuple[str, List[str]]:
        workflow = service.create_workflow(CreateWorkflowRequest(
            name="Kiambu coffee lot 7",
            exporter_id="EXP-001",
            produce_type="coffee",
            origin_country=origin_country,
        ))
        workflow_id = workflow.workflow_id

        unit_ids = []
        for i in range(units):
            unit = service.register_production_unit(ProductionUnit(
                name=f"Plot {i + 1}",
                farmer_id=f"FARMER-{i + 1}",
                latitude=-1.1714 if with_coordinates else None,
                longitude=36.8356 if with_coordinates else None,
                country_code=country_code,
            ))
            service.link_production_unit(workflow_id, unit.production_unit_id)
            if verify and with_coordinates:
                service.verify_geolocation(workflow_id, unit.production_unit_id)
            if deforestation_clear is not None:
                service.record_deforestation_check(
                    workflow_id, unit.production_unit_id, clear=deforestation_clear,
                )
            unit_ids.append(unit.production_unit_id)

        if collection_kg and unit_ids:
            share = collection_kg / len(unit_ids)
            for i, unit_id in enumerate(unit_ids):
                service.record_collection(workflow_id, RecordCollectionRequest(
                    production_unit_id=unit_id,
                    farmer_id=f"FARMER-{i + 1}",
                    collector_id="AGG-001",
                    quantity_kg=share,
                ))
        if consolidation_kg:
            service.record_consolidation(workflow_id, RecordConsolidationRequest(
                aggregator_id="AGG-001",
                processor_id="PROC-001",
                quantity_kg=consolidation_kg,
            ))
        return workflow_id, unit_ids

    return _build
