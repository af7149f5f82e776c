# -*- coding: utf-8 -*-
"""
Traceability Store - AT-EUDR-WF: Compliance Workflow Engine

Defines the storage interface the workflow engine reads and writes, an
in-memory implementation used for embedding and tests, and the
``WorkflowAggregates`` snapshot that the validator, risk engine and
state machine evaluate.

The store is CRUD only; no business rule lives here. Callers that need
read-modify-write atomicity hold the per-workflow lock from
``agritrace.eudr_workflow.locks``.

Example:
    >>> store = InMemoryTraceabilityStore()
    >>> store.save_workflow(workflow)
    >>> aggregates = WorkflowAggregates.load(store, workflow.workflow_id)
    >>> aggregates.collected_kg
    0.0

Author: AgriTrace Platform Team
Date: March 2026
PRD: AT-EUDR-WF Compliance Workflow Engine
Status: Production Ready
"""

from __future__ import annotations

import abc
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from agritrace.exceptions import NotFoundError
from agritrace.eudr_workflow.models import (
    CollectionEvent,
    ConsolidationEvent,
    DeforestationAlert,
    EventKind,
    IssuingAccount,
    PartyType,
    ProcessingEvent,
    ProductionUnit,
    ProductionUnitLink,
    ShipmentEvent,
    StageTransition,
    TraceabilityEvent,
    Workflow,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Store interface
# =============================================================================


class TraceabilityStore(abc.ABC):
    """Persistence interface for workflows and their traceability records.

    Implementations must return copies: mutating a returned record has no
    effect until it is passed back to the matching ``save_*`` method.
    """

    # -- Workflows -----------------------------------------------------------

    @abc.abstractmethod
    def find_workflow(self, workflow_id: str) -> Optional[Workflow]:
        ...

    @abc.abstractmethod
    def save_workflow(self, workflow: Workflow) -> None:
        ...

    @abc.abstractmethod
    def list_workflows(self) -> List[Workflow]:
        ...

    # -- Production units and links -----------------------------------------

    @abc.abstractmethod
    def find_production_unit(self, production_unit_id: str) -> Optional[ProductionUnit]:
        ...

    @abc.abstractmethod
    def save_production_unit(self, unit: ProductionUnit) -> None:
        ...

    @abc.abstractmethod
    def find_linked_units(self, workflow_id: str) -> List[ProductionUnitLink]:
        ...

    @abc.abstractmethod
    def save_link(self, link: ProductionUnitLink) -> None:
        ...

    @abc.abstractmethod
    def delete_link(self, link_id: str) -> None:
        ...

    # -- Events --------------------------------------------------------------

    @abc.abstractmethod
    def find_events(self, workflow_id: str, kind: EventKind) -> List[TraceabilityEvent]:
        ...

    @abc.abstractmethod
    def save_event(self, event: TraceabilityEvent) -> None:
        ...

    # -- Alerts --------------------------------------------------------------

    @abc.abstractmethod
    def find_alerts(self, production_unit_ids: Iterable[str]) -> List[DeforestationAlert]:
        ...

    @abc.abstractmethod
    def find_alert(self, alert_id: str) -> Optional[DeforestationAlert]:
        ...

    @abc.abstractmethod
    def save_alert(self, alert: DeforestationAlert) -> None:
        ...

    # -- Accounts and audit --------------------------------------------------

    @abc.abstractmethod
    def find_account(self, party_type: PartyType, party_id: str) -> Optional[IssuingAccount]:
        ...

    @abc.abstractmethod
    def save_account(self, account: IssuingAccount) -> None:
        ...

    @abc.abstractmethod
    def find_transitions(self, workflow_id: str) -> List[StageTransition]:
        ...

    @abc.abstractmethod
    def save_transition(self, transition: StageTransition) -> None:
        ...

    # -- Derived helpers -----------------------------------------------------

    def find_link(
        self, workflow_id: str, production_unit_id: str,
    ) -> Optional[ProductionUnitLink]:
        for link in self.find_linked_units(workflow_id):
            if link.production_unit_id == production_unit_id:
                return link
        return None

    def find_event(
        self, workflow_id: str, kind: EventKind, event_id: str,
    ) -> Optional[TraceabilityEvent]:
        for event in self.find_events(workflow_id, kind):
            if event.event_id == event_id:
                return event
        return None

    def sum_quantity(self, workflow_id: str, kind: EventKind) -> float:
        """Return the cumulative quantity of one event kind."""
        return sum(e.quantity_kg for e in self.find_events(workflow_id, kind))


# =============================================================================
# In-memory implementation
# =============================================================================


class InMemoryTraceabilityStore(TraceabilityStore):
    """Thread-safe dictionary-backed store.

    Records are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._workflows: Dict[str, Workflow] = {}
        self._units: Dict[str, ProductionUnit] = {}
        self._links: Dict[str, ProductionUnitLink] = {}
        self._events: Dict[Tuple[str, EventKind], List[TraceabilityEvent]] = {}
        self._alerts: Dict[str, DeforestationAlert] = {}
        self._accounts: Dict[Tuple[PartyType, str], IssuingAccount] = {}
        self._transitions: Dict[str, List[StageTransition]] = {}
        logger.info("InMemoryTraceabilityStore initialized")

    def find_workflow(self, workflow_id: str) -> Optional[Workflow]:
        with self._lock:
            wf = self._workflows.get(workflow_id)
            return wf.model_copy(deep=True) if wf else None

    def save_workflow(self, workflow: Workflow) -> None:
        with self._lock:
            self._workflows[workflow.workflow_id] = workflow.model_copy(deep=True)

    def list_workflows(self) -> List[Workflow]:
        with self._lock:
            return [wf.model_copy(deep=True) for wf in self._workflows.values()]

    def find_production_unit(self, production_unit_id: str) -> Optional[ProductionUnit]:
        with self._lock:
            unit = self._units.get(production_unit_id)
            return unit.model_copy(deep=True) if unit else None

    def save_production_unit(self, unit: ProductionUnit) -> None:
        with self._lock:
            self._units[unit.production_unit_id] = unit.model_copy(deep=True)

    def find_linked_units(self, workflow_id: str) -> List[ProductionUnitLink]:
        with self._lock:
            return [
                link.model_copy(deep=True)
                for link in self._links.values()
                if link.workflow_id == workflow_id
            ]

    def save_link(self, link: ProductionUnitLink) -> None:
        with self._lock:
            self._links[link.link_id] = link.model_copy(deep=True)

    def delete_link(self, link_id: str) -> None:
        with self._lock:
            self._links.pop(link_id, None)

    def find_events(self, workflow_id: str, kind: EventKind) -> List[TraceabilityEvent]:
        with self._lock:
            return [
                e.model_copy(deep=True)
                for e in self._events.get((workflow_id, kind), [])
            ]

    def save_event(self, event: TraceabilityEvent) -> None:
        with self._lock:
            bucket = self._events.setdefault((event.workflow_id, event.kind), [])
            for i, existing in enumerate(bucket):
                if existing.event_id == event.event_id:
                    bucket[i] = event.model_copy(deep=True)
                    return
            bucket.append(event.model_copy(deep=True))

    def find_alerts(self, production_unit_ids: Iterable[str]) -> List[DeforestationAlert]:
        wanted = set(production_unit_ids)
        with self._lock:
            return [
                a.model_copy(deep=True)
                for a in self._alerts.values()
                if a.production_unit_id in wanted
            ]

    def find_alert(self, alert_id: str) -> Optional[DeforestationAlert]:
        with self._lock:
            alert = self._alerts.get(alert_id)
            return alert.model_copy(deep=True) if alert else None

    def save_alert(self, alert: DeforestationAlert) -> None:
        with self._lock:
            self._alerts[alert.alert_id] = alert.model_copy(deep=True)

    def find_account(self, party_type: PartyType, party_id: str) -> Optional[IssuingAccount]:
        with self._lock:
            account = self._accounts.get((party_type, party_id))
            return account.model_copy(deep=True) if account else None

    def save_account(self, account: IssuingAccount) -> None:
        with self._lock:
            self._accounts[(account.party_type, account.party_id)] = (
                account.model_copy(deep=True)
            )

    def find_transitions(self, workflow_id: str) -> List[StageTransition]:
        with self._lock:
            return [
                t.model_copy(deep=True)
                for t in self._transitions.get(workflow_id, [])
            ]

    def save_transition(self, transition: StageTransition) -> None:
        with self._lock:
            bucket = self._transitions.setdefault(transition.workflow_id, [])
            for i, existing in enumerate(bucket):
                if existing.transition_id == transition.transition_id:
                    bucket[i] = transition.model_copy(deep=True)
                    return
            bucket.append(transition.model_copy(deep=True))


# =============================================================================
# Aggregate snapshot
# =============================================================================


@dataclass
class WorkflowAggregates:
    """Point-in-time view of a workflow and everything recorded against it.

    Attributes:
        workflow: The workflow record.
        links: Production unit links of the workflow.
        units: Linked production units keyed by id.
        collections: Collection events, oldest first.
        consolidations: Consolidation events.
        processings: Processing events.
        shipments: Shipment events.
        alerts: Deforestation alerts on linked units.
    """

    workflow: Workflow
    links: List[ProductionUnitLink] = field(default_factory=list)
    units: Dict[str, ProductionUnit] = field(default_factory=dict)
    collections: List[CollectionEvent] = field(default_factory=list)
    consolidations: List[ConsolidationEvent] = field(default_factory=list)
    processings: List[ProcessingEvent] = field(default_factory=list)
    shipments: List[ShipmentEvent] = field(default_factory=list)
    alerts: List[DeforestationAlert] = field(default_factory=list)

    @classmethod
    def load(cls, store: TraceabilityStore, workflow_id: str) -> WorkflowAggregates:
        """Read a workflow and its records from ``store``.

        Raises:
            NotFoundError: If the workflow does not exist.
        """
        workflow = store.find_workflow(workflow_id)
        if workflow is None:
            raise NotFoundError(
                f"Workflow {workflow_id} not found",
                entity_type="workflow",
                entity_id=workflow_id,
                workflow_id=workflow_id,
            )

        links = store.find_linked_units(workflow_id)
        units: Dict[str, ProductionUnit] = {}
        for link in links:
            unit = store.find_production_unit(link.production_unit_id)
            if unit is not None:
                units[unit.production_unit_id] = unit
            else:
                logger.warning(
                    "Workflow %s links missing production unit %s",
                    workflow_id, link.production_unit_id,
                )

        return cls(
            workflow=workflow,
            links=links,
            units=units,
            collections=store.find_events(workflow_id, EventKind.COLLECTION),
            consolidations=store.find_events(workflow_id, EventKind.CONSOLIDATION),
            processings=store.find_events(workflow_id, EventKind.PROCESSING),
            shipments=store.find_events(workflow_id, EventKind.SHIPMENT),
            alerts=store.find_alerts(units.keys()),
        )

    # ------------------------------------------------------------------
    # Production units
    # ------------------------------------------------------------------

    def unit_for(self, link: ProductionUnitLink) -> Optional[ProductionUnit]:
        return self.units.get(link.production_unit_id)

    def unit_name(self, production_unit_id: str) -> str:
        unit = self.units.get(production_unit_id)
        return unit.name if unit else production_unit_id

    def units_without_coordinates(self) -> List[str]:
        """Names of linked units lacking both a point and a parcel geometry."""
        missing = []
        for link in self.links:
            unit = self.unit_for(link)
            # A link whose unit record vanished has no coordinates either
            if unit is None or not unit.has_coordinates:
                missing.append(self.unit_name(link.production_unit_id))
        return missing

    def unreviewed_alerts(self) -> List[DeforestationAlert]:
        return [a for a in self.alerts if not a.is_reviewed]

    # ------------------------------------------------------------------
    # Quantities
    # ------------------------------------------------------------------

    @property
    def collected_kg(self) -> float:
        return sum(e.quantity_kg for e in self.collections)

    @property
    def consolidated_kg(self) -> float:
        return sum(e.quantity_kg for e in self.consolidations)

    @property
    def processed_input_kg(self) -> float:
        return sum(e.quantity_kg for e in self.processings)

    @property
    def processed_output_kg(self) -> float:
        return sum(e.effective_output_kg for e in self.processings)

    @property
    def shipped_kg(self) -> float:
        return sum(e.quantity_kg for e in self.shipments)

    def upstream_kg(self, kind: EventKind) -> float:
        """Cumulative quantity available to feed events of ``kind``.

        Consolidation draws on collections; processing on consolidations
        (or collections when none exist); shipment on processing output
        (or the nearest upstream stage that has events).
        """
        if kind == EventKind.CONSOLIDATION:
            return self.collected_kg
        if kind == EventKind.PROCESSING:
            if self.consolidations:
                return self.consolidated_kg
            return self.collected_kg
        if kind == EventKind.SHIPMENT:
            if self.processings:
                return self.processed_output_kg
            if self.consolidations:
                return self.consolidated_kg
            return self.collected_kg
        raise ValueError(f"{kind.value} events have no upstream stage")

    def downstream_kg(self, kind: EventKind) -> float:
        if kind == EventKind.CONSOLIDATION:
            return self.consolidated_kg
        if kind == EventKind.PROCESSING:
            return self.processed_input_kg
        if kind == EventKind.SHIPMENT:
            return self.shipped_kg
        return self.collected_kg

    def available_kg(self, kind: EventKind) -> float:
        return max(0.0, self.upstream_kg(kind) - self.downstream_kg(kind))

    def contributing_ids(self) -> List[str]:
        """Sorted identifiers of every unit and event feeding the workflow."""
        ids = [f"PU:{link.production_unit_id}" for link in self.links]
        for events in (
            self.collections, self.consolidations,
            self.processings, self.shipments,
        ):
            ids.extend(f"{e.kind.value}:{e.event_id}" for e in events)
        return sorted(ids)

    def farmer_ids(self) -> List[str]:
        farmers = {e.source_id for e in self.collections}
        return sorted(farmers)


__all__ = [
    "TraceabilityStore",
    "InMemoryTraceabilityStore",
    "WorkflowAggregates",
]
