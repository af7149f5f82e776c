# -*- coding: utf-8 -*-
"""
Certificate Issuance Gate - AT-EUDR-WF: Compliance Workflow Engine

Validates a workflow for certificate issuance and drives the compliance
certificate lifecycle, which is independent of the workflow stage:

    NOT_CREATED -> PENDING_VERIFICATION -> COMPLIANT -> IN_TRANSIT
        -> TRANSFERRED_TO_IMPORTER -> CUSTOMS_VERIFIED -> DELIVERED

Issuance protocol:
    1. Claim under the workflow lock: status guard, in-flight guard,
       full compliance validation, status set to PENDING_VERIFICATION.
    2. Mint on the ledger outside the lock.
    3. Commit COMPLIANT with the mint receipt, or roll back to
       NOT_CREATED and raise LedgerError.

Validation fails closed. Failure reasons are collected in order: missing
collections (returns early), missing GPS, unverified units, HIGH or
CRITICAL alerts after the deforestation cutoff, quantity conservation,
undeterminable origin, and HIGH certificate gate risk.

Example:
    >>> gate = CertificateIssuanceGate(store, SandboxLedgerClient())
    >>> gate.validate_for_certificate(wf_id).is_compliant
    True
    >>> gate.issue(wf_id).status
    <CertificateStatus.COMPLIANT: 'COMPLIANT'>

Author: AgriTrace Platform Team
Date: March 2026
PRD: AT-EUDR-WF Compliance Workflow Engine
Status: Production Ready
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from concurrent.futures import Future
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from agritrace.exceptions import (
    CertificateStateError,
    ComplianceValidationError,
    LedgerError,
    NotFoundError,
    PreconditionFailedError,
)
from agritrace.eudr_workflow.collaborators import (
    AccountProvisioner,
    LedgerClient,
    SandboxAccountProvisioner,
)
from agritrace.eudr_workflow.compliance_validator import check_quantity_conservation
from agritrace.eudr_workflow.ledger import LedgerRecorder
from agritrace.eudr_workflow.locks import WorkflowLocks
from agritrace.eudr_workflow.metrics import (
    observe_duration,
    record_certificate_operation,
    record_compliance_validation,
    record_processing_error,
    update_pending_issuances,
)
from agritrace.eudr_workflow.models import (
    AlertSeverity,
    CertificateIssuanceResult,
    CertificateStatus,
    CertificateTransferResult,
    ComplianceResult,
    DeforestationAlert,
    DeforestationStatus,
    EventKind,
    GateRiskLevel,
    IssuingAccount,
    MintReceipt,
    PartyType,
    Workflow,
    WorkflowStatus,
)
from agritrace.eudr_workflow.risk_assessment import RiskAssessmentEngine
from agritrace.eudr_workflow.store import TraceabilityStore, WorkflowAggregates

logger = logging.getLogger(__name__)

# In-flight key shared by issuance and transfer
_CERTIFICATE_OPERATION = "certificate"

HIGH_RISK_FAILURE = (
    "Risk assessment determined HIGH risk - requires manual compliance "
    "review before certificate issuance"
)


def _utcnow() -> datetime:
    """Return current UTC datetime with microseconds zeroed."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def _names(names: List[str], limit: int = 5) -> str:
    shown = ", ".join(names[:limit])
    if len(names) > limit:
        shown += f" and {len(names) - limit} more"
    return shown


def traceability_hash(aggregates: WorkflowAggregates) -> str:
    """SHA-256 over the workflow id and its sorted contributing ids."""
    parts = [aggregates.workflow.workflow_id] + aggregates.contributing_ids()
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def deforestation_status(
    aggregates: WorkflowAggregates,
    recent_alerts: List[DeforestationAlert],
) -> DeforestationStatus:
    """Summarize deforestation evidence for a workflow snapshot."""
    severe = any(
        a.severity in (AlertSeverity.HIGH, AlertSeverity.CRITICAL)
        for a in recent_alerts
    )
    not_clear = any(
        link.deforestation_checked and not link.deforestation_clear
        for link in aggregates.links
    )
    if severe or not_clear:
        return DeforestationStatus.DEFORESTATION_DETECTED
    incomplete = (
        bool(aggregates.units_without_coordinates())
        or any(not link.geolocation_verified for link in aggregates.links)
        or any(not link.deforestation_checked for link in aggregates.links)
    )
    if incomplete:
        return DeforestationStatus.VERIFICATION_INCOMPLETE
    if recent_alerts:
        return DeforestationStatus.ALERTS_UNDER_REVIEW
    return DeforestationStatus.VERIFIED_FREE


class CertificateIssuanceGate:
    """Validates, issues, transfers and steps the compliance certificate.

    Attributes:
        _store: Traceability store.
        _ledger_client: Ledger used for minting and transfers.
        _recorder: Worker pool for async issuance and best-effort records.
        _provisioner: Issuing account provisioner.
        _risk: Risk engine computing the certificate gate risk.
        _locks: Per-workflow locks shared with the other engines.
        _provenance: Optional ProvenanceTracker.
    """

    def __init__(
        self,
        store: TraceabilityStore,
        ledger: LedgerClient,
        risk_engine: Optional[RiskAssessmentEngine] = None,
        recorder: Optional[LedgerRecorder] = None,
        provisioner: Optional[AccountProvisioner] = None,
        config: Any = None,
        locks: Optional[WorkflowLocks] = None,
        provenance: Any = None,
    ) -> None:
        """Initialize CertificateIssuanceGate.

        Args:
            store: Traceability store.
            ledger: Ledger collaborator for mint and transfer.
            risk_engine: RiskAssessmentEngine; built on ``store`` when omitted.
            recorder: LedgerRecorder; built on ``ledger`` when omitted.
            provisioner: Account provisioner; sandbox when omitted.
            config: Optional EUDRWorkflowConfig or dict.
            locks: Shared WorkflowLocks.
            provenance: Optional ProvenanceTracker instance.
        """
        self._store = store
        self._config = config or {}
        self._ledger_client = ledger
        self._locks = locks or WorkflowLocks()
        self._risk = risk_engine or RiskAssessmentEngine(
            store, config=config, locks=self._locks, provenance=provenance,
        )
        self._recorder = recorder or LedgerRecorder(ledger, config)
        self._provisioner = provisioner or SandboxAccountProvisioner()
        self._provenance = provenance
        self._account_lock = threading.Lock()
        self._cutoff = date.fromisoformat(
            self._get_cfg("deforestation_cutoff_date", "2020-12-31")
        )

        logger.info(
            "CertificateIssuanceGate initialized: cutoff=%s, ledger=%s",
            self._cutoff, type(ledger).__name__,
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_for_certificate(self, workflow_id: str) -> ComplianceResult:
        """Check every issuance requirement without changing state.

        Raises:
            NotFoundError: If the workflow does not exist.
        """
        return self._validate(WorkflowAggregates.load(self._store, workflow_id))

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue(self, workflow_id: str) -> CertificateIssuanceResult:
        """Issue the compliance certificate, waiting for the mint.

        Raises:
            CertificateStateError: If already issued or an operation is in flight.
            ComplianceValidationError: If the workflow is not compliant.
            LedgerError: If minting fails; the claim is rolled back.
        """
        workflow, compliance = self._claim(workflow_id)
        try:
            return self._mint_and_commit(workflow, compliance)
        finally:
            self._release(workflow_id)

    def issue_async(self, workflow_id: str) -> Future:
        """Claim synchronously, then mint on the ledger worker pool.

        Returns:
            Future resolving to the CertificateIssuanceResult, or raising
            LedgerError after rollback.

        Raises:
            CertificateStateError: If already issued or an operation is in flight.
            ComplianceValidationError: If the workflow is not compliant.
            LedgerError: If the worker pool is saturated; the claim is rolled back.
        """
        workflow, compliance = self._claim(workflow_id)
        future = self._recorder.submit(self._complete_async, workflow, compliance)
        if future is None:
            self._rollback(workflow_id, "ledger worker pool saturated")
            self._release(workflow_id)
            raise LedgerError(
                "Ledger worker pool saturated; certificate issuance rolled back",
                workflow_id=workflow_id,
                operation="mint",
            )
        logger.info("Certificate issuance for %s queued", workflow_id)
        return future

    # ------------------------------------------------------------------
    # Transfer and lifecycle steps
    # ------------------------------------------------------------------

    def transfer(self, workflow_id: str, importer_id: str) -> CertificateTransferResult:
        """Transfer the certificate token to the importer's account.

        The stored status only changes after the ledger confirms.

        Raises:
            ValueError: If ``importer_id`` is blank.
            CertificateStateError: If the certificate is not COMPLIANT or
                IN_TRANSIT, or an operation is in flight.
            LedgerError: If the ledger fails or does not confirm.
        """
        if not importer_id or not importer_id.strip():
            raise ValueError("importer_id must be non-empty")

        start_time = time.monotonic()
        with self._locks.hold(workflow_id):
            workflow = self._require_workflow(workflow_id)
            status = workflow.certificate.status
            if status not in (CertificateStatus.COMPLIANT, CertificateStatus.IN_TRANSIT):
                record_certificate_operation("transfer", "rejected")
                raise CertificateStateError(
                    f"Certificate must be COMPLIANT or IN_TRANSIT to transfer "
                    f"(current status: {status.value})",
                    workflow_id=workflow_id,
                    current_status=status.value,
                )
            self._begin(workflow_id, "transfer")
            asset_id = workflow.certificate.asset_id
            from_account = workflow.certificate.owner_account_id

        try:
            try:
                to_account = self._ensure_account(PartyType.IMPORTER, importer_id)
                confirmed = self._ledger_client.transfer_asset(
                    from_account, to_account, asset_id,
                )
            except Exception as exc:
                record_certificate_operation("transfer", "failed")
                record_processing_error("certificate_gate", type(exc).__name__)
                logger.error(
                    "Certificate transfer failed for %s: %s", workflow_id, exc,
                )
                raise LedgerError(
                    f"Certificate transfer failed: {exc}",
                    workflow_id=workflow_id,
                    operation="transfer",
                    cause=exc,
                ) from exc
            if not confirmed:
                record_certificate_operation("transfer", "failed")
                raise LedgerError(
                    "Ledger did not confirm the certificate transfer",
                    workflow_id=workflow_id,
                    operation="transfer",
                    context={"asset_id": asset_id},
                )

            with self._locks.hold(workflow_id):
                workflow = self._require_workflow(workflow_id)
                cert = workflow.certificate
                cert.status = CertificateStatus.TRANSFERRED_TO_IMPORTER
                cert.owner_account_id = to_account
                cert.importer_id = importer_id
                cert.transferred_at = _utcnow()
                self._store.save_workflow(workflow)
        finally:
            self._locks.end(workflow_id, _CERTIFICATE_OPERATION)

        result = CertificateTransferResult(
            workflow_id=workflow_id,
            status=cert.status,
            asset_id=asset_id,
            from_account_id=from_account,
            to_account_id=to_account,
            importer_id=importer_id,
            transferred_at=cert.transferred_at,
        )
        self._after_step(workflow_id, "transfer", "CERTIFICATE_TRANSFERRED", result)
        elapsed = time.monotonic() - start_time
        observe_duration("certificate_transfer", elapsed)
        logger.info(
            "Certificate %s transferred to importer %s for %s in %.1fms",
            asset_id, importer_id, workflow_id, elapsed * 1000,
        )
        return result

    def mark_in_transit(self, workflow_id: str) -> Workflow:
        """COMPLIANT -> IN_TRANSIT; requires a recorded shipment."""

        def _has_shipment() -> None:
            if not self._store.find_events(workflow_id, EventKind.SHIPMENT):
                raise PreconditionFailedError(
                    "No export shipment recorded",
                    workflow_id=workflow_id,
                    failure_reasons=["No export shipment recorded"],
                )

        return self._step(
            workflow_id,
            CertificateStatus.COMPLIANT,
            CertificateStatus.IN_TRANSIT,
            "in_transit",
            check=_has_shipment,
        )

    def mark_customs_verified(self, workflow_id: str) -> Workflow:
        """TRANSFERRED_TO_IMPORTER -> CUSTOMS_VERIFIED."""
        return self._step(
            workflow_id,
            CertificateStatus.TRANSFERRED_TO_IMPORTER,
            CertificateStatus.CUSTOMS_VERIFIED,
            "customs_verified",
        )

    def mark_delivered(self, workflow_id: str) -> Workflow:
        """CUSTOMS_VERIFIED -> DELIVERED; completes the workflow."""
        return self._step(
            workflow_id,
            CertificateStatus.CUSTOMS_VERIFIED,
            CertificateStatus.DELIVERED,
            "delivered",
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _validate(self, agg: WorkflowAggregates) -> ComplianceResult:
        start_time = time.monotonic()
        workflow_id = agg.workflow.workflow_id
        reasons: List[str] = []

        unit_count = len(agg.links)
        missing = agg.units_without_coordinates()
        with_gps = unit_count - len(missing)
        recent = [a for a in agg.alerts if a.alert_date > self._cutoff]
        base = dict(
            workflow_id=workflow_id,
            total_farmers=len(agg.farmer_ids()),
            total_production_units=unit_count,
            gps_coordinates_count=with_gps,
            gps_coverage=round(with_gps * 100.0 / unit_count, 2) if unit_count else 0.0,
            deforestation_status=deforestation_status(agg, recent),
            traceability_hash=traceability_hash(agg),
        )

        if not agg.collections:
            reasons.append("No collection events recorded")
            record_compliance_validation("non_compliant")
            return ComplianceResult(is_compliant=False, failure_reasons=reasons, **base)

        if missing:
            reasons.append(
                f"{len(missing)} production unit(s) missing GPS coordinates: "
                f"{_names(missing)}"
            )

        unverified = [
            agg.unit_name(link.production_unit_id)
            for link in agg.links
            if not link.geolocation_verified
        ]
        if unverified:
            reasons.append(
                f"{len(unverified)} production unit(s) not geolocation "
                f"verified: {_names(unverified)}"
            )

        severe = [
            a for a in recent
            if a.severity in (AlertSeverity.HIGH, AlertSeverity.CRITICAL)
        ]
        if severe:
            reasons.append(
                f"{len(severe)} HIGH/CRITICAL deforestation alert(s) detected "
                f"after {self._cutoff.isoformat()}"
            )

        reasons.extend(check_quantity_conservation(agg))

        origin = self._risk.resolve_origin_country(agg)
        if origin is None:
            reasons.append("Unable to determine origin country from production units")

        try:
            gate = self._risk.gate_risk(agg, recent)
            risk_level, risk_score = gate.level, gate.score
        except Exception as exc:
            record_processing_error("certificate_gate", type(exc).__name__)
            logger.warning(
                "Gate risk computation failed for %s, treating as HIGH: %s",
                workflow_id, exc,
            )
            risk_level, risk_score = GateRiskLevel.HIGH, None
        if risk_level == GateRiskLevel.HIGH:
            reasons.append(HIGH_RISK_FAILURE)

        result = ComplianceResult(
            is_compliant=not reasons,
            failure_reasons=reasons,
            origin_country=origin,
            risk_level=risk_level,
            risk_score=risk_score,
            **base,
        )
        record_compliance_validation(
            "compliant" if result.is_compliant else "non_compliant"
        )
        logger.info(
            "Certificate validation for %s: compliant=%s units=%d gps=%d/%d "
            "alerts=%d (%d severe) risk=%s deforestation=%s in %.1fms",
            workflow_id, result.is_compliant, unit_count, with_gps, unit_count,
            len(recent), len(severe), risk_level.value,
            result.deforestation_status.value,
            (time.monotonic() - start_time) * 1000,
        )
        return result

    def _claim(self, workflow_id: str) -> Tuple[Workflow, ComplianceResult]:
        with self._locks.hold(workflow_id):
            agg = WorkflowAggregates.load(self._store, workflow_id)
            workflow = agg.workflow
            status = workflow.certificate.status
            if status not in (
                CertificateStatus.NOT_CREATED,
                CertificateStatus.PENDING_VERIFICATION,
            ):
                record_certificate_operation("issue", "rejected")
                raise CertificateStateError(
                    "Certificate already issued",
                    workflow_id=workflow_id,
                    current_status=status.value,
                )
            self._begin(workflow_id)
            try:
                compliance = self._validate(agg)
                if not compliance.is_compliant:
                    record_certificate_operation("issue", "rejected")
                    raise ComplianceValidationError(
                        "Workflow does not meet EUDR compliance requirements",
                        workflow_id=workflow_id,
                        failure_reasons=compliance.failure_reasons,
                    )
                workflow.certificate.status = CertificateStatus.PENDING_VERIFICATION
                self._store.save_workflow(workflow)
            except Exception:
                self._locks.end(workflow_id, _CERTIFICATE_OPERATION)
                raise

        update_pending_issuances(1)
        self._track(workflow_id, "claim", compliance)
        logger.info("Certificate issuance claimed for %s", workflow_id)
        return workflow, compliance

    def _complete_async(
        self, workflow: Workflow, compliance: ComplianceResult,
    ) -> CertificateIssuanceResult:
        try:
            return self._mint_and_commit(workflow, compliance)
        finally:
            self._release(workflow.workflow_id)

    def _mint_and_commit(
        self, workflow: Workflow, compliance: ComplianceResult,
    ) -> CertificateIssuanceResult:
        workflow_id = workflow.workflow_id
        start_time = time.monotonic()
        try:
            owner = self._ensure_account(PartyType.EXPORTER, workflow.exporter_id)
            receipt = self._ledger_client.mint_certificate(
                owner, self._compliance_data(workflow, compliance),
            )
        except Exception as exc:
            self._rollback(workflow_id, str(exc))
            raise LedgerError(
                f"Certificate minting failed: {exc}",
                workflow_id=workflow_id,
                operation="mint",
                cause=exc,
            ) from exc

        result = self._commit(workflow_id, owner, receipt, compliance)
        elapsed = time.monotonic() - start_time
        observe_duration("certificate_issue", elapsed)
        logger.info(
            "Certificate issued for %s: asset=%s serial=%d in %.1fms",
            workflow_id, receipt.asset_id, receipt.serial_number, elapsed * 1000,
        )
        return result

    def _commit(
        self,
        workflow_id: str,
        owner: str,
        receipt: MintReceipt,
        compliance: ComplianceResult,
    ) -> CertificateIssuanceResult:
        with self._locks.hold(workflow_id):
            workflow = self._require_workflow(workflow_id)
            cert = workflow.certificate
            cert.status = CertificateStatus.COMPLIANT
            cert.transaction_id = receipt.transaction_id
            cert.serial_number = receipt.serial_number
            cert.asset_id = receipt.asset_id
            cert.owner_account_id = owner
            cert.issued_at = _utcnow()
            self._store.save_workflow(workflow)

        result = CertificateIssuanceResult(
            workflow_id=workflow_id,
            status=cert.status,
            transaction_id=cert.transaction_id,
            serial_number=cert.serial_number,
            asset_id=cert.asset_id,
            owner_account_id=owner,
            issued_at=cert.issued_at,
            traceability_hash=compliance.traceability_hash,
        )
        self._after_step(workflow_id, "issue", "CERTIFICATE_ISSUED", result)
        return result

    def _rollback(self, workflow_id: str, reason: str) -> None:
        with self._locks.hold(workflow_id):
            workflow = self._store.find_workflow(workflow_id)
            if (
                workflow is not None
                and workflow.certificate.status == CertificateStatus.PENDING_VERIFICATION
            ):
                workflow.certificate.status = CertificateStatus.NOT_CREATED
                self._store.save_workflow(workflow)
        record_certificate_operation("issue", "failed")
        self._track(workflow_id, "rollback", {"reason": reason})
        logger.error(
            "Certificate issuance for %s rolled back to NOT_CREATED: %s",
            workflow_id, reason,
        )

    def _begin(self, workflow_id: str, operation: str = "issue") -> None:
        if not self._locks.try_begin(workflow_id, _CERTIFICATE_OPERATION):
            record_certificate_operation(operation, "rejected")
            raise CertificateStateError(
                "A certificate operation is already in progress",
                workflow_id=workflow_id,
            )

    def _release(self, workflow_id: str) -> None:
        self._locks.end(workflow_id, _CERTIFICATE_OPERATION)
        update_pending_issuances(-1)

    def _step(
        self,
        workflow_id: str,
        expected: CertificateStatus,
        target: CertificateStatus,
        step: str,
        check: Optional[Callable[[], None]] = None,
    ) -> Workflow:
        with self._locks.hold(workflow_id):
            workflow = self._require_workflow(workflow_id)
            status = workflow.certificate.status
            if self._locks.is_in_flight(workflow_id, _CERTIFICATE_OPERATION):
                raise CertificateStateError(
                    "A certificate operation is already in progress",
                    workflow_id=workflow_id,
                    current_status=status.value,
                )
            if status != expected:
                record_certificate_operation(step, "rejected")
                raise CertificateStateError(
                    f"Certificate must be {expected.value} before "
                    f"{target.value} (current status: {status.value})",
                    workflow_id=workflow_id,
                    current_status=status.value,
                )
            if check is not None:
                check()
            workflow.certificate.status = target
            if target == CertificateStatus.DELIVERED:
                workflow.status = WorkflowStatus.COMPLETED
                workflow.completed_at = _utcnow()
            self._store.save_workflow(workflow)

        self._after_step(
            workflow_id, step, f"CERTIFICATE_{target.value}", workflow.certificate,
        )
        logger.info(
            "Certificate for %s moved %s -> %s",
            workflow_id, expected.value, target.value,
        )
        return workflow

    def _after_step(self, workflow_id: str, step: str, event_type: str, data: Any) -> None:
        record_certificate_operation(step, "success")
        self._track(workflow_id, step, data)
        payload = data.model_dump(mode="json") if hasattr(data, "model_dump") else dict(data)
        payload["workflow_id"] = workflow_id
        self._recorder.record(
            event_type,
            payload,
            on_recorded=lambda tx_id: self._attach_ledger_event(workflow_id, step, tx_id),
        )

    def _attach_ledger_event(self, workflow_id: str, step: str, tx_id: str) -> None:
        with self._locks.hold(workflow_id):
            workflow = self._store.find_workflow(workflow_id)
            if workflow is None or step in workflow.certificate.ledger_event_ids:
                return
            workflow.certificate.ledger_event_ids[step] = tx_id
            self._store.save_workflow(workflow)

    def _ensure_account(self, party_type: PartyType, party_id: str) -> str:
        with self._account_lock:
            account = self._store.find_account(party_type, party_id)
            if account is not None:
                return account.account_id
            account_id = self._provisioner.create_account(party_type, party_id)
            self._store.save_account(IssuingAccount(
                party_type=party_type, party_id=party_id, account_id=account_id,
            ))
        logger.info(
            "Issuing account %s provisioned for %s %s",
            account_id, party_type.value, party_id,
        )
        return account_id

    def _compliance_data(
        self, workflow: Workflow, compliance: ComplianceResult,
    ) -> Dict[str, Any]:
        return {
            "workflow_id": workflow.workflow_id,
            "produce_type": workflow.produce_type,
            "total_quantity_kg": workflow.total_quantity_kg,
            "origin_country": compliance.origin_country,
            "total_farmers": compliance.total_farmers,
            "total_production_units": compliance.total_production_units,
            "deforestation_status": compliance.deforestation_status.value,
            "risk_level": compliance.risk_level.value if compliance.risk_level else None,
            "traceability_hash": compliance.traceability_hash,
        }

    def _require_workflow(self, workflow_id: str) -> Workflow:
        workflow = self._store.find_workflow(workflow_id)
        if workflow is None:
            raise NotFoundError(
                f"Workflow {workflow_id} not found",
                entity_type="workflow",
                entity_id=workflow_id,
                workflow_id=workflow_id,
            )
        return workflow

    def _track(self, workflow_id: str, action: str, data: Any) -> None:
        if self._provenance is None:
            return
        self._provenance.record(
            "certificate", workflow_id, action, self._provenance.build_hash(data),
        )

    def _get_cfg(self, key: str, default: Any) -> Any:
        if hasattr(self._config, key):
            return getattr(self._config, key)
        if isinstance(self._config, dict):
            return self._config.get(key, default)
        return default


__all__ = [
    "HIGH_RISK_FAILURE",
    "CertificateIssuanceGate",
    "deforestation_status",
    "traceability_hash",
]
