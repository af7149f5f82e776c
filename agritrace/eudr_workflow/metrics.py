# -*- coding: utf-8 -*-
"""
Prometheus Metrics - AT-EUDR-WF: Compliance Workflow Engine

10 Prometheus metrics for compliance workflow monitoring with graceful
fallback when prometheus_client is not installed.

Metrics:
    1.  agritrace_eudr_workflow_stage_transitions_total (Counter) [direction, stage]
    2.  agritrace_eudr_workflow_stage_blocked_total (Counter) [stage]
    3.  agritrace_eudr_workflow_risk_assessments_total (Counter) [algorithm, level]
    4.  agritrace_eudr_workflow_compliance_validations_total (Counter) [result]
    5.  agritrace_eudr_workflow_certificate_operations_total (Counter) [operation, status]
    6.  agritrace_eudr_workflow_ledger_writes_total (Counter) [event_type, status]
    7.  agritrace_eudr_workflow_quantity_rejections_total (Counter) [event_kind]
    8.  agritrace_eudr_workflow_pending_issuances (Gauge) []
    9.  agritrace_eudr_workflow_processing_errors_total (Counter) [engine, error_type]
    10. agritrace_eudr_workflow_operation_duration_seconds (Histogram) [operation]

Author: AgriTrace Platform Team
Date: March 2026
PRD: AT-EUDR-WF Compliance Workflow Engine
Status: Production Ready
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Graceful prometheus_client import
# ---------------------------------------------------------------------------

try:
    from prometheus_client import Counter, Gauge, Histogram
    PROMETHEUS_AVAILABLE = True
except ImportError:
    PROMETHEUS_AVAILABLE = False
    logger.info(
        "prometheus_client not installed; compliance workflow metrics disabled"
    )


# ---------------------------------------------------------------------------
# Metric definitions
# ---------------------------------------------------------------------------

if PROMETHEUS_AVAILABLE:
    # 1. Stage transitions by direction (advance/revert) and target stage
    stage_transitions_total = Counter(
        "agritrace_eudr_workflow_stage_transitions_total",
        "Total compliance stage transitions",
        labelnames=["direction", "stage"],
    )

    # 2. Advances refused because of blockers
    stage_blocked_total = Counter(
        "agritrace_eudr_workflow_stage_blocked_total",
        "Total stage advances blocked by unmet requirements",
        labelnames=["stage"],
    )

    # 3. Risk assessments by algorithm (stage_display/certificate_gate) and level
    risk_assessments_total = Counter(
        "agritrace_eudr_workflow_risk_assessments_total",
        "Total risk assessments performed",
        labelnames=["algorithm", "level"],
    )

    # 4. Certificate validations by result
    compliance_validations_total = Counter(
        "agritrace_eudr_workflow_compliance_validations_total",
        "Total certificate compliance validations",
        labelnames=["result"],
    )

    # 5. Certificate lifecycle operations
    certificate_operations_total = Counter(
        "agritrace_eudr_workflow_certificate_operations_total",
        "Total certificate lifecycle operations",
        labelnames=["operation", "status"],
    )

    # 6. Best-effort ledger writes
    ledger_writes_total = Counter(
        "agritrace_eudr_workflow_ledger_writes_total",
        "Total fire-and-forget ledger writes",
        labelnames=["event_type", "status"],
    )

    # 7. Events rejected by quantity conservation
    quantity_rejections_total = Counter(
        "agritrace_eudr_workflow_quantity_rejections_total",
        "Total traceability events rejected for exceeding upstream quantity",
        labelnames=["event_kind"],
    )

    # 8. Certificates currently PENDING_VERIFICATION on the ledger pool
    pending_issuances = Gauge(
        "agritrace_eudr_workflow_pending_issuances",
        "Number of asynchronous certificate issuances in flight",
    )

    # 9. Processing errors by engine and error type
    processing_errors_total = Counter(
        "agritrace_eudr_workflow_processing_errors_total",
        "Total processing errors by engine",
        labelnames=["engine", "error_type"],
    )

    # 10. Operation duration
    operation_duration_seconds = Histogram(
        "agritrace_eudr_workflow_operation_duration_seconds",
        "Compliance workflow operation duration in seconds",
        labelnames=["operation"],
        buckets=(
            0.001, 0.005, 0.01, 0.025, 0.05, 0.1,
            0.25, 0.5, 1.0, 2.5, 5.0, 10.0,
        ),
    )

else:
    stage_transitions_total = None  # type: ignore[assignment]
    stage_blocked_total = None  # type: ignore[assignment]
    risk_assessments_total = None  # type: ignore[assignment]
    compliance_validations_total = None  # type: ignore[assignment]
    certificate_operations_total = None  # type: ignore[assignment]
    ledger_writes_total = None  # type: ignore[assignment]
    quantity_rejections_total = None  # type: ignore[assignment]
    pending_issuances = None  # type: ignore[assignment]
    processing_errors_total = None  # type: ignore[assignment]
    operation_duration_seconds = None  # type: ignore[assignment]


# ---------------------------------------------------------------------------
# Helper functions (safe to call even without prometheus_client)
# ---------------------------------------------------------------------------


def record_stage_transition(direction: str, stage: str) -> None:
    """Record a stage transition.

    Args:
        direction: ``advance`` or ``revert``.
        stage: Stage entered.
    """
    if not PROMETHEUS_AVAILABLE:
        return
    stage_transitions_total.labels(direction=direction, stage=stage).inc()


def record_stage_blocked(stage: str) -> None:
    if not PROMETHEUS_AVAILABLE:
        return
    stage_blocked_total.labels(stage=stage).inc()


def record_risk_assessment(algorithm: str, level: str) -> None:
    """Record a risk assessment.

    Args:
        algorithm: ``stage_display`` or ``certificate_gate``.
        level: Resulting classification.
    """
    if not PROMETHEUS_AVAILABLE:
        return
    risk_assessments_total.labels(algorithm=algorithm, level=level).inc()


def record_compliance_validation(result: str) -> None:
    if not PROMETHEUS_AVAILABLE:
        return
    compliance_validations_total.labels(result=result).inc()


def record_certificate_operation(operation: str, status: str) -> None:
    """Record a certificate lifecycle operation.

    Args:
        operation: issue, issue_async, transfer, in_transit, customs, deliver.
        status: success, rolled_back, rejected.
    """
    if not PROMETHEUS_AVAILABLE:
        return
    certificate_operations_total.labels(operation=operation, status=status).inc()


def record_ledger_write(event_type: str, status: str) -> None:
    if not PROMETHEUS_AVAILABLE:
        return
    ledger_writes_total.labels(event_type=event_type, status=status).inc()


def record_quantity_rejection(event_kind: str) -> None:
    if not PROMETHEUS_AVAILABLE:
        return
    quantity_rejections_total.labels(event_kind=event_kind).inc()


def update_pending_issuances(delta: int) -> None:
    if not PROMETHEUS_AVAILABLE:
        return
    pending_issuances.inc(delta)


def record_processing_error(engine: str, error_type: str) -> None:
    if not PROMETHEUS_AVAILABLE:
        return
    processing_errors_total.labels(engine=engine, error_type=error_type).inc()


def observe_duration(operation: str, seconds: float) -> None:
    if not PROMETHEUS_AVAILABLE:
        return
    operation_duration_seconds.labels(operation=operation).observe(seconds)


__all__ = [
    "PROMETHEUS_AVAILABLE",
    "record_stage_transition",
    "record_stage_blocked",
    "record_risk_assessment",
    "record_compliance_validation",
    "record_certificate_operation",
    "record_ledger_write",
    "record_quantity_rejection",
    "update_pending_issuances",
    "record_processing_error",
    "observe_duration",
]
