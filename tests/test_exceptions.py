"""Tests for AgriTrace Exception Hierarchy.

Test suite covering:
- Base exception functionality
- DataException hierarchy
- WorkflowException hierarchy
- IntegrationException hierarchy
- Exception serialization
- Exception utilities

Author: AgriTrace Platform Team
Date: March 2026
Status: Production Ready
"""

import json
from datetime import datetime

import pytest

from agritrace.exceptions import (
    # Base
    AgriTraceException,
    # Data exceptions
    DataException,
    NotFoundError,
    TraceabilityIntegrityError,
    # Workflow exceptions
    WorkflowException,
    PreconditionFailedError,
    ComplianceValidationError,
    CertificateStateError,
    InsufficientQuantityError,
    # Integration exceptions
    IntegrationException,
    LedgerError,
    SatelliteAnalysisError,
    # Utilities
    format_exception_chain,
    is_retriable,
)


# ==============================================================================
# Base Exception Tests
# ==============================================================================

class TestAgriTraceException:
    """Tests for base AgriTraceException."""

    def test_create_basic_exception(self):
        """Can create basic exception with message."""
        exc = AgriTraceException("Something went wrong")

        assert exc.message == "Something went wrong"
        assert exc.error_code == "AT_AGRI_TRACE_EXCEPTION"
        assert exc.workflow_id is None
        assert exc.context == {}
        assert isinstance(exc.timestamp, datetime)

    def test_explicit_error_code_wins(self):
        """An explicit error code is kept as given."""
        exc = AgriTraceException("Test error", error_code="AT_TEST_001")

        assert exc.error_code == "AT_TEST_001"

    def test_str_includes_workflow(self):
        """String form carries code, workflow and message."""
        exc = AgriTraceException("Boom", error_code="AT_X", workflow_id="WF-1")

        assert str(exc) == "[AT_X] - Workflow: WF-1 - Boom"

    def test_str_without_workflow(self):
        """Workflow part is omitted when unknown."""
        exc = AgriTraceException("Boom", error_code="AT_X")

        assert str(exc) == "[AT_X] - Boom"

    def test_to_dict_and_json(self):
        """Serialization exposes every field."""
        exc = AgriTraceException("Boom", workflow_id="WF-1", context={"k": 1})

        data = exc.to_dict()
        assert set(data) == {
            "error_type", "error_code", "message", "workflow_id",
            "context", "timestamp", "traceback",
        }
        assert data["error_type"] == "AgriTraceException"
        assert json.loads(exc.to_json())["context"] == {"k": 1}


# ==============================================================================
# Data Exception Tests
# ==============================================================================

class TestDataExceptions:
    """Tests for DataException hierarchy."""

    def test_not_found_error_context(self):
        """NotFoundError records the entity that was looked up."""
        exc = NotFoundError(
            "Production unit PU-9 not found",
            entity_type="production_unit",
            entity_id="PU-9",
        )

        assert isinstance(exc, DataException)
        assert exc.error_code == "AT_DATA_NOT_FOUND_ERROR"
        assert exc.context == {"entity_type": "production_unit", "entity_id": "PU-9"}
        assert exc.entity_id == "PU-9"

    def test_integrity_error_code(self):
        """TraceabilityIntegrityError uses the data prefix."""
        exc = TraceabilityIntegrityError("referenced", workflow_id="WF-1")

        assert exc.error_code == "AT_DATA_TRACEABILITY_INTEGRITY_ERROR"


# ==============================================================================
# Workflow Exception Tests
# ==============================================================================

class TestWorkflowExceptions:
    """Tests for WorkflowException hierarchy."""

    def test_precondition_failure_reasons(self):
        """Failure reasons are kept on the exception and in context."""
        exc = PreconditionFailedError(
            "Certificate issuance blocked",
            workflow_id="WF-1",
            failure_reasons=["No collection events recorded"],
        )

        assert isinstance(exc, WorkflowException)
        assert exc.failure_reasons == ["No collection events recorded"]
        assert exc.context["failure_reasons"] == ["No collection events recorded"]

    def test_compliance_validation_is_precondition(self):
        """ComplianceValidationError is a PreconditionFailedError."""
        exc = ComplianceValidationError("not compliant", failure_reasons=["x"])

        assert isinstance(exc, PreconditionFailedError)
        assert exc.error_code == "AT_WORKFLOW_COMPLIANCE_VALIDATION_ERROR"

    def test_certificate_state_error(self):
        """CertificateStateError records the current status."""
        exc = CertificateStateError(
            "Certificate already issued",
            workflow_id="WF-1",
            current_status="COMPLIANT",
        )

        assert exc.current_status == "COMPLIANT"
        assert exc.context["current_status"] == "COMPLIANT"
        assert exc.error_code == "AT_WORKFLOW_CERTIFICATE_STATE_ERROR"

    def test_insufficient_quantity_message(self):
        """InsufficientQuantityError builds its message from the quantities."""
        exc = InsufficientQuantityError(
            available_kg=1000.0,
            requested_kg=1200.0,
            workflow_id="WF-1",
            event_kind="CONSOLIDATION",
        )

        assert exc.message == (
            "Insufficient quantity. Available: 1000.0 kg, Requested: 1200.0 kg"
        )
        assert exc.failure_reasons == [exc.message]
        assert exc.context["event_kind"] == "CONSOLIDATION"
        assert exc.available_kg == 1000.0


# ==============================================================================
# Integration Exception Tests
# ==============================================================================

class TestIntegrationExceptions:
    """Tests for IntegrationException hierarchy."""

    def test_ledger_error_with_cause(self):
        """LedgerError records operation and cause."""
        cause = RuntimeError("connection reset")
        exc = LedgerError("mint failed", operation="mint", cause=cause)

        assert isinstance(exc, IntegrationException)
        assert exc.error_code == "AT_INTEGRATION_LEDGER_ERROR"
        assert exc.context == {
            "operation": "mint",
            "cause": "connection reset",
            "cause_type": "RuntimeError",
        }

    def test_satellite_error_code(self):
        """SatelliteAnalysisError uses the integration prefix."""
        exc = SatelliteAnalysisError("no client")

        assert exc.error_code == "AT_INTEGRATION_SATELLITE_ANALYSIS_ERROR"


# ==============================================================================
# Utility Tests
# ==============================================================================

class TestExceptionUtilities:
    """Tests for exception utilities."""

    def test_format_exception_chain(self):
        """Chain formatting follows __cause__."""
        try:
            try:
                raise ValueError("bad payload")
            except ValueError as inner:
                raise LedgerError("mint failed", workflow_id="WF-1") from inner
        except LedgerError as exc:
            text = format_exception_chain(exc)

        lines = text.splitlines()
        assert lines[0] == "[AT_INTEGRATION_LEDGER_ERROR] - Workflow: WF-1 - mint failed"
        assert lines[-1] == "ValueError: bad payload"

    @pytest.mark.parametrize("exc,expected", [
        (LedgerError("x"), True),
        (SatelliteAnalysisError("x"), True),
        (NotFoundError("x"), False),
        (CertificateStateError("x"), False),
        (ValueError("x"), False),
    ])
    def test_is_retriable(self, exc, expected):
        """Only collaborator failures are retriable."""
        assert is_retriable(exc) is expected
