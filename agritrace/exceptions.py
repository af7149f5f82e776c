"""AgriTrace Custom Exception Hierarchy.

This module provides the exception hierarchy for AgriTrace with rich
error context for debugging, monitoring, and user feedback.

Exception Hierarchy:
    AgriTraceException (base)
    ├── DataException
    │   ├── NotFoundError
    │   └── TraceabilityIntegrityError
    ├── WorkflowException
    │   └── PreconditionFailedError
    │       ├── ComplianceValidationError
    │       ├── CertificateStateError
    │       └── InsufficientQuantityError
    └── IntegrationException
        ├── LedgerError
        └── SatelliteAnalysisError

All exceptions include rich context:
- error_code: Unique error identifier
- workflow_id: Workflow the error relates to (optional)
- context: Dictionary with error-specific details
- timestamp: When the error occurred
- traceback: Full stack trace for debugging

Example:
    >>> from agritrace.exceptions import NotFoundError
    >>> raise NotFoundError(
    ...     message="Workflow WF-001 not found",
    ...     entity_type="workflow",
    ...     entity_id="WF-001",
    ... )

Author: AgriTrace Platform Team
Date: March 2026
Status: Production Ready
"""

import json
import re
import traceback as tb
from datetime import datetime
from typing import Any, Dict, List, Optional


# ==============================================================================
# Base Exception
# ==============================================================================

class AgriTraceException(Exception):
    """Base exception for all AgriTrace errors.

    Attributes:
        message: Human-readable error message
        error_code: Unique error identifier (e.g., "AT_DATA_NOT_FOUND_ERROR")
        workflow_id: Workflow the error relates to (optional)
        context: Dictionary with error-specific details
        timestamp: When the error occurred
        traceback_str: Full stack trace for debugging
    """

    # Base error code prefix
    ERROR_PREFIX = "AT"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        workflow_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """Initialize AgriTrace exception with rich context.

        Args:
            message: Human-readable error message
            error_code: Unique error identifier (auto-generated if not provided)
            workflow_id: Workflow the error relates to
            context: Dictionary with error-specific details
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self._generate_error_code()
        self.workflow_id = workflow_id
        self.context = context or {}
        self.timestamp = datetime.now()
        self.traceback_str = "".join(tb.format_stack()[:-1])

    def _generate_error_code(self) -> str:
        """Generate error code based on exception class.

        Returns:
            Error code like "AT_WORKFLOW_CERTIFICATE_STATE_ERROR"
        """
        class_name = self.__class__.__name__
        # CamelCase to SCREAMING_SNAKE_CASE
        error_type = re.sub(r'(?<!^)(?=[A-Z])', '_', class_name).upper()
        return f"{self.ERROR_PREFIX}_{error_type}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization.

        Returns:
            Dictionary with all error details
        """
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "workflow_id": self.workflow_id,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "traceback": self.traceback_str,
        }

    def to_json(self) -> str:
        """Convert exception to JSON string."""
        return json.dumps(self.to_dict(), indent=2, default=str)

    def __str__(self) -> str:
        """String representation with error code and message."""
        parts = [f"[{self.error_code}]"]
        if self.workflow_id:
            parts.append(f"Workflow: {self.workflow_id}")
        parts.append(self.message)
        return " - ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message='{self.message}', "
            f"error_code='{self.error_code}', "
            f"workflow_id='{self.workflow_id}')"
        )


# ==============================================================================
# Data Exceptions
# ==============================================================================

class DataException(AgriTraceException):
    """Base exception for traceability data errors."""
    ERROR_PREFIX = "AT_DATA"


class NotFoundError(DataException):
    """A referenced record does not exist.

    Raised for unknown workflows, production units, links and alerts.
    Always fatal to the requested operation.

    Example:
        >>> raise NotFoundError(
        ...     message="Production unit PU-9 not found",
        ...     entity_type="production_unit",
        ...     entity_id="PU-9",
        ... )
    """

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """Initialize not-found error.

        Args:
            message: Error message
            entity_type: Kind of record that was looked up
            entity_id: Identifier that was looked up
            workflow_id: Owning workflow, when known
            context: Error context
        """
        context = context or {}
        if entity_type:
            context["entity_type"] = entity_type
        if entity_id:
            context["entity_id"] = entity_id
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(message, workflow_id=workflow_id, context=context)


class TraceabilityIntegrityError(DataException):
    """A change would orphan recorded traceability data.

    Example:
        >>> raise TraceabilityIntegrityError(
        ...     message="Production unit PU-1 is referenced by 3 collection events",
        ...     workflow_id="WF-001",
        ...     context={"collection_event_count": 3},
        ... )
    """


# ==============================================================================
# Workflow Exceptions
# ==============================================================================

class WorkflowException(AgriTraceException):
    """Base exception for compliance workflow errors."""
    ERROR_PREFIX = "AT_WORKFLOW"


class PreconditionFailedError(WorkflowException):
    """An orchestrating operation cannot proceed.

    Carries the structured list of reasons so callers can present
    actionable detail.

    Example:
        >>> raise PreconditionFailedError(
        ...     message="Certificate issuance blocked",
        ...     workflow_id="WF-001",
        ...     failure_reasons=["No collection events recorded"],
        ... )
    """

    def __init__(
        self,
        message: str,
        workflow_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        failure_reasons: Optional[List[str]] = None,
    ):
        """Initialize precondition error.

        Args:
            message: Error message
            workflow_id: Affected workflow
            context: Error context
            failure_reasons: Individual reasons the operation was refused
        """
        self.failure_reasons = list(failure_reasons or [])
        context = context or {}
        if self.failure_reasons:
            context["failure_reasons"] = self.failure_reasons
        super().__init__(message, workflow_id=workflow_id, context=context)


class ComplianceValidationError(PreconditionFailedError):
    """Certificate validation produced one or more failure reasons."""


class CertificateStateError(PreconditionFailedError):
    """The certificate lifecycle does not permit the requested step.

    Example:
        >>> raise CertificateStateError(
        ...     message="Certificate already issued",
        ...     workflow_id="WF-001",
        ...     current_status="COMPLIANT",
        ... )
    """

    def __init__(
        self,
        message: str,
        workflow_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        current_status: Optional[str] = None,
    ):
        context = context or {}
        if current_status:
            context["current_status"] = current_status
        self.current_status = current_status
        super().__init__(message, workflow_id=workflow_id, context=context)


class InsufficientQuantityError(PreconditionFailedError):
    """A downstream event would exceed the upstream quantity.

    Example:
        >>> raise InsufficientQuantityError(
        ...     available_kg=1000.0, requested_kg=1200.0, workflow_id="WF-001",
        ... )
    """

    def __init__(
        self,
        available_kg: float,
        requested_kg: float,
        workflow_id: Optional[str] = None,
        event_kind: Optional[str] = None,
    ):
        """Initialize quantity error.

        Args:
            available_kg: Quantity still available upstream
            requested_kg: Quantity the rejected event asked for
            workflow_id: Affected workflow
            event_kind: Kind of event that was rejected
        """
        message = (
            f"Insufficient quantity. Available: {available_kg} kg, "
            f"Requested: {requested_kg} kg"
        )
        context: Dict[str, Any] = {
            "available_kg": available_kg,
            "requested_kg": requested_kg,
        }
        if event_kind:
            context["event_kind"] = event_kind
        self.available_kg = available_kg
        self.requested_kg = requested_kg
        super().__init__(
            message,
            workflow_id=workflow_id,
            context=context,
            failure_reasons=[message],
        )


# ==============================================================================
# Integration Exceptions
# ==============================================================================

class IntegrationException(AgriTraceException):
    """Base exception for external collaborator failures."""
    ERROR_PREFIX = "AT_INTEGRATION"

    def __init__(
        self,
        message: str,
        workflow_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        operation: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        """Initialize integration error.

        Args:
            message: Error message
            workflow_id: Affected workflow
            context: Error context
            operation: Collaborator operation that failed
            cause: Original exception
        """
        context = context or {}
        if operation:
            context["operation"] = operation
        if cause:
            context["cause"] = str(cause)
            context["cause_type"] = type(cause).__name__
        super().__init__(message, workflow_id=workflow_id, context=context)


class LedgerError(IntegrationException):
    """The immutable ledger rejected or failed a write."""


class SatelliteAnalysisError(IntegrationException):
    """The satellite analysis service could not produce statistics."""


# ==============================================================================
# Exception Utilities
# ==============================================================================

def format_exception_chain(exc: Exception) -> str:
    """Format exception chain for logging/display.

    Args:
        exc: Exception to format

    Returns:
        Formatted string with full exception chain
    """
    lines = []
    current = exc

    while current is not None:
        if isinstance(current, AgriTraceException):
            lines.append(str(current))
            lines.append(f"  Context: {current.context}")
        else:
            lines.append(f"{type(current).__name__}: {current}")
        current = getattr(current, "__cause__", None)

    return "\n".join(lines)


def is_retriable(exc: Exception) -> bool:
    """Check if exception is retriable.

    Collaborator failures are transient; precondition and data errors
    will fail the same way on retry.
    """
    if isinstance(exc, IntegrationException):
        return True
    return False
