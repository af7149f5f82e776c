"""Tests for the EUDRWorkflowService facade."""

import pytest

from agritrace.eudr_workflow import EUDRWorkflowService
from agritrace.eudr_workflow.config import EUDRWorkflowConfig
from agritrace.eudr_workflow.models import ComplianceStage


class TestEUDRWorkflowService:
    """Tests for service wiring and statistics."""

    def test_requires_ledger_outside_sandbox(self):
        """Without sandbox mode a ledger client must be supplied."""
        with pytest.raises(ValueError):
            EUDRWorkflowService(config=EUDRWorkflowConfig(ledger_sandbox=False))

    def test_sandbox_ledger_by_default(self, config):
        """Sandbox mode wires an in-memory ledger that can issue."""
        service = EUDRWorkflowService(config=config)
        try:
            assert type(service.ledger.ledger).__name__ == "SandboxLedgerClient"
        finally:
            service.shutdown()

    def test_statistics(self, service, workflow_factory):
        """Statistics count workflows, certificates and provenance."""
        workflow_id, _ = workflow_factory()
        workflow_factory()
        service.issue_certificate(workflow_id)

        stats = service.get_statistics()

        assert stats["total_workflows"] == 2
        assert stats["certificates_issued"] == 1
        assert stats["certificates_by_status"] == {"COMPLIANT": 1, "NOT_CREATED": 1}
        assert stats["workflows_by_stored_stage"] == {
            ComplianceStage.PRODUCTION_REGISTRATION.value: 2,
        }
        assert stats["provenance_entries"] > 0
