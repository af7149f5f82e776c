# -*- coding: utf-8 -*-
"""
External Collaborators - AT-EUDR-WF: Compliance Workflow Engine

Interfaces for the services the workflow engine consumes but does not
implement, with sandbox implementations for local runs and tests:

- LedgerClient: immutable ledger (event recording, certificate minting,
  asset transfer). SandboxLedgerClient simulates it in memory.
- AccountProvisioner: creates ledger accounts for supply chain parties.
  SandboxAccountProvisioner simulates it.
- SatelliteAnalysisClient: vegetation index statistics for a geometry
  and two date windows. No sandbox; screening is skipped without one.
- CountryRiskTable: EUDR country benchmarking lookup.
  StaticCountryRiskTable ships a default table.

In sandbox mode no network call is made; responses are simulated
locally with the same shape a production client returns.

Author: AgriTrace Platform Team
Date: March 2026
PRD: AT-EUDR-WF Compliance Workflow Engine
Status: Production Ready
"""

from __future__ import annotations

import abc
import logging
import threading
import uuid
from typing import Any, Dict, List, Mapping, Optional

from agritrace.exceptions import LedgerError
from agritrace.eudr_workflow.models import (
    CountryRiskLevel,
    DateRange,
    MintReceipt,
    PartyType,
    VegetationIndexStats,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Ledger
# =============================================================================


class LedgerClient(abc.ABC):
    """Immutable ledger collaborator.

    Every method may raise; callers decide whether a failure is fatal.
    """

    @abc.abstractmethod
    def record_event(self, payload: Dict[str, Any]) -> str:
        """Append ``payload`` to the ledger and return the transaction id."""

    @abc.abstractmethod
    def mint_certificate(
        self, owner_account: str, compliance_data: Dict[str, Any],
    ) -> MintReceipt:
        """Mint a certificate token held by ``owner_account``."""

    @abc.abstractmethod
    def transfer_asset(self, from_account: str, to_account: str, asset_id: str) -> bool:
        """Move ``asset_id`` between accounts; True only when confirmed."""


class SandboxLedgerClient(LedgerClient):
    """In-memory ledger simulation for sandbox mode.

    Attributes:
        events: Payloads recorded so far, in order.
        owners: Current owner account per minted asset id.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._serial = 0
        self.events: List[Dict[str, Any]] = []
        self.owners: Dict[str, str] = {}
        logger.info("SandboxLedgerClient initialized")

    def record_event(self, payload: Dict[str, Any]) -> str:
        tx_id = f"SBX-TX-{uuid.uuid4().hex[:16]}"
        with self._lock:
            self.events.append(dict(payload, transaction_id=tx_id))
        logger.debug("Sandbox ledger recorded %s as %s", payload.get("event_type"), tx_id)
        return tx_id

    def mint_certificate(
        self, owner_account: str, compliance_data: Dict[str, Any],
    ) -> MintReceipt:
        if not owner_account:
            raise LedgerError("Owner account is required to mint", operation="mint")
        with self._lock:
            self._serial += 1
            serial = self._serial
            asset_id = f"SBX-ASSET-{uuid.uuid4().hex[:12]}"
            self.owners[asset_id] = owner_account
        receipt = MintReceipt(
            transaction_id=f"SBX-TX-{uuid.uuid4().hex[:16]}",
            serial_number=serial,
            asset_id=asset_id,
        )
        logger.info(
            "Sandbox certificate minted: asset=%s serial=%d owner=%s",
            asset_id, serial, owner_account,
        )
        return receipt

    def transfer_asset(self, from_account: str, to_account: str, asset_id: str) -> bool:
        with self._lock:
            owner = self.owners.get(asset_id)
            if owner is None or owner != from_account:
                logger.warning(
                    "Sandbox transfer refused: asset=%s owner=%s from=%s",
                    asset_id, owner, from_account,
                )
                return False
            self.owners[asset_id] = to_account
        return True


# =============================================================================
# Account provisioning
# =============================================================================


class AccountProvisioner(abc.ABC):
    """Creates ledger accounts able to hold certificate tokens."""

    @abc.abstractmethod
    def create_account(self, party_type: PartyType, party_id: str) -> str:
        """Create an account for the party and return its id."""


class SandboxAccountProvisioner(AccountProvisioner):
    def create_account(self, party_type: PartyType, party_id: str) -> str:
        account_id = f"SBX-ACCT-{party_type.value[:3]}-{uuid.uuid4().hex[:8]}"
        logger.info(
            "Sandbox account provisioned: %s %s -> %s",
            party_type.value, party_id, account_id,
        )
        return account_id


# =============================================================================
# Satellite analysis
# =============================================================================


class SatelliteAnalysisClient(abc.ABC):
    """Vegetation index statistics provider.

    The engine only consumes the before/after means; scene acquisition
    and cloud masking are the provider's concern.
    """

    @abc.abstractmethod
    def query_vegetation_index(
        self,
        geometry: Dict[str, Any],
        before: DateRange,
        after: DateRange,
    ) -> VegetationIndexStats:
        ...


# =============================================================================
# Country risk
# =============================================================================


class CountryRiskTable(abc.ABC):
    @abc.abstractmethod
    def lookup_country_risk(self, country_code: str) -> Optional[CountryRiskLevel]:
        """Return the risk level of an alpha-2 country, or None if unlisted."""


# Countries with significant deforestation risk per FAO/Global Forest Watch
_HIGH_RISK = (
    "BR", "ID", "MY", "AR", "PY", "BO", "CO", "PE",
    "EC", "CG", "CD", "CM", "CI", "GH", "NG", "LA",
    "MM", "PG",
)

# Countries with notable forest loss
_STANDARD_RISK = (
    "TH", "VN", "MX", "GT", "HN", "NI", "MZ", "TZ",
    "KE", "UG", "ET", "MG", "SL", "LR", "GN", "RW",
    "IN", "CR",
)

# EU member states and other low-risk producers
_LOW_RISK = (
    "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR",
    "DE", "GR", "HU", "IE", "IT", "LV", "LT", "LU", "MT", "NL",
    "PL", "PT", "RO", "SK", "SI", "ES", "SE", "NO", "CH", "GB",
    "US", "CA", "AU", "NZ", "JP",
)

DEFAULT_COUNTRY_RISK: Dict[str, CountryRiskLevel] = {
    **{c: CountryRiskLevel.LOW for c in _LOW_RISK},
    **{c: CountryRiskLevel.STANDARD for c in _STANDARD_RISK},
    **{c: CountryRiskLevel.HIGH for c in _HIGH_RISK},
}


class StaticCountryRiskTable(CountryRiskTable):
    """Country risk lookup backed by a fixed mapping."""

    def __init__(self, mapping: Optional[Mapping[str, CountryRiskLevel]] = None) -> None:
        source = DEFAULT_COUNTRY_RISK if mapping is None else mapping
        self._table = {k.upper(): CountryRiskLevel(v) for k, v in source.items()}

    def lookup_country_risk(self, country_code: str) -> Optional[CountryRiskLevel]:
        if not country_code:
            return None
        return self._table.get(country_code.upper())


__all__ = [
    "LedgerClient",
    "SandboxLedgerClient",
    "AccountProvisioner",
    "SandboxAccountProvisioner",
    "SatelliteAnalysisClient",
    "CountryRiskTable",
    "StaticCountryRiskTable",
    "DEFAULT_COUNTRY_RISK",
]
