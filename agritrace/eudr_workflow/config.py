# -*- coding: utf-8 -*-
"""
EUDR Compliance Workflow Configuration - AT-EUDR-WF: Compliance Workflow Engine

Centralized configuration for the compliance workflow engine covering:
- EUDR defaults: deforestation cutoff date
- Stage display risk: factor weights and band edges
- Certificate gate risk: factor weights, thresholds, GPS gap penalty
- Workflow progress: estimated days per remaining stage
- Satellite screening: NDVI loss thresholds and comparison window
- Ledger: sandbox toggle, worker pool size, pending-task bound
- Logging level

All settings can be overridden via environment variables with the
``AGRITRACE_EUDR_WORKFLOW_`` prefix (e.g.
``AGRITRACE_EUDR_WORKFLOW_LEDGER_WORKER_COUNT``).

Example:
    >>> from agritrace.eudr_workflow.config import get_config
    >>> cfg = get_config()
    >>> print(cfg.deforestation_cutoff_date, cfg.gate_high_threshold)

Author: AgriTrace Platform Team
Date: March 2026
PRD: AT-EUDR-WF Compliance Workflow Engine
Status: Production Ready
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Environment variable prefix
# ---------------------------------------------------------------------------

_ENV_PREFIX = "AGRITRACE_EUDR_WORKFLOW_"


# ---------------------------------------------------------------------------
# EUDRWorkflowConfig
# ---------------------------------------------------------------------------


@dataclass
class EUDRWorkflowConfig:
    """Complete configuration for the EUDR compliance workflow engine.

    Attributes:
        deforestation_cutoff_date: EUDR deforestation-free cutoff date (ISO format).
        display_country_weight: Country weight in the stage display risk score.
        display_deforestation_weight: Deforestation weight in the stage display score.
        display_complexity_weight: Supply chain complexity weight in the display score.
        display_negligible_below: Scores below this are NEGLIGIBLE.
        display_low_below: Scores below this are LOW.
        display_standard_below: Scores below this are STANDARD, otherwise HIGH.
        gate_deforestation_weight: Deforestation weight in the certificate gate score.
        gate_geospatial_weight: Geospatial completeness weight in the gate score.
        gate_country_weight: Country weight in the gate score.
        gate_traceability_weight: Traceability completeness weight in the gate score.
        gate_high_threshold: Gate scores at or above this are HIGH.
        gate_medium_threshold: Gate scores at or above this are MEDIUM.
        gps_gap_penalty: Added to the gate score when any unit lacks GPS data.
        days_per_stage: Estimated days to clear each remaining stage.
        ndvi_loss_threshold: NDVI delta at or below which vegetation loss is flagged.
        ndvi_clearcut_threshold: NDVI delta at or below which loss is CRITICAL.
        satellite_window_days: Length of the before/after comparison windows.
        ledger_sandbox: Whether to use the sandbox ledger and account provisioner.
        ledger_worker_count: Worker threads for fire-and-forget ledger writes.
        ledger_max_pending: Maximum queued ledger tasks before new ones are refused.
        ledger_drain_timeout_seconds: Wait bound when draining ledger tasks.
        log_level: Logging level for the workflow engine.
    """

    # -- EUDR defaults -------------------------------------------------------
    deforestation_cutoff_date: str = "2020-12-31"

    # -- Stage display risk --------------------------------------------------
    display_country_weight: float = 0.35
    display_deforestation_weight: float = 0.40
    display_complexity_weight: float = 0.25
    display_negligible_below: float = 20.0
    display_low_below: float = 40.0
    display_standard_below: float = 60.0

    # -- Certificate gate risk -----------------------------------------------
    gate_deforestation_weight: float = 0.40
    gate_geospatial_weight: float = 0.25
    gate_country_weight: float = 0.20
    gate_traceability_weight: float = 0.15
    gate_high_threshold: float = 0.7
    gate_medium_threshold: float = 0.4
    gps_gap_penalty: float = 0.1

    # -- Workflow progress ---------------------------------------------------
    days_per_stage: int = 2

    # -- Satellite screening -------------------------------------------------
    ndvi_loss_threshold: float = -0.15
    ndvi_clearcut_threshold: float = -0.30
    satellite_window_days: int = 365

    # -- Ledger --------------------------------------------------------------
    ledger_sandbox: bool = True
    ledger_worker_count: int = 5
    ledger_max_pending: int = 100
    ledger_drain_timeout_seconds: float = 30.0

    # -- Logging -------------------------------------------------------------
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Factory helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls) -> EUDRWorkflowConfig:
        """Build an EUDRWorkflowConfig from environment variables.

        Every field can be overridden via ``AGRITRACE_EUDR_WORKFLOW_<FIELD_UPPER>``.
        Boolean values accept ``true/1/yes`` (case-insensitive).

        Returns:
            Populated EUDRWorkflowConfig instance.
        """
        prefix = _ENV_PREFIX

        def _env(name: str, default: Any = None) -> Optional[str]:
            return os.environ.get(f"{prefix}{name}", default)

        def _bool(name: str, default: bool) -> bool:
            val = _env(name)
            if val is None:
                return default
            return val.lower() in ("true", "1", "yes")

        def _int(name: str, default: int) -> int:
            val = _env(name)
            if val is None:
                return default
            try:
                return int(val)
            except ValueError:
                logger.warning(
                    "Invalid integer for %s%s=%s, using default %d",
                    prefix, name, val, default,
                )
                return default

        def _float(name: str, default: float) -> float:
            val = _env(name)
            if val is None:
                return default
            try:
                return float(val)
            except ValueError:
                logger.warning(
                    "Invalid float for %s%s=%s, using default %f",
                    prefix, name, val, default,
                )
                return default

        def _str(name: str, default: str) -> str:
            val = _env(name)
            if val is None:
                return default
            return val

        config = cls(
            deforestation_cutoff_date=_str(
                "DEFORESTATION_CUTOFF_DATE", cls.deforestation_cutoff_date,
            ),
            display_country_weight=_float(
                "DISPLAY_COUNTRY_WEIGHT", cls.display_country_weight,
            ),
            display_deforestation_weight=_float(
                "DISPLAY_DEFORESTATION_WEIGHT",
                cls.display_deforestation_weight,
            ),
            display_complexity_weight=_float(
                "DISPLAY_COMPLEXITY_WEIGHT", cls.display_complexity_weight,
            ),
            display_negligible_below=_float(
                "DISPLAY_NEGLIGIBLE_BELOW", cls.display_negligible_below,
            ),
            display_low_below=_float(
                "DISPLAY_LOW_BELOW", cls.display_low_below,
            ),
            display_standard_below=_float(
                "DISPLAY_STANDARD_BELOW", cls.display_standard_below,
            ),
            gate_deforestation_weight=_float(
                "GATE_DEFORESTATION_WEIGHT", cls.gate_deforestation_weight,
            ),
            gate_geospatial_weight=_float(
                "GATE_GEOSPATIAL_WEIGHT", cls.gate_geospatial_weight,
            ),
            gate_country_weight=_float(
                "GATE_COUNTRY_WEIGHT", cls.gate_country_weight,
            ),
            gate_traceability_weight=_float(
                "GATE_TRACEABILITY_WEIGHT", cls.gate_traceability_weight,
            ),
            gate_high_threshold=_float(
                "GATE_HIGH_THRESHOLD", cls.gate_high_threshold,
            ),
            gate_medium_threshold=_float(
                "GATE_MEDIUM_THRESHOLD", cls.gate_medium_threshold,
            ),
            gps_gap_penalty=_float("GPS_GAP_PENALTY", cls.gps_gap_penalty),
            days_per_stage=_int("DAYS_PER_STAGE", cls.days_per_stage),
            ndvi_loss_threshold=_float(
                "NDVI_LOSS_THRESHOLD", cls.ndvi_loss_threshold,
            ),
            ndvi_clearcut_threshold=_float(
                "NDVI_CLEARCUT_THRESHOLD", cls.ndvi_clearcut_threshold,
            ),
            satellite_window_days=_int(
                "SATELLITE_WINDOW_DAYS", cls.satellite_window_days,
            ),
            ledger_sandbox=_bool("LEDGER_SANDBOX", cls.ledger_sandbox),
            ledger_worker_count=_int(
                "LEDGER_WORKER_COUNT", cls.ledger_worker_count,
            ),
            ledger_max_pending=_int(
                "LEDGER_MAX_PENDING", cls.ledger_max_pending,
            ),
            ledger_drain_timeout_seconds=_float(
                "LEDGER_DRAIN_TIMEOUT_SECONDS",
                cls.ledger_drain_timeout_seconds,
            ),
            log_level=_str("LOG_LEVEL", cls.log_level),
        )

        logger.info(
            "EUDRWorkflowConfig loaded: cutoff=%s, "
            "display_weights=[%.2f,%.2f,%.2f], "
            "gate_weights=[%.2f,%.2f,%.2f,%.2f], "
            "gate_thresholds=[%.2f,%.2f], sandbox=%s, "
            "ledger_workers=%d, ledger_max_pending=%d",
            config.deforestation_cutoff_date,
            config.display_country_weight,
            config.display_deforestation_weight,
            config.display_complexity_weight,
            config.gate_deforestation_weight,
            config.gate_geospatial_weight,
            config.gate_country_weight,
            config.gate_traceability_weight,
            config.gate_medium_threshold,
            config.gate_high_threshold,
            config.ledger_sandbox,
            config.ledger_worker_count,
            config.ledger_max_pending,
        )
        return config


# ---------------------------------------------------------------------------
# Thread-safe singleton accessor
# ---------------------------------------------------------------------------

_config_instance: Optional[EUDRWorkflowConfig] = None
_config_lock = threading.Lock()


def get_config() -> EUDRWorkflowConfig:
    """Return the singleton EUDRWorkflowConfig, creating from env if needed.

    Returns:
        EUDRWorkflowConfig singleton instance.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = EUDRWorkflowConfig.from_env()
    return _config_instance


def set_config(config: EUDRWorkflowConfig) -> None:
    """Replace the singleton EUDRWorkflowConfig (useful for testing).

    Args:
        config: New configuration to install.
    """
    global _config_instance
    with _config_lock:
        _config_instance = config
    logger.info("EUDRWorkflowConfig replaced programmatically")


def reset_config() -> None:
    """Reset the singleton (primarily for test teardown)."""
    global _config_instance
    with _config_lock:
        _config_instance = None


__all__ = [
    "EUDRWorkflowConfig",
    "get_config",
    "set_config",
    "reset_config",
]
