"""
yieldvault.config — YAML Configuration Loader
==============================================

Engine tuning lives in ``config.yaml`` (scheduler cadence, thresholds,
pool percentage, collaborator URLs).  Secrets and infrastructure
(``DATABASE_URL``, ``JWT_SECRET``) stay in the environment / ``.env``.

Usage::

    from yieldvault.config import load_config

    cfg = load_config()                # reads ./config.yaml by default
    print(cfg.accrual_interval_minutes)  # 60
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class YieldVaultConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Scheduler
    accrual_interval_minutes: int = 60
    min_elapsed_hours: Decimal = Decimal("1")
    negligible_threshold: Decimal = Decimal("0.000000000001")
    lease_ttl_seconds: int = 900

    # Distribution
    pool_percentage: Decimal = Decimal("0.25")
    snapshot_chain: str = "xrpl"

    # Collaborators
    payment_executor_url: str | None = None
    payment_executor_timeout: float = 10.0
    holdings_source_url: str | None = None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path | None = None) -> YieldVaultConfig:
    """Read *path* and return a :class:`YieldVaultConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.  Defaults to
        ``$YIELDVAULT_CONFIG`` or ``config.yaml`` in the working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If ``pool_percentage`` is outside (0, 1].
    """
    config_path = Path(path or os.getenv("YIELDVAULT_CONFIG", "config.yaml"))
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    defaults = YieldVaultConfig()
    cfg = YieldVaultConfig(
        accrual_interval_minutes=int(
            raw.get("accrual_interval_minutes", defaults.accrual_interval_minutes)
        ),
        min_elapsed_hours=Decimal(str(raw.get("min_elapsed_hours", defaults.min_elapsed_hours))),
        negligible_threshold=Decimal(
            str(raw.get("negligible_threshold", defaults.negligible_threshold))
        ),
        lease_ttl_seconds=int(raw.get("lease_ttl_seconds", defaults.lease_ttl_seconds)),
        pool_percentage=Decimal(str(raw.get("pool_percentage", defaults.pool_percentage))),
        snapshot_chain=str(raw.get("snapshot_chain", defaults.snapshot_chain)),
        payment_executor_url=raw.get("payment_executor_url") or None,
        payment_executor_timeout=float(
            raw.get("payment_executor_timeout", defaults.payment_executor_timeout)
        ),
        holdings_source_url=raw.get("holdings_source_url") or None,
    )
    if not (Decimal("0") < cfg.pool_percentage <= Decimal("1")):
        raise ValueError(
            f"pool_percentage must be in (0, 1], got {cfg.pool_percentage}"
        )
    return cfg
