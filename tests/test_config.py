"""
tests/test_config.py — YAML Configuration Loader
=================================================
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from yieldvault.config import YieldVaultConfig, load_config


def _write(tmp_path, text: str):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_values_are_read_and_typed(self, tmp_path):
        path = _write(tmp_path, """
accrual_interval_minutes: 30
min_elapsed_hours: 2
negligible_threshold: "0.0001"
lease_ttl_seconds: 600
pool_percentage: 0.4
snapshot_chain: solana
payment_executor_url: http://executor.local
holdings_source_url: http://indexer.local
""")
        cfg = load_config(path)
        assert cfg.accrual_interval_minutes == 30
        assert cfg.min_elapsed_hours == Decimal("2")
        assert cfg.negligible_threshold == Decimal("0.0001")
        assert cfg.lease_ttl_seconds == 600
        assert cfg.pool_percentage == Decimal("0.4")
        assert cfg.snapshot_chain == "solana"
        assert cfg.payment_executor_url == "http://executor.local"
        assert cfg.holdings_source_url == "http://indexer.local"

    def test_empty_file_gives_defaults(self, tmp_path):
        assert load_config(_write(tmp_path, "")) == YieldVaultConfig()

    def test_env_var_points_at_file(self, tmp_path, monkeypatch):
        path = _write(tmp_path, "pool_percentage: 0.1\n")
        monkeypatch.setenv("YIELDVAULT_CONFIG", str(path))
        assert load_config().pool_percentage == Decimal("0.1")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.yaml.example"):
            load_config(tmp_path / "nope.yaml")

    @pytest.mark.parametrize("pct", ["0", "1.5", "-0.2"])
    def test_pool_percentage_out_of_range(self, tmp_path, pct):
        with pytest.raises(ValueError, match="pool_percentage"):
            load_config(_write(tmp_path, f"pool_percentage: {pct}\n"))

    def test_blank_urls_become_none(self, tmp_path):
        cfg = load_config(_write(tmp_path, "payment_executor_url: ''\n"))
        assert cfg.payment_executor_url is None
