"""Unit tests for runtime configuration."""

from __future__ import annotations

import pytest

from core.config import IndexerConfig
from core.errors import LedgerflowConfigError


def test_config_reads_environment(monkeypatch, tmp_path) -> None:
    """Environment variables should populate the runtime config."""
    monkeypatch.setenv("LEDGERFLOW_DATA_ROOT", str(tmp_path))
    monkeypatch.setenv("LEDGERFLOW_S3_ENDPOINT_URL", "http://localhost:9000")
    monkeypatch.setenv("LEDGERFLOW_REQUEST_TIMEOUT_SECS", "2.5")

    config = IndexerConfig.from_env()

    assert config.data_root == tmp_path.resolve()
    assert config.s3_endpoint_url == "http://localhost:9000"
    assert config.request_timeout_seconds == 2.5


def test_config_rejects_invalid_timeout(monkeypatch) -> None:
    """A non-numeric timeout should raise a config error."""
    monkeypatch.setenv("LEDGERFLOW_REQUEST_TIMEOUT_SECS", "soon")

    with pytest.raises(LedgerflowConfigError):
        IndexerConfig.from_env()


def test_config_rejects_non_positive_timeout(monkeypatch) -> None:
    """A zero timeout should raise a config error."""
    monkeypatch.setenv("LEDGERFLOW_REQUEST_TIMEOUT_SECS", "0")

    with pytest.raises(LedgerflowConfigError):
        IndexerConfig.from_env()
