"""Unit tests for processor type resolution."""

from __future__ import annotations

import pytest

from core.errors import LedgerflowConfigError
from extractors.registry import resolve_processor, supported_processor_types


def test_supported_types_include_parquet_variants() -> None:
    """Every processor should have a parquet variant."""
    processor_types = supported_processor_types()

    assert "events_processor" in processor_types
    assert "parquet_events_processor" in processor_types


def test_resolve_processor_returns_extractor_set() -> None:
    """Resolving a type should return its extractors."""
    definition = resolve_processor("fungible_asset_processor", "postgres_config")

    assert [extractor.name for extractor in definition.extractors] == ["coin_balances"]


def test_resolve_processor_rejects_unknown_type() -> None:
    """Unknown processor types should fail with a config error."""
    with pytest.raises(LedgerflowConfigError):
        resolve_processor("nft_processor", "postgres_config")


def test_resolve_processor_rejects_mismatched_sink() -> None:
    """A relational processor configured with a parquet sink should fail."""
    with pytest.raises(LedgerflowConfigError):
        resolve_processor("events_processor", "parquet_config")
