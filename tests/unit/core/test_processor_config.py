"""Unit tests for processor YAML config parsing."""

from __future__ import annotations

import copy

import pytest

from core.errors import LedgerflowConfigError
from core.processor_config import load_processor_config, parse_processor_config

BASE_PAYLOAD = {
    "health_check_port": 8085,
    "server_config": {
        "processor_config": {"type": "events_processor", "channel_size": 10},
        "transaction_stream_config": {
            "indexer_grpc_data_service_address": "s3://archive/mainnet",
            "auth_token": "token",
        },
        "processor_mode": {"type": "default", "initial_starting_version": 100},
        "db_config": {
            "type": "postgres_config",
            "connection_string": "postgresql://localhost/indexer",
        },
    },
}


def _payload(**section_overrides: dict) -> dict:
    payload = copy.deepcopy(BASE_PAYLOAD)
    for section, values in section_overrides.items():
        payload["server_config"][section] = values
    return payload


def test_parse_config_builds_typed_sections() -> None:
    """A valid payload should parse into typed settings with defaults."""
    config = parse_processor_config(_payload())

    assert config.processor_name == "events_processor"
    assert config.processor.channel_size == 10
    assert config.processor.extraction_failure_policy == "skip"
    assert config.transaction_stream.address == "s3://archive/mainnet"
    assert config.db.connection_string == "postgresql://localhost/indexer"


def test_to_run_spec_maps_mode_settings() -> None:
    """The run spec should carry the mode and version bounds."""
    payload = _payload(
        processor_mode={
            "type": "backfill",
            "backfill_alias": "events_v2",
            "initial_starting_version": 100,
            "ending_version": 200,
        }
    )

    run_spec = parse_processor_config(payload).to_run_spec()

    assert run_spec.mode == "backfill"
    assert run_spec.checkpoint_name == "events_v2"
    assert (run_spec.starting_version, run_spec.ending_version) == (100, 200)


def test_unknown_fields_are_rejected() -> None:
    """Typos in config keys should fail fast."""
    payload = _payload(processor_config={"type": "events_processor", "chanel_size": 10})

    with pytest.raises(LedgerflowConfigError, match="chanel_size"):
        parse_processor_config(payload)


def test_backfill_requires_alias() -> None:
    """Backfill mode without an alias should be rejected."""
    payload = _payload(processor_mode={"type": "backfill", "ending_version": 10})

    with pytest.raises(LedgerflowConfigError, match="backfill_alias"):
        parse_processor_config(payload)


def test_ending_version_below_start_is_rejected() -> None:
    """An inverted version range should be rejected."""
    payload = _payload(
        processor_mode={"type": "default", "initial_starting_version": 10, "ending_version": 5}
    )

    with pytest.raises(LedgerflowConfigError):
        parse_processor_config(payload)


def test_postgres_requires_connection_string() -> None:
    """The relational sink needs a connection string."""
    payload = _payload(db_config={"type": "postgres_config"})

    with pytest.raises(LedgerflowConfigError, match="connection_string"):
        parse_processor_config(payload)


def test_invalid_failure_policy_is_rejected() -> None:
    """Only skip and halt are valid extraction failure policies."""
    payload = _payload(
        processor_config={"type": "events_processor", "extraction_failure_policy": "ignore"}
    )

    with pytest.raises(LedgerflowConfigError):
        parse_processor_config(payload)


def test_non_positive_channel_size_is_rejected() -> None:
    """Channel size must be positive."""
    payload = _payload(processor_config={"type": "events_processor", "channel_size": 0})

    with pytest.raises(LedgerflowConfigError):
        parse_processor_config(payload)


def test_load_processor_config_reads_yaml(tmp_path) -> None:
    """YAML files should load through the same validation."""
    config_path = tmp_path / "processor.yaml"
    config_path.write_text(
        "\n".join(
            [
                "server_config:",
                "  processor_config:",
                "    type: parquet_events_processor",
                "    upload_interval: 5",
                "  transaction_stream_config:",
                "    indexer_grpc_data_service_address: /data/ledger",
                "    poll_interval_secs: 2",
                "  processor_mode:",
                "    type: default",
                "  db_config:",
                "    type: parquet_config",
                "    bucket_root: events",
            ]
        ),
        encoding="utf-8",
    )

    config = load_processor_config(str(config_path))

    assert config.processor.upload_interval_seconds == 5.0
    assert config.transaction_stream.poll_interval_seconds == 2.0
    assert config.db.bucket_root == "events"
    assert config.health_check_port == 8085


def test_load_processor_config_reports_missing_file(tmp_path) -> None:
    """A missing config file should raise a config error."""
    with pytest.raises(LedgerflowConfigError):
        load_processor_config(str(tmp_path / "missing.yaml"))
