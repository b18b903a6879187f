"""Unit tests for CLI command handling."""

from __future__ import annotations

import json
from pathlib import Path

from sqlalchemy import create_engine, inspect

from cli.main import main
from tests.fixture_paths import fixture_path


def _write_config(tmp_path: Path, extra_mode: str = "") -> Path:
    config_path = tmp_path / "processor.yaml"
    config_path.write_text(
        "\n".join(
            [
                "server_config:",
                "  processor_config:",
                "    type: parquet_fungible_asset_processor",
                "  transaction_stream_config:",
                f"    indexer_grpc_data_service_address: {fixture_path('transactions/ledger.jsonl')}",
                "  processor_mode:",
                "    type: default",
                "    initial_starting_version: 10",
                extra_mode,
                "  db_config:",
                "    type: parquet_config",
            ]
        ),
        encoding="utf-8",
    )
    return config_path


def test_cli_run_processes_archive(tmp_path, capsys) -> None:
    """CLI run should process the archive and print a success summary."""
    config_path = _write_config(tmp_path)

    exit_code = main(["--data-root", str(tmp_path), "run", str(config_path)])
    summary = json.loads(capsys.readouterr().out.strip())

    assert exit_code == 0
    assert summary["status"] == "success"
    assert summary["last_committed_version"] == 13
    assert (tmp_path / "parquet" / "parquet_fungible_asset_processor" / "coin_balances").is_dir()


def test_cli_status_prints_checkpoint(tmp_path, capsys) -> None:
    """CLI status should print the stored tailing checkpoint."""
    config_path = _write_config(tmp_path)
    main(["--data-root", str(tmp_path), "run", str(config_path)])
    capsys.readouterr()

    exit_code = main(["--data-root", str(tmp_path), "status", str(config_path)])
    lines = [json.loads(line) for line in capsys.readouterr().out.strip().splitlines()]

    assert exit_code == 0
    assert lines[0]["mode"] == "default"
    assert lines[0]["checkpoint"]["last_success_version"] == 13


def test_cli_status_before_any_run_creates_nothing(tmp_path, capsys) -> None:
    """Status for a processor that never ran should print no checkpoint and write nothing."""
    config_path = _write_config(tmp_path)

    exit_code = main(["--data-root", str(tmp_path), "status", str(config_path)])
    lines = [json.loads(line) for line in capsys.readouterr().out.strip().splitlines()]

    assert exit_code == 0
    assert lines == [{"mode": "default", "checkpoint": None}]
    assert not (tmp_path / "checkpoints").exists()
    assert not (tmp_path / "parquet").exists()


def test_cli_status_with_database_creates_no_tables(tmp_path, capsys) -> None:
    """Status against an empty database should not create the status tables."""
    config_path = _write_config(tmp_path)
    database = tmp_path / "indexer.db"
    with config_path.open("a", encoding="utf-8") as config_file:
        config_file.write(f"\n    connection_string: sqlite:///{database}\n")

    exit_code = main(["--data-root", str(tmp_path), "status", str(config_path)])
    lines = [json.loads(line) for line in capsys.readouterr().out.strip().splitlines()]

    engine = create_engine(f"sqlite:///{database}")
    try:
        assert not inspect(engine).has_table("processor_status")
    finally:
        engine.dispose()
    assert exit_code == 0
    assert lines == [{"mode": "default", "checkpoint": None}]


def test_cli_run_reports_unavailable_range(tmp_path, capsys) -> None:
    """A range beyond the archive head should exit non-zero."""
    config_path = _write_config(tmp_path, "    ending_version: 99")

    exit_code = main(["--data-root", str(tmp_path), "run", str(config_path)])
    summary = json.loads(capsys.readouterr().out.strip())

    assert exit_code == 1
    assert summary["status"] == "failed"


def test_cli_invalid_config_exits_non_zero(tmp_path, capsys) -> None:
    """An invalid config should print an error and exit non-zero."""
    config_path = tmp_path / "processor.yaml"
    config_path.write_text("server_config: {}\n", encoding="utf-8")

    exit_code = main(["--data-root", str(tmp_path), "run", str(config_path)])

    assert exit_code == 1
    assert capsys.readouterr().out.startswith("error:")


def test_cli_processors_lists_types(capsys) -> None:
    """CLI processors should list registered processor types."""
    exit_code = main(["processors"])
    output = capsys.readouterr().out.split()

    assert exit_code == 0
    assert "parquet_ans_processor" in output
