"""Ledgerflow CLI entry points.

This module exposes commands to run a processor and inspect its progress.
It maps argparse commands onto the processor builder.
"""

from __future__ import annotations

import argparse
import contextlib
from dataclasses import replace
import json
from pathlib import Path
import signal
from typing import Any, Iterator, Sequence

from core.config import IndexerConfig
from core.errors import LedgerflowError
from core.logging_config import get_logger
from core.processor_config import load_processor_config
from extractors.registry import supported_processor_types
from ingest.pipeline import PipelineCoordinator
from ingest.processor_builder import (
    build_components,
    build_coordinator,
    open_checkpoint_store,
    read_run_checkpoints,
)
from store.record_payload import checkpoint_to_payload

_LOGGER = get_logger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(prog="ledgerflow", description="Ledgerflow indexer CLI")
    parser.add_argument("--data-root", help="Override LEDGERFLOW_DATA_ROOT for this command")
    subparsers = parser.add_subparsers(dest="command", required=True)
    run_parser = subparsers.add_parser("run", help="Run a processor until it stops")
    run_parser.add_argument("config", help="Processor YAML config path")
    status_parser = subparsers.add_parser("status", help="Print stored checkpoints")
    status_parser.add_argument("config", help="Processor YAML config path")
    subparsers.add_parser("processors", help="List supported processor types")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the Ledgerflow CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "processors":
        for processor_type in supported_processor_types():
            print(processor_type)
        return EXIT_SUCCESS
    try:
        runtime = _build_runtime(args.data_root)
        if args.command == "run":
            return _run_processor_command(args.config, runtime)
        if args.command == "status":
            return _run_status_command(args.config, runtime)
    except LedgerflowError as error:
        _LOGGER.error("command_failed", command=args.command, error=str(error))
        print(f"error: {error}")
        return EXIT_FAILURE
    parser.error(f"Unsupported command: {args.command}")
    return 2


def _build_runtime(data_root: str | None) -> IndexerConfig:
    """Build runtime config with optional data-root override."""
    config = IndexerConfig.from_env()
    if data_root:
        config = replace(config, data_root=Path(data_root).expanduser().resolve())
    return config


def _run_processor_command(config_path: str, runtime: IndexerConfig) -> int:
    """Handle run command.

    Args:
        config_path: Processor YAML config path.
        runtime: Runtime config.

    Returns:
        Exit code derived from the run status.
    """
    processor_config = load_processor_config(config_path)
    components = build_components(processor_config, runtime)
    try:
        coordinator = build_coordinator(processor_config, runtime, components)
        with _shutdown_on_signals(coordinator):
            result = coordinator.run()
    finally:
        components.close()
    print(
        json.dumps(
            {
                "status": result.status,
                "processor": result.processor_name,
                "starting_version": result.starting_version,
                "last_committed_version": result.last_committed_version,
                "batches_committed": result.batches_committed,
                "transactions_processed": result.transactions_processed,
                "extraction_failures": result.extraction_failures,
                "error": result.error,
            },
            sort_keys=True,
        )
    )
    if result.status == "success":
        return EXIT_SUCCESS
    if result.status == "cancelled":
        return EXIT_CANCELLED
    return EXIT_FAILURE


def _run_status_command(config_path: str, runtime: IndexerConfig) -> int:
    """Handle status command.

    Args:
        config_path: Processor YAML config path.
        runtime: Runtime config.

    Returns:
        Exit code.
    """
    processor_config = load_processor_config(config_path)
    with open_checkpoint_store(processor_config, runtime) as checkpoint_store:
        checkpoints = read_run_checkpoints(processor_config, checkpoint_store)
    for mode, checkpoint in checkpoints.items():
        payload: dict[str, Any] = {"mode": mode, "checkpoint": None}
        if checkpoint is not None:
            payload["checkpoint"] = checkpoint_to_payload(checkpoint)
        print(json.dumps(payload, sort_keys=True))
    return EXIT_SUCCESS


@contextlib.contextmanager
def _shutdown_on_signals(coordinator: PipelineCoordinator) -> Iterator[None]:
    """Route SIGINT and SIGTERM to a graceful coordinator shutdown."""

    def _handle(signal_number: int, frame: object) -> None:
        _LOGGER.info("shutdown_signal_received", signal=signal.Signals(signal_number).name)
        coordinator.request_shutdown()

    previous: dict[int, Any] = {}
    for signal_number in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[signal_number] = signal.signal(signal_number, _handle)
        except ValueError:
            # not on the main thread
            continue
    try:
        yield
    finally:
        for signal_number, handler in previous.items():
            signal.signal(signal_number, handler)
