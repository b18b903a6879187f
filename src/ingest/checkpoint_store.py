"""Processor checkpoint persistence.

This module stores the last committed version per processor name
(tailing) or backfill alias (backfill). It enables resume behavior
across process restarts.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
import json
import os
from pathlib import Path
from typing import Protocol

from core.constants import (
    BACKFILL_CHECKPOINT_DIR_NAME,
    CHECKPOINTS_DIR_NAME,
    TAILING_CHECKPOINT_DIR_NAME,
)
from core.errors import CheckpointError, CheckpointRegressionError
from core.types import Checkpoint, ProcessorMode
from store.record_payload import checkpoint_from_payload, checkpoint_to_payload


class CheckpointStore(Protocol):
    """Durable checkpoint record keyed by mode and name."""

    def read_checkpoint(self, mode: ProcessorMode, name: str) -> Checkpoint | None:
        """Return the stored checkpoint, or None when absent."""

    def write_checkpoint(self, checkpoint: Checkpoint) -> None:
        """Persist a checkpoint that does not move backwards."""

    def reset_checkpoint(self, mode: ProcessorMode, name: str) -> None:
        """Discard a stored checkpoint."""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_monotonic(existing: Checkpoint | None, checkpoint: Checkpoint) -> None:
    """Reject checkpoint writes that would move progress backwards.

    Raises:
        CheckpointRegressionError: If ``checkpoint`` is behind the stored version.
    """
    if existing is None:
        return
    if checkpoint.last_success_version < existing.last_success_version:
        raise CheckpointRegressionError(
            f"Refusing to move checkpoint '{checkpoint.processor_name}' back from "
            f"{existing.last_success_version} to {checkpoint.last_success_version}. "
            "Check that only one processor instance runs per checkpoint, or set "
            "overwrite_checkpoint to restart from an earlier version."
        )


class FileCheckpointStore:
    """Filesystem-backed checkpoint store."""

    def __init__(self, data_root: Path, create_dirs: bool = True) -> None:
        self._checkpoint_root = data_root / CHECKPOINTS_DIR_NAME
        if create_dirs:
            for mode in ("default", "backfill"):
                self._mode_dir(mode).mkdir(parents=True, exist_ok=True)

    def read_checkpoint(self, mode: ProcessorMode, name: str) -> Checkpoint | None:
        """Read a checkpoint file if present.

        Args:
            mode: Checkpoint namespace.
            name: Processor name or backfill alias.

        Returns:
            Stored checkpoint, or None.

        Raises:
            CheckpointError: If the checkpoint file is unreadable.
        """
        checkpoint_path = self._checkpoint_path(mode, name)
        if not checkpoint_path.exists():
            return None
        try:
            payload = json.loads(checkpoint_path.read_text(encoding="utf-8"))
            return checkpoint_from_payload(payload)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as error:
            raise CheckpointError(
                f"Failed to read checkpoint at {checkpoint_path}: {error}. "
                "Fix or delete the checkpoint file and retry."
            ) from error

    def write_checkpoint(self, checkpoint: Checkpoint) -> None:
        """Atomically replace the checkpoint file.

        Args:
            checkpoint: Checkpoint to persist.

        Raises:
            CheckpointError: If the write fails or moves progress backwards.
        """
        existing = self.read_checkpoint(checkpoint.mode, checkpoint.processor_name)
        ensure_monotonic(existing, checkpoint)
        checkpoint_path = self._checkpoint_path(checkpoint.mode, checkpoint.processor_name)
        temp_path = checkpoint_path.with_suffix(".json.tmp")
        payload = checkpoint_to_payload(replace(checkpoint, updated_at=utc_now()))
        try:
            temp_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
            os.replace(temp_path, checkpoint_path)
        except OSError as error:
            raise CheckpointError(
                f"Failed to write checkpoint at {checkpoint_path}: {error}. "
                "Check write permissions and available disk space."
            ) from error

    def reset_checkpoint(self, mode: ProcessorMode, name: str) -> None:
        """Remove a checkpoint file if present."""
        self._checkpoint_path(mode, name).unlink(missing_ok=True)

    def _mode_dir(self, mode: ProcessorMode) -> Path:
        if mode == "backfill":
            return self._checkpoint_root / BACKFILL_CHECKPOINT_DIR_NAME
        return self._checkpoint_root / TAILING_CHECKPOINT_DIR_NAME

    def _checkpoint_path(self, mode: ProcessorMode, name: str) -> Path:
        if not name or "/" in name or name.startswith("."):
            raise CheckpointError(
                f"Invalid checkpoint name '{name}'. Use a plain processor name or alias."
            )
        return self._mode_dir(mode) / f"{name}.json"
