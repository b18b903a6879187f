"""Sink writer contract.

A sink commits one batch and advances the checkpoint for its end version.
Transient failures raise ``SinkError`` so the coordinator can retry.
"""

from __future__ import annotations

from typing import Protocol

from core.types import Batch, Checkpoint


class SinkWriter(Protocol):
    """Durable batch writer shared by the relational and columnar backends."""

    def commit(self, batch: Batch, checkpoint: Checkpoint) -> None:
        """Write every record of ``batch`` and then persist ``checkpoint``."""

    def close(self) -> None:
        """Release connections and clients."""
