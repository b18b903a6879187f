"""Ledgerflow exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each pipeline stage raises a specific error type so the coordinator can
tell transient failures from fatal ones.
"""

from __future__ import annotations


class LedgerflowError(Exception):
    """Base exception for all Ledgerflow failures."""


class LedgerflowConfigError(LedgerflowError):
    """Raised for invalid runtime or processor configuration."""


class LedgerflowDependencyError(LedgerflowError):
    """Raised when an optional runtime dependency is missing."""


class RangeUnavailableError(LedgerflowError):
    """Raised when the source cannot serve the requested version range."""


class SourceFormatError(LedgerflowError):
    """Raised when a transaction archive entry cannot be decoded."""


class OrderingViolationError(LedgerflowError):
    """Raised when the source delivers out-of-order or gapped versions."""


class SourceTransportError(LedgerflowError):
    """Raised for transient transaction source failures."""


class ExtractionError(LedgerflowError):
    """Raised when a transaction cannot be mapped into records.

    Attributes:
        version: Version of the transaction that failed.
        extractor_name: Extractor that failed, when known.
    """

    def __init__(self, message: str, version: int, extractor_name: str | None = None) -> None:
        super().__init__(message)
        self.version = version
        self.extractor_name = extractor_name


class SinkError(LedgerflowError):
    """Raised for transient sink write failures."""


class SinkExhaustedError(LedgerflowError):
    """Raised when sink write retries exceed the configured budget."""


class CheckpointError(LedgerflowError):
    """Raised for checkpoint read, write, or monotonicity failures."""


class CheckpointRegressionError(CheckpointError):
    """Raised when a checkpoint write would move progress backwards."""
