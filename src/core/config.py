"""Runtime configuration model for Ledgerflow.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from core.constants import DEFAULT_DATA_ROOT, DEFAULT_REQUEST_TIMEOUT_SECONDS
from core.errors import LedgerflowConfigError


@dataclass(frozen=True)
class IndexerConfig:
    """Validated runtime configuration.

    Attributes:
        data_root: Local root directory for file checkpoints and local output.
        s3_region: Optional default AWS region for S3 operations.
        s3_profile: Optional AWS profile for boto3 session initialization.
        s3_endpoint_url: Optional S3-compatible endpoint override.
        request_timeout_seconds: Timeout applied to source fetches and sink commits.
    """

    data_root: Path
    s3_region: str | None
    s3_profile: str | None
    s3_endpoint_url: str | None
    request_timeout_seconds: float

    @classmethod
    def from_env(cls) -> "IndexerConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            LedgerflowConfigError: If environment values are invalid.
        """
        data_root_value = os.getenv("LEDGERFLOW_DATA_ROOT", str(DEFAULT_DATA_ROOT))
        timeout_value = os.getenv(
            "LEDGERFLOW_REQUEST_TIMEOUT_SECS", str(DEFAULT_REQUEST_TIMEOUT_SECONDS)
        )
        return cls(
            data_root=Path(data_root_value).expanduser().resolve(),
            s3_region=os.getenv("LEDGERFLOW_S3_REGION"),
            s3_profile=os.getenv("LEDGERFLOW_S3_PROFILE"),
            s3_endpoint_url=os.getenv("LEDGERFLOW_S3_ENDPOINT_URL"),
            request_timeout_seconds=_parse_timeout(timeout_value),
        )


def _parse_timeout(raw_value: str) -> float:
    """Parse the request timeout environment value.

    Args:
        raw_value: Raw string from environment.

    Returns:
        Parsed positive timeout in seconds.

    Raises:
        LedgerflowConfigError: If value is not a positive number.
    """
    try:
        timeout_seconds = float(raw_value)
    except ValueError as error:
        raise LedgerflowConfigError(
            "Invalid LEDGERFLOW_REQUEST_TIMEOUT_SECS value: "
            f"expected a number, got '{raw_value}'. "
            "Set LEDGERFLOW_REQUEST_TIMEOUT_SECS to a positive number of seconds."
        ) from error
    if timeout_seconds <= 0:
        raise LedgerflowConfigError(
            f"Invalid LEDGERFLOW_REQUEST_TIMEOUT_SECS value {raw_value}: must be positive."
        )
    return timeout_seconds
