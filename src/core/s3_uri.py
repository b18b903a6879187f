"""S3 URI parsing helpers.

This module centralizes S3 URI parsing for the transaction source and
the columnar sink. It keeps URI validation behavior consistent.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.errors import LedgerflowConfigError

S3_SCHEME = "s3://"


@dataclass(frozen=True)
class S3Location:
    """Parsed S3 location model."""

    bucket: str
    prefix: str


def is_s3_uri(uri: str) -> bool:
    """Return whether a URI uses the ``s3://`` scheme."""
    return uri.startswith(S3_SCHEME)


def parse_s3_uri(uri: str, context: str) -> S3Location:
    """Parse and validate an S3 URI.

    Args:
        uri: URI in format ``s3://bucket/prefix``.
        context: Config field the URI came from, used in error messages.

    Returns:
        Parsed bucket and prefix pair.

    Raises:
        LedgerflowConfigError: If the URI lacks a bucket or prefix.
    """
    stripped_uri = uri.removeprefix(S3_SCHEME)
    if "/" not in stripped_uri:
        _raise_uri_error(uri, context)
    bucket, prefix = stripped_uri.split("/", 1)
    if not bucket or not prefix:
        _raise_uri_error(uri, context)
    return S3Location(bucket=bucket, prefix=prefix)


def _raise_uri_error(uri: str, context: str) -> None:
    raise LedgerflowConfigError(
        f"Invalid S3 URI '{uri}' in {context}: expected s3://bucket/prefix. "
        "Provide both bucket and prefix."
    )
