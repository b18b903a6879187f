"""Unit tests for S3 URI parsing."""

from __future__ import annotations

import pytest

from core.errors import LedgerflowConfigError
from core.s3_uri import is_s3_uri, parse_s3_uri


def test_parse_s3_uri_splits_bucket_and_prefix() -> None:
    """Bucket and prefix should be split on the first slash."""
    location = parse_s3_uri("s3://archive/mainnet/v1", "transaction_stream_config")

    assert (location.bucket, location.prefix) == ("archive", "mainnet/v1")
    assert is_s3_uri("s3://archive/mainnet")


def test_parse_s3_uri_requires_prefix() -> None:
    """A bare bucket URI should be rejected."""
    with pytest.raises(LedgerflowConfigError):
        parse_s3_uri("s3://archive", "transaction_stream_config")
