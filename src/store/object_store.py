"""Object store helpers for columnar output.

This module encapsulates boto3 client creation and object writes.
It is shared by the parquet sink and the S3 transaction source.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol

from core.config import IndexerConfig
from core.errors import LedgerflowDependencyError, SinkError


def create_s3_client(config: IndexerConfig) -> Any:
    """Create a boto3 S3 client with request timeouts.

    Args:
        config: Runtime config with optional session settings.

    Returns:
        Boto3 S3 client.

    Raises:
        LedgerflowDependencyError: If boto3 is missing.
    """
    try:
        import boto3
        from botocore.config import Config
    except ImportError as error:
        raise LedgerflowDependencyError(
            "S3 support requires boto3, but it is not installed. "
            "Install boto3 to read or write s3:// locations."
        ) from error
    session_kwargs: dict[str, str] = {}
    if config.s3_profile:
        session_kwargs["profile_name"] = config.s3_profile
    if config.s3_region:
        session_kwargs["region_name"] = config.s3_region
    session = boto3.session.Session(**session_kwargs)
    client_config = Config(
        connect_timeout=config.request_timeout_seconds,
        read_timeout=config.request_timeout_seconds,
        retries={"max_attempts": 1},
    )
    client_kwargs: dict[str, Any] = {"config": client_config}
    if config.s3_endpoint_url:
        client_kwargs["endpoint_url"] = config.s3_endpoint_url
    return session.client("s3", **client_kwargs)


class ObjectStore(Protocol):
    """Minimal key/value object store used for immutable file output."""

    def put_bytes(self, key: str, payload: bytes) -> str:
        """Write an object and return its URI."""

    def delete(self, key: str) -> None:
        """Remove an object; missing objects are ignored."""


class LocalObjectStore:
    """Object store rooted at a local directory."""

    def __init__(self, root: Path) -> None:
        self._root = root

    def put_bytes(self, key: str, payload: bytes) -> str:
        """Write an object file atomically.

        Raises:
            SinkError: If the write fails.
        """
        object_path = self._root / key
        temp_path = object_path.with_name(object_path.name + ".tmp")
        try:
            object_path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_bytes(payload)
            temp_path.replace(object_path)
        except OSError as error:
            raise SinkError(
                f"Failed to write object at {object_path}: {error}. "
                "Check write permissions and available disk space."
            ) from error
        return str(object_path)

    def delete(self, key: str) -> None:
        try:
            (self._root / key).unlink(missing_ok=True)
        except OSError as error:
            raise SinkError(f"Failed to delete object at {self._root / key}: {error}") from error


class S3ObjectStore:
    """Object store writing under an S3 bucket and key prefix."""

    def __init__(self, s3_client: Any, bucket: str, prefix: str = "") -> None:
        self._client = s3_client
        self._bucket = bucket
        self._prefix = prefix.strip("/")

    def put_bytes(self, key: str, payload: bytes) -> str:
        """Upload an object.

        Raises:
            SinkError: If the upload fails.
        """
        object_key = self._object_key(key)
        try:
            self._client.put_object(Bucket=self._bucket, Key=object_key, Body=payload)
        except Exception as error:
            raise SinkError(
                f"Failed to upload s3://{self._bucket}/{object_key}: {error}. "
                "Check AWS credentials and bucket permissions."
            ) from error
        return f"s3://{self._bucket}/{object_key}"

    def delete(self, key: str) -> None:
        object_key = self._object_key(key)
        try:
            self._client.delete_object(Bucket=self._bucket, Key=object_key)
        except Exception as error:
            raise SinkError(f"Failed to delete s3://{self._bucket}/{object_key}: {error}") from error

    def _object_key(self, key: str) -> str:
        if not self._prefix:
            return key
        return f"{self._prefix}/{key}"
