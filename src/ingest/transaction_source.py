"""Transaction sources for the pipeline.

This module defines the ordered source contract and a file-backed source
that reads JSONL transaction archives from local paths or S3 prefixes.
Each archive line is ``{"version", "timestamp", "success", "payload"}``.
"""

from __future__ import annotations

from datetime import datetime, timezone
import json
from pathlib import Path
from typing import Any, Iterator, Protocol

from core.config import IndexerConfig
from core.constants import TRANSACTION_FILE_EXTENSION
from core.errors import RangeUnavailableError, SourceFormatError, SourceTransportError
from core.s3_uri import S3Location, is_s3_uri, parse_s3_uri
from core.types import Transaction
from store.object_store import create_s3_client


class TransactionSource(Protocol):
    """Ordered, gap-free, resumable transaction sequence."""

    def fetch(
        self, starting_version: int, ending_version: int | None = None
    ) -> Iterator[Transaction]:
        """Yield transactions from ``starting_version`` through ``ending_version``.

        Raises:
            RangeUnavailableError: If the range cannot be served.
            SourceTransportError: If the transport fails; re-fetch to resume.
        """


class FileTransactionSource:
    """Source reading JSONL transaction archives.

    Archives are read in sorted name order and must hold consecutive
    versions. An S3 address is listed once per ``fetch`` so archives
    appended while tailing are picked up by the next fetch.
    """

    def __init__(self, address: str, config: IndexerConfig, s3_client: Any | None = None) -> None:
        self._address = address
        self._config = config
        self._s3_client = s3_client
        self._location: S3Location | None = None
        if is_s3_uri(address):
            self._location = parse_s3_uri(address, "transaction_stream_config")

    def fetch(
        self, starting_version: int, ending_version: int | None = None
    ) -> Iterator[Transaction]:
        """Yield transactions in the requested inclusive range.

        Args:
            starting_version: First version to yield.
            ending_version: Optional last version to yield.

        Yields:
            Transactions in version order.

        Raises:
            RangeUnavailableError: If ``starting_version`` was pruned from the
                archive, or ``ending_version`` is beyond the archive head.
            SourceTransportError: If archive files cannot be read.
            SourceFormatError: If an archive line cannot be decoded.
        """
        last_version: int | None = None
        for transaction in self._iter_archive():
            if transaction.version < starting_version:
                continue
            if last_version is None and transaction.version > starting_version:
                raise RangeUnavailableError(
                    f"Version {starting_version} is not available from {self._address}: "
                    f"the archive starts at {transaction.version}. "
                    "Choose a later starting version."
                )
            if ending_version is not None and transaction.version > ending_version:
                return
            last_version = transaction.version
            yield transaction
        if ending_version is not None and (last_version is None or last_version < ending_version):
            raise RangeUnavailableError(
                f"Version {ending_version} is beyond the head of {self._address}. "
                "Lower ending_version or wait for the archive to catch up."
            )

    def _iter_archive(self) -> Iterator[Transaction]:
        if self._location is not None:
            yield from self._iter_s3_archive(self._location)
            return
        yield from self._iter_local_archive(Path(self._address).expanduser())

    def _iter_local_archive(self, source_path: Path) -> Iterator[Transaction]:
        if not source_path.exists():
            raise RangeUnavailableError(
                f"Transaction archive {source_path} does not exist. "
                "Set indexer_grpc_data_service_address to an existing file or directory."
            )
        if source_path.is_file():
            archive_files = [source_path]
        else:
            archive_files = sorted(
                path
                for path in source_path.rglob(f"*{TRANSACTION_FILE_EXTENSION}")
                if path.is_file()
            )
        for archive_file in archive_files:
            try:
                with archive_file.open(encoding="utf-8") as handle:
                    for line_number, line in enumerate(handle, 1):
                        if line.strip():
                            yield parse_transaction_line(str(archive_file), line, line_number)
            except OSError as error:
                raise SourceTransportError(
                    f"Failed to read transaction archive {archive_file}: {error}"
                ) from error

    def _iter_s3_archive(self, location: S3Location) -> Iterator[Transaction]:
        s3_client = self._client()
        for key in self._list_s3_keys(s3_client, location):
            source_uri = f"s3://{location.bucket}/{key}"
            try:
                response = s3_client.get_object(Bucket=location.bucket, Key=key)
                body = response["Body"].read().decode("utf-8")
            except Exception as error:
                raise SourceTransportError(
                    f"Failed to download transaction archive {source_uri}: {error}"
                ) from error
            for line_number, line in enumerate(body.splitlines(), 1):
                if line.strip():
                    yield parse_transaction_line(source_uri, line, line_number)

    def _list_s3_keys(self, s3_client: Any, location: S3Location) -> list[str]:
        try:
            paginator = s3_client.get_paginator("list_objects_v2")
            keys = [
                obj["Key"]
                for page in paginator.paginate(Bucket=location.bucket, Prefix=location.prefix)
                for obj in page.get("Contents", [])
                if obj["Key"].endswith(TRANSACTION_FILE_EXTENSION)
            ]
        except Exception as error:
            raise SourceTransportError(
                f"Failed to list transaction archives under {self._address}: {error}"
            ) from error
        return sorted(keys)

    def _client(self) -> Any:
        if self._s3_client is None:
            self._s3_client = create_s3_client(self._config)
        return self._s3_client


def parse_transaction_line(source_uri: str, line: str, line_number: int) -> Transaction:
    """Parse one archive line into a transaction.

    Args:
        source_uri: Archive file or object URI, for error messages.
        line: Raw JSON text line.
        line_number: One-based line number.

    Returns:
        Parsed transaction.

    Raises:
        SourceFormatError: If the line is invalid.
    """
    try:
        payload = json.loads(line)
    except json.JSONDecodeError as error:
        raise SourceFormatError(
            f"Failed to parse transaction at {source_uri}:{line_number}: {error.msg}. "
            "Repair the archive and retry."
        ) from error
    if not isinstance(payload, dict):
        raise SourceFormatError(
            f"Invalid transaction at {source_uri}:{line_number}: expected a JSON object."
        )
    version = payload.get("version")
    if isinstance(version, str) and version.isdigit():
        version = int(version)
    if isinstance(version, bool) or not isinstance(version, int) or version < 0:
        raise SourceFormatError(
            f"Invalid transaction at {source_uri}:{line_number}: "
            "expected non-negative integer field 'version'."
        )
    body = payload.get("payload", {})
    if not isinstance(body, dict):
        raise SourceFormatError(
            f"Invalid transaction at {source_uri}:{line_number}: 'payload' must be an object."
        )
    return Transaction(
        version=version,
        timestamp=_parse_timestamp(payload.get("timestamp"), source_uri, line_number),
        success=bool(payload.get("success", True)),
        payload=body,
    )


def _parse_timestamp(raw_value: object, source_uri: str, line_number: int) -> datetime:
    """Parse epoch seconds or an ISO-8601 string into a UTC datetime."""
    try:
        if isinstance(raw_value, (int, float)) and not isinstance(raw_value, bool):
            return datetime.fromtimestamp(raw_value, tz=timezone.utc)
        if isinstance(raw_value, str):
            parsed = datetime.fromisoformat(raw_value.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                return parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
    except (OverflowError, OSError, ValueError) as error:
        raise SourceFormatError(
            f"Invalid timestamp at {source_uri}:{line_number}: {error}."
        ) from error
    raise SourceFormatError(
        f"Invalid transaction at {source_uri}:{line_number}: "
        "expected 'timestamp' as epoch seconds or ISO-8601 text."
    )
