"""Typed processor configuration parsing.

This module loads and validates the YAML file that describes one processor:
which extractor set and sink to run, the transaction stream, the operating
mode, and the database target. Unknown keys are rejected so typos fail fast.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Mapping, Sequence, cast

from core.constants import (
    DEFAULT_CHANNEL_SIZE,
    DEFAULT_DB_POOL_SIZE,
    DEFAULT_EXTRACT_WORKERS,
    DEFAULT_EXTRACTION_FAILURE_POLICY,
    DEFAULT_FETCH_MAX_RETRIES,
    DEFAULT_FETCH_RETRY_DELAY_MS,
    DEFAULT_HEALTH_CHECK_PORT,
    DEFAULT_MAX_BUFFER_SIZE,
    DEFAULT_SINK_MAX_RETRIES,
    DEFAULT_SINK_RETRY_DELAY_MS,
    DEFAULT_STARTING_VERSION,
    DEFAULT_UPLOAD_INTERVAL_SECONDS,
    MAX_UNSIGNED_64,
)
from core.errors import LedgerflowConfigError, LedgerflowDependencyError
from core.retry import RetryPolicy
from core.types import ExtractionFailurePolicy, ProcessorMode, ProcessorRunSpec

DbConfigType = Literal["postgres_config", "parquet_config"]
SUPPORTED_DB_CONFIG_TYPES: tuple[DbConfigType, ...] = ("postgres_config", "parquet_config")
SUPPORTED_PROCESSOR_MODES: tuple[ProcessorMode, ...] = ("default", "backfill")
SUPPORTED_FAILURE_POLICIES: tuple[ExtractionFailurePolicy, ...] = ("skip", "halt")


@dataclass(frozen=True)
class ProcessorSettings:
    """Extractor selection, buffering thresholds, and sink retry budget."""

    processor_type: str
    channel_size: int = DEFAULT_CHANNEL_SIZE
    max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE
    upload_interval_seconds: float = DEFAULT_UPLOAD_INTERVAL_SECONDS
    extract_workers: int = DEFAULT_EXTRACT_WORKERS
    tables_to_write: tuple[str, ...] = ()
    extraction_failure_policy: ExtractionFailurePolicy = "skip"
    sink_retry: RetryPolicy = RetryPolicy()


@dataclass(frozen=True)
class TransactionStreamSettings:
    """Transaction stream address and fetch retry budget.

    Attributes:
        address: Local path or ``s3://`` URI of the transaction archive.
        auth_token: Stream auth token, passed through to the transport.
        request_name_header: Request identifier, passed through to the transport.
        poll_interval_seconds: When set, tailing runs re-fetch after the stream
            is exhausted instead of stopping.
        fetch_retry: Retry budget for transient fetch failures.
    """

    address: str
    auth_token: str | None = None
    request_name_header: str | None = None
    poll_interval_seconds: float | None = None
    fetch_retry: RetryPolicy = RetryPolicy(
        max_retries=DEFAULT_FETCH_MAX_RETRIES,
        initial_delay_ms=DEFAULT_FETCH_RETRY_DELAY_MS,
    )


@dataclass(frozen=True)
class ProcessorModeSettings:
    """Tailing or backfill mode and version bounds."""

    mode: ProcessorMode = "default"
    initial_starting_version: int = DEFAULT_STARTING_VERSION
    ending_version: int | None = None
    overwrite_checkpoint: bool = False
    backfill_alias: str | None = None


@dataclass(frozen=True)
class DbSettings:
    """Sink backend selection and connection target.

    Attributes:
        db_type: ``postgres_config`` or ``parquet_config``.
        connection_string: Database URL; optional for parquet, where it hosts
            checkpoints when given.
        bucket_name: Object store bucket for parquet output; local output
            under the data root when omitted.
        bucket_root: Key prefix (or local sub-directory) for parquet output.
        pool_size: Database connection pool size.
    """

    db_type: DbConfigType
    connection_string: str | None = None
    bucket_name: str | None = None
    bucket_root: str | None = None
    pool_size: int = DEFAULT_DB_POOL_SIZE


@dataclass(frozen=True)
class IndexerProcessorConfig:
    """Validated processor configuration root."""

    health_check_port: int
    processor: ProcessorSettings
    transaction_stream: TransactionStreamSettings
    processor_mode: ProcessorModeSettings
    db: DbSettings

    @property
    def processor_name(self) -> str:
        return self.processor.processor_type

    def to_run_spec(self) -> ProcessorRunSpec:
        """Build the run spec consumed by the pipeline coordinator."""
        mode = self.processor_mode
        return ProcessorRunSpec(
            processor_name=self.processor_name,
            mode=mode.mode,
            starting_version=mode.initial_starting_version,
            ending_version=mode.ending_version,
            overwrite_checkpoint=mode.overwrite_checkpoint,
            backfill_alias=mode.backfill_alias,
        )


def load_processor_config(config_path: str) -> IndexerProcessorConfig:
    """Load and validate a YAML processor config from disk.

    Args:
        config_path: File path to YAML config.

    Returns:
        Fully validated processor config.

    Raises:
        LedgerflowDependencyError: If PyYAML is unavailable.
        LedgerflowConfigError: If file is invalid or schema checks fail.
    """
    payload = _load_yaml_payload(config_path)
    return parse_processor_config(payload)


def parse_processor_config(payload: object) -> IndexerProcessorConfig:
    """Validate an already-decoded config payload.

    Args:
        payload: Decoded YAML or JSON object.

    Returns:
        Fully validated processor config.

    Raises:
        LedgerflowConfigError: If schema checks fail.
    """
    root_mapping = _expect_mapping(payload, "config root")
    _validate_keys(root_mapping, {"health_check_port", "server_config"}, "config root")
    health_check_port = _optional_int(
        root_mapping, "health_check_port", "config root", DEFAULT_HEALTH_CHECK_PORT
    )
    server_mapping = _expect_mapping(root_mapping.get("server_config"), "server_config")
    _validate_keys(
        server_mapping,
        {"processor_config", "transaction_stream_config", "processor_mode", "db_config"},
        "server_config",
    )
    processor = _parse_processor_settings(server_mapping.get("processor_config"))
    stream = _parse_stream_settings(server_mapping.get("transaction_stream_config"))
    mode = _parse_mode_settings(server_mapping.get("processor_mode"))
    db = _parse_db_settings(server_mapping.get("db_config"))
    return IndexerProcessorConfig(
        health_check_port=health_check_port,
        processor=processor,
        transaction_stream=stream,
        processor_mode=mode,
        db=db,
    )


def _load_yaml_payload(config_path: str) -> object:
    try:
        import yaml  # type: ignore[import-untyped]
    except ImportError as error:  # pragma: no cover - dependency failure
        raise LedgerflowDependencyError(
            "YAML config support requires PyYAML. Install with 'pip install pyyaml'."
        ) from error
    config_file = Path(config_path).expanduser().resolve()
    if not config_file.exists():
        raise LedgerflowConfigError(
            f"Processor config does not exist at {config_file}. Provide a valid YAML file path."
        )
    try:
        payload = cast(object, yaml.safe_load(config_file.read_text(encoding="utf-8")))
    except OSError as error:
        raise LedgerflowConfigError(
            f"Failed to read processor config at {config_file}: {error}. "
            "Check file permissions and retry."
        ) from error
    except yaml.YAMLError as error:
        raise LedgerflowConfigError(
            f"Failed to parse YAML processor config at {config_file}: {error}. "
            "Fix YAML syntax and retry."
        ) from error
    if payload is None:
        raise LedgerflowConfigError(
            f"Processor config at {config_file} is empty. Define 'server_config'."
        )
    return payload


def _parse_processor_settings(raw_value: object) -> ProcessorSettings:
    context = "processor_config"
    mapping = _expect_mapping(raw_value, context)
    _validate_keys(
        mapping,
        {
            "type",
            "channel_size",
            "max_buffer_size",
            "upload_interval",
            "extract_workers",
            "tables_to_write",
            "extraction_failure_policy",
            "max_sink_retries",
            "sink_retry_delay_ms",
        },
        context,
    )
    sink_retry = RetryPolicy(
        max_retries=_optional_int(mapping, "max_sink_retries", context, DEFAULT_SINK_MAX_RETRIES),
        initial_delay_ms=_optional_float(
            mapping, "sink_retry_delay_ms", context, DEFAULT_SINK_RETRY_DELAY_MS
        ),
    )
    return ProcessorSettings(
        processor_type=_required_string(mapping, "type", context),
        channel_size=_positive_int(mapping, "channel_size", context, DEFAULT_CHANNEL_SIZE),
        max_buffer_size=_positive_int(
            mapping, "max_buffer_size", context, DEFAULT_MAX_BUFFER_SIZE
        ),
        upload_interval_seconds=_positive_float(
            mapping, "upload_interval", context, DEFAULT_UPLOAD_INTERVAL_SECONDS
        ),
        extract_workers=_positive_int(
            mapping, "extract_workers", context, DEFAULT_EXTRACT_WORKERS
        ),
        tables_to_write=_optional_string_tuple(mapping, "tables_to_write", context),
        extraction_failure_policy=_parse_failure_policy(mapping, context),
        sink_retry=sink_retry,
    )


def _parse_stream_settings(raw_value: object) -> TransactionStreamSettings:
    context = "transaction_stream_config"
    mapping = _expect_mapping(raw_value, context)
    _validate_keys(
        mapping,
        {
            "indexer_grpc_data_service_address",
            "auth_token",
            "request_name_header",
            "poll_interval_secs",
            "max_fetch_retries",
            "fetch_retry_delay_ms",
        },
        context,
    )
    poll_interval = None
    if mapping.get("poll_interval_secs") is not None:
        poll_interval = _positive_float(mapping, "poll_interval_secs", context, 1.0)
    fetch_retry = RetryPolicy(
        max_retries=_optional_int(
            mapping, "max_fetch_retries", context, DEFAULT_FETCH_MAX_RETRIES
        ),
        initial_delay_ms=_optional_float(
            mapping, "fetch_retry_delay_ms", context, DEFAULT_FETCH_RETRY_DELAY_MS
        ),
    )
    return TransactionStreamSettings(
        address=_required_string(mapping, "indexer_grpc_data_service_address", context),
        auth_token=_optional_string(mapping, "auth_token", context),
        request_name_header=_optional_string(mapping, "request_name_header", context),
        poll_interval_seconds=poll_interval,
        fetch_retry=fetch_retry,
    )


def _parse_mode_settings(raw_value: object) -> ProcessorModeSettings:
    context = "processor_mode"
    mapping = _expect_mapping(raw_value, context)
    _validate_keys(
        mapping,
        {
            "type",
            "backfill_alias",
            "initial_starting_version",
            "ending_version",
            "overwrite_checkpoint",
        },
        context,
    )
    raw_mode = _required_string(mapping, "type", context)
    if raw_mode not in SUPPORTED_PROCESSOR_MODES:
        raise LedgerflowConfigError(
            f"Unsupported processor_mode type '{raw_mode}'. "
            f"Use one of: {', '.join(SUPPORTED_PROCESSOR_MODES)}."
        )
    mode = cast(ProcessorMode, raw_mode)
    starting_version = _version(mapping, "initial_starting_version", context)
    ending_version = None
    if mapping.get("ending_version") is not None:
        ending_version = _version(mapping, "ending_version", context)
    backfill_alias = _optional_string(mapping, "backfill_alias", context)
    if mode == "backfill" and backfill_alias is None:
        raise LedgerflowConfigError(
            "Backfill mode requires processor_mode.backfill_alias. "
            "Set a unique alias so backfill progress is tracked separately."
        )
    if mode == "default" and backfill_alias is not None:
        raise LedgerflowConfigError(
            "processor_mode.backfill_alias is only valid with type 'backfill'."
        )
    if ending_version is not None and ending_version < starting_version:
        raise LedgerflowConfigError(
            f"processor_mode.ending_version {ending_version} is lower than "
            f"initial_starting_version {starting_version}."
        )
    return ProcessorModeSettings(
        mode=mode,
        initial_starting_version=starting_version,
        ending_version=ending_version,
        overwrite_checkpoint=_optional_bool(mapping, "overwrite_checkpoint", context),
        backfill_alias=backfill_alias,
    )


def _parse_db_settings(raw_value: object) -> DbSettings:
    context = "db_config"
    mapping = _expect_mapping(raw_value, context)
    _validate_keys(
        mapping,
        {"type", "connection_string", "bucket_name", "bucket_root", "db_pool_size"},
        context,
    )
    raw_type = _required_string(mapping, "type", context)
    if raw_type not in SUPPORTED_DB_CONFIG_TYPES:
        raise LedgerflowConfigError(
            f"Unsupported db_config type '{raw_type}'. "
            f"Use one of: {', '.join(SUPPORTED_DB_CONFIG_TYPES)}."
        )
    db_type = cast(DbConfigType, raw_type)
    connection_string = _optional_string(mapping, "connection_string", context)
    if db_type == "postgres_config" and connection_string is None:
        raise LedgerflowConfigError(
            "db_config type 'postgres_config' requires connection_string."
        )
    return DbSettings(
        db_type=db_type,
        connection_string=connection_string,
        bucket_name=_optional_string(mapping, "bucket_name", context),
        bucket_root=_optional_string(mapping, "bucket_root", context),
        pool_size=_positive_int(mapping, "db_pool_size", context, DEFAULT_DB_POOL_SIZE),
    )


def _parse_failure_policy(
    mapping: Mapping[str, object], context: str
) -> ExtractionFailurePolicy:
    raw_policy = _optional_string(mapping, "extraction_failure_policy", context)
    if raw_policy is None:
        return cast(ExtractionFailurePolicy, DEFAULT_EXTRACTION_FAILURE_POLICY)
    if raw_policy not in SUPPORTED_FAILURE_POLICIES:
        raise LedgerflowConfigError(
            f"Unsupported {context}.extraction_failure_policy '{raw_policy}'. "
            f"Use one of: {', '.join(SUPPORTED_FAILURE_POLICIES)}."
        )
    return cast(ExtractionFailurePolicy, raw_policy)


def _expect_mapping(value: object, context: str) -> Mapping[str, object]:
    if value is None:
        raise LedgerflowConfigError(f"Processor config is missing required section '{context}'.")
    if isinstance(value, Mapping):
        normalized_mapping = {}
        for key, payload in value.items():
            if not isinstance(key, str):
                raise LedgerflowConfigError(
                    f"Invalid {context}: expected string keys, got {type(key).__name__}."
                )
            normalized_mapping[key] = payload
        return normalized_mapping
    raise LedgerflowConfigError(
        f"Invalid {context}: expected object mapping, got {type(value).__name__}."
    )


def _validate_keys(mapping: Mapping[str, object], allowed_keys: set[str], context: str) -> None:
    unknown_keys = sorted(set(mapping) - allowed_keys)
    if unknown_keys:
        raise LedgerflowConfigError(f"{context} contains unknown fields: {', '.join(unknown_keys)}.")


def _required_string(mapping: Mapping[str, object], field_name: str, context: str) -> str:
    value = _optional_string(mapping, field_name, context)
    if value is None:
        raise LedgerflowConfigError(f"{context}.{field_name} is required and must be a string.")
    return value


def _optional_string(mapping: Mapping[str, object], field_name: str, context: str) -> str | None:
    raw_value = mapping.get(field_name)
    if raw_value is None:
        return None
    if isinstance(raw_value, str):
        normalized_value = raw_value.strip()
        return normalized_value if normalized_value else None
    raise LedgerflowConfigError(f"{context}.{field_name} must be a string when provided.")


def _optional_string_tuple(
    mapping: Mapping[str, object], field_name: str, context: str
) -> tuple[str, ...]:
    raw_value = mapping.get(field_name)
    if raw_value is None:
        return ()
    if not isinstance(raw_value, Sequence) or isinstance(raw_value, (str, bytes, bytearray)):
        raise LedgerflowConfigError(f"{context}.{field_name} must be a list of strings.")
    values: list[str] = []
    for item in raw_value:
        if not isinstance(item, str) or not item.strip():
            raise LedgerflowConfigError(f"{context}.{field_name} must be a list of strings.")
        values.append(item.strip())
    return tuple(values)


def _optional_int(
    mapping: Mapping[str, object], field_name: str, context: str, default: int
) -> int:
    raw_value = mapping.get(field_name)
    if raw_value is None:
        return default
    if isinstance(raw_value, bool) or not isinstance(raw_value, int) or raw_value < 0:
        raise LedgerflowConfigError(
            f"{context}.{field_name} must be a non-negative integer, got {raw_value!r}."
        )
    return raw_value


def _positive_int(mapping: Mapping[str, object], field_name: str, context: str, default: int) -> int:
    value = _optional_int(mapping, field_name, context, default)
    if value <= 0:
        raise LedgerflowConfigError(f"{context}.{field_name} must be positive, got {value}.")
    return value


def _optional_float(
    mapping: Mapping[str, object], field_name: str, context: str, default: float
) -> float:
    raw_value = mapping.get(field_name)
    if raw_value is None:
        return default
    if isinstance(raw_value, bool) or not isinstance(raw_value, (int, float)) or raw_value < 0:
        raise LedgerflowConfigError(
            f"{context}.{field_name} must be a non-negative number, got {raw_value!r}."
        )
    return float(raw_value)


def _positive_float(
    mapping: Mapping[str, object], field_name: str, context: str, default: float
) -> float:
    value = _optional_float(mapping, field_name, context, default)
    if value <= 0:
        raise LedgerflowConfigError(f"{context}.{field_name} must be positive, got {value}.")
    return value


def _optional_bool(mapping: Mapping[str, object], field_name: str, context: str) -> bool:
    raw_value = mapping.get(field_name)
    if raw_value is None:
        return False
    if not isinstance(raw_value, bool):
        raise LedgerflowConfigError(f"{context}.{field_name} must be true or false.")
    return raw_value


def _version(mapping: Mapping[str, object], field_name: str, context: str) -> int:
    value = _optional_int(mapping, field_name, context, DEFAULT_STARTING_VERSION)
    if value > MAX_UNSIGNED_64:
        raise LedgerflowConfigError(
            f"{context}.{field_name} {value} exceeds the unsigned 64-bit version range."
        )
    return value
