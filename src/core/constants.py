"""Core constants used across Ledgerflow modules.

This module centralizes non-domain-specific constants.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_DATA_ROOT = Path(".ledgerflow")
CHECKPOINTS_DIR_NAME = "checkpoints"
TAILING_CHECKPOINT_DIR_NAME = "processor_status"
BACKFILL_CHECKPOINT_DIR_NAME = "backfill_processor_status"
PROCESSOR_STATUS_TABLE_NAME = "processor_status"
BACKFILL_STATUS_TABLE_NAME = "backfill_processor_status"
TRANSACTION_FILE_EXTENSION = ".jsonl"
PARQUET_FILE_EXTENSION = ".parquet"
PARQUET_OUTPUT_DIR_NAME = "parquet"
DEFAULT_STARTING_VERSION = 0
DEFAULT_CHANNEL_SIZE = 100
DEFAULT_MAX_BUFFER_SIZE = 100_000_000
DEFAULT_UPLOAD_INTERVAL_SECONDS = 1800.0
DEFAULT_EXTRACT_WORKERS = 4
DEFAULT_SINK_MAX_RETRIES = 5
DEFAULT_SINK_RETRY_DELAY_MS = 500.0
DEFAULT_SINK_MAX_RETRY_DELAY_MS = 30_000.0
DEFAULT_FETCH_MAX_RETRIES = 5
DEFAULT_FETCH_RETRY_DELAY_MS = 1000.0
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_DB_POOL_SIZE = 10
DEFAULT_HEALTH_CHECK_PORT = 8085
DEFAULT_EXTRACTION_FAILURE_POLICY = "skip"
RECEIVE_POLL_SECONDS = 0.05
DELETED_FLAG_COLUMN = "is_deleted"
MAX_UNSIGNED_64 = 2**64 - 1
HASH_ALGORITHM = "sha256"
ADDRESS_HEX_LENGTH = 64
DOMAIN_LENGTH = 64
COIN_TYPE_MAX_LENGTH = 1000
NAME_SERVICE_SUFFIX = "apt"
