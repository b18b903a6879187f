"""Processor type registry.

Each ``processor_config.type`` maps to a fixed extractor set and the sink
backend it writes to. The registry is resolved once at startup.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from core.errors import LedgerflowConfigError
from extractors.ans import ANS_EXTRACTOR
from extractors.base import Extractor
from extractors.coin_balances import COIN_BALANCES_EXTRACTOR
from extractors.events import EVENTS_EXTRACTOR
from extractors.transactions import TRANSACTIONS_EXTRACTOR
from extractors.user_transactions import USER_TRANSACTIONS_EXTRACTOR

SinkBackend = Literal["postgres_config", "parquet_config"]


@dataclass(frozen=True)
class ProcessorDefinition:
    """Extractor set and sink backend for one processor type."""

    processor_type: str
    extractors: tuple[Extractor, ...]
    sink_backend: SinkBackend


def _definitions() -> dict[str, ProcessorDefinition]:
    extractor_sets: dict[str, tuple[Extractor, ...]] = {
        "default_processor": (TRANSACTIONS_EXTRACTOR,),
        "user_transaction_processor": (USER_TRANSACTIONS_EXTRACTOR,),
        "events_processor": (EVENTS_EXTRACTOR,),
        "fungible_asset_processor": (COIN_BALANCES_EXTRACTOR,),
        "ans_processor": (ANS_EXTRACTOR,),
    }
    definitions: dict[str, ProcessorDefinition] = {}
    for name, extractors in extractor_sets.items():
        definitions[name] = ProcessorDefinition(name, extractors, "postgres_config")
        parquet_name = f"parquet_{name}"
        definitions[parquet_name] = ProcessorDefinition(parquet_name, extractors, "parquet_config")
    return definitions


PROCESSOR_DEFINITIONS = _definitions()


def supported_processor_types() -> tuple[str, ...]:
    """Return registered processor type names in sorted order."""
    return tuple(sorted(PROCESSOR_DEFINITIONS))


def resolve_processor(processor_type: str, db_type: str) -> ProcessorDefinition:
    """Look up a processor type and check it matches the configured sink.

    Args:
        processor_type: ``processor_config.type`` value.
        db_type: ``db_config.type`` value.

    Returns:
        Processor definition.

    Raises:
        LedgerflowConfigError: If the type is unknown or needs another sink.
    """
    definition = PROCESSOR_DEFINITIONS.get(processor_type)
    if definition is None:
        raise LedgerflowConfigError(
            f"Unsupported processor_config.type '{processor_type}'. "
            f"Use one of: {', '.join(supported_processor_types())}."
        )
    if definition.sink_backend != db_type:
        raise LedgerflowConfigError(
            f"Processor '{processor_type}' writes to '{definition.sink_backend}', "
            f"but db_config.type is '{db_type}'. Align the processor type and db_config."
        )
    return definition
