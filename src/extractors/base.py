"""Extractor model and record construction helpers.

An extractor is a named pure function from one transaction to records for
a fixed set of tables. Extractors hold no state between transactions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping

from core.types import ExtractedRecord, MutationKind, TableSpec, Transaction

ExtractFunction = Callable[[Transaction], list[ExtractedRecord]]


@dataclass(frozen=True)
class Extractor:
    """Named extraction function and the tables it writes.

    Attributes:
        name: Extractor identifier used in logs and failure reports.
        tables: Schemas of every table the extractor can emit.
        extract: Pure mapping from a transaction to records.
    """

    name: str
    tables: tuple[TableSpec, ...]
    extract: ExtractFunction


def build_record(
    table: TableSpec,
    fields: Mapping[str, object],
    version: int,
    mutation_kind: MutationKind | None = None,
) -> ExtractedRecord:
    """Build a record for a table, deriving its primary key.

    Args:
        table: Target table schema.
        fields: Column values, including every key column.
        version: Source transaction version.
        mutation_kind: Override for the table's default mutation kind.

    Returns:
        Extracted record.

    Raises:
        ValueError: If fields reference unknown columns or miss key columns.
    """
    unknown_columns = sorted(set(fields) - set(table.column_names))
    if unknown_columns:
        raise ValueError(
            f"Record for table '{table.name}' has unknown columns: {', '.join(unknown_columns)}"
        )
    missing_keys = [name for name in table.key_columns if fields.get(name) is None]
    if missing_keys:
        raise ValueError(
            f"Record for table '{table.name}' is missing key columns: {', '.join(missing_keys)}"
        )
    return ExtractedRecord(
        table_name=table.name,
        primary_key=tuple(fields[name] for name in table.key_columns),
        mutation_kind=mutation_kind or table.mutation_kind,
        fields=dict(fields),
        version=version,
    )
