"""Unit tests for the extraction engine."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from core.errors import ExtractionError
from core.types import Transaction
from extractors.base import Extractor
from extractors.coin_balances import COIN_BALANCES_EXTRACTOR
from extractors.transactions import TRANSACTIONS_EXTRACTOR
from extractors.engine import ExtractionEngine
from tests.pipeline_fakes import make_transaction


def _broken(transaction: Transaction) -> list:
    raise KeyError("changes")


BROKEN_EXTRACTOR = Extractor(name="broken", tables=(), extract=_broken)


def test_extract_combines_records_from_all_extractors() -> None:
    """Records from every extractor should be returned together."""
    engine = ExtractionEngine([TRANSACTIONS_EXTRACTOR, COIN_BALANCES_EXTRACTOR])

    result = engine.extract(make_transaction(3, {}))

    assert result.version == 3
    assert [record.table_name for record in result.records] == ["transactions"]
    assert result.failures == ()


def test_skip_policy_records_failure_and_keeps_other_records() -> None:
    """A failing extractor should lose only its own records under skip."""
    engine = ExtractionEngine([BROKEN_EXTRACTOR, TRANSACTIONS_EXTRACTOR])

    result = engine.extract(make_transaction(3, {}))

    assert len(result.records) == 1
    assert result.failures[0].extractor_name == "broken"
    assert "changes" in result.failures[0].message


def test_halt_policy_raises_extraction_error() -> None:
    """A failing extractor should raise under the halt policy."""
    engine = ExtractionEngine([BROKEN_EXTRACTOR], failure_policy="halt")

    with pytest.raises(ExtractionError) as error_info:
        engine.extract(make_transaction(3, {}))

    assert error_info.value.version == 3
    assert error_info.value.extractor_name == "broken"


def test_tables_to_write_filters_records() -> None:
    """Only configured tables should be emitted."""
    engine = ExtractionEngine([COIN_BALANCES_EXTRACTOR], tables_to_write=("current_coin_balances",))
    change = {
        "type": "write_resource",
        "address": "0xa",
        "resource_type": "0x1::coin::CoinStore<0x1::aptos_coin::AptosCoin>",
        "data": {"coin": {"value": "1"}},
    }

    result = engine.extract(make_transaction(3, {"changes": [change]}))

    assert [table.name for table in engine.tables] == ["current_coin_balances"]
    assert [record.table_name for record in result.records] == ["current_coin_balances"]


def test_unknown_tables_to_write_is_rejected() -> None:
    """Unknown table names should fail engine construction."""
    with pytest.raises(ValueError):
        ExtractionEngine([TRANSACTIONS_EXTRACTOR], tables_to_write=("missing",))


def test_extract_ordered_preserves_input_order() -> None:
    """Concurrent extraction should yield results in version order."""
    engine = ExtractionEngine([TRANSACTIONS_EXTRACTOR])
    transactions = [make_transaction(version, {}) for version in range(20)]

    with ThreadPoolExecutor(max_workers=4) as executor:
        results = list(engine.extract_ordered(iter(transactions + [None]), executor, 4))

    assert [result.version for result in results] == list(range(20))
