"""Normalization helpers shared by extractors.

Payload access helpers raise ``KeyError``, ``TypeError`` or ``ValueError``
on malformed input so the extraction engine can attribute the failure.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
import hashlib
from typing import Mapping, Sequence

from core.constants import ADDRESS_HEX_LENGTH, HASH_ALGORITHM

_HEX_DIGITS = frozenset("0123456789abcdef")


def standardize_address(address: str) -> str:
    """Normalize an account address to ``0x`` plus 64 lowercase hex digits.

    Args:
        address: Address with or without ``0x`` prefix, possibly short.

    Returns:
        Standardized address.

    Raises:
        ValueError: If address is empty, too long, or not hexadecimal.
    """
    digits = address.strip().lower().removeprefix("0x")
    if not digits or len(digits) > ADDRESS_HEX_LENGTH or not set(digits) <= _HEX_DIGITS:
        raise ValueError(f"Invalid account address '{address}'")
    return "0x" + digits.zfill(ADDRESS_HEX_LENGTH)


def truncate_text(value: str, max_length: int) -> str:
    """Truncate text to at most ``max_length`` characters."""
    return value[:max_length]


def hash_text(value: str) -> str:
    """Return the hex digest used for hashed key columns."""
    return hashlib.new(HASH_ALGORITHM, value.encode("utf-8")).hexdigest()


def require_mapping(payload: Mapping[str, object], key: str) -> Mapping[str, object]:
    value = payload[key]
    if not isinstance(value, Mapping):
        raise TypeError(f"Payload field '{key}' must be an object")
    return value


def optional_list(payload: Mapping[str, object], key: str) -> Sequence[object]:
    value = payload.get(key)
    if value is None:
        return ()
    if not isinstance(value, list):
        raise TypeError(f"Payload field '{key}' must be a list")
    return value


def require_str(payload: Mapping[str, object], key: str) -> str:
    value = payload[key]
    if not isinstance(value, str):
        raise TypeError(f"Payload field '{key}' must be a string")
    return value


def optional_str(payload: Mapping[str, object], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"Payload field '{key}' must be a string")
    return value


def require_int(payload: Mapping[str, object], key: str) -> int:
    """Read an integer field that may be encoded as a decimal string."""
    value = optional_int(payload, key)
    if value is None:
        raise KeyError(key)
    return value


def optional_int(payload: Mapping[str, object], key: str) -> int | None:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise TypeError(f"Payload field '{key}' must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value)
    raise TypeError(f"Payload field '{key}' must be an integer")


def parse_decimal(value: object, field_name: str) -> Decimal:
    """Parse an on-chain amount, usually encoded as a decimal string.

    Raises:
        ValueError: If value is not a finite number.
    """
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise TypeError(f"Payload field '{field_name}' must be a number string")
    try:
        amount = Decimal(str(value))
    except InvalidOperation as error:
        raise ValueError(f"Payload field '{field_name}' is not a number: {value!r}") from error
    if not amount.is_finite():
        raise ValueError(f"Payload field '{field_name}' is not finite: {value!r}")
    return amount


def timestamp_from_seconds(seconds: int) -> datetime:
    """Convert epoch seconds to a UTC datetime."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def generic_type_argument(move_type: str, base_type: str) -> str | None:
    """Return the generic argument of ``base_type<...>`` or None.

    Args:
        move_type: Full resource type, e.g. ``0x1::coin::CoinStore<0x1::a::B>``.
        base_type: Expected base type, e.g. ``0x1::coin::CoinStore``.

    Returns:
        Inner type text, or None when ``move_type`` is another type.
    """
    prefix = base_type + "<"
    if not move_type.startswith(prefix) or not move_type.endswith(">"):
        return None
    inner_type = move_type[len(prefix) : -1].strip()
    return inner_type or None
