"""Mutation resolution: turns one record into the store writes it implies.

The resolver is pure: it reads an immutable :class:`RedisSinkConfig` and a
caller-owned record and returns new objects, so it can run concurrently for
distinct records without locking.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum, StrEnum
from typing import Any

from kvsink.config.models import DataType, KeyMode, RedisSinkConfig
from kvsink.errors import (
    InvalidRowKindError,
    KeyConversionError,
    MissingFieldError,
    RecordError,
)


class RowKind(StrEnum):
    """Intended mutation semantics of a record."""

    INSERT = "insert"
    UPDATE = "update"
    UPSERT = "upsert"
    DELETE = "delete"


class StoreOperation(StrEnum):
    """Redis command a mutation is dispatched to."""

    SET = "SET"
    LPUSH = "LPUSH"
    LPOP = "LPOP"
    DEL = "DEL"


@dataclass(frozen=True)
class Mutation:
    """A resolved write: the key, its serialized value and the record's kind."""

    key: str
    value: str
    rowkind: RowKind = RowKind.UPSERT


def operation_for(rowkind: RowKind, data_type: DataType) -> StoreOperation:
    """Map a row kind and data type onto a store command."""
    if rowkind == RowKind.DELETE:
        return StoreOperation.LPOP if data_type == DataType.LIST else StoreOperation.DEL
    return StoreOperation.LPUSH if data_type == DataType.LIST else StoreOperation.SET


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text == "-0" else text


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime | date | time):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bytes | bytearray):
        return bytes(value).decode("utf-8")
    if isinstance(value, set | frozenset):
        return sorted(value, key=str)
    msg = f"Object of type {type(value).__name__} is not JSON serializable"
    raise TypeError(msg)


def to_json(value: Any) -> str:
    """Compact JSON with sorted keys, the encoding used for stored values."""
    return json.dumps(
        value,
        default=_json_default,
        ensure_ascii=False,
        allow_nan=False,
        separators=(",", ":"),
        sort_keys=True,
    )


def to_string(value: Any) -> str:
    """Convert a record value to its string form.

    Raises ``TypeError`` (or ``ValueError`` for undecodable bytes) when the
    value has no sensible string representation.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bytes | bytearray):
        return bytes(value).decode("utf-8")
    if isinstance(value, Enum):
        return to_string(value.value)
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_float(value)
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, datetime | date | time):
        return value.isoformat()
    if isinstance(value, Mapping | list | tuple):
        return to_json(value)
    msg = f"cannot convert {type(value).__name__} to string"
    raise TypeError(msg)


def _to_string_lenient(value: Any) -> str:
    try:
        return to_string(value)
    except (TypeError, ValueError):
        return ""


def resolve_rowkind(config: RedisSinkConfig, record: Mapping[str, Any]) -> RowKind:
    """Read the record-level row kind, defaulting to upsert."""
    if not config.rowkind_field or config.rowkind_field not in record:
        return RowKind.UPSERT
    raw = record[config.rowkind_field]
    if not isinstance(raw, str):
        raise InvalidRowKindError(config.rowkind_field, raw)
    try:
        return RowKind(raw)
    except ValueError:
        raise InvalidRowKindError(config.rowkind_field, raw) from None


def _resolve_single_key(config: RedisSinkConfig, record: Mapping[str, Any]) -> str:
    if not config.field:
        return config.key
    if config.field not in record:
        raise MissingFieldError(config.field)
    raw = record[config.field]
    try:
        return to_string(raw)
    except (TypeError, ValueError) as exc:
        raise KeyConversionError(config.field, raw) from exc


def resolve_mutations(
    config: RedisSinkConfig, record: Mapping[str, Any]
) -> list[Mutation]:
    """Resolve one record into the mutations to apply.

    Multiple-key mode yields one mutation per field. Single-key mode yields
    exactly one mutation whose value is the JSON-encoded record. Errors abort
    the record: nothing is returned on failure.
    """
    if config.key_mode == KeyMode.MULTIPLE:
        values = [(str(name), _to_string_lenient(v)) for name, v in record.items()]
    else:
        key = _resolve_single_key(config, record)
        try:
            encoded = to_json(dict(record))
        except (TypeError, ValueError) as exc:
            msg = f"record cannot be JSON-encoded: {exc}"
            raise RecordError(msg) from exc
        values = [(key, encoded)]

    rowkind = resolve_rowkind(config, record)
    return [Mutation(key=k, value=v, rowkind=rowkind) for k, v in values]
