"""
Mapping between abstract property types and PostgreSQL column types.

All functions here are pure. Values travel to the backend as text
(``encode_literal``) and are cast to the column type inside the statement,
so the same encoding serves bound parameters, DDL defaults and round trips.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

from ..errors import CoreError, ErrorKind
from .sqlsafe import escape_literal

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1


class PropertyType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    OBJECT = "object"
    ARRAY = "array"
    ANY = "any"


class ColumnType(str, Enum):
    TEXT = "TEXT"
    DOUBLE = "DOUBLE PRECISION"
    INTEGER = "INTEGER"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    TIMESTAMPTZ = "TIMESTAMP WITH TIME ZONE"
    JSONB = "JSONB"


_COLUMN_TYPES: dict[PropertyType, ColumnType] = {
    PropertyType.STRING: ColumnType.TEXT,
    PropertyType.NUMBER: ColumnType.DOUBLE,
    PropertyType.INTEGER: ColumnType.INTEGER,
    PropertyType.BOOLEAN: ColumnType.BOOLEAN,
    PropertyType.DATE: ColumnType.DATE,
    PropertyType.DATETIME: ColumnType.TIMESTAMPTZ,
    PropertyType.OBJECT: ColumnType.JSONB,
    PropertyType.ARRAY: ColumnType.JSONB,
    PropertyType.ANY: ColumnType.JSONB,
}

# Conversions that never lose information.
_WIDENINGS = frozenset(
    {
        (PropertyType.INTEGER, PropertyType.NUMBER),
        (PropertyType.DATE, PropertyType.DATETIME),
    }
)


def map_type(ptype: PropertyType) -> ColumnType:
    return _COLUMN_TYPES[PropertyType(ptype)]


# ---------------------------------------------------------------------------
# Literal encoding
# ---------------------------------------------------------------------------


def _mismatch(value: Any, ptype: PropertyType) -> CoreError:
    return CoreError(
        ErrorKind.TYPE_MISMATCH,
        f"Expected {ptype.value}, got {type(value).__name__}",
        expected=ptype.value,
        actual=type(value).__name__,
    )


def _out_of_range(value: Any, ptype: PropertyType) -> CoreError:
    return CoreError(
        ErrorKind.OUT_OF_RANGE,
        f"Value {value!r} does not fit a {map_type(ptype).value} column",
        expected=ptype.value,
    )


def _canonical_json(value: Any, ptype: PropertyType) -> str:
    try:
        return json.dumps(
            value,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as exc:
        raise CoreError(
            ErrorKind.TYPE_MISMATCH,
            f"Value is not JSON-serializable as {ptype.value}: {exc}",
            expected=ptype.value,
            actual=type(value).__name__,
            cause=exc,
        ) from exc


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_utc(value: datetime) -> datetime:
    # naive datetimes are taken as UTC, never as the server time zone
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def encode_literal(value: Any, ptype: PropertyType) -> str:
    """
    Encode ``value`` as the wire text for a column of type ``ptype``.

    Raises CoreError(TYPE_MISMATCH) when the runtime shape does not match and
    CoreError(OUT_OF_RANGE) when a number does not fit the column.
    """
    ptype = PropertyType(ptype)

    if ptype is PropertyType.STRING:
        if not isinstance(value, str):
            raise _mismatch(value, ptype)
        return value

    if ptype is PropertyType.INTEGER:
        if isinstance(value, bool) or not isinstance(value, int):
            raise _mismatch(value, ptype)
        if not INT32_MIN <= value <= INT32_MAX:
            raise _out_of_range(value, ptype)
        return str(value)

    if ptype is PropertyType.NUMBER:
        if not _is_number(value):
            raise _mismatch(value, ptype)
        if isinstance(value, int):
            try:
                float(value)
            except OverflowError as exc:
                raise _out_of_range(value, ptype) from exc
            return str(value)
        if not math.isfinite(value):
            raise _out_of_range(value, ptype)
        return repr(value)

    if ptype is PropertyType.BOOLEAN:
        if not isinstance(value, bool):
            raise _mismatch(value, ptype)
        return "true" if value else "false"

    if ptype is PropertyType.DATE:
        # datetime is a date subclass but carries a time part
        if not isinstance(value, date) or isinstance(value, datetime):
            raise _mismatch(value, ptype)
        return value.isoformat()

    if ptype is PropertyType.DATETIME:
        if not isinstance(value, datetime):
            raise _mismatch(value, ptype)
        return _as_utc(value).isoformat()

    if ptype is PropertyType.OBJECT:
        if not isinstance(value, Mapping) or not all(isinstance(k, str) for k in value):
            raise _mismatch(value, ptype)
        return _canonical_json(dict(value), ptype)

    if ptype is PropertyType.ARRAY:
        if not isinstance(value, (list, tuple)):
            raise _mismatch(value, ptype)
        return _canonical_json(list(value), ptype)

    if ptype is PropertyType.ANY:
        return _canonical_json(value, ptype)

    raise AssertionError(f"unhandled property type {ptype!r}")


def decode_literal(text: str, ptype: PropertyType) -> Any:
    """Inverse of encode_literal."""
    ptype = PropertyType(ptype)
    if not isinstance(text, str):
        raise _mismatch(text, ptype)

    try:
        if ptype is PropertyType.STRING:
            return text
        if ptype is PropertyType.INTEGER:
            return int(text)
        if ptype is PropertyType.NUMBER:
            if any(ch in text for ch in ".eEnN"):
                return float(text)
            return int(text)
        if ptype is PropertyType.BOOLEAN:
            if text == "true":
                return True
            if text == "false":
                return False
            raise ValueError(f"not a boolean literal: {text!r}")
        if ptype is PropertyType.DATE:
            return date.fromisoformat(text)
        if ptype is PropertyType.DATETIME:
            return _as_utc(datetime.fromisoformat(text))

        decoded = json.loads(text)
    except ValueError as exc:
        raise CoreError(
            ErrorKind.TYPE_MISMATCH,
            f"Cannot decode {text!r} as {ptype.value}",
            expected=ptype.value,
            cause=exc,
        ) from exc

    if ptype is PropertyType.OBJECT and not isinstance(decoded, dict):
        raise _mismatch(decoded, ptype)
    if ptype is PropertyType.ARRAY and not isinstance(decoded, list):
        raise _mismatch(decoded, ptype)
    return decoded


def to_bind_value(value: Any, ptype: PropertyType) -> Optional[str]:
    """Bound-parameter form of ``value``; None stays SQL NULL."""
    if value is None:
        return None
    return encode_literal(value, ptype)


def sql_literal(value: Any, ptype: PropertyType) -> str:
    """
    Typed SQL literal for statements that cannot take parameters.

    >>> sql_literal(42, PropertyType.INTEGER)
    "CAST('42' AS INTEGER)"
    """
    if value is None:
        return "NULL"
    return f"CAST({escape_literal(encode_literal(value, ptype))} AS {map_type(ptype).value})"


# ---------------------------------------------------------------------------
# Type changes
# ---------------------------------------------------------------------------


def is_widening(old: PropertyType, new: PropertyType) -> bool:
    """True if every value of ``old`` converts to ``new`` without loss."""
    old, new = PropertyType(old), PropertyType(new)
    if old is new:
        return True
    if new in (PropertyType.STRING, PropertyType.ANY):
        return True
    return (old, new) in _WIDENINGS


def conversion_expression(column: str, old: PropertyType, new: PropertyType) -> str:
    """
    ``USING`` expression converting a quoted ``column`` from ``old`` to ``new``.
    """
    old, new = PropertyType(old), PropertyType(new)
    if map_type(old) is map_type(new):
        return column
    if new is PropertyType.ANY:
        return f"to_jsonb({column})"
    return f"CAST({column} AS {map_type(new).value})"
