"""
agegraph.storage
================

Relational storage layer shared by the migration executor and the loader.

Public API:

- PropertyType, ColumnType, map_type          : abstract to column type mapping.
- encode_literal / decode_literal             : wire text for property values.
- quote_identifier / qualify / escape_literal : statement safety primitives.
- StorageLayout, Statement                    : table naming and generated statements.

The individual generators live in agegraph.storage.sqlgen.
"""

from __future__ import annotations

from .sqlsafe import escape_literal, qualify, quote_identifier
from .typemap import ColumnType, PropertyType, decode_literal, encode_literal, map_type
from .sqlgen import DEFAULT_LAYOUT, Statement, StorageLayout

__all__ = [
    "escape_literal",
    "qualify",
    "quote_identifier",
    "ColumnType",
    "PropertyType",
    "decode_literal",
    "encode_literal",
    "map_type",
    "DEFAULT_LAYOUT",
    "Statement",
    "StorageLayout",
]
