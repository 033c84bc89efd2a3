"""
Identifier and literal escaping for generated PostgreSQL statements.

Everything the planner and the loader splice into statement text passes
through this module. Values that can be bound are never spliced; the
literal helpers exist only for constructs without parameter support
(column DEFAULT clauses in DDL).
"""

from __future__ import annotations

import re

from ..errors import CoreError, ErrorKind

QUOTE = '"'

# PostgreSQL truncates identifiers longer than NAMEDATALEN - 1 bytes.
MAX_IDENTIFIER_BYTES = 63

# Label and property names leave room for table prefixes and constraint suffixes.
MAX_NAME_LENGTH = 48
_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def quote_identifier(name: str) -> str:
    """
    Wrap ``name`` in double quotes for direct interpolation.

    Embedded quote characters must already be doubled (``a""b`` names the
    identifier ``a"b``); a lone quote is rejected.
    """
    if not isinstance(name, str) or not name:
        raise CoreError(
            ErrorKind.INVALID_IDENTIFIER, "Identifier must be a non-empty string", name=name
        )
    if "\x00" in name:
        raise CoreError(
            ErrorKind.INVALID_IDENTIFIER, "Identifier contains a NUL character", name=name
        )
    if QUOTE in name.replace(QUOTE * 2, ""):
        raise CoreError(
            ErrorKind.INVALID_IDENTIFIER,
            "Identifier contains an undoubled quote delimiter",
            name=name,
        )
    unescaped = name.replace(QUOTE * 2, QUOTE)
    if len(unescaped.encode("utf-8")) > MAX_IDENTIFIER_BYTES:
        raise CoreError(
            ErrorKind.INVALID_IDENTIFIER,
            f"Identifier exceeds {MAX_IDENTIFIER_BYTES} bytes",
            name=name,
        )
    return f"{QUOTE}{name}{QUOTE}"


def qualify(schema: str, name: str) -> str:
    """Return ``"schema"."name"``."""
    return f"{quote_identifier(schema)}.{quote_identifier(name)}"


def escape_literal(text: str) -> str:
    """
    Render ``text`` as a standard-conforming SQL string literal.

    Assumes ``standard_conforming_strings = on`` (the PostgreSQL default),
    so backslashes need no escaping.
    """
    if not isinstance(text, str):
        raise CoreError(
            ErrorKind.INVALID_LITERAL,
            f"Only text can be rendered as a literal, got {type(text).__name__}",
        )
    if "\x00" in text:
        raise CoreError(ErrorKind.INVALID_LITERAL, "Literal contains a NUL character")
    return "'" + text.replace("'", "''") + "'"


def check_name(name: str, *, what: str = "name") -> str:
    """
    Validate a label or property name and return it unchanged.

    Names are case-sensitive identifiers: a letter or underscore followed by
    letters, digits or underscores.
    """
    if not isinstance(name, str) or not _NAME_PATTERN.match(name):
        raise CoreError(
            ErrorKind.INVALID_IDENTIFIER,
            f"Invalid {what} {name!r}: must start with a letter or underscore and "
            "contain only letters, digits and underscores",
            name=name,
        )
    if len(name) > MAX_NAME_LENGTH:
        raise CoreError(
            ErrorKind.INVALID_IDENTIFIER,
            f"Invalid {what} {name!r}: longer than {MAX_NAME_LENGTH} characters",
            name=name,
        )
    return name
