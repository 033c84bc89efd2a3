"""
Statement generation for the per-label relational storage layout.

Every vertex label is stored in its own table ``<graph_schema>.<vertex_prefix><label>``::

    id          TEXT PRIMARY KEY
    <property>  <column type> [DEFAULT ...] [NOT NULL]
    created_at  TIMESTAMP WITH TIME ZONE DEFAULT now()

and every edge label in ``<graph_schema>.<edge_prefix><label>``::

    id          UUID PRIMARY KEY DEFAULT gen_random_uuid()
    source_id   TEXT NOT NULL  -> <from vertex table>(id)
    target_id   TEXT NOT NULL  -> <to vertex table>(id)
    <property>  ...
    created_at  ...

All identifiers are quoted through :mod:`agegraph.storage.sqlsafe`. Values
are bound as ``:name`` parameters and cast inside the statement; only
statements without parameter support (DDL defaults) carry literals, and
those statements carry no parameters at all.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Sequence, Union

from ..errors import CoreError, ErrorKind
from .sqlsafe import MAX_IDENTIFIER_BYTES, qualify, quote_identifier
from .typemap import (
    PropertyType,
    conversion_expression,
    map_type,
    sql_literal,
    to_bind_value,
)

if TYPE_CHECKING:
    from ..config import StorageSettings
    from ..schema.model import EdgeLabel, PropertyDefinition, VertexLabel

Params = Union[Mapping[str, Any], Sequence[Mapping[str, Any]], None]


@dataclass(frozen=True, slots=True)
class Statement:
    """
    One executable statement.

    ``params`` is None for statements without bound values, a mapping for a
    single execution or a sequence of mappings for bulk execution.
    """

    sql: str
    params: Params = None

    def __str__(self) -> str:
        return self.sql


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StorageLayout:
    graph_schema: str = "graph"
    vertex_prefix: str = "v_"
    edge_prefix: str = "e_"
    backup_schema: str = "graph_backup"

    @classmethod
    def from_settings(cls, settings: "StorageSettings") -> StorageLayout:
        return cls(
            graph_schema=settings.graph_schema,
            vertex_prefix=settings.vertex_prefix,
            edge_prefix=settings.edge_prefix,
            backup_schema=settings.backup_schema,
        )

    def vertex_table_name(self, label: str) -> str:
        return f"{self.vertex_prefix}{label}"

    def edge_table_name(self, label: str) -> str:
        return f"{self.edge_prefix}{label}"

    def vertex_table(self, label: str) -> str:
        return qualify(self.graph_schema, self.vertex_table_name(label))

    def edge_table(self, label: str) -> str:
        return qualify(self.graph_schema, self.edge_table_name(label))

    def constraint_name(self, edge_label: str, end: str) -> str:
        return f"{self.edge_table_name(edge_label)}_{end}_fk"

    def index_name(self, edge_label: str, end: str) -> str:
        return f"{self.edge_table_name(edge_label)}_{end}_idx"


DEFAULT_LAYOUT = StorageLayout()


def column_definition(name: str, definition: "PropertyDefinition") -> str:
    parts = [quote_identifier(name), map_type(definition.type).value]
    if definition.has_default:
        parts.append("DEFAULT " + sql_literal(definition.default, definition.type))
    if definition.required:
        parts.append("NOT NULL")
    return " ".join(parts)


# ---------------------------------------------------------------------------
# Schemas and tables
# ---------------------------------------------------------------------------


def create_schema(schema: str) -> Statement:
    return Statement(f"CREATE SCHEMA IF NOT EXISTS {quote_identifier(schema)}")


def create_vertex_table(layout: StorageLayout, label: str, vertex: "VertexLabel") -> list[Statement]:
    columns = ["id TEXT PRIMARY KEY"]
    columns.extend(column_definition(name, p) for name, p in vertex.properties.items())
    columns.append("created_at TIMESTAMP WITH TIME ZONE DEFAULT now()")
    body = ",\n    ".join(columns)
    return [Statement(f"CREATE TABLE {layout.vertex_table(label)} (\n    {body}\n)")]


def _foreign_key(layout: StorageLayout, label: str, end: str, column: str, vertex_label: str) -> str:
    return (
        f"CONSTRAINT {quote_identifier(layout.constraint_name(label, end))} "
        f"FOREIGN KEY ({column}) REFERENCES {layout.vertex_table(vertex_label)} (id) "
        "ON DELETE CASCADE"
    )


def create_edge_table(layout: StorageLayout, label: str, edge: "EdgeLabel") -> list[Statement]:
    columns = [
        "id UUID PRIMARY KEY DEFAULT gen_random_uuid()",
        "source_id TEXT NOT NULL",
        "target_id TEXT NOT NULL",
    ]
    columns.extend(column_definition(name, p) for name, p in edge.properties.items())
    columns.append("created_at TIMESTAMP WITH TIME ZONE DEFAULT now()")
    columns.append(_foreign_key(layout, label, "source", "source_id", edge.from_vertex))
    columns.append(_foreign_key(layout, label, "target", "target_id", edge.to_vertex))
    body = ",\n    ".join(columns)
    table = layout.edge_table(label)
    return [
        Statement(f"CREATE TABLE {table} (\n    {body}\n)"),
        Statement(
            f"CREATE INDEX {quote_identifier(layout.index_name(label, 'source'))} "
            f"ON {table} (source_id)"
        ),
        Statement(
            f"CREATE INDEX {quote_identifier(layout.index_name(label, 'target'))} "
            f"ON {table} (target_id)"
        ),
    ]


def drop_vertex_table(layout: StorageLayout, label: str) -> Statement:
    # CASCADE removes the foreign keys of edge tables that point here
    return Statement(f"DROP TABLE {layout.vertex_table(label)} CASCADE")


def drop_edge_table(layout: StorageLayout, label: str) -> Statement:
    return Statement(f"DROP TABLE {layout.edge_table(label)}")


def replace_endpoints(
    layout: StorageLayout, label: str, old: "EdgeLabel", new: "EdgeLabel"
) -> list[Statement]:
    """
    Re-point the endpoint foreign keys of an edge table.

    Existing edges cannot be reinterpreted under new endpoint labels, so the
    table is emptied first.
    """
    table = layout.edge_table(label)
    statements = [Statement(f"DELETE FROM {table}")]
    for end, column, before, after in (
        ("source", "source_id", old.from_vertex, new.from_vertex),
        ("target", "target_id", old.to_vertex, new.to_vertex),
    ):
        if before == after:
            continue
        constraint = quote_identifier(layout.constraint_name(label, end))
        statements.append(Statement(f"ALTER TABLE {table} DROP CONSTRAINT IF EXISTS {constraint}"))
        statements.append(
            Statement(f"ALTER TABLE {table} ADD " + _foreign_key(layout, label, end, column, after))
        )
    return statements


# ---------------------------------------------------------------------------
# Columns
# ---------------------------------------------------------------------------


def add_column(table: str, name: str, definition: "PropertyDefinition") -> Statement:
    return Statement(f"ALTER TABLE {table} ADD COLUMN {column_definition(name, definition)}")


def drop_column(table: str, name: str) -> Statement:
    return Statement(f"ALTER TABLE {table} DROP COLUMN {quote_identifier(name)}")


def alter_column_type(table: str, name: str, old: PropertyType, new: PropertyType) -> Statement:
    column = quote_identifier(name)
    return Statement(
        f"ALTER TABLE {table} ALTER COLUMN {column} TYPE {map_type(new).value} "
        f"USING {conversion_expression(column, old, new)}"
    )


def set_not_null(table: str, name: str) -> Statement:
    return Statement(f"ALTER TABLE {table} ALTER COLUMN {quote_identifier(name)} SET NOT NULL")


def drop_not_null(table: str, name: str) -> Statement:
    return Statement(f"ALTER TABLE {table} ALTER COLUMN {quote_identifier(name)} DROP NOT NULL")


def set_default(table: str, name: str, value: Any, ptype: PropertyType) -> Statement:
    return Statement(
        f"ALTER TABLE {table} ALTER COLUMN {quote_identifier(name)} "
        f"SET DEFAULT {sql_literal(value, ptype)}"
    )


def drop_default(table: str, name: str) -> Statement:
    return Statement(f"ALTER TABLE {table} ALTER COLUMN {quote_identifier(name)} DROP DEFAULT")


def backfill_nulls(table: str, name: str, value: Any, ptype: PropertyType) -> Statement:
    column = quote_identifier(name)
    return Statement(
        f"UPDATE {table} SET {column} = CAST(:value AS {map_type(ptype).value}) "
        f"WHERE {column} IS NULL",
        {"value": to_bind_value(value, ptype)},
    )


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------


def backup_table(layout: StorageLayout, source_table: str, backup_name: str) -> Statement:
    return Statement(
        f"CREATE TABLE {qualify(layout.backup_schema, backup_name)} AS TABLE {source_table}"
    )


# ---------------------------------------------------------------------------
# Staging
# ---------------------------------------------------------------------------


def staging_table_name(prefix: str, session: str, kind: str, number: int) -> str:
    name = f"{prefix}_{session}_{kind}{number}"
    if len(name.encode("utf-8")) > MAX_IDENTIFIER_BYTES:
        raise CoreError(
            ErrorKind.INVALID_IDENTIFIER,
            f"Staging table name {name!r} exceeds {MAX_IDENTIFIER_BYTES} bytes",
            name=name,
        )
    return name


def _staging_columns(key_columns: Iterable[str], properties: Mapping[str, "PropertyDefinition"]) -> str:
    columns = ["seq BIGINT NOT NULL"]
    columns.extend(f"{column} TEXT NOT NULL" for column in key_columns)
    columns.extend(
        f"{quote_identifier(name)} {map_type(p.type).value}" for name, p in properties.items()
    )
    return ",\n    ".join(columns)


def create_vertex_staging(name: str, vertex: "VertexLabel") -> Statement:
    body = _staging_columns(("id",), vertex.properties)
    return Statement(
        f"CREATE TEMP TABLE {quote_identifier(name)} (\n    {body}\n) ON COMMIT DROP"
    )


def create_edge_staging(name: str, edge: "EdgeLabel") -> Statement:
    body = _staging_columns(("source_id", "target_id"), edge.properties)
    return Statement(
        f"CREATE TEMP TABLE {quote_identifier(name)} (\n    {body}\n) ON COMMIT DROP"
    )


def insert_staged_rows(
    name: str,
    key_columns: Sequence[str],
    properties: Mapping[str, "PropertyDefinition"],
    rows: Sequence[Mapping[str, Any]],
) -> Statement:
    """
    Bulk insert into a staging table.

    Each row maps ``seq``, the key columns and ``p0..pN`` (one per property, in
    definition order) to bind values.
    """
    columns = ["seq", *key_columns]
    values = [":seq", *(f":{column}" for column in key_columns)]
    for position, (prop, definition) in enumerate(properties.items()):
        columns.append(quote_identifier(prop))
        values.append(f"CAST(:p{position} AS {map_type(definition.type).value})")
    return Statement(
        f"INSERT INTO {quote_identifier(name)} ({', '.join(columns)}) "
        f"VALUES ({', '.join(values)})",
        list(rows),
    )


def _endpoint_missing(alias: str, column: str, tables: Sequence[str]) -> str:
    return " AND ".join(
        f"NOT EXISTS (SELECT 1 FROM {table} AS v WHERE v.id = {alias}.{column})"
        for table in tables
    )


def first_unresolved_edge(
    staging_name: str,
    source_tables: Sequence[str],
    target_tables: Sequence[str],
) -> Statement:
    """
    Find the first staged edge (by ``seq``) whose endpoint does not resolve.

    ``source_tables``/``target_tables`` list every table that may hold the
    endpoint vertex: the permanent vertex table and, when the same load
    stages that label, its staging table.
    """
    return Statement(
        f"SELECT s.seq, s.source_id, s.target_id FROM {quote_identifier(staging_name)} AS s "
        f"WHERE ({_endpoint_missing('s', 'source_id', source_tables)}) "
        f"OR ({_endpoint_missing('s', 'target_id', target_tables)}) "
        "ORDER BY s.seq LIMIT 1"
    )


def move_staged_rows(
    target_table: str,
    staging_name: str,
    key_columns: Sequence[str],
    properties: Iterable[str],
) -> Statement:
    columns = ", ".join([*key_columns, *(quote_identifier(p) for p in properties)])
    return Statement(
        f"INSERT INTO {target_table} ({columns}) "
        f"SELECT {columns} FROM {quote_identifier(staging_name)} ORDER BY seq"
    )


def drop_staging(name: str) -> Statement:
    return Statement(f"DROP TABLE IF EXISTS {quote_identifier(name)}")


def _like_prefix(prefix: str) -> str:
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "\\_%"


def list_staging(prefix: str) -> Statement:
    """Temporary tables of every session whose name starts with ``<prefix>_``."""
    return Statement(
        "SELECT c.relname FROM pg_catalog.pg_class AS c "
        "JOIN pg_catalog.pg_namespace AS n ON n.oid = c.relnamespace "
        "WHERE n.nspname LIKE 'pg\\_temp\\_%' AND c.relkind = 'r' "
        "AND c.relname LIKE :pattern ORDER BY c.relname",
        {"pattern": _like_prefix(prefix)},
    )

