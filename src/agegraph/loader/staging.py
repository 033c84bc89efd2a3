"""
Transaction-scoped staging tables.

A StagingSession owns the temporary tables of one load. Table names carry a
random session token, so concurrent loads never collide, and are created
``ON COMMIT DROP`` so they cannot outlive the loading transaction.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from logging import getLogger
from typing import Any, Mapping, Optional, Sequence, Union

from ..executor import Transaction, run
from ..schema.diff import ElementKind
from ..schema.model import EdgeLabel, VertexLabel
from ..storage import sqlgen
from ..storage.sqlsafe import quote_identifier

logger = getLogger(__name__)

VERTEX_KEYS = ("id",)
EDGE_KEYS = ("source_id", "target_id")


@dataclass(slots=True)
class StagingTable:
    name: str
    label: str
    element: ElementKind
    definition: Union[VertexLabel, EdgeLabel]
    row_count: int = 0

    @property
    def quoted(self) -> str:
        return quote_identifier(self.name)

    @property
    def key_columns(self) -> tuple[str, ...]:
        return VERTEX_KEYS if self.element is ElementKind.VERTEX else EDGE_KEYS


class StagingSession:
    def __init__(self, prefix: str, token: Optional[str] = None) -> None:
        self.prefix = prefix
        self.token = token or uuid.uuid4().hex[:12]
        self._tables: list[StagingTable] = []

    @property
    def tables(self) -> tuple[StagingTable, ...]:
        return tuple(self._tables)

    def table_for(self, element: ElementKind, label: str) -> Optional[StagingTable]:
        for table in self._tables:
            if table.element is element and table.label == label:
                return table
        return None

    def create(
        self,
        transaction: Transaction,
        element: ElementKind,
        label: str,
        definition: Union[VertexLabel, EdgeLabel],
    ) -> StagingTable:
        kind = "v" if element is ElementKind.VERTEX else "e"
        name = sqlgen.staging_table_name(self.prefix, self.token, kind, len(self._tables))
        if element is ElementKind.VERTEX:
            assert isinstance(definition, VertexLabel)
            statement = sqlgen.create_vertex_staging(name, definition)
        else:
            assert isinstance(definition, EdgeLabel)
            statement = sqlgen.create_edge_staging(name, definition)
        run(transaction, statement)
        table = StagingTable(name, label, element, definition)
        self._tables.append(table)
        logger.debug("Created staging table %s for %s %s", name, element.value, label)
        return table

    def append(
        self, transaction: Transaction, table: StagingTable, rows: Sequence[Mapping[str, Any]]
    ) -> int:
        if not rows:
            return 0
        statement = sqlgen.insert_staged_rows(
            table.name, table.key_columns, table.definition.properties, rows
        )
        run(transaction, statement)
        table.row_count += len(rows)
        return len(rows)

    def drop_statements(self) -> list[sqlgen.Statement]:
        return [sqlgen.drop_staging(table.name) for table in self._tables]
