from __future__ import annotations

import os
import re
from typing import Any, Callable, Union

import pytest

from agegraph.config import get_settings
from agegraph.executor import RowSet
from agegraph.schema import EdgeLabel, PropertyDefinition, SchemaDefinition, VertexLabel


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

Response = Union[RowSet, BaseException, Callable[[str, Any], RowSet]]

_CREATE_TEMP = re.compile(r'^CREATE TEMP TABLE "([^"]+)"')
_DROP = re.compile(r'^DROP TABLE IF EXISTS "([^"]+)"')


class FakeTransaction:
    """
    Records statements instead of running them.

    Temporary tables belong to the transaction that created them, the way
    PostgreSQL keeps ``ON COMMIT DROP`` tables private to one connection: a
    drop from another transaction does not reach them, and they disappear
    on commit, on rollback and on an explicit drop from their own
    transaction. ``created`` keeps every name ever created, in order.
    """

    def __init__(self, executor: "FakeExecutor") -> None:
        self.executor = executor
        self.statements: list[tuple[str, Any]] = []
        self.temp_tables: set[str] = set()
        self.created: list[str] = []
        self.committed = False
        self.rolled_back = False

    @property
    def sql(self) -> list[str]:
        return [sql for sql, _ in self.statements]

    def execute(self, sql: str, params: Any = None) -> RowSet:
        assert not (self.committed or self.rolled_back), "transaction already finished"
        self.statements.append((sql, params))

        for pattern, response in self.executor.responders:
            if re.search(pattern, sql):
                if isinstance(response, BaseException):
                    raise response
                if callable(response):
                    return response(sql, params)
                return response

        created = _CREATE_TEMP.match(sql)
        if created:
            self.temp_tables.add(created.group(1))
            self.created.append(created.group(1))
        dropped = _DROP.match(sql)
        if dropped:
            self.temp_tables.discard(dropped.group(1))
        if "pg_catalog.pg_class" in sql:
            prefix = params["pattern"].split("\\_%")[0].replace("\\_", "_")
            names = sorted(t for t in self.executor.temp_tables if t.startswith(prefix + "_"))
            return RowSet(rows=[(name,) for name in names], rowcount=len(names))
        return RowSet(rowcount=-1)

    def _end(self) -> None:
        self.temp_tables.clear()

    def commit(self) -> None:
        if self.executor.commit_error is not None:
            raise self.executor.commit_error
        self.committed = True
        self._end()

    def rollback(self) -> None:
        self.rolled_back = True
        self._end()
        if self.executor.rollback_error is not None:
            raise self.executor.rollback_error


class FakeExecutor:
    def __init__(self) -> None:
        self.transactions: list[FakeTransaction] = []
        self.responders: list[tuple[str, Response]] = []
        self.commit_error: BaseException | None = None
        self.rollback_error: BaseException | None = None
        self.begin_errors: list[BaseException] = []

    def respond(self, pattern: str, response: Response) -> None:
        self.responders.append((pattern, response))

    @property
    def temp_tables(self) -> set[str]:
        """Live temporary tables of every open transaction, as pg_class shows them."""
        return {name for tx in self.transactions for name in tx.temp_tables}

    def begin(self) -> FakeTransaction:
        if self.begin_errors:
            raise self.begin_errors.pop(0)
        transaction = FakeTransaction(self)
        self.transactions.append(transaction)
        return transaction

    @property
    def sql(self) -> list[str]:
        return [sql for tx in self.transactions for sql in tx.sql]

    @property
    def committed_sql(self) -> list[str]:
        return [sql for tx in self.transactions if tx.committed for sql in tx.sql]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    for name in list(os.environ):
        if name.startswith("AGEGRAPH_"):
            monkeypatch.delenv(name)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def people_schema() -> SchemaDefinition:
    person = VertexLabel(
        properties={
            "name": PropertyDefinition("string", required=True),
            "age": PropertyDefinition("integer"),
        }
    )
    knows = EdgeLabel(
        from_vertex="Person",
        to_vertex="Person",
        properties={"since": PropertyDefinition("integer")},
    )
    return SchemaDefinition("1.0.0", vertices={"Person": person}, edges={"KNOWS": knows})
