"""
Transactional executor seam.

The core never talks to a driver directly. It asks a TransactionalExecutor
for a Transaction and runs every statement of one load or migration on it.
SqlAlchemyExecutor is the production adapter; tests substitute in-memory
fakes that implement the same two protocols.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import Any, Optional, Protocol, runtime_checkable

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import DatabaseSettings
from .errors import CoreError, ErrorKind
from .storage.sqlgen import Params, Statement

logger = getLogger(__name__)


@dataclass(slots=True)
class RowSet:
    rows: list[tuple[Any, ...]] = field(default_factory=list)
    rowcount: int = 0

    def first(self) -> Optional[tuple[Any, ...]]:
        return self.rows[0] if self.rows else None

    def scalars(self) -> list[Any]:
        return [row[0] for row in self.rows]


@runtime_checkable
class Transaction(Protocol):
    def execute(self, sql: str, params: Params = None) -> RowSet:
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


@runtime_checkable
class TransactionalExecutor(Protocol):
    def begin(self) -> Transaction:
        ...


def run(transaction: Transaction, statement: Statement) -> RowSet:
    """Execute a generated Statement on ``transaction``."""
    return transaction.execute(statement.sql, statement.params)


# ---------------------------------------------------------------------------
# SQLAlchemy adapter
# ---------------------------------------------------------------------------


def _execution_error(action: str, exc: SQLAlchemyError, sql: Optional[str] = None) -> CoreError:
    context: dict[str, Any] = {}
    if sql is not None:
        context["statement"] = sql
    return CoreError(
        ErrorKind.EXECUTION,
        f"{action} failed: {exc.__class__.__name__}: {exc}",
        cause=exc,
        **context,
    )


class SqlAlchemyTransaction:
    """
    One connection checked out of the engine pool with an open transaction.

    The connection returns to the pool when the transaction ends, whichever
    way it ends.
    """

    def __init__(self, connection: Connection) -> None:
        self._connection = connection
        self._transaction = connection.begin()

    @property
    def connection(self) -> Connection:
        return self._connection

    def execute(self, sql: str, params: Params = None) -> RowSet:
        try:
            if params is None:
                # no bind processing, so statement text is passed through verbatim
                result = self._connection.exec_driver_sql(sql)
            elif isinstance(params, (list, tuple)):
                if not params:
                    return RowSet()
                result = self._connection.execute(text(sql), list(params))
            else:
                result = self._connection.execute(text(sql), dict(params))
            rows = [tuple(row) for row in result.all()] if result.returns_rows else []
            return RowSet(rows=rows, rowcount=result.rowcount)
        except SQLAlchemyError as exc:
            raise _execution_error("Statement", exc, sql) from exc

    def commit(self) -> None:
        try:
            self._transaction.commit()
        except SQLAlchemyError as exc:
            raise _execution_error("Commit", exc) from exc
        finally:
            self._connection.close()

    def rollback(self) -> None:
        try:
            if self._transaction.is_active:
                self._transaction.rollback()
        except SQLAlchemyError as exc:
            raise _execution_error("Rollback", exc) from exc
        finally:
            self._connection.close()


class SqlAlchemyExecutor:
    """TransactionalExecutor backed by an SQLAlchemy Engine."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine

    def begin(self) -> SqlAlchemyTransaction:
        try:
            connection = self._engine.connect()
        except SQLAlchemyError as exc:
            raise _execution_error("Connect", exc) from exc
        return SqlAlchemyTransaction(connection)

    def dispose(self) -> None:
        self._engine.dispose()


def create_engine_from_settings(settings: DatabaseSettings) -> Engine:
    logger.info(
        "Creating database engine (pool_size=%d, max_overflow=%d)",
        settings.pool_size,
        settings.max_overflow,
    )
    return create_engine(
        str(settings.url),
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        echo=settings.echo,
        pool_pre_ping=True,
    )
