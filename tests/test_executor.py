import pytest
from sqlalchemy import create_engine

from agegraph.errors import CoreError, ErrorKind
from agegraph.executor import (
    RowSet,
    SqlAlchemyExecutor,
    Transaction,
    TransactionalExecutor,
    run,
)
from agegraph.storage.sqlgen import Statement


@pytest.fixture
def sqlite_executor(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'agegraph.db'}")
    executor = SqlAlchemyExecutor(engine)
    tx = executor.begin()
    tx.execute("CREATE TABLE items (id TEXT PRIMARY KEY, n INTEGER)")
    tx.commit()
    yield executor
    executor.dispose()


def _ids(executor: SqlAlchemyExecutor) -> list[str]:
    tx = executor.begin()
    rows = tx.execute("SELECT id FROM items ORDER BY id", {})
    tx.commit()
    return rows.scalars()


def test_adapter_satisfies_protocols(sqlite_executor) -> None:
    assert isinstance(sqlite_executor, TransactionalExecutor)
    tx = sqlite_executor.begin()
    assert isinstance(tx, Transaction)
    tx.rollback()


def test_bulk_insert_and_select(sqlite_executor) -> None:
    tx = sqlite_executor.begin()
    tx.execute(
        "INSERT INTO items (id, n) VALUES (:id, CAST(:n AS INTEGER))",
        [{"id": "a", "n": "1"}, {"id": "b", "n": "2"}],
    )
    tx.commit()

    tx = sqlite_executor.begin()
    result = tx.execute("SELECT id, n FROM items WHERE n >= :low ORDER BY id", {"low": 1})
    tx.commit()

    assert result.rows == [("a", 1), ("b", 2)]
    assert result.first() == ("a", 1)


def test_rollback_discards_changes(sqlite_executor) -> None:
    tx = sqlite_executor.begin()
    tx.execute("INSERT INTO items (id, n) VALUES (:id, :n)", {"id": "x", "n": 1})
    tx.rollback()

    assert _ids(sqlite_executor) == []


def test_statement_error_becomes_execution_error(sqlite_executor) -> None:
    tx = sqlite_executor.begin()
    with pytest.raises(CoreError) as info:
        tx.execute("SELECT * FROM missing_table")
    tx.rollback()

    assert info.value.kind is ErrorKind.EXECUTION
    assert info.value.context["statement"] == "SELECT * FROM missing_table"
    assert info.value.__cause__ is not None


def test_empty_bulk_is_a_no_op(sqlite_executor) -> None:
    tx = sqlite_executor.begin()
    result = tx.execute("INSERT INTO items (id, n) VALUES (:id, :n)", [])
    tx.commit()

    assert result == RowSet()
    assert _ids(sqlite_executor) == []


def test_run_passes_statement_params(sqlite_executor) -> None:
    tx = sqlite_executor.begin()
    run(tx, Statement("INSERT INTO items (id, n) VALUES (:id, :n)", {"id": "s", "n": 3}))
    tx.commit()

    assert _ids(sqlite_executor) == ["s"]
