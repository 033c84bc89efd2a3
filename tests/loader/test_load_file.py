import json
from datetime import date

import pytest

from agegraph.errors import CoreError, ErrorKind, LoadPhase
from agegraph.loader import BatchLoader, LoadState
from agegraph.schema import PropertyDefinition, SchemaDefinition


def _write(path, data) -> str:
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


def test_file_is_loaded_in_one_transaction(tmp_path, executor, people_schema) -> None:
    path = _write(
        tmp_path / "graph.json",
        {
            "vertices": {"Person": [{"id": "1", "name": "Ann", "age": 31}, {"id": "2", "name": "Bob"}]},
            "edges": {"KNOWS": [{"from": "1", "to": "2", "since": 2015}]},
        },
    )

    report = BatchLoader(executor).load_file(people_schema, path)

    [tx] = executor.transactions
    assert tx.committed
    assert report.vertex_count == 2 and report.edge_count == 1


def test_file_without_edges(tmp_path, executor, people_schema) -> None:
    path = tmp_path / "graph.json"
    _write(path, {"vertices": {"Person": [{"id": "1", "name": "Ann"}]}})

    report = BatchLoader(executor).load_file(people_schema, path)

    assert report.vertex_count == 1 and report.edge_count == 0


def test_iso_dates_in_file_are_parsed(tmp_path, executor, people_schema) -> None:
    person = people_schema.vertex("Person").with_property("born", PropertyDefinition("date"))
    schema = SchemaDefinition("1.0.0", vertices={"Person": person})
    path = _write(
        tmp_path / "graph.json",
        {"vertices": {"Person": [{"id": "1", "name": "Ann", "born": "1990-05-01"}]}},
    )

    BatchLoader(executor).load_file(schema, path)

    [tx] = executor.transactions
    [params] = [p for sql, p in tx.statements if sql.startswith(f'INSERT INTO "{tx.created[0]}"')]
    assert params[0]["p2"] == date(1990, 5, 1).isoformat()


def test_unparsable_date_is_a_validation_error(tmp_path, executor, people_schema) -> None:
    person = people_schema.vertex("Person").with_property("born", PropertyDefinition("date"))
    schema = SchemaDefinition("1.0.0", vertices={"Person": person})
    path = _write(
        tmp_path / "graph.json",
        {"vertices": {"Person": [{"id": "1", "name": "Ann", "born": "last spring"}]}},
    )

    with pytest.raises(CoreError) as info:
        BatchLoader(executor).load_file(schema, path)

    assert info.value.phase is LoadPhase.VALIDATION
    assert info.value.context["index"] == 0
    assert executor.transactions == []


def test_missing_file(tmp_path, executor, people_schema) -> None:
    path = tmp_path / "absent.json"
    loader = BatchLoader(executor)

    with pytest.raises(CoreError) as info:
        loader.load_file(people_schema, path)

    error = info.value
    assert error.kind is ErrorKind.BATCH_LOADER
    assert error.phase is LoadPhase.VALIDATION
    assert error.context["path"] == str(path)
    assert isinstance(error.cause, FileNotFoundError)
    assert loader.state is LoadState.FAILED
    assert executor.transactions == []


def test_malformed_json(tmp_path, executor, people_schema) -> None:
    path = tmp_path / "broken.json"
    path.write_text('{"vertices": {', encoding="utf-8")

    with pytest.raises(CoreError) as info:
        BatchLoader(executor).load_file(people_schema, path)

    assert info.value.phase is LoadPhase.VALIDATION
    assert isinstance(info.value.cause, json.JSONDecodeError)
    assert executor.transactions == []


@pytest.mark.parametrize("data", [[1, 2], {"vertices": ["Person"]}, {"edges": "KNOWS"}])
def test_wrong_document_shape(tmp_path, executor, people_schema, data) -> None:
    path = _write(tmp_path / "graph.json", data)

    with pytest.raises(CoreError) as info:
        BatchLoader(executor).load_file(people_schema, path)

    assert info.value.kind is ErrorKind.BATCH_LOADER
    assert info.value.phase is LoadPhase.VALIDATION
    assert info.value.context["path"] == path
