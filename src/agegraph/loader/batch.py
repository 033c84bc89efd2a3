"""
Transactional bulk loading of vertices and edges.

BatchLoader.load() walks a linear state machine::

    VALIDATING -> STAGING_VERTICES -> STAGING_EDGES -> COMMITTING -> DONE

with a transition to FAILED from every state.

Validation reads every record before anything is staged. Staging streams
records into per-label temporary tables in chunks of ``batch_size`` rows, so
memory use is bounded by the chunk size, not the input size. Endpoint
resolution runs in SQL against the staged and the permanent vertex tables.
The move into permanent storage happens in the same transaction as the
staging, so either the whole load becomes visible or none of it does.
"""

from __future__ import annotations

import json
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from logging import getLogger
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Iterator, Mapping, Optional, Union

from ..config import get_settings
from ..errors import CoreError, ErrorKind, LoadPhase
from ..executor import RowSet, Transaction, TransactionalExecutor, run
from ..schema.diff import ElementKind
from ..schema.issues import IssueCollector
from ..schema.model import EdgeLabel, SchemaDefinition
from ..storage import sqlgen
from ..storage.sqlgen import StorageLayout
from ..storage.typemap import PropertyType, decode_literal, to_bind_value
from .records import RecordSource, as_edge_record, as_vertex_record, iter_source, source_size
from .staging import StagingSession, StagingTable
from .validation import check_edge, check_vertex, resolve_property_values

logger = getLogger(__name__)


class LoadState(str, Enum):
    VALIDATING = "validating"
    STAGING_VERTICES = "staging_vertices"
    STAGING_EDGES = "staging_edges"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class LoadProgress:
    phase: LoadPhase
    label: str
    processed: int
    total: Optional[int]
    elapsed: float

    @property
    def percentage(self) -> Optional[int]:
        if not self.total:
            return None
        return round(100 * self.processed / self.total)


@dataclass(frozen=True, slots=True)
class LabelCount:
    staged: int = 0
    committed: int = 0


@dataclass(frozen=True, slots=True)
class LoadReport:
    """
    Result of a successful load.

    ``timings`` maps phase names (validation, vertices, edges, transaction)
    to elapsed seconds.
    """

    vertices: Mapping[str, LabelCount] = field(default_factory=dict)
    edges: Mapping[str, LabelCount] = field(default_factory=dict)
    timings: Mapping[str, float] = field(default_factory=dict)
    session: str = ""

    @property
    def vertex_count(self) -> int:
        return sum(count.committed for count in self.vertices.values())

    @property
    def edge_count(self) -> int:
        return sum(count.committed for count in self.edges.values())

    @property
    def elapsed(self) -> float:
        return sum(self.timings.values())


ProgressCallback = Callable[[LoadProgress], None]


def list_staging_tables(
    executor: TransactionalExecutor,
    prefix: Optional[str] = None,
    *,
    session: Optional[str] = None,
) -> list[str]:
    """
    Names of staging tables currently present in the backend.

    Without ``session`` this covers the staging tables of every live load,
    including loads running concurrently on other connections. Pass the
    session token of one load (``BatchLoader.session_token`` or
    ``LoadReport.session``) to check only the tables of that load.
    """
    if prefix is None:
        prefix = get_settings().storage.staging_prefix
    if session is not None:
        prefix = f"{prefix}_{session}"
    transaction = executor.begin()
    try:
        rows = run(transaction, sqlgen.list_staging(prefix))
        transaction.commit()
    except BaseException:
        transaction.rollback()
        raise
    return [str(name) for name in rows.scalars()]


class BatchLoader:
    """
    Stages and commits vertex and edge batches in one transaction.

    Parameters
    ----------
    executor:
        TransactionalExecutor providing the loading transaction.
    layout:
        Storage layout; defaults to the configured StorageSettings.
    batch_size:
        Rows per bulk insert into a staging table.
    progress_every:
        Minimum rows between two progress reports for one label.
    staging_prefix:
        Name prefix of the temporary staging tables.
    on_progress:
        Called with a LoadProgress during staging.
    """

    def __init__(
        self,
        executor: TransactionalExecutor,
        *,
        layout: Optional[StorageLayout] = None,
        batch_size: Optional[int] = None,
        progress_every: Optional[int] = None,
        staging_prefix: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        settings = get_settings()
        self._executor = executor
        self._layout = layout if layout is not None else StorageLayout.from_settings(settings.storage)
        self._batch_size = batch_size if batch_size is not None else settings.loader.batch_size
        self._progress_every = (
            progress_every if progress_every is not None else settings.loader.progress_every
        )
        self._staging_prefix = staging_prefix or settings.storage.staging_prefix
        self._on_progress = on_progress
        self._state: Optional[LoadState] = None
        self._session_token: Optional[str] = None

        if self._batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if self._progress_every <= 0:
            raise ValueError("progress_every must be positive")

    @property
    def state(self) -> Optional[LoadState]:
        return self._state

    @property
    def session_token(self) -> Optional[str]:
        """Token in the staging table names of the most recent load."""
        return self._session_token

    def _transition(self, state: LoadState) -> None:
        logger.debug("Load state %s -> %s", self._state, state.value)
        self._state = state

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def load(
        self,
        schema: SchemaDefinition,
        vertex_batches: Optional[Mapping[str, RecordSource]] = None,
        edge_batches: Optional[Mapping[str, RecordSource]] = None,
    ) -> LoadReport:
        vertex_batches = dict(vertex_batches or {})
        edge_batches = dict(edge_batches or {})
        timings: dict[str, float] = {}

        self._transition(LoadState.VALIDATING)
        started = time.perf_counter()
        try:
            self._validate(schema, vertex_batches, edge_batches)
        except BaseException:
            self._transition(LoadState.FAILED)
            raise
        timings[LoadPhase.VALIDATION.value] = time.perf_counter() - started
        logger.info(
            "Validated %d vertex and %d edge batch(es)", len(vertex_batches), len(edge_batches)
        )

        session = StagingSession(self._staging_prefix)
        self._session_token = session.token
        try:
            transaction = self._executor.begin()
        except CoreError as exc:
            self._transition(LoadState.FAILED)
            raise CoreError(
                ErrorKind.BATCH_LOADER,
                f"Cannot open loading transaction: {exc.message}",
                cause=exc,
                phase=LoadPhase.TRANSACTION,
            ) from exc

        try:
            report = self._stage_and_commit(
                transaction, session, schema, vertex_batches, edge_batches, timings
            )
        except Exception as exc:
            self._transition(LoadState.FAILED)
            cleanup_error = self._cleanup(transaction, session)
            if cleanup_error is not None:
                raise CoreError(
                    ErrorKind.BATCH_LOADER,
                    f"Cleanup after failed load also failed: {cleanup_error}",
                    cause=exc,
                    phase=LoadPhase.CLEANUP,
                    cleanup_error=cleanup_error,
                ) from exc
            raise
        except BaseException:
            # cancellation: clean up, but never mask the interrupt
            self._transition(LoadState.FAILED)
            cleanup_error = self._cleanup(transaction, session)
            if cleanup_error is not None:
                logger.error("Cleanup after cancelled load failed: %s", cleanup_error)
            raise

        self._transition(LoadState.DONE)
        logger.info(
            "Loaded %d vertices and %d edges in %.3fs",
            report.vertex_count,
            report.edge_count,
            report.elapsed,
        )
        return report

    def load_file(self, schema: SchemaDefinition, path: Union[str, Path]) -> LoadReport:
        """
        Load a graph data file and delegate to load().

        The file holds one JSON object::

            {"vertices": {"<label>": [{"id": ..., ...}, ...]},
             "edges": {"<label>": [{"from": ..., "to": ..., ...}, ...]}}

        JSON has no date types, so string values of date and datetime
        properties are parsed as ISO 8601; anything unparsable is left for
        validation to reject.
        """
        logger.info("Loading graph data from file %s", path)
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            self._transition(LoadState.FAILED)
            raise CoreError(
                ErrorKind.BATCH_LOADER,
                f"Cannot read graph data file {path}: {exc}",
                cause=exc,
                phase=LoadPhase.VALIDATION,
                path=str(path),
            ) from exc

        if not isinstance(data, dict):
            self._transition(LoadState.FAILED)
            raise CoreError(
                ErrorKind.BATCH_LOADER,
                f"Graph data file {path} must contain a JSON object",
                phase=LoadPhase.VALIDATION,
                path=str(path),
            )
        sections: dict[str, dict[str, Any]] = {}
        for key in ("vertices", "edges"):
            section = data.get(key) or {}
            if not isinstance(section, dict):
                self._transition(LoadState.FAILED)
                raise CoreError(
                    ErrorKind.BATCH_LOADER,
                    f"Graph data file {path} must map {key!r} to an object of label batches",
                    phase=LoadPhase.VALIDATION,
                    path=str(path),
                )
            sections[key] = section

        vertex_batches = {
            label: _parse_temporal(schema.vertices.get(label), records)
            for label, records in sections["vertices"].items()
        }
        edge_batches = {
            label: _parse_temporal(schema.edges.get(label), records)
            for label, records in sections["edges"].items()
        }
        return self.load(schema, vertex_batches, edge_batches)

    # ------------------------------------------------------------------
    # Validating
    # ------------------------------------------------------------------

    def _validate(
        self,
        schema: SchemaDefinition,
        vertex_batches: Mapping[str, RecordSource],
        edge_batches: Mapping[str, RecordSource],
    ) -> None:
        for element, batches, labels in (
            (ElementKind.VERTEX, vertex_batches, schema.vertices),
            (ElementKind.EDGE, edge_batches, schema.edges),
        ):
            checker = check_vertex if element is ElementKind.VERTEX else check_edge
            for label, source in batches.items():
                definition = labels.get(label)
                if definition is None:
                    raise CoreError(
                        ErrorKind.BATCH_LOADER,
                        f"Unknown {element.value} label {label!r}",
                        phase=LoadPhase.VALIDATION,
                        type=label,
                        index=None,
                    )
                try:
                    records = iter_source(source)
                except CoreError as exc:
                    raise CoreError(
                        ErrorKind.BATCH_LOADER,
                        f"Invalid record source for {label!r}: {exc.message}",
                        cause=exc,
                        phase=LoadPhase.VALIDATION,
                        type=label,
                        index=None,
                    ) from exc
                for index, item in enumerate(records):
                    issues = IssueCollector()
                    checker(issues, definition, item)
                    if issues.has_issues():
                        raise CoreError(
                            ErrorKind.BATCH_LOADER,
                            f"Invalid {element.value} record {label}[{index}]: "
                            + "; ".join(str(issue) for issue in issues.issues),
                            phase=LoadPhase.VALIDATION,
                            type=label,
                            index=index,
                            issues=issues.issues,
                        )

    # ------------------------------------------------------------------
    # Staging and commit
    # ------------------------------------------------------------------

    def _stage_and_commit(
        self,
        transaction: Transaction,
        session: StagingSession,
        schema: SchemaDefinition,
        vertex_batches: Mapping[str, RecordSource],
        edge_batches: Mapping[str, RecordSource],
        timings: dict[str, float],
    ) -> LoadReport:
        self._transition(LoadState.STAGING_VERTICES)
        started = time.perf_counter()
        for label, source in vertex_batches.items():
            with _phase(LoadPhase.VERTICES, label):
                table = session.create(transaction, ElementKind.VERTEX, label, schema.vertices[label])
                self._stage(transaction, session, table, LoadPhase.VERTICES, source, _vertex_rows)
        timings[LoadPhase.VERTICES.value] = time.perf_counter() - started

        self._transition(LoadState.STAGING_EDGES)
        started = time.perf_counter()
        for label, source in edge_batches.items():
            edge = schema.edges[label]
            with _phase(LoadPhase.EDGES, label):
                table = session.create(transaction, ElementKind.EDGE, label, edge)
                self._stage(transaction, session, table, LoadPhase.EDGES, source, _edge_rows)
                unresolved = run(transaction, self._resolution_query(session, table, edge))
            self._check_unresolved(label, unresolved)
        timings[LoadPhase.EDGES.value] = time.perf_counter() - started

        self._transition(LoadState.COMMITTING)
        started = time.perf_counter()
        vertices: dict[str, LabelCount] = {}
        edges: dict[str, LabelCount] = {}
        with _phase(LoadPhase.TRANSACTION):
            for table in session.tables:
                committed = self._move(transaction, table)
                counts = vertices if table.element is ElementKind.VERTEX else edges
                counts[table.label] = LabelCount(table.row_count, committed)
            for statement in session.drop_statements():
                run(transaction, statement)
            transaction.commit()
        timings[LoadPhase.TRANSACTION.value] = time.perf_counter() - started

        return LoadReport(
            vertices=MappingProxyType(vertices),
            edges=MappingProxyType(edges),
            timings=MappingProxyType(timings),
            session=session.token,
        )

    def _stage(
        self,
        transaction: Transaction,
        session: StagingSession,
        table: StagingTable,
        phase: LoadPhase,
        source: RecordSource,
        to_rows: Callable[[StagingTable, Iterator[Any]], Iterator[dict[str, Any]]],
    ) -> None:
        total = source_size(source)
        started = time.perf_counter()
        reported = 0
        chunk: list[dict[str, Any]] = []
        for row in to_rows(table, iter_source(source)):
            chunk.append(row)
            if len(chunk) >= self._batch_size:
                session.append(transaction, table, chunk)
                chunk = []
                if table.row_count - reported >= self._progress_every:
                    reported = table.row_count
                    self._report(phase, table, total, started)
        session.append(transaction, table, chunk)
        self._report(phase, table, total, started)
        logger.info("Staged %d %s row(s) for %s", table.row_count, table.element.value, table.label)

    def _report(self, phase: LoadPhase, table: StagingTable, total: Optional[int], started: float) -> None:
        logger.debug("Staging %s %s: %d row(s)", phase.value, table.label, table.row_count)
        if self._on_progress is not None:
            self._on_progress(
                LoadProgress(
                    phase, table.label, table.row_count, total, time.perf_counter() - started
                )
            )

    def _resolution_query(
        self, session: StagingSession, table: StagingTable, edge: EdgeLabel
    ) -> sqlgen.Statement:
        def candidates(vertex_label: str) -> list[str]:
            tables = [self._layout.vertex_table(vertex_label)]
            staged = session.table_for(ElementKind.VERTEX, vertex_label)
            if staged is not None:
                tables.append(staged.quoted)
            return tables

        return sqlgen.first_unresolved_edge(
            table.name, candidates(edge.from_vertex), candidates(edge.to_vertex)
        )

    @staticmethod
    def _check_unresolved(label: str, rows: RowSet) -> None:
        row = rows.first()
        if row is None:
            return
        index, from_id, to_id = int(row[0]), row[1], row[2]
        raise CoreError(
            ErrorKind.BATCH_LOADER,
            f"Edge {label}[{index}] references a vertex that does not exist "
            f"(from={from_id!r}, to={to_id!r})",
            phase=LoadPhase.EDGES,
            type=label,
            index=index,
            from_id=from_id,
            to_id=to_id,
        )

    def _move(self, transaction: Transaction, table: StagingTable) -> int:
        if table.element is ElementKind.VERTEX:
            target = self._layout.vertex_table(table.label)
        else:
            target = self._layout.edge_table(table.label)
        result = run(
            transaction,
            sqlgen.move_staged_rows(
                target, table.name, table.key_columns, table.definition.properties
            ),
        )
        # drivers report -1 when the count is unknown
        return result.rowcount if result.rowcount >= 0 else table.row_count

    # ------------------------------------------------------------------
    # Failure
    # ------------------------------------------------------------------

    def _cleanup(self, transaction: Transaction, session: StagingSession) -> Optional[Exception]:
        """
        Roll back the loading transaction.

        Staging tables are temporary tables of the loading connection, created
        inside the transaction, so the rollback removes them; no other
        connection can see or drop them. Returns the rollback failure instead
        of raising it, so the caller can decide how to surface it next to the
        original error.
        """
        try:
            transaction.rollback()
        except Exception as exc:
            logger.error(
                "Rollback of loading transaction (session %s) failed: %s", session.token, exc
            )
            return exc
        return None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextmanager
def _phase(phase: LoadPhase, label: Optional[str] = None) -> Iterator[None]:
    """Re-raise lower-level CoreErrors as BATCH_LOADER errors tagged with ``phase``."""
    try:
        yield
    except CoreError as exc:
        if exc.kind is ErrorKind.BATCH_LOADER:
            raise
        raise CoreError(
            ErrorKind.BATCH_LOADER,
            f"{phase.value} phase failed: {exc.message}",
            cause=exc,
            phase=phase,
            type=label,
        ) from exc


def _vertex_rows(table: StagingTable, items: Iterator[Any]) -> Iterator[dict[str, Any]]:
    definitions = table.definition.properties
    for seq, item in enumerate(items):
        record = as_vertex_record(item)
        row: dict[str, Any] = {"seq": seq, "id": record.id}
        _bind_properties(row, definitions, record.properties)
        yield row


def _edge_rows(table: StagingTable, items: Iterator[Any]) -> Iterator[dict[str, Any]]:
    definitions = table.definition.properties
    for seq, item in enumerate(items):
        record = as_edge_record(item)
        row: dict[str, Any] = {"seq": seq, "source_id": record.from_id, "target_id": record.to_id}
        _bind_properties(row, definitions, record.properties)
        yield row


def _bind_properties(row: dict[str, Any], definitions: Mapping[str, Any], values: Mapping[str, Any]) -> None:
    resolved = resolve_property_values(definitions, values)
    for position, (definition, value) in enumerate(zip(definitions.values(), resolved)):
        row[f"p{position}"] = to_bind_value(value, definition.type)



_TEMPORAL_TYPES = (PropertyType.DATE, PropertyType.DATETIME)


def _parse_temporal(definition: Any, records: Any) -> Any:
    """Replace ISO 8601 strings of date and datetime properties in file records."""
    if definition is None or not isinstance(records, list):
        return records
    temporal = {
        name: prop.type for name, prop in definition.properties.items() if prop.type in _TEMPORAL_TYPES
    }
    if not temporal:
        return records
    parsed = []
    for record in records:
        if isinstance(record, dict):
            record = dict(record)
            for name, ptype in temporal.items():
                value = record.get(name)
                if isinstance(value, str):
                    try:
                        record[name] = decode_literal(value, ptype)
                    except CoreError:
                        pass
        parsed.append(record)
    return parsed
