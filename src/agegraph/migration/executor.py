"""
Transactional migration execution.

SchemaMigrator walks a linear state machine::

    PLANNED -> VALIDATED -> (BACKED_UP) -> APPLYING -> COMMITTED
                                                    -> ROLLED_BACK

Backups and every step run in a single backend transaction, so a failure at
any point leaves the backend exactly as it was before the migration.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from logging import getLogger
from typing import Callable, Optional

from ..config import get_settings
from ..errors import CoreError, ErrorKind
from ..executor import Transaction, TransactionalExecutor, run
from ..schema.diff import apply_changes
from ..schema.model import SchemaDefinition
from ..storage import sqlgen
from ..storage.sqlgen import StorageLayout
from ..storage.sqlsafe import qualify
from .planner import MigrationPlan, next_version, plan_migration

logger = getLogger(__name__)


class MigrationState(str, Enum):
    PLANNED = "planned"
    VALIDATED = "validated"
    BACKED_UP = "backed_up"
    APPLYING = "applying"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True, slots=True)
class BackupRecord:
    source: str
    backup: str


@dataclass(frozen=True, slots=True)
class MigrationResult:
    """
    Outcome of migrate_schema().

    ``schema`` is the migrated schema (with the resolved version). On a dry
    run ``state`` is VALIDATED and nothing was executed.
    """

    schema: SchemaDefinition
    plan: MigrationPlan
    state: MigrationState
    executed_steps: int = 0
    backups: tuple[BackupRecord, ...] = ()

    @property
    def dry_run(self) -> bool:
        return self.state is MigrationState.VALIDATED

    @property
    def total_steps(self) -> int:
        return len(self.plan.steps)


def _default_layout() -> StorageLayout:
    return StorageLayout.from_settings(get_settings().storage)


class SchemaMigrator:
    """
    Plans, validates and applies one migration.

    Parameters
    ----------
    executor:
        TransactionalExecutor used by ``apply``. May be None for dry runs.
    layout:
        Storage layout; defaults to the configured StorageSettings.
    allow_data_loss:
        Accept plans with destructive steps.
    create_backup:
        Copy tables touched by destructive steps into the backup schema
        before applying them.
    log_migration:
        Log every executed step at INFO. Has no effect on the outcome.
    """

    def __init__(
        self,
        executor: Optional[TransactionalExecutor] = None,
        *,
        layout: Optional[StorageLayout] = None,
        allow_data_loss: bool = False,
        create_backup: bool = True,
        log_migration: bool = True,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._executor = executor
        self._layout = layout if layout is not None else _default_layout()
        self._allow_data_loss = allow_data_loss
        self._create_backup = create_backup
        self._log_migration = log_migration
        self._clock = clock
        self._state: Optional[MigrationState] = None

    @property
    def state(self) -> Optional[MigrationState]:
        return self._state

    @property
    def layout(self) -> StorageLayout:
        return self._layout

    def _transition(self, state: MigrationState) -> None:
        logger.debug("Migration state %s -> %s", self._state, state.value)
        self._state = state

    # ------------------------------------------------------------------
    # Plan / validate
    # ------------------------------------------------------------------

    def plan(self, old: SchemaDefinition, new: SchemaDefinition) -> MigrationPlan:
        plan = plan_migration(old, new, layout=self._layout)
        self._transition(MigrationState.PLANNED)
        return plan

    def validate(self, plan: MigrationPlan) -> None:
        destructive = plan.destructive_steps
        if destructive and not self._allow_data_loss:
            descriptions = tuple(step.description for step in destructive)
            raise CoreError(
                ErrorKind.DATA_LOSS,
                "Migration can cause data loss and allow_data_loss is not set: "
                + ", ".join(descriptions),
                steps=descriptions,
                plan=plan,
            )
        self._transition(MigrationState.VALIDATED)

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def apply(self, plan: MigrationPlan) -> tuple[int, tuple[BackupRecord, ...]]:
        """
        Back up and apply ``plan`` in one transaction.

        Returns the number of executed steps and the backups taken.
        """
        if self._state is not MigrationState.VALIDATED:
            raise CoreError(
                ErrorKind.MIGRATION,
                "Migration plan must be validated before it is applied",
                state=self._state.value if self._state else None,
            )
        if self._executor is None:
            raise CoreError(ErrorKind.MIGRATION, "No executor given for an executing migration")

        transaction = self._executor.begin()
        try:
            run(transaction, sqlgen.create_schema(self._layout.graph_schema))
            backups: tuple[BackupRecord, ...] = ()
            if self._create_backup and plan.can_cause_data_loss:
                backups = self._backup(transaction, plan)
                self._transition(MigrationState.BACKED_UP)

            self._transition(MigrationState.APPLYING)
            executed = self._apply_steps(transaction, plan)

            try:
                transaction.commit()
            except CoreError as exc:
                raise CoreError(
                    ErrorKind.MIGRATION,
                    f"Migration commit failed: {exc.message}",
                    cause=exc,
                    phase="commit",
                ) from exc
        except BaseException:
            self._rollback(transaction)
            raise

        self._transition(MigrationState.COMMITTED)
        logger.info(
            "Migration committed: %d step(s), %d backup(s)", executed, len(backups)
        )
        return executed, backups

    def _backup(self, transaction: Transaction, plan: MigrationPlan) -> tuple[BackupRecord, ...]:
        stamp = f"{self._clock():%Y%m%d%H%M%S}_{uuid.uuid4().hex[:6]}"
        records = []
        table = None
        try:
            run(transaction, sqlgen.create_schema(self._layout.backup_schema))
            for number, table in enumerate(plan.backup_tables(), start=1):
                name = f"bk_{stamp}_{number}"
                run(transaction, sqlgen.backup_table(self._layout, table, name))
                records.append(BackupRecord(table, qualify(self._layout.backup_schema, name)))
                logger.info("Backed up %s to %s", table, records[-1].backup)
        except CoreError as exc:
            raise CoreError(
                ErrorKind.BACKUP,
                f"Backup failed: {exc.message}",
                cause=exc,
                table=table,
            ) from exc
        return tuple(records)

    def _apply_steps(self, transaction: Transaction, plan: MigrationPlan) -> int:
        total = len(plan.steps)
        executed = 0
        for index, step in enumerate(plan.steps):
            if self._log_migration:
                logger.info("Executing migration step %d/%d: %s", index + 1, total, step)
            try:
                for statement in step.statements:
                    run(transaction, statement)
            except CoreError as exc:
                raise CoreError(
                    ErrorKind.MIGRATION,
                    f"Migration step {index + 1}/{total} ({step.description}) failed: {exc.message}",
                    cause=exc,
                    step=step.description,
                    index=index,
                ) from exc
            executed += 1
        return executed

    def _rollback(self, transaction: Transaction) -> None:
        try:
            transaction.rollback()
        except Exception as exc:
            # the original failure is what the caller needs to see
            logger.error("Rollback after failed migration also failed: %s", exc)
        self._transition(MigrationState.ROLLED_BACK)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def migrate_schema(
    old: SchemaDefinition,
    new: SchemaDefinition,
    *,
    executor: Optional[TransactionalExecutor] = None,
    layout: Optional[StorageLayout] = None,
    allow_data_loss: bool = False,
    execute: bool = False,
    create_backup: bool = True,
    log_migration: bool = True,
    auto_increment_version: bool = True,
) -> MigrationResult:
    """
    Migrate from ``old`` to ``new``.

    With ``execute=False`` (the default) only Plan and Validate run and the
    backend is never touched. Raises CoreError(DATA_LOSS) for destructive
    plans unless ``allow_data_loss``; CoreError(BACKUP) or
    CoreError(MIGRATION) when execution fails, after rolling back.
    """
    migrator = SchemaMigrator(
        executor,
        layout=layout,
        allow_data_loss=allow_data_loss,
        create_backup=create_backup,
        log_migration=log_migration,
    )
    plan = migrator.plan(old, new)
    migrator.validate(plan)

    version = next_version(plan) if auto_increment_version else new.version
    schema = apply_changes(old, plan.changes, version=version)

    if not execute:
        logger.info(
            "Dry run: %d change(s), %d step(s), %d destructive",
            len(plan.changes),
            len(plan.steps),
            len(plan.destructive_steps),
        )
        return MigrationResult(schema, plan, MigrationState.VALIDATED)

    executed, backups = migrator.apply(plan)
    return MigrationResult(schema, plan, MigrationState.COMMITTED, executed, backups)


def create_graph_storage(
    executor: TransactionalExecutor,
    schema: SchemaDefinition,
    *,
    layout: Optional[StorageLayout] = None,
) -> MigrationResult:
    """Create the tables for ``schema`` in an empty graph."""
    return migrate_schema(
        SchemaDefinition.empty(schema.version),
        schema,
        executor=executor,
        layout=layout,
        execute=True,
        auto_increment_version=False,
    )
