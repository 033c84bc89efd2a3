"""
Migration planning.

plan_migration() turns the ordered output of compare_schemas() into
executable steps, one per change that needs backend work, each tagged
``destructive`` when it can discard existing data:

- removing a vertex label, an edge label or a property;
- re-pointing an edge label to other endpoint labels (existing edges are
  deleted);
- changing a property type in a way that is not a widening
  (see :func:`agegraph.storage.typemap.is_widening`);
- making a property required without a default to fill existing NULLs.

Changes that only touch descriptions or constraints are checked by the
loader, not the backend, and produce no step.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..schema.diff import ChangeKind, ElementKind, SchemaChange, compare_schemas
from ..schema.model import EdgeLabel, PropertyDefinition, SchemaDefinition, SchemaVersion, VertexLabel
from ..storage import sqlgen
from ..storage.sqlgen import DEFAULT_LAYOUT, Statement, StorageLayout
from ..storage.typemap import is_widening, map_type


@dataclass(frozen=True, slots=True)
class MigrationStep:
    change: SchemaChange
    statements: tuple[Statement, ...]
    destructive: bool
    # existing tables whose data the step can discard
    tables: tuple[str, ...] = ()

    @property
    def description(self) -> str:
        return self.change.describe()

    def __str__(self) -> str:
        flag = " [destructive]" if self.destructive else ""
        return f"{self.description}{flag}"


@dataclass(frozen=True, slots=True)
class MigrationPlan:
    source: SchemaDefinition
    target: SchemaDefinition
    changes: tuple[SchemaChange, ...]
    steps: tuple[MigrationStep, ...]

    @property
    def destructive_steps(self) -> tuple[MigrationStep, ...]:
        return tuple(step for step in self.steps if step.destructive)

    @property
    def can_cause_data_loss(self) -> bool:
        return any(step.destructive for step in self.steps)

    @property
    def is_empty(self) -> bool:
        return not self.steps

    def statements(self) -> list[Statement]:
        return [statement for step in self.steps for statement in step.statements]

    def backup_tables(self) -> list[str]:
        """Tables touched by destructive steps, in step order, without duplicates."""
        seen: dict[str, None] = {}
        for step in self.destructive_steps:
            for table in step.tables:
                seen.setdefault(table, None)
        return list(seen)


# ---------------------------------------------------------------------------
# Destructive classification
# ---------------------------------------------------------------------------


def property_change_is_destructive(before: PropertyDefinition, after: PropertyDefinition) -> bool:
    if not is_widening(before.type, after.type):
        return True
    return after.required and not before.required and not after.has_default


def is_destructive(change: SchemaChange) -> bool:
    if change.kind in (
        ChangeKind.REMOVE_VERTEX,
        ChangeKind.REMOVE_EDGE,
        ChangeKind.REMOVE_PROPERTY,
    ):
        return True
    if change.kind is ChangeKind.MODIFY_EDGE:
        return change.endpoints_changed
    if change.kind is ChangeKind.MODIFY_PROPERTY:
        assert isinstance(change.before, PropertyDefinition)
        assert isinstance(change.after, PropertyDefinition)
        return property_change_is_destructive(change.before, change.after)
    return False


# ---------------------------------------------------------------------------
# Statements per change
# ---------------------------------------------------------------------------


def _table(layout: StorageLayout, change: SchemaChange) -> str:
    if change.element is ElementKind.VERTEX:
        return layout.vertex_table(change.label)
    return layout.edge_table(change.label)


def _modify_property(table: str, name: str, before: PropertyDefinition, after: PropertyDefinition) -> list[Statement]:
    statements: list[Statement] = []
    type_changed = before.type is not after.type
    column_changed = map_type(before.type) is not map_type(after.type)
    default_changed = (
        type_changed
        or before.has_default != after.has_default
        or type(before.default) is not type(after.default)
        or before.default != after.default
    )

    # an old default may not survive the type conversion, so it goes first
    if before.has_default and default_changed:
        statements.append(sqlgen.drop_default(table, name))
    if column_changed:
        statements.append(sqlgen.alter_column_type(table, name, before.type, after.type))
    if after.has_default and default_changed:
        statements.append(sqlgen.set_default(table, name, after.default, after.type))

    if after.required and not before.required:
        if after.has_default:
            statements.append(sqlgen.backfill_nulls(table, name, after.default, after.type))
        statements.append(sqlgen.set_not_null(table, name))
    elif before.required and not after.required:
        statements.append(sqlgen.drop_not_null(table, name))
    return statements


def statements_for(layout: StorageLayout, change: SchemaChange) -> list[Statement]:
    kind = change.kind
    if kind is ChangeKind.ADD_VERTEX:
        assert isinstance(change.after, VertexLabel)
        return sqlgen.create_vertex_table(layout, change.label, change.after)
    if kind is ChangeKind.REMOVE_VERTEX:
        return [sqlgen.drop_vertex_table(layout, change.label)]
    if kind is ChangeKind.ADD_EDGE:
        assert isinstance(change.after, EdgeLabel)
        return sqlgen.create_edge_table(layout, change.label, change.after)
    if kind is ChangeKind.REMOVE_EDGE:
        return [sqlgen.drop_edge_table(layout, change.label)]
    if kind is ChangeKind.MODIFY_EDGE:
        if not change.endpoints_changed:
            return []
        assert isinstance(change.before, EdgeLabel) and isinstance(change.after, EdgeLabel)
        return sqlgen.replace_endpoints(layout, change.label, change.before, change.after)
    if kind is ChangeKind.MODIFY_VERTEX:
        return []

    table = _table(layout, change)
    assert change.property is not None
    if kind is ChangeKind.ADD_PROPERTY:
        assert isinstance(change.after, PropertyDefinition)
        return [sqlgen.add_column(table, change.property, change.after)]
    if kind is ChangeKind.REMOVE_PROPERTY:
        return [sqlgen.drop_column(table, change.property)]
    assert isinstance(change.before, PropertyDefinition)
    assert isinstance(change.after, PropertyDefinition)
    return _modify_property(table, change.property, change.before, change.after)


def _step(layout: StorageLayout, change: SchemaChange) -> Optional[MigrationStep]:
    statements = statements_for(layout, change)
    if not statements:
        return None
    destructive = is_destructive(change)
    tables = (_table(layout, change),) if destructive else ()
    return MigrationStep(change, tuple(statements), destructive, tables)


def plan_migration(
    old: SchemaDefinition,
    new: SchemaDefinition,
    *,
    layout: StorageLayout = DEFAULT_LAYOUT,
) -> MigrationPlan:
    changes = compare_schemas(old, new)
    steps = [step for step in (_step(layout, change) for change in changes) if step is not None]
    return MigrationPlan(old, new, tuple(changes), tuple(steps))


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------


def next_version(plan: MigrationPlan) -> SchemaVersion:
    """
    Version for the migrated schema.

    When the target keeps the source's ``MAJOR.MINOR.PATCH`` while changes
    exist, bump it: major for destructive changes, minor when anything was
    added, patch otherwise. An explicitly moved target version is kept.
    """
    source, target = plan.source.version, plan.target.version
    if not plan.changes or not target.same_release(source):
        return target
    if any(is_destructive(change) for change in plan.changes):
        return target.bump("major")
    if any(change.kind.is_addition for change in plan.changes):
        return target.bump("minor")
    return target.bump("patch")
