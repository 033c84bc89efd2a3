"""
agegraph.migration
==================

Schema migration planning and execution.

Public API:

- plan_migration       : MigrationPlan (ordered, destructive-tagged steps) for two schemas.
- migrate_schema       : plan, validate and (optionally) apply a migration.
- create_graph_storage : create the tables of a schema in an empty graph.
- SchemaMigrator       : the state machine behind migrate_schema.
"""

from __future__ import annotations

from .planner import MigrationPlan, MigrationStep, is_destructive, next_version, plan_migration
from .executor import (
    BackupRecord,
    MigrationResult,
    MigrationState,
    SchemaMigrator,
    create_graph_storage,
    migrate_schema,
)

__all__ = [
    "MigrationPlan",
    "MigrationStep",
    "is_destructive",
    "next_version",
    "plan_migration",
    "BackupRecord",
    "MigrationResult",
    "MigrationState",
    "SchemaMigrator",
    "create_graph_storage",
    "migrate_schema",
]
