"""
agegraph.schema
===============

Versioned schema model, structural diff and schema documents.

Public API:

- SchemaDefinition, VertexLabel, EdgeLabel : immutable schema model.
- PropertyDefinition, PropertyConstraints  : per-property type and constraints.
- SchemaVersion                            : semantic version with total order.
- compare_schemas                          : ordered SchemaChange list between two schemas.
- apply_changes                            : rebuild a schema from a change list.
- parse_schema / load_schema / dump_schema : JSON schema documents.
- IssueCollector / ValidationIssue         : path-scoped validation issues.
"""

from __future__ import annotations

from .model import (
    EdgeLabel,
    PropertyConstraints,
    PropertyDefinition,
    SchemaDefinition,
    SchemaVersion,
    VertexLabel,
)
from .issues import IssueCollector, ValidationIssue
from .diff import ChangeKind, ElementKind, SchemaChange, apply_changes, compare_schemas
from .document import dump_schema, load_schema, parse_schema

__all__ = [
    "EdgeLabel",
    "PropertyConstraints",
    "PropertyDefinition",
    "SchemaDefinition",
    "SchemaVersion",
    "VertexLabel",
    "IssueCollector",
    "ValidationIssue",
    "ChangeKind",
    "ElementKind",
    "SchemaChange",
    "apply_changes",
    "compare_schemas",
    "dump_schema",
    "load_schema",
    "parse_schema",
]
