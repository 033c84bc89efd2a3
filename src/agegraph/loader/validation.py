"""Record validation against label definitions."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Union

from ..errors import CoreError
from ..schema.issues import IssueCollector, ValidationIssue
from ..schema.model import EdgeLabel, PropertyDefinition, SchemaDefinition, VertexLabel
from .records import EdgeRecord, RecordSource, VertexRecord, as_edge_record, as_vertex_record, iter_source


def check_properties(
    issues: IssueCollector,
    definitions: Mapping[str, PropertyDefinition],
    values: Mapping[str, Any],
) -> None:
    for name in values:
        if name not in definitions:
            with issues.path(name):
                issues.add(f"unknown property {name!r}", code="unknown_property")

    for name, definition in definitions.items():
        value = values.get(name)
        with issues.path(name):
            if value is None:
                if definition.required and not definition.has_default:
                    issues.add("required property is missing", code="required")
                continue
            try:
                definition.check_value(value)
            except CoreError as exc:
                issues.add_error(exc)


def check_vertex(issues: IssueCollector, label: VertexLabel, item: Any) -> Optional[VertexRecord]:
    try:
        record = as_vertex_record(item)
    except CoreError as exc:
        issues.add_error(exc)
        return None
    check_properties(issues, label.properties, record.properties)
    return record


def check_edge(issues: IssueCollector, label: EdgeLabel, item: Any) -> Optional[EdgeRecord]:
    try:
        record = as_edge_record(item)
    except CoreError as exc:
        issues.add_error(exc)
        return None
    check_properties(issues, label.properties, record.properties)
    return record


def resolve_property_values(
    definitions: Mapping[str, PropertyDefinition], values: Mapping[str, Any]
) -> list[Any]:
    """Values in definition order, with defaults filled in for absent properties."""
    resolved = []
    for name, definition in definitions.items():
        value = values.get(name)
        resolved.append(definition.default if value is None else value)
    return resolved


def _check_batches(
    issues: IssueCollector,
    section: str,
    labels: Mapping[str, Union[VertexLabel, EdgeLabel]],
    batches: Mapping[str, RecordSource],
) -> None:
    checker = check_vertex if section == "vertices" else check_edge
    for label, source in batches.items():
        with issues.path(section, label):
            definition = labels.get(label)
            if definition is None:
                issues.add(f"label {label!r} is not defined in the schema", code="unknown_label")
                continue
            try:
                records = iter_source(source)
            except CoreError as exc:
                issues.add_error(exc)
                continue
            for index, item in enumerate(records):
                with issues.path(index):
                    checker(issues, definition, item)


def validate_graph_data(
    schema: SchemaDefinition,
    vertex_batches: Optional[Mapping[str, RecordSource]] = None,
    edge_batches: Optional[Mapping[str, RecordSource]] = None,
) -> tuple[ValidationIssue, ...]:
    """
    Check every record against ``schema`` without touching the backend.

    Returns all issues found; an empty tuple means the data would pass the
    loader's validation phase.
    """
    issues = IssueCollector()
    _check_batches(issues, "vertices", schema.vertices, vertex_batches or {})
    _check_batches(issues, "edges", schema.edges, edge_batches or {})
    return issues.issues
