"""
Reading and writing schema documents.

A schema document is the JSON form of a SchemaDefinition::

    {
      "version": "1.0.0",
      "vertices": {
        "Person": {
          "properties": {
            "name": {"type": "string"},
            "age": {"type": "integer", "constraints": {"min": 0}}
          },
          "required": ["name"]
        }
      },
      "edges": {
        "KNOWS": {
          "fromVertex": "Person",
          "toVertex": "Person",
          "properties": {"since": {"type": "date"}}
        }
      }
    }

Besides the compact ``constraints`` block, the per-type
``stringConstraints``/``numberConstraints``/``arrayConstraints`` blocks are
accepted. Every problem found is reported in a single CoreError(VALIDATION)
whose ``issues`` context lists each one with its document path.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import CoreError, ErrorKind
from ..storage.typemap import PropertyType, decode_literal
from .issues import IssueCollector
from .model import (
    EdgeLabel,
    PropertyConstraints,
    PropertyDefinition,
    SchemaDefinition,
    VertexLabel,
)


# ---------------------------------------------------------------------------
# Document models
# ---------------------------------------------------------------------------


class ConstraintsDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    min: Optional[float] = None
    max: Optional[float] = None
    pattern: Optional[str] = None


class StringConstraintsDocument(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    min_length: Optional[int] = Field(None, alias="minLength")
    max_length: Optional[int] = Field(None, alias="maxLength")
    pattern: Optional[str] = None


class NumberConstraintsDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    minimum: Optional[float] = None
    maximum: Optional[float] = None


class ArrayConstraintsDocument(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    min_items: Optional[int] = Field(None, alias="minItems")
    max_items: Optional[int] = Field(None, alias="maxItems")


class PropertyDocument(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: PropertyType
    required: bool = False
    default: Any = None
    description: Optional[str] = None
    constraints: Optional[ConstraintsDocument] = None
    string_constraints: Optional[StringConstraintsDocument] = Field(None, alias="stringConstraints")
    number_constraints: Optional[NumberConstraintsDocument] = Field(None, alias="numberConstraints")
    array_constraints: Optional[ArrayConstraintsDocument] = Field(None, alias="arrayConstraints")

    def merged_constraints(self) -> Optional[PropertyConstraints]:
        low = high = None
        pattern = None
        if self.string_constraints is not None:
            low, high = self.string_constraints.min_length, self.string_constraints.max_length
            pattern = self.string_constraints.pattern
        if self.number_constraints is not None:
            low, high = self.number_constraints.minimum, self.number_constraints.maximum
        if self.array_constraints is not None:
            low, high = self.array_constraints.min_items, self.array_constraints.max_items
        if self.constraints is not None:
            # the compact block wins over the per-type blocks
            low = self.constraints.min if self.constraints.min is not None else low
            high = self.constraints.max if self.constraints.max is not None else high
            pattern = self.constraints.pattern or pattern
        if low is None and high is None and pattern is None:
            return None
        return PropertyConstraints(min=low, max=high, pattern=pattern)


class VertexDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    properties: dict[str, PropertyDocument] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)
    description: Optional[str] = None


class EdgeDocument(VertexDocument):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    from_vertex: str = Field(alias="fromVertex")
    to_vertex: str = Field(alias="toVertex")

    @field_validator("from_vertex", "to_vertex", mode="before")
    @classmethod
    def _endpoint_label(cls, value: Any) -> Any:
        # {"label": "Person", ...} is accepted as well as "Person"
        if isinstance(value, Mapping) and "label" in value:
            return value["label"]
        return value


class SchemaDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: str
    vertices: dict[str, VertexDocument] = Field(default_factory=dict)
    edges: dict[str, EdgeDocument] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _coerce_default(value: Any, ptype: PropertyType) -> Any:
    # JSON carries dates as ISO strings
    if isinstance(value, str) and ptype in (PropertyType.DATE, PropertyType.DATETIME):
        return decode_literal(value, ptype)
    return value


def _build_properties(
    issues: IssueCollector,
    documents: Mapping[str, PropertyDocument],
    required: list[str],
) -> dict[str, PropertyDefinition]:
    properties: dict[str, PropertyDefinition] = {}
    with issues.path("required"):
        for index, name in enumerate(required):
            if name not in documents:
                with issues.path(index):
                    issues.add(f"required property {name!r} is not defined", code="unknown_property")

    for name, doc in documents.items():
        with issues.path("properties", name):
            try:
                properties[name] = PropertyDefinition(
                    type=doc.type,
                    required=doc.required or name in required,
                    default=_coerce_default(doc.default, doc.type),
                    constraints=doc.merged_constraints(),
                    description=doc.description,
                )
            except CoreError as exc:
                issues.add_error(exc)
    return properties


def _pydantic_issues(issues: IssueCollector, exc: ValidationError) -> None:
    for error in exc.errors():
        with issues.path(*error["loc"]):
            issues.add(error["msg"], code=error["type"])


def parse_schema(data: Mapping[str, Any]) -> SchemaDefinition:
    """Build a SchemaDefinition from a decoded schema document."""
    issues = IssueCollector()
    try:
        document = SchemaDocument.model_validate(data)
    except ValidationError as exc:
        _pydantic_issues(issues, exc)
        issues.raise_if_issues("Invalid schema document")
        raise

    vertices: dict[str, VertexLabel] = {}
    edges: dict[str, EdgeLabel] = {}

    for label, vdoc in document.vertices.items():
        with issues.path("vertices", label):
            properties = _build_properties(issues, vdoc.properties, vdoc.required)
            try:
                vertices[label] = VertexLabel(properties=properties, description=vdoc.description)
            except CoreError as exc:
                issues.add_error(exc)

    for label, edoc in document.edges.items():
        with issues.path("edges", label):
            properties = _build_properties(issues, edoc.properties, edoc.required)
            try:
                edges[label] = EdgeLabel(
                    from_vertex=edoc.from_vertex,
                    to_vertex=edoc.to_vertex,
                    properties=properties,
                    description=edoc.description,
                )
            except CoreError as exc:
                issues.add_error(exc)

    issues.raise_if_issues("Invalid schema document")

    try:
        return SchemaDefinition(version=document.version, vertices=vertices, edges=edges)
    except CoreError as exc:
        issues.add_error(exc)
        issues.raise_if_issues("Invalid schema document")
        raise


def load_schema(path: Union[str, Path]) -> SchemaDefinition:
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise CoreError(
            ErrorKind.VALIDATION,
            f"Cannot read schema document {path}: {exc}",
            path=str(path),
            cause=exc,
        ) from exc
    return parse_schema(data)


# ---------------------------------------------------------------------------
# Dumping
# ---------------------------------------------------------------------------


def _dump_default(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _dump_property(definition: PropertyDefinition) -> dict[str, Any]:
    data: dict[str, Any] = {"type": definition.type.value}
    if definition.required:
        data["required"] = True
    if definition.has_default:
        data["default"] = _dump_default(definition.default)
    if definition.constraints is not None:
        data["constraints"] = {
            key: value
            for key, value in (
                ("min", definition.constraints.min),
                ("max", definition.constraints.max),
                ("pattern", definition.constraints.pattern),
            )
            if value is not None
        }
    if definition.description:
        data["description"] = definition.description
    return data


def dump_schema(schema: SchemaDefinition) -> dict[str, Any]:
    """JSON-ready document for ``schema``; parse_schema() reads it back."""
    vertices: dict[str, Any] = {}
    for label, vertex in schema.vertices.items():
        vertices[label] = {
            "properties": {n: _dump_property(p) for n, p in vertex.properties.items()}
        }
        if vertex.description:
            vertices[label]["description"] = vertex.description

    edges: dict[str, Any] = {}
    for label, edge in schema.edges.items():
        edges[label] = {
            "fromVertex": edge.from_vertex,
            "toVertex": edge.to_vertex,
            "properties": {n: _dump_property(p) for n, p in edge.properties.items()},
        }
        if edge.description:
            edges[label]["description"] = edge.description

    return {"version": str(schema.version), "vertices": vertices, "edges": edges}
