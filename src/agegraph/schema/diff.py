"""
Structural diff between two SchemaDefinitions.

compare_schemas() is a pure set comparison of label and property keys. Its
output order is deterministic and the migration planner relies on it:

* vertex changes before edge changes,
* within each element kind: removals, then additions, then modifications,
* within each bucket: alphabetical by label, then by property name.
"""

from __future__ import annotations

import builtins
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Union

from ..errors import CoreError, ErrorKind
from .model import EdgeLabel, Label, PropertyDefinition, SchemaDefinition, SchemaVersion, VertexLabel


class ElementKind(str, Enum):
    VERTEX = "vertex"
    EDGE = "edge"


class ChangeKind(str, Enum):
    ADD_VERTEX = "add_vertex"
    REMOVE_VERTEX = "remove_vertex"
    MODIFY_VERTEX = "modify_vertex"
    ADD_EDGE = "add_edge"
    REMOVE_EDGE = "remove_edge"
    MODIFY_EDGE = "modify_edge"
    ADD_PROPERTY = "add_property"
    REMOVE_PROPERTY = "remove_property"
    MODIFY_PROPERTY = "modify_property"

    @property
    def is_removal(self) -> bool:
        return self in _REMOVALS

    @property
    def is_addition(self) -> bool:
        return self in _ADDITIONS

    @property
    def is_modification(self) -> bool:
        return self in _MODIFICATIONS

    @property
    def targets_property(self) -> bool:
        return self in _PROPERTY_KINDS


_REMOVALS = frozenset({ChangeKind.REMOVE_VERTEX, ChangeKind.REMOVE_EDGE, ChangeKind.REMOVE_PROPERTY})
_ADDITIONS = frozenset({ChangeKind.ADD_VERTEX, ChangeKind.ADD_EDGE, ChangeKind.ADD_PROPERTY})
_MODIFICATIONS = frozenset({ChangeKind.MODIFY_VERTEX, ChangeKind.MODIFY_EDGE, ChangeKind.MODIFY_PROPERTY})
_PROPERTY_KINDS = frozenset(
    {ChangeKind.ADD_PROPERTY, ChangeKind.REMOVE_PROPERTY, ChangeKind.MODIFY_PROPERTY}
)

_INVERSE_KIND = {
    ChangeKind.ADD_VERTEX: ChangeKind.REMOVE_VERTEX,
    ChangeKind.REMOVE_VERTEX: ChangeKind.ADD_VERTEX,
    ChangeKind.ADD_EDGE: ChangeKind.REMOVE_EDGE,
    ChangeKind.REMOVE_EDGE: ChangeKind.ADD_EDGE,
    ChangeKind.ADD_PROPERTY: ChangeKind.REMOVE_PROPERTY,
    ChangeKind.REMOVE_PROPERTY: ChangeKind.ADD_PROPERTY,
    ChangeKind.MODIFY_VERTEX: ChangeKind.MODIFY_VERTEX,
    ChangeKind.MODIFY_EDGE: ChangeKind.MODIFY_EDGE,
    ChangeKind.MODIFY_PROPERTY: ChangeKind.MODIFY_PROPERTY,
}

ChangeValue = Union[VertexLabel, EdgeLabel, PropertyDefinition, None]


@dataclass(frozen=True, slots=True)
class SchemaChange:
    """
    One structural difference.

    ``before``/``after`` hold the label (for label-level changes) or the
    PropertyDefinition (for property-level changes) on either side; the
    missing side of an addition or removal is None.
    """

    kind: ChangeKind
    element: ElementKind
    label: str
    property: Optional[str] = None
    before: ChangeValue = None
    after: ChangeValue = None

    @builtins.property
    def path(self) -> str:
        root = "vertices" if self.element is ElementKind.VERTEX else "edges"
        if self.property is None:
            return f"{root}.{self.label}"
        return f"{root}.{self.label}.properties.{self.property}"

    @builtins.property
    def endpoints_changed(self) -> bool:
        if self.kind is not ChangeKind.MODIFY_EDGE:
            return False
        before, after = self.before, self.after
        assert isinstance(before, EdgeLabel) and isinstance(after, EdgeLabel)
        return (before.from_vertex, before.to_vertex) != (after.from_vertex, after.to_vertex)

    def inverse(self) -> SchemaChange:
        """The change that undoes this one."""
        return replace(self, kind=_INVERSE_KIND[self.kind], before=self.after, after=self.before)

    def describe(self) -> str:
        verb, _, noun = self.kind.value.partition("_")
        if self.property is None:
            return f"{verb} {noun} {self.label}"
        return f"{verb} {self.element.value} property {self.label}.{self.property}"

    def __str__(self) -> str:
        return self.describe()


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------


def _order_key(change: SchemaChange) -> tuple:
    element = 0 if change.element is ElementKind.VERTEX else 1
    if change.kind.is_removal:
        bucket = 0
    elif change.kind.is_addition:
        bucket = 1
    else:
        bucket = 2
    return (element, bucket, change.label, change.property or "")


def _same_default(a: Any, b: Any) -> bool:
    # 1 == 1.0 == True, but they are different defaults
    return type(a) is type(b) and a == b


def properties_differ(before: PropertyDefinition, after: PropertyDefinition) -> bool:
    return (
        before.type is not after.type
        or before.required != after.required
        or not _same_default(before.default, after.default)
        or before.constraints != after.constraints
    )


def _compare_properties(
    element: ElementKind,
    label: str,
    before: Mapping[str, PropertyDefinition],
    after: Mapping[str, PropertyDefinition],
) -> list[SchemaChange]:
    changes = []
    for name in before.keys() - after.keys():
        changes.append(
            SchemaChange(ChangeKind.REMOVE_PROPERTY, element, label, name, before=before[name])
        )
    for name in after.keys() - before.keys():
        changes.append(
            SchemaChange(ChangeKind.ADD_PROPERTY, element, label, name, after=after[name])
        )
    for name in before.keys() & after.keys():
        if properties_differ(before[name], after[name]):
            changes.append(
                SchemaChange(
                    ChangeKind.MODIFY_PROPERTY,
                    element,
                    label,
                    name,
                    before=before[name],
                    after=after[name],
                )
            )
    return changes


def _label_attributes(label: Label) -> tuple:
    if isinstance(label, EdgeLabel):
        return (label.from_vertex, label.to_vertex, label.description)
    return (label.description,)


_KINDS = {
    ElementKind.VERTEX: (ChangeKind.ADD_VERTEX, ChangeKind.REMOVE_VERTEX, ChangeKind.MODIFY_VERTEX),
    ElementKind.EDGE: (ChangeKind.ADD_EDGE, ChangeKind.REMOVE_EDGE, ChangeKind.MODIFY_EDGE),
}


def _compare_labels(
    element: ElementKind,
    before: Mapping[str, Label],
    after: Mapping[str, Label],
) -> list[SchemaChange]:
    add, remove, modify = _KINDS[element]
    changes = []
    for label in before.keys() - after.keys():
        changes.append(SchemaChange(remove, element, label, before=before[label]))
    for label in after.keys() - before.keys():
        changes.append(SchemaChange(add, element, label, after=after[label]))
    for label in before.keys() & after.keys():
        old, new = before[label], after[label]
        if _label_attributes(old) != _label_attributes(new):
            changes.append(SchemaChange(modify, element, label, before=old, after=new))
        changes.extend(_compare_properties(element, label, old.properties, new.properties))
    return changes


def compare_schemas(old: SchemaDefinition, new: SchemaDefinition) -> list[SchemaChange]:
    """
    Ordered list of changes turning ``old`` into ``new``.

    Versions are not compared; an identical pair of label sets yields an
    empty list whatever the versions say.
    """
    changes = _compare_labels(ElementKind.VERTEX, old.vertices, new.vertices)
    changes.extend(_compare_labels(ElementKind.EDGE, old.edges, new.edges))
    return sorted(changes, key=_order_key)


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def _missing(change: SchemaChange) -> CoreError:
    return CoreError(
        ErrorKind.VALIDATION,
        f"Cannot {change.describe()}: {change.element.value} label {change.label!r} does not exist",
        change=change.path,
    )


def _apply_one(labels: dict[str, Any], change: SchemaChange) -> None:
    kind = change.kind
    if kind in (ChangeKind.ADD_VERTEX, ChangeKind.ADD_EDGE):
        if change.label in labels:
            raise CoreError(
                ErrorKind.VALIDATION,
                f"Cannot {change.describe()}: label already exists",
                change=change.path,
            )
        labels[change.label] = change.after
        return

    if change.label not in labels:
        raise _missing(change)
    current = labels[change.label]

    if kind in (ChangeKind.REMOVE_VERTEX, ChangeKind.REMOVE_EDGE):
        del labels[change.label]
    elif kind in (ChangeKind.MODIFY_VERTEX, ChangeKind.MODIFY_EDGE):
        # label-level attributes only; properties change through their own entries
        labels[change.label] = replace(change.after, properties=current.properties)
    elif kind is ChangeKind.REMOVE_PROPERTY:
        if change.property not in current.properties:
            raise CoreError(
                ErrorKind.VALIDATION,
                f"Cannot {change.describe()}: property does not exist",
                change=change.path,
            )
        labels[change.label] = current.without_property(change.property)
    else:
        # ADD_PROPERTY and MODIFY_PROPERTY both install the new definition
        labels[change.label] = current.with_property(change.property, change.after)


def apply_changes(
    schema: SchemaDefinition,
    changes: Iterable[SchemaChange],
    version: Union[str, SchemaVersion, None] = None,
) -> SchemaDefinition:
    """
    Apply ``changes`` in order and return the resulting schema.

    The result is validated as a whole, so intermediate states may violate
    schema invariants (e.g. an edge added before its endpoint vertex).
    """
    vertices: dict[str, Any] = dict(schema.vertices)
    edges: dict[str, Any] = dict(schema.edges)
    for change in changes:
        _apply_one(vertices if change.element is ElementKind.VERTEX else edges, change)
    return SchemaDefinition(
        version=schema.version if version is None else version,
        vertices=vertices,
        edges=edges,
    )
