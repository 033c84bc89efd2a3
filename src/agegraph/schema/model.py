"""
Immutable, versioned description of vertex and edge labels.

The schema model is shared by the diff engine, the migration planner and
the batch loader. Instances validate their invariants on construction and
are never mutated afterwards; derive new schemas with ``dataclasses.replace``
or the ``with_*``/``without_*`` helpers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from functools import total_ordering
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from ..errors import CoreError, ErrorKind
from ..storage.sqlsafe import check_name
from ..storage.typemap import PropertyType, encode_literal

_VERSION_RE = re.compile(
    r"^(\d+)\.(\d+)\.(\d+)(?:-([0-9A-Za-z.-]+))?(?:\+([0-9A-Za-z.-]+))?$"
)


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------


@total_ordering
@dataclass(frozen=True, slots=True, eq=False)
class SchemaVersion:
    """
    Semantic version ``MAJOR.MINOR.PATCH[-PRERELEASE][+BUILD]``.

    Ordering follows semantic-versioning precedence: build metadata is
    ignored and a pre-release sorts before the corresponding release.
    """

    major: int
    minor: int
    patch: int
    prerelease: Optional[str] = None
    build: Optional[str] = None

    @classmethod
    def parse(cls, text: Union[str, "SchemaVersion"]) -> SchemaVersion:
        if isinstance(text, SchemaVersion):
            return text
        match = _VERSION_RE.match(str(text).strip())
        if match is None:
            raise CoreError(
                ErrorKind.VALIDATION, f"Invalid version string: {text!r}", version=text
            )
        major, minor, patch, prerelease, build = match.groups()
        return cls(int(major), int(minor), int(patch), prerelease, build)

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += f"-{self.prerelease}"
        if self.build:
            text += f"+{self.build}"
        return text

    def _precedence(self) -> tuple:
        if self.prerelease is None:
            # releases sort after every pre-release of the same triple
            pre: tuple = (1,)
        else:
            pre = (0,) + tuple(
                (0, int(part), "") if part.isdigit() else (1, 0, part)
                for part in self.prerelease.split(".")
            )
        return (self.major, self.minor, self.patch, pre)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SchemaVersion):
            return NotImplemented
        return self._precedence() == other._precedence()

    def __lt__(self, other: SchemaVersion) -> bool:
        if not isinstance(other, SchemaVersion):
            return NotImplemented
        return self._precedence() < other._precedence()

    def __hash__(self) -> int:
        return hash(self._precedence())

    def same_release(self, other: SchemaVersion) -> bool:
        return (self.major, self.minor, self.patch) == (other.major, other.minor, other.patch)

    def bump(self, part: str) -> SchemaVersion:
        if part == "major":
            return SchemaVersion(self.major + 1, 0, 0)
        if part == "minor":
            return SchemaVersion(self.major, self.minor + 1, 0)
        if part == "patch":
            return SchemaVersion(self.major, self.minor, self.patch + 1)
        raise ValueError(f"Unknown version part {part!r}")


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PropertyConstraints:
    """
    Value constraints for a property.

    ``min``/``max`` bound numeric values, or the length of strings and
    arrays. ``pattern`` must match a string value in full.
    """

    min: Optional[float] = None
    max: Optional[float] = None
    pattern: Optional[str] = None

    def __post_init__(self) -> None:
        if self.min is not None and self.max is not None and self.min > self.max:
            raise CoreError(
                ErrorKind.VALIDATION,
                f"Constraint min ({self.min}) is greater than max ({self.max})",
            )
        if self.pattern is not None:
            try:
                re.compile(self.pattern)
            except re.error as exc:
                raise CoreError(
                    ErrorKind.VALIDATION,
                    f"Invalid constraint pattern {self.pattern!r}: {exc}",
                    cause=exc,
                ) from exc

    def is_empty(self) -> bool:
        return self.min is None and self.max is None and self.pattern is None


_MEASURED_BY_VALUE = (PropertyType.NUMBER, PropertyType.INTEGER)
_MEASURED_BY_LENGTH = (PropertyType.STRING, PropertyType.ARRAY)


@dataclass(frozen=True, slots=True)
class PropertyDefinition:
    type: PropertyType
    required: bool = False
    default: Any = None
    constraints: Optional[PropertyConstraints] = None
    description: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", PropertyType(self.type))
        if self.constraints is not None and self.constraints.is_empty():
            object.__setattr__(self, "constraints", None)
        if self.default is not None:
            try:
                self.check_value(self.default)
            except CoreError as exc:
                raise CoreError(
                    ErrorKind.VALIDATION,
                    f"Default value {self.default!r} is invalid: {exc.message}",
                    cause=exc,
                ) from exc

    @property
    def has_default(self) -> bool:
        return self.default is not None

    def check_value(self, value: Any) -> None:
        """
        Raise CoreError if ``value`` does not satisfy this definition.

        Type mismatches surface as TYPE_MISMATCH/OUT_OF_RANGE, constraint
        violations as VALIDATION.
        """
        encode_literal(value, self.type)
        constraints = self.constraints
        if constraints is None:
            return

        if self.type in _MEASURED_BY_VALUE:
            measured, what = value, "value"
        elif self.type in _MEASURED_BY_LENGTH:
            measured, what = len(value), "length"
        else:
            measured, what = None, ""

        if measured is not None:
            if constraints.min is not None and measured < constraints.min:
                raise CoreError(
                    ErrorKind.VALIDATION,
                    f"{what} {measured} is below minimum {constraints.min}",
                    constraint="min",
                )
            if constraints.max is not None and measured > constraints.max:
                raise CoreError(
                    ErrorKind.VALIDATION,
                    f"{what} {measured} is above maximum {constraints.max}",
                    constraint="max",
                )
        if (
            constraints.pattern is not None
            and self.type is PropertyType.STRING
            and re.fullmatch(constraints.pattern, value) is None
        ):
            raise CoreError(
                ErrorKind.VALIDATION,
                f"{value!r} does not match pattern {constraints.pattern!r}",
                constraint="pattern",
            )


# ---------------------------------------------------------------------------
# Labels
# ---------------------------------------------------------------------------


def _freeze_properties(properties: Mapping[str, PropertyDefinition]) -> Mapping[str, PropertyDefinition]:
    for name, definition in properties.items():
        check_name(name, what="property name")
        if not isinstance(definition, PropertyDefinition):
            raise CoreError(
                ErrorKind.VALIDATION,
                f"Property {name!r} must be a PropertyDefinition",
                property=name,
            )
    return MappingProxyType(dict(properties))


@dataclass(frozen=True, slots=True)
class VertexLabel:
    properties: Mapping[str, PropertyDefinition] = field(default_factory=dict)
    description: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "properties", _freeze_properties(self.properties))

    def with_property(self, name: str, definition: PropertyDefinition) -> VertexLabel:
        return replace(self, properties={**self.properties, name: definition})

    def without_property(self, name: str) -> VertexLabel:
        return replace(
            self, properties={k: v for k, v in self.properties.items() if k != name}
        )


@dataclass(frozen=True, slots=True)
class EdgeLabel:
    from_vertex: str
    to_vertex: str
    properties: Mapping[str, PropertyDefinition] = field(default_factory=dict)
    description: Optional[str] = None

    def __post_init__(self) -> None:
        check_name(self.from_vertex, what="vertex label")
        check_name(self.to_vertex, what="vertex label")
        object.__setattr__(self, "properties", _freeze_properties(self.properties))

    def with_property(self, name: str, definition: PropertyDefinition) -> EdgeLabel:
        return replace(self, properties={**self.properties, name: definition})

    def without_property(self, name: str) -> EdgeLabel:
        return replace(
            self, properties={k: v for k, v in self.properties.items() if k != name}
        )


Label = Union[VertexLabel, EdgeLabel]


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SchemaDefinition:
    version: SchemaVersion
    vertices: Mapping[str, VertexLabel] = field(default_factory=dict)
    edges: Mapping[str, EdgeLabel] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "version", SchemaVersion.parse(self.version))
        for name in self.vertices:
            check_name(name, what="vertex label")
        for name in self.edges:
            check_name(name, what="edge label")
        object.__setattr__(self, "vertices", MappingProxyType(dict(self.vertices)))
        object.__setattr__(self, "edges", MappingProxyType(dict(self.edges)))

        dangling = sorted(
            f"{name}.{end}={target}"
            for name, edge in self.edges.items()
            for end, target in (("fromVertex", edge.from_vertex), ("toVertex", edge.to_vertex))
            if target not in self.vertices
        )
        if dangling:
            raise CoreError(
                ErrorKind.VALIDATION,
                "Edge endpoints reference unknown vertex labels: " + ", ".join(dangling),
                endpoints=tuple(dangling),
            )

    @classmethod
    def empty(cls, version: Union[str, SchemaVersion] = "0.0.0") -> SchemaDefinition:
        return cls(SchemaVersion.parse(version))

    def vertex(self, label: str) -> VertexLabel:
        try:
            return self.vertices[label]
        except KeyError:
            raise CoreError(
                ErrorKind.VALIDATION, f"Unknown vertex label {label!r}", label=label
            ) from None

    def edge(self, label: str) -> EdgeLabel:
        try:
            return self.edges[label]
        except KeyError:
            raise CoreError(
                ErrorKind.VALIDATION, f"Unknown edge label {label!r}", label=label
            ) from None

    def with_version(self, version: Union[str, SchemaVersion]) -> SchemaDefinition:
        return replace(self, version=SchemaVersion.parse(version))
