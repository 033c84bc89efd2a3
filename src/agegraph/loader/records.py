"""Typed input records and record sources for the batch loader."""

from __future__ import annotations

from collections.abc import Iterator, Sized
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from ..errors import CoreError, ErrorKind


@dataclass(frozen=True, slots=True)
class VertexRecord:
    id: str
    properties: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class EdgeRecord:
    from_id: str
    to_id: str
    properties: Mapping[str, Any] = field(default_factory=dict)


VertexInput = Union[VertexRecord, Mapping[str, Any]]
EdgeInput = Union[EdgeRecord, Mapping[str, Any]]

# An iterable that can be walked more than once, or a factory returning a
# fresh iterable on every call.
RecordSource = Union[Iterable[Any], Callable[[], Iterable[Any]]]


def iter_source(source: RecordSource) -> Iterator[Any]:
    """
    Start a new pass over ``source``.

    The loader walks every source twice (validation, then staging), so
    one-shot iterators and generators are rejected; wrap them in a factory
    instead.
    """
    if callable(source) and not isinstance(source, Iterable):
        return iter(source())
    if isinstance(source, Iterator):
        raise CoreError(
            ErrorKind.VALIDATION,
            "Record sources must be re-iterable; pass a sequence or a zero-argument "
            "callable instead of an iterator",
            source=type(source).__name__,
        )
    if not isinstance(source, Iterable):
        raise CoreError(
            ErrorKind.VALIDATION,
            f"Record source of type {type(source).__name__} is not iterable",
            source=type(source).__name__,
        )
    return iter(source)


def source_size(source: RecordSource) -> Optional[int]:
    return len(source) if isinstance(source, Sized) else None


def _identifier(value: Any, what: str) -> str:
    # bool is an int subclass but never a meaningful identifier
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise CoreError(
            ErrorKind.VALIDATION,
            f"{what} must be a string or an integer, got {type(value).__name__}",
            field=what,
        )
    text = str(value)
    if not text:
        raise CoreError(ErrorKind.VALIDATION, f"{what} must not be empty", field=what)
    return text


def as_vertex_record(item: VertexInput) -> VertexRecord:
    """Accept a VertexRecord or a mapping ``{"id": ..., **properties}``."""
    if isinstance(item, VertexRecord):
        return VertexRecord(_identifier(item.id, "id"), item.properties)
    if not isinstance(item, Mapping):
        raise CoreError(
            ErrorKind.VALIDATION,
            f"Vertex record must be a VertexRecord or a mapping, got {type(item).__name__}",
        )
    if "id" not in item:
        raise CoreError(ErrorKind.VALIDATION, "Vertex record has no 'id'", field="id")
    properties = {k: v for k, v in item.items() if k != "id"}
    return VertexRecord(_identifier(item["id"], "id"), properties)


def as_edge_record(item: EdgeInput) -> EdgeRecord:
    """Accept an EdgeRecord or a mapping ``{"from": ..., "to": ..., **properties}``."""
    if isinstance(item, EdgeRecord):
        return EdgeRecord(
            _identifier(item.from_id, "from"), _identifier(item.to_id, "to"), item.properties
        )
    if not isinstance(item, Mapping):
        raise CoreError(
            ErrorKind.VALIDATION,
            f"Edge record must be an EdgeRecord or a mapping, got {type(item).__name__}",
        )
    for key in ("from", "to"):
        if key not in item:
            raise CoreError(ErrorKind.VALIDATION, f"Edge record has no {key!r}", field=key)
    properties = {k: v for k, v in item.items() if k not in ("from", "to")}
    return EdgeRecord(_identifier(item["from"], "from"), _identifier(item["to"], "to"), properties)
