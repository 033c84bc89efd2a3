"""Structured validation issue collection with scoped paths."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Union

from ..errors import CoreError, ErrorKind

PathSegment = Union[str, int]


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    path: tuple[PathSegment, ...]
    message: str
    code: str = "invalid"
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def location(self) -> str:
        return ".".join(str(segment) for segment in self.path)

    def __str__(self) -> str:
        return f"{self.location}: {self.message}" if self.path else self.message


class IssueCollector:
    """
    Accumulates ValidationIssues while walking nested structures.

    The current location is managed with ``path()``, which pushes segments on
    entry and pops them on exit, even when the body raises::

        issues = IssueCollector()
        with issues.path("vertices", "Person"):
            issues.add("missing required property", code="required")
    """

    def __init__(self) -> None:
        self._issues: list[ValidationIssue] = []
        self._path: list[PathSegment] = []

    @contextmanager
    def path(self, *segments: PathSegment) -> Iterator["IssueCollector"]:
        self._path.extend(segments)
        try:
            yield self
        finally:
            if segments:
                del self._path[-len(segments):]

    @property
    def current_path(self) -> tuple[PathSegment, ...]:
        return tuple(self._path)

    def add(self, message: str, *, code: str = "invalid", **details: Any) -> ValidationIssue:
        issue = ValidationIssue(self.current_path, message, code, details)
        self._issues.append(issue)
        return issue

    def add_error(self, error: CoreError) -> ValidationIssue:
        """Record a CoreError raised by a lower layer as an issue at the current path."""
        return self.add(error.message, code=error.kind.value, **dict(error.context))

    @property
    def issues(self) -> tuple[ValidationIssue, ...]:
        return tuple(self._issues)

    def has_issues(self) -> bool:
        return bool(self._issues)

    def __len__(self) -> int:
        return len(self._issues)

    def raise_if_issues(self, message: str, **context: Any) -> None:
        if not self._issues:
            return
        summary = "; ".join(str(issue) for issue in self._issues[:5])
        if len(self._issues) > 5:
            summary += f" (and {len(self._issues) - 5} more)"
        raise CoreError(
            ErrorKind.VALIDATION,
            f"{message}: {summary}",
            issues=self.issues,
            **context,
        )
