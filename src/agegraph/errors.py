"""
Error taxonomy shared by the schema, migration and loader subsystems.

Every failure raised by agegraph is a CoreError. The ``kind`` discriminant
says what went wrong; ``context`` carries the structured details (phase,
label, index, step, ...) needed to pinpoint the failing record or step.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    TYPE_MISMATCH = "type_mismatch"
    OUT_OF_RANGE = "out_of_range"
    INVALID_IDENTIFIER = "invalid_identifier"
    INVALID_LITERAL = "invalid_literal"
    DATA_LOSS = "data_loss"
    BACKUP = "backup"
    MIGRATION = "migration"
    BATCH_LOADER = "batch_loader"
    EXECUTION = "execution"


class LoadPhase(str, Enum):
    """Phase tag carried by BATCH_LOADER errors."""

    VALIDATION = "validation"
    VERTICES = "vertices"
    EDGES = "edges"
    TRANSACTION = "transaction"
    CLEANUP = "cleanup"


class CoreError(Exception):
    """
    Single error type for the agegraph core.

    Parameters
    ----------
    kind:
        Discriminant, one of ErrorKind.
    message:
        Human-readable summary.
    cause:
        Underlying exception, also installed as ``__cause__``.
    **context:
        Structured payload, e.g. ``phase=LoadPhase.EDGES, label="KNOWS", index=1``.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        cause: Optional[BaseException] = None,
        **context: Any,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.cause = cause
        self.context: Mapping[str, Any] = MappingProxyType(dict(context))
        if cause is not None:
            self.__cause__ = cause

    @property
    def phase(self) -> Optional[str]:
        return self.context.get("phase")

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(
            f"{key}={_short(value)}" for key, value in self.context.items()
        )
        return f"{self.message} ({details})"

    def __repr__(self) -> str:
        return f"CoreError({self.kind.value!r}, {self.message!r})"


def _short(value: Any, limit: int = 80) -> str:
    if isinstance(value, Enum):
        text = str(value.value)
    else:
        text = repr(value) if isinstance(value, str) else str(value)
    return text if len(text) <= limit else text[: limit - 3] + "..."
