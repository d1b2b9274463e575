"""Error kinds raised by the gasscope core.

Every error carries the structured context needed to point at the
offending record, field or frame:

    TraceError
      ├─ MalformedTrace          (sequence, field)
      ├─ UnbalancedTrace         (sequence, label)
      └─ TrailingOpenFrames      (open_labels)
    ValidationError
      ├─ UnsupportedSchemaVersion (version)
      ├─ SchemaViolation          (field, path)
      └─ CostInvariantViolation   (path, call_path, expected, actual)
    FetchFailure                  (transaction_id, reason)
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable machine-readable codes for each error kind."""

    MALFORMED_TRACE = "MALFORMED_TRACE"
    UNBALANCED_TRACE = "UNBALANCED_TRACE"
    TRAILING_OPEN_FRAMES = "TRAILING_OPEN_FRAMES"
    UNSUPPORTED_SCHEMA_VERSION = "UNSUPPORTED_SCHEMA_VERSION"
    SCHEMA_VIOLATION = "SCHEMA_VIOLATION"
    COST_INVARIANT_VIOLATION = "COST_INVARIANT_VIOLATION"
    FETCH_FAILURE = "FETCH_FAILURE"


class GasscopeError(Exception):
    """Base exception for all gasscope errors."""

    code: ErrorCode

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def context(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code.value, "message": self.message, **self.context()}


# ── Trace ingestion / reconstruction ─────────────────────────────────────────


class TraceError(GasscopeError):
    """A raw trace could not be turned into a call tree."""


class MalformedTrace(TraceError):
    """A trace record is structurally invalid."""

    code = ErrorCode.MALFORMED_TRACE

    def __init__(
        self,
        message: str,
        sequence: int | None = None,
        field: str | None = None,
    ) -> None:
        where = []
        if sequence is not None:
            where.append(f"record {sequence}")
        if field:
            where.append(f"field '{field}'")
        super().__init__(f"{message} ({', '.join(where)})" if where else message)
        self.sequence = sequence
        self.field = field

    def context(self) -> dict[str, Any]:
        return {"sequence": self.sequence, "field": self.field}


class UnbalancedTrace(TraceError):
    """Enter/Exit events do not nest."""

    code = ErrorCode.UNBALANCED_TRACE

    def __init__(
        self,
        message: str,
        sequence: int | None = None,
        label: str | None = None,
    ) -> None:
        suffix = f" at sequence {sequence}" if sequence is not None else ""
        super().__init__(f"{message}{suffix}")
        self.sequence = sequence
        self.label = label

    def context(self) -> dict[str, Any]:
        return {"sequence": self.sequence, "label": self.label}


class TrailingOpenFrames(TraceError):
    """The event stream ended while frames were still open."""

    code = ErrorCode.TRAILING_OPEN_FRAMES

    def __init__(self, open_labels: list[str]) -> None:
        super().__init__(
            f"Trace ended with {len(open_labels)} open frame(s): "
            + ";".join(open_labels)
        )
        self.open_labels = list(open_labels)

    def context(self) -> dict[str, Any]:
        return {"open_labels": self.open_labels}


# ── Profile validation ───────────────────────────────────────────────────────


class ValidationError(GasscopeError):
    """A serialized profile does not satisfy the schema."""


class UnsupportedSchemaVersion(ValidationError):
    code = ErrorCode.UNSUPPORTED_SCHEMA_VERSION

    def __init__(self, version: Any) -> None:
        super().__init__(f"Unsupported schema version: {version!r}")
        self.version = version

    def context(self) -> dict[str, Any]:
        return {"version": self.version}


class SchemaViolation(ValidationError):
    code = ErrorCode.SCHEMA_VIOLATION

    def __init__(self, field: str, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.field = field
        self.path = path

    def context(self) -> dict[str, Any]:
        return {"field": self.field, "path": self.path}


class CostInvariantViolation(ValidationError):
    code = ErrorCode.COST_INVARIANT_VIOLATION

    def __init__(
        self,
        path: str,
        expected: int,
        actual: int,
        call_path: str = "",
    ) -> None:
        mismatch = actual - expected
        super().__init__(
            f"{path}: totalCost is {actual}, expected {expected} "
            f"(mismatch {mismatch:+d})"
            + (f" [{call_path}]" if call_path else "")
        )
        self.path = path
        self.call_path = call_path
        self.expected = expected
        self.actual = actual
        self.mismatch = mismatch

    def context(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "call_path": self.call_path,
            "expected": self.expected,
            "actual": self.actual,
            "mismatch": self.mismatch,
        }


# ── Boundary layer ───────────────────────────────────────────────────────────


class FetchFailure(GasscopeError):
    """Fetching one transaction's trace failed. Never fatal to a batch."""

    code = ErrorCode.FETCH_FAILURE

    def __init__(self, transaction_id: str, reason: str) -> None:
        super().__init__(f"Failed to fetch trace for {transaction_id}: {reason}")
        self.transaction_id = transaction_id
        self.reason = reason

    def context(self) -> dict[str, Any]:
        return {"transaction_id": self.transaction_id, "reason": self.reason}
