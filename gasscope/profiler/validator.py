"""Schema validator for serialized profiles.

Read-only: reports every violation it finds in a single pass and never
repairs the document. An unrecognized ``schemaVersion`` stops validation
immediately, since nothing else can be interpreted safely.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from gasscope.core.errors import (
    CostInvariantViolation,
    SchemaViolation,
    UnsupportedSchemaVersion,
    ValidationError,
)
from gasscope.core.types import PATH_SEPARATOR, FrameStatus
from gasscope.profiler.profile import SchemaVersion

logger = logging.getLogger(__name__)

_STATUSES = frozenset(s.value for s in FrameStatus)


@dataclass
class ValidationReport:
    """Outcome of validating one profile document."""

    schema_version: int | None = None
    violations: list[ValidationError] = field(default_factory=list)
    frames_checked: int = 0

    @property
    def ok(self) -> bool:
        return not self.violations

    def raise_first(self) -> None:
        if self.violations:
            raise self.violations[0]

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.ok,
            "schemaVersion": self.schema_version,
            "framesChecked": self.frames_checked,
            "violations": [v.to_dict() for v in self.violations],
        }


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class _Checker:
    """Collects violations while walking one document."""

    def __init__(self, report: ValidationReport) -> None:
        self.report = report

    def violation(self, name: str, path: str, message: str) -> None:
        self.report.violations.append(SchemaViolation(name, path, message))

    def require(
        self,
        obj: Mapping[str, Any],
        base: str,
        name: str,
        check: Callable[[Any], bool],
        expected: str,
    ) -> bool:
        path = f"{base}.{name}"
        if name not in obj:
            self.violation(name, path, "missing required field")
            return False
        if not check(obj[name]):
            self.violation(name, path, f"expected {expected}, got {type(obj[name]).__name__}")
            return False
        return True

    def cost(self, obj: Mapping[str, Any], base: str, name: str) -> bool:
        if not self.require(obj, base, name, _is_int, "integer"):
            return False
        if obj[name] < 0:
            self.violation(name, f"{base}.{name}", f"must be non-negative, got {obj[name]}")
            return False
        return True


def _check_v1(document: Mapping[str, Any], report: ValidationReport) -> None:
    c = _Checker(report)
    c.require(document, "$", "transactionId", lambda v: isinstance(v, str), "string")
    c.require(document, "$", "blockNumber", lambda v: v is None or (_is_int(v) and v >= 0), "non-negative integer or null")
    if "capturedAt" in document and not (document["capturedAt"] is None or isinstance(document["capturedAt"], str)):
        c.violation("capturedAt", "$.capturedAt", "expected string or null")
    total_ok = c.cost(document, "$", "totalCost")
    if not c.require(document, "$", "root", lambda v: isinstance(v, Mapping), "object"):
        return

    root = document["root"]
    # (node, json path, call path, expected depth)
    stack: list[tuple[Mapping[str, Any], str, str, int]] = [(root, "$.root", "", 0)]
    while stack:
        node, path, parent_call_path, depth = stack.pop()
        report.frames_checked += 1

        label_ok = c.require(node, path, "label", lambda v: isinstance(v, str), "string")
        label = node["label"] if label_ok else "?"
        call_path = f"{parent_call_path}{PATH_SEPARATOR}{label}" if parent_call_path else label

        if c.require(node, path, "depth", _is_int, "integer") and node["depth"] != depth:
            c.violation("depth", f"{path}.depth", f"is {node['depth']}, expected {depth}")
        self_ok = c.cost(node, path, "selfCost")
        frame_total_ok = c.cost(node, path, "totalCost")
        if c.require(node, path, "status", lambda v: isinstance(v, str), "string") and node["status"] not in _STATUSES:
            c.violation("status", f"{path}.status", f"unknown status {node['status']!r}")
        if not c.require(node, path, "children", lambda v: isinstance(v, list), "array"):
            continue

        children_ok = True
        child_total = 0
        pushed: list[tuple[Mapping[str, Any], str, str, int]] = []
        for index, child in enumerate(node["children"]):
            child_path = f"{path}.children[{index}]"
            if not isinstance(child, Mapping):
                c.violation("children", child_path, f"expected object, got {type(child).__name__}")
                children_ok = False
                continue
            if _is_int(child.get("totalCost")):
                child_total += child["totalCost"]
            else:
                children_ok = False
            pushed.append((child, child_path, call_path, depth + 1))

        if self_ok and frame_total_ok and children_ok:
            expected = node["selfCost"] + child_total
            if node["totalCost"] != expected:
                report.violations.append(
                    CostInvariantViolation(f"{path}.totalCost", expected, node["totalCost"], call_path)
                )
        stack.extend(reversed(pushed))

    if total_ok and _is_int(root.get("totalCost")) and document["totalCost"] != root["totalCost"]:
        report.violations.append(
            CostInvariantViolation("$.totalCost", root["totalCost"], document["totalCost"])
        )


_CHECKERS: dict[SchemaVersion, Callable[[Mapping[str, Any], ValidationReport], None]] = {
    SchemaVersion.V1: _check_v1,
}


def validate_profile(document: Mapping[str, Any] | str | bytes) -> ValidationReport:
    """Validate a serialized profile against its declared schema version.

    Returns a report listing every ``UnsupportedSchemaVersion``,
    ``SchemaViolation`` and ``CostInvariantViolation`` found.
    """
    report = ValidationReport()

    if isinstance(document, (str, bytes, bytearray)):
        try:
            document = json.loads(document)
        except ValueError as exc:
            report.violations.append(SchemaViolation("$", "$", f"not valid JSON: {exc}"))
            return report
    if not isinstance(document, Mapping):
        report.violations.append(
            SchemaViolation("$", "$", f"profile must be an object, got {type(document).__name__}")
        )
        return report

    if "schemaVersion" not in document:
        report.violations.append(
            SchemaViolation("schemaVersion", "$.schemaVersion", "missing required field")
        )
        return report
    raw_version = document["schemaVersion"]
    if not _is_int(raw_version):
        report.violations.append(UnsupportedSchemaVersion(raw_version))
        return report
    try:
        version = SchemaVersion(raw_version)
    except ValueError:
        report.violations.append(UnsupportedSchemaVersion(raw_version))
        return report

    report.schema_version = version.value
    _CHECKERS[version](document, report)

    logger.debug(
        "Validated profile v%d: %d frames, %d violations",
        version.value,
        report.frames_checked,
        len(report.violations),
    )
    return report
