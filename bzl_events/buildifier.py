"""Buildifier diagnostics — lint warnings and syntax errors as markers.

``buildifier --lint=warn --format=json`` reports warnings per file::

    {"success": false, "files": [{"filename": "BUILD", "warnings": [
        {"start": {"line": 3, "column": 1}, "end": {"line": 3, "column": 9},
         "category": "load", "actionable": true, "message": "..."}]}]}

When the input does not parse, buildifier prints a single syntax error
on stderr instead (``<stdin>:L:C: message``).
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from bzl_events.markers import Marker, MarkerSeverity

logger = logging.getLogger(__name__)

BUILDIFIER_SOURCE = "buildifier"
INVALID_INPUT = "invalid-input"
_STDIN_PREFIX = "<stdin>:"


class BuildifierPosition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    line: int = Field(default=1, ge=1)
    column: int = Field(default=1, ge=1)


class BuildifierWarning(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    start: BuildifierPosition = Field(default_factory=BuildifierPosition)
    end: BuildifierPosition = Field(default_factory=BuildifierPosition)
    category: str = ""
    actionable: bool = False
    message: str = ""
    url: str | None = None


class BuildifierFile(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    filename: str = ""
    formatted: bool = True
    valid: bool = True
    warnings: list[BuildifierWarning] = Field(default_factory=list)


class BuildifierResult(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    success: bool = True
    files: list[BuildifierFile] = Field(default_factory=list)


def _to_marker(resource: str, warning: BuildifierWarning, severity: MarkerSeverity) -> Marker:
    return Marker(
        resource=resource,
        owner=BUILDIFIER_SOURCE,
        severity=severity,
        message=warning.message,
        start_line_number=warning.start.line,
        start_column=warning.start.column,
        end_line_number=warning.end.line,
        end_column=warning.end.column,
        code=warning.category or None,
        source=BUILDIFIER_SOURCE,
    )


def parse_buildifier_stderr(text: str, resource: str = "<stdin>") -> Marker | None:
    """Turn a ``<stdin>:L:C: message`` syntax error into an ERROR marker.

    Returns ``None`` when *text* is not in that form.
    """
    if not text.startswith(_STDIN_PREFIX):
        return None
    first_line = text.splitlines()[0]
    parts = first_line[len(_STDIN_PREFIX):].split(":")
    if len(parts) < 3:
        return None
    try:
        line = int(parts[0])
        column = int(parts[1])
    except ValueError:
        return None
    position = BuildifierPosition(line=max(line, 1), column=max(column, 1))
    warning = BuildifierWarning(
        start=position,
        end=position,
        category=INVALID_INPUT,
        message=":".join(parts[2:]).strip(),
    )
    return _to_marker(resource, warning, MarkerSeverity.ERROR)


def buildifier_warnings_to_markers(resource: str, payload: dict[str, Any] | str) -> list[Marker]:
    """Convert buildifier JSON lint output into WARNING markers for *resource*.

    Warnings from every reported file are attributed to *resource*, since
    lint runs on one document read from stdin.
    """
    try:
        if isinstance(payload, str):
            result = BuildifierResult.model_validate_json(payload)
        else:
            result = BuildifierResult.model_validate(payload)
    except ValidationError as exc:
        logger.warning("[bep:buildifier] unreadable lint output: %s", exc)
        return []
    return [
        _to_marker(resource, warning, MarkerSeverity.WARNING)
        for file in result.files
        for warning in file.warnings
    ]


__all__ = [
    "BuildifierFile",
    "BuildifierPosition",
    "BuildifierResult",
    "BuildifierWarning",
    "buildifier_warnings_to_markers",
    "parse_buildifier_stderr",
]
