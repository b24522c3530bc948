"""Markers — structured diagnostic locations and the per-session registry.

A ``Marker`` is one diagnostic produced by the problem matcher engine:
resource, severity, 1-based start/end positions, message and optional
code.  The ``MarkerRegistry`` stores markers keyed by resource for the
lifetime of one build session and notifies listeners whenever a
resource's markers change.

The registry is a plain class (not a singleton): each session owns one
instance and clears it when the next build starts.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Severity
# ---------------------------------------------------------------------------


class MarkerSeverity(enum.IntEnum):
    """Marker severity, ordered by increasing priority."""

    INFO = 1
    WARNING = 2
    ERROR = 3
    FATAL = 4

    @classmethod
    def from_value(cls, value: str | int | None) -> MarkerSeverity | None:
        """Parse a severity name (case-insensitive) or numeric value.

        Returns ``None`` for anything unrecognised.
        """
        if value is None:
            return None
        if isinstance(value, MarkerSeverity):
            return value
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                return None
        return _SEVERITY_ALIASES.get(value.strip().lower())

    def to_diagnostic_severity(self) -> Literal["info", "warning", "error"]:
        """Map to the editor's diagnostic severity names."""
        if self >= MarkerSeverity.ERROR:
            return "error"
        if self == MarkerSeverity.WARNING:
            return "warning"
        return "info"


_SEVERITY_ALIASES: dict[str, MarkerSeverity] = {
    "info": MarkerSeverity.INFO,
    "information": MarkerSeverity.INFO,
    "note": MarkerSeverity.INFO,
    "hint": MarkerSeverity.INFO,
    "warning": MarkerSeverity.WARNING,
    "warn": MarkerSeverity.WARNING,
    "error": MarkerSeverity.ERROR,
    "err": MarkerSeverity.ERROR,
    "fatal": MarkerSeverity.FATAL,
    "fatal error": MarkerSeverity.FATAL,
}


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class Marker(BaseModel):
    """One diagnostic location (positions are 1-based as produced)."""

    model_config = ConfigDict(frozen=True)

    resource: str
    owner: str = ""
    severity: MarkerSeverity = MarkerSeverity.ERROR
    message: str
    start_line_number: int = Field(default=1, ge=1)
    start_column: int = Field(default=1, ge=1)
    end_line_number: int = Field(default=1, ge=1)
    end_column: int = Field(default=1, ge=1)
    code: str | None = None
    source: str | None = None


class Position(BaseModel):
    """0-based editor position."""

    model_config = ConfigDict(frozen=True)

    line: int = Field(..., ge=0)
    character: int = Field(..., ge=0)


class Range(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: Position
    end: Position


class Diagnostic(BaseModel):
    """A marker normalised for an editor diagnostics surface."""

    model_config = ConfigDict(frozen=True)

    range: Range
    message: str
    severity: Literal["info", "warning", "error"]
    code: str | None = None
    source: str | None = None


def marker_to_diagnostic(marker: Marker) -> Diagnostic:
    """Convert a 1-based marker into a 0-based editor diagnostic."""
    start = Position(line=marker.start_line_number - 1, character=marker.start_column - 1)
    end = Position(line=marker.end_line_number - 1, character=marker.end_column - 1)
    return Diagnostic(
        range=Range(start=start, end=end),
        message=marker.message,
        severity=marker.severity.to_diagnostic_severity(),
        code=marker.code,
        source=marker.source or marker.owner or None,
    )


def group_by_resource(markers: Iterable[Marker]) -> dict[str, list[Marker]]:
    """Group markers by resource, preserving first-seen order."""
    grouped: dict[str, list[Marker]] = {}
    for marker in markers:
        if not marker.resource:
            logger.debug("[bep:markers] skipping marker without a resource: %r", marker)
            continue
        grouped.setdefault(marker.resource, []).append(marker)
    return grouped


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

MarkerListener = Callable[[str], None]


class MarkerRegistry:
    """Markers keyed by resource.

    Usage::

        registry = MarkerRegistry()
        unsubscribe = registry.on_did_change(lambda resource: ...)
        registry.set("foo/bar.cc", [marker])
        errors = registry.read(severity=MarkerSeverity.ERROR)
    """

    def __init__(self) -> None:
        self._markers: dict[str, list[Marker]] = {}
        self._listeners: list[MarkerListener] = []

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def set(self, resource: str, markers: Iterable[Marker]) -> None:
        """Replace every marker for *resource*.  An empty list removes it."""
        items = list(markers)
        if items:
            self._markers[resource] = items
        elif resource in self._markers:
            del self._markers[resource]
        else:
            return
        self._fire(resource)

    def extend(self, resource: str, markers: Iterable[Marker]) -> None:
        """Append *markers* to *resource*, skipping exact duplicates."""
        existing = self._markers.get(resource, [])
        merged = list(existing)
        seen = set(existing)
        for marker in markers:
            if marker not in seen:
                seen.add(marker)
                merged.append(marker)
        if len(merged) != len(existing):
            self.set(resource, merged)

    def clear(self) -> None:
        """Remove every marker, notifying once per removed resource."""
        removed = list(self._markers)
        self._markers.clear()
        for resource in removed:
            self._fire(resource)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def read(
        self,
        resource: str | None = None,
        severity: MarkerSeverity | None = None,
        owner: str | None = None,
    ) -> list[Marker]:
        """Return markers matching every given filter.

        *severity* is a minimum: ``WARNING`` returns warnings, errors and
        fatals.  Order is insertion order within a resource.
        """
        if resource is not None:
            buckets = [self._markers.get(resource, [])]
        else:
            buckets = list(self._markers.values())

        result: list[Marker] = []
        for bucket in buckets:
            for marker in bucket:
                if severity is not None and marker.severity < severity:
                    continue
                if owner is not None and marker.owner != owner:
                    continue
                result.append(marker)
        return result

    def resources(self) -> list[str]:
        return list(self._markers)

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._markers.values())

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on_did_change(self, listener: MarkerListener) -> Callable[[], None]:
        """Subscribe to per-resource change notifications.

        Returns a callable that removes the listener.
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _fire(self, resource: str) -> None:
        for listener in list(self._listeners):
            listener(resource)


__all__ = [
    "Diagnostic",
    "Marker",
    "MarkerListener",
    "MarkerRegistry",
    "MarkerSeverity",
    "Position",
    "Range",
    "group_by_resource",
    "marker_to_diagnostic",
]
