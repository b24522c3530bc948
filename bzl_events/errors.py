"""Build event engine error hierarchy.

Every error carries typed fields (not just a message string),
supports ``to_dict()`` for structured logging, and has a readable
``__str__``.

Only programming errors (``IllegalStateError``) and explicit lookups
(``MatcherNotFound``, ``FileResolveError``) ever escape a public call.
Malformed events and unresolved references are recovered locally by
the state tracker and never surface as exceptions.
"""

from __future__ import annotations


class BEPError(Exception):
    """Base error for all build event engine failures."""

    def __init__(self, message: str, *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": self.message, **self.detail}

    def __str__(self) -> str:
        return self.message


class IllegalStateError(BEPError):
    """A component was used after it was disposed."""

    def __init__(self, operation: str, component: str) -> None:
        self.operation = operation
        self.component = component
        super().__init__(
            f"Cannot {operation}: {component} has been disposed",
            detail={"operation": operation, "component": component},
        )


class MatcherNotFound(BEPError):
    """No problem matcher is registered under the requested name."""

    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = available
        super().__init__(
            f"Problem matcher '{name}' not found. "
            f"Available: {', '.join(available) or '(none)'}",
            detail={"name": name, "available": available},
        )


class MatcherConfigError(BEPError):
    """A problem matcher definition could not be compiled."""

    def __init__(self, matcher_name: str, reason: str) -> None:
        self.matcher_name = matcher_name
        self.reason = reason
        super().__init__(
            f"Invalid problem matcher '{matcher_name}': {reason}",
            detail={"matcher_name": matcher_name, "reason": reason},
        )


class FileResolveError(BEPError):
    """The bytes behind a diagnostic file reference could not be fetched."""

    def __init__(self, uri: str, reason: str) -> None:
        self.uri = uri
        self.reason = reason
        super().__init__(
            f"Could not resolve '{uri}': {reason}",
            detail={"uri": uri, "reason": reason},
        )
