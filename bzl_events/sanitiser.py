"""Output sanitisation — escape-code stripping, path normalisation, sorting.

Pure functions applied to tool output before problem matching and to
markers before they are rendered.  No I/O or side effects.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bzl_events.markers import Marker


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# CSI sequences (colours, cursor movement), OSC sequences (titles,
# hyperlinks) terminated by BEL or ST, and lone two-byte escapes.
_ANSI_ESCAPE = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]"
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
    r"|\x1b[@-Z\\-_]"
)


# ---------------------------------------------------------------------------
# Escape codes
# ---------------------------------------------------------------------------


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences.

    >>> strip_ansi("\\x1b[31m\\x1b[1mERROR: \\x1b[0mboom")
    'ERROR: boom'
    """
    if "\x1b" not in text:
        return text
    return _ANSI_ESCAPE.sub("", text)


# ---------------------------------------------------------------------------
# Path normalisation
# ---------------------------------------------------------------------------


def normalise_path(path: str) -> str:
    r"""Normalise a file path: backslash → forward slash.

    >>> normalise_path(r"src\\main\\foo.cc")
    'src/main/foo.cc'
    """
    return path.replace("\\", "/")


def join_path(prefix: str, path: str) -> str:
    """Join *prefix* and *path* with exactly one forward slash."""
    if not prefix:
        return normalise_path(path)
    return normalise_path(prefix).rstrip("/") + "/" + normalise_path(path).lstrip("/")


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------


def sort_markers(markers: list[Marker]) -> list[Marker]:
    """Sort markers by (resource, line, column, severity desc, message)."""
    return sorted(
        markers,
        key=lambda m: (
            normalise_path(m.resource).lower(),
            m.start_line_number,
            m.start_column,
            -int(m.severity),
            m.message,
        ),
    )


__all__ = [
    "join_path",
    "normalise_path",
    "sort_markers",
    "strip_ansi",
]
