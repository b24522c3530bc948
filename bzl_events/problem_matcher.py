"""Problem matchers — configuration models, compiled patterns, registry.

A problem matcher turns tool output lines into ``Marker`` objects.  Each
matcher is declared in settings as JSON and registered under a name,
normally the mnemonic of the action whose output it understands
(``CppCompile``, ``Javac``, ``GoCompilePkg``...).

Example definition::

    {
      "name": "CppCompile",
      "owner": "bazel",
      "fileLocation": ["relative", "${workspaceRoot}"],
      "pattern": {
        "regexp": "^(?<file>\\\\S+):(?<line>\\\\d+):(?<column>\\\\d+): (?<severity>error|warning): (?<message>.+)$"
      }
    }

Capture groups are referenced either by explicit index (``"file": 1``)
or by naming the group after the field it fills.  JavaScript-style
``(?<name>...)`` groups are accepted and rewritten to Python syntax.

A matcher with ``background.beginsPattern`` is a *block* matcher: it
only applies between its begin trigger and its end trigger (or the next
blank line when no end trigger is configured).
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from bzl_events.errors import MatcherConfigError
from bzl_events.markers import Marker, MarkerSeverity
from bzl_events.sanitiser import join_path, normalise_path

logger = logging.getLogger(__name__)

UriProvider = Callable[[str], str]

# Field kinds a pattern stage can capture, with the group names that fill
# each kind when no explicit index is configured.
_GROUP_NAMES: dict[str, tuple[str, ...]] = {
    "file": ("file",),
    "line": ("line",),
    "column": ("column", "col"),
    "end_line": ("end_line", "endLine"),
    "end_column": ("end_column", "endColumn", "end_col", "endCol"),
    "severity": ("severity",),
    "code": ("code",),
    "message": ("message", "msg"),
    "location": ("location",),
}

_JS_NAMED_GROUP = re.compile(r"(?<!\\)\(\?<(?=[A-Za-z_])")
_WINDOWS_DRIVE = re.compile(r"^[A-Za-z]:[/\\]")


# ---------------------------------------------------------------------------
# Configuration models
# ---------------------------------------------------------------------------


class _ConfigModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ProblemPatternConfig(_ConfigModel):
    """One regex stage of a (possibly multi-line) matcher."""

    regexp: str = Field(..., min_length=1)
    file: int | None = Field(default=None, ge=0)
    line: int | None = Field(default=None, ge=0)
    column: int | None = Field(default=None, ge=0)
    end_line: int | None = Field(default=None, ge=0)
    end_column: int | None = Field(default=None, ge=0)
    severity: int | None = Field(default=None, ge=0)
    code: int | None = Field(default=None, ge=0)
    message: int | None = Field(default=None, ge=0)
    location: int | None = Field(default=None, ge=0)
    loop: bool = False


class BackgroundConfig(_ConfigModel):
    """Begin/end triggers for block-structured tool output."""

    begins_pattern: str = Field(..., min_length=1)
    ends_pattern: str | None = None

    @field_validator("begins_pattern", "ends_pattern", mode="before")
    @classmethod
    def _unwrap_regexp(cls, value: Any) -> Any:
        # Editors also accept {"regexp": "..."} objects here.
        if isinstance(value, dict):
            return value.get("regexp")
        return value


class ProblemMatcherConfig(_ConfigModel):
    """A named problem matcher definition as loaded from settings."""

    name: str = Field(..., min_length=1)
    owner: str = "bazel"
    source: str | None = None
    severity: str | None = None
    file_location: str | list[str] | None = None
    apply_to: Literal["all", "diagnostics"] = "all"
    severities: dict[str, str] = Field(default_factory=dict)
    pattern: list[ProblemPatternConfig] = Field(default_factory=list)
    background: BackgroundConfig | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalise(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "background" not in data and "watching" in data:
            data["background"] = data.pop("watching")
        pattern = data.get("pattern")
        if isinstance(pattern, dict):
            data["pattern"] = [pattern]
        return data


# ---------------------------------------------------------------------------
# Compiled pattern + matcher
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProblemPattern:
    """A compiled regex stage with its resolved capture groups."""

    regexp: re.Pattern[str]
    groups: dict[str, int | str]
    loop: bool = False

    def match(self, line: str) -> dict[str, str] | None:
        """Return the captured field values, or ``None`` on no match."""
        m = self.regexp.search(line)
        if m is None:
            return None
        data: dict[str, str] = {}
        for kind, ref in self.groups.items():
            value = m.group(ref)
            if value is not None:
                data[kind] = value
        return data


@dataclass(frozen=True)
class FileLocation:
    kind: Literal["asis", "absolute", "relative", "autodetect"] = "asis"
    prefix: str = ""


@dataclass(frozen=True)
class ProblemMatcher:
    """A compiled, immutable problem matcher."""

    name: str
    patterns: tuple[ProblemPattern, ...]
    owner: str = "bazel"
    source: str | None = None
    severity: MarkerSeverity | None = None
    file_location: FileLocation = field(default_factory=FileLocation)
    apply_to: Literal["all", "diagnostics"] = "all"
    severities: dict[str, MarkerSeverity] = field(default_factory=dict, hash=False)
    begins: re.Pattern[str] | None = None
    ends: re.Pattern[str] | None = None

    @property
    def is_block(self) -> bool:
        return self.begins is not None

    def is_begin(self, line: str) -> bool:
        return self.begins is not None and self.begins.search(line) is not None

    def is_end(self, line: str) -> bool:
        if self.ends is None:
            return not line.strip()
        return self.ends.search(line) is not None

    def resolve_resource(self, path: str, uri_provider: UriProvider | None = None) -> str:
        """Apply the file location rule, then the caller's URI provider."""
        loc = self.file_location
        path = path.strip()
        if loc.kind == "relative" or (loc.kind == "autodetect" and not _is_absolute(path)):
            resource = join_path(loc.prefix, path)
        else:
            resource = normalise_path(path)
        if uri_provider is not None:
            resource = uri_provider(resource)
        return resource

    def resolve_severity(self, text: str | None) -> MarkerSeverity:
        if text:
            key = text.strip().lower()
            if key in self.severities:
                return self.severities[key]
            parsed = MarkerSeverity.from_value(key)
            if parsed is not None:
                return parsed
        return self.severity or MarkerSeverity.ERROR

    def create_marker(
        self,
        data: dict[str, str],
        uri_provider: UriProvider | None = None,
    ) -> Marker | None:
        """Build a marker from the values captured across all stages.

        Returns ``None`` when no file was captured or when ``apply_to``
        filters the severity out.
        """
        file = data.get("file")
        if not file:
            logger.debug("[bep:matcher] %s: match without a file, skipped", self.name)
            return None

        line, column, end_line, end_column = _parse_location(data)
        severity = self.resolve_severity(data.get("severity"))
        if self.apply_to == "diagnostics" and severity < MarkerSeverity.WARNING:
            return None

        return Marker(
            resource=self.resolve_resource(file, uri_provider),
            owner=self.owner,
            severity=severity,
            message=data.get("message", "").strip(),
            start_line_number=line,
            start_column=column,
            end_line_number=max(end_line, line),
            end_column=end_column if end_line > line else max(end_column, column),
            code=data.get("code"),
            source=self.source,
        )


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------


def translate_regexp(pattern: str) -> str:
    """Rewrite JavaScript ``(?<name>`` groups to Python ``(?P<name>``."""
    return _JS_NAMED_GROUP.sub("(?P<", pattern)


def _compile(matcher_name: str, pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(translate_regexp(pattern))
    except re.error as exc:
        raise MatcherConfigError(matcher_name, f"invalid regexp {pattern!r}: {exc}") from exc


def _compile_stage(matcher_name: str, index: int, config: ProblemPatternConfig) -> ProblemPattern:
    regexp = _compile(matcher_name, config.regexp)
    groups: dict[str, int | str] = {}
    for kind, names in _GROUP_NAMES.items():
        explicit = getattr(config, kind)
        if explicit is not None:
            if explicit > regexp.groups:
                raise MatcherConfigError(
                    matcher_name,
                    f"pattern {index}: group {explicit} for '{kind}' exceeds "
                    f"the {regexp.groups} groups in the regexp",
                )
            groups[kind] = explicit
            continue
        for name in names:
            if name in regexp.groupindex:
                groups[kind] = name
                break
    return ProblemPattern(regexp=regexp, groups=groups, loop=config.loop)


def _compile_file_location(matcher_name: str, value: str | list[str] | None) -> FileLocation:
    if value is None:
        return FileLocation()
    parts = [value] if isinstance(value, str) else list(value)
    if not parts:
        return FileLocation()
    kind, prefix = parts[0], (parts[1] if len(parts) > 1 else "")
    if kind not in ("absolute", "relative", "autodetect"):
        raise MatcherConfigError(matcher_name, f"unknown fileLocation {kind!r}")
    return FileLocation(kind=kind, prefix=prefix)


def compile_matcher(config: ProblemMatcherConfig) -> ProblemMatcher:
    """Validate and compile a matcher definition.

    Raises :class:`MatcherConfigError` for invalid definitions.
    """
    name = config.name
    if not config.pattern:
        raise MatcherConfigError(name, "pattern list is empty")
    patterns = tuple(
        _compile_stage(name, i, stage) for i, stage in enumerate(config.pattern)
    )

    if not any("message" in p.groups for p in patterns):
        raise MatcherConfigError(name, "no pattern captures a message")
    if not any("file" in p.groups for p in patterns):
        raise MatcherConfigError(name, "no pattern captures a file")
    if any(p.loop for p in patterns[:-1]):
        raise MatcherConfigError(name, "only the last pattern may loop")

    severity = None
    if config.severity is not None:
        severity = MarkerSeverity.from_value(config.severity)
        if severity is None:
            raise MatcherConfigError(name, f"unknown severity {config.severity!r}")

    severities: dict[str, MarkerSeverity] = {}
    for text, target in config.severities.items():
        parsed = MarkerSeverity.from_value(target)
        if parsed is None:
            raise MatcherConfigError(name, f"unknown severity {target!r} for {text!r}")
        severities[text.strip().lower()] = parsed

    begins = ends = None
    if config.background is not None:
        begins = _compile(name, config.background.begins_pattern)
        if config.background.ends_pattern:
            ends = _compile(name, config.background.ends_pattern)

    return ProblemMatcher(
        name=name,
        patterns=patterns,
        owner=config.owner,
        source=config.source,
        severity=severity,
        file_location=_compile_file_location(name, config.file_location),
        apply_to=config.apply_to,
        severities=severities,
        begins=begins,
        ends=ends,
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ProblemMatcherRegistry:
    """Matchers keyed by name (mnemonic), in declaration order.

    Several definitions may share a name; ``get()`` returns them in the
    order they were added, which is the order the collector tries them.
    """

    def __init__(self) -> None:
        self._matchers: dict[str, list[ProblemMatcher]] = {}

    def add(self, matcher: ProblemMatcher) -> None:
        self._matchers.setdefault(matcher.name, []).append(matcher)

    def get(self, name: str) -> list[ProblemMatcher]:
        return list(self._matchers.get(name, []))

    def has(self, name: str) -> bool:
        return name in self._matchers

    def names(self) -> list[str]:
        return list(self._matchers)

    def __len__(self) -> int:
        return len(self._matchers)

    @classmethod
    def from_configs(cls, configs: Iterable[ProblemMatcherConfig | dict[str, Any]]) -> ProblemMatcherRegistry:
        """Build a registry, logging and skipping invalid definitions."""
        registry = cls()
        for raw in configs:
            try:
                config = (
                    raw if isinstance(raw, ProblemMatcherConfig)
                    else ProblemMatcherConfig.model_validate(raw)
                )
                registry.add(compile_matcher(config))
            except ValidationError as exc:
                logger.warning("[bep:matcher] invalid problem matcher definition: %s", exc)
            except MatcherConfigError as exc:
                logger.warning("[bep:matcher] %s", exc)
        return registry


def make_problem_matcher_registry(
    configs: Iterable[ProblemMatcherConfig | dict[str, Any]],
) -> ProblemMatcherRegistry:
    return ProblemMatcherRegistry.from_configs(configs)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_absolute(path: str) -> bool:
    return path.startswith("/") or bool(_WINDOWS_DRIVE.match(path))


def _to_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed >= 1 else default


def _parse_location(data: dict[str, str]) -> tuple[int, int, int, int]:
    """Return 1-based (line, column, end_line, end_column)."""
    if "location" in data:
        parts = [p for p in data["location"].split(",")]
        values = [_to_int(p, 0) for p in parts]
        line = values[0] if values and values[0] else 1
        column = values[1] if len(values) > 1 and values[1] else 1
        end_line = values[2] if len(values) > 2 and values[2] else line
        end_column = values[3] if len(values) > 3 and values[3] else column
        return line, column, end_line, end_column

    line = _to_int(data.get("line"), 1)
    column = _to_int(data.get("column"), 1)
    end_line = _to_int(data.get("end_line"), line)
    end_column = _to_int(data.get("end_column"), column)
    return line, column, end_line, end_column


__all__ = [
    "BackgroundConfig",
    "FileLocation",
    "ProblemMatcher",
    "ProblemMatcherConfig",
    "ProblemMatcherRegistry",
    "ProblemPattern",
    "ProblemPatternConfig",
    "UriProvider",
    "compile_matcher",
    "make_problem_matcher_registry",
    "translate_regexp",
]
