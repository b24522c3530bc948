"""Build Event Protocol contracts — Pydantic models for decoded BEP events.

The transport delivers one ``BazelBuildEvent`` envelope per message: a
sequence number plus the decoded ``BuildEvent``.  Field names follow the
JSON form Bazel writes with ``--build_event_json_file`` (camelCase),
while Python code uses snake_case attributes.

All models are frozen (immutable after creation) and ignore unknown
fields, so newer Bazel releases do not break validation.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from collections.abc import Iterable, Iterator
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class _BEPModel(BaseModel):
    """Common config: frozen, camelCase aliases, unknown keys ignored."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Files and file sets
# ---------------------------------------------------------------------------


class File(_BEPModel):
    """An output file reference, either inline or by URI."""

    name: str = ""
    uri: str | None = None
    contents: bytes | None = None
    path_prefix: tuple[str, ...] = ()

    @field_validator("contents", mode="before")
    @classmethod
    def _decode_contents(cls, value: Any) -> Any:
        # BEP JSON carries bytes fields as base64 text.
        if isinstance(value, str):
            try:
                return base64.b64decode(value, validate=True)
            except (binascii.Error, ValueError):
                return value.encode("utf-8")
        return value

    def key(self) -> tuple[str, str | None, bytes | None]:
        """Identity used to deduplicate files collected from several sets."""
        return (self.name, self.uri, self.contents)


class NamedSetOfFilesId(_BEPModel):
    id: str = ""


class NamedSetOfFiles(_BEPModel):
    """A set of files plus references to further named sets."""

    files: tuple[File, ...] = ()
    file_sets: tuple[NamedSetOfFilesId, ...] = ()


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class BuildStarted(_BEPModel):
    uuid: str = ""
    start_time_millis: int | None = None
    build_tool_version: str = ""
    options_description: str = ""
    command: str = ""
    working_directory: str = ""
    workspace_directory: str = ""
    server_pid: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _start_time(cls, data: Any) -> Any:
        return _fill_millis(data, "startTimeMillis", "startTime")

    @field_validator("start_time_millis", mode="before")
    @classmethod
    def _millis(cls, value: Any) -> Any:
        return _parse_millis(value)


class WorkspaceConfig(_BEPModel):
    local_exec_root: str = ""


class FailureDetail(_BEPModel):
    """Structured failure description.

    Bazel encodes the category as one populated sub-message key (``spawn``,
    ``execution``, ``analysis``...).  When no explicit ``category`` is
    given, the first such key becomes the category.
    """

    message: str = ""
    category: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _derive_category(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("category"):
            return data
        for key, value in data.items():
            if key != "message" and isinstance(value, dict):
                return {**data, "category": key}
        return data


class ActionExecuted(_BEPModel):
    success: bool = False
    exit_code: int | None = None
    stdout: File | None = None
    stderr: File | None = None
    label: str = ""
    primary_output: File | None = None
    type: str = Field(default="", description="Action mnemonic, e.g. CppCompile")
    command_line: tuple[str, ...] = ()
    failure_detail: FailureDetail | None = None


class TargetConfigured(_BEPModel):
    target_kind: str = ""
    test_size: str | None = None
    tag: tuple[str, ...] = ()


class OutputGroup(_BEPModel):
    name: str = ""
    file_sets: tuple[NamedSetOfFilesId, ...] = ()


class TargetComplete(_BEPModel):
    success: bool = False
    output_group: tuple[OutputGroup, ...] = ()
    important_output: tuple[File, ...] = ()
    failure_detail: FailureDetail | None = None
    tag: tuple[str, ...] = ()


class TestResult(_BEPModel):
    __test__ = False  # Prevent pytest from collecting this class

    status: str = "NO_STATUS"
    status_details: str = ""
    test_action_output: tuple[File, ...] = ()
    cached_locally: bool = False


class ExitCode(_BEPModel):
    name: str = ""
    code: int = 0


class BuildFinished(_BEPModel):
    overall_success: bool = False
    finish_time_millis: int | None = None
    exit_code: ExitCode | None = None

    @model_validator(mode="before")
    @classmethod
    def _finish_time(cls, data: Any) -> Any:
        return _fill_millis(data, "finishTimeMillis", "finishTime")

    @field_validator("finish_time_millis", mode="before")
    @classmethod
    def _millis(cls, value: Any) -> Any:
        return _parse_millis(value)


# ---------------------------------------------------------------------------
# Event identifiers
# ---------------------------------------------------------------------------


class ActionCompletedId(_BEPModel):
    label: str = ""
    primary_output: str = ""


class TargetId(_BEPModel):
    """Identifier carrying a target label (configured / completed)."""

    label: str = ""


class TestResultId(_BEPModel):
    __test__ = False

    label: str = ""
    run: int = 0
    shard: int = 0
    attempt: int = 0


class BuildEventId(_BEPModel):
    started: dict[str, Any] | None = None
    workspace: dict[str, Any] | None = None
    action_completed: ActionCompletedId | None = None
    named_set: NamedSetOfFilesId | None = None
    target_configured: TargetId | None = None
    target_completed: TargetId | None = None
    test_result: TestResultId | None = None
    build_finished: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Event + envelope
# ---------------------------------------------------------------------------

# Payload keys in the order Bazel's BuildEvent oneof declares the ones we use.
_PAYLOAD_FIELDS: tuple[tuple[str, str], ...] = (
    ("started", "started"),
    ("workspace_info", "workspaceInfo"),
    ("action", "action"),
    ("named_set_of_files", "namedSetOfFiles"),
    ("configured", "configured"),
    ("completed", "completed"),
    ("test_result", "testResult"),
    ("finished", "finished"),
)

_ENVELOPE_KEYS = frozenset({"id", "children", "lastMessage", "last_message"})


class BuildEvent(_BEPModel):
    """A decoded BEP event: identifier plus one payload variant."""

    id: BuildEventId = Field(default_factory=BuildEventId)
    children: tuple[BuildEventId, ...] = ()
    last_message: bool = False

    started: BuildStarted | None = None
    workspace_info: WorkspaceConfig | None = None
    action: ActionExecuted | None = None
    named_set_of_files: NamedSetOfFiles | None = None
    configured: TargetConfigured | None = None
    completed: TargetComplete | None = None
    test_result: TestResult | None = None
    finished: BuildFinished | None = None

    # Payload key for kinds this package does not model (progress,
    # buildMetrics, ...).  Filled from the raw JSON before validation.
    other_payload: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _record_other_payload(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("other_payload"):
            return data
        known = {alias for _, alias in _PAYLOAD_FIELDS}
        known.update(attr for attr, _ in _PAYLOAD_FIELDS)
        for key in data:
            if key not in known and key not in _ENVELOPE_KEYS:
                return {**data, "other_payload": key}
        return data

    @property
    def payload(self) -> str | None:
        """Kind string of the populated payload, e.g. ``"action"``."""
        for attr, kind in _PAYLOAD_FIELDS:
            if getattr(self, attr) is not None:
                return kind
        return self.other_payload


class BazelBuildEvent(BaseModel):
    """Envelope delivered by the transport for each BEP message."""

    model_config = ConfigDict(frozen=True)

    sequence_number: int = Field(..., ge=0)
    bes: BuildEvent


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_millis(value: Any) -> int | None:
    """Int64 millis arrive as JSON strings; unparseable values become None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        logger.debug("[bep:contracts] unparseable millis %r", value)
        return None


_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def _fill_millis(data: Any, millis_key: str, timestamp_key: str) -> Any:
    """Derive the deprecated ``*Millis`` field from its RFC 3339 successor.

    Newer Bazel releases only emit ``startTime`` / ``finishTime``.
    """
    if not isinstance(data, dict):
        return data
    snake_key = re.sub(r"(?<!^)(?=[A-Z])", "_", millis_key).lower()
    if data.get(millis_key) is not None or data.get(snake_key) is not None:
        return data
    stamp = data.get(timestamp_key)
    if not isinstance(stamp, str) or not stamp:
        return data
    text = _FRACTION_RE.sub(r".\1", stamp.strip()).replace("Z", "+00:00")
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        logger.debug("[bep:contracts] unparseable timestamp %r", stamp)
        return data
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return {**data, millis_key: int(moment.timestamp() * 1000)}


def parse_bep_json_lines(lines: Iterable[str]) -> Iterator[BazelBuildEvent]:
    """Yield envelopes from newline-delimited BEP JSON.

    Sequence numbers are assigned in arrival order.  Blank lines are
    skipped; malformed lines are logged and skipped.
    """
    sequence = 0
    for lineno, line in enumerate(lines, start=1):
        text = line.strip()
        if not text:
            continue
        try:
            raw = json.loads(text)
            event = BuildEvent.model_validate(raw)
        except ValueError as exc:
            logger.warning("[bep:contracts] skipping malformed line %d: %s", lineno, exc)
            continue
        sequence += 1
        yield BazelBuildEvent(sequence_number=sequence, bes=event)


__all__ = [
    "ActionCompletedId",
    "ActionExecuted",
    "BazelBuildEvent",
    "BuildEvent",
    "BuildEventId",
    "BuildFinished",
    "BuildStarted",
    "ExitCode",
    "FailureDetail",
    "File",
    "NamedSetOfFiles",
    "NamedSetOfFilesId",
    "OutputGroup",
    "TargetComplete",
    "TargetConfigured",
    "TargetId",
    "TestResult",
    "TestResultId",
    "WorkspaceConfig",
    "parse_bep_json_lines",
]
