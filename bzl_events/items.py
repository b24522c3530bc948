"""Build event items — the presentation tree built from BEP events.

Every node is a ``BuildEventItem``: one frozen dataclass tagged with an
``ItemKind``.  Display properties (label, description, icon, attention
flag...) are computed from the tag with a single ``match`` per property
instead of a subclass per variant.

Items are identified by ``item_id``.  Root ids embed the session
generation and the event sequence number; child ids extend their
parent's id, so the session can memoize children per id.
"""

from __future__ import annotations

import enum
import posixpath
from dataclasses import dataclass
from typing import Literal

from bzl_events.contracts import BazelBuildEvent, BuildStarted, FailureDetail, File
from bzl_events.markers import Marker

Collapsible = Literal["none", "collapsed", "expanded"]


class ItemKind(str, enum.Enum):
    BUILD_STARTED = "build_started"
    BUILD_SUCCESS = "build_success"
    BUILD_FAILED = "build_failed"
    ACTION_SUCCESS = "action_success"
    ACTION_FAILED = "action_failed"
    TEST_RESULT_FAILED = "test_result_failed"
    TARGET_COMPLETE = "target_complete"
    FAILURE_DETAIL = "failure_detail"
    FILE = "file"
    PROBLEM_FILE = "problem_file"
    FILE_MARKER = "file_marker"


_ROOT_KINDS = frozenset({
    ItemKind.BUILD_STARTED,
    ItemKind.BUILD_SUCCESS,
    ItemKind.BUILD_FAILED,
    ItemKind.ACTION_SUCCESS,
    ItemKind.ACTION_FAILED,
    ItemKind.TEST_RESULT_FAILED,
    ItemKind.TARGET_COMPLETE,
})


@dataclass(frozen=True, eq=False)
class BuildEventItem:
    """One node of the build event tree.

    Only the fields relevant to ``kind`` are populated.  Equality and
    hashing use ``item_id``.
    """

    kind: ItemKind
    event: BazelBuildEvent
    item_id: str
    generation: int = 0
    started: BuildStarted | None = None
    target_kind: str | None = None
    icon_key: str | None = None
    file: File | None = None
    resource: str | None = None
    markers: tuple[Marker, ...] = ()
    marker: Marker | None = None
    detail: FailureDetail | None = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BuildEventItem):
            return NotImplemented
        return self.item_id == other.item_id

    def __hash__(self) -> int:
        return hash(self.item_id)

    @property
    def is_root(self) -> bool:
        return self.kind in _ROOT_KINDS

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    @property
    def label(self) -> str:
        bes = self.event.bes
        match self.kind:
            case ItemKind.BUILD_STARTED:
                started = bes.started
                version = started.build_tool_version if started else ""
                command = started.command if started else ""
                return f"Started bazel {version} {command}"
            case ItemKind.BUILD_SUCCESS | ItemKind.BUILD_FAILED:
                finished = bes.finished
                name = finished.exit_code.name if finished and finished.exit_code else ""
                parts = [name] if name else []
                elapsed = self.elapsed_millis
                if elapsed:
                    parts.append(f"({elapsed}ms)")
                return " ".join(parts)
            case ItemKind.ACTION_SUCCESS | ItemKind.ACTION_FAILED:
                return f"{bes.action.type if bes.action else ''} action"
            case ItemKind.TEST_RESULT_FAILED:
                return f"{bes.test_result.status if bes.test_result else ''} test"
            case ItemKind.TARGET_COMPLETE:
                success = bes.completed is not None and bes.completed.success
                return f"{self.target_kind or 'unknown'}{'' if success else ' failed'}"
            case ItemKind.FAILURE_DETAIL:
                return "Failed"
            case ItemKind.FILE:
                return posixpath.basename(self.file.name) if self.file else ""
            case ItemKind.PROBLEM_FILE:
                return posixpath.basename(self.resource or "")
            case ItemKind.FILE_MARKER:
                marker = self.marker
                return f"{marker.start_line_number}:{marker.start_column}" if marker else ""
        return bes.payload or ""

    @property
    def description(self) -> str | None:
        bes = self.event.bes
        match self.kind:
            case ItemKind.BUILD_STARTED:
                return bes.started.options_description if bes.started else None
            case ItemKind.ACTION_SUCCESS | ItemKind.ACTION_FAILED:
                return bes.action.label if bes.action else ""
            case ItemKind.TEST_RESULT_FAILED:
                label = bes.id.test_result.label if bes.id.test_result else ""
                details = bes.test_result.status_details if bes.test_result else ""
                return f"{label} {details}".strip()
            case ItemKind.TARGET_COMPLETE:
                return bes.id.target_completed.label if bes.id.target_completed else ""
            case ItemKind.FAILURE_DETAIL:
                detail = self.detail
                return f"{detail.message} ({detail.category})" if detail else None
            case ItemKind.FILE:
                return self.file.name if self.file else None
            case ItemKind.PROBLEM_FILE:
                return self.resource
            case ItemKind.FILE_MARKER:
                return self.marker.message if self.marker else None
        return None

    @property
    def tooltip(self) -> str:
        action = self.event.bes.action
        if self.kind in (ItemKind.ACTION_SUCCESS, ItemKind.ACTION_FAILED) and action and action.command_line:
            return " ".join(action.command_line)
        return f"#{self.event.sequence_number} {self.event.bes.payload}"

    @property
    def attention(self) -> bool:
        """Whether the item stays visible once the build has finished."""
        match self.kind:
            case (
                ItemKind.BUILD_STARTED
                | ItemKind.BUILD_SUCCESS
                | ItemKind.BUILD_FAILED
                | ItemKind.ACTION_FAILED
                | ItemKind.TEST_RESULT_FAILED
            ):
                return True
            case ItemKind.TARGET_COMPLETE:
                completed = self.event.bes.completed
                return completed is None or not completed.success
        return False

    @property
    def icon(self) -> str:
        match self.kind:
            case ItemKind.BUILD_STARTED | ItemKind.BUILD_SUCCESS:
                return "bazel"
            case ItemKind.BUILD_FAILED:
                return "bazel-wireframe"
            case ItemKind.ACTION_SUCCESS:
                return "github-action"
            case ItemKind.ACTION_FAILED:
                return "symbol-event"
            case ItemKind.TEST_RESULT_FAILED:
                return "debug-breakpoint-data"
            case ItemKind.TARGET_COMPLETE:
                return self.icon_key or "symbol-interface"
            case ItemKind.FAILURE_DETAIL:
                return "report"
            case ItemKind.FILE | ItemKind.PROBLEM_FILE:
                return "file"
            case ItemKind.FILE_MARKER:
                return self.marker.severity.to_diagnostic_severity() if self.marker else "info"
        return "symbol-event"

    @property
    def collapsible(self) -> Collapsible:
        match self.kind:
            case ItemKind.ACTION_FAILED | ItemKind.PROBLEM_FILE:
                return "expanded"
            case ItemKind.TARGET_COMPLETE:
                completed = self.event.bes.completed
                if completed is not None and completed.failure_detail is not None:
                    return "expanded"
                return "collapsed"
        return "none"

    @property
    def context_value(self) -> str:
        match self.kind:
            case ItemKind.FILE:
                return "file"
            case ItemKind.PROBLEM_FILE:
                return "problem-file"
            case ItemKind.FILE_MARKER:
                return "problem-file-marker"
        return self.event.bes.payload or ""

    @property
    def primary_output_file(self) -> File | None:
        bes = self.event.bes
        match self.kind:
            case ItemKind.ACTION_SUCCESS | ItemKind.ACTION_FAILED:
                if bes.action is None:
                    return None
                return bes.action.stderr or bes.action.stdout
            case ItemKind.TEST_RESULT_FAILED:
                if bes.test_result is None:
                    return None
                for file in bes.test_result.test_action_output:
                    if file.name == "test.log":
                        return file
            case ItemKind.TARGET_COMPLETE:
                if bes.completed is not None and bes.completed.important_output:
                    return bes.completed.important_output[0]
            case ItemKind.FILE:
                return self.file
        return None

    @property
    def elapsed_millis(self) -> int | None:
        """Build duration for finished items; ``None`` if a timestamp is missing."""
        finished = self.event.bes.finished
        if finished is None or self.started is None:
            return None
        if finished.finish_time_millis is None or self.started.start_time_millis is None:
            return None
        return finished.finish_time_millis - self.started.start_time_millis


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def _root_id(event: BazelBuildEvent, generation: int) -> str:
    return f"{generation}:{event.sequence_number}"


def build_started_item(event: BazelBuildEvent, generation: int = 0) -> BuildEventItem:
    return BuildEventItem(
        kind=ItemKind.BUILD_STARTED,
        event=event,
        item_id=_root_id(event, generation),
        generation=generation,
        started=event.bes.started,
    )


def build_finished_item(
    event: BazelBuildEvent,
    started: BuildStarted | None,
    generation: int = 0,
) -> BuildEventItem:
    finished = event.bes.finished
    success = finished is not None and finished.overall_success
    return BuildEventItem(
        kind=ItemKind.BUILD_SUCCESS if success else ItemKind.BUILD_FAILED,
        event=event,
        item_id=_root_id(event, generation),
        generation=generation,
        started=started,
    )


def action_item(event: BazelBuildEvent, generation: int = 0) -> BuildEventItem:
    action = event.bes.action
    success = action is not None and action.success
    return BuildEventItem(
        kind=ItemKind.ACTION_SUCCESS if success else ItemKind.ACTION_FAILED,
        event=event,
        item_id=_root_id(event, generation),
        generation=generation,
    )


def failed_test_result_item(event: BazelBuildEvent, generation: int = 0) -> BuildEventItem:
    return BuildEventItem(
        kind=ItemKind.TEST_RESULT_FAILED,
        event=event,
        item_id=_root_id(event, generation),
        generation=generation,
    )


def target_complete_item(
    event: BazelBuildEvent,
    target_kind: str | None,
    icon_key: str,
    generation: int = 0,
) -> BuildEventItem:
    return BuildEventItem(
        kind=ItemKind.TARGET_COMPLETE,
        event=event,
        item_id=_root_id(event, generation),
        generation=generation,
        target_kind=target_kind,
        icon_key=icon_key,
    )


def failure_detail_item(parent: BuildEventItem, detail: FailureDetail) -> BuildEventItem:
    return BuildEventItem(
        kind=ItemKind.FAILURE_DETAIL,
        event=parent.event,
        item_id=f"{parent.item_id}/detail",
        generation=parent.generation,
        detail=detail,
    )


def file_item(parent: BuildEventItem, file: File, index: int) -> BuildEventItem:
    return BuildEventItem(
        kind=ItemKind.FILE,
        event=parent.event,
        item_id=f"{parent.item_id}/file:{index}",
        generation=parent.generation,
        file=file,
    )


def problem_file_item(
    parent: BuildEventItem,
    resource: str,
    markers: list[Marker] | tuple[Marker, ...],
) -> BuildEventItem:
    return BuildEventItem(
        kind=ItemKind.PROBLEM_FILE,
        event=parent.event,
        item_id=f"{parent.item_id}/problems:{resource}",
        generation=parent.generation,
        resource=resource,
        markers=tuple(markers),
    )


def file_marker_item(parent: BuildEventItem, marker: Marker, index: int) -> BuildEventItem:
    return BuildEventItem(
        kind=ItemKind.FILE_MARKER,
        event=parent.event,
        item_id=f"{parent.item_id}/marker:{index}",
        generation=parent.generation,
        resource=parent.resource,
        marker=marker,
    )


__all__ = [
    "BuildEventItem",
    "Collapsible",
    "ItemKind",
    "action_item",
    "build_finished_item",
    "build_started_item",
    "failure_detail_item",
    "file_item",
    "file_marker_item",
    "problem_file_item",
    "target_complete_item",
    "failed_test_result_item",
]
