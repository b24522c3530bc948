"""Build event state — cross-referenced data for one build session.

BEP events reference each other by id: completed targets point at named
file sets, file sets point at further file sets, and a target's kind is
only known from its earlier ``configured`` event.  ``BuildEventState``
owns those id → value maps and answers lookups with default-empty
semantics: a missing reference yields no files / no kind, never an
exception.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable

from bzl_events.contracts import (
    BazelBuildEvent,
    BuildStarted,
    File,
    NamedSetOfFiles,
    NamedSetOfFilesId,
    TargetComplete,
    TargetConfigured,
    WorkspaceConfig,
)

logger = logging.getLogger(__name__)

RULE_SUFFIX = " rule"
RULE_ICON_PREFIX = "rule:"
DEFAULT_RULE_ICON_URL = "https://results.bzl.io/v1/image/rule/{kind}.svg"


class SessionPhase(str, enum.Enum):
    IDLE = "idle"
    STARTED = "started"
    BUILDING = "building"
    FINISHED = "finished"


class BuildEventState:
    """Id → value maps for the current build, plus phase bookkeeping."""

    def __init__(self) -> None:
        self._file_sets: dict[str, NamedSetOfFiles] = {}
        self._targets_configured: dict[str, TargetConfigured] = {}
        self.workspace_info: WorkspaceConfig | None = None
        self.started: BuildStarted | None = None
        self.phase = SessionPhase.IDLE

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Forget everything about the previous build.  Idempotent."""
        self._file_sets.clear()
        self._targets_configured.clear()
        self.workspace_info = None
        self.started = None
        self.phase = SessionPhase.IDLE

    def handle_started(self, event: BazelBuildEvent) -> None:
        self.started = event.bes.started
        self.phase = SessionPhase.STARTED

    def handle_workspace_info(self, event: BazelBuildEvent) -> None:
        self.workspace_info = event.bes.workspace_info

    def mark_building(self) -> None:
        if self.phase == SessionPhase.STARTED:
            self.phase = SessionPhase.BUILDING

    def handle_finished(self) -> None:
        self.phase = SessionPhase.FINISHED

    @property
    def workspace_directory(self) -> str | None:
        if self.started is None or not self.started.workspace_directory:
            return None
        return self.started.workspace_directory

    # ------------------------------------------------------------------
    # Cross-reference maps
    # ------------------------------------------------------------------

    def handle_named_set_of_files(self, event: BazelBuildEvent) -> None:
        set_id = event.bes.id.named_set
        file_set = event.bes.named_set_of_files
        if set_id is None or not set_id.id or file_set is None:
            logger.debug(
                "[bep:state] namedSetOfFiles #%d without id or payload, ignored",
                event.sequence_number,
            )
            return
        self._file_sets[set_id.id] = file_set

    def handle_target_configured(self, event: BazelBuildEvent) -> None:
        target_id = event.bes.id.target_configured
        configured = event.bes.configured
        if target_id is None or not target_id.label or configured is None:
            logger.debug(
                "[bep:state] configured #%d without label or payload, ignored",
                event.sequence_number,
            )
            return
        self._targets_configured[target_id.label] = configured

    def file_set(self, set_id: str) -> NamedSetOfFiles | None:
        return self._file_sets.get(set_id)

    def collect_files_from_file_set_ids(self, ids: Iterable[NamedSetOfFilesId]) -> list[File]:
        """Resolve file-set references into a deduplicated file list.

        Nested references are followed depth-first.  Unknown ids resolve
        to nothing and every id is visited at most once, so cyclic sets
        terminate.
        """
        files: dict[tuple, File] = {}
        visited: set[str] = set()
        stack = [ref.id for ref in reversed(list(ids))]
        while stack:
            set_id = stack.pop()
            if set_id in visited:
                continue
            visited.add(set_id)
            file_set = self._file_sets.get(set_id)
            if file_set is None:
                logger.debug("[bep:state] unresolved file set %r", set_id)
                continue
            for file in file_set.files:
                files.setdefault(file.key(), file)
            stack.extend(ref.id for ref in reversed(file_set.file_sets))
        return list(files.values())

    def collect_output_files(self, completed: TargetComplete) -> list[File]:
        """Every file reachable from the target's output groups."""
        ids = [ref for group in completed.output_group for ref in group.file_sets]
        return self.collect_files_from_file_set_ids(ids)

    # ------------------------------------------------------------------
    # Target kind / icon
    # ------------------------------------------------------------------

    def get_target_kind(self, event: BazelBuildEvent) -> str | None:
        target_id = event.bes.id.target_completed
        if target_id is None:
            return None
        configured = self._targets_configured.get(target_id.label)
        if configured is None or not configured.target_kind:
            return None
        return configured.target_kind

    def get_target_icon(self, event: BazelBuildEvent, completed: TargetComplete) -> str:
        """Icon key: ``"stop"``, ``"rule:<kind>"`` or ``"symbol-interface"``."""
        if not completed.success:
            return "stop"
        kind = self.get_target_kind(event)
        if kind and kind.endswith(RULE_SUFFIX):
            return RULE_ICON_PREFIX + kind[: -len(RULE_SUFFIX)]
        return "symbol-interface"


def rule_icon_url(icon: str, template: str = DEFAULT_RULE_ICON_URL) -> str | None:
    """Expand a ``rule:<kind>`` icon key into its image URL.

    >>> rule_icon_url("rule:go_library")
    'https://results.bzl.io/v1/image/rule/go_library.svg'
    >>> rule_icon_url("stop") is None
    True
    """
    if not icon.startswith(RULE_ICON_PREFIX):
        return None
    return template.format(kind=icon[len(RULE_ICON_PREFIX):])


__all__ = [
    "BuildEventState",
    "DEFAULT_RULE_ICON_URL",
    "SessionPhase",
    "rule_icon_url",
]
