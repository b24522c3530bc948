"""Build event session — classify BEP events into a tree of items.

One ``BuildEventSession`` follows a stream of builds.  Each ``started``
event begins a new *generation*: the item list, cross-reference state,
marker registry and memoized children are all reset.  Children are
computed lazily by ``get_children()``; results computed for an item of
an older generation are discarded rather than merged into the new
build.

Usage::

    session = BuildEventSession(engine)
    session.on_did_change_items(lambda change: ...)
    for envelope in parse_bep_json_lines(lines):
        session.handle_event(envelope)
    roots = await session.get_children()
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from bzl_events.collector import ProblemMatcherEngine
from bzl_events.config import Settings
from bzl_events.config import settings as default_settings
from bzl_events.contracts import BazelBuildEvent
from bzl_events.errors import IllegalStateError
from bzl_events.items import (
    BuildEventItem,
    ItemKind,
    action_item,
    build_finished_item,
    build_started_item,
    failed_test_result_item,
    failure_detail_item,
    file_item,
    file_marker_item,
    problem_file_item,
    target_complete_item,
)
from bzl_events.markers import MarkerRegistry
from bzl_events.problems import ProblemCollector
from bzl_events.resolver import Resolver, make_resolver
from bzl_events.state import BuildEventState, rule_icon_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemsChanged:
    """The root item list changed."""

    kind: Literal["added", "replaced", "reset", "filtered"]
    item: BuildEventItem | None = None


ItemsListener = Callable[[ItemsChanged], None]


class BuildEventSession:
    """Owns the item list, state tracker, problem collector and markers."""

    def __init__(
        self,
        engine: ProblemMatcherEngine,
        *,
        resolver: Resolver | None = None,
        markers: MarkerRegistry | None = None,
        settings: Settings | None = None,
    ) -> None:
        cfg = settings or default_settings
        self._settings = cfg
        self._engine = engine
        self.markers = markers if markers is not None else MarkerRegistry()
        self.state = BuildEventState()
        self.problems = ProblemCollector(
            engine,
            self.markers,
            resolver or make_resolver(timeout_s=cfg.HTTP_TIMEOUT_S),
            encoding=cfg.ENCODING,
            workspace_root_token=cfg.WORKSPACE_ROOT_TOKEN,
            scan_stdout_fallback=cfg.SCAN_STDOUT_FALLBACK,
        )
        self._items: list[BuildEventItem] = []
        self._children: dict[str, list[BuildEventItem]] = {}
        self._listeners: list[ItemsListener] = []
        self._last_sequence: int | None = None
        self._disposed = False
        self.generation = 0
        self.tests_passed = 0

    @property
    def items(self) -> list[BuildEventItem]:
        return list(self._items)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on_did_change_items(self, listener: ItemsListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _fire(self, kind: Literal["added", "replaced", "reset", "filtered"], item: BuildEventItem | None = None) -> None:
        change = ItemsChanged(kind=kind, item=item)
        for listener in list(self._listeners):
            listener(change)

    # ------------------------------------------------------------------
    # Item list
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Drop every trace of the current build."""
        self._items.clear()
        self._children.clear()
        self.tests_passed = 0
        self.state.reset()
        self.problems.clear()
        self.markers.clear()
        self._fire("reset")

    def _add_item(self, item: BuildEventItem) -> None:
        self._items.append(item)
        self._fire("added", item)

    def _replace_last_item(self, item: BuildEventItem) -> None:
        self._items[-1] = item
        self._fire("replaced", item)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle_event(self, event: BazelBuildEvent) -> None:
        """Apply one envelope.  Never raises."""
        if self._disposed:
            logger.debug("[bep:session] event #%d after dispose, ignored", event.sequence_number)
            return

        payload = event.bes.payload
        if payload != "started" and self._last_sequence is not None:
            if event.sequence_number <= self._last_sequence:
                logger.info(
                    "[bep:session] skipping out-of-order event #%d (last #%d)",
                    event.sequence_number,
                    self._last_sequence,
                )
                return
        self._last_sequence = event.sequence_number

        try:
            self._dispatch(payload, event)
        except Exception:
            logger.exception(
                "[bep:session] failed to handle %s event #%d", payload, event.sequence_number,
            )

    def _dispatch(self, payload: str | None, event: BazelBuildEvent) -> None:
        bes = event.bes
        match payload:
            case "started":
                self._handle_started(event)
            case "workspaceInfo":
                self.state.handle_workspace_info(event)
            case "namedSetOfFiles":
                self.state.handle_named_set_of_files(event)
            case "configured":
                self.state.mark_building()
                self.state.handle_target_configured(event)
            case "action":
                self.state.mark_building()
                self._handle_action(event)
            case "completed":
                self.state.mark_building()
                completed = bes.completed
                self._add_item(target_complete_item(
                    event,
                    self.state.get_target_kind(event),
                    self.state.get_target_icon(event, completed),
                    self.generation,
                ))
            case "testResult":
                self.state.mark_building()
                if bes.test_result.status == "PASSED":
                    self.tests_passed += 1
                else:
                    self._add_item(failed_test_result_item(event, self.generation))
            case "finished":
                self._handle_finished(event)
            case _:
                logger.debug("[bep:session] ignoring %s event #%d", payload, event.sequence_number)

    def _handle_started(self, event: BazelBuildEvent) -> None:
        self.clear()
        self.generation += 1
        self.state.handle_started(event)
        self.problems.started = event.bes.started
        logger.info(
            "[bep:session] build %s started (generation %d)",
            event.bes.started.uuid or "?",
            self.generation,
        )
        self._add_item(build_started_item(event, self.generation))

    def _handle_action(self, event: BazelBuildEvent) -> None:
        item = action_item(event, self.generation)
        if item.kind == ItemKind.ACTION_SUCCESS and self._items and self._items[-1].kind == ItemKind.ACTION_SUCCESS:
            self._replace_last_item(item)
        else:
            self._add_item(item)

    def _handle_finished(self, event: BazelBuildEvent) -> None:
        self._items = [item for item in self._items if item.attention]
        self._fire("filtered")
        self.state.handle_finished()
        self._add_item(build_finished_item(event, self.state.started, self.generation))
        logger.info(
            "[bep:session] build finished: %s (%d items, %d tests passed)",
            event.bes.finished.exit_code.name if event.bes.finished.exit_code else "?",
            len(self._items),
            self.tests_passed,
        )

    # ------------------------------------------------------------------
    # Tree queries
    # ------------------------------------------------------------------

    async def get_children(self, item: BuildEventItem | None = None) -> list[BuildEventItem]:
        """Root items when *item* is ``None``; otherwise its children.

        Raises:
            FileResolveError: a failed action's output could not be read.
                Only this item's expansion fails; nothing is cached.
        """
        if self._disposed:
            raise IllegalStateError("get children", "build event session")
        if item is None:
            return list(self._items)

        if item.generation != self.generation:
            logger.debug("[bep:session] %s belongs to an older build, no children", item.item_id)
            return []

        cached = self._children.get(item.item_id)
        if cached is not None:
            return list(cached)

        children = await self._compute_children(item)
        if item.generation != self.generation:
            logger.debug("[bep:session] discarding stale children of %s", item.item_id)
            return []
        self._children[item.item_id] = children
        return list(children)

    async def _compute_children(self, item: BuildEventItem) -> list[BuildEventItem]:
        bes = item.event.bes
        match item.kind:
            case ItemKind.ACTION_FAILED:
                problems = await self.problems.action_problems(bes.action)
                if not problems:
                    return []
                return [problem_file_item(item, resource, markers) for resource, markers in problems.items()]
            case ItemKind.TARGET_COMPLETE:
                completed = bes.completed
                if completed.failure_detail is not None:
                    return [failure_detail_item(item, completed.failure_detail)]
                files = self.state.collect_output_files(completed)
                return [file_item(item, file, index) for index, file in enumerate(files)]
            case ItemKind.PROBLEM_FILE:
                return [file_marker_item(item, marker, index) for index, marker in enumerate(item.markers)]
        return []

    def is_leaf(self, item: BuildEventItem) -> bool:
        """Whether *item* has nothing to expand.

        Items that were already expanded answer from their memoized
        children.  A failed action whose mnemonic has no problem matcher
        is known to be empty without reading its output.
        """
        if self._disposed:
            raise IllegalStateError("check leaf", "build event session")
        if item.collapsible == "none":
            return True
        cached = self._children.get(item.item_id)
        if cached is not None:
            return not cached
        if item.kind == ItemKind.ACTION_FAILED:
            action = item.event.bes.action
            return action is None or not self._engine.has_matcher(action.type)
        return False

    def icon_uri(self, item: BuildEventItem) -> str:
        """The item's icon: an image URL for rule kinds, otherwise the icon key."""
        return rule_icon_url(item.icon, self._settings.RULE_ICON_URL) or item.icon

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def dispose(self) -> None:
        self._disposed = True
        self._listeners.clear()
        self._children.clear()
        self._engine.dispose()


__all__ = ["BuildEventSession", "ItemsChanged", "ItemsListener"]
