"""Tests for bzl_events.session — event classification and lazy children."""

import logging
from unittest.mock import AsyncMock

import pytest

from bzl_events.collector import ProblemMatcherEngine
from bzl_events.errors import FileResolveError, IllegalStateError
from bzl_events.items import ItemKind
from bzl_events.problem_matcher import ProblemMatcherRegistry
from bzl_events.session import BuildEventSession
from tests.conftest import (
    GCC_MATCHER,
    action,
    bep_test_result,
    completed,
    configured,
    finished,
    named_set,
    started,
    workspace_info,
)

GCC_ERROR = "foo/bar.cc:10:5: error: missing semicolon\n"


def _session(test_settings, resolver=None, matchers=None):
    registry = ProblemMatcherRegistry.from_configs(matchers or [GCC_MATCHER])
    return BuildEventSession(ProblemMatcherEngine(registry), resolver=resolver, settings=test_settings)


def _kinds(session):
    return [item.kind for item in session.items]


# ===================================================================
# Classification
# ===================================================================


class TestHandleEvent:
    def test_started_adds_root(self, session):
        session.handle_event(started())
        assert _kinds(session) == [ItemKind.BUILD_STARTED]
        assert session.generation == 1

    def test_consecutive_action_successes_replace(self, session):
        changes = []
        session.on_did_change_items(lambda c: changes.append(c.kind))
        session.handle_event(started())
        session.handle_event(action(2))
        session.handle_event(action(3))
        assert _kinds(session) == [ItemKind.BUILD_STARTED, ItemKind.ACTION_SUCCESS]
        assert session.items[-1].event.sequence_number == 3
        assert changes == ["reset", "added", "added", "replaced"]

    def test_failed_action_not_replaced(self, session):
        session.handle_event(started())
        session.handle_event(action(2, success=False))
        session.handle_event(action(3))
        assert _kinds(session) == [ItemKind.BUILD_STARTED, ItemKind.ACTION_FAILED, ItemKind.ACTION_SUCCESS]

    def test_state_only_events_add_no_items(self, session):
        session.handle_event(started())
        session.handle_event(workspace_info(2))
        session.handle_event(named_set(3, "0", ["a.o"]))
        session.handle_event(configured(4, "//foo:bar", "cc_library rule"))
        assert len(session.items) == 1
        assert session.state.workspace_info.local_exec_root == "/tmp/execroot"

    def test_test_results(self, session):
        session.handle_event(started())
        session.handle_event(bep_test_result(2, "//t:a", "PASSED"))
        session.handle_event(bep_test_result(3, "//t:b", "FAILED"))
        assert session.tests_passed == 1
        assert _kinds(session) == [ItemKind.BUILD_STARTED, ItemKind.TEST_RESULT_FAILED]

    def test_finished_keeps_attention_items(self, session):
        session.handle_event(started())
        session.handle_event(action(2))
        session.handle_event(completed(3, "//ok:ok"))
        session.handle_event(action(4, success=False))
        session.handle_event(completed(5, "//bad:bad", success=False))
        session.handle_event(finished(6, success=False))
        assert _kinds(session) == [
            ItemKind.BUILD_STARTED,
            ItemKind.ACTION_FAILED,
            ItemKind.TARGET_COMPLETE,
            ItemKind.BUILD_FAILED,
        ]
        assert session.items[-1].label == "BUILD_FAILURE (1500ms)"

    def test_new_build_resets(self, session):
        session.handle_event(started(uuid="one"))
        session.handle_event(action(2, success=False, stderr=GCC_ERROR))
        session.handle_event(started(1, uuid="two"))
        assert session.generation == 2
        assert _kinds(session) == [ItemKind.BUILD_STARTED]
        assert session.state.started.uuid == "two"

    def test_events_before_started(self, session):
        session.handle_event(action(1, success=False))
        assert session.items[0].generation == 0

    def test_target_kind_and_icon(self, session):
        session.handle_event(started())
        session.handle_event(configured(2, "//foo:bar", "go_library rule"))
        session.handle_event(completed(3, "//foo:bar"))
        item = session.items[-1]
        assert item.label == "go_library rule"
        assert session.icon_uri(item) == "https://results.bzl.io/v1/image/rule/go_library.svg"
        assert session.icon_uri(session.items[0]) == "bazel"


class TestSequencing:
    def test_out_of_order_event_skipped(self, session, caplog):
        session.handle_event(started())
        session.handle_event(action(5))
        with caplog.at_level(logging.INFO, logger="bzl_events.session"):
            session.handle_event(action(3, success=False))
        assert len(session.items) == 2
        assert "out-of-order" in caplog.text

    def test_started_always_accepted(self, session):
        session.handle_event(started())
        session.handle_event(action(5))
        session.handle_event(started(2, uuid="next"))
        session.handle_event(action(3, success=False))
        assert _kinds(session) == [ItemKind.BUILD_STARTED, ItemKind.ACTION_FAILED]

    def test_handler_errors_are_logged(self, session, monkeypatch, caplog):
        def _boom(event):
            raise RuntimeError("broken")

        session.handle_event(started())
        monkeypatch.setattr(session.state, "handle_workspace_info", _boom)
        with caplog.at_level(logging.ERROR, logger="bzl_events.session"):
            session.handle_event(workspace_info(2))
        assert "failed to handle workspaceInfo" in caplog.text

    def test_unsubscribe(self, session):
        changes = []
        unsubscribe = session.on_did_change_items(changes.append)
        unsubscribe()
        session.handle_event(started())
        assert changes == []


# ===================================================================
# Children
# ===================================================================


class TestTargetChildren:
    @pytest.mark.asyncio
    async def test_output_files(self, session):
        session.handle_event(started())
        session.handle_event(named_set(2, "0", ["lib.a", "lib.so"]))
        session.handle_event(completed(3, "//foo:bar", file_sets=["0"]))
        target = session.items[-1]
        children = await session.get_children(target)
        assert [c.kind for c in children] == [ItemKind.FILE, ItemKind.FILE]
        assert [c.label for c in children] == ["lib.a", "lib.so"]
        assert await session.get_children(target) == children

    @pytest.mark.asyncio
    async def test_file_set_announced_after_target(self, session):
        session.handle_event(started())
        session.handle_event(completed(2, "//foo:bar", file_sets=["0"]))
        session.handle_event(named_set(3, "0", ["f1", "f2"]))
        target = next(i for i in session.items if i.kind == ItemKind.TARGET_COMPLETE)
        children = await session.get_children(target)
        assert [c.kind for c in children] == [ItemKind.FILE, ItemKind.FILE]
        assert {c.label for c in children} == {"f1", "f2"}

    @pytest.mark.asyncio
    async def test_nested_file_set_announced_late(self, session):
        session.handle_event(started())
        session.handle_event(named_set(2, "parent", ["f1"], children=["child"]))
        session.handle_event(completed(3, "//foo:bar", file_sets=["parent"]))
        session.handle_event(named_set(4, "child", ["f2"]))
        children = await session.get_children(session.items[-1])
        assert [c.kind for c in children] == [ItemKind.FILE, ItemKind.FILE]
        assert {c.label for c in children} == {"f1", "f2"}

    @pytest.mark.asyncio
    async def test_missing_file_set(self, session):
        session.handle_event(started())
        session.handle_event(completed(3, "//foo:bar", file_sets=["nope"]))
        assert await session.get_children(session.items[-1]) == []

    @pytest.mark.asyncio
    async def test_failure_detail(self, session):
        session.handle_event(started())
        session.handle_event(completed(3, "//foo:bar", success=False,
                                       failure={"message": "compile failed", "spawn": {"code": "NON_ZERO_EXIT"}}))
        children = await session.get_children(session.items[-1])
        assert [c.kind for c in children] == [ItemKind.FAILURE_DETAIL]
        assert children[0].description == "compile failed (spawn)"

    @pytest.mark.asyncio
    async def test_roots(self, session):
        session.handle_event(started())
        roots = await session.get_children()
        assert roots == session.items


class TestActionChildren:
    @pytest.mark.asyncio
    async def test_inline_stderr(self, session):
        session.handle_event(started())
        session.handle_event(action(2, success=False, stderr=GCC_ERROR))
        problem_files = await session.get_children(session.items[-1])
        assert [c.kind for c in problem_files] == [ItemKind.PROBLEM_FILE]
        assert problem_files[0].resource == "foo/bar.cc"

        markers = await session.get_children(problem_files[0])
        assert [m.label for m in markers] == ["10:5"]
        assert markers[0].description == "missing semicolon"
        assert len(session.markers.read(resource="foo/bar.cc")) == 1

    @pytest.mark.asyncio
    async def test_workspace_token_substituted(self, test_settings):
        session = _session(test_settings, matchers=[
            {**GCC_MATCHER, "fileLocation": ["relative", "${workspaceRoot}"]},
        ])
        session.handle_event(started(workspace="/home/dev/ws"))
        session.handle_event(action(2, success=False, stderr=GCC_ERROR))
        problem_files = await session.get_children(session.items[-1])
        assert problem_files[0].resource == "/home/dev/ws/foo/bar.cc"
        session.dispose()

    @pytest.mark.asyncio
    async def test_resolved_uri(self, test_settings):
        resolver = AsyncMock(return_value=GCC_ERROR.encode("utf-8"))
        session = _session(test_settings, resolver)
        session.handle_event(started())
        session.handle_event(action(2, success=False, stderr_uri="file:///out/stderr-2"))
        item = session.items[-1]
        problem_files = await session.get_children(item)
        assert len(problem_files) == 1
        await session.get_children(item)
        resolver.assert_awaited_once_with("file:///out/stderr-2")
        session.dispose()

    @pytest.mark.asyncio
    async def test_unknown_mnemonic(self, session, caplog):
        session.handle_event(started())
        session.handle_event(action(2, success=False, mnemonic="Javac", stderr="A.java:1: error: x"))
        session.handle_event(action(3, success=False, mnemonic="Javac", stderr="A.java:1: error: x"))
        with caplog.at_level(logging.WARNING, logger="bzl_events.problems"):
            assert await session.get_children(session.items[1]) == []
            assert await session.get_children(session.items[2]) == []
        assert caplog.text.count("no problem matcher available") == 1

    @pytest.mark.asyncio
    async def test_no_output(self, session):
        session.handle_event(started())
        session.handle_event(action(2, success=False))
        assert await session.get_children(session.items[-1]) == []

    @pytest.mark.asyncio
    async def test_stdout_fallback(self, session):
        session.handle_event(started())
        session.handle_event(action(2, success=False, stdout=GCC_ERROR))
        assert len(await session.get_children(session.items[-1])) == 1

    def test_unknown_mnemonic_is_leaf(self, session):
        session.handle_event(started())
        session.handle_event(action(2, success=False, mnemonic="Javac", stderr="A.java:1: error: x"))
        item = session.items[-1]
        assert item.collapsible == "expanded"
        assert session.is_leaf(item)

    @pytest.mark.asyncio
    async def test_leaf_after_empty_expansion(self, session):
        session.handle_event(started())
        session.handle_event(action(2, success=False, stderr="linker exited with 1\n"))
        item = session.items[-1]
        assert not session.is_leaf(item)
        assert await session.get_children(item) == []
        assert session.is_leaf(item)

    @pytest.mark.asyncio
    async def test_matched_output_not_leaf(self, session):
        session.handle_event(started())
        session.handle_event(action(2, success=False, stderr=GCC_ERROR))
        item = session.items[-1]
        await session.get_children(item)
        assert not session.is_leaf(item)

    def test_successful_action_is_leaf(self, session):
        session.handle_event(started())
        session.handle_event(action(2))
        assert session.is_leaf(session.items[-1])

    @pytest.mark.asyncio
    async def test_resolve_error_propagates_uncached(self, test_settings):
        calls = []

        async def resolver(uri):
            calls.append(uri)
            raise FileResolveError(uri, "unsupported scheme 'bytestream'")

        session = _session(test_settings, resolver)
        session.handle_event(started())
        session.handle_event(action(2, success=False, stderr_uri="bytestream://cas/abc"))
        item = session.items[-1]
        with pytest.raises(FileResolveError):
            await session.get_children(item)
        with pytest.raises(FileResolveError):
            await session.get_children(item)
        assert len(calls) == 2
        session.dispose()


class TestStaleGeneration:
    @pytest.mark.asyncio
    async def test_item_from_previous_build(self, session):
        session.handle_event(started())
        session.handle_event(named_set(2, "0", ["a.o"]))
        session.handle_event(completed(3, "//foo:bar", file_sets=["0"]))
        old = session.items[-1]
        session.handle_event(started(1, uuid="next"))
        assert await session.get_children(old) == []

    @pytest.mark.asyncio
    async def test_new_build_during_fetch(self, test_settings):
        holder = {}

        async def resolver(uri):
            holder["session"].handle_event(started(1, uuid="next"))
            return GCC_ERROR.encode("utf-8")

        session = _session(test_settings, resolver)
        holder["session"] = session
        session.handle_event(started())
        session.handle_event(action(2, success=False, stderr_uri="file:///out/stderr-2"))
        item = session.items[-1]
        assert await session.get_children(item) == []
        assert session.markers.read() == []
        session.dispose()


class TestDispose:
    @pytest.mark.asyncio
    async def test_get_children_after_dispose(self, test_settings):
        session = _session(test_settings)
        session.dispose()
        with pytest.raises(IllegalStateError):
            await session.get_children()

    def test_is_leaf_after_dispose(self, test_settings):
        session = _session(test_settings)
        session.handle_event(started())
        item = session.items[-1]
        session.dispose()
        with pytest.raises(IllegalStateError):
            session.is_leaf(item)

    def test_events_after_dispose_ignored(self, test_settings):
        session = _session(test_settings)
        session.dispose()
        session.handle_event(started())
        assert session.items == []
