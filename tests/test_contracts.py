"""Tests for bzl_events.contracts — BEP JSON decoding into frozen models."""

import json

import pytest

from bzl_events.contracts import (
    BazelBuildEvent,
    BuildEvent,
    BuildFinished,
    BuildStarted,
    FailureDetail,
    File,
    parse_bep_json_lines,
)
from tests.conftest import action, b64, envelope, started


# ===================================================================
# Payload kind
# ===================================================================


class TestPayload:
    def test_started(self):
        assert started().bes.payload == "started"

    def test_action(self):
        assert action(2).bes.payload == "action"

    def test_workspace_info(self):
        event = BuildEvent.model_validate({"workspaceInfo": {"localExecRoot": "/x"}})
        assert event.payload == "workspaceInfo"
        assert event.workspace_info.local_exec_root == "/x"

    def test_unknown_payload_kind(self):
        event = BuildEvent.model_validate({"id": {"progress": {}}, "progress": {"stderr": "x"}})
        assert event.payload == "progress"

    def test_empty(self):
        assert BuildEvent.model_validate({"id": {}}).payload is None


# ===================================================================
# Field decoding
# ===================================================================


class TestBuildStarted:
    def test_camel_case_aliases(self):
        s = started(workspace="/src/ws").bes.started
        assert s.build_tool_version == "7.1.0"
        assert s.workspace_directory == "/src/ws"
        assert s.options_description == "--config=ci"

    def test_millis_from_string(self):
        assert started(start_millis="1000").bes.started.start_time_millis == 1000

    def test_unparseable_millis_is_none(self):
        assert BuildStarted.model_validate({"startTimeMillis": "soon"}).start_time_millis is None

    def test_millis_from_rfc3339(self):
        s = BuildStarted.model_validate({"startTime": "1970-01-01T00:00:01.500Z"})
        assert s.start_time_millis == 1500

    def test_nanosecond_fraction_truncated(self):
        s = BuildStarted.model_validate({"startTime": "1970-01-01T00:00:02.123456789Z"})
        assert s.start_time_millis == 2123

    def test_explicit_millis_win(self):
        s = BuildStarted.model_validate({"startTimeMillis": "5", "startTime": "1970-01-01T00:00:01Z"})
        assert s.start_time_millis == 5

    def test_snake_case_accepted(self):
        s = BuildStarted(workspace_directory="/w", start_time_millis=7)
        assert s.workspace_directory == "/w"
        assert s.start_time_millis == 7


class TestBuildFinished:
    def test_exit_code(self):
        f = BuildFinished.model_validate({
            "overallSuccess": False,
            "exitCode": {"name": "BUILD_FAILURE", "code": 1},
            "finishTimeMillis": "2500",
        })
        assert f.exit_code.name == "BUILD_FAILURE"
        assert f.finish_time_millis == 2500

    def test_finish_time_fallback(self):
        f = BuildFinished.model_validate({"finishTime": "1970-01-01T00:00:03Z"})
        assert f.finish_time_millis == 3000


class TestFile:
    def test_base64_contents(self):
        f = File.model_validate({"name": "stderr", "contents": b64("héllo\n")})
        assert f.contents == "héllo\n".encode("utf-8")

    def test_non_base64_contents_kept_as_text(self):
        f = File.model_validate({"name": "stderr", "contents": "not base64!"})
        assert f.contents == b"not base64!"

    def test_key(self):
        f = File(name="a.o", uri="file:///a.o")
        assert f.key() == ("a.o", "file:///a.o", None)

    def test_frozen(self):
        f = File(name="a.o")
        with pytest.raises(Exception):
            f.name = "b.o"


class TestFailureDetail:
    def test_category_from_sub_message(self):
        d = FailureDetail.model_validate({"message": "boom", "spawn": {"code": "NON_ZERO_EXIT"}})
        assert d.category == "spawn"

    def test_explicit_category(self):
        d = FailureDetail.model_validate({"message": "boom", "category": "analysis"})
        assert d.category == "analysis"

    def test_no_category(self):
        assert FailureDetail.model_validate({"message": "boom"}).category is None


class TestActionExecuted:
    def test_fields(self):
        a = action(3, success=False, mnemonic="Javac", stderr="oops", command_line=["javac", "A.java"]).bes.action
        assert a.type == "Javac"
        assert a.success is False
        assert a.stderr.contents == b"oops"
        assert a.command_line == ("javac", "A.java")


class TestEnvelope:
    def test_negative_sequence_rejected(self):
        with pytest.raises(Exception):
            BazelBuildEvent(sequence_number=-1, bes=BuildEvent())

    def test_ids(self):
        e = envelope(4, {
            "id": {"testResult": {"label": "//t:t", "run": 1, "shard": 2, "attempt": 1}},
            "testResult": {"status": "FAILED"},
        })
        assert e.bes.id.test_result.shard == 2
        assert e.bes.test_result.status == "FAILED"


# ===================================================================
# Newline-delimited JSON
# ===================================================================


class TestParseBepJsonLines:
    def test_numbers_in_arrival_order(self):
        lines = [
            json.dumps({"id": {"started": {}}, "started": {"uuid": "u"}}),
            "",
            json.dumps({"id": {"buildFinished": {}}, "finished": {"overallSuccess": True}}),
        ]
        events = list(parse_bep_json_lines(lines))
        assert [e.sequence_number for e in events] == [1, 2]
        assert [e.bes.payload for e in events] == ["started", "finished"]

    def test_malformed_line_skipped(self):
        lines = ["{not json", json.dumps({"started": {}})]
        events = list(parse_bep_json_lines(lines))
        assert len(events) == 1
        assert events[0].sequence_number == 1
