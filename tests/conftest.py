"""Shared test fixtures — BEP event factories and matcher definitions.

Provides:
- ``envelope`` / ``started`` / ``action`` / ``completed`` ... — build
  ``BazelBuildEvent`` envelopes from the camelCase JSON shape Bazel writes
- ``GCC_MATCHER`` — the single-line compiler matcher used across tests
- ``matcher_registry`` / ``engine`` / ``session`` fixtures
"""

from __future__ import annotations

import base64
from collections.abc import Iterator
from typing import Any

import pytest

from bzl_events.collector import ProblemMatcherEngine
from bzl_events.config import Settings
from bzl_events.contracts import BazelBuildEvent, BuildEvent
from bzl_events.problem_matcher import ProblemMatcherRegistry
from bzl_events.session import BuildEventSession


# ---------------------------------------------------------------------------
# Matcher definitions
# ---------------------------------------------------------------------------

GCC_MATCHER: dict[str, Any] = {
    "name": "CppCompile",
    "owner": "bazel",
    "source": "gcc",
    "pattern": {
        "regexp": r"^(?<file>\S+):(?<line>\d+):(?<col>\d+): (?<severity>error|warning): (?<message>.+)$",
    },
    "severities": {"error": "error", "warning": "warning"},
}


# ---------------------------------------------------------------------------
# Event factories
# ---------------------------------------------------------------------------


def envelope(seq: int, bes: dict[str, Any]) -> BazelBuildEvent:
    return BazelBuildEvent(sequence_number=seq, bes=BuildEvent.model_validate(bes))


def b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def started(
    seq: int = 1,
    *,
    start_millis: int | str | None = 1000,
    workspace: str = "/home/dev/ws",
    command: str = "build",
    uuid: str = "build-1",
) -> BazelBuildEvent:
    payload: dict[str, Any] = {
        "uuid": uuid,
        "buildToolVersion": "7.1.0",
        "command": command,
        "optionsDescription": "--config=ci",
        "workspaceDirectory": workspace,
        "workingDirectory": workspace,
    }
    if start_millis is not None:
        payload["startTimeMillis"] = str(start_millis)
    return envelope(seq, {"id": {"started": {}}, "started": payload})


def workspace_info(seq: int, exec_root: str = "/tmp/execroot") -> BazelBuildEvent:
    return envelope(seq, {"id": {"workspace": {}}, "workspaceInfo": {"localExecRoot": exec_root}})


def action(
    seq: int,
    *,
    success: bool = True,
    mnemonic: str = "CppCompile",
    label: str = "//foo:bar",
    stderr: str | None = None,
    stdout: str | None = None,
    stderr_uri: str | None = None,
    command_line: list[str] | None = None,
) -> BazelBuildEvent:
    payload: dict[str, Any] = {
        "success": success,
        "type": mnemonic,
        "label": label,
        "exitCode": 0 if success else 1,
    }
    if stderr is not None:
        payload["stderr"] = {"name": "stderr", "contents": b64(stderr)}
    elif stderr_uri is not None:
        payload["stderr"] = {"name": "stderr", "uri": stderr_uri}
    if stdout is not None:
        payload["stdout"] = {"name": "stdout", "contents": b64(stdout)}
    if command_line is not None:
        payload["commandLine"] = command_line
    return envelope(seq, {
        "id": {"actionCompleted": {"label": label, "primaryOutput": "bazel-out/foo.o"}},
        "action": payload,
    })


def named_set(seq: int, set_id: str, files: list[str], children: list[str] | None = None) -> BazelBuildEvent:
    return envelope(seq, {
        "id": {"namedSet": {"id": set_id}},
        "namedSetOfFiles": {
            "files": [{"name": name, "uri": f"file:///out/{name}"} for name in files],
            "fileSets": [{"id": child} for child in children or []],
        },
    })


def configured(seq: int, label: str, kind: str) -> BazelBuildEvent:
    return envelope(seq, {
        "id": {"targetConfigured": {"label": label}},
        "configured": {"targetKind": kind},
    })


def completed(
    seq: int,
    label: str,
    *,
    success: bool = True,
    file_sets: list[str] | None = None,
    failure: dict[str, Any] | None = None,
) -> BazelBuildEvent:
    payload: dict[str, Any] = {
        "success": success,
        "outputGroup": [{"name": "default", "fileSets": [{"id": i} for i in file_sets or []]}],
    }
    if failure is not None:
        payload["failureDetail"] = failure
    return envelope(seq, {"id": {"targetCompleted": {"label": label}}, "completed": payload})


def bep_test_result(seq: int, label: str, status: str = "PASSED", details: str = "") -> BazelBuildEvent:
    return envelope(seq, {
        "id": {"testResult": {"label": label, "run": 1, "shard": 1, "attempt": 1}},
        "testResult": {
            "status": status,
            "statusDetails": details,
            "testActionOutput": [
                {"name": "test.xml", "uri": "file:///out/test.xml"},
                {"name": "test.log", "uri": "file:///out/test.log"},
            ],
        },
    })


def finished(
    seq: int,
    *,
    success: bool = True,
    finish_millis: int | str | None = 2500,
) -> BazelBuildEvent:
    payload: dict[str, Any] = {
        "overallSuccess": success,
        "exitCode": {"name": "SUCCESS", "code": 0} if success else {"name": "BUILD_FAILURE", "code": 1},
    }
    if finish_millis is not None:
        payload["finishTimeMillis"] = str(finish_millis)
    return envelope(seq, {"id": {"buildFinished": {}}, "finished": payload})


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def matcher_registry() -> ProblemMatcherRegistry:
    return ProblemMatcherRegistry.from_configs([GCC_MATCHER])


@pytest.fixture
def engine(matcher_registry: ProblemMatcherRegistry) -> ProblemMatcherEngine:
    return ProblemMatcherEngine(matcher_registry)


@pytest.fixture
def session(engine: ProblemMatcherEngine, test_settings: Settings) -> Iterator[BuildEventSession]:
    s = BuildEventSession(engine, settings=test_settings)
    yield s
    s.dispose()
