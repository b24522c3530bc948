"""cli.py — replay a BEP JSON file through a build event session.

Usage
-----
# Text tree of the items that need attention, plus diagnostics
python -m bzl_events replay build_events.json --matchers matchers.json

# Substitute ${workspaceRoot} when the stream carries no workspace dir
python -m bzl_events replay build_events.json --matchers matchers.json --workspace ~/src/app

# Machine-readable output
python -m bzl_events replay build_events.json --json

# Validate a matcher definitions file
python -m bzl_events matchers matchers.json

The BEP file is the newline-delimited JSON Bazel writes with
``--build_event_json_file``.

Exit codes:
    0 -- Replay finished and the build succeeded (or never finished).
    1 -- The replayed build failed.
    2 -- Usage, file or configuration error.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from bzl_events.collector import ProblemMatcherEngine
from bzl_events.config import VERSION, configure_logging, load_matcher_configs, settings
from bzl_events.contracts import parse_bep_json_lines
from bzl_events.errors import BEPError, MatcherConfigError
from bzl_events.items import BuildEventItem, ItemKind
from bzl_events.markers import MarkerSeverity
from bzl_events.problem_matcher import ProblemMatcherRegistry, compile_matcher, make_problem_matcher_registry
from bzl_events.sanitiser import sort_markers
from bzl_events.session import BuildEventSession


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _err(msg: str) -> None:
    print(f"[bzl-events] ERROR: {msg}", file=sys.stderr, flush=True)


def _load_registry(path: str | None) -> ProblemMatcherRegistry:
    if not path:
        return ProblemMatcherRegistry()
    return make_problem_matcher_registry(load_matcher_configs(path))


async def _walk(session: BuildEventSession, item: BuildEventItem) -> dict[str, Any]:
    node: dict[str, Any] = {
        "kind": item.kind.value,
        "label": item.label,
        "description": item.description,
        "attention": item.attention,
        "icon": session.icon_uri(item),
        "collapsible": item.collapsible,
        "children": [],
    }
    try:
        children = await session.get_children(item)
    except BEPError as exc:
        node["error"] = exc.to_dict()
        return node
    if session.is_leaf(item):
        node["collapsible"] = "none"
    for child in children:
        node["children"].append(await _walk(session, child))
    return node


def _print_tree(nodes: list[dict[str, Any]], depth: int = 0) -> None:
    indent = "  " * depth
    for node in nodes:
        marker = "!" if node["attention"] else " "
        description = f"  {node['description']}" if node["description"] else ""
        print(f"{indent}{marker} {node['label']}{description}")
        if "error" in node:
            print(f"{indent}    error: {node['error']['message']}")
        _print_tree(node["children"], depth + 1)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _replay(args: argparse.Namespace) -> int:
    registry = _load_registry(args.matchers)
    session = BuildEventSession(ProblemMatcherEngine(registry, encoding=settings.ENCODING))
    if args.workspace:
        session.problems.default_workspace = str(Path(args.workspace).expanduser())

    try:
        with open(args.events, encoding="utf-8") as fh:
            for envelope in parse_bep_json_lines(fh):
                session.handle_event(envelope)

        roots = await session.get_children()
        tree = [await _walk(session, item) for item in roots]
        markers = {
            resource: [
                m.model_dump(mode="json")
                for m in sort_markers(session.markers.read(resource=resource))
            ]
            for resource in session.markers.resources()
        }
        failed = bool(roots) and roots[-1].kind == ItemKind.BUILD_FAILED
    finally:
        session.dispose()

    if args.json:
        print(json.dumps(
            {"items": tree, "markers": markers, "tests_passed": session.tests_passed},
            indent=2,
        ))
    else:
        _print_tree(tree)
        if markers:
            print()
            for resource, entries in markers.items():
                for m in entries:
                    print(
                        f"{resource}:{m['start_line_number']}:{m['start_column']}: "
                        f"{MarkerSeverity(m['severity']).name.lower()}: {m['message']}"
                    )
        print(f"\n{session.tests_passed} tests passed")
    return 1 if failed else 0


def _check_matchers(args: argparse.Namespace) -> int:
    configs = load_matcher_configs(args.file)
    failures = 0
    for config in configs:
        try:
            matcher = compile_matcher(config)
        except MatcherConfigError as exc:
            failures += 1
            print(f"FAIL {exc}")
            continue
        kind = "block" if matcher.is_block else f"{len(matcher.patterns)} stage(s)"
        print(f"ok   {matcher.name} ({kind})")
    return 2 if failures else 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bzl-events",
        description="Replay Bazel build event streams and extract diagnostics.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: BZL_EVENTS_LOG_LEVEL or INFO).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    replay = sub.add_parser("replay", help="Replay a BEP JSON file.")
    replay.add_argument("events", help="Newline-delimited BEP JSON file.")
    replay.add_argument(
        "--matchers",
        default=settings.PROBLEM_MATCHERS_FILE or None,
        help="JSON file with problem matcher definitions.",
    )
    replay.add_argument(
        "--workspace",
        default=None,
        help="Workspace directory used when the stream does not report one.",
    )
    replay.add_argument("--json", action="store_true", help="Print JSON instead of a tree.")

    matchers = sub.add_parser("matchers", help="Validate a problem matcher file.")
    matchers.add_argument("file", help="JSON file with problem matcher definitions.")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        match args.command:
            case "replay":
                return asyncio.run(_replay(args))
            case "matchers":
                return _check_matchers(args)
    except (OSError, ValueError) as exc:
        _err(str(exc))
        return 2
    parser.error(f"unknown command {args.command!r}")
    return 2


__all__ = ["build_parser", "main"]
