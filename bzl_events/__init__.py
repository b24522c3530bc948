"""Build event stream engine — BEP state, presentation items, diagnostics.

Public API
----------
Session::

    BuildEventSession, ItemsChanged

Contracts (Pydantic models)::

    BazelBuildEvent, BuildEvent, BuildEventId,
    BuildStarted, BuildFinished, ActionExecuted,
    TargetConfigured, TargetComplete, TestResult,
    NamedSetOfFiles, NamedSetOfFilesId, File, FailureDetail,
    parse_bep_json_lines,

State::

    BuildEventState, SessionPhase, rule_icon_url

Items::

    BuildEventItem, ItemKind

Markers::

    Marker, MarkerSeverity, MarkerRegistry, Diagnostic,
    marker_to_diagnostic, group_by_resource,

Problem matchers::

    ProblemMatcherConfig, ProblemPatternConfig, ProblemMatcher,
    ProblemMatcherRegistry, compile_matcher, make_problem_matcher_registry,
    StartStopProblemCollector, ProblemMatcherEngine, parse_problems,
    ProblemCollector,

Line decoding::

    LineDecoder

Resolver::

    resolve_file_uri, make_resolver

Buildifier::

    parse_buildifier_stderr, buildifier_warnings_to_markers

Errors::

    BEPError, IllegalStateError, MatcherNotFound,
    MatcherConfigError, FileResolveError,

Configuration::

    Settings, settings, load_matcher_configs
"""

from bzl_events.buildifier import buildifier_warnings_to_markers, parse_buildifier_stderr
from bzl_events.collector import ProblemMatcherEngine, StartStopProblemCollector, parse_problems
from bzl_events.config import Settings, load_matcher_configs, settings
from bzl_events.contracts import (
    ActionExecuted,
    BazelBuildEvent,
    BuildEvent,
    BuildEventId,
    BuildFinished,
    BuildStarted,
    FailureDetail,
    File,
    NamedSetOfFiles,
    NamedSetOfFilesId,
    TargetComplete,
    TargetConfigured,
    TestResult,
    parse_bep_json_lines,
)
from bzl_events.errors import (
    BEPError,
    FileResolveError,
    IllegalStateError,
    MatcherConfigError,
    MatcherNotFound,
)
from bzl_events.items import BuildEventItem, ItemKind
from bzl_events.line_decoder import LineDecoder
from bzl_events.markers import (
    Diagnostic,
    Marker,
    MarkerRegistry,
    MarkerSeverity,
    group_by_resource,
    marker_to_diagnostic,
)
from bzl_events.problem_matcher import (
    ProblemMatcher,
    ProblemMatcherConfig,
    ProblemMatcherRegistry,
    ProblemPatternConfig,
    compile_matcher,
    make_problem_matcher_registry,
)
from bzl_events.problems import ProblemCollector
from bzl_events.resolver import make_resolver, resolve_file_uri
from bzl_events.session import BuildEventSession, ItemsChanged
from bzl_events.state import BuildEventState, SessionPhase, rule_icon_url

__all__ = [
    # Session
    "BuildEventSession",
    "ItemsChanged",
    # Contracts
    "ActionExecuted",
    "BazelBuildEvent",
    "BuildEvent",
    "BuildEventId",
    "BuildFinished",
    "BuildStarted",
    "FailureDetail",
    "File",
    "NamedSetOfFiles",
    "NamedSetOfFilesId",
    "TargetComplete",
    "TargetConfigured",
    "TestResult",
    "parse_bep_json_lines",
    # State
    "BuildEventState",
    "SessionPhase",
    "rule_icon_url",
    # Items
    "BuildEventItem",
    "ItemKind",
    # Markers
    "Diagnostic",
    "Marker",
    "MarkerRegistry",
    "MarkerSeverity",
    "group_by_resource",
    "marker_to_diagnostic",
    # Problem matchers
    "ProblemCollector",
    "ProblemMatcher",
    "ProblemMatcherConfig",
    "ProblemMatcherEngine",
    "ProblemMatcherRegistry",
    "ProblemPatternConfig",
    "StartStopProblemCollector",
    "compile_matcher",
    "make_problem_matcher_registry",
    "parse_problems",
    # Line decoding
    "LineDecoder",
    # Resolver
    "make_resolver",
    "resolve_file_uri",
    # Buildifier
    "buildifier_warnings_to_markers",
    "parse_buildifier_stderr",
    # Errors
    "BEPError",
    "FileResolveError",
    "IllegalStateError",
    "MatcherConfigError",
    "MatcherNotFound",
    # Configuration
    "Settings",
    "load_matcher_configs",
    "settings",
]
