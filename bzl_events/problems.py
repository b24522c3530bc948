"""Problem collector — diagnostics for failed actions.

Selects the problem matchers registered for an action's mnemonic, reads
the action's output (inline bytes or a resolved URI) and merges the
resulting markers into the session's ``MarkerRegistry``.
"""

from __future__ import annotations

import logging

from bzl_events.collector import ProblemMatcherEngine
from bzl_events.contracts import ActionExecuted, BuildStarted, File
from bzl_events.line_decoder import DEFAULT_ENCODING
from bzl_events.markers import Marker, MarkerRegistry
from bzl_events.resolver import Resolver, resolve_file_uri

logger = logging.getLogger(__name__)

WORKSPACE_ROOT_TOKEN = "${workspaceRoot}"

FileProblems = dict[str, list[Marker]]


class ProblemCollector:
    """Run problem matchers over failed action output for one session."""

    def __init__(
        self,
        engine: ProblemMatcherEngine,
        registry: MarkerRegistry,
        resolver: Resolver | None = None,
        *,
        encoding: str = DEFAULT_ENCODING,
        workspace_root_token: str = WORKSPACE_ROOT_TOKEN,
        scan_stdout_fallback: bool = True,
        default_workspace: str = "",
    ) -> None:
        self._engine = engine
        self._registry = registry
        self._resolver: Resolver = resolver or resolve_file_uri
        self._encoding = encoding
        self._token = workspace_root_token
        self._scan_stdout_fallback = scan_stdout_fallback
        self.default_workspace = default_workspace
        self._reported_missing: set[str] = set()
        self.started: BuildStarted | None = None

    def clear(self) -> None:
        self.started = None
        self._reported_missing.clear()

    def provide_uri(self, path: str) -> str:
        """Substitute the workspace-root placeholder in a matched path."""
        workspace = self.started.workspace_directory if self.started else ""
        workspace = workspace or self.default_workspace
        if not workspace or self._token not in path:
            return path
        workspace = workspace.rstrip("/")
        return path.replace("/" + self._token, workspace).replace(self._token, workspace)

    async def action_problems(self, action: ActionExecuted) -> FileProblems | None:
        """Diagnostics for a failed action; ``None`` when there is nothing to scan."""
        if action.success:
            return None
        if action.stderr is not None:
            return await self.file_problems(action.type, action.stderr)
        if action.stdout is not None and self._scan_stdout_fallback:
            return await self.file_problems(action.type, action.stdout)
        return None

    async def file_problems(self, mnemonic: str, file: File) -> FileProblems | None:
        """Parse *file* with the matchers registered for *mnemonic*.

        Returns ``None`` when no matcher is registered or the file carries
        neither contents nor a URI.

        Raises:
            FileResolveError: the file's URI could not be read.
        """
        if not self._engine.has_matcher(mnemonic):
            if mnemonic not in self._reported_missing:
                self._reported_missing.add(mnemonic)
                logger.warning("[bep:problems] no problem matcher available for %r", mnemonic)
            return None

        if file.contents is not None:
            data = file.contents
        elif file.uri:
            started = self.started
            data = await self._resolver(file.uri)
            if self.started is not started:
                # A new build began while the file was being fetched.
                logger.debug("[bep:problems] dropping stale output of %s", file.uri)
                return None
        else:
            return None

        problems = self._engine.parse_bytes(
            mnemonic,
            data,
            encoding=self._encoding,
            uri_provider=self.provide_uri,
            markers=self._registry,
        )
        logger.debug(
            "[bep:problems] %s: %d markers in %d files",
            mnemonic,
            sum(len(m) for m in problems.values()),
            len(problems),
        )
        return problems


__all__ = ["FileProblems", "ProblemCollector", "WORKSPACE_ROOT_TOKEN"]
