"""Problem matcher engine — run compiled matchers over tool output.

``StartStopProblemCollector`` is pull based: the caller pushes lines in
with ``process_line()`` (or ``feed()``) and calls ``done()`` when the
stream ends.  Matching is strict and non-backtracking:

- a multi-stage matcher only tries stage *k+1* on the line after stage
  *k* matched; when a later stage fails the matcher resets and the line
  is consumed,
- at most one matcher is mid-pipeline at any time, and it sees the next
  line before any other matcher,
- on a fresh line a terminal match (a single-stage matcher) wins over
  another matcher's first stage; a multi-stage matcher only starts its
  pipeline when no matcher completes a marker on that line,
- a ``loop`` final stage emits one marker per matching line and the
  first non-matching line ends the loop (that line is then offered to
  every matcher as usual).

Block matchers (``background.beginsPattern``) are only active between
their begin and end triggers; while a block is open no other matcher
sees any line.  Begin triggers are checked before anything else, so a
half-finished multi-line match never hides the start of a block.

``ProblemMatcherEngine`` wraps a matcher registry and turns a mnemonic
plus raw bytes into markers grouped by resource.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence

from bzl_events.errors import IllegalStateError, MatcherNotFound
from bzl_events.line_decoder import DEFAULT_ENCODING, LineDecoder
from bzl_events.markers import Marker, MarkerRegistry, group_by_resource
from bzl_events.problem_matcher import ProblemMatcher, ProblemMatcherRegistry, UriProvider
from bzl_events.sanitiser import strip_ansi

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Per-matcher pipeline state
# ---------------------------------------------------------------------------


class _PatternState:
    """Stage index and captured values for one matcher."""

    __slots__ = ("matcher", "stage", "data", "base", "looped")

    def __init__(self, matcher: ProblemMatcher) -> None:
        self.matcher = matcher
        self.stage = 0
        self.data: dict[str, str] = {}
        self.base: dict[str, str] = {}
        self.looped = False

    @property
    def active(self) -> bool:
        return self.stage > 0

    def reset(self) -> None:
        self.stage = 0
        self.data = {}
        self.base = {}
        self.looped = False

    def feed(self, line: str, uri_provider: UriProvider | None) -> tuple[bool, Marker | None]:
        """Offer *line* to the current stage.

        Returns ``(claimed, marker)``.  A line that ends a completed loop
        is not claimed, so the caller can offer it elsewhere.
        """
        patterns = self.matcher.patterns
        pattern = patterns[self.stage]
        captured = pattern.match(line)

        if captured is None:
            if self.stage == 0:
                return False, None
            claimed = not self.looped
            self.reset()
            return claimed, None

        last = len(patterns) - 1
        if self.stage == 0:
            self.data = {}
        if self.stage < last:
            self.data.update(captured)
            self.stage += 1
            return True, None

        # Final stage.  A looping stage keeps the values captured by the
        # earlier stages and starts each iteration from them.
        if pattern.loop and last > 0:
            if not self.looped:
                self.base = dict(self.data)
                self.looped = True
            data = {**self.base, **captured}
        else:
            data = {**self.data, **captured}
            self.reset()
        return True, self.matcher.create_marker(data, uri_provider)


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------


class StartStopProblemCollector:
    """Feed lines through a set of matchers and accumulate markers.

    Usage::

        collector = StartStopProblemCollector(registry.get("CppCompile"))
        for line in lines:
            collector.process_line(line)
        markers = collector.done()
        collector.dispose()
    """

    def __init__(
        self,
        matchers: Sequence[ProblemMatcher],
        registry: MarkerRegistry | None = None,
        *,
        uri_provider: UriProvider | None = None,
    ) -> None:
        self._states = [_PatternState(m) for m in matchers]
        self._registry = registry
        self._uri_provider = uri_provider
        self._block: _PatternState | None = None
        self._pending: _PatternState | None = None
        self._markers: list[Marker] = []
        self._disposed = False

    def _check(self, operation: str) -> None:
        if self._disposed:
            raise IllegalStateError(operation, "problem collector")

    # ------------------------------------------------------------------
    # Line processing
    # ------------------------------------------------------------------

    def process_line(self, line: str) -> list[Marker]:
        """Match one line; return the markers it completed."""
        self._check("process line")
        line = strip_ansi(line)

        block = self._block
        if block is not None:
            if block.matcher.is_end(line):
                self._close_block()
                return []
            claimed, marker = self._continue_pending(line)
            if claimed:
                return self._emit(marker)
            return self._emit(self._offer(line, [block]))

        for state in self._states:
            if state.matcher.is_block and state.matcher.is_begin(line):
                self._drop_pending()
                state.reset()
                self._block = state
                logger.debug("[bep:collector] %s: block opened", state.matcher.name)
                return []

        claimed, marker = self._continue_pending(line)
        if claimed:
            return self._emit(marker)

        candidates = [s for s in self._states if not s.matcher.is_block]
        return self._emit(self._offer(line, candidates))

    def feed(self, lines: Iterable[str]) -> Iterator[Marker]:
        """Process *lines*, yielding markers as they complete."""
        for line in lines:
            yield from self.process_line(line)

    def done(self) -> list[Marker]:
        """End the stream.

        Closes any open block, drops partial multi-line state, pushes the
        collected markers to the registry and returns all of them.
        """
        self._check("finish collecting")
        if self._block is not None:
            logger.debug("[bep:collector] %s: block not terminated", self._block.matcher.name)
            self._close_block()
        self._drop_pending()

        if self._registry is not None:
            for resource, markers in group_by_resource(self._markers).items():
                self._registry.extend(resource, markers)
        return list(self._markers)

    def dispose(self) -> None:
        self._disposed = True
        self._states = []
        self._block = None
        self._pending = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _continue_pending(self, line: str) -> tuple[bool, Marker | None]:
        pending = self._pending
        if pending is None:
            return False, None
        claimed, marker = pending.feed(line, self._uri_provider)
        if not pending.active:
            self._pending = None
        return claimed, marker

    def _offer(self, line: str, candidates: list[_PatternState]) -> Marker | None:
        """Offer a fresh line to matchers sitting at their first stage.

        The first single-stage match claims the line.  Otherwise the first
        multi-stage matcher whose first stage matches becomes pending.
        """
        partial: _PatternState | None = None
        for state in candidates:
            if len(state.matcher.patterns) > 1:
                if partial is None and state.matcher.patterns[0].match(line) is not None:
                    partial = state
                continue
            claimed, marker = state.feed(line, self._uri_provider)
            if claimed:
                return marker

        if partial is not None:
            partial.feed(line, self._uri_provider)
            self._pending = partial
        return None

    def _emit(self, marker: Marker | None) -> list[Marker]:
        if marker is None:
            return []
        self._markers.append(marker)
        return [marker]

    def _drop_pending(self) -> None:
        if self._pending is not None:
            self._pending.reset()
            self._pending = None

    def _close_block(self) -> None:
        if self._block is not None:
            self._block.reset()
        self._block = None
        self._drop_pending()


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def parse_problems(
    matchers: Sequence[ProblemMatcher],
    data: bytes,
    *,
    encoding: str = DEFAULT_ENCODING,
    uri_provider: UriProvider | None = None,
    registry: MarkerRegistry | None = None,
) -> dict[str, list[Marker]]:
    """Decode *data* and run *matchers* over every line.

    Returns markers grouped by resource in first-seen order.
    """
    decoder = LineDecoder(encoding)
    collector = StartStopProblemCollector(matchers, registry, uri_provider=uri_provider)
    try:
        for line in decoder.write(data):
            collector.process_line(line)
        tail = decoder.end()
        if tail:
            collector.process_line(tail)
        return group_by_resource(collector.done())
    finally:
        collector.dispose()


class ProblemMatcherEngine:
    """Parse tool output with the matchers registered for a mnemonic."""

    def __init__(
        self,
        registry: ProblemMatcherRegistry,
        *,
        encoding: str = DEFAULT_ENCODING,
    ) -> None:
        self._registry = registry
        self._encoding = encoding
        self._disposed = False

    @property
    def registry(self) -> ProblemMatcherRegistry:
        return self._registry

    def has_matcher(self, name: str) -> bool:
        self._check("look up matcher")
        return self._registry.has(name)

    def _matchers(self, name: str) -> list[ProblemMatcher]:
        matchers = self._registry.get(name)
        if not matchers:
            raise MatcherNotFound(name, self._registry.names())
        return matchers

    def parse(
        self,
        name: str,
        lines: Iterable[str],
        *,
        uri_provider: UriProvider | None = None,
        markers: MarkerRegistry | None = None,
    ) -> dict[str, list[Marker]]:
        """Run the *name* matchers over already-split text lines."""
        self._check("parse")
        collector = StartStopProblemCollector(
            self._matchers(name), markers, uri_provider=uri_provider,
        )
        try:
            for line in lines:
                collector.process_line(line)
            return group_by_resource(collector.done())
        finally:
            collector.dispose()

    def parse_bytes(
        self,
        name: str,
        data: bytes,
        *,
        encoding: str | None = None,
        uri_provider: UriProvider | None = None,
        markers: MarkerRegistry | None = None,
    ) -> dict[str, list[Marker]]:
        """Decode *data* and run the *name* matchers over it."""
        self._check("parse")
        return parse_problems(
            self._matchers(name),
            data,
            encoding=encoding or self._encoding,
            uri_provider=uri_provider,
            registry=markers,
        )

    def dispose(self) -> None:
        self._disposed = True

    def _check(self, operation: str) -> None:
        if self._disposed:
            raise IllegalStateError(operation, "problem matcher engine")


__all__ = [
    "ProblemMatcherEngine",
    "StartStopProblemCollector",
    "parse_problems",
]
