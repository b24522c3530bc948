"""Diagnostic file resolver — fetch the bytes behind a BEP ``File.uri``.

Bazel reports action stdout/stderr either inline or by URI.  Local builds
use ``file://`` URIs; remote builds served through an HTTP gateway use
``http(s)://``.  ``bytestream://`` (remote CAS) is not supported and is
reported as a ``FileResolveError``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

import httpx
from cachetools import TTLCache

from bzl_events.errors import FileResolveError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 30.0

Resolver = Callable[[str], Awaitable[bytes]]

# ── Remote content cache ────────────────────────────────────────────────────
# Action logs are immutable once the action has run, so repeated
# expansions of the same item do not refetch.

_remote_cache: TTLCache[str, bytes] = TTLCache(maxsize=64, ttl=300)


def clear_cache() -> None:
    _remote_cache.clear()


def uri_to_path(uri: str) -> Path:
    """Convert a ``file://`` URI to a local path."""
    parsed = urlparse(uri)
    path = url2pathname(unquote(parsed.path))
    if parsed.netloc and parsed.netloc != "localhost":
        path = f"//{parsed.netloc}{path}"
    return Path(path)


async def _read_local(uri: str) -> bytes:
    path = uri_to_path(uri)
    try:
        return await asyncio.to_thread(path.read_bytes)
    except OSError as exc:
        raise FileResolveError(uri, exc.strerror or str(exc)) from exc


async def _fetch_remote(uri: str, timeout_s: float, client: httpx.AsyncClient | None) -> bytes:
    cached = _remote_cache.get(uri)
    if cached is not None:
        return cached
    try:
        if client is not None:
            response = await client.get(uri)
        else:
            async with httpx.AsyncClient(timeout=timeout_s) as own:
                response = await own.get(uri)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise FileResolveError(uri, f"HTTP {exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
        raise FileResolveError(uri, str(exc) or type(exc).__name__) from exc
    data = response.content
    _remote_cache[uri] = data
    return data


async def resolve_file_uri(
    uri: str,
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    client: httpx.AsyncClient | None = None,
) -> bytes:
    """Return the raw bytes behind *uri*.

    Raises:
        FileResolveError: unsupported scheme, missing file, or HTTP failure.
    """
    scheme = urlparse(uri).scheme.lower()
    match scheme:
        case "file":
            return await _read_local(uri)
        case "http" | "https":
            logger.debug("[bep:resolver] fetching %s", uri)
            return await _fetch_remote(uri, timeout_s, client)
        case "":
            raise FileResolveError(uri, "not a URI")
        case _:
            raise FileResolveError(uri, f"unsupported scheme '{scheme}'")


def make_resolver(
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    client: httpx.AsyncClient | None = None,
) -> Resolver:
    """Bind timeout and client into a one-argument resolver."""

    async def _resolve(uri: str) -> bytes:
        return await resolve_file_uri(uri, timeout_s=timeout_s, client=client)

    return _resolve


__all__ = [
    "DEFAULT_TIMEOUT_S",
    "Resolver",
    "clear_cache",
    "make_resolver",
    "resolve_file_uri",
    "uri_to_path",
]
