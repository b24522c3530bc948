"""Engine configuration loaded from environment variables.

Uses ``pydantic-settings`` for env-var loading (prefix ``BZL_EVENTS_``),
type coercion and ``.env`` file support.  Components take explicit
parameters; only the session and the CLI fall back to ``settings``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from bzl_events.problem_matcher import ProblemMatcherConfig

VERSION = "0.1.0"

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Engine settings — sourced from environment / ``.env`` file."""

    model_config = SettingsConfigDict(
        env_prefix="BZL_EVENTS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    LOG_LEVEL: str = "INFO"

    # Character encoding of action stdout/stderr.
    ENCODING: str = "utf-8"

    # JSON file holding a list of named problem matcher definitions.
    PROBLEM_MATCHERS_FILE: str = ""

    # Placeholder in matcher fileLocation prefixes, replaced with the
    # workspace directory from the build's ``started`` event.
    WORKSPACE_ROOT_TOKEN: str = "${workspaceRoot}"

    RULE_ICON_URL: str = "https://results.bzl.io/v1/image/rule/{kind}.svg"

    # Timeout for http(s) diagnostic file URIs.
    HTTP_TIMEOUT_S: float = Field(default=30.0, ge=0)

    # Scan stdout when a failed action reported no stderr.
    SCAN_STDOUT_FALLBACK: bool = True

    @field_validator("LOG_LEVEL")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"


settings = Settings()


def load_matcher_configs(path: str | Path) -> list[ProblemMatcherConfig]:
    """Read and validate the matcher definitions in *path*.

    The file holds a JSON list (or an object with a ``problemMatchers``
    list).  Invalid entries are logged and skipped; an unreadable or
    non-JSON file raises ``OSError`` / ``ValueError``.
    """
    raw: Any = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = raw.get("problemMatchers", [])
    if not isinstance(raw, list):
        raise ValueError(f"{path}: expected a list of problem matchers")

    configs: list[ProblemMatcherConfig] = []
    for index, entry in enumerate(raw):
        try:
            configs.append(ProblemMatcherConfig.model_validate(entry))
        except ValidationError as exc:
            logger.warning("[bep:config] %s: skipping matcher #%d: %s", path, index, exc)
    return configs


def configure_logging(level: str | None = None) -> None:
    """Install a basic console format and quiet the HTTP client loggers."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


__all__ = [
    "Settings",
    "VERSION",
    "configure_logging",
    "load_matcher_configs",
    "settings",
]
