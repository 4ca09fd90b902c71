# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Environment-driven settings.

Every setting has a ``PAGELENS_*`` variable; the AI settings also accept
the short names (``AI_ENDPOINT``, ``AI_API_KEY``, ``OPENAI_MODEL``,
``AI_TIMEOUT_MS``). The prefixed name wins when both are set. Malformed
numbers fall back to the default. CLI flags are applied on top via
dataclasses.replace().
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_AI_TIMEOUT_MS = 60000
DEFAULT_CACHE_TTL = 600
DEFAULT_CACHE_MAX_ENTRIES = 512
DEFAULT_RENDER_TIMEOUT_MS = 60000
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


def _lookup(env: Mapping[str, str], *names: str) -> str:
    for name in names:
        value = env.get(name, "").strip()
        if value:
            return value
    return ""


def _int(env: Mapping[str, str], default: int, *names: str) -> int:
    raw = _lookup(env, *names)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r (using %d)", names[0], raw, default)
        return default


def _bool(env: Mapping[str, str], default: bool, *names: str) -> bool:
    raw = _lookup(env, *names).lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    return default


@dataclass(frozen=True)
class Settings:
    ai_endpoint: str = ""
    ai_api_key: str = ""
    ai_model: str = DEFAULT_MODEL
    ai_timeout_ms: int = DEFAULT_AI_TIMEOUT_MS
    cache_enabled: bool = True
    cache_ttl: int = DEFAULT_CACHE_TTL
    cache_max_entries: int = DEFAULT_CACHE_MAX_ENTRIES
    render_timeout_ms: int = DEFAULT_RENDER_TIMEOUT_MS
    render_deadline_ms: int = 0  # whole render/screenshot; 0 derives it from render_timeout_ms
    headless: bool = True
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    @property
    def ai_configured(self) -> bool:
        return bool(self.ai_endpoint)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if env is None else env
        return cls(
            ai_endpoint=_lookup(env, "PAGELENS_AI_ENDPOINT", "AI_ENDPOINT"),
            ai_api_key=_lookup(env, "PAGELENS_AI_API_KEY", "AI_API_KEY"),
            ai_model=_lookup(env, "PAGELENS_AI_MODEL", "OPENAI_MODEL") or DEFAULT_MODEL,
            ai_timeout_ms=_int(env, DEFAULT_AI_TIMEOUT_MS, "PAGELENS_AI_TIMEOUT_MS", "AI_TIMEOUT_MS"),
            cache_enabled=_bool(env, True, "PAGELENS_CACHE_ENABLED"),
            cache_ttl=_int(env, DEFAULT_CACHE_TTL, "PAGELENS_CACHE_TTL"),
            cache_max_entries=_int(env, DEFAULT_CACHE_MAX_ENTRIES, "PAGELENS_CACHE_MAX_ENTRIES"),
            render_timeout_ms=_int(env, DEFAULT_RENDER_TIMEOUT_MS, "PAGELENS_RENDER_TIMEOUT_MS"),
            render_deadline_ms=_int(env, 0, "PAGELENS_RENDER_DEADLINE_MS"),
            headless=_bool(env, True, "PAGELENS_HEADLESS"),
            host=_lookup(env, "PAGELENS_HOST") or DEFAULT_HOST,
            port=_int(env, DEFAULT_PORT, "PAGELENS_PORT"),
        )

    def redacted(self) -> dict[str, object]:
        """Settings safe to log: the API key is reduced to a presence flag."""
        return {
            "ai_endpoint": self.ai_endpoint,
            "ai_api_key": "set" if self.ai_api_key else "unset",
            "ai_model": self.ai_model,
            "ai_timeout_ms": self.ai_timeout_ms,
            "cache_enabled": self.cache_enabled,
            "cache_ttl": self.cache_ttl,
            "cache_max_entries": self.cache_max_entries,
            "render_timeout_ms": self.render_timeout_ms,
            "render_deadline_ms": self.render_deadline_ms,
            "headless": self.headless,
        }
