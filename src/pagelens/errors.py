# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PageLens exception hierarchy.

All PageLens-specific errors inherit from PageLensError, allowing callers
to catch the base class for any failure or specific subclasses for targeted
handling. Model output that cannot be parsed is NOT an exception: the
normalizer returns an error envelope instead (see normalizer.py).
"""

from __future__ import annotations

from typing import Any


class PageLensError(Exception):
    """Base exception for all PageLens errors."""


class MissingInput(PageLensError):
    """A required request parameter (usually ``target``) is absent."""

    def __init__(self, message: str, *, parameter: str = "") -> None:
        super().__init__(message)
        self.parameter = parameter


class UpstreamUnavailable(PageLensError):
    """Renderer or AI endpoint is not configured."""


class UpstreamRequestFailed(PageLensError):
    """AI endpoint answered with a non-success HTTP status."""

    def __init__(self, message: str, *, status: int = 0, payload: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.payload = payload


class RequestTimeout(PageLensError):
    """AI call aborted after the configured number of milliseconds."""

    def __init__(self, message: str, *, timeout_ms: int = 0) -> None:
        super().__init__(message)
        self.timeout_ms = timeout_ms


class RenderError(PageLensError):
    """Browser navigation or screenshot capture failed."""


class CacheUnavailable(PageLensError):
    """Cache store not configured or an operation on it failed.

    Raised by stores only; the cache wrapper logs and swallows it.
    """
