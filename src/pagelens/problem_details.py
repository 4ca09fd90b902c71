# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""RFC 9457 Problem Details for the HTTP surface and CLI.

Maps PageLens exceptions to structured problem objects:

- ``ProblemType``  : error taxonomy (StrEnum, slug = URI suffix).
- ``ProblemDetail``: frozen dataclass, serialises to JSON, a Starlette
  response or CLI text.
- ``sanitize_detail()``: scrub secrets and paths from messages.
- ``from_exception()``: exception -> ProblemDetail.

Type URI namespace: ``https://www.retio.ai/pagelens/errors/{slug}``
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .errors import (
    MissingInput,
    PageLensError,
    RenderError,
    RequestTimeout,
    UpstreamRequestFailed,
    UpstreamUnavailable,
)

# ── Constants ────────────────────────────────────────────────────────

_ERROR_BASE = "https://www.retio.ai/pagelens/errors"

MAX_DETAIL_LENGTH = 200

# ── ProblemType taxonomy ─────────────────────────────────────────────


class ProblemType(StrEnum):
    # Request
    MISSING_INPUT = "missing-input"
    UNSUPPORTED_MEDIA_TYPE = "unsupported-media-type"

    # Collaborators
    UPSTREAM_UNAVAILABLE = "upstream-unavailable"
    UPSTREAM_FAILED = "upstream-failed"
    REQUEST_TIMEOUT = "request-timeout"
    RENDER_FAILED = "render-failed"
    DNS_RESOLUTION_FAILED = "dns-resolution-failed"
    PAGE_TIMEOUT = "page-timeout"

    @property
    def uri(self) -> str:
        return f"{_ERROR_BASE}/{self.value}"


# ── Per-type metadata: (status, title) ───────────────────────────────

_TYPE_METADATA: dict[ProblemType, tuple[int, str]] = {
    ProblemType.MISSING_INPUT: (400, "Missing Input"),
    ProblemType.UNSUPPORTED_MEDIA_TYPE: (415, "Unsupported Media Type"),
    ProblemType.UPSTREAM_UNAVAILABLE: (503, "Upstream Unavailable"),
    ProblemType.UPSTREAM_FAILED: (502, "Upstream Request Failed"),
    ProblemType.REQUEST_TIMEOUT: (504, "AI Request Timed Out"),
    ProblemType.RENDER_FAILED: (502, "Render Failed"),
    ProblemType.DNS_RESOLUTION_FAILED: (502, "DNS Resolution Failed"),
    ProblemType.PAGE_TIMEOUT: (504, "Page Timed Out"),
}

_EXCEPTION_TYPES: dict[type, ProblemType] = {
    MissingInput: ProblemType.MISSING_INPUT,
    UpstreamUnavailable: ProblemType.UPSTREAM_UNAVAILABLE,
    UpstreamRequestFailed: ProblemType.UPSTREAM_FAILED,
    RequestTimeout: ProblemType.REQUEST_TIMEOUT,
    RenderError: ProblemType.RENDER_FAILED,
}

# ── Secret sanitization patterns ─────────────────────────────────────

_SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"sk-[a-zA-Z0-9_-]{8,}"), "<redacted>"),
    (re.compile(r"Bearer\s+\S+"), "Bearer <redacted>"),
    (
        re.compile(r"(?:API_KEY|SECRET|TOKEN|PASSWORD|CREDENTIAL)\s*[=:]\s*\S+", re.IGNORECASE),
        "<redacted>",
    ),
    (re.compile(r"Basic\s+[A-Za-z0-9+/=]{8,}"), "Basic <redacted>"),
    (re.compile(r"://[^@\s/]+@"), "://<redacted>@"),
    (re.compile(r"eyJ[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}"), "<redacted>"),
]

_PATH_PATTERN = re.compile(
    r"(/(?:Users|home|tmp|var|etc|opt|root|srv|usr|Library|private|mnt)/[\w./-]+"
    r"|[A-Z]:\\[\w.\\-]+)"
)

# ── Chromium net::ERR_* classification ───────────────────────────────

_NET_ERR_RE = re.compile(r"net::ERR_(\w+)")
_HOSTNAME_RE = re.compile(r"https?://([^/:\s]+)")


def classify_render_error(message: str) -> tuple[ProblemType, str] | None:
    """Refine a RenderError carrying a ``net::ERR_*`` code. None otherwise."""
    m = _NET_ERR_RE.search(message)
    if m is None:
        return None
    code = m.group(1)
    hm = _HOSTNAME_RE.search(message)
    hostname = hm.group(1) if hm else ""

    if code == "NAME_NOT_RESOLVED":
        return ProblemType.DNS_RESOLUTION_FAILED, "Could not resolve domain name" + (f" '{hostname}'" if hostname else "")
    if code in ("CONNECTION_TIMED_OUT", "TIMED_OUT"):
        return ProblemType.PAGE_TIMEOUT, "Connection timed out" + (f" to '{hostname}'" if hostname else "")
    return ProblemType.RENDER_FAILED, f"Navigation failed (net::ERR_{code})"


# ── CLI hints ────────────────────────────────────────────────────────

_CLI_HINTS: dict[str, str] = {
    ProblemType.MISSING_INPUT.uri: "Pass an absolute http:// or https:// URL.",
    ProblemType.UPSTREAM_UNAVAILABLE.uri: "Set PAGELENS_AI_ENDPOINT (and PAGELENS_AI_API_KEY) for AI operations.",
    ProblemType.UPSTREAM_FAILED.uri: "Check the AI endpoint, API key and model name.",
    ProblemType.REQUEST_TIMEOUT.uri: "Raise PAGELENS_AI_TIMEOUT_MS or use a smaller viewport.",
    ProblemType.RENDER_FAILED.uri: "Check that the site is reachable. Ensure Chromium is installed: playwright install chromium",
    ProblemType.DNS_RESOLUTION_FAILED.uri: "Check the URL spelling and ensure the domain exists.",
    ProblemType.PAGE_TIMEOUT.uri: "The page took too long to load. Try again or check your connection.",
}


def sanitize_detail(text: str) -> str:
    """Scrub secrets and filesystem paths, then truncate to MAX_DETAIL_LENGTH."""
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    text = _PATH_PATTERN.sub("<path>", text)
    if len(text) > MAX_DETAIL_LENGTH:
        text = text[:MAX_DETAIL_LENGTH] + "..."
    return text


def _sanitize_extensions(extensions: dict[str, Any]) -> dict[str, Any]:
    return {k: sanitize_detail(v) if isinstance(v, str) else v for k, v in extensions.items()}


# ── ProblemDetail dataclass ──────────────────────────────────────────

_STANDARD_FIELDS = frozenset({"type", "title", "status", "detail", "instance"})


@dataclass(frozen=True, slots=True)
class ProblemDetail:
    type: str = "about:blank"
    title: str = ""
    status: int = 500
    detail: str = ""
    instance: str = ""
    extensions: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """RFC 9457 JSON dict. Empty optional fields omitted, extensions merged at top level."""
        d: dict[str, Any] = {"type": self.type, "status": self.status}
        if self.title:
            d["title"] = self.title
        if self.detail:
            d["detail"] = self.detail
        if self.instance:
            d["instance"] = self.instance
        for k, v in self.extensions.items():
            if k not in _STANDARD_FIELDS:
                d[k] = v
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    def to_response(self, headers: dict[str, str] | None = None):
        """Starlette JSONResponse with ``application/problem+json``."""
        from starlette.responses import JSONResponse

        merged = {"Cache-Control": "no-store", "Content-Language": "en"}
        if headers:
            merged.update(headers)
        return JSONResponse(
            content=self.to_dict(),
            status_code=self.status,
            media_type="application/problem+json",
            headers=merged,
        )

    def to_cli_text(self) -> str:
        """``Error: <detail>`` plus a ``Hint:`` line when one is known."""
        hint = _CLI_HINTS.get(self.type, "")
        lines = [f"Error: {self.detail}"]
        if hint:
            lines.append(f"Hint: {hint}")
        return "\n".join(lines)


# ── Factory functions ────────────────────────────────────────────────


def from_type(
    problem_type: ProblemType,
    detail: str,
    *,
    instance: str = "",
    extensions: dict[str, Any] | None = None,
) -> ProblemDetail:
    status, title = _TYPE_METADATA[problem_type]
    return ProblemDetail(
        type=problem_type.uri,
        title=title,
        status=status,
        detail=sanitize_detail(detail),
        instance=instance,
        extensions=_sanitize_extensions(dict(extensions) if extensions else {}),
    )


def from_exception(
    exc: BaseException,
    *,
    instance: str = "",
    extensions: dict[str, Any] | None = None,
) -> ProblemDetail:
    """Build a ProblemDetail from an exception.

    Known PageLens errors map to their ProblemType; anything else becomes a
    generic 500 whose detail does not leak internals.
    """
    ext = dict(extensions) if extensions else {}

    problem_type = next((pt for cls, pt in _EXCEPTION_TYPES.items() if isinstance(exc, cls)), None)
    if problem_type is not None:
        detail = str(exc)
        if isinstance(exc, MissingInput) and exc.parameter:
            ext.setdefault("parameter", exc.parameter)
        elif isinstance(exc, UpstreamRequestFailed):
            if exc.status:
                ext.setdefault("upstream_status", exc.status)
            if exc.payload is not None:
                ext.setdefault("upstream_error", exc.payload)
        elif isinstance(exc, RequestTimeout) and exc.timeout_ms:
            ext.setdefault("timeout_ms", exc.timeout_ms)
        elif isinstance(exc, RenderError):
            refined = classify_render_error(detail)
            if refined is not None:
                problem_type, detail = refined
        return from_type(problem_type, detail, instance=instance, extensions=ext)

    if isinstance(exc, PageLensError):
        detail = sanitize_detail(str(exc))
    else:
        detail = "Unexpected server error"
    return ProblemDetail(
        type="about:blank",
        status=500,
        detail=detail,
        instance=instance,
        extensions=_sanitize_extensions(ext),
    )
