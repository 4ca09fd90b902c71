# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Permissive CORS for the analyze API.

Pure ASGI middleware: every HTTP response gets the allow-origin/methods/headers
triple (existing app headers are never overwritten) and ``OPTIONS`` preflight
requests are answered with 204 without reaching the app.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

CORS_HEADERS: tuple[tuple[bytes, bytes], ...] = (
    (b"access-control-allow-origin", b"*"),
    (b"access-control-allow-methods", b"GET,POST,OPTIONS"),
    (b"access-control-allow-headers", b"Content-Type,Authorization"),
)


async def _send_preflight(send) -> None:
    await send({"type": "http.response.start", "status": 204, "headers": list(CORS_HEADERS)})
    await send({"type": "http.response.body", "body": b""})


class CorsMiddleware:
    def __init__(self, app) -> None:
        self.app = app

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if scope.get("method") == "OPTIONS":
            logger.debug("CORS preflight: %s", scope.get("path"))
            await _send_preflight(send)
            return

        _injected = False

        async def _send_with_cors(message) -> None:
            nonlocal _injected
            if message["type"] == "http.response.start" and not _injected:
                _injected = True
                headers = list(message.get("headers", []))
                existing = frozenset(h[0].lower() for h in headers)
                headers.extend(h for h in CORS_HEADERS if h[0] not in existing)
                message = {**message, "headers": headers}
            await send(message)

        await self.app(scope, receive, _send_with_cors)
