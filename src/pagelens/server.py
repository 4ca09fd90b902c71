# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""HTTP surface: ``/analyze`` (GET query or POST JSON) and ``/health``.

Thin transport over Analyzer. Errors become RFC 9457 problem responses;
every request gets a short id bound into the log context and echoed in
``X-Request-Id``.
"""

from __future__ import annotations

import argparse
import logging
import os
from contextlib import asynccontextmanager, suppress
from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from .analyzer import Analyzer, OperationResult
from .config import Settings
from .cors import CorsMiddleware
from .errors import PageLensError
from .logging_config import bind_request, clear_request, new_request_id
from .params import AnalyzeParams
from .problem_details import ProblemType, from_exception, from_type

logger = logging.getLogger(__name__)


async def _read_params(request: Request) -> dict[str, Any] | Response:
    """Raw parameter mapping, or a problem response for an unusable body."""
    if request.method == "GET":
        return dict(request.query_params)
    content_type = request.headers.get("content-type", "")
    if "application/json" not in content_type:
        return from_type(ProblemType.UNSUPPORTED_MEDIA_TYPE, "POST must be application/json").to_response()
    try:
        body = await request.json()
    except ValueError:
        return from_type(ProblemType.MISSING_INPUT, "Request body is not valid JSON").to_response()
    if not isinstance(body, dict):
        return from_type(ProblemType.MISSING_INPUT, "Request body must be a JSON object").to_response()
    return body


def _to_response(result: OperationResult, request_id: str) -> Response:
    headers = {"X-Request-Id": request_id, "X-Cache": "HIT" if result.cached else "MISS"}
    if result.cache_control:
        headers["Cache-Control"] = result.cache_control
    if isinstance(result.body, (dict, list)):
        return JSONResponse(result.body, headers=headers)
    return Response(result.body, media_type=result.media_type, headers=headers)


async def analyze(request: Request) -> Response:
    analyzer: Analyzer = request.app.state.analyzer
    request_id = new_request_id()
    bind_request(request_id)
    try:
        raw = await _read_params(request)
        if isinstance(raw, Response):
            return raw
        try:
            params = AnalyzeParams.from_mapping(raw, default_model=analyzer.default_model)
            bind_request(request_id, operation=params.operation.value)
            logger.info("%s /analyze params=%s", request.method, params.safe_summary())
            result = await analyzer.run(params)
        except PageLensError as e:
            problem = from_exception(e, instance=f"/analyze#{request_id}")
            logger.warning("Request failed: %s (%d)", problem.detail, problem.status)
            return problem.to_response({"X-Request-Id": request_id})
        except Exception as e:
            logger.exception("Unexpected error")
            return from_exception(e, instance=f"/analyze#{request_id}").to_response({"X-Request-Id": request_id})
        return _to_response(result, request_id)
    finally:
        clear_request()


async def health(request: Request) -> Response:
    analyzer: Analyzer = request.app.state.analyzer
    return JSONResponse(
        {
            "status": "ok",
            "ai_configured": analyzer.ai_configured,
            "cache_enabled": analyzer.cache.enabled,
            "cache": analyzer.cache.stats.to_dict(),
        }
    )


def create_app(analyzer: Analyzer):
    """ASGI app serving *analyzer*; the analyzer is closed on shutdown."""

    @asynccontextmanager
    async def lifespan(app: Starlette):
        try:
            yield
        finally:
            await analyzer.aclose()
            logger.info("Analyzer closed")

    app = Starlette(
        routes=[
            Route("/analyze", analyze, methods=["GET", "POST"]),
            Route("/health", health, methods=["GET"]),
        ],
        lifespan=lifespan,
    )
    app.state.analyzer = analyzer
    return CorsMiddleware(app)


def _parse_server_args(argv: list[str] | None = None) -> argparse.Namespace:
    """CLI args with PAGELENS_* environment overrides for unset flags."""
    parser = argparse.ArgumentParser(description="PageLens HTTP server")
    parser.add_argument("--host", default=None, help="Bind host (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default: 8000)")
    parser.add_argument(
        "--parallel-capture",
        action="store_true",
        default=False,
        help="Render and screenshot concurrently in merged-structure",
    )
    parser.add_argument("--no-cache", action="store_true", default=False, help="Disable the result cache")
    parser.add_argument("--log-level", default="INFO", help="Root log level (default: INFO)")
    args, _ = parser.parse_known_args(argv)

    env_parallel = os.environ.get("PAGELENS_PARALLEL_CAPTURE", "").strip().lower()
    args.parallel_capture = args.parallel_capture or env_parallel in ("1", "true", "yes")

    env_level = os.environ.get("PAGELENS_LOG_LEVEL", "").strip()
    if env_level and args.log_level == "INFO":
        args.log_level = env_level
    return args


def main(argv: list[str] | None = None) -> None:
    """Entry point: ``pagelens-server`` / ``pagelens serve``."""
    import dataclasses

    import uvicorn

    from .logging_config import configure as configure_logging

    args = _parse_server_args(argv)
    configure_logging(json_output=True, level=args.log_level)

    settings = Settings.from_env()
    overrides: dict[str, Any] = {}
    if args.host:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.no_cache:
        overrides["cache_enabled"] = False
    settings = dataclasses.replace(settings, **overrides)
    logger.info("Starting PageLens server on %s:%d settings=%s", settings.host, settings.port, settings.redacted())
    if not settings.ai_configured:
        logger.warning("No AI endpoint configured; AI operations will answer 503")

    app = create_app(Analyzer.from_settings(settings, parallel_capture=args.parallel_capture))
    with suppress(KeyboardInterrupt):
        uvicorn.run(app, host=settings.host, port=settings.port, log_level=args.log_level.lower(), access_log=False)


if __name__ == "__main__":
    main()
