# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Externally visible operations, each bracketed by the fingerprint cache.

    html                       rendered markup
    structure                  DomStructure of the rendered markup
    screenshot                 page image
    ai-describe                vision analysis of a caller-supplied image
    screenshotandai-describe   screenshot + vision analysis ("ai")
    merged-structure           full reconciliation (see reconciler.py)
    clear-cache                delete cached results by key prefix

Cached values are strings keyed by build_cache_key(operation, raw params).
ai-describe is never cached: its image is not part of the fingerprint.
"""

from __future__ import annotations

import binascii
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from . import Screenshot
from .ai_client import AIClient
from .browser_session import BrowserConfig, BrowserSession, Renderer
from .cache import InMemoryCacheStore, ResultCache
from .config import Settings
from .dom_extractor import extract_structure
from .errors import MissingInput, UpstreamUnavailable
from .fingerprint import build_cache_key
from .params import AnalyzeParams, Operation
from .prompts import describe_prompt
from .reconciler import Reconciler, ReconciliationResult, coerce_model_output

logger = logging.getLogger(__name__)

JSON_MEDIA_TYPE = "application/json; charset=utf-8"
HTML_MEDIA_TYPE = "text/html; charset=utf-8"
TEXT_MEDIA_TYPE = "text/plain; charset=utf-8"

HTML_CACHE_CONTROL = "public, max-age=300"
SCREENSHOT_CACHE_CONTROL = "public, max-age=60"


@dataclass
class OperationResult:
    """What an operation produced; the transport decides how to send it."""

    operation: Operation
    body: Any  # dict (JSON) | str (HTML/text) | bytes (image)
    media_type: str = JSON_MEDIA_TYPE
    cached: bool = False
    cache_control: str | None = None


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


class Analyzer:
    """Dispatches AnalyzeParams to operations.

    *renderer* / *ai* may be None; operations needing them then raise
    UpstreamUnavailable.
    """

    def __init__(
        self,
        *,
        renderer: Renderer | None,
        ai: AIClient | None,
        cache: ResultCache,
        default_model: str = "",
        parallel_capture: bool = False,
    ) -> None:
        self._renderer = renderer
        self._ai = ai
        self.cache = cache
        self.default_model = default_model or (ai.model if ai is not None else "")
        self._parallel_capture = parallel_capture

    @classmethod
    def from_settings(cls, settings: Settings, *, parallel_capture: bool = False) -> Analyzer:
        """Analyzer wired to a Playwright renderer, the configured AI endpoint and an in-memory cache."""
        browser_config = BrowserConfig(
            headless=settings.headless,
            timeout_ms=settings.render_timeout_ms,
            deadline_ms=settings.render_deadline_ms,
        )
        renderer = BrowserSession(browser_config)
        ai = None
        if settings.ai_configured:
            ai = AIClient(
                settings.ai_endpoint,
                settings.ai_api_key,
                model=settings.ai_model,
                timeout_ms=settings.ai_timeout_ms,
            )
        store = InMemoryCacheStore(max_entries=settings.cache_max_entries) if settings.cache_enabled else None
        return cls(
            renderer=renderer,
            ai=ai,
            cache=ResultCache(store, ttl_seconds=settings.cache_ttl),
            default_model=settings.ai_model,
            parallel_capture=parallel_capture,
        )

    @property
    def ai_configured(self) -> bool:
        return self._ai is not None and self._ai.configured

    async def aclose(self) -> None:
        if self._ai is not None:
            await self._ai.aclose()
        stop = getattr(self._renderer, "stop", None)
        if stop is not None:
            await stop()

    # -- collaborators --

    def _require_renderer(self) -> Renderer:
        if self._renderer is None:
            raise UpstreamUnavailable("Renderer is not configured")
        return self._renderer

    def _require_ai(self) -> AIClient:
        if not self.ai_configured:
            raise UpstreamUnavailable("AI endpoint is not configured (set PAGELENS_AI_ENDPOINT)")
        return self._ai

    # -- dispatch --

    async def run(self, params: AnalyzeParams) -> OperationResult:
        start = time.monotonic()
        handler = {
            Operation.HTML: self.html,
            Operation.STRUCTURE: self.structure,
            Operation.SCREENSHOT: self.screenshot,
            Operation.AI_DESCRIBE: self.ai_describe,
            Operation.SCREENSHOT_AND_AI_DESCRIBE: self.screenshot_and_describe,
            Operation.MERGED_STRUCTURE: self.merged_structure,
            Operation.CLEAR_CACHE: self.clear_cache,
        }[params.operation]
        result = await handler(params)
        logger.info(
            "output=%s done in %.1fms (cached=%s)",
            params.operation,
            (time.monotonic() - start) * 1000,
            result.cached,
        )
        return result

    def _key(self, params: AnalyzeParams) -> str:
        return build_cache_key(params.operation.value, params.raw)

    # -- operations --

    async def html(self, params: AnalyzeParams) -> OperationResult:
        target = params.require_target()
        renderer = self._require_renderer()
        html, hit = await self.cache.get_or_compute(self._key(params), lambda: renderer.render(target))
        return OperationResult(params.operation, html, HTML_MEDIA_TYPE, cached=hit, cache_control=HTML_CACHE_CONTROL)

    async def structure(self, params: AnalyzeParams) -> OperationResult:
        target = params.require_target()
        renderer = self._require_renderer()

        async def compute() -> str:
            html = await renderer.render(target)
            return _dumps(extract_structure(html, target).to_dict())

        value, hit = await self.cache.get_or_compute(self._key(params), compute)
        return OperationResult(params.operation, json.loads(value), cached=hit)

    async def screenshot(self, params: AnalyzeParams) -> OperationResult:
        target = params.require_target()
        renderer = self._require_renderer()

        async def compute() -> str:
            shot = await renderer.screenshot(target, params.screenshot_options())
            return _dumps(shot.to_payload())

        value, hit = await self.cache.get_or_compute(self._key(params), compute)
        payload = json.loads(value)
        shot = Screenshot.from_base64(payload["base64"], payload["mime"])
        return OperationResult(
            params.operation, shot.data, shot.mime, cached=hit, cache_control=SCREENSHOT_CACHE_CONTROL
        )

    async def _describe(self, ai: AIClient, params: AnalyzeParams, shot: Screenshot) -> tuple[Any, str]:
        """One vision call; returns (body, media type)."""
        raw = await ai.call(
            describe_prompt(params.target, params.prompt),
            shot,
            model=params.model,
            format=params.format,
        )
        if params.wants_json:
            warnings: list[str] = []
            body = coerce_model_output(raw, "ai-describe", warnings)
            if params.include_screenshot and shot.data:
                body["_screenshot"] = shot.to_payload()
            if warnings:
                body["_warnings"] = warnings
            return body, JSON_MEDIA_TYPE
        if isinstance(raw, str):
            return raw, TEXT_MEDIA_TYPE
        return raw, JSON_MEDIA_TYPE

    async def ai_describe(self, params: AnalyzeParams) -> OperationResult:
        ai = self._require_ai()
        if not params.image_base64:
            raise MissingInput("Missing 'imageBase64' parameter for ai-describe", parameter="imageBase64")
        try:
            shot = Screenshot.from_base64(params.image_base64, params.image_mime)
        except (binascii.Error, ValueError):
            raise MissingInput("Invalid imageBase64", parameter="imageBase64") from None
        body, media_type = await self._describe(ai, params, shot)
        return OperationResult(params.operation, body, media_type)

    async def screenshot_and_describe(self, params: AnalyzeParams) -> OperationResult:
        renderer = self._require_renderer()
        ai = self._require_ai()
        target = params.require_target()

        async def compute() -> str:
            shot = await renderer.screenshot(target, params.screenshot_options())
            logger.info("Screenshot captured mime=%s size=%dB", shot.mime, len(shot.data))
            body, media_type = await self._describe(ai, params, shot)
            return _dumps({"media_type": media_type, "body": body})

        value, hit = await self.cache.get_or_compute(self._key(params), compute)
        envelope = json.loads(value)
        return OperationResult(params.operation, envelope["body"], envelope["media_type"], cached=hit)

    async def merged_structure(self, params: AnalyzeParams) -> OperationResult:
        renderer = self._require_renderer()
        ai = self._require_ai()
        params.require_target()
        reconciler = Reconciler(renderer, ai, parallel_capture=self._parallel_capture)

        async def compute() -> str:
            result: ReconciliationResult = await reconciler.run(params)
            # debug is not part of the fingerprint: always cache the extras, strip on the way out
            return _dumps(result.to_response(include_screenshot=params.include_screenshot, debug=True))

        value, hit = await self.cache.get_or_compute(self._key(params), compute)
        body = json.loads(value)
        if not params.debug:
            body.pop("_debug", None)
        return OperationResult(params.operation, body, cached=hit)

    async def clear_cache(self, params: AnalyzeParams) -> OperationResult:
        result = await self.cache.clear(params.prefix)
        return OperationResult(params.operation, {"ok": True, **result})
