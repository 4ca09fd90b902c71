# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Reconcile markup-derived and vision-derived page structure.

Stage sequence::

    RENDER -> EXTRACT_DOM -> SCREENSHOT -> VISION_REQUEST -> MERGE_REQUEST -> DONE

1. Render the target and extract a DomStructure from its markup.
2. Capture a screenshot.
3. Vision request: the merge template in vision-only mode (or the caller's
   prompt) with the DOM structure as context, plus the screenshot.
4. Merge request: the merge template with both structures, plus the same
   screenshot.

Both model responses are normalized and sanitized, so the result always has
the AnalyzedPage shape. Any collaborator failure aborts the run and
propagates unchanged; nothing is retried.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

from . import DomStructure, Screenshot
from .browser_session import Renderer, ScreenshotOptions
from .dom_extractor import extract_structure
from .errors import RequestTimeout
from .normalizer import is_error_envelope, normalize_response
from .params import AnalyzeParams
from .pipeline_timer import PipelineTimer
from .prompts import merge_prompt, to_prompt_json, vision_prompt
from .sanitizer import sanitize_page

logger = logging.getLogger(__name__)


class Stage(StrEnum):
    RENDER = "render"
    EXTRACT_DOM = "extract_dom"
    SCREENSHOT = "screenshot"
    VISION_REQUEST = "vision_request"
    MERGE_REQUEST = "merge_request"
    DONE = "done"


class ModelClient(Protocol):
    async def call(
        self,
        prompt: str,
        image: Screenshot,
        *,
        model: str | None = None,
        format: str = "json",
        tag: str = "",
    ) -> Any: ...


def coerce_model_output(raw: Any, stage: str, warnings: list[str]) -> dict[str, Any]:
    """normalize -> sanitize; an unparsable response becomes a warning, not an error."""
    normalized = normalize_response(raw)
    if is_error_envelope(normalized):
        warnings.append(f"{stage}: {normalized['error']}")
        logger.warning("%s returned invalid JSON (raw=%d chars)", stage, len(normalized["raw"]))
    return sanitize_page(normalized)


@dataclass
class ReconciliationResult:
    merged: dict[str, Any]
    dom: DomStructure
    vision: dict[str, Any]
    screenshot: Screenshot
    timings: dict[str, float] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def to_response(self, *, include_screenshot: bool = False, debug: bool = False) -> dict[str, Any]:
        """Merged page plus the optional ``_screenshot``/``_debug``/``_warnings`` extras."""
        body = copy.deepcopy(self.merged)
        if include_screenshot and self.screenshot.data:
            body["_screenshot"] = self.screenshot.to_payload()
        if debug:
            body["_debug"] = {"domStructure": self.dom.to_dict(), "visionStructure": copy.deepcopy(self.vision)}
        if self.warnings:
            body["_warnings"] = list(self.warnings)
        return body


class Reconciler:
    """Runs one reconciliation per call; holds no per-run state.

    ``parallel_capture=True`` renders and screenshots concurrently (two
    independent page loads). The vision request needs the screenshot, so
    model calls are always sequential.
    """

    def __init__(self, renderer: Renderer, ai: ModelClient, *, parallel_capture: bool = False) -> None:
        self._renderer = renderer
        self._ai = ai
        self._parallel_capture = parallel_capture

    async def _capture(self, target: str, options: ScreenshotOptions, timer: PipelineTimer) -> tuple[str, Screenshot]:
        if not self._parallel_capture:
            timer.stage(Stage.RENDER)
            html = await self._renderer.render(target)
            timer.stage(Stage.SCREENSHOT)
            shot = await self._renderer.screenshot(target, options)
            return html, shot

        timer.stage(f"{Stage.RENDER}+{Stage.SCREENSHOT}")
        render_task = asyncio.ensure_future(self._renderer.render(target))
        shot_task = asyncio.ensure_future(self._renderer.screenshot(target, options))
        try:
            html, shot = await asyncio.gather(render_task, shot_task)
        except BaseException:
            for task in (render_task, shot_task):
                task.cancel()
            await asyncio.gather(render_task, shot_task, return_exceptions=True)
            raise
        return html, shot

    async def run(self, params: AnalyzeParams) -> ReconciliationResult:
        target = params.require_target()
        timer = PipelineTimer()
        warnings: list[str] = []
        try:
            html, shot = await self._capture(target, params.screenshot_options(), timer)

            timer.stage(Stage.EXTRACT_DOM)
            dom = extract_structure(html, target)
            dom_json = to_prompt_json(dom)
            logger.info("DOM structure: %d sections, screenshot %s %dB", len(dom.sections), shot.mime, len(shot.data))

            timer.stage(Stage.VISION_REQUEST)
            raw_vision = await self._ai.call(
                vision_prompt(dom_json, target, params.prompt),
                shot,
                model=params.model,
                format="json",
                tag="vision",
            )
            vision = coerce_model_output(raw_vision, Stage.VISION_REQUEST, warnings)

            timer.stage(Stage.MERGE_REQUEST)
            raw_merged = await self._ai.call(
                merge_prompt(dom_json, to_prompt_json(vision), target),
                shot,
                model=params.model,
                format="json",
                tag="merge",
            )
            merged = coerce_model_output(raw_merged, Stage.MERGE_REQUEST, warnings)
        except (RequestTimeout, TimeoutError):
            logger.warning("Reconciliation timed out: %s", timer.timeout_report())
            timer.finalize()
            raise
        except BaseException:
            logger.warning("Reconciliation aborted during %s: %s", timer.current_stage, timer.elapsed_per_stage())
            timer.finalize()
            raise

        timer.finalize()
        timings = timer.elapsed_per_stage()
        logger.info("Reconciliation %s in %.1fms: %s", Stage.DONE, timer.total_ms, timings)
        return ReconciliationResult(
            merged=merged,
            dom=dom,
            vision=vision,
            screenshot=shot,
            timings=timings,
            warnings=warnings,
        )
