# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Request parameters: transport strings -> typed options.

Query strings and JSON bodies both arrive as loosely typed mappings.
AnalyzeParams.from_mapping() applies the defaults; the untouched mapping is
kept for cache fingerprinting, so two requests only share a cache entry
when they sent the same parameters.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any
from urllib.parse import urlparse

from .browser_session import ScreenshotOptions
from .config import DEFAULT_MODEL
from .errors import MissingInput


class Operation(StrEnum):
    HTML = "html"
    STRUCTURE = "structure"
    SCREENSHOT = "screenshot"
    AI_DESCRIBE = "ai-describe"
    SCREENSHOT_AND_AI_DESCRIBE = "screenshotandai-describe"
    MERGED_STRUCTURE = "merged-structure"
    CLEAR_CACHE = "clear-cache"


OPERATION_ALIASES: dict[str, Operation] = {"ai": Operation.SCREENSHOT_AND_AI_DESCRIBE}
OUTPUT_MODES: tuple[str, ...] = (*(op.value for op in Operation), *OPERATION_ALIASES)

DEFAULT_VIEWPORT = (1280, 1000)
DESCRIBE_VIEWPORT = (1024, 768)  # screenshotandai-describe
DEFAULT_IMAGE_TYPE = "jpeg"
DEFAULT_IMAGE_QUALITY = 60
DEFAULT_WAIT_MS = 700
DEFAULT_IMAGE_MIME = "image/jpeg"
DEFAULT_FORMAT = "json"


def parse_operation(value: Any) -> Operation:
    """``output`` parameter -> Operation. Raises MissingInput when absent or unknown."""
    name = str(value).strip() if value is not None else ""
    if name in OPERATION_ALIASES:
        return OPERATION_ALIASES[name]
    try:
        return Operation(name)
    except ValueError:
        raise MissingInput(
            f"Missing or invalid 'output'. Use one of: {' | '.join(OUTPUT_MODES)}",
            parameter="output",
        ) from None


def _str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip()


def _int(value: Any, default: int) -> int:
    text = _str(value)
    if not text:
        return default
    try:
        return int(text)
    except ValueError:
        try:
            return int(float(text))
        except ValueError:
            return default


def _flag(value: Any) -> bool:
    """Only an explicit "true" (or JSON true) enables a flag."""
    return value is True or _str(value).lower() == "true"


@dataclass
class AnalyzeParams:
    operation: Operation
    target: str = ""
    viewport_width: int = DEFAULT_VIEWPORT[0]
    viewport_height: int = DEFAULT_VIEWPORT[1]
    image_type: str = DEFAULT_IMAGE_TYPE
    image_quality: int = DEFAULT_IMAGE_QUALITY
    full_page: bool = False
    wait_ms: int = DEFAULT_WAIT_MS
    selector: str | None = None
    model: str = DEFAULT_MODEL
    format: str = DEFAULT_FORMAT
    prompt: str | None = None
    include_screenshot: bool = False
    debug: bool = False
    image_base64: str = ""
    image_mime: str = DEFAULT_IMAGE_MIME
    prefix: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], *, default_model: str = DEFAULT_MODEL) -> AnalyzeParams:
        """Typed parameters from a query/body mapping. Raises MissingInput on a bad ``output``."""
        operation = parse_operation(raw.get("output"))
        width, height = DESCRIBE_VIEWPORT if operation is Operation.SCREENSHOT_AND_AI_DESCRIBE else DEFAULT_VIEWPORT
        prompt = raw.get("prompt")
        return cls(
            operation=operation,
            target=_str(raw.get("target")),
            viewport_width=_int(raw.get("viewportWidth"), width),
            viewport_height=_int(raw.get("viewportHeight"), height),
            image_type=(_str(raw.get("imageType")) or DEFAULT_IMAGE_TYPE).lower(),
            image_quality=_int(raw.get("imageQuality"), DEFAULT_IMAGE_QUALITY),
            full_page=_flag(raw.get("fullPage")),
            wait_ms=_int(raw.get("waitMs"), DEFAULT_WAIT_MS),
            selector=_str(raw.get("selectorToWaitFor")) or None,
            model=_str(raw.get("model")) or default_model,
            format=(_str(raw.get("format")) or DEFAULT_FORMAT).lower(),
            prompt=prompt if isinstance(prompt, str) and prompt.strip() else None,
            include_screenshot=_flag(raw.get("includeScreenshot")),
            debug=_flag(raw.get("debug")),
            image_base64=_str(raw.get("imageBase64")),
            image_mime=_str(raw.get("imageMime")) or DEFAULT_IMAGE_MIME,
            prefix=_str(raw.get("prefix")),
            raw={k: v for k, v in raw.items() if v is not None},
        )

    @property
    def wants_json(self) -> bool:
        return self.format == DEFAULT_FORMAT

    def require_target(self) -> str:
        """The target URL. Raises MissingInput unless it is an absolute http(s) URL."""
        if not self.target:
            raise MissingInput("Missing 'target' parameter", parameter="target")
        parsed = urlparse(self.target)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise MissingInput(f"Invalid 'target' URL: {self.target}", parameter="target")
        return self.target

    def screenshot_options(self) -> ScreenshotOptions:
        return ScreenshotOptions(
            width=self.viewport_width,
            height=self.viewport_height,
            full_page=self.full_page,
            image_type=self.image_type,
            quality=self.image_quality,
            wait_ms=self.wait_ms,
            selector=self.selector,
        )

    def safe_summary(self) -> dict[str, Any]:
        """Parameters for logging: long prompts cut, image payloads reduced to a length."""
        summary = dict(self.raw)
        prompt = summary.get("prompt")
        if isinstance(prompt, str) and len(prompt) > 120:
            summary["prompt"] = prompt[:120] + "..."
        if summary.get("imageBase64"):
            summary["imageBase64"] = f"[base64:{len(str(summary['imageBase64']))}]"
        return summary
