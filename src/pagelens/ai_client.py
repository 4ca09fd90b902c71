# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""HTTP client for the vision model endpoint.

Two request shapes:
- OpenAI Responses endpoints (host ``api.openai.com`` or a path ending in
  ``/v1/responses``) get the input_image/input_text message with a strict
  ``json_schema`` text format built from ANALYSIS_SCHEMA.
- Any other endpoint gets ``{"prompt", "image": {"mime", "base64"}}`` and
  is expected to answer with JSON.

The whole call (connect, upload, response) is bounded by one deadline;
on expiry the in-flight request is cancelled and RequestTimeout raised.
Nothing is retried.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any
from urllib.parse import urlparse

import httpx

from . import Screenshot
from .config import DEFAULT_AI_TIMEOUT_MS, DEFAULT_MODEL
from .errors import RequestTimeout, UpstreamRequestFailed, UpstreamUnavailable
from .schema import ANALYSIS_SCHEMA, SCHEMA_NAME

logger = logging.getLogger(__name__)

FORMAT_JSON = "json"
_PREVIEW_CHARS = 300


def is_openai_responses_endpoint(endpoint: str) -> bool:
    try:
        parsed = urlparse(endpoint)
    except ValueError:
        return False
    return "api.openai.com" in (parsed.hostname or "") or parsed.path.endswith("/v1/responses")


def build_request_body(
    endpoint: str,
    prompt: str,
    image: Screenshot,
    *,
    model: str = DEFAULT_MODEL,
) -> dict[str, Any]:
    """Provider-specific JSON body for one prompt + image call.

    Responses endpoints always get the strict json_schema text format; the
    requested output format only changes how the answer is read back.
    """
    if not is_openai_responses_endpoint(endpoint):
        return {"prompt": prompt, "image": image.to_payload()}

    return {
        "model": model,
        "input": [
            {
                "role": "user",
                "content": [
                    {"type": "input_image", "image_url": f"data:{image.mime};base64,{image.base64}"},
                    {"type": "input_text", "text": prompt},
                ],
            }
        ],
        "temperature": 0,
        "text": {"format": {"type": "json_schema", "name": SCHEMA_NAME, "schema": ANALYSIS_SCHEMA}},
    }


def _decode_text(text: str, want_json: bool) -> Any:
    if not want_json:
        return text
    try:
        return json.loads(text)
    except ValueError:
        return text


def extract_output(body: Any, *, want_json: bool = True) -> Any:
    """Model text from a Responses API body.

    Order: top-level ``output_text``; first ``output[].content[]`` entry of
    type ``output_text`` (or any entry with a string ``text``); else *body*.
    With *want_json* the text is parsed when it is valid JSON.
    """
    if not isinstance(body, dict):
        return body
    output_text = body.get("output_text")
    if isinstance(output_text, str):
        return _decode_text(output_text, want_json)
    output = body.get("output")
    if isinstance(output, list):
        for message in output:
            content = message.get("content") if isinstance(message, dict) else None
            if not isinstance(content, list):
                continue
            for part in content:
                if isinstance(part, dict) and isinstance(part.get("text"), str):
                    return _decode_text(part["text"], want_json)
    return body


def _preview(text: str) -> str:
    flat = " ".join(text[:_PREVIEW_CHARS].split())
    return flat + (" ..." if len(text) > _PREVIEW_CHARS else "")


class AIClient:
    """Async client bound to one endpoint.

    Pass *transport* (e.g. ``httpx.MockTransport``) to stub the network.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str = "",
        *,
        model: str = DEFAULT_MODEL,
        timeout_ms: int = DEFAULT_AI_TIMEOUT_MS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.model = model
        self.timeout_ms = timeout_ms
        self._api_key = api_key
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def configured(self) -> bool:
        return bool(self.endpoint)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            # Deadline enforced by asyncio.timeout in call(); no per-phase timeouts.
            self._client = httpx.AsyncClient(transport=self._transport, timeout=None)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> AIClient:
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def call(
        self,
        prompt: str,
        image: Screenshot,
        *,
        model: str | None = None,
        format: str = FORMAT_JSON,
        tag: str = "",
    ) -> Any:
        """POST *prompt* and *image*; return the model output.

        Returns extracted output (OpenAI), the parsed body (generic JSON), or
        the body text when a success response is not JSON.

        Raises:
            UpstreamUnavailable: no endpoint configured.
            UpstreamRequestFailed: non-2xx status or transport failure.
            RequestTimeout: deadline exceeded.
        """
        if not self.endpoint:
            raise UpstreamUnavailable("AI endpoint is not configured")

        model = model or self.model
        is_openai = is_openai_responses_endpoint(self.endpoint)
        body = build_request_body(self.endpoint, prompt, image, model=model)
        label = f"ai#{tag}" if tag else "ai"
        logger.info(
            "%s: provider=%s model=%s format=%s image=%dB mime=%s timeout=%dms",
            label,
            "openai" if is_openai else "generic",
            model,
            format,
            len(image.data),
            image.mime,
            self.timeout_ms,
        )

        start = time.monotonic()
        try:
            async with asyncio.timeout(self.timeout_ms / 1000):
                response = await self._get_client().post(self.endpoint, headers=self._headers(), json=body)
        except TimeoutError as e:
            raise RequestTimeout(f"AI request timed out after {self.timeout_ms}ms", timeout_ms=self.timeout_ms) from e
        except httpx.HTTPError as e:
            raise UpstreamRequestFailed(f"AI request failed: {e}", status=0) from e

        raw = response.text
        logger.info(
            "%s: status=%d body=%d chars in %.1fms",
            label,
            response.status_code,
            len(raw),
            (time.monotonic() - start) * 1000,
        )
        logger.debug("%s: body preview=%s", label, _preview(raw))

        try:
            parsed = json.loads(raw)
        except ValueError:
            parsed = None
            if response.is_success:
                return raw

        if not response.is_success:
            if isinstance(parsed, dict) and parsed.get("error") is not None:
                payload = parsed["error"]
            else:
                payload = parsed if parsed is not None else {"message": raw or "AI request failed"}
            raise UpstreamRequestFailed(
                f"AI endpoint returned HTTP {response.status_code}",
                status=response.status_code,
                payload=payload,
            )

        if is_openai:
            return extract_output(parsed, want_json=format == FORMAT_JSON)
        return parsed
