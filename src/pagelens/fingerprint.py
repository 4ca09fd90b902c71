# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Deterministic cache keys for analyzer operations.

Keys look like ``structure:1x2k9fz``: the operation name (so a whole
namespace can be cleared by prefix) plus a 32-bit djb2 hash of the canonical
JSON of the allow-listed request parameters.

The hash is not collision-resistant. Two parameter sets can share a key;
acceptable for a best-effort cache, not for identity.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

# Wire names, in serialization order.
CACHE_KEY_PARAMS: tuple[str, ...] = (
    "target",
    "viewportWidth",
    "viewportHeight",
    "fullPage",
    "imageType",
    "imageQuality",
    "waitMs",
    "selectorToWaitFor",
    "model",
    "format",
    "prompt",
    "includeScreenshot",
)

_DJB2_SEED = 5381
_MASK_32 = 0xFFFFFFFF
_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def _param_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def djb2_hash(text: str) -> int:
    """djb2 over UTF-16 code units (astral chars count as two surrogates)."""
    h = _DJB2_SEED
    data = text.encode("utf-16-le", errors="surrogatepass")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 33 + unit) & _MASK_32
    return h


def to_base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, rem = divmod(n, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def canonical_payload(operation: str, params: Mapping[str, Any]) -> str:
    """Compact JSON of the operation plus present allow-listed params."""
    payload: dict[str, str] = {"output": operation}
    for name in CACHE_KEY_PARAMS:
        value = params.get(name)
        if value is not None:
            payload[name] = _param_str(value)
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def build_cache_key(operation: str, params: Mapping[str, Any]) -> str:
    """``"<operation>:<base36 hash>"`` for *operation* and *params*."""
    return f"{operation}:{to_base36(djb2_hash(canonical_payload(operation, params)))}"
