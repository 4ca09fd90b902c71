# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Coerce raw model responses into JSON values.

Models wrap their JSON in prose, code fences or apologies. normalize_response()
salvages the payload when it can and otherwise returns an error envelope the
caller can inspect. It never raises.
"""

from __future__ import annotations

import json
from typing import Any

INVALID_JSON_MESSAGE = "Model did not return valid JSON"

# Keys the AI client uses on its own diagnostic objects; a dict carrying any
# of them is not a model payload.
_INTERNAL_MARKERS = ("raw", "error", "status")


def _try_parse(text: str) -> dict | list | None:
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    # Scalars ("0", "true", '"hi"') are not a page payload.
    return parsed if isinstance(parsed, (dict, list)) else None


def _raw_repr(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)


def normalize_response(value: Any) -> Any:
    """Best-effort JSON value for *value*, or an error envelope.

    Order: already-parsed object -> strict parse -> outermost ``{...}`` span.
    """
    if isinstance(value, dict) and not any(k in value for k in _INTERNAL_MARKERS):
        return value
    if isinstance(value, list):
        return value

    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")

    if isinstance(value, str):
        direct = _try_parse(value)
        if direct is not None:
            return direct
        start = value.find("{")
        end = value.rfind("}")
        if start != -1 and end > start:
            sliced = _try_parse(value[start : end + 1])
            if sliced is not None:
                return sliced

    return {"error": INVALID_JSON_MESSAGE, "raw": _raw_repr(value)}


def is_error_envelope(value: Any) -> bool:
    """True for the envelope produced by normalize_response() on failure."""
    return isinstance(value, dict) and value.get("error") == INVALID_JSON_MESSAGE and "raw" in value
