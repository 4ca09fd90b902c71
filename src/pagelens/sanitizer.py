# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Schema sanitization for model output.

Vision and merge responses enter downstream dashboards and agents directly,
so their *shape* must be reliable even when the model is not:

1. sanitize_page(): total, idempotent coercion into the AnalyzedPage shape
2. validate_page(): strict pydantic validation for callers that must reject
3. page_problems(): list schema violations without raising
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from .schema import ELEMENT_TYPES, SECTION_TYPES, AnalyzedPage

DEFAULT_SECTION_TYPE = "other"
DEFAULT_ELEMENT_TYPE = "TEXT"

_SECTION_TYPE_SET = frozenset(SECTION_TYPES)
_ELEMENT_TYPE_SET = frozenset(ELEMENT_TYPES)


def _to_str(value: Any) -> str:
    """String coercion: None -> "", containers -> JSON, bools -> JSON literals."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        try:
            return json.dumps(value, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def _intent_str(value: Any) -> str:
    # Falsy intents (0, False, None) collapse to "" rather than "0"/"false".
    if isinstance(value, str):
        return value
    return _to_str(value) if value else ""


def section_id(index: int) -> str:
    """Synthesized id for the section at *index*: sec_000, sec_001, ..."""
    return f"sec_{index:03d}"


def _enum_value(value: Any, allowed: frozenset[str], default: str, *, upper: bool) -> str:
    if not value or not isinstance(value, str):
        return default
    candidate = value.strip().upper() if upper else value.strip().lower()
    return candidate if candidate in allowed else default


def _sanitize_element(raw: Any) -> dict[str, str]:
    el = raw if isinstance(raw, dict) else {}
    return {
        "type": _enum_value(el.get("type"), _ELEMENT_TYPE_SET, DEFAULT_ELEMENT_TYPE, upper=True),
        "text": _to_str(el.get("text")),
        "alt": _to_str(el.get("alt")),
        "intent": _intent_str(el.get("intent")),
    }


def _sanitize_section(raw: Any, index: int) -> dict[str, Any]:
    sec = raw if isinstance(raw, dict) else {}
    sid = sec.get("id")
    elements = sec.get("elements")
    return {
        "id": _to_str(sid) if sid else section_id(index),
        "type": _enum_value(sec.get("type"), _SECTION_TYPE_SET, DEFAULT_SECTION_TYPE, upper=False),
        "section_intent": _intent_str(sec.get("section_intent")),
        "elements": [_sanitize_element(e) for e in elements] if isinstance(elements, list) else [],
    }


def sanitize_page(value: Any) -> dict[str, Any]:
    """Coerce any JSON value into the AnalyzedPage shape. Never raises.

    Missing fields get defaults, unknown enum values fall back to
    ``other``/``TEXT``, non-strings are stringified and unknown keys are
    dropped. Minimum lengths are not enforced here; see validate_page().
    """
    page = value if isinstance(value, dict) else {}
    sections = page.get("sections")
    return {
        "page_intent": _intent_str(page.get("page_intent")),
        "sections": [_sanitize_section(s, i) for i, s in enumerate(sections)] if isinstance(sections, list) else [],
    }


def validate_page(value: Any) -> AnalyzedPage:
    """Strict validation. Raises pydantic.ValidationError on any violation."""
    return AnalyzedPage.model_validate(value)


def page_problems(value: Any) -> list[str]:
    """Human-readable schema violations of *value* (empty when valid)."""
    try:
        validate_page(value)
    except ValidationError as e:
        problems = []
        for err in e.errors():
            loc = ".".join(str(part) for part in err["loc"]) or "<root>"
            problems.append(f"{loc}: {err['msg']}")
        return problems
    return []
