# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Plain-text cleanup for extracted markup fragments.

Leaf module: every extractor in dom_extractor.py funnels text through here.
"""

from __future__ import annotations

import re

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")

# Decoded in order, each on the previous result: "&amp;lt;" ends up as "<".
_ENTITIES: tuple[tuple[str, str], ...] = (
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#039;", "'"),
    ("&nbsp;", " "),
    ("&mdash;", "-"),
    ("&ndash;", "-"),
    ("&copy;", "©"),
    ("&reg;", "®"),
    ("&trade;", "™"),
)


def clean_text(fragment: str | None) -> str:
    """Strip tags, decode the common entities, collapse whitespace, trim.

    Only the eleven entities in ``_ENTITIES`` are decoded; anything else
    (``&hellip;``, numeric references other than ``&#039;``) is left as-is.
    """
    if not fragment:
        return ""
    text = _TAG_RE.sub("", fragment)
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    return _WHITESPACE_RE.sub(" ", text).strip()


def collapse_text(text: str | None) -> str:
    """Collapse whitespace runs and trim. Nothing is stripped or decoded.

    For text taken from a parsed tree, where tags are already gone and
    entities already decoded.
    """
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip()


def split_classes(value: str | None) -> list[str]:
    """Split a class attribute into its non-empty tokens."""
    if not value:
        return []
    return [c for c in value.split() if c]
