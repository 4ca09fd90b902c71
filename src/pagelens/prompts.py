# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Model prompts and template filling.

Templates use ``{{NAME}}`` placeholders. fill_template() replaces only the
first occurrence of each placeholder, one placeholder at a time in the order
given. Substitution is textual: if an earlier value itself contains a later
placeholder, that copy is the one replaced.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

MODE_VISION_ONLY = "vision-only"
MODE_MERGE = "merge"

MODE_TOKEN = "{{MODE}}"
DOM_STRUCTURE_TOKEN = "{{DOM_STRUCTURE_JSON}}"
VISION_STRUCTURE_TOKEN = "{{VISION_STRUCTURE_JSON}}"

SCREENSHOT_ANALYSIS_PROMPT = """\
You are an expert in visual-to-structure translation for websites.
You will be given a screenshot of a webpage.
Analyze the screenshot and output a strictly valid JSON object that conforms
exactly to the schema below.

=== Required Output Schema ===
{
  "page_intent": "string, required. Full description of the page's overall communication strategy, emotional tone, target audience, and primary conversion goal.",
  "sections": [
    {
      "id": "string, required unique identifier (e.g., sec_header, sec_hero, sec_001, ...)",
      "type": "string, one of: 'header' | 'hero' | 'content' | 'sidebar' | 'footer' | 'other'",
      "section_intent": "string, required. Purpose of this section as a whole.",
      "elements": [
        {
          "type": "string, one of: 'LOGO' | 'HEADING' | 'TEXT' | 'IMAGE' | 'BUTTON' | 'LINK' | 'VIDEO' | 'FORM' | 'INPUT' | 'LIST' | 'LIST_ITEM'",
          "text": "string, exact visible text if present, else empty string. Preserve the original language, accents, punctuation, and casing.",
          "alt": "string, literal description if visual (photo, icon, illustration, flag, social media icon, etc.), else empty string",
          "intent": "string, required. Why this element exists / how it affects the user"
        }
      ]
    }
  ]
}

=== Strict Rules ===
1. Always include "page_intent".
2. Each visually distinct block (separated by background color, spacing, or layout) is a separate section. Do not merge unrelated blocks.
3. Every visible text is a TEXT element: headings, subheadings, slogans, labels under numbers, captions, names, disclaimers, addresses, emails, credits, copyright.
4. Every number/statistic is split into two TEXT elements: the number and its descriptive label. Stat groups in different blocks get separate sections.
5. Every button, call-to-action, or clearly interactive element is a BUTTON element, even if styled as a link.
6. Every visual is an IMAGE element: logos, portraits, product shots, icons, illustrations, decorative graphics, social media icons. Never replace icons with LINK text.
7. When a person, item, or card has both an image and text (name, role, quote), capture each separately within the same section.
8. Repeated patterns (cards, lists, testimonials, grids) are fully enumerated. Do not collapse or summarize them.
9. Required minimums:
   - Header: LOGO (if visible), all navigation LINKs, any BUTTON CTAs.
   - Hero: main headline, any subheading, all BUTTON/LINK CTAs, the primary IMAGE/VIDEO if present.
   - Statistics: each block is a distinct section.
   - Footer: all visible items, including navigation, contact details, address, emails, social icons, credits, legal text.
10. Do not invent content. Only include elements visibly present in the screenshot.
11. Output strictly valid JSON following the schema, with no extra commentary.
12. Be exhaustive: if something is visible, it appears in the JSON.

=== Example (short) ===
{
  "page_intent": "Establish credibility with business users and drive sign-ups.",
  "sections": [
    {
      "id": "sec_header",
      "type": "header",
      "section_intent": "Provide brand identity and navigation.",
      "elements": [
        { "type": "LOGO", "text": "", "alt": "Company logo", "intent": "Brand recognition" },
        { "type": "LINK", "text": "Pricing", "alt": "", "intent": "Navigate to pricing page" },
        { "type": "BUTTON", "text": "Sign up", "alt": "", "intent": "Primary call-to-action" }
      ]
    }
  ]
}

=== Final Self-Check ===
Before answering, verify that every visually distinct block is a section,
that all visible text, numbers (with labels), buttons and images are included,
that repeated items are enumerated, and that the output is strictly valid JSON
with no extra commentary.
"""

MERGE_PROMPT = """\
You will receive:
1) A DOM-derived structure (rough, from HTML parsing).
2) A screenshot of the page.
3) A MODE.

MODE: {{MODE}}

If MODE is "vision-only": analyze only the screenshot with the strict JSON schema below. You may use the DOM structure for naming hints, nothing more. Output MUST be strictly valid JSON.

If MODE is "merge": you are given both a DOM-derived structure and a vision-derived structure. Merge them into a single, consistent structure that follows the exact JSON schema below. When the two sources conflict:
- Prefer the screenshot (vision) for visual truth (layout, what is actually visible).
- Use the DOM structure to fill in missing text or to split large text blocks when helpful.
- Ensure every visible section from the screenshot is represented. Do not invent content.
- Be exhaustive: include header, hero, stats, navigation, footer details, etc.
- Output MUST be strictly valid JSON and conform to the schema exactly.

DOM_STRUCTURE_JSON:
{{DOM_STRUCTURE_JSON}}

VISION_STRUCTURE_JSON (may be empty if MODE is "vision-only"):
{{VISION_STRUCTURE_JSON}}

=== Strict JSON Schema to follow ===
Use the WebsiteAnalysisSchema: {"page_intent": str, "sections": [{"id", "type", "section_intent", "elements": [{"type", "text", "alt", "intent"}]}]}. Do not restate it in your output; just follow it.
"""


def fill_template(template: str, replacements: Iterable[tuple[str, str]]) -> str:
    """Replace the first occurrence of each token, applied in order."""
    for token, value in replacements:
        template = template.replace(token, value, 1)
    return template


def build_prompt_with_source(prompt: str | None, url: str | None) -> str:
    """Trimmed *prompt* plus ``[Source URL: ...]`` when a URL is known."""
    suffix = f"\n\n[Source URL: {url}]" if url else ""
    return (prompt or "").strip() + suffix


def to_prompt_json(value: Any) -> str:
    """Compact JSON embedding for structures placed inside prompts."""
    if hasattr(value, "to_dict"):
        value = value.to_dict()
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def vision_prompt(dom_json: str, url: str, override: str | None = None) -> str:
    """Vision-stage prompt: the merge template in vision-only mode.

    A non-blank *override* replaces the template; its placeholders (if any)
    are filled the same way.
    """
    template = override if override and override.strip() else MERGE_PROMPT
    filled = fill_template(template, [(MODE_TOKEN, MODE_VISION_ONLY), (DOM_STRUCTURE_TOKEN, dom_json)])
    return build_prompt_with_source(filled, url)


def merge_prompt(dom_json: str, vision_json: str, url: str) -> str:
    """Merge-stage prompt. The caller's override never applies here."""
    filled = fill_template(
        MERGE_PROMPT,
        [(MODE_TOKEN, MODE_MERGE), (DOM_STRUCTURE_TOKEN, dom_json), (VISION_STRUCTURE_TOKEN, vision_json)],
    )
    return build_prompt_with_source(filled, url)


def describe_prompt(url: str, override: str | None = None) -> str:
    """Single-shot screenshot analysis prompt (ai-describe operations)."""
    base = override if override and override.strip() else SCREENSHOT_ANALYSIS_PROMPT
    return build_prompt_with_source(base, url)
