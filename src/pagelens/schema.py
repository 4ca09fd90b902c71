# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""AnalyzedPage schema: pydantic models and the wire JSON Schema.

ANALYSIS_SCHEMA is sent verbatim to schema-aware providers as
``text.format.schema`` (name ``WebsiteAnalysisSchema``), so it is kept as a
literal dict rather than generated from the models: provider-side strict
mode rejects some of the keywords pydantic emits.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

SCHEMA_NAME = "WebsiteAnalysisSchema"

SECTION_TYPES: tuple[str, ...] = ("header", "hero", "content", "sidebar", "footer", "other")
ELEMENT_TYPES: tuple[str, ...] = (
    "LOGO",
    "HEADING",
    "TEXT",
    "IMAGE",
    "BUTTON",
    "LINK",
    "VIDEO",
    "FORM",
    "INPUT",
    "LIST",
    "LIST_ITEM",
)

SectionType = Literal["header", "hero", "content", "sidebar", "footer", "other"]
ElementType = Literal[
    "LOGO", "HEADING", "TEXT", "IMAGE", "BUTTON", "LINK", "VIDEO", "FORM", "INPUT", "LIST", "LIST_ITEM"
]


class Element(BaseModel):
    """A single visible element inside a section."""

    model_config = ConfigDict(extra="forbid")

    type: ElementType
    text: str = Field(description="Exact visible text, or empty string")
    alt: str = Field(description="Literal description of a visual, or empty string")
    intent: str = Field(min_length=3, description="Why this element exists for the user")


class Section(BaseModel):
    """A visually distinct block of the page."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    type: SectionType
    section_intent: str = Field(min_length=3)
    elements: list[Element] = Field(min_length=1)


class AnalyzedPage(BaseModel):
    """Strict page analysis: page intent plus its sections."""

    model_config = ConfigDict(extra="forbid")

    page_intent: str = Field(min_length=5)
    sections: list[Section] = Field(min_length=1)

    @field_validator("sections")
    @classmethod
    def _unique_ids(cls, sections: list[Section]) -> list[Section]:
        seen: set[str] = set()
        for section in sections:
            if section.id in seen:
                raise ValueError(f"duplicate section id: {section.id}")
            seen.add(section.id)
        return sections


ANALYSIS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["page_intent", "sections"],
    "additionalProperties": False,
    "properties": {
        "page_intent": {
            "type": "string",
            "minLength": 5,
            "description": (
                "Full description of the page's overall communication strategy, emotional tone, "
                "target audience, and primary conversion goal."
            ),
        },
        "sections": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["id", "type", "section_intent", "elements"],
                "additionalProperties": False,
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "type": {"type": "string", "enum": list(SECTION_TYPES)},
                    "section_intent": {"type": "string", "minLength": 3},
                    "elements": {
                        "type": "array",
                        "minItems": 1,
                        "items": {
                            "type": "object",
                            "required": ["type", "text", "alt", "intent"],
                            "additionalProperties": False,
                            "properties": {
                                "type": {"type": "string", "enum": list(ELEMENT_TYPES)},
                                "text": {"type": "string"},
                                "alt": {"type": "string"},
                                "intent": {"type": "string", "minLength": 3},
                            },
                        },
                    },
                },
            },
        },
    },
}
