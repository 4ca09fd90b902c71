# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for sanitizer: total coercion into the AnalyzedPage shape."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from pagelens.sanitizer import page_problems, sanitize_page, section_id, validate_page
from pagelens.schema import ANALYSIS_SCHEMA, ELEMENT_TYPES, SCHEMA_NAME, SECTION_TYPES


class TestDefaults:
    def test_section_and_element_defaulting(self):
        result = sanitize_page({"sections": [{"elements": [{}]}]})
        assert result == {
            "page_intent": "",
            "sections": [
                {
                    "id": "sec_000",
                    "type": "other",
                    "section_intent": "",
                    "elements": [{"type": "TEXT", "text": "", "alt": "", "intent": ""}],
                }
            ],
        }

    @pytest.mark.parametrize("value", [None, "text", 42, [1, 2], {"error": "x", "raw": "y"}])
    def test_non_page_inputs(self, value):
        assert sanitize_page(value) == {"page_intent": "", "sections": []}

    def test_sections_not_a_list(self):
        assert sanitize_page({"page_intent": "p", "sections": {"id": "a"}})["sections"] == []

    def test_elements_not_a_list(self):
        (section,) = sanitize_page({"sections": [{"id": "a", "elements": "nope"}]})["sections"]
        assert section["elements"] == []

    def test_non_dict_section_gets_defaults(self):
        (section,) = sanitize_page({"sections": ["junk"]})["sections"]
        assert section["id"] == "sec_000"
        assert section["type"] == "other"

    def test_section_ids_follow_list_index(self):
        sections = sanitize_page({"sections": [{"id": "keep"}, {}, {"id": ""}]})["sections"]
        assert [s["id"] for s in sections] == ["keep", "sec_001", "sec_002"]

    def test_section_id_format(self):
        assert section_id(7) == "sec_007"
        assert section_id(1234) == "sec_1234"


class TestEnums:
    @pytest.mark.parametrize(("raw", "expected"), [("HERO", "hero"), (" Footer ", "footer"), ("banner", "other")])
    def test_section_type(self, raw, expected):
        assert sanitize_page({"sections": [{"type": raw}]})["sections"][0]["type"] == expected

    @pytest.mark.parametrize(
        ("raw", "expected"), [("heading", "HEADING"), ("list_item", "LIST_ITEM"), ("card", "TEXT"), (3, "TEXT")]
    )
    def test_element_type(self, raw, expected):
        page = sanitize_page({"sections": [{"elements": [{"type": raw}]}]})
        assert page["sections"][0]["elements"][0]["type"] == expected


class TestCoercion:
    def test_element_fields_stringified(self):
        page = sanitize_page({"sections": [{"elements": [{"text": 12, "alt": None, "intent": ["a"]}]}]})
        element = page["sections"][0]["elements"][0]
        assert element == {"type": "TEXT", "text": "12", "alt": "", "intent": '["a"]'}

    def test_falsy_intents_become_empty(self):
        page = sanitize_page({"page_intent": 0, "sections": [{"section_intent": False}]})
        assert page["page_intent"] == ""
        assert page["sections"][0]["section_intent"] == ""

    def test_unknown_keys_dropped(self):
        page = sanitize_page(
            {
                "page_intent": "p",
                "extra": 1,
                "sections": [{"id": "a", "color": "red", "elements": [{"type": "LINK", "href": "/x"}]}],
            }
        )
        assert set(page) == {"page_intent", "sections"}
        assert set(page["sections"][0]) == {"id", "type", "section_intent", "elements"}
        assert set(page["sections"][0]["elements"][0]) == {"type", "text", "alt", "intent"}


class TestIdempotence:
    @pytest.mark.parametrize(
        "value",
        [
            {"sections": [{"elements": [{}]}]},
            {"page_intent": 5, "sections": [{"id": 3, "type": "X", "elements": [{"type": "img", "text": None}]}]},
            {"page_intent": "Good page", "sections": [{"id": "a", "type": "hero", "section_intent": "hook"}]},
            "garbage",
        ],
    )
    def test_sanitize_twice_equals_once(self, value):
        once = sanitize_page(value)
        assert sanitize_page(once) == once

    def test_valid_page_unchanged(self, page_json):
        assert sanitize_page(page_json) == page_json


class TestValidatePage:
    def test_valid(self, page_json):
        page = validate_page(page_json)
        assert page.sections[0].elements[0].type == "HEADING"
        assert page_problems(page_json) == []

    def test_sanitized_defaults_still_fail_strict_validation(self):
        page = sanitize_page({"sections": [{"elements": [{}]}]})
        with pytest.raises(ValidationError):
            validate_page(page)
        problems = page_problems(page)
        assert any(p.startswith("page_intent") for p in problems)

    def test_duplicate_section_ids(self, page_json):
        page_json["sections"].append(dict(page_json["sections"][0]))
        problems = page_problems(page_json)
        assert any("duplicate section id" in p for p in problems)

    def test_extra_keys_rejected(self, page_json):
        page_json["extra"] = True
        assert page_problems(page_json)

    def test_empty_sections_rejected(self):
        assert page_problems({"page_intent": "A long intent", "sections": []})


class TestWireSchema:
    def test_name(self):
        assert SCHEMA_NAME == "WebsiteAnalysisSchema"

    def test_enums_match(self):
        section_props = ANALYSIS_SCHEMA["properties"]["sections"]["items"]["properties"]
        element_props = section_props["elements"]["items"]["properties"]
        assert section_props["type"]["enum"] == list(SECTION_TYPES)
        assert element_props["type"]["enum"] == list(ELEMENT_TYPES)

    def test_no_additional_properties_anywhere(self):
        section = ANALYSIS_SCHEMA["properties"]["sections"]["items"]
        element = section["properties"]["elements"]["items"]
        assert ANALYSIS_SCHEMA["additionalProperties"] is False
        assert section["additionalProperties"] is False
        assert element["additionalProperties"] is False
