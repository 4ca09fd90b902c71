# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for cache key fingerprinting."""

from __future__ import annotations

import json

from pagelens.fingerprint import (
    CACHE_KEY_PARAMS,
    build_cache_key,
    canonical_payload,
    djb2_hash,
    to_base36,
)


class TestDjb2:
    def test_empty_is_seed(self):
        assert djb2_hash("") == 5381

    def test_single_char(self):
        assert djb2_hash("a") == 5381 * 33 + 97

    def test_32bit_unsigned(self):
        h = djb2_hash("x" * 10_000)
        assert 0 <= h <= 0xFFFFFFFF

    def test_astral_chars_hash_as_two_code_units(self):
        # U+1F600 is the surrogate pair D83D DE00 in UTF-16
        expected = ((5381 * 33 + 0xD83D) * 33 + 0xDE00) & 0xFFFFFFFF
        assert djb2_hash("\U0001f600") == expected

    def test_bmp_non_ascii(self):
        assert djb2_hash("é") == 5381 * 33 + 0xE9


class TestBase36:
    def test_zero(self):
        assert to_base36(0) == "0"

    def test_known_values(self):
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"
        assert to_base36(177670) == "3t3a"


class TestCanonicalPayload:
    def test_output_first_then_allow_list_order(self):
        payload = canonical_payload("structure", {"model": "m", "target": "https://a.com", "output": "ignored"})
        assert payload == '{"output":"structure","target":"https://a.com","model":"m"}'

    def test_unknown_and_none_params_dropped(self):
        payload = json.loads(canonical_payload("html", {"target": "https://a.com", "debug": "true", "waitMs": None}))
        assert payload == {"output": "html", "target": "https://a.com"}

    def test_values_stringified(self):
        payload = json.loads(
            canonical_payload("screenshot", {"viewportWidth": 800, "fullPage": True, "includeScreenshot": False})
        )
        assert payload["viewportWidth"] == "800"
        assert payload["fullPage"] == "true"
        assert payload["includeScreenshot"] == "false"

    def test_non_ascii_kept(self):
        assert "日本" in canonical_payload("html", {"target": "https://a.com/日本"})

    def test_allow_list(self):
        assert CACHE_KEY_PARAMS[0] == "target"
        assert "prompt" in CACHE_KEY_PARAMS
        assert "imageBase64" not in CACHE_KEY_PARAMS


class TestBuildCacheKey:
    def test_deterministic(self):
        params = {"target": "https://example.com", "viewportWidth": "1280"}
        assert build_cache_key("structure", params) == build_cache_key("structure", dict(params))

    def test_operation_prefix(self):
        key = build_cache_key("merged-structure", {"target": "https://example.com"})
        assert key.startswith("merged-structure:")
        assert key.split(":", 1)[1].isalnum()

    def test_different_targets_differ(self):
        a = build_cache_key("structure", {"target": "https://a.example.com"})
        b = build_cache_key("structure", {"target": "https://b.example.com"})
        assert a != b

    def test_different_operations_differ(self):
        params = {"target": "https://example.com"}
        assert build_cache_key("html", params).split(":")[1] != build_cache_key("structure", params).split(":")[1]

    def test_string_and_int_params_share_a_key(self):
        assert build_cache_key("screenshot", {"viewportWidth": 800}) == build_cache_key(
            "screenshot", {"viewportWidth": "800"}
        )

    def test_non_allow_listed_params_ignored(self):
        base = {"target": "https://example.com"}
        assert build_cache_key("html", base) == build_cache_key("html", {**base, "debug": "true"})
