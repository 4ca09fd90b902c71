# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for environment-driven settings."""

from __future__ import annotations

import dataclasses

import pytest

from pagelens.config import DEFAULT_MODEL, Settings


class TestFromEnv:
    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.ai_endpoint == ""
        assert not settings.ai_configured
        assert settings.ai_model == DEFAULT_MODEL
        assert settings.ai_timeout_ms == 60000
        assert settings.cache_enabled is True
        assert settings.cache_ttl == 600
        assert settings.cache_max_entries == 512
        assert settings.headless is True
        assert (settings.host, settings.port) == ("127.0.0.1", 8000)

    def test_short_aliases(self):
        settings = Settings.from_env(
            {"AI_ENDPOINT": "https://ai.example", "AI_API_KEY": "k", "OPENAI_MODEL": "gpt-4.1", "AI_TIMEOUT_MS": "1500"}
        )
        assert settings.ai_configured
        assert settings.ai_api_key == "k"
        assert settings.ai_model == "gpt-4.1"
        assert settings.ai_timeout_ms == 1500

    def test_prefixed_name_wins(self):
        settings = Settings.from_env({"AI_ENDPOINT": "https://short", "PAGELENS_AI_ENDPOINT": "https://prefixed"})
        assert settings.ai_endpoint == "https://prefixed"

    def test_blank_prefixed_falls_through(self):
        settings = Settings.from_env({"AI_ENDPOINT": "https://short", "PAGELENS_AI_ENDPOINT": "  "})
        assert settings.ai_endpoint == "https://short"

    def test_bad_integer_falls_back(self, caplog):
        with caplog.at_level("WARNING", logger="pagelens.config"):
            settings = Settings.from_env({"PAGELENS_CACHE_TTL": "ten minutes"})
        assert settings.cache_ttl == 600
        assert "PAGELENS_CACHE_TTL" in caplog.text

    @pytest.mark.parametrize(("raw", "expected"), [("0", False), ("off", False), ("YES", True), ("maybe", True)])
    def test_booleans(self, raw, expected):
        assert Settings.from_env({"PAGELENS_CACHE_ENABLED": raw}).cache_enabled is expected

    def test_reads_os_environ(self, monkeypatch):
        monkeypatch.setenv("PAGELENS_PORT", "9100")
        assert Settings.from_env().port == 9100


class TestSettings:
    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            Settings().port = 1  # type: ignore[misc]

    def test_replace_overrides(self):
        settings = dataclasses.replace(Settings(), cache_enabled=False, port=9000)
        assert settings.cache_enabled is False
        assert settings.port == 9000

    def test_redacted_hides_key(self):
        redacted = Settings(ai_endpoint="https://ai.example", ai_api_key="sk-secret").redacted()
        assert redacted["ai_api_key"] == "set"
        assert "sk-secret" not in str(redacted)
        assert Settings().redacted()["ai_api_key"] == "unset"
