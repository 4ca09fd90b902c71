# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for pagelens.logging_config: structlog + stdlib bridge."""

from __future__ import annotations

import json
import logging
import sys

import pytest
import structlog

from pagelens.logging_config import bind_request, clear_request, configure, new_request_id


@pytest.fixture(autouse=True)
def _reset_logging():
    """Ensure clean logging state before/after each test."""
    root = logging.getLogger()
    old_handlers = root.handlers[:]
    old_level = root.level
    yield
    root.handlers = old_handlers
    root.setLevel(old_level)
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


class TestConsoleRenderer:
    def test_single_stderr_handler(self):
        configure(json_output=False)
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.handlers[0].stream is sys.stderr

    def test_console_output_is_human_readable(self, capsys):
        configure(json_output=False)
        logging.getLogger("test.console").info("hello world")
        captured = capsys.readouterr()
        assert "hello world" in captured.err
        assert not captured.err.strip().startswith("{")

    def test_reconfigure_does_not_duplicate_handlers(self):
        configure()
        configure()
        assert len(logging.getLogger().handlers) == 1


class TestJsonRenderer:
    def test_json_lines(self, capsys):
        configure(json_output=True)
        logging.getLogger("test.json").warning("structured %s", "message")
        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "structured message"
        assert record["level"] == "warning"
        assert record["logger"] == "test.json"
        assert "timestamp" in record

    def test_request_context_bound(self, capsys):
        configure(json_output=True)
        bind_request("abc123", operation="structure")
        logging.getLogger("test.ctx").info("inside request")
        record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert record["request_id"] == "abc123"
        assert record["operation"] == "structure"

    def test_clear_request(self, capsys):
        configure(json_output=True)
        bind_request("abc123")
        clear_request()
        logging.getLogger("test.ctx").info("after request")
        record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert "request_id" not in record

    def test_bind_request_replaces_previous_context(self, capsys):
        configure(json_output=True)
        bind_request("first", operation="html")
        bind_request("second")
        logging.getLogger("test.ctx").info("x")
        record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert record["request_id"] == "second"
        assert "operation" not in record


class TestLevels:
    def test_level_applied(self):
        configure(level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self):
        configure(level="chatty")
        assert logging.getLogger().level == logging.INFO

    def test_chatty_loggers_quieted(self):
        configure(level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING


def test_request_id_is_short_hex():
    rid = new_request_id()
    assert len(rid) == 6
    int(rid, 16)
