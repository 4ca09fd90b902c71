# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import pagelens  # noqa: F401
except ImportError:
    raise ImportError("pagelens is not installed. Run: pip install -e '.[dev]'") from None

import copy
from unittest.mock import AsyncMock

import pytest

from pagelens import Screenshot
from pagelens.analyzer import Analyzer
from pagelens.browser_session import BrowserSession
from pagelens.cache import InMemoryCacheStore, ResultCache

LANDING_HTML = """\
<html><body>
<header>
  <img src="/plain.png">
  <a class="brand-logo" href="/"><img src="/l.png" class="logo"></a>
  <nav><a href="/pricing">Pricing</a><a href="/docs">Docs</a></nav>
</header>
<section class="hero"><h1>Build faster</h1><h2>Sub</h2><a class="btn" href="/start">Start</a></section>
<section><h2>Hi</h2><p>1234567890a</p></section>
<footer><p>© 2024 Example</p><a href="/terms">Terms</a></footer>
</body></html>
"""

PAGE_JSON = {
    "page_intent": "Sell a product",
    "sections": [
        {
            "id": "sec_hero",
            "type": "hero",
            "section_intent": "Hook the visitor",
            "elements": [{"type": "HEADING", "text": "Build faster", "alt": "", "intent": "Promise"}],
        }
    ],
}


@pytest.fixture(autouse=True)
def _block_real_browser(request, monkeypatch):
    """Safety net: unit tests must never launch Chromium.

    Tests exercising BrowserSession internals can opt out with
    ``@pytest.mark.allow_real_browser``.
    """
    if "allow_real_browser" in request.keywords:
        return

    async def _no_real_browser(self):
        raise RuntimeError("Test tried to start a real browser. Pass a fake renderer instead.")

    monkeypatch.setattr(BrowserSession, "start", _no_real_browser)


@pytest.fixture
def screenshot():
    return Screenshot(data=b"\xff\xd8\xff-jpeg-bytes", mime="image/jpeg")


@pytest.fixture
def renderer(screenshot):
    """Fake Renderer: fixed markup and screenshot."""
    fake = AsyncMock()
    fake.render.return_value = LANDING_HTML
    fake.screenshot.return_value = screenshot
    return fake


@pytest.fixture
def ai():
    """Fake AIClient answering every call with PAGE_JSON."""
    fake = AsyncMock()
    fake.configured = True
    fake.model = "gpt-4o-mini"
    fake.call.return_value = PAGE_JSON
    return fake


@pytest.fixture
def store():
    return InMemoryCacheStore(max_entries=64)


@pytest.fixture
def analyzer(renderer, ai, store):
    return Analyzer(renderer=renderer, ai=ai, cache=ResultCache(store, ttl_seconds=60), default_model="gpt-4o-mini")


@pytest.fixture
def landing_html():
    return LANDING_HTML


@pytest.fixture
def page_json():
    return copy.deepcopy(PAGE_JSON)
