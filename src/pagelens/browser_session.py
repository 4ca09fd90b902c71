# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Playwright renderer: rendered HTML and screenshots of live pages.

One Chromium process per BrowserSession; every render/screenshot runs in a
fresh BrowserContext that is closed afterwards, so requests share no
cookies or storage. The session starts lazily on first use.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)
from playwright.async_api import Error as PlaywrightError

from . import Screenshot
from .errors import RenderError

logger = logging.getLogger(__name__)

MIN_VIEWPORT_WIDTH = 360
MIN_VIEWPORT_HEIGHT = 600
RENDER_VIEWPORT = {"width": 1280, "height": 800}
SCROLL_STEP_PX = 800
SCROLL_INTERVAL_MS = 120
MAX_SCROLL_STEPS = 40  # infinite feeds never reach the bottom
POST_LOAD_BUDGET_MS = 30000  # scroll, settle and capture after navigation

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

# Scrolls to the bottom in fixed steps so lazy-loaded content materializes.
_AUTO_SCROLL_JS = """([step, interval, maxSteps]) => new Promise((resolve) => {
  let total = 0;
  let steps = 0;
  const timer = setInterval(() => {
    const root = document.scrollingElement || document.documentElement;
    window.scrollBy(0, step);
    total += step;
    steps += 1;
    if (steps >= maxSteps || total >= root.scrollHeight - window.innerHeight - 10) {
      clearInterval(timer);
      resolve();
    }
  }, interval);
})"""

_DISABLE_SMOOTH_SCROLL_JS = """() => {
  try {
    const root = document.scrollingElement || document.documentElement;
    root.style.scrollBehavior = "auto";
    document.body.style.scrollBehavior = "auto";
    for (const el of [document.documentElement, document.body]) {
      el.style.overflowX = "visible";
      el.style.overflowY = "visible";
    }
  } catch (e) {}
}"""

_SCROLL_TOP_JS = "() => window.scrollTo({top: 0, left: 0, behavior: 'instant'})"


@dataclass
class BrowserConfig:
    """Browser launch and navigation configuration."""

    headless: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    timeout_ms: int = 60000  # per navigation attempt
    deadline_ms: int = 0  # whole render/screenshot; 0 -> two navigation attempts + POST_LOAD_BUDGET_MS
    selector_timeout_ms: int = 15000
    settle_ms: int = 500  # pause after scrolling back to top (render only)

    @property
    def effective_deadline_ms(self) -> int:
        return self.deadline_ms if self.deadline_ms > 0 else 2 * self.timeout_ms + POST_LOAD_BUDGET_MS


@dataclass(frozen=True)
class ScreenshotOptions:
    width: int = 1280
    height: int = 1000
    full_page: bool = False
    image_type: str = "jpeg"  # jpeg | png
    quality: int = 60  # jpeg only
    wait_ms: int = 700
    selector: str | None = None

    @property
    def viewport(self) -> dict[str, int]:
        return {
            "width": max(MIN_VIEWPORT_WIDTH, self.width or 1024),
            "height": max(MIN_VIEWPORT_HEIGHT, self.height or 768),
        }

    @property
    def normalized_type(self) -> str:
        return "png" if (self.image_type or "").lower() == "png" else "jpeg"

    @property
    def mime(self) -> str:
        return f"image/{self.normalized_type}"


@runtime_checkable
class Renderer(Protocol):
    async def render(self, url: str) -> str: ...

    async def screenshot(self, url: str, options: ScreenshotOptions) -> Screenshot: ...


# ── Chromium auto-install ─────────────────────────────────────────

_chromium_install_attempted = False
_AUTO_INSTALL_TIMEOUT = 300  # seconds


async def _auto_install_chromium() -> bool:
    """Run ``playwright install chromium`` once per process."""
    global _chromium_install_attempted  # noqa: PLW0603
    if _chromium_install_attempted:
        return False
    _chromium_install_attempted = True

    logger.info("Chromium not found, running 'playwright install chromium'")
    try:
        proc = await asyncio.create_subprocess_exec(
            sys.executable,
            "-m",
            "playwright",
            "install",
            "chromium",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await asyncio.wait_for(proc.communicate(), timeout=_AUTO_INSTALL_TIMEOUT)
    except TimeoutError:
        logger.warning("Chromium install timed out after %ds", _AUTO_INSTALL_TIMEOUT)
        return False
    except OSError:
        logger.warning("Chromium auto-install failed", exc_info=True)
        return False
    if proc.returncode == 0:
        logger.info("Chromium installed successfully")
        return True
    logger.warning(
        "playwright install chromium failed (rc=%d): %s",
        proc.returncode,
        stderr.decode(errors="replace")[:500],
    )
    return False


def chromium_launch_args() -> list[str]:
    return [
        "--disable-blink-features=AutomationControlled",
        "--disable-extensions",
        "--disable-dev-shm-usage",
        "--disable-background-networking",
        "--disable-sync",
        "--disable-gpu",
        "--no-first-run",
        "--disable-breakpad",
        "--no-pings",
        "--noerrdialogs",
    ]


def _ms_since(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 1)


class BrowserSession:
    """Shared Chromium process implementing the Renderer interface."""

    def __init__(self, config: BrowserConfig | None = None):
        self.config = config or BrowserConfig()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._start_lock = asyncio.Lock()

    @property
    def started(self) -> bool:
        return self._browser is not None

    async def _launch_browser(self) -> Browser:
        args = chromium_launch_args()
        try:
            return await self._playwright.chromium.launch(headless=self.config.headless, args=args)
        except PlaywrightError as exc:
            if "executable doesn't exist" not in str(exc).lower():
                raise RenderError(f"Chromium launch failed: {exc}") from exc
            if not await _auto_install_chromium():
                raise RenderError(
                    "Chromium is not installed and auto-install failed. Please run: playwright install chromium"
                ) from exc
            return await self._playwright.chromium.launch(headless=self.config.headless, args=args)

    async def start(self) -> None:
        """Launch the browser. No-op when already running."""
        async with self._start_lock:
            if self._browser is not None:
                return
            self._playwright = await async_playwright().start()
            try:
                self._browser = await self._launch_browser()
            except BaseException:
                with suppress(Exception):
                    await self._playwright.stop()
                self._playwright = None
                raise
            logger.info("Browser session started (headless=%s)", self.config.headless)

    async def stop(self) -> None:
        """Close browser and Playwright. Safe to call on a crashed browser."""
        if self._browser:
            with suppress(Exception):
                await self._browser.close()
            self._browser = None
        if self._playwright:
            with suppress(Exception):
                await self._playwright.stop()
            self._playwright = None
        logger.info("Browser session stopped")

    async def __aenter__(self) -> BrowserSession:
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.stop()

    # -- Page lifecycle --

    @asynccontextmanager
    async def _page(self, viewport: dict[str, int]) -> AsyncGenerator[Page, None]:
        await self.start()
        context: BrowserContext = await self._browser.new_context(
            viewport=viewport,
            device_scale_factor=1,
            user_agent=self.config.user_agent,
            service_workers="block",
            accept_downloads=False,
        )
        try:
            yield await context.new_page()
        finally:
            with suppress(Exception):
                await context.close()

    async def _navigate(self, page: Page, url: str) -> None:
        """networkidle first, domcontentloaded as the fallback."""
        start = time.monotonic()
        try:
            await page.goto(url, wait_until="networkidle", timeout=self.config.timeout_ms)
        except PlaywrightError as first:
            logger.info("networkidle navigation failed (%s), retrying with domcontentloaded", first)
            try:
                await page.goto(url, wait_until="domcontentloaded", timeout=self.config.timeout_ms)
            except PlaywrightError as e:
                raise RenderError(f"Navigation to {url} failed: {e}") from e
        logger.debug("Navigation complete in %.1fms: %s", _ms_since(start), url)

    async def _auto_scroll(self, page: Page) -> None:
        start = time.monotonic()
        await page.evaluate(_AUTO_SCROLL_JS, [SCROLL_STEP_PX, SCROLL_INTERVAL_MS, MAX_SCROLL_STEPS])
        await page.evaluate(_SCROLL_TOP_JS)
        logger.debug("Auto-scroll done in %.1fms", _ms_since(start))

    # -- Renderer interface --

    async def render(self, url: str) -> str:
        """Fully rendered HTML of *url* after lazy content has loaded."""
        start = time.monotonic()
        deadline_ms = self.config.effective_deadline_ms
        try:
            async with asyncio.timeout(deadline_ms / 1000), self._page(dict(RENDER_VIEWPORT)) as page:
                await self._navigate(page, url)
                await self._auto_scroll(page)
                await asyncio.sleep(self.config.settle_ms / 1000)
                html = await page.content()
        except TimeoutError as e:
            raise RenderError(f"Rendering {url} exceeded {deadline_ms}ms") from e
        except PlaywrightError as e:
            raise RenderError(f"Rendering {url} failed: {e}") from e
        logger.info("Rendered %s in %.1fms (length=%d)", url, _ms_since(start), len(html))
        return html

    async def screenshot(self, url: str, options: ScreenshotOptions) -> Screenshot:
        """Screenshot of *url* with the given viewport and image options."""
        start = time.monotonic()
        image_type = options.normalized_type
        shot_kwargs: dict = {"type": image_type, "full_page": bool(options.full_page)}
        if image_type == "jpeg":
            shot_kwargs["quality"] = max(1, min(100, options.quality))

        deadline_ms = self.config.effective_deadline_ms
        try:
            async with asyncio.timeout(deadline_ms / 1000), self._page(options.viewport) as page:
                await self._navigate(page, url)
                if options.selector:
                    try:
                        await page.wait_for_selector(options.selector, timeout=self.config.selector_timeout_ms)
                    except PlaywrightError:
                        logger.info("Selector wait timed out (continuing): %s", options.selector)
                await page.evaluate(_DISABLE_SMOOTH_SCROLL_JS)
                await self._auto_scroll(page)
                if options.wait_ms > 0:
                    await asyncio.sleep(options.wait_ms / 1000)
                data = await page.screenshot(**shot_kwargs)
        except TimeoutError as e:
            raise RenderError(f"Screenshot of {url} exceeded {deadline_ms}ms") from e
        except PlaywrightError as e:
            raise RenderError(f"Screenshot of {url} failed: {e}") from e

        logger.info(
            "Screenshot %s type=%s quality=%s full_page=%s size=%dB in %.1fms",
            url,
            image_type,
            shot_kwargs.get("quality", "-"),
            shot_kwargs["full_page"],
            len(data),
            _ms_since(start),
        )
        return Screenshot(data=data, mime=options.mime)
