"""
ScreenshotTool renders a URL in a headless Chromium launched through
Playwright and returns the PNG bytes.

Every capture gets its own browser process, acquired through
``browser_session()`` which closes it on every exit path. Optional page
interaction (waiting for a selector, clicking one) is best-effort: a failure
there is recorded as a warning and the capture carries on.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from playwright.async_api import Browser
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from ..models import ScreenshotSource
from .errors import AcquisitionError

log = logging.getLogger("mcp-image-extractor.browser")

_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
]


class BrowserToolError(AcquisitionError):
    pass


@dataclass(frozen=True, slots=True)
class Capture:
    data: bytes
    warnings: tuple[str, ...] = ()


class ScreenshotTool:
    def __init__(self, selector_timeout_ms: int = 10_000) -> None:
        self.selector_timeout_ms = selector_timeout_ms

    @asynccontextmanager
    async def browser_session(self) -> AsyncIterator[Browser]:
        async with async_playwright() as pw:
            try:
                browser = await pw.chromium.launch(headless=True, args=_LAUNCH_ARGS)
            except PlaywrightError as exc:
                raise BrowserToolError(f"Could not launch Chromium: {exc}") from exc
            try:
                yield browser
            finally:
                await browser.close()

    async def capture(self, source: ScreenshotSource) -> Capture:
        warnings: list[str] = []
        try:
            async with self.browser_session() as browser:
                page = await browser.new_page(
                    viewport={"width": source.viewport_width, "height": source.viewport_height},
                )
                await page.goto(source.url, wait_until="networkidle")
                if source.wait_for_load > 0:
                    await asyncio.sleep(source.wait_for_load / 1000)

                if source.wait_for_selector:
                    try:
                        await page.wait_for_selector(
                            source.wait_for_selector, timeout=self.selector_timeout_ms,
                        )
                    except PlaywrightError as exc:
                        msg = f"Selector '{source.wait_for_selector}' not found: {exc}"
                        log.warning(msg)
                        warnings.append(msg)

                if source.click_selector:
                    try:
                        await page.click(source.click_selector)
                        if source.click_wait_after > 0:
                            await asyncio.sleep(source.click_wait_after / 1000)
                    except PlaywrightError as exc:
                        msg = f"Could not click '{source.click_selector}': {exc}"
                        log.warning(msg)
                        warnings.append(msg)

                data = await page.screenshot(full_page=source.full_page, type="png")
        except PlaywrightError as exc:
            raise BrowserToolError(f"Screenshot failed for {source.url}: {exc}") from exc
        return Capture(data=data, warnings=tuple(warnings))
