"""
End-to-end tests for the five image tools through ImageToolManager.

Network traffic goes through httpx.MockTransport and Playwright is replaced
with a fake whose browser/page methods are AsyncMocks, so nothing here needs
a network connection or an installed Chromium.
"""
from __future__ import annotations

import base64
import io
import json
import re
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from PIL import Image
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from mcp_image_extractor import pipeline
from mcp_image_extractor.config import ExtractorConfig
from mcp_image_extractor.models import (
    Base64Source,
    FileSource,
    ScreenshotSource,
    SizingHints,
    UrlSource,
)
from mcp_image_extractor.tools import browser as browser_mod
from mcp_image_extractor.tools.fetch import FetchTool, FetchToolError
from mcp_image_extractor.tools.manager import ImageToolManager


def _png(width: int, height: int) -> bytes:
    img = Image.new("RGB", (width, height), color=(240, 240, 255))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _meta(result) -> dict:
    return json.loads(result.content[0]["text"])


def _manager(tmp_path: Path, handler=None, **overrides) -> ImageToolManager:
    overrides.setdefault("screenshots_dir", str(tmp_path / "screenshots"))
    transport = httpx.MockTransport(handler) if handler else None
    return ImageToolManager(ExtractorConfig(**overrides), transport=transport)


# ---------------------------------------------------------------------------
# extract_image_from_file
# ---------------------------------------------------------------------------

class TestFileSource:
    @pytest.mark.asyncio
    async def test_large_png_is_bounded(self, tmp_path: Path) -> None:
        path = tmp_path / "wide.png"
        path.write_bytes(_png(1920, 1080))

        result = await _manager(tmp_path).run(FileSource(path=str(path)))

        assert result.is_error is False
        meta = _meta(result)
        assert (meta["width"], meta["height"], meta["format"]) == (512, 288, "png")
        assert meta["file_path"] == str(path)
        assert meta["resized"] is True
        image = result.content[1]
        assert image["type"] == "image"
        assert image["mimeType"] == "image/png"
        assert len(base64.b64decode(image["data"])) == meta["size"]

    @pytest.mark.asyncio
    async def test_missing_file_is_error(self, tmp_path: Path) -> None:
        result = await _manager(tmp_path).run(FileSource(path=str(tmp_path / "nope.png")))
        assert result.is_error is True
        assert len(result.content) == 1
        assert result.content[0]["text"].startswith("Error: File")
        assert "does not exist" in result.content[0]["text"]

    @pytest.mark.asyncio
    async def test_oversized_file_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "big.png"
        path.write_bytes(_png(200, 200))
        result = await _manager(tmp_path, max_image_size=50).run(FileSource(path=str(path)))
        assert result.is_error is True
        assert "exceeds maximum allowed size of 50 bytes" in result.content[0]["text"]

    @pytest.mark.asyncio
    async def test_undecodable_file_is_error(self, tmp_path: Path) -> None:
        path = tmp_path / "fake.jpg"
        path.write_bytes(b"this is text, not a jpeg")
        result = await _manager(tmp_path).run(FileSource(path=str(path)))
        assert result.is_error is True
        assert "Could not process image data" in result.content[0]["text"]

    @pytest.mark.asyncio
    async def test_caller_bounds_below_cap_are_honored(self, tmp_path: Path) -> None:
        path = tmp_path / "wide.png"
        path.write_bytes(_png(1920, 1080))
        source = FileSource(path=str(path), sizing=SizingHints(max_width=100, max_height=100))
        meta = _meta(await _manager(tmp_path).run(source))
        assert (meta["width"], meta["height"]) == (100, 56)

    @pytest.mark.asyncio
    async def test_caller_bounds_above_cap_are_clamped(self, tmp_path: Path) -> None:
        path = tmp_path / "wide.png"
        path.write_bytes(_png(1920, 1080))
        source = FileSource(path=str(path), sizing=SizingHints(max_width=800, max_height=600))
        meta = _meta(await _manager(tmp_path).run(source))
        assert (meta["width"], meta["height"]) == (512, 288)


# ---------------------------------------------------------------------------
# extract_image_from_url
# ---------------------------------------------------------------------------

class TestUrlSource:
    @pytest.mark.asyncio
    async def test_fixture_png_resized_to_512x288(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        body = _png(1920, 1080)
        targets: list[tuple[int, int]] = []
        real_resize = pipeline._resize

        def _recording_resize(data: bytes, size: tuple[int, int]) -> bytes:
            targets.append(size)
            return real_resize(data, size)

        monkeypatch.setattr(pipeline, "_resize", _recording_resize)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body, headers={"content-type": "image/png; charset=binary"})

        result = await _manager(tmp_path, handler).run(UrlSource(url="https://example.com/big.png"))

        assert targets == [(512, 288)]
        meta = _meta(result)
        assert (meta["width"], meta["height"], meta["format"]) == (512, 288, "png")
        assert meta["url"] == "https://example.com/big.png"
        assert result.content[1]["mimeType"] == "image/png"

    @pytest.mark.asyncio
    async def test_subdomain_of_allowed_domain_accepted(self, tmp_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=_png(20, 20), headers={"content-type": "image/png"})

        mgr = _manager(tmp_path, handler, allowed_domains=("example.com",))
        result = await mgr.run(UrlSource(url="https://cdn.example.com/x.png"))
        assert result.is_error is False

    @pytest.mark.asyncio
    async def test_disallowed_domain_rejected_before_fetch(self, tmp_path: Path) -> None:
        handler = MagicMock(side_effect=AssertionError("no request expected"))
        mgr = _manager(tmp_path, handler, allowed_domains=("example.com",))

        result = await mgr.run(UrlSource(url="https://evil.com/x.png"))

        assert result.is_error is True
        text = result.content[0]["text"]
        assert "evil.com" in text and "example.com" in text
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_redirect_out_of_allow_list_rejected(self, tmp_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "example.com":
                return httpx.Response(302, headers={"location": "https://evil.com/x.png"})
            return httpx.Response(200, content=_png(20, 20), headers={"content-type": "image/png"})

        mgr = _manager(tmp_path, handler, allowed_domains=("example.com",))
        result = await mgr.run(UrlSource(url="https://example.com/x.png"))
        assert result.is_error is True
        assert "evil.com" in result.content[0]["text"]

    @pytest.mark.asyncio
    async def test_bad_scheme_rejected(self, tmp_path: Path) -> None:
        result = await _manager(tmp_path).run(UrlSource(url="ftp://example.com/x.png"))
        assert result.content[0]["text"] == "Error: URL must start with http:// or https://"

    @pytest.mark.asyncio
    async def test_oversized_body_rejected(self, tmp_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"x" * 500, headers={"content-type": "image/png"})

        result = await _manager(tmp_path, handler, max_image_size=100).run(
            UrlSource(url="https://example.com/x.png")
        )
        assert result.is_error is True
        assert "exceeds maximum allowed size" in result.content[0]["text"]

    @pytest.mark.asyncio
    async def test_http_error_status_is_error(self, tmp_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, content=b"not found")

        result = await _manager(tmp_path, handler).run(UrlSource(url="https://example.com/x.png"))
        assert result.is_error is True
        assert "404" in result.content[0]["text"]

    @pytest.mark.asyncio
    async def test_missing_content_type_defaults_to_jpeg(self, tmp_path: Path) -> None:
        img = Image.new("RGB", (40, 40), color=(10, 10, 10))
        buf = io.BytesIO()
        img.save(buf, format="JPEG")

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=buf.getvalue())

        result = await _manager(tmp_path, handler).run(UrlSource(url="https://example.com/x"))
        assert result.content[1]["mimeType"] == "image/jpeg"


# ---------------------------------------------------------------------------
# extract_image_from_base64
# ---------------------------------------------------------------------------

class TestBase64Source:
    @pytest.mark.asyncio
    async def test_png_round_trip(self, tmp_path: Path) -> None:
        raw = _png(300, 200)
        result = await _manager(tmp_path).run(Base64Source(data=base64.b64encode(raw).decode()))

        meta = _meta(result)
        assert meta["format"] == "png"
        assert meta["size"] <= len(raw)
        assert result.content[1]["mimeType"] == "image/png"

    @pytest.mark.asyncio
    async def test_declared_mime_type_is_kept(self, tmp_path: Path) -> None:
        raw = _png(30, 20)
        result = await _manager(tmp_path).run(
            Base64Source(data=base64.b64encode(raw).decode(), mime_type="image/png")
        )
        assert result.content[1]["mimeType"] == "image/png"

    @pytest.mark.asyncio
    async def test_invalid_base64_is_error(self, tmp_path: Path) -> None:
        result = await _manager(tmp_path).run(Base64Source(data="%%%not-base64%%%"))
        assert result.is_error is True
        assert result.content[0]["text"].startswith("Error: Invalid base64 string")

    @pytest.mark.asyncio
    async def test_non_image_payload_is_error(self, tmp_path: Path) -> None:
        result = await _manager(tmp_path).run(Base64Source(data=base64.b64encode(b"hello").decode()))
        assert result.is_error is True
        assert "Could not process image data" in result.content[0]["text"]


# ---------------------------------------------------------------------------
# extract_screenshot_from_url
# ---------------------------------------------------------------------------

class _FakePlaywright:
    def __init__(self, browser: MagicMock) -> None:
        self.chromium = SimpleNamespace(launch=AsyncMock(return_value=browser))

    async def __aenter__(self) -> "_FakePlaywright":
        return self

    async def __aexit__(self, *exc_info) -> bool:
        return False


def _fake_browser(monkeypatch: pytest.MonkeyPatch, screenshot: bytes) -> tuple[MagicMock, MagicMock]:
    page = MagicMock()
    page.goto = AsyncMock(return_value=None)
    page.wait_for_selector = AsyncMock(return_value=None)
    page.click = AsyncMock(return_value=None)
    page.screenshot = AsyncMock(return_value=screenshot)
    browser = MagicMock()
    browser.new_page = AsyncMock(return_value=page)
    browser.close = AsyncMock(return_value=None)
    fake = _FakePlaywright(browser)
    monkeypatch.setattr(browser_mod, "async_playwright", lambda: fake)
    return browser, page


def _shot(**kwargs) -> ScreenshotSource:
    kwargs.setdefault("url", "https://example.com")
    kwargs.setdefault("wait_for_load", 0)
    kwargs.setdefault("click_wait_after", 0)
    return ScreenshotSource(**kwargs)


class TestScreenshotSource:
    @pytest.mark.asyncio
    async def test_capture_is_bounded_and_browser_closed(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        browser, page = _fake_browser(monkeypatch, _png(1920, 1080))

        result = await _manager(tmp_path).run(_shot())

        assert result.is_error is False
        meta = _meta(result)
        assert (meta["width"], meta["height"], meta["format"]) == (512, 288, "png")
        assert meta["viewport"] == {"width": 1920, "height": 1080}
        assert meta["full_page"] is True
        assert "click_selector" not in meta
        assert result.content[1]["mimeType"] == "image/png"
        browser.new_page.assert_awaited_once_with(viewport={"width": 1920, "height": 1080})
        page.goto.assert_awaited_once_with("https://example.com", wait_until="networkidle")
        page.screenshot.assert_awaited_once_with(full_page=True, type="png")
        browser.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_page_load_failure_still_closes_browser(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        browser, page = _fake_browser(monkeypatch, b"")
        page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")

        result = await _manager(tmp_path).run(_shot())

        assert result.is_error is True
        assert "ERR_NAME_NOT_RESOLVED" in result.content[0]["text"]
        browser.close.assert_awaited_once()
        page.screenshot.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_exception_still_closes_browser(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        browser, page = _fake_browser(monkeypatch, b"")
        page.screenshot.side_effect = RuntimeError("renderer crashed")

        result = await _manager(tmp_path).run(_shot())

        assert result.is_error is True
        assert "renderer crashed" in result.content[0]["text"]
        browser.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_selector_timeout_and_click_failure_are_warnings(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        browser, page = _fake_browser(monkeypatch, _png(400, 300))
        page.wait_for_selector.side_effect = PlaywrightTimeoutError("Timeout 10000ms exceeded")
        page.click.side_effect = PlaywrightError("element is not visible")

        result = await _manager(tmp_path).run(
            _shot(wait_for_selector="#app", click_selector="button.accept", full_page=False)
        )

        assert result.is_error is False
        meta = _meta(result)
        assert (meta["width"], meta["height"]) == (400, 300)
        assert meta["click_selector"] == "button.accept"
        assert meta["click_wait_after"] == 0
        assert len(meta["warnings"]) == 2
        page.wait_for_selector.assert_awaited_once_with("#app", timeout=10_000)
        page.screenshot.assert_awaited_once_with(full_page=False, type="png")
        browser.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_screenshot_resize_can_be_disabled(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        _fake_browser(monkeypatch, _png(1920, 1080))
        result = await _manager(tmp_path, screenshot_resize=False).run(_shot())
        meta = _meta(result)
        assert (meta["width"], meta["height"]) == (1920, 1080)
        assert meta["resized"] is False

    @pytest.mark.asyncio
    async def test_disallowed_domain_never_launches_browser(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        launched = MagicMock(side_effect=AssertionError("browser must not start"))
        monkeypatch.setattr(browser_mod, "async_playwright", launched)

        result = await _manager(tmp_path, allowed_domains=("example.com",)).run(
            _shot(url="https://evil.com/")
        )

        assert result.is_error is True
        launched.assert_not_called()


# ---------------------------------------------------------------------------
# save_screenshot
# ---------------------------------------------------------------------------

class TestSaveScreenshot:
    @pytest.mark.asyncio
    async def test_default_name_uses_timestamp(self, tmp_path: Path) -> None:
        mgr = _manager(tmp_path)
        result = await mgr.save_screenshot(base64.b64encode(_png(64, 48)).decode())

        assert result.is_error is False
        assert len(result.content) == 1
        meta = _meta(result)
        saved = Path(meta["path"])
        assert saved.parent == tmp_path / "screenshots"
        assert re.fullmatch(r"screenshot-\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{6}\.png", saved.name)
        assert meta["size"] == saved.stat().st_size
        assert meta["format"] == "png"

    @pytest.mark.asyncio
    async def test_custom_name_and_format(self, tmp_path: Path) -> None:
        mgr = _manager(tmp_path)
        result = await mgr.save_screenshot(
            base64.b64encode(_png(64, 48)).decode(), filename="../../etc/home.png", fmt="jpg",
        )
        saved = Path(_meta(result)["path"])
        assert saved == tmp_path / "screenshots" / "home.jpg"
        with Image.open(saved) as img:
            assert img.format == "JPEG"

    @pytest.mark.asyncio
    async def test_unsupported_format_is_error(self, tmp_path: Path) -> None:
        result = await _manager(tmp_path).save_screenshot(
            base64.b64encode(_png(8, 8)).decode(), fmt="bmp",
        )
        assert result.is_error is True
        assert "Unsupported format" in result.content[0]["text"]
        assert not (tmp_path / "screenshots").exists()

    @pytest.mark.asyncio
    async def test_empty_payload_is_error(self, tmp_path: Path) -> None:
        result = await _manager(tmp_path).save_screenshot("")
        assert result.is_error is True
        assert "empty buffer" in result.content[0]["text"]


# ---------------------------------------------------------------------------
# Format and error reporting details
# ---------------------------------------------------------------------------

class TestReporting:
    @pytest.mark.asyncio
    async def test_svg_file_is_returned_as_svg(self, tmp_path: Path) -> None:
        path = tmp_path / "icon.svg"
        path.write_bytes(
            b'<svg xmlns="http://www.w3.org/2000/svg" width="10" height="10">'
            b'<rect width="10" height="10" fill="red"/></svg>'
        )

        result = await _manager(tmp_path).run(FileSource(path=str(path)))

        assert result.is_error is False
        meta = _meta(result)
        assert (meta["width"], meta["height"], meta["format"]) == (10, 10, "svg")
        assert result.content[1]["mimeType"] == "image/svg+xml"
        assert base64.b64decode(result.content[1]["data"]) == path.read_bytes()

    @pytest.mark.asyncio
    async def test_mime_follows_bytes_when_declared_type_is_wrong(self, tmp_path: Path) -> None:
        raw = _png(30, 20)
        result = await _manager(tmp_path).run(
            Base64Source(data=base64.b64encode(raw).decode(), mime_type="image/jpeg")
        )
        assert _meta(result)["format"] == "png"
        assert result.content[1]["mimeType"] == "image/png"

    @pytest.mark.asyncio
    async def test_transient_http_status_marked_retryable(self, tmp_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, content=b"busy")

        result = await _manager(tmp_path, handler).run(UrlSource(url="https://example.com/x.png"))

        assert result.is_error is True
        text = result.content[0]["text"]
        assert "503" in text
        assert text.endswith("(retryable)")

    @pytest.mark.asyncio
    async def test_permanent_http_status_not_retryable(self, tmp_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        result = await _manager(tmp_path, handler).run(UrlSource(url="https://example.com/x.png"))
        assert not result.content[0]["text"].endswith("(retryable)")

    @pytest.mark.asyncio
    async def test_fetch_error_carries_status_code(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429)

        fetcher = FetchTool(1024, transport=httpx.MockTransport(handler))
        with pytest.raises(FetchToolError) as exc:
            await fetcher.fetch_image("https://example.com/x.png")
        assert exc.value.status_code == 429
        assert exc.value.retryable is True

    @pytest.mark.asyncio
    async def test_connection_failure_is_retryable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        fetcher = FetchTool(1024, transport=httpx.MockTransport(handler))
        with pytest.raises(FetchToolError) as exc:
            await fetcher.fetch_image("https://example.com/x.png")
        assert exc.value.status_code is None
        assert exc.value.retryable is True
