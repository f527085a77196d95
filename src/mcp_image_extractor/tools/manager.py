from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx

from .. import pipeline
from ..config import ExtractorConfig, load_config
from ..models import (
    Base64Source,
    FileSource,
    ImageRequest,
    RawImage,
    ScreenshotSource,
    UrlSource,
)
from ..policy import PolicyGuard
from ..results import ToolResult, failure, image_result, text_result
from .browser import ScreenshotTool
from .errors import ImageToolError, InvalidInputError
from .fetch import FetchTool
from .files import FileTool, mime_from_extension

log = logging.getLogger("mcp-image-extractor")

SCREENSHOT_FORMATS = ("png", "jpg", "jpeg", "webp")
_IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".webp", ".gif", ".avif"}


def _source_label(request: ImageRequest) -> str:
    return {
        FileSource: "file",
        UrlSource: "url",
        Base64Source: "base64",
        ScreenshotSource: "screenshot",
    }.get(type(request), "image")


def _screenshot_stem(filename: str | None) -> str:
    if filename:
        name = Path(filename.strip()).name
        if Path(name).suffix.lower() in _IMAGE_SUFFIXES:
            name = Path(name).stem
        if name and name not in (".", ".."):
            return name
    return f"screenshot-{datetime.now().strftime('%Y-%m-%dT%H-%M-%S-%f')}"


def _error_message(exc: ImageToolError) -> str:
    # Tell the caller when trying again later may succeed.
    return f"{exc} (retryable)" if exc.retryable else str(exc)


class ImageToolManager:
    """Runs every tool call through guard → acquire → normalize → assemble.

    Each ``run`` returns a :class:`ToolResult`; no exception escapes to the
    transport.
    """

    def __init__(
        self,
        config: ExtractorConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_config()
        self.guard = PolicyGuard(self.config)
        self.files = FileTool(self.config.max_image_size)
        self.fetcher = FetchTool(
            self.config.max_image_size,
            self.config.fetch_timeout,
            check_domain=self.guard.check_domain,
            transport=transport,
        )
        self.browser = ScreenshotTool(self.config.selector_timeout_ms)

    async def acquire(self, request: ImageRequest) -> RawImage:
        if isinstance(request, FileSource):
            data = await self.files.read(request.path)
            return RawImage(
                data=data,
                mime_type=mime_from_extension(request.path),
                context={"file_path": request.path},
            )
        if isinstance(request, UrlSource):
            self.guard.check_url(request.url)
            data, mime = await self.fetcher.fetch_image(request.url)
            return RawImage(data=data, mime_type=mime, context={"url": request.url})
        if isinstance(request, Base64Source):
            data = self.guard.decode_base64(request.data)
            return RawImage(data=data, mime_type=request.mime_type or "image/png")
        if isinstance(request, ScreenshotSource):
            self.guard.check_url(request.url)
            capture = await self.browser.capture(request)
            context: dict[str, Any] = {
                "url": request.url,
                "viewport": {"width": request.viewport_width, "height": request.viewport_height},
                "full_page": request.full_page,
            }
            if request.click_selector:
                context["click_selector"] = request.click_selector
                context["click_wait_after"] = request.click_wait_after
            return RawImage(
                data=capture.data,
                mime_type="image/png",
                context=context,
                warnings=capture.warnings,
            )
        raise InvalidInputError(f"Unsupported image request: {type(request).__name__}")

    async def run(self, request: ImageRequest) -> ToolResult:
        label = _source_label(request)
        try:
            raw = await self.acquire(request)
            self.guard.check_size(len(raw.data))
            if isinstance(request, ScreenshotSource) and not self.config.screenshot_resize:
                image = await asyncio.to_thread(pipeline.describe, raw.data)
            else:
                max_width, max_height = request.sizing.bounds()
                image = await asyncio.to_thread(pipeline.normalize, raw.data, max_width, max_height)
        except ImageToolError as exc:
            log.warning(
                "%s extraction failed (status=%s retryable=%s): %s",
                label, exc.status_code, exc.retryable, exc,
            )
            return failure(_error_message(exc))
        except Exception as exc:
            log.exception("Unexpected error during %s extraction", label)
            return failure(str(exc) or type(exc).__name__)
        log.info(
            "%s image ready: %sx%s %s, %d bytes",
            label, image.info.width, image.info.height, image.info.format, image.size,
        )
        return image_result(image, raw.mime_type, raw.context, raw.warnings)

    def _write_screenshot(self, data: bytes, filename: str | None, fmt: str) -> Path:
        encoded = pipeline.convert(data, fmt)
        directory = Path(self.config.screenshots_dir)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{_screenshot_stem(filename)}.{fmt}"
        path.write_bytes(encoded)
        return path

    async def save_screenshot(
        self,
        data: str,
        filename: str | None = None,
        fmt: str = "png",
    ) -> ToolResult:
        try:
            fmt = (fmt or "png").lower()
            if fmt not in SCREENSHOT_FORMATS:
                raise InvalidInputError(
                    f"Unsupported format '{fmt}' (expected one of: {', '.join(SCREENSHOT_FORMATS)})"
                )
            raw = self.guard.decode_base64(data)
            self.guard.check_size(len(raw))
            path = await asyncio.to_thread(self._write_screenshot, raw, filename, fmt)
        except ImageToolError as exc:
            log.warning("save_screenshot failed: %s", exc)
            return failure(str(exc))
        except OSError as exc:
            log.error("save_screenshot could not write file: %s", exc)
            return failure(f"Could not save screenshot: {exc}")
        size = path.stat().st_size
        log.info("Screenshot saved to %s (%d bytes)", path, size)
        return text_result({"path": str(path), "size": size, "format": fmt})
