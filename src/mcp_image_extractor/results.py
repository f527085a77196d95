from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import Any

from .models import NormalizedImage

_FORMAT_MIME = {
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "avif": "image/avif",
    "tiff": "image/tiff",
    "svg": "image/svg+xml",
}


@dataclass(slots=True)
class ToolResult:
    content: list[dict[str, Any]] = field(default_factory=list)
    is_error: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {"content": self.content, "isError": self.is_error}


def _minified(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def text_result(payload: dict[str, Any]) -> ToolResult:
    return ToolResult(content=[{"type": "text", "text": _minified(payload)}])


def failure(message: str) -> ToolResult:
    return ToolResult(content=[{"type": "text", "text": f"Error: {message}"}], is_error=True)


def _response_mime(image: NormalizedImage, declared: str) -> str:
    """Declared MIME, unless the final bytes are a different known format."""
    actual = _FORMAT_MIME.get(image.info.format or "")
    if actual is None:
        return declared
    declared_fmt = declared.split(";")[0].strip().lower()
    if declared_fmt == "image/jpg":
        declared_fmt = "image/jpeg"
    return declared if declared_fmt == actual else actual


def image_result(
    image: NormalizedImage,
    mime_type: str,
    context: dict[str, Any] | None = None,
    warnings: tuple[str, ...] = (),
) -> ToolResult:
    """Metadata text block followed by the inline image."""
    meta: dict[str, Any] = {
        "width": image.info.width,
        "height": image.info.height,
        "format": image.info.format,
        "size": image.size,
    }
    meta.update(context or {})
    meta["resized"] = image.resized
    all_warnings = [*warnings, *image.warnings]
    if all_warnings:
        meta["warnings"] = all_warnings
    return ToolResult(content=[
        {"type": "text", "text": _minified(meta)},
        {
            "type": "image",
            "data": base64.standard_b64encode(image.data).decode("ascii"),
            "mimeType": _response_mime(image, mime_type),
        },
    ])
