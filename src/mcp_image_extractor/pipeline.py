"""
Normalization pipeline: probe → bound → (resize → re-probe) → compress.

All Pillow work is synchronous; callers run :func:`normalize` in a worker
thread. Buffers are never modified in place: every step returns new bytes so
the previous buffer stays usable as a fallback.
"""
from __future__ import annotations

import io
import logging
import re
from typing import Any

from PIL import Image, UnidentifiedImageError

from .models import ImageInfo, NormalizedImage
from .tools.errors import DecodeFailureError

log = logging.getLogger("mcp-image-extractor.pipeline")

# detected format → (Pillow writer, save parameters)
_COMPRESSION_PROFILES: dict[str, tuple[str, dict[str, Any]]] = {
    "jpeg": ("JPEG", {"quality": 80}),
    "png":  ("PNG",  {"compress_level": 9, "optimize": True}),
    "webp": ("WEBP", {"quality": 80}),
    "avif": ("AVIF", {"quality": 80}),
    "tiff": ("TIFF", {"compression": "jpeg", "quality": 80}),
}
_PASSTHROUGH_FORMATS = {"gif", "svg"}
_VECTOR_FORMATS = {"svg"}
_FALLBACK_PROFILE: tuple[str, dict[str, Any]] = ("JPEG", {"quality": 80})

# Writers that cannot store an alpha channel or a palette.
_RGB_ONLY_WRITERS = {"JPEG", "TIFF"}


def _format_name(pil_format: str | None) -> str | None:
    if not pil_format:
        return None
    name = pil_format.lower()
    # Pillow reports multi-picture JPEGs (most phone photos) as MPO.
    return "jpeg" if name == "mpo" else name


_SVG_ROOT_RE = re.compile(rb"<svg\b([^>]*)>", re.IGNORECASE)
_HTML_ROOT_RE = re.compile(rb"<(?:html|body)\b", re.IGNORECASE)
_SVG_LENGTH_RE = r"""(?<![\w:-]){name}\s*=\s*["']\s*([0-9]*\.?[0-9]+)\s*(?:px)?\s*["']"""
_SVG_WIDTH_RE = re.compile(_SVG_LENGTH_RE.format(name="width").encode(), re.IGNORECASE)
_SVG_HEIGHT_RE = re.compile(_SVG_LENGTH_RE.format(name="height").encode(), re.IGNORECASE)
_SVG_VIEWBOX_RE = re.compile(
    rb"""(?<![\w:-])viewBox\s*=\s*["']\s*[-0-9.eE]+[\s,]+[-0-9.eE]+[\s,]+([0-9.eE]+)[\s,]+([0-9.eE]+)\s*["']""",
    re.IGNORECASE,
)
# Enough to get past an XML prolog, doctype and leading comments.
_SVG_SNIFF_BYTES = 4096


def _svg_length(match: re.Match[bytes] | None) -> int | None:
    if match is None:
        return None
    try:
        value = round(float(match.group(1)))
    except ValueError:
        return None
    return value or None


def _probe_svg(data: bytes) -> ImageInfo | None:
    """Dimensions of an SVG document from its root element, or None if *data* is not SVG."""
    head = data[:_SVG_SNIFF_BYTES].lstrip(b"\xef\xbb\xbf \t\r\n")
    if not head.startswith(b"<"):
        return None
    root = _SVG_ROOT_RE.search(head)
    if root is None or _HTML_ROOT_RE.search(head, 0, root.start()):
        return None
    attrs = root.group(1)
    width = _svg_length(_SVG_WIDTH_RE.search(attrs))
    height = _svg_length(_SVG_HEIGHT_RE.search(attrs))
    if width is None or height is None:
        view_box = _SVG_VIEWBOX_RE.search(attrs)
        if view_box is not None:
            try:
                width = width or round(float(view_box.group(1))) or None
                height = height or round(float(view_box.group(2))) or None
            except ValueError:
                pass
    return ImageInfo(width=width, height=height, format="svg")


def probe(data: bytes) -> ImageInfo:
    """Read width, height and format from the encoded bytes.

    SVG is recognised from its root element since Pillow cannot open it.
    """
    svg = _probe_svg(data)
    if svg is not None:
        return svg
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            pil_format = img.format
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise DecodeFailureError(f"Could not process image data - {exc}") from exc
    return ImageInfo(width=width or None, height=height or None, format=_format_name(pil_format))


def fit_inside(width: int, height: int, max_width: int, max_height: int) -> tuple[int, int]:
    """Largest size within the bounds that keeps the aspect ratio; never upscales."""
    if width <= max_width and height <= max_height:
        return width, height
    if width * max_height >= height * max_width:
        new_w = max_width
        new_h = (2 * height * max_width + width) // (2 * width)
    else:
        new_h = max_height
        new_w = (2 * width * max_height + height) // (2 * height)
    return max(1, new_w), max(1, new_h)


def _resize(data: bytes, size: tuple[int, int]) -> bytes:
    with Image.open(io.BytesIO(data)) as img:
        writer = img.format if img.format in Image.SAVE else "PNG"
        resized = img.resize(size, Image.LANCZOS)
    buf = io.BytesIO()
    resized.save(buf, format=writer)
    return buf.getvalue()


def _encode(data: bytes, writer: str, params: dict[str, Any]) -> bytes:
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        if writer in _RGB_ONLY_WRITERS and img.mode not in ("RGB", "L", "CMYK"):
            img = img.convert("RGB")
        buf = io.BytesIO()
        img.save(buf, format=writer, **params)
    return buf.getvalue()


def compress(data: bytes, info: ImageInfo) -> tuple[bytes, str | None]:
    """Re-encode with the profile for *info.format*.

    Returns ``(bytes, warning)``. On failure the input buffer comes back
    unchanged together with the warning text; a re-encode that does not
    shrink the buffer is discarded.
    """
    fmt = info.format or ""
    if fmt in _PASSTHROUGH_FORMATS:
        return data, None
    writer, params = _COMPRESSION_PROFILES.get(fmt, _FALLBACK_PROFILE)
    try:
        out = _encode(data, writer, params)
    except (OSError, ValueError, KeyError) as exc:
        warning = f"Compression to {writer} failed, using uncompressed image: {exc}"
        log.warning(warning)
        return data, warning
    if len(out) >= len(data):
        return data, None
    return out, None


def normalize(data: bytes, max_width: int, max_height: int) -> NormalizedImage:
    info = probe(data)
    if not info.has_dimensions or info.format in _VECTOR_FORMATS:
        # Nothing to bound against or nothing to rasterize; hand the bytes back untouched.
        return NormalizedImage(data=data, info=info)

    resized = False
    target = fit_inside(info.width, info.height, max_width, max_height)
    if target != (info.width, info.height):
        try:
            data = _resize(data, target)
        except (OSError, ValueError) as exc:
            raise DecodeFailureError(f"Could not resize image - {exc}") from exc
        info = probe(data)
        resized = True

    compressed, warning = compress(data, info)
    if compressed is not data:
        after = probe(compressed)
        if after.format != info.format:
            log.info("Re-encoded %s image as %s", info.format, after.format)
        info = after
    return NormalizedImage(
        data=compressed,
        info=info,
        resized=resized,
        warnings=(warning,) if warning else (),
    )


def describe(data: bytes) -> NormalizedImage:
    """Probe only; the bytes are returned as-is."""
    return NormalizedImage(data=data, info=probe(data))


_SAVE_WRITERS = {"png": "PNG", "jpg": "JPEG", "jpeg": "JPEG", "webp": "WEBP"}


def convert(data: bytes, fmt: str) -> bytes:
    """Re-encode *data* as one of the on-disk screenshot formats."""
    writer = _SAVE_WRITERS[fmt]
    try:
        return _encode(data, writer, {})
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise DecodeFailureError(f"Could not convert image to {fmt}: {exc}") from exc
