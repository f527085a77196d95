from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

# Hard ceiling on either axis after normalization. Caller-supplied bounds are
# hints that can only shrink it.
MAX_DIMENSION = 512


@dataclass(frozen=True, slots=True)
class SizingHints:
    resize: bool = True
    max_width: int = MAX_DIMENSION
    max_height: int = MAX_DIMENSION

    def bounds(self) -> tuple[int, int]:
        """Effective (width, height) bound for this request."""
        if not self.resize:
            return MAX_DIMENSION, MAX_DIMENSION
        return (
            max(1, min(int(self.max_width), MAX_DIMENSION)),
            max(1, min(int(self.max_height), MAX_DIMENSION)),
        )


@dataclass(frozen=True, slots=True)
class FileSource:
    path: str
    sizing: SizingHints = SizingHints()


@dataclass(frozen=True, slots=True)
class UrlSource:
    url: str
    sizing: SizingHints = SizingHints()


@dataclass(frozen=True, slots=True)
class Base64Source:
    data: str
    mime_type: str = "image/png"
    sizing: SizingHints = SizingHints()


@dataclass(frozen=True, slots=True)
class ScreenshotSource:
    url: str
    viewport_width: int = 1920
    viewport_height: int = 1080
    full_page: bool = True
    wait_for_load: int = 2000       # ms, after network idle
    wait_for_selector: str | None = None
    click_selector: str | None = None
    click_wait_after: int = 500     # ms, after the click
    sizing: SizingHints = SizingHints()


ImageRequest = Union[FileSource, UrlSource, Base64Source, ScreenshotSource]


@dataclass(frozen=True, slots=True)
class RawImage:
    data: bytes
    mime_type: str
    # Source-specific fields echoed back in the metadata block.
    context: dict[str, Any] = field(default_factory=dict)
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ImageInfo:
    width: int | None
    height: int | None
    format: str | None

    @property
    def has_dimensions(self) -> bool:
        return bool(self.width) and bool(self.height)


@dataclass(frozen=True, slots=True)
class NormalizedImage:
    data: bytes
    info: ImageInfo
    resized: bool = False
    warnings: tuple[str, ...] = ()

    @property
    def size(self) -> int:
        return len(self.data)
