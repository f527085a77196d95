from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import (
    MAX_DIMENSION,
    Base64Source,
    FileSource,
    ScreenshotSource,
    SizingHints,
    UrlSource,
)


class _SizedArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    resize: bool = True
    max_width: int = Field(default=MAX_DIMENSION, ge=1)
    max_height: int = Field(default=MAX_DIMENSION, ge=1)

    def sizing(self) -> SizingHints:
        return SizingHints(resize=self.resize, max_width=self.max_width, max_height=self.max_height)


class ExtractFromFileArgs(_SizedArgs):
    file_path: str = Field(min_length=1)

    def to_source(self) -> FileSource:
        return FileSource(path=self.file_path, sizing=self.sizing())


class ExtractFromUrlArgs(_SizedArgs):
    url: str = Field(min_length=1)

    def to_source(self) -> UrlSource:
        return UrlSource(url=self.url.strip(), sizing=self.sizing())


class ExtractFromBase64Args(_SizedArgs):
    base64: str = Field(min_length=1)
    mime_type: str = "image/png"

    def to_source(self) -> Base64Source:
        return Base64Source(data=self.base64, mime_type=self.mime_type, sizing=self.sizing())


class ExtractScreenshotArgs(_SizedArgs):
    url: str = Field(min_length=1)
    viewport_width: int = Field(default=1920, ge=1, le=16384)
    viewport_height: int = Field(default=1080, ge=1, le=16384)
    full_page: bool = True
    wait_for_load: int = Field(default=2000, ge=0)
    wait_for_selector: Optional[str] = None
    click_selector: Optional[str] = None
    click_wait_after: int = Field(default=500, ge=0)

    def to_source(self) -> ScreenshotSource:
        return ScreenshotSource(
            url=self.url.strip(),
            viewport_width=self.viewport_width,
            viewport_height=self.viewport_height,
            full_page=self.full_page,
            wait_for_load=self.wait_for_load,
            wait_for_selector=self.wait_for_selector or None,
            click_selector=self.click_selector or None,
            click_wait_after=self.click_wait_after,
            sizing=self.sizing(),
        )


class SaveScreenshotArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    base64: str = Field(min_length=1)
    filename: Optional[str] = None
    format: Literal["png", "jpg", "jpeg", "webp"] = "png"
