from __future__ import annotations

import asyncio
import os
from pathlib import Path

from .errors import ImageToolError, ResourceNotFoundError, SizeExceededError

_EXTENSION_MIME = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".avif": "image/avif",
}


def mime_from_extension(path: str | os.PathLike[str]) -> str:
    return _EXTENSION_MIME.get(Path(path).suffix.lower(), "image/jpeg")


class FileTool:
    def __init__(self, max_bytes: int) -> None:
        self.max_bytes = max_bytes

    def resolve(self, file_path: str) -> Path:
        path = Path(file_path).expanduser()
        if not path.is_file():
            raise ResourceNotFoundError(f"File {file_path} does not exist")
        if not os.access(path, os.R_OK):
            raise ResourceNotFoundError(f"File {file_path} is not readable")
        return path

    async def read(self, file_path: str) -> bytes:
        """Read a local image fully into memory.

        The size ceiling is checked against ``stat`` first so oversized files
        are never loaded.
        """
        path = self.resolve(file_path)
        if path.stat().st_size > self.max_bytes:
            raise SizeExceededError(
                f"Image size exceeds maximum allowed size of {self.max_bytes} bytes"
            )
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise ImageToolError(f"Could not read {file_path}: {exc}") from exc
