"""
Input policy checks applied before any file, network or browser I/O.

Every acquisition path goes through :class:`PolicyGuard`: URL scheme and
domain allow-list for network sources, strict decoding for base64 payloads,
and the byte-size ceiling for whatever bytes a source produces.
"""
from __future__ import annotations

import base64
import binascii
import re
from urllib.parse import urlsplit

from .config import ExtractorConfig
from .tools.errors import InvalidInputError, SizeExceededError

_DATA_URI_RE = re.compile(r"^data:[^;,]*;base64,", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


class PolicyGuard:
    def __init__(self, config: ExtractorConfig) -> None:
        self.max_image_size = config.max_image_size
        self.allowed_domains = config.allowed_domains

    def check_url(self, url: str) -> str:
        """Validate scheme and allow-list; return the hostname."""
        parts = urlsplit(url.strip())
        if parts.scheme.lower() not in ("http", "https"):
            raise InvalidInputError("URL must start with http:// or https://")
        host = (parts.hostname or "").lower()
        if not host:
            raise InvalidInputError(f"URL has no hostname: {url}")
        self.check_domain(host)
        return host

    def check_domain(self, host: str) -> None:
        if not self.allowed_domains:
            return
        host = host.lower().rstrip(".")
        if any(host == d or host.endswith(f".{d}") for d in self.allowed_domains):
            return
        raise InvalidInputError(
            f"Domain {host} is not in the allowed domains list "
            f"({', '.join(self.allowed_domains)})"
        )

    def decode_base64(self, payload: str) -> bytes:
        text = _WHITESPACE_RE.sub("", _DATA_URI_RE.sub("", payload.strip(), count=1))
        try:
            data = base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidInputError(f"Invalid base64 string - {exc}") from exc
        if not data:
            raise InvalidInputError("Invalid base64 string - decoded to empty buffer")
        return data

    def check_size(self, size: int) -> None:
        if size > self.max_image_size:
            raise SizeExceededError(
                f"Image size exceeds maximum allowed size of {self.max_image_size} bytes"
            )
