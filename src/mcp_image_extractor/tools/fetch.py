from __future__ import annotations

from collections.abc import Callable

import httpx

from .errors import AcquisitionError, SizeExceededError, is_retryable_status

# Browser-like headers; some CDNs refuse bare clients.
_IMG_FETCH_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    ),
    "Accept": "image/avif,image/webp,image/apng,image/*,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


class FetchToolError(AcquisitionError):
    pass


class FetchTool:
    def __init__(
        self,
        max_bytes: int,
        timeout: float = 30.0,
        *,
        check_domain: Callable[[str], None] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.max_bytes = max_bytes
        self.timeout = timeout
        self._check_domain = check_domain
        self._transport = transport

    def _too_large(self) -> SizeExceededError:
        return SizeExceededError(
            f"Image size exceeds maximum allowed size of {self.max_bytes} bytes"
        )

    async def fetch_image(self, url: str) -> tuple[bytes, str]:
        """GET *url* and return ``(body, mime_type)``.

        The body is streamed and the download aborted once it passes
        ``max_bytes``, so oversized responses are never fully buffered.
        """
        try:
            async with httpx.AsyncClient(
                headers=_IMG_FETCH_HEADERS,
                follow_redirects=True,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    # Redirects may leave the allow-list.
                    if self._check_domain is not None and response.url.host:
                        self._check_domain(response.url.host)
                    declared = response.headers.get("content-length", "")
                    if declared.isdigit() and int(declared) > self.max_bytes:
                        raise self._too_large()
                    body = bytearray()
                    async for chunk in response.aiter_bytes():
                        body.extend(chunk)
                        if len(body) > self.max_bytes:
                            raise self._too_large()
                    content_type = response.headers.get("content-type", "")
        except httpx.HTTPError as exc:
            status = None
            retryable = False
            if isinstance(exc, httpx.HTTPStatusError):
                status = exc.response.status_code
                retryable = is_retryable_status(status)
            elif isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
                retryable = True
            raise FetchToolError(
                f"Image request failed for {url}: {exc}",
                status_code=status,
                retryable=retryable,
            ) from exc

        mime = content_type.split(";")[0].strip() or "image/jpeg"
        return bytes(body), mime
