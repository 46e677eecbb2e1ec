"""File fetch collaborator: turns a location reference into raw bytes."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath
from uuid import uuid4

import httpx

from docsense.metrics.observability import get_logger


class FetchError(RuntimeError):
    """Raised when a file cannot be fetched; fatal for that file's ingestion."""


@dataclass(frozen=True)
class FetchedFile:
    """Raw file contents plus the declared media type."""

    name: str
    media_type: str
    data: bytes
    location: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)


class HttpFileFetcher:
    """Download files over HTTP(S) with a size cap."""

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        max_bytes: int = 25 * 1024 * 1024,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._max_bytes = max_bytes
        self._transport = transport
        self._logger = get_logger("fetch")

    async def fetch(self, url: str, media_type: str | None = None) -> FetchedFile:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                async with client.stream("GET", url) as response:
                    if response.status_code >= 400:
                        raise FetchError(f"Failed to fetch file: {url} returned {response.status_code}")
                    buffer = bytearray()
                    async for part in response.aiter_bytes():
                        buffer.extend(part)
                        if len(buffer) > self._max_bytes:
                            raise FetchError(f"Download too large: {url}")
                    declared = media_type or response.headers.get("content-type", "application/octet-stream")
        except httpx.HTTPError as exc:
            raise FetchError(f"Failed to fetch file: {url}: {exc}") from exc
        name = PurePosixPath(httpx.URL(url).path).name or f"download-{uuid4().hex}"
        self._logger.info("fetch.complete", url=url, bytes=len(buffer))
        return FetchedFile(
            name=name,
            media_type=declared.split(";")[0].strip(),
            data=bytes(buffer),
            location=url,
        )
