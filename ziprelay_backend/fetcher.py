"""Remote member fetching.

One GET per member, bounded by whichever comes first: the per-request ceiling
or the overall download deadline. The returned body is still open; whoever
receives a :class:`FetchedMember` must ``aclose`` it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from email.message import Message
from typing import AsyncIterator, Callable
from urllib.parse import unquote, urlsplit

import httpx

from .config import COPY_BUFFER_BYTES, FALLBACK_ENTRY_NAME, HTTP_TIMEOUT_SECONDS
from .errors import FetchError
from .security import safe_entry_name

logger = logging.getLogger(__name__)


def filename_from_content_disposition(value: str | None) -> str | None:
    if not value:
        return None
    msg = Message()
    msg["Content-Disposition"] = value
    try:
        filename = msg.get_filename()
    except (TypeError, ValueError):
        return None
    return safe_entry_name(filename)


def filename_from_url(url: str) -> str | None:
    try:
        path = urlsplit(url).path
    except ValueError:
        return None
    return safe_entry_name(unquote(path))


def resolve_member_name(url: str, content_disposition: str | None, fallback: str = FALLBACK_ENTRY_NAME) -> str:
    """Pick the entry name: Content-Disposition, then URL path, then fallback."""
    return filename_from_content_disposition(content_disposition) or filename_from_url(url) or fallback


@dataclass
class FetchedMember:
    url: str
    name: str
    response: httpx.Response
    expires_at: float
    clock: Callable[[], float] = time.monotonic

    @property
    def size_hint(self) -> int | None:
        raw = self.response.headers.get("content-length")
        if raw is None:
            return None
        try:
            size = int(raw)
        except ValueError:
            return None
        return size if size >= 0 else None

    async def iter_chunks(self, chunk_size: int = COPY_BUFFER_BYTES) -> AsyncIterator[bytes]:
        stream = self.response.aiter_bytes(chunk_size)
        while True:
            remaining = self.expires_at - self.clock()
            if remaining <= 0:
                raise FetchError(self.url, "timed out reading body")
            try:
                async with asyncio.timeout(remaining):
                    chunk = await stream.__anext__()
            except StopAsyncIteration:
                return
            except TimeoutError as exc:
                raise FetchError(self.url, "timed out reading body") from exc
            except httpx.HTTPError as exc:
                raise FetchError(self.url, str(exc) or type(exc).__name__) from exc
            yield chunk

    async def aclose(self) -> None:
        await self.response.aclose()


class RemoteFetcher:
    def __init__(
        self,
        client: httpx.AsyncClient,
        request_timeout: float = HTTP_TIMEOUT_SECONDS,
        fallback_name: str = FALLBACK_ENTRY_NAME,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._request_timeout = request_timeout
        self._fallback_name = fallback_name
        self._clock = clock

    async def fetch(self, url: str, deadline: float) -> FetchedMember:
        """GET ``url`` and return its resolved name plus the open body.

        ``deadline`` is an absolute time on this fetcher's clock. Any failure,
        including a non-2xx status, raises :class:`FetchError`.
        """
        expires_at = min(self._clock() + self._request_timeout, deadline)
        remaining = expires_at - self._clock()
        if remaining <= 0:
            raise FetchError(url, "download deadline exceeded")

        try:
            request = self._client.build_request("GET", url)
            async with asyncio.timeout(remaining):
                response = await self._client.send(request, stream=True)
        except TimeoutError as exc:
            raise FetchError(url, "timed out waiting for response") from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise FetchError(url, str(exc) or type(exc).__name__) from exc

        if not response.is_success:
            await response.aclose()
            raise FetchError(url, f"bad status {response.status_code}")

        name = resolve_member_name(url, response.headers.get("content-disposition"), self._fallback_name)
        logger.debug("Fetched headers for %s (name=%s)", url, name)
        return FetchedMember(url=url, name=name, response=response, expires_at=expires_at, clock=self._clock)
