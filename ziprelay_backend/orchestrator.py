"""Per-download state machine: validate, stream members, finalize.

Once the first archive byte is out the HTTP status is fixed, so every
per-member failure after that point is logged and skipped rather than raised.
"""

from __future__ import annotations

import logging
import time
from contextlib import aclosing
from typing import AsyncIterator, Callable

from .config import MANIFEST_ENTRY_NAME, Settings
from .errors import FetchError, SessionExpired, SessionNotFound
from .fetcher import RemoteFetcher
from .security import normalize_token
from .sessions import Session, SessionStore
from .zip_utils import ArchiveWriter, EntryNamer

logger = logging.getLogger(__name__)


def resolve_session(store: SessionStore, token: str, ttl: float) -> Session:
    """Claim a token for download.

    The session leaves the store here, so a concurrent request for the same
    token gets SessionNotFound. Expired sessions are dropped the same way.
    """
    try:
        token = normalize_token(token)
    except ValueError:
        raise SessionNotFound(token) from None
    session = store.take(token)
    if session is None:
        raise SessionNotFound(token)
    if session.is_expired(ttl, store.clock()):
        raise SessionExpired(token)
    return session


def _manifest_text(omitted: list[tuple[str, str]]) -> bytes:
    lines = ["The following files could not be included in this archive:", ""]
    lines.extend(f"{url}\t{reason}" for url, reason in omitted)
    return ("\n".join(lines) + "\n").encode("utf-8")


class DownloadOrchestrator:
    def __init__(
        self,
        store: SessionStore,
        fetcher: RemoteFetcher,
        settings: Settings,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._settings = settings
        # Must be the same clock the fetcher measures deadlines with.
        self._clock = clock

    def open(self, token: str) -> Session:
        return resolve_session(self._store, token, self._settings.session_ttl)

    async def stream(self, session: Session) -> AsyncIterator[bytes]:
        """Yield the archive for ``session`` and consume its token.

        The session is deleted when the stream ends for any reason, including
        the client going away mid-download.
        """
        deadline = self._clock() + self._settings.download_timeout
        writer = ArchiveWriter()
        namer = EntryNamer()
        omitted: list[tuple[str, str]] = []
        members = session.member_urls
        written = 0
        try:
            for index, url in enumerate(members):
                if self._clock() >= deadline:
                    logger.warning(
                        "Download timeout for token %s after %d of %d files", session.token, index, len(members)
                    )
                    omitted.extend((u, "download timed out") for u in members[index:])
                    break

                try:
                    member = await self._fetcher.fetch(url, deadline)
                except FetchError as exc:
                    logger.warning("Error fetching %s: %s", url, exc.reason)
                    omitted.append((url, exc.reason))
                    continue

                entry_name = namer.claim(member.name)
                logger.info("Streaming: %s -> %s", url, entry_name)
                entry = writer.add_entry(
                    entry_name,
                    member.iter_chunks(self._settings.copy_buffer_bytes),
                    size_hint=member.size_hint,
                )
                try:
                    async with aclosing(entry):
                        async for chunk in entry:
                            yield chunk
                    written += 1
                except Exception as exc:
                    logger.warning("Error streaming %s: %s", entry_name, exc)
                    omitted.append((url, f"failed while streaming: {exc}"))
                finally:
                    await member.aclose()

            if omitted and self._settings.failure_manifest:
                manifest = writer.add_bytes_entry(namer.claim(MANIFEST_ENTRY_NAME), _manifest_text(omitted))
                if manifest:
                    yield manifest

            trailer = writer.close()
            if trailer:
                yield trailer
        finally:
            self._store.delete(session.token)
            logger.info(
                "Download completed for token %s (%d of %d files)", session.token, written, len(members)
            )
