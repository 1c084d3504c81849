from __future__ import annotations

import asyncio
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Sequence

from .config import DEFAULT_ARCHIVE_NAME
from .security import new_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    token: str
    member_urls: tuple[str, ...]
    archive_name: str
    created_at: float

    def is_expired(self, ttl: float, now: float) -> bool:
        return (now - self.created_at) > ttl


class ReadWriteLock:
    """Many concurrent readers or a single writer.

    Waiting writers block new readers so a steady stream of lookups cannot
    starve inserts and deletes.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class SessionStore:
    """In-memory registry of pending downloads keyed by token.

    Sessions are immutable; the only mutations are insert and delete. Nothing
    survives a process restart.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = ReadWriteLock()

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._sessions)

    def create(self, member_urls: Sequence[str], archive_name: str | None = None) -> str:
        if not member_urls:
            raise ValueError("No files provided")
        session = Session(
            token=new_token(),
            member_urls=tuple(member_urls),
            archive_name=archive_name or DEFAULT_ARCHIVE_NAME,
            created_at=self.clock(),
        )
        with self._lock.write():
            self._sessions[session.token] = session
        return session.token

    def lookup(self, token: str) -> Session | None:
        with self._lock.read():
            return self._sessions.get(token)

    def take(self, token: str) -> Session | None:
        """Remove and return a session in one step.

        Only one caller can ever receive a given session, which is what makes
        a token single-use under concurrent downloads.
        """
        with self._lock.write():
            return self._sessions.pop(token, None)

    def delete(self, token: str) -> None:
        with self._lock.write():
            self._sessions.pop(token, None)

    def purge_expired(self, ttl: float) -> int:
        """Delete sessions older than ttl; returns how many were removed."""
        now = self.clock()
        with self._lock.read():
            expired = [token for token, s in self._sessions.items() if s.is_expired(ttl, now)]
        if not expired:
            return 0
        with self._lock.write():
            for token in expired:
                self._sessions.pop(token, None)
        return len(expired)


async def run_reaper(store: SessionStore, ttl: float, interval: float) -> None:
    """Evict expired sessions every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            deleted = store.purge_expired(ttl)
        except Exception:
            logger.exception("Session cleanup failed")
            continue
        if deleted:
            logger.info("Cleaned up %d expired sessions", deleted)
