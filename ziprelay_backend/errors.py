"""Exceptions raised by the session and archive pipeline."""

from __future__ import annotations


class ZipRelayError(Exception):
    """Base class for ziprelay failures."""


class SessionNotFound(ZipRelayError):
    """The token does not name a live session."""


class SessionExpired(ZipRelayError):
    """The session exists but outlived its TTL; it has been purged."""


class FetchError(ZipRelayError):
    """A member URL could not be fetched or its body could not be read."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason
