from __future__ import annotations

import os
from dataclasses import dataclass


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# How long a session may wait for its download.
SESSION_TTL_SECONDS = float(os.environ.get("ZIPRELAY_SESSION_TTL_SECONDS", str(60 * 60)))

# How often the reaper scans for expired sessions.
CLEANUP_INTERVAL_SECONDS = float(os.environ.get("ZIPRELAY_CLEANUP_INTERVAL_SECONDS", str(5 * 60)))

# Ceiling for a single remote fetch (headers and body).
HTTP_TIMEOUT_SECONDS = float(os.environ.get("ZIPRELAY_HTTP_TIMEOUT_SECONDS", str(5 * 60)))

# Budget for a whole archive download, shared by all members.
DOWNLOAD_TIMEOUT_SECONDS = float(os.environ.get("ZIPRELAY_DOWNLOAD_TIMEOUT_SECONDS", str(30 * 60)))

# Size of each body chunk copied into the archive.
COPY_BUFFER_BYTES = int(os.environ.get("ZIPRELAY_COPY_BUFFER_BYTES", str(64 * 1024)))

# Append MISSING.txt listing skipped members (off by default: plain truncation).
FAILURE_MANIFEST = _env_flag("ZIPRELAY_FAILURE_MANIFEST")

LOG_LEVEL = os.environ.get("ZIPRELAY_LOG_LEVEL", "INFO").upper()

DEFAULT_PORT = 6001

DEFAULT_ARCHIVE_NAME = "files.zip"
FALLBACK_ENTRY_NAME = "file"
MANIFEST_ENTRY_NAME = "MISSING.txt"


@dataclass(frozen=True)
class Settings:
    """Runtime knobs; defaults come from the environment at import time."""

    session_ttl: float = SESSION_TTL_SECONDS
    cleanup_interval: float = CLEANUP_INTERVAL_SECONDS
    http_timeout: float = HTTP_TIMEOUT_SECONDS
    download_timeout: float = DOWNLOAD_TIMEOUT_SECONDS
    copy_buffer_bytes: int = COPY_BUFFER_BYTES
    failure_manifest: bool = FAILURE_MANIFEST
