from __future__ import annotations

import posixpath
import time
import zipfile
from typing import AsyncIterable, AsyncIterator


class _ChunkSink:
    """Write-only, non-seekable file object collecting archive bytes.

    zipfile notices the missing ``tell``/``seek`` and switches to data
    descriptors, so nothing it writes ever needs to be revisited.
    """

    def __init__(self) -> None:
        self._chunks: list[bytes] = []

    def write(self, data) -> int:
        if data:
            self._chunks.append(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass

    def drain(self) -> bytes:
        out = b"".join(self._chunks)
        self._chunks.clear()
        return out


class ArchiveWriter:
    """Stream a ZIP archive of stored (uncompressed) entries.

    Bytes are handed out as they are produced: ``add_entry`` is an async
    iterator of output chunks and ``close`` returns the central directory.
    At most one copy chunk plus headers is held in memory at any time.
    """

    def __init__(self) -> None:
        self._sink = _ChunkSink()
        self._zip = zipfile.ZipFile(self._sink, mode="w", compression=zipfile.ZIP_STORED, allowZip64=True)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def names(self) -> list[str]:
        """Entries that will be listed in the central directory."""
        return self._zip.namelist()

    def _new_info(self, name: str) -> zipfile.ZipInfo:
        info = zipfile.ZipInfo(name, date_time=time.localtime()[:6])
        info.compress_type = zipfile.ZIP_STORED
        info.external_attr = 0o644 << 16
        return info

    def _discard(self, info: zipfile.ZipInfo) -> None:
        # Its local bytes are already sent; they stay as unreferenced space.
        if info in self._zip.filelist:
            self._zip.filelist.remove(info)
        if self._zip.NameToInfo.get(info.filename) is info:
            del self._zip.NameToInfo[info.filename]

    async def add_entry(
        self,
        name: str,
        chunks: AsyncIterable[bytes],
        size_hint: int | None = None,
    ) -> AsyncIterator[bytes]:
        """Write one entry, yielding archive bytes as the source is copied.

        If ``chunks`` raises, the entry is left out of the central directory
        (readers never see a truncated file) and the error propagates.
        """
        if self._closed:
            raise ValueError("Archive already closed")
        info = self._new_info(name)
        if size_hint is not None:
            info.file_size = size_hint
        force_zip64 = size_hint is None or size_hint > zipfile.ZIP64_LIMIT
        try:
            with self._zip.open(info, mode="w", force_zip64=force_zip64) as dest:
                header = self._sink.drain()
                if header:
                    yield header
                async for chunk in chunks:
                    if not chunk:
                        continue
                    dest.write(chunk)
                    out = self._sink.drain()
                    if out:
                        yield out
        except Exception:
            self._discard(info)
            raise
        tail = self._sink.drain()
        if tail:
            yield tail

    def add_bytes_entry(self, name: str, data: bytes) -> bytes:
        """Write a small in-memory entry and return the bytes it produced."""
        if self._closed:
            raise ValueError("Archive already closed")
        self._zip.writestr(self._new_info(name), data)
        return self._sink.drain()

    def close(self) -> bytes:
        """Finish the archive. Only the first call emits anything."""
        if self._closed:
            return b""
        self._closed = True
        self._zip.close()
        return self._sink.drain()


class EntryNamer:
    """Hands out archive entry names that are unique within one archive."""

    def __init__(self) -> None:
        self._used: set[str] = set()
        self._counters: dict[str, int] = {}

    def claim(self, name: str) -> str:
        if name not in self._used:
            self._used.add(name)
            return name
        base, ext = posixpath.splitext(name)
        count = self._counters.get(name, 0)
        while True:
            count += 1
            candidate = f"{base}_{count}{ext}"
            if candidate not in self._used:
                break
        self._counters[name] = count
        self._used.add(candidate)
        return candidate
