"""Tests for remote fetching and entry name resolution."""

import asyncio
import time

import httpx
import pytest

from ziprelay_backend.errors import FetchError
from ziprelay_backend.fetcher import RemoteFetcher, filename_from_content_disposition, resolve_member_name


class TestNameResolution:
    def test_header_beats_url(self):
        name = resolve_member_name("https://x.test/files/other.bin", 'attachment; filename="report.pdf"')
        assert name == "report.pdf"

    def test_url_path_ignores_query(self):
        assert resolve_member_name("https://x.test/data/dataset.csv?x=1", None) == "dataset.csv"

    def test_bare_domain_falls_back(self):
        assert resolve_member_name("https://x.test", None) == "file"
        assert resolve_member_name("https://x.test/", None) == "file"

    def test_url_path_is_percent_decoded(self):
        assert resolve_member_name("https://x.test/a/my%20file.txt", None) == "my file.txt"

    def test_trailing_slash_uses_last_segment(self):
        assert resolve_member_name("https://x.test/archive/", None) == "archive"

    def test_empty_header_filename_falls_through(self):
        assert resolve_member_name("https://x.test/a.txt", 'attachment; filename=""') == "a.txt"

    def test_header_without_filename_falls_through(self):
        assert resolve_member_name("https://x.test/a.txt", "inline") == "a.txt"

    def test_rfc2231_filename(self):
        value = "attachment; filename*=UTF-8''r%C3%A9sum%C3%A9.pdf"
        assert filename_from_content_disposition(value) == "résumé.pdf"

    def test_header_path_components_are_stripped(self):
        assert resolve_member_name("https://x.test/a", 'attachment; filename="../../evil.sh"') == "evil.sh"

    def test_custom_fallback(self):
        assert resolve_member_name("https://x.test", None, fallback="download") == "download"


def _fetcher(handler, request_timeout=30.0):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client, RemoteFetcher(client, request_timeout=request_timeout)


def _run_fetch(handler, url, *, deadline_in=60.0, request_timeout=30.0, read_body=True):
    async def scenario():
        client, fetcher = _fetcher(handler, request_timeout)
        try:
            member = await fetcher.fetch(url, time.monotonic() + deadline_in)
            try:
                body = b""
                if read_body:
                    async for chunk in member.iter_chunks(4):
                        body += chunk
                return member.name, member.size_hint, body
            finally:
                await member.aclose()
        finally:
            await client.aclose()

    return asyncio.run(scenario())


class TestRemoteFetcher:
    def test_success_returns_name_and_body(self):
        def handler(request):
            return httpx.Response(
                200,
                content=b"hello world",
                headers={"Content-Disposition": 'attachment; filename="greeting.txt"'},
            )

        name, size, body = _run_fetch(handler, "https://x.test/download?id=3")
        assert name == "greeting.txt"
        assert size == 11
        assert body == b"hello world"

    def test_name_from_url_when_no_header(self):
        def handler(request):
            return httpx.Response(200, content=b"a,b\n")

        name, _, _ = _run_fetch(handler, "https://x.test/exports/dataset.csv?x=1")
        assert name == "dataset.csv"

    @pytest.mark.parametrize("status", [201, 204])
    def test_any_2xx_is_success(self, status):
        def handler(request):
            return httpx.Response(status)

        name, _, body = _run_fetch(handler, "https://x.test/empty.txt")
        assert name == "empty.txt"
        assert body == b""

    @pytest.mark.parametrize("status", [301, 404, 500])
    def test_non_success_status_is_an_error(self, status):
        def handler(request):
            return httpx.Response(status, content=b"nope")

        with pytest.raises(FetchError) as info:
            _run_fetch(handler, "https://x.test/missing.txt")
        assert info.value.url == "https://x.test/missing.txt"
        assert str(status) in info.value.reason

    def test_connection_error_is_an_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(FetchError):
            _run_fetch(handler, "https://x.test/a.txt")

    def test_invalid_url_is_an_error(self):
        def handler(request):
            return httpx.Response(200)

        with pytest.raises(FetchError):
            _run_fetch(handler, "http://x.test:notaport/a.txt")

    def test_slow_response_hits_request_ceiling(self):
        async def handler(request):
            await asyncio.sleep(2)
            return httpx.Response(200)

        started = time.monotonic()
        with pytest.raises(FetchError):
            _run_fetch(handler, "https://x.test/slow.txt", request_timeout=0.05)
        assert time.monotonic() - started < 1.5

    def test_slow_response_hits_download_deadline(self):
        async def handler(request):
            await asyncio.sleep(2)
            return httpx.Response(200)

        with pytest.raises(FetchError):
            _run_fetch(handler, "https://x.test/slow.txt", deadline_in=0.05)

    def test_elapsed_deadline_fails_without_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200)

        with pytest.raises(FetchError):
            _run_fetch(handler, "https://x.test/a.txt", deadline_in=-1)
        assert calls == []

    def test_slow_body_hits_deadline(self):
        async def body():
            yield b"first"
            await asyncio.sleep(2)
            yield b"never"

        def handler(request):
            return httpx.Response(200, content=body())

        with pytest.raises(FetchError) as info:
            _run_fetch(handler, "https://x.test/trickle.bin", request_timeout=0.2)
        assert "body" in info.value.reason
