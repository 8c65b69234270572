"""Tests for caption and size enrichment"""

import asyncio
import time
from typing import AsyncIterator, List

import httpx
import pytest

from mediagrab.core.config import EnrichmentConfig, YouTubeConfig
from mediagrab.models.video import VideoFormat
from mediagrab.resolvers.captions import caption_url, fetch_captions, parse_caption_tracks
from mediagrab.resolvers.size_probe import backfill_sizes, is_media_type, probe_size, total_from_content_range

MEDIA_URL = "https://cdn.example.com/video.mp4"


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestSizeProbe:
    """Test HEAD and ranged GET size discovery"""

    @pytest.mark.asyncio
    async def test_head_content_length(self) -> None:
        """Test a media HEAD answer with a length is used directly"""
        methods: List[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            methods.append(request.method)
            return httpx.Response(200, headers={"content-length": "5000", "content-type": "video/mp4"})

        assert await probe_size(mock_client(handler), MEDIA_URL) == 5000
        assert methods == ["HEAD"]

    @pytest.mark.asyncio
    async def test_range_fallback(self) -> None:
        """Test a HEAD without a length falls back to a one-byte ranged GET"""
        ranges: List[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "HEAD":
                return httpx.Response(200, headers={"content-type": "video/mp4"})
            ranges.append(request.headers.get("range", ""))
            return httpx.Response(206, headers={"content-range": "bytes 0-0/123456"}, content=b"x")

        assert await probe_size(mock_client(handler), MEDIA_URL) == 123456
        assert ranges == ["bytes=0-0"]

    @pytest.mark.asyncio
    async def test_html_head_ignored(self) -> None:
        """Test a non-media HEAD answer is not trusted"""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "HEAD":
                return httpx.Response(200, headers={"content-length": "512", "content-type": "text/html"})
            return httpx.Response(200, content=b"<html>")

        assert await probe_size(mock_client(handler), MEDIA_URL) is None

    @pytest.mark.asyncio
    async def test_network_errors(self) -> None:
        """Test transport failures give None"""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("slow", request=request)

        assert await probe_size(mock_client(handler), MEDIA_URL) is None

    @pytest.mark.asyncio
    async def test_referer_sent_for_protected_cdn(self) -> None:
        """Test hotlink-protected hosts get a referer"""
        referers: List[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            referers.append(request.headers.get("referer", ""))
            return httpx.Response(200, headers={"content-length": "1", "content-type": "video/mp4"})

        await probe_size(mock_client(handler), "https://upos-sz-mirror.bilivideo.com/v.m4s")

        assert referers == ["https://www.bilibili.com/"]

    @pytest.mark.asyncio
    async def test_stalled_host_is_bounded(self) -> None:
        """Test a host that never finishes answering gives up at the size lookup deadline"""

        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(30)
            return httpx.Response(200)

        started = time.monotonic()
        size = await probe_size(mock_client(handler), MEDIA_URL, timeout=0.2)

        assert size is None
        assert time.monotonic() - started < 1.5

    @pytest.mark.asyncio
    async def test_range_ignored_body_not_downloaded(self) -> None:
        """Test a host answering the ranged GET with a full 200 body is not read"""
        chunks_sent: List[int] = []

        class TrickleStream(httpx.AsyncByteStream):
            async def __aiter__(self) -> AsyncIterator[bytes]:
                while True:
                    chunks_sent.append(1)
                    yield b"x"
                    await asyncio.sleep(1)

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "HEAD":
                return httpx.Response(200, headers={"content-type": "video/mp4"})
            return httpx.Response(200, headers={"content-type": "video/mp4"}, stream=TrickleStream())

        started = time.monotonic()
        size = await probe_size(mock_client(handler), MEDIA_URL, timeout=5)

        assert size is None
        assert time.monotonic() - started < 1
        assert len(chunks_sent) <= 1

    @pytest.mark.asyncio
    async def test_backfill_bounded_by_stalled_host(self) -> None:
        """Test one stalled CDN does not delay the backfill beyond the per-request deadlines"""

        async def handler(request: httpx.Request) -> httpx.Response:
            if "slow" in request.url.path:
                await asyncio.sleep(30)
            return httpx.Response(200, headers={"content-length": "9", "content-type": "video/mp4"})

        formats = [
            VideoFormat(id="a", quality="720p", url="https://cdn.example.com/slow.mp4"),
            VideoFormat(id="b", quality="480p", url="https://cdn.example.com/fast.mp4"),
        ]

        started = time.monotonic()
        filled = await backfill_sizes(mock_client(handler), formats, EnrichmentConfig(size_probe_timeout=0.2))

        assert time.monotonic() - started < 1.5
        assert filled == 1
        assert [f.size for f in formats] == [None, 9]

    def test_content_range_total(self) -> None:
        """Test parsing the total from Content-Range"""
        assert total_from_content_range("bytes 0-0/123456") == 123456
        assert total_from_content_range("bytes 0-0/*") is None
        assert total_from_content_range(None) is None

    def test_is_media_type(self) -> None:
        """Test media type prefixes"""
        assert is_media_type("video/mp4")
        assert is_media_type("Audio/MPEG")
        assert is_media_type("application/octet-stream")
        assert not is_media_type("text/html; charset=utf-8")

    @pytest.mark.asyncio
    async def test_backfill_only_missing_sizes(self) -> None:
        """Test only formats without a size are probed, failures left alone"""
        probed: List[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            probed.append(str(request.url))
            if "ok" in request.url.path:
                return httpx.Response(200, headers={"content-length": "42", "content-type": "video/mp4"})
            return httpx.Response(404)

        formats = [
            VideoFormat(id="a", quality="720p", url="https://cdn.example.com/ok.mp4"),
            VideoFormat(id="b", quality="480p", url="https://cdn.example.com/known.mp4", size=7),
            VideoFormat(id="c", quality="360p", url="https://cdn.example.com/gone.mp4"),
        ]

        filled = await backfill_sizes(mock_client(handler), formats)

        assert filled == 1
        assert [f.size for f in formats] == [42, 7, None]
        assert "https://cdn.example.com/known.mp4" not in probed

    @pytest.mark.asyncio
    async def test_backfill_disabled(self) -> None:
        """Test probing can be switched off"""

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no requests expected")

        formats = [VideoFormat(id="a", quality="720p", url=MEDIA_URL)]

        assert await backfill_sizes(mock_client(handler), formats, EnrichmentConfig(size_probe_enabled=False)) == 0


class TestCaptions:
    """Test caption track parsing and fetching"""

    PLAYER = {
        "captions": {
            "playerCaptionsTracklistRenderer": {
                "captionTracks": [
                    {
                        "baseUrl": "https://www.youtube.com/api/timedtext?v=x&lang=en&fmt=srv3",
                        "languageCode": "en",
                        "name": {"simpleText": "English"},
                    },
                    {
                        "baseUrl": "https://www.youtube.com/api/timedtext?v=x&lang=en&kind=asr",
                        "languageCode": "en-auto",
                        "name": {"runs": [{"text": "English (auto-generated)"}]},
                        "kind": "asr",
                    },
                ],
                "translationLanguages": [
                    {"languageCode": "en", "languageName": {"simpleText": "English"}},
                    {"languageCode": "fr", "languageName": {"simpleText": "French"}},
                ],
            }
        }
    }

    def test_caption_url(self) -> None:
        """Test the serialization format is forced"""
        assert caption_url("https://t?v=x&fmt=srv3") == "https://t?v=x&fmt=srv1"
        assert caption_url("https://t?v=x") == "https://t?v=x&fmt=srv1"

    def test_parse_tracks_and_translations(self) -> None:
        """Test native tracks come first, then new translated languages"""
        subtitles = parse_caption_tracks(self.PLAYER)

        assert [s.lang for s in subtitles] == ["en", "en-auto", "fr"]
        assert subtitles[0].label == "English"
        assert subtitles[1].is_auto_generated
        assert subtitles[2].is_auto_generated
        assert subtitles[2].url.endswith("&fmt=srv1&tlang=fr")
        assert "kind=asr" not in subtitles[2].url

    def test_no_captions(self) -> None:
        """Test a player response without captions gives no tracks"""
        assert parse_caption_tracks({}) == []

    @pytest.mark.asyncio
    async def test_fetch_uses_android_client(self) -> None:
        """Test the caption request identifies as the ANDROID client"""
        bodies: List[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.content)
            return httpx.Response(200, json=self.PLAYER)

        subtitles = await fetch_captions(mock_client(handler), "x", YouTubeConfig(innertube_key="k"))

        assert len(subtitles) == 3
        assert b'"clientName":"ANDROID"' in bodies[0].replace(b" ", b"")

    @pytest.mark.asyncio
    async def test_fetch_bounded_by_caption_timeout(self) -> None:
        """Test a stalled caption endpoint gives up at the caption deadline"""

        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(30)
            return httpx.Response(200, json=self.PLAYER)

        started = time.monotonic()
        subtitles = await fetch_captions(mock_client(handler), "x", enrichment=EnrichmentConfig(caption_timeout=0.2))

        assert subtitles == []
        assert time.monotonic() - started < 1

    @pytest.mark.asyncio
    async def test_fetch_failure_is_empty(self) -> None:
        """Test non-JSON answers yield no tracks"""
        subtitles = await fetch_captions(mock_client(lambda r: httpx.Response(502, text="bad gateway")), "x")

        assert subtitles == []
