"""Tests for the dedicated platform resolvers"""

from typing import Callable, Dict, List, Optional

import httpx
import pytest

from mediagrab.core.config import MetadataFallbackConfig, YouTubeConfig
from mediagrab.models.video import Platform
from mediagrab.resolvers.base import ResolveOptions, https, is_meaningful_title, stable_id, strip_extension
from mediagrab.resolvers.bilibili import BilibiliResolver, extract_bilibili_id, parse_codec, parse_playurl
from mediagrab.resolvers.cobalt import parse_cobalt_payload
from mediagrab.resolvers.douyin import DouyinResolver, douyin_video_id, first_mp4_link, parse_tikvideo
from mediagrab.resolvers.exceptions import UpstreamError
from mediagrab.resolvers.instagram import formats_from_cobalt
from mediagrab.resolvers.tiktok import TikTokResolver, parse_tikwm
from mediagrab.resolvers.twitter import TwitterResolver, parse_tweet, resolution_label
from mediagrab.resolvers.wechat import WeChatResolver
from mediagrab.resolvers.xiaohongshu import XiaohongshuResolver, note_id_from_url, parse_note_payload
from mediagrab.resolvers.youtube import YouTubeResolver, codec_from_mime, parse_streaming_data


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestResolverHelpers:
    """Test shared resolver helpers"""

    def test_is_meaningful_title(self) -> None:
        """Test empty and placeholder titles are not meaningful"""
        assert is_meaningful_title("A video")
        assert not is_meaningful_title("Untitled")
        assert not is_meaningful_title("  ")
        assert not is_meaningful_title(None)

    def test_strip_extension(self) -> None:
        """Test a trailing extension is dropped"""
        assert strip_extension("clip.mp4") == "clip"
        assert strip_extension("clip") == "clip"
        assert strip_extension(None) == ""

    def test_https(self) -> None:
        """Test protocol-relative and http URLs become https"""
        assert https("//i0.hdslb.com/a.jpg") == "https://i0.hdslb.com/a.jpg"
        assert https("http://x/a.jpg") == "https://x/a.jpg"
        assert https(None) == ""

    def test_stable_id_deterministic(self) -> None:
        """Test ids derived from URLs are stable"""
        assert stable_id("https://a") == stable_id("https://a")
        assert stable_id("https://a", "generic").startswith("generic-")

    def test_credential_trimmed(self) -> None:
        """Test blank credentials count as missing"""
        options = ResolveOptions(credentials={"bilibili": " abc ", "douyin": "  "})

        assert options.credential(Platform.BILIBILI) == "abc"
        assert options.credential(Platform.DOUYIN) is None


class TestYouTube:
    """Test YouTube parsing and fallback"""

    STREAMING_DATA = {
        "formats": [{"itag": 18, "qualityLabel": "360p", "url": "https://gv/18", "bitrate": 500000}],
        "adaptiveFormats": [
            {
                "itag": 137,
                "mimeType": 'video/mp4; codecs="avc1.640028"',
                "qualityLabel": "1080p",
                "url": "https://gv/137",
                "contentLength": "1000",
                "fps": 30,
            },
            {
                "itag": 248,
                "mimeType": 'video/webm; codecs="vp9"',
                "qualityLabel": "1080p",
                "url": "https://gv/248",
            },
            {"itag": 140, "mimeType": 'audio/mp4; codecs="mp4a.40.2"', "bitrate": 130000, "url": "https://gv/140"},
            {"itag": 251, "mimeType": 'audio/webm; codecs="opus"', "signatureCipher": "s=abc"},
        ],
    }

    def test_parse_streaming_data(self) -> None:
        """Test muxed, video-only and audio-only streams with codec priority"""
        formats = parse_streaming_data(self.STREAMING_DATA)

        assert [f.id for f in formats] == ["248", "137", "18", "140"]
        vp9, avc, muxed, audio = formats
        assert vp9.container == "webm" and vp9.codec == "vp9" and not vp9.has_audio
        assert avc.size == 1000 and avc.fps == 30
        assert muxed.has_audio and muxed.has_video
        assert audio.quality == "High (130kbps)" and not audio.has_video

    @pytest.mark.parametrize(
        "mime,codec",
        [('video/mp4; codecs="avc1"', "h264"), ('video/webm; codecs="vp09"', "vp9"), ('video/mp4; codecs="av01"', "av1"), ("video/x", None)],
    )
    def test_codec_from_mime(self, mime: str, codec: str) -> None:
        """Test codec tags from mime types"""
        assert codec_from_mime(mime) == codec

    @pytest.mark.asyncio
    async def test_player_api(self) -> None:
        """Test a playable video resolves through the player API"""
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "playabilityStatus": {"status": "OK"},
                    "videoDetails": {"title": "Song", "author": "Artist", "lengthSeconds": "212"},
                    "streamingData": self.STREAMING_DATA,
                },
            )

        resolver = YouTubeResolver(mock_client(handler), YouTubeConfig(innertube_key="k"))

        result = await resolver.resolve("https://youtu.be/dQw4w9WgXcQ")

        assert result.success
        assert result.data is not None
        assert result.data.id == "dQw4w9WgXcQ"
        assert result.data.duration == 212
        assert result.data.thumbnail == "https://i.ytimg.com/vi/dQw4w9WgXcQ/maxresdefault.jpg"
        assert seen[0].url.params["key"] == "k"

    @pytest.mark.asyncio
    async def test_falls_back_to_cobalt(self) -> None:
        """Test an unplayable video is retried through cobalt"""

        def handler(request: httpx.Request) -> httpx.Response:
            if "youtubei" in request.url.path:
                return httpx.Response(200, json={"playabilityStatus": {"status": "LOGIN_REQUIRED"}})
            return httpx.Response(200, json={"status": "stream", "url": "https://cobalt/x", "filename": "Song.mp4"})

        resolver = YouTubeResolver(mock_client(handler))

        result = await resolver.resolve("https://www.youtube.com/watch?v=dQw4w9WgXcQ")

        assert result.data is not None
        assert result.data.title == "Song"
        assert result.data.formats[0].url == "https://cobalt/x"

    @pytest.mark.asyncio
    async def test_missing_video_id(self) -> None:
        """Test a URL without an id fails without network calls"""
        resolver = YouTubeResolver(mock_client(lambda request: httpx.Response(500)))

        result = await resolver.resolve("https://www.youtube.com/feed/trending")

        assert not result.success
        assert "video id" in (result.error or "")


class TestTikTok:
    """Test TikTok parsing and backend fallback"""

    def test_parse_tikwm(self) -> None:
        """Test no-watermark, watermark and audio formats"""
        info = parse_tikwm(
            "123",
            {
                "code": 0,
                "data": {
                    "title": "Dance",
                    "play": "https://t/play",
                    "wmplay": "https://t/wm",
                    "music": "https://t/music",
                    "duration": 15,
                    "author": {"nickname": "dancer"},
                },
            },
        )

        assert [f.no_watermark for f in info.formats] == [True, False, None]
        assert info.formats[2].has_video is False
        assert info.author == "dancer"
        assert info.original_url == "https://www.tiktok.com/video/123"

    def test_parse_tikwm_error(self) -> None:
        """Test an error code raises"""
        with pytest.raises(UpstreamError):
            parse_tikwm("123", {"code": -1, "msg": "bad"})

    @pytest.mark.asyncio
    async def test_tikwm_fails_tikmate_succeeds(self) -> None:
        """Test the second backend is used when the first fails"""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "www.tikwm.com":
                return httpx.Response(503)
            return httpx.Response(200, json={"success": True, "video": {"url": "https://tm/v", "title": "T"}})

        resolver = TikTokResolver(mock_client(handler))

        result = await resolver.resolve("https://www.tiktok.com/@u/video/123")

        assert result.data is not None
        assert result.data.formats[0].url == "https://tm/v"


class TestTwitter:
    """Test tweet parsing"""

    def test_parse_tweet(self) -> None:
        """Test mp4 formats are kept, de-duplicated and ordered by bitrate"""
        tweet = {
            "text": "Look at this",
            "author": {"name": "Someone"},
            "media": {
                "videos": [
                    {
                        "duration": 10,
                        "thumbnail_url": "https://pbs/t.jpg",
                        "formats": [
                            {"container": "mp4", "url": "https://v/vid/640x360/a.mp4", "bitrate": 832000},
                            {"container": "mp4", "url": "https://v/vid/1280x720/b.mp4", "bitrate": 2176000},
                            {"container": "m3u8", "url": "https://v/pl.m3u8"},
                        ],
                        "variants": [
                            {"content_type": "video/mp4", "url": "https://v/vid/1280x720/b.mp4", "bitrate": 2176000}
                        ],
                    }
                ]
            },
        }

        info = parse_tweet("1", tweet, "https://x.com/u/status/1")

        assert [f.quality for f in info.formats] == ["720p", "360p"]
        assert info.formats[0].size == round(10 * 2176000 / 8)
        assert info.author == "Someone"
        assert info.thumbnail == "https://pbs/t.jpg"

    @pytest.mark.parametrize("height,label", [(1080, "1080p"), (900, "720p"), (480, "480p"), (240, "240p"), (0, "?p")])
    def test_resolution_label(self, height: int, label: str) -> None:
        """Test height buckets"""
        assert resolution_label(height) == label

    @pytest.mark.asyncio
    async def test_private_tweet(self) -> None:
        """Test a non-200 API code fails"""
        resolver = TwitterResolver(mock_client(lambda request: httpx.Response(200, json={"code": 404})))

        result = await resolver.resolve("https://x.com/u/status/1")

        assert not result.success
        assert "private or deleted" in (result.error or "")


class TestBilibili:
    """Test Bilibili parsing and session credentials"""

    PLAYURL = {
        "dash": {
            "video": [
                {"id": 80, "bandwidth": 1000, "codecs": "avc1.640032", "baseUrl": "https://b/80a", "frameRate": "29.97"},
                {"id": 80, "bandwidth": 2000, "codecs": "hev1.1.6", "baseUrl": "https://b/80h"},
                {"id": 64, "bandwidth": 500, "codecs": "avc1.64001F", "base_url": "https://b/64"},
            ],
            "audio": [{"id": 30280, "bandwidth": 192000, "codecs": "mp4a.40.2", "baseUrl": "https://b/a"}],
        }
    }

    def test_extract_id(self) -> None:
        """Test BV and av ids"""
        assert extract_bilibili_id("https://www.bilibili.com/video/BV1xx411c7mD/") == "BV1xx411c7mD"
        assert extract_bilibili_id("https://www.bilibili.com/video/av170001") == "av170001"
        assert extract_bilibili_id("https://www.bilibili.com/") is None

    @pytest.mark.parametrize(
        "codecs,tag", [("avc1.64", "h264"), ("hev1.1", "hevc"), ("av01.0", "av1"), ("mp4a.40", "aac"), ("fLaC", "fLaC")]
    )
    def test_parse_codec(self, codecs: str, tag: str) -> None:
        """Test DASH codec strings map to short tags"""
        assert parse_codec(codecs) == tag

    def test_parse_playurl_keeps_best_bandwidth(self) -> None:
        """Test one video stream per quality id, highest bandwidth wins"""
        formats = parse_playurl(self.PLAYURL, duration=100)

        assert [f.id for f in formats] == ["bili-video-80-hevc", "bili-video-64-h264", "bili-audio-30280-192"]
        assert formats[0].quality == "1080P"
        assert formats[0].size == 25000
        assert formats[1].url == "https://b/64"
        assert formats[2].container == "m4a" and not formats[2].has_video

    def test_parse_playurl_durl(self) -> None:
        """Test legacy segments when DASH is absent"""
        formats = parse_playurl({"quality": 64, "durl": [{"order": 1, "url": "https://b/f.flv", "size": 9}]}, 0)

        assert formats[0].container == "flv"
        assert formats[0].quality == "720P"

    @pytest.mark.asyncio
    async def test_session_credential_sent(self) -> None:
        """Test SESSDATA is passed as a cookie to both APIs"""
        cookies: Dict[str, str] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            cookies[request.url.path] = request.headers.get("cookie", "")
            if request.url.path.endswith("/view"):
                return httpx.Response(
                    200,
                    json={
                        "code": 0,
                        "data": {
                            "bvid": "BV1xx411c7mD",
                            "title": "Bili",
                            "duration": 100,
                            "pages": [{"cid": 42}],
                            "pic": "http://i0.hdslb.com/p.jpg",
                            "owner": {"name": "up"},
                        },
                    },
                )
            return httpx.Response(200, json={"code": 0, "data": self.PLAYURL})

        resolver = BilibiliResolver(mock_client(handler))
        options = ResolveOptions(credentials={"bilibili": "secret"})

        result = await resolver.resolve("https://www.bilibili.com/video/BV1xx411c7mD", options)

        assert result.data is not None
        assert result.data.thumbnail == "https://i0.hdslb.com/p.jpg"
        assert set(cookies.values()) == {"SESSDATA=secret"}


class TestCobaltBackedResolvers:
    """Test cobalt payload handling"""

    def test_error_status(self) -> None:
        """Test cobalt error payloads raise"""
        with pytest.raises(UpstreamError, match="cobalt: rate limited"):
            parse_cobalt_payload({"status": "error", "text": "rate limited"})

    def test_picker_video_items(self) -> None:
        """Test carousel posts keep only video items"""
        response = parse_cobalt_payload(
            {
                "status": "picker",
                "picker": [
                    {"type": "photo", "url": "https://ig/p.jpg"},
                    {"type": "video", "url": "https://ig/v.mp4"},
                ],
            }
        )

        formats = formats_from_cobalt(response)

        assert [f.url for f in formats] == ["https://ig/v.mp4"]
        assert not response.is_direct


class TestWeChat:
    """Test WeChat direct-link validation"""

    @pytest.mark.asyncio
    async def test_video_link(self) -> None:
        """Test a direct video link is accepted with its size and expiry"""
        resolver = WeChatResolver(
            mock_client(lambda r: httpx.Response(200, headers={"content-type": "video/mp4", "content-length": "77"}))
        )

        result = await resolver.resolve("https://finder.video.qq.com/251/20302/stodownload?x=1")

        assert result.data is not None
        assert result.data.formats[0].size == 77
        assert result.data.expires_in == 86400

    @pytest.mark.asyncio
    async def test_page_link_rejected(self) -> None:
        """Test a non-video link asks for the captured media URL"""
        resolver = WeChatResolver(mock_client(lambda r: httpx.Response(200, headers={"content-type": "text/html"})))

        result = await resolver.resolve("https://channels.weixin.qq.com/web/pages/feed")

        assert not result.success
        assert "direct video link" in (result.error or "")


class TestDouyin:
    """Test Douyin id extraction and helper-site fallback"""

    TIKVIDEO_HTML = (
        '<div class="tik-video"><img src="https://p3.douyinpic.com/c.jpg?a=1&amp;b=2">'
        "<h3>Morning run</h3><p>1:05</p>"
        '<a href="https://dl.example.com/a.mp3" class="tik-button-dl button">Download MP3</a>'
        '<a href="https://dl.example.com/v.mp4?sig=1&amp;t=2" class="tik-button-dl button">'
        '<i class="icon"></i> Download MP4</a></div>'
    )

    @pytest.mark.parametrize(
        "url,video_id",
        [
            ("https://www.douyin.com/video/7300000000000000001", "7300000000000000001"),
            ("https://www.iesdouyin.com/share/note/7300000000000000002/", "7300000000000000002"),
            ("https://www.douyin.com/discover?modId=7300000000000000003", "7300000000000000003"),
            ("https://www.douyin.com/user/MS4wLjABAAAA", None),
        ],
    )
    def test_video_id(self, url: str, video_id: Optional[str]) -> None:
        """Test ids come from the path or the modId query"""
        assert douyin_video_id(url) == video_id

    def test_parse_tikvideo(self) -> None:
        """Test the first non-audio download button is the only format"""
        info = parse_tikvideo(self.TIKVIDEO_HTML, "7300000000000000001")

        assert info.title == "Morning run"
        assert info.duration == 65
        assert info.thumbnail == "https://p3.douyinpic.com/c.jpg?a=1&b=2"
        assert [f.url for f in info.formats] == ["https://dl.example.com/v.mp4?sig=1&t=2"]
        assert info.original_url == "https://www.douyin.com/video/7300000000000000001"

    def test_parse_tikvideo_without_video_button(self) -> None:
        """Test a fragment with only audio links is rejected"""
        with pytest.raises(UpstreamError):
            parse_tikvideo('<a href="https://x/a.mp3" class="tik-button-dl">MP3</a>', "1")

    def test_first_mp4_link(self) -> None:
        """Test escaping is undone on scraped links"""
        assert first_mp4_link('href="https://v.cdn/a.mp4?x=1&amp;y=2"') == "https://v.cdn/a.mp4?x=1&y=2"
        assert first_mp4_link("<html>nothing</html>") is None

    @pytest.mark.asyncio
    async def test_short_link_expanded(self) -> None:
        """Test a v.douyin.com link is followed with a mobile agent before lookup"""
        agents: List[str] = []
        forms: List[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "v.douyin.com":
                agents.append(request.headers["user-agent"])
                return httpx.Response(
                    302, headers={"location": "https://www.iesdouyin.com/share/video/7300000000000000001/?from=app"}
                )
            if request.url.host == "www.iesdouyin.com":
                return httpx.Response(200, text="<html></html>")
            forms.append(request.content)
            return httpx.Response(200, json={"status": "ok", "data": self.TIKVIDEO_HTML})

        result = await DouyinResolver(mock_client(handler)).resolve("https://v.douyin.com/iRNBho5/")

        assert result.data is not None
        assert result.data.id == "7300000000000000001"
        assert "iPhone" in agents[0]
        assert b"iesdouyin.com%2Fshare%2Fvideo%2F7300000000000000001" in forms[0]

    @pytest.mark.asyncio
    async def test_methods_tried_in_order(self) -> None:
        """Test failing helper sites fall through to the next one"""
        hosts: List[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            hosts.append(request.url.host)
            if request.url.host == "tikvideo.app":
                return httpx.Response(200, json={"status": "error"})
            if request.url.host == "api.douyin.wtf":
                return httpx.Response(500)
            return httpx.Response(200, text='<a href="https://v.cdn/a.mp4?x=1&amp;y=2">Download</a>')

        result = await DouyinResolver(mock_client(handler)).resolve(
            "https://www.douyin.com/video/7300000000000000001"
        )

        assert result.data is not None
        assert hosts == ["tikvideo.app", "api.douyin.wtf", "snaptik.app"]
        assert result.data.formats[0].url == "https://v.cdn/a.mp4?x=1&y=2"
        assert result.data.title == "Douyin video"

    @pytest.mark.asyncio
    async def test_all_methods_fail(self) -> None:
        """Test exhausting every helper site reports a failure"""
        hosts: List[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            hosts.append(request.url.host)
            return httpx.Response(503)

        result = await DouyinResolver(mock_client(handler)).resolve(
            "https://www.douyin.com/video/7300000000000000001"
        )

        assert not result.success
        assert "Douyin" in (result.error or "")
        assert hosts == ["tikvideo.app", "api.douyin.wtf", "snaptik.app", "tiksave.io", "ssstik.io"]

    @pytest.mark.asyncio
    async def test_missing_video_id(self) -> None:
        """Test a profile URL is rejected without any lookup"""

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no requests expected")

        result = await DouyinResolver(mock_client(handler)).resolve("https://www.douyin.com/user/MS4wLjABAAAA")

        assert not result.success
        assert "video id" in (result.error or "")


class TestXiaohongshu:
    """Test Xiaohongshu note resolution"""

    NOTE_URL = "https://www.xiaohongshu.com/discovery/item/65aa11bb22cc?xsec_token=t"

    @pytest.mark.parametrize(
        "url,note_id",
        [
            ("https://www.xiaohongshu.com/explore/64a1b2c3", "64a1b2c3"),
            ("https://www.xiaohongshu.com/discovery/item/65aa11bb22cc?xsec_token=t", "65aa11bb22cc"),
            ("https://www.xiaohongshu.com/share?noteId=66dd", "66dd"),
            ("https://www.xiaohongshu.com/share?note_id=77ee", "77ee"),
            ("https://www.xiaohongshu.com/user/profile/5f00", None),
        ],
    )
    def test_note_id(self, url: str, note_id: Optional[str]) -> None:
        """Test note ids from paths and query parameters"""
        assert note_id_from_url(url) == note_id

    def test_legacy_video_field(self) -> None:
        """Test a single video object is used when there is no downloads list"""
        info = parse_note_payload(
            {"status": True, "result": {"title": "Clip", "video": {"url": "https://sns-video/x.mp4"}}},
            self.NOTE_URL,
            "65aa11bb22cc",
        )

        assert [f.url for f in info.formats] == ["https://sns-video/x.mp4"]
        assert info.formats[0].id == "xhs-65aa11bb22cc-0"

    @pytest.mark.asyncio
    async def test_short_link_then_aggregator(self) -> None:
        """Test the expanded note URL is what the aggregator receives"""
        queried: List[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "xhslink.com":
                return httpx.Response(302, headers={"location": self.NOTE_URL})
            if request.url.host == "www.xiaohongshu.com":
                return httpx.Response(200, text="<html></html>")
            queried.append(request.url.params["url"])
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "result": {
                        "title": "Sunset",
                        "nickname": "hiker",
                        "duration": "00:22",
                        "downloads": [{"quality": "HD", "url": "https://sns-video/hd.mp4"}],
                    },
                },
            )

        result = await XiaohongshuResolver(mock_client(handler)).resolve("http://xhslink.com/a/abc")

        assert result.data is not None
        assert queried == [self.NOTE_URL]
        assert result.data.original_url == self.NOTE_URL
        assert result.data.id == "65aa11bb22cc"
        assert result.data.duration == 22
        assert result.data.author == "hiker"
        assert result.data.formats[0].quality == "HD"

    @pytest.mark.asyncio
    async def test_no_results_reports_image_note(self) -> None:
        """Test an empty aggregator answer explains image notes without scraping the page"""
        hosts: List[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            hosts.append(request.url.host)
            return httpx.Response(200, json={"status": False, "message": "No results found"})

        result = await XiaohongshuResolver(mock_client(handler)).resolve(self.NOTE_URL)

        assert not result.success
        assert "image note" in (result.error or "")
        assert "www.xiaohongshu.com" not in hosts

    @pytest.mark.asyncio
    async def test_note_page_when_aggregator_down(self) -> None:
        """Test the note page's Open Graph video is used when the aggregator fails"""
        page = (
            "<html><head><title>Sunset - Xiaohongshu</title>"
            '<meta name="og:video" content="https://sns-video/page.mp4">'
            '<meta property="og:image" content="https://sns-img/cover.jpg">'
            "</head></html>"
        )

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "www.xiaohongshu.com":
                return httpx.Response(200, text=page)
            return httpx.Response(503)

        result = await XiaohongshuResolver(mock_client(handler)).resolve(self.NOTE_URL)

        assert result.data is not None
        assert result.data.title == "Sunset"
        assert result.data.thumbnail == "https://sns-img/cover.jpg"
        assert [f.url for f in result.data.formats] == ["https://sns-video/page.mp4"]

    @pytest.mark.asyncio
    async def test_aggregator_disabled(self) -> None:
        """Test only the note page is fetched when the aggregator is switched off"""
        hosts: List[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            hosts.append(request.url.host)
            return httpx.Response(200, text='<meta name="og:video" content="https://sns-video/page.mp4">')

        resolver = XiaohongshuResolver(mock_client(handler), MetadataFallbackConfig(enabled=False))
        result = await resolver.resolve(self.NOTE_URL)

        assert result.success
        assert hosts == ["www.xiaohongshu.com"]
