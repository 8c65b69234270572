"""Tests for the resolver chain"""

from typing import List, Optional

import httpx
import pytest

from mediagrab.core.config import Config, EnrichmentConfig, MetadataFallbackConfig, YouTubeConfig
from mediagrab.models.video import Platform, ResolveResult, Subtitle, VideoFormat, VideoInfo
from mediagrab.resolvers.base import PLACEHOLDER_TITLE, ResolveOptions, Resolver
from mediagrab.resolvers.chain import ResolverChain, build_chain, merge_metadata
from mediagrab.resolvers.exceptions import UpstreamError

YOUTUBE_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
TIKTOK_URL = "https://www.tiktok.com/@user/video/7234567890"
DOUYIN_URL = "https://www.douyin.com/video/7300000000000000000"


def make_info(
    title: str = "Title",
    platform: Platform = Platform.OTHER,
    id: str = "generic-abc",
    url: str = "https://example.com/page",
    size: Optional[int] = 1024,
    **kwargs,
) -> VideoInfo:
    return VideoInfo(
        id=id,
        platform=platform,
        title=title,
        original_url=url,
        formats=[VideoFormat(id="0", quality="720p", url="https://cdn.example.com/v.mp4", size=size)],
        **kwargs,
    )


class ScriptedResolver(Resolver):
    """Resolver returning a fixed VideoInfo or failing with a fixed message."""

    def __init__(self, name: str, info: Optional[VideoInfo] = None, error: str = "nothing here"):
        super().__init__(httpx.AsyncClient())
        self.name = name
        self.info = info
        self.error = error
        self.calls: List[str] = []

    async def extract(self, url: str, options: ResolveOptions) -> VideoInfo:
        self.calls.append(url)
        if self.info is None:
            raise UpstreamError(self.error)
        return self.info


class BrokenResolver(ScriptedResolver):
    """Resolver whose resolve() raises instead of returning a failure."""

    async def resolve(self, url: str, options: Optional[ResolveOptions] = None) -> ResolveResult:
        self.calls.append(url)
        raise RuntimeError("boom")


def offline_client() -> httpx.AsyncClient:
    """Client where every outbound request answers 404."""
    return httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))


def no_probe_config(**sections) -> Config:
    return Config(enrichment=EnrichmentConfig(size_probe_enabled=False), **sections)


# ===== Fixtures =====


@pytest.fixture
def generic() -> ScriptedResolver:
    return ScriptedResolver("generic", error="No video links found on the page")


@pytest.fixture
def fallback() -> ScriptedResolver:
    return ScriptedResolver("metadata-fallback", error="Unrecognized metadata service response")


@pytest.fixture
def remote() -> ScriptedResolver:
    return ScriptedResolver("remote", error="remote: parse failed")


@pytest.fixture
def chain(generic: ScriptedResolver, fallback: ScriptedResolver, remote: ScriptedResolver) -> ResolverChain:
    return ResolverChain(
        offline_client(), generic=generic, metadata_fallback=fallback, remote=remote, config=no_probe_config()
    )


# ===== Tests =====


class TestMergeMetadata:
    """Test metadata overlay from the fallback service"""

    def test_overlays_fields_and_keeps_formats(self) -> None:
        """Test thumbnail, author and duration are taken from the extra result"""
        base = make_info(title=PLACEHOLDER_TITLE)
        extra = make_info(title="Real title", thumbnail="https://img/t.jpg", author="someone", duration=42)
        extra.formats = []

        merged = merge_metadata(base, extra)

        assert merged is base
        assert merged.title == "Real title"
        assert merged.thumbnail == "https://img/t.jpg"
        assert merged.author == "someone"
        assert merged.duration == 42
        assert len(merged.formats) == 1

    def test_meaningful_title_kept(self) -> None:
        """Test a real base title is never replaced"""
        base = make_info(title="Scraped title")

        merge_metadata(base, make_info(title="Other title"))

        assert base.title == "Scraped title"

    def test_placeholder_extra_title_ignored(self) -> None:
        """Test a placeholder title from the fallback does not overwrite"""
        base = make_info(title="")

        merge_metadata(base, make_info(title=PLACEHOLDER_TITLE))

        assert base.title == ""


class TestChainOrder:
    """Test step ordering and fallthrough"""

    @pytest.mark.asyncio
    async def test_dedicated_success_short_circuits(self, chain: ResolverChain, generic: ScriptedResolver) -> None:
        """Test the dedicated resolver's result is returned without other steps"""
        dedicated = ScriptedResolver("twitter", info=make_info(platform=Platform.TWITTER, id="1"))
        chain.register_resolver(Platform.TWITTER, dedicated)

        result = await chain.resolve("https://x.com/u/status/1")

        assert result.success
        assert result.data is not None
        assert result.data.platform == Platform.TWITTER
        assert generic.calls == []

    @pytest.mark.asyncio
    async def test_youtube_falls_through_to_remote(
        self, chain: ResolverChain, generic: ScriptedResolver, remote: ScriptedResolver
    ) -> None:
        """Test a YouTube URL resolved by the remote service is tagged youtube"""
        chain.register_resolver(Platform.YOUTUBE, ScriptedResolver("youtube", error="LOGIN_REQUIRED"))
        remote.info = make_info(title="X", platform=Platform.OTHER, id="dQw4w9WgXcQ", url=YOUTUBE_URL)

        result = await chain.resolve(YOUTUBE_URL)

        assert result.success
        assert result.data is not None
        assert result.data.title == "X"
        assert result.data.platform == Platform.YOUTUBE
        assert generic.calls == [YOUTUBE_URL]
        assert remote.calls == [YOUTUBE_URL]

    @pytest.mark.asyncio
    async def test_generic_result_gets_detected_platform(
        self, chain: ResolverChain, generic: ScriptedResolver, fallback: ScriptedResolver
    ) -> None:
        """Test a generic-scraper result carries the detected platform and id"""
        chain.register_resolver(Platform.TIKTOK, ScriptedResolver("tiktok"))
        generic.info = make_info(title="Scraped", platform=Platform.OTHER, url=TIKTOK_URL)

        result = await chain.resolve(TIKTOK_URL)

        assert result.success
        assert result.data is not None
        assert result.data.platform == Platform.TIKTOK
        assert result.data.id == "7234567890"

    @pytest.mark.asyncio
    async def test_generic_result_merged_with_fallback(
        self, chain: ResolverChain, generic: ScriptedResolver, fallback: ScriptedResolver
    ) -> None:
        """Test generic formats are kept while fallback metadata fills the gaps"""
        generic.info = make_info(title=PLACEHOLDER_TITLE, url=DOUYIN_URL)
        fallback.info = make_info(title="Douyin title", thumbnail="https://img/c.jpg", author="creator")
        fallback.info.formats = [VideoFormat(id="fb", quality="original", url="https://other/v.mp4")]

        result = await chain.resolve(DOUYIN_URL)

        assert result.data is not None
        assert result.data.title == "Douyin title"
        assert result.data.author == "creator"
        assert [f.id for f in result.data.formats] == ["0"]
        assert result.data.platform == Platform.DOUYIN

    @pytest.mark.asyncio
    async def test_no_merge_outside_backfill_platforms(
        self, chain: ResolverChain, generic: ScriptedResolver, fallback: ScriptedResolver
    ) -> None:
        """Test platforms outside the backfill table never query the fallback service"""
        generic.info = make_info(title=PLACEHOLDER_TITLE)

        result = await chain.resolve("https://example.com/page")

        assert result.success
        assert result.data is not None
        assert result.data.platform == Platform.OTHER
        assert fallback.calls == []

    @pytest.mark.asyncio
    async def test_metadata_fallback_step(
        self, chain: ResolverChain, fallback: ScriptedResolver, remote: ScriptedResolver
    ) -> None:
        """Test the fallback service resolves when the scraper finds nothing"""
        fallback.info = make_info(title="From fallback", platform=Platform.OTHER)

        result = await chain.resolve(DOUYIN_URL)

        assert result.success
        assert result.data is not None
        assert result.data.platform == Platform.DOUYIN
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_metadata_fallback_disabled(
        self, generic: ScriptedResolver, fallback: ScriptedResolver, remote: ScriptedResolver
    ) -> None:
        """Test a disabled fallback service is skipped entirely"""
        fallback.info = make_info()
        chain = ResolverChain(
            offline_client(),
            generic=generic,
            metadata_fallback=fallback,
            remote=remote,
            config=no_probe_config(metadata_fallback=MetadataFallbackConfig(enabled=False)),
        )

        result = await chain.resolve(DOUYIN_URL)

        assert not result.success
        assert fallback.calls == []
        assert remote.calls == [DOUYIN_URL]

    @pytest.mark.asyncio
    async def test_all_steps_fail_returns_last_reason(self, chain: ResolverChain) -> None:
        """Test failure carries the last attempted step's reason"""
        chain.register_resolver(Platform.YOUTUBE, ScriptedResolver("youtube", error="first"))

        result = await chain.resolve(YOUTUBE_URL)

        assert not result.success
        assert result.error == "remote: parse failed"
        assert result.data is None

    @pytest.mark.asyncio
    async def test_scheme_is_added(self, chain: ResolverChain, generic: ScriptedResolver) -> None:
        """Test input without a scheme is normalized to https"""
        generic.info = make_info()

        await chain.resolve("  example.com/page ")

        assert generic.calls == ["https://example.com/page"]

    @pytest.mark.asyncio
    async def test_invalid_url_rejected(self, chain: ResolverChain, generic: ScriptedResolver) -> None:
        """Test empty input fails before any resolver runs"""
        result = await chain.resolve("   ")

        assert not result.success
        assert result.error == "URL is required"
        assert generic.calls == []


class TestChainIsolation:
    """Test failure isolation between steps"""

    @pytest.mark.asyncio
    async def test_exception_does_not_abort_chain(self, chain: ResolverChain, generic: ScriptedResolver) -> None:
        """Test an exception escaping a resolver is treated as a failed step"""
        broken = BrokenResolver("bilibili")
        chain.register_resolver(Platform.BILIBILI, broken)
        generic.info = make_info()

        result = await chain.resolve("https://www.bilibili.com/video/BV1xx411c7mD")

        assert result.success
        assert broken.calls
        assert result.data is not None
        assert result.data.platform == Platform.BILIBILI
        assert result.data.id == "BV1xx411c7mD"

    @pytest.mark.asyncio
    async def test_disabled_resolver_skipped(self, chain: ResolverChain, generic: ScriptedResolver) -> None:
        """Test a disabled dedicated resolver is never called"""
        dedicated = ScriptedResolver("twitter", info=make_info())
        chain.register_resolver(Platform.TWITTER, dedicated, enabled=False)
        generic.info = make_info()

        await chain.resolve("https://x.com/u/status/1")

        assert dedicated.calls == []
        assert chain.list_resolvers() == {"twitter": False}

    def test_set_enabled_unknown_platform(self, chain: ResolverChain) -> None:
        """Test toggling an unregistered platform raises"""
        with pytest.raises(ValueError, match="No resolver registered"):
            chain.set_enabled(Platform.WECHAT, True)


class TestRemoteFirst:
    """Test the YouTube remote-first policy"""

    @pytest.fixture
    def remote_first_chain(
        self, generic: ScriptedResolver, fallback: ScriptedResolver, remote: ScriptedResolver
    ) -> ResolverChain:
        return ResolverChain(
            offline_client(),
            generic=generic,
            metadata_fallback=fallback,
            remote=remote,
            config=no_probe_config(youtube=YouTubeConfig(remote_first=True)),
        )

    @pytest.mark.asyncio
    async def test_remote_tried_before_dedicated(
        self, remote_first_chain: ResolverChain, remote: ScriptedResolver
    ) -> None:
        """Test a remote success skips the dedicated resolver"""
        dedicated = ScriptedResolver("youtube", info=make_info())
        remote_first_chain.register_resolver(Platform.YOUTUBE, dedicated)
        remote.info = make_info(title="Remote", id="dQw4w9WgXcQ", url=YOUTUBE_URL)

        result = await remote_first_chain.resolve(YOUTUBE_URL)

        assert result.data is not None
        assert result.data.title == "Remote"
        assert result.data.platform == Platform.YOUTUBE
        assert dedicated.calls == []

    @pytest.mark.asyncio
    async def test_remote_not_retried_at_end(
        self, remote_first_chain: ResolverChain, remote: ScriptedResolver
    ) -> None:
        """Test a failed remote-first attempt is not repeated as the last step"""
        dedicated = ScriptedResolver("youtube", error="dedicated failed")
        remote_first_chain.register_resolver(Platform.YOUTUBE, dedicated)

        result = await remote_first_chain.resolve(YOUTUBE_URL)

        assert not result.success
        assert remote.calls == [YOUTUBE_URL]
        assert dedicated.calls == [YOUTUBE_URL]

    @pytest.mark.asyncio
    async def test_other_platforms_unaffected(
        self, remote_first_chain: ResolverChain, generic: ScriptedResolver, remote: ScriptedResolver
    ) -> None:
        """Test remote-first only applies to YouTube"""
        generic.info = make_info()

        await remote_first_chain.resolve("https://example.com/page")

        assert remote.calls == []


class TestEnrichment:
    """Test caption and size enrichment"""

    @pytest.mark.asyncio
    async def test_youtube_captions_and_sizes(self) -> None:
        """Test YouTube results gain captions and missing sizes"""
        player = {
            "captions": {
                "playerCaptionsTracklistRenderer": {
                    "captionTracks": [
                        {"baseUrl": "https://www.youtube.com/api/timedtext?v=x", "languageCode": "en"}
                    ]
                }
            }
        }

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/player"):
                return httpx.Response(200, json=player)
            if request.method == "HEAD":
                return httpx.Response(200, headers={"content-length": "2048", "content-type": "video/mp4"})
            return httpx.Response(404)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        youtube = ScriptedResolver(
            "youtube", info=make_info(platform=Platform.YOUTUBE, id="dQw4w9WgXcQ", url=YOUTUBE_URL, size=None)
        )
        chain = ResolverChain(client, generic=ScriptedResolver("generic"), config=Config())
        chain.register_resolver(Platform.YOUTUBE, youtube)

        result = await chain.resolve(YOUTUBE_URL)

        assert result.data is not None
        assert result.data.subtitles is not None
        assert [s.lang for s in result.data.subtitles] == ["en"]
        assert result.data.formats[0].size == 2048

    @pytest.mark.asyncio
    async def test_existing_subtitles_kept(self) -> None:
        """Test captions are not fetched when subtitles already exist"""
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(500)

        chain = ResolverChain(
            httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            generic=ScriptedResolver("generic"),
            config=no_probe_config(),
        )
        info = make_info(platform=Platform.YOUTUBE, url=YOUTUBE_URL)
        info.subtitles = [Subtitle(lang="fr", label="French", url="https://s")]

        await chain.enrich(info)

        assert requests == []
        assert [s.lang for s in info.subtitles] == ["fr"]

    @pytest.mark.asyncio
    async def test_enrichment_failures_ignored(self) -> None:
        """Test network failures during enrichment leave the result intact"""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        chain = ResolverChain(
            httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            generic=ScriptedResolver("generic"),
            config=Config(),
        )
        info = make_info(platform=Platform.YOUTUBE, url=YOUTUBE_URL, size=None)

        await chain.enrich(info)

        assert info.subtitles is None
        assert info.formats[0].size is None


class TestBuildChain:
    """Test default chain wiring"""

    def test_registers_dedicated_resolvers(self) -> None:
        """Test every dedicated platform is registered and enabled"""
        chain = build_chain(offline_client(), Config())

        assert chain.list_resolvers() == {
            "youtube": True,
            "tiktok": True,
            "douyin": True,
            "xiaohongshu": True,
            "twitter": True,
            "instagram": True,
            "bilibili": True,
            "wechat": True,
            "adult-video": True,
        }
        assert chain.remote is not None
        assert chain.metadata_fallback is not None
