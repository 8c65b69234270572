"""Ordered resolver chain with fallback, result merging and enrichment."""

import time
from typing import Dict, FrozenSet, Optional

import httpx
import structlog

from mediagrab.core.config import Config
from mediagrab.core.metrics import MetricsCollector
from mediagrab.core.validation import url_validator
from mediagrab.models.video import Platform, ResolveResult, VideoInfo
from mediagrab.resolvers.adult import AdultVideoResolver
from mediagrab.resolvers.base import ResolveOptions, Resolver, is_meaningful_title
from mediagrab.resolvers.bilibili import BilibiliResolver
from mediagrab.resolvers.captions import fetch_captions
from mediagrab.resolvers.detector import detect, extract_video_id, normalize
from mediagrab.resolvers.douyin import DouyinResolver
from mediagrab.resolvers.generic import GenericResolver
from mediagrab.resolvers.instagram import InstagramResolver
from mediagrab.resolvers.metadata_fallback import MetadataFallbackResolver
from mediagrab.resolvers.remote import RemoteFallbackResolver
from mediagrab.resolvers.size_probe import backfill_sizes
from mediagrab.resolvers.tiktok import TikTokResolver
from mediagrab.resolvers.twitter import TwitterResolver
from mediagrab.resolvers.wechat import WeChatResolver
from mediagrab.resolvers.xiaohongshu import XiaohongshuResolver
from mediagrab.resolvers.youtube import YouTubeResolver
from mediagrab.services.remote_client import RemoteServiceClient

logger = structlog.get_logger(__name__)

# Platforms whose generic-scraper results are backfilled from the metadata
# fallback service, and which may query that service directly.
METADATA_BACKFILL_PLATFORMS: FrozenSet[Platform] = frozenset(
    {Platform.DOUYIN, Platform.XIAOHONGSHU, Platform.TIKTOK, Platform.INSTAGRAM}
)

NO_RESULT_MESSAGE = "Could not resolve this link. Check that it points to a video page"


def merge_metadata(base: VideoInfo, extra: VideoInfo) -> VideoInfo:
    """Overlay descriptive fields from ``extra`` onto ``base`` in place.

    Formats always stay those of ``base``. The title is replaced only when
    the base title is missing or a placeholder.
    """
    if extra.thumbnail:
        base.thumbnail = extra.thumbnail
    if extra.author:
        base.author = extra.author
    if extra.duration:
        base.duration = extra.duration
    if is_meaningful_title(extra.title) and not is_meaningful_title(base.title):
        base.title = extra.title
    return base


class ResolverChain:
    """Runs resolution steps in a fixed order until one succeeds.

    Order: optional YouTube remote-first exit, the platform's dedicated
    resolver, the generic scraper (merged with metadata-fallback fields),
    the metadata-fallback service, then the remote service. Every step is
    failure-isolated; the chain returns the last step's reason on failure.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        generic: Resolver,
        metadata_fallback: Optional[Resolver] = None,
        remote: Optional[Resolver] = None,
        config: Optional[Config] = None,
    ) -> None:
        self.client = client
        self.generic = generic
        self.metadata_fallback = metadata_fallback
        self.remote = remote
        self.config = config or Config()
        self._resolvers: Dict[Platform, Resolver] = {}
        self._enabled: Dict[Platform, bool] = {}

    def register_resolver(self, platform: Platform, resolver: Resolver, enabled: bool = True) -> None:
        """
        Register the dedicated resolver for a platform.

        Args:
            platform: Platform the resolver handles
            resolver: Resolver instance
            enabled: Whether the resolver takes part in the chain
        """
        self._resolvers[platform] = resolver
        self._enabled[platform] = enabled
        logger.info("resolver_registered", platform=platform.value, resolver=resolver.name, enabled=enabled)

    def set_enabled(self, platform: Platform, enabled: bool) -> None:
        """
        Enable or disable a registered resolver.

        Raises:
            ValueError: If no resolver is registered for the platform
        """
        if platform not in self._resolvers:
            raise ValueError(f"No resolver registered for '{platform.value}'")
        self._enabled[platform] = enabled
        logger.info("resolver_toggled", platform=platform.value, enabled=enabled)

    def dedicated_for(self, platform: Platform) -> Optional[Resolver]:
        if not self._enabled.get(platform, False):
            return None
        return self._resolvers.get(platform)

    def list_resolvers(self) -> Dict[str, bool]:
        return {p.value: self._enabled.get(p, False) for p in self._resolvers}

    async def _run_step(
        self,
        step: str,
        resolver: Resolver,
        url: str,
        platform: Platform,
        options: ResolveOptions,
    ) -> ResolveResult:
        logger.info("resolver_attempt", step=step, resolver=resolver.name, platform=platform.value, url=url)
        started = time.perf_counter()
        try:
            result = await resolver.resolve(url, options)
        except Exception as e:
            logger.warning(
                "resolver_failed",
                step=step,
                resolver=resolver.name,
                platform=platform.value,
                url=url,
                error=str(e),
                exc_info=True,
            )
            MetricsCollector.record_resolver_attempt(resolver.name, "exception", time.perf_counter() - started)
            return ResolveResult.failure(str(e) or type(e).__name__)

        duration = time.perf_counter() - started
        if result.success and result.data is not None:
            logger.info(
                "resolver_succeeded",
                step=step,
                resolver=resolver.name,
                platform=platform.value,
                url=url,
                formats=len(result.data.formats),
            )
            MetricsCollector.record_resolver_attempt(resolver.name, "success", duration)
            return result

        logger.info(
            "resolver_failed",
            step=step,
            resolver=resolver.name,
            platform=platform.value,
            url=url,
            error=result.error,
        )
        MetricsCollector.record_resolver_attempt(resolver.name, "failure", duration)
        return ResolveResult.failure(result.error or f"{resolver.name} failed")

    def _uses_metadata_fallback(self, platform: Platform) -> bool:
        return (
            self.metadata_fallback is not None
            and self.config.metadata_fallback.enabled
            and platform in METADATA_BACKFILL_PLATFORMS
        )

    async def _generic_step(self, url: str, platform: Platform, options: ResolveOptions) -> ResolveResult:
        result = await self._run_step("generic", self.generic, url, platform, options)
        if not result.success or result.data is None:
            return result

        info = result.data
        if platform != Platform.UNKNOWN:
            info.platform = platform
            info.id = extract_video_id(url, platform) or info.id
        else:
            info.platform = Platform.OTHER

        if self._uses_metadata_fallback(platform):
            extra = await self._run_step("metadata-merge", self.metadata_fallback, url, platform, options)
            if extra.success and extra.data is not None:
                merge_metadata(info, extra.data)
                logger.debug("metadata_merged", url=url, platform=platform.value, title=info.title)
        return result

    async def _remote_step(self, url: str, platform: Platform, options: ResolveOptions) -> ResolveResult:
        result = await self._run_step("remote", self.remote, url, platform, options)
        if result.success and result.data is not None and platform != Platform.UNKNOWN:
            result.data.platform = platform
        return result

    async def resolve(self, raw_url: str, options: Optional[ResolveOptions] = None) -> ResolveResult:
        """Resolve a URL through the chain.

        Args:
            raw_url: User input; whitespace is trimmed and a missing scheme becomes https
            options: Per-request hints such as platform credentials

        Returns:
            Successful result from the first step that produced one, enriched
            with captions and sizes, or the last attempted step's failure
        """
        options = options or ResolveOptions()
        url = normalize(raw_url)
        validation = url_validator.validate(url)
        if not validation.is_valid:
            return ResolveResult.failure(validation.error_message or "Invalid URL")

        platform = detect(url)
        log = logger.bind(url=url, platform=platform.value)
        result = ResolveResult.failure(NO_RESULT_MESSAGE)
        remote_tried = False

        if platform == Platform.YOUTUBE and self.config.youtube.remote_first and self.remote is not None:
            log.debug("youtube_remote_first")
            result = await self._remote_step(url, platform, options)
            remote_tried = True

        if not result.success:
            dedicated = self.dedicated_for(platform)
            if dedicated is not None:
                result = await self._run_step("dedicated", dedicated, url, platform, options)

        if not result.success:
            result = await self._generic_step(url, platform, options)

        if not result.success and self._uses_metadata_fallback(platform):
            result = await self._run_step("metadata-fallback", self.metadata_fallback, url, platform, options)
            if result.success and result.data is not None:
                result.data.platform = platform

        if not result.success and self.remote is not None and not remote_tried:
            result = await self._remote_step(url, platform, options)

        if not result.success or result.data is None:
            log.info("resolution_failed", error=result.error)
            return result

        await self.enrich(result.data)
        log.info("resolution_succeeded", title=result.data.title, formats=len(result.data.formats))
        return result

    async def enrich(self, info: VideoInfo) -> None:
        """Attach YouTube captions and backfill format sizes. Never raises."""
        if info.platform == Platform.YOUTUBE and not info.subtitles:
            video_id = extract_video_id(info.original_url, Platform.YOUTUBE) or info.id
            try:
                subtitles = await fetch_captions(
                    self.client, video_id, self.config.youtube, self.config.enrichment
                )
            except Exception as e:
                logger.warning("caption_enrichment_failed", video_id=video_id, error=str(e))
                subtitles = []
            if subtitles:
                info.subtitles = subtitles

        try:
            await backfill_sizes(self.client, info.formats, self.config.enrichment)
        except Exception as e:
            logger.warning("size_enrichment_failed", url=info.original_url, error=str(e))


def build_chain(
    client: httpx.AsyncClient,
    config: Optional[Config] = None,
    remote_client: Optional[RemoteServiceClient] = None,
) -> ResolverChain:
    """Wire every resolver into a chain sharing one HTTP client."""
    config = config or Config()
    user_agent = config.http.user_agent
    remote_client = remote_client or RemoteServiceClient(client, config.remote)

    chain = ResolverChain(
        client,
        generic=GenericResolver(client, user_agent),
        metadata_fallback=MetadataFallbackResolver(client, config.metadata_fallback, user_agent),
        remote=RemoteFallbackResolver(remote_client),
        config=config,
    )
    chain.register_resolver(Platform.YOUTUBE, YouTubeResolver(client, config.youtube, user_agent))
    chain.register_resolver(Platform.TIKTOK, TikTokResolver(client, user_agent))
    chain.register_resolver(Platform.DOUYIN, DouyinResolver(client, user_agent))
    chain.register_resolver(
        Platform.XIAOHONGSHU, XiaohongshuResolver(client, config.metadata_fallback, user_agent)
    )
    chain.register_resolver(Platform.TWITTER, TwitterResolver(client, user_agent))
    chain.register_resolver(Platform.INSTAGRAM, InstagramResolver(client, user_agent))
    chain.register_resolver(Platform.BILIBILI, BilibiliResolver(client, user_agent))
    chain.register_resolver(Platform.WECHAT, WeChatResolver(client, user_agent))
    chain.register_resolver(Platform.ADULT_VIDEO, AdultVideoResolver(client, config.ytdlp, user_agent))
    return chain
