"""Twitter/X resolver backed by the fxtwitter API."""

import re
from typing import Any, Dict, List, Optional

from mediagrab.models.video import Platform, VideoFormat, VideoInfo
from mediagrab.resolvers.base import ResolveOptions, Resolver
from mediagrab.resolvers.detector import extract_video_id
from mediagrab.resolvers.exceptions import InvalidURLError, UpstreamError, VideoUnavailableError

FXTWITTER_API_URL = "https://api.fxtwitter.com/status/{tweet_id}"

_RESOLUTION_IN_URL = re.compile(r"/(\d+)x(\d+)/")


def resolution_label(height: int) -> str:
    if height >= 1080:
        return "1080p"
    if height >= 720:
        return "720p"
    if height >= 480:
        return "480p"
    if height >= 360:
        return "360p"
    return f"{height or '?'}p"


def _height_from_url(url: str, fallback: int = 0) -> int:
    match = _RESOLUTION_IN_URL.search(url)
    return int(match.group(2)) if match else fallback


def parse_tweet(tweet_id: str, tweet: Dict[str, Any], url: str) -> VideoInfo:
    """Build a VideoInfo from an fxtwitter ``tweet`` object.

    Raises:
        VideoUnavailableError: If the tweet carries no video
    """
    media = tweet.get("media") or {}
    videos: List[Dict[str, Any]] = media.get("videos") or []
    first_video = videos[0] if videos else {}
    duration = float(first_video.get("duration") or 0)

    formats: List[VideoFormat] = []
    seen = set()

    def add(format_url: str, height: int, bitrate: Optional[int], size: Optional[int]) -> None:
        if format_url in seen:
            return
        seen.add(format_url)
        formats.append(
            VideoFormat(
                id=f"twitter-{tweet_id}-{len(formats)}",
                quality=resolution_label(height),
                url=format_url,
                bitrate=bitrate,
                size=size,
            )
        )

    for video in videos:
        for fmt in video.get("formats") or []:
            format_url = fmt.get("url") or ""
            if fmt.get("container") != "mp4" and ".mp4" not in format_url:
                continue
            bitrate = fmt.get("bitrate")
            size = round(duration * bitrate / 8) if bitrate and duration else None
            add(format_url, _height_from_url(format_url, video.get("height") or 0), bitrate, size)

        for variant in video.get("variants") or []:
            if variant.get("content_type") == "video/mp4" and variant.get("url"):
                add(variant["url"], _height_from_url(variant["url"]), variant.get("bitrate"), None)

    if not formats and first_video.get("url"):
        formats.append(VideoFormat(id=f"twitter-{tweet_id}", quality="original", url=first_video["url"]))

    if not formats:
        raise VideoUnavailableError("This tweet does not contain a video")

    formats.sort(key=lambda f: f.bitrate or 0, reverse=True)

    author = tweet.get("author") or {}
    all_media = media.get("all") or [{}]
    text = tweet.get("text") or "Twitter video"
    return VideoInfo(
        id=tweet_id,
        platform=Platform.TWITTER,
        title=text,
        description=text,
        thumbnail=first_video.get("thumbnail_url") or all_media[0].get("thumbnail_url") or "",
        duration=int(duration),
        author=author.get("name") or "",
        author_avatar=author.get("avatar_url") or "",
        formats=formats,
        original_url=url,
    )


class TwitterResolver(Resolver):
    """Resolves tweet URLs on twitter.com and x.com."""

    name = "twitter"
    platform = Platform.TWITTER

    async def extract(self, url: str, options: ResolveOptions) -> VideoInfo:
        tweet_id = extract_video_id(url, Platform.TWITTER)
        if not tweet_id:
            raise InvalidURLError("Could not extract a tweet id from the URL")

        data = await self.fetch_json("GET", FXTWITTER_API_URL.format(tweet_id=tweet_id))
        if data.get("code") != 200 or not data.get("tweet"):
            raise UpstreamError("Could not fetch the tweet; it may be private or deleted")

        return parse_tweet(tweet_id, data["tweet"], url)
