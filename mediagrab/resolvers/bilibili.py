"""Bilibili resolver using the web view and playurl APIs.

An optional ``SESSDATA`` session credential (passed through resolve options)
unlocks the higher quality ids.
"""

import re
from typing import Any, Dict, List, Optional

import structlog

from mediagrab.models.video import Platform, VideoFormat, VideoInfo
from mediagrab.resolvers.base import ResolveOptions, Resolver, https
from mediagrab.resolvers.exceptions import InvalidURLError, UpstreamError, VideoUnavailableError

logger = structlog.get_logger(__name__)

VIEW_API_URL = "https://api.bilibili.com/x/web-interface/view"
PLAYURL_API_URL = "https://api.bilibili.com/x/player/playurl"
BILIBILI_REFERER = "https://www.bilibili.com"

QUALITY_MAP: Dict[int, str] = {
    127: "8K",
    126: "Dolby Vision",
    125: "HDR",
    120: "4K",
    116: "1080P60",
    112: "1080P+",
    80: "1080P",
    74: "720P60",
    64: "720P",
    32: "480P",
    16: "360P",
    6: "240P",
}

_BVID = re.compile(r"BV([a-zA-Z0-9]+)")
_AVID = re.compile(r"av(\d+)", re.IGNORECASE)


def extract_bilibili_id(url: str) -> Optional[str]:
    match = _BVID.search(url)
    if match:
        return f"BV{match.group(1)}"
    match = _AVID.search(url)
    if match:
        return f"av{match.group(1)}"
    return None


def parse_codec(codecs: str) -> str:
    """Map a DASH ``codecs`` string to a short codec tag."""
    codecs = codecs or ""
    if codecs.startswith(("avc", "h264")):
        return "h264"
    if codecs.startswith(("hev", "h265", "hevc")):
        return "hevc"
    if codecs.startswith(("av01", "av1")):
        return "av1"
    if codecs.startswith(("mp4a", "aac")):
        return "aac"
    if codecs.startswith("flac"):
        return "flac"
    return codecs.split(".")[0] or "unknown"


def quality_label(quality_id: int) -> str:
    return QUALITY_MAP.get(quality_id, str(quality_id))


def parse_playurl(data: Dict[str, Any], duration: int) -> List[VideoFormat]:
    """Convert a playurl ``data`` object into formats.

    DASH video keeps the highest-bandwidth stream per quality id; DASH audio
    is kept as is. Legacy ``durl`` segments are used only when DASH is absent.
    """
    formats: List[VideoFormat] = []
    dash = data.get("dash") or {}

    best_by_quality: Dict[int, Dict[str, Any]] = {}
    for stream in dash.get("video") or []:
        existing = best_by_quality.get(stream["id"])
        if existing is None or stream.get("bandwidth", 0) > existing.get("bandwidth", 0):
            best_by_quality[stream["id"]] = stream

    for quality_id, stream in best_by_quality.items():
        codec = parse_codec(stream.get("codecs", ""))
        bandwidth = int(stream.get("bandwidth") or 0)
        frame_rate = stream.get("frameRate")
        formats.append(
            VideoFormat(
                id=f"bili-video-{quality_id}-{codec}",
                quality=quality_label(quality_id),
                url=stream.get("baseUrl") or stream.get("base_url", ""),
                has_audio=False,
                bitrate=bandwidth,
                codec=codec,
                fps=round(float(frame_rate)) if frame_rate else None,
                size=round(bandwidth * duration / 8) if bandwidth else None,
            )
        )

    for stream in dash.get("audio") or []:
        bandwidth = int(stream.get("bandwidth") or 0)
        kbps = round(bandwidth / 1000)
        formats.append(
            VideoFormat(
                id=f"bili-audio-{stream['id']}-{kbps}",
                quality=f"{kbps}kbps",
                url=stream.get("baseUrl") or stream.get("base_url", ""),
                container="m4a",
                has_video=False,
                bitrate=bandwidth,
                codec=parse_codec(stream.get("codecs", "")),
                size=round(bandwidth * duration / 8) if bandwidth else None,
            )
        )

    if not formats:
        for item in data.get("durl") or []:
            formats.append(
                VideoFormat(
                    id=f"bili-durl-{item.get('order', len(formats) + 1)}",
                    quality=quality_label(int(data.get("quality") or 0)),
                    url=item["url"],
                    container="flv",
                    size=item.get("size"),
                )
            )

    return formats


class BilibiliResolver(Resolver):
    """Resolves BV/av video pages and b23.tv short links."""

    name = "bilibili"
    platform = Platform.BILIBILI

    def _api_headers(self, sessdata: Optional[str]) -> Dict[str, str]:
        headers = {"Referer": BILIBILI_REFERER}
        if sessdata:
            headers["Cookie"] = f"SESSDATA={sessdata}"
        return headers

    async def extract(self, url: str, options: ResolveOptions) -> VideoInfo:
        real_url = await self.final_url(url, method="GET") if "b23.tv" in url else url

        video_id = extract_bilibili_id(real_url)
        if not video_id:
            raise InvalidURLError("Could not extract a Bilibili video id from the URL")

        sessdata = options.credential(Platform.BILIBILI)
        headers = self._api_headers(sessdata)

        params = {"aid": video_id[2:]} if video_id.startswith("av") else {"bvid": video_id}
        view = await self.fetch_json("GET", VIEW_API_URL, params=params, headers=headers)
        if view.get("code") != 0 or not view.get("data"):
            raise VideoUnavailableError(
                f"Bilibili video info unavailable: {view.get('message') or view.get('code')}"
            )
        info = view["data"]
        pages = info.get("pages") or []
        cid = pages[0]["cid"] if pages else info.get("cid")
        duration = int(info.get("duration") or 0)

        logger.debug("bilibili_playurl_request", bvid=info.get("bvid"), with_session=bool(sessdata))
        play = await self.fetch_json(
            "GET",
            PLAYURL_API_URL,
            params={
                "bvid": info.get("bvid"),
                "cid": str(cid),
                "qn": "127",
                "fnver": "0",
                "fnval": "4048",
                "fourk": "1",
            },
            headers=headers,
        )
        if play.get("code") != 0 or not play.get("data"):
            raise UpstreamError(f"Bilibili playurl failed with code {play.get('code')}")

        formats = parse_playurl(play["data"], duration)
        if not formats:
            raise UpstreamError("Bilibili returned no streams")

        owner = info.get("owner") or {}
        return VideoInfo(
            id=info.get("bvid") or video_id,
            platform=Platform.BILIBILI,
            title=info.get("title") or "",
            description=info.get("desc") or "",
            thumbnail=https(info.get("pic")),
            duration=duration,
            author=owner.get("name") or "",
            author_avatar=https(owner.get("face")),
            formats=formats,
            original_url=real_url,
        )
