"""Adult video site resolver driven by the yt-dlp command line tool."""

import asyncio
import json
import subprocess  # nosec B404 - subprocess used for returning CompletedProcess
from typing import Any, Dict, List, Optional

import httpx
import structlog

from mediagrab.core.config import DEFAULT_USER_AGENT, YtDlpConfig
from mediagrab.models.video import Platform, VideoFormat, VideoInfo
from mediagrab.resolvers.base import ResolveOptions, Resolver, stable_id
from mediagrab.resolvers.exceptions import (
    InvalidURLError,
    ResolverError,
    UpstreamError,
    VideoUnavailableError,
)

logger = structlog.get_logger(__name__)

MAX_FORMATS = 10
HLS_PROTOCOLS = ("m3u8", "m3u8_native")

RETRIABLE_PATTERNS = [
    "HTTP Error 5",
    "Connection reset",
    "Timeout",
    "Too Many Requests",
    "HTTP Error 429",
    "Unable to connect",
]

# yt-dlp stderr fragment -> user-facing message, checked in order
ERROR_MESSAGES = [
    (("Piracy", "no longer supported"), "yt-dlp no longer supports this site"),
    (("Unsupported URL",), "This site is not supported for server-side extraction"),
    (("Video unavailable", "not available"), "The video is unavailable or was removed"),
    (("Private video",), "This video is private"),
    (("HTTP Error 403", "Cloudflare"), "The site is protected by Cloudflare and blocked the server"),
]


def describe_ytdlp_error(stderr: str) -> str:
    for fragments, message in ERROR_MESSAGES:
        if any(fragment in stderr for fragment in fragments):
            return message
    return f"Extraction failed: {stderr.strip()[:200]}"


def _format_size(fmt: Dict[str, Any], duration: float) -> Optional[int]:
    size = fmt.get("filesize") or fmt.get("filesize_approx")
    if not size and fmt.get("tbr") and duration:
        size = round(fmt["tbr"] * 1000 * duration / 8)
    return int(size) if size else None


def _height_of(quality: str) -> int:
    digits = ""
    for char in quality:
        if not char.isdigit():
            break
        digits += char
    return int(digits) if digits else 0


def parse_ytdlp_info(info: Dict[str, Any], url: str) -> VideoInfo:
    """Convert ``yt-dlp --dump-json`` output into a VideoInfo.

    HLS formats are skipped and ``format_id-ext`` pairs are de-duplicated. At
    most ten formats are kept, highest resolution first.
    """
    duration = float(info.get("duration") or 0)
    formats: List[VideoFormat] = []
    seen = set()

    for fmt in info.get("formats") or []:
        if fmt.get("protocol") in HLS_PROTOCOLS or not fmt.get("url"):
            continue
        if fmt.get("video_ext") == "none" and fmt.get("audio_ext") == "none":
            continue

        format_id = fmt.get("format_id") or f"{fmt.get('height')}p"
        key = f"{format_id}-{fmt.get('ext')}"
        if key in seen:
            continue
        seen.add(key)

        height = fmt.get("height")
        formats.append(
            VideoFormat(
                id=fmt.get("format_id") or f"fmt-{len(formats)}",
                quality=f"{height}p" if height else format_id,
                url=fmt["url"],
                container=fmt.get("ext") or "mp4",
                has_video=fmt.get("vcodec") != "none" and fmt.get("video_ext") != "none",
                has_audio=fmt.get("acodec") != "none" and fmt.get("audio_ext") != "none",
                size=_format_size(fmt, duration),
                bitrate=round(fmt["tbr"] * 1000) if fmt.get("tbr") else None,
            )
        )

    if not formats and info.get("url"):
        formats.append(VideoFormat(id="default", quality="best", url=info["url"]))

    formats.sort(key=lambda f: _height_of(f.quality), reverse=True)

    thumbnails = info.get("thumbnails") or [{}]
    return VideoInfo(
        id=str(info.get("id") or ""),
        platform=Platform.ADULT_VIDEO,
        title=info.get("title") or info.get("fulltitle") or "Video",
        description=info.get("description") or "",
        thumbnail=info.get("thumbnail") or thumbnails[0].get("url") or "",
        duration=int(duration),
        author=info.get("uploader") or info.get("channel") or "",
        formats=formats[:MAX_FORMATS],
        original_url=url,
    )


class AdultVideoResolver(Resolver):
    """Resolves supported adult video sites with ``yt-dlp --dump-json``."""

    name = "adult-video"
    platform = Platform.ADULT_VIDEO

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: Optional[YtDlpConfig] = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        super().__init__(client, user_agent)
        self.config = config or YtDlpConfig()

    async def extract(self, url: str, options: ResolveOptions) -> VideoInfo:
        cmd = [
            self.config.binary,
            "--dump-json",
            "--no-warnings",
            "--no-check-certificate",
            "--user-agent",
            self.user_agent,
            url,
        ]

        try:
            result = await self._execute_with_retry(cmd, timeout=self.config.timeout)
        except UpstreamError as e:
            message = describe_ytdlp_error(str(e))
            if "unavailable" in message or "private" in message:
                raise VideoUnavailableError(message) from e
            if "not supported" in message or "no longer supports" in message:
                raise InvalidURLError(message) from e
            raise UpstreamError(message) from e

        try:
            info = json.loads(result.stdout.decode())
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error("ytdlp_output_parse_failed", error=str(e))
            raise UpstreamError("Failed to parse yt-dlp output") from e

        video = parse_ytdlp_info(info, url)
        if not video.formats:
            raise VideoUnavailableError("No downloadable formats found")
        if not video.id:
            video.id = stable_id(url, "adult")
        return video

    def _is_retriable_error(self, error_msg: str) -> bool:
        return any(pattern in error_msg for pattern in RETRIABLE_PATTERNS)

    async def _execute_with_retry(  # noqa: C901
        self,
        cmd: List[str],
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        """Run yt-dlp, retrying network-type failures with backoff.

        Args:
            cmd: Command to execute as list of strings
            timeout: Optional timeout in seconds for each attempt

        Returns:
            CompletedProcess with stdout and stderr

        Raises:
            UpstreamError: If all attempts fail or a non-retriable error occurs
        """
        attempts = max(self.config.retry_attempts, 1)
        backoff = self.config.retry_backoff or [0]
        last_error: Optional[str] = None

        for attempt in range(attempts):
            wait_time = backoff[min(attempt, len(backoff) - 1)]
            try:
                process = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
                try:
                    stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
                except asyncio.TimeoutError:
                    process.kill()
                    await process.wait()
                    raise

                if process.returncode == 0:
                    return subprocess.CompletedProcess(cmd, process.returncode, stdout, stderr)

                error_msg = stderr.decode(errors="replace") if stderr else "Unknown error"
                if not self._is_retriable_error(error_msg):
                    raise UpstreamError(error_msg)

                last_error = error_msg
                if attempt < attempts - 1:
                    logger.warning(
                        "ytdlp_retrying",
                        attempt=attempt + 1,
                        max_attempts=attempts,
                        wait_seconds=wait_time,
                        error=error_msg[:200],
                    )
                    await asyncio.sleep(wait_time)

            except asyncio.TimeoutError:
                last_error = f"Timeout after {timeout}s"
                logger.warning("ytdlp_timeout", attempt=attempt + 1, max_attempts=attempts, timeout=timeout)
                if attempt < attempts - 1:
                    await asyncio.sleep(wait_time)

            except ResolverError:
                raise

            except FileNotFoundError:
                logger.error("ytdlp_not_found", binary=cmd[0])
                raise UpstreamError("yt-dlp is not installed or not in PATH")

        raise UpstreamError(f"Failed after {attempts} attempts: {last_error}")
