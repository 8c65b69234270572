"""YouTube caption enrichment.

The WEB player client used for resolution does not return caption tracks, so
captions come from a second player request made with the ANDROID client
identity. Translation languages offered by the player are turned into
machine-translated tracks of the first manual track.
"""

import asyncio
import re
from typing import Any, Dict, List, Optional

import httpx
import structlog

from mediagrab.core.config import EnrichmentConfig, YouTubeConfig
from mediagrab.models.video import Subtitle
from mediagrab.resolvers.youtube import PLAYER_URL

logger = structlog.get_logger(__name__)

CAPTION_FORMAT = "srv1"
ANDROID_CLIENT = {
    "clientName": "ANDROID",
    "clientVersion": "19.09.37",
    "androidSdkVersion": 30,
    "hl": "en",
    "gl": "US",
}

_FMT_PARAM = re.compile(r"fmt=[^&]+")


def caption_url(base_url: str) -> str:
    """Force the caption serialization format on a track URL."""
    if "fmt=" in base_url:
        return _FMT_PARAM.sub(f"fmt={CAPTION_FORMAT}", base_url)
    return f"{base_url}&fmt={CAPTION_FORMAT}"


def _text(value: Any) -> Optional[str]:
    if not isinstance(value, dict):
        return None
    if value.get("simpleText"):
        return value["simpleText"]
    runs = value.get("runs") or []
    if runs and isinstance(runs[0], dict):
        return runs[0].get("text")
    return None


def parse_caption_tracks(player: Dict[str, Any]) -> List[Subtitle]:
    """Build subtitles from a player response's caption tracklist.

    Args:
        player: Decoded innertube player response

    Returns:
        Native tracks followed by translated tracks for languages not already present
    """
    renderer = (player.get("captions") or {}).get("playerCaptionsTracklistRenderer") or {}
    tracks = [t for t in renderer.get("captionTracks") or [] if isinstance(t, dict)]
    translations = renderer.get("translationLanguages") or []

    subtitles: List[Subtitle] = []
    for track in tracks:
        if not track.get("baseUrl"):
            continue
        lang = track.get("languageCode") or "unknown"
        subtitles.append(
            Subtitle(
                lang=lang,
                label=_text(track.get("name")) or lang,
                url=caption_url(track["baseUrl"]),
                is_auto_generated=track.get("kind") == "asr",
            )
        )

    if not tracks or not isinstance(translations, list):
        return subtitles

    base = next((t for t in tracks if t.get("kind") != "asr"), tracks[0])
    if not base.get("baseUrl"):
        return subtitles

    existing = {s.lang for s in subtitles}
    for language in translations:
        if not isinstance(language, dict):
            continue
        code = language.get("languageCode")
        if not code or code in existing:
            continue
        existing.add(code)
        subtitles.append(
            Subtitle(
                lang=code,
                label=_text(language.get("languageName")) or code,
                url=f"{caption_url(base['baseUrl'])}&tlang={code}",
                is_auto_generated=True,
            )
        )
    return subtitles


async def fetch_captions(
    client: httpx.AsyncClient,
    video_id: str,
    youtube: Optional[YouTubeConfig] = None,
    enrichment: Optional[EnrichmentConfig] = None,
) -> List[Subtitle]:
    """Fetch caption tracks for ``video_id``. Never raises; returns [] on any failure."""
    youtube = youtube or YouTubeConfig()
    enrichment = enrichment or EnrichmentConfig()
    body = {"videoId": video_id, "context": {"client": ANDROID_CLIENT}}

    try:
        # httpx timeouts bound each read, not the whole exchange
        response = await asyncio.wait_for(
            client.post(
                PLAYER_URL,
                params={"key": youtube.innertube_key},
                json=body,
                timeout=enrichment.caption_timeout,
            ),
            enrichment.caption_timeout,
        )
        subtitles = parse_caption_tracks(response.json())
    except asyncio.TimeoutError:
        logger.debug("caption_fetch_timed_out", video_id=video_id, timeout=enrichment.caption_timeout)
        return []
    except (httpx.HTTPError, ValueError, AttributeError) as e:
        logger.debug("caption_fetch_failed", video_id=video_id, error=str(e))
        return []

    logger.debug("captions_fetched", video_id=video_id, count=len(subtitles))
    return subtitles
