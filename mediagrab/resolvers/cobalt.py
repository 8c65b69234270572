"""Cobalt media API lookups shared by the YouTube, TikTok and Instagram resolvers."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from mediagrab.resolvers.base import Resolver
from mediagrab.resolvers.exceptions import UpstreamError

COBALT_API_URL = "https://api.cobalt.tools/api/json"

DIRECT_STATUSES = ("stream", "redirect")


@dataclass
class CobaltPickerItem:
    url: str
    type: str = "video"
    quality: Optional[str] = None


@dataclass
class CobaltResponse:
    """Cobalt answers either with one direct URL or with a picker of items."""

    status: str
    url: Optional[str] = None
    filename: Optional[str] = None
    picker: List[CobaltPickerItem] = field(default_factory=list)

    @property
    def is_direct(self) -> bool:
        return self.status in DIRECT_STATUSES and bool(self.url)


def parse_cobalt_payload(data: Any) -> CobaltResponse:
    """Adapt a raw cobalt JSON body.

    Raises:
        UpstreamError: If the body is not an object or reports an error status
    """
    if not isinstance(data, dict):
        raise UpstreamError("cobalt: unexpected payload")
    status = str(data.get("status") or "")
    if status == "error":
        text = data.get("text") or "error status"
        raise UpstreamError(f"cobalt: {text}")

    picker = [
        CobaltPickerItem(url=item["url"], type=item.get("type") or "video", quality=item.get("quality"))
        for item in data.get("picker") or []
        if isinstance(item, dict) and item.get("url")
    ]
    return CobaltResponse(
        status=status,
        url=data.get("url") or None,
        filename=data.get("filename") or None,
        picker=picker,
    )


async def cobalt_lookup(resolver: Resolver, url: str, **params: Any) -> CobaltResponse:
    """POST ``url`` to cobalt on behalf of ``resolver``.

    Args:
        resolver: Calling resolver, whose client and headers are used
        url: Page URL to look up
        **params: Extra cobalt request fields (vCodec, vQuality, aFormat)

    Returns:
        Adapted CobaltResponse
    """
    body: Dict[str, Any] = {"url": url}
    body.update(params)
    data = await resolver.fetch_json(
        "POST",
        COBALT_API_URL,
        json=body,
        headers={"Content-Type": "application/json", "Accept": "application/json"},
    )
    return parse_cobalt_payload(data)
