"""WeChat Channels resolver.

Channels has no public API; users paste a captured direct media link, which
is validated with a HEAD request.
"""

import time

from mediagrab.models.video import Platform, VideoFormat, VideoInfo
from mediagrab.resolvers.base import ResolveOptions, Resolver
from mediagrab.resolvers.exceptions import InvalidURLError

# Captured links are signed for roughly one day.
LINK_LIFETIME_SECONDS = 86400


class WeChatResolver(Resolver):
    name = "wechat"
    platform = Platform.WECHAT

    async def extract(self, url: str, options: ResolveOptions) -> VideoInfo:
        response = await self.fetch("HEAD", url)

        content_type = response.headers.get("content-type", "")
        if "video" not in content_type:
            raise InvalidURLError(
                "Not a direct video link. Capture the video's media URL and paste it here"
            )

        length = response.headers.get("content-length")
        size = int(length) if length and length.isdigit() else None
        stamp = int(time.time() * 1000)

        return VideoInfo(
            id=f"wechat-{stamp}",
            platform=Platform.WECHAT,
            title="WeChat Channels video",
            formats=[VideoFormat(id=f"wechat-{stamp}", quality="original", url=url, size=size)],
            original_url=url,
            expires_in=LINK_LIFETIME_SECONDS,
        )
