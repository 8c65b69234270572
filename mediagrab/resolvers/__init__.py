"""URL resolution: platform detection, per-platform resolvers and the fallback chain."""

from mediagrab.resolvers.base import ResolveOptions, Resolver
from mediagrab.resolvers.chain import ResolverChain, build_chain
from mediagrab.resolvers.detector import detect, extract_video_id, normalize

__all__ = [
    "ResolveOptions",
    "Resolver",
    "ResolverChain",
    "build_chain",
    "detect",
    "extract_video_id",
    "normalize",
]
