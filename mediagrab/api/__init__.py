"""API routers."""

from mediagrab.api import download, health, image_proxy, metrics, resolve

__all__ = ["download", "health", "image_proxy", "metrics", "resolve"]
