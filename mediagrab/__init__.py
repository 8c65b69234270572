"""mediagrab - multi-platform media resolution and delivery service."""

__version__ = "1.0.0"
