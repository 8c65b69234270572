"""Resolver-specific exceptions.

Resolvers raise these internally; the resolver boundary converts them into
``ResolveResult.failure`` so the chain never sees an exception.
"""


class ResolverError(Exception):
    """Base exception for resolver errors."""

    pass


class InvalidURLError(ResolverError):
    """Raised when a URL cannot be handled by a resolver (missing id, bad shape)."""

    pass


class UpstreamError(ResolverError):
    """Raised when a backend returns a non-success status or a malformed payload."""

    pass


class VideoUnavailableError(ResolverError):
    """Raised when the backend answers but the content is gone or blocked."""

    pass
