"""Download-path failure taxonomy."""

from typing import Optional


class DownloadFailure(Exception):
    """Base exception for download failures."""

    pass


class InvalidInputError(DownloadFailure):
    """Raised when the download request is missing a URL or is malformed."""

    pass


class UpstreamFailureError(DownloadFailure):
    """Raised when the media source or the remote service answers with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteJobError(DownloadFailure):
    """Raised when a remote transcoding task reports the error status."""

    def __init__(self, message: str, task_id: Optional[str] = None):
        super().__init__(message)
        self.task_id = task_id


class RemoteJobTimeout(DownloadFailure):
    """Raised when a remote task does not finish before the polling deadline."""

    def __init__(self, message: str, task_id: Optional[str] = None):
        super().__init__(message)
        self.task_id = task_id


class PayloadTooLargeError(DownloadFailure):
    """Raised when the declared size exceeds the direct-proxy cap."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"File size {size} bytes exceeds the {limit} byte limit")
        self.size = size
        self.limit = limit


class DownloadCancelled(DownloadFailure):
    """Raised when the user aborts a download. Not an error from the user's view."""

    pass
