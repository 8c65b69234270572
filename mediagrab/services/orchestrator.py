"""Download orchestration.

Each request is routed either to the direct proxy (fetch the media URL here
and re-stream it) or to the remote transcoding service (submit a job, poll
it to completion, then stream the produced file). Both paths share one
``CancellationToken`` so a client disconnect aborts whatever network call is
in flight.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar, Union

import httpx
import structlog

from mediagrab.core.config import DownloadsConfig, HttpConfig, RemoteServiceConfig
from mediagrab.core.http import browser_headers
from mediagrab.core.logging import new_job_id
from mediagrab.core.metrics import MetricsCollector
from mediagrab.core.validation import content_type_for, output_filename, url_validator
from mediagrab.models.job import DownloadAction, DownloadJob, DownloadRoute, RemoteJobState, RemoteTaskStatus
from mediagrab.services.exceptions import (
    DownloadCancelled,
    DownloadFailure,
    InvalidInputError,
    PayloadTooLargeError,
    RemoteJobError,
    RemoteJobTimeout,
    UpstreamFailureError,
)
from mediagrab.services.remote_client import RemoteServiceClient

logger = structlog.get_logger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[int, Optional[int]], None]

REMOTE_ACTIONS = frozenset({DownloadAction.MERGE, DownloadAction.TRIM, DownloadAction.EXTRACT_AUDIO})
HLS_MARKER = ".m3u8"


class CancellationToken:
    """One-shot cancellation signal shared by every network call of a download.

    ``cancel`` is idempotent and safe to call after the download finished.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise DownloadCancelled("Download cancelled")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first, in which case it is aborted.

        Raises:
            DownloadCancelled: If the token was or becomes cancelled
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise DownloadCancelled("Download cancelled")
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise DownloadCancelled("Download cancelled")


def decide_route(job: DownloadJob) -> DownloadRoute:
    """Pick the delivery path for a job.

    The remote service is needed for muxing, trimming, audio extraction,
    re-resolution of a specific format id and HLS manifests.
    """
    if job.action in REMOTE_ACTIONS:
        return DownloadRoute.REMOTE
    if job.format_id:
        return DownloadRoute.REMOTE
    if HLS_MARKER in job.video_url or (job.audio_url and HLS_MARKER in job.audio_url):
        return DownloadRoute.REMOTE
    return DownloadRoute.DIRECT


async def _next_chunk(iterator: AsyncIterator[bytes]) -> Optional[bytes]:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


def _content_length(response: httpx.Response) -> Optional[int]:
    """Length of the body as relayed.

    httpx decodes gzip, deflate and br bodies, so for an encoded response the
    header only gives the compressed length and the relayed length is unknown.
    """
    if response.headers.get("content-encoding", "identity").lower() not in ("", "identity"):
        return None
    value = response.headers.get("content-length", "")
    return int(value) if value.isdigit() else None


@dataclass
class DownloadStream:
    """An open upstream response ready to be relayed to the client."""

    route: DownloadRoute
    content_type: str
    filename: str
    content_length: Optional[int]
    response: httpx.Response
    token: CancellationToken
    chunk_size: int = 65536
    on_progress: Optional[ProgressCallback] = None
    max_bytes: Optional[int] = None
    bytes_sent: int = field(default=0, init=False)
    _closed: bool = field(default=False, init=False)

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        """Yield body chunks, reporting progress and honouring cancellation.

        Raises:
            DownloadCancelled: If the token fires mid-stream
            PayloadTooLargeError: If the relayed body grows past ``max_bytes``
        """
        outcome = "failed"
        MetricsCollector.download_started()
        try:
            iterator = self.response.aiter_bytes(self.chunk_size).__aiter__()
            while True:
                chunk = await self.token.guard(_next_chunk(iterator))
                if chunk is None:
                    break
                self.bytes_sent += len(chunk)
                if self.max_bytes is not None and self.bytes_sent > self.max_bytes:
                    raise PayloadTooLargeError(self.bytes_sent, self.max_bytes)
                if self.on_progress is not None:
                    self.on_progress(self.bytes_sent, self.content_length)
                yield chunk
            outcome = "success"
        except DownloadCancelled:
            outcome = "cancelled"
            logger.info("download_cancelled", route=self.route.value, bytes_sent=self.bytes_sent)
            raise
        except PayloadTooLargeError:
            outcome = "too_large"
            logger.warning("download_too_large", route=self.route.value, bytes_sent=self.bytes_sent)
            raise
        except httpx.HTTPError as e:
            logger.warning("download_stream_failed", route=self.route.value, error=str(e))
            raise UpstreamFailureError(f"Stream interrupted: {type(e).__name__}") from e
        finally:
            MetricsCollector.download_finished()
            MetricsCollector.record_download(self.route.value, outcome, self.bytes_sent)
            await self.aclose()

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            await self.response.aclose()


@dataclass
class DownloadRedirect:
    """The remote service finished with a direct link instead of a file body."""

    url: str
    filename: str


DownloadOutcome = Union[DownloadStream, DownloadRedirect]


class DownloadOrchestrator:
    """Executes DownloadJobs over the direct or remote path.

    ``clock`` and ``sleep`` exist so polling can be driven without real time.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        remote: RemoteServiceClient,
        downloads: Optional[DownloadsConfig] = None,
        remote_config: Optional[RemoteServiceConfig] = None,
        http: Optional[HttpConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.remote = remote
        self.downloads = downloads or DownloadsConfig()
        self.remote_config = remote_config or remote.config
        self.user_agent = (http or HttpConfig()).user_agent
        self._clock = clock
        self._sleep = sleep

    def validate(self, job: DownloadJob) -> None:
        """
        Reject malformed jobs before any network call.

        Raises:
            InvalidInputError: If URLs, trim bounds or the merge input are missing or invalid
        """
        check = url_validator.validate(job.video_url)
        if not check.is_valid:
            raise InvalidInputError(check.error_message or "Missing video URL")
        if job.audio_url and not url_validator.is_valid(job.audio_url):
            raise InvalidInputError("Invalid audio URL")
        if job.action == DownloadAction.MERGE and not job.audio_url:
            raise InvalidInputError("Merging requires an audio URL")
        if job.action == DownloadAction.TRIM:
            if job.trim is None:
                raise InvalidInputError("Trimming requires start and end times")
            if job.trim.start < 0 or job.trim.end <= job.trim.start:
                raise InvalidInputError("Trim end must be after a non-negative start")

    def _filename(self, job: DownloadJob) -> str:
        return output_filename(
            job.filename,
            extract_audio=job.action == DownloadAction.EXTRACT_AUDIO,
            audio_format=job.audio_format or self.downloads.default_audio_format,
        )

    def _content_type(self, job: DownloadJob) -> str:
        return content_type_for(
            job.action == DownloadAction.EXTRACT_AUDIO,
            job.audio_format or self.downloads.default_audio_format,
        )

    async def execute(
        self,
        job: DownloadJob,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DownloadOutcome:
        """Run a download job up to the point where bytes can be relayed.

        Args:
            job: The download request
            token: Cancellation token shared with the caller
            on_progress: Called with (bytes_sent, total_or_None) after each chunk

        Returns:
            An open DownloadStream, or a DownloadRedirect for link-only completions

        Raises:
            InvalidInputError: Malformed job
            PayloadTooLargeError: Declared size above the direct-proxy cap
            UpstreamFailureError: Source or remote service answered with an error
            RemoteJobError: Remote task reported the error status
            RemoteJobTimeout: Remote task did not finish before the deadline
            DownloadCancelled: Token fired during the operation
        """
        token = token or CancellationToken()
        self.validate(job)
        if job.action == DownloadAction.EXTRACT_AUDIO:
            job.audio_format = job.audio_format or self.downloads.default_audio_format
            job.audio_bitrate = job.audio_bitrate or self.downloads.default_audio_bitrate

        route = decide_route(job)
        log = logger.bind(job_id=new_job_id(), route=route.value, action=job.action.value)
        log.info("download_started", url=job.video_url[:200], format_id=job.format_id)

        try:
            if route == DownloadRoute.DIRECT:
                return await self._direct(job, token, on_progress)
            return await self._remote(job, token, on_progress, log)
        except DownloadCancelled:
            log.info("download_cancelled")
            MetricsCollector.record_download(route.value, "cancelled")
            raise
        except DownloadFailure as e:
            log.warning("download_failed", error=str(e), error_type=type(e).__name__)
            MetricsCollector.record_download(route.value, _outcome_for(e))
            raise

    async def _direct(
        self, job: DownloadJob, token: CancellationToken, on_progress: Optional[ProgressCallback]
    ) -> DownloadStream:
        headers = browser_headers(job.video_url, job.referer, self.user_agent)
        headers["Accept-Encoding"] = "identity"
        request = self.client.build_request("GET", job.video_url, headers=headers)
        try:
            response = await token.guard(self.client.send(request, stream=True))
        except httpx.HTTPError as e:
            raise UpstreamFailureError(f"Could not reach the media host: {type(e).__name__}") from e

        if not response.is_success:
            await response.aclose()
            raise UpstreamFailureError(
                f"Could not fetch the video file (HTTP {response.status_code})",
                status_code=response.status_code,
            )

        length = _content_length(response)
        if length is not None and length > self.downloads.max_file_size:
            await response.aclose()
            raise PayloadTooLargeError(length, self.downloads.max_file_size)

        return DownloadStream(
            route=DownloadRoute.DIRECT,
            content_type=self._content_type(job),
            filename=self._filename(job),
            content_length=length,
            response=response,
            token=token,
            chunk_size=self.downloads.chunk_size,
            on_progress=on_progress,
            max_bytes=self.downloads.max_file_size,
        )

    async def _remote(
        self,
        job: DownloadJob,
        token: CancellationToken,
        on_progress: Optional[ProgressCallback],
        log: structlog.stdlib.BoundLogger,
    ) -> DownloadOutcome:
        task_id = await token.guard(self.remote.submit(job))
        state = RemoteJobState.SUBMITTED
        log = log.bind(task_id=task_id)

        deadline = self._clock() + self.remote_config.poll_deadline
        polls = 0
        while True:
            if self._clock() >= deadline:
                state = RemoteJobState.TIMED_OUT
                log.warning("remote_job_timed_out", polls=polls, state=state.value)
                raise RemoteJobTimeout(
                    f"Processing did not finish within {int(self.remote_config.poll_deadline)}s",
                    task_id=task_id,
                )

            state = RemoteJobState.POLLING
            status = await token.guard(self.remote.status(task_id))
            polls += 1

            if status.status == RemoteTaskStatus.ERROR:
                state = RemoteJobState.ERROR
                log.warning("remote_job_error", polls=polls, error=status.error)
                raise RemoteJobError(status.error or "Remote processing failed", task_id=task_id)

            if status.status == RemoteTaskStatus.DONE:
                state = RemoteJobState.DONE
                log.info("remote_job_done", polls=polls, state=state.value)
                break

            remaining = deadline - self._clock()
            if remaining <= 0:
                continue
            await token.guard(self._sleep(min(self.remote_config.poll_interval, remaining)))

        filename = self._filename(job)
        if status.download_url:
            MetricsCollector.record_download(DownloadRoute.REMOTE.value, "redirect")
            return DownloadRedirect(url=status.download_url, filename=status.filename or filename)

        response = await token.guard(self.remote.open_file(task_id))
        return DownloadStream(
            route=DownloadRoute.REMOTE,
            content_type=self._content_type(job),
            filename=filename,
            content_length=_content_length(response),
            response=response,
            token=token,
            chunk_size=self.downloads.chunk_size,
            on_progress=on_progress,
        )


def _outcome_for(error: DownloadFailure) -> str:
    if isinstance(error, RemoteJobTimeout):
        return "timeout"
    if isinstance(error, PayloadTooLargeError):
        return "too_large"
    return "failed"
