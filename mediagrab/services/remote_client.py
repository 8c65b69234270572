"""Client for the remote transcoding service's job API.

The service is a black box with five endpoints::

    POST /parse               {url}            -> VideoInfo-shaped JSON
    POST /download            DownloadJob JSON -> {taskId}
    GET  /task/{id}                            -> {status, error?}
    GET  /task/{id}/file                       -> bytes
    GET  /health                               -> {status, ffmpeg}
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
import structlog

from mediagrab.core.config import RemoteServiceConfig
from mediagrab.models.job import DownloadJob, RemoteTaskStatus
from mediagrab.services.exceptions import UpstreamFailureError

logger = structlog.get_logger(__name__)


@dataclass
class TaskStatus:
    """One answer from ``GET /task/{id}``."""

    status: RemoteTaskStatus
    error: Optional[str] = None
    download_url: Optional[str] = None
    filename: Optional[str] = None


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:300] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)
    return str(body)


class RemoteServiceClient:
    """Thin async wrapper over the remote service endpoints.

    Every method converts transport errors and non-2xx answers into
    ``UpstreamFailureError`` so the orchestrator sees a single failure type.
    """

    def __init__(self, client: httpx.AsyncClient, config: Optional[RemoteServiceConfig] = None):
        self.client = client
        self.config = config or RemoteServiceConfig()

    def _url(self, path: str) -> str:
        return f"{self.config.base_url}{path}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self.client.request(
                method, self._url(path), timeout=self.config.request_timeout, **kwargs
            )
        except httpx.HTTPError as e:
            logger.warning("remote_request_failed", method=method, path=path, error=str(e))
            raise UpstreamFailureError(f"Remote service unreachable: {type(e).__name__}") from e

        if not response.is_success:
            message = _error_text(response)
            logger.warning(
                "remote_request_rejected",
                method=method,
                path=path,
                status_code=response.status_code,
                error=message,
            )
            raise UpstreamFailureError(
                f"Remote service error: {message}", status_code=response.status_code
            )
        return response

    async def parse(self, url: str) -> Dict[str, Any]:
        """Ask the service to extract metadata for ``url``.

        Returns:
            The decoded JSON body, ``{success, data?, error?}``

        Raises:
            UpstreamFailureError: On network errors, non-2xx or a non-JSON body
        """
        response = await self._request("POST", "/parse", json={"url": url})
        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamFailureError("Remote service returned malformed JSON") from e
        if not isinstance(body, dict):
            raise UpstreamFailureError("Remote service returned an unexpected payload")
        return body

    async def submit(self, job: DownloadJob) -> str:
        """Submit a job and return the remote task id.

        Raises:
            UpstreamFailureError: On any non-2xx answer or a missing ``taskId``
        """
        response = await self._request("POST", "/download", json=job.to_remote_payload())
        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamFailureError("Remote service returned malformed JSON") from e

        task_id = body.get("taskId") if isinstance(body, dict) else None
        if not task_id:
            raise UpstreamFailureError("Remote service did not return a task id")

        logger.info("remote_job_submitted", task_id=task_id, action=job.action.value)
        return str(task_id)

    async def status(self, task_id: str) -> TaskStatus:
        response = await self._request("GET", f"/task/{task_id}")
        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamFailureError("Remote service returned malformed JSON") from e
        if not isinstance(body, dict):
            body = {}

        return TaskStatus(
            status=RemoteTaskStatus.parse(body.get("status")),
            error=body.get("error"),
            download_url=body.get("downloadUrl"),
            filename=body.get("filename"),
        )

    async def open_file(self, task_id: str) -> httpx.Response:
        """Open a streaming ``GET /task/{id}/file``. The caller must close the response.

        Raises:
            UpstreamFailureError: On network errors or a non-2xx answer
        """
        request = self.client.build_request(
            "GET", self._url(f"/task/{task_id}/file"), timeout=self.config.request_timeout
        )
        try:
            response = await self.client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise UpstreamFailureError(f"Remote service unreachable: {type(e).__name__}") from e

        if not response.is_success:
            await response.aread()
            await response.aclose()
            raise UpstreamFailureError(
                f"Could not fetch the processed file: {_error_text(response)}",
                status_code=response.status_code,
            )
        return response

    async def health(self) -> Dict[str, Any]:
        """Return the service's health payload, or an error marker when unreachable."""
        try:
            response = await self._request("GET", "/health")
            body = response.json()
        except (UpstreamFailureError, ValueError) as e:
            return {"status": "error", "error": str(e)}
        return body if isinstance(body, dict) else {"status": "ok"}
