"""
HTTP clients for the target job system.

``TargetClient`` is the blocking client used by the batch pipeline and the
CLI; ``TargetForwarder`` is the async client the live proxy forwards through.
"""

import logging
from typing import Any

import httpx

from .errors import ConnectionFailure, ForwardFailure, ForwardTimeout
from .models import CanonicalJob

logger = logging.getLogger(__name__)

JOBS_PATH = "/ojs/v1/jobs"
BATCH_PATH = "/ojs/v1/jobs/batch"
HEALTH_PATH = "/ojs/v1/health"


def build_target_request(job: CanonicalJob) -> dict[str, Any]:
    """Shape a canonical job as a job-creation request body."""
    options: dict[str, Any] = {"queue": job.queue}
    if job.priority is not None:
        options["priority"] = job.priority
    if job.scheduled_at is not None:
        options["scheduled_at"] = job.scheduled_at

    body: dict[str, Any] = {"type": job.type, "args": job.args, "options": options}
    if job.meta:
        body["meta"] = job.meta
    return body


def _headers(api_key: str | None) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


class TargetClient:
    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(
            base_url=self.base_url, headers=_headers(api_key), timeout=timeout, transport=transport
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        self.client.close()

    def _post(self, path: str, body: Any) -> Any:
        try:
            response = self.client.post(path, json=body)
        except httpx.TimeoutException as e:
            raise ForwardTimeout(f"POST {path} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ConnectionFailure(f"POST {path}: {e}") from e

        if response.status_code >= 400:
            raise ForwardFailure(
                f"POST {path} returned HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError:
            return {}

    def submit_job(self, job: CanonicalJob) -> Any:
        return self._post(JOBS_PATH, build_target_request(job))

    def submit_batch(self, jobs: list[CanonicalJob]) -> Any:
        return self._post(BATCH_PATH, {"jobs": [build_target_request(job) for job in jobs]})

    def health_check(self) -> dict:
        try:
            response = self.client.get(HEALTH_PATH)
        except httpx.HTTPError as e:
            raise ConnectionFailure(f"target health check failed: {e}") from e
        if response.status_code >= 400:
            raise ConnectionFailure(f"target unhealthy: HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError:
            return {}


class TargetForwarder:
    """Forwards translated live jobs to the target and hands back its raw reply."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url, headers=_headers(api_key), timeout=timeout, transport=transport
        )

    async def forward(self, job: CanonicalJob) -> httpx.Response:
        try:
            return await self.client.post(JOBS_PATH, json=build_target_request(job))
        except httpx.TimeoutException as e:
            raise ForwardTimeout(f"forwarding to target timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ForwardFailure(f"forwarding to target: {e}") from e

    async def aclose(self) -> None:
        await self.client.aclose()
