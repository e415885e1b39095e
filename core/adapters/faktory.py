import json
import logging
from collections import Counter
from typing import Any

import httpx

from ..canonical import canonicalize
from ..errors import ConnectionFailure, ParseFailure, RecordError
from ..models import DEFAULT_QUEUE, AnalysisResult, CanonicalJob, QueueAnalysis, wrap_args
from .base import SourceAdapter

logger = logging.getLogger(__name__)

DEFAULT_FAKTORY_URL = "http://localhost:7420"


def parse_faktory_job(raw: str | bytes | dict, queue: str | None = None) -> CanonicalJob:
    """Convert one Faktory job document into a canonical job."""
    if isinstance(raw, dict):
        job = raw
    else:
        try:
            job = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ParseFailure(f"parse faktory job: {e}") from e
    if not isinstance(job, dict):
        raise ParseFailure("parse faktory job: payload is not an object")

    jobtype = job.get("jobtype")
    if not isinstance(jobtype, str) or not jobtype:
        raise ParseFailure("faktory job missing jobtype")

    meta: dict[str, Any] = {}
    if job.get("jid"):
        meta["faktory_jid"] = job["jid"]
    if job.get("custom"):
        meta["faktory_custom"] = job["custom"]

    return CanonicalJob(
        type=canonicalize(jobtype),
        queue=job.get("queue") or queue or DEFAULT_QUEUE,
        args=wrap_args(job.get("args")),
        priority=job.get("priority"),
        scheduled_at=job.get("at") or None,
        meta=meta,
    )


class FaktoryAdapter(SourceAdapter):
    """Reads queued jobs through the Faktory web API."""

    source = "faktory"

    def __init__(self, client: httpx.Client, url: str = ""):
        super().__init__()
        self.client = client
        self.url = url or str(client.base_url)

    @classmethod
    def from_url(
        cls, url: str, timeout: float = 30.0, password: str | None = None
    ) -> "FaktoryAdapter":
        url = url or DEFAULT_FAKTORY_URL
        auth = ("", password) if password else None
        return cls(httpx.Client(base_url=url, timeout=timeout, auth=auth), url=url)

    def close(self) -> None:
        self.client.close()

    def _get(self, path: str) -> Any:
        try:
            response = self.client.get(path)
        except httpx.HTTPError as e:
            raise ConnectionFailure(f"request {path}: {e}") from e
        if response.status_code != 200:
            raise ConnectionFailure(f"request {path} returned status {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise ConnectionFailure(f"request {path}: unreadable response: {e}") from e

    def queue_sizes(self) -> dict[str, int]:
        info = self._get("/api/info")
        queues = (info.get("faktory") or {}).get("queues") if isinstance(info, dict) else None
        if not isinstance(queues, dict):
            raise ConnectionFailure("faktory info response has no queue table")
        return {name: int(size) for name, size in sorted(queues.items())}

    def _queue_jobs(self, queue: str) -> list:
        jobs = self._get(f"/api/queues/{queue}")
        return jobs if isinstance(jobs, list) else []

    def analyze(self) -> AnalysisResult:
        result = AnalysisResult(source=self.source, connection=self.url)

        for queue, size in self.queue_sizes().items():
            job_types = Counter()
            try:
                for job in self._queue_jobs(queue):
                    jobtype = job.get("jobtype") if isinstance(job, dict) else None
                    if isinstance(jobtype, str) and jobtype:
                        job_types[jobtype] += 1
            except ConnectionFailure as e:
                # The size from /api/info is still accurate without the sample.
                logger.warning(f"Could not sample faktory queue {queue}: {e}")
            result.add_queue(QueueAnalysis(queue, size, dict(job_types)))

        result.summary = f"Found {len(result.queues)} queues, {result.total_jobs} total jobs"
        return result

    def export(self) -> list[CanonicalJob]:
        self.skipped = 0
        exported = []

        for queue in self.queue_sizes():
            for job in self._queue_jobs(queue):
                try:
                    exported.append(parse_faktory_job(job, queue=queue))
                except RecordError as e:
                    self.skipped += 1
                    logger.warning(f"Skipping malformed faktory job on {queue}: {e}")

        logger.info(f"Exported {len(exported)} faktory jobs ({self.skipped} skipped)")
        return exported
