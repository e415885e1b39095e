import json
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any

from ..canonical import canonicalize
from ..errors import ParseFailure, RecordError
from ..models import (
    DEFAULT_QUEUE,
    AnalysisResult,
    CanonicalJob,
    QueueAnalysis,
    format_rfc3339,
    wrap_args,
)
from ._redis import connect_redis, redis_errors
from .base import SourceAdapter

logger = logging.getLogger(__name__)

QUEUES_KEY = "queues"
SCHEDULE_KEY = "schedule"
RETRY_KEY = "retry"


def _decode(raw: str | bytes | dict) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ParseFailure(f"parse sidekiq job: {e}") from e
    if not isinstance(payload, dict):
        raise ParseFailure("parse sidekiq job: payload is not an object")
    return payload


def parse_sidekiq_job(raw: str | bytes | dict, queue: str | None = None) -> CanonicalJob:
    """
    Convert one Sidekiq job payload into a canonical job.

    ``queue`` is used when the payload does not name its own queue.
    """
    payload = _decode(raw)

    job_class = payload.get("class")
    if not isinstance(job_class, str) or not job_class:
        raise ParseFailure("sidekiq job missing class")

    meta: dict[str, Any] = {"sidekiq_class": job_class}
    if payload.get("jid"):
        meta["sidekiq_jid"] = payload["jid"]
    if "retry" in payload:
        # Retry settings map onto the target's retry policy, never priority.
        meta["sidekiq_retry"] = payload["retry"]

    scheduled_at = None
    at = payload.get("at")
    if isinstance(at, (int, float)) and not isinstance(at, bool) and at > 0:
        try:
            scheduled_at = format_rfc3339(datetime.fromtimestamp(at, tz=timezone.utc))
        except (OverflowError, ValueError, OSError) as e:
            raise ParseFailure(f"sidekiq job has unusable at {at!r}: {e}") from e

    return CanonicalJob(
        type=canonicalize(job_class),
        queue=payload.get("queue") or queue or DEFAULT_QUEUE,
        args=wrap_args(payload.get("args")),
        scheduled_at=scheduled_at,
        meta=meta,
    )


class SidekiqAdapter(SourceAdapter):
    """Reads Sidekiq queues, the schedule set and the retry set from Redis."""

    source = "sidekiq"

    def __init__(self, client, url: str = ""):
        super().__init__()
        self.client = client
        self.url = url

    @classmethod
    def from_url(cls, url: str, timeout: float = 30.0) -> "SidekiqAdapter":
        return cls(connect_redis(url, timeout), url=url)

    def close(self) -> None:
        self.client.close()

    def _queue_names(self) -> list[str]:
        with redis_errors("read queues set"):
            return sorted(self.client.smembers(QUEUES_KEY))

    def analyze(self) -> AnalysisResult:
        result = AnalysisResult(source=self.source, connection=self.url)

        for name in self._queue_names():
            with redis_errors(f"read queue {name}"):
                raw_jobs = self.client.lrange(f"queue:{name}", 0, -1)

            job_types = Counter()
            for raw in raw_jobs:
                try:
                    job_class = _decode(raw).get("class")
                except ParseFailure:
                    continue
                if isinstance(job_class, str) and job_class:
                    job_types[job_class] += 1
            result.add_queue(QueueAnalysis(name, len(raw_jobs), dict(job_types)))

        with redis_errors("read schedule and retry sets"):
            scheduled = self.client.zcard(SCHEDULE_KEY)
            retries = self.client.zcard(RETRY_KEY)
        result.total_jobs += scheduled + retries

        result.summary = (
            f"Found {len(result.queues)} queues, {result.total_jobs} total jobs "
            f"({scheduled} scheduled, {retries} in retry)"
        )
        return result

    def export(self) -> list[CanonicalJob]:
        self.skipped = 0
        raw_jobs = []

        for name in self._queue_names():
            with redis_errors(f"read queue {name}"):
                raw_jobs.extend((raw, name) for raw in self.client.lrange(f"queue:{name}", 0, -1))

        for key in (SCHEDULE_KEY, RETRY_KEY):
            with redis_errors(f"read {key} set"):
                raw_jobs.extend((raw, None) for raw in self.client.zrange(key, 0, -1))

        exported = []
        for raw, queue in raw_jobs:
            try:
                exported.append(parse_sidekiq_job(raw, queue=queue))
            except RecordError as e:
                self.skipped += 1
                logger.warning(f"Skipping malformed sidekiq job: {e}")

        logger.info(f"Exported {len(exported)} sidekiq jobs ({self.skipped} skipped)")
        return exported
