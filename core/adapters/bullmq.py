import json
import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any

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

KEY_PREFIX = "bull"


def _build_job(
    queue: str,
    name: Any,
    data: Any,
    opts: Any,
    job_id: str | None = None,
    now: datetime | None = None,
) -> CanonicalJob:
    if not isinstance(name, str) or not name:
        raise ParseFailure("bullmq job missing name")

    meta: dict[str, Any] = {"bullmq_source": True}
    if job_id:
        meta["bullmq_id"] = job_id

    priority = None
    scheduled_at = None
    if isinstance(opts, dict):
        value = opts.get("priority")
        if isinstance(value, int) and not isinstance(value, bool) and value > 0:
            priority = value
        delay = opts.get("delay")
        if isinstance(delay, (int, float)) and not isinstance(delay, bool) and delay > 0:
            now = now or datetime.now(timezone.utc)
            try:
                scheduled_at = format_rfc3339(now + timedelta(milliseconds=delay))
            except (OverflowError, ValueError) as e:
                raise ParseFailure(f"bullmq job has unusable delay {delay!r}: {e}") from e

    return CanonicalJob(
        type=name,
        queue=queue or DEFAULT_QUEUE,
        args=wrap_args(data),
        priority=priority,
        scheduled_at=scheduled_at,
        meta=meta,
    )


def parse_bullmq_job(
    queue: str, raw: str | bytes | dict, now: datetime | None = None
) -> CanonicalJob:
    """
    Convert a BullMQ job document (``{"name", "data", "opts"}``) into a
    canonical job. A ``queue`` key inside the document wins over ``queue``.
    """
    if isinstance(raw, dict):
        payload = raw
    else:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ParseFailure(f"parse bullmq job: {e}") from e
    if not isinstance(payload, dict):
        raise ParseFailure("parse bullmq job: payload is not an object")

    return _build_job(
        payload.get("queue") or queue,
        payload.get("name"),
        payload.get("data"),
        payload.get("opts"),
        job_id=payload.get("id"),
        now=now,
    )


def parse_bullmq_hash(
    queue: str, fields: dict[str, str], job_id: str | None = None, now: datetime | None = None
) -> CanonicalJob:
    """Convert the fields of a ``bull:<queue>:<id>`` hash into a canonical job."""
    data = None
    if "data" in fields:
        try:
            data = json.loads(fields["data"])
        except (TypeError, ValueError) as e:
            raise ParseFailure(f"bullmq job {job_id}: invalid data: {e}") from e

    opts = None
    if "opts" in fields:
        try:
            opts = json.loads(fields["opts"])
        except (TypeError, ValueError):
            logger.warning(f"Ignoring unreadable opts on bullmq job {job_id}")

    return _build_job(queue, fields.get("name"), data, opts, job_id=job_id, now=now)


class BullMQAdapter(SourceAdapter):
    """Reads waiting BullMQ jobs from Redis."""

    source = "bullmq"

    def __init__(self, client, url: str = ""):
        super().__init__()
        self.client = client
        self.url = url

    @classmethod
    def from_url(cls, url: str, timeout: float = 30.0) -> "BullMQAdapter":
        return cls(connect_redis(url, timeout), url=url)

    def close(self) -> None:
        self.client.close()

    def discover_queues(self) -> list[str]:
        seen = set()
        # bull:<queue>:id is the id counter; the wait list covers older layouts.
        for pattern in (f"{KEY_PREFIX}:*:id", f"{KEY_PREFIX}:*:wait"):
            with redis_errors(f"scan {pattern}"):
                for key in self.client.scan_iter(match=pattern, count=100):
                    parts = key.split(":")
                    if len(parts) >= 3:
                        seen.add(":".join(parts[1:-1]))
        return sorted(seen)

    def _waiting_ids(self, queue: str) -> list[str]:
        with redis_errors(f"read wait list for {queue}"):
            return self.client.lrange(f"{KEY_PREFIX}:{queue}:wait", 0, -1)

    def analyze(self) -> AnalysisResult:
        result = AnalysisResult(source=self.source, connection=self.url)

        for queue in self.discover_queues():
            job_ids = self._waiting_ids(queue)
            job_types = Counter()
            for job_id in job_ids:
                with redis_errors(f"read job {queue}:{job_id}"):
                    name = self.client.hget(f"{KEY_PREFIX}:{queue}:{job_id}", "name")
                if name:
                    job_types[name] += 1
            result.add_queue(QueueAnalysis(queue, len(job_ids), dict(job_types)))

        result.summary = f"Found {len(result.queues)} queues, {result.total_jobs} total jobs"
        return result

    def export(self) -> list[CanonicalJob]:
        self.skipped = 0
        exported = []

        for queue in self.discover_queues():
            for job_id in self._waiting_ids(queue):
                with redis_errors(f"read job {queue}:{job_id}"):
                    fields = self.client.hgetall(f"{KEY_PREFIX}:{queue}:{job_id}")
                if not fields:
                    self.skipped += 1
                    logger.warning(f"Skipping bullmq job {queue}:{job_id}: hash not found")
                    continue
                try:
                    exported.append(parse_bullmq_hash(queue, fields, job_id=job_id))
                except RecordError as e:
                    self.skipped += 1
                    logger.warning(f"Skipping malformed bullmq job {queue}:{job_id}: {e}")

        logger.info(f"Exported {len(exported)} bullmq jobs ({self.skipped} skipped)")
        return exported
