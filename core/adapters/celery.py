import base64
import binascii
import json
import logging
from collections import Counter
from typing import Any

from ..errors import ParseFailure, RecordError
from ..models import AnalysisResult, CanonicalJob, QueueAnalysis, wrap_args
from ._redis import connect_redis, redis_errors
from .base import SourceAdapter

logger = logging.getLogger(__name__)

DEFAULT_CELERY_QUEUE = "celery"
BINDING_PREFIX = "_kombu.binding."


def decode_celery_body(body: str | bytes) -> tuple[list, dict | None]:
    """
    Decode a Celery protocol 2 message body into ``(args, kwargs)``.

    The body is a JSON ``[args, kwargs, embed]`` triple, base64 encoded by
    default. Some brokers are configured to ship it as plain JSON.
    """
    if not isinstance(body, (str, bytes)):
        raise ParseFailure(f"celery body must be a string, got {type(body).__name__}")

    try:
        text = base64.b64decode(body, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        text = body

    try:
        parts = json.loads(text)
    except ValueError as e:
        raise ParseFailure(f"invalid celery body: {e}") from e
    if not isinstance(parts, list):
        raise ParseFailure("celery body is not an [args, kwargs, embed] triple")

    args = wrap_args(parts[0]) if parts else []
    kwargs = parts[1] if len(parts) > 1 and isinstance(parts[1], dict) else None
    return args, kwargs


def parse_celery_message(queue: str, raw: str | bytes | dict) -> CanonicalJob:
    """Convert one raw Celery broker message into a canonical job."""
    if isinstance(raw, dict):
        message = raw
    else:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ParseFailure(f"parse celery message: {e}") from e
    if not isinstance(message, dict):
        raise ParseFailure("parse celery message: payload is not an object")

    headers = message.get("headers") or {}
    task = headers.get("task") if isinstance(headers, dict) else None
    if not isinstance(task, str) or not task:
        raise ParseFailure("celery message missing task header")

    meta: dict[str, Any] = {}
    if headers.get("id"):
        meta["celery_task_id"] = headers["id"]

    args: list = []
    body = message.get("body")
    if body:
        args, kwargs = decode_celery_body(body)
        if kwargs:
            meta["celery_kwargs"] = kwargs

    # Task paths are already dotted and kept verbatim.
    return CanonicalJob(type=task, queue=queue or DEFAULT_CELERY_QUEUE, args=args, meta=meta)


class CeleryAdapter(SourceAdapter):
    """Reads pending Celery messages from a Redis broker."""

    source = "celery"

    def __init__(self, client, url: str = "", queues: list[str] | None = None):
        super().__init__()
        self.client = client
        self.url = url
        self.queues = queues or [DEFAULT_CELERY_QUEUE]

    @classmethod
    def from_url(cls, url: str, timeout: float = 30.0) -> "CeleryAdapter":
        return cls(connect_redis(url, timeout), url=url)

    def close(self) -> None:
        self.client.close()

    def discover_queues(self) -> list[str]:
        seen = set(self.queues)
        with redis_errors("scan kombu bindings"):
            for key in self.client.scan_iter(match=f"{BINDING_PREFIX}*", count=100):
                name = key[len(BINDING_PREFIX) :]
                if name:
                    seen.add(name)
        return sorted(seen)

    def _messages(self, queue: str) -> list[str]:
        with redis_errors(f"read celery queue {queue}"):
            return self.client.lrange(queue, 0, -1)

    def analyze(self) -> AnalysisResult:
        result = AnalysisResult(source=self.source, connection=self.url)

        for queue in self.discover_queues():
            messages = self._messages(queue)
            job_types = Counter()
            for raw in messages:
                try:
                    message = json.loads(raw)
                    task = message["headers"]["task"]
                except (ValueError, TypeError, KeyError):
                    continue
                if isinstance(task, str) and task:
                    job_types[task] += 1
            result.add_queue(QueueAnalysis(queue, len(messages), dict(job_types)))

        result.summary = f"Found {len(result.queues)} queues, {result.total_jobs} total jobs"
        return result

    def export(self) -> list[CanonicalJob]:
        self.skipped = 0
        exported = []

        for queue in self.discover_queues():
            for raw in self._messages(queue):
                try:
                    exported.append(parse_celery_message(queue, raw))
                except RecordError as e:
                    self.skipped += 1
                    logger.warning(f"Skipping malformed celery message on {queue}: {e}")

        logger.info(f"Exported {len(exported)} celery jobs ({self.skipped} skipped)")
        return exported
