"""Translation of live legacy job submissions into canonical jobs."""

import json
from collections.abc import Callable
from typing import Any

from .adapters import (
    parse_bullmq_job,
    parse_celery_message,
    parse_faktory_job,
    parse_river_job,
    parse_sidekiq_job,
)
from .adapters.celery import DEFAULT_CELERY_QUEUE
from .errors import ParseFailure
from .models import DEFAULT_QUEUE, CanonicalJob, SourceFramework


def _celery_queue(payload: dict[str, Any]) -> str:
    if payload.get("queue"):
        return payload["queue"]
    properties = payload.get("properties")
    if isinstance(properties, dict):
        delivery_info = properties.get("delivery_info")
        if isinstance(delivery_info, dict) and delivery_info.get("routing_key"):
            return delivery_info["routing_key"]
    return DEFAULT_CELERY_QUEUE


_PARSERS: dict[SourceFramework, Callable[[dict[str, Any]], CanonicalJob]] = {
    SourceFramework.SIDEKIQ: parse_sidekiq_job,
    SourceFramework.BULLMQ: lambda payload: parse_bullmq_job(DEFAULT_QUEUE, payload),
    SourceFramework.CELERY: lambda payload: parse_celery_message(_celery_queue(payload), payload),
    SourceFramework.FAKTORY: parse_faktory_job,
    SourceFramework.RIVER: parse_river_job,
}


class JobTranslator:
    """Turns one legacy-format request body into a canonical job."""

    def __init__(self, source: str):
        try:
            self.source = SourceFramework(source)
        except ValueError:
            raise ValueError(f"unsupported source: {source}") from None
        self._parse = _PARSERS[self.source]

    def translate(self, body: bytes | str) -> CanonicalJob:
        try:
            payload = json.loads(body)
        except (TypeError, ValueError) as e:
            raise ParseFailure(f"invalid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise ParseFailure(f"{self.source.value} job must be a JSON object")
        return self._parse(payload)
