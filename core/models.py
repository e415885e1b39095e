"""
Canonical job record shared by every adapter, the transfer pipeline and the
live router, plus the read-only analysis report types.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import ParseFailure, ValidationFailure

DEFAULT_QUEUE = "default"


class SourceFramework(str, Enum):
    SIDEKIQ = "sidekiq"
    BULLMQ = "bullmq"
    CELERY = "celery"
    FAKTORY = "faktory"
    RIVER = "river"


def wrap_args(value: Any) -> list:
    """Return value as a job argument list, wrapping non-list payloads."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def format_rfc3339(moment: datetime) -> str:
    # Naive datetimes coming out of a store are taken to be UTC.
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_rfc3339(value: str) -> datetime:
    if not isinstance(value, str) or "T" not in value.upper():
        raise ValueError(f"not an RFC3339 timestamp: {value!r}")
    text = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        raise ValueError(f"RFC3339 timestamp has no offset: {value!r}")
    return parsed


def record_violations(data: dict[str, Any]) -> list[str]:
    """List the structural problems of a canonical record in wire form."""
    problems = []

    job_type = data.get("type")
    if not isinstance(job_type, str) or not job_type:
        problems.append("missing required field: type")

    queue = data.get("queue")
    if not isinstance(queue, str) or not queue:
        problems.append("missing required field: queue")

    if "args" not in data or data["args"] is None:
        problems.append("missing required field: args")
    elif not isinstance(data["args"], list):
        problems.append("args must be a JSON array")

    priority = data.get("priority")
    if priority is not None:
        if isinstance(priority, bool) or not isinstance(priority, int):
            problems.append("priority must be an integer")
        elif priority < 0:
            problems.append("priority must be non-negative")

    scheduled_at = data.get("scheduled_at")
    if scheduled_at is not None:
        try:
            parse_rfc3339(scheduled_at)
        except ValueError:
            problems.append("scheduled_at must be an RFC3339 timestamp")

    meta = data.get("meta")
    if meta is not None and not isinstance(meta, dict):
        problems.append("meta must be a JSON object")

    return problems


@dataclass(frozen=True)
class CanonicalJob:
    type: str
    queue: str = DEFAULT_QUEUE
    args: list = field(default_factory=list)
    priority: int | None = None
    scheduled_at: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        problems = record_violations(self.to_dict())
        if problems:
            raise ValidationFailure("; ".join(problems))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "queue": self.queue, "args": self.args}
        if self.priority is not None:
            data["priority"] = self.priority
        if self.scheduled_at is not None:
            data["scheduled_at"] = self.scheduled_at
        if self.meta:
            data["meta"] = self.meta
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Any) -> "CanonicalJob":
        if not isinstance(data, dict):
            raise ParseFailure("canonical record must be a JSON object")
        problems = record_violations(data)
        if problems:
            raise ValidationFailure("; ".join(problems))
        return cls(
            type=data["type"],
            queue=data["queue"],
            args=data["args"],
            priority=data.get("priority"),
            scheduled_at=data.get("scheduled_at"),
            meta=data.get("meta") or {},
        )

    @classmethod
    def from_json(cls, line: str) -> "CanonicalJob":
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise ParseFailure(f"invalid JSON: {e}") from e
        return cls.from_dict(data)


@dataclass
class QueueAnalysis:
    name: str
    pending_jobs: int
    job_types: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "pending_jobs": self.pending_jobs, "job_types": self.job_types}


@dataclass
class AnalysisResult:
    source: str
    connection: str
    queues: list[QueueAnalysis] = field(default_factory=list)
    total_jobs: int = 0
    summary: str = ""

    def add_queue(self, queue: QueueAnalysis) -> None:
        self.queues.append(queue)
        self.total_jobs += queue.pending_jobs

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "connection": self.connection,
            "queues": [q.to_dict() for q in self.queues],
            "total_jobs": self.total_jobs,
            "summary": self.summary,
        }
