import json
import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..canonical import canonicalize
from ..database import PENDING_STATES, RiverJob, create_river_engine, get_db_session
from ..errors import ConnectionFailure, ParseFailure, RecordError
from ..models import (
    DEFAULT_QUEUE,
    AnalysisResult,
    CanonicalJob,
    QueueAnalysis,
    format_rfc3339,
    wrap_args,
)
from .base import SourceAdapter

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 100


def _json_column(value: Any, column: str) -> Any:
    if value is None or not isinstance(value, (str, bytes)):
        return value
    try:
        return json.loads(value)
    except ValueError as e:
        raise ParseFailure(f"river job has invalid {column}: {e}") from e


def parse_river_job(raw: str | bytes | dict | RiverJob, queue: str | None = None) -> CanonicalJob:
    """Convert a River job row (or its JSON form) into a canonical job."""
    if isinstance(raw, RiverJob):
        row = {
            "id": raw.id,
            "kind": raw.kind,
            "args": raw.args,
            "queue": raw.queue,
            "state": raw.state,
            "priority": raw.priority,
            "scheduled_at": raw.scheduled_at,
        }
    elif isinstance(raw, dict):
        row = raw
    else:
        try:
            row = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ParseFailure(f"parse river job: {e}") from e
        if not isinstance(row, dict):
            raise ParseFailure("parse river job: payload is not an object")

    kind = row.get("kind")
    if not isinstance(kind, str) or not kind:
        raise ParseFailure("river job missing kind")

    meta: dict[str, Any] = {}
    if row.get("id") is not None:
        meta["river_id"] = row["id"]
    if row.get("state"):
        meta["river_state"] = row["state"]

    scheduled_at = row.get("scheduled_at")
    if isinstance(scheduled_at, datetime):
        scheduled_at = format_rfc3339(scheduled_at)

    return CanonicalJob(
        type=canonicalize(kind),
        queue=row.get("queue") or queue or DEFAULT_QUEUE,
        args=wrap_args(_json_column(row.get("args"), "args")),
        priority=row.get("priority"),
        scheduled_at=scheduled_at or None,
        meta=meta,
    )


class RiverAdapter(SourceAdapter):
    """Reads pending River jobs straight from the ``river_job`` table."""

    source = "river"

    def __init__(self, engine: Engine, url: str = ""):
        super().__init__()
        self.engine = engine
        self.url = url or engine.url.render_as_string(hide_password=True)

    @classmethod
    def from_url(cls, url: str, timeout: float = 30.0) -> "RiverAdapter":
        return cls(create_river_engine(url, timeout=timeout))

    def close(self) -> None:
        self.engine.dispose()

    def analyze(self) -> AnalysisResult:
        result = AnalysisResult(source=self.source, connection=self.url)

        try:
            with get_db_session(self.engine) as db:
                counts = (
                    db.query(RiverJob.queue, func.count(RiverJob.id))
                    .filter(RiverJob.state.in_(PENDING_STATES))
                    .group_by(RiverJob.queue)
                    .order_by(RiverJob.queue)
                    .all()
                )
                for queue, count in counts:
                    kinds = (
                        db.query(RiverJob.kind)
                        .filter(RiverJob.queue == queue, RiverJob.state.in_(PENDING_STATES))
                        .order_by(RiverJob.id)
                        .limit(SAMPLE_SIZE)
                        .all()
                    )
                    job_types: dict[str, int] = {}
                    for (kind,) in kinds:
                        if kind:
                            job_types[kind] = job_types.get(kind, 0) + 1
                    result.add_queue(QueueAnalysis(queue, count, job_types))
        except SQLAlchemyError as e:
            raise ConnectionFailure(f"analyze river jobs: {e}") from e

        result.summary = f"Found {len(result.queues)} queues, {result.total_jobs} total jobs"
        return result

    def export(self) -> list[CanonicalJob]:
        self.skipped = 0
        exported = []

        try:
            with get_db_session(self.engine) as db:
                rows = (
                    db.query(RiverJob)
                    .filter(RiverJob.state.in_(PENDING_STATES))
                    .order_by(RiverJob.queue, RiverJob.id)
                    .all()
                )
                for row in rows:
                    try:
                        exported.append(parse_river_job(row))
                    except RecordError as e:
                        self.skipped += 1
                        logger.warning(f"Skipping malformed river job {row.id}: {e}")
        except SQLAlchemyError as e:
            raise ConnectionFailure(f"export river jobs: {e}") from e

        logger.info(f"Exported {len(exported)} river jobs ({self.skipped} skipped)")
        return exported
