"""
Streaming NDJSON export, import and dry-run validation of canonical jobs.
"""

import json
import logging
import os
import tempfile
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import IO, Any

from .adapters import SourceAdapter
from .errors import MigrationError, RecordError, WriteFailure
from .models import CanonicalJob, record_violations
from .target import TargetClient

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100

ProgressCallback = Callable[[int, int], Any]


@dataclass
class ImportResult:
    total: int = 0
    success: int = 0
    failed: int = 0
    batches: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class ValidationError:
    line: int
    message: str


@dataclass
class ValidationResult:
    total: int = 0
    valid: int = 0
    invalid: int = 0
    errors: list[ValidationError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def export_jobs(adapter: SourceAdapter, stream: IO[str]) -> int:
    """Write every job the adapter exports to ``stream`` as NDJSON."""
    jobs = adapter.export()
    try:
        for job in jobs:
            stream.write(job.to_json())
            stream.write("\n")
        stream.flush()
    except OSError as e:
        raise WriteFailure(f"write job: {e}") from e
    return len(jobs)


def export_to_file(adapter: SourceAdapter, output_path: Path) -> int:
    """
    Export to ``output_path``. The file only appears once every job has been
    written; a failed export leaves nothing behind.
    """
    output_path = Path(output_path)
    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{output_path.name}.", suffix=".tmp", dir=output_path.parent
        )
    except OSError as e:
        raise WriteFailure(f"create output file: {e}") from e

    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            count = export_jobs(adapter, f)
        tmp_path.replace(output_path)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise WriteFailure(f"write output file: {e}") from e
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise

    logger.info(f"Exported {count} jobs to {output_path}")
    return count


def read_jobs(lines: Iterable[str]) -> Iterable[tuple[int, CanonicalJob | RecordError]]:
    """Yield ``(line_number, job_or_error)`` for every non-blank line."""
    for line_number, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            yield line_number, CanonicalJob.from_json(line)
        except RecordError as e:
            yield line_number, e


def _submit_batch(target: TargetClient, batch: list[CanonicalJob], bulk: bool) -> tuple[int, int]:
    if bulk:
        try:
            target.submit_batch(batch)
            return len(batch), 0
        except MigrationError as e:
            logger.warning(f"Batch of {len(batch)} jobs rejected: {e}")
            return 0, len(batch)

    success = failed = 0
    for job in batch:
        try:
            target.submit_job(job)
            success += 1
        except MigrationError as e:
            failed += 1
            logger.warning(f"Failed to import job {job.type}: {e}")
    return success, failed


def _notify(progress: ProgressCallback, imported: int, total: int) -> None:
    try:
        progress(imported, total)
    except Exception as e:
        logger.warning(f"Progress callback failed: {e}")


def import_lines(
    target: TargetClient,
    lines: Iterable[str],
    batch_size: int = DEFAULT_BATCH_SIZE,
    progress: ProgressCallback | None = None,
    bulk: bool = False,
) -> ImportResult:
    """
    Submit NDJSON jobs to the target in batches of ``batch_size``.

    Unreadable lines are counted as failed. ``progress(imported, total)`` is
    called after every flushed batch on a background thread so a slow
    callback never holds up the import.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    result = ImportResult()
    batch: list[CanonicalJob] = []
    notifier = ThreadPoolExecutor(max_workers=1) if progress else None

    def flush():
        success, failed = _submit_batch(target, batch, bulk)
        result.success += success
        result.failed += failed
        result.batches += 1
        batch.clear()
        if notifier:
            notifier.submit(_notify, progress, result.success, result.total)

    try:
        for line_number, item in read_jobs(lines):
            result.total += 1
            if isinstance(item, RecordError):
                result.failed += 1
                logger.warning(f"Line {line_number}: {item}")
                continue

            batch.append(item)
            if len(batch) >= batch_size:
                flush()

        if batch:
            flush()
    finally:
        if notifier:
            notifier.shutdown(wait=True)

    logger.info(
        f"Import complete: {result.success} succeeded, {result.failed} failed "
        f"({result.batches} batches)"
    )
    return result


def import_file(target: TargetClient, input_path: Path, **kwargs) -> ImportResult:
    # Undecodable bytes become U+FFFD so the line fails parsing and is counted.
    with open(input_path, encoding="utf-8", errors="replace") as f:
        return import_lines(target, f, **kwargs)


def validate_lines(lines: Iterable[str]) -> ValidationResult:
    """Check every NDJSON record without touching any external system."""
    result = ValidationResult()

    for line_number, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        result.total += 1

        try:
            record = json.loads(line)
        except json.JSONDecodeError as e:
            result.invalid += 1
            result.errors.append(ValidationError(line_number, f"invalid JSON: {e}"))
            continue

        if not isinstance(record, dict):
            problems = ["record must be a JSON object"]
        else:
            problems = record_violations(record)

        if problems:
            result.invalid += 1
            result.errors.extend(ValidationError(line_number, message) for message in problems)
        else:
            result.valid += 1

    return result


def validate_file(input_path: Path) -> ValidationResult:
    with open(input_path, encoding="utf-8", errors="replace") as f:
        return validate_lines(f)
