"""
Static scan of legacy application code for job definitions.

Looks for Sidekiq workers and ActiveJob classes in Ruby, BullMQ workers and
``queue.add`` calls in JavaScript/TypeScript, and Celery tasks in Python, so
the job types a codebase defines can be listed before any data is moved.
"""

import re
from dataclasses import asdict, dataclass, field
from typing import Any

from .canonical import canonicalize
from .models import SourceFramework

SCAN_FRAMEWORKS = (SourceFramework.SIDEKIQ, SourceFramework.BULLMQ, SourceFramework.CELERY)

SIDEKIQ_WORKER_RE = re.compile(
    r"class\s+(\w+)[^\n]*\n(?:(?!\bclass\b)[^}])*?include\s+Sidekiq::(?:Worker|Job)"
)
SIDEKIQ_ACTIVEJOB_RE = re.compile(r"class\s+(\w+)\s*<\s*(?:ApplicationJob|ActiveJob::Base)")
SIDEKIQ_QUEUE_RE = re.compile(r"(?:sidekiq_options\s+.*?queue:|queue_as)\s*['\":]?(\w+)")
SIDEKIQ_RETRY_RE = re.compile(r"sidekiq_options\s+.*?retry:\s*(\d+)")

BULLMQ_WORKER_RE = re.compile(r"new\s+Worker\s*\(\s*['\"]([^'\"]+)['\"]")
BULLMQ_ADD_RE = re.compile(r"\.add\s*\(\s*['\"]([^'\"]+)['\"]")

CELERY_TASK_RE = re.compile(
    r"@(?:\w+\.task|shared_task|celery\.task)\s*(\([^)]*\))?\s*\n(?:async\s+)?def\s+(\w+)"
)
CELERY_QUEUE_RE = re.compile(r"queue\s*=\s*['\"]([^'\"]+)['\"]")
CELERY_RETRY_RE = re.compile(r"max_retries\s*=\s*(\d+)")

# How far after a class header to look for its options
_OPTIONS_WINDOW = 300


@dataclass
class JobDefinition:
    name: str
    type: str
    framework: str
    queue: str = ""
    retry_count: int | None = None
    file_path: str = ""
    line_number: int = 0


@dataclass
class ScanResult:
    framework: str
    total_files: int
    jobs: list[JobDefinition] = field(default_factory=list)
    queues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _line_of(content: str, offset: int) -> int:
    return content.count("\n", 0, offset) + 1


def _scan_sidekiq(content: str, path: str) -> list[JobDefinition]:
    jobs = []
    for regex in (SIDEKIQ_WORKER_RE, SIDEKIQ_ACTIVEJOB_RE):
        for match in regex.finditer(content):
            name = match.group(1)
            block = content[match.start() : match.end() + _OPTIONS_WINDOW]
            queue_match = SIDEKIQ_QUEUE_RE.search(block)
            retry_match = SIDEKIQ_RETRY_RE.search(block)
            jobs.append(
                JobDefinition(
                    name=name,
                    type=canonicalize(name),
                    framework=SourceFramework.SIDEKIQ.value,
                    queue=queue_match.group(1) if queue_match else "default",
                    retry_count=int(retry_match.group(1)) if retry_match else None,
                    file_path=path,
                    line_number=_line_of(content, match.start()),
                )
            )
    return jobs


def _scan_bullmq(content: str, path: str) -> list[JobDefinition]:
    jobs = []
    seen = set()
    for match in BULLMQ_WORKER_RE.finditer(content):
        name = match.group(1)
        if name not in seen:
            seen.add(name)
            jobs.append(
                JobDefinition(
                    name=name,
                    type=name,
                    framework=SourceFramework.BULLMQ.value,
                    queue=name,
                    file_path=path,
                    line_number=_line_of(content, match.start()),
                )
            )
    for match in BULLMQ_ADD_RE.finditer(content):
        name = match.group(1)
        if name not in seen:
            seen.add(name)
            jobs.append(
                JobDefinition(
                    name=name,
                    type=name,
                    framework=SourceFramework.BULLMQ.value,
                    file_path=path,
                    line_number=_line_of(content, match.start()),
                )
            )
    return jobs


def _scan_celery(content: str, path: str) -> list[JobDefinition]:
    jobs = []
    for match in CELERY_TASK_RE.finditer(content):
        decorator_args = match.group(1) or ""
        queue_match = CELERY_QUEUE_RE.search(decorator_args)
        retry_match = CELERY_RETRY_RE.search(decorator_args)
        name = match.group(2)
        jobs.append(
            JobDefinition(
                name=name,
                type=canonicalize(name),
                framework=SourceFramework.CELERY.value,
                queue=queue_match.group(1) if queue_match else "celery",
                retry_count=int(retry_match.group(1)) if retry_match else None,
                file_path=path,
                line_number=_line_of(content, match.start()),
            )
        )
    return jobs


_SCANNERS = {
    SourceFramework.SIDEKIQ: _scan_sidekiq,
    SourceFramework.BULLMQ: _scan_bullmq,
    SourceFramework.CELERY: _scan_celery,
}


def scan_sources(framework: str, files: dict[str, str]) -> ScanResult:
    """Scan ``{path: content}`` for job definitions of one framework."""
    framework = SourceFramework(framework)
    if framework not in _SCANNERS:
        raise ValueError(f"source scanning is not supported for {framework.value}")
    scanner = _SCANNERS[framework]

    result = ScanResult(framework=framework.value, total_files=len(files))
    for path in sorted(files):
        result.jobs.extend(scanner(files[path], path))

    result.queues = sorted({job.queue for job in result.jobs if job.queue})
    if not result.jobs:
        result.warnings.append("no job definitions found in provided files")
    return result
