#!/usr/bin/env python3

import json
import sys
from pathlib import Path

import click
import httpx

from api.config import settings
from core.adapters import adapter_factory
from core.definitions import SCAN_FRAMEWORKS, scan_sources
from core.target import TargetClient
from core.transfer import export_to_file, import_file, validate_file

SCAN_EXTENSIONS = {
    "sidekiq": (".rb",),
    "bullmq": (".js", ".ts", ".mjs", ".cjs"),
    "celery": (".py",),
}


class MigrationProxyClient:
    def __init__(self, base_url: str = "http://localhost:8090"):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(timeout=30.0)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.client.close()

    def _check(self, response: httpx.Response) -> dict:
        if response.status_code >= 400:
            try:
                error_data = response.json()
            except json.JSONDecodeError:
                raise click.ClickException(
                    f"Request failed with status {response.status_code}: {response.text}"
                ) from None
            message = error_data.get("detail") or error_data.get("error") or response.text
            raise click.ClickException(f"Request failed: {message}")
        return response.json()

    def health_check(self) -> dict:
        return self._check(self.client.get(f"{self.base_url}/health"))

    def get_status(self) -> dict:
        return self._check(self.client.get(f"{self.base_url}/status"))

    def set_percentage(self, percentage: int) -> dict:
        response = self.client.post(
            f"{self.base_url}/percentage", json={"percentage": percentage}
        )
        return self._check(response)

    def cutover(self) -> dict:
        return self._check(self.client.post(f"{self.base_url}/cutover"))

    def rollback(self, reason: str) -> dict:
        response = self.client.post(f"{self.base_url}/rollback", json={"reason": reason})
        return self._check(response)


def collect_files(paths, framework: str) -> dict[str, str]:
    """Read every source file under ``paths`` that the framework's scanner understands."""
    extensions = SCAN_EXTENSIONS[framework]
    files = {}
    for path in paths:
        candidates = sorted(path.rglob("*")) if path.is_dir() else [path]
        for candidate in candidates:
            if candidate.is_file() and candidate.suffix in extensions:
                files[str(candidate)] = candidate.read_text(encoding="utf-8", errors="replace")
    return files


@click.group()
@click.option(
    "--api-url", default=f"http://localhost:{settings.port}", help="Migration proxy base URL"
)
@click.pass_context
def cli(ctx, api_url):
    """Legacy job migration toolkit"""
    ctx.ensure_object(dict)
    ctx.obj["api_url"] = api_url


@cli.command()
@click.argument("source", type=click.Choice(adapter_factory.get_supported_sources()))
@click.option("--url", required=True, help="Connection URL of the legacy backend")
@click.option("--timeout", default=settings.connect_timeout, help="Connect timeout in seconds")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
def analyze(source, url, timeout, as_json):
    """Report queues, pending jobs and job types in a legacy backend"""
    try:
        with adapter_factory.create_adapter(source, url, timeout=timeout) as adapter:
            result = adapter.analyze()
    except Exception as e:
        click.echo(f"Analysis failed: {e}", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    click.echo(f"Source: {result.source}")
    click.echo(result.summary)
    click.echo()
    for queue in result.queues:
        click.echo(f"[{queue.name}] {queue.pending_jobs:,} pending")
        for job_type, count in sorted(queue.job_types.items(), key=lambda item: -item[1]):
            click.echo(f"   {job_type}: {count}")


@cli.command()
@click.argument("source", type=click.Choice(adapter_factory.get_supported_sources()))
@click.option("--url", required=True, help="Connection URL of the legacy backend")
@click.option(
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    required=True,
    help="NDJSON file to write",
)
@click.option("--timeout", default=settings.connect_timeout, help="Connect timeout in seconds")
def export(source, url, output, timeout):
    """Export pending jobs from a legacy backend as canonical NDJSON"""
    try:
        with adapter_factory.create_adapter(source, url, timeout=timeout) as adapter:
            count = export_to_file(adapter, output)
            skipped = adapter.skipped
    except Exception as e:
        click.echo(f"Export failed: {e}", err=True)
        sys.exit(1)

    click.echo(f"Exported {count:,} jobs to {output}")
    if skipped:
        click.echo(f"Skipped {skipped:,} unreadable records", err=True)


@cli.command("import")
@click.option(
    "--file",
    "input_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="NDJSON file to import",
)
@click.option("--target-url", default=settings.target_url, help="Target job system URL")
@click.option("--api-key", default=settings.target_api_key, help="Target API key")
@click.option("--batch-size", default=settings.import_batch_size, type=click.IntRange(min=1))
@click.option("--bulk", is_flag=True, help="Submit each batch in a single request")
@click.option(
    "--timeout", default=settings.forward_timeout, help="Target request timeout in seconds"
)
@click.option("--dry-run", is_flag=True, help="Validate only; nothing is sent")
def import_jobs(input_path, target_url, api_key, batch_size, bulk, timeout, dry_run):
    """Import canonical NDJSON jobs into the target system"""
    if dry_run:
        _report_validation(input_path)
        return

    def progress(imported, total):
        click.echo(f"   {imported:,}/{total:,} imported", err=True)

    try:
        with TargetClient(target_url, api_key=api_key, timeout=timeout) as target:
            target.health_check()
            result = import_file(
                target, input_path, batch_size=batch_size, progress=progress, bulk=bulk
            )
    except Exception as e:
        click.echo(f"Import failed: {e}", err=True)
        sys.exit(1)

    click.echo(f"Total: {result.total:,}")
    click.echo(f"Imported: {result.success:,}")
    click.echo(f"Failed: {result.failed:,}")
    if result.failed:
        sys.exit(1)


def _report_validation(input_path: Path):
    try:
        result = validate_file(input_path)
    except OSError as e:
        click.echo(f"Validation failed: {e}", err=True)
        sys.exit(1)

    click.echo(f"Total: {result.total:,}")
    click.echo(f"Valid: {result.valid:,}")
    click.echo(f"Invalid: {result.invalid:,}")
    for error in result.errors:
        click.echo(f"   line {error.line}: {error.message}")
    if result.invalid:
        sys.exit(1)


@cli.command()
@click.option(
    "--file",
    "input_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="NDJSON file to check",
)
def validate(input_path):
    """Check an NDJSON export without contacting any system"""
    _report_validation(input_path)


@cli.command()
@click.argument("framework", type=click.Choice([f.value for f in SCAN_FRAMEWORKS]))
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
def scan(framework, paths, as_json):
    """List job definitions found in application source code"""
    result = scan_sources(framework, collect_files(paths, framework))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    click.echo(f"Scanned {result.total_files} files, found {len(result.jobs)} job definitions")
    for job in result.jobs:
        queue = f" queue={job.queue}" if job.queue else ""
        retry = f" retry={job.retry_count}" if job.retry_count is not None else ""
        click.echo(f"   {job.name} -> {job.type}{queue}{retry} ({job.file_path}:{job.line_number})")
    for warning in result.warnings:
        click.echo(f"Warning: {warning}", err=True)


@cli.command()
def serve():
    """Run the migration proxy"""
    from api.main import run_server

    run_server()


@cli.command()
@click.pass_context
def health(ctx):
    """Check proxy health"""
    try:
        with MigrationProxyClient(ctx.obj["api_url"]) as client:
            result = client.health_check()
            click.echo(f"Proxy status: {result['status']}")
            click.echo(f"Session: {result['state']} at {result['percentage']}%")
            click.echo(f"Supported sources: {', '.join(result['supported_sources'])}")
    except Exception as e:
        click.echo(f"Health check failed: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx):
    """Show the proxy's migration session"""
    try:
        with MigrationProxyClient(ctx.obj["api_url"]) as client:
            result = client.get_status()
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    stats = result["stats"]
    click.echo(f"Session: {result['session_id']} ({result['source']})")
    click.echo(f"State: {result['state']}")
    click.echo(f"Target share: {result['percentage']}%")
    click.echo(f"Routed to target: {stats['routed_to_target']:,}")
    click.echo(f"Routed to legacy: {stats['routed_to_legacy']:,}")
    click.echo(f"Errors: {stats['errors']:,}")
    if result["rollback_reason"]:
        click.echo(f"Rollback reason: {result['rollback_reason']}")


@cli.command()
@click.argument("value", type=click.IntRange(0, 100))
@click.pass_context
def percentage(ctx, value):
    """Route VALUE percent of jobs to the target"""
    try:
        with MigrationProxyClient(ctx.obj["api_url"]) as client:
            result = client.set_percentage(value)
            click.echo(result["message"])
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.confirmation_option(prompt="Route all traffic to the target permanently?")
@click.pass_context
def cutover(ctx):
    """Route all jobs to the target"""
    try:
        with MigrationProxyClient(ctx.obj["api_url"]) as client:
            result = client.cutover()
            click.echo(result["message"])
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--reason", required=True, help="Why the migration is being rolled back")
@click.pass_context
def rollback(ctx, reason):
    """Route all jobs back to legacy"""
    try:
        with MigrationProxyClient(ctx.obj["api_url"]) as client:
            result = client.rollback(reason)
            click.echo(result["message"])
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
