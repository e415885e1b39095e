import io
import json

import pytest

from core.adapters import SidekiqAdapter, SourceAdapter
from core.errors import ConnectionFailure, ForwardFailure, WriteFailure
from core.models import AnalysisResult, CanonicalJob
from core.transfer import (
    export_jobs,
    export_to_file,
    import_file,
    import_lines,
    read_jobs,
    validate_file,
    validate_lines,
)


class StaticAdapter(SourceAdapter):
    source = "static"

    def __init__(self, jobs=None, error=None):
        super().__init__()
        self.jobs = jobs or []
        self.error = error

    def analyze(self):
        return AnalysisResult(source=self.source, connection="memory")

    def export(self):
        if self.error:
            raise self.error
        return list(self.jobs)

    def close(self):
        pass


class BrokenStream(io.StringIO):
    def write(self, s):
        raise OSError("disk full")


def _lines(*records):
    return [json.dumps(record) + "\n" for record in records]


class TestExport:
    def test_export_jobs_writes_ndjson(self):
        jobs = [CanonicalJob(type="a", args=[1]), CanonicalJob(type="b", queue="q", priority=2)]
        stream = io.StringIO()

        assert export_jobs(StaticAdapter(jobs), stream) == 2

        lines = stream.getvalue().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0]) == {"type": "a", "queue": "default", "args": [1]}

    def test_round_trip_through_ndjson(self, fake_redis):
        fake_redis.sets["queues"] = {"mailers"}
        fake_redis.lists["queue:mailers"] = [
            json.dumps({"class": "Mailers::WelcomeEmail", "args": [{"id": 1}], "jid": "j1"}),
            json.dumps({"class": "Mailers::Digest", "args": "weekly", "jid": "j2"}),
        ]
        adapter = SidekiqAdapter(fake_redis)
        stream = io.StringIO()
        export_jobs(adapter, stream)

        stream.seek(0)
        read_back = [job for _, job in read_jobs(stream)]
        assert read_back == adapter.export()

    def test_write_failure(self):
        with pytest.raises(WriteFailure):
            export_jobs(StaticAdapter([CanonicalJob(type="a")]), BrokenStream())

    def test_export_to_file(self, tmp_path):
        output = tmp_path / "jobs.ndjson"
        adapter = StaticAdapter([CanonicalJob(type="a"), CanonicalJob(type="b")])
        count = export_to_file(adapter, output)

        assert count == 2
        assert len(output.read_text().splitlines()) == 2
        assert list(tmp_path.iterdir()) == [output]

    def test_failed_export_leaves_nothing(self, tmp_path):
        output = tmp_path / "jobs.ndjson"
        adapter = StaticAdapter(error=ConnectionFailure("redis down"))

        with pytest.raises(ConnectionFailure):
            export_to_file(adapter, output)

        assert list(tmp_path.iterdir()) == []

    def test_export_to_missing_directory(self, tmp_path):
        with pytest.raises(WriteFailure):
            export_to_file(StaticAdapter(), tmp_path / "missing" / "jobs.ndjson")


class TestReadJobs:
    def test_skips_blank_lines_and_reports_errors(self):
        lines = ['{"type":"a","queue":"q","args":[]}\n', "\n", "{bad\n"]
        items = list(read_jobs(lines))

        assert [line for line, _ in items] == [1, 3]
        assert isinstance(items[0][1], CanonicalJob)
        assert not isinstance(items[1][1], CanonicalJob)


class TestImport:
    def test_malformed_line_counted_as_failed(self, target_client, target_recorder):
        lines = [
            '{"type":"email.send","queue":"mail","args":["a"]}\n',
            "{this is not json\n",
            '{"type":"email.send","queue":"mail","args":["b"],"priority":3}\n',
        ]

        result = import_lines(target_client, lines)

        assert (result.total, result.success, result.failed) == (3, 2, 1)
        assert len(target_recorder.jobs) == 2
        assert target_recorder.jobs[1] == {
            "type": "email.send",
            "args": ["b"],
            "options": {"queue": "mail", "priority": 3},
        }

    def test_rejected_job_counted_as_failed(self, target_client, target_recorder):
        target_recorder.fail_types = {"bad.job"}
        lines = _lines(
            {"type": "good.job", "queue": "q", "args": []},
            {"type": "bad.job", "queue": "q", "args": []},
        )

        result = import_lines(target_client, lines)

        assert (result.total, result.success, result.failed) == (2, 1, 1)

    def test_batches(self, target_client):
        lines = _lines(*({"type": "t", "queue": "q", "args": [i]} for i in range(5)))

        result = import_lines(target_client, lines, batch_size=2)

        assert result.batches == 3
        assert result.success == 5

    def test_bulk_submission(self, target_client, target_recorder):
        lines = _lines(*({"type": "t", "queue": "q", "args": [i]} for i in range(3)))

        result = import_lines(target_client, lines, batch_size=2, bulk=True)

        assert result.success == 3
        paths = [path for _, path, _ in target_recorder.requests]
        assert paths == ["/ojs/v1/jobs/batch", "/ojs/v1/jobs/batch"]
        assert len(target_recorder.requests[0][2]["jobs"]) == 2

    def test_progress_reported(self, target_client):
        seen = []
        lines = _lines(*({"type": "t", "queue": "q", "args": []} for _ in range(4)))

        def progress(done, total):
            seen.append((done, total))

        import_lines(target_client, lines, batch_size=2, progress=progress)

        assert seen == [(2, 2), (4, 4)]

    def test_failing_progress_callback_does_not_stop_import(self, target_client):
        def progress(done, total):
            raise RuntimeError("ui gone")

        lines = _lines({"type": "t", "queue": "q", "args": []})
        assert import_lines(target_client, lines, progress=progress).success == 1

    def test_invalid_batch_size(self, target_client):
        with pytest.raises(ValueError):
            import_lines(target_client, [], batch_size=0)

    def test_api_key_sent(self, target_client, target_recorder):
        import_lines(target_client, _lines({"type": "t", "queue": "q", "args": []}))
        assert target_client.client.headers["Authorization"] == "Bearer secret"

    def test_import_file(self, tmp_path, target_client):
        path = tmp_path / "jobs.ndjson"
        path.write_text("".join(_lines({"type": "t", "queue": "q", "args": []})))

        assert import_file(target_client, path).success == 1

    def test_import_file_with_undecodable_line(self, tmp_path, target_client, target_recorder):
        good = b'{"type":"t","queue":"q","args":[]}\n'
        path = tmp_path / "jobs.ndjson"
        path.write_bytes(good + b"\xff\xfe\n" + good)

        result = import_file(target_client, path)

        assert (result.total, result.success, result.failed) == (3, 2, 1)
        assert len(target_recorder.jobs) == 2


class TestValidate:
    def test_reports_every_problem(self):
        lines = [
            '{"type":"a","queue":"q","args":[]}\n',
            "not json\n",
            '{"type":"","queue":"q","args":{}}\n',
            "[1, 2]\n",
            "\n",
        ]

        result = validate_lines(lines)

        assert (result.total, result.valid, result.invalid) == (4, 1, 3)
        messages = [(error.line, error.message) for error in result.errors]
        assert messages[0][0] == 2
        assert messages[0][1].startswith("invalid JSON")
        assert (3, "missing required field: type") in messages
        assert (3, "args must be a JSON array") in messages
        assert (4, "record must be a JSON object") in messages

    def test_dry_run_is_repeatable(self, tmp_path):
        path = tmp_path / "jobs.ndjson"
        path.write_text('{"type":"a","queue":"q","args":[]}\n{"type":"b"}\n')

        first = validate_file(path)
        second = validate_file(path)

        assert first == second
        assert first.to_dict()["invalid"] == 1

    def test_undecodable_line_counted_invalid(self, tmp_path):
        path = tmp_path / "jobs.ndjson"
        path.write_bytes(b'{"type":"a","queue":"q","args":[]}\n\xff\xfe\n')

        result = validate_file(path)

        assert (result.total, result.valid, result.invalid) == (2, 1, 1)
        assert result.errors[0].line == 2
        assert result.errors[0].message.startswith("invalid JSON")


class TestTargetClient:
    def test_health_check(self, target_client):
        assert target_client.health_check() == {"status": "ok"}

    def test_rejection_raises(self, target_client, target_recorder):
        target_recorder.fail_types = {"bad"}

        with pytest.raises(ForwardFailure) as exc_info:
            target_client.submit_job(CanonicalJob(type="bad"))

        assert exc_info.value.status_code == 422
