import base64
import json

import pytest

from core.errors import ParseFailure, RecordError
from core.translator import JobTranslator


class TestJobTranslator:
    def test_unsupported_source(self):
        with pytest.raises(ValueError, match="unsupported source"):
            JobTranslator("resque")

    def test_sidekiq(self):
        body = b'{"class":"Mailers::WelcomeEmail","args":[],"queue":"mailers","jid":"d1"}'
        job = JobTranslator("sidekiq").translate(body)

        assert job.type == "mailers.welcome.email"
        assert job.queue == "mailers"

    def test_bullmq_uses_payload_queue(self):
        body = json.dumps(
            {
                "queue": "notifications",
                "name": "email.send",
                "data": {"to": "a@b.com"},
                "opts": {"priority": 5},
            }
        )
        job = JobTranslator("bullmq").translate(body)

        assert job.to_dict() == {
            "type": "email.send",
            "queue": "notifications",
            "args": [{"to": "a@b.com"}],
            "priority": 5,
            "meta": {"bullmq_source": True},
        }

    def test_bullmq_default_queue(self):
        job = JobTranslator("bullmq").translate('{"name":"x","data":1}')
        assert job.queue == "default"
        assert job.args == [1]

    def test_celery_routing_key(self):
        body = json.dumps(
            {
                "headers": {"task": "app.tasks.charge", "id": "c1"},
                "body": base64.b64encode(b'[[5], {}, {}]').decode(),
                "properties": {"delivery_info": {"routing_key": "payments"}},
            }
        )
        job = JobTranslator("celery").translate(body)

        assert job.type == "app.tasks.charge"
        assert job.queue == "payments"
        assert job.args == [5]

    def test_faktory(self):
        job = JobTranslator("faktory").translate('{"jobtype":"SendInvoice","args":[1],"jid":"f"}')
        assert job.type == "send.invoice"

    def test_river(self):
        job = JobTranslator("river").translate('{"kind":"sync_account","args":"{\\"id\\": 1}"}')
        assert job.type == "sync.account"
        assert job.args == [{"id": 1}]

    @pytest.mark.parametrize("body", [b"", b"{", b"[1]", b'"text"'])
    def test_unreadable_bodies(self, body):
        with pytest.raises(ParseFailure):
            JobTranslator("sidekiq").translate(body)

    @pytest.mark.parametrize(
        "source, body",
        [
            ("sidekiq", '{"class":"A","args":[],"at":1e20}'),
            ("sidekiq", '{"class":"A","args":[],"at":Infinity}'),
            ("bullmq", '{"name":"x","opts":{"delay":1e18}}'),
            ("celery", '{"headers":{"task":"a.b"},"body":{"x":1}}'),
        ],
    )
    def test_out_of_range_values_are_record_errors(self, source, body):
        with pytest.raises(RecordError):
            JobTranslator(source).translate(body)

    def test_missing_identifier_is_record_error(self):
        with pytest.raises(RecordError):
            JobTranslator("faktory").translate('{"args":[]}')

    def test_translation_is_deterministic(self):
        translator = JobTranslator("sidekiq")
        body = b'{"class":"Billing::Charge","args":[{"amount":5}],"jid":"x"}'
        assert translator.translate(body) == translator.translate(body)
