from .base import AdapterFactory, SourceAdapter, adapter_factory
from .bullmq import BullMQAdapter, parse_bullmq_hash, parse_bullmq_job
from .celery import CeleryAdapter, decode_celery_body, parse_celery_message
from .faktory import FaktoryAdapter, parse_faktory_job
from .river import RiverAdapter, parse_river_job
from .sidekiq import SidekiqAdapter, parse_sidekiq_job

adapter_factory.register("sidekiq", SidekiqAdapter)
adapter_factory.register("bullmq", BullMQAdapter)
adapter_factory.register("celery", CeleryAdapter)
adapter_factory.register("faktory", FaktoryAdapter)
adapter_factory.register("river", RiverAdapter)

__all__ = [
    "AdapterFactory",
    "SourceAdapter",
    "adapter_factory",
    "SidekiqAdapter",
    "BullMQAdapter",
    "CeleryAdapter",
    "FaktoryAdapter",
    "RiverAdapter",
    "parse_sidekiq_job",
    "parse_bullmq_job",
    "parse_bullmq_hash",
    "parse_celery_message",
    "decode_celery_body",
    "parse_faktory_job",
    "parse_river_job",
]
