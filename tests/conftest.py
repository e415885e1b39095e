import fnmatch
import json

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from core.target import TargetClient


class FakeRedis:
    """In-memory stand-in for the few redis commands the adapters issue."""

    def __init__(self, fail: bool = False):
        self.sets = {}
        self.lists = {}
        self.zsets = {}
        self.hashes = {}
        self.strings = {}
        self.fail = fail
        self.closed = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("Connection refused")

    def smembers(self, key):
        self._check()
        return set(self.sets.get(key, set()))

    def lrange(self, key, start, end):
        self._check()
        items = self.lists.get(key, [])
        return list(items[start:] if end == -1 else items[start : end + 1])

    def zcard(self, key):
        self._check()
        return len(self.zsets.get(key, []))

    def zrange(self, key, start, end):
        self._check()
        items = self.zsets.get(key, [])
        return list(items[start:] if end == -1 else items[start : end + 1])

    def scan_iter(self, match=None, count=None):
        self._check()
        keys = set(self.sets) | set(self.lists) | set(self.zsets)
        keys |= set(self.hashes) | set(self.strings)
        for key in sorted(keys):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    def hget(self, key, field):
        self._check()
        return self.hashes.get(key, {}).get(field)

    def hgetall(self, key):
        self._check()
        return dict(self.hashes.get(key, {}))

    def close(self):
        self.closed = True


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def failing_redis():
    return FakeRedis(fail=True)


class RecordingTarget:
    """Handler for httpx.MockTransport that records what the target receives."""

    def __init__(self, status_code=201, fail_types=()):
        self.status_code = status_code
        self.fail_types = set(fail_types)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body))

        if request.url.path.endswith("/health"):
            return httpx.Response(200, json={"status": "ok"})
        if isinstance(body, dict) and body.get("type") in self.fail_types:
            return httpx.Response(422, json={"error": "rejected"})
        return httpx.Response(self.status_code, json={"id": f"job-{len(self.requests)}"})

    @property
    def jobs(self):
        return [body for _, path, body in self.requests if path.endswith("/jobs")]


@pytest.fixture
def target_recorder():
    return RecordingTarget()


@pytest.fixture
def target_client(target_recorder):
    client = TargetClient(
        "http://target.test", api_key="secret", transport=httpx.MockTransport(target_recorder)
    )
    yield client
    client.close()
