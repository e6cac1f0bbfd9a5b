import json

import pytest
import redis.asyncio as redis

from models.job import JobRecord, JobStatus
from utils.exceptions import StoreError
from utils.job_store import JobRecordStore, job_channel, record_key


class FakeKV:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.values = {}
        self.expiries = {}
        self.published = []

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("connection refused")

    async def get(self, key):
        self._check()
        return self.values.get(key)

    async def set(self, key, value):
        self._check()
        self.values[key] = value

    async def setex(self, key, ttl, value):
        await self.set(key, value)
        self.expiries[key] = ttl

    async def publish(self, channel, value):
        self._check()
        self.published.append((channel, value))
        return 1

    async def ping(self):
        self._check()
        return True

    async def aclose(self):
        pass


def store_with(client, record_ttl=60) -> JobRecordStore:
    store = JobRecordStore("redis://localhost:6379/0", "ai_generations", record_ttl)
    store.client = client
    return store


def test_key_layout():
    assert job_channel("ai_generations", "gen-1") == "ai_generations:gen-1"
    assert record_key("ai_generations", "gen-1") == "ai_generations:record:gen-1"


async def test_put_record_writes_and_publishes():
    client = FakeKV()
    store = store_with(client)

    record = await store.put_record("gen-1", JobRecord(status=JobStatus.PROCESSING))

    assert record.id == "gen-1"
    assert record.updated_at is not None
    assert client.expiries["ai_generations:record:gen-1"] == 60
    (channel, payload) = client.published[0]
    assert channel == "ai_generations:gen-1"
    assert json.loads(payload)["status"] == "processing"
    assert await store.get_record("gen-1") == record


async def test_put_record_without_ttl():
    client = FakeKV()

    await store_with(client, record_ttl=None).put_record("gen-1", JobRecord(status="queued"))

    assert "ai_generations:record:gen-1" in client.values
    assert client.expiries == {}


async def test_unreadable_record_reads_as_missing():
    client = FakeKV()
    client.values["ai_generations:record:gen-1"] = "{not json"

    assert await store_with(client).get_record("gen-1") is None


async def test_redis_errors_become_store_errors():
    store = store_with(FakeKV(fail=True))

    with pytest.raises(StoreError):
        await store.get_record("gen-1")
    with pytest.raises(StoreError):
        await store.put_record("gen-1", JobRecord(status="queued"))
    assert await store.ping() is False
