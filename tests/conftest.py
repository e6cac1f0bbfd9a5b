"""Shared fakes for the enhancement resolver tests."""

import asyncio
import json
import time
from typing import Dict, List, Optional

import pytest
import redis.asyncio as redis

from config.config import ResolverSettings
from models.job import JobRecord, ProgressEvent
from utils.exceptions import PollTransportError


class FakePubSub:
    def __init__(self, broker: "FakeRedis"):
        self.broker = broker
        self.queue: asyncio.Queue = asyncio.Queue()
        self.channels: List[str] = []
        self.closed = False

    async def subscribe(self, channel: str):
        self.channels.append(channel)
        self.broker.subscribers.setdefault(channel, []).append(self)

    async def unsubscribe(self, channel: str):
        subscribers = self.broker.subscribers.get(channel, [])
        if self in subscribers:
            subscribers.remove(self)
        if channel in self.channels:
            self.channels.remove(channel)

    async def get_message(self, ignore_subscribe_messages: bool = False, timeout: float = 0.0):
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def aclose(self):
        self.closed = True


class FakeRedis:
    """In-memory pub/sub broker with the redis.asyncio surface the listener uses."""

    def __init__(self):
        self.subscribers: Dict[str, List[FakePubSub]] = {}
        self.pubsubs: List[FakePubSub] = []

    def pubsub(self) -> FakePubSub:
        pubsub = FakePubSub(self)
        self.pubsubs.append(pubsub)
        return pubsub

    async def publish(self, channel: str, data) -> int:
        if isinstance(data, dict):
            data = json.dumps(data)
        subscribers = list(self.subscribers.get(channel, []))
        for pubsub in subscribers:
            pubsub.queue.put_nowait({"type": "message", "channel": channel, "data": data})
        return len(subscribers)

    async def wait_for_subscriber(self, channel: str, timeout: float = 1.0):
        deadline = time.monotonic() + timeout
        while not self.subscribers.get(channel):
            if time.monotonic() > deadline:
                raise AssertionError(f"nobody subscribed to {channel}")
            await asyncio.sleep(0.001)


class BrokenPubSub(FakePubSub):
    async def subscribe(self, channel: str):
        raise redis.ConnectionError("connection refused")


class BrokenRedis(FakeRedis):
    def pubsub(self) -> FakePubSub:
        pubsub = BrokenPubSub(self)
        self.pubsubs.append(pubsub)
        return pubsub


class ScriptedPollClient:
    """Returns scripted records or raises scripted errors; the last entry repeats."""

    def __init__(self, *script):
        self.script = list(script)
        self.calls = 0
        self.poll_urls: List[Optional[str]] = []

    async def fetch_status(self, job_id: str, poll_url: Optional[str] = None) -> JobRecord:
        self.calls += 1
        self.poll_urls.append(poll_url)
        index = min(self.calls - 1, len(self.script) - 1)
        step = self.script[index]
        if isinstance(step, Exception):
            raise step
        if isinstance(step, dict):
            return JobRecord.model_validate(step)
        return step


class FakeJobStore:
    """Dict-backed stand-in for JobRecordStore."""

    def __init__(self, healthy: bool = True):
        self.records: Dict[str, JobRecord] = {}
        self.writes: List[JobRecord] = []
        self.healthy = healthy
        self.closed = False

    async def get_record(self, job_id: str) -> Optional[JobRecord]:
        return self.records.get(job_id)

    async def put_record(self, job_id: str, record: JobRecord) -> JobRecord:
        record = record.model_copy(update={"id": job_id, "updated_at": time.time()})
        self.records[job_id] = record
        self.writes.append(record)
        return record

    async def ping(self) -> bool:
        return self.healthy

    async def close(self):
        self.closed = True


class EventLog:
    def __init__(self):
        self.events: List[ProgressEvent] = []

    def __call__(self, event: ProgressEvent):
        self.events.append(event)

    @property
    def statuses(self) -> List[str]:
        return [event.status.value for event in self.events]

    @property
    def terminal(self) -> List[ProgressEvent]:
        return [event for event in self.events if event.status.is_terminal]

    @property
    def progress_values(self) -> List[float]:
        return [
            event.progress
            for event in self.events
            if event.progress is not None and not event.status.is_terminal
        ]


def transport_error(message: str = "connection reset") -> PollTransportError:
    return PollTransportError(message)


@pytest.fixture
def settings() -> ResolverSettings:
    return ResolverSettings(poll_interval=0.01, max_wait=0.5, push_head_start=0.02)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def event_log() -> EventLog:
    return EventLog()


@pytest.fixture
def job_store() -> FakeJobStore:
    return FakeJobStore()
