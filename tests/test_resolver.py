"""Tests for the push/poll completion race."""

import asyncio

import pytest

from config.config import ResolverSettings
from models.job import JobRecord, JobStatus, ProgressStatus
from models.request import JobHandle
from services.resolver import CompletionResolver
from utils.job_store import job_channel

from conftest import BrokenRedis, ScriptedPollClient, transport_error

QUEUED = {"status": "queued"}
PROCESSING = {"status": "processing"}
DONE = {"status": "completed", "output_url": "https://cdn.example.com/out.png"}


def make_resolver(poll_client, settings, redis_client=None):
    return CompletionResolver(poll_client, settings, redis_client=redis_client)


async def test_poll_resolves_completed_job(settings, event_log):
    client = ScriptedPollClient(QUEUED, PROCESSING, DONE)
    resolver = make_resolver(client, settings)

    result = await resolver.resolve("gen-1", event_log)

    assert result.success
    assert result.status == ProgressStatus.COMPLETED
    assert result.output_url == DONE["output_url"]
    assert result.generation_id == "gen-1"
    assert client.calls == 3
    assert event_log.statuses == ["queued", "processing", "completed"]
    assert event_log.events[-1].progress == 100


async def test_poll_resolves_failed_job_with_error(settings, event_log):
    client = ScriptedPollClient(PROCESSING, {"status": "failed", "error": "NSFW content"})
    resolver = make_resolver(client, settings)

    result = await resolver.resolve("gen-1", event_log)

    assert not result.success
    assert result.status == ProgressStatus.FAILED
    assert result.error == "NSFW content"
    assert len(event_log.terminal) == 1
    assert event_log.events[-1].error == "NSFW content"


async def test_failed_job_without_error_gets_default_message(settings, event_log):
    resolver = make_resolver(ScriptedPollClient({"status": "failed"}), settings)

    result = await resolver.resolve("gen-1", event_log)

    assert result.error == "Processing failed"


async def test_completed_without_output_keeps_polling(settings, event_log):
    client = ScriptedPollClient({"status": "completed"}, {"status": "completed"}, DONE)
    resolver = make_resolver(client, settings)

    result = await resolver.resolve("gen-1", event_log)

    assert result.success
    assert client.calls == 3
    assert event_log.events[0].message == "Finalizing..."
    assert event_log.events[-1].status == ProgressStatus.COMPLETED


async def test_push_before_head_start_issues_no_poll_requests(fake_redis, event_log):
    settings = ResolverSettings(poll_interval=0.01, max_wait=1.0, push_head_start=0.3)
    client = ScriptedPollClient(DONE)
    resolver = make_resolver(client, settings, redis_client=fake_redis)

    async def worker():
        channel = job_channel("ai_generations", "gen-1")
        await fake_redis.wait_for_subscriber(channel)
        await fake_redis.publish(channel, PROCESSING)
        await fake_redis.publish(channel, DONE)

    publisher = asyncio.create_task(worker())
    result = await resolver.resolve("gen-1", event_log)
    await publisher

    assert result.success
    assert result.output_url == DONE["output_url"]
    assert client.calls == 0
    assert event_log.statuses == ["processing", "completed"]


async def test_poll_wins_and_late_push_is_ignored(settings, fake_redis, event_log):
    client = ScriptedPollClient(DONE)
    resolver = make_resolver(client, settings, redis_client=fake_redis)

    result = await resolver.resolve("gen-1", event_log)
    assert result.success
    events_before = list(event_log.events)

    channel = job_channel("ai_generations", "gen-1")
    receivers = await fake_redis.publish(channel, {"status": "failed", "error": "late"})
    await asyncio.sleep(0.02)

    assert receivers == 0
    assert event_log.events == events_before
    assert all(pubsub.closed for pubsub in fake_redis.pubsubs)


async def test_both_channels_terminal_resolve_exactly_once(fake_redis, event_log):
    settings = ResolverSettings(poll_interval=0.01, max_wait=1.0, push_head_start=0.0)
    client = ScriptedPollClient(PROCESSING, PROCESSING, DONE)
    resolver = make_resolver(client, settings, redis_client=fake_redis)

    async def worker():
        channel = job_channel("ai_generations", "gen-1")
        await fake_redis.wait_for_subscriber(channel)
        await asyncio.sleep(0.015)
        await fake_redis.publish(channel, DONE)

    publisher = asyncio.create_task(worker())
    result = await resolver.resolve("gen-1", event_log)
    await publisher
    await asyncio.sleep(0.05)

    assert result.success
    assert len(event_log.terminal) == 1
    assert event_log.events[-1].status == ProgressStatus.COMPLETED


async def test_persistent_transport_errors_end_in_timeout(event_log):
    settings = ResolverSettings(poll_interval=0.01, max_wait=0.1, push_head_start=0.0)
    client = ScriptedPollClient(transport_error())
    resolver = make_resolver(client, settings)

    result = await resolver.resolve("gen-1", event_log)

    assert not result.success
    assert result.status == ProgressStatus.TIMEOUT
    assert result.error == "Processing timeout"
    assert client.calls > 1
    assert event_log.statuses == ["timeout"]
    assert event_log.events[-1].message == "Processing took too long"


async def test_transport_hiccups_do_not_fail_the_job(settings, event_log):
    client = ScriptedPollClient(transport_error(), PROCESSING, transport_error(), DONE)
    resolver = make_resolver(client, settings)

    result = await resolver.resolve("gen-1", event_log)

    assert result.success
    assert client.calls == 4


async def test_slow_job_times_out_and_stops_polling(event_log):
    settings = ResolverSettings(poll_interval=0.02, max_wait=0.1, push_head_start=0.0)
    client = ScriptedPollClient(PROCESSING)
    resolver = make_resolver(client, settings)

    result = await resolver.resolve("gen-1", event_log)
    calls_at_timeout = client.calls
    await asyncio.sleep(0.06)

    assert result.status == ProgressStatus.TIMEOUT
    assert client.calls == calls_at_timeout
    assert event_log.events[-1].status == ProgressStatus.TIMEOUT
    # at least one processing update, then the terminal event
    assert "processing" in event_log.statuses


async def test_cancel_mid_flight(settings, event_log):
    client = ScriptedPollClient(PROCESSING)
    resolver = make_resolver(client, settings)
    cancel_event = asyncio.Event()

    async def cancel_soon():
        await asyncio.sleep(0.05)
        cancel_event.set()

    canceller = asyncio.create_task(cancel_soon())
    result = await resolver.resolve("gen-1", event_log, cancel_event)
    await canceller
    calls_at_cancel = client.calls
    await asyncio.sleep(0.05)

    assert not result.success
    assert result.status == ProgressStatus.CANCELLED
    assert result.error == "Cancelled"
    assert client.calls == calls_at_cancel
    assert event_log.events[-1].status == ProgressStatus.CANCELLED
    assert len(event_log.terminal) == 1


async def test_terminal_signals_after_cancel_do_not_change_result(fake_redis, event_log):
    settings = ResolverSettings(poll_interval=0.01, max_wait=1.0, push_head_start=0.0)
    cancel_event = asyncio.Event()

    class DoneAfterCancelClient(ScriptedPollClient):
        async def fetch_status(self, job_id, poll_url=None):
            await super().fetch_status(job_id, poll_url)
            return JobRecord.model_validate(DONE if cancel_event.is_set() else PROCESSING)

    client = DoneAfterCancelClient(PROCESSING)
    resolver = make_resolver(client, settings, redis_client=fake_redis)
    channel = job_channel("ai_generations", "gen-1")

    async def cancel_then_complete():
        await fake_redis.wait_for_subscriber(channel)
        await asyncio.sleep(0.03)
        cancel_event.set()
        await fake_redis.publish(channel, DONE)

    driver = asyncio.create_task(cancel_then_complete())
    result = await resolver.resolve("gen-1", event_log, cancel_event)
    await driver
    await asyncio.sleep(0.03)

    assert client.calls > 0
    assert result.status == ProgressStatus.CANCELLED
    assert len(event_log.terminal) == 1
    assert event_log.events[-1].status == ProgressStatus.CANCELLED


async def test_cancel_before_start_polls_nothing(settings, fake_redis, event_log):
    client = ScriptedPollClient(DONE)
    resolver = make_resolver(client, settings, redis_client=fake_redis)
    cancel_event = asyncio.Event()
    cancel_event.set()

    result = await resolver.resolve("gen-1", event_log, cancel_event)

    assert result.status == ProgressStatus.CANCELLED
    assert client.calls == 0
    assert fake_redis.pubsubs == []
    assert event_log.statuses == ["cancelled"]


async def test_caller_abandoning_the_await_cancels_the_job(settings, event_log):
    client = ScriptedPollClient(PROCESSING)
    resolver = make_resolver(client, settings)

    task = asyncio.create_task(resolver.resolve("gen-1", event_log))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    calls = client.calls
    await asyncio.sleep(0.05)

    assert client.calls == calls
    assert event_log.events[-1].status == ProgressStatus.CANCELLED


async def test_push_transport_failure_falls_back_to_polling(settings, event_log):
    client = ScriptedPollClient(PROCESSING, DONE)
    resolver = make_resolver(client, settings, redis_client=BrokenRedis())

    result = await resolver.resolve("gen-1", event_log)

    assert result.success
    assert client.calls == 2


async def test_progress_never_goes_backwards(settings, event_log):
    client = ScriptedPollClient(PROCESSING, PROCESSING, QUEUED, PROCESSING, DONE)
    resolver = make_resolver(client, settings)

    await resolver.resolve("gen-1", event_log)

    values = event_log.progress_values
    assert values == sorted(values)


async def test_callback_errors_do_not_break_resolution(settings):
    seen = []

    def flaky_callback(event):
        seen.append(event.status)
        raise RuntimeError("ui went away")

    resolver = make_resolver(ScriptedPollClient(PROCESSING, DONE), settings)

    result = await resolver.resolve("gen-1", flaky_callback)

    assert result.success
    assert seen[-1] == ProgressStatus.COMPLETED


async def test_handle_poll_url_overrides_default(settings, event_log):
    client = ScriptedPollClient(DONE)
    resolver = make_resolver(client, settings)
    handle = JobHandle(job_id="gen-1", poll_url="https://worker.example.com/status/gen-1")

    await resolver.resolve(handle, event_log)

    assert client.poll_urls == ["https://worker.example.com/status/gen-1"]


async def test_scaled_down_two_second_interval_example(fake_redis, event_log):
    # 2s interval / 90s max wait, scaled by 1/100
    settings = ResolverSettings(poll_interval=0.02, max_wait=0.9, push_head_start=0.01)
    client = ScriptedPollClient(QUEUED, PROCESSING, PROCESSING, DONE)
    resolver = make_resolver(client, settings, redis_client=fake_redis)

    result = await resolver.resolve("gen-42", event_log)

    assert result.success
    assert result.status.value == JobStatus.COMPLETED.value
    assert result.processing_time_ms is not None
    assert result.processing_time_ms < 900
    assert event_log.statuses[-1] == "completed"
