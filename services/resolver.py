import asyncio
from typing import Callable, List, Optional, Union

import redis.asyncio as redis

from config.config import ResolverSettings
from config.constants import CANCELLED_ERROR, TIMEOUT_ERROR
from config.logger import get_logger
from models.job import (
    EnhancementResult,
    JobRecord,
    JobStatus,
    ProgressEvent,
    ProgressStatus,
    ResolutionState,
)
from models.request import JobHandle
from services.poll_loop import PollClient, PollLoop
from services.progress import (
    ProgressCallback,
    as_reporter,
    cancelled_event,
    completed_event,
    failed_event,
    timeout_event,
)
from services.push_listener import PushListener

logger = get_logger(__name__)

DEFAULT_FAILURE = "Processing failed"

PushListenerFactory = Callable[..., PushListener]


class CompletionResolver:
    """Races the push channel against the poll loop for one job.

    Exactly one terminal outcome is produced per ``resolve`` call. The
    ``ResolutionState`` guard is checked and set inside synchronous callback
    bodies, so under asyncio no other channel can interleave between the check
    and the set. Whichever path resolves first tears down the others; every
    teardown is idempotent.
    """

    def __init__(
        self,
        poll_client: PollClient,
        settings: ResolverSettings,
        redis_client: Optional[redis.Redis] = None,
        channel_prefix: str = "ai_generations",
        push_listener_factory: PushListenerFactory = PushListener,
    ):
        self.poll_client = poll_client
        self.settings = settings
        self.redis_client = redis_client
        self.channel_prefix = channel_prefix
        self.push_listener_factory = push_listener_factory

    async def resolve(
        self,
        handle: Union[JobHandle, str],
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> EnhancementResult:
        if isinstance(handle, str):
            handle = JobHandle(job_id=handle)

        job_id = handle.job_id
        loop = asyncio.get_running_loop()
        reporter = as_reporter(on_progress)
        state = ResolutionState(started_at=loop.time())
        outcome: asyncio.Future = loop.create_future()

        push: Optional[PushListener] = None
        poll: Optional[PollLoop] = None
        tasks: List[asyncio.Task] = []
        timer: Optional[asyncio.TimerHandle] = None

        def teardown() -> None:
            if push is not None:
                push.unsubscribe()
            if poll is not None:
                poll.stop()
            if timer is not None:
                timer.cancel()
            current = asyncio.current_task()
            for task in tasks:
                if task is not current and not task.done():
                    task.cancel()

        def finish(result: EnhancementResult, event: ProgressEvent, source: str) -> bool:
            if state.resolved:
                logger.debug("Ignoring late terminal signal", job_id=job_id, source=source)
                return False
            state.resolved = True
            state.resolved_by = source

            reporter.finish(event)
            teardown()
            if not outcome.done():
                outcome.set_result(result)

            logger.info(
                "Enhancement resolved",
                job_id=job_id,
                status=result.status.value,
                source=source,
                elapsed=round(loop.time() - state.started_at, 3),
            )
            return True

        def elapsed_ms() -> int:
            return int((loop.time() - state.started_at) * 1000)

        def on_record(source: str) -> Callable[[JobRecord], None]:
            def handle_record(record: JobRecord) -> None:
                if record.status == JobStatus.COMPLETED and record.output_url:
                    finish(
                        EnhancementResult(
                            success=True,
                            status=ProgressStatus.COMPLETED,
                            generation_id=job_id,
                            output_url=record.output_url,
                            processing_time_ms=elapsed_ms(),
                        ),
                        completed_event(record.output_url),
                        source,
                    )
                    return

                error = record.error or DEFAULT_FAILURE
                finish(
                    EnhancementResult(
                        success=False,
                        status=ProgressStatus.FAILED,
                        generation_id=job_id,
                        error=error,
                        processing_time_ms=elapsed_ms(),
                    ),
                    failed_event(error),
                    source,
                )

            return handle_record

        def cancel(source: str) -> None:
            finish(
                EnhancementResult(
                    success=False,
                    status=ProgressStatus.CANCELLED,
                    generation_id=job_id,
                    error=CANCELLED_ERROR,
                    processing_time_ms=elapsed_ms(),
                ),
                cancelled_event(),
                source,
            )

        def expire() -> None:
            finish(
                EnhancementResult(
                    success=False,
                    status=ProgressStatus.TIMEOUT,
                    generation_id=job_id,
                    error=TIMEOUT_ERROR,
                    processing_time_ms=elapsed_ms(),
                ),
                timeout_event(),
                "timeout",
            )

        def note_poll() -> None:
            state.last_poll_at = loop.time()

        if cancel_event is not None and cancel_event.is_set():
            cancel("cancel")
            return outcome.result()

        if cancel_event is not None:

            async def watch_cancel() -> None:
                await cancel_event.wait()
                cancel("cancel")

            tasks.append(asyncio.create_task(watch_cancel(), name=f"cancel:{job_id}"))

        timer = loop.call_later(self.settings.max_wait, expire)

        if self.redis_client is not None:
            push = self.push_listener_factory(
                self.redis_client,
                job_id,
                on_record("push"),
                reporter=reporter,
                channel_prefix=self.channel_prefix,
            )
            tasks.append(push.start())

        poll = PollLoop(
            self.poll_client,
            job_id,
            on_record("poll"),
            reporter,
            interval=self.settings.poll_interval,
            max_wait=self.settings.max_wait,
            is_resolved=lambda: state.resolved,
            cancel_event=cancel_event,
            poll_url=handle.poll_url,
            on_attempt=note_poll,
            started_at=state.started_at,
        )

        async def start_poll_after_head_start() -> None:
            # gives the push subscription a chance to connect first
            await asyncio.sleep(self.settings.push_head_start)
            if state.resolved:
                return
            await poll.run()

        tasks.append(asyncio.create_task(start_poll_after_head_start(), name=f"poll:{job_id}"))

        try:
            return await outcome
        finally:
            if not state.resolved:
                # the caller abandoned the await itself
                cancel("caller")
            teardown()
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for task, result in zip(tasks, results):
                if isinstance(result, Exception):
                    logger.error(
                        "Channel task failed",
                        job_id=job_id,
                        task=task.get_name(),
                        error=str(result),
                        exc_info=result,
                    )
