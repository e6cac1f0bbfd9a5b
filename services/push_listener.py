import asyncio
import json
from typing import Callable, Optional

import redis.asyncio as redis
from pydantic import ValidationError as PydanticValidationError

from config.constants import (
    FINALIZING_MESSAGE,
    PROCESSING_MESSAGE,
    PUSH_READ_TIMEOUT_SECONDS,
    QUEUED_MESSAGE,
)
from config.logger import get_logger
from models.job import JobRecord, JobStatus
from services.progress import ProgressReporter
from utils.job_store import job_channel

logger = get_logger(__name__)


class PushListener:
    """Change-notification subscription for one job record.

    The terminal callback fires at most once, and only for a completed record
    that carries an output locator or for a failed record. Transport failures
    are logged and leave the channel silent; they are never job failures.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        job_id: str,
        on_terminal: Callable[[JobRecord], None],
        reporter: Optional[ProgressReporter] = None,
        channel_prefix: str = "ai_generations",
        read_timeout: float = PUSH_READ_TIMEOUT_SECONDS,
    ):
        self.redis_client = redis_client
        self.job_id = job_id
        self.on_terminal = on_terminal
        self.reporter = reporter
        self.channel = job_channel(channel_prefix, job_id)
        self.read_timeout = read_timeout
        self.fired = False
        self._closed = False
        self._task: Optional[asyncio.Task] = None
        self._started_at: Optional[float] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    def start(self) -> asyncio.Task:
        if self._task is None:
            self._started_at = asyncio.get_running_loop().time()
            self._task = asyncio.create_task(self._listen(), name=f"push:{self.job_id}")
        return self._task

    def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        # the listener task closes its own subscription when it unwinds
        if self._task and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()

    async def _listen(self) -> None:
        pubsub = self.redis_client.pubsub()
        try:
            await pubsub.subscribe(self.channel)
            logger.debug("Subscribed to job channel", channel=self.channel)

            while not self._closed:
                try:
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True, timeout=self.read_timeout
                    )
                except UnicodeDecodeError as e:
                    logger.warning(
                        "Ignoring undecodable job notification", channel=self.channel, error=str(e)
                    )
                    continue
                if message is None or message.get("type") != "message":
                    continue
                self._handle(message.get("data"))
        except (redis.RedisError, ConnectionError, OSError) as e:
            logger.warning(
                "Push channel unavailable, relying on polling", channel=self.channel, error=str(e)
            )
        finally:
            await self._close_subscription(pubsub)

    async def _close_subscription(self, pubsub) -> None:
        try:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()
        except (redis.RedisError, ConnectionError, OSError) as e:
            logger.debug("Error closing push subscription", channel=self.channel, error=str(e))

    def _parse(self, data) -> Optional[JobRecord]:
        try:
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            payload = json.loads(data) if isinstance(data, str) else data
            return JobRecord.model_validate(payload)
        except (TypeError, ValueError, PydanticValidationError) as e:
            logger.warning(
                "Ignoring unreadable job notification", channel=self.channel, error=str(e)
            )
            return None

    def _handle(self, data) -> None:
        if self._closed or self.fired:
            return

        record = self._parse(data)
        if record is None:
            return

        if record.is_terminal:
            self.fired = True
            self._closed = True
            logger.info(
                "Push channel observed terminal status",
                job_id=self.job_id,
                status=record.status.value,
            )
            self.on_terminal(record)
            return

        if self.reporter is None:
            return

        elapsed = asyncio.get_running_loop().time() - (self._started_at or 0.0)
        if record.status == JobStatus.QUEUED:
            self.reporter.queued(record.message or QUEUED_MESSAGE)
        elif record.status == JobStatus.COMPLETED:
            self.reporter.processing(FINALIZING_MESSAGE, elapsed)
        else:
            self.reporter.processing(record.message or PROCESSING_MESSAGE, elapsed)
