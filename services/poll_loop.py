import asyncio
from typing import Callable, Dict, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from config.constants import FINALIZING_MESSAGE, PROCESSING_MESSAGE, QUEUED_MESSAGE, USER_AGENT
from config.logger import get_logger
from models.job import JobRecord, JobStatus
from services.progress import ProgressReporter
from utils.exceptions import PollTransportError

logger = get_logger(__name__)


class PollClient:
    """Queries the poll endpoint for one job's current status."""

    def __init__(self, http_client: httpx.AsyncClient, poll_url: str, api_token: str = ""):
        self.http_client = http_client
        self.poll_url = poll_url
        self.api_token = api_token

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    async def fetch_status(self, job_id: str, poll_url: Optional[str] = None) -> JobRecord:
        try:
            response = await self.http_client.post(
                poll_url or self.poll_url,
                json={"generation_id": job_id},
                headers=self._headers(),
            )
            response.raise_for_status()
            return JobRecord.model_validate(response.json())
        except (httpx.RequestError, httpx.HTTPStatusError) as e:
            raise PollTransportError(f"Poll request failed: {e}") from e
        except (ValueError, PydanticValidationError) as e:
            raise PollTransportError(f"Unreadable poll response: {e}") from e


class PollLoop:
    """Fallback status polling for one job.

    A cooperative loop rather than a recurring timer: every iteration checks
    elapsed time, cancellation and whether the call is already resolved before
    querying, and again after the query returns, so nothing fires after
    ``stop``.
    """

    def __init__(
        self,
        client: PollClient,
        job_id: str,
        on_terminal: Callable[[JobRecord], None],
        reporter: ProgressReporter,
        interval: float,
        max_wait: float,
        is_resolved: Callable[[], bool] = lambda: False,
        cancel_event: Optional[asyncio.Event] = None,
        poll_url: Optional[str] = None,
        on_attempt: Optional[Callable[[], None]] = None,
        started_at: Optional[float] = None,
    ):
        self.client = client
        self.job_id = job_id
        self.on_terminal = on_terminal
        self.reporter = reporter
        self.interval = interval
        self.max_wait = max_wait
        self.is_resolved = is_resolved
        self.cancel_event = cancel_event
        self.poll_url = poll_url
        self.on_attempt = on_attempt
        self.started_at = started_at
        self.attempts = 0
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        self._stopped = True

    def _should_stop(self) -> bool:
        if self._stopped or self.is_resolved():
            return True
        return bool(self.cancel_event and self.cancel_event.is_set())

    def _report(self, record: JobRecord, elapsed: float) -> None:
        if record.status == JobStatus.QUEUED:
            self.reporter.queued(record.message or QUEUED_MESSAGE)
        elif record.status == JobStatus.COMPLETED:
            self.reporter.processing(FINALIZING_MESSAGE, elapsed)
        else:
            self.reporter.processing(record.message or PROCESSING_MESSAGE, elapsed)

    async def run(self) -> Optional[JobRecord]:
        loop = asyncio.get_running_loop()
        started = self.started_at if self.started_at is not None else loop.time()

        while not self._should_stop():
            if loop.time() - started >= self.max_wait:
                logger.info(
                    "Poll loop reached max wait", job_id=self.job_id, attempts=self.attempts
                )
                return None

            self.attempts += 1
            if self.on_attempt:
                self.on_attempt()

            try:
                record = await self.client.fetch_status(self.job_id, self.poll_url)
            except PollTransportError as e:
                logger.warning(
                    "Status poll failed, retrying next tick",
                    job_id=self.job_id,
                    attempt=self.attempts,
                    error=str(e),
                )
                record = None

            if self._should_stop():
                return None

            if record is not None:
                if record.is_terminal:
                    self._stopped = True
                    logger.info(
                        "Poll channel observed terminal status",
                        job_id=self.job_id,
                        status=record.status.value,
                    )
                    self.on_terminal(record)
                    return record
                self._report(record, loop.time() - started)

            await asyncio.sleep(self.interval)

        return None
