from dataclasses import replace
from typing import Callable, Optional

from config.constants import (
    CANCELLED_ERROR,
    CANCELLED_MESSAGE,
    COMPLETED_MESSAGE,
    COMPLETED_PROGRESS,
    PROCESSING_BASE_PROGRESS,
    PROCESSING_PROGRESS_CEILING,
    PROCESSING_PROGRESS_PER_SECOND,
    QUEUED_MESSAGE,
    QUEUED_PROGRESS,
    TIMEOUT_ERROR,
    TIMEOUT_MESSAGE,
)
from config.logger import get_logger
from models.job import ProgressEvent, ProgressStatus

logger = get_logger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


def estimate_processing_progress(elapsed_seconds: float) -> float:
    """The worker reports no percentages, so processing progress grows with elapsed time"""
    estimate = PROCESSING_BASE_PROGRESS + max(elapsed_seconds, 0.0) * PROCESSING_PROGRESS_PER_SECOND
    return min(estimate, PROCESSING_PROGRESS_CEILING)


def completed_event(output_url: str) -> ProgressEvent:
    return ProgressEvent(
        status=ProgressStatus.COMPLETED,
        message=COMPLETED_MESSAGE,
        progress=COMPLETED_PROGRESS,
        output_url=output_url,
    )


def failed_event(error: str) -> ProgressEvent:
    return ProgressEvent(status=ProgressStatus.FAILED, message=error, error=error)


def timeout_event() -> ProgressEvent:
    return ProgressEvent(
        status=ProgressStatus.TIMEOUT, message=TIMEOUT_MESSAGE, error=TIMEOUT_ERROR
    )


def cancelled_event() -> ProgressEvent:
    return ProgressEvent(
        status=ProgressStatus.CANCELLED, message=CANCELLED_MESSAGE, error=CANCELLED_ERROR
    )


class ProgressReporter:
    """Channel-agnostic sink for one enhancement call.

    Non-terminal events never move the estimate backwards, and nothing is
    delivered after ``finish``.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self._callback = callback
        self._closed = False
        self._last_progress = 0.0
        self.last_event: Optional[ProgressEvent] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: ProgressEvent) -> None:
        if self._closed:
            return

        if event.status.is_terminal:
            self.finish(event)
            return

        if event.progress is not None:
            if event.progress < self._last_progress:
                event = replace(event, progress=self._last_progress)
            self._last_progress = event.progress

        self._deliver(event)

    def queued(self, message: str = QUEUED_MESSAGE) -> None:
        self.emit(
            ProgressEvent(status=ProgressStatus.QUEUED, message=message, progress=QUEUED_PROGRESS)
        )

    def processing(self, message: str, elapsed_seconds: float) -> None:
        self.emit(
            ProgressEvent(
                status=ProgressStatus.PROCESSING,
                message=message,
                progress=estimate_processing_progress(elapsed_seconds),
            )
        )

    def finish(self, event: ProgressEvent) -> None:
        if self._closed:
            return
        self._closed = True
        self._deliver(event)

    def _deliver(self, event: ProgressEvent) -> None:
        self.last_event = event
        if self._callback is None:
            return
        try:
            self._callback(event)
        except Exception as e:  # caller-supplied callback must not break a channel
            logger.error(
                "Progress callback raised", status=event.status.value, error=str(e), exc_info=True
            )


def as_reporter(on_progress=None) -> ProgressReporter:
    if isinstance(on_progress, ProgressReporter):
        return on_progress
    return ProgressReporter(on_progress)
