import time
from typing import Optional

from config.logger import get_logger
from models.job import EnhancementResult, JobRecord, JobStatus, ProgressStatus
from utils.exceptions import StoreError
from utils.job_store import JobRecordStore

logger = get_logger(__name__)

RECORDABLE = {
    ProgressStatus.COMPLETED: JobStatus.COMPLETED,
    ProgressStatus.FAILED: JobStatus.FAILED,
}


class StatusRecorder:
    """Persists the outcome the client observed, without overriding the write path.

    Timeouts and cancellations are not recorded: the worker may still finish
    the job, and a repeated submission is then served from cache.
    """

    def __init__(self, store: JobRecordStore):
        self.store = store

    async def record(self, job_id: str, result: EnhancementResult) -> Optional[JobRecord]:
        status = RECORDABLE.get(result.status)
        if status is None or not job_id:
            return None

        try:
            existing = await self.store.get_record(job_id)
            if existing is not None and existing.is_terminal:
                logger.debug(
                    "Job record already terminal", job_id=job_id, status=existing.status.value
                )
                return existing

            record = JobRecord(
                id=job_id,
                status=status,
                output_url=result.output_url,
                error=result.error,
                created_at=existing.created_at if existing else time.time(),
            )
            return await self.store.put_record(job_id, record)
        except StoreError as e:
            logger.error("Failed to record enhancement status", job_id=job_id, error=str(e))
            return None
