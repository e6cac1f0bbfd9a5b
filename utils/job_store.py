import json
import time
from typing import Optional

import redis.asyncio as redis
from pydantic import ValidationError as PydanticValidationError

from config.logger import get_logger
from models.job import JobRecord
from utils.exceptions import StoreError

logger = get_logger(__name__)


def job_channel(prefix: str, job_id: str) -> str:
    return f"{prefix}:{job_id}"


def record_key(prefix: str, job_id: str) -> str:
    return f"{prefix}:record:{job_id}"


class JobRecordStore:
    """Redis-backed job records.

    Every write also publishes the new snapshot on the job's channel, which is
    what push listeners subscribe to.
    """

    def __init__(self, redis_url: str, channel_prefix: str, record_ttl: Optional[int] = None):
        self.redis_url = redis_url
        self.channel_prefix = channel_prefix
        self.record_ttl = record_ttl
        self.client = None

    async def _ensure_connection(self) -> redis.Redis:
        if self.client is None:
            self.client = redis.from_url(
                self.redis_url, decode_responses=True, socket_connect_timeout=5, socket_timeout=5
            )
        return self.client

    async def close(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None

    async def get_record(self, job_id: str) -> Optional[JobRecord]:
        try:
            client = await self._ensure_connection()
            value = await client.get(record_key(self.channel_prefix, job_id))
        except (redis.RedisError, ConnectionError) as e:
            raise StoreError(f"Failed to read job record {job_id}: {e}") from e

        if value is None:
            return None

        try:
            return JobRecord.model_validate(json.loads(value))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            logger.warning("Discarding unreadable job record", job_id=job_id, error=str(e))
            return None

    async def put_record(self, job_id: str, record: JobRecord) -> JobRecord:
        record = record.model_copy(update={"id": job_id, "updated_at": time.time()})
        json_value = record.model_dump_json()

        try:
            client = await self._ensure_connection()
            key = record_key(self.channel_prefix, job_id)
            if self.record_ttl:
                await client.setex(key, self.record_ttl, json_value)
            else:
                await client.set(key, json_value)
            receivers = await client.publish(job_channel(self.channel_prefix, job_id), json_value)
        except (redis.RedisError, ConnectionError) as e:
            raise StoreError(f"Failed to write job record {job_id}: {e}") from e

        logger.debug(
            "Job record written", job_id=job_id, status=record.status.value, receivers=receivers
        )
        return record

    async def ping(self) -> bool:
        try:
            client = await self._ensure_connection()
            return bool(await client.ping())
        except (redis.RedisError, ConnectionError) as e:
            logger.warning("Redis ping failed", error=str(e))
            return False
