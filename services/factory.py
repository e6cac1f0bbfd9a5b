from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
import redis.asyncio as redis

from config.config import Config
from config.logger import get_logger
from services.enhancer import EnhancementService
from services.poll_loop import PollClient
from services.resolver import CompletionResolver
from services.status_recorder import StatusRecorder
from services.storage import ImageUploader, get_storage_client
from services.submitter import JobSubmitter
from utils.job_store import JobRecordStore

logger = get_logger(__name__)


def build_uploader(config: Config) -> Optional[ImageUploader]:
    if not config.r2_storage_enabled:
        logger.warning("R2 storage not configured - device-local images cannot be submitted")
        return None

    storage = get_storage_client(
        account_id=config.r2_storage.account_id,
        access_key_id=config.r2_storage.access_key_id,
        secret_access_key=config.r2_storage.secret_access_key,
        bucket_name=config.r2_storage.bucket_name,
        public_domain=config.r2_storage.public_domain,
    )
    return ImageUploader(storage)


@asynccontextmanager
async def enhancement_service(
    config: Config, record_status: bool = False
) -> AsyncIterator[EnhancementService]:
    """Wire an EnhancementService from configuration and close its clients on exit"""
    config.validate_settings()
    endpoints = config.endpoints

    redis_client = None
    store = None
    if config.redis_enabled:
        redis_client = redis.from_url(
            config.redis_url, decode_responses=True, socket_connect_timeout=5
        )
        if record_status:
            store = JobRecordStore(
                config.redis_url,
                config.redis_config.channel_prefix,
                config.redis_config.record_ttl,
            )
    else:
        logger.warning("Redis not configured - push channel disabled, polling only")

    async with httpx.AsyncClient(timeout=endpoints.timeout) as http_client:
        submitter = JobSubmitter(
            http_client,
            endpoints.submit_url,
            api_token=endpoints.token,
            uploader=build_uploader(config),
        )
        resolver = CompletionResolver(
            PollClient(http_client, endpoints.poll_url, api_token=endpoints.token),
            config.resolver,
            redis_client=redis_client,
            channel_prefix=config.redis_config.channel_prefix,
        )
        recorder = StatusRecorder(store) if store else None

        try:
            yield EnhancementService(submitter, resolver, recorder)
        finally:
            if store:
                await store.close()
            if redis_client:
                await redis_client.aclose()
