from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.config import Config
from config.logger import get_logger, setup_logging
from services.dependencies import services
from utils.job_store import JobRecordStore

logger = get_logger(__name__)


def setup_services(config):
    if config.redis_enabled:
        services.job_store = JobRecordStore(
            config.redis_url,
            config.redis_config.channel_prefix,
            config.redis_config.record_ttl,
        )
    else:
        services.job_store = None
        logger.warning("Redis not configured - job record store disabled")


async def verify_store():
    """Verify job store connectivity"""
    if services.job_store and not await services.job_store.ping():
        logger.error("Job store startup validation failed")


def configure_middleware(app: FastAPI, _config) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )


def create_lifespan_manager(config):
    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        # Startup
        setup_services(config)
        await verify_store()

        # Shutdown
        yield

        await services.close()

    return lifespan


def create_base_app(config) -> FastAPI:
    return FastAPI(
        version="1.0.0",
        title="Enhancement Job Records API",
        description="Worker callbacks and status polling for AI enhancement jobs",
        docs_url="/docs" if config.debug else None,
        redoc_url="/redoc" if config.debug else None,
    )


def create_app(config: Optional[Config] = None) -> FastAPI:
    from api.routes import create_fastapi_app

    config = config or Config()
    config.validate_settings()

    setup_logging(config.server.debug)

    return create_fastapi_app(config)
