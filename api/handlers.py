import json
import time
import uuid as uuid_module
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from config.constants import (
    NO_OUTPUT_ERROR,
    PROCESSING_MESSAGE,
    QUEUED_MESSAGE,
    STALE_JOB_ERROR,
    WEBHOOK_SIGNATURE_HEADER,
)
from config.logger import get_logger
from models.job import JobRecord, JobStatus
from services.dependencies import JobStoreDep
from utils.exceptions import ServiceUnavailableError, StoreError, ValidationError
from utils.job_store import JobRecordStore
from utils.webhook import verify_webhook_signature

logger = get_logger(__name__)


class RegisterJobRequest(BaseModel):
    generation_id: Optional[str] = Field(default=None, min_length=1, max_length=128)


class PollRequest(BaseModel):
    generation_id: str = Field(..., min_length=1, max_length=128)


class WebhookPayload(BaseModel):
    request_id: Optional[str] = None
    status: str = "OK"
    payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    timestamp: float
    services: Dict[str, bool]


def extract_output_url(payload: Optional[Dict[str, Any]]) -> Optional[str]:
    if not payload:
        return None

    for key in ("image", "output"):
        value = payload.get(key)
        if isinstance(value, dict) and value.get("url"):
            return value["url"]

    images = payload.get("images")
    if isinstance(images, list) and images and isinstance(images[0], dict):
        if images[0].get("url"):
            return images[0]["url"]

    url = payload.get("url")
    return url if isinstance(url, str) and url else None


def poll_response(record: JobRecord) -> Dict[str, Any]:
    body: Dict[str, Any] = {"status": record.status.value}
    if record.status == JobStatus.QUEUED:
        body["message"] = record.message or QUEUED_MESSAGE
    elif record.status == JobStatus.PROCESSING:
        body["message"] = record.message or PROCESSING_MESSAGE
    if record.output_url:
        body["output_url"] = record.output_url
    if record.error:
        body["error"] = record.error
    return body


def require_store(store: Optional[JobRecordStore]) -> JobRecordStore:
    if not store:
        raise ServiceUnavailableError("Job store unavailable - Redis not configured")
    return store


def register_error_handlers(app: FastAPI):
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    @app.exception_handler(ValidationError)
    async def validation_exception_handler(_: Request, exc: ValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": str(exc)},
        )

    @app.exception_handler(ServiceUnavailableError)
    async def service_unavailable_handler(_: Request, exc: ServiceUnavailableError):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": str(exc)},
        )

    @app.exception_handler(StoreError)
    async def store_error_handler(_: Request, exc: StoreError):
        logger.error("Job store error", error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "Job store unavailable"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(_: Request, exc: ValueError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": str(exc)},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(_: Request, exc: Exception):
        logger.error("Unexpected error", error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )


def register_routes(app: FastAPI, config):
    async def _verify_api_key(request: Request):
        authorization = request.headers.get("Authorization")
        if not authorization or not authorization.startswith("Bearer "):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing API key",
                headers={"WWW-Authenticate": "Bearer"},
            )

        token = authorization.replace("Bearer ", "")
        if not token or token != config.api_secret_key:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing API key",
                headers={"WWW-Authenticate": "Bearer"},
            )

    @app.post("/jobs", status_code=status.HTTP_201_CREATED)
    async def register_job(
        request: Request,
        job_request: RegisterJobRequest,
        store: Optional[JobRecordStore] = JobStoreDep,
    ):
        await _verify_api_key(request)
        store = require_store(store)

        generation_id = job_request.generation_id or str(uuid_module.uuid4())
        existing = await store.get_record(generation_id)
        if existing is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT, detail="Generation already registered"
            )

        record = await store.put_record(
            generation_id,
            JobRecord(status=JobStatus.QUEUED, created_at=time.time()),
        )
        logger.info("Registered generation", generation_id=generation_id)
        return {"generation_id": generation_id, "status": record.status.value}

    @app.post("/webhook")
    async def receive_webhook(
        request: Request,
        generation_id: str = "",
        store: Optional[JobRecordStore] = JobStoreDep,
    ):
        if not generation_id:
            raise ValidationError("Missing generation_id")

        body = await request.body()
        signature = request.headers.get(WEBHOOK_SIGNATURE_HEADER, "")
        if not verify_webhook_signature(body, signature, config.webhook_secret):
            logger.warning("Rejected webhook with bad signature", generation_id=generation_id)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature"
            )

        try:
            payload = WebhookPayload.model_validate(json.loads(body))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            raise ValidationError(f"Invalid webhook payload: {e}") from e

        store = require_store(store)
        existing = await store.get_record(generation_id)
        if existing is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Generation not found"
            )

        if existing.status in (JobStatus.COMPLETED, JobStatus.FAILED):
            logger.info(
                "Generation already processed, skipping",
                generation_id=generation_id,
                status=existing.status.value,
            )
            return {"success": True, "message": "Already processed"}

        logger.info(
            "Webhook received",
            generation_id=generation_id,
            status=payload.status,
            request_id=payload.request_id,
        )

        if payload.status.upper() == "ERROR" or payload.error:
            record = existing.model_copy(
                update={
                    "status": JobStatus.FAILED,
                    "error": payload.error or "Worker processing failed",
                }
            )
            await store.put_record(generation_id, record)
            return {"success": True, "status": JobStatus.FAILED.value}

        output_url = extract_output_url(payload.payload)
        if not output_url:
            logger.error("No output URL in webhook payload", generation_id=generation_id)
            record = existing.model_copy(
                update={"status": JobStatus.FAILED, "error": NO_OUTPUT_ERROR}
            )
            await store.put_record(generation_id, record)
            return {"success": False, "error": "No output URL"}

        record = existing.model_copy(
            update={"status": JobStatus.COMPLETED, "output_url": output_url, "error": None}
        )
        await store.put_record(generation_id, record)
        return {"success": True, "status": JobStatus.COMPLETED.value, "output_url": output_url}

    @app.post("/poll")
    async def poll_job(
        request: Request,
        poll_request: PollRequest,
        store: Optional[JobRecordStore] = JobStoreDep,
    ):
        await _verify_api_key(request)
        store = require_store(store)

        record = await store.get_record(poll_request.generation_id)
        if record is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Generation not found"
            )

        if record.status in (JobStatus.QUEUED, JobStatus.PROCESSING) and record.created_at:
            age = time.time() - record.created_at
            if age > config.server.max_processing_seconds:
                logger.error(
                    "Generation timed out", generation_id=poll_request.generation_id, age=age
                )
                record = await store.put_record(
                    poll_request.generation_id,
                    record.model_copy(
                        update={"status": JobStatus.FAILED, "error": STALE_JOB_ERROR}
                    ),
                )

        return poll_response(record)

    @app.get("/health", response_model=HealthResponse)
    async def health_check(store: Optional[JobRecordStore] = JobStoreDep):
        health_status = {
            "status": "healthy",
            "timestamp": time.time(),
            "services": {"job_store_operational": False},
        }

        if store:
            health_status["services"]["job_store_operational"] = await store.ping()

        if not health_status["services"]["job_store_operational"]:
            health_status["status"] = "degraded"

        return HealthResponse(**health_status)
