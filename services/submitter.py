import re
from typing import Any, Dict, Optional

import httpx

from config.constants import (
    FAILED_MESSAGE,
    SUBMITTED_MESSAGE,
    SUBMITTED_PROGRESS,
    SUBMITTING_MESSAGE,
    SUBMITTING_PROGRESS,
    USER_AGENT,
)
from config.logger import get_logger
from models.job import ProgressEvent, ProgressStatus
from models.request import EnhancementRequest, FeatureKey, JobHandle
from services.progress import ProgressCallback, as_reporter, completed_event, failed_event
from services.storage import ImageUploader, is_remote_url
from utils.exceptions import SubmissionError, ValidationError

logger = get_logger(__name__)

HEX_COLOR_PATTERN = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def validate_request(request: EnhancementRequest) -> None:
    if not isinstance(request.feature_key, FeatureKey):
        raise ValidationError(f"Unknown feature: {request.feature_key}")

    if not request.image_url or not request.image_url.strip():
        raise ValidationError("Missing required field: image_url")

    if request.solid_color and not HEX_COLOR_PATTERN.match(request.solid_color):
        raise ValidationError(f"Invalid solid color: {request.solid_color}")


def parse_submit_response(data: Dict[str, Any]) -> JobHandle:
    generation_id = data.get("generation_id") or data.get("job_id") or ""

    if data.get("cached"):
        output_url = data.get("output_url")
        if not output_url:
            raise SubmissionError("Cached result is missing its output URL")
        return JobHandle(job_id=generation_id, cached=True, output_url=output_url)

    if not data.get("success") or not generation_id:
        raise SubmissionError(data.get("error") or "Failed to submit enhancement request")

    return JobHandle(
        job_id=generation_id,
        request_id=data.get("request_id"),
        poll_url=data.get("poll_url"),
        estimated_time_seconds=data.get("estimated_time_seconds"),
    )


class JobSubmitter:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        submit_url: str,
        api_token: str = "",
        uploader: Optional[ImageUploader] = None,
    ):
        self.http_client = http_client
        self.submit_url = submit_url
        self.api_token = api_token
        self.uploader = uploader

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    async def _resolve_image_url(self, request: EnhancementRequest) -> EnhancementRequest:
        if is_remote_url(request.image_url):
            return request

        if self.uploader is None:
            raise ValidationError("Device-local images need an uploader before submission")

        image_url = await self.uploader.upload(request.image_url, draft_id=request.draft_id)
        return request.with_image_url(image_url)

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self.http_client.post(
                self.submit_url, json=payload, headers=self._headers()
            )
        except httpx.RequestError as e:
            raise SubmissionError(f"Submission request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.is_success:
            message = data.get("error") if isinstance(data, dict) else None
            raise SubmissionError(
                message or f"Request failed with status {response.status_code}",
                status_code=response.status_code,
            )

        if not isinstance(data, dict):
            raise SubmissionError("Submission response was not a JSON object")
        return data

    async def submit(
        self, request: EnhancementRequest, on_progress: Optional[ProgressCallback] = None
    ) -> JobHandle:
        """Submit one enhancement job.

        Reports ``submitting`` first, then either ``completed`` for a cached
        result or ``queued`` for a fresh job. Any failure reports ``failed``
        and raises ``SubmissionError``; no channel is started in that case.
        """
        reporter = as_reporter(on_progress)
        reporter.emit(
            ProgressEvent(
                status=ProgressStatus.SUBMITTING,
                message=SUBMITTING_MESSAGE,
                progress=SUBMITTING_PROGRESS,
            )
        )

        try:
            validate_request(request)
            request = await self._resolve_image_url(request)
            data = await self._post(request.to_payload())
            handle = parse_submit_response(data)
        except SubmissionError as e:
            logger.warning(
                "Enhancement submission failed",
                feature=getattr(request.feature_key, "value", request.feature_key),
                error=str(e),
            )
            reporter.finish(failed_event(str(e) or FAILED_MESSAGE))
            raise

        if handle.cached:
            logger.info("Returning cached enhancement", generation_id=handle.job_id)
            reporter.finish(completed_event(handle.output_url or ""))
            return handle

        logger.info(
            "Enhancement submitted",
            generation_id=handle.job_id,
            request_id=handle.request_id,
            feature=request.feature_key.value,
        )
        reporter.emit(
            ProgressEvent(
                status=ProgressStatus.QUEUED,
                message=SUBMITTED_MESSAGE,
                progress=SUBMITTED_PROGRESS,
            )
        )
        return handle
