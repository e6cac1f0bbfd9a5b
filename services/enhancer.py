import asyncio
from typing import Optional

from config.logger import get_logger
from models.job import EnhancementResult, ProgressStatus
from models.request import EnhancementRequest, FeatureKey
from services.progress import ProgressCallback, as_reporter
from services.resolver import CompletionResolver
from services.status_recorder import StatusRecorder
from services.submitter import JobSubmitter

logger = get_logger(__name__)


class EnhancementService:
    def __init__(
        self,
        submitter: JobSubmitter,
        resolver: CompletionResolver,
        recorder: Optional[StatusRecorder] = None,
    ):
        self.submitter = submitter
        self.resolver = resolver
        self.recorder = recorder

    async def enhance(
        self,
        request: EnhancementRequest,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> EnhancementResult:
        """Submit an enhancement and wait for its single terminal outcome.

        Submission failures raise ``SubmissionError``. Every other outcome,
        including timeout and cancellation, comes back as an
        ``EnhancementResult``.
        """
        reporter = as_reporter(on_progress)
        handle = await self.submitter.submit(request, reporter)

        if handle.cached:
            return EnhancementResult(
                success=True,
                status=ProgressStatus.COMPLETED,
                generation_id=handle.job_id,
                output_url=handle.output_url,
                cached=True,
                processing_time_ms=0,
            )

        result = await self.resolver.resolve(handle, reporter, cancel_event)

        if self.recorder is not None:
            await self.recorder.record(handle.job_id, result)

        return result

    async def enhance_quality(
        self,
        image_url: str,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> EnhancementResult:
        return await self.enhance(
            EnhancementRequest(feature_key=FeatureKey.AUTO_QUALITY, image_url=image_url),
            on_progress,
            cancel_event,
        )

    async def remove_background(
        self,
        image_url: str,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> EnhancementResult:
        return await self.enhance(
            EnhancementRequest(feature_key=FeatureKey.BACKGROUND_REMOVE, image_url=image_url),
            on_progress,
            cancel_event,
        )

    async def replace_background_with_preset(
        self,
        image_url: str,
        preset_id: str,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> EnhancementResult:
        return await self.enhance(
            EnhancementRequest(
                feature_key=FeatureKey.BACKGROUND_REPLACE, image_url=image_url, preset_id=preset_id
            ),
            on_progress,
            cancel_event,
        )

    async def replace_background_with_prompt(
        self,
        image_url: str,
        custom_prompt: str,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> EnhancementResult:
        return await self.enhance(
            EnhancementRequest(
                feature_key=FeatureKey.BACKGROUND_REPLACE,
                image_url=image_url,
                custom_prompt=custom_prompt,
            ),
            on_progress,
            cancel_event,
        )

    async def replace_background_with_color(
        self,
        image_url: str,
        solid_color: str,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> EnhancementResult:
        return await self.enhance(
            EnhancementRequest(
                feature_key=FeatureKey.BACKGROUND_REPLACE,
                image_url=image_url,
                solid_color=solid_color,
            ),
            on_progress,
            cancel_event,
        )
