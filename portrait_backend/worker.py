# portrait_backend/worker.py

import asyncio
import logging
import time
from typing import Dict, List, Optional, Set

from config.settings import Settings

from .cache import ResultCache, compute_fingerprint
from .errors import PortraitError, ProviderTimeoutError, ValidationError
from .image_utils import optimize_for_generation
from .model import GenerateRequest, GenerateResponse, GenerationOptions, GenerationResult
from .moderation import ContentPolicy, NoopContentPolicy
from .progress import JobTracker
from .prompt_builder import build_generation_payload, build_prompt
from .provider_client import ProviderAdapter
from .quality import QualityProfile, resolve
from .utils import clamp_strength, gen_job_id, strip_data_url, to_data_uri, utc_isoformat

logger = logging.getLogger(__name__)

PROGRESS_URL = "/api/generate/progress/{request_id}"


class Orchestrator:
    """
    Nhận request tạo ảnh, trả job id ngay, phần generate chạy nền:
    validate -> quality profile -> prompt -> cache -> provider -> tracker/cache.
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        tracker: JobTracker,
        cache: ResultCache,
        settings: Settings,
        policy: Optional[ContentPolicy] = None,
    ):
        self.provider = provider
        self.tracker = tracker
        self.cache = cache
        self.settings = settings
        self.policy = policy or NoopContentPolicy()
        self.job_timeout = settings.JOB_TIMEOUT
        self.optimize_images = settings.OPTIMIZE_IMAGES
        # fingerprint -> các job đang chờ cùng 1 lần gọi provider
        self._inflight: Dict[str, List[str]] = {}
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # entry point
    # ------------------------------------------------------------------

    async def handle_generate(self, request: GenerateRequest) -> GenerateResponse:
        options = self.validate(request)
        profile = resolve(options.qualityMode)
        positive, negative = build_prompt(options, profile)
        fingerprint = compute_fingerprint(request, profile.name, self.provider.name)

        job_id = gen_job_id()
        cached = self.cache.get(fingerprint)
        if cached is not None:
            logger.info("cache hit for job %s (fingerprint=%s)", job_id, fingerprint[:12])
            self.tracker.create(job_id, message="Returning cached result...")
            self.tracker.complete(job_id, cached.result, message="Loaded from cache")
            return self._accepted(job_id)

        self.tracker.create(job_id)

        waiting = self._inflight.get(fingerprint)
        if waiting is not None:
            # request giống hệt đang chạy: gắn vào, không gọi provider lần 2
            waiting.append(job_id)
            logger.info("job %s attached to in-flight generation %s", job_id, fingerprint[:12])
            self.tracker.update(job_id, 0.0, "Waiting for identical generation in progress...", status="starting")
            return self._accepted(job_id)

        self._inflight[fingerprint] = [job_id]
        logger.info(
            "job %s accepted: quality=%s provider=%s model=%s steps=%d",
            job_id, profile.name, self.provider.name, profile.model_id, profile.steps,
        )
        task = asyncio.create_task(
            self._run_job(fingerprint, request, profile, positive, negative, clamp_strength(options.strength))
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return self._accepted(job_id)

    def validate(self, request: GenerateRequest) -> GenerationOptions:
        if request.image is None or not (request.image.base64 or "").strip():
            raise ValidationError("Missing image in request body.")
        if request.options is None:
            raise ValidationError("Missing options in request body.")
        if not (request.options.style or "").strip():
            raise ValidationError("Missing style in generation options.")
        self.policy.check(request.options)
        return request.options

    # ------------------------------------------------------------------
    # background job
    # ------------------------------------------------------------------

    async def _run_job(
        self,
        fingerprint: str,
        request: GenerateRequest,
        profile: QualityProfile,
        positive: str,
        negative: str,
        strength: float,
    ) -> None:
        started = time.monotonic()
        try:
            try:
                result = await asyncio.wait_for(
                    self._generate(fingerprint, request, profile, positive, negative, strength),
                    timeout=self.job_timeout,
                )
            except asyncio.TimeoutError as e:
                raise ProviderTimeoutError(
                    f"Generation exceeded the {self.job_timeout:.0f}s time limit. Please try again later."
                ) from e
        except PortraitError as e:
            job_ids = self._inflight.pop(fingerprint, [])
            logger.warning("generation failed for %s: [%s] %s", job_ids, e.error_type, e.message)
            for job_id in job_ids:
                self.tracker.fail(job_id, e.message, error_type=e.error_type, retryable=e.retryable)
            return
        except Exception as e:
            job_ids = self._inflight.pop(fingerprint, [])
            logger.exception("unexpected error while generating %s", job_ids)
            for job_id in job_ids:
                self.tracker.fail(job_id, f"Generation failed: {e}", error_type="internal", retryable=True)
            return

        result.metadata["processingTime"] = int((time.monotonic() - started) * 1000)
        self.cache.put(fingerprint, result)
        job_ids = self._inflight.pop(fingerprint, [])
        logger.info("generation finished for %s in %sms", job_ids, result.metadata["processingTime"])
        for job_id in job_ids:
            self.tracker.complete(job_id, result)

    async def _generate(
        self,
        fingerprint: str,
        request: GenerateRequest,
        profile: QualityProfile,
        positive: str,
        negative: str,
        strength: float,
    ) -> GenerationResult:
        def report(progress: float, message: str) -> None:
            for job_id in list(self._inflight.get(fingerprint, [])):
                self.tracker.update(job_id, progress, message)

        report(0.05, "Preparing image...")
        source_image = await self._prepare_image(request, profile)

        params = build_generation_payload(profile, positive, negative, strength)
        provider_result = await self.provider.generate(params, source_image, on_progress=report)
        report(0.98, "Finalizing image...")

        return GenerationResult(
            image_url=provider_result.image_url,
            metadata={
                "qualityMode": profile.name,
                "model": profile.model_id,
                "providerModel": provider_result.model,
                "provider": provider_result.provider,
                "providerRequestId": provider_result.provider_request_id,
                "steps": profile.steps,
                "guidanceScale": profile.guidance_scale,
                "resolution": profile.resolution,
                "sampler": profile.sampler,
                "scheduler": profile.scheduler,
                "strength": strength,
                "seed": params["seed"],
                "timestamp": utc_isoformat(),
            },
        )

    async def _prepare_image(self, request: GenerateRequest, profile: QualityProfile) -> str:
        image = request.image
        if not self.optimize_images:
            return to_data_uri(strip_data_url(image.base64), image.mimeType or "image/jpeg")
        # Pillow chạy CPU-bound, đẩy sang thread để không block event loop
        optimized = await asyncio.to_thread(optimize_for_generation, image.base64, image.mimeType, profile)
        return optimized.data_uri

    # ------------------------------------------------------------------

    @staticmethod
    def _accepted(job_id: str) -> GenerateResponse:
        return GenerateResponse(
            requestId=job_id,
            message="Generation started",
            progressUrl=PROGRESS_URL.format(request_id=job_id),
        )

    async def wait_idle(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()
