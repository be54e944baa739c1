"""Shared fixtures: fast settings, a scriptable fake provider and sample requests."""

import asyncio
import base64
from io import BytesIO

import pytest
from PIL import Image

from config.settings import Settings
from portrait_backend.cache import ResultCache
from portrait_backend.errors import PortraitError
from portrait_backend.model import GenerateRequest
from portrait_backend.moderation import KeywordContentPolicy
from portrait_backend.progress import JobTracker
from portrait_backend.provider_client import (
    ProviderAdapter,
    ProviderHandle,
    ProviderResult,
    ProviderStatus,
)
from portrait_backend.worker import Orchestrator


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(ProviderAdapter):
    """Poll-style provider driven by a scripted list of statuses."""

    name = "fake"
    label = "Fake provider"

    def __init__(self, settings, statuses=None, error: PortraitError = None, delay: float = 0.0):
        super().__init__(settings, retry_backoff=0.0)
        self.statuses = list(statuses or [])
        self.error = error
        self.delay = delay
        self.gate = None
        self.calls = 0
        self.polls = 0
        self.last_params = None

    async def submit(self, params, source_image):
        self.calls += 1
        self.last_params = params
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if not self.statuses:
            return ProviderHandle(
                provider=self.name,
                model="fake-model",
                result=ProviderResult(image_url="https://img.example/out.png", provider=self.name, model="fake-model"),
            )
        return ProviderHandle(provider=self.name, request_id=f"pred-{self.calls}", model="fake-model")

    async def poll(self, handle):
        self.polls += 1
        if self.statuses:
            return self.statuses.pop(0)
        return ProviderStatus(status="processing")


def make_png_b64(width: int = 120, height: int = 160, color=(180, 140, 120)) -> str:
    buf = BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


def make_request(**option_overrides) -> GenerateRequest:
    options = {
        "pose": "confident three-quarter angle",
        "background": "studio backdrop",
        "clothing": "navy suit",
        "lighting": "soft key light",
        "style": "editorial portrait",
        "bodyType": "athletic",
        "strength": 0.8,
        "qualityMode": "fast",
    }
    options.update(option_overrides)
    return GenerateRequest.model_validate(
        {"image": {"base64": SAMPLE_IMAGE_B64, "mimeType": "image/png"}, "options": options}
    )


SAMPLE_IMAGE_B64 = make_png_b64()


@pytest.fixture
def settings():
    return Settings(
        PORTRAIT_PROVIDER="replicate",
        REPLICATE_API_TOKEN="r8_test_token",
        HUGGINGFACE_API_KEY="hf_test_key",
        TOGETHER_API_KEY="together_test_key",
        POLL_INTERVAL=0.0,
        POLL_MAX_ATTEMPTS=5,
        NETWORK_RETRIES=2,
        JOB_TIMEOUT=5.0,
        JOB_GRACE_PERIOD=60.0,
        OPTIMIZE_IMAGES=False,
        CONTENT_MODERATION=True,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_provider(settings):
    return FakeProvider(
        settings,
        statuses=[
            ProviderStatus(status="processing", progress=0.2),
            ProviderStatus(status="processing", progress=0.6),
            ProviderStatus(status="succeeded", image_url="https://img.example/portrait.png"),
        ],
    )


@pytest.fixture
def orchestrator(settings, fake_provider):
    return Orchestrator(
        provider=fake_provider,
        tracker=JobTracker(grace_period=settings.JOB_GRACE_PERIOD),
        cache=ResultCache(ttl=settings.CACHE_TTL),
        settings=settings,
        policy=KeywordContentPolicy(),
    )
