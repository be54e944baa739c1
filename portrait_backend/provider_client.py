"""
Adapter cho các provider tạo ảnh bên ngoài.

Mỗi provider chỉ cần cài `submit` (và `poll` nếu là loại prediction/poll).
`generate` dùng chung: submit -> nếu chưa xong thì poll theo chu kỳ cố định,
giới hạn số lần poll, hết lượt thì raise ProviderTimeoutError.
"""

import asyncio
import base64
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import quote, urlencode

import httpx

from config.settings import Settings

from .errors import AuthenticationError, NetworkError, ProviderError, ProviderTimeoutError
from .utils import to_data_uri

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]

# khoảng progress dành cho provider, phần còn lại do orchestrator báo
SUBMIT_PROGRESS = 0.15
POLL_PROGRESS_SPAN = 0.8

_PERCENT_RE = re.compile(r"(\d{1,3})%")


@dataclass
class ProviderResult:
    image_url: str
    provider: str
    model: Optional[str] = None
    provider_request_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderHandle:
    provider: str
    request_id: Optional[str] = None
    status_url: Optional[str] = None
    model: Optional[str] = None
    # provider đồng bộ điền luôn kết quả, không cần poll
    result: Optional[ProviderResult] = None
    submitted_at: float = field(default_factory=time.time)


@dataclass
class ProviderStatus:
    status: str  # processing | succeeded | failed
    progress: Optional[float] = None
    image_url: Optional[str] = None
    error: Optional[str] = None
    raw: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in ("succeeded", "failed")


def _noop_progress(progress: float, message: str) -> None:
    return None


def _summarize_error(response: httpx.Response) -> str:
    try:
        detail = json.dumps(response.json(), ensure_ascii=True)
    except ValueError:
        detail = response.text or ""
    detail = detail.strip().replace("\n", " ")
    if len(detail) > 300:
        detail = detail[:300].rstrip() + "..."
    return detail


class ProviderAdapter:
    name = "base"
    label = "Provider"
    credential_env: Optional[str] = None

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_backoff: float = 0.5,
    ):
        self.settings = settings
        self.poll_interval = settings.POLL_INTERVAL
        self.max_attempts = settings.POLL_MAX_ATTEMPTS
        self.request_timeout = settings.REQUEST_TIMEOUT
        self.network_retries = max(0, settings.NETWORK_RETRIES)
        self.retry_backoff = retry_backoff
        self._transport = transport

    # ------------------------------------------------------------------
    # subclass API
    # ------------------------------------------------------------------

    async def submit(self, params: Mapping[str, Any], source_image: str) -> ProviderHandle:
        raise NotImplementedError

    async def poll(self, handle: ProviderHandle) -> ProviderStatus:
        raise NotImplementedError(f"{self.label} does not support polling")

    # ------------------------------------------------------------------
    # driver
    # ------------------------------------------------------------------

    async def generate(
        self,
        params: Mapping[str, Any],
        source_image: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ProviderResult:
        report = on_progress or _noop_progress
        report(0.1, f"Submitting to {self.label}...")
        handle = await self.submit(params, source_image)
        if handle.result is not None:
            return handle.result
        report(SUBMIT_PROGRESS, "Generation queued...")
        return await self.wait_for_result(handle, report)

    async def wait_for_result(self, handle: ProviderHandle, on_progress: ProgressCallback) -> ProviderResult:
        """
        Poll status cho đến khi terminal, tối đa `max_attempts` lần, nghỉ `poll_interval` giữa các lần.
        """
        for attempt in range(1, self.max_attempts + 1):
            status = await self.poll(handle)
            logger.debug("%s poll %d/%d status=%s", self.label, attempt, self.max_attempts, status.status)
            if status.status == "succeeded":
                if not status.image_url:
                    raise ProviderError(f"{self.label} finished but returned no image URL.")
                return ProviderResult(
                    image_url=status.image_url,
                    provider=self.name,
                    model=handle.model,
                    provider_request_id=handle.request_id,
                    metadata={"pollAttempts": attempt},
                )
            if status.status == "failed":
                raise ProviderError(f"{self.label} generation failed: {status.error or 'unknown error'}")

            fraction = status.progress if status.progress is not None else attempt / self.max_attempts
            fraction = min(1.0, max(0.0, fraction))
            on_progress(
                SUBMIT_PROGRESS + POLL_PROGRESS_SPAN * fraction,
                "Analyzing face..." if fraction < 0.3 else "Generating portrait...",
            )
            await asyncio.sleep(self.poll_interval)

        raise ProviderTimeoutError(
            f"{self.label} did not finish after {self.max_attempts} status checks "
            f"(~{self.max_attempts * self.poll_interval:.0f}s)."
        )

    # ------------------------------------------------------------------
    # http helpers
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.request_timeout, transport=self._transport)

    def _api_key(self) -> str:
        key = getattr(self.settings, self.credential_env, None) if self.credential_env else None
        if not key:
            raise AuthenticationError(
                f"{self.credential_env} is not configured. Set it in the environment or config/.env "
                f"to use {self.label}."
            )
        return key

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key()}",
            "Content-Type": "application/json",
        }

    async def _send(self, client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
        """Lỗi transport được retry vài lần (không phải lỗi nội dung), sau đó raise NetworkError."""
        attempts = self.network_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                if attempt >= attempts:
                    raise NetworkError(f"Could not reach {self.label}: {e}") from e
                logger.warning(
                    "%s transport error (attempt %d/%d): %s", self.label, attempt, attempts, e
                )
                await asyncio.sleep(self.retry_backoff * attempt)
        raise NetworkError(f"Could not reach {self.label}")

    def _check_response(self, response: httpx.Response, stage: str) -> None:
        # provider không dùng key (Pollinations): 401/403 là rate limit/policy block, không phải lỗi credential
        if response.status_code in (401, 403) and self.credential_env:
            raise AuthenticationError(
                f"{self.label} rejected the API credential ({response.status_code}). "
                f"Check {self.credential_env}."
            )
        if not response.is_success:
            detail = _summarize_error(response)
            logger.error("%s %s failed status=%s body=%s", self.label, stage, response.status_code, detail)
            raise ProviderError(f"{self.label} {stage} failed ({response.status_code}): {detail}")

    def _json(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(f"{self.label} returned a malformed response.") from e
        if not isinstance(data, dict):
            raise ProviderError(f"{self.label} returned an unexpected response: {str(data)[:200]}")
        return data


class PollinationsProvider(ProviderAdapter):
    """Free, không cần key: toàn bộ request nằm trong URL, GET thành công = ảnh đã xong."""

    name = "pollinations"
    label = "Pollinations"

    def build_image_url(self, params: Mapping[str, Any]) -> str:
        base = self.settings.POLLINATIONS_BASE_URL.rstrip("/")
        query = urlencode(
            {
                "model": "flux",
                "width": params["width"],
                "height": params["height"],
                "seed": params["seed"],
                "enhance": "true",
                "nologo": "true",
            }
        )
        return f"{base}/prompt/{quote(params['prompt'], safe='')}?{query}"

    async def submit(self, params: Mapping[str, Any], source_image: str) -> ProviderHandle:
        image_url = self.build_image_url(params)
        async with self._client() as client:
            r = await self._send(client, "GET", image_url)
        self._check_response(r, "generation")
        content_type = r.headers.get("content-type", "")
        if not content_type.startswith("image/"):
            raise ProviderError(f"{self.label} did not return an image (content-type={content_type!r}).")
        return ProviderHandle(
            provider=self.name,
            model="flux",
            result=ProviderResult(image_url=image_url, provider=self.name, model="flux"),
        )


class HuggingFaceProvider(ProviderAdapter):
    """Inference API: 1 POST, body trả về là binary ảnh -> chuyển thành data URI."""

    name = "huggingface"
    label = "Hugging Face"
    credential_env = "HUGGINGFACE_API_KEY"

    MODELS = {
        "FLUX.1-schnell": "black-forest-labs/FLUX.1-schnell",
        "FLUX.1-dev": "black-forest-labs/FLUX.1-dev",
    }

    async def submit(self, params: Mapping[str, Any], source_image: str) -> ProviderHandle:
        headers = self._auth_headers()
        model = self.MODELS.get(params["model"], self.MODELS["FLUX.1-dev"])
        url = f"{self.settings.HUGGINGFACE_BASE_URL.rstrip('/')}/models/{model}"
        payload = {
            "inputs": params["prompt"],
            "parameters": {
                "negative_prompt": params["negative_prompt"],
                "width": params["width"],
                "height": params["height"],
                "num_inference_steps": params["steps"],
                "guidance_scale": params["guidance_scale"],
                "seed": params["seed"],
            },
        }
        async with self._client() as client:
            r = await self._send(client, "POST", url, json=payload, headers=headers)
        self._check_response(r, "generation")

        content_type = r.headers.get("content-type", "").split(";")[0].strip()
        if not content_type.startswith("image/"):
            # HF trả JSON {"error": ...} khi model đang load hoặc bị chặn
            raise ProviderError(f"{self.label} did not return an image: {_summarize_error(r)}")
        data_uri = to_data_uri(base64.b64encode(r.content).decode("ascii"), content_type)
        return ProviderHandle(
            provider=self.name,
            model=model,
            result=ProviderResult(image_url=data_uri, provider=self.name, model=model),
        )


class ReplicateProvider(ProviderAdapter):
    """Prediction API: POST tạo job, rồi GET `urls.get` cho đến succeeded/failed/canceled."""

    name = "replicate"
    label = "Replicate"
    credential_env = "REPLICATE_API_TOKEN"

    async def submit(self, params: Mapping[str, Any], source_image: str) -> ProviderHandle:
        headers = self._auth_headers()
        base = self.settings.REPLICATE_BASE_URL.rstrip("/")
        payload = {
            "version": self.settings.REPLICATE_MODEL_VERSION,
            "input": {
                "prompt": params["prompt"],
                "negative_prompt": params["negative_prompt"],
                "image": source_image,
                "width": params["width"],
                "height": params["height"],
                "ip_adapter_scale": params["strength"],
                "num_inference_steps": params["steps"],
                "guidance_scale": params["guidance_scale"],
                "seed": params["seed"],
            },
        }
        async with self._client() as client:
            r = await self._send(client, "POST", f"{base}/v1/predictions", json=payload, headers=headers)
        self._check_response(r, "prediction start")
        prediction = self._json(r)

        prediction_id = prediction.get("id")
        if not prediction_id:
            raise ProviderError(f"{self.label} did not return a prediction id.")
        status_url = (prediction.get("urls") or {}).get("get") or f"{base}/v1/predictions/{prediction_id}"
        logger.info("%s prediction %s started", self.label, prediction_id)
        return ProviderHandle(
            provider=self.name,
            request_id=prediction_id,
            status_url=status_url,
            model=self.settings.REPLICATE_MODEL_VERSION,
        )

    async def poll(self, handle: ProviderHandle) -> ProviderStatus:
        headers = self._auth_headers()
        async with self._client() as client:
            r = await self._send(client, "GET", handle.status_url, headers=headers)
        self._check_response(r, "status check")
        prediction = self._json(r)

        status = str(prediction.get("status") or "").lower()
        if status == "succeeded":
            output = prediction.get("output")
            image_url = output[0] if isinstance(output, list) and output else output
            return ProviderStatus(
                status="succeeded",
                image_url=image_url if isinstance(image_url, str) else None,
                raw=prediction,
            )
        if status in ("failed", "canceled"):
            return ProviderStatus(
                status="failed",
                error=prediction.get("error") or f"prediction {status}",
                raw=prediction,
            )
        return ProviderStatus(status="processing", progress=self._log_progress(prediction), raw=prediction)

    @staticmethod
    def _log_progress(prediction: Mapping[str, Any]) -> Optional[float]:
        # logs dạng tqdm: " 45%|████▌     | 9/20"
        matches = _PERCENT_RE.findall(prediction.get("logs") or "")
        if not matches:
            return None
        return min(100, int(matches[-1])) / 100.0


class TogetherProvider(ProviderAdapter):
    """Generation API trực tiếp: 1 POST, response chứa luôn URL ảnh."""

    name = "together"
    label = "Together AI"
    credential_env = "TOGETHER_API_KEY"

    MODELS = {
        "FLUX.1-schnell": "black-forest-labs/FLUX.1-schnell-Free",
        "FLUX.1-dev": "black-forest-labs/FLUX.1-dev",
    }

    async def submit(self, params: Mapping[str, Any], source_image: str) -> ProviderHandle:
        headers = self._auth_headers()
        model = self.MODELS.get(params["model"], self.MODELS["FLUX.1-dev"])
        payload = {
            "model": model,
            "prompt": params["prompt"],
            "negative_prompt": params["negative_prompt"],
            "width": params["width"],
            "height": params["height"],
            "steps": params["steps"],
            "seed": params["seed"],
            "n": 1,
        }
        url = f"{self.settings.TOGETHER_BASE_URL.rstrip('/')}/v1/images/generations"
        async with self._client() as client:
            r = await self._send(client, "POST", url, json=payload, headers=headers)
        self._check_response(r, "generation")
        body = self._json(r)

        items = body.get("data") or []
        first = items[0] if items and isinstance(items[0], dict) else {}
        if first.get("url"):
            image_url = first["url"]
        elif first.get("b64_json"):
            image_url = to_data_uri(first["b64_json"], "image/jpeg")
        else:
            raise ProviderError(f"{self.label} response contained no image.")
        return ProviderHandle(
            provider=self.name,
            request_id=body.get("id"),
            model=model,
            result=ProviderResult(
                image_url=image_url,
                provider=self.name,
                model=model,
                provider_request_id=body.get("id"),
            ),
        )


PROVIDERS = {
    PollinationsProvider.name: PollinationsProvider,
    HuggingFaceProvider.name: HuggingFaceProvider,
    ReplicateProvider.name: ReplicateProvider,
    TogetherProvider.name: TogetherProvider,
}


def build_provider(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderAdapter:
    key = (settings.PORTRAIT_PROVIDER or "").strip().lower()
    provider_cls = PROVIDERS.get(key)
    if provider_cls is None:
        raise ValueError(
            f"Unknown PORTRAIT_PROVIDER {settings.PORTRAIT_PROVIDER!r}; expected one of {sorted(PROVIDERS)}"
        )
    return provider_cls(settings, transport=transport)
