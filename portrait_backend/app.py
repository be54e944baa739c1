# portrait_backend/app.py

import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from config.settings import Settings, settings as default_settings

from .body_analysis import analyze_body
from .cache import ResultCache
from .errors import PortraitError
from .model import AnalyzeBodyRequest, BodyAnalysis, GenerateRequest, GenerateResponse
from .moderation import build_policy
from .progress import JobTracker
from .provider_client import ProviderAdapter, build_provider
from .quality import available_modes
from .utils import configure_logging
from .worker import Orchestrator

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def build_orchestrator(settings: Settings, provider: Optional[ProviderAdapter] = None) -> Orchestrator:
    return Orchestrator(
        provider=provider or build_provider(settings),
        tracker=JobTracker(grace_period=settings.JOB_GRACE_PERIOD),
        cache=ResultCache(ttl=settings.CACHE_TTL),
        settings=settings,
        policy=build_policy(settings.CONTENT_MODERATION),
    )


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[Orchestrator] = None,
) -> FastAPI:
    settings = settings or default_settings
    orchestrator = orchestrator or build_orchestrator(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "portrait backend ready (provider=%s, quality modes=%s)",
            orchestrator.provider.name, ", ".join(available_modes()),
        )
        yield
        await orchestrator.shutdown()

    app = FastAPI(title="AI Portrait Studio", lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PortraitError)
    async def portrait_error_handler(request: Request, exc: PortraitError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        # frontend cũ chỉ đọc {error} với mã 400
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        detail = first.get("msg", "Invalid request body")
        message = f"Invalid request body: {location}: {detail}" if location else f"Invalid request body: {detail}"
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    @app.post("/api/generate", response_model=GenerateResponse)
    async def generate(req: GenerateRequest):
        return await orchestrator.handle_generate(req)

    @app.get("/api/generate/progress/{request_id}")
    async def generate_progress(request_id: str):
        if orchestrator.tracker.get(request_id) is None:
            raise HTTPException(status_code=404, detail="Unknown or expired request id")

        async def event_stream() -> AsyncIterator[str]:
            yield _sse({"type": "connected", "requestId": request_id})
            try:
                async for event in orchestrator.tracker.subscribe(request_id):
                    yield _sse(event)
            except KeyError:
                # job vừa bị purge giữa lúc kiểm tra và subscribe
                yield _sse(
                    {
                        "type": "error",
                        "status": "failed",
                        "requestId": request_id,
                        "error": "Unknown or expired request id",
                        "errorType": "not_found",
                        "retryable": False,
                    }
                )

        return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.get("/api/generate/status/{request_id}")
    async def generate_status(request_id: str):
        """
        Trạng thái job hiện tại (dùng khi client mất kết nối SSE và quay lại trong grace period).
        """
        job = orchestrator.tracker.get(request_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Unknown or expired request id")
        return job.to_event()

    @app.post("/api/analyze-body", response_model=BodyAnalysis)
    async def analyze_body_endpoint(req: AnalyzeBodyRequest):
        return analyze_body(req.image)

    return app


def main() -> None:
    import uvicorn

    configure_logging(default_settings.LOG_LEVEL)
    uvicorn.run(create_app(), host=default_settings.HOST, port=default_settings.PORT)


if __name__ == "__main__":
    main()
