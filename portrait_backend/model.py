# portrait_backend/model.py
from pydantic import BaseModel, Field
from typing import Optional, Literal, Dict, Any, List

QualityMode = Literal["fast", "balanced", "high"]

Status = Literal["starting", "generating", "completed", "failed"]

TERMINAL_STATUSES = ("completed", "failed")


class UploadedImage(BaseModel):
    base64: Optional[str] = None
    mimeType: Optional[str] = None


class GenerationOptions(BaseModel):
    pose: Optional[str] = None
    background: Optional[str] = None
    clothing: Optional[str] = None
    lighting: Optional[str] = None
    style: Optional[str] = None
    bodyType: Optional[str] = None
    strength: Optional[float] = 0.8
    qualityMode: Optional[str] = None  # không validate ở đây -> resolver fallback "balanced"
    enableHQRefinement: bool = False


class GenerateRequest(BaseModel):
    image: Optional[UploadedImage] = None
    options: Optional[GenerationOptions] = None


class GenerateResponse(BaseModel):
    requestId: str
    message: str
    progressUrl: str


class GenerationResult(BaseModel):
    image_url: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    from_cache: bool = False


class Job(BaseModel):
    id: str
    status: Status = "starting"
    progress: float = 0.0
    message: str = "Initializing generation..."
    result: Optional[GenerationResult] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    retryable: Optional[bool] = None
    created_at: float
    finished_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_event(self) -> Dict[str, Any]:
        """
        Payload JSON gửi qua SSE (giữ nguyên key camelCase mà frontend đang đọc).
        """
        event: Dict[str, Any] = {
            "type": "progress",
            "status": self.status,
            "progress": self.progress,
            "message": self.message,
            "requestId": self.id,
        }
        if self.status == "completed" and self.result is not None:
            event["type"] = "result"
            event["imageUrl"] = self.result.image_url
            event["metadata"] = self.result.metadata
            event["fromCache"] = self.result.from_cache
        elif self.status == "failed":
            event["type"] = "error"
            event["error"] = self.error or "Generation failed"
            event["errorType"] = self.error_type or "internal"
            event["retryable"] = bool(self.retryable)
        return event


class BodyAnalysis(BaseModel):
    bodyType: str
    suggestedPoses: List[str]
    recommendedClothing: List[str]
    optimalLighting: List[str]
    backgroundSuggestions: List[str]
    styleRecommendations: List[str]
    confidence: float


class AnalyzeBodyRequest(BaseModel):
    image: Optional[UploadedImage] = None
