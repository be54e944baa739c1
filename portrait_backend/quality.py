"""Quality tier -> generation parameters."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

DEFAULT_MODE = "balanced"


@dataclass(frozen=True)
class QualityProfile:
    name: str
    width: int
    height: int
    steps: int
    guidance_scale: float
    sampler: str
    scheduler: str
    model_id: str
    jpeg_quality: int

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


_PROFILES: Dict[str, QualityProfile] = {
    "fast": QualityProfile(
        name="fast",
        width=640,
        height=896,
        steps=8,
        guidance_scale=3.0,
        sampler="dpmpp_2m",
        scheduler="karras",
        model_id="FLUX.1-schnell",
        jpeg_quality=85,
    ),
    "balanced": QualityProfile(
        name="balanced",
        width=768,
        height=1024,
        steps=16,
        guidance_scale=3.5,
        sampler="euler",
        scheduler="simple",
        model_id="FLUX.1-dev",
        jpeg_quality=90,
    ),
    "high": QualityProfile(
        name="high",
        width=1024,
        height=1366,
        steps=24,
        guidance_scale=4.0,
        sampler="dpmpp_2m",
        scheduler="karras",
        model_id="FLUX.1-dev",
        jpeg_quality=95,
    ),
}


def resolve(quality_mode: Optional[str]) -> QualityProfile:
    # input chưa validate: giá trị lạ -> balanced, không raise
    key = (quality_mode or "").strip().lower()
    return _PROFILES.get(key, _PROFILES[DEFAULT_MODE])


def available_modes() -> tuple:
    return tuple(_PROFILES)
