# portrait_backend/prompt_builder.py

import random
from typing import Dict, Any, List, Tuple

from .model import GenerationOptions
from .quality import QualityProfile


DEFAULT_BODY_TYPE = "model-like proportions"

QUALITY_TOKENS: Dict[str, str] = {
    "fast": "photorealistic portrait, professional photography, high quality, detailed",
    "balanced": (
        "ultra photorealistic studio portrait, professional photography, high detail, "
        "sharp focus, 8K resolution"
    ),
    "high": (
        "ultra photorealistic, hyper-detailed, professional commercial photography, "
        "8K resolution, RAW photo quality, perfect skin texture, natural lighting, "
        "sharp focus, depth of field, bokeh, cinematic composition"
    ),
}

CAMERA_SPECS: Dict[str, str] = {
    "fast": "professional camera setup",
    "balanced": "professional portrait photography, natural skin tones",
    "high": "shot with Canon EOS R5, 85mm lens, f/2.8, professional retouching, studio lighting setup",
}

# Cố định cho mọi request, user không chỉnh được
NEGATIVE_PROMPT = ", ".join(
    [
        "deformed", "distorted", "disfigured", "poorly drawn", "bad anatomy",
        "wrong anatomy", "extra limb", "missing limb", "floating limbs",
        "mutated hands", "mutated fingers", "ugly", "blurry", "low resolution",
        "pixelated", "grainy", "cartoon", "3d", "fake", "cgi", "watermark", "text",
        "nsfw", "explicit", "nude", "sexual", "oversaturated", "over-smoothed",
        "waxy skin", "plastic skin", "artificial", "digital artifacts",
        "compression artifacts", "lens flare", "chromatic aberration",
    ]
)


def _clean(value) -> str:
    return (value or "").strip()


def build_prompt(options: GenerationOptions, profile: QualityProfile) -> Tuple[str, str]:
    """
    Ghép positive prompt theo đúng thứ tự:
    quality tokens -> camera specs -> subject -> body composition -> environment -> style.
    Field rỗng thì bỏ qua (trừ body type có giá trị mặc định).
    """
    sections: List[str] = [
        QUALITY_TOKENS[profile.name],
        CAMERA_SPECS[profile.name],
    ]

    clothing = _clean(options.clothing)
    if clothing:
        sections.append(f"wearing: {clothing}")

    sections.append(f"body composition: {_clean(options.bodyType) or DEFAULT_BODY_TYPE}")
    pose = _clean(options.pose)
    if pose:
        sections.append(f"pose and expression: {pose}")

    background = _clean(options.background)
    if background:
        sections.append(f"setting: {background}")
    lighting = _clean(options.lighting)
    if lighting:
        sections.append(f"lighting setup: {lighting}")

    style = _clean(options.style)
    if style:
        sections.append(f"photographic style: {style}")
    sections.append("masterpiece quality")

    return ", ".join(sections), NEGATIVE_PROMPT


def _random_seed() -> int:
    return random.randint(0, 2**31 - 1)


def build_generation_payload(
    profile: QualityProfile,
    positive_prompt: str,
    negative_prompt: str,
    strength: float,
) -> Dict[str, Any]:
    """
    Bộ tham số chung cho mọi provider, mỗi adapter tự map sang wire format riêng.
    Seed random mỗi lần build.
    """
    return {
        "prompt": positive_prompt,
        "negative_prompt": negative_prompt,
        "width": profile.width,
        "height": profile.height,
        "steps": profile.steps,
        "guidance_scale": profile.guidance_scale,
        "sampler": profile.sampler,
        "scheduler": profile.scheduler,
        "model": profile.model_id,
        "strength": strength,
        "seed": _random_seed(),
    }
