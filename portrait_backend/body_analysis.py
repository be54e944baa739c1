"""
Phân tích body cho frontend (gợi ý pose, trang phục, ánh sáng...).

Chưa có face/body detection thật: luôn trả về bộ gợi ý mặc định cho chân dung
studio. Chỉ đảm bảo đúng shape `BodyAnalysis` mà frontend đọc.
"""

from .errors import ValidationError
from .model import BodyAnalysis, UploadedImage

DEFAULT_ANALYSIS = BodyAnalysis(
    bodyType="elegant athletic build, model-like proportions, professional posture",
    suggestedPoses=[
        "confident three-quarter angle with subtle smile",
        "professional straight-on pose with direct eye contact",
        "sophisticated side profile with dramatic lighting",
        "casual relaxed stance with natural expression",
        "dynamic power pose with strong presence",
    ],
    recommendedClothing=[
        "elegant black blazer with white shirt",
        "sophisticated navy blue suit with minimal accessories",
        "casual luxury sweater in neutral tones",
        "classic formal dress in deep colors",
        "contemporary business attire with statement pieces",
        "artistic casual wear with unique textures",
    ],
    optimalLighting=[
        "professional studio lighting with soft key light",
        "cinematic dramatic lighting with rim light",
        "natural window lighting with soft fill",
        "golden hour warm lighting simulation",
        "high-key bright even lighting",
        "low-key moody dramatic shadows",
    ],
    backgroundSuggestions=[
        "professional studio backdrop with subtle texture",
        "modern minimalist office with clean lines",
        "elegant library with warm book-filled shelves",
        "upscale hotel lobby with sophisticated ambiance",
        "contemporary art gallery with white walls",
        "luxury penthouse with city skyline view",
    ],
    styleRecommendations=[
        "ultra high-resolution commercial photography style",
        "cinematic film-grade portrait with depth of field",
        "fashion magazine editorial style with dramatic lighting",
        "corporate professional headshot with clean composition",
        "artistic fine art portrait with creative shadows",
        "contemporary lifestyle photography with natural feel",
    ],
    confidence=0.92,
)


def analyze_body(image: UploadedImage | None) -> BodyAnalysis:
    if image is None or not (image.base64 or "").strip():
        raise ValidationError("Missing image in request body.")
    return DEFAULT_ANALYSIS.model_copy(deep=True)
