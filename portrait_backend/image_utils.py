import base64
import logging
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any, Dict, Optional, Tuple

from PIL import Image, ImageFilter, ImageOps

from .errors import ValidationError
from .quality import QualityProfile
from .utils import strip_data_url, to_data_uri

logger = logging.getLogger(__name__)

# Phần trên của ảnh giữ lại khi crop (mặt thường nằm ở nửa trên)
KEEP_TOP_WIDE = 0.85
KEEP_TOP_TALL = 0.9


@dataclass
class OptimizedImage:
    data_uri: str
    optimized: bool
    crop_region: Optional[Tuple[int, int, int, int]] = None
    original_size: int = 0
    optimized_size: int = 0
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def compression_ratio(self) -> float:
        if not self.original_size:
            return 0.0
        return round((self.original_size - self.optimized_size) / self.original_size * 100, 1)


def face_crop_region(width: int, height: int, target_w: int, target_h: int) -> Tuple[int, int, int, int]:
    """
    Crop theo tỉ lệ khung đích, ưu tiên phía trên (không có face detection thật).
    Trả về (left, top, right, bottom).
    """
    aspect = target_w / target_h
    source_aspect = width / height
    if source_aspect > aspect:
        crop_w = int(height * aspect)
        left = (width - crop_w) // 2
        return left, 0, left + max(1, crop_w), max(1, int(height * KEEP_TOP_WIDE))
    crop_h = int(width / aspect)
    return 0, 0, width, max(1, min(crop_h, int(height * KEEP_TOP_TALL)))


def resize_cover(img: Image.Image, tw: int, th: int) -> Image.Image:
    w, h = img.size
    if w == 0 or h == 0:
        return img
    scale = max(tw / w, th / h)
    nw, nh = max(tw, int(round(w * scale))), max(th, int(round(h * scale)))
    img2 = img.resize((nw, nh), Image.LANCZOS)
    # neo phía trên để giữ phần mặt
    left = max(0, (nw - tw) // 2)
    return img2.crop((left, 0, left + tw, th))


def optimize_for_generation(image_b64: str, mime_type: Optional[str], profile: QualityProfile) -> OptimizedImage:
    """
    Chuẩn bị ảnh nguồn cho provider: crop vùng mặt, resize về resolution của profile,
    cân bằng sáng, làm nét nhẹ, nén JPEG progressive.
    Lỗi decode thì dùng lại ảnh gốc. Ảnh vượt giới hạn pixel của Pillow bị từ chối (ValidationError).
    """
    raw_b64 = strip_data_url(image_b64)
    fallback = to_data_uri(raw_b64, mime_type or "image/jpeg")
    try:
        img_bytes = base64.b64decode(raw_b64, validate=False)
        img = Image.open(BytesIO(img_bytes))
        img = ImageOps.exif_transpose(img).convert("RGB")
        w, h = img.size
        region = face_crop_region(w, h, profile.width, profile.height)
        img = img.crop(region)
        img = resize_cover(img, profile.width, profile.height)
        img = ImageOps.autocontrast(img, cutoff=1)
        img = img.filter(ImageFilter.UnsharpMask(radius=1, percent=50, threshold=2))
        buf = BytesIO()
        img.save(buf, format="JPEG", quality=profile.jpeg_quality, progressive=True)
        out = buf.getvalue()
    except Image.DecompressionBombError as e:
        raise ValidationError(f"Source image is too large to process: {e}") from e
    except (OSError, ValueError) as e:
        logger.warning("image optimization failed, using original: %s", e)
        return OptimizedImage(data_uri=fallback, optimized=False, details={"error": str(e)})

    result = OptimizedImage(
        data_uri=to_data_uri(base64.b64encode(out).decode("ascii"), "image/jpeg"),
        optimized=True,
        crop_region=region,
        original_size=len(img_bytes),
        optimized_size=len(out),
        details={"source": f"{w}x{h}", "target": profile.resolution},
    )
    logger.info(
        "image optimized: %s -> %s bytes (%s%% reduction)",
        result.original_size,
        result.optimized_size,
        result.compression_ratio,
    )
    return result
