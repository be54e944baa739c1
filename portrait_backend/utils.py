import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"
DEFAULT_STRENGTH = 0.8


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )


def gen_job_id() -> str:
    # uuid4 thay vì timestamp: hai request cùng 1 ms không được trùng id
    return f"gen_{uuid.uuid4().hex}"


def utc_isoformat() -> str:
    return datetime.now(timezone.utc).isoformat()


def strip_data_url(b64: str) -> str:
    """
    Bỏ prefix "data:image/...;base64," nếu client gửi nguyên data URL.
    """
    if b64.startswith("data:") and "," in b64:
        return b64.split(",", 1)[1]
    return b64


def to_data_uri(payload_b64: str, mime_type: str) -> str:
    return f"data:{mime_type};base64,{payload_b64}"


def clamp_strength(value: Optional[float]) -> float:
    if value is None:
        return DEFAULT_STRENGTH
    return min(1.0, max(0.0, float(value)))
