"""In-memory result cache keyed by a SHA-256 request fingerprint."""

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .model import GenerateRequest, GenerationResult
from .utils import clamp_strength

logger = logging.getLogger(__name__)

# Tăng version khi đổi logic prompt/quality để cache cũ tự mất hiệu lực
FINGERPRINT_VERSION = "1.0"
DEFAULT_TTL = 24 * 60 * 60


@dataclass
class CacheEntry:
    result: GenerationResult
    timestamp: float


def _sha256(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def compute_fingerprint(request: GenerateRequest, quality_mode: str, provider: str) -> str:
    """
    Hash toàn bộ payload ảnh (không cắt prefix) + mọi option + quality mode + version.
    """
    image = request.image
    options = request.options
    key_data = {
        "sourceImageHash": _sha256(image.base64 or ""),
        "mimeType": image.mimeType,
        "pose": options.pose,
        "background": options.background,
        "clothing": options.clothing,
        "lighting": options.lighting,
        "style": options.style,
        "bodyType": options.bodyType,
        "strength": clamp_strength(options.strength),
        "qualityMode": quality_mode,
        "enableHQRefinement": options.enableHQRefinement,
        "provider": provider,
        "version": FINGERPRINT_VERSION,
    }
    return _sha256(json.dumps(key_data, sort_keys=True))


class ResultCache:
    def __init__(self, ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.timestamp >= self.ttl:
                del self._entries[key]
                logger.debug("cache entry %s expired", key[:12])
                return None
        return CacheEntry(
            result=entry.result.model_copy(deep=True, update={"from_cache": True}),
            timestamp=entry.timestamp,
        )

    def put(self, key: str, result: GenerationResult) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(
                result=result.model_copy(deep=True, update={"from_cache": False}),
                timestamp=self._clock(),
            )

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now - e.timestamp >= self.ttl]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
