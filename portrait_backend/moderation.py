"""
Hook kiểm duyệt nội dung chạy ở bước validate, trước khi cấp job id.

Chỉ là blocklist so khớp nguyên từ (không dùng model), dễ bị lách bằng viết sai
chính tả. Dùng `NoopContentPolicy` khi tắt CONTENT_MODERATION.
"""

import re
from typing import Iterable, Optional, Protocol

from .errors import ContentPolicyError
from .model import GenerationOptions

EXPLICIT_TERMS = [
    "nude", "naked", "nsfw", "explicit", "sexual", "erotic", "pornographic",
    "masturbation", "masturbating", "sex", "vagina", "penis", "breast", "nipple",
    "anal", "pussy", "dick", "cock", "tits", "ass", "topless", "bottomless",
]

CHECKED_FIELDS = ("pose", "background", "clothing", "lighting", "style", "bodyType")


class ContentPolicy(Protocol):
    def check(self, options: GenerationOptions) -> None:
        ...


class NoopContentPolicy:
    def check(self, options: GenerationOptions) -> None:
        return None


class KeywordContentPolicy:
    def __init__(self, terms: Optional[Iterable[str]] = None):
        self.terms = [t.lower() for t in (terms if terms is not None else EXPLICIT_TERMS)]
        # match theo từ để "class", "passion" không bị chặn nhầm bởi "ass"
        self._patterns = [(t, re.compile(rf"\b{re.escape(t)}\b")) for t in self.terms]

    def check(self, options: GenerationOptions) -> None:
        content = " ".join(getattr(options, name) or "" for name in CHECKED_FIELDS).lower()
        for term, pattern in self._patterns:
            if pattern.search(content):
                raise ContentPolicyError(
                    f'Content blocked: Contains inappropriate term "{term}". '
                    "This application is for professional portraits only."
                )


def build_policy(enabled: bool) -> ContentPolicy:
    return KeywordContentPolicy() if enabled else NoopContentPolicy()
