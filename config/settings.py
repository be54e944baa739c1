import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env next to this file first, then the working directory one
BASE_DIR = Path(__file__).resolve().parent
load_dotenv(BASE_DIR / ".env")
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # pollinations | huggingface | replicate | together
    PORTRAIT_PROVIDER: str = os.getenv("PORTRAIT_PROVIDER", "pollinations")

    POLLINATIONS_BASE_URL: str = os.getenv("POLLINATIONS_BASE_URL", "https://image.pollinations.ai")

    HUGGINGFACE_API_KEY: str | None = os.getenv("HUGGINGFACE_API_KEY")
    HUGGINGFACE_BASE_URL: str = os.getenv("HUGGINGFACE_BASE_URL", "https://api-inference.huggingface.co")

    REPLICATE_API_TOKEN: str | None = os.getenv("REPLICATE_API_TOKEN")
    REPLICATE_BASE_URL: str = os.getenv("REPLICATE_BASE_URL", "https://api.replicate.com")
    REPLICATE_MODEL_VERSION: str = os.getenv(
        "REPLICATE_MODEL_VERSION",
        "a3a8323164a3e78453b708605c7f8f9702280d19c5c7d145c1106f23c6d7a4de",
    )

    TOGETHER_API_KEY: str | None = os.getenv("TOGETHER_API_KEY")
    TOGETHER_BASE_URL: str = os.getenv("TOGETHER_BASE_URL", "https://api.together.xyz")

    POLL_INTERVAL: float = float(os.getenv("POLL_INTERVAL", "2.0"))  # giây
    POLL_MAX_ATTEMPTS: int = int(os.getenv("POLL_MAX_ATTEMPTS", "60"))
    REQUEST_TIMEOUT: float = float(os.getenv("REQUEST_TIMEOUT", "120"))
    NETWORK_RETRIES: int = int(os.getenv("NETWORK_RETRIES", "2"))

    JOB_TIMEOUT: float = float(os.getenv("JOB_TIMEOUT", "300"))
    JOB_GRACE_PERIOD: float = float(os.getenv("JOB_GRACE_PERIOD", "60"))
    CACHE_TTL: float = float(os.getenv("CACHE_TTL", str(24 * 60 * 60)))

    CONTENT_MODERATION: bool = _env_bool("CONTENT_MODERATION", True)
    OPTIMIZE_IMAGES: bool = _env_bool("OPTIMIZE_IMAGES", True)

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "3001"))
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    def __init__(self, **overrides):
        for key, value in overrides.items():
            if not hasattr(type(self), key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)


settings = Settings()
