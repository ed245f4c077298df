import os
from dotenv import load_dotenv

load_dotenv()


def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _get_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).strip().lower() == "true"


def _get_list(name: str, default: tuple) -> tuple:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


# Application
APP_NAME = "postguard"
APP_DESCRIPTION = "Moderation-gated posting service"
APP_VERSION = "1.0.0"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Post Limits
MIN_POST_LENGTH = 1
MAX_POST_LENGTH = _get_int("MAX_POST_LENGTH", 280)

# Moderation Thresholds
STANDARD_THRESHOLD = _get_float("STANDARD_THRESHOLD", 0.10)
HIGH_SENSITIVITY_THRESHOLD = _get_float("HIGH_SENSITIVITY_THRESHOLD", 0.05)
HIGH_SENSITIVITY_CATEGORIES = _get_list(
    "HIGH_SENSITIVITY_CATEGORIES",
    ("hate", "hate/threatening", "harassment", "harassment/threatening"),
)

# Moderation Cache (seconds)
CACHE_TTL = _get_float("CACHE_TTL", 3600.0)
CACHE_SWEEP_INTERVAL = _get_float("CACHE_SWEEP_INTERVAL", 600.0)

# Classifier
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
MODERATION_MODEL = os.getenv("MODERATION_MODEL", "omni-moderation-latest")
CLASSIFIER_TIMEOUT = _get_float("CLASSIFIER_TIMEOUT", 5.0)
CLASSIFIER_RETRY_ATTEMPTS = _get_int("CLASSIFIER_RETRY_ATTEMPTS", 1)
USE_MOCK_SERVER = _get_bool("USE_MOCK_SERVER")
MOCK_SERVER_URL = os.getenv("MOCK_SERVER_URL", "http://127.0.0.1:8080/v1/moderations")

# Retry With Exponential Backoff
RETRY_ATTEMPTS = _get_int("RETRY_ATTEMPTS", 3)
RETRY_BASE_DELAY = _get_float("RETRY_BASE_DELAY", 1.0)
RETRY_MAX_JITTER = _get_float("RETRY_MAX_JITTER", 1.0)

# Posting Service
POSTING_API_URL = os.getenv("POSTING_API_URL", "https://api.twitter.com")
POSTING_API_TOKEN = os.getenv("POSTING_API_TOKEN")
POSTING_TIMEOUT = _get_float("POSTING_TIMEOUT", 3.0)

# Redis (Rate Limiting, Celery, DLQ)
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
RATE_LIMIT_TIMES = _get_int("RATE_LIMIT_TIMES", 100)
RATE_LIMIT_SECONDS = _get_int("RATE_LIMIT_SECONDS", 3600)
