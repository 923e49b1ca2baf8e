import os
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


class Settings:
    """Environment-driven configuration, read when the instance is created."""

    def __init__(self, **overrides):
        self.mongo_url: str = os.getenv("MONGO_URL", "mongodb://localhost:27017")
        self.database_name: str = os.getenv("DATABASE_NAME", "civic_complaints")
        self.mongo_timeout_ms: int = int(os.getenv("MONGO_TIMEOUT_MS", "5000"))

        self.jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change")
        self.jwt_alg: str = os.getenv("JWT_ALG", "HS256")
        self.token_ttl_days: int = int(os.getenv("TOKEN_TTL_DAYS", "30"))
        self.cookie_name: str = os.getenv("COOKIE_NAME", "token")
        self.cookie_secure: bool = _env_bool("COOKIE_SECURE", "false")

        self.cors_origins: List[str] = _env_list("CORS_ORIGINS", "http://localhost:5173")

        self.upload_dir: str = os.getenv("UPLOAD_DIR", "uploads")
        self.upload_url_prefix: str = os.getenv("UPLOAD_URL_PREFIX", "/uploads")
        self.allowed_image_extensions: List[str] = [
            ext.lower().lstrip(".") for ext in _env_list("ALLOWED_IMAGE_EXTENSIONS", "png,jpg,jpeg,gif,webp")
        ]

        self.require_zone: bool = _env_bool("REQUIRE_ZONE", "true")
        self.classifier_min_confidence: float = float(os.getenv("CLASSIFIER_MIN_CONFIDENCE", "0.35"))

        self.superadmin_email: Optional[str] = os.getenv("SUPERADMIN_EMAIL") or None
        self.superadmin_password: Optional[str] = os.getenv("SUPERADMIN_PASSWORD") or None
        self.superadmin_name: str = os.getenv("SUPERADMIN_NAME", "Super Admin")

        self.log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)

    @property
    def token_max_age(self) -> int:
        """Cookie max-age in seconds."""
        return self.token_ttl_days * 24 * 60 * 60
