import os
from dataclasses import dataclass


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _list_env(name: str, default: str) -> tuple:
    raw = os.environ.get(name) or default
    return tuple(item.strip().lower() for item in raw.split(",") if item.strip())


_DEV_SECRET_KEY = "dev-secret-home-service"
_DEV_JWT_SECRET = "dev-jwt-secret-home-service"
_DEV_CARD_KEY = "dev-card-key-home-service"


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "home_service.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", True)

    SECRET_KEY = os.environ.get("SECRET_KEY", _DEV_SECRET_KEY)
    JWT_SECRET = os.environ.get("JWT_SECRET", _DEV_JWT_SECRET)
    JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
    JWT_EXPIRES_HOURS = _int_env("JWT_EXPIRES_HOURS", 3)
    CARD_ENCRYPTION_KEY = os.environ.get("CARD_ENCRYPTION_KEY", _DEV_CARD_KEY)

    UPLOAD_DIR = os.environ.get("UPLOAD_DIR") or os.path.join(BASE_DIR, "uploads", "service-requests")
    UPLOAD_URL_PREFIX = os.environ.get("UPLOAD_URL_PREFIX", "/uploads/service-requests")
    MAX_PHOTOS_PER_REQUEST = _int_env("MAX_PHOTOS_PER_REQUEST", 5)
    MAX_PHOTO_BYTES = _int_env("MAX_PHOTO_BYTES", 5 * 1024 * 1024)
    MAX_CONTENT_LENGTH = MAX_PHOTOS_PER_REQUEST * MAX_PHOTO_BYTES + 64 * 1024
    ALLOWED_IMAGE_EXTENSIONS = _list_env("ALLOWED_IMAGE_EXTENSIONS", "jpg,jpeg,png,gif")

    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL must be set in production.")
        if env == "production" and self.SECRET_KEY == _DEV_SECRET_KEY:
            raise RuntimeError("SECRET_KEY is not safe for production.")
        if env == "production" and self.JWT_SECRET == _DEV_JWT_SECRET:
            raise RuntimeError("JWT_SECRET is not safe for production.")
        if env == "production" and self.CARD_ENCRYPTION_KEY == _DEV_CARD_KEY:
            raise RuntimeError("CARD_ENCRYPTION_KEY is not safe for production.")


@dataclass(frozen=True)
class NegotiationSettings:
    upload_dir: str
    upload_url_prefix: str = "/uploads/service-requests"
    max_photos_per_request: int = 5
    max_photo_bytes: int = 5 * 1024 * 1024
    allowed_image_extensions: tuple = ("jpg", "jpeg", "png", "gif")

    @classmethod
    def from_mapping(cls, config) -> "NegotiationSettings":
        return cls(
            upload_dir=str(config["UPLOAD_DIR"]),
            upload_url_prefix=str(config.get("UPLOAD_URL_PREFIX") or "/uploads/service-requests"),
            max_photos_per_request=int(config.get("MAX_PHOTOS_PER_REQUEST") or 5),
            max_photo_bytes=int(config.get("MAX_PHOTO_BYTES") or 5 * 1024 * 1024),
            allowed_image_extensions=tuple(config.get("ALLOWED_IMAGE_EXTENSIONS") or ("jpg", "jpeg", "png", "gif")),
        )


@dataclass(frozen=True)
class AuthSettings:
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_expires_hours: int = 3
    card_encryption_key: str = _DEV_CARD_KEY

    @classmethod
    def from_mapping(cls, config) -> "AuthSettings":
        return cls(
            jwt_secret=str(config["JWT_SECRET"]),
            jwt_algorithm=str(config.get("JWT_ALGORITHM") or "HS256"),
            jwt_expires_hours=int(config.get("JWT_EXPIRES_HOURS") or 3),
            card_encryption_key=str(config.get("CARD_ENCRYPTION_KEY") or _DEV_CARD_KEY),
        )
