import datetime
import logging
import os
import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from jose.constants import ALGORITHMS
from pydantic import field_validator, ValidationError, ConfigDict
from pydantic_settings import BaseSettings

from .constants import (
    DEFAULT_STORAGE_CONCURRENCY,
    DEFAULT_STORAGE_WORKERS,
    MAX_UPLOAD_SIZE,
    MAX_UPLOAD_SIZE_LIMIT,
)

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_ignore_empty=False,
        case_sensitive=False  # Make env vars case-insensitive
    )

    logging_level: str = "INFO"
    timezone: str = "UTC"

    database_url: str = "sqlite:////data/identity_finder.db"

    webdav_url: str | None = None
    webdav_username: str | None = None
    webdav_password: str | None = None
    webdav_path: str | None = None
    public_storage_url: str | None = None  # Base URL clients use to fetch uploads
    storage_workers: int = DEFAULT_STORAGE_WORKERS
    storage_concurrency: int = DEFAULT_STORAGE_CONCURRENCY
    max_upload_bytes: int = MAX_UPLOAD_SIZE

    # Bearer token verification; without a secret tokens are only decoded
    jwt_secret: str | None = None
    jwt_algorithms: str = "HS256"
    jwt_audience: str | None = None
    jwt_leeway_seconds: int = 0

    cors_origins: str = "*"
    host: str = "0.0.0.0"
    port: int = 8000

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        if v is None or str(v).strip() == "":
            raise ValueError("database_url cannot be empty")
        return str(v).strip()

    @field_validator("storage_workers", "storage_concurrency")
    @classmethod
    def validate_worker_counts(cls, v, info):
        if int(v) < 1:
            raise ValueError(f"{info.field_name} must be >= 1")
        return int(v)

    @field_validator("max_upload_bytes")
    @classmethod
    def validate_max_upload(cls, v):
        if int(v) < 1:
            raise ValueError("max_upload_bytes must be >= 1")
        if int(v) > MAX_UPLOAD_SIZE_LIMIT:
            raise ValueError(f"max_upload_bytes must be <= {MAX_UPLOAD_SIZE_LIMIT}")
        return int(v)

    @field_validator("jwt_algorithms")
    @classmethod
    def validate_jwt_algorithms(cls, v):
        names = [a.strip().upper() for a in str(v or "").split(",") if a.strip()]
        if not names:
            raise ValueError("jwt_algorithms cannot be empty")
        unsupported = [a for a in names if a not in ALGORITHMS.SUPPORTED]
        if unsupported:
            raise ValueError(f"Unsupported JWT algorithms: {unsupported}")
        return ",".join(names)

    @field_validator("jwt_leeway_seconds")
    @classmethod
    def validate_jwt_leeway(cls, v):
        if int(v) < 0:
            raise ValueError("jwt_leeway_seconds must be >= 0")
        if int(v) > 300:
            raise ValueError("jwt_leeway_seconds must be <= 300")
        return int(v)

    @field_validator("port")
    @classmethod
    def validate_port(cls, v):
        if not 0 < int(v) < 65536:
            raise ValueError("port must be between 1 and 65535")
        return int(v)

    @field_validator("webdav_password", "jwt_secret", mode="before")
    @classmethod
    def _prefer_docker_secret(cls, v, info):
        """
        Prefer Docker secrets mounted at /run/secrets/<NAME> over environment variables.
        Tries secret files with the field name upper-cased and as-is.
        """
        secret = None
        try:
            candidates = [info.field_name.upper(), info.field_name]
            for name in candidates:
                path = f"/run/secrets/{name}"
                if os.path.isfile(path):
                    with open(path, "r", encoding="utf-8") as f:
                        data = f.read().strip()
                    if data:
                        secret = data
                        break
        except Exception:
            secret = None
        if secret:
            logger.debug("Using docker secret for %s", info.field_name)
            return secret
        return v

    @property
    def jwt_algorithm_list(self) -> list[str]:
        return self.jwt_algorithms.split(",")

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def storage_base_url(self) -> str | None:
        """WebDAV collection that holds uploads, or None when storage is off."""
        if not self.webdav_url:
            return None
        base = self.webdav_url.rstrip('/')
        if self.webdav_path:
            base = base + '/' + self.webdav_path.strip('/')
        return base


def load_settings() -> Settings:
    try:
        settings = Settings()
        return settings
    except ValidationError as e:
        logger.error("Configuration error:")
        for err in e.errors():
            logger.error(" - %s: %s", err.get('loc'), err.get('msg'))
        sys.exit(1)


class LocalISOFormatter(logging.Formatter):
    def __init__(self, fmt=None, datefmt=None, tz_name: str | None = None):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._tz = None
        self._tz_name = tz_name
        if tz_name:
            try:
                self._tz = ZoneInfo(tz_name)
            except ZoneInfoNotFoundError:
                self._tz = None

    def formatTime(self, record, datefmt=None):
        if self._tz is not None:
            dt = datetime.datetime.fromtimestamp(record.created, tz=self._tz)
        else:
            dt = datetime.datetime.fromtimestamp(record.created).astimezone()
        return dt.isoformat(timespec='milliseconds')


def configure_logging(settings: Settings | None = None):
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        tzname = getattr(settings, 'timezone', None) if settings is not None else None
        formatter = LocalISOFormatter('%(asctime)s %(levelname)s %(name)s %(message)s', tz_name=tzname)
        handler.setFormatter(formatter)
        root.addHandler(handler)
    if settings is not None:
        lvl = str(getattr(settings, 'logging_level', 'INFO')).strip().upper()
        numeric = getattr(logging, lvl, None)
        if not isinstance(numeric, int):
            root.setLevel(logging.INFO)
        else:
            root.setLevel(numeric)
    else:
        root.setLevel(logging.INFO)

    logger.info("Logging configured; root level=%s", logging.getLevelName(root.level))

    noisy = ['httpx', 'httpcore', 'webdav4', 'urllib3', 'multipart']
    for n in noisy:
        logging.getLogger(n).setLevel(logging.WARNING)

    for logger_name in ['uvicorn', 'uvicorn.error']:
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True

    if root.level <= logging.DEBUG:
        logging.getLogger('sqlalchemy.engine').setLevel(logging.INFO)
    else:
        logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
