"""Configuration management for the QualiQ compliance service."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class StorageSettings(BaseModel):
    sqlite_path: str = Field(default="./data/qualiq.sqlite")
    sqlite_wal: bool = Field(default=True)
    capa_plan_trigger: bool = Field(
        default=True,
        description="Create the CAPA plan inside the database when an audit is inserted.",
    )
    blob_path: str = Field(default="./data/blobs")
    chat_sessions_path: str = Field(default="./data/chat")
    attachments_bucket: str = Field(default="documents")


class GatewaySettings(BaseModel):
    base_url: str = Field(default="https://ai.gateway.lovable.dev/v1")
    api_key: str | None = Field(default=None)
    model: str | None = Field(
        default=None,
        description="Overrides the model named in the assistant profile.",
    )
    timeout_seconds: float = Field(default=60.0, ge=1.0, le=600.0)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("gateway base_url must use http or https")
        return value.rstrip("/")


class AssistantSettings(BaseModel):
    profile_path: str = Field(default="./assistant.yaml")


class ServerSettings(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000, ge=1024, le=65535)
    allowed_origins: tuple[str, ...] = Field(default=())
    max_attachment_mb: int = Field(default=20, ge=1, le=200)


class Settings(BaseModel):
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    assistant: AssistantSettings = Field(default_factory=AssistantSettings)


ENV_KEYS = {
    "host": "QUALIQ_HOST",
    "port": "QUALIQ_PORT",
    "allowed_origins": "HTTP_ALLOWED_ORIGINS",
    "max_attachment_mb": "MAX_ATTACHMENT_MB",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "sqlite_path": "SQLITE_PATH",
    "sqlite_wal": "SQLITE_WAL",
    "capa_plan_trigger": "SQLITE_CAPA_PLAN_TRIGGER",
    "blob_path": "BLOB_PATH",
    "chat_sessions_path": "CHAT_SESSIONS_PATH",
    "attachments_bucket": "ATTACHMENTS_BUCKET",
    "gateway_url": "AI_GATEWAY_URL",
    "gateway_api_key": "AI_GATEWAY_API_KEY",
    "gateway_model": "AI_GATEWAY_MODEL",
    "gateway_timeout": "GATEWAY_TIMEOUT_SECONDS",
    "assistant_profile": "ASSISTANT_PROFILE_PATH",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _split_csv_preserve_case(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path)
    root = _project_root().resolve()
    if candidate.is_absolute():
        resolved = candidate.resolve()
    else:
        resolved = (root / candidate).resolve()
    if not resolved.is_relative_to(root):
        raise ValueError(f"Path traversal detected: '{path}' resolves outside project root")
    return str(resolved)


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])

    settings_data: dict[str, object] = {
        "server": {
            "host": os.getenv(ENV_KEYS["host"], ServerSettings().host),
            "port": _env_int(ENV_KEYS["port"], ServerSettings().port),
            "allowed_origins": tuple(
                _split_csv_preserve_case(os.getenv(ENV_KEYS["allowed_origins"]))
            ),
            "max_attachment_mb": _env_int(
                ENV_KEYS["max_attachment_mb"], ServerSettings().max_attachment_mb
            ),
        },
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "storage": {
            "sqlite_path": _resolve_path(
                os.getenv(ENV_KEYS["sqlite_path"], StorageSettings().sqlite_path)
            ),
            "sqlite_wal": _env_bool(ENV_KEYS["sqlite_wal"], StorageSettings().sqlite_wal),
            "capa_plan_trigger": _env_bool(
                ENV_KEYS["capa_plan_trigger"], StorageSettings().capa_plan_trigger
            ),
            "blob_path": _resolve_path(
                os.getenv(ENV_KEYS["blob_path"], StorageSettings().blob_path)
            ),
            "chat_sessions_path": _resolve_path(
                os.getenv(ENV_KEYS["chat_sessions_path"], StorageSettings().chat_sessions_path)
            ),
            "attachments_bucket": os.getenv(
                ENV_KEYS["attachments_bucket"], StorageSettings().attachments_bucket
            ),
        },
        "gateway": {
            "base_url": os.getenv(ENV_KEYS["gateway_url"], GatewaySettings().base_url),
            "api_key": os.getenv(ENV_KEYS["gateway_api_key"]) or None,
            "model": os.getenv(ENV_KEYS["gateway_model"]) or None,
            "timeout_seconds": _env_float(
                ENV_KEYS["gateway_timeout"], GatewaySettings().timeout_seconds
            ),
        },
        "assistant": {
            "profile_path": _resolve_path(
                os.getenv(ENV_KEYS["assistant_profile"], AssistantSettings().profile_path)
            ),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    Path(settings.storage.blob_path).mkdir(parents=True, exist_ok=True)
    Path(settings.storage.chat_sessions_path).mkdir(parents=True, exist_ok=True)
    Path(settings.storage.sqlite_path).parent.mkdir(parents=True, exist_ok=True)

    return settings
