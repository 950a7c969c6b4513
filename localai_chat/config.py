"""Configuration loading and validation for the local chat TUI."""

from __future__ import annotations

from copy import deepcopy
import logging
import os
from pathlib import Path
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

import tomllib

from .exceptions import ConfigValidationError
from .models import CUSTOM_MODEL_ID, DEFAULT_MODEL_ID, DEFAULT_SYSTEM_PROMPT, Settings

LOGGER = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "localai-chat"
CONFIG_PATH = CONFIG_DIR / "config.toml"

VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


def _require_text(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError("Expected a string value.")
    normalized = value.strip()
    if not normalized:
        raise ValueError("String value must not be empty.")
    return normalized


class AppConfig(BaseModel):
    """Application metadata and terminal integration options."""

    model_config = ConfigDict(populate_by_name=True)
    title: str = "LocalAI Chat"
    window_class: str = Field(default="localai-chat", alias="class")

    @field_validator("title", "window_class", mode="before")
    @classmethod
    def _validate_non_empty_string(cls, value: Any) -> str:
        return _require_text(value)


class EngineConfig(BaseModel):
    """Inference server endpoint and the built-in model catalog."""

    host: str = "http://localhost:11434"
    timeout: int = Field(default=120, ge=1, le=3600)
    models: list[str] = Field(
        default_factory=lambda: [DEFAULT_MODEL_ID, "qwen2.5:3b", "phi3:mini"]
    )
    pull_if_missing: bool = True

    @field_validator("host", mode="before")
    @classmethod
    def _validate_host(cls, value: Any) -> str:
        return _require_text(value)

    @field_validator("models", mode="before")
    @classmethod
    def _validate_models(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError("models must be a list of model names.")
        normalized: list[str] = []
        for item in value:
            candidate = _require_text(item)
            if candidate == CUSTOM_MODEL_ID:
                raise ValueError(f"{CUSTOM_MODEL_ID!r} is reserved for custom models.")
            if candidate not in normalized:
                normalized.append(candidate)
        return normalized


class SessionDefaultsConfig(BaseModel):
    """Initial Settings used until the user saves their own."""

    model_id: str = DEFAULT_MODEL_ID
    custom_model_id: str = ""
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=512, ge=1, le=1_000_000)
    concise_mode: bool = False
    theme: Literal["dark", "light"] = "dark"

    @field_validator("model_id", mode="before")
    @classmethod
    def _validate_model_id(cls, value: Any) -> str:
        return _require_text(value)

    def to_settings(self) -> Settings:
        return Settings.model_validate(self.model_dump())


class StorageConfig(BaseModel):
    """Where session state and exported transcripts are written."""

    enabled: bool = True
    directory: str = "~/.local/state/localai-chat"
    export_directory: str = "~/Downloads"

    @field_validator("directory", "export_directory", mode="before")
    @classmethod
    def _validate_path_string(cls, value: Any) -> str:
        return _require_text(value)


class UIConfig(BaseModel):
    """Rendering options for the Textual front-end."""

    show_timestamps: bool = True
    stream_refresh_seconds: float = Field(default=0.05, ge=0.0, le=5.0)
    suggestions: list[str] = Field(
        default_factory=lambda: [
            "Explain how a hash map works.",
            "Write a haiku about terminals.",
            "Summarize the plot of Hamlet in three sentences.",
        ]
    )


class KeybindsConfig(BaseModel):
    """Keyboard action mapping."""

    send_message: str = "ctrl+enter"
    stop_generation: str = "escape"
    regenerate: str = "ctrl+r"
    new_chat: str = "ctrl+n"
    load_model: str = "ctrl+l"
    pick_model: str = "f2"
    edit_system_prompt: str = "f3"
    toggle_concise: str = "ctrl+k"
    toggle_theme: str = "ctrl+t"
    export_transcript: str = "ctrl+e"
    export_markdown: str = "f6"
    import_transcript: str = "ctrl+o"
    copy_last_reply: str = "ctrl+y"
    dismiss_error: str = "ctrl+d"
    show_help: str = "f1"
    quit: str = "ctrl+q"

    @field_validator("*", mode="before")
    @classmethod
    def _validate_keybind(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("Keybind must be a string.")
        return value.strip()


class SecurityConfig(BaseModel):
    """Policy for which engine hosts may be contacted."""

    allow_remote_hosts: bool = False
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "::1"]

    @field_validator("allowed_hosts", mode="before")
    @classmethod
    def _validate_allowed_hosts(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            raise ValueError("allowed_hosts must be a list.")
        normalized_hosts = [
            item.strip().lower()
            for item in value
            if isinstance(item, str) and item.strip()
        ]
        if not normalized_hosts:
            raise ValueError("allowed_hosts must contain at least one host.")
        return normalized_hosts


class LoggingConfig(BaseModel):
    """Logging behavior and output destinations."""

    level: str = "INFO"
    structured: bool = True
    log_to_file: bool = False
    log_file_path: str = "~/.local/state/localai-chat/app.log"

    @field_validator("level", mode="before")
    @classmethod
    def _validate_level(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("Logging level must be a string.")
        normalized = value.strip().upper()
        if normalized not in VALID_LOG_LEVELS:
            raise ValueError(f"Unsupported log level {normalized!r}.")
        return normalized

    @field_validator("log_file_path", mode="before")
    @classmethod
    def _validate_log_file_path(cls, value: Any) -> str:
        return _require_text(value)


class Config(BaseModel):
    """Root configuration model for all sections."""

    model_config = ConfigDict(populate_by_name=True)
    app: AppConfig = AppConfig()
    engine: EngineConfig = EngineConfig()
    session: SessionDefaultsConfig = SessionDefaultsConfig()
    storage: StorageConfig = StorageConfig()
    ui: UIConfig = UIConfig()
    keybinds: KeybindsConfig = KeybindsConfig()
    security: SecurityConfig = SecurityConfig()
    logging: LoggingConfig = LoggingConfig()

    @model_validator(mode="after")
    def _validate_security_policy(self) -> Config:
        parsed = urlparse(self.engine.host)
        scheme = parsed.scheme.lower()
        hostname = (parsed.hostname or "").strip().lower()

        if scheme not in {"http", "https"}:
            raise ValueError("engine.host must use http or https scheme.")
        if not hostname:
            raise ValueError("engine.host must include a hostname.")
        if not self.security.allow_remote_hosts and hostname not in set(
            self.security.allowed_hosts
        ):
            raise ValueError(
                "engine.host is not in security.allowed_hosts while allow_remote_hosts is false."
            )
        return self


DEFAULT_CONFIG: dict[str, dict[str, Any]] = Config().model_dump(by_alias=True)


def ensure_config_dir(config_dir: Path | None = None) -> Path:
    """Ensure that the config directory exists and return its path."""
    directory = config_dir or CONFIG_DIR
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create config directory %s: %s", directory, exc)
    return directory


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override values onto base values."""
    merged: dict[str, Any] = deepcopy(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _enforce_private_permissions(path: Path) -> None:
    if os.name != "posix" or not path.exists():
        return
    try:
        path.chmod(0o600)
    except OSError as exc:
        LOGGER.warning("Unable to enforce 0600 permissions for %s: %s", path, exc)


def _validate_config(raw: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Validate merged config and fall back to safe defaults when invalid."""
    try:
        config = Config.model_validate(raw)
        return config.model_dump(by_alias=True)
    except ValidationError as exc:
        LOGGER.warning(
            "config.invalid",
            extra={"event": "config.invalid", "reason": str(exc)},
        )
        return deepcopy(DEFAULT_CONFIG)
    except Exception as exc:  # noqa: BLE001 - unexpected model construction failure.
        raise ConfigValidationError(f"Unable to validate configuration: {exc}") from exc


def load_config(config_path: Path | None = None) -> dict[str, dict[str, Any]]:
    """Load configuration from TOML, merge with defaults, and validate.

    The optional ``config_path`` argument is intended for tests and tooling.
    """
    target_path = config_path or CONFIG_PATH
    ensure_config_dir(target_path.parent)

    raw_data: dict[str, Any] = {}
    if target_path.exists():
        _enforce_private_permissions(target_path)
        try:
            raw_data = tomllib.loads(target_path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            LOGGER.warning(
                "config.unreadable",
                extra={
                    "event": "config.unreadable",
                    "path": str(target_path),
                    "reason": str(exc),
                },
            )
            raw_data = {}

    return _validate_config(_deep_merge(DEFAULT_CONFIG, raw_data))


def default_settings(config: dict[str, dict[str, Any]]) -> Settings:
    """Build the starting Settings from the ``[session]`` section."""
    return SessionDefaultsConfig.model_validate(config.get("session", {})).to_settings()
