"""Conversation data model: messages, roles, and generation settings."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .exceptions import InvalidConfigurationError

LOGGER = logging.getLogger(__name__)

CUSTOM_MODEL_ID = "custom"
DEFAULT_MODEL_ID = "llama3.2"
DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant."
CONCISE_DIRECTIVE = "Keep your answers brief and to the point."


class Role(str, Enum):
    """Speaker attribution for a conversation turn."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse a stored timestamp, defaulting to the current instant.

    Accepts ISO-8601 strings and epoch milliseconds, which is what older
    browser exports wrote.
    """
    if value is None or value == "":
        return utc_now()
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            LOGGER.debug(
                "model.timestamp.invalid",
                extra={"event": "model.timestamp.invalid", "value": value},
            )
            return utc_now()
    else:
        return utc_now()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Message:
    """A single conversation turn.

    ``is_streaming`` marks the in-flight assistant placeholder and is never
    persisted or exported.
    """

    role: str
    content: str = ""
    timestamp: datetime = field(default_factory=utc_now)
    is_streaming: bool = False

    def to_dict(self) -> dict[str, str]:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_prompt(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Message:
        content = payload.get("content")
        return cls(
            role=str(payload.get("role", "")),
            content="" if content is None else str(content),
            timestamp=parse_timestamp(payload.get("timestamp")),
        )


class Settings(BaseModel):
    """Generation parameters and model selection.

    Serialized with camelCase keys so persisted state and interchange
    documents share one vocabulary.
    """

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    model_id: str = Field(default=DEFAULT_MODEL_ID, alias="modelId")
    custom_model_id: str = Field(default="", alias="customModelId")
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT, alias="systemPrompt")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=512, ge=1, alias="maxTokens")
    concise_mode: bool = Field(default=False, alias="conciseMode")
    theme: Literal["dark", "light"] = "dark"

    @field_validator("model_id", mode="before")
    @classmethod
    def _validate_model_id(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("Expected a string value.")
        normalized = value.strip()
        if not normalized:
            raise ValueError("modelId must not be empty.")
        return normalized

    @field_validator("custom_model_id", mode="before")
    @classmethod
    def _normalize_custom_model_id(cls, value: Any) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ValueError("customModelId must be a string.")
        return value.strip()

    @field_validator("system_prompt", mode="before")
    @classmethod
    def _validate_system_prompt(cls, value: Any) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ValueError("systemPrompt must be a string.")
        return value

    @property
    def uses_custom_model(self) -> bool:
        return self.model_id == CUSTOM_MODEL_ID

    def resolve_model_identifier(self) -> str:
        """Return the identifier to hand to the engine for the current selection."""
        if not self.uses_custom_model:
            return self.model_id
        if not self.custom_model_id:
            raise InvalidConfigurationError(
                "A custom model is selected but no custom model identifier is set."
            )
        return self.custom_model_id

    def effective_system_prompt(self) -> str:
        """Return the system turn text, with the concise directive when enabled."""
        if not self.concise_mode:
            return self.system_prompt
        if not self.system_prompt.strip():
            return CONCISE_DIRECTIVE
        return f"{self.system_prompt.rstrip()}\n\n{CONCISE_DIRECTIVE}"

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
