"""Interchange document export and validated import."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from pathlib import Path
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import MalformedImportError
from .models import Message, Settings, parse_timestamp

LOGGER = logging.getLogger(__name__)

TRANSCRIPT_VERSION = 1


class TranscriptMessage(BaseModel):
    """One exported turn. Roles are taken as-is, without validation."""

    model_config = ConfigDict(extra="ignore")

    role: str = ""
    content: str = ""
    timestamp: Any = None

    @field_validator("role", "content", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, (dict, list)):
            raise ValueError("Expected text.")
        return str(value)

    def to_message(self) -> Message:
        return Message(
            role=self.role,
            content=self.content,
            timestamp=parse_timestamp(self.timestamp),
        )


class TranscriptSettings(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    temperature: float | None = None
    max_tokens: float | None = Field(default=None, alias="maxTokens")
    concise_mode: bool | None = Field(default=None, alias="conciseMode")
    # Older exports nested the whole settings object, prompt included.
    system_prompt: str | None = Field(default=None, alias="systemPrompt")


class TranscriptDocument(BaseModel):
    """Schema of the versioned interchange document."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    version: int
    model: str | None = None
    system_prompt: str | None = Field(default=None, alias="systemPrompt")
    messages: list[TranscriptMessage]
    settings: TranscriptSettings | None = None


def _describe_validation_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "document"
    return f"{location}: {first.get('msg', 'invalid value')}"


def export_document(settings: Settings, messages: Iterable[Message]) -> dict[str, Any]:
    """Build the interchange document for the settled conversation."""
    if settings.uses_custom_model and settings.custom_model_id:
        model = settings.custom_model_id
    else:
        model = settings.model_id
    return {
        "version": TRANSCRIPT_VERSION,
        "model": model,
        "systemPrompt": settings.system_prompt,
        "messages": [m.to_dict() for m in messages if not m.is_streaming],
        "settings": {
            "temperature": settings.temperature,
            "maxTokens": settings.max_tokens,
            "conciseMode": settings.concise_mode,
        },
    }


def import_document(
    document: Any, settings: Settings
) -> tuple[list[Message], Settings]:
    """Validate ``document`` and return the replacement history and settings.

    Nothing is mutated; callers apply the result. Imported generation
    settings fall back to the prior value when falsy, and the model
    selection and theme are never touched.
    """
    if not isinstance(document, dict):
        raise MalformedImportError("Transcript must be a JSON object.")
    if "version" not in document or document.get("version") is None:
        raise MalformedImportError("Transcript is missing 'version'.")
    if "messages" not in document or document.get("messages") is None:
        raise MalformedImportError("Transcript is missing 'messages'.")
    try:
        parsed = TranscriptDocument.model_validate(document)
    except ValidationError as exc:
        raise MalformedImportError(
            f"Transcript is invalid ({_describe_validation_error(exc)})."
        ) from exc

    messages = [item.to_message() for item in parsed.messages]

    updates: dict[str, Any] = {}
    imported = parsed.settings
    if imported is not None:
        updates["temperature"] = imported.temperature or settings.temperature
        updates["maxTokens"] = imported.max_tokens or settings.max_tokens
        updates["conciseMode"] = imported.concise_mode or settings.concise_mode
    system_prompt = parsed.system_prompt
    if not system_prompt and imported is not None:
        system_prompt = imported.system_prompt
    if system_prompt:
        updates["systemPrompt"] = system_prompt

    try:
        merged = Settings.model_validate({**settings.to_json_dict(), **updates})
    except ValidationError as exc:
        raise MalformedImportError(
            f"Transcript settings are invalid ({_describe_validation_error(exc)})."
        ) from exc

    LOGGER.info(
        "transcript.imported",
        extra={
            "event": "transcript.imported",
            "version": parsed.version,
            "messages": len(messages),
        },
    )
    return messages, merged


def dumps(document: dict[str, Any]) -> str:
    return json.dumps(document, ensure_ascii=False, indent=2)


def loads(raw: str) -> Any:
    """Parse transcript text; invalid JSON is a malformed import."""
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise MalformedImportError("Transcript is not valid JSON.") from exc


def _export_path(directory: str | Path, suffix: str) -> Path:
    target_dir = Path(directory).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
    return target_dir / f"chat-{stamp}{suffix}"


def write_transcript(document: dict[str, Any], directory: str | Path) -> Path:
    """Write ``document`` to ``chat-<epoch ms>.json`` inside ``directory``."""
    target = _export_path(directory, ".json")
    target.write_text(dumps(document), encoding="utf-8")
    return target


def read_transcript(path: str | Path) -> Any:
    source = Path(path).expanduser()
    try:
        raw = source.read_text(encoding="utf-8")
    except OSError as exc:
        raise MalformedImportError(f"Unable to read {source}: {exc}") from exc
    return loads(raw)


def render_markdown(messages: Iterable[Message], model: str) -> str:
    """Render a conversation as a Markdown transcript."""
    lines = [f"# Conversation Export ({model})", ""]
    for message in messages:
        if message.is_streaming:
            continue
        role = (message.role or "assistant").capitalize()
        lines.append(f"## {role}")
        lines.append("")
        lines.append(message.content.strip())
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def write_markdown(messages: Iterable[Message], model: str, directory: str | Path) -> Path:
    """Write the Markdown rendering to ``chat-<epoch ms>.md`` inside ``directory``."""
    target = _export_path(directory, ".md")
    target.write_text(render_markdown(messages, model), encoding="utf-8")
    return target
