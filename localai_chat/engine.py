"""Inference engine contract and the Ollama-backed implementation."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
import logging
from typing import Any, Protocol

import httpx
from ollama import AsyncClient

from .exceptions import EngineInitializationError, GenerationError, LocalChatError

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

_CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.NetworkError,
)


@dataclass
class CompletionDelta:
    """One incremental unit of generated text."""

    text: str


class EngineHandle(Protocol):
    """A loaded model able to stream completions."""

    def stream_completion(
        self,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[CompletionDelta]: ...


class InferenceEngine(Protocol):
    """Factory that loads a model and returns a handle to it."""

    async def initialize(
        self, model_identifier: str, on_progress: ProgressCallback
    ) -> EngineHandle: ...


def _field(payload: Any, name: str) -> Any:
    """Read ``name`` from an SDK object or its dict form."""
    value = getattr(payload, name, None)
    if value is not None:
        return value
    if isinstance(payload, dict):
        return payload.get(name)
    return None


def _model_name_matches(requested_model: str, available_model: str) -> bool:
    requested = requested_model.strip().lower()
    available = available_model.strip().lower()
    if requested == available:
        return True
    if ":" not in requested and available.startswith(f"{requested}:"):
        return True
    return False


class OllamaEngineHandle:
    """Stream chat completions for one model from an Ollama server."""

    def __init__(self, client: Any, model: str, host: str) -> None:
        self._client = client
        self.model = model
        self.host = host

    @staticmethod
    def _extract_chunk_text(chunk: Any) -> str:
        message = _field(chunk, "message")
        value = _field(message, "content") if message is not None else None
        if value is None:
            # The generate endpoint puts text at the top level.
            value = _field(chunk, "response")
        return value if isinstance(value, str) else ""

    def _map_exception(self, exc: Exception) -> LocalChatError:
        if isinstance(exc, LocalChatError):
            return exc
        if isinstance(exc, _CONNECTION_ERRORS):
            return GenerationError(f"Unable to reach the engine at {self.host}.")
        return GenerationError(str(exc) or exc.__class__.__name__)

    async def stream_completion(
        self,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[CompletionDelta]:
        """Yield content deltas for ``messages`` in production order."""
        LOGGER.debug(
            "engine.stream.start",
            extra={
                "event": "engine.stream.start",
                "model": self.model,
                "turns": len(messages),
            },
        )
        try:
            stream = await self._client.chat(
                model=self.model,
                messages=messages,
                stream=True,
                options={"temperature": temperature, "num_predict": max_tokens},
            )
            async for chunk in stream:
                text = self._extract_chunk_text(chunk)
                if text:
                    yield CompletionDelta(text=text)
        except Exception as exc:  # noqa: BLE001 - external API can fail in many ways.
            raise self._map_exception(exc) from exc


class OllamaEngine:
    """Load models on a local Ollama server, pulling them when missing."""

    def __init__(
        self,
        host: str = "http://localhost:11434",
        timeout: int = 120,
        pull_if_missing: bool = True,
        client: Any | None = None,
    ) -> None:
        self.host = host
        self.timeout = timeout
        self.pull_if_missing = pull_if_missing
        self._client = client if client is not None else AsyncClient(
            host=host, timeout=timeout
        )

    async def list_models(self) -> list[str]:
        """Return available model names from the server."""
        response = await self._client.list()
        models = _field(response, "models")
        names: list[str] = []
        if not isinstance(models, list):
            return names
        for model in models:
            for key in ("model", "name"):
                value = _field(model, key)
                if isinstance(value, str) and value.strip():
                    names.append(value.strip())
                    break
        return names

    def _map_exception(self, model: str, exc: Exception) -> EngineInitializationError:
        if isinstance(exc, EngineInitializationError):
            return exc
        if isinstance(exc, _CONNECTION_ERRORS):
            return EngineInitializationError(
                f"Unable to reach the engine at {self.host}."
            )
        lower_message = str(exc).lower()
        if "not found" in lower_message or "404" in lower_message:
            return EngineInitializationError(
                f"Model {model!r} was not found on {self.host}."
            )
        return EngineInitializationError(
            f"Failed to load {model!r}: {exc or exc.__class__.__name__}"
        )

    async def _pull(self, model: str, on_progress: ProgressCallback) -> None:
        LOGGER.info(
            "engine.pull.start",
            extra={"event": "engine.pull.start", "model": model},
        )
        stream = await self._client.pull(model=model, stream=True)
        async for update in stream:
            total = _field(update, "total")
            completed = _field(update, "completed")
            # Each layer restarts its own counter, so fractions can go backwards.
            if isinstance(total, (int, float)) and total > 0:
                fraction = min(max(float(completed or 0) / float(total), 0.0), 1.0)
                on_progress(fraction)
        LOGGER.info(
            "engine.pull.complete",
            extra={"event": "engine.pull.complete", "model": model},
        )

    async def initialize(
        self, model_identifier: str, on_progress: ProgressCallback
    ) -> OllamaEngineHandle:
        """Make ``model_identifier`` ready and return a streaming handle."""
        on_progress(0.0)
        try:
            available = await self.list_models()
            if not any(_model_name_matches(model_identifier, name) for name in available):
                if not self.pull_if_missing:
                    raise EngineInitializationError(
                        f"Model {model_identifier!r} is not available on {self.host}."
                    )
                await self._pull(model_identifier, on_progress)
        except Exception as exc:  # noqa: BLE001 - mapped to a domain error.
            raise self._map_exception(model_identifier, exc) from exc
        on_progress(1.0)
        LOGGER.info(
            "engine.model.ready",
            extra={"event": "engine.model.ready", "model": model_identifier},
        )
        return OllamaEngineHandle(self._client, model_identifier, self.host)
