"""Session controller: model lifecycle, streaming generation, and history commands.

The controller owns the only mutable session state. The presentation layer
calls its command methods and subscribes to plain callbacks for rendering;
engine and persistence failures are converted here into state transitions
and notifications and never propagate further.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import logging
from typing import Any

from .engine import InferenceEngine
from .exceptions import (
    InvalidConfigurationError,
    MalformedImportError,
    SessionBusyError,
)
from .message_store import MessageStore
from .models import Message, Role, Settings
from .persistence import SessionStorage
from .state import LifecycleState, Session
from .transcript import export_document, import_document

LOGGER = logging.getLogger(__name__)

CANCELLATION_MARKER = "\n\n[Generation stopped]"
ERROR_ANNOTATION = "\n\n[Error: {message}]"

MessagesCallback = Callable[[list[Message]], None]
StatusCallback = Callable[[LifecycleState, str | None], None]
ProgressCallback = Callable[[float], None]
ErrorCallback = Callable[[str], None]
SettingsCallback = Callable[[Settings], None]


async def _close_stream(stream: Any) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as exc:  # noqa: BLE001 - the reply is already settled.
        LOGGER.debug(
            "session.stream.close_failed",
            extra={"event": "session.stream.close_failed", "reason": str(exc)},
        )


class SessionController:
    """Drive one chat session against an inference engine."""

    def __init__(
        self,
        engine: InferenceEngine,
        storage: SessionStorage,
        *,
        defaults: Settings | None = None,
    ) -> None:
        self.engine = engine
        self.storage = storage
        self._session = Session()
        self._settings = storage.load_settings(defaults)
        self._store = MessageStore(storage.load_messages())
        self._load_sequence = 0
        self._last_error: str | None = None
        self._on_messages_changed: MessagesCallback | None = None
        self._on_status_changed: StatusCallback | None = None
        self._on_progress: ProgressCallback | None = None
        self._on_error: ErrorCallback | None = None
        self._on_settings_changed: SettingsCallback | None = None
        LOGGER.info(
            "session.hydrated",
            extra={
                "event": "session.hydrated",
                "messages": self._store.message_count,
                "model": self._settings.model_id,
            },
        )

    def on_messages_changed(self, callback: MessagesCallback) -> None:
        """Register the render callback for history changes."""
        self._on_messages_changed = callback

    def on_status_changed(self, callback: StatusCallback) -> None:
        """Register callback for lifecycle transitions."""
        self._on_status_changed = callback

    def on_progress(self, callback: ProgressCallback) -> None:
        """Register callback for model load progress fractions."""
        self._on_progress = callback

    def on_error(self, callback: ErrorCallback) -> None:
        """Register callback for user-facing error messages."""
        self._on_error = callback

    def on_settings_changed(self, callback: SettingsCallback) -> None:
        """Register callback fired after settings edits and imports."""
        self._on_settings_changed = callback

    @property
    def state(self) -> LifecycleState:
        return self._session.state

    @property
    def settings(self) -> Settings:
        return self._settings.model_copy()

    @property
    def messages(self) -> list[Message]:
        return self._store.messages

    @property
    def model_identifier(self) -> str:
        """Identifier of the model behind the current engine handle."""
        return self._session.loaded_model

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def estimated_tokens(self) -> int:
        return self._store.estimated_tokens()

    def last_assistant_reply(self) -> str | None:
        for message in reversed(self._store.messages):
            if message.role == Role.ASSISTANT.value and not message.is_streaming:
                return message.content
        return None

    def _emit(self, callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as exc:  # noqa: BLE001 - a broken sink must not stop the session.
            LOGGER.error(
                "session.listener.failed",
                extra={"event": "session.listener.failed", "reason": str(exc)},
            )

    def _emit_messages(self) -> None:
        self._emit(self._on_messages_changed, self._store.messages)

    def _report_error(self, message: str) -> None:
        self._last_error = message
        self._emit(self._on_error, message)

    def _after_transition(
        self,
        previous: LifecycleState,
        new_state: LifecycleState,
        text: str | None = None,
    ) -> None:
        LOGGER.info(
            "session.state.transition",
            extra={
                "event": "session.state.transition",
                "from_state": previous.value,
                "to_state": new_state.value,
            },
        )
        self._emit(self._on_status_changed, new_state, text)

    async def _transition(
        self, new_state: LifecycleState, text: str | None = None
    ) -> None:
        previous = await self._session.state_manager.transition_to(new_state)
        self._after_transition(previous, new_state, text)

    async def _enter_generating(self) -> bool:
        if not await self._session.state_manager.transition_if(
            LifecycleState.READY, LifecycleState.GENERATING
        ):
            return False
        self._after_transition(LifecycleState.READY, LifecycleState.GENERATING)
        return True

    def _persist_messages(self) -> None:
        self.storage.save_messages(self._store.messages)

    def _persist_settings(self) -> None:
        self.storage.save_settings(self._settings)

    async def load_model(self) -> bool:
        """Load the selected model; return True once the session is ready.

        Raises :class:`SessionBusyError` while generating and
        :class:`InvalidConfigurationError` when a custom model is selected
        without an identifier. Engine failures move the session to ``error``.
        """
        if await self._session.state_manager.get_state() is LifecycleState.GENERATING:
            raise SessionBusyError("Cannot load a model while a reply is generating.")
        try:
            identifier = self._settings.resolve_model_identifier()
        except InvalidConfigurationError as exc:
            self._report_error(str(exc))
            raise

        previous = self.state
        if not await self._session.state_manager.transition_unless(
            LifecycleState.GENERATING, LifecycleState.LOADING
        ):
            raise SessionBusyError("Cannot load a model while a reply is generating.")
        self._load_sequence += 1
        sequence = self._load_sequence
        self._session.engine_handle = None
        self._session.loaded_model = ""
        self._after_transition(previous, LifecycleState.LOADING, identifier)
        LOGGER.info(
            "engine.load.start",
            extra={"event": "engine.load.start", "model": identifier},
        )

        def _forward_progress(fraction: float) -> None:
            if sequence == self._load_sequence:
                self._emit(self._on_progress, fraction)

        try:
            handle = await self.engine.initialize(identifier, _forward_progress)
        except asyncio.CancelledError:
            if sequence == self._load_sequence:
                await self._transition(LifecycleState.ERROR, "Model load cancelled.")
            raise
        except Exception as exc:  # noqa: BLE001 - engine boundary.
            if sequence != self._load_sequence:
                LOGGER.info(
                    "engine.load.superseded",
                    extra={"event": "engine.load.superseded", "model": identifier},
                )
                return False
            message = str(exc) or exc.__class__.__name__
            LOGGER.warning(
                "engine.load.failed",
                extra={
                    "event": "engine.load.failed",
                    "model": identifier,
                    "error_type": exc.__class__.__name__,
                },
            )
            await self._transition(LifecycleState.ERROR, message)
            self._report_error(f"Failed to load model: {message}")
            return False

        if sequence != self._load_sequence:
            LOGGER.info(
                "engine.load.superseded",
                extra={"event": "engine.load.superseded", "model": identifier},
            )
            return False
        self._session.engine_handle = handle
        self._session.loaded_model = identifier
        self._last_error = None
        await self._transition(LifecycleState.READY, identifier)
        return True

    async def submit(self, text: str) -> bool:
        """Send a user turn and stream the reply; False when not accepted."""
        prompt = text.strip()
        if not prompt:
            return False
        if not await self._enter_generating():
            LOGGER.debug(
                "session.submit.rejected",
                extra={"event": "session.submit.rejected", "state": self.state.value},
            )
            return False
        self._store.append(Role.USER.value, prompt)
        self._persist_messages()
        await self._generate()
        return True

    async def regenerate(self) -> bool:
        """Drop the trailing assistant turn and generate a new reply."""
        last = self._store.last
        if last is None or last.role != Role.ASSISTANT.value:
            return False
        if not await self._enter_generating():
            return False
        self._store.pop_last()
        self._persist_messages()
        await self._generate()
        return True

    def stop(self) -> bool:
        """Request cooperative cancellation of the in-flight reply."""
        if self.state is not LifecycleState.GENERATING:
            return False
        self._session.cancel_token.cancel()
        LOGGER.info("session.stop.requested", extra={"event": "session.stop.requested"})
        return True

    def clear(self) -> bool:
        """Empty the history unless a reply is generating."""
        if self.state is LifecycleState.GENERATING:
            return False
        self._store.clear()
        self._emit_messages()
        self._persist_messages()
        return True

    async def _generate(self) -> None:
        token = self._session.cancel_token
        token.reset()
        settings = self._settings
        placeholder = self._store.append(Role.ASSISTANT.value, "", is_streaming=True)
        prompt = self._store.build_prompt(settings.effective_system_prompt())
        self._emit_messages()

        accumulated = ""
        failure: str | None = None
        stream: Any = None
        try:
            stream = self._session.engine_handle.stream_completion(  # type: ignore[union-attr]
                prompt, settings.temperature, settings.max_tokens
            )
            async for delta in stream:
                if token.cancelled:
                    break
                accumulated += delta.text
                placeholder.content = accumulated
                self._emit_messages()
            if token.cancelled:
                accumulated += CANCELLATION_MARKER
                placeholder.content = accumulated
                LOGGER.info(
                    "session.generation.cancelled",
                    extra={"event": "session.generation.cancelled"},
                )
        except Exception as exc:  # noqa: BLE001 - failures stay local to the reply.
            failure = str(exc) or exc.__class__.__name__
            placeholder.content = accumulated + ERROR_ANNOTATION.format(message=failure)
            LOGGER.warning(
                "session.generation.failed",
                extra={
                    "event": "session.generation.failed",
                    "error_type": exc.__class__.__name__,
                },
            )
        finally:
            await _close_stream(stream)
            for message in self._store.streaming_messages():
                message.is_streaming = False
            await self._transition(LifecycleState.READY)
            self._emit_messages()
            self._persist_messages()
        if failure is not None:
            self._report_error(f"Generation failed: {failure}")

    def update_settings(self, **changes: Any) -> Settings:
        """Apply validated settings edits and persist them."""
        unknown = set(changes) - set(Settings.model_fields)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        self._settings = Settings.model_validate(
            {**self._settings.model_dump(), **changes}
        )
        self._persist_settings()
        self._emit(self._on_settings_changed, self.settings)
        return self.settings

    def export_transcript(self) -> dict[str, Any]:
        """Return the interchange document for the settled conversation."""
        return export_document(self._settings, self._store.messages)

    def import_transcript(self, document: Any) -> int:
        """Replace history and merge settings from an interchange document.

        Returns the number of imported messages.
        """
        if self.state is LifecycleState.GENERATING:
            raise SessionBusyError("Cannot import while a reply is generating.")
        try:
            messages, settings = import_document(document, self._settings)
        except MalformedImportError as exc:
            self._report_error(f"Import failed: {exc}")
            raise
        self._store.replace(messages)
        self._settings = settings
        self._persist_settings()
        self._persist_messages()
        self._emit(self._on_settings_changed, self.settings)
        self._emit_messages()
        return len(messages)
