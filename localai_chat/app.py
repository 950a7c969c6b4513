"""Main Textual application for chatting with a local model."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
import sys
from typing import Any

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.widgets import Button, Footer, Header, Input

from .config import default_settings, load_config
from .controller import SessionController
from .engine import InferenceEngine, OllamaEngine
from .exceptions import (
    InvalidConfigurationError,
    MalformedImportError,
    SessionBusyError,
)
from .logging_utils import configure_logging
from .models import CUSTOM_MODEL_ID, Message, Settings
from .persistence import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore, SessionStorage
from .screens import InfoScreen, SimplePickerScreen, TextPromptScreen
from .state import LifecycleState
from .task_manager import TaskManager
from .transcript import read_transcript, write_markdown, write_transcript
from .widgets.activity_bar import ActivityBar
from .widgets.conversation import ConversationView
from .widgets.error_banner import ErrorBanner
from .widgets.input_box import InputBox
from .widgets.status_bar import StatusBar, format_status_text

LOGGER = logging.getLogger(__name__)

_THEMES = {"dark": "textual-dark", "light": "textual-light"}


class LocalChatApp(App[None]):
    """Terminal chat front-end for a locally hosted model."""

    CSS = """
    Screen {
        layout: vertical;
        background: $background;
    }

    #app-root {
        layout: vertical;
        width: 100%;
        height: 1fr;
    }

    #conversation {
        height: 1fr;
        padding: 1;
    }

    InputBox {
        padding: 0 1 1 1;
        border-top: solid $panel;
        background: $surface;
    }

    #status_bar {
        height: auto;
        padding: 0 1;
        border-top: solid $panel;
        background: $surface;
    }

    #activity_bar {
        border-top: dashed $panel;
        background: $surface;
    }

    MessageBubble {
        width: 85%;
        margin: 1 0;
        padding: 1 2;
        border: round $panel;
    }

    .message-user {
        background: $primary 20%;
    }

    .message-assistant {
        background: $surface;
    }
    """

    DEFAULT_ACTION_DESCRIPTIONS: dict[str, str] = {
        "send_message": "Send",
        "stop_generation": "Stop",
        "regenerate": "Regenerate",
        "new_chat": "New Chat",
        "load_model": "Load Model",
        "pick_model": "Model",
        "edit_system_prompt": "System Prompt",
        "toggle_concise": "Concise",
        "toggle_theme": "Theme",
        "export_transcript": "Export",
        "export_markdown": "Export MD",
        "import_transcript": "Import",
        "copy_last_reply": "Copy Last",
        "dismiss_error": "Dismiss Error",
        "show_help": "Help",
        "quit": "Quit",
    }

    def __init__(
        self,
        config_path: Path | None = None,
        *,
        persist: bool = True,
        engine: InferenceEngine | None = None,
    ) -> None:
        self.config = load_config(config_path)
        self.window_title = str(self.config["app"]["title"])
        configure_logging(self.config["logging"])
        LOGGER.info(
            "app.python",
            extra={
                "event": "app.python",
                "executable": sys.executable,
                "version": sys.version.split()[0],
            },
        )

        engine_cfg = self.config["engine"]
        self._configured_models: list[str] = list(engine_cfg["models"])
        if engine is None:
            engine = OllamaEngine(
                host=str(engine_cfg["host"]),
                timeout=int(engine_cfg["timeout"]),
                pull_if_missing=bool(engine_cfg["pull_if_missing"]),
            )

        storage_cfg = self.config["storage"]
        store: KeyValueStore
        if persist and bool(storage_cfg["enabled"]):
            store = FileKeyValueStore(str(storage_cfg["directory"]))
        else:
            store = MemoryKeyValueStore()
        self._export_directory = Path(str(storage_cfg["export_directory"])).expanduser()

        self.controller = SessionController(
            engine,
            SessionStorage(store),
            defaults=default_settings(self.config),
        )
        self._task_manager = TaskManager()
        self._status_text = format_status_text(self.controller.state)
        self._render_pending = False
        self._refresh_delay = float(self.config["ui"]["stream_refresh_seconds"])
        self._binding_specs = self._binding_specs_from_config(self.config)

        self._w_input: Input | None = None
        self._w_input_box: InputBox | None = None
        self._w_activity: ActivityBar | None = None
        self._w_status: StatusBar | None = None
        self._w_conversation: ConversationView | None = None
        self._w_error: ErrorBanner | None = None
        super().__init__()

    @classmethod
    def _binding_specs_from_config(
        cls, config: dict[str, dict[str, Any]]
    ) -> list[Binding]:
        keybinds = config.get("keybinds", {})
        bindings: list[Binding] = []
        for action_name, description in cls.DEFAULT_ACTION_DESCRIPTIONS.items():
            binding_key = keybinds.get(action_name)
            if isinstance(binding_key, str) and binding_key.strip():
                bindings.append(
                    Binding(
                        key=binding_key.strip(),
                        action=action_name,
                        description=description,
                        show=True,
                    )
                )
        return bindings

    def compose(self) -> ComposeResult:
        yield Header()
        yield ErrorBanner(id="error_banner")
        with Container(id="app-root"):
            yield ConversationView(
                suggestions=list(self.config["ui"]["suggestions"]), id="conversation"
            )
            yield InputBox()
            yield StatusBar(id="status_bar")
            yield ActivityBar(id="activity_bar")
        yield Footer()

    async def on_mount(self) -> None:
        """Wire controller callbacks, bind keys, and render the hydrated session."""
        self.title = self.window_title
        for binding in self._binding_specs:
            self.bind(
                binding.key,
                binding.action,
                description=binding.description,
                show=binding.show,
            )

        self._w_input = self.query_one("#message_input", Input)
        self._w_input_box = self.query_one(InputBox)
        self._w_activity = self.query_one("#activity_bar", ActivityBar)
        self._w_status = self.query_one("#status_bar", StatusBar)
        self._w_conversation = self.query_one(ConversationView)
        self._w_error = self.query_one("#error_banner", ErrorBanner)

        self.controller.on_messages_changed(self._on_messages_changed)
        self.controller.on_status_changed(self._on_status_changed)
        self.controller.on_progress(self._on_progress)
        self.controller.on_error(self._on_error)
        self.controller.on_settings_changed(self._on_settings_changed)

        self._apply_theme(self.controller.settings)
        self._w_activity.set_shortcut_hints(self._shortcut_hints())
        self._sync_controls()
        self.sub_title = f"Model: {self._selected_model_label()}"
        await self._flush_render()
        self._w_input.focus()

    def _shortcut_hints(self) -> str:
        keybinds = self.config["keybinds"]
        hints = [
            (keybinds.get("show_help"), "help"),
            (keybinds.get("load_model"), "load"),
            (keybinds.get("pick_model"), "model"),
            (keybinds.get("stop_generation"), "stop"),
        ]
        return "  ".join(f"{key} {label}" for key, label in hints if key)

    def _selected_model_label(self) -> str:
        settings = self.controller.settings
        if settings.uses_custom_model:
            return settings.custom_model_id or "custom (unset)"
        return settings.model_id

    def _timestamp(self, message: Message) -> str:
        if not self.config["ui"]["show_timestamps"]:
            return ""
        return message.timestamp.astimezone().strftime("%H:%M:%S")

    def _apply_theme(self, settings: Settings) -> None:
        self.theme = _THEMES[settings.theme]

    def _sync_controls(self) -> None:
        state = self.controller.state
        if self._w_input_box is not None:
            self._w_input_box.set_mode(
                can_send=state is LifecycleState.READY,
                generating=state is LifecycleState.GENERATING,
            )
        self._update_status_bar()

    def _update_status_bar(self) -> None:
        if self._w_status is None:
            return
        self._w_status.set_status(
            state=self.controller.state,
            status_text=self._status_text,
            model=self.controller.model_identifier or self._selected_model_label(),
            message_count=len(self.controller.messages),
            estimated_tokens=self.controller.estimated_tokens,
            concise=self.controller.settings.concise_mode,
        )

    def _on_messages_changed(self, _messages: list[Message]) -> None:
        if self._render_pending:
            return
        self._render_pending = True
        if self._refresh_delay > 0:
            self.set_timer(self._refresh_delay, self._flush_render)
        else:
            self.call_later(self._flush_render)

    async def _flush_render(self) -> None:
        self._render_pending = False
        if self._w_conversation is None:
            return
        await self._w_conversation.render_messages(
            self.controller.messages, self._timestamp
        )
        self._update_status_bar()

    def _on_status_changed(self, state: LifecycleState, detail: str | None) -> None:
        self._status_text = format_status_text(state, detail)
        if self._w_activity is not None:
            if state is LifecycleState.LOADING:
                self._w_activity.show_progress(0.0)
            else:
                self._w_activity.hide_progress()
            self._w_activity.set_activity(
                "Generating..." if state is LifecycleState.GENERATING else ""
            )
        if state is LifecycleState.READY:
            self.sub_title = f"Model ready: {self.controller.model_identifier}"
        self._sync_controls()

    def _on_progress(self, fraction: float) -> None:
        if self._w_activity is not None:
            self._w_activity.show_progress(fraction)

    def _on_error(self, message: str) -> None:
        if self._w_error is not None:
            self._w_error.show_error(message)

    def _on_settings_changed(self, settings: Settings) -> None:
        self._apply_theme(settings)
        self._update_status_bar()

    def _show_error(self, message: str) -> None:
        self._on_error(message)

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "message_input":
            return
        event.stop()
        await self.action_send_message()

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "send_button":
            event.stop()
            await self.action_send_message()

    def on_input_box_stop_requested(self, _event: InputBox.StopRequested) -> None:
        self.action_stop_generation()

    def on_conversation_view_suggestion_selected(
        self, event: ConversationView.SuggestionSelected
    ) -> None:
        if self._w_input is None:
            return
        self._w_input.value = event.text
        self._w_input.focus()

    async def on_status_bar_model_picker_requested(
        self, _event: StatusBar.ModelPickerRequested
    ) -> None:
        await self.action_pick_model()

    async def action_send_message(self) -> None:
        """Submit the input text as a user turn."""
        input_widget = self._w_input or self.query_one("#message_input", Input)
        text = input_widget.value.strip()
        if not text:
            return
        if (
            self.controller.state is not LifecycleState.READY
            or self._task_manager.is_running("active_generation")
        ):
            self.sub_title = "Load a model and wait for the reply before sending."
            return
        input_widget.value = ""
        self._task_manager.spawn(
            self.controller.submit(text), name="active_generation"
        )

    def action_stop_generation(self) -> None:
        if not self.controller.stop():
            self.sub_title = "No reply to stop."

    async def action_regenerate(self) -> None:
        messages = self.controller.messages
        if not messages or messages[-1].role != "assistant":
            self.sub_title = "Nothing to regenerate."
            return
        if self._task_manager.is_running("active_generation"):
            self.sub_title = "A reply is already generating."
            return
        self._task_manager.spawn(
            self.controller.regenerate(), name="active_generation"
        )

    async def action_new_chat(self) -> None:
        if not self.controller.clear():
            self.sub_title = "Stop the current reply before starting a new chat."
            return
        self.sub_title = "New chat."

    async def _load_model(self) -> None:
        try:
            await self.controller.load_model()
        except InvalidConfigurationError:
            return
        except SessionBusyError as exc:
            self.sub_title = str(exc)

    async def action_load_model(self) -> None:
        self._task_manager.spawn(self._load_model(), name="model_load")

    async def action_pick_model(self) -> None:
        options = [*self._configured_models, CUSTOM_MODEL_ID]
        self.push_screen(
            SimplePickerScreen(
                "Select model", options, active=self.controller.settings.model_id
            ),
            callback=self._on_model_picked,
        )

    def _on_model_picked(self, selected: str | None) -> None:
        if selected is None:
            return
        if selected == CUSTOM_MODEL_ID:
            self.push_screen(
                TextPromptScreen(
                    "Custom model identifier",
                    placeholder="e.g. mistral:7b",
                    value=self.controller.settings.custom_model_id,
                ),
                callback=self._on_custom_model_entered,
            )
            return
        self.controller.update_settings(model_id=selected)
        self.sub_title = f"Selected {selected}. Load it to start chatting."

    def _on_custom_model_entered(self, value: str | None) -> None:
        if value is None:
            return
        self.controller.update_settings(model_id=CUSTOM_MODEL_ID, custom_model_id=value)
        self.sub_title = f"Selected custom model {value or '(unset)'}."

    async def action_edit_system_prompt(self) -> None:
        self.push_screen(
            TextPromptScreen(
                "System prompt", value=self.controller.settings.system_prompt
            ),
            callback=self._on_system_prompt_entered,
        )

    def _on_system_prompt_entered(self, value: str | None) -> None:
        if value is None:
            return
        self.controller.update_settings(system_prompt=value)
        self.sub_title = "System prompt updated."

    def action_toggle_concise(self) -> None:
        settings = self.controller.update_settings(
            concise_mode=not self.controller.settings.concise_mode
        )
        self.sub_title = f"Concise mode {'on' if settings.concise_mode else 'off'}."

    def action_toggle_theme(self) -> None:
        current = self.controller.settings.theme
        self.controller.update_settings(theme="light" if current == "dark" else "dark")

    async def action_export_transcript(self) -> None:
        document = self.controller.export_transcript()
        try:
            path = await asyncio.to_thread(
                write_transcript, document, self._export_directory
            )
        except OSError as exc:
            self._show_error(f"Export failed: {exc}")
            return
        self.sub_title = f"Exported transcript: {path}"

    async def action_export_markdown(self) -> None:
        try:
            path = await asyncio.to_thread(
                write_markdown,
                self.controller.messages,
                self.controller.model_identifier or self._selected_model_label(),
                self._export_directory,
            )
        except OSError as exc:
            self._show_error(f"Export failed: {exc}")
            return
        self.sub_title = f"Exported markdown: {path}"

    async def action_import_transcript(self) -> None:
        self.push_screen(
            TextPromptScreen("Import transcript", placeholder="~/Downloads/chat.json"),
            callback=self._on_import_path_entered,
        )

    def _on_import_path_entered(self, value: str | None) -> None:
        if not value:
            return
        self._task_manager.spawn(self._import_from_path(value))

    async def _import_from_path(self, raw_path: str) -> None:
        try:
            document = await asyncio.to_thread(read_transcript, raw_path)
        except MalformedImportError as exc:
            self._show_error(f"Import failed: {exc}")
            return
        try:
            count = self.controller.import_transcript(document)
        except SessionBusyError as exc:
            self._show_error(str(exc))
            return
        except MalformedImportError:
            return
        self.sub_title = f"Imported {count} messages."

    async def action_copy_last_reply(self) -> None:
        reply = self.controller.last_assistant_reply()
        if not reply:
            self.sub_title = "No assistant reply to copy."
            return
        self.copy_to_clipboard(reply)
        self.sub_title = "Copied last reply."

    def action_dismiss_error(self) -> None:
        if self._w_error is not None:
            self._w_error.clear_error()

    async def action_show_help(self) -> None:
        lines = ["Keybindings:", ""]
        for binding in self._binding_specs:
            lines.append(f"{binding.key:<14} {binding.description}")
        self.push_screen(InfoScreen("\n".join(lines)))

    async def on_unmount(self) -> None:
        """Cancel and await all background tasks during shutdown."""
        self.controller.stop()
        await self._task_manager.cancel_all()

    async def action_quit(self) -> None:
        self.exit()

