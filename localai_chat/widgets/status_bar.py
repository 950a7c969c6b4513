"""Status bar widget for lifecycle and conversation telemetry."""

from __future__ import annotations

from textual import events
from textual.app import ComposeResult
from textual.message import Message
from textual.widgets import Label, Static

from ..state import LifecycleState

_STATE_ICONS: dict[LifecycleState, str] = {
    LifecycleState.UNLOADED: "⚪",
    LifecycleState.LOADING: "🟡",
    LifecycleState.READY: "🟢",
    LifecycleState.GENERATING: "🔵",
    LifecycleState.ERROR: "🔴",
}


def format_status_text(state: LifecycleState, detail: str | None = None) -> str:
    """Return the human label for a lifecycle state."""
    labels = {
        LifecycleState.UNLOADED: "No model loaded",
        LifecycleState.LOADING: "Loading model",
        LifecycleState.READY: "Ready",
        LifecycleState.GENERATING: "Generating",
        LifecycleState.ERROR: "Error",
    }
    label = labels[state]
    if detail and state in (LifecycleState.LOADING, LifecycleState.ERROR):
        return f"{label}: {detail}"
    return label


class StatusBar(Static):
    """Render compact runtime status information.

    Segments (left to right):
        🟢 Ready  |  Model: llama3.2  |  concise  |  Messages: 4  |  Est. tokens: 312
    """

    DEFAULT_CSS = """
    StatusBar {
        layout: horizontal;
        height: auto;
    }
    StatusBar Label {
        margin-right: 1;
    }
    StatusBar #status_flags {
        color: $text-muted;
    }
    """

    class ModelPickerRequested(Message):
        """Posted when the status bar is clicked."""

    def compose(self) -> ComposeResult:
        yield Label("⚪ No model loaded", id="status_state")
        yield Label("|")
        yield Label("Model: -", id="status_model")
        yield Label("|", id="status_flags_sep")
        yield Label("", id="status_flags")
        yield Label("|")
        yield Label("Messages: 0", id="status_messages")
        yield Label("|")
        yield Label("Est. tokens: 0", id="status_tokens")

    def on_mount(self) -> None:
        self._lbl_state = self.query_one("#status_state", Label)
        self._lbl_model = self.query_one("#status_model", Label)
        self._lbl_flags = self.query_one("#status_flags", Label)
        self._sep_flags = self.query_one("#status_flags_sep", Label)
        self._lbl_messages = self.query_one("#status_messages", Label)
        self._lbl_tokens = self.query_one("#status_tokens", Label)

    def set_status(
        self,
        *,
        state: LifecycleState,
        status_text: str,
        model: str,
        message_count: int,
        estimated_tokens: int,
        concise: bool = False,
    ) -> None:
        """Update all status segment labels."""
        self._lbl_state.update(f"{_STATE_ICONS[state]} {status_text}")
        self._lbl_model.update(f"Model: {model or '-'}")
        self._lbl_messages.update(f"Messages: {message_count}")
        self._lbl_tokens.update(f"Est. tokens: {estimated_tokens}")
        self._lbl_flags.update("concise" if concise else "")
        self._lbl_flags.display = concise
        self._sep_flags.display = concise

    def on_click(self, event: events.Click) -> None:
        event.stop()
        self.post_message(self.ModelPickerRequested())
