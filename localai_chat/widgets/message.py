"""Message bubble widget for conversation rendering."""

from __future__ import annotations

from typing import Any

from rich.markdown import Markdown
from textual.app import ComposeResult
from textual.containers import Vertical
from textual.widgets import Static

STREAMING_CURSOR = "▍"

_ROLE_LABELS = {"user": "You", "assistant": "Assistant", "system": "System"}


class MessageBubble(Vertical):
    """Render a single chat turn with a role header and Markdown body."""

    DEFAULT_CSS = """
    MessageBubble {
        height: auto;
    }
    MessageBubble > #header-block {
        padding: 0;
        color: $text-muted;
    }
    MessageBubble > #content-block {
        height: auto;
    }
    MessageBubble.streaming {
        border: round $accent;
    }
    """

    def __init__(
        self,
        content: str,
        role: str,
        timestamp: str = "",
        is_streaming: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)  # type: ignore[arg-type]
        self.message_content = content
        self.role = role
        self.timestamp = timestamp
        self.is_streaming = is_streaming
        self.add_class(f"message-{role or 'unknown'}")
        self.set_class(is_streaming, "streaming")
        self._content_widget: Static | None = None

    @property
    def role_prefix(self) -> str:
        return _ROLE_LABELS.get(self.role, self.role.capitalize() or "Unknown")

    def _compose_header(self) -> str:
        if self.timestamp:
            return f"**{self.role_prefix}**  _{self.timestamp}_"
        return f"**{self.role_prefix}**"

    def compose(self) -> ComposeResult:
        self._content_widget = Static("", id="content-block")
        yield Static(Markdown(self._compose_header()), id="header-block")
        yield self._content_widget

    def on_mount(self) -> None:
        self._refresh_content()

    def render_text(self) -> str:
        """Return the text shown in the body, including the streaming cursor."""
        text = self.message_content.rstrip()
        if self.is_streaming:
            return f"{text}{STREAMING_CURSOR}"
        return text

    def _refresh_content(self) -> None:
        if self._content_widget is None:
            return
        text = self.render_text()
        self._content_widget.update(Markdown(text) if text else "")

    def set_content(self, content: str, is_streaming: bool = False) -> None:
        """Replace the body text and rerender."""
        self.message_content = content
        self.is_streaming = is_streaming
        self.set_class(is_streaming, "streaming")
        self._refresh_content()
