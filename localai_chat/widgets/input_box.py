"""Input row with the message field and the send/stop buttons."""

from __future__ import annotations

from textual.app import ComposeResult
from textual.containers import Horizontal
from textual.message import Message
from textual.widgets import Button, Input


class InputBox(Horizontal):
    """Message entry; send and stop availability follow the lifecycle state."""

    DEFAULT_CSS = """
    InputBox {
        height: auto;
    }
    InputBox #message_input {
        width: 1fr;
    }
    InputBox Button {
        margin-left: 1;
        min-width: 10;
    }
    """

    class StopRequested(Message):
        """Posted when the stop button is clicked."""

    def compose(self) -> ComposeResult:
        yield Input(placeholder="Type your message...", id="message_input")
        yield Button("Send", id="send_button", variant="success")
        yield Button("Stop", id="stop_button", variant="error")

    def set_mode(self, *, can_send: bool, generating: bool) -> None:
        """Enable send only when a reply can be requested, stop only mid-reply."""
        self.query_one("#send_button", Button).disabled = not can_send
        stop_button = self.query_one("#stop_button", Button)
        stop_button.disabled = not generating
        stop_button.display = generating

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "stop_button":
            event.stop()
            self.post_message(self.StopRequested())
