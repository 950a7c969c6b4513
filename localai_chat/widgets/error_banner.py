"""Dismissible banner for user-facing error messages."""

from __future__ import annotations

from textual.app import ComposeResult
from textual.widgets import Button, Label, Static


class ErrorBanner(Static):
    """Show the latest error until dismissed or replaced."""

    DEFAULT_CSS = """
    ErrorBanner {
        layout: horizontal;
        height: auto;
        padding: 0 1;
        background: $error 30%;
        border-bottom: solid $error;
    }
    ErrorBanner #error_text {
        width: 1fr;
    }
    ErrorBanner #error_dismiss {
        min-width: 5;
    }
    """

    error_message = ""

    def compose(self) -> ComposeResult:
        yield Label("", id="error_text")
        yield Button("x", id="error_dismiss")

    def on_mount(self) -> None:
        self.display = False

    def show_error(self, message: str) -> None:
        self.error_message = message
        self.query_one("#error_text", Label).update(message)
        self.display = True

    def clear_error(self) -> None:
        self.error_message = ""
        self.query_one("#error_text", Label).update("")
        self.display = False

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "error_dismiss":
            event.stop()
            self.clear_error()
