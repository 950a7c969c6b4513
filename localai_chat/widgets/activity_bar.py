"""Activity bar widget showing load progress and keyboard shortcut hints."""

from __future__ import annotations

from typing import Any

from textual.app import ComposeResult
from textual.widgets import Label, ProgressBar, Static


class ActivityBar(Static):
    """Render model load progress on the left and shortcut hints on the right."""

    DEFAULT_CSS = """
    ActivityBar {
        layout: horizontal;
        height: 1;
        padding: 0 1;
    }
    ActivityBar #activity_progress {
        width: 1fr;
    }
    ActivityBar #activity_left {
        width: 1fr;
    }
    ActivityBar #activity_right {
        width: auto;
        text-align: right;
    }
    """

    def __init__(self, shortcut_hints: str = "", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._shortcut_hints = shortcut_hints

    def compose(self) -> ComposeResult:
        yield ProgressBar(total=1.0, show_eta=False, id="activity_progress")
        yield Label("", id="activity_left")
        yield Label(self._shortcut_hints, id="activity_right")

    def on_mount(self) -> None:
        self.query_one("#activity_progress", ProgressBar).display = False

    def set_shortcut_hints(self, hints: str) -> None:
        self._shortcut_hints = hints
        self.query_one("#activity_right", Label).update(hints)

    def show_progress(self, fraction: float) -> None:
        """Show the load bar at ``fraction`` (0.0 to 1.0)."""
        bar = self.query_one("#activity_progress", ProgressBar)
        bar.display = True
        self.query_one("#activity_left", Label).display = False
        bar.update(progress=min(max(fraction, 0.0), 1.0))

    def hide_progress(self) -> None:
        self.query_one("#activity_progress", ProgressBar).display = False
        self.query_one("#activity_left", Label).display = True

    def set_activity(self, text: str) -> None:
        self.query_one("#activity_left", Label).update(text)
