"""Scrollable conversation view widget."""

from __future__ import annotations

from collections.abc import Callable, Sequence

from textual.containers import Vertical, VerticalScroll
from textual.message import Message as TextualMessage
from textual.widgets import Button, Static

from ..models import Message
from .message import MessageBubble

TimestampFormatter = Callable[[Message], str]


def bubbles_match(
    bubbles: Sequence[MessageBubble],
    messages: Sequence[Message],
    timestamp: TimestampFormatter | None = None,
) -> bool:
    """Return True when every mounted bubble still shows the same turn."""
    if len(bubbles) > len(messages):
        return False
    for bubble, message in zip(bubbles, messages):
        if bubble.role != message.role:
            return False
        if bubble.timestamp != (timestamp(message) if timestamp else ""):
            return False
    return True


class ConversationView(VerticalScroll):
    """Host message bubbles and the empty-state suggestion prompts."""

    DEFAULT_CSS = """
    ConversationView #empty-state {
        height: auto;
        padding: 2 4;
        align-horizontal: center;
    }
    ConversationView #empty-title {
        text-style: bold;
        padding-bottom: 1;
    }
    ConversationView .suggestion {
        width: 100%;
        margin-bottom: 1;
    }
    """

    class SuggestionSelected(TextualMessage):
        """Posted when an empty-state suggestion is clicked."""

        def __init__(self, text: str) -> None:
            super().__init__()
            self.text = text

    def __init__(self, suggestions: Sequence[str] = (), **kwargs: object) -> None:
        super().__init__(**kwargs)  # type: ignore[arg-type]
        self._suggestions = list(suggestions)

    @property
    def bubbles(self) -> list[MessageBubble]:
        return [child for child in self.children if isinstance(child, MessageBubble)]

    async def _show_empty_state(self) -> None:
        await self.remove_children()
        empty = Vertical(id="empty-state")
        await self.mount(empty)
        await empty.mount(Static("Start a conversation", id="empty-title"))
        for index, suggestion in enumerate(self._suggestions):
            await empty.mount(
                Button(suggestion, id=f"suggestion-{index}", classes="suggestion")
            )

    def on_button_pressed(self, event: Button.Pressed) -> None:
        button_id = event.button.id or ""
        if not button_id.startswith("suggestion-"):
            return
        event.stop()
        index = int(button_id.removeprefix("suggestion-"))
        if 0 <= index < len(self._suggestions):
            self.post_message(self.SuggestionSelected(self._suggestions[index]))

    async def render_messages(
        self,
        messages: Sequence[Message],
        timestamp: TimestampFormatter | None = None,
    ) -> None:
        """Bring the mounted bubbles in line with ``messages``.

        Bubbles that still show the same turn (role and timestamp label) are
        updated in place so a streaming reply only rerenders its own body.
        Anything else (an import with new timestamps, a dropped turn) rebuilds
        the view.
        """
        if not messages:
            if not self.query("#empty-state"):
                await self._show_empty_state()
            return

        bubbles = self.bubbles
        stale = not bubbles_match(bubbles, messages, timestamp)
        if stale or self.query("#empty-state"):
            await self.remove_children()
            bubbles = []

        for bubble, message in zip(bubbles, messages):
            if (
                bubble.message_content != message.content
                or bubble.is_streaming != message.is_streaming
            ):
                bubble.set_content(message.content, message.is_streaming)

        for message in messages[len(bubbles):]:
            await self.mount(
                MessageBubble(
                    content=message.content,
                    role=message.role,
                    timestamp=timestamp(message) if timestamp else "",
                    is_streaming=message.is_streaming,
                )
            )
        self.scroll_end(animate=False)
