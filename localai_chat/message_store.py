"""Ordered conversation storage and request prompt construction."""

from __future__ import annotations

import json
from typing import Any, Iterable

from .models import Message, Role


class MessageStore:
    """Hold conversation turns in order.

    The system prompt is never stored here; it is synthesized per request by
    :meth:`build_prompt`. Ordering is append-only apart from dropping the
    trailing turn (regenerate) and wholesale replacement (clear, import).
    """

    def __init__(self, messages: Iterable[Message] | None = None) -> None:
        self._messages: list[Message] = list(messages or [])

    @property
    def messages(self) -> list[Message]:
        """Return a shallow copy of the stored message list."""
        return list(self._messages)

    @property
    def message_count(self) -> int:
        return len(self._messages)

    @property
    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def append(self, role: str, content: str, *, is_streaming: bool = False) -> Message:
        """Append a turn and return the stored instance."""
        message = Message(role=role, content=content, is_streaming=is_streaming)
        self._messages.append(message)
        return message

    def pop_last(self) -> Message | None:
        """Remove and return the trailing turn, if any."""
        if not self._messages:
            return None
        return self._messages.pop()

    def replace(self, messages: Iterable[Message]) -> None:
        """Replace the whole history."""
        self._messages = list(messages)

    def clear(self) -> None:
        self._messages = []

    def streaming_messages(self) -> list[Message]:
        """Return every turn currently flagged as in-flight."""
        return [message for message in self._messages if message.is_streaming]

    def settled_messages(self) -> list[Message]:
        """Return every turn that is not mid-stream."""
        return [message for message in self._messages if not message.is_streaming]

    def build_prompt(self, system_prompt: str) -> list[dict[str, str]]:
        """Build the request prompt: a system turn followed by settled turns."""
        prompt = [{"role": Role.SYSTEM.value, "content": system_prompt}]
        prompt.extend(message.to_prompt() for message in self.settled_messages())
        return prompt

    @staticmethod
    def _estimate_tokens_for_parts(role: str, content: str) -> int:
        role_cost = 2 if role else 0
        return role_cost + len(content) // 4 + len(content.split()) + 2

    def estimated_tokens(self) -> int:
        """Estimate token count deterministically from message text."""
        total = sum(
            self._estimate_tokens_for_parts(m.role, m.content) for m in self._messages
        )
        return max(total, 1) if self._messages else 0

    def export_json(self) -> str:
        """Serialize settled turns for durable storage."""
        payload = [message.to_dict() for message in self.settled_messages()]
        return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))

    @classmethod
    def load_json(cls, raw: str) -> MessageStore:
        """Rebuild a store from :meth:`export_json` output.

        Raises ``ValueError`` when the text is not a JSON list of objects.
        """
        payload: Any = json.loads(raw)
        if not isinstance(payload, list):
            raise ValueError("Stored history must be a JSON list.")
        return cls(
            Message.from_dict(item) for item in payload if isinstance(item, dict)
        )
