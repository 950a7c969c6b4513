"""Widget exports for the localai_chat UI."""

from .activity_bar import ActivityBar
from .conversation import ConversationView
from .error_banner import ErrorBanner
from .input_box import InputBox
from .message import MessageBubble
from .status_bar import StatusBar

__all__ = [
    "ActivityBar",
    "ConversationView",
    "ErrorBanner",
    "InputBox",
    "MessageBubble",
    "StatusBar",
]
