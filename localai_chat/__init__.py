"""Top-level package for localai-chat."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .app import LocalChatApp
    from .config import ensure_config_dir, load_config
    from .controller import SessionController
    from .engine import OllamaEngine
    from .exceptions import (
        ConfigValidationError,
        EngineInitializationError,
        GenerationError,
        InvalidConfigurationError,
        LocalChatError,
        MalformedImportError,
        SessionBusyError,
    )
    from .message_store import MessageStore
    from .models import Message, Settings
    from .state import LifecycleState, StateManager

__all__ = [
    "ConfigValidationError",
    "EngineInitializationError",
    "GenerationError",
    "InvalidConfigurationError",
    "LifecycleState",
    "LocalChatApp",
    "LocalChatError",
    "MalformedImportError",
    "Message",
    "MessageStore",
    "OllamaEngine",
    "SessionBusyError",
    "SessionController",
    "Settings",
    "StateManager",
    "ensure_config_dir",
    "load_config",
]

_EXCEPTION_NAMES = {
    "ConfigValidationError",
    "EngineInitializationError",
    "GenerationError",
    "InvalidConfigurationError",
    "LocalChatError",
    "MalformedImportError",
    "SessionBusyError",
}


def __getattr__(name: str) -> Any:
    """Lazily import symbols to keep the UI dependency optional at import time."""
    if name in {"ensure_config_dir", "load_config"}:
        from . import config

        return getattr(config, name)
    if name in _EXCEPTION_NAMES:
        from . import exceptions

        return getattr(exceptions, name)
    if name in {"LifecycleState", "StateManager"}:
        from . import state

        return getattr(state, name)
    if name in {"Message", "Settings"}:
        from . import models

        return getattr(models, name)
    if name == "MessageStore":
        from .message_store import MessageStore

        return MessageStore
    if name == "SessionController":
        from .controller import SessionController

        return SessionController
    if name == "OllamaEngine":
        from .engine import OllamaEngine

        return OllamaEngine
    if name == "LocalChatApp":
        from .app import LocalChatApp

        return LocalChatApp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
