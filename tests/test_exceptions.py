"""Tests for domain exception hierarchy."""

from __future__ import annotations

import unittest

from localai_chat.exceptions import (
    ConfigValidationError,
    EngineInitializationError,
    GenerationError,
    InvalidConfigurationError,
    InvalidTransitionError,
    LocalChatError,
    MalformedImportError,
    PersistenceError,
    SessionBusyError,
)


class ExceptionHierarchyTests(unittest.TestCase):
    """Validate exception inheritance contract."""

    def test_exception_hierarchy(self) -> None:
        for exc_type in (
            ConfigValidationError,
            EngineInitializationError,
            GenerationError,
            InvalidConfigurationError,
            InvalidTransitionError,
            MalformedImportError,
            PersistenceError,
            SessionBusyError,
        ):
            with self.subTest(exc_type=exc_type.__name__):
                self.assertTrue(issubclass(exc_type, LocalChatError))
        self.assertTrue(issubclass(LocalChatError, RuntimeError))


if __name__ == "__main__":
    unittest.main()
