"""Tests for top-level package lazy exports."""

from __future__ import annotations

import unittest

import localai_chat


class PackageExportTests(unittest.TestCase):
    """Ensure __getattr__ and exported symbols behave as expected."""

    def test_lazy_exports_resolve_known_symbols(self) -> None:
        self.assertTrue(callable(localai_chat.load_config))
        self.assertTrue(callable(localai_chat.ensure_config_dir))
        self.assertIsNotNone(localai_chat.SessionController)
        self.assertIsNotNone(localai_chat.OllamaEngine)
        self.assertIsNotNone(localai_chat.MessageStore)
        self.assertIsNotNone(localai_chat.Message)
        self.assertIsNotNone(localai_chat.Settings)
        self.assertIsNotNone(localai_chat.LifecycleState)
        self.assertIsNotNone(localai_chat.StateManager)
        self.assertIsNotNone(localai_chat.LocalChatError)
        self.assertIsNotNone(localai_chat.MalformedImportError)
        self.assertIsNotNone(localai_chat.SessionBusyError)

    def test_unknown_symbol_raises_attribute_error(self) -> None:
        with self.assertRaises(AttributeError):
            getattr(localai_chat, "THIS_DOES_NOT_EXIST")


if __name__ == "__main__":
    unittest.main()
