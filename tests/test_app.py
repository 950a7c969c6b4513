"""Tests for app-level binding configuration behavior."""

from __future__ import annotations

import unittest

from localai_chat.config import DEFAULT_CONFIG

try:
    from localai_chat.app import LocalChatApp
except ModuleNotFoundError:
    LocalChatApp = None  # type: ignore[assignment]


@unittest.skipIf(LocalChatApp is None, "textual is not installed")
class AppBindingTests(unittest.TestCase):
    """Validate binding derivation from config."""

    def test_binding_specs_created_from_keybinds(self) -> None:
        config = {
            **DEFAULT_CONFIG,
            "keybinds": {
                **DEFAULT_CONFIG["keybinds"],
            },
        }
        bindings = LocalChatApp._binding_specs_from_config(config)  # type: ignore[union-attr]
        self.assertEqual(
            len(bindings), len(LocalChatApp.DEFAULT_ACTION_DESCRIPTIONS)  # type: ignore[union-attr]
        )
        self.assertEqual(bindings[0].action, "send_message")
        self.assertEqual(bindings[0].key, "ctrl+enter")

    def test_blank_keybind_is_not_registered(self) -> None:
        config = {
            **DEFAULT_CONFIG,
            "keybinds": {
                **DEFAULT_CONFIG["keybinds"],
                "regenerate": " ",
            },
        }
        bindings = LocalChatApp._binding_specs_from_config(config)  # type: ignore[union-attr]
        actions = {binding.action for binding in bindings}
        self.assertNotIn("regenerate", actions)
        self.assertIn("stop_generation", actions)

    def test_custom_key_is_used(self) -> None:
        config = {
            **DEFAULT_CONFIG,
            "keybinds": {**DEFAULT_CONFIG["keybinds"], "stop_generation": "ctrl+x"},
        }
        bindings = LocalChatApp._binding_specs_from_config(config)  # type: ignore[union-attr]
        keys = {binding.action: binding.key for binding in bindings}
        self.assertEqual(keys["stop_generation"], "ctrl+x")


if __name__ == "__main__":
    unittest.main()
