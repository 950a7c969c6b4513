"""Key-value persistence for settings and conversation history."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import re
from typing import Any, Iterable, Protocol

from pydantic import ValidationError

from .exceptions import PersistenceError
from .message_store import MessageStore
from .models import Message, Settings

LOGGER = logging.getLogger(__name__)

SETTINGS_KEY = "localai_settings"
HISTORY_KEY = "localai_history"

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStore(Protocol):
    """Durable storage of opaque strings under fixed keys."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def clear_all(self) -> None: ...


class MemoryKeyValueStore:
    """In-process store used for tests and ``--no-persist`` sessions."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def clear_all(self) -> None:
        self._data.clear()


class FileKeyValueStore:
    """Store each key as ``<directory>/<key>.json`` with private permissions."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory).expanduser()

    def _enforce_private_permissions(self, path: Path) -> None:
        if os.name != "posix":
            return
        try:
            path.chmod(0o600)
        except OSError:
            pass

    def _path_for(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise PersistenceError(f"Invalid storage key {key!r}.")
        return self.directory / f"{key}.json"

    def get(self, key: str) -> str | None:
        target = self._path_for(key)
        try:
            return target.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Unable to read {target}: {exc}") from exc

    def set(self, key: str, value: str) -> None:
        target = self._path_for(key)
        staging = target.with_suffix(".json.tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            staging.write_text(value, encoding="utf-8")
            self._enforce_private_permissions(staging)
            os.replace(staging, target)
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Unable to write {target}: {exc}") from exc

    def clear_all(self) -> None:
        if not self.directory.exists():
            return
        try:
            for path in self.directory.glob("*.json"):
                path.unlink()
        except OSError as exc:
            raise PersistenceError(
                f"Unable to clear {self.directory}: {exc}"
            ) from exc


class SessionStorage:
    """Read and write the two session records.

    Writes are best-effort: a failing store is logged and otherwise ignored so
    the session keeps running in memory.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def _read(self, key: str) -> str | None:
        try:
            return self.store.get(key)
        except Exception as exc:  # noqa: BLE001 - stores may raise anything.
            LOGGER.warning(
                "storage.read_failed",
                extra={"event": "storage.read_failed", "key": key, "reason": str(exc)},
            )
            return None

    def _write(self, key: str, value: str) -> bool:
        try:
            self.store.set(key, value)
            return True
        except Exception as exc:  # noqa: BLE001 - stores may raise anything.
            LOGGER.warning(
                "storage.write_failed",
                extra={"event": "storage.write_failed", "key": key, "reason": str(exc)},
            )
            return False

    def load_settings(self, defaults: Settings | None = None) -> Settings:
        """Return saved settings merged over ``defaults``.

        Unparseable records are ignored; individual invalid fields keep
        their default value.
        """
        base = defaults.model_copy() if defaults is not None else Settings()
        raw = self._read(SETTINGS_KEY)
        if not raw:
            return base
        try:
            saved: Any = json.loads(raw)
        except ValueError:
            LOGGER.warning(
                "storage.settings.corrupt", extra={"event": "storage.settings.corrupt"}
            )
            return base
        if not isinstance(saved, dict):
            return base

        merged = base.to_json_dict()
        for key, value in saved.items():
            if key not in merged:
                continue
            candidate = {**merged, key: value}
            try:
                Settings.model_validate(candidate)
            except ValidationError:
                LOGGER.warning(
                    "storage.settings.field_ignored",
                    extra={"event": "storage.settings.field_ignored", "field": key},
                )
                continue
            merged = candidate
        return Settings.model_validate(merged)

    def load_messages(self) -> list[Message]:
        raw = self._read(HISTORY_KEY)
        if not raw:
            return []
        try:
            return MessageStore.load_json(raw).messages
        except ValueError:
            LOGGER.warning(
                "storage.history.corrupt", extra={"event": "storage.history.corrupt"}
            )
            return []

    def save_settings(self, settings: Settings) -> bool:
        return self._write(SETTINGS_KEY, json.dumps(settings.to_json_dict()))

    def save_messages(self, messages: Iterable[Message]) -> bool:
        return self._write(HISTORY_KEY, MessageStore(messages).export_json())

    def clear_all(self) -> None:
        try:
            self.store.clear_all()
        except Exception as exc:  # noqa: BLE001 - stores may raise anything.
            LOGGER.warning(
                "storage.clear_failed",
                extra={"event": "storage.clear_failed", "reason": str(exc)},
            )
