"""Tests for the session controller lifecycle, streaming, and history commands."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
import json
from pathlib import Path
import tempfile
import unittest

from localai_chat.controller import CANCELLATION_MARKER, SessionController
from localai_chat.engine import CompletionDelta
from localai_chat.exceptions import (
    EngineInitializationError,
    GenerationError,
    InvalidConfigurationError,
    MalformedImportError,
    SessionBusyError,
)
from localai_chat.models import CONCISE_DIRECTIVE, Message, Settings
from localai_chat.persistence import (
    HISTORY_KEY,
    SETTINGS_KEY,
    FileKeyValueStore,
    MemoryKeyValueStore,
    SessionStorage,
)
from localai_chat.state import LifecycleState


class FakeHandle:
    """Scripted engine handle.

    Yields ``chunks`` in order. When ``gate`` is set the handle pauses after
    the first chunk until ``release`` is set, so tests can act mid-stream.
    """

    def __init__(
        self,
        chunks: list[str],
        error: Exception | None = None,
        gate: bool = False,
    ) -> None:
        self.chunks = chunks
        self.error = error
        self.gate = gate
        self.streamed = asyncio.Event()
        self.release = asyncio.Event()
        self.prompts: list[list[dict[str, str]]] = []
        self.options: list[tuple[float, int]] = []

    async def stream_completion(
        self,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[CompletionDelta]:
        self.prompts.append(list(messages))
        self.options.append((temperature, max_tokens))
        for index, text in enumerate(self.chunks):
            yield CompletionDelta(text=text)
            if self.gate and index == 0:
                self.streamed.set()
                await self.release.wait()
        if self.error is not None:
            raise self.error


class RefusingHandle:
    """Handle whose ``stream_completion`` fails before returning an iterator."""

    def stream_completion(
        self,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[CompletionDelta]:
        raise GenerationError("model unloaded by server")


class CrashingStore:
    """Store that raises outside the persistence taxonomy on every call."""

    def get(self, key: str) -> str | None:
        return None

    def set(self, key: str, value: str) -> None:
        raise RuntimeError(f"cannot write {key}")

    def clear_all(self) -> None:
        raise RuntimeError("cannot clear")


class FakeEngine:
    """Engine double that records requested identifiers."""

    def __init__(
        self,
        handle: FakeHandle | None = None,
        error: Exception | None = None,
    ) -> None:
        self.handle = handle or FakeHandle(["4"])
        self.error = error
        self.calls: list[str] = []
        self.gates: dict[str, asyncio.Event] = {}

    async def initialize(self, model_identifier, on_progress):  # noqa: ANN001
        self.calls.append(model_identifier)
        on_progress(0.0)
        gate = self.gates.get(model_identifier)
        if gate is not None:
            await gate.wait()
        if self.error is not None:
            raise self.error
        on_progress(1.0)
        return self.handle


class Recorder:
    """Collect every sink notification."""

    def __init__(self, controller: SessionController) -> None:
        self.snapshots: list[list[Message]] = []
        self.statuses: list[tuple[LifecycleState, str | None]] = []
        self.progress: list[float] = []
        self.errors: list[str] = []
        self.settings: list[Settings] = []
        controller.on_messages_changed(self._messages)
        controller.on_status_changed(lambda s, t: self.statuses.append((s, t)))
        controller.on_progress(self.progress.append)
        controller.on_error(self.errors.append)
        controller.on_settings_changed(self.settings.append)

    def _messages(self, messages: list[Message]) -> None:
        self.snapshots.append(
            [
                Message(m.role, m.content, m.timestamp, m.is_streaming)
                for m in messages
            ]
        )


def _controller(
    engine: FakeEngine | None = None,
    store: MemoryKeyValueStore | None = None,
    defaults: Settings | None = None,
) -> tuple[SessionController, FakeEngine, MemoryKeyValueStore]:
    engine = engine or FakeEngine()
    store = store if store is not None else MemoryKeyValueStore()
    controller = SessionController(engine, SessionStorage(store), defaults=defaults)
    return controller, engine, store


def _stored_history(store: MemoryKeyValueStore) -> list[dict[str, str]]:
    raw = store.get(HISTORY_KEY)
    return json.loads(raw) if raw else []


class LoadModelTests(unittest.IsolatedAsyncioTestCase):
    """Model loading drives the lifecycle and progress sinks."""

    async def test_load_model_reaches_ready(self) -> None:
        controller, engine, _ = _controller()
        recorder = Recorder(controller)

        loaded = await controller.load_model()

        self.assertTrue(loaded)
        self.assertEqual(controller.state, LifecycleState.READY)
        self.assertEqual(controller.model_identifier, "llama3.2")
        self.assertEqual(engine.calls, ["llama3.2"])
        self.assertEqual(recorder.progress, [0.0, 1.0])
        self.assertEqual(
            [state for state, _ in recorder.statuses],
            [LifecycleState.LOADING, LifecycleState.READY],
        )

    async def test_load_failure_moves_to_error_and_notifies(self) -> None:
        engine = FakeEngine(error=EngineInitializationError("no such model"))
        controller, _, _ = _controller(engine)
        recorder = Recorder(controller)

        loaded = await controller.load_model()

        self.assertFalse(loaded)
        self.assertEqual(controller.state, LifecycleState.ERROR)
        self.assertEqual(len(recorder.errors), 1)
        self.assertIn("no such model", recorder.errors[0])
        self.assertEqual(controller.last_error, recorder.errors[0])

    async def test_retry_after_error(self) -> None:
        engine = FakeEngine(error=EngineInitializationError("offline"))
        controller, _, _ = _controller(engine)
        await controller.load_model()
        engine.error = None

        self.assertTrue(await controller.load_model())
        self.assertEqual(controller.state, LifecycleState.READY)
        self.assertIsNone(controller.last_error)

    async def test_blank_custom_model_does_not_call_engine(self) -> None:
        controller, engine, _ = _controller(
            defaults=Settings(model_id="custom", custom_model_id="   ")
        )
        recorder = Recorder(controller)

        with self.assertRaises(InvalidConfigurationError):
            await controller.load_model()

        self.assertEqual(engine.calls, [])
        self.assertEqual(len(recorder.errors), 1)
        self.assertEqual(controller.state, LifecycleState.UNLOADED)

    async def test_custom_model_identifier_is_used(self) -> None:
        controller, engine, _ = _controller(
            defaults=Settings(model_id="custom", custom_model_id="mistral:7b")
        )
        await controller.load_model()
        self.assertEqual(engine.calls, ["mistral:7b"])
        self.assertEqual(controller.model_identifier, "mistral:7b")

    async def test_superseded_load_is_discarded(self) -> None:
        controller, engine, _ = _controller()
        engine.gates["llama3.2"] = asyncio.Event()

        first = asyncio.create_task(controller.load_model())
        await asyncio.sleep(0)
        controller.update_settings(model_id="phi3:mini")
        second = await controller.load_model()
        engine.gates["llama3.2"].set()
        first_result = await first

        self.assertTrue(second)
        self.assertFalse(first_result)
        self.assertEqual(controller.state, LifecycleState.READY)
        self.assertEqual(controller.model_identifier, "phi3:mini")

    async def test_load_while_generating_is_rejected(self) -> None:
        handle = FakeHandle(["a", "b"], gate=True)
        controller, engine, _ = _controller(FakeEngine(handle))
        await controller.load_model()
        task = asyncio.create_task(controller.submit("hi"))
        await handle.streamed.wait()

        with self.assertRaises(SessionBusyError):
            await controller.load_model()
        self.assertEqual(engine.calls, ["llama3.2"])

        handle.release.set()
        await task


class SubmitTests(unittest.IsolatedAsyncioTestCase):
    """Streaming generation and its terminal outcomes."""

    async def test_simple_exchange(self) -> None:
        controller, engine, store = _controller()
        await controller.load_model()

        accepted = await controller.submit("2+2?")

        self.assertTrue(accepted)
        messages = controller.messages
        self.assertEqual(
            [(m.role, m.content) for m in messages],
            [("user", "2+2?"), ("assistant", "4")],
        )
        self.assertFalse(any(m.is_streaming for m in messages))
        self.assertEqual(controller.state, LifecycleState.READY)
        self.assertEqual(
            engine.handle.prompts[0],
            [
                {"role": "system", "content": controller.settings.system_prompt},
                {"role": "user", "content": "2+2?"},
            ],
        )
        self.assertEqual(engine.handle.options[0], (0.7, 512))
        self.assertEqual(len(_stored_history(store)), 2)

    async def test_submit_rejected_unless_ready(self) -> None:
        controller, _, store = _controller()
        self.assertFalse(await controller.submit("hello"))
        self.assertEqual(controller.messages, [])
        self.assertIsNone(store.get(HISTORY_KEY))

    async def test_blank_submit_is_ignored(self) -> None:
        controller, _, _ = _controller()
        await controller.load_model()
        self.assertFalse(await controller.submit("   "))
        self.assertEqual(controller.messages, [])

    async def test_user_text_is_trimmed(self) -> None:
        controller, _, _ = _controller()
        await controller.load_model()
        await controller.submit("  hi there \n")
        self.assertEqual(controller.messages[0].content, "hi there")

    async def test_concise_mode_extends_system_prompt(self) -> None:
        controller, engine, _ = _controller(defaults=Settings(concise_mode=True))
        await controller.load_model()
        await controller.submit("hello")
        system_turn = engine.handle.prompts[0][0]
        self.assertEqual(system_turn["role"], "system")
        self.assertTrue(system_turn["content"].endswith(CONCISE_DIRECTIVE))

    async def test_single_streaming_message_is_always_last(self) -> None:
        controller, _, _ = _controller(FakeEngine(FakeHandle(["a", "b", "c"])))
        recorder = Recorder(controller)
        await controller.load_model()
        await controller.submit("go")

        self.assertTrue(recorder.snapshots)
        for snapshot in recorder.snapshots:
            streaming = [index for index, m in enumerate(snapshot) if m.is_streaming]
            self.assertLessEqual(len(streaming), 1)
            if streaming:
                self.assertEqual(streaming[0], len(snapshot) - 1)
                self.assertEqual(snapshot[-1].role, "assistant")
        self.assertEqual(controller.messages[-1].content, "abc")

    async def test_mid_stream_failure_keeps_partial_text(self) -> None:
        handle = FakeHandle(["Hel"], error=GenerationError("connection reset"))
        controller, _, store = _controller(FakeEngine(handle))
        recorder = Recorder(controller)
        await controller.load_model()

        await controller.submit("hello")

        last = controller.messages[-1]
        self.assertTrue(last.content.startswith("Hel"))
        self.assertIn("[Error: connection reset]", last.content)
        self.assertFalse(last.is_streaming)
        self.assertEqual(controller.state, LifecycleState.READY)
        self.assertEqual(len(recorder.errors), 1)
        self.assertEqual(_stored_history(store)[-1]["content"], last.content)

    async def test_synchronous_stream_failure_returns_to_ready(self) -> None:
        controller, _, store = _controller(FakeEngine(RefusingHandle()))  # type: ignore[arg-type]
        recorder = Recorder(controller)
        await controller.load_model()

        self.assertTrue(await controller.submit("hello"))

        last = controller.messages[-1]
        self.assertEqual(last.role, "assistant")
        self.assertEqual(last.content, "\n\n[Error: model unloaded by server]")
        self.assertFalse(last.is_streaming)
        self.assertEqual(controller.state, LifecycleState.READY)
        self.assertEqual(recorder.errors, ["Generation failed: model unloaded by server"])
        self.assertEqual(len(_stored_history(store)), 2)

    async def test_second_submit_while_generating_is_rejected(self) -> None:
        handle = FakeHandle(["a", "b"], gate=True)
        controller, _, _ = _controller(FakeEngine(handle))
        await controller.load_model()
        task = asyncio.create_task(controller.submit("first"))
        await handle.streamed.wait()

        self.assertFalse(await controller.submit("second"))

        handle.release.set()
        await task
        self.assertEqual(
            [m.content for m in controller.messages if m.role == "user"], ["first"]
        )

    async def test_streaming_message_is_never_persisted(self) -> None:
        handle = FakeHandle(["a", "b"], gate=True)
        controller, _, store = _controller(FakeEngine(handle))
        await controller.load_model()
        task = asyncio.create_task(controller.submit("hi"))
        await handle.streamed.wait()

        self.assertEqual(
            [entry["role"] for entry in _stored_history(store)], ["user"]
        )

        handle.release.set()
        await task
        self.assertEqual(len(_stored_history(store)), 2)

    async def test_listener_failure_does_not_break_generation(self) -> None:
        controller, _, _ = _controller()

        def _broken(_messages: list[Message]) -> None:
            raise RuntimeError("render failed")

        controller.on_messages_changed(_broken)
        await controller.load_model()
        with self.assertLogs("localai_chat.controller", level="ERROR"):
            self.assertTrue(await controller.submit("hi"))
        self.assertEqual(controller.state, LifecycleState.READY)


class StopTests(unittest.IsolatedAsyncioTestCase):
    """Cooperative cancellation of an in-flight reply."""

    async def test_stop_appends_marker_and_returns_to_ready(self) -> None:
        handle = FakeHandle(["Hel", "lo"], gate=True)
        controller, _, store = _controller(FakeEngine(handle))
        await controller.load_model()
        task = asyncio.create_task(controller.submit("hello"))
        await handle.streamed.wait()

        self.assertEqual(controller.state, LifecycleState.GENERATING)
        self.assertTrue(controller.stop())
        handle.release.set()
        await task

        last = controller.messages[-1]
        self.assertEqual(last.content, "Hel" + CANCELLATION_MARKER)
        self.assertFalse(last.is_streaming)
        self.assertEqual(controller.state, LifecycleState.READY)
        self.assertEqual(_stored_history(store)[-1]["content"], last.content)

    async def test_stop_when_idle_is_noop(self) -> None:
        controller, _, _ = _controller()
        self.assertFalse(controller.stop())
        await controller.load_model()
        self.assertFalse(controller.stop())
        self.assertEqual(controller.state, LifecycleState.READY)

    async def test_next_generation_is_not_cancelled(self) -> None:
        handle = FakeHandle(["Hel", "lo"], gate=True)
        controller, _, _ = _controller(FakeEngine(handle))
        await controller.load_model()
        task = asyncio.create_task(controller.submit("one"))
        await handle.streamed.wait()
        controller.stop()
        handle.release.set()
        await task

        handle.gate = False
        await controller.submit("two")
        self.assertEqual(controller.messages[-1].content, "Hello")


class RegenerateTests(unittest.IsolatedAsyncioTestCase):
    """Regenerate replaces the trailing reply without duplicating turns."""

    async def test_regenerate_replaces_last_reply(self) -> None:
        controller, engine, _ = _controller()
        await controller.load_model()
        await controller.submit("2+2?")
        engine.handle.chunks = ["four"]

        self.assertTrue(await controller.regenerate())

        self.assertEqual(
            [(m.role, m.content) for m in controller.messages],
            [("user", "2+2?"), ("assistant", "four")],
        )
        self.assertEqual(
            engine.handle.prompts[-1],
            [
                {"role": "system", "content": controller.settings.system_prompt},
                {"role": "user", "content": "2+2?"},
            ],
        )

    async def test_regenerate_requires_trailing_assistant(self) -> None:
        controller, _, _ = _controller()
        await controller.load_model()
        self.assertFalse(await controller.regenerate())

        controller.import_transcript(
            {"version": 1, "messages": [{"role": "user", "content": "hi"}]}
        )
        self.assertFalse(await controller.regenerate())
        self.assertEqual(len(controller.messages), 1)

    async def test_regenerate_requires_ready(self) -> None:
        controller, _, _ = _controller()
        controller.import_transcript(
            {
                "version": 1,
                "messages": [
                    {"role": "user", "content": "hi"},
                    {"role": "assistant", "content": "hello"},
                ],
            }
        )
        self.assertFalse(await controller.regenerate())
        self.assertEqual(len(controller.messages), 2)

    async def test_regenerate_rejected_while_generating(self) -> None:
        handle = FakeHandle(["a", "b"], gate=True)
        controller, _, _ = _controller(FakeEngine(handle))
        await controller.load_model()
        task = asyncio.create_task(controller.submit("hi"))
        await handle.streamed.wait()

        self.assertFalse(await controller.regenerate())
        self.assertEqual(controller.state, LifecycleState.GENERATING)

        handle.release.set()
        await task
        self.assertEqual(
            [(m.role, m.content) for m in controller.messages],
            [("user", "hi"), ("assistant", "ab")],
        )
        self.assertEqual(len(handle.prompts), 1)


class ClearTests(unittest.IsolatedAsyncioTestCase):
    async def test_clear_empties_history(self) -> None:
        controller, _, store = _controller()
        await controller.load_model()
        await controller.submit("hi")

        self.assertTrue(controller.clear())
        self.assertEqual(controller.messages, [])
        self.assertEqual(_stored_history(store), [])
        self.assertEqual(controller.state, LifecycleState.READY)

    async def test_clear_rejected_while_generating(self) -> None:
        handle = FakeHandle(["a", "b"], gate=True)
        controller, _, _ = _controller(FakeEngine(handle))
        await controller.load_model()
        task = asyncio.create_task(controller.submit("hi"))
        await handle.streamed.wait()

        self.assertFalse(controller.clear())

        handle.release.set()
        await task
        self.assertEqual(len(controller.messages), 2)


class TranscriptCommandTests(unittest.IsolatedAsyncioTestCase):
    """Export and import through the controller."""

    async def test_export_import_round_trip(self) -> None:
        source, _, _ = _controller(
            defaults=Settings(temperature=1.2, max_tokens=256, concise_mode=True)
        )
        await source.load_model()
        await source.submit("2+2?")
        document = json.loads(json.dumps(source.export_transcript()))

        target, _, store = _controller()
        recorder = Recorder(target)
        count = target.import_transcript(document)

        self.assertEqual(count, 2)
        self.assertEqual(
            [(m.role, m.content) for m in target.messages],
            [(m.role, m.content) for m in source.messages],
        )
        self.assertEqual(
            [m.timestamp for m in target.messages],
            [m.timestamp for m in source.messages],
        )
        settings = target.settings
        self.assertEqual(settings.temperature, 1.2)
        self.assertEqual(settings.max_tokens, 256)
        self.assertTrue(settings.concise_mode)
        self.assertEqual(len(_stored_history(store)), 2)
        self.assertEqual(json.loads(store.get(SETTINGS_KEY))["temperature"], 1.2)
        self.assertEqual(len(recorder.settings), 1)

    async def test_malformed_import_leaves_store_untouched(self) -> None:
        controller, _, _ = _controller()
        await controller.load_model()
        await controller.submit("hi")
        before = [(m.role, m.content) for m in controller.messages]
        recorder = Recorder(controller)

        with self.assertRaises(MalformedImportError):
            controller.import_transcript({})

        self.assertEqual([(m.role, m.content) for m in controller.messages], before)
        self.assertEqual(len(recorder.errors), 1)

    async def test_falsy_imported_values_keep_prior_settings(self) -> None:
        controller, _, _ = _controller(
            defaults=Settings(temperature=0.9, concise_mode=True)
        )
        controller.import_transcript(
            {
                "version": 1,
                "messages": [],
                "settings": {"temperature": 0, "maxTokens": 0, "conciseMode": False},
            }
        )
        settings = controller.settings
        self.assertEqual(settings.temperature, 0.9)
        self.assertEqual(settings.max_tokens, 512)
        self.assertTrue(settings.concise_mode)

    async def test_import_while_generating_is_rejected(self) -> None:
        handle = FakeHandle(["a", "b"], gate=True)
        controller, _, _ = _controller(FakeEngine(handle))
        await controller.load_model()
        task = asyncio.create_task(controller.submit("hi"))
        await handle.streamed.wait()

        with self.assertRaises(SessionBusyError):
            controller.import_transcript({"version": 1, "messages": []})

        handle.release.set()
        await task

    async def test_export_skips_streaming_message(self) -> None:
        handle = FakeHandle(["a", "b"], gate=True)
        controller, _, _ = _controller(FakeEngine(handle))
        await controller.load_model()
        task = asyncio.create_task(controller.submit("hi"))
        await handle.streamed.wait()

        document = controller.export_transcript()
        self.assertEqual([m["role"] for m in document["messages"]], ["user"])

        handle.release.set()
        await task


class SettingsAndHydrationTests(unittest.IsolatedAsyncioTestCase):
    async def test_hydrates_from_storage(self) -> None:
        store = MemoryKeyValueStore(
            {
                SETTINGS_KEY: json.dumps({"temperature": 1.5, "theme": "light"}),
                HISTORY_KEY: json.dumps(
                    [
                        {"role": "user", "content": "hi", "timestamp": 1700000000000},
                        {"role": "assistant", "content": "hello"},
                    ]
                ),
            }
        )
        controller, _, _ = _controller(store=store)

        self.assertEqual(controller.settings.temperature, 1.5)
        self.assertEqual(controller.settings.theme, "light")
        self.assertEqual(
            [(m.role, m.content) for m in controller.messages],
            [("user", "hi"), ("assistant", "hello")],
        )
        self.assertEqual(controller.state, LifecycleState.UNLOADED)

    async def test_update_settings_persists_and_notifies(self) -> None:
        controller, _, store = _controller()
        recorder = Recorder(controller)

        settings = controller.update_settings(temperature=0.2, theme="light")

        self.assertEqual(settings.temperature, 0.2)
        self.assertEqual(json.loads(store.get(SETTINGS_KEY))["theme"], "light")
        self.assertEqual(recorder.settings[-1].theme, "light")

    async def test_update_settings_rejects_unknown_fields(self) -> None:
        controller, _, _ = _controller()
        with self.assertRaises(ValueError):
            controller.update_settings(colour="blue")

    async def test_settings_property_is_a_copy(self) -> None:
        controller, _, _ = _controller()
        snapshot = controller.settings
        snapshot.temperature = 1.9
        self.assertEqual(controller.settings.temperature, 0.7)

    async def test_last_assistant_reply(self) -> None:
        controller, _, _ = _controller()
        self.assertIsNone(controller.last_assistant_reply())
        await controller.load_model()
        await controller.submit("2+2?")
        self.assertEqual(controller.last_assistant_reply(), "4")


class PersistenceFailureTests(unittest.IsolatedAsyncioTestCase):
    """A failing store never interrupts the in-memory session."""

    async def test_crashing_store_keeps_session_running(self) -> None:
        controller, _, _ = _controller(store=CrashingStore())  # type: ignore[arg-type]
        recorder = Recorder(controller)
        await controller.load_model()

        with self.assertLogs("localai_chat.persistence", level="WARNING"):
            self.assertTrue(await controller.submit("2+2?"))
            controller.update_settings(theme="light")
            self.assertTrue(controller.clear())

        self.assertEqual(controller.state, LifecycleState.READY)
        self.assertEqual(controller.settings.theme, "light")
        self.assertEqual(recorder.errors, [])

    async def test_unencodable_import_then_submit_stays_usable(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = FileKeyValueStore(Path(temp_dir))
            controller = SessionController(FakeEngine(), SessionStorage(store))
            await controller.load_model()

            with self.assertLogs("localai_chat.persistence", level="WARNING"):
                imported = controller.import_transcript(
                    {"version": 1, "messages": [{"role": "user", "content": "bad \ud800"}]}
                )
                self.assertTrue(await controller.submit("hello"))

            self.assertEqual(imported, 1)
            self.assertEqual(controller.state, LifecycleState.READY)
            self.assertEqual(
                [m.role for m in controller.messages], ["user", "user", "assistant"]
            )
            self.assertTrue(await controller.submit("again"))
            self.assertEqual(controller.state, LifecycleState.READY)



if __name__ == "__main__":
    unittest.main()
