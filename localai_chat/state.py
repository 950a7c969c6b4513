"""Session lifecycle state machine, cancellation token, and session value."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .exceptions import InvalidTransitionError


class LifecycleState(str, Enum):
    """Finite state machine for the model and generation lifecycle."""

    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    GENERATING = "generating"
    ERROR = "error"


ALLOWED_TRANSITIONS: dict[LifecycleState, frozenset[LifecycleState]] = {
    LifecycleState.UNLOADED: frozenset({LifecycleState.LOADING}),
    LifecycleState.LOADING: frozenset(
        {LifecycleState.LOADING, LifecycleState.READY, LifecycleState.ERROR}
    ),
    LifecycleState.READY: frozenset(
        {LifecycleState.LOADING, LifecycleState.GENERATING}
    ),
    LifecycleState.GENERATING: frozenset({LifecycleState.READY}),
    LifecycleState.ERROR: frozenset({LifecycleState.LOADING}),
}


class StateManager:
    """Manage lifecycle transitions with async lock semantics."""

    def __init__(self, initial: LifecycleState = LifecycleState.UNLOADED) -> None:
        self._lock = asyncio.Lock()
        self._state = initial

    @property
    def state(self) -> LifecycleState:
        """Return the current state without waiting on the lock."""
        return self._state

    @staticmethod
    def can_transition(current: LifecycleState, new_state: LifecycleState) -> bool:
        return new_state in ALLOWED_TRANSITIONS[current]

    def _apply(self, new_state: LifecycleState) -> LifecycleState:
        if not self.can_transition(self._state, new_state):
            raise InvalidTransitionError(
                f"Cannot move from {self._state.value} to {new_state.value}."
            )
        previous = self._state
        self._state = new_state
        return previous

    async def get_state(self) -> LifecycleState:
        """Return the current state under lock."""
        async with self._lock:
            return self._state

    async def transition_to(self, new_state: LifecycleState) -> LifecycleState:
        """Transition to a new state and return the previous one."""
        async with self._lock:
            return self._apply(new_state)

    async def transition_if(
        self,
        expected_state: LifecycleState,
        new_state: LifecycleState,
    ) -> bool:
        """Transition only when current state matches expected state."""
        async with self._lock:
            if self._state != expected_state:
                return False
            self._apply(new_state)
            return True

    async def transition_unless(
        self,
        blocked_state: LifecycleState,
        new_state: LifecycleState,
    ) -> bool:
        """Transition from any state except ``blocked_state``."""
        async with self._lock:
            if self._state == blocked_state:
                return False
            self._apply(new_state)
            return True



class CancellationToken:
    """Cooperative cancellation flag polled once per streamed delta."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def reset(self) -> None:
        self._cancelled = False


@dataclass
class Session:
    """Mutable session state owned by exactly one controller."""

    state_manager: StateManager = field(default_factory=StateManager)
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    engine_handle: Any | None = None
    loaded_model: str = ""

    @property
    def state(self) -> LifecycleState:
        return self.state_manager.state
