from __future__ import annotations

from .models import InputState, TaskInput
from .store import Store

LEGAL_TRANSITIONS: frozenset[tuple[InputState, InputState]] = frozenset(
    {
        (InputState.NEW, InputState.STARTED),
        (InputState.FAILED, InputState.STARTED),
        (InputState.STARTED, InputState.FINISHED),
        (InputState.STARTED, InputState.FAILED),
    }
)


class InvalidTransitionError(ValueError):
    pass


class StateMachine:
    """Optimistic claim protocol over the store.

    A transition is a single conditional update: it applies only when the
    input is still in the expected state, so of several callers racing on the
    same input exactly one observes ``True``. Losing a race is an ordinary
    outcome, not an error.
    """

    def __init__(self, store: Store) -> None:
        self.store = store

    def try_transition(self, input_id: int, expected: InputState, new: InputState) -> bool:
        if (expected, new) not in LEGAL_TRANSITIONS:
            raise InvalidTransitionError(f"illegal transition {expected.value} -> {new.value}")
        return self.store.compare_and_set_state(input_id, expected, new)

    def claim(self, task_input: TaskInput) -> bool:
        """Claim an input from the state it was last observed in."""
        if task_input.state not in (InputState.NEW, InputState.FAILED):
            return False
        return self.try_transition(task_input.input_id, task_input.state, InputState.STARTED)

    def resolve(self, input_id: int, succeeded: bool) -> bool:
        target = InputState.FINISHED if succeeded else InputState.FAILED
        return self.try_transition(input_id, InputState.STARTED, target)
