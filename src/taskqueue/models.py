from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class InputState(str, Enum):
    NEW = "new"
    STARTED = "started"
    FINISHED = "finished"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (InputState.FINISHED, InputState.FAILED)


@dataclass(slots=True)
class Task:
    task_id: int
    created_at: str
    command: list[str]


@dataclass(slots=True)
class TaskSummary:
    task_id: int
    created_at: str
    command: list[str]
    input_count: int


@dataclass(slots=True)
class TaskInput:
    input_id: int
    task_id: int
    value: str
    state: InputState
    updated_at: str


@dataclass(slots=True)
class ReclaimCounts:
    finished_inputs_deleted: int = 0
    tasks_deleted: int = 0
    started_inputs_failed: int = 0


@dataclass(slots=True)
class CommandOutcome:
    argv: list[str]
    returncode: int | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.returncode == 0


@dataclass(slots=True)
class RunSummary:
    task_id: int
    pages: int = 0
    executed: int = 0
    finished: int = 0
    failed: int = 0
    skipped: int = 0
    claims_lost: int = 0
    unrecorded: int = 0
    failed_input_ids: list[int] = field(default_factory=list)
