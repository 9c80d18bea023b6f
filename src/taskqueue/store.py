from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator

from .models import InputState, ReclaimCounts, Task, TaskInput, TaskSummary
from .utils import utc_now_iso

DEFAULT_PAGE_SIZE = 100


class StorageError(RuntimeError):
    pass


class NotFoundError(LookupError):
    pass


@contextmanager
def _storage_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise StorageError(f"store operation failed: {exc}") from exc


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        task_id=int(row["id"]),
        created_at=row["created_at"],
        command=json.loads(row["command"]),
    )


def _row_to_summary(row: sqlite3.Row) -> TaskSummary:
    return TaskSummary(
        task_id=int(row["id"]),
        created_at=row["created_at"],
        command=json.loads(row["command"]),
        input_count=int(row["input_count"]),
    )


def _row_to_input(row: sqlite3.Row) -> TaskInput:
    return TaskInput(
        input_id=int(row["id"]),
        task_id=int(row["task_id"]),
        value=row["value"],
        state=InputState(row["state"]),
        updated_at=row["updated_at"],
    )


class Store:
    """SQLite-backed repository of tasks and their inputs.

    One connection is shared by every thread of the process and guarded by a
    lock. Separate processes open their own ``Store`` on the same file; the
    conditional updates in :meth:`compare_and_set_state` keep them consistent.
    """

    def __init__(self, db_path: Path, *, timeout: float = 30.0) -> None:
        self.db_path = db_path
        self._lock = threading.RLock()
        with _storage_errors():
            self.conn = sqlite3.connect(str(db_path), timeout=timeout, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON")

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        with self._lock, _storage_errors():
            yield self.conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        # The connection context commits on success and rolls back on error.
        with self._lock, _storage_errors(), self.conn:
            yield self.conn

    def init_schema(self) -> None:
        with self._lock, _storage_errors():
            self.conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    created_at TEXT NOT NULL,
                    command TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS inputs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    value TEXT NOT NULL,
                    state TEXT NOT NULL
                        CHECK (state IN ('new', 'started', 'finished', 'failed')),
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_inputs_task_id
                    ON inputs(task_id, id);
                CREATE INDEX IF NOT EXISTS idx_inputs_state
                    ON inputs(state);
                """
            )
            self.conn.commit()

    def create_task(self, command: list[str], inputs: Iterable[str]) -> int:
        if not command:
            raise ValueError("command must contain at least one token")
        now = utc_now_iso()
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO tasks(created_at, command) VALUES (?, ?)",
                (now, json.dumps(list(command))),
            )
            task_id = int(cursor.lastrowid)
            conn.executemany(
                "INSERT INTO inputs(task_id, value, state, updated_at) VALUES (?, ?, ?, ?)",
                ((task_id, value, InputState.NEW.value, now) for value in inputs),
            )
        return task_id

    def delete_task(self, task_id: int) -> bool:
        with self._transaction() as conn:
            conn.execute("DELETE FROM inputs WHERE task_id = ?", (task_id,))
            cursor = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        return cursor.rowcount > 0

    def get_task(self, task_id: int) -> Task:
        with self._read() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"task not found: {task_id}")
        return _row_to_task(row)

    def list_tasks(self, *, batch_size: int = DEFAULT_PAGE_SIZE) -> Iterator[TaskSummary]:
        last_id = 0
        while True:
            with self._read() as conn:
                rows = conn.execute(
                    """
                    SELECT id, created_at, command,
                        (SELECT COUNT(1) FROM inputs WHERE inputs.task_id = tasks.id) AS input_count
                    FROM tasks
                    WHERE id > ?
                    ORDER BY id
                    LIMIT ?
                    """,
                    (last_id, batch_size),
                ).fetchall()
            if not rows:
                return
            for row in rows:
                yield _row_to_summary(row)
            last_id = int(rows[-1]["id"])

    def page_inputs(self, task_id: int, offset: int, limit: int) -> list[TaskInput]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT * FROM inputs WHERE task_id = ? ORDER BY id LIMIT ? OFFSET ?",
                (task_id, limit, offset),
            ).fetchall()
        return [_row_to_input(row) for row in rows]

    def iter_inputs(self, task_id: int, *, page_size: int = DEFAULT_PAGE_SIZE) -> Iterator[TaskInput]:
        offset = 0
        while True:
            page = self.page_inputs(task_id, offset, page_size)
            if not page:
                return
            yield from page
            offset += len(page)

    def get_input(self, input_id: int) -> TaskInput:
        with self._read() as conn:
            row = conn.execute("SELECT * FROM inputs WHERE id = ?", (input_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"input not found: {input_id}")
        return _row_to_input(row)

    def count_inputs_by_state(self, task_id: int) -> dict[str, int]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT state, COUNT(*) AS count FROM inputs WHERE task_id = ? GROUP BY state",
                (task_id,),
            ).fetchall()
        output = {state.value: 0 for state in InputState}
        for row in rows:
            output[str(row["state"])] = int(row["count"])
        return output

    def compare_and_set_state(
        self,
        input_id: int,
        expected: InputState,
        new: InputState,
    ) -> bool:
        # id is the primary key, so the predicate matches at most one row.
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE inputs SET state = ?, updated_at = ? WHERE id = ? AND state = ?",
                (new.value, utc_now_iso(), input_id, expected.value),
            )
        return cursor.rowcount == 1

    def reclaim(self) -> ReclaimCounts:
        with self._transaction() as conn:
            finished = conn.execute(
                "DELETE FROM inputs WHERE state = ?",
                (InputState.FINISHED.value,),
            )
            empty_tasks = conn.execute(
                "DELETE FROM tasks WHERE NOT EXISTS (SELECT 1 FROM inputs WHERE inputs.task_id = tasks.id)"
            )
            abandoned = conn.execute(
                "UPDATE inputs SET state = ?, updated_at = ? WHERE state = ?",
                (InputState.FAILED.value, utc_now_iso(), InputState.STARTED.value),
            )
        return ReclaimCounts(
            finished_inputs_deleted=finished.rowcount,
            tasks_deleted=empty_tasks.rowcount,
            started_inputs_failed=abandoned.rowcount,
        )

    def vacuum(self) -> None:
        # VACUUM cannot run inside a transaction.
        with self._read() as conn:
            conn.execute("VACUUM")
