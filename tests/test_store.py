from pathlib import Path
from tempfile import TemporaryDirectory
import sqlite3
import unittest

from taskqueue.models import InputState
from taskqueue.store import NotFoundError, StorageError, Store


class StoreTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_dir = TemporaryDirectory()
        self.db_path = Path(self._temp_dir.name) / "tq.sqlite"
        self.store = Store(self.db_path)
        self.store.init_schema()

    def tearDown(self) -> None:
        self.store.close()
        self._temp_dir.cleanup()

    def test_create_and_get_task(self) -> None:
        task_id = self.store.create_task(["echo", "-n"], ["a", "b", "c"])
        task = self.store.get_task(task_id)
        self.assertEqual(task.task_id, task_id)
        self.assertEqual(task.command, ["echo", "-n"])

        inputs = self.store.page_inputs(task_id, 0, 10)
        self.assertEqual([item.value for item in inputs], ["a", "b", "c"])
        self.assertTrue(all(item.state is InputState.NEW for item in inputs))
        self.assertTrue(all(item.updated_at == task.created_at for item in inputs))

    def test_task_ids_are_monotonic_and_not_reused(self) -> None:
        first = self.store.create_task(["true"], [])
        second = self.store.create_task(["true"], [])
        self.store.delete_task(second)
        third = self.store.create_task(["true"], [])
        self.assertLess(first, second)
        self.assertLess(second, third)

    def test_create_rejects_empty_command(self) -> None:
        with self.assertRaises(ValueError):
            self.store.create_task([], ["a"])
        self.assertEqual(list(self.store.list_tasks()), [])

    def test_create_is_atomic(self) -> None:
        def values():
            yield "a"
            yield None  # violates NOT NULL on inputs.value

        with self.assertRaises(StorageError) as ctx:
            self.store.create_task(["echo"], values())
        self.assertIsInstance(ctx.exception.__cause__, sqlite3.Error)
        self.assertEqual(list(self.store.list_tasks()), [])
        count = self.store.conn.execute("SELECT COUNT(*) FROM inputs").fetchone()[0]
        self.assertEqual(count, 0)

    def test_get_task_missing(self) -> None:
        with self.assertRaises(NotFoundError):
            self.store.get_task(404)
        with self.assertRaises(NotFoundError):
            self.store.get_input(404)

    def test_delete_cascades_and_is_idempotent(self) -> None:
        task_id = self.store.create_task(["echo"], ["a", "b"])
        other_id = self.store.create_task(["echo"], ["c"])

        self.assertTrue(self.store.delete_task(task_id))
        self.assertFalse(self.store.delete_task(task_id))
        self.assertFalse(self.store.delete_task(999))

        self.assertEqual(self.store.page_inputs(task_id, 0, 10), [])
        self.assertEqual(len(self.store.page_inputs(other_id, 0, 10)), 1)
        with self.assertRaises(NotFoundError):
            self.store.get_task(task_id)

    def test_list_tasks_is_ordered_and_restartable(self) -> None:
        ids = [self.store.create_task(["echo", str(i)], ["x"] * i) for i in range(5)]
        summaries = list(self.store.list_tasks(batch_size=2))
        self.assertEqual([summary.task_id for summary in summaries], ids)
        self.assertEqual([summary.input_count for summary in summaries], [0, 1, 2, 3, 4])
        self.assertEqual(summaries[3].command, ["echo", "3"])
        self.assertEqual(list(self.store.list_tasks(batch_size=2)), summaries)

    def test_page_inputs_is_deterministic(self) -> None:
        task_id = self.store.create_task(["echo"], [f"v{i}" for i in range(7)])
        pages = []
        offset = 0
        while True:
            page = self.store.page_inputs(task_id, offset, 3)
            if not page:
                break
            pages.append([item.value for item in page])
            offset += len(page)
        self.assertEqual(pages, [["v0", "v1", "v2"], ["v3", "v4", "v5"], ["v6"]])
        all_inputs = list(self.store.iter_inputs(task_id, page_size=3))
        ids = [item.input_id for item in all_inputs]
        self.assertEqual(ids, sorted(ids))

    def test_compare_and_set_state(self) -> None:
        task_id = self.store.create_task(["echo"], ["a"])
        item = self.store.page_inputs(task_id, 0, 1)[0]

        self.assertFalse(self.store.compare_and_set_state(item.input_id, InputState.STARTED, InputState.FINISHED))
        unchanged = self.store.get_input(item.input_id)
        self.assertEqual(unchanged.state, InputState.NEW)
        self.assertEqual(unchanged.updated_at, item.updated_at)

        self.assertTrue(self.store.compare_and_set_state(item.input_id, InputState.NEW, InputState.STARTED))
        started = self.store.get_input(item.input_id)
        self.assertEqual(started.state, InputState.STARTED)
        self.assertGreaterEqual(started.updated_at, item.updated_at)

    def test_count_inputs_by_state(self) -> None:
        task_id = self.store.create_task(["echo"], ["a", "b", "c"])
        first = self.store.page_inputs(task_id, 0, 1)[0]
        self.store.compare_and_set_state(first.input_id, InputState.NEW, InputState.STARTED)
        counts = self.store.count_inputs_by_state(task_id)
        self.assertEqual(counts, {"new": 2, "started": 1, "finished": 0, "failed": 0})

    def test_context_manager_closes_connection(self) -> None:
        with Store(self.db_path) as other:
            other.init_schema()
            self.assertEqual(list(other.list_tasks()), [])
        with self.assertRaises(sqlite3.ProgrammingError):
            other.conn.execute("SELECT 1")


if __name__ == "__main__":
    unittest.main()
