from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import mock
import os
import unittest

from taskqueue.config import ensure_local_paths, load_config


class ConfigTest(unittest.TestCase):
    def test_load_config(self) -> None:
        with TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            config_path = root / "tq.yaml"
            config_path.write_text(
                """
paths:
  db: "./state/tq.sqlite"
  log: "./logs/tq.log"
run:
  concurrency: 4
  page_size: 50
  timeout_seconds: 30
reclaim:
  vacuum: false
""".strip(),
                encoding="utf-8",
            )
            config = load_config(config_path)
            self.assertEqual(config.paths.db.resolve(), (root / "state" / "tq.sqlite").resolve())
            assert config.paths.log is not None
            self.assertEqual(config.paths.log.resolve(), (root / "logs" / "tq.log").resolve())
            self.assertEqual(config.run.concurrency, 4)
            self.assertEqual(config.run.page_size, 50)
            self.assertEqual(config.run.timeout_seconds, 30.0)
            self.assertFalse(config.reclaim.vacuum)

            ensure_local_paths(config)
            self.assertTrue((root / "state").is_dir())
            self.assertTrue((root / "logs").is_dir())

    def test_defaults_without_file(self) -> None:
        with mock.patch.dict(os.environ, {"TQ_DB": "/tmp/custom.sqlite"}, clear=False):
            os.environ.pop("TQ_CONFIG", None)
            config = load_config(None)
        self.assertEqual(config.paths.db, Path("/tmp/custom.sqlite"))
        self.assertIsNone(config.paths.log)
        self.assertEqual(config.run.concurrency, 1)
        self.assertEqual(config.run.page_size, 100)
        self.assertIsNone(config.run.timeout_seconds)
        self.assertTrue(config.reclaim.vacuum)

    def test_config_from_environment(self) -> None:
        with TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "tq.yaml"
            config_path.write_text("run:\n  concurrency: 2\n", encoding="utf-8")
            with mock.patch.dict(os.environ, {"TQ_CONFIG": str(config_path)}):
                os.environ.pop("TQ_DB", None)
                config = load_config()
            self.assertEqual(config.run.concurrency, 2)
            self.assertEqual(config.paths.db.resolve(), (Path(temp_dir) / "tq.sqlite").resolve())

    def test_invalid_values(self) -> None:
        cases = [
            "run:\n  concurrency: 0\n",
            "run:\n  page_size: -1\n",
            "run:\n  timeout_seconds: 0\n",
            "reclaim:\n  vacuum: sometimes\n",
            "paths: [1, 2]\n",
            "- just\n- a list\n",
        ]
        with TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "tq.yaml"
            for text in cases:
                config_path.write_text(text, encoding="utf-8")
                with self.subTest(text=text):
                    with self.assertRaises(ValueError):
                        load_config(config_path)


if __name__ == "__main__":
    unittest.main()
