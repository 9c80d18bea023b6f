from __future__ import annotations

import argparse
import logging
import sys
from typing import TextIO

from .app_logging import LOGGER_NAME, log_with_fields, setup_logger
from .config import AppConfig, ensure_local_paths, load_config
from .executor import Executor
from .models import InputState
from .reclaimer import Reclaimer
from .runner import CommandRunner
from .store import NotFoundError, StorageError, Store
from .utils import format_command, read_input_lines


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tq", description="Interact with your local task queue.")
    parser.add_argument("--config", default=None, help="Path to YAML config (default: $TQ_CONFIG)")
    parser.add_argument("--verbose", action="store_true", help="Add extra logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create", help="Create a task; inputs are read from stdin, one per line")
    create.add_argument("template", nargs=argparse.REMAINDER, help="Command and fixed arguments")

    delete = subparsers.add_parser("delete", help="Delete tasks and their inputs")
    delete.add_argument("task_ids", nargs="+", type=int)

    subparsers.add_parser("list", help="List tasks")

    run = subparsers.add_parser("run", help="Run every pending input of a task")
    run.add_argument("task_id", type=int)
    run.add_argument("--concurrency", type=int, default=None, help="How many inputs to run in parallel")
    run.add_argument("--page-size", type=int, default=None, help="Inputs fetched per page")
    run.add_argument("--timeout", type=float, default=None, help="Per-command timeout in seconds")

    show = subparsers.add_parser("show", help="Show a task and the state of its inputs")
    show.add_argument("task_id", type=int)

    clean = subparsers.add_parser("clean", help="Sweep finished work and fail abandoned inputs")
    clean.add_argument("--no-vacuum", action="store_true", help="Skip compacting the store")
    return parser


def _open_store(config: AppConfig) -> Store:
    ensure_local_paths(config)
    store = Store(config.paths.db)
    try:
        store.init_schema()
    except StorageError:
        store.close()
        raise
    return store


def cmd_create(config: AppConfig, template: list[str], stream: TextIO) -> int:
    if template and template[0] == "--":
        template = template[1:]
    if not template:
        print("create requires a command", file=sys.stderr)
        return 2
    inputs = read_input_lines(stream)
    with _open_store(config) as store:
        task_id = store.create_task(template, inputs)
    log_with_fields(
        logging.getLogger(LOGGER_NAME),
        logging.INFO,
        "task_created",
        task_id=task_id,
        inputs=len(inputs),
    )
    print(task_id)
    return 0


def cmd_delete(config: AppConfig, task_ids: list[int]) -> int:
    logger = logging.getLogger(LOGGER_NAME)
    with _open_store(config) as store:
        for task_id in task_ids:
            existed = store.delete_task(task_id)
            log_with_fields(logger, logging.INFO, "task_deleted", task_id=task_id, existed=existed)
    return 0


def cmd_list(config: AppConfig) -> int:
    with _open_store(config) as store:
        for summary in store.list_tasks():
            print(
                f"[{summary.task_id}] {summary.created_at} --- "
                f"{summary.input_count} inputs --- {format_command(summary.command)}"
            )
    return 0


def cmd_run(
    config: AppConfig,
    task_id: int,
    *,
    concurrency: int | None = None,
    page_size: int | None = None,
    timeout: float | None = None,
) -> int:
    timeout = timeout if timeout is not None else config.run.timeout_seconds
    if timeout is not None and timeout <= 0:
        raise ValueError("--timeout must be > 0")
    runner = CommandRunner(timeout_seconds=timeout)
    with _open_store(config) as store:
        executor = Executor(
            store,
            runner,
            logging.getLogger(LOGGER_NAME),
            concurrency=concurrency if concurrency is not None else config.run.concurrency,
            page_size=page_size if page_size is not None else config.run.page_size,
        )
        try:
            summary = executor.run(task_id)
        except NotFoundError as exc:
            print(str(exc), file=sys.stderr)
            return 2
    print(
        f"task {task_id}: {summary.finished} finished, {summary.failed} failed, "
        f"{summary.skipped + summary.claims_lost} skipped"
    )
    return 0


def cmd_show(config: AppConfig, task_id: int) -> int:
    with _open_store(config) as store:
        try:
            task = store.get_task(task_id)
        except NotFoundError as exc:
            print(str(exc), file=sys.stderr)
            return 2
        counts = store.count_inputs_by_state(task_id)
        print(format_command(task.command))
        print("  " + " ".join(f"{state.value}={counts[state.value]}" for state in InputState))
        for item in store.iter_inputs(task_id):
            print(f"  [{item.state.value}] {item.value}")
    return 0


def cmd_clean(config: AppConfig, *, vacuum: bool) -> int:
    with _open_store(config) as store:
        report = Reclaimer(store, logging.getLogger(LOGGER_NAME)).clean(vacuum=vacuum)
    print(
        f"removed {report.finished_inputs_deleted} finished inputs, "
        f"{report.tasks_deleted} empty tasks; "
        f"marked {report.started_inputs_failed} abandoned inputs as failed"
    )
    return 0


def main(argv: list[str] | None = None, stdin: TextIO | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = load_config(args.config)
    ensure_local_paths(config)
    logger = setup_logger(config.paths.log, verbose=bool(args.verbose))

    try:
        if args.command == "create":
            return cmd_create(config, list(args.template), stdin or sys.stdin)
        if args.command == "delete":
            return cmd_delete(config, args.task_ids)
        if args.command == "list":
            return cmd_list(config)
        if args.command == "run":
            return cmd_run(
                config,
                args.task_id,
                concurrency=args.concurrency,
                page_size=args.page_size,
                timeout=args.timeout,
            )
        if args.command == "show":
            return cmd_show(config, args.task_id)
        if args.command == "clean":
            return cmd_clean(config, vacuum=config.reclaim.vacuum and not args.no_vacuum)
    except StorageError as exc:
        log_with_fields(logger, logging.ERROR, "storage_error", command=args.command, error=str(exc))
        print(f"storage error: {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
