from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Protocol

from .app_logging import log_with_fields
from .models import CommandOutcome, InputState, RunSummary, TaskInput
from .runner import build_argv
from .statemachine import StateMachine
from .store import DEFAULT_PAGE_SIZE, Store


class Runner(Protocol):
    def run(self, argv: list[str]) -> CommandOutcome: ...


class InputResult(str, Enum):
    SKIPPED = "skipped"
    CLAIM_LOST = "claim_lost"
    FINISHED = "finished"
    FAILED = "failed"
    UNRECORDED = "unrecorded"


class Executor:
    """Drive every claimable input of a task to a terminal state.

    Inputs are read one page at a time in id order; each page is fanned out to
    a pool of ``concurrency`` threads and fully drained before the next page
    is fetched, so at most one page is held in memory.
    """

    def __init__(
        self,
        store: Store,
        runner: Runner,
        logger: logging.Logger,
        *,
        concurrency: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.store = store
        self.runner = runner
        self.logger = logger
        self.concurrency = concurrency
        self.page_size = page_size
        self.machine = StateMachine(store)

    def run(self, task_id: int) -> RunSummary:
        task = self.store.get_task(task_id)
        summary = RunSummary(task_id=task_id)
        log_with_fields(
            self.logger,
            logging.INFO,
            "run_started",
            task_id=task_id,
            concurrency=self.concurrency,
            page_size=self.page_size,
        )

        offset = 0
        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="taskqueue-worker") as pool:
            while True:
                page = self.store.page_inputs(task_id, offset, self.page_size)
                if not page:
                    break
                summary.pages += 1
                futures = [pool.submit(self._process_input, task.command, item) for item in page]
                self._drain(futures, page, summary)
                offset += len(page)

        log_with_fields(
            self.logger,
            logging.INFO,
            "run_finished",
            task_id=task_id,
            pages=summary.pages,
            executed=summary.executed,
            finished=summary.finished,
            failed=summary.failed,
            skipped=summary.skipped,
            claims_lost=summary.claims_lost,
        )
        return summary

    def _drain(
        self,
        futures: list[Future[InputResult]],
        page: list[TaskInput],
        summary: RunSummary,
    ) -> None:
        try:
            for future, item in zip(futures, page):
                self._record(summary, item, future.result())
        except BaseException:
            for future in futures:
                future.cancel()
            raise

    @staticmethod
    def _record(summary: RunSummary, item: TaskInput, result: InputResult) -> None:
        if result is InputResult.SKIPPED:
            summary.skipped += 1
            return
        if result is InputResult.CLAIM_LOST:
            summary.claims_lost += 1
            return
        summary.executed += 1
        if result is InputResult.FINISHED:
            summary.finished += 1
        elif result is InputResult.FAILED:
            summary.failed += 1
            summary.failed_input_ids.append(item.input_id)
        else:
            summary.unrecorded += 1

    def _process_input(self, command: list[str], item: TaskInput) -> InputResult:
        # Cheap pre-filter; the claim below is what guarantees exclusivity.
        if item.state in (InputState.FINISHED, InputState.STARTED):
            return InputResult.SKIPPED

        if not self.machine.claim(item):
            log_with_fields(
                self.logger,
                logging.DEBUG,
                "claim_lost",
                task_id=item.task_id,
                input_id=item.input_id,
                observed_state=item.state.value,
            )
            return InputResult.CLAIM_LOST

        argv = build_argv(command, item.value)
        log_with_fields(
            self.logger,
            logging.INFO,
            "input_started",
            task_id=item.task_id,
            input_id=item.input_id,
            value=item.value,
        )
        outcome = self.runner.run(argv)

        if not self.machine.resolve(item.input_id, outcome.ok):
            log_with_fields(
                self.logger,
                logging.WARNING,
                "resolution_not_recorded",
                task_id=item.task_id,
                input_id=item.input_id,
                succeeded=outcome.ok,
            )
            return InputResult.UNRECORDED

        if outcome.ok:
            log_with_fields(
                self.logger,
                logging.INFO,
                "input_finished",
                task_id=item.task_id,
                input_id=item.input_id,
            )
            return InputResult.FINISHED

        log_with_fields(
            self.logger,
            logging.WARNING,
            "input_failed",
            task_id=item.task_id,
            input_id=item.input_id,
            returncode=outcome.returncode,
            error=outcome.error,
        )
        return InputResult.FAILED
