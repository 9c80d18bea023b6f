from __future__ import annotations

import logging
from dataclasses import dataclass

from .app_logging import log_with_fields
from .store import Store


@dataclass(slots=True)
class ReclaimReport:
    finished_inputs_deleted: int
    tasks_deleted: int
    started_inputs_failed: int
    vacuumed: bool


class Reclaimer:
    """Maintenance pass over the whole store.

    Deletes finished inputs, then tasks left without inputs, then marks every
    input still ``started`` as ``failed``. A ``started`` input can only survive
    across runs when its worker died, so this must never run alongside a live
    executor on the same store.
    """

    def __init__(self, store: Store, logger: logging.Logger) -> None:
        self.store = store
        self.logger = logger

    def clean(self, *, vacuum: bool = True) -> ReclaimReport:
        counts = self.store.reclaim()
        if vacuum:
            self.store.vacuum()
        report = ReclaimReport(
            finished_inputs_deleted=counts.finished_inputs_deleted,
            tasks_deleted=counts.tasks_deleted,
            started_inputs_failed=counts.started_inputs_failed,
            vacuumed=vacuum,
        )
        if report.started_inputs_failed:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "abandoned_inputs_failed",
                count=report.started_inputs_failed,
            )
        log_with_fields(
            self.logger,
            logging.INFO,
            "reclaim_finished",
            finished_inputs_deleted=report.finished_inputs_deleted,
            tasks_deleted=report.tasks_deleted,
            started_inputs_failed=report.started_inputs_failed,
            vacuumed=report.vacuumed,
        )
        return report
