"""Fail-fast sequential execution of named build tasks."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from prerender.errors import TaskFailure

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Task:
    """Named zero-argument unit of work."""

    name: str
    action: Callable[[], None]


def run_task_sequence(
    tasks: Sequence[Task],
    *,
    logger: logging.Logger | None = None,
) -> None:
    """Run tasks strictly in order, stopping at the first failure.

    Raises ``TaskFailure`` naming the failed task; tasks after it are never
    started.
    """

    effective_logger = logger or LOGGER
    for task in tasks:
        effective_logger.info("task.start name=%s", task.name)
        started_mono = time.monotonic()
        try:
            task.action()
        except Exception as exc:
            effective_logger.error(
                "task.failed name=%s elapsed_sec=%.2f error=%s",
                task.name,
                time.monotonic() - started_mono,
                exc,
            )
            raise TaskFailure(task.name, exc) from exc
        effective_logger.info(
            "task.done name=%s elapsed_sec=%.2f",
            task.name,
            time.monotonic() - started_mono,
        )
