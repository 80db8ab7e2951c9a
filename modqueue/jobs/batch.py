"""Bounded-concurrency batch scanning.

Work is split into groups of ``group_size``; each group runs on a thread pool
of at most ``max_workers`` and the next group starts only after the current
one has finished, with ``pause`` seconds in between.  A failing item is
recorded in the report and never stops the rest of the batch.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Generic, Hashable, Iterable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class BatchReport(Generic[R]):
    processed: int = 0
    groups: int = 0
    results: dict[Hashable, R] = field(default_factory=dict)
    failures: dict[Hashable, str] = field(default_factory=dict)

    @property
    def failed(self) -> int:
        return len(self.failures)


class BatchScanner:
    def __init__(
        self,
        group_size: int = 10,
        max_workers: int = 4,
        pause: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if group_size < 1 or max_workers < 1:
            raise ValueError("group_size and max_workers must be positive")
        self.group_size = group_size
        self.max_workers = max_workers
        self.pause = max(0.0, pause)
        self._sleep = sleep

    def scan(
        self,
        items: Iterable[T],
        work: Callable[[T], R],
        key: Callable[[T], Hashable] = lambda item: item,
    ) -> BatchReport[R]:
        """Run ``work`` over ``items`` and collect results by ``key``."""
        pending = list(items)
        report: BatchReport[R] = BatchReport()
        if not pending:
            return report

        workers = min(self.max_workers, self.group_size)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="modqueue-scan") as pool:
            for start in range(0, len(pending), self.group_size):
                if start:
                    self._sleep(self.pause)
                group = pending[start : start + self.group_size]
                futures = [(key(item), pool.submit(work, item)) for item in group]
                for item_key, future in futures:
                    try:
                        report.results[item_key] = future.result()
                    except Exception as exc:
                        logger.warning("Scan of %s failed: %s", item_key, exc)
                        report.failures[item_key] = str(exc) or type(exc).__name__
                    report.processed += 1
                report.groups += 1

        logger.info(
            "Scanned %d item(s) in %d group(s), %d failure(s)",
            report.processed,
            report.groups,
            report.failed,
        )
        return report
