"""Bounded-concurrency execution of independent async jobs.

A fixed pool of workers pulls jobs from a shared cursor so that at most
``limit`` jobs are in flight at once. Each job settles on its own: a failure
is captured in its outcome and never cancels the others.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class JobOutcome(Generic[T]):
    """Settled result of one job: exactly one of `value` / `error` is meaningful."""

    index: int
    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_with_concurrency_limit(
    jobs: Sequence[Callable[[], Awaitable[T]]],
    limit: int,
) -> list[JobOutcome[T]]:
    """Run ``jobs`` with at most ``limit`` executing concurrently.

    Args:
        jobs: Zero-argument callables, each returning an awaitable.
        limit: Maximum number of jobs in flight (must be >= 1).

    Returns:
        One outcome per job, in input order.

    Raises:
        ValueError: If ``limit`` is lower than 1.
    """
    if limit < 1:
        raise ValueError(f"Concurrency limit must be at least 1, got {limit}")
    if not jobs:
        return []

    outcomes: list[JobOutcome[T] | None] = [None] * len(jobs)
    cursor = 0

    async def worker() -> None:
        nonlocal cursor
        while cursor < len(jobs):
            index = cursor
            cursor += 1
            try:
                value = await jobs[index]()
            except Exception as exc:  # noqa: BLE001 - captured in the outcome
                logger.warning("Job %d failed: %s", index, exc)
                outcomes[index] = JobOutcome(index=index, error=exc)
            else:
                outcomes[index] = JobOutcome(index=index, value=value)

    workers: list[Any] = [worker() for _ in range(min(limit, len(jobs)))]
    await asyncio.gather(*workers)
    return [outcome for outcome in outcomes if outcome is not None]
