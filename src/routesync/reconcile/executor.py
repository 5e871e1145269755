from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence, TypeVar, Union

from loguru import logger

T = TypeVar("T")

Job = Callable[[], Awaitable[T]]


@dataclass(frozen=True)
class JobFailure:
    """Placeholder for a job that raised. ``index`` is its submission position."""

    index: int
    error: BaseException
    label: Optional[str] = None


def is_failure(outcome: object) -> bool:
    return isinstance(outcome, JobFailure)


def partition_lanes(count: int, max_parallel: int) -> list[list[int]]:
    """Round-robin job indexes into ``max_parallel`` lanes."""
    if max_parallel < 1:
        raise ValueError("max_parallel must be >= 1")
    lanes: list[list[int]] = [[] for _ in range(max_parallel)]
    for i in range(count):
        lanes[i % max_parallel].append(i)
    return lanes


async def run_bounded(
    jobs: Sequence[Job],
    max_parallel: int,
    labels: Optional[Sequence[str]] = None,
) -> list[Union[T, JobFailure]]:
    """
    Run jobs in at most ``max_parallel`` concurrent lanes.

    Each lane runs its jobs one after the other. A failing job is logged and
    replaced by a JobFailure; it never stops its lane or the other lanes.
    Outcomes come back lane by lane, so they are not in submission order.
    """
    lanes = partition_lanes(len(jobs), max_parallel)
    if not jobs:
        return []

    async def _lane(indexes: list[int]) -> list[Union[T, JobFailure]]:
        out: list[Union[T, JobFailure]] = []
        for i in indexes:
            label = labels[i] if labels is not None else None
            try:
                out.append(await jobs[i]())
            except Exception as e:
                logger.error("Job {} failed: {}", label or i, e)
                out.append(JobFailure(index=i, error=e, label=label))
        return out

    per_lane = await asyncio.gather(*(_lane(idx) for idx in lanes if idx))
    return [outcome for lane in per_lane for outcome in lane]


def count_failures(outcomes: Sequence[object]) -> int:
    return sum(1 for o in outcomes if is_failure(o))
