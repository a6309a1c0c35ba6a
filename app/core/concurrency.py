"""Bounded worker pool for asyncio fan-out."""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar


T = TypeVar("T")


async def run_bounded(
    items: Sequence[T],
    handler: Callable[[int, T], Awaitable[None]],
    concurrency: int,
) -> None:
    """Drain ``items`` with at most ``concurrency`` handlers running at once.

    Workers claim the next unclaimed item from a shared queue until it is empty,
    so completion order is not the item order. ``handler`` receives the item's
    index and the item; it is expected to record its own failures. If one
    raises anyway, the remaining workers are cancelled and its error propagates.
    """
    if not items:
        return

    queue: asyncio.Queue[tuple[int, T]] = asyncio.Queue()
    for index, item in enumerate(items):
        queue.put_nowait((index, item))

    async def worker() -> None:
        while True:
            try:
                index, item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            await handler(index, item)

    worker_count = max(1, min(concurrency, len(items)))
    try:
        async with asyncio.TaskGroup() as group:
            for _ in range(worker_count):
                group.create_task(worker())
    except ExceptionGroup as eg:
        raise eg.exceptions[0]


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into consecutive lists of at most ``size`` elements."""
    if size < 1:
        raise ValueError("Chunk size must be at least 1")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


__all__ = ["run_bounded", "chunked"]
