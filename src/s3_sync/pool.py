# src/s3_sync/pool.py
"""
A bounded asyncio worker pool.

Every parallel phase of a sync run (timestamp pre-filter, checksum comparison,
transfers and deletions) goes through `bounded_map`: a fixed number of worker
tasks drain a shared queue, each appending to its own result list. The lists
are merged once the queue is drained, so no two workers ever write to the same
accumulator and the phase ends with a full barrier.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar

logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def _worker(
    worker_id: int,
    queue: "asyncio.Queue[T]",
    func: Callable[[T], Awaitable[R]],
    results: List[R],
    shutdown_event: Optional[asyncio.Event],
) -> None:
    """
    Pull items until the queue is empty or a shutdown is requested.

    Args:
        worker_id (int): A unique identifier for this worker.
        queue (asyncio.Queue[T]): The shared work queue.
        func (Callable[[T], Awaitable[R]]): The per-item coroutine.
        results (List[R]): This worker's private result list.
        shutdown_event (asyncio.Event, optional): Stops the worker when set.
    """
    while True:
        if shutdown_event is not None and shutdown_event.is_set():
            logger.debug(f"Worker {worker_id} stopping on shutdown.")
            return
        try:
            item: T = queue.get_nowait()
        except asyncio.QueueEmpty:
            return
        try:
            results.append(await func(item))
        finally:
            queue.task_done()


async def bounded_map(
    items: Iterable[T],
    func: Callable[[T], Awaitable[R]],
    limit: int,
    shutdown_event: Optional[asyncio.Event] = None,
) -> List[R]:
    """
    Apply `func` to every item with at most `limit` calls in flight.

    Results come back in completion order, not input order. When
    `shutdown_event` is set, workers finish their current item and stop, and
    the results gathered so far are returned.

    Args:
        items (Iterable[T]): The work items.
        func (Callable[[T], Awaitable[R]]): Coroutine applied to each item.
            It must handle its own per-item errors; an exception escaping it
            cancels the whole phase.
        limit (int): Maximum number of concurrent workers.
        shutdown_event (asyncio.Event, optional): Cooperative cancellation.

    Returns:
        List[R]: The merged results of all workers.
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")

    queue: "asyncio.Queue[T]" = asyncio.Queue()
    for item in items:
        queue.put_nowait(item)
    if queue.empty():
        return []

    num_workers: int = min(limit, queue.qsize())
    partitions: List[List[R]] = [[] for _ in range(num_workers)]
    worker_tasks: List["asyncio.Task[None]"] = [
        asyncio.create_task(_worker(i, queue, func, partitions[i], shutdown_event))
        for i in range(num_workers)
    ]
    try:
        await asyncio.gather(*worker_tasks)
    except BaseException:
        for task in worker_tasks:
            task.cancel()
        await asyncio.gather(*worker_tasks, return_exceptions=True)
        raise

    return [result for partition in partitions for result in partition]
