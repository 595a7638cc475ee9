"""
Core engine: buckets, their pending queues and the batch fetcher.

A bucket accumulates ``PendingTask`` objects. A fetch claims the whole queue in
one step, hands the task descriptors to the executor and settles each task's
future from the aggregate result.
"""

from __future__ import annotations

import asyncio
import typing as t
from dataclasses import dataclass

import structlog

from batchlift.cache import CACHE_OPTION_KEY, CacheAdapter, resolve_cache
from batchlift.exceptions import BatchResultError
from batchlift.task_queue import TaskQueue
from batchlift.triggers import Trigger, start_trigger

log = structlog.get_logger(__name__)

Executor = t.Callable[
    [list[t.Any], dict[str, t.Any]],
    t.Awaitable[tuple[t.Sequence[t.Any], t.Any]],
]


@dataclass
class PendingTask:
    """A task waiting to be batched."""

    task: t.Any
    future: asyncio.Future[t.Any]


class Bucket:
    """
    Named accumulation unit: one queue, its triggers, options and cache.

    Parameters
    ----------
    bucket_id : str
        Bucket identifier.
    executor : Executor
        Async callable running a batch of task descriptors.
    execution_options : dict[str, typing.Any]
        Merged executor options (context defaults overridden by the bucket).
    loop : asyncio.AbstractEventLoop
        Loop owning the task futures and the trigger background tasks.
    trigger_configs : typing.Mapping[str, typing.Any] | None, optional
        Trigger kind to configuration, started by ``start``.
    """

    def __init__(
        self,
        *,
        bucket_id: str,
        executor: Executor,
        execution_options: dict[str, t.Any],
        loop: asyncio.AbstractEventLoop,
        trigger_configs: t.Mapping[str, t.Any] | None = None,
    ) -> None:
        self.id = bucket_id
        self.executor = executor
        self.execution_options = execution_options
        self.loop = loop
        self.queue: TaskQueue[PendingTask] = TaskQueue(name=bucket_id)
        self.cache: CacheAdapter | None = resolve_cache(execution_options=execution_options)
        self.triggers: dict[str, Trigger] = {}
        self._trigger_configs = dict(trigger_configs or {})

    def start(self) -> Bucket:
        """
        Start every configured trigger, each independently.

        Returns
        -------
        Bucket
            This bucket.
        """
        log.debug(
            event="Starting bucket",
            bucket_id=self.id,
            trigger_count=len(self._trigger_configs),
        )
        try:
            for kind, config in self._trigger_configs.items():
                self.triggers[kind] = start_trigger(bucket=self, kind=kind, config=config)
        except Exception:
            self.stop()
            raise
        return self

    def stop(self) -> None:
        """Stop every trigger of this bucket. Queued tasks stay queued."""
        for trigger in self.triggers.values():
            trigger.stop()

    def enqueue(self, task: t.Any) -> asyncio.Future[t.Any]:
        """
        Queue a task descriptor and return the future of its individual result.

        Parameters
        ----------
        task : typing.Any
            Opaque task descriptor, passed to the executor unchanged.

        Returns
        -------
        asyncio.Future[typing.Any]
            Future settled when the batch containing ``task`` completes.
        """
        future: asyncio.Future[t.Any] = self.loop.create_future()
        pending_count = self.queue.append(PendingTask(task=task, future=future))
        log.debug(event="Queued task", bucket_id=self.id, pending_count=pending_count)
        return future

    def claim(self) -> list[PendingTask]:
        """
        Atomically take every queued task.

        Returns
        -------
        list[PendingTask]
            Claimed tasks in insertion order, possibly empty.
        """
        return self.queue.drain()

    async def fetch(self) -> t.Sequence[t.Any] | None:
        """
        Claim the queue and execute the claimed tasks as one batch.

        Returns
        -------
        typing.Sequence[typing.Any] | None
            The executor's aggregate result, or ``None`` if the queue was empty.
        """
        return await self.execute(pending=self.claim())

    async def execute(self, *, pending: list[PendingTask]) -> t.Sequence[t.Any] | None:
        """
        Run already claimed tasks through the executor and settle their futures.

        Parameters
        ----------
        pending : list[PendingTask]
            Tasks claimed from this bucket's queue.

        Returns
        -------
        typing.Sequence[typing.Any] | None
            The executor's aggregate result, or ``None`` if ``pending`` is empty.

        Raises
        ------
        BatchResultError
            If the executor result does not match the claimed tasks.
        Exception
            Any failure of the cache adapter or the executor, after every claimed
            future was failed with it.
        """
        if not pending:
            return None

        tasks = [item.task for item in pending]
        log.info(event="Executing batch", bucket_id=self.id, task_count=len(tasks))
        try:
            options = self._executor_options()
            outcome = await self.executor(tasks, options)
            results, new_cache_value = self._unpack_outcome(outcome=outcome, task_count=len(tasks))
            if self.cache is not None:
                self.cache.replace(new_cache_value)
        except asyncio.CancelledError:
            for item in pending:
                item.future.cancel()
            raise
        except Exception as error:
            log.error(
                event="Batch execution failed",
                bucket_id=self.id,
                task_count=len(tasks),
                error=str(object=error),
            )
            for item in pending:
                if not item.future.done():
                    item.future.set_exception(error)
            raise

        for item, result in zip(pending, results):
            if not item.future.done():
                item.future.set_result(result)
        log.debug(event="Batch resolved", bucket_id=self.id, task_count=len(tasks))
        return results

    def _executor_options(self) -> dict[str, t.Any]:
        options = dict(self.execution_options)
        options.pop(CACHE_OPTION_KEY, None)
        if self.cache is not None:
            options[CACHE_OPTION_KEY] = self.cache.read()
        return options

    @staticmethod
    def _unpack_outcome(*, outcome: t.Any, task_count: int) -> tuple[t.Sequence[t.Any], t.Any]:
        if not isinstance(outcome, tuple) or len(outcome) != 2:
            raise BatchResultError(
                "Executor must return a (results, cache) pair, "
                f"got {type(outcome).__name__}"
            )
        results, new_cache_value = outcome
        if isinstance(results, (str, bytes)) or not isinstance(results, t.Sequence):
            raise BatchResultError(
                f"Executor results must be a sequence, got {type(results).__name__}"
            )
        if len(results) != task_count:
            raise BatchResultError(
                f"Executor returned {len(results)} result(s) for {task_count} task(s)"
            )
        return results, new_cache_value

    def __repr__(self) -> str:
        return f"<Bucket id={self.id!r} pending={len(self.queue)} triggers={list(self.triggers)}>"
