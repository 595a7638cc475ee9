"""
Functional entry points over ``Context``.

Typical use, inside a running event loop::

    async def executor(tasks, options):
        return [task * 2 for task in tasks], options["cache"]

    context = start(
        {"buckets": {"default": {"triggers": {"queue-size": {"threshold": 2}}}}},
        executor=executor,
    )
    first, second = enqueue(context, 1), enqueue(context, 2)
    assert await first == 2
"""

import asyncio
import typing as t

from batchlift.config import DEFAULT_BUCKET_ID, SchedulerConfig
from batchlift.context import BucketOptions, Context
from batchlift.core import Bucket, Executor

R = t.TypeVar("R")


def start(
    config: SchedulerConfig | t.Mapping[str, t.Any] | None = None,
    *,
    executor: Executor | None = None,
    flush_on_exit: bool = False,
) -> Context:
    """
    Start a context; see ``Context.start``.

    Parameters
    ----------
    config : SchedulerConfig | typing.Mapping[str, typing.Any] | None, optional
        Start configuration.
    executor : Executor | None, optional
        Default executor.
    flush_on_exit : bool, optional
        Flush every bucket when leaving ``async with``.

    Returns
    -------
    Context
        Running context.
    """
    return Context.start(config, executor=executor, flush_on_exit=flush_on_exit)


def stop(context: Context) -> Context:
    """Stop every trigger of ``context``; queued tasks are left untouched."""
    return context.stop()


def bucket_for(context: Context, bucket_id: str = DEFAULT_BUCKET_ID) -> Bucket:
    return context.bucket_for(bucket_id=bucket_id)


def enqueue(
    context: Context, task: t.Any, bucket_id: str = DEFAULT_BUCKET_ID
) -> asyncio.Future[t.Any]:
    """
    Queue ``task`` and return the future of its individual result.

    Parameters
    ----------
    context : Context
        Running context.
    task : typing.Any
        Opaque task descriptor.
    bucket_id : str, optional
        Target bucket, the default bucket for unknown ids.

    Returns
    -------
    asyncio.Future[typing.Any]
        Future of the task result.
    """
    return context.enqueue(task=task, bucket_id=bucket_id)


async def fetch(context: Context, bucket_id: str = DEFAULT_BUCKET_ID) -> t.Sequence[t.Any] | None:
    return await context.fetch(bucket_id=bucket_id)


async def fetch_all(context: Context) -> dict[str, t.Sequence[t.Any] | None]:
    return await context.fetch_all()


def add_bucket(context: Context, bucket_id: str, config: BucketOptions = None) -> Bucket:
    return context.add_bucket(bucket_id=bucket_id, config=config)


def add_bucket_after(
    awaitable: t.Awaitable[R],
    context: Context,
    bucket_id: str,
    options_producer: t.Callable[[R], BucketOptions],
) -> asyncio.Task[R]:
    """
    Add a bucket once ``awaitable`` succeeds, passing its result through.

    Parameters
    ----------
    awaitable : typing.Awaitable[R]
        Earlier async operation.
    context : Context
        Running context.
    bucket_id : str
        Bucket to add.
    options_producer : typing.Callable[[R], BucketOptions]
        Builds the bucket configuration from the result.

    Returns
    -------
    asyncio.Task[R]
        Task resolving to the unchanged result.
    """
    return context.add_bucket_after(
        awaitable=awaitable,
        bucket_id=bucket_id,
        options_producer=options_producer,
    )
