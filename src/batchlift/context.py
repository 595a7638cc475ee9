"""
Scheduler context: registry of named buckets and their lifecycle.
"""

from __future__ import annotations

import asyncio
import threading
import typing as t

import structlog

from batchlift.config import (
    DEFAULT_BUCKET_ID,
    BucketConfig,
    SchedulerConfig,
    coerce_bucket_config,
    coerce_config,
)
from batchlift.core import Bucket, Executor
from batchlift.exceptions import ConfigurationError, ContextStoppedError, FetchAllError

log = structlog.get_logger(__name__)

R = t.TypeVar("R")
BucketOptions = BucketConfig | t.Mapping[str, t.Any] | None


class Context:
    """
    Own the named buckets of a scheduler and their triggers.

    Use ``Context.start`` to build a running context. The context can be used
    as an async context manager, which stops every trigger on exit.

    Parameters
    ----------
    executor : Executor | None
        Default executor for buckets without their own.
    execution_options : dict[str, typing.Any]
        Default executor options, overridden per bucket.
    loop : asyncio.AbstractEventLoop
        Loop owning futures and background tasks.
    flush_on_exit : bool, optional
        Run ``fetch_all`` before stopping when leaving ``async with``.
    """

    def __init__(
        self,
        *,
        executor: Executor | None,
        execution_options: dict[str, t.Any],
        loop: asyncio.AbstractEventLoop,
        flush_on_exit: bool = False,
    ) -> None:
        self._executor = executor
        self._execution_options = execution_options
        self._loop = loop
        self._flush_on_exit = flush_on_exit
        self._buckets: dict[str, Bucket] = {}
        self._buckets_lock = threading.Lock()
        self._stopped = False

    @classmethod
    def start(
        cls,
        config: SchedulerConfig | t.Mapping[str, t.Any] | None = None,
        *,
        executor: Executor | None = None,
        flush_on_exit: bool = False,
    ) -> Context:
        """
        Build a context and start every configured bucket and trigger.

        Parameters
        ----------
        config : SchedulerConfig | typing.Mapping[str, typing.Any] | None, optional
            Start configuration. A ``"default"`` bucket is added when absent.
        executor : Executor | None, optional
            Executor for buckets that do not configure their own.
        flush_on_exit : bool, optional
            Run ``fetch_all`` before stopping when leaving ``async with``.

        Returns
        -------
        Context
            Running context.

        Raises
        ------
        ConfigurationError
            If the configuration is invalid or a bucket has no executor.
        RuntimeError
            If no event loop is running.
        """
        scheduler_config = coerce_config(config=config).with_default_bucket()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as error:
            raise RuntimeError("Context.start must be called with a running event loop") from error

        context = cls(
            executor=executor,
            execution_options=dict(scheduler_config.execution_options),
            loop=loop,
            flush_on_exit=flush_on_exit,
        )
        started: list[Bucket] = []
        try:
            for bucket_id, bucket_config in scheduler_config.buckets.items():
                bucket = context._build_bucket(bucket_id=bucket_id, config=bucket_config)
                started.append(bucket.start())
        except Exception:
            for bucket in started:
                bucket.stop()
            raise
        with context._buckets_lock:
            context._buckets.update({bucket.id: bucket for bucket in started})
        log.info(event="Started context", bucket_ids=list(context._buckets))
        return context

    def _build_bucket(self, *, bucket_id: str, config: BucketConfig) -> Bucket:
        executor = config.executor or self._executor
        if executor is None:
            raise ConfigurationError(f"No executor configured for bucket {bucket_id!r}")
        return Bucket(
            bucket_id=bucket_id,
            executor=executor,
            execution_options={**self._execution_options, **config.execution_options},
            loop=self._loop,
            trigger_configs=config.triggers,
        )

    @property
    def bucket_ids(self) -> list[str]:
        with self._buckets_lock:
            return list(self._buckets)

    @property
    def stopped(self) -> bool:
        return self._stopped

    def bucket_for(self, bucket_id: str = DEFAULT_BUCKET_ID) -> Bucket:
        """
        Return the named bucket, or the default bucket for unknown ids.

        Parameters
        ----------
        bucket_id : str, optional
            Bucket identifier.

        Returns
        -------
        Bucket
            Resolved bucket.
        """
        with self._buckets_lock:
            bucket = self._buckets.get(bucket_id)
            if bucket is None:
                bucket = self._buckets[DEFAULT_BUCKET_ID]
        return bucket

    def pending_count(self, bucket_id: str = DEFAULT_BUCKET_ID) -> int:
        return len(self.bucket_for(bucket_id=bucket_id).queue)

    def enqueue(self, task: t.Any, bucket_id: str = DEFAULT_BUCKET_ID) -> asyncio.Future[t.Any]:
        """
        Queue a task in a bucket and return the future of its result.

        Parameters
        ----------
        task : typing.Any
            Opaque task descriptor for the executor.
        bucket_id : str, optional
            Target bucket. Unknown ids route to the default bucket.

        Returns
        -------
        asyncio.Future[typing.Any]
            Future settled with the task's result, or with the batch failure.
        """
        return self.bucket_for(bucket_id=bucket_id).enqueue(task=task)

    async def fetch(self, bucket_id: str = DEFAULT_BUCKET_ID) -> t.Sequence[t.Any] | None:
        """
        Flush one bucket now.

        Parameters
        ----------
        bucket_id : str, optional
            Bucket to flush. Unknown ids route to the default bucket.

        Returns
        -------
        typing.Sequence[typing.Any] | None
            Aggregate result, or ``None`` if the bucket queue was empty.
        """
        return await self.bucket_for(bucket_id=bucket_id).fetch()

    async def fetch_all(self) -> dict[str, t.Sequence[t.Any] | None]:
        """
        Flush every bucket once, one after the other.

        Returns
        -------
        dict[str, typing.Sequence[typing.Any] | None]
            Aggregate result per bucket id.

        Raises
        ------
        FetchAllError
            If at least one bucket failed. Every bucket is still attempted.
        """
        with self._buckets_lock:
            buckets = list(self._buckets.values())
        results: dict[str, t.Sequence[t.Any] | None] = {}
        errors: dict[str, BaseException] = {}
        for bucket in buckets:
            try:
                results[bucket.id] = await bucket.fetch()
            except Exception as error:
                errors[bucket.id] = error
        if errors:
            raise FetchAllError(errors=errors)
        return results

    def add_bucket(self, bucket_id: str, config: BucketOptions = None) -> Bucket:
        """
        Register and start a bucket on a running context.

        Parameters
        ----------
        bucket_id : str
            Bucket identifier. An existing bucket with this id is replaced and
            its triggers are left running.
        config : BucketConfig | typing.Mapping[str, typing.Any] | None, optional
            Bucket configuration.

        Returns
        -------
        Bucket
            The started bucket.

        Raises
        ------
        ContextStoppedError
            If the context was stopped before or while adding the bucket.
        """
        if self._stopped:
            raise ContextStoppedError(f"Cannot add bucket {bucket_id!r} to a stopped context")
        bucket = self._build_bucket(
            bucket_id=bucket_id,
            config=coerce_bucket_config(config=config),
        ).start()
        with self._buckets_lock:
            stopped_meanwhile = self._stopped
            previous = None if stopped_meanwhile else self._buckets.get(bucket_id)
            if not stopped_meanwhile:
                self._buckets[bucket_id] = bucket
        if stopped_meanwhile:
            bucket.stop()
            raise ContextStoppedError(f"Context stopped while adding bucket {bucket_id!r}")
        if previous is not None:
            log.warning(
                event="Replaced bucket, previous triggers left running",
                bucket_id=bucket_id,
                previous_triggers=list(previous.triggers),
            )
        log.info(event="Added bucket", bucket_id=bucket_id, triggers=list(bucket.triggers))
        return bucket

    def add_bucket_after(
        self,
        awaitable: t.Awaitable[R],
        bucket_id: str,
        options_producer: t.Callable[[R], BucketOptions],
    ) -> asyncio.Task[R]:
        """
        Add a bucket configured from the result of an earlier async operation.

        Parameters
        ----------
        awaitable : typing.Awaitable[R]
            Operation whose result configures the bucket.
        bucket_id : str
            Identifier of the bucket to add.
        options_producer : typing.Callable[[R], BucketOptions]
            Builds the bucket configuration from the awaited result.

        Returns
        -------
        asyncio.Task[R]
            Task resolving to the awaited result, unchanged, once the bucket
            was added. If the awaitable fails, no bucket is added.
        """

        async def add_then_pass_through() -> R:
            result = await awaitable
            self.add_bucket(bucket_id=bucket_id, config=options_producer(result))
            return result

        return self._loop.create_task(
            coro=add_then_pass_through(),
            name=f"batchlift_add_bucket_{bucket_id}",
        )

    def stop(self) -> Context:
        """
        Stop every trigger of every bucket.

        Queued tasks are neither fetched nor resolved. Calling ``stop`` again
        is harmless.

        Returns
        -------
        Context
            This context.
        """
        with self._buckets_lock:
            buckets = list(self._buckets.values())
            already_stopped, self._stopped = self._stopped, True
        for bucket in buckets:
            bucket.stop()
        if not already_stopped:
            log.info(event="Stopped context", bucket_ids=[bucket.id for bucket in buckets])
        return self

    async def __aenter__(self) -> Context:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        """
        Stop the context, flushing every bucket first when ``flush_on_exit``.

        Parameters
        ----------
        exc_type : type[BaseException] | None
            Exception type, if any.
        exc_val : BaseException | None
            Exception value, if any.
        exc_tb : typing.Any
            Exception traceback, if any.
        """
        try:
            if self._flush_on_exit and exc_type is None:
                await self.fetch_all()
        finally:
            self.stop()

    def __repr__(self) -> str:
        state = "stopped" if self._stopped else "running"
        return f"<Context buckets={self.bucket_ids} {state}>"
