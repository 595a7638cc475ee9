"""
Tests for the Bucket class and the batch fetcher in batchlift.core.
"""

import asyncio
import typing as t

import pytest

from batchlift.cache import CacheAdapter, InMemoryCache
from batchlift.context import Context
from batchlift.core import Bucket, PendingTask
from batchlift.exceptions import BatchResultError
from tests.mocks.caches import SnapshotCache, UnreachableCache
from tests.mocks.executors import MalformedExecutor, RecordingExecutor


@pytest.fixture
def bucket(executor: RecordingExecutor) -> t.Iterator[Bucket]:
    """
    Create a trigger-less bucket on a private event loop.

    Returns
    -------
    Bucket
        Bucket with default execution options.
    """
    loop = asyncio.new_event_loop()
    yield Bucket(bucket_id="b", executor=executor, execution_options={}, loop=loop)
    loop.close()


def test_bucket_initialization(bucket: Bucket) -> None:
    assert bucket.id == "b"
    assert len(bucket.queue) == 0
    assert bucket.triggers == {}
    assert isinstance(bucket.cache, InMemoryCache)
    assert bucket.cache.read() == {}


def test_enqueue_returns_pending_future_immediately(bucket: Bucket) -> None:
    future = bucket.enqueue(task="a")

    assert isinstance(future, asyncio.Future)
    assert not future.done()
    assert bucket.queue.snapshot() == [PendingTask(task="a", future=future)]


def test_claim_is_take_all_and_clear(bucket: Bucket) -> None:
    futures = [bucket.enqueue(task=index) for index in range(3)]

    claimed = bucket.claim()

    assert [item.task for item in claimed] == [0, 1, 2]
    assert [item.future for item in claimed] == futures
    assert bucket.claim() == []


@pytest.mark.asyncio
async def test_fetch_on_empty_queue_is_a_no_op(executor: RecordingExecutor) -> None:
    async with Context.start(executor=executor) as context:
        assert await context.fetch() is None
        assert await context.fetch() is None

    assert executor.calls == []


@pytest.mark.asyncio
async def test_executor_receives_original_task_descriptors(executor: RecordingExecutor) -> None:
    descriptors = [{"id": 1}, {"id": 2}]
    async with Context.start(executor=executor) as context:
        for descriptor in descriptors:
            context.enqueue(task=descriptor)
        await context.fetch()

    received = executor.batches[0]
    assert received == descriptors
    assert all(got is sent for got, sent in zip(received, descriptors))


@pytest.mark.asyncio
async def test_fetch_returns_aggregate_and_settles_each_future() -> None:
    executor = RecordingExecutor(transform=lambda task: task * 10)
    async with Context.start(executor=executor) as context:
        futures = [context.enqueue(task=index) for index in range(1, 4)]

        aggregate = await context.fetch()

        assert aggregate == [10, 20, 30]
        assert [future.result() for future in futures] == [10, 20, 30]


@pytest.mark.asyncio
async def test_cache_value_threads_across_sequential_batches(executor: RecordingExecutor) -> None:
    async with Context.start(executor=executor) as context:
        context.enqueue(task="a")
        await context.fetch()
        context.enqueue(task="b")
        await context.fetch()

        cache = context.bucket_for().cache

    assert executor.options[0]["cache"] == {}
    assert executor.options[1]["cache"] == {"a": "result:a"}
    assert cache is not None
    assert cache.read() == {"a": "result:a", "b": "result:b"}


@pytest.mark.asyncio
async def test_buckets_do_not_share_default_caches(executor: RecordingExecutor) -> None:
    config = {"buckets": {"left": {}, "right": {}}}
    async with Context.start(config, executor=executor) as context:
        context.enqueue(task="a", bucket_id="left")
        await context.fetch(bucket_id="left")
        context.enqueue(task="b", bucket_id="right")
        await context.fetch(bucket_id="right")

        left_cache = context.bucket_for(bucket_id="left").cache
        right_cache = context.bucket_for(bucket_id="right").cache

    assert left_cache is not right_cache
    assert executor.options[1]["cache"] == {}


@pytest.mark.asyncio
async def test_explicit_cache_is_shared_across_buckets(executor: RecordingExecutor) -> None:
    shared = InMemoryCache()
    config = {"buckets": {"left": {}, "right": {}}, "execution_options": {"cache": shared}}
    async with Context.start(config, executor=executor) as context:
        context.enqueue(task="a", bucket_id="left")
        await context.fetch(bucket_id="left")
        context.enqueue(task="b", bucket_id="right")
        await context.fetch(bucket_id="right")

    assert executor.options[1]["cache"] == {"a": "result:a"}
    assert shared.read() == {"a": "result:a", "b": "result:b"}


@pytest.mark.asyncio
async def test_cache_can_be_disabled(executor: RecordingExecutor) -> None:
    config = {"execution_options": {"cache": None}}
    async with Context.start(config, executor=executor) as context:
        context.enqueue(task="a")
        await context.fetch()

        assert context.bucket_for().cache is None

    assert "cache" not in executor.options[0]


@pytest.mark.asyncio
async def test_custom_cache_adapter_round_trips_values(executor: RecordingExecutor) -> None:
    cache = SnapshotCache()
    config = {"execution_options": {"cache": cache}}
    async with Context.start(config, executor=executor) as context:
        assert isinstance(context.bucket_for().cache, CacheAdapter)
        assert context.bucket_for().cache is cache

        context.enqueue(task="a")
        await context.fetch()
        context.enqueue(task="b")
        await context.fetch()

    assert executor.options[1]["cache"] == {"a": "result:a"}
    assert cache.snapshots == [{}, {"a": "result:a"}, {"a": "result:a", "b": "result:b"}]


@pytest.mark.asyncio
async def test_cache_read_failure_fails_claimed_futures(executor: RecordingExecutor) -> None:
    config = {"execution_options": {"cache": UnreachableCache()}}
    async with Context.start(config, executor=executor) as context:
        futures = [context.enqueue(task=index) for index in range(2)]

        with pytest.raises(ConnectionError, match="unreachable"):
            await context.fetch()

        assert context.pending_count() == 0
        for future in futures:
            assert isinstance(future.exception(), ConnectionError)

    assert executor.calls == []


@pytest.mark.asyncio
async def test_cache_read_failure_on_trigger_fetch_reaches_future(
    executor: RecordingExecutor,
) -> None:
    config = {
        "execution_options": {"cache": UnreachableCache()},
        "buckets": {"default": {"triggers": {"queue-size": {"threshold": 1}}}},
    }
    async with Context.start(config, executor=executor) as context:
        future = context.enqueue(task="a")

        with pytest.raises(ConnectionError, match="unreachable"):
            await asyncio.wait_for(future, timeout=2.0)

        assert context.bucket_for().triggers["queue-size"].active


@pytest.mark.asyncio
async def test_cache_write_failure_fails_claimed_futures(executor: RecordingExecutor) -> None:
    config = {"execution_options": {"cache": UnreachableCache(fail_read=False, fail_replace=True)}}
    async with Context.start(config, executor=executor) as context:
        future = context.enqueue(task="a")

        with pytest.raises(ConnectionError, match="unreachable"):
            await context.fetch()

        assert isinstance(future.exception(), ConnectionError)

    assert executor.batches == [["a"]]


@pytest.mark.asyncio
async def test_bucket_options_override_context_defaults(executor: RecordingExecutor) -> None:
    config = {
        "execution_options": {"env": "prod", "parallelism": 1},
        "buckets": {"fast": {"execution_options": {"parallelism": 8}}},
    }
    async with Context.start(config, executor=executor) as context:
        context.enqueue(task="a", bucket_id="fast")
        await context.fetch(bucket_id="fast")
        context.enqueue(task="b")
        await context.fetch()

    assert executor.options[0] == {"env": "prod", "parallelism": 8, "cache": {}}
    assert executor.options[1] == {"env": "prod", "parallelism": 1, "cache": {}}


@pytest.mark.asyncio
async def test_manual_fetch_failure_propagates_and_fails_futures() -> None:
    executor = RecordingExecutor(failures=[ConnectionError("backend down")])
    async with Context.start(executor=executor) as context:
        futures = [context.enqueue(task=index) for index in range(2)]

        with pytest.raises(ConnectionError, match="backend down"):
            await context.fetch()

        for future in futures:
            with pytest.raises(ConnectionError):
                await future
        cache = context.bucket_for().cache

    assert cache is not None
    assert cache.read() == {}


@pytest.mark.asyncio
async def test_malformed_executor_result_fails_batch() -> None:
    async with Context.start(executor=MalformedExecutor()) as context:
        futures = [context.enqueue(task=index) for index in range(3)]

        with pytest.raises(BatchResultError, match="2 result"):
            await context.fetch()

        for future in futures:
            assert isinstance(future.exception(), BatchResultError)


@pytest.mark.asyncio
async def test_executor_must_return_a_pair() -> None:
    async def bare_results(tasks: list[t.Any], options: dict[str, t.Any]) -> t.Any:
        return list(tasks)

    async with Context.start(executor=bare_results) as context:
        future = context.enqueue(task="a")

        with pytest.raises(BatchResultError, match="pair"):
            await context.fetch()

        assert isinstance(future.exception(), BatchResultError)


@pytest.mark.asyncio
async def test_tasks_enqueued_during_execution_wait_for_next_claim() -> None:
    executor = RecordingExecutor(delay=0.02)
    async with Context.start(executor=executor) as context:
        context.enqueue(task="first")
        in_flight = asyncio.create_task(context.fetch())
        await asyncio.sleep(delay=0)
        late = context.enqueue(task="late")

        assert await in_flight == ["result:first"]
        assert not late.done()
        assert context.pending_count() == 1

        await context.fetch()
        assert await late == "result:late"
