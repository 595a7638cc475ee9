"""
Flush triggers deciding when a bucket's queued tasks are sent to the executor.

Triggers are looked up by kind in ``TRIGGERS``. New kinds are added with the
``register_trigger`` decorator; kinds without a registered class fall back to
``ManualTrigger``, which never fetches on its own.
"""

from __future__ import annotations

import asyncio
import threading
import typing as t
from abc import ABC

import structlog
from pydantic import BaseModel, ValidationError

from batchlift.config import IntervalTriggerConfig, QueueSizeTriggerConfig, TriggerKind
from batchlift.exceptions import ConfigurationError

if t.TYPE_CHECKING:
    from batchlift.core import Bucket, PendingTask

log = structlog.get_logger(__name__)

TriggerT = t.TypeVar("TriggerT", bound="type[Trigger]")

TRIGGERS: dict[str, type[Trigger]] = {}


def register_trigger(kind: str) -> t.Callable[[TriggerT], TriggerT]:
    """
    Register a trigger class under ``kind``.

    Parameters
    ----------
    kind : str
        Trigger kind used as key in bucket ``triggers`` configuration.

    Returns
    -------
    typing.Callable[[TriggerT], TriggerT]
        Class decorator returning the class unchanged.
    """

    def decorator(trigger_cls: TriggerT) -> TriggerT:
        TRIGGERS[kind] = trigger_cls
        return trigger_cls

    return decorator


class Trigger(ABC):
    """
    Background policy flushing one bucket.

    A trigger is created stopped, becomes active on ``start`` and is stopped
    for good by ``stop``. ``stop`` may be called any number of times.

    Parameters
    ----------
    bucket : Bucket
        Bucket observed and flushed by the trigger.
    kind : str
        Kind tag the trigger was configured under.
    config : typing.Any
        Raw trigger configuration.
    """

    config_model: t.ClassVar[type[BaseModel] | None] = None

    def __init__(self, *, bucket: Bucket, kind: str, config: t.Any) -> None:
        self.bucket = bucket
        self.kind = kind
        self.config = self._parse_config(config=config)
        self._state_lock = threading.Lock()
        self._started = False
        self._stopped = False
        self._in_flight: set[asyncio.Task[None]] = set()
        max_in_flight = getattr(self.config, "max_in_flight", None)
        self._slots = asyncio.Semaphore(value=max_in_flight) if max_in_flight else None

    def _parse_config(self, *, config: t.Any) -> t.Any:
        if self.config_model is None or isinstance(config, self.config_model):
            return config
        try:
            return self.config_model.model_validate(obj=config)
        except ValidationError as error:
            raise ConfigurationError(
                f"Invalid {self.kind!r} trigger configuration for bucket "
                f"{self.bucket.id!r}: {error}"
            ) from error

    @property
    def active(self) -> bool:
        return self._started and not self._stopped

    @property
    def in_flight(self) -> int:
        """Number of trigger-dispatched fetches still running."""
        return len(self._in_flight)

    def start(self) -> None:
        with self._state_lock:
            if self._started:
                return
            self._started = True
        log.info(event="Starting trigger", bucket_id=self.bucket.id, trigger=self.kind)
        self._on_start()

    def stop(self) -> None:
        with self._state_lock:
            if self._stopped:
                return
            self._stopped = True
            was_started = self._started
        if was_started:
            log.info(event="Stopping trigger", bucket_id=self.bucket.id, trigger=self.kind)
            self._on_stop()

    def _on_start(self) -> None:
        """Hook run once when the trigger starts."""

    def _on_stop(self) -> None:
        """Hook run once when a started trigger stops."""

    def dispatch(self) -> None:
        """
        Claim the bucket queue now and execute the claimed batch in the background.

        Notes
        -----
        The claim happens synchronously in the calling context, so exactly the
        tasks queued at this instant form the batch. Execution failures are
        logged and never reach the caller. Safe to call from any thread.
        """
        pending = self.bucket.claim()
        if not pending:
            return
        loop = self.bucket.loop
        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None
        if running_loop is loop:
            self._spawn(pending=pending)
        else:
            loop.call_soon_threadsafe(self._spawn, pending)

    def _spawn(self, pending: list[PendingTask]) -> None:
        task = self.bucket.loop.create_task(
            coro=self._guarded_execute(pending=pending),
            name=f"batchlift_{self.kind}_fetch_{self.bucket.id}",
        )
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _guarded_execute(self, *, pending: list[PendingTask]) -> None:
        try:
            if self._slots is None:
                await self.bucket.execute(pending=pending)
            else:
                async with self._slots:
                    await self.bucket.execute(pending=pending)
        except Exception as error:
            log.warning(
                event="Fetch failed",
                bucket_id=self.bucket.id,
                trigger=self.kind,
                task_count=len(pending),
                error=str(object=error),
            )

    def __repr__(self) -> str:
        state = "active" if self.active else "stopped"
        return f"<{type(self).__name__} kind={self.kind!r} bucket={self.bucket.id!r} {state}>"


@register_trigger(kind=TriggerKind.manual)
class ManualTrigger(Trigger):
    """
    Trigger without automatic behavior.

    Used for the ``"manual"`` kind and for any kind without a registered
    class. The configuration is stored unchanged.
    """


@register_trigger(kind=TriggerKind.queue_size)
class QueueSizeTrigger(Trigger):
    """
    Fetch whenever the bucket queue reaches ``threshold`` tasks.
    """

    config_model = QueueSizeTriggerConfig
    config: QueueSizeTriggerConfig

    def _on_start(self) -> None:
        self.bucket.queue.add_observer(key=self, observer=self._on_queue_change)

    def _on_stop(self) -> None:
        self.bucket.queue.remove_observer(key=self)

    def _on_queue_change(self, size: int) -> None:
        if self._stopped or size < self.config.threshold:
            return
        log.debug(
            event="Queue size threshold reached",
            bucket_id=self.bucket.id,
            queue_size=size,
            threshold=self.config.threshold,
        )
        self.dispatch()


@register_trigger(kind=TriggerKind.interval)
class IntervalTrigger(Trigger):
    """
    Fetch every ``interval`` milliseconds until stopped.
    """

    config_model = IntervalTriggerConfig
    config: IntervalTriggerConfig

    def __init__(self, *, bucket: Bucket, kind: str, config: t.Any) -> None:
        super().__init__(bucket=bucket, kind=kind, config=config)
        self._task: asyncio.Task[None] | None = None

    def _on_start(self) -> None:
        self._task = self.bucket.loop.create_task(
            coro=self._run(),
            name=f"batchlift_interval_{self.bucket.id}",
        )

    def _on_stop(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None
        if running_loop is self.bucket.loop:
            task.cancel()
        else:
            self.bucket.loop.call_soon_threadsafe(task.cancel)

    async def _run(self) -> None:
        try:
            while not self._stopped:
                await asyncio.sleep(delay=self.config.interval_seconds)
                if self._stopped:
                    return
                log.debug(
                    event="Interval elapsed",
                    bucket_id=self.bucket.id,
                    interval_ms=self.config.interval,
                )
                try:
                    self.dispatch()
                except Exception as error:
                    log.warning(
                        event="Fetch failed",
                        bucket_id=self.bucket.id,
                        trigger=self.kind,
                        error=str(object=error),
                    )
        except asyncio.CancelledError:
            log.debug(event="Interval trigger cancelled", bucket_id=self.bucket.id)
            raise


def start_trigger(*, bucket: Bucket, kind: str, config: t.Any) -> Trigger:
    """
    Create and start the trigger registered for ``kind``.

    Parameters
    ----------
    bucket : Bucket
        Bucket the trigger flushes.
    kind : str
        Trigger kind. Unknown kinds start a ``ManualTrigger``.
    config : typing.Any
        Trigger configuration.

    Returns
    -------
    Trigger
        The started trigger, carrying its own ``stop``.
    """
    trigger_cls = TRIGGERS.get(kind, ManualTrigger)
    if kind not in TRIGGERS:
        log.debug(event="Unknown trigger kind, running manually", bucket_id=bucket.id, trigger=kind)
    trigger = trigger_cls(bucket=bucket, kind=kind, config=config)
    trigger.start()
    return trigger
