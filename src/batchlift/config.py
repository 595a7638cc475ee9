"""
Start configuration for a batchlift context.
"""

from __future__ import annotations

import tomllib
import typing as t
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, ValidationError

from batchlift.exceptions import ConfigurationError

DEFAULT_BUCKET_ID = "default"


class TriggerKind(StrEnum):
    queue_size = "queue-size"
    interval = "interval"
    manual = "manual"


class QueueSizeTriggerConfig(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    threshold: PositiveInt
    max_in_flight: PositiveInt | None = None


class IntervalTriggerConfig(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    interval: PositiveInt = Field(description="Flush period in milliseconds")
    max_in_flight: PositiveInt | None = None

    @property
    def interval_seconds(self) -> float:
        return self.interval / 1000


class BucketConfig(BaseModel):
    """
    Configuration of one bucket.

    Attributes
    ----------
    triggers : dict[str, typing.Any]
        Trigger kind to trigger configuration. Configurations of unknown kinds
        are kept as given.
    execution_options : dict[str, typing.Any]
        Options passed to the executor, overriding the context defaults.
    executor : typing.Any | None
        Executor overriding the context executor for this bucket.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    triggers: dict[str, t.Any] = Field(default_factory=dict)
    execution_options: dict[str, t.Any] = Field(default_factory=dict)
    executor: t.Any | None = None


class SchedulerConfig(BaseModel):
    """
    Top-level configuration accepted by ``Context.start``.

    Attributes
    ----------
    buckets : dict[str, BucketConfig]
        Bucket id to bucket configuration. A ``"default"`` bucket is added
        when absent.
    execution_options : dict[str, typing.Any]
        Default executor options shared by every bucket.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    buckets: dict[str, BucketConfig] = Field(default_factory=dict)
    execution_options: dict[str, t.Any] = Field(default_factory=dict)

    def with_default_bucket(self) -> SchedulerConfig:
        """
        Return a copy guaranteed to contain the default bucket.

        Returns
        -------
        SchedulerConfig
            Configuration containing ``DEFAULT_BUCKET_ID``.
        """
        if DEFAULT_BUCKET_ID in self.buckets:
            return self
        buckets = {DEFAULT_BUCKET_ID: BucketConfig(), **self.buckets}
        return self.model_copy(update={"buckets": buckets})

    @classmethod
    def from_toml(cls, path: str | Path) -> SchedulerConfig:
        """
        Load a configuration from a TOML file.

        Parameters
        ----------
        path : str | Path
            TOML file laid out like the start configuration, e.g.
            ``[buckets.default.triggers.queue-size]`` with ``threshold = 10``.

        Returns
        -------
        SchedulerConfig
            Validated configuration.
        """
        with open(path, "rb") as f:
            data = tomllib.load(f)
        return coerce_config(config=data)


def coerce_config(
    *, config: SchedulerConfig | t.Mapping[str, t.Any] | None
) -> SchedulerConfig:
    """
    Validate a user supplied configuration.

    Parameters
    ----------
    config : SchedulerConfig | typing.Mapping[str, typing.Any] | None
        Configuration model, plain mapping, or ``None`` for defaults.

    Returns
    -------
    SchedulerConfig
        Validated configuration.

    Raises
    ------
    ConfigurationError
        If the mapping does not match the configuration schema.
    """
    if config is None:
        return SchedulerConfig()
    if isinstance(config, SchedulerConfig):
        return config
    try:
        return SchedulerConfig.model_validate(obj=dict(config))
    except ValidationError as error:
        raise ConfigurationError(f"Invalid scheduler configuration: {error}") from error


def coerce_bucket_config(*, config: BucketConfig | t.Mapping[str, t.Any] | None) -> BucketConfig:
    """
    Validate a single bucket configuration.

    Parameters
    ----------
    config : BucketConfig | typing.Mapping[str, typing.Any] | None
        Bucket configuration model, plain mapping, or ``None``.

    Returns
    -------
    BucketConfig
        Validated configuration.
    """
    if config is None:
        return BucketConfig()
    if isinstance(config, BucketConfig):
        return config
    try:
        return BucketConfig.model_validate(obj=dict(config))
    except ValidationError as error:
        raise ConfigurationError(f"Invalid bucket configuration: {error}") from error
