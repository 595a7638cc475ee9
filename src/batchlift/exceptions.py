"""
Batchlift-specific runtime exceptions.
"""

from __future__ import annotations

import typing as t


class BatchliftError(Exception):
    """Base class for all batchlift errors."""


class ConfigurationError(BatchliftError, ValueError):
    """
    Signal an invalid scheduler configuration.

    Notes
    -----
    Raised at start time, before any bucket or trigger is started.
    """


class BatchResultError(BatchliftError, RuntimeError):
    """
    Signal that the executor returned a malformed aggregate result.
    """


class ContextStoppedError(BatchliftError, RuntimeError):
    """
    Signal that a stopped context was asked to register a new bucket.
    """


class FetchAllError(BatchliftError):
    """
    Aggregate failures raised by ``Context.fetch_all``.

    Parameters
    ----------
    errors : dict[str, BaseException]
        Failure per bucket id. Buckets that fetched successfully are absent.
    """

    def __init__(self, *, errors: t.Mapping[str, BaseException]) -> None:
        self.errors: dict[str, BaseException] = dict(errors)
        bucket_ids = ", ".join(sorted(self.errors))
        super().__init__(f"Fetch failed for {len(self.errors)} bucket(s): {bucket_ids}")

