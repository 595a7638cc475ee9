"""
Cache adapters threading a value across sequential batches of one bucket.
"""

from __future__ import annotations

import threading
import typing as t

from batchlift.exceptions import ConfigurationError

CACHE_OPTION_KEY = "cache"


@t.runtime_checkable
class CacheAdapter(t.Protocol):
    """
    Read/replace bridge between a user value cell and the executor.

    Notes
    -----
    The value shape is whatever the executor expects to receive under the
    ``"cache"`` execution option and to return as its updated cache value.
    """

    def read(self) -> t.Any:
        """Return the current cache value."""
        ...

    def replace(self, value: t.Any) -> None:
        """Replace the cache value with ``value``."""
        ...


class InMemoryCache:
    """
    In-process mutable cell, the default cache adapter.

    Parameters
    ----------
    initial : typing.Any | None, optional
        Initial value. Defaults to a fresh empty ``dict``.
    """

    def __init__(self, initial: t.Any | None = None) -> None:
        self._value: t.Any = {} if initial is None else initial
        self._lock = threading.Lock()

    def read(self) -> t.Any:
        with self._lock:
            return self._value

    def replace(self, value: t.Any) -> None:
        with self._lock:
            self._value = value

    def __repr__(self) -> str:
        return f"InMemoryCache({self._value!r})"


def resolve_cache(*, execution_options: t.Mapping[str, t.Any]) -> CacheAdapter | None:
    """
    Resolve the cache adapter for a bucket from its merged execution options.

    Parameters
    ----------
    execution_options : typing.Mapping[str, typing.Any]
        Merged execution options of the bucket.

    Returns
    -------
    CacheAdapter | None
        The configured adapter, a fresh ``InMemoryCache`` when the option is
        absent, or ``None`` when caching is disabled with ``cache=None``.

    Raises
    ------
    ConfigurationError
        If the ``"cache"`` option is neither ``None`` nor a ``CacheAdapter``.
    """
    if CACHE_OPTION_KEY not in execution_options:
        return InMemoryCache()
    cache = execution_options[CACHE_OPTION_KEY]
    if cache is None:
        return None
    if not isinstance(cache, CacheAdapter):
        raise ConfigurationError(
            f"cache option must implement read() and replace(), got {type(cache).__name__}"
        )
    return cache
