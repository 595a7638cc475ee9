from .api import add_bucket as add_bucket
from .api import add_bucket_after as add_bucket_after
from .api import bucket_for as bucket_for
from .api import enqueue as enqueue
from .api import fetch as fetch
from .api import fetch_all as fetch_all
from .api import start as start
from .api import stop as stop
from .cache import CacheAdapter as CacheAdapter
from .cache import InMemoryCache as InMemoryCache
from .config import DEFAULT_BUCKET_ID as DEFAULT_BUCKET_ID
from .config import BucketConfig as BucketConfig
from .config import SchedulerConfig as SchedulerConfig
from .context import Context as Context
from .core import Bucket as Bucket
from .exceptions import BatchliftError as BatchliftError
from .exceptions import BatchResultError as BatchResultError
from .exceptions import ConfigurationError as ConfigurationError
from .exceptions import ContextStoppedError as ContextStoppedError
from .exceptions import FetchAllError as FetchAllError
from .triggers import Trigger as Trigger
from .triggers import register_trigger as register_trigger

__all__ = [
    "Context",
    "Bucket",
    "Trigger",
    "register_trigger",
    "start",
    "stop",
    "enqueue",
    "fetch",
    "fetch_all",
    "add_bucket",
    "add_bucket_after",
    "bucket_for",
    "CacheAdapter",
    "InMemoryCache",
    "BucketConfig",
    "SchedulerConfig",
    "DEFAULT_BUCKET_ID",
    "BatchliftError",
    "BatchResultError",
    "ConfigurationError",
    "ContextStoppedError",
    "FetchAllError",
]
