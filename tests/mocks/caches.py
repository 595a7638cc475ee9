import typing as t


class SnapshotCache:
    """
    Cache adapter storing each written value as a new snapshot, like a
    versioned external store would.
    """

    def __init__(self) -> None:
        self.snapshots: list[t.Any] = [{}]

    def read(self) -> t.Any:
        return dict(self.snapshots[-1])

    def replace(self, value: t.Any) -> None:
        self.snapshots.append(dict(value))


class UnreachableCache:
    """Cache adapter whose backing store cannot be reached."""

    def __init__(self, *, fail_read: bool = True, fail_replace: bool = False) -> None:
        self.fail_read = fail_read
        self.fail_replace = fail_replace

    def read(self) -> t.Any:
        if self.fail_read:
            raise ConnectionError("cache store unreachable")
        return {}

    def replace(self, value: t.Any) -> None:
        if self.fail_replace:
            raise ConnectionError("cache store unreachable")
