import pytest

from tests.mocks.executors import RecordingExecutor


@pytest.fixture(autouse=True)
def test_set_env(monkeypatch):
    monkeypatch.delenv("BATCHLIFT_LOG_LEVEL", raising=False)


@pytest.fixture
def executor() -> RecordingExecutor:
    """
    Create a recording executor answering ``result:<task>`` for every task.

    Returns
    -------
    RecordingExecutor
        Fresh executor.
    """
    return RecordingExecutor()

