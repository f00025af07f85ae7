import sys
from datetime import datetime, timedelta
from pathlib import Path

import fakeredis
import pytest

# make src importable without an install
REPO_ROOT = Path(__file__).resolve().parent.parent
SRC = REPO_ROOT / "src"
sys.path.insert(0, str(SRC))

from cliptrail.clipboard import MemoryClipboard  # noqa: E402
from cliptrail.database import MemoryHistoryStore, RedisHistoryStore  # noqa: E402


class StepClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: datetime = datetime(2025, 12, 20, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def clipboard():
    return MemoryClipboard()


@pytest.fixture
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture(params=["memory", "redis"])
def store(request, redis_client):
    if request.param == "memory":
        history = MemoryHistoryStore()
    else:
        history = RedisHistoryStore(client=redis_client, prefix="test")
    yield history
    history.clear_all()
