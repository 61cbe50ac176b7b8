"""Shared fixtures."""

from typing import Any, Dict, List, Optional

import pytest

from jsmonitor.core.errors import DeliveryError
from jsmonitor.services.datastore import DataStore
from jsmonitor.services.notifier import DeliveryResult


class FakeClock:

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeNotifier:
    """Records payloads; replies from a scripted list of results or errors."""

    def __init__(self, replies: Optional[List[Any]] = None):
        self.replies = list(replies or [])
        self.sent: List[Dict[str, Any]] = []
        self.calls = 0

    async def send(self, payload: Dict[str, Any]) -> DeliveryResult:
        self.calls += 1
        reply = self.replies.pop(0) if self.replies else DeliveryResult(ok=True, status=204)
        if isinstance(reply, DeliveryError):
            raise reply
        if reply.ok:
            self.sent.append(payload)
        return reply


@pytest.fixture
def store(tmp_path):
    return DataStore(str(tmp_path / "data"))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return FakeNotifier()
