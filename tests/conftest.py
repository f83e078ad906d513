import heapq
import itertools
from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from counselor.config import Settings
from counselor.db import init_db, make_engine, make_sessionmaker
from counselor.llm import LLMClient
from counselor.services.storage import LocalStorage


class FakeHandle:
    def __init__(self):
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """
    Scheduler driven by advance() instead of wall-clock time.
    Callbacks run in (due time, scheduling order).
    """

    def __init__(self):
        self.now = 0.0
        self._queue: list = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeHandle:
        handle = FakeHandle()
        heapq.heappush(self._queue, (self.now + delay, next(self._seq), handle, callback))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for _, _, h, _ in self._queue if not h.cancelled)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target + 1e-9:
            due, _, handle, callback = heapq.heappop(self._queue)
            self.now = due
            if not handle.cancelled:
                callback()
        self.now = target


class FakeLLMClient(LLMClient):
    def __init__(self, reply: str = '{"message": "hi", "score": 10}', session: Optional[dict] = None):
        self.reply = reply
        self.session = session or {"client_secret": {"value": "ek_test"}}
        self.calls: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None

    def respond(self, messages, model=None) -> str:
        self.calls.append({"messages": messages, "model": model})
        if self.error is not None:
            raise self.error
        return self.reply

    def create_realtime_session(self) -> Dict[str, Any]:
        if self.error is not None:
            raise self.error
        return self.session


@pytest.fixture
def settings() -> Settings:
    return Settings(
        STORAGE_URL="sqlite://",
        OPENAI_API_KEY="sk-test",
        API_BASE_URL="http://testserver",
    )


@pytest.fixture
def storage() -> LocalStorage:
    engine = make_engine("sqlite://")
    init_db(engine)
    return LocalStorage(make_sessionmaker(engine))


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def llm_client() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture
def client(storage, llm_client, monkeypatch):
    from counselor import main
    from counselor.api import routes

    # storage is overridden below; don't touch the configured database
    monkeypatch.setattr(main, "init_db", lambda: None)

    main.app.dependency_overrides[routes.get_llm_client] = lambda: llm_client
    main.app.dependency_overrides[routes.get_storage] = lambda: storage
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()
