"""
Pytest configuration for the icare verifier.

Provides fixtures for:
- Temporary SQLite databases with the schema applied
- A controllable clock shared by the stores
- Fakes for the protocol client, consent browser and notifier
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

import pytest

from utils.db import init_schema
from utils.jobs import JobStore
from utils.schemas import Visit

MAKASSAR = ZoneInfo("Asia/Makassar")


class FakeClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeClient:
    """Protocol client returning scripted outcomes per member id.

    An outcome is a URL string, None, or an exception instance to raise.
    """

    def __init__(self, outcomes: dict[str, Any] | None = None, default: Any = "https://icare.example/v/ok") -> None:
        self.outcomes = outcomes or {}
        self.default = default
        self.calls: list[tuple[str, str]] = []

    async def verify_patient(self, member_id: str, doctor_code: str) -> str | None:
        self.calls.append((member_id, doctor_code))
        outcome = self.outcomes.get(member_id, self.default)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeAgent:
    def __init__(self, browser: FakeBrowser) -> None:
        self._browser = browser

    async def agree(self, url: str) -> bool:
        browser = self._browser
        browser.active += 1
        browser.max_active = max(browser.max_active, browser.active)
        try:
            await asyncio.sleep(browser.agree_delay)
            browser.agreed.append(url)
            return url not in browser.failing_urls
        finally:
            browser.active -= 1


class FakeBrowser:
    """Stand-in for ConsentBrowser that records usage."""

    def __init__(self, failing_urls: set[str] | None = None, agree_delay: float = 0) -> None:
        self.failing_urls = failing_urls or set()
        self.agree_delay = agree_delay
        self.agreed: list[str] = []
        self.active = 0
        self.max_active = 0
        self.sessions_open = 0
        self.max_sessions_open = 0
        self.closed = False

    @asynccontextmanager
    async def session(self):
        self.sessions_open += 1
        self.max_sessions_open = max(self.max_sessions_open, self.sessions_open)
        try:
            yield FakeAgent(self)
        finally:
            self.sessions_open -= 1

    async def close(self) -> None:
        self.closed = True


class FakeNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.messages: list[str] = []

    async def send(self, message: str) -> bool:
        if self.fail:
            raise RuntimeError("telegram down")
        self.messages.append(message)
        return True


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "icare.sqlite3"
    init_schema(path)
    return path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 10, 16, 5, tzinfo=MAKASSAR))


@pytest.fixture
def store(db_path: Path, clock: FakeClock) -> JobStore:
    return JobStore(db_path=db_path, clock=clock)


@pytest.fixture
def visits() -> list[Visit]:
    return [
        Visit(visit_number="2025/03/10/000001", member_id="0001111111111", doctor_code="101", clinic_name="Poli Anak"),
        Visit(visit_number="2025/03/10/000002", member_id="0002222222222", doctor_code="102", clinic_name="Poli Mata"),
        Visit(visit_number="2025/03/10/000003", member_id="0003333333333", doctor_code="103", clinic_name="Poli Gigi"),
    ]


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def browser() -> FakeBrowser:
    return FakeBrowser()
