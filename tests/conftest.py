"""Shared fixtures: fake clock, in-memory store, mock scheduler."""

from unittest.mock import MagicMock

import pytest

from break_timer.config import EngineConfig
from break_timer.notifications import CollectingDispatcher
from break_timer.service import BreakTimerService
from break_timer.settings import StaticSettings
from break_timer.store import MemoryStore

MINUTE = 60 * 1000
START_MS = 1_700_000_000_000  # arbitrary epoch ms


class FakeClock:
    def __init__(self, now_ms: int = START_MS):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> int:
        self.now_ms += ms
        return self.now_ms

    def advance_minutes(self, minutes: float) -> int:
        return self.advance(int(minutes * MINUTE))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def settings():
    return StaticSettings()


@pytest.fixture
def dispatcher():
    return CollectingDispatcher()


@pytest.fixture
def scheduler():
    """Scheduler stand-in recording (id, func, job) for every add_job call."""
    scheduler = MagicMock()
    scheduler.added = []

    def add_job(func, *args, **kwargs):
        job = MagicMock(name=kwargs.get("id"))
        scheduler.added.append((kwargs.get("id"), func, job))
        return job

    scheduler.add_job = MagicMock(side_effect=add_job)
    return scheduler


@pytest.fixture
def service(store, settings, scheduler, dispatcher, clock):
    return BreakTimerService(
        store, settings, scheduler, dispatcher=dispatcher, clock=clock, config=EngineConfig()
    )


def last_job(scheduler, job_id: str):
    """Return (func, job) for the most recent add_job with job_id, or (None, None)."""
    for added_id, func, job in reversed(scheduler.added):
        if added_id == job_id:
            return func, job
    return None, None
