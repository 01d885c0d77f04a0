"""Work/break timer engine with persistence and restart recovery."""

from .activity import ActivityRouter, BrowserFocusChanged, TabActivated, UserActivity
from .notifications import (
    BreakEnded,
    BreakOutcome,
    BreakStarted,
    BreakThresholdReached,
    BreakType,
    CollectingDispatcher,
    LoggingDispatcher,
    NotificationDispatcher,
)
from .service import BreakTimerService
from .settings import BreakSettings, SettingsManager, SettingsProvider, StaticSettings
from .store import MemoryStore, PersistentStore, SqliteStore, StorageError
from .timer import TimerEngine, TimerMode, TimerState, TimerStatus

__all__ = [
    "ActivityRouter",
    "BreakEnded",
    "BreakOutcome",
    "BreakSettings",
    "BreakStarted",
    "BreakThresholdReached",
    "BreakTimerService",
    "BreakType",
    "BrowserFocusChanged",
    "CollectingDispatcher",
    "LoggingDispatcher",
    "MemoryStore",
    "NotificationDispatcher",
    "PersistentStore",
    "SettingsManager",
    "SettingsProvider",
    "SqliteStore",
    "StaticSettings",
    "StorageError",
    "TabActivated",
    "TimerEngine",
    "TimerMode",
    "TimerState",
    "TimerStatus",
    "UserActivity",
]
