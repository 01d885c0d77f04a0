"""Notification intents emitted by the timer engine and the dispatchers that consume them.

The engine never presents anything itself. It returns intents from its
transitions and the service hands them to a NotificationDispatcher.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Deque, Union

logger = logging.getLogger("break_timer.notifications")


class BreakType(str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"


class BreakOutcome(str, Enum):
    """Why a break ended. The engine transition is the same for every outcome."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"      # ran out while the process was stopped
    DISCARDED = "discarded"  # persisted break was implausible
    RESET = "reset"          # manual reset while on break


@dataclass(frozen=True)
class BreakThresholdReached:
    kind: ClassVar[str] = "break_threshold_reached"
    work_time_ms: int

    def to_dict(self) -> dict:
        return {"kind": self.kind, "workTimeMs": self.work_time_ms}


@dataclass(frozen=True)
class BreakStarted:
    kind: ClassVar[str] = "break_started"
    break_type: BreakType
    duration_ms: int

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "type": self.break_type.value,
            "durationMs": self.duration_ms,
        }


@dataclass(frozen=True)
class BreakEnded:
    kind: ClassVar[str] = "break_ended"
    break_type: BreakType | None = None
    outcome: BreakOutcome = BreakOutcome.COMPLETED

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "type": self.break_type.value if self.break_type else None,
            "outcome": self.outcome.value,
        }


Intent = Union[BreakThresholdReached, BreakStarted, BreakEnded]


class NotificationDispatcher(ABC):
    """Consumer of engine intents (desktop notifications, badges, sounds...)."""

    @abstractmethod
    def dispatch(self, intent: Intent) -> None:
        ...


class LoggingDispatcher(NotificationDispatcher):
    def dispatch(self, intent: Intent) -> None:
        logger.info(f"Intent: {intent.to_dict()}")


class CollectingDispatcher(NotificationDispatcher):
    """Keeps recent intents in a bounded buffer for a UI to poll."""

    def __init__(self, maxlen: int = 100):
        self._intents: Deque[Intent] = deque(maxlen=maxlen)

    def dispatch(self, intent: Intent) -> None:
        self._intents.append(intent)
        logger.debug(f"Queued intent {intent.kind}")

    @property
    def recent(self) -> list[Intent]:
        return list(self._intents)

    def drain(self) -> list[Intent]:
        """Return and clear all queued intents, oldest first."""
        intents = list(self._intents)
        self._intents.clear()
        return intents
