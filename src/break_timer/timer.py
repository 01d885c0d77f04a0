"""Work/break timer engine: pure logic, no I/O.

All time values are integer milliseconds since the epoch. The time source is
injected via now_ms parameters for deterministic testing. Persistence and
scheduling are wired up in service.py; this module only decides.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum

from .notifications import (
    BreakEnded,
    BreakOutcome,
    BreakStarted,
    BreakThresholdReached,
    BreakType,
    Intent,
)

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS

DEFAULT_WORK_THRESHOLD_MS = 30 * MINUTE_MS
INACTIVITY_THRESHOLD_MS = 5 * MINUTE_MS     # focus loss / no activity -> pause
NOTIFICATION_COOLDOWN_MS = 5 * MINUTE_MS    # min gap between threshold intents
STALE_WORK_SEGMENT_MS = 8 * HOUR_MS         # open segment silent longer than this on load is discarded
MAX_BREAK_ELAPSED_MS = 4 * HOUR_MS          # persisted break older than this is discarded
MAX_ACCUMULATED_WORK_MS = 24 * HOUR_MS      # larger accumulated totals are treated as corrupt
MAX_BREAK_DURATION_MS = 4 * HOUR_MS
CLOCK_SKEW_TOLERANCE_MS = MINUTE_MS         # timestamps this far in the future are accepted

TIMER_STATE_KEY = "breakTimerState"
WORK_SESSION_KEY = "workSessionData"
FORMAT_VERSION = 1


class TimerMode(str, Enum):
    WORKING = "working"
    PAUSED = "paused"
    ON_BREAK = "on_break"


@dataclass
class TimerState:
    """Mutable engine state. Only TimerEngine mutates it."""

    mode: TimerMode = TimerMode.WORKING
    work_start_ms: int | None = None
    accumulated_work_ms: int = 0
    last_activity_ms: int | None = None
    break_type: BreakType | None = None
    break_start_ms: int | None = None
    break_duration_ms: int | None = None
    is_browser_focused: bool = True
    focus_lost_ms: int | None = None
    last_threshold_notification_ms: int | None = None

    @classmethod
    def fresh(cls, now_ms: int) -> TimerState:
        return cls(mode=TimerMode.WORKING, work_start_ms=now_ms, last_activity_ms=now_ms)


@dataclass(frozen=True)
class TimerStatus:
    mode: TimerMode
    current_work_ms: int
    work_threshold_ms: int
    is_threshold_exceeded: bool
    remaining_break_ms: int
    break_type: BreakType | None
    last_activity_ms: int | None
    is_browser_focused: bool

    def to_export_dict(self) -> dict:
        """CamelCase dict for API and CLI export."""
        return {
            "mode": self.mode.value,
            "currentWorkTime": self.current_work_ms,
            "workThresholdMs": self.work_threshold_ms,
            "isThresholdExceeded": self.is_threshold_exceeded,
            "remainingBreakTime": self.remaining_break_ms,
            "breakType": self.break_type.value if self.break_type else None,
            "lastActivityTime": self.last_activity_ms,
            "isBrowserFocused": self.is_browser_focused,
        }


@dataclass
class TickResult:
    intents: list[Intent] = field(default_factory=list)
    old_mode: TimerMode | None = None


@dataclass
class RecoveryResult:
    """What restore() decided about the persisted state."""

    action: str
    intents: list[Intent] = field(default_factory=list)
    problems: list[str] = field(default_factory=list)


def format_duration(ms: int) -> str:
    """Format milliseconds as 'Xh Ym' (or 'Ym Zs' under an hour)."""
    ms = max(0, ms)
    hours = ms // HOUR_MS
    minutes = (ms % HOUR_MS) // MINUTE_MS
    if hours:
        return f"{hours}h {minutes}m"
    seconds = (ms % MINUTE_MS) // 1000
    return f"{minutes}m {seconds}s"


def _coerce_break_type(value) -> BreakType | None:
    try:
        return BreakType(value)
    except ValueError:
        return None


class TimerEngine:
    """Work/break state machine.

    Pure computation: no I/O, no globals, no clock. Every operation takes
    now_ms and returns (ok, TickResult); rejected operations return
    (False, TickResult()) and leave the state untouched.
    """

    def __init__(
        self,
        now_ms: int,
        inactivity_threshold_ms: int = INACTIVITY_THRESHOLD_MS,
        notification_cooldown_ms: int = NOTIFICATION_COOLDOWN_MS,
        stale_work_segment_ms: int = STALE_WORK_SEGMENT_MS,
        max_break_elapsed_ms: int = MAX_BREAK_ELAPSED_MS,
    ):
        self._state = TimerState.fresh(now_ms)
        self.inactivity_threshold_ms = inactivity_threshold_ms
        self.notification_cooldown_ms = notification_cooldown_ms
        self.stale_work_segment_ms = stale_work_segment_ms
        self.max_break_elapsed_ms = max_break_elapsed_ms

    # ---- Read-only properties ----

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def mode(self) -> TimerMode:
        return self._state.mode

    @property
    def accumulated_work_ms(self) -> int:
        return self._state.accumulated_work_ms

    @property
    def is_browser_focused(self) -> bool:
        return self._state.is_browser_focused

    @property
    def focus_lost_ms(self) -> int | None:
        return self._state.focus_lost_ms

    # ---- Pure reads ----

    def current_work_ms(self, now_ms: int) -> int:
        s = self._state
        if s.mode == TimerMode.WORKING and s.work_start_ms is not None:
            return s.accumulated_work_ms + max(0, now_ms - s.work_start_ms)
        return s.accumulated_work_ms

    def remaining_break_ms(self, now_ms: int) -> int:
        """Time left on the current break; 0 when not on break.

        Reaching 0 does not end the break. Whoever owns the countdown
        display must call end_break() explicitly.
        """
        s = self._state
        if s.mode != TimerMode.ON_BREAK or s.break_start_ms is None or not s.break_duration_ms:
            return 0
        return max(0, s.break_duration_ms - (now_ms - s.break_start_ms))

    def status(self, now_ms: int, work_threshold_ms: int) -> TimerStatus:
        s = self._state
        current = self.current_work_ms(now_ms)
        return TimerStatus(
            mode=s.mode,
            current_work_ms=current,
            work_threshold_ms=work_threshold_ms,
            is_threshold_exceeded=current >= work_threshold_ms,
            remaining_break_ms=self.remaining_break_ms(now_ms),
            break_type=s.break_type,
            last_activity_ms=s.last_activity_ms,
            is_browser_focused=s.is_browser_focused,
        )

    # ---- Work transitions ----

    def start_work(self, now_ms: int) -> tuple[bool, TickResult]:
        """Start (or resume) the work timer. Already working counts as success."""
        if self._state.mode == TimerMode.ON_BREAK:
            return False, TickResult()
        if self._state.mode == TimerMode.WORKING:
            return True, TickResult()
        return self.resume(now_ms)

    def pause(self, now_ms: int, segment_end_ms: int | None = None) -> tuple[bool, TickResult]:
        """Close the open work segment.

        segment_end_ms credits work only up to that point (clamped to the
        segment), used when the time between it and now was not work.
        """
        s = self._state
        if s.mode != TimerMode.WORKING:
            return False, TickResult()
        self._flush_segment(now_ms, segment_end_ms)
        s.mode = TimerMode.PAUSED
        return True, TickResult(old_mode=TimerMode.WORKING)

    def resume(self, now_ms: int) -> tuple[bool, TickResult]:
        s = self._state
        if s.mode != TimerMode.PAUSED:
            return False, TickResult()
        s.mode = TimerMode.WORKING
        s.work_start_ms = now_ms
        s.last_activity_ms = now_ms
        return True, TickResult(old_mode=TimerMode.PAUSED)

    def reset(self, now_ms: int) -> tuple[bool, TickResult]:
        """Manual break trigger: start a fresh work session from any mode.

        No break record is created. An ongoing break is closed with the
        RESET outcome so the dispatcher can clear its countdown.
        """
        s = self._state
        result = TickResult(old_mode=s.mode)
        if s.mode == TimerMode.ON_BREAK:
            result.intents.append(BreakEnded(s.break_type, BreakOutcome.RESET))
            self._clear_break()
        self._begin_session(now_ms)
        return True, result

    # ---- Break transitions ----

    def start_break(
        self, now_ms: int, break_type, duration_minutes
    ) -> tuple[bool, TickResult]:
        s = self._state
        if s.mode == TimerMode.ON_BREAK:
            return False, TickResult()
        kind = _coerce_break_type(break_type)
        if kind is None:
            return False, TickResult()
        if (
            isinstance(duration_minutes, bool)
            or not isinstance(duration_minutes, (int, float))
            or not math.isfinite(duration_minutes)
            or duration_minutes <= 0
        ):
            return False, TickResult()
        duration_ms = int(round(duration_minutes * MINUTE_MS))
        if duration_ms <= 0 or duration_ms > MAX_BREAK_DURATION_MS:
            return False, TickResult()

        result = TickResult(old_mode=s.mode)
        if s.mode == TimerMode.WORKING:
            self._flush_segment(now_ms)
        s.mode = TimerMode.ON_BREAK
        s.break_type = kind
        s.break_start_ms = now_ms
        s.break_duration_ms = duration_ms
        result.intents.append(BreakStarted(kind, duration_ms))
        return True, result

    def end_break(
        self, now_ms: int, outcome: BreakOutcome = BreakOutcome.COMPLETED
    ) -> tuple[bool, TickResult]:
        """End the break and start a fresh work session."""
        s = self._state
        if s.mode != TimerMode.ON_BREAK:
            return False, TickResult()
        result = TickResult(old_mode=TimerMode.ON_BREAK)
        result.intents.append(BreakEnded(s.break_type, outcome))
        self._clear_break()
        self._begin_session(now_ms)
        return True, result

    def cancel_break(self, now_ms: int) -> tuple[bool, TickResult]:
        return self.end_break(now_ms, BreakOutcome.CANCELLED)

    # ---- Activity and focus ----

    def record_activity(self, now_ms: int) -> tuple[bool, TickResult]:
        """Register an activity signal. Returns (resumed, result)."""
        s = self._state
        s.last_activity_ms = now_ms
        if s.mode == TimerMode.PAUSED and s.is_browser_focused:
            return self.resume(now_ms)
        return False, TickResult()

    def focus_lost(self, now_ms: int) -> bool:
        """Mark the browser unfocused. Returns False if it already was."""
        s = self._state
        if not s.is_browser_focused:
            return False
        s.is_browser_focused = False
        s.focus_lost_ms = now_ms
        return True

    def focus_gained(self, now_ms: int) -> tuple[bool, TickResult]:
        """Mark the browser focused. Returns (resumed, result)."""
        s = self._state
        s.is_browser_focused = True
        s.focus_lost_ms = None
        s.last_activity_ms = now_ms
        if s.mode == TimerMode.PAUSED:
            return self.resume(now_ms)
        return False, TickResult()

    # ---- Periodic evaluation ----

    def check_threshold(
        self, now_ms: int, work_threshold_ms: int, notifications_enabled: bool = True
    ) -> TickResult:
        """Emit BreakThresholdReached at most once per cooldown window."""
        s = self._state
        result = TickResult()
        if s.mode != TimerMode.WORKING or not notifications_enabled:
            return result
        work_ms = self.current_work_ms(now_ms)
        if work_ms < work_threshold_ms:
            return result
        last = s.last_threshold_notification_ms
        if last is not None and now_ms - last < self.notification_cooldown_ms:
            return result
        s.last_threshold_notification_ms = now_ms
        result.intents.append(BreakThresholdReached(work_ms))
        return result

    def check_liveness(
        self, now_ms: int, last_tick_ms: int | None = None
    ) -> tuple[bool, TickResult]:
        """Re-evaluate inactivity without a new event. Returns (paused, result).

        - a gap since the previous tick longer than the inactivity threshold
          means the host was asleep: pause, crediting work up to the last
          tick or activity.
        - unfocused: pause once focus has been lost for the threshold.
        - focused: pause once no activity arrived for the threshold.
        """
        s = self._state
        if s.mode != TimerMode.WORKING:
            return False, TickResult()
        threshold = self.inactivity_threshold_ms

        if last_tick_ms is not None and now_ms - last_tick_ms > threshold:
            return self.pause(now_ms, segment_end_ms=max(last_tick_ms, s.last_activity_ms or 0))

        if not s.is_browser_focused:
            if s.focus_lost_ms is not None and now_ms - s.focus_lost_ms >= threshold:
                return self.pause(now_ms)
            return False, TickResult()

        if s.last_activity_ms is not None and now_ms - s.last_activity_ms >= threshold:
            return self.pause(now_ms)
        return False, TickResult()

    # ---- Serialization ----

    def to_records(self, work_threshold_ms: int) -> dict[str, dict]:
        """Serialize into the two persisted records (camelCase keys)."""
        s = self._state
        return {
            TIMER_STATE_KEY: {
                "isWorkTimerActive": s.mode == TimerMode.WORKING,
                "isOnBreak": s.mode == TimerMode.ON_BREAK,
                "breakType": s.break_type.value if s.break_type else None,
                "lastActivityTime": s.last_activity_ms,
                "workTimeThreshold": work_threshold_ms,
                "isBrowserFocused": s.is_browser_focused,
                "focusLostTime": s.focus_lost_ms,
                "lastThresholdNotificationTime": s.last_threshold_notification_ms,
                "formatVersion": FORMAT_VERSION,
            },
            WORK_SESSION_KEY: {
                "workStartTime": s.work_start_ms,
                "totalWorkTime": s.accumulated_work_ms,
                "breakStartTime": s.break_start_ms,
                "breakDuration": s.break_duration_ms,
            },
        }

    def restore(self, records: dict | None, now_ms: int) -> RecoveryResult:
        """Load persisted records and reconcile them with the wall clock.

        Absent or unusable records reset to a fresh working session. A
        loaded session is then reconciled as if the process never stopped.
        """
        from .records import CorruptStateError, parse_records

        records = records or {}
        timer_raw = records.get(TIMER_STATE_KEY)
        session_raw = records.get(WORK_SESSION_KEY)
        if timer_raw is None and session_raw is None:
            self._state = TimerState.fresh(now_ms)
            return RecoveryResult(action="fresh")

        try:
            state, problems = parse_records(timer_raw, session_raw, now_ms)
        except CorruptStateError as e:
            self._state = TimerState.fresh(now_ms)
            return RecoveryResult(action="discarded", problems=[str(e)])

        self._state = state
        result = self._reconcile(now_ms)
        result.problems = problems + result.problems
        return result

    # ---- Internal ----

    def _reconcile(self, now_ms: int) -> RecoveryResult:
        s = self._state
        if s.mode == TimerMode.WORKING and s.work_start_ms is not None:
            # Staleness counts from the last sign of life, not the segment start.
            last_seen = max(s.work_start_ms, s.last_activity_ms or s.work_start_ms)
            silent = now_ms - last_seen
            if silent > self.stale_work_segment_ms:
                self._state = TimerState.fresh(now_ms)
                return RecoveryResult(
                    action="discarded",
                    problems=[f"open work segment silent for {silent}ms"],
                )
            if silent > self.inactivity_threshold_ms:
                # Credit the work before the process stopped, not the gap.
                self.pause(now_ms, segment_end_ms=last_seen)
                return RecoveryResult(action="paused")
            s.last_activity_ms = now_ms
            return RecoveryResult(action="continued")

        if s.mode == TimerMode.ON_BREAK:
            break_elapsed = now_ms - (s.break_start_ms or now_ms)
            if break_elapsed > self.max_break_elapsed_ms:
                _, tick = self.end_break(now_ms, BreakOutcome.DISCARDED)
                return RecoveryResult(action="break_discarded", intents=tick.intents)
            if break_elapsed >= (s.break_duration_ms or 0):
                _, tick = self.end_break(now_ms, BreakOutcome.EXPIRED)
                return RecoveryResult(action="break_expired", intents=tick.intents)
            return RecoveryResult(action="break_continued")

        return RecoveryResult(action="kept_paused")

    def _flush_segment(self, now_ms: int, segment_end_ms: int | None = None) -> None:
        s = self._state
        if s.work_start_ms is not None:
            end = now_ms if segment_end_ms is None else segment_end_ms
            end = min(max(end, s.work_start_ms), now_ms)
            s.accumulated_work_ms += max(0, end - s.work_start_ms)
        s.work_start_ms = None

    def _clear_break(self) -> None:
        s = self._state
        s.break_type = None
        s.break_start_ms = None
        s.break_duration_ms = None

    def _begin_session(self, now_ms: int) -> None:
        s = self._state
        s.mode = TimerMode.WORKING
        s.accumulated_work_ms = 0
        s.work_start_ms = now_ms
        s.last_activity_ms = now_ms
