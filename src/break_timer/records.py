"""Validation and sanitization of persisted timer records.

Records come back from storage as plain JSON. Each record is validated with
a pydantic model, then the pair is checked for consistency. Fixable
leftovers (a work start on a paused timer, stale break fields after a break)
are dropped and reported as problems; anything that cannot describe a
consistent state raises CorruptStateError.
"""

from __future__ import annotations

import math
from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, StrictBool, ValidationError

from .notifications import BreakType
from .timer import (
    CLOCK_SKEW_TOLERANCE_MS,
    MAX_ACCUMULATED_WORK_MS,
    MAX_BREAK_DURATION_MS,
    TimerMode,
    TimerState,
)


class CorruptStateError(ValueError):
    """Persisted records cannot be turned into a consistent TimerState."""


def _as_millis(value):
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"expected milliseconds, got {type(value).__name__}")
    if not math.isfinite(value):
        raise ValueError("expected finite milliseconds")
    return int(value)


Millis = Annotated[Optional[int], BeforeValidator(_as_millis)]


class TimerStateRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_work_timer_active: StrictBool = Field(False, alias="isWorkTimerActive")
    is_on_break: StrictBool = Field(False, alias="isOnBreak")
    break_type: Optional[BreakType] = Field(None, alias="breakType")
    last_activity_time: Millis = Field(None, alias="lastActivityTime")
    work_time_threshold: Millis = Field(None, alias="workTimeThreshold")
    is_browser_focused: StrictBool = Field(True, alias="isBrowserFocused")
    focus_lost_time: Millis = Field(None, alias="focusLostTime")
    last_threshold_notification_time: Millis = Field(None, alias="lastThresholdNotificationTime")
    format_version: int = Field(1, alias="formatVersion")


class WorkSessionRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    work_start_time: Millis = Field(None, alias="workStartTime")
    total_work_time: Millis = Field(0, alias="totalWorkTime")
    break_start_time: Millis = Field(None, alias="breakStartTime")
    break_duration: Millis = Field(None, alias="breakDuration")


def _validate(model: type[BaseModel], raw, name: str) -> BaseModel:
    if not isinstance(raw, dict):
        raise CorruptStateError(f"{name} is {type(raw).__name__}, expected an object")
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise CorruptStateError(f"{name} has invalid fields: {fields}") from e


def parse_records(timer_raw, session_raw, now_ms: int) -> tuple[TimerState, list[str]]:
    """Build a consistent TimerState from the two raw records.

    Returns the state and the list of problems that were sanitized away.
    Raises CorruptStateError when the records are unusable.
    """
    if timer_raw is None or session_raw is None:
        missing = "breakTimerState" if timer_raw is None else "workSessionData"
        raise CorruptStateError(f"{missing} record is missing")

    timer = _validate(TimerStateRecord, timer_raw, "breakTimerState")
    session = _validate(WorkSessionRecord, session_raw, "workSessionData")
    problems: list[str] = []

    accumulated = session.total_work_time or 0
    if accumulated < 0:
        raise CorruptStateError(f"negative totalWorkTime {accumulated}")
    if accumulated > MAX_ACCUMULATED_WORK_MS:
        raise CorruptStateError(f"implausible totalWorkTime {accumulated}")
    if session.break_duration is not None and session.break_duration < 0:
        raise CorruptStateError(f"negative breakDuration {session.break_duration}")

    horizon = now_ms + CLOCK_SKEW_TOLERANCE_MS
    for name, value in (
        ("workStartTime", session.work_start_time),
        ("breakStartTime", session.break_start_time),
        ("lastActivityTime", timer.last_activity_time),
        ("focusLostTime", timer.focus_lost_time),
    ):
        if value is not None and value > horizon:
            raise CorruptStateError(f"{name} {value} is in the future")

    state = TimerState(
        accumulated_work_ms=accumulated,
        last_activity_ms=timer.last_activity_time,
        is_browser_focused=timer.is_browser_focused,
        focus_lost_ms=None if timer.is_browser_focused else (timer.focus_lost_time or now_ms),
        last_threshold_notification_ms=timer.last_threshold_notification_time,
    )

    if timer.is_on_break:
        if (
            timer.break_type is None
            or session.break_start_time is None
            or not session.break_duration
        ):
            raise CorruptStateError("break is active but its type, start or duration is missing")
        if session.break_duration > MAX_BREAK_DURATION_MS:
            raise CorruptStateError(f"implausible breakDuration {session.break_duration}")
        if timer.is_work_timer_active or session.work_start_time is not None:
            problems.append("dropped open work segment recorded during a break")
        state.mode = TimerMode.ON_BREAK
        state.break_type = timer.break_type
        state.break_start_ms = session.break_start_time
        state.break_duration_ms = session.break_duration
        return state, problems

    if timer.break_type is not None:
        raise CorruptStateError("breakType is set but no break is active")
    if session.break_start_time is not None or session.break_duration:
        problems.append("dropped leftover break fields")

    if timer.is_work_timer_active and session.work_start_time is not None:
        state.mode = TimerMode.WORKING
        state.work_start_ms = session.work_start_time
    else:
        if timer.is_work_timer_active:
            problems.append("work timer active without workStartTime; treating as paused")
        elif session.work_start_time is not None:
            problems.append("dropped workStartTime of a paused timer")
        state.mode = TimerMode.PAUSED
    return state, problems
