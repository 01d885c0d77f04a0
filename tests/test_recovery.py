"""Tests for record validation and restart recovery."""

import math

import pytest

from break_timer.notifications import BreakEnded, BreakOutcome, BreakType
from break_timer.records import CorruptStateError, parse_records
from break_timer.timer import (
    HOUR_MS,
    TIMER_STATE_KEY,
    WORK_SESSION_KEY,
    TimerEngine,
    TimerMode,
)

MIN = 60 * 1000
NOW = 1_700_000_000_000


# ---- Helpers ----

def timer_record(**overrides) -> dict:
    record = {
        "isWorkTimerActive": True,
        "isOnBreak": False,
        "breakType": None,
        "lastActivityTime": NOW,
        "workTimeThreshold": 30 * MIN,
    }
    record.update(overrides)
    return record


def session_record(**overrides) -> dict:
    record = {
        "workStartTime": NOW,
        "totalWorkTime": 0,
        "breakStartTime": None,
        "breakDuration": None,
    }
    record.update(overrides)
    return record


def records(timer: dict | None = None, session: dict | None = None) -> dict:
    return {
        TIMER_STATE_KEY: timer if timer is not None else timer_record(),
        WORK_SESSION_KEY: session if session is not None else session_record(),
    }


def on_break_records(started_ago_ms: int, duration_ms: int, break_type: str = "short") -> dict:
    return records(
        timer_record(isWorkTimerActive=False, isOnBreak=True, breakType=break_type),
        session_record(
            workStartTime=None,
            totalWorkTime=0,
            breakStartTime=NOW - started_ago_ms,
            breakDuration=duration_ms,
        ),
    )


def restore(data, now: int = NOW):
    engine = TimerEngine(now_ms=now)
    return engine, engine.restore(data, now)


# ---- parse_records: corruption ----

class TestParseRecordsCorrupt:
    def test_missing_record(self):
        with pytest.raises(CorruptStateError, match="workSessionData"):
            parse_records(timer_record(), None, NOW)

    def test_non_object_record(self):
        with pytest.raises(CorruptStateError, match="expected an object"):
            parse_records("garbage", session_record(), NOW)

    @pytest.mark.parametrize("value", ["10", True, math.nan, [1]])
    def test_non_numeric_total(self, value):
        with pytest.raises(CorruptStateError, match="totalWorkTime"):
            parse_records(timer_record(), session_record(totalWorkTime=value), NOW)

    def test_non_boolean_flag(self):
        with pytest.raises(CorruptStateError, match="isOnBreak"):
            parse_records(timer_record(isOnBreak="yes"), session_record(), NOW)

    def test_negative_total(self):
        with pytest.raises(CorruptStateError, match="negative"):
            parse_records(timer_record(), session_record(totalWorkTime=-1), NOW)

    def test_implausible_total(self):
        with pytest.raises(CorruptStateError, match="implausible"):
            parse_records(timer_record(), session_record(totalWorkTime=25 * HOUR_MS), NOW)

    def test_future_timestamp(self):
        with pytest.raises(CorruptStateError, match="future"):
            parse_records(timer_record(), session_record(workStartTime=NOW + HOUR_MS), NOW)

    def test_small_clock_skew_accepted(self):
        state, _ = parse_records(timer_record(), session_record(workStartTime=NOW + 5_000), NOW)
        assert state.work_start_ms == NOW + 5_000

    def test_break_without_type(self):
        timer = timer_record(isWorkTimerActive=False, isOnBreak=True, breakType=None)
        session = session_record(workStartTime=None, breakStartTime=NOW, breakDuration=5 * MIN)
        with pytest.raises(CorruptStateError, match="break is active"):
            parse_records(timer, session, NOW)

    def test_break_without_duration(self):
        timer = timer_record(isWorkTimerActive=False, isOnBreak=True, breakType="short")
        session = session_record(workStartTime=None, breakStartTime=NOW)
        with pytest.raises(CorruptStateError):
            parse_records(timer, session, NOW)

    def test_unknown_break_type(self):
        timer = timer_record(isWorkTimerActive=False, isOnBreak=True, breakType="nap")
        with pytest.raises(CorruptStateError, match="breakType"):
            parse_records(timer, session_record(), NOW)

    def test_break_type_without_break(self):
        with pytest.raises(CorruptStateError, match="no break is active"):
            parse_records(timer_record(breakType="short"), session_record(), NOW)

    def test_implausible_break_duration(self):
        timer = timer_record(isWorkTimerActive=False, isOnBreak=True, breakType="long")
        session = session_record(workStartTime=None, breakStartTime=NOW, breakDuration=10 * HOUR_MS)
        with pytest.raises(CorruptStateError, match="breakDuration"):
            parse_records(timer, session, NOW)


# ---- parse_records: sanitization ----

class TestParseRecordsSanitize:
    def test_paused_with_work_start_drops_it(self):
        state, problems = parse_records(
            timer_record(isWorkTimerActive=False), session_record(totalWorkTime=MIN), NOW
        )
        assert state.mode == TimerMode.PAUSED
        assert state.work_start_ms is None
        assert state.accumulated_work_ms == MIN
        assert problems

    def test_active_without_work_start_is_paused(self):
        state, problems = parse_records(timer_record(), session_record(workStartTime=None), NOW)
        assert state.mode == TimerMode.PAUSED
        assert problems

    def test_leftover_break_fields_dropped(self):
        state, problems = parse_records(
            timer_record(), session_record(breakStartTime=NOW - MIN, breakDuration=5 * MIN), NOW
        )
        assert state.mode == TimerMode.WORKING
        assert state.break_start_ms is None
        assert state.break_duration_ms is None
        assert "dropped leftover break fields" in problems

    def test_work_segment_during_break_dropped(self):
        timer = timer_record(isWorkTimerActive=True, isOnBreak=True, breakType="short")
        session = session_record(workStartTime=NOW - MIN, breakStartTime=NOW - MIN, breakDuration=5 * MIN)
        state, problems = parse_records(timer, session, NOW)
        assert state.mode == TimerMode.ON_BREAK
        assert state.work_start_ms is None
        assert problems

    def test_unfocused_without_timestamp_uses_now(self):
        state, _ = parse_records(timer_record(isBrowserFocused=False), session_record(), NOW)
        assert not state.is_browser_focused
        assert state.focus_lost_ms == NOW

    def test_unknown_fields_ignored(self):
        state, problems = parse_records(timer_record(extra="x"), session_record(), NOW)
        assert state.mode == TimerMode.WORKING
        assert problems == []


# ---- restore ----

class TestRestore:
    def test_no_records_is_fresh(self):
        engine, result = restore({})
        assert result.action == "fresh"
        assert engine.mode == TimerMode.WORKING
        assert engine.current_work_ms(NOW) == 0

    def test_none_is_fresh(self):
        _, result = restore(None)
        assert result.action == "fresh"

    def test_corrupt_records_reset(self):
        engine, result = restore(records(session=session_record(totalWorkTime="lots")))
        assert result.action == "discarded"
        assert result.problems
        assert engine.mode == TimerMode.WORKING
        assert engine.accumulated_work_ms == 0

    def test_stale_segment_discarded(self):
        """Active segment started 10h ago is discarded, not credited."""
        data = records(
            timer_record(lastActivityTime=NOW - 10 * HOUR_MS),
            session_record(workStartTime=NOW - 10 * HOUR_MS, totalWorkTime=0),
        )
        engine, result = restore(data)
        assert result.action == "discarded"
        assert engine.mode == TimerMode.WORKING
        assert engine.current_work_ms(NOW) == 0

    def test_long_session_with_recent_activity_continues(self):
        """9h session with activity a minute ago keeps its work time."""
        data = records(
            timer_record(lastActivityTime=NOW - MIN),
            session_record(workStartTime=NOW - 9 * HOUR_MS, totalWorkTime=0),
        )
        engine, result = restore(data)
        assert result.action == "continued"
        assert engine.mode == TimerMode.WORKING
        assert engine.current_work_ms(NOW) == 9 * HOUR_MS

    def test_long_silent_session_discarded(self):
        data = records(
            timer_record(lastActivityTime=NOW - 9 * HOUR_MS),
            session_record(workStartTime=NOW - 10 * HOUR_MS, totalWorkTime=0),
        )
        engine, result = restore(data)
        assert result.action == "discarded"
        assert engine.current_work_ms(NOW) == 0

    def test_recent_segment_continues(self):
        data = records(
            timer_record(lastActivityTime=NOW - MIN),
            session_record(workStartTime=NOW - 10 * MIN, totalWorkTime=5 * MIN),
        )
        engine, result = restore(data)
        assert result.action == "continued"
        assert engine.mode == TimerMode.WORKING
        assert engine.current_work_ms(NOW) == 15 * MIN

    def test_inactive_gap_pauses_at_last_activity(self):
        data = records(
            timer_record(lastActivityTime=NOW - 40 * MIN),
            session_record(workStartTime=NOW - 60 * MIN, totalWorkTime=5 * MIN),
        )
        engine, result = restore(data)
        assert result.action == "paused"
        assert engine.mode == TimerMode.PAUSED
        assert engine.accumulated_work_ms == 25 * MIN

    def test_paused_kept(self):
        data = records(
            timer_record(isWorkTimerActive=False),
            session_record(workStartTime=None, totalWorkTime=12 * MIN),
        )
        engine, result = restore(data)
        assert result.action == "kept_paused"
        assert engine.mode == TimerMode.PAUSED
        assert engine.accumulated_work_ms == 12 * MIN

    def test_expired_break_ends(self):
        """Break started 20 min ago with 5 min duration resumes work at zero."""
        engine, result = restore(on_break_records(20 * MIN, 5 * MIN))
        assert result.action == "break_expired"
        assert engine.mode == TimerMode.WORKING
        assert engine.accumulated_work_ms == 0
        assert engine.current_work_ms(NOW) == 0
        assert result.intents == [BreakEnded(BreakType.SHORT, BreakOutcome.EXPIRED)]

    def test_ongoing_break_continues(self):
        engine, result = restore(on_break_records(2 * MIN, 5 * MIN))
        assert result.action == "break_continued"
        assert engine.mode == TimerMode.ON_BREAK
        assert engine.remaining_break_ms(NOW) == 3 * MIN

    def test_ancient_break_discarded(self):
        engine, result = restore(on_break_records(5 * HOUR_MS, 30 * MIN, "long"))
        assert result.action == "break_discarded"
        assert engine.mode == TimerMode.WORKING
        assert result.intents == [BreakEnded(BreakType.LONG, BreakOutcome.DISCARDED)]

    def test_focus_state_restored(self):
        data = records(
            timer_record(isBrowserFocused=False, focusLostTime=NOW - 2 * MIN, lastActivityTime=NOW - MIN),
            session_record(workStartTime=NOW - 10 * MIN),
        )
        engine, result = restore(data)
        assert result.action == "continued"
        assert not engine.is_browser_focused
        assert engine.focus_lost_ms == NOW - 2 * MIN

    @pytest.mark.parametrize("data", [
        records(
            timer_record(lastActivityTime=NOW - MIN),
            session_record(workStartTime=NOW - 10 * MIN, totalWorkTime=5 * MIN),
        ),
        records(
            timer_record(lastActivityTime=NOW - 40 * MIN),
            session_record(workStartTime=NOW - 60 * MIN, totalWorkTime=5 * MIN),
        ),
        on_break_records(2 * MIN, 5 * MIN),
        on_break_records(20 * MIN, 5 * MIN),
    ])
    def test_restore_is_idempotent(self, data):
        """Restoring, saving and restoring again at the same instant changes nothing."""
        first, _ = restore(data)
        saved = first.to_records(30 * MIN)
        second, _ = restore(saved)
        assert second.state == first.state
