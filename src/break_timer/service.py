"""BreakTimerService: the timer engine wired to its collaborators.

The engine decides; this service supplies the clock and settings, schedules
the deferred pause and the liveness check on an APScheduler scheduler,
checkpoints state to the store after every mutation and forwards intents to
the notification dispatcher. An activity signal that changes nothing but
lastActivityTime is written by the next liveness tick instead.

Every public operation applies its in-memory transition synchronously before
the checkpoint write is awaited, so get_timer_status() always reflects the
latest state even while a write is in flight. Nothing here raises to callers:
failures are logged and reported as False.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from .config import EngineConfig
from .notifications import BreakType, Intent, LoggingDispatcher, NotificationDispatcher
from .settings import SettingsProvider, is_valid_work_time_threshold
from .store import PersistentStore
from .timer import (
    DEFAULT_WORK_THRESHOLD_MS,
    TIMER_STATE_KEY,
    WORK_SESSION_KEY,
    RecoveryResult,
    TickResult,
    TimerEngine,
    TimerStatus,
    format_duration,
)

logger = logging.getLogger("break_timer.service")

DEFERRED_PAUSE_JOB_ID = "deferred_pause"
LIVENESS_JOB_ID = "liveness_check"


def epoch_ms() -> int:
    return int(time.time() * 1000)


def cancel_job(job) -> None:
    """Remove a scheduled job handle if it has not fired yet."""
    if job is None:
        return
    try:
        job.remove()
    except JobLookupError:
        pass  # already ran


class BreakTimerService:
    def __init__(
        self,
        store: PersistentStore,
        settings: SettingsProvider,
        scheduler,
        dispatcher: NotificationDispatcher | None = None,
        clock: Callable[[], int] | None = None,
        config: EngineConfig | None = None,
    ):
        self.store = store
        self.settings = settings
        self.scheduler = scheduler
        self.dispatcher = dispatcher or LoggingDispatcher()
        self.config = config or EngineConfig()
        self._clock = clock or epoch_ms
        self.engine = TimerEngine(
            now_ms=self._clock(),
            inactivity_threshold_ms=self.config.inactivity_threshold_ms,
            notification_cooldown_ms=self.config.notification_cooldown_ms,
            stale_work_segment_ms=self.config.stale_work_segment_ms,
            max_break_elapsed_ms=self.config.max_break_elapsed_ms,
        )
        self._write_lock = asyncio.Lock()
        self._dirty = False
        self._activity_unsaved = False
        self._deferred_pause_job = None
        self._liveness_job = None
        self._last_liveness_ms: int | None = None

    # ---- Lifecycle ----

    async def start(self) -> RecoveryResult:
        """Load persisted state, reconcile it with now and register jobs."""
        now = self._clock()
        try:
            records = await self.store.get_many([TIMER_STATE_KEY, WORK_SESSION_KEY])
        except Exception as e:
            logger.error(f"Error loading persisted timer state, starting fresh: {e}")
            records = None

        result = self.engine.restore(records, now)
        for problem in result.problems:
            logger.warning(f"Recovery: {problem}")
        logger.info(
            f"Timer recovered ({result.action}): mode={self.engine.mode.value}, "
            f"work={format_duration(self.engine.current_work_ms(now))}"
        )
        self._dispatch(result.intents)

        if not self.engine.is_browser_focused:
            lost_for = now - (self.engine.focus_lost_ms or now)
            self._schedule_deferred_pause(max(0, self.config.inactivity_threshold_ms - lost_for))

        self._last_liveness_ms = now
        self._liveness_job = self.scheduler.add_job(
            self.check_liveness,
            trigger=IntervalTrigger(seconds=self.config.liveness_interval_seconds),
            id=LIVENESS_JOB_ID,
            replace_existing=True,
            name="Timer liveness check",
        )
        await self.checkpoint()
        return result

    async def stop(self) -> None:
        cancel_job(self._deferred_pause_job)
        self._deferred_pause_job = None
        cancel_job(self._liveness_job)
        self._liveness_job = None
        await self.checkpoint()
        logger.info("Timer service stopped")

    # ---- Public operations ----

    def get_timer_status(self) -> TimerStatus:
        return self.engine.status(self._clock(), self._threshold_ms())

    async def start_work_timer(self) -> bool:
        return await self._apply("start_work_timer", *self.engine.start_work(self._clock()))

    async def pause_work_timer(self) -> bool:
        return await self._apply("pause_work_timer", *self.engine.pause(self._clock()))

    async def resume_work_timer(self) -> bool:
        return await self._apply("resume_work_timer", *self.engine.resume(self._clock()))

    async def reset_work_timer(self) -> bool:
        return await self._apply("reset_work_timer", *self.engine.reset(self._clock()))

    async def start_break(self, break_type, duration_minutes=None) -> bool:
        if duration_minutes is None:
            try:
                duration_minutes = self.settings.break_duration_minutes(BreakType(break_type))
            except (ValueError, KeyError):
                logger.info(f"start_break rejected: unknown break type {break_type!r}")
                return False
        return await self._apply(
            "start_break", *self.engine.start_break(self._clock(), break_type, duration_minutes)
        )

    async def end_break(self) -> bool:
        return await self._apply("end_break", *self.engine.end_break(self._clock()))

    async def cancel_break(self) -> bool:
        return await self._apply("cancel_break", *self.engine.cancel_break(self._clock()))

    async def update_activity(self) -> None:
        now = self._clock()
        resumed, result = self.engine.record_activity(now)
        result.intents.extend(self._check_threshold(now).intents)
        if resumed or result.intents:
            await self._publish(result)
        else:
            # Only lastActivityTime moved; the next checkpoint carries it.
            self._activity_unsaved = True

    async def handle_browser_focus_lost(self) -> None:
        if not self.engine.focus_lost(self._clock()):
            return
        self._schedule_deferred_pause(self.config.inactivity_threshold_ms)
        await self.checkpoint()

    async def handle_browser_focus_gained(self) -> None:
        cancel_job(self._deferred_pause_job)
        self._deferred_pause_job = None
        resumed, result = self.engine.focus_gained(self._clock())
        if resumed:
            logger.info("Browser focus regained, work timer resumed")
        await self._publish(result)

    async def update_work_time_threshold(self, minutes) -> bool:
        if not is_valid_work_time_threshold(minutes):
            logger.info(f"update_work_time_threshold rejected: {minutes!r}")
            return False
        try:
            ok = await self.settings.update_work_time_threshold(minutes)
        except Exception as e:
            logger.error(f"Error updating work time threshold: {e}")
            return False
        if ok:
            await self.checkpoint()
        return ok

    # ---- Scheduled jobs ----

    async def check_liveness(self) -> None:
        """Periodic job: reload settings, pause on inactivity or device sleep, flush pending writes."""
        await self._refresh_settings()
        now = self._clock()
        last_tick, self._last_liveness_ms = self._last_liveness_ms, now
        paused, result = self.engine.check_liveness(now, last_tick)
        if paused:
            logger.info("No activity within the inactivity threshold, work timer paused")
        result.intents.extend(self._check_threshold(now).intents)
        if paused or result.intents or self._dirty or self._activity_unsaved:
            await self._publish(result)

    async def _deferred_pause(self) -> None:
        self._deferred_pause_job = None
        ok, result = self.engine.pause(self._clock())
        if ok:
            logger.info("Browser unfocused past the inactivity threshold, work timer paused")
            await self._publish(result)

    def _schedule_deferred_pause(self, delay_ms: int) -> None:
        run_date = datetime.now() + timedelta(milliseconds=delay_ms)
        self._deferred_pause_job = self.scheduler.add_job(
            self._deferred_pause,
            trigger=DateTrigger(run_date=run_date),
            id=DEFERRED_PAUSE_JOB_ID,
            replace_existing=True,
            name="Deferred pause after focus loss",
        )

    # ---- Persistence ----

    async def checkpoint(self) -> bool:
        """Write the latest state. Failures keep the state dirty for a retry."""
        async with self._write_lock:
            # Snapshot inside the lock so the last write always carries the latest state.
            records = self.engine.to_records(self._threshold_ms())
            try:
                await self.store.set_many(records)
            except Exception as e:
                self._dirty = True
                logger.error(f"Checkpoint failed, keeping in-memory state: {e}")
                return False
            if self._dirty:
                logger.info("Checkpoint succeeded after earlier failure")
            self._dirty = False
            self._activity_unsaved = False
            return True

    @property
    def needs_checkpoint(self) -> bool:
        return self._dirty

    # ---- Internal ----

    async def _apply(self, operation: str, ok: bool, result: TickResult) -> bool:
        if not ok:
            logger.info(f"{operation} rejected in mode {self.engine.mode.value}")
            return False
        if result.old_mode is not None and result.old_mode != self.engine.mode:
            logger.info(f"{operation}: {result.old_mode.value} -> {self.engine.mode.value}")
        await self._publish(result)
        return True

    async def _publish(self, result: TickResult) -> None:
        self._dispatch(result.intents)
        await self.checkpoint()

    def _dispatch(self, intents: list[Intent]) -> None:
        for intent in intents:
            try:
                self.dispatcher.dispatch(intent)
            except Exception as e:
                logger.error(f"Dispatcher failed for {intent.kind}: {e}")

    def _check_threshold(self, now: int) -> TickResult:
        return self.engine.check_threshold(now, self._threshold_ms(), self._notifications_enabled())

    async def _refresh_settings(self) -> None:
        try:
            await self.settings.refresh()
        except Exception as e:
            logger.error(f"Error refreshing settings, keeping current: {e}")

    def _threshold_ms(self) -> int:
        try:
            return self.settings.work_threshold_ms()
        except Exception as e:
            logger.error(f"Error reading work threshold, using default: {e}")
            return DEFAULT_WORK_THRESHOLD_MS

    def _notifications_enabled(self) -> bool:
        try:
            return self.settings.notifications_enabled()
        except Exception as e:
            logger.error(f"Error reading notification setting: {e}")
            return True
