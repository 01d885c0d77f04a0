"""Routes activity-source events into the timer service.

Events are handled in arrival order. The one exception is a burst of tab
activations: they are collapsed to the most recent tab through a
replace-existing scheduled job, and any pending activation is flushed before
a focus or activity event is handled so ordering is preserved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Union

from apscheduler.triggers.date import DateTrigger

from .config import TAB_DEBOUNCE_MS
from .service import BreakTimerService, cancel_job

logger = logging.getLogger("break_timer.activity")

TAB_DEBOUNCE_JOB_ID = "tab_debounce"


@dataclass(frozen=True)
class TabActivated:
    tab_id: int


@dataclass(frozen=True)
class BrowserFocusChanged:
    focused: bool


@dataclass(frozen=True)
class UserActivity:
    pass


ActivityEvent = Union[TabActivated, BrowserFocusChanged, UserActivity]


class ActivityRouter:
    def __init__(self, service: BreakTimerService, scheduler, debounce_ms: int = TAB_DEBOUNCE_MS):
        self.service = service
        self.scheduler = scheduler
        self.debounce_ms = debounce_ms
        self.current_tab_id: int | None = None
        self.coalesced = 0
        self._pending_tab_id: int | None = None
        self._debounce_job = None

    async def handle(self, event: ActivityEvent) -> None:
        if isinstance(event, TabActivated):
            self._debounce_tab(event.tab_id)
            return

        await self.flush()
        if isinstance(event, BrowserFocusChanged):
            if event.focused:
                await self.service.handle_browser_focus_gained()
            else:
                await self.service.handle_browser_focus_lost()
        elif isinstance(event, UserActivity):
            await self.service.update_activity()
        else:
            logger.warning(f"Ignoring unknown activity event: {event!r}")

    async def flush(self) -> None:
        """Apply a pending tab activation now."""
        tab_id = self._pending_tab_id
        if tab_id is None:
            return
        self._pending_tab_id = None
        cancel_job(self._debounce_job)
        self._debounce_job = None
        self.current_tab_id = tab_id
        await self.service.update_activity()

    def _debounce_tab(self, tab_id: int) -> None:
        if self._pending_tab_id is not None:
            self.coalesced += 1
        self._pending_tab_id = tab_id
        run_date = datetime.now() + timedelta(milliseconds=self.debounce_ms)
        self._debounce_job = self.scheduler.add_job(
            self.flush,
            trigger=DateTrigger(run_date=run_date),
            id=TAB_DEBOUNCE_JOB_ID,
            replace_existing=True,
            name="Tab activation debounce",
        )
