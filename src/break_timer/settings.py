"""Break settings: work threshold, notification toggle and break durations.

SettingsManager persists settings in the store under `breakSettings` and is
the SettingsProvider the service reads on every evaluation, so edits take
effect without a restart.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, ValidationError, field_validator

from .notifications import BreakType
from .store import PersistentStore, StorageError
from .timer import MINUTE_MS

logger = logging.getLogger("break_timer.settings")

SETTINGS_KEY = "breakSettings"
SETTINGS_VERSION = 1
MIN_WORK_THRESHOLD_MINUTES = 5
MAX_WORK_THRESHOLD_MINUTES = 180
DEFAULT_WORK_THRESHOLD_MINUTES = 30


class BreakTypeConfig(BaseModel):
    duration: StrictInt = Field(gt=0, le=240)  # minutes
    label: str


def default_break_types() -> dict[BreakType, BreakTypeConfig]:
    return {
        BreakType.SHORT: BreakTypeConfig(duration=5, label="Short Break (5 min)"),
        BreakType.MEDIUM: BreakTypeConfig(duration=15, label="Medium Break (15 min)"),
        BreakType.LONG: BreakTypeConfig(duration=30, label="Long Break (30 min)"),
    }


class BreakSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    work_time_threshold_minutes: StrictInt = Field(
        DEFAULT_WORK_THRESHOLD_MINUTES,
        ge=MIN_WORK_THRESHOLD_MINUTES,
        le=MAX_WORK_THRESHOLD_MINUTES,
        alias="workTimeThresholdMinutes",
    )
    notifications_enabled: StrictBool = Field(True, alias="notificationsEnabled")
    break_types: dict[BreakType, BreakTypeConfig] = Field(
        default_factory=default_break_types, alias="breakTypes"
    )
    version: StrictInt = SETTINGS_VERSION

    @field_validator("break_types")
    @classmethod
    def _all_break_types(cls, value: dict) -> dict:
        missing = [t.value for t in BreakType if t not in value]
        if missing:
            raise ValueError(f"missing break types: {', '.join(missing)}")
        return value

    def to_storage(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


def is_valid_work_time_threshold(minutes) -> bool:
    return (
        isinstance(minutes, int)
        and not isinstance(minutes, bool)
        and MIN_WORK_THRESHOLD_MINUTES <= minutes <= MAX_WORK_THRESHOLD_MINUTES
    )


def _merge_stored(stored) -> BreakSettings:
    """Validate stored settings merged over the defaults."""
    if not isinstance(stored, dict):
        raise ValueError(f"stored settings are {type(stored).__name__}")
    return BreakSettings.model_validate({**BreakSettings().to_storage(), **stored})


class SettingsProvider(ABC):
    """Read side the timer service depends on."""

    @abstractmethod
    def get_settings(self) -> BreakSettings:
        ...

    @abstractmethod
    async def update_work_time_threshold(self, minutes) -> bool:
        ...

    async def refresh(self) -> BreakSettings:
        return self.get_settings()

    def work_threshold_ms(self) -> int:
        return self.get_settings().work_time_threshold_minutes * MINUTE_MS

    def notifications_enabled(self) -> bool:
        return self.get_settings().notifications_enabled

    def break_duration_minutes(self, break_type: BreakType) -> int:
        return self.get_settings().break_types[BreakType(break_type)].duration


class StaticSettings(SettingsProvider):
    """In-memory settings, validated like the persisted ones."""

    def __init__(self, settings: BreakSettings | None = None):
        self._settings = settings or BreakSettings()

    def get_settings(self) -> BreakSettings:
        return self._settings

    async def update_work_time_threshold(self, minutes) -> bool:
        if not is_valid_work_time_threshold(minutes):
            return False
        self._settings = self._settings.model_copy(update={"work_time_threshold_minutes": minutes})
        return True


class SettingsManager(SettingsProvider):
    """Settings persisted in the store, merged over defaults on load."""

    def __init__(self, store: PersistentStore):
        self.store = store
        self._settings = BreakSettings()

    def get_settings(self) -> BreakSettings:
        return self._settings

    async def load(self, persist_defaults: bool = True) -> BreakSettings:
        try:
            stored = await self.store.get(SETTINGS_KEY)
        except StorageError as e:
            logger.error(f"Error loading break settings, using defaults: {e}")
            self._settings = BreakSettings()
            return self._settings

        if stored is None:
            self._settings = BreakSettings()
            if persist_defaults:
                await self.save()
            return self._settings

        try:
            self._settings = _merge_stored(stored)
        except (ValidationError, ValueError) as e:
            logger.warning(f"Stored break settings invalid, using defaults: {e}")
            self._settings = BreakSettings()
            return self._settings

        if self._settings.version < SETTINGS_VERSION:
            logger.info(f"Migrating settings from version {self._settings.version} to {SETTINGS_VERSION}")
            self._settings = self._settings.model_copy(update={"version": SETTINGS_VERSION})
            if persist_defaults:
                await self.save()
        return self._settings

    async def refresh(self) -> BreakSettings:
        """Pick up settings written by another process.

        Unreadable or invalid stored settings keep the current ones.
        """
        try:
            stored = await self.store.get(SETTINGS_KEY)
        except StorageError as e:
            logger.warning(f"Error refreshing break settings, keeping current: {e}")
            return self._settings
        if stored is None:
            return self._settings
        try:
            fresh = _merge_stored(stored)
        except (ValidationError, ValueError) as e:
            logger.warning(f"Stored break settings invalid, keeping current: {e}")
            return self._settings
        if fresh != self._settings:
            logger.info("Break settings changed in storage, reloaded")
            self._settings = fresh
        return self._settings

    async def save(self) -> bool:
        try:
            await self.store.set(SETTINGS_KEY, self._settings.to_storage())
        except StorageError as e:
            logger.error(f"Error saving break settings: {e}")
            return False
        return True

    async def _apply(self, candidate: BreakSettings) -> bool:
        """Swap in validated settings; revert if they cannot be saved.

        Callers build the candidate after refresh() so an edit made by
        another process is not overwritten with a stale copy.
        """
        previous = self._settings
        self._settings = candidate
        if await self.save():
            return True
        self._settings = previous
        return False

    async def update_work_time_threshold(self, minutes) -> bool:
        if not is_valid_work_time_threshold(minutes):
            logger.warning(f"Invalid work time threshold: {minutes!r} minutes")
            return False
        await self.refresh()
        ok = await self._apply(
            self._settings.model_copy(update={"work_time_threshold_minutes": minutes})
        )
        if ok:
            logger.info(f"Work time threshold updated to {minutes} minutes")
        return ok

    async def update_notifications_enabled(self, enabled) -> bool:
        if not isinstance(enabled, bool):
            logger.warning(f"Invalid notifications enabled value: {enabled!r}")
            return False
        await self.refresh()
        return await self._apply(self._settings.model_copy(update={"notifications_enabled": enabled}))

    async def update_break_types(self, break_types: dict) -> bool:
        return await self.update_settings({"breakTypes": break_types})

    async def update_settings(self, changes: dict) -> bool:
        """Validate and apply a partial settings dict (camelCase keys)."""
        if not isinstance(changes, dict):
            return False
        await self.refresh()
        try:
            candidate = BreakSettings.model_validate({**self._settings.to_storage(), **changes})
        except ValidationError as e:
            logger.warning(f"Rejected settings update: {e.error_count()} invalid field(s)")
            return False
        return await self._apply(candidate)

    async def reset_to_defaults(self) -> bool:
        return await self._apply(BreakSettings())

    def export_settings(self) -> str:
        return json.dumps(self._settings.to_storage(), indent=2)

    async def import_settings(self, settings_json: str) -> bool:
        try:
            imported = json.loads(settings_json)
        except json.JSONDecodeError as e:
            logger.warning(f"Error importing settings: {e}")
            return False
        return await self.update_settings(imported)

    def summary(self) -> dict:
        s = self._settings
        return {
            "workTimeThreshold": f"{s.work_time_threshold_minutes} minutes",
            "notificationsEnabled": "Enabled" if s.notifications_enabled else "Disabled",
            "breakTypesCount": len(s.break_types),
            "version": s.version,
        }
