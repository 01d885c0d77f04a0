"""Runtime configuration, read from BREAK_TIMER_* environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import click

from .timer import (
    INACTIVITY_THRESHOLD_MS,
    MAX_BREAK_ELAPSED_MS,
    MINUTE_MS,
    NOTIFICATION_COOLDOWN_MS,
    STALE_WORK_SEGMENT_MS,
)

DEFAULT_DB_PATH = Path.home() / ".break-timer" / "break_timer.db"
DEFAULT_PORT = 7788
LIVENESS_INTERVAL_SECONDS = 30
TAB_DEBOUNCE_MS = 100


@dataclass
class EngineConfig:
    """Timing and location settings for one timer instance."""

    db_path: Path = field(default_factory=lambda: DEFAULT_DB_PATH)
    port: int = DEFAULT_PORT
    inactivity_threshold_ms: int = INACTIVITY_THRESHOLD_MS
    liveness_interval_seconds: int = LIVENESS_INTERVAL_SECONDS
    notification_cooldown_ms: int = NOTIFICATION_COOLDOWN_MS
    tab_debounce_ms: int = TAB_DEBOUNCE_MS
    stale_work_segment_ms: int = STALE_WORK_SEGMENT_MS
    max_break_elapsed_ms: int = MAX_BREAK_ELAPSED_MS
    verbose: bool = False

    def validate(self) -> None:
        """Validate configuration."""
        if not 0 < self.port < 65536:
            raise click.ClickException(f"Invalid port {self.port}")
        positive = {
            "inactivity threshold": self.inactivity_threshold_ms,
            "liveness interval": self.liveness_interval_seconds,
            "notification cooldown": self.notification_cooldown_ms,
        }
        for name, value in positive.items():
            if value <= 0:
                raise click.ClickException(f"Invalid {name}: {value} (must be positive)")
        if self.tab_debounce_ms < 0:
            raise click.ClickException(f"Invalid tab debounce: {self.tab_debounce_ms}ms")
        if self.stale_work_segment_ms <= self.inactivity_threshold_ms:
            raise click.ClickException("Stale segment bound must exceed the inactivity threshold")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise click.ClickException(f"{name} must be an integer, got {raw!r}")


def get_config() -> EngineConfig:
    """Build and validate configuration from the environment."""
    db = os.environ.get("BREAK_TIMER_DB")
    config = EngineConfig(
        db_path=Path(db).expanduser() if db else DEFAULT_DB_PATH,
        port=_env_int("BREAK_TIMER_PORT", DEFAULT_PORT),
        inactivity_threshold_ms=_env_int(
            "BREAK_TIMER_INACTIVITY_MINUTES", INACTIVITY_THRESHOLD_MS // MINUTE_MS
        ) * MINUTE_MS,
        liveness_interval_seconds=_env_int("BREAK_TIMER_LIVENESS_SECONDS", LIVENESS_INTERVAL_SECONDS),
        notification_cooldown_ms=_env_int(
            "BREAK_TIMER_COOLDOWN_MINUTES", NOTIFICATION_COOLDOWN_MS // MINUTE_MS
        ) * MINUTE_MS,
        tab_debounce_ms=_env_int("BREAK_TIMER_TAB_DEBOUNCE_MS", TAB_DEBOUNCE_MS),
        verbose=os.environ.get("BREAK_TIMER_VERBOSE", "false").lower() == "true",
    )
    config.validate()
    return config


def verbose_option(f):
    """Decorator to add verbose option to commands."""
    return click.option(
        "--verbose", "-v",
        is_flag=True,
        help="Enable verbose output",
    )(f)
