# src/rollcall/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app, built once by the entrypoint and
  passed explicitly (no module-level settings instance).
- No secrets required at import time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "ROLLCALL"

DEFAULT_TEMPLATE_REGULAR_TITLE = "Meal registration {date}"
DEFAULT_TEMPLATE_REGULAR_BODY = "React to register for tomorrow's meals:"
DEFAULT_TEMPLATE_LATE_MORNING_TITLE = "Late breakfast registration {date}"
DEFAULT_TEMPLATE_LATE_EVENING_TITLE = "Late dinner registration {date}"
DEFAULT_TEMPLATE_LATE_BODY = "React if you need a late meal set aside:"
DEFAULT_TEMPLATE_FOOTER = "Registration closes at {endTime}"
DEFAULT_TEMPLATE_REMINDER = "Reminder: meal registration is open. React on today's message to register ({time})."


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: list[str], *, sep: str | None = None) -> list[str]:
    """Split on commas/whitespace, or only on `sep` when given (for cron entries)."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    if sep is not None:
        return [p.strip() for p in raw.split(sep) if p.strip()]
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


def _env_days(name: str) -> tuple[int, ...] | None:
    parts = _env_list(name, [])
    days = []
    for p in parts:
        try:
            d = int(p)
        except ValueError:
            continue
        if 0 <= d <= 6:
            days.append(d)
    return tuple(sorted(set(days))) or None


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def _env_id(name: str) -> str | None:
    raw = (os.getenv(name) or "").strip()
    return raw or None


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    data_dir: Path
    db_path: Path

    # ---- Timing ----
    timezone: str
    sweep_interval_seconds: float
    retry_delay_seconds: float
    development_mode: bool
    dev_window_seconds: float

    # ---- Connector flags ----
    console_enabled: bool
    matrix_enabled: bool

    # ---- Matrix ----
    matrix_homeserver: str
    matrix_user_id: str
    matrix_password: str
    matrix_store_path: Path

    # ---- Channels / roles (Matrix room ids in production) ----
    registration_channel_id: str | None
    late_registration_channel_id: str | None
    reaction_log_channel_id: str | None
    reminder_channel_id: str | None
    error_channel_id: str | None
    tracked_role_id: str | None

    # ---- Windows ("HH:MM"; end before start means next day) ----
    regular_start: str
    regular_end: str
    late_morning_start: str
    late_morning_end: str
    late_evening_start: str
    late_evening_end: str
    late_windows_enabled: bool
    window_days: tuple[int, ...] | None

    # ---- Reaction keys ----
    emoji_breakfast: str
    emoji_dinner: str
    emoji_late: str

    # ---- Message templates ({date}, {startTime}, {endTime}, {time}) ----
    template_regular_title: str
    template_regular_body: str
    template_late_morning_title: str
    template_late_evening_title: str
    template_late_body: str
    template_footer: str

    # ---- Reminders ----
    reminder_schedule: list[str]
    template_reminder: str

    # ---- Console gateway ----
    console_roster: list[str]

    @staticmethod
    def from_env(*, load_env_file: bool = True) -> "Settings":
        if load_env_file:
            load_dotenv(override=False)

        app_name = _first_env(_k("APP_NAME"), default="rollcall") or "rollcall"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/rollcall"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "rollcall.sqlite3")
        matrix_store_path = _env_path(_k("MATRIX_STORE_PATH"), data_dir / "matrix_store")

        matrix_homeserver = (_first_env(_k("MATRIX_HOMESERVER"), "MATRIX_HOMESERVER", default="") or "").strip()
        matrix_user_id = (_first_env(_k("MATRIX_USER_ID"), "MATRIX_USER_ID", default="") or "").strip()
        matrix_password = (_first_env(_k("MATRIX_PASSWORD"), "MATRIX_PASSWORD", default="") or "").strip()

        registration_channel_id = _env_id(_k("REGISTRATION_CHANNEL_ID"))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            db_path=db_path,
            timezone=_env(_k("TIMEZONE"), "Asia/Bangkok"),
            sweep_interval_seconds=_env_float(_k("SWEEP_INTERVAL_SECONDS"), 60.0),
            retry_delay_seconds=_env_float(_k("RETRY_DELAY_SECONDS"), 60.0),
            development_mode=_env_bool(_k("DEVELOPMENT_MODE"), False),
            dev_window_seconds=_env_float(_k("DEV_WINDOW_SECONDS"), 120.0),
            console_enabled=_env_bool(_k("CONSOLE_ENABLED"), True),
            matrix_enabled=_env_bool(_k("MATRIX_ENABLED"), False),
            matrix_homeserver=matrix_homeserver,
            matrix_user_id=matrix_user_id,
            matrix_password=matrix_password,
            matrix_store_path=matrix_store_path,
            registration_channel_id=registration_channel_id,
            late_registration_channel_id=_env_id(_k("LATE_REGISTRATION_CHANNEL_ID")) or registration_channel_id,
            reaction_log_channel_id=_env_id(_k("REACTION_LOG_CHANNEL_ID")),
            reminder_channel_id=_env_id(_k("REMINDER_CHANNEL_ID")),
            error_channel_id=_env_id(_k("ERROR_CHANNEL_ID")),
            tracked_role_id=_env_id(_k("TRACKED_ROLE_ID")),
            regular_start=_env(_k("REGULAR_START"), "05:00"),
            regular_end=_env(_k("REGULAR_END"), "03:00"),
            late_morning_start=_env(_k("LATE_MORNING_START"), "05:00"),
            late_morning_end=_env(_k("LATE_MORNING_END"), "11:00"),
            late_evening_start=_env(_k("LATE_EVENING_START"), "11:30"),
            late_evening_end=_env(_k("LATE_EVENING_END"), "18:15"),
            late_windows_enabled=_env_bool(_k("LATE_WINDOWS_ENABLED"), True),
            window_days=_env_days(_k("WINDOW_DAYS")),
            emoji_breakfast=_env(_k("EMOJI_BREAKFAST"), "🌞"),
            emoji_dinner=_env(_k("EMOJI_DINNER"), "🌙"),
            emoji_late=_env(_k("EMOJI_LATE"), "⏰"),
            template_regular_title=_env(_k("TEMPLATE_REGULAR_TITLE"), DEFAULT_TEMPLATE_REGULAR_TITLE),
            template_regular_body=_env(_k("TEMPLATE_REGULAR_BODY"), DEFAULT_TEMPLATE_REGULAR_BODY),
            template_late_morning_title=_env(_k("TEMPLATE_LATE_MORNING_TITLE"), DEFAULT_TEMPLATE_LATE_MORNING_TITLE),
            template_late_evening_title=_env(_k("TEMPLATE_LATE_EVENING_TITLE"), DEFAULT_TEMPLATE_LATE_EVENING_TITLE),
            template_late_body=_env(_k("TEMPLATE_LATE_BODY"), DEFAULT_TEMPLATE_LATE_BODY),
            template_footer=_env(_k("TEMPLATE_FOOTER"), DEFAULT_TEMPLATE_FOOTER),
            reminder_schedule=_env_list(_k("REMINDER_SCHEDULE"), ["06:00", "12:00", "18:00", "00:00"], sep=","),
            template_reminder=_env(_k("TEMPLATE_REMINDER"), DEFAULT_TEMPLATE_REMINDER),
            console_roster=_env_list(_k("CONSOLE_ROSTER"), ["@alice:local", "@bob:local", "@carol:local"]),
        )


def get_settings() -> Settings:
    return Settings.from_env()
