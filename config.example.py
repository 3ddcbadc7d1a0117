# config.example.py

"""
Documentation-only module (safe to commit).

Configuration is read from environment variables, optionally via a local
.env file (gitignored). Never commit Matrix passwords or session files.

Channel and role ids are Matrix room ids (e.g. "!abc:example.org"). The
tracked "role" is the room whose joined members make up the roster.
"""

ENV_VARS = {
    # App / logging
    "ROLLCALL_APP_NAME": "App display name (default: rollcall).",
    "ROLLCALL_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Paths (gitignored)
    "ROLLCALL_DATA_DIR": "Local data directory (default: .local/rollcall).",
    "ROLLCALL_DB_PATH": "SQLite database for tasks, windows and reactions (default: <data_dir>/rollcall.sqlite3).",
    "ROLLCALL_MATRIX_STORE_PATH": "Matrix E2EE store path (default: <data_dir>/matrix_store).",
    # Timing
    "ROLLCALL_TIMEZONE": "IANA timezone for all schedules (default: Asia/Bangkok).",
    "ROLLCALL_SWEEP_INTERVAL_SECONDS": "How often overdue tasks are swept (default: 60).",
    "ROLLCALL_RETRY_DELAY_SECONDS": "Delay before a failed close is retried (default: 60).",
    "ROLLCALL_DEVELOPMENT_MODE": "Open one short test window after boot instead of the daily schedule.",
    "ROLLCALL_DEV_WINDOW_SECONDS": "Length of the development window (default: 120).",
    # Connectors
    "ROLLCALL_CONSOLE_ENABLED": "Enable the console REPL (true/false, default: true).",
    "ROLLCALL_MATRIX_ENABLED": "Use Matrix instead of the in-memory console gateway (true/false).",
    "ROLLCALL_CONSOLE_ROSTER": "Roster used by the console gateway (comma/space separated).",
    # Matrix
    "ROLLCALL_MATRIX_HOMESERVER": "Matrix homeserver URL.",
    "ROLLCALL_MATRIX_USER_ID": "Matrix user ID (bot).",
    "ROLLCALL_MATRIX_PASSWORD": "Password for first login (session stored locally).",
    # Channels / roles
    "ROLLCALL_REGISTRATION_CHANNEL_ID": "Room for the regular breakfast/dinner window.",
    "ROLLCALL_LATE_REGISTRATION_CHANNEL_ID": "Room for late-meal windows (default: registration room).",
    "ROLLCALL_REACTION_LOG_CHANNEL_ID": "Optional room that receives every accepted opt-in/opt-out.",
    "ROLLCALL_REMINDER_CHANNEL_ID": "Optional room for reminder messages.",
    "ROLLCALL_ERROR_CHANNEL_ID": "Optional room for operator error notifications.",
    "ROLLCALL_TRACKED_ROLE_ID": "Room whose members are expected to register (enables 'missing' lists).",
    # Windows ("HH:MM"; an end earlier than the start ends the next day)
    "ROLLCALL_REGULAR_START": "Regular window opens (default: 05:00).",
    "ROLLCALL_REGULAR_END": "Regular window closes (default: 03:00, next day).",
    "ROLLCALL_LATE_MORNING_START": "Late breakfast window opens (default: 05:00).",
    "ROLLCALL_LATE_MORNING_END": "Late breakfast window closes (default: 11:00).",
    "ROLLCALL_LATE_EVENING_START": "Late dinner window opens (default: 11:30).",
    "ROLLCALL_LATE_EVENING_END": "Late dinner window closes (default: 18:15).",
    "ROLLCALL_LATE_WINDOWS_ENABLED": "Open the late-meal windows (true/false, default: true).",
    "ROLLCALL_WINDOW_DAYS": "Weekdays windows open on, 0 = Sunday (default: every day).",
    # Reaction keys
    "ROLLCALL_EMOJI_BREAKFAST": "Breakfast reaction (default: 🌞).",
    "ROLLCALL_EMOJI_DINNER": "Dinner reaction (default: 🌙).",
    "ROLLCALL_EMOJI_LATE": "Late-meal reaction (default: ⏰).",
    # Templates ({date}, {startTime}, {endTime}; reminders also get {time})
    "ROLLCALL_TEMPLATE_REGULAR_TITLE": "Regular window title.",
    "ROLLCALL_TEMPLATE_REGULAR_BODY": "Regular window body.",
    "ROLLCALL_TEMPLATE_LATE_MORNING_TITLE": "Late breakfast window title.",
    "ROLLCALL_TEMPLATE_LATE_EVENING_TITLE": "Late dinner window title.",
    "ROLLCALL_TEMPLATE_LATE_BODY": "Late window body.",
    "ROLLCALL_TEMPLATE_FOOTER": "Footer appended to every opening message.",
    # Reminders
    "ROLLCALL_REMINDER_SCHEDULE": 'Comma separated "HH:MM" or cron entries (default: 06:00,12:00,18:00,00:00).',
    "ROLLCALL_TEMPLATE_REMINDER": "Reminder message text.",
}
