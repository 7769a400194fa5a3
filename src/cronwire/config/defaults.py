"""Built-in seed jobs re-created on every serve-mode startup."""

from __future__ import annotations

DEFAULT_SEED_JOBS: tuple[dict[str, object], ...] = (
    {
        "name": "Health Check",
        "schedule": "0 */6 * * *",  # every 6 hours
        "command": "uptime",
        "enabled": True,
    },
    {
        "name": "Weekly Disk Report",
        "schedule": "0 9 * * 1",  # Mondays at 09:00
        "command": "df -h",
        "enabled": False,
    },
    {
        "name": "Heartbeat Echo",
        "schedule": "* * * * *",
        "command": "echo ok",
        "enabled": True,
    },
)

SCHEDULE_EXAMPLE = "0 */6 * * * (every 6 hours)"
