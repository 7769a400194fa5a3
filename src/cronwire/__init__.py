"""cronwire — cron-style command scheduler with a live telemetry relay."""

__version__ = "0.1.0"
