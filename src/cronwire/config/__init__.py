"""Configuration — environment-driven settings and built-in defaults."""

from cronwire.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
