"""Service layer helpers (settings, importers)."""

from .settings import Settings, SettingsStore

__all__ = ["Settings", "SettingsStore"]
