"""Persistence for tutorial state that outlives a session."""

from .settings import TUTORIAL_COMPLETE_KEY, SettingsStore

__all__ = ["SettingsStore", "TUTORIAL_COMPLETE_KEY"]
