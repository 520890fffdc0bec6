"""Error types raised at the tutorial sequencer boundary."""

from __future__ import annotations

from typing import Optional


class TutorialError(Exception):
    """Base class for tutorial sequencing failures."""


class ConfigurationError(TutorialError):
    """The sequencer was asked to run something it cannot run."""


class StepInternalError(TutorialError):
    """An exception escaped a step's ``start`` or ``cleanup``."""

    def __init__(self, tag: str, phase: str, original: Optional[BaseException] = None) -> None:
        self.tag = tag
        self.phase = phase
        self.original = original
        detail = f": {original}" if original is not None else ""
        super().__init__(f"Step '{tag}' failed during {phase}{detail}")


class DoubleFinishError(TutorialError):
    """A step signalled completion more than once for the same start."""

    def __init__(self, tag: str) -> None:
        self.tag = tag
        super().__init__(f"Step '{tag}' finished more than once")


__all__ = [
    "TutorialError",
    "ConfigurationError",
    "StepInternalError",
    "DoubleFinishError",
]
