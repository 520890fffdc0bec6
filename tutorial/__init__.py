"""Tutorial package exposing the step sequencer and step variants."""

from .errors import ConfigurationError, DoubleFinishError, StepInternalError, TutorialError
from .events import Channel, MessageBus
from .scheduler import ManualScheduler
from .sequencer import SequencerState, StepOutcome, StepSequencer
from .steps import EventStep, FinishToken, InstantStep, PollingStep, StagedStep, Step, TimedStep

__all__ = [
    "Channel",
    "ConfigurationError",
    "DoubleFinishError",
    "EventStep",
    "FinishToken",
    "InstantStep",
    "ManualScheduler",
    "MessageBus",
    "PollingStep",
    "SequencerState",
    "StagedStep",
    "Step",
    "StepInternalError",
    "StepOutcome",
    "StepSequencer",
    "TimedStep",
    "TutorialError",
]
