"""Runs tutorial steps strictly one at a time."""

from __future__ import annotations

import time
from enum import Enum
from functools import partial
from typing import Callable, List, Optional, Protocol, Sequence

import structlog

from analytics import ProgressRecord, TutorialAnalytics

from .errors import ConfigurationError, StepInternalError
from .scheduler import Scheduler, TimerHandle
from .steps import FinishToken, Step

logger = structlog.get_logger(__name__)


class SequencerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class StepOutcome(str, Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    STOPPED = "stopped"
    FAILED = "failed"


class AmbientInteraction(Protocol):
    """Host affordances switched off while a tutorial runs."""

    def disable(self) -> None:
        ...

    def enable(self) -> None:
        ...


class StepSequencer:
    """Owns an ordered list of steps and drives their lifecycle.

    Each ``start`` of a step receives a fresh :class:`FinishToken`; only the
    token issued for the step currently running can advance the sequence, and
    only once. Cleanup of the current step always runs before the next step
    starts. Cleanup failures are logged and ignored. A failing ``start`` ends
    the run.
    """

    def __init__(
        self,
        steps: Sequence[Step],
        *,
        name: str = "tutorial",
        ambient: Optional[AmbientInteraction] = None,
        analytics: Optional[TutorialAnalytics] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Optional[Callable[[], float]] = None,
        on_complete: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[StepInternalError], None]] = None,
        default_step_timeout_ms: Optional[float] = None,
        strict_finish: bool = False,
    ) -> None:
        self.name = name
        self._steps: List[Step] = list(steps)
        self._ambient = ambient
        self._analytics = analytics or TutorialAnalytics()
        self._scheduler = scheduler
        if clock is None:
            clock = scheduler.now if scheduler is not None else time.monotonic
        self._clock = clock
        self._on_complete = on_complete
        self._on_error = on_error
        self._default_timeout_ms = default_step_timeout_ms
        self._strict_finish = strict_finish

        self._state = SequencerState.IDLE
        self._index = -1
        self._current: Optional[Step] = None
        self._token: Optional[FinishToken] = None
        self._generation = 0
        self._timeout: Optional[TimerHandle] = None
        self._started_at = 0.0
        self._step_started_at = 0.0
        self._completed: List[str] = []
        self._last_error: Optional[StepInternalError] = None

    @property
    def analytics(self) -> TutorialAnalytics:
        return self._analytics

    @property
    def steps(self) -> List[Step]:
        return list(self._steps)

    @property
    def state(self) -> SequencerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SequencerState.RUNNING

    @property
    def step_index(self) -> int:
        return self._index

    @property
    def current_step(self) -> Optional[Step]:
        return self._current

    @property
    def completed_steps(self) -> List[str]:
        return list(self._completed)

    @property
    def last_error(self) -> Optional[StepInternalError]:
        return self._last_error

    def start(self) -> None:
        if not self._steps:
            raise ConfigurationError("Cannot start a tutorial without steps")
        if self._current is not None:
            self._retire(self._current, StepOutcome.STOPPED)
        self._index = -1
        self._current = None
        self._completed = []
        self._last_error = None
        for step in self._steps:
            self._cleanup_quietly(step)
        if self._ambient is not None:
            self._ambient.disable()
        self._started_at = self._clock()
        self._state = SequencerState.RUNNING
        logger.info("tutorial_started", tutorial=self.name, steps=len(self._steps))
        self._analytics.track_tutorial_start(self.name, len(self._steps))
        self._advance(None)

    def restart_current_step(self) -> bool:
        step = self._current
        if step is None:
            return False
        logger.info("step_restarted", tutorial=self.name, step=step.tag, index=self._index)
        self._release_token()
        self._cleanup_quietly(step)
        self._analytics.track_step_restarted(self.name, step.tag, self._index)
        self._start_current()
        return True

    def stop(self) -> None:
        step = self._current
        if step is not None:
            logger.info("tutorial_stopped", tutorial=self.name, step=step.tag, index=self._index)
            self._retire(step, StepOutcome.STOPPED)
            self._analytics.track_tutorial_stopped(self.name, step.tag)
        self._reset()
        if self._ambient is not None:
            self._ambient.enable()

    def _advance(self, outcome: Optional[StepOutcome]) -> None:
        step = self._current
        if step is not None:
            if outcome is StepOutcome.COMPLETED:
                self._completed.append(step.tag)
                if step.should_log:
                    self._emit_progress(step)
            self._retire(step, outcome or StepOutcome.COMPLETED)

        self._index += 1
        if self._index >= len(self._steps):
            total = self._clock() - self._started_at
            logger.info("tutorial_completed", tutorial=self.name, total_seconds=round(total, 3))
            self._reset()
            self._analytics.track_tutorial_completed(self.name, total)
            if self._on_complete is not None:
                self._on_complete()
            return

        self._current = self._steps[self._index]
        self._start_current()

    def _start_current(self) -> None:
        step = self._current
        if step is None:
            return
        index = self._index
        self._generation += 1
        token = FinishToken(step.tag, self._generation, self._handle_finish, strict=self._strict_finish)
        self._token = token
        self._step_started_at = self._clock()
        self._arm_timeout(step, token)
        logger.info("step_started", tutorial=self.name, step=step.tag, index=index)
        self._analytics.track_step_started(self.name, step.tag, index)
        try:
            step.start(token)
        except StepInternalError:
            # Raised by a later step started from inside this one; already handled.
            raise
        except Exception as exc:
            self._fail(step, index, token, exc)

    def _handle_finish(self, token: FinishToken) -> None:
        if token is not self._token or self._state is not SequencerState.RUNNING:
            logger.warning("stale_finish_ignored", step=token.tag, generation=token.generation)
            return
        self._advance(StepOutcome.COMPLETED)

    def _handle_timeout(self, token: FinishToken) -> None:
        if token is not self._token or not token.active:
            return
        logger.warning("step_timed_out", tutorial=self.name, step=token.tag, index=self._index)
        self._timeout = None
        self._advance(StepOutcome.TIMED_OUT)

    def _arm_timeout(self, step: Step, token: FinishToken) -> None:
        duration = getattr(step, "max_duration_ms", None)
        if duration is None:
            duration = self._default_timeout_ms
        if not duration:
            return
        if self._scheduler is None:
            logger.warning("step_timeout_unavailable", tutorial=self.name, step=step.tag, max_duration_ms=duration)
            return
        self._timeout = self._scheduler.schedule_once(duration, partial(self._handle_timeout, token))

    def _emit_progress(self, step: Step) -> None:
        now = self._clock()
        record = ProgressRecord(
            tag=step.tag,
            index=self._index,
            step_seconds=now - self._step_started_at,
            total_seconds=now - self._started_at,
        )
        logger.info(
            "step_completed",
            tutorial=self.name,
            step=record.tag,
            index=record.index,
            step_seconds=round(record.step_seconds, 3),
            total_seconds=round(record.total_seconds, 3),
        )
        self._analytics.track_step_progress(self.name, record)

    def _retire(self, step: Step, outcome: StepOutcome) -> None:
        self._release_token()
        self._cleanup_quietly(step)
        self._analytics.track_step_outcome(self.name, step.tag, self._index, outcome.value)

    def _release_token(self) -> None:
        if self._token is not None:
            self._token.revoke()
            self._token = None
        if self._timeout is not None and self._scheduler is not None:
            self._scheduler.cancel(self._timeout)
        self._timeout = None

    def _cleanup_quietly(self, step: Step) -> None:
        try:
            step.cleanup()
        except Exception as exc:
            error = StepInternalError(step.tag, "cleanup", exc)
            logger.warning("step_cleanup_failed", step=step.tag, error=str(error), exc_info=True)

    def _fail(self, step: Step, index: int, token: FinishToken, exc: Exception) -> None:
        error = StepInternalError(step.tag, "start", exc)
        self._last_error = error
        logger.error("step_start_failed", tutorial=self.name, step=step.tag, index=index, error=str(exc))
        token.revoke()
        current = self._current
        if current is step:
            self._retire(step, StepOutcome.FAILED)
        else:
            # The step finished and raised afterwards; the next one is already running.
            if current is not None:
                self._retire(current, StepOutcome.STOPPED)
            self._cleanup_quietly(step)
            self._analytics.track_step_outcome(self.name, step.tag, index, StepOutcome.FAILED.value)
        self._reset()
        if self._ambient is not None:
            self._ambient.enable()
        if self._on_error is not None:
            self._on_error(error)
            return
        raise error from exc

    def _reset(self) -> None:
        self._release_token()
        self._current = None
        self._index = -1
        self._state = SequencerState.IDLE


__all__ = ["AmbientInteraction", "SequencerState", "StepOutcome", "StepSequencer"]
