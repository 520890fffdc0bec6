"""Step contract and the reusable step variants.

A step is told to ``start`` with a :class:`FinishToken` and decides for itself
when it is done: after a delay, when a polled condition turns true, or when a
message arrives on a channel. ``cleanup`` must undo everything ``start`` set
up, be safe to call repeatedly, and be safe to call on a step that never
started.
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional, Protocol, Tuple

import structlog

from .errors import DoubleFinishError
from .events import Channel, EventBus, Handler, parse_message
from .scheduler import Callback, Scheduler, TimerHandle

logger = structlog.get_logger(__name__)


class FinishToken:
    """One-shot completion signal handed to a single ``start`` call."""

    def __init__(
        self,
        tag: str,
        generation: int,
        on_finish: Callable[["FinishToken"], None],
        *,
        strict: bool = False,
    ) -> None:
        self.tag = tag
        self.generation = generation
        self._on_finish = on_finish
        self._strict = strict
        self._used = False
        self._revoked = False

    @property
    def used(self) -> bool:
        return self._used

    @property
    def active(self) -> bool:
        return not self._used and not self._revoked

    def revoke(self) -> None:
        self._revoked = True

    def __call__(self) -> bool:
        if self._used:
            if self._strict:
                raise DoubleFinishError(self.tag)
            logger.warning("step_finished_twice", step=self.tag, generation=self.generation)
            return False
        if self._revoked:
            logger.warning("stale_finish_ignored", step=self.tag, generation=self.generation)
            return False
        self._used = True
        self._on_finish(self)
        return True


class Step(Protocol):
    tag: str
    should_log: bool
    max_duration_ms: Optional[float]

    def start(self, finish: FinishToken) -> None:
        ...

    def cleanup(self) -> None:
        ...


class ContentPresenter(Protocol):
    """Host-side content grouped by tag (entities, overlays, sounds)."""

    def show(self, tag: str) -> None:
        ...

    def hide(self, tag: str) -> None:
        ...

    def clear(self, tag: str) -> None:
        """Delete content spawned at runtime under ``tag``."""
        ...


class BaseStep:
    """Shared lifecycle plumbing for concrete steps.

    Timers and subscriptions created through ``_schedule_once``,
    ``_schedule_repeating`` and ``_subscribe`` are released by ``cleanup``, so
    no callback owned by this step can fire once cleanup returns.
    """

    def __init__(
        self,
        tag: str,
        *,
        scheduler: Optional[Scheduler] = None,
        bus: Optional[EventBus] = None,
        presenter: Optional[ContentPresenter] = None,
        should_log: bool = True,
        max_duration_ms: Optional[float] = None,
    ) -> None:
        self.tag = tag
        self.temp_tag = f"{tag}-temporary"
        self.should_log = should_log
        self.max_duration_ms = max_duration_ms
        self.scheduler = scheduler
        self.bus = bus
        self.presenter = presenter
        self._finish: Optional[FinishToken] = None
        self._timers: List[TimerHandle] = []
        self._subscriptions: List[Tuple[Channel, Handler]] = []

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.tag!r})"

    @property
    def active(self) -> bool:
        return self._finish is not None

    def start(self, finish: FinishToken) -> None:
        self._release()
        self._finish = finish
        if self.presenter is not None:
            self.presenter.show(self.tag)
        self._begin()

    def cleanup(self) -> None:
        self._finish = None
        self._release()
        self._end()
        if self.presenter is not None:
            self.presenter.hide(self.tag)
            self.presenter.clear(self.temp_tag)

    def _begin(self) -> None:
        raise NotImplementedError

    def _end(self) -> None:
        """Undo step-specific state; runs on every cleanup."""

    def _complete(self) -> None:
        token = self._finish
        if token is None:
            return
        self._finish = None
        token()

    def _schedule_once(self, delay_ms: float, callback: Callback) -> TimerHandle:
        handle = self._require_scheduler().schedule_once(delay_ms, callback)
        self._timers.append(handle)
        return handle

    def _schedule_repeating(self, interval_ms: float, callback: Callback) -> TimerHandle:
        handle = self._require_scheduler().schedule_repeating(interval_ms, callback)
        self._timers.append(handle)
        return handle

    def _cancel(self, handle: Optional[TimerHandle]) -> None:
        if handle is None:
            return
        self._require_scheduler().cancel(handle)
        if handle in self._timers:
            self._timers.remove(handle)

    def _subscribe(self, channel: Channel, handler: Handler) -> None:
        self._require_bus().subscribe(channel, handler)
        self._subscriptions.append((channel, handler))

    def _unsubscribe(self, channel: Channel, handler: Handler) -> None:
        if self.bus is None:
            return
        self.bus.unsubscribe(channel, handler)
        if (channel, handler) in self._subscriptions:
            self._subscriptions.remove((channel, handler))

    def _release(self) -> None:
        if self.scheduler is not None:
            for handle in self._timers:
                self.scheduler.cancel(handle)
        self._timers = []
        if self.bus is not None:
            for channel, handler in self._subscriptions:
                self.bus.unsubscribe(channel, handler)
        self._subscriptions = []

    def _require_scheduler(self) -> Scheduler:
        if self.scheduler is None:
            raise RuntimeError(f"Step '{self.tag}' needs a scheduler")
        return self.scheduler

    def _require_bus(self) -> EventBus:
        if self.bus is None:
            raise RuntimeError(f"Step '{self.tag}' needs an event bus")
        return self.bus


class InstantStep(BaseStep):
    """Runs an optional action and finishes straight away."""

    def __init__(self, tag: str, action: Optional[Callable[[], None]] = None, **kwargs: Any) -> None:
        super().__init__(tag, **kwargs)
        self._action = action

    def _begin(self) -> None:
        if self._action is not None:
            self._action()
        self._complete()


class TimedStep(BaseStep):
    """Finishes once a fixed delay has elapsed."""

    def __init__(self, tag: str, delay_ms: float, **kwargs: Any) -> None:
        super().__init__(tag, **kwargs)
        self.delay_ms = delay_ms
        self._timer: Optional[TimerHandle] = None

    def _begin(self) -> None:
        self._timer = self._schedule_once(self.delay_ms, self._complete)

    def _end(self) -> None:
        self._timer = None


class PollingStep(BaseStep):
    """Checks a condition on a fixed interval and finishes when it holds.

    Pass ``predicate`` or override :meth:`check`. :meth:`reset` runs on every
    start so subclasses with their own counters begin from scratch.
    """

    def __init__(
        self,
        tag: str,
        predicate: Optional[Callable[[], bool]] = None,
        *,
        interval_ms: float = 500,
        **kwargs: Any,
    ) -> None:
        super().__init__(tag, **kwargs)
        self.interval_ms = interval_ms
        self.polls = 0
        self._predicate = predicate
        self._interval: Optional[TimerHandle] = None

    def reset(self) -> None:
        pass

    def check(self) -> bool:
        if self._predicate is None:
            return False
        return bool(self._predicate())

    def _begin(self) -> None:
        self.polls = 0
        self.reset()
        self._interval = self._schedule_repeating(self.interval_ms, self._poll)

    def _poll(self) -> None:
        if not self.active:
            return
        self.polls += 1
        logger.debug("step_polled", step=self.tag, polls=self.polls)
        if self.check():
            self._cancel(self._interval)
            self._interval = None
            self._complete()

    def _end(self) -> None:
        self._interval = None


class EventStep(BaseStep):
    """Finishes when a matching message arrives on ``channel``."""

    def __init__(
        self,
        tag: str,
        channel: Channel,
        matcher: Optional[Callable[[dict], bool]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(tag, **kwargs)
        self.channel = channel
        self._matcher = matcher

    def matches(self, data: dict) -> bool:
        if self._matcher is None:
            return True
        return bool(self._matcher(data))

    def _begin(self) -> None:
        self._subscribe(self.channel, self._on_message)

    def _on_message(self, message: Any) -> None:
        if not self.active:
            return
        data = parse_message(message)
        if not self.matches(data):
            return
        logger.debug("step_message_matched", step=self.tag, channel=self.channel.value)
        self._unsubscribe(self.channel, self._on_message)
        self._complete()


class StagedStep(BaseStep):
    """Step with a private sub-state machine.

    Subclasses set ``initial_stage`` and react to :meth:`on_stage`; the
    sequencer only ever sees the single start/cleanup/finish contract.
    """

    COMPLETE = "complete"
    initial_stage = "start"

    def __init__(self, tag: str, **kwargs: Any) -> None:
        super().__init__(tag, **kwargs)
        self.stage: str = self.COMPLETE

    def _begin(self) -> None:
        self.enter(self.initial_stage)

    def enter(self, stage: str) -> None:
        if not self.active:
            return
        logger.debug("step_stage_entered", step=self.tag, stage=stage)
        self.stage = stage
        self.on_stage(stage)

    def on_stage(self, stage: str) -> None:
        pass

    def finish_after(self, delay_ms: float) -> None:
        """Mark the step complete and signal finish once ``delay_ms`` passes."""
        self.stage = self.COMPLETE
        if delay_ms <= 0:
            self._complete()
            return
        self._schedule_once(delay_ms, self._complete)

    def _end(self) -> None:
        self.stage = self.COMPLETE


__all__ = [
    "BaseStep",
    "ContentPresenter",
    "EventStep",
    "FinishToken",
    "InstantStep",
    "PollingStep",
    "StagedStep",
    "Step",
    "TimedStep",
]
