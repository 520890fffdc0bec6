"""Scene controller that exposes the onboarding course to the host."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

from analytics import TutorialAnalytics
from config import get_tutorial_settings
from storage import TUTORIAL_COMPLETE_KEY, SettingsStore
from tutorial.course import CourseAmbient, CoursePresenter, EntityMover, Region, WorldState, build_course
from tutorial.errors import StepInternalError
from tutorial.events import EventBus, MessageBus
from tutorial.scheduler import ManualScheduler, Scheduler
from tutorial.sequencer import StepSequencer

logger = structlog.get_logger(__name__)


@dataclass
class SceneState:
    """Serializable snapshot consumed by the UI layer."""

    tutorial: str
    running: bool
    step_index: int
    step: Optional[str]
    completed: List[str]
    is_completed: bool
    error: Optional[str]


class TutorialScene:
    """High-level façade a host binds to a button or console command."""

    def __init__(
        self,
        world: WorldState,
        presenter: CoursePresenter,
        *,
        bus: Optional[EventBus] = None,
        scheduler: Optional[Scheduler] = None,
        store: Optional[SettingsStore] = None,
        analytics: Optional[TutorialAnalytics] = None,
        settings: Optional[Dict[str, Any]] = None,
        mover: Optional[EntityMover] = None,
    ) -> None:
        settings = settings if settings is not None else get_tutorial_settings()
        self.bus = bus or MessageBus()
        self.scheduler = scheduler or ManualScheduler()
        self.store = store or SettingsStore()
        pad = settings.get("teleportPad", {})
        home = settings.get("itemHome")
        ambient = CourseAmbient(self.bus, presenter)
        steps = build_course(
            world=world,
            presenter=presenter,
            bus=self.bus,
            scheduler=self.scheduler,
            ambient=ambient,
            teleport_pad=Region(
                center_x=float(pad.get("x", 0.0)),
                center_z=float(pad.get("z", 0.0)),
                width=float(pad.get("width", 1.0)),
                depth=float(pad.get("depth", 1.0)),
            ),
            on_finished=self._mark_completed,
            poll_interval_ms=float(settings.get("pollIntervalMs", 500)),
            welcome_delay_ms=settings.get("welcomeDelayMs"),
            include_raise_hands=bool(settings.get("includeRaiseHands", False)),
            mover=mover,
            item_home=(float(home["x"]), float(home["y"]), float(home["z"])) if home else None,
        )
        self.sequencer = StepSequencer(
            steps,
            name=str(settings.get("name", "onboarding")),
            ambient=ambient,
            analytics=analytics,
            scheduler=self.scheduler,
            on_error=self._on_error,
            default_step_timeout_ms=settings.get("stepTimeoutMs"),
            strict_finish=bool(settings.get("strictFinish", False)),
        )
        self.analytics: TutorialAnalytics = self.sequencer.analytics
        self._error: Optional[StepInternalError] = None

    def start(self) -> SceneState:
        self._error = None
        self.sequencer.start()
        return self.state()

    def stop(self) -> SceneState:
        self.sequencer.stop()
        return self.state()

    def restart_step(self) -> SceneState:
        self.sequencer.restart_current_step()
        return self.state()

    def state(self) -> SceneState:
        step = self.sequencer.current_step
        return SceneState(
            tutorial=self.sequencer.name,
            running=self.sequencer.is_running,
            step_index=self.sequencer.step_index,
            step=step.tag if step else None,
            completed=self.sequencer.completed_steps,
            is_completed=self.is_completed(),
            error=str(self._error) if self._error else None,
        )

    def is_completed(self) -> bool:
        return bool(self.store.get_value(TUTORIAL_COMPLETE_KEY, False))

    def _mark_completed(self) -> None:
        self.store.set_value(TUTORIAL_COMPLETE_KEY, True)

    def _on_error(self, error: StepInternalError) -> None:
        logger.error("tutorial_aborted", tutorial=self.sequencer.name, step=error.tag, error=str(error))
        self._error = error


__all__ = ["TutorialScene", "SceneState"]
