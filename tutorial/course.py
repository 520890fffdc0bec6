"""The guided onboarding course built from the generic step variants."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol, Sequence, Tuple

import structlog

from .events import Channel, EventBus, parse_message
from .scheduler import Scheduler
from .steps import ContentPresenter, EventStep, InstantStep, PollingStep, StagedStep, Step, TimedStep

logger = structlog.get_logger(__name__)

HAND_MARGIN = 0.1
STEP_YAW_ACTION = 6
REQUIRED_TURNS = 6
FORWARD_THRESHOLD_DEGREES = 30.0
LIGHTER_WAIT_MS = 9000
EQUIP_FINISH_DELAY_MS = 1500
WATCH_INTERVAL_MS = 1000
WATCH_MIN_Y = -0.4
WATCH_MAX_DISTANCE = 4.0

Vec3 = Tuple[float, float, float]


@dataclass(frozen=True)
class Region:
    """Axis-aligned floor area, e.g. a teleport pad."""

    center_x: float
    center_z: float
    width: float
    depth: float

    def contains(self, x: float, z: float) -> bool:
        half_w = self.width / 2
        half_d = self.depth / 2
        return (
            self.center_x - half_w < x < self.center_x + half_w
            and self.center_z - half_d < z < self.center_z + half_d
        )


class WorldState(Protocol):
    """Read-only view of the avatar the course polls."""

    def left_palm_height(self) -> float:
        ...

    def head_height(self) -> float:
        ...

    def facing_degrees(self) -> float:
        """Angle between the avatar's facing and the course's forward direction."""
        ...

    def avatar_position(self) -> Tuple[float, float, float]:
        ...


class CoursePresenter(ContentPresenter, Protocol):
    def spawn(self, template: str, tag: str) -> str:
        """Create content from ``template`` under ``tag`` and return its id."""
        ...


class EntityMover(Protocol):
    """Optional host hook for putting spawned items back in place."""

    def entity_position(self, entity_id: str) -> Optional[Vec3]:
        ...

    def move_entity(self, entity_id: str, position: Vec3) -> None:
        ...


@dataclass(frozen=True)
class PositionWatch:
    """Where spawned items belong and how far they may stray."""

    home: Vec3
    min_y: float = WATCH_MIN_Y
    max_distance: float = WATCH_MAX_DISTANCE

    def strayed(self, position: Vec3) -> bool:
        return position[1] < self.min_y or math.dist(self.home, position) > self.max_distance


class CourseAmbient:
    """Switches host affordances off for the course and back on afterwards."""

    def __init__(self, bus: EventBus, presenter: Optional[ContentPresenter] = None) -> None:
        self._bus = bus
        self._presenter = presenter

    def disable(self) -> None:
        if self._presenter is not None:
            self._presenter.show("door")
            self._presenter.hide("finish")
        self._bus.publish(Channel.AWAY_ENABLE, "disable")

    def enable(self) -> None:
        if self._presenter is not None:
            self._presenter.hide("door")
        self._bus.publish(Channel.AWAY_ENABLE, "enable")


class OrientStep(PollingStep):
    """Done once the left hand is raised above the head."""

    def __init__(self, tag: str, world: WorldState, **kwargs: Any) -> None:
        super().__init__(tag, **kwargs)
        self.world = world

    def check(self) -> bool:
        return self.world.left_palm_height() > self.world.head_height() + HAND_MARGIN


class RaiseHandsStep(PollingStep):
    """Hands must drop below the head first, then rise above it."""

    START = "start"
    HANDS_DOWN = "hands_down"
    HANDS_UP = "hands_up"

    def __init__(self, tag: str, world: WorldState, **kwargs: Any) -> None:
        super().__init__(tag, **kwargs)
        self.world = world
        self.phase = self.START

    def reset(self) -> None:
        self.phase = self.START

    def check(self) -> bool:
        palm = self.world.left_palm_height()
        head = self.world.head_height()
        if self.phase == self.START and palm < head - HAND_MARGIN:
            self.phase = self.HANDS_DOWN
        elif self.phase == self.HANDS_DOWN and palm > head + HAND_MARGIN:
            self.phase = self.HANDS_UP
        return self.phase == self.HANDS_UP


class GrabStep(EventStep):
    """Spawns fireworks; done when one of them reports exploding."""

    def __init__(
        self,
        tag: str,
        templates: Sequence[str],
        *,
        presenter: CoursePresenter,
        hide_shared_on_cleanup: bool = False,
        mover: Optional[EntityMover] = None,
        watch: Optional[PositionWatch] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(tag, Channel.ENTITY_EXPLODED, presenter=presenter, **kwargs)
        self.templates = list(templates)
        self.item_ids: List[str] = []
        self.mover = mover
        self.watch = watch
        self._hide_shared = hide_shared_on_cleanup

    def _begin(self) -> None:
        self.presenter.show("bothGrab")
        self.item_ids = [self.presenter.spawn(template, self.temp_tag) for template in self.templates]
        if self.mover is not None and self.watch is not None:
            self._schedule_repeating(WATCH_INTERVAL_MS, self._return_strays)
        super()._begin()

    def matches(self, data: dict) -> bool:
        return data.get("entityID") in self.item_ids

    def _return_strays(self) -> None:
        if self.mover is None or self.watch is None:
            return
        for entity_id in self.item_ids:
            position = self.mover.entity_position(entity_id)
            if position is not None and self.watch.strayed(position):
                logger.debug("item_returned", step=self.tag, entity=entity_id)
                self.mover.move_entity(entity_id, self.watch.home)

    def _end(self) -> None:
        self.item_ids = []
        if self._hide_shared and self.presenter is not None:
            self.presenter.hide("bothGrab")


class EquipStep(StagedStep):
    """Light the lighter, wait for the flame, then put it down."""

    LIGHT = "light"
    WAIT = "wait"
    RELEASE = "release"
    initial_stage = LIGHT

    def __init__(self, tag: str, *, presenter: CoursePresenter, **kwargs: Any) -> None:
        super().__init__(tag, presenter=presenter, **kwargs)
        self.part1_tag = f"{tag}-part1"
        self.part2_tag = f"{tag}-part2"
        self.lighter_id: Optional[str] = None

    def _begin(self) -> None:
        self.presenter.show(self.part1_tag)
        self.lighter_id = self.presenter.spawn("lighter", self.temp_tag)
        self._subscribe(Channel.TUTORIAL_SPINNER, self._on_spinner)
        super()._begin()

    def on_stage(self, stage: str) -> None:
        if stage == self.WAIT:
            self._schedule_once(LIGHTER_WAIT_MS, lambda: self.enter(self.RELEASE))
        elif stage == self.RELEASE:
            self.presenter.hide(self.part1_tag)
            self.presenter.show(self.part2_tag)
            self._subscribe(Channel.OBJECT_MANIPULATION, self._on_manipulation)

    def _on_spinner(self, message: Any) -> None:
        if self.stage == self.LIGHT and message == "wasLit":
            self.enter(self.WAIT)

    def _on_manipulation(self, message: Any) -> None:
        if self.stage != self.RELEASE:
            return
        data = parse_message(message)
        if data.get("action") == "release" and data.get("grabbedEntity") == self.lighter_id:
            logger.debug("equip_released", step=self.tag)
            self.finish_after(EQUIP_FINISH_DELAY_MS)

    def _end(self) -> None:
        super()._end()
        self.lighter_id = None
        if self.presenter is not None:
            self.presenter.hide(self.part1_tag)
            self.presenter.hide(self.part2_tag)


class TurnAroundStep(PollingStep):
    """Snap-turn enough times to face forward again."""

    def __init__(self, tag: str, world: WorldState, **kwargs: Any) -> None:
        kwargs.setdefault("interval_ms", 100)
        super().__init__(tag, **kwargs)
        self.world = world
        self.turns = 0

    def reset(self) -> None:
        self.turns = 0

    def _begin(self) -> None:
        super()._begin()
        self._subscribe(Channel.CONTROLLER_ACTION, self._on_action)

    def _on_action(self, message: Any) -> None:
        data = parse_message(message)
        if data.get("action") == STEP_YAW_ACTION and data.get("value", 0) != 0:
            self.turns += 1

    def check(self) -> bool:
        if self.turns < REQUIRED_TURNS:
            return False
        return abs(self.world.facing_degrees()) < FORWARD_THRESHOLD_DEGREES


class TeleportStep(PollingStep):
    """Done once the avatar stands on the pad."""

    def __init__(self, tag: str, world: WorldState, pad: Region, **kwargs: Any) -> None:
        super().__init__(tag, **kwargs)
        self.world = world
        self.pad = pad

    def check(self) -> bool:
        x, _, z = self.world.avatar_position()
        return self.pad.contains(x, z)


def build_course(
    *,
    world: WorldState,
    presenter: CoursePresenter,
    bus: EventBus,
    scheduler: Scheduler,
    ambient: CourseAmbient,
    teleport_pad: Region,
    on_finished: Optional[Callable[[], None]] = None,
    poll_interval_ms: float = 500,
    welcome_delay_ms: Optional[float] = None,
    include_raise_hands: bool = False,
    mover: Optional[EntityMover] = None,
    item_home: Optional[Vec3] = None,
) -> List[Step]:
    """Assemble the onboarding course in play order."""

    shared = {"scheduler": scheduler, "bus": bus}
    grab = {"presenter": presenter, "mover": mover, "watch": PositionWatch(item_home) if item_home else None}

    def finish() -> None:
        presenter.show("finish")
        if on_finished is not None:
            on_finished()

    def enable_controllers() -> None:
        presenter.hide("controllers")
        ambient.enable()

    steps: List[Step] = [
        InstantStep("step0", lambda: presenter.show("controllers"), should_log=False, **shared),
    ]
    if welcome_delay_ms:
        steps.append(TimedStep("welcome", welcome_delay_ms, presenter=presenter, **shared))
    steps.append(OrientStep("orient", world, interval_ms=poll_interval_ms, presenter=presenter, **shared))
    if include_raise_hands:
        steps.append(
            RaiseHandsStep("raiseHands", world, interval_ms=poll_interval_ms, presenter=presenter, **shared)
        )
    steps.extend(
        [
            GrabStep("nearGrab", ["firework0", "firework1", "firework2"], **grab, **shared),
            GrabStep(
                "farGrab",
                ["firework3", "firework4", "firework5"],
                **grab,
                hide_shared_on_cleanup=True,
                **shared,
            ),
            EquipStep("equip", presenter=presenter, **shared),
            TurnAroundStep("turnAround", world, presenter=presenter, **shared),
            TeleportStep("teleport", world, teleport_pad, interval_ms=poll_interval_ms, presenter=presenter, **shared),
            InstantStep("finish", finish, **shared),
            InstantStep("enableControllers", enable_controllers, should_log=False, **shared),
        ]
    )
    return steps


__all__ = [
    "CourseAmbient",
    "CoursePresenter",
    "EntityMover",
    "EquipStep",
    "GrabStep",
    "OrientStep",
    "PositionWatch",
    "RaiseHandsStep",
    "Region",
    "TeleportStep",
    "TurnAroundStep",
    "WorldState",
    "build_course",
]
