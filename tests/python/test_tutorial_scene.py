from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from structlog.testing import capture_logs

from analytics import MetricsExporter, TutorialAnalytics
from scenes.tutorial_scene import TutorialScene
from storage import TUTORIAL_COMPLETE_KEY, SettingsStore
from tutorial.course import GrabStep, PositionWatch, RaiseHandsStep, Region
from tutorial.events import Channel, MessageBus
from tutorial.scheduler import ManualScheduler
from tutorial.sequencer import StepSequencer

SETTINGS = {
    "name": "onboarding",
    "pollIntervalMs": 500,
    "welcomeDelayMs": None,
    "stepTimeoutMs": None,
    "strictFinish": False,
    "includeRaiseHands": False,
    "teleportPad": {"x": 0.0, "z": -6.0, "width": 1.5, "depth": 1.5},
}


class FakeWorld:
    def __init__(self):
        self.palm = 1.0
        self.head = 1.6
        self.facing = 180.0
        self.position = (0.0, 0.0, 0.0)

    def left_palm_height(self):
        return self.palm

    def head_height(self):
        return self.head

    def facing_degrees(self):
        return self.facing

    def avatar_position(self):
        return self.position


class FakePresenter:
    def __init__(self):
        self.visible = set()
        self.spawned = {}
        self._counter = 0

    def show(self, tag):
        self.visible.add(tag)

    def hide(self, tag):
        self.visible.discard(tag)

    def clear(self, tag):
        self.spawned.pop(tag, None)

    def spawn(self, template, tag):
        self._counter += 1
        entity_id = f"{template}-{self._counter}"
        self.spawned.setdefault(tag, []).append(entity_id)
        return entity_id


class FakeMover:
    def __init__(self):
        self.positions = {}
        self.moves = []

    def entity_position(self, entity_id):
        return self.positions.get(entity_id)

    def move_entity(self, entity_id, position):
        self.moves.append((entity_id, position))
        self.positions[entity_id] = position


class TutorialSceneTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.tempdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tempdir.cleanup)
        self.store = SettingsStore(Path(self.tempdir.name) / "settings.json")
        self.world = FakeWorld()
        self.presenter = FakePresenter()
        self.bus = MessageBus()
        self.scheduler = ManualScheduler()
        self.metrics = MetricsExporter()
        self.away_messages = []
        self.bus.subscribe(Channel.AWAY_ENABLE, self.away_messages.append)
        self.scene = TutorialScene(
            self.world,
            self.presenter,
            bus=self.bus,
            scheduler=self.scheduler,
            store=self.store,
            analytics=TutorialAnalytics(exporter=self.metrics),
            settings=dict(SETTINGS),
        )

    def _explode(self, tag):
        entity_id = self.presenter.spawned[f"{tag}-temporary"][0]
        self.bus.publish(Channel.ENTITY_EXPLODED, json.dumps({"entityID": entity_id}))

    def test_full_course(self) -> None:
        state = self.scene.start()
        self.assertTrue(state.running)
        self.assertEqual(state.step, "orient")
        self.assertEqual(state.step_index, 1)
        self.assertIn("door", self.presenter.visible)
        self.assertIn("controllers", self.presenter.visible)

        self.scheduler.advance(500)
        self.assertEqual(self.scene.state().step, "orient")
        self.world.palm = 2.0
        self.scheduler.advance(500)
        self.assertEqual(self.scene.state().step, "nearGrab")

        self.bus.publish(Channel.ENTITY_EXPLODED, json.dumps({"entityID": "somewhere-else"}))
        self.assertEqual(self.scene.state().step, "nearGrab")
        self._explode("nearGrab")
        self.assertEqual(self.scene.state().step, "farGrab")
        self.assertIn("bothGrab", self.presenter.visible)
        self._explode("farGrab")
        self.assertEqual(self.scene.state().step, "equip")
        self.assertNotIn("bothGrab", self.presenter.visible)

        self.assertIn("equip-part1", self.presenter.visible)
        lighter_id = self.presenter.spawned["equip-temporary"][0]
        self.bus.publish(Channel.TUTORIAL_SPINNER, "wasLit")
        self.scheduler.advance(9000)
        self.assertIn("equip-part2", self.presenter.visible)
        self.assertNotIn("equip-part1", self.presenter.visible)
        self.bus.publish(
            Channel.OBJECT_MANIPULATION,
            json.dumps({"action": "release", "grabbedEntity": lighter_id}),
        )
        self.scheduler.advance(1499)
        self.assertEqual(self.scene.state().step, "equip")
        self.scheduler.advance(1)
        self.assertEqual(self.scene.state().step, "turnAround")

        for _ in range(6):
            self.bus.publish(Channel.CONTROLLER_ACTION, {"action": 6, "value": 1.0})
        self.scheduler.advance(100)
        self.assertEqual(self.scene.state().step, "turnAround")
        self.world.facing = 10.0
        self.scheduler.advance(100)
        self.assertEqual(self.scene.state().step, "teleport")

        self.world.position = (0.2, 0.0, -6.3)
        self.scheduler.advance(500)

        state = self.scene.state()
        self.assertFalse(state.running)
        self.assertIsNone(state.step)
        self.assertTrue(state.is_completed)
        self.assertTrue(self.store.get_value(TUTORIAL_COMPLETE_KEY))
        self.assertEqual(
            state.completed,
            ["step0", "orient", "nearGrab", "farGrab", "equip", "turnAround", "teleport", "finish", "enableControllers"],
        )
        self.assertEqual(self.away_messages, ["disable", "enable"])
        self.assertIn("finish", self.presenter.visible)
        self.assertNotIn("door", self.presenter.visible)

        progress = [record.tag for record in self.scene.analytics.progress_records("onboarding")]
        self.assertEqual(progress, ["orient", "nearGrab", "farGrab", "equip", "turnAround", "teleport", "finish"])
        self.assertEqual(self.metrics.export_counts()["tutorial_completed:onboarding"], 1)
        self.assertEqual(self.scheduler.pending(), 0)

    def test_stop_restores_host_state(self) -> None:
        self.scene.start()
        self.scheduler.advance(500)
        state = self.scene.stop()

        self.assertFalse(state.running)
        self.assertEqual(self.away_messages, ["disable", "enable"])
        self.assertNotIn("door", self.presenter.visible)
        self.assertNotIn("orient", self.presenter.visible)
        self.assertEqual(self.scheduler.pending(), 0)
        self.assertFalse(self.scene.is_completed())

    def test_restart_step_keeps_position(self) -> None:
        self.scene.start()
        self.scheduler.advance(500)
        self._explode_after_orient()
        spawned_before = list(self.presenter.spawned["nearGrab-temporary"])

        state = self.scene.restart_step()
        self.assertEqual(state.step, "nearGrab")
        self.assertNotEqual(self.presenter.spawned["nearGrab-temporary"], spawned_before)
        self.assertEqual(self.bus.subscribers(Channel.ENTITY_EXPLODED), 1)

        self.bus.publish(Channel.ENTITY_EXPLODED, json.dumps({"entityID": spawned_before[0]}))
        self.assertEqual(self.scene.state().step, "nearGrab")
        self._explode("nearGrab")
        self.assertEqual(self.scene.state().step, "farGrab")

    def test_step_start_failure_is_reported(self) -> None:
        def broken_spawn(template, tag):
            raise RuntimeError("asset missing")

        self.presenter.spawn = broken_spawn
        self.scene.start()
        self.world.palm = 2.0
        self.scheduler.advance(500)

        state = self.scene.state()
        self.assertFalse(state.running)
        self.assertIn("nearGrab", state.error)
        self.assertEqual(self.away_messages, ["disable", "enable"])
        self.assertEqual(self.scheduler.pending(), 0)

    def _explode_after_orient(self) -> None:
        self.world.palm = 2.0
        self.scheduler.advance(500)
        self.assertEqual(self.scene.state().step, "nearGrab")

    def test_lifecycle_events_are_logged_once(self) -> None:
        scene = TutorialScene(
            self.world,
            self.presenter,
            bus=self.bus,
            scheduler=self.scheduler,
            store=self.store,
            settings=dict(SETTINGS),
        )
        with capture_logs() as logs:
            scene.start()
            scene.stop()

        events = [entry["event"] for entry in logs]
        self.assertEqual(events.count("tutorial_started"), 1)
        self.assertEqual(events.count("tutorial_stopped"), 1)
        self.assertEqual(events.count("step_started"), 2)

    def test_welcome_step_and_timeout_from_settings(self) -> None:
        settings = dict(SETTINGS, welcomeDelayMs=8000, stepTimeoutMs=60000)
        scene = TutorialScene(
            self.world,
            self.presenter,
            bus=self.bus,
            scheduler=self.scheduler,
            store=self.store,
            settings=settings,
        )
        self.assertEqual(scene.start().step, "welcome")
        self.scheduler.advance(8000)
        self.assertEqual(scene.state().step, "orient")
        self.scheduler.advance(60000)
        self.assertEqual(scene.state().step, "nearGrab")
        outcomes = [event.payload["outcome"] for event in scene.analytics.exporter.named("tutorial_step_outcome")]
        self.assertEqual(outcomes, ["completed", "completed", "timed_out"])


class CourseStepTestCase(unittest.TestCase):
    def test_raise_hands_needs_down_then_up(self) -> None:
        world = FakeWorld()
        scheduler = ManualScheduler()
        step = RaiseHandsStep("raiseHands", world, scheduler=scheduler)
        completions = []
        sequencer = StepSequencer([step], scheduler=scheduler, on_complete=lambda: completions.append(True))
        world.palm = 2.0
        sequencer.start()
        scheduler.advance(1000)
        self.assertEqual(completions, [])

        world.palm = 1.0
        scheduler.advance(500)
        self.assertEqual(step.phase, RaiseHandsStep.HANDS_DOWN)
        world.palm = 2.0
        scheduler.advance(500)
        self.assertEqual(completions, [True])

    def test_grab_step_returns_stray_items(self) -> None:
        scheduler = ManualScheduler()
        bus = MessageBus()
        mover = FakeMover()
        home = (0.0, 0.8, -1.0)
        step = GrabStep(
            "nearGrab",
            ["firework0", "firework1"],
            presenter=FakePresenter(),
            mover=mover,
            watch=PositionWatch(home),
            scheduler=scheduler,
            bus=bus,
        )
        sequencer = StepSequencer([step], scheduler=scheduler)
        sequencer.start()
        fallen, nearby = step.item_ids
        mover.positions[fallen] = (0.0, -1.0, -1.0)
        mover.positions[nearby] = (0.5, 0.8, -1.2)

        scheduler.advance(1000)
        self.assertEqual(mover.moves, [(fallen, home)])
        mover.positions[nearby] = (5.0, 0.8, -1.0)
        scheduler.advance(1000)
        self.assertEqual(mover.moves, [(fallen, home), (nearby, home)])

        bus.publish(Channel.ENTITY_EXPLODED, json.dumps({"entityID": fallen}))
        self.assertFalse(sequencer.is_running)
        self.assertEqual(scheduler.pending(), 0)

    def test_region_bounds_are_exclusive(self) -> None:
        pad = Region(center_x=0.0, center_z=0.0, width=2.0, depth=2.0)
        self.assertTrue(pad.contains(0.5, -0.5))
        self.assertFalse(pad.contains(1.0, 0.0))
        self.assertFalse(pad.contains(0.0, 3.0))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
