"""Analytics helpers tailored to tutorial progression."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional

from .metrics import MetricsExporter


@dataclass(frozen=True)
class ProgressRecord:
    """Timing for a step that completed normally."""

    tag: str
    index: int
    step_seconds: float
    total_seconds: float


class TutorialAnalytics:
    """Wraps metric exports for tutorial-specific events."""

    def __init__(self, exporter: Optional[MetricsExporter] = None) -> None:
        self._exporter = exporter or MetricsExporter()

    @property
    def exporter(self) -> MetricsExporter:
        return self._exporter

    def track_tutorial_start(self, tutorial_id: str, steps: int) -> None:
        self._exporter.record("tutorial_started", {"tutorial": tutorial_id, "steps": steps})

    def track_step_started(self, tutorial_id: str, tag: str, index: int) -> None:
        self._exporter.record(
            "tutorial_step_started",
            {"tutorial": tutorial_id, "step": tag, "index": index},
        )

    def track_step_progress(self, tutorial_id: str, record: ProgressRecord) -> None:
        payload = {"tutorial": tutorial_id}
        payload.update(asdict(record))
        self._exporter.record("tutorial_step_progress", payload)

    def track_step_outcome(self, tutorial_id: str, tag: str, index: int, outcome: str) -> None:
        self._exporter.record(
            "tutorial_step_outcome",
            {"tutorial": tutorial_id, "step": tag, "index": index, "outcome": outcome},
        )

    def track_step_restarted(self, tutorial_id: str, tag: str, index: int) -> None:
        self._exporter.record(
            "tutorial_step_restarted",
            {"tutorial": tutorial_id, "step": tag, "index": index},
        )

    def track_tutorial_completed(self, tutorial_id: str, total_seconds: float) -> None:
        self._exporter.record(
            "tutorial_completed",
            {"tutorial": tutorial_id, "totalSeconds": total_seconds},
        )

    def track_tutorial_stopped(self, tutorial_id: str, tag: Optional[str]) -> None:
        self._exporter.record(
            "tutorial_stopped",
            {"tutorial": tutorial_id, "step": tag},
        )

    def progress_records(self, tutorial_id: Optional[str] = None) -> list[ProgressRecord]:
        """Rebuild the progress records collected so far."""

        return [
            ProgressRecord(
                tag=str(event.payload["tag"]),
                index=int(event.payload["index"]),
                step_seconds=float(event.payload["step_seconds"]),
                total_seconds=float(event.payload["total_seconds"]),
            )
            for event in self._exporter.named("tutorial_step_progress", tutorial_id)
        ]


__all__ = ["ProgressRecord", "TutorialAnalytics"]
