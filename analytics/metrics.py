"""Collection and forwarding of tutorial telemetry events."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional


@dataclass(frozen=True)
class MetricsEvent:
    """Container describing a single analytics event."""

    name: str
    payload: Dict[str, object]


class MetricsExporter:
    """Buffers events and optionally forwards each one to a sink."""

    def __init__(
        self,
        emitter: Optional[Callable[[MetricsEvent], None]] = None,
    ) -> None:
        self._events: List[MetricsEvent] = []
        self._emitter = emitter

    def record(self, name: str, payload: Optional[Dict[str, object]] = None) -> None:
        event = MetricsEvent(name=name, payload=dict(payload or {}))
        self._events.append(event)
        if self._emitter is not None:
            self._emitter(event)

    @property
    def events(self) -> List[MetricsEvent]:
        return list(self._events)

    def named(self, name: str, tutorial: Optional[str] = None) -> List[MetricsEvent]:
        return [
            event
            for event in self._events
            if event.name == name and (tutorial is None or event.payload.get("tutorial") == tutorial)
        ]

    def export_counts(self) -> Dict[str, int]:
        """Count events per name, split by tutorial when one is attached."""

        counts: Dict[str, int] = {}
        for event in self._events:
            tutorial = event.payload.get("tutorial")
            key = f"{event.name}:{tutorial}" if tutorial else event.name
            counts[key] = counts.get(key, 0) + 1
        return counts

    def clear(self) -> None:
        self._events.clear()


__all__ = ["MetricsEvent", "MetricsExporter"]
