# ABOUTME: Defines run lifecycle events and the observer handle passed into every completion run.
# ABOUTME: Ships null, logging, and collecting sinks; sinks are shared by a run and its children.

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import threading
from typing import Any, Literal, Protocol


logger = logging.getLogger(__name__)

EventKind = Literal[
    "iteration_started",
    "snippet_generated",
    "snippet_output_produced",
    "recursive_call_started",
    "recoverable_error",
    "budget_warning",
    "run_completed",
    "run_failed",
]
EVENT_KINDS: frozenset[str] = frozenset(
    {
        "iteration_started",
        "snippet_generated",
        "snippet_output_produced",
        "recursive_call_started",
        "recoverable_error",
        "budget_warning",
        "run_completed",
        "run_failed",
    }
)


@dataclass(frozen=True)
class RunEvent:
    kind: EventKind
    depth: int
    payload: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.kind not in EVENT_KINDS:
            raise ValueError(f"Unsupported event kind: {self.kind}.")


class EventSink(Protocol):
    def on_event(self, event: RunEvent) -> None: ...


class NullEventSink:
    def on_event(self, event: RunEvent) -> None:
        del event


class LoggingEventSink:
    def __init__(self, *, target: logging.Logger | None = None, level: int = logging.INFO) -> None:
        self._logger = target or logger
        self._level = level

    def on_event(self, event: RunEvent) -> None:
        level = logging.WARNING if event.kind in {"budget_warning", "run_failed"} else self._level
        self._logger.log(level, "rlm event %s depth=%d %s", event.kind, event.depth, event.payload)


class CollectingEventSink:
    """Keeps every event in arrival order; safe to share across batch threads."""

    def __init__(self) -> None:
        self._events: list[RunEvent] = []
        self._lock = threading.Lock()

    def on_event(self, event: RunEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[RunEvent]:
        with self._lock:
            return list(self._events)

    def kinds(self) -> list[str]:
        return [event.kind for event in self.events]

    def of_kind(self, kind: str) -> list[RunEvent]:
        return [event for event in self.events if event.kind == kind]


def emit(sink: EventSink | None, event: RunEvent) -> None:
    if sink is None:
        return
    try:
        sink.on_event(event)
    except Exception:  # noqa: BLE001
        logger.warning("Event sink raised on %s; event dropped.", event.kind, exc_info=True)
