"""Frame events and the synchronous bus that delivers them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, ClassVar, Optional, Union

import numpy as np

from ar_pipeline.ip_types import GroupSlot, RawDetection

from .classify import MarkerKind


logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    MARKER_COUNT = "marker_count"
    MARKER_POSE = "marker_pose"
    GROUP_POSE = "group_pose"
    GROUP_SUB_POSE = "group_sub_pose"
    CONTROLLER_READY = "controller_ready"


@dataclass(frozen=True)
class MarkerCountReported:
    event_kind: ClassVar[EventKind] = EventKind.MARKER_COUNT
    count: int


@dataclass(frozen=True)
class MarkerPoseReported:
    event_kind: ClassVar[EventKind] = EventKind.MARKER_POSE
    index: int
    marker_kind: MarkerKind
    identity: int
    detection: RawDetection
    matrix: np.ndarray  # shared 4x4 buffer, copy to keep
    continuous: bool = False


@dataclass(frozen=True)
class GroupPoseReported:
    event_kind: ClassVar[EventKind] = EventKind.GROUP_POSE
    group_id: int
    matrix: np.ndarray


@dataclass(frozen=True)
class GroupSubPoseReported:
    event_kind: ClassVar[EventKind] = EventKind.GROUP_SUB_POSE
    group_id: int
    sub_index: int
    slot: GroupSlot
    matrix: np.ndarray


@dataclass(frozen=True)
class ControllerReady:
    event_kind: ClassVar[EventKind] = EventKind.CONTROLLER_READY


FrameEvent = Union[
    MarkerCountReported,
    MarkerPoseReported,
    GroupPoseReported,
    GroupSubPoseReported,
    ControllerReady,
]
Listener = Callable[[Any], Any]


class ListenerError(Exception):
    """One or more listeners raised while an event was being delivered."""

    def __init__(self, event: FrameEvent, failures: list[tuple[Listener, BaseException]]):
        self.event = event
        self.failures = failures
        names = ", ".join(type(exc).__name__ for _, exc in failures)
        super().__init__(
            f"{len(failures)} listener(s) failed on {event.event_kind.value}: {names}"
        )


class EventBus:
    """
    Ordered, synchronous publish/subscribe keyed by event kind.

    ``emit`` walks a snapshot of the listener list, so listeners added or
    removed during delivery take effect from the next ``emit``. Every
    listener runs even when an earlier one raises; failures are raised
    afterwards as a single ListenerError.
    """

    def __init__(self):
        self._listeners: dict[EventKind, list[Listener]] = {}

    def on(self, kind: EventKind | str, listener: Listener) -> None:
        self._listeners.setdefault(EventKind(kind), []).append(listener)

    def off(self, kind: EventKind | str, listener: Listener) -> bool:
        listeners = self._listeners.get(EventKind(kind))
        if not listeners:
            return False
        try:
            listeners.remove(listener)
        except ValueError:
            return False
        return True

    def listener_count(self, kind: Optional[EventKind | str] = None) -> int:
        if kind is None:
            return sum(len(v) for v in self._listeners.values())
        return len(self._listeners.get(EventKind(kind), ()))

    def clear(self) -> None:
        self._listeners.clear()

    def emit(self, event: FrameEvent) -> None:
        snapshot = list(self._listeners.get(event.event_kind, ()))
        failures: list[tuple[Listener, BaseException]] = []
        for listener in snapshot:
            try:
                listener(event)
            except Exception as exc:
                failures.append((listener, exc))
        if failures:
            raise ListenerError(event, failures)
