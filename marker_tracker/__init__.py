"""Fiducial marker tracking: classification, pose continuity and multi-marker aggregation."""

from .classify import MarkerKind, classify_detection
from .config import TrackerConfig
from .controller import FrameResult, FrameState, FrameStatus, MarkerController
from .controls import MarkerControls
from .events import EventBus, EventKind, ListenerError
from .worker import TrackingWorker

__all__ = [
    "EventBus",
    "EventKind",
    "FrameResult",
    "FrameState",
    "FrameStatus",
    "ListenerError",
    "MarkerController",
    "MarkerControls",
    "MarkerKind",
    "TrackerConfig",
    "TrackingWorker",
    "classify_detection",
]
