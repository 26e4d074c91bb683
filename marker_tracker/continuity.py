"""Per-identity visibility state and continuous pose solving across frames."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, NamedTuple, Optional

import numpy as np

from ar_pipeline.strategies.analyzer import ImageAnalyzer

from .classify import MarkerKind


logger = logging.getLogger(__name__)


MarkerKey = tuple[MarkerKind, int]


def _zero_pose() -> np.ndarray:
    return np.zeros((3, 4), dtype=np.float64)


@dataclass
class TrackedMarker:
    """Last known state of one pattern or barcode identity."""
    kind: MarkerKind
    identity: int
    marker_width: float = 1.0
    visible_last_frame: bool = False
    visible_this_frame: bool = False
    pose: np.ndarray = field(default_factory=_zero_pose)  # (3,4), updated in place

    @property
    def key(self) -> MarkerKey:
        return (self.kind, self.identity)


class MarkerTable:
    """Owned table of tracked markers keyed by (kind, identity)."""

    def __init__(self, default_marker_width: float = 1.0):
        self.default_marker_width = default_marker_width
        self._markers: dict[MarkerKey, TrackedMarker] = {}

    def track(
        self, kind: MarkerKind, identity: int, marker_width: Optional[float] = None
    ) -> TrackedMarker:
        """Look up or create the entry; a truthy width replaces the stored one."""
        if marker_width is not None and marker_width < 0:
            raise ValueError("marker_width must not be negative")
        key = (MarkerKind(kind), int(identity))
        marker = self._markers.get(key)
        if marker is None:
            marker = TrackedMarker(
                kind=key[0],
                identity=key[1],
                marker_width=marker_width or self.default_marker_width,
            )
            self._markers[key] = marker
            logger.debug("tracking new %s marker id=%d", key[0].value, key[1])
        if marker_width:
            marker.marker_width = float(marker_width)
        return marker

    def get(self, kind: MarkerKind, identity: int) -> Optional[TrackedMarker]:
        return self._markers.get((MarkerKind(kind), int(identity)))

    def roll_visibility(self) -> None:
        for marker in self._markers.values():
            marker.visible_last_frame = marker.visible_this_frame
            marker.visible_this_frame = False

    def clear(self) -> None:
        self._markers.clear()

    def __iter__(self) -> Iterator[TrackedMarker]:
        return iter(list(self._markers.values()))

    def __len__(self) -> int:
        return len(self._markers)


class TrackUpdate(NamedTuple):
    pose: np.ndarray
    used_continuity: bool


class ContinuityTracker:
    """
    Chooses between fresh and continuous pose solves.

    A marker seen in the previous frame is solved with its stored pose as the
    seed; anything else gets a fresh solve. ``begin_frame`` must run once per
    frame before the first ``update`` so the previous-frame flags reflect
    exactly the last processed frame.
    """

    def __init__(self, analyzer: ImageAnalyzer, table: MarkerTable):
        self.analyzer = analyzer
        self.table = table

    def begin_frame(self) -> None:
        self.table.roll_visibility()

    def update(
        self,
        kind: MarkerKind,
        identity: int,
        detection_index: int,
        marker_width: Optional[float] = None,
    ) -> Optional[TrackUpdate]:
        marker = self.table.track(kind, identity, marker_width)

        if marker.visible_last_frame:
            pose, status = self.analyzer.solve_pose_continuous(
                detection_index, marker.marker_width, marker.pose.copy()
            )
            used_continuity = True
        else:
            pose, status = self.analyzer.solve_pose_fresh(detection_index, marker.marker_width)
            used_continuity = False

        if status < 0:
            logger.debug(
                "pose solve failed for %s marker id=%d (status=%s)",
                marker.kind.value, marker.identity, status,
            )
            return None

        marker.pose[:, :] = np.asarray(pose, dtype=np.float64).reshape(3, 4)
        marker.visible_this_frame = True
        return TrackUpdate(marker.pose, used_continuity)
