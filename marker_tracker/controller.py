from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ar_pipeline.errors import AcquisitionFailure
from ar_pipeline.ip_types import RawDetection
from ar_pipeline.strategies.analyzer import ImageAnalyzer

from .classify import MarkerKind, classify_detection
from .continuity import ContinuityTracker, MarkerTable, TrackedMarker
from .events import (
    ControllerReady,
    EventBus,
    EventKind,
    FrameEvent,
    GroupPoseReported,
    GroupSubPoseReported,
    Listener,
    ListenerError,
    MarkerCountReported,
    MarkerPoseReported,
)
from .multimarker import MultiMarkerAggregator, MultiMarkerRegistry
from .transforms import AxisConvention, TransformPipeline, compose_pose


class FrameState(str, Enum):
    IDLE = "idle"
    DETECTING_MARKERS = "detecting_markers"
    CLASSIFYING_AND_TRACKING = "classifying_and_tracking"
    AGGREGATING_MULTI_MARKERS = "aggregating_multi_markers"
    DISPATCHED = "dispatched"


class FrameStatus(str, Enum):
    OK = "ok"
    ACQUISITION_FAILURE = "acquisition_failure"


@dataclass
class FrameResult:
    status: FrameStatus
    code: int = 0
    marker_count: int = 0
    tracked: list[tuple[MarkerKind, int]] = field(default_factory=list)
    unclassified: int = 0
    pose_failures: int = 0
    visible_groups: list[int] = field(default_factory=list)
    listener_errors: list[ListenerError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is FrameStatus.OK


class MarkerController:
    """
    Drives one frame at a time through the tracking pipeline.

    Per frame: detect, report the square count, roll visibility, classify and
    track every detection in index order, then aggregate every multi-marker
    group in registration order. Events go out synchronously on ``bus`` in
    exactly that order. A frame whose image the analyzer cannot ingest
    returns an ACQUISITION_FAILURE result and leaves all state untouched.
    """

    def __init__(
        self,
        analyzer: ImageAnalyzer,
        default_marker_width: float = 1.0,
        transform_scale: Optional[float] = None,
        axis_convention: AxisConvention | str = AxisConvention.ARTOOLKIT,
        report_unclassified: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        if default_marker_width <= 0:
            raise ValueError("default_marker_width must be positive")
        self.analyzer = analyzer
        self.logger = logger or logging.getLogger(__name__)
        self.report_unclassified = report_unclassified

        self.bus = EventBus()
        self.markers = MarkerTable(default_marker_width)
        self.groups = MultiMarkerRegistry()
        self.tracker = ContinuityTracker(analyzer, self.markers)
        self.aggregator = MultiMarkerAggregator(analyzer, self.groups)
        self.transforms = TransformPipeline(transform_scale, axis_convention)

        self.state = FrameState.IDLE
        self.frame_count = 0
        self._width_overrides: dict[tuple[MarkerKind, int], float] = {}
        self._initialized = False

    @property
    def default_marker_width(self) -> float:
        return self.markers.default_marker_width

    def add_listener(self, kind: EventKind | str, listener: Listener) -> None:
        self.bus.on(kind, listener)

    def remove_listener(self, kind: EventKind | str, listener: Listener) -> bool:
        return self.bus.off(kind, listener)

    def initialize(self) -> list[ListenerError]:
        """
        Sync multi-marker groups from the analyzer and announce readiness once.

        Returns the listener failures raised by the ready announcement.
        """
        errors: list[ListenerError] = []
        if self._initialized:
            return errors
        added = self.groups.sync(self.analyzer)
        self._initialized = True
        self.logger.info("controller ready: %d multi-marker group(s)", len(added))
        self._emit(ControllerReady(), errors)
        return errors

    def track_pattern_marker(self, identity: int, marker_width: Optional[float] = None) -> TrackedMarker:
        return self.markers.track(MarkerKind.PATTERN, identity, marker_width)

    def track_barcode_marker(self, identity: int, marker_width: Optional[float] = None) -> TrackedMarker:
        return self.markers.track(MarkerKind.BARCODE, identity, marker_width)

    def set_marker_width(self, kind: MarkerKind | str, identity: int, marker_width: float) -> None:
        """Override a marker's physical width from its next tracking update on."""
        if marker_width <= 0:
            raise ValueError("marker_width must be positive")
        self._width_overrides[(MarkerKind(kind), int(identity))] = float(marker_width)

    def get_tracked_marker(self, kind: MarkerKind | str, identity: int) -> Optional[TrackedMarker]:
        return self.markers.get(MarkerKind(kind), identity)

    def tracked_markers(self) -> list[TrackedMarker]:
        return list(self.markers)

    def group_count(self) -> int:
        return len(self.groups)

    def group_slot_count(self, group_id: int) -> int:
        group = self.groups.get(group_id)
        return len(group.slots) if group is not None else -1

    def _emit(self, event: FrameEvent, errors: list[ListenerError]) -> None:
        try:
            self.bus.emit(event)
        except ListenerError as exc:
            self.logger.error("listener failure: %s", exc)
            for _listener, err in exc.failures:
                self.logger.debug("listener error detail", exc_info=err)
            errors.append(exc)

    def process(self, image: Any) -> FrameResult:
        ready_errors = self.initialize()

        self.state = FrameState.DETECTING_MARKERS
        try:
            try:
                count = self.analyzer.detect(image)
            except AcquisitionFailure as exc:
                self.logger.warning("frame skipped, acquisition failed: %s", exc)
                return FrameResult(
                    FrameStatus.ACQUISITION_FAILURE, code=exc.code, listener_errors=ready_errors
                )
            if count < 0:
                self.logger.warning("frame skipped, analyzer returned %d", count)
                return FrameResult(
                    FrameStatus.ACQUISITION_FAILURE, code=count, listener_errors=ready_errors
                )

            result = FrameResult(FrameStatus.OK, marker_count=count, listener_errors=ready_errors)
            self.frame_count += 1
            self._emit(MarkerCountReported(count), result.listener_errors)

            self.state = FrameState.CLASSIFYING_AND_TRACKING
            self.tracker.begin_frame()
            for i in range(count):
                det = self.analyzer.get_detection(i)
                if det is None:
                    continue
                self._track_detection(i, det, result)

            self.state = FrameState.AGGREGATING_MULTI_MARKERS
            self.groups.sync(self.analyzer)
            for group in self.groups:
                self._report_group(group.group_id, result)

            self.state = FrameState.DISPATCHED
            self.logger.debug(
                "frame=%d squares=%d tracked=%d groups=%d",
                self.frame_count, count, len(result.tracked), len(result.visible_groups),
            )
            return result
        finally:
            self.state = FrameState.IDLE

    def _track_detection(self, index: int, det: RawDetection, result: FrameResult) -> None:
        cls = classify_detection(det)
        if cls is None:
            result.unclassified += 1
            if self.report_unclassified:
                self._report_unclassified(index, det, result)
            return

        # Vertex ordering used by the solver follows the detection's direction.
        if det.dir != cls.direction:
            self.analyzer.set_detection_direction(index, cls.direction)
            det = self.analyzer.get_detection(index) or det

        width = self._width_overrides.pop((cls.kind, cls.identity), None)
        update = self.tracker.update(cls.kind, cls.identity, index, width)
        if update is None:
            result.pose_failures += 1
            return

        result.tracked.append((cls.kind, cls.identity))
        matrix = self.transforms.convert(update.pose)
        self._emit(
            MarkerPoseReported(index, cls.kind, cls.identity, det, matrix, update.used_continuity),
            result.listener_errors,
        )

    def _report_unclassified(self, index: int, det: RawDetection, result: FrameResult) -> None:
        pose, status = self.analyzer.solve_pose_fresh(index, self.default_marker_width)
        if status < 0:
            result.pose_failures += 1
            return
        matrix = self.transforms.convert(pose)
        self._emit(
            MarkerPoseReported(index, MarkerKind.UNKNOWN, -1, det, matrix, False),
            result.listener_errors,
        )

    def _report_group(self, group_id: int, result: FrameResult) -> None:
        group_result = self.aggregator.evaluate(group_id)
        if not group_result.visible:
            return

        result.visible_groups.append(group_id)
        matrix = self.transforms.convert(group_result.pose)
        self._emit(GroupPoseReported(group_id, matrix), result.listener_errors)
        for sub in group_result.sub_results:
            sub_pose = compose_pose(group_result.pose, sub.slot.local_pose)
            matrix = self.transforms.convert(sub_pose)
            self._emit(
                GroupSubPoseReported(group_id, sub.slot_index, sub.slot, matrix),
                result.listener_errors,
            )

    def dispose(self) -> None:
        self.bus.clear()
        self.markers.clear()
        self.groups.clear()
        self._width_overrides.clear()
        self.analyzer.close()
        self._initialized = False
