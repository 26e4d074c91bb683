"""Bind a scene object to one marker identity or multi-marker group."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Optional

import numpy as np

from .classify import MarkerKind
from .controller import MarkerController
from .events import EventKind, GroupPoseReported, MarkerPoseReported
from .transforms import invert_transform


logger = logging.getLogger(__name__)


class ControlType(str, Enum):
    PATTERN = "pattern"
    BARCODE = "barcode"
    MULTI_MARKER = "multi_marker"
    UNKNOWN = "unknown"


class MatrixMode(str, Enum):
    MODEL_VIEW = "model_view"  # marker pose in camera space
    CAMERA_TRANSFORM = "camera_transform"  # camera pose in marker space


class MarkerControls:
    """
    Follows one marker and keeps a private copy of its latest matrix.

    ``visible`` is raised by a matching event and lowered by ``reset``, which
    the owner calls before each processed frame. Pattern and barcode controls
    register their identity (and size) with the controller so the marker is
    tracked before its first sighting.
    """

    def __init__(
        self,
        controller: MarkerController,
        control_type: ControlType | str,
        marker_id: Optional[int] = None,
        size: float = 1.0,
        matrix_mode: MatrixMode | str = MatrixMode.MODEL_VIEW,
    ):
        self.controller = controller
        self.control_type = ControlType(control_type)
        self.matrix_mode = MatrixMode(matrix_mode)
        self.size = size
        self.marker_id = marker_id
        self.visible = False
        self.matrix = np.eye(4)
        self.found_count = 0
        self._on_found: list[Callable[["MarkerControls"], None]] = []

        if self.control_type in (ControlType.PATTERN, ControlType.BARCODE, ControlType.MULTI_MARKER):
            if marker_id is None:
                raise ValueError(f"{self.control_type.value} controls need a marker_id")

        if self.control_type is ControlType.PATTERN:
            controller.track_pattern_marker(marker_id, size)
        elif self.control_type is ControlType.BARCODE:
            controller.track_barcode_marker(marker_id, size)

        if self.control_type is ControlType.MULTI_MARKER:
            self._kind = EventKind.GROUP_POSE
            self._handler = self._on_group_pose
        else:
            self._kind = EventKind.MARKER_POSE
            self._handler = self._on_marker_pose
        controller.add_listener(self._kind, self._handler)
        logger.debug("controls attached: %s id=%s", self.control_type.value, marker_id)

    def on_found(self, callback: Callable[["MarkerControls"], None]) -> None:
        self._on_found.append(callback)

    def reset(self) -> None:
        self.visible = False

    def dispose(self) -> None:
        self.controller.remove_listener(self._kind, self._handler)
        self._on_found.clear()

    def _matches(self, event: MarkerPoseReported) -> bool:
        if self.control_type is ControlType.PATTERN:
            return event.marker_kind is MarkerKind.PATTERN and event.identity == self.marker_id
        if self.control_type is ControlType.BARCODE:
            return event.marker_kind is MarkerKind.BARCODE and event.identity == self.marker_id
        return event.marker_kind is MarkerKind.UNKNOWN

    def _on_marker_pose(self, event: MarkerPoseReported) -> None:
        if self._matches(event):
            self._found(event.matrix)

    def _on_group_pose(self, event: GroupPoseReported) -> None:
        if event.group_id == self.marker_id:
            self._found(event.matrix)

    def _found(self, matrix: np.ndarray) -> None:
        if self.matrix_mode is MatrixMode.CAMERA_TRANSFORM:
            self.matrix = invert_transform(matrix)
        else:
            self.matrix = np.array(matrix, dtype=np.float64, copy=True)
        self.visible = True
        self.found_count += 1
        for callback in list(self._on_found):
            callback(self)
