from dataclasses import dataclass, field, replace

import numpy as np
import pytest

from ar_pipeline.errors import AcquisitionFailure
from ar_pipeline.ip_types import GroupSlot, RawDetection, SlotDescriptor
from ar_pipeline.strategies.analyzer import ImageAnalyzer


def _pose(tx=0.0, ty=0.0, tz=0.0):
    return np.hstack([np.eye(3), np.array([[tx], [ty], [tz]], dtype=np.float64)])


def make_detection(id_patt=-1, id_matrix=-1, id=None, dir=0, dir_patt=0, dir_matrix=0):
    """Build a RawDetection with a unit square outline."""
    if id is None:
        id = id_patt if id_patt > -1 else id_matrix
    vertex = np.array([[0.0, 0.0], [10.0, 0.0], [10.0, 10.0], [0.0, 10.0]])
    return RawDetection(
        area=100,
        id=id,
        id_patt=id_patt,
        id_matrix=id_matrix,
        dir=dir,
        dir_patt=dir_patt,
        dir_matrix=dir_matrix,
        cf=1.0,
        cf_patt=0.9 if id_patt > -1 else -1.0,
        cf_matrix=0.8 if id_matrix > -1 else -1.0,
        pos=vertex.mean(axis=0),
        line=np.zeros((4, 3)),
        vertex=vertex,
    )


@dataclass
class ScriptedFrame:
    detections: list = field(default_factory=list)
    fail: tuple = ()  # detection indices whose pose solve fails
    groups: dict = field(default_factory=dict)  # group_id -> visibility flag per slot


class ScriptedAnalyzer(ImageAnalyzer):
    """Replays queued frames; records every pose solve request."""

    def __init__(self):
        self.frames = []
        self.detections = []
        self.fail = set()
        self.group_visibility = {}
        self.groups = []  # (slots, pose)
        self.calls = []
        self.direction_updates = []
        self.closed = False

    def queue(self, detections=(), fail=(), groups=None):
        self.frames.append(ScriptedFrame(list(detections), tuple(fail), dict(groups or {})))

    def queue_code(self, code):
        self.frames.append(code)

    def add_group(self, slots, pose=None):
        self.groups.append((list(slots), _pose(0, 0, 5) if pose is None else pose))
        return len(self.groups) - 1

    def detect(self, image):
        if image is None:
            raise AcquisitionFailure("no frame")
        item = self.frames.pop(0) if self.frames else ScriptedFrame()
        if isinstance(item, int):
            return item
        self.detections = list(item.detections)
        self.fail = set(item.fail)
        self.group_visibility = item.groups
        return len(self.detections)

    def get_detection(self, index):
        if 0 <= index < len(self.detections):
            return self.detections[index]
        return None

    def set_detection_direction(self, index, direction):
        self.direction_updates.append((index, direction))
        self.detections[index] = replace(self.detections[index], dir=direction)

    def solve_pose_fresh(self, index, marker_width):
        self.calls.append(("fresh", index, marker_width, None))
        if index in self.fail:
            return _pose(), -1.0
        return _pose(1.0 * marker_width, 2.0 * marker_width, 3.0 * marker_width), 0.5

    def solve_pose_continuous(self, index, marker_width, seed_pose):
        self.calls.append(("continuous", index, marker_width, np.array(seed_pose, copy=True)))
        if index in self.fail:
            return _pose(), -1.0
        pose = np.array(seed_pose, dtype=np.float64, copy=True)
        pose[2, 3] += 1.0
        return pose, 0.25

    def get_group_count(self):
        return len(self.groups)

    def get_group_slot_count(self, group_id):
        return len(self.groups[group_id][0])

    def get_group_pose(self, group_id):
        return self.groups[group_id][1].copy()

    def get_group_slot(self, group_id, slot_index):
        slots = self.groups[group_id][0]
        flags = self.group_visibility.get(group_id, [-1] * len(slots))
        return GroupSlot(slots[slot_index], flags[slot_index], _pose(float(slot_index), 0, 0))

    def close(self):
        self.closed = True


@pytest.fixture
def analyzer():
    return ScriptedAnalyzer()


@pytest.fixture
def detection():
    return make_detection


@pytest.fixture
def three_slot_group():
    return [
        SlotDescriptor("barcode", 10, 1.0),
        SlotDescriptor("barcode", 11, 1.0),
        SlotDescriptor("barcode", 12, 1.0),
    ]
