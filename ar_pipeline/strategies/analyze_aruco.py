from dataclasses import dataclass, field, replace
from typing import Optional, Sequence

import cv2
import numpy as np

from ..errors import AcquisitionFailure
from ..ip_types import GroupSlot, RawDetection, SlotDescriptor
from .analyzer import ImageAnalyzer, PoseSolve


def get_dict(name: str):
    """
    ArUco-only dictionary resolver (no AprilTag).
    Accepts "4x4_50" or "DICT_4X4_50"; falls back to 4x4_50 if name not recognized.
    Works on OpenCV 4.12 (getPredefinedDictionary) and older (Dictionary_get).
    """
    key = (name or "").strip()
    if key.upper().startswith("DICT_"):
        key = key[5:]
    key = key.lower()
    table = {
        "4x4_50":  cv2.aruco.DICT_4X4_50,
        "4x4_100": cv2.aruco.DICT_4X4_100,
        "5x5_50":  cv2.aruco.DICT_5X5_50,
        "5x5_100": cv2.aruco.DICT_5X5_100,
        "6x6_50":  cv2.aruco.DICT_6X6_50,
        "6x6_100": cv2.aruco.DICT_6X6_100,
        "7x7_50":  cv2.aruco.DICT_7X7_50,
        "7x7_100": cv2.aruco.DICT_7X7_100,
    }
    code = table.get(key, cv2.aruco.DICT_4X4_50)

    if hasattr(cv2.aruco, "getPredefinedDictionary"):           # OpenCV >= 4.7
        return cv2.aruco.getPredefinedDictionary(code)
    return cv2.aruco.Dictionary_get(code)                       # Older OpenCV


def _make_params():
    """Create detector parameters across OpenCV versions."""
    if hasattr(cv2.aruco, "DetectorParameters_create"):
        return cv2.aruco.DetectorParameters_create()
    return cv2.aruco.DetectorParameters()


def marker_object_points(width: float) -> np.ndarray:
    """Marker corners in marker space, top-left first, clockwise, Z normal to the marker."""
    h = width / 2.0
    return np.array(
        [[-h, h, 0.0], [h, h, 0.0], [h, -h, 0.0], [-h, -h, 0.0]],
        dtype=np.float64,
    )


def side_lines(vertex: np.ndarray) -> np.ndarray:
    lines = np.zeros((4, 3))
    for i in range(4):
        p = np.append(vertex[i], 1.0)
        q = np.append(vertex[(i + 1) % 4], 1.0)
        line = np.cross(p, q)
        norm = np.hypot(line[0], line[1])
        lines[i] = line / norm if norm > 0 else line
    return lines


def _identity_pose() -> np.ndarray:
    return np.hstack([np.eye(3), np.zeros((3, 1))])


@dataclass
class GroupDefinition:
    slots: list[SlotDescriptor]
    local_poses: list[np.ndarray] = field(default_factory=list)


class ArucoAnalyzer(ImageAnalyzer):
    """
    Analyzer backed by OpenCV ArUco detection and solvePnP.

    ArUco squares are matrix codes, so every detection carries ``id_matrix``
    and leaves the template fields at -1. Multi-marker groups are rigid
    layouts of barcode slots whose pose is solved jointly from every visible
    slot.
    """

    def __init__(self, K, dist, dict_name: str = "4x4_50"):
        self.K = np.asarray(K, dtype=np.float64)
        self.dist = np.zeros((5, 1)) if dist is None else np.asarray(dist, dtype=np.float64)
        self.dictionary = get_dict(dict_name)
        self.params = _make_params()
        self._detector = None
        # Prefer the newer ArucoDetector API if present
        if hasattr(cv2.aruco, "ArucoDetector"):
            self._detector = cv2.aruco.ArucoDetector(self.dictionary, self.params)

        self._detections: list[RawDetection] = []
        self._groups: list[GroupDefinition] = []
        self._group_cache: dict[int, tuple[np.ndarray, list[int]]] = {}

    def add_group(
        self,
        slots: Sequence[SlotDescriptor],
        local_poses: Optional[Sequence[np.ndarray]] = None,
    ) -> int:
        """Register a rigid multi-marker layout and return its group id."""
        if local_poses is None:
            local_poses = [_identity_pose() for _ in slots]
        if len(local_poses) != len(slots):
            raise ValueError("local_poses must match slots one to one")
        poses = [np.asarray(p, dtype=np.float64).reshape(3, 4) for p in local_poses]
        self._groups.append(GroupDefinition(list(slots), poses))
        return len(self._groups) - 1

    def detect(self, image) -> int:
        if image is None or getattr(image, "size", 0) == 0:
            raise AcquisitionFailure("no image data for this frame")

        gray = image if image.ndim == 2 else cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        if self._detector is not None:
            corners, ids, _rej = self._detector.detectMarkers(gray)
        else:
            corners, ids, _rej = cv2.aruco.detectMarkers(
                gray, self.dictionary, parameters=self.params
            )

        self._detections = []
        self._group_cache.clear()
        if ids is not None and len(ids) > 0:
            for i, mid in enumerate(ids.flatten()):
                self._detections.append(self.to_detection(int(mid), corners[i]))
        return len(self._detections)

    @staticmethod
    def to_detection(marker_id: int, corners) -> RawDetection:
        vertex = np.asarray(corners, dtype=np.float64).reshape(4, 2)
        area = abs(cv2.contourArea(vertex.astype(np.float32)))
        return RawDetection(
            area=int(round(area)),
            id=marker_id,
            id_patt=-1,
            id_matrix=marker_id,
            dir=0,
            dir_patt=-1,
            dir_matrix=0,
            cf=1.0,
            cf_patt=-1.0,
            cf_matrix=1.0,
            pos=vertex.mean(axis=0),
            line=side_lines(vertex),
            vertex=vertex,
        )

    def get_detection(self, index: int) -> Optional[RawDetection]:
        if 0 <= index < len(self._detections):
            return self._detections[index]
        return None

    def set_detection_direction(self, index: int, direction: int) -> None:
        det = self._detections[index]
        self._detections[index] = replace(det, dir=int(direction) % 4)

    def _image_points(self, det: RawDetection) -> np.ndarray:
        # vertex[(4 - dir) % 4] is the top-left corner
        start = (4 - det.dir) % 4
        return np.roll(det.vertex, -start, axis=0)

    def _solve(
        self,
        object_points: np.ndarray,
        image_points: np.ndarray,
        seed_pose: Optional[np.ndarray] = None,
        square: bool = True,
    ) -> PoseSolve:
        object_points = np.ascontiguousarray(object_points, dtype=np.float64)
        image_points = np.ascontiguousarray(image_points, dtype=np.float64)
        if seed_pose is None:
            flags = cv2.SOLVEPNP_IPPE_SQUARE if square else cv2.SOLVEPNP_ITERATIVE
            ok, rvec, tvec = cv2.solvePnP(
                object_points, image_points, self.K, self.dist, flags=flags
            )
        else:
            seed = np.asarray(seed_pose, dtype=np.float64).reshape(3, 4)
            rvec, _ = cv2.Rodrigues(np.ascontiguousarray(seed[:, :3]))
            tvec = np.ascontiguousarray(seed[:, 3].reshape(3, 1))
            ok, rvec, tvec = cv2.solvePnP(
                object_points,
                image_points,
                self.K,
                self.dist,
                rvec=rvec,
                tvec=tvec,
                useExtrinsicGuess=True,
                flags=cv2.SOLVEPNP_ITERATIVE,
            )
        if not ok:
            return _identity_pose(), -1.0

        projected, _ = cv2.projectPoints(object_points, rvec, tvec, self.K, self.dist)
        err = np.linalg.norm(projected.reshape(-1, 2) - image_points, axis=1).mean()
        R, _ = cv2.Rodrigues(rvec)
        return np.hstack([R, np.asarray(tvec).reshape(3, 1)]), float(err)

    def solve_pose_fresh(self, index: int, marker_width: float) -> PoseSolve:
        det = self.get_detection(index)
        if det is None or marker_width <= 0:
            return _identity_pose(), -1.0
        return self._solve(marker_object_points(marker_width), self._image_points(det))

    def solve_pose_continuous(
        self, index: int, marker_width: float, seed_pose: np.ndarray
    ) -> PoseSolve:
        det = self.get_detection(index)
        if det is None or marker_width <= 0:
            return _identity_pose(), -1.0
        return self._solve(
            marker_object_points(marker_width), self._image_points(det), seed_pose=seed_pose
        )

    def get_group_count(self) -> int:
        return len(self._groups)

    def get_group_slot_count(self, group_id: int) -> int:
        if 0 <= group_id < len(self._groups):
            return len(self._groups[group_id].slots)
        return -1

    def _evaluate_group(self, group_id: int) -> tuple[np.ndarray, list[int]]:
        cached = self._group_cache.get(group_id)
        if cached is not None:
            return cached

        group = self._groups[group_id]
        by_id: dict[int, int] = {}
        for idx, det in enumerate(self._detections):
            if det.id_matrix > -1:
                by_id.setdefault(det.id_matrix, idx)

        visible: list[int] = []
        obj_pts = []
        img_pts = []
        for slot, local in zip(group.slots, group.local_poses):
            idx = by_id.get(slot.marker_id, -1) if slot.marker_kind == "barcode" else -1
            visible.append(idx)
            if idx < 0:
                continue
            corners = marker_object_points(slot.width)
            obj_pts.append(corners @ local[:, :3].T + local[:, 3])
            img_pts.append(self._image_points(self._detections[idx]))

        pose = _identity_pose()
        if obj_pts:
            solved, status = self._solve(np.vstack(obj_pts), np.vstack(img_pts), square=False)
            if status >= 0:
                pose = solved
            else:
                visible = [-1] * len(visible)

        self._group_cache[group_id] = (pose, visible)
        return pose, visible

    def get_group_pose(self, group_id: int) -> np.ndarray:
        pose, _ = self._evaluate_group(group_id)
        return pose.copy()

    def get_group_slot(self, group_id: int, slot_index: int) -> GroupSlot:
        _, visible = self._evaluate_group(group_id)
        group = self._groups[group_id]
        return GroupSlot(
            descriptor=group.slots[slot_index],
            visible=visible[slot_index],
            local_pose=group.local_poses[slot_index].copy(),
        )

    def close(self) -> None:
        self._detections = []
        self._group_cache.clear()
