import logging
from pathlib import Path

import cv2
import numpy as np

from .ip_types import SlotDescriptor
from .services.calib import approx_calib, load_calib
from .strategies.analyze_aruco import ArucoAnalyzer


logger = logging.getLogger(__name__)


def _slot_local_pose(slot) -> np.ndarray:
    R, _ = cv2.Rodrigues(np.asarray(getattr(slot, "rotation", [0.0, 0.0, 0.0]), dtype=np.float64))
    t = np.asarray(getattr(slot, "offset", [0.0, 0.0, 0.0]), dtype=np.float64).reshape(3, 1)
    return np.hstack([R, t])


class AnalyzerFactory:
    @staticmethod
    def from_config(config) -> ArucoAnalyzer:
        # Calibrated intrinsics when a calibration file is given; otherwise a pinhole guess
        calib_path = getattr(config, "calibration_path", None)
        width = getattr(config, "width", 640)
        height = getattr(config, "height", 480)
        if calib_path and Path(calib_path).exists():
            K, dist, _ = load_calib(calib_path)
        else:
            if calib_path:
                logger.warning("calibration %s not found, using approximate intrinsics", calib_path)
            K, dist = approx_calib(width, height)

        analyzer = ArucoAnalyzer(K, dist, getattr(config, "aruco_dict", "4x4_50"))

        for group in getattr(config, "groups", None) or []:
            slots = [SlotDescriptor(s.kind, s.marker_id, s.width) for s in group.slots]
            poses = [_slot_local_pose(s) for s in group.slots]
            group_id = analyzer.add_group(slots, poses)
            logger.info("registered group %s as id %d (%d slots)", group.name, group_id, len(slots))

        return analyzer
