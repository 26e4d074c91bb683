from abc import ABC, abstractmethod
from typing import Any, Optional, Tuple

import numpy as np

from ..ip_types import GroupSlot, RawDetection


PoseSolve = Tuple[np.ndarray, float]


class ImageAnalyzer(ABC):
    """
    Strategy: the image analysis collaborator used by the controller.

    ``detect`` ingests one image and returns the number of square candidates
    (or a negative error code). Every other call refers to the result of the
    most recent ``detect``. Poses are (3,4) row-major arrays returned by value;
    a negative status means the solve failed.
    """

    @abstractmethod
    def detect(self, image: Any) -> int: ...

    @abstractmethod
    def get_detection(self, index: int) -> Optional[RawDetection]: ...

    @abstractmethod
    def set_detection_direction(self, index: int, direction: int) -> None: ...

    @abstractmethod
    def solve_pose_fresh(self, index: int, marker_width: float) -> PoseSolve: ...

    @abstractmethod
    def solve_pose_continuous(
        self, index: int, marker_width: float, seed_pose: np.ndarray
    ) -> PoseSolve: ...

    @abstractmethod
    def get_group_count(self) -> int: ...

    @abstractmethod
    def get_group_slot_count(self, group_id: int) -> int: ...

    @abstractmethod
    def get_group_pose(self, group_id: int) -> np.ndarray: ...

    @abstractmethod
    def get_group_slot(self, group_id: int, slot_index: int) -> GroupSlot: ...

    def close(self) -> None:
        return None
