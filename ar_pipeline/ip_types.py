from dataclasses import dataclass, field
from typing import Any

import numpy as np


@dataclass
class Frame:
    idx: int
    ts_iso: str
    image: Any  # numpy array


@dataclass(frozen=True)
class RawDetection:
    """One square candidate reported by the analyzer for the current frame.

    ``id``/``dir``/``cf`` hold the single-mode result, ``*_patt`` the template
    matching result and ``*_matrix`` the matrix code result. Identities are -1
    when the corresponding mode did not resolve the square.
    """
    area: int
    id: int
    id_patt: int
    id_matrix: int
    dir: int
    dir_patt: int
    dir_matrix: int
    cf: float
    cf_patt: float
    cf_matrix: float
    pos: Any  # (2,) ndarray
    line: Any  # (4,3) ndarray, a*x + b*y + c = 0 per side
    vertex: Any  # (4,2) ndarray


@dataclass(frozen=True)
class SlotDescriptor:
    marker_kind: str  # "pattern" or "barcode"
    marker_id: int
    width: float = 1.0


@dataclass
class GroupSlot:
    descriptor: SlotDescriptor
    visible: int  # >= 0 when seen this frame
    local_pose: Any = field(default_factory=lambda: np.hstack([np.eye(3), np.zeros((3, 1))]))
