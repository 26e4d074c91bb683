"""Classification of raw analyzer detections into pattern / barcode identities."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ar_pipeline.ip_types import RawDetection


class MarkerKind(str, Enum):
    PATTERN = "pattern"
    BARCODE = "barcode"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Classification:
    kind: MarkerKind
    identity: int
    direction: int
    confidence: float


def classify_detection(det: RawDetection) -> Optional[Classification]:
    """
    Decide which identity a detection carries.

    Template matching wins over matrix decoding: a square resolved by both is
    a pattern marker unless the single-mode id disagrees with the pattern id
    while a matrix id exists. Returns None for a square neither mode resolved.
    """
    if det.id_patt > -1 and (det.id == det.id_patt or det.id_matrix == -1):
        return Classification(MarkerKind.PATTERN, det.id_patt, det.dir_patt, det.cf_patt)
    if det.id_matrix > -1:
        return Classification(MarkerKind.BARCODE, det.id_matrix, det.dir_matrix, det.cf_matrix)
    return None
