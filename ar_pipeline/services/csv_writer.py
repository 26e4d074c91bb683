import csv
import io
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np


@dataclass
class PoseRecord:
    source: str  # "marker", "group" or "group_sub"
    marker_kind: str
    marker_id: int
    rvec: Any
    tvec: Any
    sub_index: int = -1
    continuous: bool = False


class CsvWriter:
    HEADER = [
        "recorded_at",
        "frame_idx", "source", "marker_kind", "marker_id", "sub_index", "continuous",
        "rvec_x", "rvec_y", "rvec_z",
        "tvec_x", "tvec_y", "tvec_z",
        "image_path"
    ]

    def __init__(self, csv_path: str):
        self.csv_path = csv_path
        self._opened = False
        self._fh = None
        self._w = None

    def open(self):
        self._fh = open(self.csv_path, "w", newline="")
        self._w = csv.writer(self._fh)
        self._w.writerow(self.HEADER)
        self._opened = True

    @staticmethod
    def _vec3(vec):
        if vec is None:
            return [float("nan")] * 3
        a = np.array(vec).reshape(-1).tolist()
        if len(a) < 3:
            a += [float("nan")] * (3 - len(a))
        return a[:3]

    @classmethod
    def _row(cls, ts_unix, frame_idx, record: PoseRecord, img_path: Optional[str]):
        return [
            f"{ts_unix:.6f}",
            frame_idx, record.source, record.marker_kind, record.marker_id,
            record.sub_index, int(record.continuous),
            *cls._vec3(record.rvec), *cls._vec3(record.tvec),
            img_path if img_path is not None else "",
        ]

    def append(self, ts_unix, frame_idx, record: PoseRecord, img_path=None):
        self._w.writerow(self._row(ts_unix, frame_idx, record, img_path))

    @classmethod
    def to_csv_line(cls, ts_unix, frame_idx, record: PoseRecord, img_path=None):
        buf = io.StringIO()
        csv.writer(buf).writerow(cls._row(ts_unix, frame_idx, record, img_path))
        return buf.getvalue().strip()

    def close(self):
        if self._opened and self._fh:
            self._fh.close()
            self._opened = False
            self._fh = None
            self._w = None
