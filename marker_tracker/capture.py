import re
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import cv2
import numpy as np

from ar_pipeline.ip_types import Frame


class BaseCapture(ABC):
    finite = False  # True when a None frame means the source is exhausted

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def next_frame(self) -> Frame | None: ...

    @abstractmethod
    def stop(self) -> None: ...


def _timestamp() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S")


def open_device(device: int | str) -> Any:
    """Open a camera by index, /dev/videoN path (both via V4L2) or URL."""
    if isinstance(device, str):
        m = re.fullmatch(r"/dev/video(\d+)", device)
        if m is None:
            return cv2.VideoCapture(device)
        device = int(m.group(1))
    return cv2.VideoCapture(device, cv2.CAP_V4L2)


class _VideoCaptureSource(BaseCapture):
    """Shared read/release loop over a cv2.VideoCapture handle."""

    def __init__(self):
        self.cap: Any = None
        self.idx = 0

    @abstractmethod
    def _open(self) -> Any: ...

    def start(self) -> None:
        self.cap = self._open()
        if not self.cap.isOpened():
            raise RuntimeError(f"Failed to open {self.describe()}")

    def describe(self) -> str:
        return type(self).__name__

    def next_frame(self) -> Frame | None:
        ok, img = self.cap.read()
        if not ok:
            return None
        self.idx += 1
        return Frame(self.idx, _timestamp(), img)

    def stop(self) -> None:
        if self.cap is None:
            return
        self.cap.release()
        self.cap = None


class WebcamCapture(_VideoCaptureSource):
    def __init__(self, device: int | str, fps: int, width: int, height: int):
        super().__init__()
        self.device = device
        self.fps = fps
        self.width = width
        self.height = height

    def describe(self) -> str:
        return f"camera: {self.device}"

    def _open(self) -> Any:
        cap = open_device(self.device)
        for prop, value in (
            (cv2.CAP_PROP_FRAME_WIDTH, self.width),
            (cv2.CAP_PROP_FRAME_HEIGHT, self.height),
            (cv2.CAP_PROP_FPS, self.fps),
        ):
            cap.set(prop, value)
        return cap


class VideoFileCapture(_VideoCaptureSource):
    """Plays a video file; returns None once the file is exhausted."""

    finite = True

    def __init__(self, path: str):
        super().__init__()
        self.path = path

    def describe(self) -> str:
        return f"video: {self.path}"

    def _open(self) -> Any:
        return cv2.VideoCapture(self.path)


class ImageCapture(BaseCapture):
    """Serves the same still image as every frame."""

    def __init__(self, path: str):
        self.path = path
        self.image: Optional[np.ndarray] = None
        self.idx = 0

    def start(self) -> None:
        self.image = cv2.imread(self.path)
        if self.image is None:
            raise RuntimeError(f"Failed to read image: {self.path}")

    def next_frame(self) -> Frame | None:
        self.idx += 1
        return Frame(self.idx, _timestamp(), self.image.copy())

    def stop(self) -> None:
        self.image = None


class SyntheticCapture(BaseCapture):
    """Blank white frames paced at ``fps``; used for dry runs."""

    def __init__(self, fps: int, width: int, height: int):
        self.fps = fps
        self.shape = (height, width, 3)
        self.idx = 0
        self._next_due = 0.0

    def start(self) -> None:
        self._next_due = time.time()

    def next_frame(self) -> Frame | None:
        if self.fps > 0:
            delay = self._next_due - time.time()
            if delay > 0:
                time.sleep(delay)
            self._next_due = time.time() + 1.0 / self.fps
        self.idx += 1
        return Frame(self.idx, _timestamp(), np.full(self.shape, 255, dtype=np.uint8))

    def stop(self) -> None:
        return None
