import cv2, numpy as np
from typing import Tuple

def load_calib(path: str) -> Tuple[np.ndarray, np.ndarray, tuple[int,int]]:
    fs = cv2.FileStorage(path, cv2.FILE_STORAGE_READ)
    if not fs.isOpened():
        raise FileNotFoundError(f"Calibration not found: {path}")
    K = fs.getNode("camera_matrix").mat()
    dist = fs.getNode("dist_coeffs").mat()
    w = int(fs.getNode("image_width").real()); h = int(fs.getNode("image_height").real())
    fs.release()
    return K, dist, (w, h)

def approx_calib(width: int, height: int) -> Tuple[np.ndarray, np.ndarray]:
    """Pinhole guess (focal length = image width, no distortion) for uncalibrated runs."""
    K = np.array([[float(width), 0.0, width / 2.0],
                  [0.0, float(width), height / 2.0],
                  [0.0, 0.0, 1.0]])
    return K, np.zeros((5, 1))
