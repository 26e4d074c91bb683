from pathlib import Path
from time import strftime
from typing import Optional
import json, cv2

class SessionStorage:
    """Per-session folders: raw frames, annotated frames, logs and the config manifest."""

    def __init__(self, root: str, name: str = "session"):
        self.root = Path(root)
        self.name = name
        self.session_dir: Optional[Path] = None
        self.frames_dir: Optional[Path] = None
        self.annotated_dir: Optional[Path] = None
        self.logs_dir: Optional[Path] = None
        self.last_path: Optional[str] = None

    def begin(self) -> str:
        sid = f"{self.name}_{strftime('%Y%m%d_%H%M%S')}"
        self.session_dir = self.root / sid
        self.frames_dir = self.session_dir / "frames"
        self.annotated_dir = self.session_dir / "annotated"
        self.logs_dir = self.session_dir / "logs"
        for d in (self.frames_dir, self.annotated_dir, self.logs_dir):
            d.mkdir(parents=True, exist_ok=True)
        return str(self.session_dir)

    def save_frame(self, f) -> str:
        p = self.frames_dir / f"f{f.idx:06d}.jpg"
        cv2.imwrite(str(p), f.image)
        self.last_path = str(p)
        return self.last_path

    def save_annotated(self, idx: int, image) -> str:
        p = self.annotated_dir / f"f{idx:06d}_markers.jpg"
        cv2.imwrite(str(p), image)
        return str(p)

    def write_manifest(self, meta: dict) -> None:
        with open(self.session_dir / "config.json", "w") as fp:
            json.dump(meta, fp, indent=2, default=str)
