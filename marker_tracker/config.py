from __future__ import annotations

import json
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Optional


AXIS_CONVENTIONS = ("artoolkit", "webgl")
SOURCE_TYPES = ("webcam", "video", "image", "synthetic")


@dataclass
class SourceConfig:
    """Configuration for frame source (webcam, video file, still image)."""

    type: str = "webcam"  # "webcam", "video", "image", "synthetic"
    url: Optional[str] = None  # For video/image sources: file path

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SlotConfig:
    marker_id: int
    width: float = 1.0
    kind: str = "barcode"
    offset: list[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])  # marker centre in group space
    rotation: list[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])  # rvec, marker -> group


@dataclass
class GroupConfig:
    name: str = "group"
    slots: list[SlotConfig] = field(default_factory=list)


@dataclass
class TrackerConfig:
    name: str = "tracker"
    device: int | str = 0
    fps: int = 30
    width: int = 640
    height: int = 480
    calibration_path: Optional[str] = None
    session_root: str = "data/sessions"
    duration_sec: float = 30.0
    max_frames: Optional[int] = None
    dry_run: bool = False
    save_frames: bool = False
    save_annotated: bool = True
    aruco_dict: str = "4x4_50"
    default_marker_width: float = 1.0
    pattern_widths: Optional[dict[int, float]] = None
    barcode_widths: Optional[dict[int, float]] = None
    transform_scale: Optional[float] = None
    axis_convention: str = "artoolkit"
    max_detection_rate: float = 60.0  # frames per second actually processed
    report_unclassified: bool = False
    groups: list[GroupConfig] = field(default_factory=list)
    source: Optional[SourceConfig] = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def apply_overrides(self, **kwargs: Any) -> "TrackerConfig":
        for key, value in kwargs.items():
            if value is not None and hasattr(self, key):
                setattr(self, key, value)
        return self

    def validate(self) -> "TrackerConfig":
        if self.default_marker_width <= 0:
            raise ValueError("default_marker_width must be positive")
        if self.axis_convention not in AXIS_CONVENTIONS:
            raise ValueError(f"axis_convention must be one of {AXIS_CONVENTIONS}")
        if self.max_detection_rate <= 0:
            raise ValueError("max_detection_rate must be positive")
        if self.source is not None and self.source.type not in SOURCE_TYPES:
            raise ValueError(f"source.type must be one of {SOURCE_TYPES}")
        for widths in (self.pattern_widths, self.barcode_widths):
            for marker_id, width in (widths or {}).items():
                if width <= 0:
                    raise ValueError(f"marker width for id {marker_id} must be positive")
        return self


def _normalize_widths(value: Any, key: str) -> Optional[dict[int, float]]:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValueError(f"{key} must be a mapping of marker_id -> width")
    return {int(k): float(v) for k, v in value.items()}


def _parse_vec3(value: Any, key: str) -> list[float]:
    if value is None:
        return [0.0, 0.0, 0.0]
    if not isinstance(value, (list, tuple)) or len(value) != 3:
        raise ValueError(f"{key} must be a list of 3 numbers")
    return [float(v) for v in value]


def _parse_groups(value: Any) -> list[GroupConfig]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError("groups must be a list")
    groups = []
    for i, g_raw in enumerate(value):
        if not isinstance(g_raw, dict):
            raise ValueError("each group must be a mapping")
        slots = []
        for s_raw in g_raw.get("slots", []):
            slots.append(
                SlotConfig(
                    marker_id=int(s_raw["marker_id"]),
                    width=float(s_raw.get("width", 1.0)),
                    kind=str(s_raw.get("kind", "barcode")),
                    offset=_parse_vec3(s_raw.get("offset"), "offset"),
                    rotation=_parse_vec3(s_raw.get("rotation"), "rotation"),
                )
            )
        groups.append(GroupConfig(name=str(g_raw.get("name", f"group{i}")), slots=slots))
    return groups


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        import yaml  # type: ignore
    except Exception as exc:  # pragma: no cover - optional dependency
        raise RuntimeError(
            "YAML config requested but PyYAML is not installed. "
            "Install with: pip install pyyaml"
        ) from exc
    with path.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise ValueError("YAML config root must be a mapping")
    return data


def load_config(path: str | Path) -> TrackerConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")

    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = _load_yaml(p)
    else:
        with p.open("r", encoding="utf-8") as fp:
            raw = json.load(fp)

    if not isinstance(raw, dict):
        raise ValueError("Config root must be a JSON/YAML object")

    cfg = TrackerConfig()
    cfg.name = str(raw.get("name", cfg.name))
    cfg.device = raw.get("device", cfg.device)
    cfg.fps = int(raw.get("fps", cfg.fps))
    cfg.width = int(raw.get("width", cfg.width))
    cfg.height = int(raw.get("height", cfg.height))
    cfg.calibration_path = raw.get("calibration_path", cfg.calibration_path)
    cfg.session_root = str(raw.get("session_root", cfg.session_root))
    cfg.duration_sec = float(raw.get("duration_sec", cfg.duration_sec))
    cfg.max_frames = raw.get("max_frames", cfg.max_frames)
    if cfg.max_frames is not None:
        cfg.max_frames = int(cfg.max_frames)
    cfg.dry_run = bool(raw.get("dry_run", cfg.dry_run))
    cfg.save_frames = bool(raw.get("save_frames", cfg.save_frames))
    cfg.save_annotated = bool(raw.get("save_annotated", cfg.save_annotated))
    cfg.aruco_dict = str(raw.get("aruco_dict", cfg.aruco_dict))
    cfg.default_marker_width = float(raw.get("default_marker_width", cfg.default_marker_width))
    cfg.pattern_widths = _normalize_widths(raw.get("pattern_widths"), "pattern_widths")
    cfg.barcode_widths = _normalize_widths(raw.get("barcode_widths"), "barcode_widths")
    cfg.transform_scale = raw.get("transform_scale", cfg.transform_scale)
    if cfg.transform_scale is not None:
        cfg.transform_scale = float(cfg.transform_scale)
    cfg.axis_convention = str(raw.get("axis_convention", cfg.axis_convention))
    cfg.max_detection_rate = float(raw.get("max_detection_rate", cfg.max_detection_rate))
    cfg.report_unclassified = bool(raw.get("report_unclassified", cfg.report_unclassified))
    cfg.groups = _parse_groups(raw.get("groups"))

    src_raw = raw.get("source")
    if src_raw is not None and isinstance(src_raw, dict):
        src_cfg = SourceConfig()
        src_cfg.type = str(src_raw.get("type", src_cfg.type))
        src_cfg.url = src_raw.get("url", src_cfg.url)
        cfg.source = src_cfg

    return cfg.validate()
