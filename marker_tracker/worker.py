from __future__ import annotations

import time
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from ar_pipeline.factory import AnalyzerFactory
from ar_pipeline.services.csv_writer import PoseRecord
from ar_pipeline.services.storage import SessionStorage
from ar_pipeline.strategies.analyzer import ImageAnalyzer

from .capture import BaseCapture, ImageCapture, SyntheticCapture, VideoFileCapture, WebcamCapture
from .classify import MarkerKind
from .config import TrackerConfig
from .controller import MarkerController
from .controls import ControlType, MarkerControls, MatrixMode
from .events import EventKind, GroupPoseReported, GroupSubPoseReported, MarkerPoseReported
from .logging_utils import add_file_handler, setup_logger
from .output import CsvOutput, OutputSink
from .transforms import matrix_to_rvec_tvec


@dataclass
class SessionSummary:
    session_path: str
    frames_processed: int
    frames_skipped: int
    csv_path: str
    log_path: str
    avg_fps: float
    errors: int


def build_controller(
    config: TrackerConfig, analyzer: ImageAnalyzer, logger=None
) -> MarkerController:
    controller = MarkerController(
        analyzer,
        default_marker_width=config.default_marker_width,
        transform_scale=config.transform_scale,
        axis_convention=config.axis_convention,
        report_unclassified=config.report_unclassified,
        logger=logger,
    )
    for marker_id, width in (config.pattern_widths or {}).items():
        controller.track_pattern_marker(marker_id, width)
    for marker_id, width in (config.barcode_widths or {}).items():
        controller.track_barcode_marker(marker_id, width)
    return controller


class TrackingWorker:
    """
    Session loop: capture -> controller -> outputs.

    Frames arriving faster than ``max_detection_rate`` are dropped before
    processing. Acquisition failures are counted as errors and never reach
    the outputs.
    """

    def __init__(
        self,
        config: TrackerConfig,
        logger=None,
        outputs: Optional[list[OutputSink]] = None,
        capture: Optional[BaseCapture] = None,
        analyzer: Optional[ImageAnalyzer] = None,
    ):
        self.config = config.validate()
        self.logger = logger or setup_logger(config.name)
        self.outputs = outputs if outputs is not None else [CsvOutput()]
        self.capture = capture
        self.analyzer = analyzer or AnalyzerFactory.from_config(config)
        self.controller = build_controller(config, self.analyzer, self.logger)
        self.controls: list[MarkerControls] = []
        self._stop_event = threading.Event()

        self._records: list[PoseRecord] = []
        self._outlines: list[tuple[str, np.ndarray]] = []
        self.controller.add_listener(EventKind.MARKER_POSE, self._on_marker_pose)
        self.controller.add_listener(EventKind.GROUP_POSE, self._on_group_pose)
        self.controller.add_listener(EventKind.GROUP_SUB_POSE, self._on_group_sub_pose)

    def stop(self) -> None:
        self._stop_event.set()

    def add_controls(
        self,
        control_type: ControlType | str,
        marker_id: Optional[int] = None,
        size: float = 1.0,
        matrix_mode: MatrixMode | str = MatrixMode.MODEL_VIEW,
    ) -> MarkerControls:
        controls = MarkerControls(self.controller, control_type, marker_id, size, matrix_mode)
        self.controls.append(controls)
        return controls

    def _build_capture(self) -> BaseCapture:
        if self.capture is not None:
            return self.capture
        source = self.config.source
        if self.config.dry_run or (source is not None and source.type == "synthetic"):
            return SyntheticCapture(self.config.fps, self.config.width, self.config.height)
        if source is not None and source.type == "video":
            return VideoFileCapture(source.url)
        if source is not None and source.type == "image":
            return ImageCapture(source.url)
        return WebcamCapture(
            self.config.device,
            self.config.fps,
            self.config.width,
            self.config.height,
        )

    def _on_marker_pose(self, event: MarkerPoseReported) -> None:
        rvec, tvec = matrix_to_rvec_tvec(event.matrix)
        self._records.append(
            PoseRecord("marker", event.marker_kind.value, event.identity, rvec, tvec,
                       continuous=event.continuous)
        )
        label = str(event.identity) if event.marker_kind is not MarkerKind.UNKNOWN else "?"
        self._outlines.append((label, np.array(event.detection.vertex, copy=True)))

    def _on_group_pose(self, event: GroupPoseReported) -> None:
        rvec, tvec = matrix_to_rvec_tvec(event.matrix)
        self._records.append(PoseRecord("group", "multi_marker", event.group_id, rvec, tvec))

    def _on_group_sub_pose(self, event: GroupSubPoseReported) -> None:
        rvec, tvec = matrix_to_rvec_tvec(event.matrix)
        desc = event.slot.descriptor
        self._records.append(
            PoseRecord("group_sub", desc.marker_kind, desc.marker_id, rvec, tvec,
                       sub_index=event.sub_index, continuous=False)
        )

    def _annotate(self, image: np.ndarray) -> np.ndarray:
        draw = image.copy()
        for label, vertex in self._outlines:
            pts = vertex.astype(np.int32).reshape(-1, 1, 2)
            cv2.polylines(draw, [pts], True, (0, 255, 0), 2, cv2.LINE_AA)
            x, y = vertex[0]
            cv2.putText(
                draw,
                label,
                (int(x), int(y) - 6),
                cv2.FONT_HERSHEY_SIMPLEX,
                0.6,
                (0, 0, 255),
                2,
                cv2.LINE_AA,
            )
        return draw

    def run(self) -> SessionSummary:
        storage = SessionStorage(self.config.session_root, name=f"{self.config.name}_session")
        session_path = storage.begin()
        storage.write_manifest(self.config.as_dict())

        log_file = str(Path(storage.logs_dir) / "session.log")
        file_handler = add_file_handler(self.logger, self.config.name, log_file)

        for out in self.outputs:
            out.open(Path(storage.session_dir))

        cap = self._build_capture()
        self.controller.initialize()

        self.logger.info("session started: %s", session_path)
        self.logger.info("config: %s", self.config.as_dict())

        min_interval = 1.0 / self.config.max_detection_rate
        cap.start()
        t0 = time.time()
        last_processed: Optional[float] = None
        frames = 0
        skipped = 0
        errors = 0

        try:
            while True:
                if self._stop_event.is_set():
                    break
                if self.config.duration_sec and (time.time() - t0) >= self.config.duration_sec:
                    break
                if self.config.max_frames and frames >= self.config.max_frames:
                    break

                f = cap.next_frame()
                if f is None:
                    if cap.finite:
                        break
                    errors += 1
                    continue

                now = time.time()
                if last_processed is not None and (now - last_processed) < min_interval:
                    skipped += 1
                    continue
                last_processed = now

                for controls in self.controls:
                    controls.reset()
                self._records.clear()
                self._outlines.clear()

                result = self.controller.process(f.image)
                if not result.ok:
                    errors += 1
                    continue

                image_path = storage.save_frame(f) if self.config.save_frames else None
                if self._outlines and self.config.save_annotated:
                    storage.save_annotated(f.idx, self._annotate(f.image))

                ts_unix = time.time()
                for record in self._records:
                    for out in self.outputs:
                        out.write_pose(ts_unix, f.idx, record, image_path)

                self.logger.info(
                    "frame=%d squares=%d tracked=%d groups=%d",
                    f.idx,
                    result.marker_count,
                    len(result.tracked),
                    len(result.visible_groups),
                )
                frames += 1

        finally:
            try:
                cap.stop()
            except Exception as exc:
                self.logger.warning("capture stop failed: %s", exc)

            for out in self.outputs:
                try:
                    out.close()
                except Exception as exc:
                    self.logger.warning("output close failed: %s", exc)

        avg = frames / max(1e-6, (time.time() - t0))
        self.logger.info(
            "summary frames=%d skipped=%d avg_fps=%.2f errors=%d", frames, skipped, avg, errors
        )
        self.logger.removeHandler(file_handler)
        file_handler.close()

        csv_paths = [str(out.path) for out in self.outputs if isinstance(out, CsvOutput) and out.path]
        csv_path = csv_paths[0] if csv_paths else ""
        return SessionSummary(
            str(session_path),
            frames,
            skipped,
            csv_path,
            log_file,
            avg,
            errors,
        )
