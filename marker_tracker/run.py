import argparse
import signal
import sys

from .config import AXIS_CONVENTIONS, SOURCE_TYPES, SourceConfig, TrackerConfig, load_config
from .worker import TrackingWorker


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Run the marker tracker on one source")
    ap.add_argument("--config", help="Path to JSON/YAML config")

    ap.add_argument("--name")
    ap.add_argument("--device")
    ap.add_argument("--fps", type=int)
    ap.add_argument("--width", type=int)
    ap.add_argument("--height", type=int)
    ap.add_argument("--calib")
    ap.add_argument("--out")
    ap.add_argument("--duration", type=float)
    ap.add_argument("--dict")
    ap.add_argument("--marker-width", type=float)
    ap.add_argument("--scale", type=float)
    ap.add_argument("--axis", choices=AXIS_CONVENTIONS)
    ap.add_argument("--max-rate", type=float)
    ap.add_argument("--source", choices=SOURCE_TYPES)
    ap.add_argument("--source-url")
    ap.add_argument("--report-unclassified", action="store_true")
    ap.add_argument("--dry-run", action="store_true")
    ap.add_argument("--max-frames", type=int)
    ap.add_argument("--save-frames", action="store_true")
    ap.add_argument("--no-save-annotated", action="store_true")

    return ap


def _apply_args(cfg: TrackerConfig, args: argparse.Namespace) -> TrackerConfig:
    device = args.device
    if isinstance(device, str) and device.isdigit():
        device = int(device)

    if args.source is not None:
        cfg.source = SourceConfig(type=args.source, url=args.source_url)
    elif args.source_url is not None and cfg.source is not None:
        cfg.source.url = args.source_url

    cfg.apply_overrides(
        name=args.name,
        device=device,
        fps=args.fps,
        width=args.width,
        height=args.height,
        calibration_path=args.calib,
        session_root=args.out,
        duration_sec=args.duration,
        aruco_dict=args.dict,
        default_marker_width=args.marker_width,
        transform_scale=args.scale,
        axis_convention=args.axis,
        max_detection_rate=args.max_rate,
        report_unclassified=True if args.report_unclassified else None,
        dry_run=True if args.dry_run else None,
        max_frames=args.max_frames,
        save_frames=True if args.save_frames else None,
        save_annotated=False if args.no_save_annotated else None,
    )
    return cfg.validate()


def main(argv=None) -> int:
    ap = _build_parser()
    args = ap.parse_args(argv)

    cfg = load_config(args.config) if args.config else TrackerConfig()
    cfg = _apply_args(cfg, args)

    worker = TrackingWorker(cfg)

    def _handle_signal(_sig, _frame):
        worker.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle_signal)

    summary = worker.run()
    print(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
