import argparse
import json
import sys
import time
from pathlib import Path

import models
import video
from gpx import ExportError, export_track, write_gpx
from ocr import TesseractOcr
from pipeline import STATUS_FATAL, ocr_frames, reconcile_outcomes
from reconcile import ReconcileConfig
from sink import RecordSink, read_records
from tools import require_tools


def emit(payload: dict) -> None:
    print(json.dumps(payload, separators=(",", ":"), ensure_ascii=True), flush=True)


def load_config(args: argparse.Namespace) -> ReconcileConfig:
    config = ReconcileConfig()
    if getattr(args, "config", None):
        config_path = Path(args.config)
        if not config_path.exists():
            raise RuntimeError(f"Config file not found: {config_path}")
        config = ReconcileConfig.from_mapping(json.loads(config_path.read_text(encoding="utf-8")))
    config = config.merged(
        {
            "fallback_date": args.fallback_date,
            "fallback_time": args.fallback_time,
            "fallback_latitude": args.fallback_lat,
            "fallback_longitude": args.fallback_lon,
            "fps": args.fps,
            "max_speed_change_pct": args.max_speed_change,
            "max_speed_mph": args.max_speed,
            "speed_confirm_frames": args.speed_confirm_frames,
            "time_confirm_frames": args.time_confirm_frames,
            "max_time_jump_sec": args.max_time_jump,
        }
    )
    return config.validate()


def export_gpx(records, gpx_path: Path, name: str, utc_offset: float) -> bool:
    try:
        track = export_track(records, name=name, utc_offset_hours=utc_offset)
    except ExportError as exc:
        emit({"type": "error", "stage": "gpx", "message": str(exc)})
        return False
    for row in track.skipped:
        emit({"type": "warning", "stage": "gpx", "filename": row.filename, "message": row.reason})
    write_gpx(track, gpx_path)
    emit(
        {
            "type": "gpx",
            "path": str(gpx_path),
            "points": len(track.points),
            "skipped": len(track.skipped),
            "bounds": [track.bounds.min_lat, track.bounds.min_lon, track.bounds.max_lat, track.bounds.max_lon],
        }
    )
    return True


def process_video(args: argparse.Namespace) -> int:
    t0 = time.perf_counter()
    video_path = Path(args.video)
    if not video_path.is_file():
        raise RuntimeError(f"Video not found: {video_path}")

    # Everything that can fail before the first frame fails here.
    config = None if args.extract_only else load_config(args)
    fps = config.fps if config else float(args.fps or models.DEFAULT_FPS)
    needed = ["ffmpeg"] if args.extract_only else ["ffmpeg", "tesseract"]
    tools = require_tools(needed, {"ffmpeg": args.ffmpeg, "tesseract": args.tesseract})

    out_dir = Path(args.out) if args.out else video_path.parent / video_path.stem
    frames_dir = out_dir / models.FRAMES_DIRNAME
    cropped_dir = out_dir / models.CROPPED_DIRNAME
    csv_path = video_path.with_suffix(".csv")
    gpx_path = video_path.with_suffix(".gpx")

    emit(
        {
            "type": "start",
            "video": str(video_path),
            "fps": fps,
            "out": str(out_dir),
            "extract_only": bool(args.extract_only),
        }
    )

    frames = video.sample_frames(
        tools["ffmpeg"],
        video_path,
        frames_dir,
        fps=fps,
        start=args.start,
        duration=args.duration,
        timeout=args.ffmpeg_timeout,
    )
    emit({"type": "stage", "stage": "frames", "count": len(frames), "elapsed_ms": (time.perf_counter() - t0) * 1000.0})
    if args.extract_only:
        emit({"type": "done", "video": str(video_path), "frames": len(frames), "total_ms": (time.perf_counter() - t0) * 1000.0})
        return 0

    bands = []
    for frame, band, error in video.crop_frames(frames, cropped_dir, band_height=args.band_height):
        if band is None:
            emit({"type": "frame", "frame": frame.frame_index, "status": "skipped", "stage": "crop", "message": error})
            continue
        bands.append(band)
    emit({"type": "stage", "stage": "crop", "count": len(bands), "elapsed_ms": (time.perf_counter() - t0) * 1000.0})

    ocr = TesseractOcr(tools["tesseract"], lang=args.lang, psm=args.psm, timeout=args.ocr_timeout)
    outcomes = []
    for outcome in ocr_frames(bands, ocr, keep_images=args.keep_crops):
        payload = {
            "type": "frame",
            "frame": outcome.frame.frame_index,
            "file": outcome.frame.image_path.name,
            "status": outcome.status,
        }
        if outcome.ok:
            payload["text"] = outcome.ocr.normalized_text
            payload["fields"] = outcome.partial.as_dict()
        else:
            payload["message"] = outcome.error
        emit(payload)
        if outcome.status == STATUS_FATAL:
            raise RuntimeError(f"OCR aborted at frame {outcome.frame.frame_index}: {outcome.error}")
        outcomes.append(outcome)

    records = reconcile_outcomes(outcomes, config)
    with RecordSink(csv_path) as sink:
        for record in records:
            accepted = sink.emit(record)
            emit(
                {
                    "type": "record",
                    "file": record.filename,
                    "accepted": accepted,
                    "key": f"{record.date} {record.time}",
                    "substituted": list(record.substituted),
                }
            )
    emit({"type": "csv", "path": str(csv_path), "rows": sink.written, "duplicates": sink.dropped})

    gpx_ok = True
    if not args.no_gpx:
        # Export from the written CSV so the GPX holds exactly the deduplicated rows.
        gpx_ok = export_gpx(read_records(csv_path), gpx_path, name=video_path.stem, utc_offset=args.utc_offset)

    emit(
        {
            "type": "done",
            "video": str(video_path),
            "frames": len(frames),
            "ocr_ok": sum(1 for o in outcomes if o.ok),
            "ocr_skipped": sum(1 for o in outcomes if not o.ok),
            "rows": sink.written,
            "gpx_ok": gpx_ok,
            "total_ms": (time.perf_counter() - t0) * 1000.0,
        }
    )
    return 0 if gpx_ok else 1


def run_export(args: argparse.Namespace) -> int:
    csv_path = Path(args.csv)
    gpx_path = Path(args.gpx) if args.gpx else csv_path.with_suffix(".gpx")
    records = read_records(csv_path)
    emit({"type": "start", "csv": str(csv_path), "rows": len(records)})
    ok = export_gpx(records, gpx_path, name=csv_path.stem, utc_offset=args.utc_offset)
    emit({"type": "done", "csv": str(csv_path), "gpx_ok": ok})
    return 0 if ok else 1


def run_probe(args: argparse.Namespace) -> int:
    meta = video.probe_clip(Path(args.video))
    meta["band_height"] = video.band_height_for(meta["height"], args.band_height) if meta["height"] else 0
    meta["type"] = "probe_result"
    emit(meta)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Dashcam overlay telemetry extractor")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_process = sub.add_parser("process", help="Extract telemetry from a video into CSV and GPX")
    p_process.add_argument("--video", required=True)
    p_process.add_argument("--out", help="Working directory for frames (default: next to the video).")
    p_process.add_argument("--fps", type=float, default=None, help=f"Frames sampled per second (default {models.DEFAULT_FPS:g}).")
    p_process.add_argument("--start", default=None, help="Start offset passed to ffmpeg -ss.")
    p_process.add_argument("--duration", default=None, help="Duration passed to ffmpeg -t.")
    p_process.add_argument("--band-height", type=int, default=None, help="Metadata band height in pixels.")
    p_process.add_argument("--extract-only", action="store_true", help="Only sample frames.")
    p_process.add_argument("--keep-crops", action="store_true", help="Keep cropped band images after OCR.")
    p_process.add_argument("--no-gpx", action="store_true")
    p_process.add_argument("--utc-offset", type=float, default=0.0, help="Hours the overlay clock is ahead of UTC.")
    p_process.add_argument("--lang", default=models.DEFAULT_OCR_LANG)
    p_process.add_argument("--psm", type=int, default=models.DEFAULT_OCR_PSM)
    p_process.add_argument("--ocr-timeout", type=float, default=models.DEFAULT_OCR_TIMEOUT_SEC)
    p_process.add_argument("--ffmpeg-timeout", type=float, default=models.DEFAULT_FFMPEG_TIMEOUT_SEC)
    p_process.add_argument("--ffmpeg", default=None, help="Path to ffmpeg.")
    p_process.add_argument("--tesseract", default=None, help="Path to tesseract.")
    p_process.add_argument("--config", default=None, help="JSON file with reconciliation settings.")
    p_process.add_argument("--fallback-date", default=None, help="YYYY-MM-DD used until a date is read. Recordings are assumed to be single-day.")
    p_process.add_argument("--fallback-time", default=None, help="HH:MM:SS of the first frame when no time is read.")
    p_process.add_argument("--fallback-lat", default=None, help="Latitude (DMS or decimal) used until one is read.")
    p_process.add_argument("--fallback-lon", default=None, help="Longitude (DMS or decimal) used until one is read.")
    p_process.add_argument("--max-speed-change", type=float, default=None, help="Max speed change between frames, percent.")
    p_process.add_argument("--max-speed", type=int, default=None, help="Readings above this mph are discarded.")
    p_process.add_argument("--speed-confirm-frames", type=int, default=None)
    p_process.add_argument("--time-confirm-frames", type=int, default=None, help="Consistent clock readings needed to replace a bad anchor time.")
    p_process.add_argument("--max-time-jump", type=float, default=None, help="Seconds a clock reading may run ahead.")

    p_export = sub.add_parser("export", help="Convert a telemetry CSV into GPX")
    p_export.add_argument("--csv", required=True)
    p_export.add_argument("--gpx", default=None)
    p_export.add_argument("--utc-offset", type=float, default=0.0)

    p_probe = sub.add_parser("probe", help="Probe video metadata")
    p_probe.add_argument("--video", required=True)
    p_probe.add_argument("--band-height", type=int, default=None)

    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    try:
        if args.cmd == "process":
            return process_video(args)
        if args.cmd == "export":
            return run_export(args)
        if args.cmd == "probe":
            return run_probe(args)
        raise RuntimeError(f"Unknown command: {args.cmd}")
    except Exception as exc:
        emit({"type": "error", "message": str(exc), "exception": repr(exc)})
        return 1


if __name__ == "__main__":
    sys.exit(main())
