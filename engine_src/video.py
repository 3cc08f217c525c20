import math
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import cv2
import numpy as np

import models
from tools import ToolError, run_tool

_FRAME_NUMBER_RE = re.compile(r"_(\d+)$")


@dataclass
class FrameRecord:
    frame_index: int
    image_path: Path


def _file_mtime_utc(path: Path) -> str:
    ts = os.path.getmtime(path)
    return datetime.fromtimestamp(ts, timezone.utc).isoformat()


def probe_clip(path: str | Path) -> dict:
    clip_path = Path(path)
    cap = cv2.VideoCapture(str(clip_path))
    if not cap.isOpened():
        raise RuntimeError(f"Failed to open video: {clip_path}")

    video_fps = float(cap.get(cv2.CAP_PROP_FPS) or 0.0)
    frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
    width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
    height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
    cap.release()

    duration_sec = frame_count / video_fps if video_fps > 0.0 and frame_count > 0 else 0.0
    if not math.isfinite(duration_sec):
        duration_sec = 0.0
    return {
        "video_path": str(clip_path),
        "file_size": int(os.path.getsize(clip_path)),
        "file_mtime_utc": _file_mtime_utc(clip_path),
        "duration_sec": float(duration_sec),
        "video_fps": video_fps,
        "frame_count": frame_count,
        "width": width,
        "height": height,
    }


def frame_pattern(frames_dir: Path, video_path: Path) -> Path:
    # The video stem stays in every frame name so a date in it survives.
    return frames_dir / f"{video_path.stem}_%05d{models.FRAME_EXT}"


def sample_frames(
    ffmpeg: Path,
    video_path: Path,
    frames_dir: Path,
    fps: float,
    start: Optional[str] = None,
    duration: Optional[str] = None,
    timeout: float = models.DEFAULT_FFMPEG_TIMEOUT_SEC,
) -> List[FrameRecord]:
    frames_dir.mkdir(parents=True, exist_ok=True)
    cmd: List[str | Path] = [ffmpeg, "-hide_banner", "-loglevel", "error", "-y"]
    if start:
        cmd += ["-ss", str(start)]
    cmd += ["-i", video_path]
    if duration:
        cmd += ["-t", str(duration)]
    cmd += ["-vf", f"fps={fps:g}", frame_pattern(frames_dir, video_path)]
    run_tool(cmd, timeout=timeout)
    frames = list_frames(frames_dir)
    if not frames:
        raise ToolError(f"ffmpeg produced no frames for {video_path.name}")
    return frames


def frame_index_from_name(path: str | Path) -> Optional[int]:
    m = _FRAME_NUMBER_RE.search(Path(path).stem)
    if not m:
        return None
    # ffmpeg numbers output images from 1.
    return max(0, int(m.group(1)) - 1)


def list_frames(folder: Path) -> List[FrameRecord]:
    frames = []
    for image_path in folder.glob(f"*{models.FRAME_EXT}"):
        idx = frame_index_from_name(image_path)
        if idx is not None:
            frames.append(FrameRecord(frame_index=idx, image_path=image_path))
    frames.sort(key=lambda f: f.frame_index)
    return frames


def band_height_for(frame_h: int, band_height: Optional[int] = None) -> int:
    if band_height:
        return max(1, min(frame_h, int(band_height)))
    return min(frame_h, max(models.MIN_BAND_HEIGHT, int(round(frame_h * models.DEFAULT_BAND_FRAC))))


def extract_bottom_band(frame_bgr: np.ndarray, band_height: Optional[int] = None) -> Tuple[np.ndarray, Tuple[int, int, int, int]]:
    h, w = frame_bgr.shape[:2]
    bar_h = band_height_for(h, band_height)
    top = h - bar_h
    # (width, height, x, y), same order as a WxH+X+Y crop geometry.
    return frame_bgr[top:h, :], (w, bar_h, 0, top)


def crop_frames(
    frames: Iterable[FrameRecord],
    cropped_dir: Path,
    band_height: Optional[int] = None,
) -> Iterable[Tuple[FrameRecord, Optional[FrameRecord], Optional[str]]]:
    """Crop the metadata band of each frame into cropped_dir.

    Yields (source, cropped, error) per frame; a frame that cannot be read
    yields cropped=None and the reason.
    """
    cropped_dir.mkdir(parents=True, exist_ok=True)
    for frame in frames:
        img = cv2.imread(str(frame.image_path))
        if img is None:
            yield frame, None, f"unreadable image {frame.image_path.name}"
            continue
        band, _ = extract_bottom_band(img, band_height)
        out_path = cropped_dir / frame.image_path.name
        if not cv2.imwrite(str(out_path), band):
            yield frame, None, f"failed to write {out_path.name}"
            continue
        yield frame, FrameRecord(frame_index=frame.frame_index, image_path=out_path), None


def binarize_band(band_bgr: np.ndarray) -> np.ndarray:
    gray = cv2.cvtColor(band_bgr, cv2.COLOR_BGR2GRAY) if band_bgr.ndim == 3 else band_bgr
    blur = cv2.GaussianBlur(gray, (3, 3), 0)
    # Overlay text is light on a dark band; invert so tesseract sees dark on white.
    _, bw = cv2.threshold(blur, 0, 255, cv2.THRESH_BINARY_INV | cv2.THRESH_OTSU)
    return bw
