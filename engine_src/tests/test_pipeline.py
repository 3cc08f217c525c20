import csv
import sys
from pathlib import Path

import cv2
import numpy as np

ENGINE_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ENGINE_DIR))

from gpx import export_csv_to_gpx  # noqa: E402
from ocr import TesseractOcr  # noqa: E402
from pipeline import ocr_frames, reconcile_outcomes  # noqa: E402
from reconcile import ReconcileConfig  # noqa: E402
from sink import write_records  # noqa: E402
from util import cleanup_temp_dir, make_temp_dir, write_fake_tesseract  # noqa: E402
from video import crop_frames, list_frames  # noqa: E402

TEXTS = [
    "2024-11-29 11:53:18 30 mph 38°36'17\"N 90°32'52\"W",
    "2024-11-29 11:53:18 30 mph 38°36'17\"N 90°32'52\"W",
    "2024-11-29 11:53:19 3 mph 38°36'18\"N 90°32'53\"W",
    "2024-11-29 11:53:20 31 mph 38°36'19\"N 90°32'54\"W",
    None,  # unreadable by OCR
    "2024-1l-29 11:53:22 ~ 32 mph 38°36'2l\"N",
]


def _config() -> ReconcileConfig:
    return ReconcileConfig(
        fallback_date="2024-11-28",
        fallback_time="11:00:00",
        fallback_latitude="38.6",
        fallback_longitude="-90.5",
    )


def test_frames_to_csv_and_gpx():
    tmp = make_temp_dir()
    try:
        frames_dir = tmp / "frames"
        frames_dir.mkdir()
        for n in range(1, 7):
            img = np.zeros((480, 640, 3), dtype=np.uint8)
            img[460:470, 100:500] = 255
            cv2.imwrite(str(frames_dir / f"drive_{n:05d}.png"), img)

        script = write_fake_tesseract(tmp, TEXTS)
        bands = [band for _, band, _ in crop_frames(list_frames(frames_dir), tmp / "cropped")]
        outcomes = list(ocr_frames(bands, TesseractOcr(script), keep_images=False))
        assert [o.ok for o in outcomes] == [True, True, True, True, False, True]
        assert not any((tmp / "cropped").iterdir())

        records = reconcile_outcomes(outcomes, _config())
        assert len(records) == 5
        assert [r.speed_mph for r in records] == [30, 30, 30, 31, 32]
        last = records[-1]
        assert last.date == "2024-11-29"
        assert last.time == "11:53:22"
        assert last.latitude == "38°36'19\"N"
        assert last.longitude == "90°32'54\"W"

        csv_path = tmp / "drive.csv"
        written, dropped = write_records(records, csv_path)
        assert (written, dropped) == (4, 1)
        with csv_path.open(newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert [r["Filename"] for r in rows] == ["drive_00001.png", "drive_00003.png", "drive_00004.png", "drive_00006.png"]
        assert len({(r["Date"], r["Time"]) for r in rows}) == len(rows)

        track = export_csv_to_gpx(csv_path)
        assert len(track.points) == 4
        assert track.skipped == []
        assert (tmp / "drive.gpx").exists()
    finally:
        cleanup_temp_dir(tmp)
