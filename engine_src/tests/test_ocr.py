import json
import sys
from pathlib import Path

import cv2
import numpy as np
import pytest

ENGINE_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ENGINE_DIR))

from ocr import OcrResult, TesseractOcr  # noqa: E402
from pipeline import STATUS_FATAL, STATUS_OK, STATUS_SKIPPED, ocr_frames, process_frame  # noqa: E402
from tools import ToolError, ToolNotFoundError, require_tools, resolve_tool, run_tool  # noqa: E402
from util import cleanup_temp_dir, make_temp_dir, write_fake_tesseract  # noqa: E402
from video import FrameRecord  # noqa: E402

OVERLAY = "2024-11-29 11:53:18 30 mph 38Â°36’17”N 90°32'52\"W ~"


def _write_band(folder: Path, name: str) -> FrameRecord:
    band = np.zeros((60, 320, 3), dtype=np.uint8)
    band[20:40, 20:300] = 255
    path = folder / name
    cv2.imwrite(str(path), band)
    index = int(path.stem.rsplit("_", 1)[1]) - 1
    return FrameRecord(frame_index=index, image_path=path)


def test_recognize_returns_raw_and_normalized_text():
    tmp = make_temp_dir()
    try:
        script = write_fake_tesseract(tmp, [OVERLAY + "\n"])
        frame = _write_band(tmp, "clip_00001.png")
        result = TesseractOcr(script).recognize(frame.image_path)
        assert result.raw_text == OVERLAY + "\n"
        assert result.normalized_text == "2024-11-29 11:53:18 30 mph 38°36'17\"N 90°32'52\"W"
        assert OcrResult.from_raw("") == OcrResult("", "")
    finally:
        cleanup_temp_dir(tmp)


def test_tesseract_called_with_lang_and_psm():
    tmp = make_temp_dir()
    try:
        script = write_fake_tesseract(tmp, [OVERLAY])
        frame = _write_band(tmp, "clip_00001.png")
        TesseractOcr(script, lang="eng", psm=6).recognize(frame.image_path)
        (args,) = [json.loads(line) for line in (tmp / "fake_tesseract.calls").read_text(encoding="utf-8").splitlines()]
        assert args[2:4] == ["-l", "eng"]
        assert "--psm" in args and args[args.index("--psm") + 1] == "6"
        assert frame.image_path.exists()
    finally:
        cleanup_temp_dir(tmp)


def test_process_frame_extracts_fields():
    tmp = make_temp_dir()
    try:
        script = write_fake_tesseract(tmp, [OVERLAY])
        frame = _write_band(tmp, "clip_00003.png")
        outcome = process_frame(frame, TesseractOcr(script))
        assert outcome.status == STATUS_OK
        assert outcome.partial.frame_index == 2
        assert outcome.partial.filename == "clip_00003.png"
        assert outcome.partial.speed_mph == 30
        assert outcome.partial.latitude == "38°36'17\"N"
    finally:
        cleanup_temp_dir(tmp)


def test_failed_frame_is_skipped_not_fatal():
    tmp = make_temp_dir()
    try:
        script = write_fake_tesseract(tmp, [OVERLAY])
        frames = [_write_band(tmp, "clip_00002.png"), _write_band(tmp, "clip_00001.png")]
        outcomes = list(ocr_frames(frames, TesseractOcr(script)))
        assert [o.frame.frame_index for o in outcomes] == [0, 1]
        assert [o.status for o in outcomes] == [STATUS_OK, STATUS_SKIPPED]
        assert "exited with 1" in outcomes[1].error
    finally:
        cleanup_temp_dir(tmp)


def test_unreadable_band_is_skipped():
    tmp = make_temp_dir()
    try:
        script = write_fake_tesseract(tmp, [OVERLAY])
        path = tmp / "clip_00001.png"
        path.write_bytes(b"broken")
        outcome = process_frame(FrameRecord(0, path), TesseractOcr(script))
        assert outcome.status == STATUS_SKIPPED
        assert "unreadable" in outcome.error
    finally:
        cleanup_temp_dir(tmp)


def test_ocr_timeout_skips_frame():
    tmp = make_temp_dir()
    try:
        script = write_fake_tesseract(tmp, [OVERLAY], sleep=3.0)
        frame = _write_band(tmp, "clip_00001.png")
        outcome = process_frame(frame, TesseractOcr(script, timeout=0.5))
        assert outcome.status == STATUS_SKIPPED
        assert "timed out" in outcome.error
    finally:
        cleanup_temp_dir(tmp)


def test_missing_binary_is_fatal_and_stops():
    tmp = make_temp_dir()
    try:
        frames = [_write_band(tmp, "clip_00001.png"), _write_band(tmp, "clip_00002.png")]
        outcomes = list(ocr_frames(frames, TesseractOcr(tmp / "no_such_tesseract")))
        assert len(outcomes) == 1
        assert outcomes[0].status == STATUS_FATAL
    finally:
        cleanup_temp_dir(tmp)


def test_band_images_removed_unless_kept():
    tmp = make_temp_dir()
    try:
        script = write_fake_tesseract(tmp, [OVERLAY])
        frames = [_write_band(tmp, "clip_00001.png"), _write_band(tmp, "clip_00002.png")]
        list(ocr_frames(frames, TesseractOcr(script), keep_images=False))
        assert not any(f.image_path.exists() for f in frames)

        kept = [_write_band(tmp, "clip_00001.png")]
        list(ocr_frames(kept, TesseractOcr(script), keep_images=True))
        assert kept[0].image_path.exists()
    finally:
        cleanup_temp_dir(tmp)


def test_resolve_tool():
    tmp = make_temp_dir()
    try:
        script = write_fake_tesseract(tmp, [])
        assert resolve_tool("tesseract", script) == script
        assert require_tools(["tesseract"], {"tesseract": str(script)}) == {"tesseract": script}
        with pytest.raises(ToolNotFoundError):
            resolve_tool("tesseract", tmp / "missing")
        with pytest.raises(ToolNotFoundError):
            resolve_tool("definitely-not-a-real-tool-name")
    finally:
        cleanup_temp_dir(tmp)


def test_run_tool_nonzero_exit():
    with pytest.raises(ToolError, match="exited with 3"):
        run_tool([sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"], timeout=30)
