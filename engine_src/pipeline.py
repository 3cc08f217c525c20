from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional

from extract import PartialTelemetry, extract
from ocr import OcrResult, TesseractOcr
from reconcile import ReconcileConfig, TelemetryRecord, reconcile
from tools import ToolError, ToolNotFoundError
from video import FrameRecord

STATUS_OK = "ok"
STATUS_SKIPPED = "skipped"
STATUS_FATAL = "fatal"


@dataclass
class FrameOutcome:
    frame: FrameRecord
    status: str
    ocr: Optional[OcrResult] = None
    partial: Optional[PartialTelemetry] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK


def process_frame(frame: FrameRecord, ocr: TesseractOcr) -> FrameOutcome:
    try:
        result = ocr.recognize(frame.image_path)
    except ToolNotFoundError as exc:
        return FrameOutcome(frame=frame, status=STATUS_FATAL, error=str(exc))
    except ToolError as exc:
        return FrameOutcome(frame=frame, status=STATUS_SKIPPED, error=str(exc))
    partial = extract(result.normalized_text, frame.image_path.name, frame.frame_index)
    return FrameOutcome(frame=frame, status=STATUS_OK, ocr=result, partial=partial)


def ocr_frames(
    frames: Iterable[FrameRecord],
    ocr: TesseractOcr,
    keep_images: bool = True,
) -> Iterator[FrameOutcome]:
    """OCR and extract frames strictly in frame order.

    Stops after the first fatal outcome. With keep_images=False each band
    image is removed once its frame is done, whatever the outcome.
    """
    for frame in sorted(frames, key=lambda f: f.frame_index):
        try:
            outcome = process_frame(frame, ocr)
        finally:
            if not keep_images:
                frame.image_path.unlink(missing_ok=True)
        yield outcome
        if outcome.status == STATUS_FATAL:
            return


def reconcile_outcomes(outcomes: Iterable[FrameOutcome], config: ReconcileConfig) -> List[TelemetryRecord]:
    partials = [o.partial for o in outcomes if o.ok and o.partial is not None]
    return reconcile(partials, config)
