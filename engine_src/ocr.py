from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import cv2
import pytesseract

import models
from normalize import normalize
from tools import ToolError, ToolNotFoundError
from video import binarize_band


@dataclass
class OcrResult:
    raw_text: str
    normalized_text: str

    @classmethod
    def from_raw(cls, raw_text: str) -> "OcrResult":
        return cls(raw_text=raw_text, normalized_text=normalize(raw_text))


class TesseractOcr:
    def __init__(
        self,
        tesseract: str | Path,
        lang: str = models.DEFAULT_OCR_LANG,
        psm: int = models.DEFAULT_OCR_PSM,
        timeout: float = models.DEFAULT_OCR_TIMEOUT_SEC,
        threshold: bool = True,
    ):
        self.tesseract = Path(tesseract)
        self.lang = lang
        self.psm = int(psm)
        self.timeout = float(timeout)
        self.threshold = threshold

    def read_text(self, image) -> str:
        """Run tesseract on an image array; pytesseract owns its temp files."""
        pytesseract.pytesseract.tesseract_cmd = str(self.tesseract)
        try:
            return pytesseract.image_to_string(
                image,
                lang=self.lang,
                config=f"--psm {self.psm}",
                timeout=self.timeout,
            )
        except pytesseract.TesseractNotFoundError:
            raise ToolNotFoundError(f"tesseract disappeared: {self.tesseract}") from None
        except pytesseract.TesseractError as exc:
            raise ToolError(f"tesseract exited with {exc.status}: {exc.message or 'no output'}") from None
        except RuntimeError as exc:
            # pytesseract signals a timeout with a bare RuntimeError.
            raise ToolError(f"tesseract timed out after {self.timeout:g}s ({exc})") from None

    def recognize(self, band_path: Path) -> OcrResult:
        img = cv2.imread(str(band_path))
        if img is None:
            raise ToolError(f"unreadable image {band_path.name}")
        image = binarize_band(img) if self.threshold else cv2.cvtColor(img, cv2.COLOR_BGR2RGB)
        return OcrResult.from_raw(self.read_text(image))
