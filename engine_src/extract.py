from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date as _date
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from dms import dms_in_range, format_dms

T = TypeVar("T")
Strategy = Callable[[str, str], Optional[T]]


@dataclass
class PartialTelemetry:
    filename: str
    frame_index: Optional[int] = None
    date: Optional[str] = None  # YYYY-MM-DD
    time: Optional[str] = None  # HH:MM:SS
    speed_mph: Optional[int] = None
    latitude: Optional[str] = None
    longitude: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "filename": self.filename,
            "frame_index": self.frame_index,
            "date": self.date,
            "time": self.time,
            "speed_mph": self.speed_mph,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }


# ---------------------------------------------------------------- date

_DATE_FULL = re.compile(r"(?<!\d)(\d{4})[-/.](\d{2})[-/.](\d{2})(?!\d)")
_DATE_SHORT = re.compile(r"(?<!\d)(\d{2})[-/.](\d{2})[-/.](\d{2})\d{0,2}(?!\d)")
_DATE_QUOTED = re.compile(r"[\"'](\d{4})\s*[-/.]\s*(\d{2})\s*[-/.]\s*(\d{2})\s*[\"']")
_DATE_FILENAME = re.compile(r"(?<!\d)(\d{4})(\d{2})(\d{2})")


def format_date(year: int, month: int, day: int) -> Optional[str]:
    try:
        return _date(year, month, day).isoformat()
    except ValueError:
        return None


def _date_from(pattern: re.Pattern, text: str, century: int = 0) -> Optional[str]:
    for m in pattern.finditer(text):
        value = format_date(century + int(m.group(1)), int(m.group(2)), int(m.group(3)))
        if value is not None:
            return value
    return None


def date_full(text: str, filename: str) -> Optional[str]:
    return _date_from(_DATE_FULL, text)


def date_short(text: str, filename: str) -> Optional[str]:
    return _date_from(_DATE_SHORT, text, century=2000)


def date_quoted(text: str, filename: str) -> Optional[str]:
    return _date_from(_DATE_QUOTED, text)


def date_from_filename(text: str, filename: str) -> Optional[str]:
    if not filename:
        return None
    value = _date_from(_DATE_FILENAME, Path(filename).stem)
    if value is None or not value.startswith("20"):
        return None
    return value


DATE_STRATEGIES: List[Strategy[str]] = [date_full, date_short, date_quoted, date_from_filename]


# ---------------------------------------------------------------- time

_TIME_COLON = re.compile(r"(?<!\d)(\d{1,2}):(\d{2}):(\d{2})(?!\d)")
_TIME_LOOSE = re.compile(r"(?<![\d.;:])(\d{1,2})[.;:](\d{2})[.;:](\d{2})(?!\d)")


def format_time(hour: int, minute: int, second: int) -> Optional[str]:
    if not (0 <= hour <= 23 and 0 <= minute <= 59 and 0 <= second <= 59):
        return None
    return f"{hour:02d}:{minute:02d}:{second:02d}"


def _time_from(pattern: re.Pattern, text: str) -> Optional[str]:
    for m in pattern.finditer(text):
        value = format_time(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        if value is not None:
            return value
    return None


def time_colon(text: str, filename: str) -> Optional[str]:
    return _time_from(_TIME_COLON, text)


def time_loose(text: str, filename: str) -> Optional[str]:
    return _time_from(_TIME_LOOSE, text)


TIME_STRATEGIES: List[Strategy[str]] = [time_colon, time_loose]


# ---------------------------------------------------------------- speed

_UNIT = r"(?:mph|km/h|kmh)"
_SPEED_DIRECT = re.compile(r"(?<![\d:;.])(\d+)\s*" + _UNIT, re.IGNORECASE)
_SPEED_LETTER_ZERO = re.compile(r"(?<![A-Za-z0-9])[oO0]\s*" + _UNIT, re.IGNORECASE)
_SPEED_UNIT = re.compile(_UNIT, re.IGNORECASE)
# Digit runs that are not part of a time, date or coordinate.
_SPEED_RUN = re.compile(r"(?<![\d:;.°'\"/-])(\d{1,3})(?![\d:;.°'\"/-])")


def speed_direct(text: str, filename: str) -> Optional[int]:
    m = _SPEED_DIRECT.search(text)
    return int(m.group(1)) if m else None


def speed_letter_zero(text: str, filename: str) -> Optional[int]:
    return 0 if _SPEED_LETTER_ZERO.search(text) else None


def speed_scan(text: str, filename: str) -> Optional[int]:
    unit = _SPEED_UNIT.search(text)
    if unit is None:
        return None
    runs = _SPEED_RUN.findall(text[: unit.start()])
    return int(runs[-1]) if runs else None


SPEED_STRATEGIES: List[Strategy[int]] = [speed_direct, speed_letter_zero, speed_scan]


# ---------------------------------------------------------------- coordinates

_DMS_BODY = r"(\d{1,3})\s*°\s*(\d{1,2})\s*['\"°]\s*(\d{1,2}(?:\.\d+)?)\s*(?:''|\"|')?\s*"
_LAT = _DMS_BODY + r"([NS])"
_LON = _DMS_BODY + r"([EW])"
_COORD_PAIR = re.compile(_LAT + r"[\s,;]*" + _LON)
_COORD_LAT = re.compile(_LAT)
_COORD_LON = re.compile(_LON)


def _canonical(deg: str, minutes: str, sec: str, hemi: str) -> Optional[str]:
    if not dms_in_range(int(deg), int(minutes), float(sec), hemi):
        return None
    return format_dms(int(deg), int(minutes), sec, hemi)


def coords_pair(text: str, filename: str) -> Optional[Tuple[Optional[str], Optional[str]]]:
    for m in _COORD_PAIR.finditer(text):
        lat = _canonical(*m.group(1, 2, 3, 4))
        lon = _canonical(*m.group(5, 6, 7, 8))
        if lat and lon:
            return lat, lon
    return None


def _first_canonical(pattern: re.Pattern, text: str) -> Optional[str]:
    for m in pattern.finditer(text):
        value = _canonical(*m.group(1, 2, 3, 4))
        if value:
            return value
    return None


def coords_separate(text: str, filename: str) -> Optional[Tuple[Optional[str], Optional[str]]]:
    lat = _first_canonical(_COORD_LAT, text)
    lon = _first_canonical(_COORD_LON, text)
    if lat is None and lon is None:
        return None
    return lat, lon


COORD_STRATEGIES: List[Strategy[Tuple[Optional[str], Optional[str]]]] = [coords_pair, coords_separate]


# ----------------------------------------------------------------


def first_match(strategies: Sequence[Strategy[T]], text: str, filename: str) -> Optional[T]:
    for strategy in strategies:
        value = strategy(text, filename)
        if value is not None:
            return value
    return None


def extract(text: str, frame_filename: str, frame_index: Optional[int] = None) -> PartialTelemetry:
    """Pull every overlay field out of normalized OCR text.

    Each field is tried independently; a field that no strategy recognises is
    left as None for the reconciler to fill in.
    """
    text = text or ""
    coords = first_match(COORD_STRATEGIES, text, frame_filename)
    lat, lon = coords if coords is not None else (None, None)
    return PartialTelemetry(
        filename=frame_filename,
        frame_index=frame_index,
        date=first_match(DATE_STRATEGIES, text, frame_filename),
        time=first_match(TIME_STRATEGIES, text, frame_filename),
        speed_mph=first_match(SPEED_STRATEGIES, text, frame_filename),
        latitude=lat,
        longitude=lon,
    )
