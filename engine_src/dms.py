from __future__ import annotations

import re
from typing import List, Optional, Tuple

# Canonical form written by the extractor: 38°36'17"N
CANONICAL_RE = re.compile(r"^\d{1,3}°\d{1,2}'\d{1,2}(\.\d+)?\"[NSEW]$")

_PATTERNS: List[re.Pattern] = [
    re.compile(r"^\s*(\d{1,3})\s*°\s*(\d{1,2})\s*'\s*(\d{1,2}(?:\.\d+)?)\s*\"?\s*([NSEW])\s*$"),
    re.compile(r"^\s*(\d{1,3})\s*deg\s*(\d{1,2})\s*'\s*(\d{1,2}(?:\.\d+)?)\s*\"?\s*([NSEW])\s*$", re.IGNORECASE),
    # Loose: any non-digit separators between the three numbers.
    re.compile(r"^\s*(\d{1,3})[^\d.]+(\d{1,2})[^\d.]+(\d{1,2}(?:\.\d+)?)[^\dNSEW]*([NSEW])\s*$"),
]


def is_canonical(value: str | None) -> bool:
    return bool(value) and CANONICAL_RE.match(value) is not None


def format_seconds(sec: float) -> str:
    text = f"{sec:.2f}".rstrip("0").rstrip(".")
    return text or "0"


def format_dms(deg: int, minutes: int, sec: str | float, hemi: str) -> str:
    sec_text = sec if isinstance(sec, str) else format_seconds(sec)
    return f"{int(deg)}°{int(minutes)}'{sec_text}\"{hemi.upper()}"


def dms_in_range(deg: float, minutes: float, sec: float, hemi: str) -> bool:
    limit = 90 if hemi.upper() in "NS" else 180
    if minutes >= 60 or sec >= 60:
        return False
    return deg + minutes / 60.0 + sec / 3600.0 <= limit


def dms_to_decimal(deg: float, minutes: float, sec: float, hemi: str) -> float:
    value = float(deg) + float(minutes) / 60.0 + float(sec) / 3600.0
    if hemi.upper() in ("S", "W"):
        value = -value
    return value


def split_dms(text: str) -> Optional[Tuple[int, int, float, str]]:
    if not text:
        return None
    for pattern in _PATTERNS:
        m = pattern.match(text)
        if not m:
            continue
        deg, minutes, sec, hemi = int(m.group(1)), int(m.group(2)), float(m.group(3)), m.group(4).upper()
        if not dms_in_range(deg, minutes, sec, hemi):
            return None
        return deg, minutes, sec, hemi
    return None


def parse_dms(text: str) -> Optional[float]:
    """Decimal degrees for a DMS string, or None if no supported form matches."""
    parts = split_dms(text)
    if parts is None:
        return None
    return dms_to_decimal(*parts)


def decimal_to_dms(value: float, is_latitude: bool) -> str:
    if is_latitude:
        hemi = "N" if value >= 0 else "S"
    else:
        hemi = "E" if value >= 0 else "W"
    total = abs(value)
    deg = int(total)
    minutes_f = (total - deg) * 60.0
    minutes = int(minutes_f)
    sec = round((minutes_f - minutes) * 60.0, 2)
    if sec >= 60.0:
        sec = 0.0
        minutes += 1
    if minutes >= 60:
        minutes = 0
        deg += 1
    return format_dms(deg, minutes, sec, hemi)
