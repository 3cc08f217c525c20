from __future__ import annotations

import re
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import models
from dms import decimal_to_dms, format_dms, is_canonical, split_dms
from extract import PartialTelemetry, format_date, format_time

_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_TIME_RE = re.compile(r"^(\d{2}):(\d{2}):(\d{2})$")

LAST_SECOND_OF_DAY = 24 * 3600 - 1


class ConfigError(ValueError):
    pass


def is_valid_date(value: Optional[str]) -> bool:
    if not value:
        return False
    m = _DATE_RE.match(value)
    return bool(m) and format_date(int(m.group(1)), int(m.group(2)), int(m.group(3))) == value


def is_valid_time(value: Optional[str]) -> bool:
    if not value:
        return False
    m = _TIME_RE.match(value)
    return bool(m) and format_time(int(m.group(1)), int(m.group(2)), int(m.group(3))) == value


def time_to_seconds(value: str) -> int:
    hh, mm, ss = (int(part) for part in value.split(":"))
    return hh * 3600 + mm * 60 + ss


def seconds_to_time(total: float) -> str:
    total = int(max(0, min(LAST_SECOND_OF_DAY, total)))
    return f"{total // 3600:02d}:{(total % 3600) // 60:02d}:{total % 60:02d}"


def coerce_coordinate(value: Any, is_latitude: bool) -> str:
    """Canonical DMS for a fallback given either as DMS text or decimal degrees."""
    hemis = "NS" if is_latitude else "EW"
    if isinstance(value, str):
        parts = split_dms(value)
        if parts is not None:
            deg, minutes, sec, hemi = parts
            if hemi not in hemis:
                raise ConfigError(f"Coordinate {value!r} has hemisphere {hemi}, expected one of {hemis}")
            return format_dms(deg, minutes, sec, hemi)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Unparseable coordinate: {value!r}") from None
    if abs(number) > (90.0 if is_latitude else 180.0):
        raise ConfigError(f"Coordinate out of range: {value!r}")
    return decimal_to_dms(number, is_latitude)


@dataclass
class ReconcileConfig:
    # Fallbacks are used until the first valid reading of each field. They are
    # recording-specific, so there are no built-in values.
    fallback_date: Optional[str] = None
    fallback_time: Optional[str] = None
    fallback_latitude: Optional[str] = None
    fallback_longitude: Optional[str] = None
    fallback_speed_mph: int = 0
    fps: float = models.DEFAULT_FPS
    max_speed_change_pct: float = models.DEFAULT_MAX_SPEED_CHANGE_PCT
    max_speed_mph: int = models.DEFAULT_MAX_SPEED_MPH
    speed_confirm_frames: int = models.DEFAULT_SPEED_CONFIRM_FRAMES
    time_confirm_frames: int = models.DEFAULT_TIME_CONFIRM_FRAMES
    max_time_jump_sec: float = models.DEFAULT_MAX_TIME_JUMP_SEC

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ReconcileConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**{k: v for k, v in data.items() if v is not None})

    def merged(self, overrides: Mapping[str, Any]) -> "ReconcileConfig":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def validate(self) -> "ReconcileConfig":
        missing = [
            name
            for name in ("fallback_date", "fallback_time", "fallback_latitude", "fallback_longitude")
            if getattr(self, name) in (None, "")
        ]
        if missing:
            raise ConfigError(f"Missing fallback values: {', '.join(missing)}")
        if not is_valid_date(self.fallback_date):
            raise ConfigError(f"fallback_date must be YYYY-MM-DD, got {self.fallback_date!r}")
        if not is_valid_time(self.fallback_time):
            raise ConfigError(f"fallback_time must be HH:MM:SS, got {self.fallback_time!r}")
        self.fallback_latitude = coerce_coordinate(self.fallback_latitude, is_latitude=True)
        self.fallback_longitude = coerce_coordinate(self.fallback_longitude, is_latitude=False)
        if self.fps <= 0:
            raise ConfigError("fps must be positive")
        if self.max_speed_change_pct <= 0:
            raise ConfigError("max_speed_change_pct must be positive")
        if self.fallback_speed_mph < 0:
            raise ConfigError("fallback_speed_mph must be non-negative")
        return self


@dataclass
class TelemetryRecord:
    filename: str
    date: str
    time: str
    speed_mph: int
    latitude: str
    longitude: str
    substituted: Tuple[str, ...] = ()

    @property
    def key(self) -> Tuple[str, str]:
        return self.date, self.time

    def as_dict(self) -> Dict[str, object]:
        return {
            "filename": self.filename,
            "date": self.date,
            "time": self.time,
            "speed_mph": self.speed_mph,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }


@dataclass
class ReconciliationState:
    last_valid_date: Optional[str] = None
    last_valid_time: Optional[str] = None
    last_valid_time_index: Optional[int] = None
    last_valid_speed: Optional[int] = None
    last_valid_latitude: Optional[str] = None
    last_valid_longitude: Optional[str] = None
    rejected_speeds: Tuple[int, ...] = field(default_factory=tuple)
    # (frame_index, seconds) of consecutive rejected time readings.
    rejected_times: Tuple[Tuple[int, int], ...] = field(default_factory=tuple)
    frames_seen: int = 0


def _change_pct(old: int, new: int) -> float:
    return abs(new - old) / old * 100.0


def reconcile_date(state: ReconciliationState, value: Optional[str], config: ReconcileConfig) -> Tuple[str, bool]:
    # Recordings are assumed to stay within one day: once a date is
    # established, any other date is an OCR error.
    if is_valid_date(value) and (state.last_valid_date is None or value == state.last_valid_date):
        state.last_valid_date = value
        return value, True
    return state.last_valid_date or config.fallback_date, False


def reconcile_time(
    state: ReconciliationState,
    value: Optional[str],
    frame_index: int,
    config: ReconcileConfig,
) -> Tuple[str, bool]:
    valid = is_valid_time(value)
    if state.last_valid_time is None:
        if valid:
            state.last_valid_time = value
            state.last_valid_time_index = frame_index
            return value, True
        return seconds_to_time(time_to_seconds(config.fallback_time) + frame_index / config.fps), False

    expected = max(0.0, (frame_index - state.last_valid_time_index) / config.fps)
    if valid:
        delta = time_to_seconds(value) - time_to_seconds(state.last_valid_time)
        if 0 <= delta <= expected + config.max_time_jump_sec:
            _anchor_time(state, value, frame_index)
            return value, True

        # A clock that keeps ticking from the rejected value means the anchor
        # itself was the misread.
        run = state.rejected_times + ((frame_index, time_to_seconds(value)),)
        if not _is_steady_clock(run, config):
            run = run[-1:]
        if config.time_confirm_frames > 0 and len(run) >= config.time_confirm_frames:
            _anchor_time(state, value, frame_index)
            return value, True
        state.rejected_times = run
    return seconds_to_time(time_to_seconds(state.last_valid_time) + expected), False


def _anchor_time(state: ReconciliationState, value: str, frame_index: int) -> None:
    state.last_valid_time = value
    state.last_valid_time_index = frame_index
    state.rejected_times = ()


def _is_steady_clock(run: Sequence[Tuple[int, int]], config: ReconcileConfig) -> bool:
    # One second of slack covers the overlay clock rounding between samples.
    for (i0, s0), (i1, s1) in zip(run, run[1:]):
        step = s1 - s0
        if not 0 <= step <= (i1 - i0) / config.fps + 1:
            return False
    return True


def is_dropped_leading_digit(last: int, value: int, next_value: Optional[int], config: ReconcileConfig) -> bool:
    """A single digit between two similar double-digit readings, e.g. 30, 3, 31."""
    if value >= 10 or last < 10 or next_value is None or next_value < 10:
        return False
    return _change_pct(last, next_value) <= config.max_speed_change_pct


def _is_consistent_run(run: Sequence[int], config: ReconcileConfig) -> bool:
    for a, b in zip(run, run[1:]):
        if a == 0:
            if b != 0:
                return False
        elif _change_pct(a, b) > config.max_speed_change_pct:
            return False
    return True


def reconcile_speed(
    state: ReconciliationState,
    value: Optional[int],
    next_value: Optional[int],
    config: ReconcileConfig,
) -> Tuple[int, bool]:
    last = state.last_valid_speed
    carried = last if last is not None else config.fallback_speed_mph
    if value is None or value < 0:
        return carried, False
    # From a standstill any reading is taken as is, cap included.
    if value > config.max_speed_mph and last != 0:
        return carried, False

    if last is None or last == 0:
        state.last_valid_speed = value
        state.rejected_speeds = ()
        return value, True

    if is_dropped_leading_digit(last, value, next_value, config):
        return last, False

    if _change_pct(last, value) <= config.max_speed_change_pct:
        state.last_valid_speed = value
        state.rejected_speeds = ()
        return value, True

    # A jump that keeps being read the same way is a real change in speed.
    run = state.rejected_speeds + (value,)
    if not _is_consistent_run(run, config):
        run = (value,)
    if config.speed_confirm_frames > 0 and len(run) >= config.speed_confirm_frames:
        state.last_valid_speed = value
        state.rejected_speeds = ()
        return value, True
    state.rejected_speeds = run
    return last, False


def reconcile_coordinates(
    state: ReconciliationState,
    latitude: Optional[str],
    longitude: Optional[str],
    config: ReconcileConfig,
) -> Tuple[str, str, bool]:
    if (
        is_canonical(latitude)
        and is_canonical(longitude)
        and latitude[-1] in "NS"
        and longitude[-1] in "EW"
    ):
        state.last_valid_latitude = latitude
        state.last_valid_longitude = longitude
        return latitude, longitude, True
    if state.last_valid_latitude is not None and state.last_valid_longitude is not None:
        return state.last_valid_latitude, state.last_valid_longitude, False
    return config.fallback_latitude, config.fallback_longitude, False


def reconcile_frame(
    state: ReconciliationState,
    partial: PartialTelemetry,
    next_partial: Optional[PartialTelemetry],
    config: ReconcileConfig,
) -> Tuple[TelemetryRecord, ReconciliationState]:
    """Turn one frame's extraction into a complete record.

    The input state is left untouched; the updated state is returned with the
    record. `next_partial` is the following frame's extraction (or None) and
    is only read for the dropped-digit speed correction.
    """
    state = replace(state)
    frame_index = partial.frame_index if partial.frame_index is not None else state.frames_seen
    substituted: List[str] = []

    date, ok = reconcile_date(state, partial.date, config)
    if not ok:
        substituted.append("date")
    time_value, ok = reconcile_time(state, partial.time, frame_index, config)
    if not ok:
        substituted.append("time")
    next_speed = next_partial.speed_mph if next_partial is not None else None
    speed, ok = reconcile_speed(state, partial.speed_mph, next_speed, config)
    if not ok:
        substituted.append("speed")
    lat, lon, ok = reconcile_coordinates(state, partial.latitude, partial.longitude, config)
    if not ok:
        substituted.extend(["latitude", "longitude"])

    state.frames_seen += 1
    record = TelemetryRecord(
        filename=partial.filename,
        date=date,
        time=time_value,
        speed_mph=int(speed),
        latitude=lat,
        longitude=lon,
        substituted=tuple(substituted),
    )
    return record, state


def reconcile(partials: Sequence[PartialTelemetry], config: ReconcileConfig) -> List[TelemetryRecord]:
    """Second pass over a video's extractions, in frame order."""
    config.validate()
    state = ReconciliationState()
    records: List[TelemetryRecord] = []
    for i, partial in enumerate(partials):
        next_partial = partials[i + 1] if i + 1 < len(partials) else None
        record, state = reconcile_frame(state, partial, next_partial, config)
        records.append(record)
    return records
