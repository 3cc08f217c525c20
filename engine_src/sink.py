from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable, List, Optional, Set, Tuple

from reconcile import TelemetryRecord

CSV_HEADER = ["Filename", "Date", "Time", "Speed", "Latitude", "Longitude"]

# The degree sign is written as text so the CSV stays ASCII-safe.
DEGREE_TEXT = "deg"


def to_csv_coordinate(value: str) -> str:
    return value.replace("°", DEGREE_TEXT)


def from_csv_coordinate(value: str) -> str:
    return value.replace(DEGREE_TEXT, "°")


class RecordSink:
    """Writes one CSV row per distinct (date, time), in first-seen order."""

    def __init__(self, csv_path: str | Path):
        self.csv_path = Path(csv_path)
        self.seen: Set[Tuple[str, str]] = set()
        self.written = 0
        self.dropped = 0
        self._fh = None
        self._writer = None

    def open(self) -> "RecordSink":
        self.csv_path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = self.csv_path.open("w", newline="", encoding="utf-8")
        self._writer = csv.writer(self._fh)
        self._writer.writerow(CSV_HEADER)
        return self

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
            self._writer = None

    def __enter__(self) -> "RecordSink":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def emit(self, record: TelemetryRecord) -> bool:
        if self._writer is None:
            raise RuntimeError("RecordSink is not open")
        if record.key in self.seen:
            self.dropped += 1
            return False
        self.seen.add(record.key)
        self._writer.writerow(
            [
                record.filename,
                record.date,
                record.time,
                int(record.speed_mph),
                to_csv_coordinate(record.latitude),
                to_csv_coordinate(record.longitude),
            ]
        )
        self.written += 1
        return True


def write_records(records: Iterable[TelemetryRecord], csv_path: str | Path) -> Tuple[int, int]:
    with RecordSink(csv_path) as sink:
        for record in records:
            sink.emit(record)
    return sink.written, sink.dropped


def _parse_speed(value: str) -> Optional[int]:
    try:
        return int(float(value))
    except ValueError:
        return None


def read_records(csv_path: str | Path) -> List[TelemetryRecord]:
    path = Path(csv_path)
    if not path.exists():
        raise RuntimeError(f"CSV not found: {path}")
    records: List[TelemetryRecord] = []
    with path.open("r", encoding="utf-8-sig", newline="") as f:
        reader = csv.DictReader(f)
        missing = [c for c in CSV_HEADER if c not in (reader.fieldnames or [])]
        if missing:
            raise RuntimeError(f"CSV {path.name} is missing columns: {', '.join(missing)}")
        for row in reader:
            speed = _parse_speed((row.get("Speed") or "").strip())
            records.append(
                TelemetryRecord(
                    filename=(row.get("Filename") or "").strip(),
                    date=(row.get("Date") or "").strip(),
                    time=(row.get("Time") or "").strip(),
                    speed_mph=speed if speed is not None else 0,
                    latitude=from_csv_coordinate((row.get("Latitude") or "").strip()),
                    longitude=from_csv_coordinate((row.get("Longitude") or "").strip()),
                )
            )
    return records
