from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, List, Optional

import models
from dms import parse_dms
from reconcile import TelemetryRecord
from sink import read_records

GPX_NS = "http://www.topografix.com/GPX/1/1"
GPXX_NS = "http://www.garmin.com/xmlschemas/GpxExtensions/v3"
GPXTPX_NS = "http://www.garmin.com/xmlschemas/TrackPointExtension/v1"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"
SCHEMA_LOCATION = (
    f"{GPX_NS} http://www.topografix.com/GPX/1/1/gpx.xsd "
    f"{GPXX_NS} http://www8.garmin.com/xmlschemas/GpxExtensionsv3.xsd "
    f"{GPXTPX_NS} http://www8.garmin.com/xmlschemas/TrackPointExtensionv1.xsd"
)
CREATOR = "dashcam-telemetry"

ET.register_namespace("", GPX_NS)
ET.register_namespace("gpxx", GPXX_NS)
ET.register_namespace("gpxtpx", GPXTPX_NS)
ET.register_namespace("xsi", XSI_NS)


class ExportError(RuntimeError):
    pass


@dataclass
class TrackPoint:
    latitude: float
    longitude: float
    time_utc: str
    speed_mps: float
    name: str


@dataclass
class Bounds:
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def extend(self, lat: float, lon: float) -> None:
        self.min_lat = min(self.min_lat, lat)
        self.max_lat = max(self.max_lat, lat)
        self.min_lon = min(self.min_lon, lon)
        self.max_lon = max(self.max_lon, lon)


@dataclass
class SkippedRow:
    filename: str
    reason: str


@dataclass
class Track:
    name: str
    points: List[TrackPoint]
    bounds: Bounds
    skipped: List[SkippedRow] = field(default_factory=list)


def mph_to_mps(mph: float) -> float:
    return float(mph) * models.MPH_TO_MPS


def to_utc_iso(date: str, time: str, utc_offset_hours: float = 0.0) -> Optional[str]:
    try:
        local = datetime.strptime(f"{date} {time}", "%Y-%m-%d %H:%M:%S")
    except ValueError:
        return None
    return (local - timedelta(hours=utc_offset_hours)).strftime("%Y-%m-%dT%H:%M:%SZ")


def export_track(
    records: Iterable[TelemetryRecord],
    name: str = "track",
    utc_offset_hours: float = 0.0,
) -> Track:
    """Convert reconciled records into track points.

    Rows whose coordinates or timestamp cannot be parsed are listed in
    `Track.skipped` rather than given an estimated position.
    """
    points: List[TrackPoint] = []
    skipped: List[SkippedRow] = []
    bounds: Optional[Bounds] = None
    for record in records:
        lat = parse_dms(record.latitude)
        lon = parse_dms(record.longitude)
        if lat is None or lon is None:
            bad = record.latitude if lat is None else record.longitude
            skipped.append(SkippedRow(record.filename, f"unparseable coordinate {bad!r}"))
            continue
        if record.latitude.strip()[-1:].upper() not in ("N", "S") or record.longitude.strip()[-1:].upper() not in ("E", "W"):
            skipped.append(SkippedRow(record.filename, "latitude/longitude hemispheres swapped"))
            continue
        time_utc = to_utc_iso(record.date, record.time, utc_offset_hours)
        if time_utc is None:
            skipped.append(SkippedRow(record.filename, f"invalid timestamp {record.date} {record.time}"))
            continue
        points.append(
            TrackPoint(
                latitude=lat,
                longitude=lon,
                time_utc=time_utc,
                speed_mps=mph_to_mps(record.speed_mph),
                name=record.filename,
            )
        )
        if bounds is None:
            bounds = Bounds(lat, lat, lon, lon)
        else:
            bounds.extend(lat, lon)
    if bounds is None:
        raise ExportError("No rows with valid coordinates to export")
    return Track(name=name, points=points, bounds=bounds, skipped=skipped)


def _q(ns: str, tag: str) -> str:
    return f"{{{ns}}}{tag}"


def _speed_extension(parent: ET.Element, speed_mps: float) -> ET.Element:
    extensions = ET.SubElement(parent, _q(GPX_NS, "extensions"))
    tpx = ET.SubElement(extensions, _q(GPXTPX_NS, "TrackPointExtension"))
    ET.SubElement(tpx, _q(GPXTPX_NS, "speed")).text = f"{speed_mps:.3f}"
    return extensions


def build_gpx(track: Track) -> ET.ElementTree:
    gpx = ET.Element(_q(GPX_NS, "gpx"), version="1.1", creator=CREATOR)
    gpx.set(_q(XSI_NS, "schemaLocation"), SCHEMA_LOCATION)

    metadata = ET.SubElement(gpx, _q(GPX_NS, "metadata"))
    ET.SubElement(metadata, _q(GPX_NS, "name")).text = track.name
    if track.points:
        ET.SubElement(metadata, _q(GPX_NS, "time")).text = track.points[0].time_utc
    ET.SubElement(
        metadata,
        _q(GPX_NS, "bounds"),
        minlat=f"{track.bounds.min_lat:.9f}",
        minlon=f"{track.bounds.min_lon:.9f}",
        maxlat=f"{track.bounds.max_lat:.9f}",
        maxlon=f"{track.bounds.max_lon:.9f}",
    )

    # GPX 1.1 requires waypoints before tracks.
    for point in track.points:
        wpt = ET.SubElement(gpx, _q(GPX_NS, "wpt"), lat=f"{point.latitude:.9f}", lon=f"{point.longitude:.9f}")
        ET.SubElement(wpt, _q(GPX_NS, "time")).text = point.time_utc
        ET.SubElement(wpt, _q(GPX_NS, "name")).text = point.name
        ET.SubElement(wpt, _q(GPX_NS, "cmt")).text = point.name
        ET.SubElement(wpt, _q(GPX_NS, "desc")).text = point.name
        extensions = _speed_extension(wpt, point.speed_mps)
        wpx = ET.SubElement(extensions, _q(GPXX_NS, "WaypointExtension"))
        ET.SubElement(wpx, _q(GPXX_NS, "DisplayMode")).text = "SymbolAndName"

    trk = ET.SubElement(gpx, _q(GPX_NS, "trk"))
    ET.SubElement(trk, _q(GPX_NS, "name")).text = track.name
    seg = ET.SubElement(trk, _q(GPX_NS, "trkseg"))
    for point in track.points:
        trkpt = ET.SubElement(seg, _q(GPX_NS, "trkpt"), lat=f"{point.latitude:.9f}", lon=f"{point.longitude:.9f}")
        ET.SubElement(trkpt, _q(GPX_NS, "time")).text = point.time_utc
        _speed_extension(trkpt, point.speed_mps)
    return ET.ElementTree(gpx)


def write_gpx(track: Track, gpx_path: str | Path) -> Path:
    path = Path(gpx_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tree = build_gpx(track)
    ET.indent(tree, space="  ")
    tree.write(str(path), encoding="utf-8", xml_declaration=True)
    return path


def export_csv_to_gpx(csv_path: str | Path, gpx_path: str | Path | None = None, utc_offset_hours: float = 0.0) -> Track:
    csv_path = Path(csv_path)
    track = export_track(read_records(csv_path), name=csv_path.stem, utc_offset_hours=utc_offset_hours)
    write_gpx(track, gpx_path or csv_path.with_suffix(".gpx"))
    return track
