import sys
import xml.etree.ElementTree as ET
from pathlib import Path

import pytest

ENGINE_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ENGINE_DIR))

from gpx import GPX_NS, GPXTPX_NS, GPXX_NS, ExportError, export_csv_to_gpx, export_track, mph_to_mps, to_utc_iso, write_gpx  # noqa: E402
from reconcile import TelemetryRecord  # noqa: E402
from sink import write_records  # noqa: E402
from util import cleanup_temp_dir, make_temp_dir  # noqa: E402

NS = {"g": GPX_NS, "tpx": GPXTPX_NS, "gpxx": GPXX_NS}


def _records():
    return [
        TelemetryRecord("c_00001.png", "2024-11-29", "11:53:18", 30, "38°36'18\"N", "90°34'33.6\"W"),
        TelemetryRecord("c_00002.png", "2024-11-29", "11:53:19", 31, "38°37'4.8\"N", "90°32'52.8\"W"),
    ]


def test_bounds_cover_all_points():
    track = export_track(_records(), name="c")
    assert len(track.points) == 2
    assert track.bounds.min_lat == pytest.approx(38.605)
    assert track.bounds.max_lat == pytest.approx(38.618)
    assert track.bounds.min_lon == pytest.approx(-90.576)
    assert track.bounds.max_lon == pytest.approx(-90.548)


def test_speed_converted_to_meters_per_second():
    assert mph_to_mps(30) == pytest.approx(13.4112)
    track = export_track(_records())
    assert track.points[0].speed_mps == pytest.approx(13.4112)


def test_utc_offset_applied():
    assert to_utc_iso("2024-11-29", "11:53:18") == "2024-11-29T11:53:18Z"
    assert to_utc_iso("2024-11-29", "11:53:18", -6) == "2024-11-29T17:53:18Z"
    assert to_utc_iso("2024-11-29", "23:30:00", -1) == "2024-11-30T00:30:00Z"
    assert to_utc_iso("2024-11-29", "bad") is None
    track = export_track(_records(), utc_offset_hours=-6)
    assert track.points[0].time_utc == "2024-11-29T17:53:18Z"


def test_unusable_rows_skipped():
    records = _records() + [
        TelemetryRecord("c_00003.png", "2024-11-29", "11:53:20", 31, "garbage", "90°32'52\"W"),
        TelemetryRecord("c_00004.png", "2024-11-29", "11:53:21", 31, "90°32'52\"W", "38°36'17\"N"),
        TelemetryRecord("c_00005.png", "2024-13-29", "11:53:22", 31, "38°36'17\"N", "90°32'52\"W"),
    ]
    track = export_track(records)
    assert len(track.points) == 2
    assert [s.filename for s in track.skipped] == ["c_00003.png", "c_00004.png", "c_00005.png"]


def test_no_valid_coordinates_is_an_error():
    bad = [TelemetryRecord("c_00001.png", "2024-11-29", "11:53:18", 30, "", "")]
    with pytest.raises(ExportError):
        export_track(bad)
    with pytest.raises(ExportError):
        export_track([])


def test_document_structure():
    tmp = make_temp_dir()
    try:
        path = write_gpx(export_track(_records(), name="c"), tmp / "c.gpx")
        assert path.read_text(encoding="utf-8").startswith("<?xml")
        root = ET.parse(path).getroot()
        assert root.tag == f"{{{GPX_NS}}}gpx"
        assert root.get("version") == "1.1"

        children = [child.tag.split("}")[1] for child in root]
        assert children == ["metadata", "wpt", "wpt", "trk"]

        bounds = root.find("g:metadata/g:bounds", NS)
        assert float(bounds.get("minlat")) == pytest.approx(38.605)
        assert float(bounds.get("maxlon")) == pytest.approx(-90.548)
        assert root.find("g:metadata/g:time", NS).text == "2024-11-29T11:53:18Z"

        wpt = root.find("g:wpt", NS)
        assert wpt.find("g:name", NS).text == "c_00001.png"
        assert wpt.find("g:extensions/gpxx:WaypointExtension/gpxx:DisplayMode", NS).text == "SymbolAndName"

        trkpts = root.findall("g:trk/g:trkseg/g:trkpt", NS)
        assert len(trkpts) == 2
        assert float(trkpts[1].get("lat")) == pytest.approx(38.618)
        assert trkpts[1].find("g:time", NS).text == "2024-11-29T11:53:19Z"
        speed = trkpts[0].find("g:extensions/tpx:TrackPointExtension/tpx:speed", NS).text
        assert speed == "13.411"
    finally:
        cleanup_temp_dir(tmp)


def test_export_from_csv():
    tmp = make_temp_dir()
    try:
        csv_path = tmp / "c.csv"
        write_records(_records(), csv_path)
        track = export_csv_to_gpx(csv_path)
        assert track.name == "c"
        assert (tmp / "c.gpx").exists()
        assert len(track.points) == 2
    finally:
        cleanup_temp_dir(tmp)
