"""Track decoders for the file formats found in an activity export.

Each decoder turns one file into a :class:`Track` or raises
:class:`DecodeError`. ``decoder_for`` picks the decoder by looking at the file
name and, when that is not conclusive, at the first bytes of the content.
"""
from __future__ import annotations

import csv
import gzip
import io
import logging
import xml.etree.ElementTree as ET
import zlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from app.errors import DecodeError
from core.models import EPOCH, GeoPoint, Track

logger = logging.getLogger(__name__)

_SNIFF_BYTES = 2048
_GZIP_MAGIC = b"\x1f\x8b"


def _read_bytes(path: Path) -> bytes:
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise DecodeError(path, f"unreadable: {exc}") from exc
    if raw[:2] == _GZIP_MAGIC:
        try:
            return gzip.decompress(raw)
        except (OSError, EOFError, zlib.error) as exc:
            raise DecodeError(path, f"corrupt gzip data: {exc}") from exc
    return raw


def _logical_suffix(path: Path) -> str:
    suffixes = [s.lower() for s in path.suffixes]
    if suffixes and suffixes[-1] == ".gz":
        suffixes = suffixes[:-1]
    return suffixes[-1] if suffixes else ""


def parse_timestamp(value: str) -> datetime:
    """ISO-8601 (``Z`` suffix allowed) or POSIX seconds, returned in UTC."""
    text = value.strip()
    try:
        seconds = float(text)
    except ValueError:
        seconds = None
    if seconds is not None:
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError) as exc:
            raise ValueError(f"timestamp out of range: {text}") from exc
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _children(element: ET.Element, name: str) -> List[ET.Element]:
    return [child for child in element if _local(child.tag) == name]


def _child(element: ET.Element, name: str) -> Optional[ET.Element]:
    for child in element:
        if _local(child.tag) == name:
            return child
    return None


def _child_text(element: ET.Element, name: str) -> Optional[str]:
    child = _child(element, name)
    if child is None or child.text is None:
        return None
    return child.text.strip() or None


def _descendants(element: ET.Element, name: str) -> Iterable[ET.Element]:
    return (el for el in element.iter() if _local(el.tag) == name)


def _build_points(
    path: Path, raw: Iterable[Tuple[float, float, Optional[datetime]]], fallback: Optional[datetime]
) -> List[GeoPoint]:
    """Untimed points take the previous point's time, else ``fallback``, else the epoch."""
    points: List[GeoPoint] = []
    last = fallback or EPOCH
    for lat, lon, ts in raw:
        if ts is not None:
            last = ts
        points.append(GeoPoint(latitude=lat, longitude=lon, timestamp=ts or last))
    if not points:
        raise DecodeError(path, "no track points")
    return points


class TrackDecoder:
    name: str = "base"

    def decode(self, path: Path) -> Track:  # pragma: no cover - virtual
        raise NotImplementedError


class _XmlDecoder(TrackDecoder):
    def _root(self, path: Path) -> ET.Element:
        try:
            return ET.fromstring(_read_bytes(path))
        except ET.ParseError as exc:
            raise DecodeError(path, f"malformed XML: {exc}") from exc


class GpxDecoder(_XmlDecoder):
    name = "gpx"

    def decode(self, path: Path) -> Track:
        root = self._root(path)
        if _local(root.tag) != "gpx":
            raise DecodeError(path, f"expected <gpx> root, found <{_local(root.tag)}>")

        tracks = _children(root, "trk")
        if not tracks:
            raise DecodeError(path, "no tracks")
        if len(tracks) > 1:
            logger.warning("%s holds %d tracks, using the first", path, len(tracks))
        trk = tracks[0]

        started_at = None
        metadata = _child(root, "metadata")
        if metadata is not None and _child_text(metadata, "time"):
            started_at = self._time(path, _child_text(metadata, "time"))

        raw = []
        for pt in _descendants(trk, "trkpt"):
            try:
                lat = float(pt.attrib["lat"])
                lon = float(pt.attrib["lon"])
            except (KeyError, ValueError) as exc:
                raise DecodeError(path, f"bad trkpt coordinates: {exc}") from exc
            text = _child_text(pt, "time")
            raw.append((lat, lon, self._time(path, text) if text else None))

        points = _build_points(path, raw, started_at)
        return Track(
            points=points,
            name=_child_text(trk, "name") or "Untitled",
            source=path,
            started_at=started_at,
        )

    @staticmethod
    def _time(path: Path, text: str) -> datetime:
        try:
            return parse_timestamp(text)
        except ValueError as exc:
            raise DecodeError(path, f"bad timestamp {text!r}") from exc


class TcxDecoder(_XmlDecoder):
    name = "tcx"

    def decode(self, path: Path) -> Track:
        root = self._root(path)
        if _local(root.tag) != "TrainingCenterDatabase":
            raise DecodeError(path, f"expected TCX root, found <{_local(root.tag)}>")
        activity = next(_descendants(root, "Activity"), None)
        if activity is None:
            raise DecodeError(path, "no activities")

        activity_id = _child_text(activity, "Id")
        started_at = GpxDecoder._time(path, activity_id) if activity_id else None

        raw = []
        for tp in _descendants(activity, "Trackpoint"):
            position = _child(tp, "Position")
            if position is None:
                continue
            try:
                lat = float(_child_text(position, "LatitudeDegrees") or "")
                lon = float(_child_text(position, "LongitudeDegrees") or "")
            except ValueError as exc:
                raise DecodeError(path, f"bad Trackpoint position: {exc}") from exc
            text = _child_text(tp, "Time")
            raw.append((lat, lon, GpxDecoder._time(path, text) if text else None))

        points = _build_points(path, raw, started_at)
        name = activity.attrib.get("Sport") or activity_id or "Untitled"
        return Track(points=points, name=name, source=path, started_at=started_at)


class CsvDecoder(TrackDecoder):
    name = "csv"

    LAT_COLUMNS = ("lat", "latitude")
    LON_COLUMNS = ("lon", "lng", "long", "longitude")
    TIME_COLUMNS = ("time", "timestamp", "datetime")

    @staticmethod
    def _pick(header: Dict[str, str], options: Tuple[str, ...]) -> Optional[str]:
        for option in options:
            if option in header:
                return header[option]
        return None

    def _rows(
        self, path: Path, reader: csv.DictReader
    ) -> List[Tuple[float, float, Optional[datetime]]]:
        if not reader.fieldnames:
            raise DecodeError(path, "missing CSV header")
        header = {name.strip().lower(): name for name in reader.fieldnames}
        lat_col = self._pick(header, self.LAT_COLUMNS)
        lon_col = self._pick(header, self.LON_COLUMNS)
        time_col = self._pick(header, self.TIME_COLUMNS)
        if lat_col is None or lon_col is None:
            raise DecodeError(path, "CSV needs latitude and longitude columns")

        raw = []
        for line_no, row in enumerate(reader, start=2):
            try:
                lat = float(row[lat_col])
                lon = float(row[lon_col])
                stamp = row.get(time_col) if time_col else None
                ts = parse_timestamp(stamp) if stamp and stamp.strip() else None
            except (TypeError, ValueError) as exc:
                raise DecodeError(path, f"line {line_no}: {exc}") from exc
            raw.append((lat, lon, ts))
        return raw

    def decode(self, path: Path) -> Track:
        try:
            text = _read_bytes(path).decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise DecodeError(path, f"not UTF-8 text: {exc}") from exc

        reader = csv.DictReader(io.StringIO(text))
        try:
            raw = self._rows(path, reader)
        except csv.Error as exc:
            raise DecodeError(path, f"line {reader.line_num}: {exc}") from exc

        points = _build_points(path, raw, None)
        return Track(points=points, name=path.name.split(".")[0], source=path)


_DECODER_REGISTRY: Dict[str, type[TrackDecoder]] = {
    cls.name: cls for cls in (GpxDecoder, TcxDecoder, CsvDecoder)
}


def supported_formats() -> List[str]:
    return list(_DECODER_REGISTRY.keys())


def _sniff(path: Path) -> Optional[str]:
    try:
        with path.open("rb") as fh:
            head = fh.read(_SNIFF_BYTES)
    except OSError as exc:
        raise DecodeError(path, f"unreadable: {exc}") from exc
    if head[:2] == _GZIP_MAGIC:
        try:
            with gzip.open(path, "rb") as fh:
                head = fh.read(_SNIFF_BYTES)
        except (OSError, EOFError, zlib.error) as exc:
            raise DecodeError(path, f"corrupt gzip data: {exc}") from exc
    lowered = head.lower()
    if b"<gpx" in lowered:
        return "gpx"
    if b"<trainingcenterdatabase" in lowered:
        return "tcx"
    return None


def decoder_for(path: Path) -> TrackDecoder:
    """Pick the decoder for ``path`` from its name, falling back to its content."""
    path = Path(path)
    fmt = _logical_suffix(path).lstrip(".")
    if fmt not in _DECODER_REGISTRY:
        fmt = _sniff(path) or ""
    cls = _DECODER_REGISTRY.get(fmt)
    if cls is None:
        raise DecodeError(path, "unrecognised track format")
    return cls()


def decode_track(path: Path) -> Track:
    return decoder_for(path).decode(Path(path))
