"""
Checklists, detections and zero-filling.

A complete checklist lists every species the observer identified, so a
complete checklist without a detection of the target species is an
absence. `ZeroFillEngine` turns checklists plus detections into one
presence/absence record per usable checklist.
"""

import datetime as dt
import enum
import logging
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from .errors import MalformedRecord, MissingExternalResource

logger = logging.getLogger(__name__)

# Effort-plausibility policy
MAX_DURATION_HOURS = 6.0
MAX_DISTANCE_KM = 10.0
MAX_SPEED_KMH = 100.0
MAX_OBSERVERS = 10

# Count reported as "present, number not recorded"
PRESENT_SENTINEL = "X"

# eBird Basic Dataset headers -> record fields
EBD_COLUMNS = {
    "SAMPLING EVENT IDENTIFIER": "checklist_id",
    "OBSERVER ID": "observer_id",
    "OBSERVATION DATE": "date",
    "TIME OBSERVATIONS STARTED": "start_time",
    "DURATION MINUTES": "duration_minutes",
    "EFFORT DISTANCE KM": "distance_km",
    "PROTOCOL TYPE": "protocol",
    "NUMBER OBSERVERS": "n_observers",
    "LATITUDE": "latitude",
    "LONGITUDE": "longitude",
    "ALL SPECIES REPORTED": "complete",
    "OBSERVATION COUNT": "count",
}

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


class Protocol(enum.Enum):
    STATIONARY = "stationary"
    TRAVELING = "traveling"
    OTHER = "other"

    @classmethod
    def parse(cls, value) -> "Protocol":
        """Map free-text protocol names ("eBird - Traveling Count", ...) to a Protocol."""
        if isinstance(value, Protocol):
            return value
        text = str(value or "").lower()
        if "stationary" in text:
            return cls.STATIONARY
        if "travel" in text:
            return cls.TRAVELING
        return cls.OTHER


def _missing(value) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def _opt_number(value, name: str, record_id: str | None, cast=float):
    if _missing(value):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise MalformedRecord(f"Bad {name}: {value!r}", record_id) from None
    if cast is int and not number.is_integer():
        raise MalformedRecord(f"Bad {name}: {value!r}", record_id)
    return cast(number)


def parse_count(value, record_id: str | None = None) -> int:
    """
    Parse a detection count.

    Raises:
        MalformedRecord: for the "X" sentinel, blanks and anything that is
            not a non-negative integer
    """
    if _missing(value):
        raise MalformedRecord("Missing count", record_id)
    text = str(value).strip()
    if text.upper() == PRESENT_SENTINEL:
        raise MalformedRecord("Count not recorded", record_id)
    try:
        number = float(text)
    except ValueError:
        raise MalformedRecord(f"Bad count: {value!r}", record_id) from None
    if number < 0 or not number.is_integer():
        raise MalformedRecord(f"Bad count: {value!r}", record_id)
    return int(number)


def parse_decimal_time(value, record_id: str | None = None) -> Optional[float]:
    """Convert "HH:MM[:SS]" to hours since midnight in [0, 24); blank -> None."""
    if _missing(value):
        return None
    match = _TIME_RE.match(str(value).strip())
    if not match:
        raise MalformedRecord(f"Bad start time: {value!r}", record_id)
    hours, minutes, seconds = (int(g) if g else 0 for g in match.groups())
    if hours > 23 or minutes > 59 or seconds > 59:
        raise MalformedRecord(f"Bad start time: {value!r}", record_id)
    return hours + minutes / 60.0 + seconds / 3600.0


def _parse_date(value, record_id: str | None) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    try:
        return dt.date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise MalformedRecord(f"Bad date: {value!r}", record_id) from None


def _parse_flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "t", "yes", "y")
    return bool(value) and not _missing(value)


@dataclass(frozen=True)
class Checklist:
    """A single survey with its effort metadata."""

    checklist_id: str
    date: dt.date
    latitude: float
    longitude: float
    protocol: Protocol = Protocol.OTHER
    complete: bool = True
    observer_id: Optional[str] = None
    start_time: Optional[str] = None
    duration_minutes: Optional[float] = None
    distance_km: Optional[float] = None
    n_observers: Optional[int] = None

    @classmethod
    def from_row(cls, row: dict) -> "Checklist":
        """
        Coerce a raw table row into a Checklist.

        Raises:
            MalformedRecord: if a field cannot be coerced
        """
        checklist_id = row.get("checklist_id")
        if _missing(checklist_id):
            raise MalformedRecord("Missing checklist id")
        checklist_id = str(checklist_id)

        latitude = _opt_number(row.get("latitude"), "latitude", checklist_id)
        longitude = _opt_number(row.get("longitude"), "longitude", checklist_id)
        if latitude is None or longitude is None:
            raise MalformedRecord("Missing coordinates", checklist_id)

        start_time = row.get("start_time")
        # Validate eagerly so bad times are dropped at ingestion
        parse_decimal_time(start_time, checklist_id)

        observer_id = row.get("observer_id")
        return cls(
            checklist_id=checklist_id,
            date=_parse_date(row.get("date"), checklist_id),
            latitude=latitude,
            longitude=longitude,
            protocol=Protocol.parse(row.get("protocol")),
            complete=_parse_flag(row.get("complete")),
            observer_id=None if _missing(observer_id) else str(observer_id),
            start_time=None if _missing(start_time) else str(start_time).strip(),
            duration_minutes=_opt_number(row.get("duration_minutes"), "duration", checklist_id),
            distance_km=_opt_number(row.get("distance_km"), "distance", checklist_id),
            n_observers=_opt_number(row.get("n_observers"), "observer count", checklist_id, int),
        )


@dataclass(frozen=True)
class Detection:
    checklist_id: str
    count: int

    @classmethod
    def from_row(cls, row: dict) -> "Detection":
        checklist_id = row.get("checklist_id")
        if _missing(checklist_id):
            raise MalformedRecord("Missing checklist id")
        checklist_id = str(checklist_id)
        return cls(checklist_id, parse_count(row.get("count"), checklist_id))


@dataclass(frozen=True)
class PresenceAbsenceRecord:
    """One usable checklist with the target species' presence and count."""

    checklist_id: str
    date: dt.date
    latitude: float
    longitude: float
    present: bool
    count: int
    protocol: Protocol
    duration_minutes: Optional[float]
    distance_km: Optional[float]
    n_observers: Optional[int]
    decimal_time: Optional[float]
    effort_hours: Optional[float]
    speed_kmh: Optional[float]
    observer_id: Optional[str] = None


@dataclass
class ReconcileReport:
    """Counters collected by `ZeroFillEngine.reconcile`."""

    n_checklists: int = 0
    n_incomplete: int = 0
    n_malformed: int = 0
    n_orphan_detections: int = 0
    n_duplicate_detections: int = 0
    n_failed_effort: int = 0
    n_present: int = 0
    n_absent: int = 0
    malformed_ids: list[str] = field(default_factory=list)

    @property
    def n_kept(self) -> int:
        return self.n_present + self.n_absent


def passes_effort_filter(record: PresenceAbsenceRecord) -> bool:
    """Effort-plausibility rule; undefined effort values fail."""
    if record.protocol not in (Protocol.STATIONARY, Protocol.TRAVELING):
        return False
    if record.effort_hours is None or record.effort_hours > MAX_DURATION_HOURS:
        return False
    if record.distance_km is None or record.distance_km > MAX_DISTANCE_KM:
        return False
    if record.speed_kmh is None or record.speed_kmh > MAX_SPEED_KMH:
        return False
    if record.n_observers is None or record.n_observers > MAX_OBSERVERS:
        return False
    return True


class ZeroFillEngine:
    """Reconciles checklists and detections into presence/absence records."""

    def __init__(self):
        self.report = ReconcileReport()

    def reconcile(
        self,
        checklists: Iterable[Checklist],
        detections: Iterable[Detection | dict],
    ) -> list[PresenceAbsenceRecord]:
        """
        Build one presence/absence record per complete, plausible checklist.

        Detections may be `Detection` objects or raw rows; raw rows whose
        count does not parse mark their checklist as malformed and the
        checklist is dropped rather than zero-filled.

        Args:
            checklists: Checklists in output order
            detections: Target-species detections

        Returns:
            Records in checklist order
        """
        report = self.report = ReconcileReport()

        eligible: dict[str, Checklist] = {}
        for checklist in checklists:
            report.n_checklists += 1
            if not checklist.complete:
                report.n_incomplete += 1
                continue
            eligible.setdefault(checklist.checklist_id, checklist)

        counts: dict[str, int] = {}
        malformed: set[str] = set()
        for detection in detections:
            if not isinstance(detection, Detection):
                try:
                    detection = Detection.from_row(detection)
                except MalformedRecord as e:
                    if e.record_id is not None:
                        malformed.add(e.record_id)
                    else:
                        report.n_malformed += 1
                    continue
            if detection.checklist_id not in eligible:
                report.n_orphan_detections += 1
                continue
            if detection.checklist_id in counts:
                report.n_duplicate_detections += 1
                continue
            counts[detection.checklist_id] = detection.count

        records = []
        for checklist_id, checklist in eligible.items():
            if checklist_id in malformed:
                report.n_malformed += 1
                report.malformed_ids.append(checklist_id)
                continue
            count = counts.get(checklist_id)
            record = self._derive(checklist, present=count is not None, count=count or 0)
            if not passes_effort_filter(record):
                report.n_failed_effort += 1
                continue
            if record.present:
                report.n_present += 1
            else:
                report.n_absent += 1
            records.append(record)

        logger.info(
            f"Zero-fill: {report.n_checklists} checklists, {report.n_incomplete} incomplete, "
            f"{report.n_malformed} malformed, {report.n_failed_effort} failed effort filter"
        )
        logger.info(f"  Kept {report.n_kept} ({report.n_present} present, {report.n_absent} absent)")
        if report.n_orphan_detections:
            logger.warning(f"  {report.n_orphan_detections} detections without an eligible checklist")

        return records

    @staticmethod
    def _derive(checklist: Checklist, present: bool, count: int) -> PresenceAbsenceRecord:
        distance = checklist.distance_km
        if checklist.protocol is Protocol.STATIONARY:
            distance = 0.0

        effort_hours = None
        if checklist.duration_minutes is not None:
            effort_hours = checklist.duration_minutes / 60.0

        speed = None
        if effort_hours and distance is not None:
            speed = distance / effort_hours

        return PresenceAbsenceRecord(
            checklist_id=checklist.checklist_id,
            date=checklist.date,
            latitude=checklist.latitude,
            longitude=checklist.longitude,
            present=present,
            count=count,
            protocol=checklist.protocol,
            duration_minutes=checklist.duration_minutes,
            distance_km=distance,
            n_observers=checklist.n_observers,
            decimal_time=parse_decimal_time(checklist.start_time, checklist.checklist_id),
            effort_hours=effort_hours,
            speed_kmh=speed,
            observer_id=checklist.observer_id,
        )


def _read_table(path: str | Path) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise MissingExternalResource(f"Checklist file not found: {path}")
    sep = "\t" if path.suffix in (".txt", ".tsv") else ","
    df = pd.read_csv(path, sep=sep, dtype=str, keep_default_na=False)
    return df.rename(columns=EBD_COLUMNS)


def load_checklists(path: str | Path) -> list[Checklist]:
    """
    Load checklists from a CSV or tab-separated eBird sampling file.

    Rows that fail coercion are skipped and counted.
    """
    df = _read_table(path)
    checklists = []
    n_bad = 0
    for row in df.to_dict("records"):
        try:
            checklists.append(Checklist.from_row(row))
        except MalformedRecord as e:
            n_bad += 1
            logger.debug(f"Skipping checklist {e.record_id}: {e}")
    if n_bad:
        logger.warning(f"Skipped {n_bad} malformed checklist rows in {path}")
    logger.info(f"Loaded {len(checklists)} checklists from {path}")
    return checklists


def load_detections(path: str | Path) -> list[dict]:
    """
    Load raw detection rows (checklist_id, count).

    Counts are left unparsed so `ZeroFillEngine` can drop the checklists
    whose count is not usable.
    """
    df = _read_table(path)
    rows = df[["checklist_id", "count"]].to_dict("records")
    logger.info(f"Loaded {len(rows)} detections from {path}")
    return rows
