"""
Nearest-station weather matching.

Each presence/absence record is matched to the closest station that has an
eligible weather record on the same calendar date, provided it lies within
the search radius.
"""

import datetime as dt
import enum
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, asdict, replace
from typing import Optional, Sequence

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from tqdm import tqdm

from .checklists import PresenceAbsenceRecord
from .config import RADIUS_KM
from .geo import haversine_km
from .weather import DailyWeatherRecord, DailyWeatherStore, StationIndex

logger = logging.getLogger(__name__)

WEATHER_FIELDS = ("tmax", "tmin", "tavg", "prcp", "snow", "snwd")


class MatchStatus(str, enum.Enum):
    MATCHED = "matched"
    TOO_FAR = "unmatched-too-far"
    NO_DATA = "unmatched-no-data-that-day"


@dataclass(frozen=True)
class MatchedObservation:
    """A presence/absence record with the weather of its matched station."""

    record: PresenceAbsenceRecord
    status: MatchStatus
    station_id: Optional[str] = None
    distance_km: Optional[float] = None
    tmax: Optional[float] = None
    tmin: Optional[float] = None
    tavg: Optional[float] = None
    prcp: Optional[float] = None
    snow: Optional[float] = None
    snwd: Optional[float] = None
    landcover: Optional[int] = None

    @property
    def matched(self) -> bool:
        return self.status is MatchStatus.MATCHED

    @property
    def latitude(self) -> float:
        return self.record.latitude

    @property
    def longitude(self) -> float:
        return self.record.longitude

    @property
    def date(self) -> dt.date:
        return self.record.date

    @property
    def present(self) -> bool:
        return self.record.present

    def to_row(self) -> dict:
        """Flat dict for tabular output."""
        row = asdict(self.record)
        row["protocol"] = self.record.protocol.value
        row.update({
            "status": self.status.value,
            "station_id": self.station_id,
            "distance_km": self.distance_km,
            "landcover": self.landcover,
        })
        row.update({name: getattr(self, name) for name in WEATHER_FIELDS})
        return row


@dataclass(frozen=True)
class _DateCandidates:
    """Eligible records on one date with their station coordinates."""

    records: tuple[DailyWeatherRecord, ...]
    lats: np.ndarray
    lons: np.ndarray


def _match_records(
    records: Sequence[PresenceAbsenceRecord],
    candidates: _DateCandidates,
    radius_km: float,
) -> list[MatchedObservation]:
    """Match records that all share one date against that date's candidates."""
    if not candidates.records:
        return [MatchedObservation(record=r, status=MatchStatus.NO_DATA) for r in records]

    results = []
    for record in records:
        distances = haversine_km(record.latitude, record.longitude, candidates.lats, candidates.lons)
        # argmin returns the first minimum, so ties go to the lowest station id
        best = int(np.argmin(distances))
        distance = float(distances[best])

        if distance > radius_km:
            results.append(MatchedObservation(
                record=record, status=MatchStatus.TOO_FAR, distance_km=distance,
            ))
            continue

        weather = candidates.records[best]
        results.append(MatchedObservation(
            record=record,
            status=MatchStatus.MATCHED,
            station_id=weather.station_id,
            distance_km=distance,
            **{name: getattr(weather, name) for name in WEATHER_FIELDS},
        ))
    return results


class ObservationMatcher:
    """
    Matches observations to same-day weather from the nearest eligible station.

    Both reference structures are read-only and passed in explicitly.
    """

    def __init__(self, stations: StationIndex, weather: DailyWeatherStore):
        self.stations = stations
        self.weather = weather
        self._cache: dict[dt.date, _DateCandidates] = {}
        self._unknown_stations: set[str] = set()

    def candidates_on(self, date: dt.date) -> _DateCandidates:
        """Eligible records on `date` whose station location is known."""
        if date not in self._cache:
            records = []
            for record in self.weather.records_on(date):
                if record.station_id not in self.stations:
                    if record.station_id not in self._unknown_stations:
                        self._unknown_stations.add(record.station_id)
                        logger.warning(f"Weather record for unknown station {record.station_id}")
                    continue
                records.append(record)
            stations = [self.stations.get(r.station_id) for r in records]
            self._cache[date] = _DateCandidates(
                records=tuple(records),
                lats=np.array([s.latitude for s in stations], dtype=float),
                lons=np.array([s.longitude for s in stations], dtype=float),
            )
        return self._cache[date]

    def match(
        self, observation: PresenceAbsenceRecord, radius_km: float = RADIUS_KM
    ) -> MatchedObservation:
        """
        Match a single observation.

        Args:
            observation: Record with a location and date
            radius_km: Maximum distance to the station

        Returns:
            MatchedObservation tagged matched, unmatched-too-far or
            unmatched-no-data-that-day
        """
        return _match_records([observation], self.candidates_on(observation.date), radius_km)[0]

    def match_all(
        self,
        observations: Sequence[PresenceAbsenceRecord],
        radius_km: float = RADIUS_KM,
        landcover=None,
        n_jobs: int = 1,
    ) -> list[MatchedObservation]:
        """
        Match many observations, partitioned by date.

        Args:
            observations: Records to match
            radius_km: Maximum distance to the station
            landcover: Optional land-cover source with `query_many(lats, lons)`
            n_jobs: joblib worker count; 1 runs in-process

        Returns:
            Matched observations in the same order as `observations`
        """
        by_date: dict[dt.date, list[int]] = defaultdict(list)
        for i, obs in enumerate(observations):
            by_date[obs.date].append(i)
        dates = sorted(by_date)

        logger.info(
            f"Matching {len(observations)} observations over {len(dates)} dates "
            f"(radius {radius_km} km)"
        )

        tasks = [
            ([observations[i] for i in by_date[date]], self.candidates_on(date), radius_km)
            for date in dates
        ]
        if n_jobs == 1:
            partitions = [_match_records(*task) for task in tqdm(tasks, desc="Matching")]
        else:
            partitions = Parallel(n_jobs=n_jobs)(delayed(_match_records)(*task) for task in tasks)

        results: list[Optional[MatchedObservation]] = [None] * len(observations)
        for date, partition in zip(dates, partitions):
            for i, matched in zip(by_date[date], partition):
                results[i] = matched

        if landcover is not None:
            results = attach_landcover(results, landcover)

        counts = Counter(m.status for m in results)
        logger.info(
            f"  matched: {counts[MatchStatus.MATCHED]}, "
            f"too far: {counts[MatchStatus.TOO_FAR]}, "
            f"no data that day: {counts[MatchStatus.NO_DATA]}"
        )
        return results


def attach_landcover(matched: Sequence[MatchedObservation], landcover) -> list[MatchedObservation]:
    """Resolve the land-cover class at every observation location."""
    if not matched:
        return []
    lats = np.array([m.latitude for m in matched])
    lons = np.array([m.longitude for m in matched])
    codes = landcover.query_many(lats, lons)

    n_missing = int(np.isnan(codes).sum())
    if n_missing:
        logger.warning(f"{n_missing} observations outside land-cover coverage")

    return [
        replace(m, landcover=None if np.isnan(code) else int(code))
        for m, code in zip(matched, codes)
    ]


def matched_to_frame(matched: Sequence[MatchedObservation]) -> pd.DataFrame:
    """Tabulate matched observations as a pandas DataFrame."""
    return pd.DataFrame([m.to_row() for m in matched])
