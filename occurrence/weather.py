"""
Weather station reference data and daily weather records.

Stations and daily records are static inputs (GHCN-Daily style). They are
loaded once and then only queried: `StationIndex` answers nearest-station
questions and `DailyWeatherStore` answers "which records are usable on this
exact date".
"""

import datetime as dt
import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from .errors import MissingExternalResource
from .geo import haversine_km

logger = logging.getLogger(__name__)

# GHCN-Daily elements kept by the loaders, with their scale to °C / mm
GHCN_ELEMENTS = {
    "TMAX": 0.1,
    "TMIN": 0.1,
    "PRCP": 0.1,
    "SNOW": 1.0,
    "SNWD": 1.0,
}
GHCN_MISSING = -9999

# Column positions in ghcnd-stations.txt
GHCN_STATION_COLSPECS = [(0, 11), (12, 20), (21, 30), (31, 37), (38, 40)]
GHCN_MISSING_ELEVATION = -999.9


def _opt_float(value) -> Optional[float]:
    """Convert NaN/None/empty to None, anything else to float."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    value = float(value)
    return None if math.isnan(value) else value


def _require(path: str | Path) -> Path:
    path = Path(path)
    if not path.exists():
        raise MissingExternalResource(f"Weather reference file not found: {path}")
    return path


@dataclass(frozen=True)
class WeatherStation:
    station_id: str
    latitude: float
    longitude: float
    elevation: Optional[float] = None
    region: Optional[str] = None


@dataclass(frozen=True)
class DailyWeatherRecord:
    """One station's readings for one calendar date (°C and mm)."""

    station_id: str
    date: dt.date
    tmax: Optional[float] = None
    tmin: Optional[float] = None
    prcp: Optional[float] = None
    snow: Optional[float] = None
    snwd: Optional[float] = None

    @property
    def tavg(self) -> Optional[float]:
        """Mean of tmax and tmin; None unless both are present."""
        if self.tmax is None or self.tmin is None:
            return None
        return (self.tmax + self.tmin) / 2.0

    @property
    def n_missing(self) -> int:
        return sum(v is None for v in (self.prcp, self.snow, self.snwd, self.tavg))

    @property
    def eligible(self) -> bool:
        """Whether the record may be used for matching."""
        return self.n_missing == 0


class StationIndex:
    """
    Weather stations keyed by id, with nearest-neighbour queries.

    Stations keep their insertion order, which is also the tie-break order
    for equal distances.
    """

    def __init__(self, stations: Iterable[WeatherStation] = ()):
        self._stations: dict[str, WeatherStation] = {}
        for station in stations:
            if station.station_id in self._stations:
                logger.warning(f"Duplicate station {station.station_id}, keeping first")
                continue
            self._stations[station.station_id] = station

        self._ids = list(self._stations)
        self._lats = np.array([s.latitude for s in self._stations.values()], dtype=float)
        self._lons = np.array([s.longitude for s in self._stations.values()], dtype=float)

    def __len__(self) -> int:
        return len(self._stations)

    def __contains__(self, station_id: str) -> bool:
        return station_id in self._stations

    def __iter__(self):
        return iter(self._stations.values())

    def get(self, station_id: str) -> Optional[WeatherStation]:
        return self._stations.get(station_id)

    def nearest_stations(
        self, target_lat: float, target_lon: float
    ) -> list[tuple[WeatherStation, float]]:
        """
        All stations ordered by ascending haversine distance.

        Args:
            target_lat: Latitude of the query point
            target_lon: Longitude of the query point

        Returns:
            List of (station, distance_km) tuples, nearest first
        """
        if not self._ids:
            return []
        distances = haversine_km(target_lat, target_lon, self._lats, self._lons)
        order = np.argsort(distances, kind="stable")
        return [(self._stations[self._ids[i]], float(distances[i])) for i in order]

    @classmethod
    def from_csv(cls, path: str | Path) -> "StationIndex":
        """
        Load stations from a CSV with columns id, latitude, longitude and
        optionally elevation, region.
        """
        df = pd.read_csv(_require(path), dtype={"id": str, "region": str})
        stations = [
            WeatherStation(
                station_id=row["id"],
                latitude=float(row["latitude"]),
                longitude=float(row["longitude"]),
                elevation=_opt_float(row.get("elevation")),
                region=row.get("region") if isinstance(row.get("region"), str) else None,
            )
            for row in df.to_dict("records")
        ]
        logger.info(f"Loaded {len(stations)} stations from {path}")
        return cls(stations)

    @classmethod
    def from_ghcn_inventory(cls, path: str | Path) -> "StationIndex":
        """Load stations from a fixed-width GHCN-Daily ghcnd-stations.txt file."""
        df = pd.read_fwf(
            _require(path),
            colspecs=GHCN_STATION_COLSPECS,
            header=None,
            names=["id", "latitude", "longitude", "elevation", "region"],
            dtype={"id": str, "region": str},
        )
        stations = []
        for row in df.to_dict("records"):
            elevation = _opt_float(row["elevation"])
            if elevation == GHCN_MISSING_ELEVATION:
                elevation = None
            region = row["region"] if isinstance(row["region"], str) else None
            stations.append(WeatherStation(
                station_id=row["id"],
                latitude=float(row["latitude"]),
                longitude=float(row["longitude"]),
                elevation=elevation,
                region=region,
            ))
        logger.info(f"Loaded {len(stations)} GHCN stations from {path}")
        return cls(stations)


class DailyWeatherStore:
    """
    Daily weather records indexed by exact calendar date.

    Only eligible records (no missing precipitation, snowfall, snow depth or
    average temperature) are visible through `records_on`. There is no
    interpolation: a station without an eligible record on a date does not
    exist for that date.
    """

    def __init__(self, records: Iterable[DailyWeatherRecord] = ()):
        by_date: dict[dt.date, dict[str, DailyWeatherRecord]] = defaultdict(dict)
        self.n_records = 0
        self.n_ineligible = 0
        n_duplicates = 0

        for record in records:
            self.n_records += 1
            if not record.eligible:
                self.n_ineligible += 1
                continue
            day = by_date[record.date]
            if record.station_id in day:
                n_duplicates += 1
                continue
            day[record.station_id] = record

        if n_duplicates:
            logger.warning(f"Ignored {n_duplicates} duplicate station/date records")

        # Fixed station-id order per date keeps matching deterministic
        self._by_date: dict[dt.date, tuple[DailyWeatherRecord, ...]] = {
            date: tuple(day[sid] for sid in sorted(day))
            for date, day in by_date.items()
        }

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_date.values())

    def dates(self) -> list[dt.date]:
        return sorted(self._by_date)

    def records_on(self, date: dt.date) -> tuple[DailyWeatherRecord, ...]:
        """Eligible records for exactly `date`, in station-id order."""
        return self._by_date.get(date, ())

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "DailyWeatherStore":
        """
        Build a store from a tidy frame with columns station, date, tmax,
        tmin, prcp, snow, snwd (°C and mm). Missing columns count as missing
        values.
        """
        dates = pd.to_datetime(df["date"]).dt.date
        records = []
        for date, row in zip(dates, df.to_dict("records")):
            records.append(DailyWeatherRecord(
                station_id=str(row["station"]),
                date=date,
                tmax=_opt_float(row.get("tmax")),
                tmin=_opt_float(row.get("tmin")),
                prcp=_opt_float(row.get("prcp")),
                snow=_opt_float(row.get("snow")),
                snwd=_opt_float(row.get("snwd")),
            ))
        store = cls(records)
        logger.info(
            f"Weather store: {store.n_records} records, "
            f"{store.n_ineligible} ineligible, {len(store.dates())} dates"
        )
        return store

    @classmethod
    def from_csv(cls, path: str | Path) -> "DailyWeatherStore":
        """Load a tidy daily weather CSV (see `from_frame`)."""
        return cls.from_frame(pd.read_csv(_require(path), dtype={"station": str}))

    @classmethod
    def from_ghcn_daily(cls, path: str | Path) -> "DailyWeatherStore":
        """
        Load a GHCN-Daily "by year" CSV (ID, DATE, ELEMENT, VALUE, M-FLAG,
        Q-FLAG, ...; no header).

        Values are stored in tenths of °C / tenths of mm for temperature and
        precipitation and in mm for snow. Values flagged by a quality check
        are treated as missing.
        """
        raw = pd.read_csv(
            _require(path),
            header=None,
            usecols=[0, 1, 2, 3, 5],
            names=["station", "date", "element", "value", "qflag"],
            dtype={"station": str, "date": str, "element": str, "qflag": str},
        )
        raw = raw[raw["element"].isin(GHCN_ELEMENTS)]
        raw = raw[raw["value"] != GHCN_MISSING]
        raw = raw[raw["qflag"].isna()]

        raw = raw.assign(value=raw["value"] * raw["element"].map(GHCN_ELEMENTS))
        tidy = raw.pivot_table(
            index=["station", "date"], columns="element", values="value", aggfunc="first"
        ).reset_index()
        tidy.columns = [str(c).lower() for c in tidy.columns]
        tidy["date"] = pd.to_datetime(tidy["date"], format="%Y%m%d")
        return cls.from_frame(tidy)
