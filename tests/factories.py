import datetime as dt

import numpy as np
import rasterio
from rasterio.transform import from_bounds

from occurrence.checklists import Checklist, PresenceAbsenceRecord, Protocol
from occurrence.matching import MatchedObservation, MatchStatus
from occurrence.weather import DailyWeatherRecord, WeatherStation

DAY = dt.date(2021, 1, 15)


def make_checklist(checklist_id="S1", **overrides):
    params = dict(
        checklist_id=checklist_id,
        date=DAY,
        latitude=42.0,
        longitude=-76.0,
        protocol=Protocol.TRAVELING,
        complete=True,
        observer_id="obs1",
        start_time="07:30",
        duration_minutes=60.0,
        distance_km=2.0,
        n_observers=1,
    )
    params.update(overrides)
    return Checklist(**params)


def make_record(checklist_id="S1", **overrides):
    params = dict(
        checklist_id=checklist_id,
        date=DAY,
        latitude=42.0,
        longitude=-76.0,
        present=False,
        count=0,
        protocol=Protocol.STATIONARY,
        duration_minutes=60.0,
        distance_km=0.0,
        n_observers=1,
        decimal_time=8.0,
        effort_hours=1.0,
        speed_kmh=0.0,
    )
    params.update(overrides)
    return PresenceAbsenceRecord(**params)


def make_weather(station_id, date=DAY, tmax=15.0, tmin=5.0, prcp=0.0, snow=0.0, snwd=0.0):
    return DailyWeatherRecord(station_id, date, tmax=tmax, tmin=tmin, prcp=prcp, snow=snow, snwd=snwd)


def make_station(station_id, lat, lon):
    return WeatherStation(station_id, lat, lon, elevation=100.0, region="NY")


def make_matched(tavg=5.0, snow=0.0, present=False, **overrides):
    """A matched observation whose tmax/tmin average to `tavg`."""
    params = dict(
        status=MatchStatus.MATCHED,
        station_id="ST1",
        distance_km=1.0,
        tmax=tavg + 5.0,
        tmin=tavg - 5.0,
        tavg=tavg,
        prcp=1.0,
        snow=snow,
        snwd=10.0,
        landcover=41,
    )
    params.update(overrides)
    record = make_record(present=present, count=int(present))
    return MatchedObservation(record=record, **params)


class ConstantLandCover:
    """Land-cover source returning one class everywhere."""

    def __init__(self, code=41):
        self.code = code

    def query_many(self, lats, lons):
        return np.full(len(lats), float(self.code))


class BandedLandCover:
    """Class 21 south of `split_lat`, 41 north of it, no coverage west of `west_edge`."""

    def __init__(self, split_lat=42.5, west_edge=-180.0):
        self.split_lat = split_lat
        self.west_edge = west_edge

    def query_many(self, lats, lons):
        lats = np.asarray(lats, dtype=float)
        lons = np.asarray(lons, dtype=float)
        codes = np.where(lats < self.split_lat, 21.0, 41.0)
        codes[lons < self.west_edge] = np.nan
        return codes


def write_landcover_tif(path, bounds=(-77.0, 41.5, -75.0, 43.5), shape=(20, 20), crs="EPSG:4326", nodata=0):
    """Write a uint8 raster whose cell (row, col) holds row * shape[1] + col + 1."""
    height, width = shape
    data = (np.arange(height * width).reshape(height, width) % 250 + 1).astype(np.uint8)
    with rasterio.open(
        path, "w",
        driver="GTiff",
        height=height,
        width=width,
        count=1,
        dtype=np.uint8,
        crs=crs,
        transform=from_bounds(*bounds, width, height),
        nodata=nodata,
    ) as dst:
        dst.write(data, 1)
    return data
