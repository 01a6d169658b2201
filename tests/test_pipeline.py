import datetime as dt
import json

import pandas as pd
import pytest
from shapely.geometry import box

from occurrence.checklists import Detection
from occurrence.cli import main
from occurrence.config import PipelineConfig
from occurrence.errors import InsufficientData
from occurrence.matching import MatchStatus
from occurrence.pipeline import run_pipeline
from occurrence.weather import DailyWeatherStore, StationIndex

from factories import DAY, BandedLandCover, make_checklist, make_station, make_weather, write_landcover_tif

REGION = (-76.5, 42.0, -75.5, 43.0)
STATIONS = [
    ("A", 42.25, -76.25),
    ("B", 42.25, -75.75),
    ("C", 42.75, -76.25),
    ("D", 42.75, -75.75),
]


def build_inputs():
    """Four stations, two days, and 4/8/12/16 checklists clustered around each station."""
    stations = [make_station(sid, lat, lon) for sid, lat, lon in STATIONS]
    days = [DAY, DAY + dt.timedelta(days=1)]

    weather = []
    for i, (sid, _, _) in enumerate(STATIONS):
        for j, day in enumerate(days):
            tmax = 2.0 + 3 * i + j
            weather.append(make_weather(
                sid, date=day, tmax=tmax, tmin=tmax - 6 - i,
                prcp=float(i + j), snow=float(5 * i + 2 * j), snwd=float(20 * i + j),
            ))

    checklists, detections = [], []
    for i, (sid, lat, lon) in enumerate(STATIONS):
        for j, day in enumerate(days):
            for k in range(4 * (i + 1)):
                cid = f"{sid}{j}-{k}"
                checklists.append(make_checklist(
                    cid, date=day, latitude=lat + 0.01 * (k % 5), longitude=lon - 0.01 * (k % 3),
                ))
                if k % 3 == 0:
                    detections.append(Detection(cid, k + 1))

    return checklists, detections, StationIndex(stations), DailyWeatherStore(weather)


def test_run_pipeline_end_to_end(tmp_path):
    checklists, detections, stations, weather = build_inputs()
    config = PipelineConfig(points_per_cell=25, grid_cell_size_degrees=0.5, random_seed=7)

    result = run_pipeline(
        checklists, detections, stations, weather,
        landcover=BandedLandCover(),
        region=REGION,
        config=config,
        output_dir=tmp_path,
    )

    assert result.report.n_kept == 80
    assert all(m.status is MatchStatus.MATCHED for m in result.matched)
    assert sum(g.ratio for g in result.groups) == pytest.approx(1.0)
    assert len(result.groups) == 8
    assert len(result.grid) == 4
    assert [p.n_points for p in result.predictions] == [25] * 4

    for name in ("matched", "groups", "report", "model", "predictions", "predictions_csv"):
        assert result.paths[name].exists()

    report = json.loads(result.paths["report"].read_text())
    assert report["selected"] == result.comparison.best().name
    assert report["config"]["points_per_cell"] == 25

    matched = pd.read_csv(result.paths["matched"])
    assert len(matched) == 80
    assert set(matched["station_id"]) == {"A", "B", "C", "D"}


def test_run_pipeline_is_reproducible():
    config = PipelineConfig(points_per_cell=10, grid_cell_size_degrees=0.5, random_seed=3)
    runs = [
        run_pipeline(*build_inputs(), landcover=BandedLandCover(), region=box(*REGION), config=config)
        for _ in range(2)
    ]
    first, second = ([(p.sum, p.mean) for p in r.predictions] for r in runs)
    assert first == second


def test_pipeline_without_weather_cannot_model():
    checklists, detections, stations, _ = build_inputs()
    with pytest.raises(InsufficientData):
        run_pipeline(
            checklists, detections, stations, DailyWeatherStore(),
            landcover=BandedLandCover(), region=REGION,
        )


def test_config_from_json_accepts_camel_case(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"radiusKm": 25, "pointsPerCell": 10, "random_seed": 1}))
    config = PipelineConfig.from_json(path)
    assert config.radius_km == 25
    assert config.points_per_cell == 10
    assert config.random_seed == 1
    assert config.temp_bin_width == 1.0


def test_config_rejects_unknown_and_invalid_values():
    with pytest.raises(ValueError):
        PipelineConfig.from_dict({"radius": 10})
    with pytest.raises(ValueError):
        PipelineConfig(radius_km=0)
    with pytest.raises(ValueError):
        PipelineConfig(elastic_net_alpha=1.5)
    with pytest.raises(ValueError):
        PipelineConfig(target="probability")


def test_config_override_ignores_none():
    config = PipelineConfig().override(radius_km=10.0, points_per_cell=None)
    assert config.radius_km == 10.0
    assert config.points_per_cell == 1000


def write_files(tmp_path):
    checklists, detections, stations, weather = build_inputs()
    paths = {name: tmp_path / name for name in (
        "checklists.csv", "detections.csv", "stations.csv", "weather.csv",
        "landcover.tif", "region.geojson",
    )}

    pd.DataFrame([{
        "checklist_id": c.checklist_id,
        "observer_id": c.observer_id,
        "date": c.date.isoformat(),
        "start_time": c.start_time,
        "duration_minutes": c.duration_minutes,
        "distance_km": c.distance_km,
        "protocol": c.protocol.value,
        "n_observers": c.n_observers,
        "latitude": c.latitude,
        "longitude": c.longitude,
        "complete": 1,
    } for c in checklists]).to_csv(paths["checklists.csv"], index=False)

    pd.DataFrame(
        [{"checklist_id": d.checklist_id, "count": d.count} for d in detections]
    ).to_csv(paths["detections.csv"], index=False)

    pd.DataFrame([
        {"id": s.station_id, "latitude": s.latitude, "longitude": s.longitude,
         "elevation": s.elevation, "region": s.region}
        for s in stations
    ]).to_csv(paths["stations.csv"], index=False)

    pd.DataFrame([
        {"station": r.station_id, "date": r.date.isoformat(), "tmax": r.tmax, "tmin": r.tmin,
         "prcp": r.prcp, "snow": r.snow, "snwd": r.snwd}
        for day in weather.dates() for r in weather.records_on(day)
    ]).to_csv(paths["weather.csv"], index=False)

    write_landcover_tif(paths["landcover.tif"])
    paths["region.geojson"].write_text(json.dumps(box(*REGION).__geo_interface__))
    return paths


def test_cli_runs_from_files(tmp_path, capsys):
    paths = write_files(tmp_path)
    out = tmp_path / "out"
    code = main([
        str(paths["checklists.csv"]), str(paths["detections.csv"]),
        "--stations", str(paths["stations.csv"]),
        "--weather", str(paths["weather.csv"]),
        "--landcover", str(paths["landcover.tif"]),
        "--region", str(paths["region.geojson"]),
        "--output-dir", str(out),
        "--cell-size", "0.5",
        "--points-per-cell", "20",
        "--seed", "11",
    ])
    assert code == 0
    assert "Selected model" in capsys.readouterr().out
    predictions = pd.read_csv(out / "grid_predictions.csv")
    assert len(predictions) == 4
    assert (out / "model_report.json").exists()


def test_cli_reports_missing_inputs(tmp_path):
    paths = write_files(tmp_path)
    code = main([
        str(paths["checklists.csv"]), str(paths["detections.csv"]),
        "--stations", str(paths["stations.csv"]),
        "--weather", str(paths["weather.csv"]),
        "--landcover", str(tmp_path / "missing.tif"),
        "--region", str(paths["region.geojson"]),
        "--output-dir", str(tmp_path / "out"),
    ])
    assert code == 1
