import datetime as dt

import pytest

from occurrence.checklists import (
    Checklist,
    Detection,
    Protocol,
    ZeroFillEngine,
    load_checklists,
    load_detections,
    parse_count,
    parse_decimal_time,
)
from occurrence.errors import MalformedRecord, MissingExternalResource

from factories import make_checklist


def reconcile(checklists, detections):
    engine = ZeroFillEngine()
    records = engine.reconcile(checklists, detections)
    return {r.checklist_id: r for r in records}, engine.report


def test_parse_count():
    assert parse_count("3") == 3
    assert parse_count(0) == 0
    assert parse_count("12.0") == 12
    for bad in ["X", "x", "", None, "-1", "2.5", "many"]:
        with pytest.raises(MalformedRecord):
            parse_count(bad)


def test_parse_decimal_time():
    assert parse_decimal_time("07:30") == 7.5
    assert parse_decimal_time("00:00:00") == 0.0
    assert parse_decimal_time("23:59:59") < 24.0
    assert parse_decimal_time(None) is None
    assert parse_decimal_time("") is None
    for bad in ["24:00", "7h30", "12:75"]:
        with pytest.raises(MalformedRecord):
            parse_decimal_time(bad)


def test_protocol_parse():
    assert Protocol.parse("eBird - Stationary Count") is Protocol.STATIONARY
    assert Protocol.parse("eBird - Traveling Count") is Protocol.TRAVELING
    assert Protocol.parse("Traveling") is Protocol.TRAVELING
    assert Protocol.parse("Incidental") is Protocol.OTHER
    assert Protocol.parse(None) is Protocol.OTHER


def test_complete_checklist_without_detection_is_absence():
    records, _ = reconcile([make_checklist("S1"), make_checklist("S2")], [Detection("S1", 4)])
    assert records["S1"].present is True
    assert records["S1"].count == 4
    assert records["S2"].present is False
    assert records["S2"].count == 0


def test_incomplete_checklists_are_excluded():
    records, report = reconcile(
        [make_checklist("S1", complete=False), make_checklist("S2")],
        [Detection("S1", 1)],
    )
    assert list(records) == ["S2"]
    assert report.n_incomplete == 1
    assert report.n_orphan_detections == 1


def test_uncountable_detection_drops_checklist():
    records, report = reconcile(
        [make_checklist("S1"), make_checklist("S2")],
        [{"checklist_id": "S1", "count": "X"}, {"checklist_id": "S2", "count": "2"}],
    )
    # S1 is neither a presence with a count nor a valid absence
    assert list(records) == ["S2"]
    assert records["S2"].count == 2
    assert report.n_malformed == 1
    assert report.malformed_ids == ["S1"]


def test_duplicate_detections_keep_first():
    records, report = reconcile([make_checklist("S1")], [Detection("S1", 3), Detection("S1", 9)])
    assert records["S1"].count == 3
    assert report.n_duplicate_detections == 1


def test_output_follows_checklist_order():
    checklists = [make_checklist(f"S{i}") for i in (3, 1, 2)]
    engine = ZeroFillEngine()
    records = engine.reconcile(checklists, [])
    assert [r.checklist_id for r in records] == ["S3", "S1", "S2"]


def test_stationary_distance_forced_to_zero():
    records, _ = reconcile(
        [make_checklist("S1", protocol=Protocol.STATIONARY, distance_km=7.5)], []
    )
    assert records["S1"].distance_km == 0.0
    assert records["S1"].speed_kmh == 0.0


def test_derived_covariates():
    records, _ = reconcile(
        [make_checklist("S1", duration_minutes=90.0, distance_km=3.0, start_time="06:15")], []
    )
    record = records["S1"]
    assert record.effort_hours == 1.5
    assert record.speed_kmh == pytest.approx(2.0)
    assert record.decimal_time == 6.25


def test_zero_duration_is_excluded_not_infinite():
    records, report = reconcile(
        [make_checklist("S1", duration_minutes=0.0, distance_km=1.5)], [Detection("S1", 1)]
    )
    assert records == {}
    assert report.n_failed_effort == 1


@pytest.mark.parametrize("overrides", [
    {"duration_minutes": 361.0},
    {"distance_km": 10.5},
    {"duration_minutes": 5.0, "distance_km": 10.0},  # 120 km/h
    {"n_observers": 11},
    {"n_observers": None},
    {"protocol": Protocol.OTHER},
    {"duration_minutes": None},
])
def test_effort_filter_rejects(overrides):
    records, report = reconcile([make_checklist("S1", **overrides)], [])
    assert records == {}
    assert report.n_failed_effort == 1


def test_effort_filter_boundaries_are_inclusive():
    records, _ = reconcile(
        [make_checklist("S1", duration_minutes=360.0, distance_km=10.0, n_observers=10)], []
    )
    assert "S1" in records


def test_checklist_from_row_coerces_types():
    checklist = Checklist.from_row({
        "checklist_id": "S9",
        "date": "2021-01-15",
        "latitude": "42.1",
        "longitude": "-76.3",
        "protocol": "eBird - Traveling Count",
        "complete": "1",
        "duration_minutes": "45",
        "distance_km": "1.2",
        "n_observers": "2",
        "start_time": "08:05:00",
    })
    assert checklist.date == dt.date(2021, 1, 15)
    assert checklist.protocol is Protocol.TRAVELING
    assert checklist.complete is True
    assert checklist.n_observers == 2
    assert checklist.duration_minutes == 45.0


@pytest.mark.parametrize("row", [
    {"checklist_id": "S1", "date": "15/01/2021", "latitude": "42", "longitude": "-76"},
    {"checklist_id": "S1", "date": "2021-01-15", "latitude": "", "longitude": "-76"},
    {"checklist_id": "S1", "date": "2021-01-15", "latitude": "42", "longitude": "-76",
     "start_time": "noon"},
    {"checklist_id": "S1", "date": "2021-01-15", "latitude": "42", "longitude": "-76",
     "duration_minutes": "an hour"},
    {"checklist_id": "S1", "date": "2021-01-15", "latitude": "42", "longitude": "-76",
     "n_observers": "2.5"},
    {"date": "2021-01-15", "latitude": "42", "longitude": "-76"},
])
def test_checklist_from_row_rejects_malformed(row):
    with pytest.raises(MalformedRecord):
        Checklist.from_row(row)


def test_load_ebird_tables(tmp_path):
    sampling = tmp_path / "sampling.txt"
    sampling.write_text(
        "SAMPLING EVENT IDENTIFIER\tOBSERVER ID\tOBSERVATION DATE\tTIME OBSERVATIONS STARTED\t"
        "DURATION MINUTES\tEFFORT DISTANCE KM\tPROTOCOL TYPE\tNUMBER OBSERVERS\tLATITUDE\t"
        "LONGITUDE\tALL SPECIES REPORTED\n"
        "S1\tobs1\t2021-01-15\t07:00:00\t60\t2.0\tTraveling\t1\t42.0\t-76.0\t1\n"
        "S2\tobs2\t2021-01-15\t08:00:00\t30\t\tStationary\t2\t42.1\t-76.1\t1\n"
        "S3\tobs3\tnot-a-date\t08:00:00\t30\t\tStationary\t2\t42.1\t-76.1\t1\n"
    )
    observations = tmp_path / "observations.txt"
    observations.write_text(
        "SAMPLING EVENT IDENTIFIER\tOBSERVATION COUNT\n"
        "S1\t2\n"
    )

    checklists = load_checklists(sampling)
    assert [c.checklist_id for c in checklists] == ["S1", "S2"]
    detections = load_detections(observations)
    assert detections == [{"checklist_id": "S1", "count": "2"}]

    records, _ = reconcile(checklists, detections)
    assert records["S1"].present and records["S1"].count == 2
    assert not records["S2"].present


def test_load_missing_file(tmp_path):
    with pytest.raises(MissingExternalResource):
        load_checklists(tmp_path / "missing.csv")
