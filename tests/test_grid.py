import json

import pytest
from shapely.geometry import Polygon, box

from occurrence.errors import MissingExternalResource
from occurrence.grid import build_grid, load_region


def test_bbox_grid_is_row_major_from_south_west():
    cells = build_grid((0.0, 0.0, 1.0, 1.0), cell_size_degrees=0.5)
    assert [c.cell_id for c in cells] == [0, 1, 2, 3]
    assert cells[0].bounds == (0.0, 0.0, 0.5, 0.5)
    assert cells[1].bounds == (0.5, 0.0, 1.0, 0.5)
    assert cells[2].bounds == (0.0, 0.5, 0.5, 1.0)
    assert cells[0].centroid == pytest.approx((0.25, 0.25))


def test_default_cell_size_covers_region_without_overhang():
    cells = build_grid((-76.0, 42.0, -75.0, 43.0))
    assert len(cells) == 100
    assert sum(c.geometry.area for c in cells) == pytest.approx(1.0)


def test_cells_are_clipped_to_region():
    triangle = Polygon([(0, 0), (1, 0), (0, 1)])
    cells = build_grid(triangle, cell_size_degrees=0.5)
    # The north-east square only touches the triangle at a point
    assert len(cells) == 3
    assert sum(c.geometry.area for c in cells) == pytest.approx(triangle.area)
    assert all(c.geometry.within(triangle.buffer(1e-9)) for c in cells)


def test_partial_last_column():
    cells = build_grid((0.0, 0.0, 1.25, 0.5), cell_size_degrees=0.5)
    assert len(cells) == 3
    assert cells[-1].geometry.area == pytest.approx(0.125)


def test_invalid_cell_size():
    with pytest.raises(ValueError):
        build_grid((0, 0, 1, 1), cell_size_degrees=0)


def test_cell_to_feature():
    (cell,) = build_grid((0.0, 0.0, 1.0, 1.0), cell_size_degrees=1.0)
    feature = cell.to_feature(mean=0.5)
    assert feature["properties"] == {"cell_id": 0, "mean": 0.5}
    assert feature["geometry"]["type"] == "Polygon"


def test_load_region_feature_collection(tmp_path):
    path = tmp_path / "region.geojson"
    path.write_text(json.dumps({
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "properties": {}, "geometry": box(0, 0, 1, 1).__geo_interface__},
            {"type": "Feature", "properties": {}, "geometry": box(1, 0, 2, 1).__geo_interface__},
        ],
    }))
    region = load_region(path)
    assert region.bounds == (0.0, 0.0, 2.0, 1.0)
    assert region.area == pytest.approx(2.0)


def test_load_region_bare_geometry(tmp_path):
    path = tmp_path / "region.geojson"
    path.write_text(json.dumps(box(-76, 42, -75, 43).__geo_interface__))
    assert load_region(path).area == pytest.approx(1.0)


def test_load_region_missing(tmp_path):
    with pytest.raises(MissingExternalResource):
        load_region(tmp_path / "nope.geojson")
