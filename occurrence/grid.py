"""
Uniform square grid over a study region.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from shapely.geometry import box, shape, mapping
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from .config import GRID_CELL_SIZE_DEGREES
from .errors import MissingExternalResource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GridCell:
    cell_id: int
    geometry: BaseGeometry

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """(min_lon, min_lat, max_lon, max_lat)"""
        return self.geometry.bounds

    @property
    def centroid(self) -> tuple[float, float]:
        """(lon, lat) of the cell centroid."""
        c = self.geometry.centroid
        return (c.x, c.y)

    def to_feature(self, **properties) -> dict:
        return {
            "type": "Feature",
            "properties": {"cell_id": self.cell_id, **properties},
            "geometry": mapping(self.geometry),
        }


def load_region(path: str | Path) -> BaseGeometry:
    """
    Read a region boundary from GeoJSON.

    Accepts a bare geometry, a Feature or a FeatureCollection (all feature
    geometries are merged).
    """
    path = Path(path)
    if not path.exists():
        raise MissingExternalResource(f"Region boundary not found: {path}")
    with open(path) as f:
        data = json.load(f)

    if data.get("type") == "FeatureCollection":
        region = unary_union([shape(feat["geometry"]) for feat in data["features"]])
    elif data.get("type") == "Feature":
        region = shape(data["geometry"])
    else:
        region = shape(data)

    if region.is_empty:
        raise ValueError(f"Region boundary in {path} is empty")
    if not region.is_valid:
        region = region.buffer(0)
    return region


def build_grid(
    region: BaseGeometry | tuple[float, float, float, float],
    cell_size_degrees: float = GRID_CELL_SIZE_DEGREES,
) -> list[GridCell]:
    """
    Partition a region into square cells clipped to its boundary.

    Cells are numbered row by row from the south-west corner; cells that do
    not overlap the region are skipped.

    Args:
        region: Region polygon, or a bbox (min_lon, min_lat, max_lon, max_lat)
        cell_size_degrees: Cell edge length in degrees

    Returns:
        List of GridCell
    """
    if cell_size_degrees <= 0:
        raise ValueError("cell_size_degrees must be positive")
    if isinstance(region, tuple):
        region = box(*region)

    min_lon, min_lat, max_lon, max_lat = region.bounds
    n_cols = max(1, int(np.ceil(round((max_lon - min_lon) / cell_size_degrees, 9))))
    n_rows = max(1, int(np.ceil(round((max_lat - min_lat) / cell_size_degrees, 9))))

    cells = []
    for row in range(n_rows):
        lat0 = min_lat + row * cell_size_degrees
        for col in range(n_cols):
            lon0 = min_lon + col * cell_size_degrees
            square = box(lon0, lat0, lon0 + cell_size_degrees, lat0 + cell_size_degrees)
            clipped = square.intersection(region)
            if clipped.is_empty or clipped.area == 0:
                continue
            cells.append(GridCell(cell_id=len(cells), geometry=clipped))

    logger.info(f"Built grid: {len(cells)} cells of {cell_size_degrees} deg ({n_cols} x {n_rows})")
    return cells
