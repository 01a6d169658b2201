"""
Land-cover point queries against a categorical raster (e.g. NLCD).
"""

import logging
from pathlib import Path
from typing import Optional

import numpy as np
import rasterio
from rasterio.crs import CRS
from rasterio.errors import RasterioIOError

from .errors import MissingExternalResource

logger = logging.getLogger(__name__)


class LandCoverRaster:
    """
    A single-band categorical raster held in memory.

    The raster must be in EPSG:4326 (lon/lat degrees), the pipeline's only
    working CRS.
    """

    def __init__(self, path: str | Path, band: int = 1):
        """
        Load the raster band.

        Args:
            path: Path to a GeoTIFF (or any GDAL-readable raster)
            band: Band index to read

        Raises:
            MissingExternalResource: if the file does not exist or cannot be read
        """
        self.path = Path(path)
        if not self.path.exists():
            raise MissingExternalResource(f"Land-cover raster not found: {self.path}")

        try:
            with rasterio.open(self.path) as src:
                self.data = src.read(band)
                self.transform = src.transform
                self.nodata = src.nodata
                crs = src.crs
        except RasterioIOError as e:
            raise MissingExternalResource(f"Cannot read land-cover raster {self.path}: {e}") from e

        if crs is not None and crs != CRS.from_epsg(4326):
            raise ValueError(f"Land-cover raster must be EPSG:4326, got {crs}")

        logger.info(f"Loaded land-cover raster {self.path.name}: {self.data.shape[0]} x {self.data.shape[1]}")

    @property
    def shape(self) -> tuple[int, int]:
        return self.data.shape

    def query(self, lat: float, lon: float) -> Optional[int]:
        """Class code at a coordinate, or None outside coverage / on nodata."""
        value = self.query_many(np.array([lat]), np.array([lon]))[0]
        return None if np.isnan(value) else int(value)

    def query_many(self, lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
        """
        Class codes for many coordinates.

        Args:
            lats: Latitudes
            lons: Longitudes

        Returns:
            Float array of class codes, NaN where there is no coverage
        """
        lats = np.asarray(lats, dtype=float)
        lons = np.asarray(lons, dtype=float)
        out = np.full(len(lats), np.nan)
        if len(lats) == 0:
            return out

        rows, cols = rasterio.transform.rowcol(self.transform, lons, lats)
        rows = np.asarray(rows, dtype=int)
        cols = np.asarray(cols, dtype=int)

        height, width = self.data.shape
        inside = (rows >= 0) & (rows < height) & (cols >= 0) & (cols < width)
        values = self.data[rows[inside], cols[inside]].astype(float)
        if self.nodata is not None:
            values[values == self.nodata] = np.nan
        out[inside] = values
        return out
