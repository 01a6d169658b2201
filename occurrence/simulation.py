"""
Monte-Carlo simulation of covariates over a grid.

Every grid cell receives `points_per_cell` random locations. Each location
gets synthetic weather drawn from the historical matched observations and a
land-cover class from the raster, and is scored with the fitted model. The
per-cell sum and mean of the scores form the predicted occurrence surface.
"""

import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np
import pandas as pd
import shapely
from scipy.stats import truncnorm
from tqdm import tqdm

from .config import POINTS_PER_CELL, RANDOM_SEED
from .grid import GridCell
from .matching import MatchedObservation
from .model import FittedModel, PREDICTORS

logger = logging.getLogger(__name__)

# Draws are restricted to this empirical percentile interval
INTERVAL_PERCENTILES = (2.5, 97.5)

# Independently sampled variables, in draw order
SAMPLED_VARIABLES = ("tmin", "prcp", "snow", "snwd")

# Rejection-sampling rounds before giving up on a sliver cell
MAX_LOCATION_ROUNDS = 100


@dataclass(frozen=True)
class VariableStats:
    mean: float
    std: float
    low: float
    high: float

    @classmethod
    def from_values(cls, values: np.ndarray) -> "VariableStats":
        values = np.asarray(values, dtype=float)
        if len(values) == 0:
            raise ValueError("Cannot fit a distribution to no values")
        low, high = np.percentile(values, INTERVAL_PERCENTILES)
        return cls(float(values.mean()), float(values.std()), float(low), float(high))

    def sample(self, rng: np.random.Generator, n: int) -> np.ndarray:
        """Normal(mean, std) draws truncated to [low, high]."""
        if self.std == 0 or self.high <= self.low:
            return np.full(n, min(max(self.mean, self.low), self.high))
        a = (self.low - self.mean) / self.std
        b = (self.high - self.mean) / self.std
        return truncnorm.rvs(a, b, loc=self.mean, scale=self.std, size=n, random_state=rng)


class CovariateSampler:
    """
    Independent per-variable weather distributions fitted to matched data.

    Maximum temperature is never drawn directly: it is the minimum-temperature
    draw plus a non-negative diurnal range, so tmax >= tmin always holds.
    Temperature and snow are not conditioned on latitude.
    """

    def __init__(self, variables: dict[str, VariableStats], diurnal_range: VariableStats):
        self.variables = variables
        self.diurnal_range = diurnal_range

    @classmethod
    def fit(cls, matched: Sequence[MatchedObservation]) -> "CovariateSampler":
        """Fit distributions to the matched observations with complete weather."""
        rows = [
            m for m in matched
            if m.matched and all(getattr(m, v) is not None for v in ("tmax", *SAMPLED_VARIABLES))
        ]
        if not rows:
            raise ValueError("No matched observations with complete weather to fit")

        variables = {
            name: VariableStats.from_values(np.array([getattr(m, name) for m in rows]))
            for name in SAMPLED_VARIABLES
        }
        ranges = VariableStats.from_values(np.array([m.tmax - m.tmin for m in rows]))
        low = max(ranges.low, 0.0)
        diurnal = VariableStats(ranges.mean, ranges.std, low, max(ranges.high, low))

        logger.info(f"Fitted covariate sampler on {len(rows)} observations")
        return cls(variables, diurnal)

    def sample(self, rng: np.random.Generator, n: int) -> dict[str, np.ndarray]:
        """Draw `n` covariate vectors (tmax, tmin, prcp, snow, snwd)."""
        draws = {}
        draws["tmin"] = self.variables["tmin"].sample(rng, n)
        draws["tmax"] = draws["tmin"] + self.diurnal_range.sample(rng, n)
        for name in SAMPLED_VARIABLES[1:]:
            draws[name] = self.variables[name].sample(rng, n)
        return draws


@dataclass
class SimulatedPoints:
    """The points drawn for one cell; only their aggregate is kept."""

    longitude: np.ndarray
    latitude: np.ndarray
    covariates: dict[str, np.ndarray]
    landcover: np.ndarray

    @property
    def valid(self) -> np.ndarray:
        """Points with land-cover coverage."""
        return ~np.isnan(self.landcover)

    def features(self) -> np.ndarray:
        """Predictor matrix of the valid points, in PREDICTORS order."""
        columns = {
            **self.covariates,
            "landcover": self.landcover,
            "longitude": self.longitude,
            "latitude": self.latitude,
        }
        return np.column_stack([columns[name] for name in PREDICTORS])[self.valid]


@dataclass(frozen=True)
class GridPrediction:
    cell_id: int
    sum: float
    mean: float
    n_points: int
    centroid: tuple[float, float]


def uniform_points_in(cell: GridCell, rng: np.random.Generator, n: int) -> tuple[np.ndarray, np.ndarray]:
    """
    Draw `n` points uniformly inside a cell by rejection from its bounds.

    Returns:
        Tuple of (longitudes, latitudes)
    """
    min_lon, min_lat, max_lon, max_lat = cell.bounds
    rectangular = math.isclose(cell.geometry.area, (max_lon - min_lon) * (max_lat - min_lat))

    lons, lats = [], []
    n_found = 0
    for _ in range(MAX_LOCATION_ROUNDS):
        batch = n - n_found if rectangular else 2 * (n - n_found)
        x = rng.uniform(min_lon, max_lon, batch)
        y = rng.uniform(min_lat, max_lat, batch)
        if not rectangular:
            inside = shapely.contains_xy(cell.geometry, x, y)
            x, y = x[inside], y[inside]
        x, y = x[: n - n_found], y[: n - n_found]
        lons.append(x)
        lats.append(y)
        n_found += len(x)
        if n_found == n:
            break
    else:
        logger.warning(f"Cell {cell.cell_id}: only {n_found} of {n} points fell inside the cell")

    return np.concatenate(lons), np.concatenate(lats)


class GridSimulator:
    """
    Scores simulated covariates over a grid with a fitted model.

    All random draws come from one generator seeded once per run and consumed
    cell by cell, point by point, so a seed fully determines the output.
    """

    def __init__(self, sampler: CovariateSampler, landcover):
        """
        Args:
            sampler: Fitted covariate distributions
            landcover: Land-cover source with `query_many(lats, lons)`
        """
        self.sampler = sampler
        self.landcover = landcover

    def draw_points(self, cell: GridCell, rng: np.random.Generator, n: int) -> SimulatedPoints:
        """Draw locations, covariates and land-cover for one cell."""
        lons, lats = uniform_points_in(cell, rng, n)
        covariates = self.sampler.sample(rng, len(lons))
        landcover = np.asarray(self.landcover.query_many(lats, lons), dtype=float)
        return SimulatedPoints(lons, lats, covariates, landcover)

    def simulate(
        self,
        grid: Sequence[GridCell],
        model: FittedModel,
        points_per_cell: int = POINTS_PER_CELL,
        seed: int = RANDOM_SEED,
    ) -> list[GridPrediction]:
        """
        Predict the occurrence surface.

        Args:
            grid: Cells in traversal order
            model: Fitted model used to score each point
            points_per_cell: Monte-Carlo sample size per cell
            seed: Random seed

        Returns:
            One GridPrediction per cell; `mean` is NaN for cells where no
            point had land-cover coverage
        """
        rng = np.random.default_rng(seed)
        predictions = []
        n_uncovered = 0

        for cell in tqdm(grid, desc="Simulating"):
            points = self.draw_points(cell, rng, points_per_cell)
            features = points.features()
            n_uncovered += len(points.landcover) - len(features)

            if len(features):
                scores = model.predict(features)
                total, mean = float(scores.sum()), float(scores.mean())
            else:
                total, mean = 0.0, math.nan

            predictions.append(GridPrediction(
                cell_id=cell.cell_id,
                sum=total,
                mean=mean,
                n_points=len(features),
                centroid=cell.centroid,
            ))

        if n_uncovered:
            logger.warning(f"{n_uncovered} simulated points had no land-cover coverage and were skipped")

        means = np.array([p.mean for p in predictions])
        if len(means) and not np.isnan(means).all():
            logger.info(
                f"Simulated {len(predictions)} cells; mean score range "
                f"{np.nanmin(means):.4g} - {np.nanmax(means):.4g}"
            )
        return predictions


def predictions_to_geojson(grid: Sequence[GridCell], predictions: Sequence[GridPrediction]) -> dict:
    """Cell polygons with their predicted sum and mean."""
    by_id = {p.cell_id: p for p in predictions}
    features = []
    for cell in grid:
        p = by_id.get(cell.cell_id)
        if p is None:
            continue
        features.append(cell.to_feature(
            sum=p.sum,
            mean=None if math.isnan(p.mean) else p.mean,
            n_points=p.n_points,
        ))
    return {
        "type": "FeatureCollection",
        "name": "grid_predictions",
        "crs": {
            "type": "name",
            "properties": {"name": "urn:ogc:def:crs:OGC:1.3:CRS84"}
        },
        "features": features,
    }


def predictions_to_frame(predictions: Sequence[GridPrediction]) -> pd.DataFrame:
    return pd.DataFrame([
        {
            "cell_id": p.cell_id,
            "sum": p.sum,
            "mean": p.mean,
            "n_points": p.n_points,
            "lon": p.centroid[0],
            "lat": p.centroid[1],
        }
        for p in predictions
    ])


def save_predictions(
    grid: Sequence[GridCell],
    predictions: Sequence[GridPrediction],
    output_dir: str | Path,
) -> dict[str, Path]:
    """Write grid_predictions.geojson and grid_predictions.csv."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    paths = {}
    geojson_path = output_dir / "grid_predictions.geojson"
    with open(geojson_path, "w") as f:
        json.dump(predictions_to_geojson(grid, predictions), f)
    paths["geojson"] = geojson_path

    csv_path = output_dir / "grid_predictions.csv"
    predictions_to_frame(predictions).to_csv(csv_path, index=False)
    paths["csv"] = csv_path

    logger.info(f"Saved {len(predictions)} cell predictions to {output_dir}")
    return paths
