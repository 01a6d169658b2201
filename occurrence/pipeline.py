"""
End-to-end occurrence pipeline.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional, Sequence

from shapely.geometry.base import BaseGeometry

from .binning import BinnedGroup, OccurrenceRatioBinner, groups_to_frame
from .checklists import (
    Checklist,
    ReconcileReport,
    ZeroFillEngine,
    load_checklists,
    load_detections,
)
from .config import PipelineConfig
from .grid import GridCell, build_grid, load_region
from .landcover import LandCoverRaster
from .matching import MatchedObservation, ObservationMatcher, matched_to_frame
from .model import ModelComparison, ModelSelector, feature_matrix
from .simulation import CovariateSampler, GridPrediction, GridSimulator, save_predictions
from .weather import DailyWeatherStore, StationIndex

logger = logging.getLogger(__name__)

N_STEPS = 6


@dataclass
class PipelineResult:
    """Everything a run produces."""

    config: PipelineConfig
    report: ReconcileReport
    matched: list[MatchedObservation]
    groups: list[BinnedGroup]
    comparison: ModelComparison
    grid: list[GridCell]
    predictions: list[GridPrediction]
    paths: dict[str, Path] = field(default_factory=dict)

    def save(self, output_dir: str | Path) -> dict[str, Path]:
        """Write all output artifacts into `output_dir`."""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        paths = {}

        paths["matched"] = output_dir / "matched_observations.csv"
        matched_to_frame(self.matched).to_csv(paths["matched"], index=False)
        logger.info(f"Saved matched observations: {paths['matched']}")

        paths["groups"] = output_dir / "binned_groups.csv"
        groups_to_frame(self.groups).to_csv(paths["groups"], index=False)
        logger.info(f"Saved bin groups: {paths['groups']}")

        paths["report"] = output_dir / "model_report.json"
        with open(paths["report"], "w") as f:
            json.dump({"config": self.config.to_dict(), **self.comparison.to_dict()}, f, indent=2)
        logger.info(f"Saved model report: {paths['report']}")

        paths["model"] = output_dir / "model.joblib"
        self.comparison.best().save(paths["model"])

        predictions = save_predictions(self.grid, self.predictions, output_dir)
        paths["predictions"] = predictions["geojson"]
        paths["predictions_csv"] = predictions["csv"]

        self.paths = paths
        return paths


def run_pipeline(
    checklists: Sequence[Checklist],
    detections: Sequence,
    stations: StationIndex,
    weather: DailyWeatherStore,
    landcover,
    region: BaseGeometry | tuple[float, float, float, float],
    config: Optional[PipelineConfig] = None,
    output_dir: Optional[Path] = None,
) -> PipelineResult:
    """
    Run zero-filling, matching, binning, model fitting and grid simulation.

    Args:
        checklists: Survey checklists
        detections: Target-species detections (Detection objects or raw rows)
        stations: Weather station index
        weather: Daily weather store
        landcover: Land-cover source with `query_many(lats, lons)`
        region: Region polygon or bbox (min_lon, min_lat, max_lon, max_lat)
        config: Run options (defaults when None)
        output_dir: If provided, save all artifacts to this directory

    Returns:
        PipelineResult

    Raises:
        InsufficientData, DegenerateTarget: if modeling is impossible
    """
    config = config or PipelineConfig()

    logger.info("=" * 60)
    logger.info("Occurrence pipeline")
    logger.info("=" * 60)

    logger.info(f"\n[1/{N_STEPS}] Zero-filling checklists...")
    engine = ZeroFillEngine()
    records = engine.reconcile(checklists, detections)

    logger.info(f"\n[2/{N_STEPS}] Matching weather stations...")
    matcher = ObservationMatcher(stations, weather)
    matched = matcher.match_all(
        records, radius_km=config.radius_km, landcover=landcover, n_jobs=config.n_jobs
    )

    logger.info(f"\n[3/{N_STEPS}] Binning occurrence ratios...")
    binner = OccurrenceRatioBinner(config.temp_bin_width, config.snow_bin_width)
    groups = binner.bin(matched)
    usable, target = binner.assign_targets(matched, groups, target=config.target)

    logger.info(f"\n[4/{N_STEPS}] Fitting models...")
    selector = ModelSelector(
        cv_folds=config.cv_folds,
        elastic_net_alpha=config.elastic_net_alpha,
        removal_threshold=config.removal_threshold,
        significance_level=config.significance_level,
        random_state=config.random_seed,
    )
    comparison = selector.fit(feature_matrix(usable), target)

    logger.info(f"\n[5/{N_STEPS}] Building grid...")
    grid = build_grid(region, config.grid_cell_size_degrees)

    logger.info(f"\n[6/{N_STEPS}] Simulating covariates over the grid...")
    simulator = GridSimulator(CovariateSampler.fit(usable), landcover)
    predictions = simulator.simulate(
        grid, comparison.best(), points_per_cell=config.points_per_cell, seed=config.random_seed
    )

    result = PipelineResult(
        config=config,
        report=engine.report,
        matched=matched,
        groups=groups,
        comparison=comparison,
        grid=grid,
        predictions=predictions,
    )
    if output_dir:
        result.save(output_dir)

    logger.info("\n" + "=" * 60)
    logger.info("COMPLETE")
    logger.info("=" * 60)
    return result


def run_from_files(
    checklists_path: Path,
    detections_path: Path,
    stations_path: Path,
    weather_path: Path,
    landcover_path: Path,
    region_path: Path,
    output_dir: Path,
    config: Optional[PipelineConfig] = None,
    stations_format: Literal["csv", "ghcn"] = "csv",
    weather_format: Literal["csv", "ghcn"] = "csv",
) -> PipelineResult:
    """Load every input from disk, run the pipeline and save the outputs."""
    if stations_format == "ghcn":
        stations = StationIndex.from_ghcn_inventory(stations_path)
    else:
        stations = StationIndex.from_csv(stations_path)

    if weather_format == "ghcn":
        weather = DailyWeatherStore.from_ghcn_daily(weather_path)
    else:
        weather = DailyWeatherStore.from_csv(weather_path)

    return run_pipeline(
        checklists=load_checklists(checklists_path),
        detections=load_detections(detections_path),
        stations=stations,
        weather=weather,
        landcover=LandCoverRaster(landcover_path),
        region=load_region(region_path),
        config=config,
        output_dir=output_dir,
    )
