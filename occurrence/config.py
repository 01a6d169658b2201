"""
Pipeline configuration.
"""

import json
from dataclasses import dataclass, asdict, fields, replace
from pathlib import Path
from typing import Literal

# Defaults for the recognised options
RADIUS_KM = 50.0
TEMP_BIN_WIDTH = 1.0
SNOW_BIN_WIDTH = 5.0
GRID_CELL_SIZE_DEGREES = 0.1
POINTS_PER_CELL = 1000
ELASTIC_NET_ALPHA = 0.5
RANDOM_SEED = 42
CV_FOLDS = 5

# A penalized coefficient below this share of the largest one counts as zero
REMOVAL_THRESHOLD = 0.01
SIGNIFICANCE_LEVEL = 0.05

TargetType = Literal["ratio", "detection_rate"]

# camelCase names accepted in config files
_ALIASES = {
    "radiusKm": "radius_km",
    "tempBinWidth": "temp_bin_width",
    "snowBinWidth": "snow_bin_width",
    "gridCellSizeDegrees": "grid_cell_size_degrees",
    "pointsPerCell": "points_per_cell",
    "elasticNetAlpha": "elastic_net_alpha",
    "randomSeed": "random_seed",
    "cvFolds": "cv_folds",
    "removalThreshold": "removal_threshold",
    "significanceLevel": "significance_level",
    "nJobs": "n_jobs",
}


@dataclass(frozen=True)
class PipelineConfig:
    """Options for a single pipeline run."""

    radius_km: float = RADIUS_KM
    temp_bin_width: float = TEMP_BIN_WIDTH
    snow_bin_width: float = SNOW_BIN_WIDTH
    grid_cell_size_degrees: float = GRID_CELL_SIZE_DEGREES
    points_per_cell: int = POINTS_PER_CELL
    elastic_net_alpha: float = ELASTIC_NET_ALPHA
    random_seed: int = RANDOM_SEED
    cv_folds: int = CV_FOLDS
    removal_threshold: float = REMOVAL_THRESHOLD
    significance_level: float = SIGNIFICANCE_LEVEL
    target: TargetType = "ratio"
    n_jobs: int = 1

    def __post_init__(self):
        if self.radius_km <= 0:
            raise ValueError(f"radius_km must be positive, got {self.radius_km}")
        if self.temp_bin_width <= 0 or self.snow_bin_width <= 0:
            raise ValueError("Bin widths must be positive")
        if self.grid_cell_size_degrees <= 0:
            raise ValueError("grid_cell_size_degrees must be positive")
        if self.points_per_cell < 1:
            raise ValueError("points_per_cell must be at least 1")
        if not 0.0 <= self.elastic_net_alpha <= 1.0:
            raise ValueError("elastic_net_alpha must be in [0, 1]")
        if self.cv_folds < 2:
            raise ValueError("cv_folds must be at least 2")
        if self.target not in ("ratio", "detection_rate"):
            raise ValueError(f"Unknown target: {self.target}")

    @classmethod
    def from_dict(cls, data: dict) -> "PipelineConfig":
        """Build a config from a mapping, accepting camelCase keys."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = _ALIASES.get(key, key)
            if name not in known:
                raise ValueError(f"Unknown config option: {key}")
            kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def from_json(cls, path: str | Path) -> "PipelineConfig":
        """Load a config from a JSON file."""
        with open(path) as f:
            return cls.from_dict(json.load(f))

    def override(self, **changes) -> "PipelineConfig":
        """Return a copy with the non-None values in `changes` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def to_dict(self) -> dict:
        return asdict(self)
