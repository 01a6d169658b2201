"""
Species Occurrence Surface from Checklists, Weather and Land Cover

Zero-fills survey checklists, matches them to same-day weather from the
nearest station, bins the covariates into an occurrence-ratio target, fits
linear models and simulates the fitted model over a spatial grid.
"""

from .errors import (
    OccurrenceError,
    MalformedRecord,
    InsufficientData,
    DegenerateTarget,
    MissingExternalResource,
)
from .config import PipelineConfig
from .weather import WeatherStation, DailyWeatherRecord, StationIndex, DailyWeatherStore
from .checklists import Checklist, Detection, PresenceAbsenceRecord, Protocol, ZeroFillEngine
from .matching import MatchStatus, MatchedObservation, ObservationMatcher
from .landcover import LandCoverRaster
from .binning import BinnedGroup, OccurrenceRatioBinner
from .model import PREDICTORS, FittedModel, ModelComparison, ModelSelector
from .grid import GridCell, build_grid, load_region
from .simulation import CovariateSampler, GridPrediction, GridSimulator
from .pipeline import run_pipeline, run_from_files

__all__ = [
    'OccurrenceError',
    'MalformedRecord',
    'InsufficientData',
    'DegenerateTarget',
    'MissingExternalResource',
    'PipelineConfig',
    'WeatherStation',
    'DailyWeatherRecord',
    'StationIndex',
    'DailyWeatherStore',
    'Checklist',
    'Detection',
    'PresenceAbsenceRecord',
    'Protocol',
    'ZeroFillEngine',
    'MatchStatus',
    'MatchedObservation',
    'ObservationMatcher',
    'LandCoverRaster',
    'BinnedGroup',
    'OccurrenceRatioBinner',
    'PREDICTORS',
    'FittedModel',
    'ModelComparison',
    'ModelSelector',
    'GridCell',
    'build_grid',
    'load_region',
    'CovariateSampler',
    'GridPrediction',
    'GridSimulator',
    'run_pipeline',
    'run_from_files',
]
