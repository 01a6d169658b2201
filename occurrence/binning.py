"""
Occurrence-ratio binning.

Average temperature and snowfall are cut into fixed-width bins whose
indices are anchored at the dataset minimum (the minimum always falls in
bin 0). The share of all matched observations that falls into each
(temperature bin, snowfall bin) group is the regression target.

Bin edges are absolute multiples of the width; only the index numbering is
relative to the minimum. With width 1 and minimum 2.3, the bin holding the
minimum is [2, 3), so 3.2 lands in bin 1. Because indices count from the
observed minimum, adding data with a lower minimum shifts every index.
"""

import logging
import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd

from .config import TEMP_BIN_WIDTH, SNOW_BIN_WIDTH, TargetType
from .matching import MatchedObservation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BinnedGroup:
    temp_bin: int
    snow_bin: int
    count: int
    ratio: float
    n_present: int = 0

    @property
    def key(self) -> tuple[int, int]:
        return (self.temp_bin, self.snow_bin)

    @property
    def detection_rate(self) -> float:
        """Fraction of the group's observations that report the species."""
        return self.n_present / self.count if self.count else math.nan


def bin_index(value: float, minimum: float, width: float) -> int:
    """
    Index of the width-wide bin holding `value`, counted from the bin that
    holds `minimum`.

    With width 1 and minimum 2.3, the values 2.3, 2.9 and 3.1 fall in bins
    0, 0 and 1.
    """
    return int(math.floor(value / width) - math.floor(minimum / width))


class OccurrenceRatioBinner:
    """Groups matched observations by temperature and snowfall bins."""

    def __init__(
        self,
        temp_bin_width: float = TEMP_BIN_WIDTH,
        snow_bin_width: float = SNOW_BIN_WIDTH,
    ):
        if temp_bin_width <= 0 or snow_bin_width <= 0:
            raise ValueError("Bin widths must be positive")
        self.temp_bin_width = temp_bin_width
        self.snow_bin_width = snow_bin_width
        self.temp_min: float | None = None
        self.snow_min: float | None = None

    @staticmethod
    def _usable(matched: Sequence[MatchedObservation]) -> list[MatchedObservation]:
        return [m for m in matched if m.matched and m.tavg is not None and m.snow is not None]

    def keys(self, matched: Sequence[MatchedObservation]) -> list[tuple[int, int]]:
        """
        Bin key of every usable observation.

        Also records the anchoring minimums on the binner.
        """
        usable = self._usable(matched)
        if not usable:
            return []
        temps = np.array([m.tavg for m in usable], dtype=float)
        snows = np.array([m.snow for m in usable], dtype=float)
        self.temp_min = float(temps.min())
        self.snow_min = float(snows.min())
        return [
            (bin_index(t, self.temp_min, self.temp_bin_width),
             bin_index(s, self.snow_min, self.snow_bin_width))
            for t, s in zip(temps, snows)
        ]

    def bin(self, matched: Sequence[MatchedObservation]) -> list[BinnedGroup]:
        """
        Compute the occurrence ratio of every populated bin group.

        Unmatched observations and those lacking average temperature or
        snowfall are ignored.

        Args:
            matched: Matched observations

        Returns:
            Groups sorted by (temp_bin, snow_bin); ratios sum to 1
        """
        usable = self._usable(matched)
        keys = self.keys(usable)
        if not keys:
            logger.warning("No matched observations to bin")
            return []

        counts: dict[tuple[int, int], int] = {}
        present: dict[tuple[int, int], int] = {}
        for key, obs in zip(keys, usable):
            counts[key] = counts.get(key, 0) + 1
            present[key] = present.get(key, 0) + int(obs.present)

        total = len(keys)
        groups = [
            BinnedGroup(
                temp_bin=key[0],
                snow_bin=key[1],
                count=counts[key],
                ratio=counts[key] / total,
                n_present=present[key],
            )
            for key in sorted(counts)
        ]
        logger.info(
            f"Binned {total} observations into {len(groups)} groups "
            f"(temp width {self.temp_bin_width}, snow width {self.snow_bin_width})"
        )
        return groups

    def assign_targets(
        self,
        matched: Sequence[MatchedObservation],
        groups: Sequence[BinnedGroup],
        target: TargetType = "ratio",
    ) -> tuple[list[MatchedObservation], np.ndarray]:
        """
        Give each usable observation the target value of its bin group.

        Args:
            matched: The observations `groups` was computed from
            groups: Output of `bin`
            target: "ratio" or "detection_rate"

        Returns:
            Tuple of (usable observations, target array aligned with them)
        """
        usable = self._usable(matched)
        keys = self.keys(usable)
        by_key = {g.key: g for g in groups}
        values = np.array([getattr(by_key[k], target) for k in keys], dtype=float)
        return usable, values


def groups_to_frame(groups: Sequence[BinnedGroup]) -> pd.DataFrame:
    """Tabulate bin groups for persistence."""
    return pd.DataFrame([
        {
            "temp_bin": g.temp_bin,
            "snow_bin": g.snow_bin,
            "count": g.count,
            "ratio": g.ratio,
            "n_present": g.n_present,
            "detection_rate": g.detection_rate,
        }
        for g in groups
    ])
