"""
Command-line interface for the occurrence pipeline.
"""

import argparse
import logging
from pathlib import Path

from .config import PipelineConfig
from .errors import OccurrenceError
from .pipeline import run_from_files


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Estimate a species' occurrence surface from checklists, weather and land cover"
    )
    parser.add_argument("checklists", type=Path, help="Checklist (sampling event) table")
    parser.add_argument("detections", type=Path, help="Target-species detection table")
    parser.add_argument("--stations", type=Path, required=True, help="Weather station table")
    parser.add_argument("--weather", type=Path, required=True, help="Daily weather table")
    parser.add_argument("--landcover", type=Path, required=True, help="Land-cover GeoTIFF (EPSG:4326)")
    parser.add_argument("--region", type=Path, required=True, help="Region boundary GeoJSON")
    parser.add_argument("--output-dir", "-o", type=Path, default=Path("./output"), help="Output directory")
    parser.add_argument("--config", "-c", type=Path, help="JSON config file")
    parser.add_argument("--stations-format", choices=["csv", "ghcn"], default="csv")
    parser.add_argument("--weather-format", choices=["csv", "ghcn"], default="csv")

    parser.add_argument("--radius-km", type=float, help="Station match cutoff (default 50)")
    parser.add_argument("--temp-bin-width", type=float, help="Temperature bin width (default 1)")
    parser.add_argument("--snow-bin-width", type=float, help="Snowfall bin width (default 5)")
    parser.add_argument("--cell-size", type=float, dest="grid_cell_size_degrees",
                        help="Grid cell size in degrees (default 0.1)")
    parser.add_argument("--points-per-cell", type=int, help="Simulated points per cell (default 1000)")
    parser.add_argument("--elastic-net-alpha", type=float, help="L1 share of the Elastic-net penalty (default 0.5)")
    parser.add_argument("--target", choices=["ratio", "detection_rate"], help="Regression target")
    parser.add_argument("--seed", "-s", type=int, dest="random_seed", help="Random seed")
    parser.add_argument("--jobs", "-j", type=int, dest="n_jobs", help="Parallel workers for matching")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = PipelineConfig.from_json(args.config) if args.config else PipelineConfig()
    config = config.override(
        radius_km=args.radius_km,
        temp_bin_width=args.temp_bin_width,
        snow_bin_width=args.snow_bin_width,
        grid_cell_size_degrees=args.grid_cell_size_degrees,
        points_per_cell=args.points_per_cell,
        elastic_net_alpha=args.elastic_net_alpha,
        target=args.target,
        random_seed=args.random_seed,
        n_jobs=args.n_jobs,
    )

    try:
        result = run_from_files(
            checklists_path=args.checklists,
            detections_path=args.detections,
            stations_path=args.stations,
            weather_path=args.weather,
            landcover_path=args.landcover,
            region_path=args.region,
            output_dir=args.output_dir,
            config=config,
            stations_format=args.stations_format,
            weather_format=args.weather_format,
        )
    except OccurrenceError as e:
        logging.getLogger(__name__).error(f"Run failed: {e}")
        return 1

    best = result.comparison.best()
    print(f"\nSelected model: {best.name} (CV MSE {best.cv_mse:.4g})")
    for name, weight in best.coefficients.items():
        print(f"  {name:>10}: {weight:+.4g}")
    if result.comparison.removal_candidates:
        print(f"Consider dropping: {', '.join(result.comparison.removal_candidates)}")
    print(f"Outputs saved to {args.output_dir}/")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
