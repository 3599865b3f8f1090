"""Command line entry point for clustering a match table."""

import argparse
import os
import sys
from typing import List, Optional

from shared_clustering import __version__
from shared_clustering.io import DataFrameCorrelationWriter, load_clusterable_matches, read_matches_file
from shared_clustering.pipeline import HierarchicalClusterer
from shared_clustering.utils.logging_utils import DEFAULT_FORMAT, get_logger, setup_logging
from shared_clustering.utils.parallel_utils import create_parallel_executor
from shared_clustering.utils.progress import create_progress
from shared_clustering.utils.resource_monitor import log_resource_summary
from shared_clustering.utils.settings import get_config_path, load_settings, validate_settings

logger = get_logger(__name__)


def run_clustering(
    input_path: str,
    output_path: str,
    config_path: str,
    min_centimorgans: Optional[float] = None,
    workers: Optional[int] = None,
    no_parallel: bool = False,
    enable_progress: bool = False,
    log_level: Optional[str] = None,
) -> int:
    """Load matches, cluster them and write the output table.

    Returns:
        Number of primary clusters found

    """
    settings = load_settings(config_path)
    logging_settings = settings.get("logging", {})
    setup_logging(
        log_level or logging_settings.get("level", "INFO"),
        log_file=logging_settings.get("file"),
        fmt=logging_settings.get("format", DEFAULT_FORMAT),
    )
    validate_settings(settings)
    log_resource_summary()

    df = read_matches_file(input_path)
    matches = load_clusterable_matches(df)

    if enable_progress:
        settings = {**settings, "progress": {**settings.get("progress", {}), "enable_tqdm": True}}
    progress = create_progress(settings)
    executor = create_parallel_executor(settings, workers=workers, disable_parallel=True if no_parallel else None)
    writer = DataFrameCorrelationWriter(
        output_path,
        min_cluster_size=settings.get("clustering", {}).get("min_cluster_size", 3),
    )

    clusterer = HierarchicalClusterer(settings, progress=progress, executor=executor, writer=writer)
    result = clusterer.cluster(matches, min_centimorgans_to_cluster=min_centimorgans)
    if result.is_empty:
        logger.warning("No matches cleared the clustering threshold")
    return len(result.primary_clusters)


def main(argv: Optional[List[str]] = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Cluster DNA matches by their shared match lists",
    )
    parser.add_argument("--input", required=True, help="Match table (CSV/JSON)")
    parser.add_argument("--output", required=True, help="Output CSV path")
    parser.add_argument(
        "--config",
        default=str(get_config_path()),
        help="Configuration file path",
    )
    parser.add_argument(
        "--min-cm",
        type=float,
        help="Lowest shared cM to cluster (below 20 extends clusters with weaker matches)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        help="Number of parallel workers (None for auto-detection)",
    )
    parser.add_argument(
        "--no-parallel",
        action="store_true",
        help="Force sequential execution (disables parallel processing)",
    )
    parser.add_argument(
        "--progress",
        action="store_true",
        help="Enable tqdm progress bars",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (overrides logging.level from the config)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"shared-clustering v{__version__}",
        help="Show version information and exit",
    )

    args = parser.parse_args(argv)
    setup_logging(args.log_level or "INFO")

    if not os.path.exists(args.input):
        logger.error(f"Input file not found: {args.input}")
        sys.exit(1)

    if args.min_cm is not None and args.min_cm < 0:
        logger.error(f"--min-cm must be >= 0, got {args.min_cm}")
        sys.exit(1)

    try:
        num_clusters = run_clustering(
            input_path=args.input,
            output_path=args.output,
            config_path=args.config,
            min_centimorgans=args.min_cm,
            workers=args.workers,
            no_parallel=args.no_parallel,
            enable_progress=args.progress,
            log_level=args.log_level,
        )
    except ValueError as e:
        logger.error(f"Invalid input: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.warning("Clustering interrupted by user (Ctrl+C)")
        sys.exit(130)
    except Exception:
        logger.exception("Clustering failed")
        sys.exit(87)

    logger.info(f"Done: {num_clusters} primary clusters written to {args.output}")


if __name__ == "__main__":
    main()
