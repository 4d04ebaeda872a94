"""
Redfin PPSF Trends: Main Orchestrator

Runs the whole pipeline once:
1. Ingestion (Redfin gis-csv, one request per region x price bin)
2. Transformation (normalize, derive, summarize)
3. Export (five CSV tables)
4. Visualization (two PPSF trend charts)
5. Report (HTML summary)

Fatal errors stop the run before anything is exported; they are appended
to <output-dir>/errors.log.
"""

import sys
import time
import logging
import argparse
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent / "src"))

from query import QueryConfig
from ingest import run_ingestion, log_error, PipelineError
from transform import run_transformation
from deliver import export_tables, render_charts, deliver_report

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Price-per-square-foot trends by beds and baths from Redfin sold listings."
    )
    parser.add_argument("--region-id", action="append", dest="region_ids",
                        help="Redfin region id (repeat for several regions)")
    parser.add_argument("--region-type", type=int,
                        help="1 neighborhood, 2 zip, 5 county, 6 city")
    parser.add_argument("--price-base", type=int, help="Lowest price of the band")
    parser.add_argument("--price-bin-width", type=int, help="Width of each price bin")
    parser.add_argument("--price-bin-count", type=int, help="Number of price bins")
    parser.add_argument("--sold-within-days", type=int,
                        help="Lookback window: 30, 90, 365, 1095 or 1825")
    parser.add_argument("--output-dir", type=Path, default=Path("data"),
                        help="Where tables, charts and the report are written (default: data)")
    parser.add_argument("--raw-csv", type=Path,
                        help="Reuse an exported raw CSV instead of downloading")
    parser.add_argument("--no-plots", action="store_true", help="Skip chart rendering")
    parser.add_argument("--ylim", type=float, nargs=2, metavar=("LOW", "HIGH"),
                        help="PPSF axis limits, e.g. --ylim 100 400")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> QueryConfig:
    return QueryConfig.from_env(
        region_ids=args.region_ids,
        region_type=args.region_type,
        price_base=args.price_base,
        price_bin_width=args.price_bin_width,
        price_bin_count=args.price_bin_count,
        sold_within_days=args.sold_within_days,
    )


def calculate_stats(results: dict, start_time: float) -> dict:
    """
    Row counts per stage and elapsed time.

    Returns:
        dict: Stats for the report footer
    """
    execution_time = time.time() - start_time
    return {
        'row_counts': {name: len(df) for name, df in results.items()},
        'execution_time': f"{execution_time:.1f}s",
    }


def run_pipeline(config: QueryConfig, output_dir: Path, raw_csv: Path = None,
                 make_plots: bool = True, ylim: tuple = None) -> int:
    """
    Run every phase in order.

    Returns:
        int: Process exit code (0 success, 1 failure)
    """
    logger.info("=" * 80)
    logger.info("REDFIN PPSF TRENDS PIPELINE")
    logger.info("=" * 80)

    start_time = time.time()
    output_dir = Path(output_dir)

    # Phase 1: Ingestion
    logger.info("\n📥 PHASE 1: INGESTION")
    try:
        raw = run_ingestion(config, raw_csv=raw_csv)
    except PipelineError as e:
        log_error(f"Ingestion failed: {e}", output_dir)
        return 1
    except Exception as e:
        log_error(f"Ingestion failed: {type(e).__name__}: {str(e)}", output_dir)
        return 1

    # Phase 2: Transformation
    logger.info("\n🧮 PHASE 2: TRANSFORMATION")
    try:
        results = run_transformation(raw, config)
    except PipelineError as e:
        log_error(f"Transformation failed ({e.stage}): {e}", output_dir)
        return 1
    except Exception as e:
        log_error(f"Transformation failed: {type(e).__name__}: {str(e)}", output_dir)
        return 1

    # Phase 3: Export
    logger.info("\n💾 PHASE 3: EXPORT")
    try:
        export_tables(results, output_dir)
    except OSError as e:
        log_error(f"Export failed: {type(e).__name__}: {str(e)}", output_dir)
        return 1

    # Phase 4: Visualization
    charts = {}
    if make_plots:
        logger.info("\n📈 PHASE 4: VISUALIZATION")
        try:
            charts = render_charts(results, output_dir, ylim=ylim)
        except Exception as e:
            log_error(f"Visualization failed: {type(e).__name__}: {str(e)}", output_dir)
            return 1
    else:
        logger.info("\n📈 PHASE 4: VISUALIZATION (skipped)")

    # Phase 5: Report
    logger.info("\n📝 PHASE 5: REPORT")
    stats = calculate_stats(results, start_time)
    try:
        deliver_report(results, stats, config.describe(), charts, output_dir)
    except Exception as e:
        log_error(f"Report failed: {type(e).__name__}: {str(e)}", output_dir)
        return 1

    logger.info("\n" + "=" * 80)
    logger.info("✅ PIPELINE COMPLETED SUCCESSFULLY")
    logger.info(f"Total execution time: {stats['execution_time']}")
    logger.info("=" * 80)

    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = build_config(args)
    except ValueError as e:
        logger.error(f"Invalid query parameters: {e}")
        return 2

    return run_pipeline(
        config,
        output_dir=args.output_dir,
        raw_csv=args.raw_csv,
        make_plots=not args.no_plots,
        ylim=tuple(args.ylim) if args.ylim else None,
    )


if __name__ == "__main__":
    exit_code = main()
    sys.exit(exit_code)
