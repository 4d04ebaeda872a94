"""
Redfin PPSF Trends: Data Ingestion

This module handles:
1. Redfin gis-csv downloads, one request per (region, price bin)
2. Reloading a previously exported raw table instead of hitting Redfin

Price bins overlap at their edges on Redfin's side, so the concatenated
result can contain duplicate rows. Deduplication happens in transform.py.
"""

import io
import time
import logging
from datetime import datetime
from pathlib import Path

import pandas as pd
import requests

from query import GIS_CSV_URL, QueryConfig

logger = logging.getLogger(__name__)

# Redfin rejects requests without a browser-like user agent
HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
    ),
    "Accept": "text/csv,*/*",
}


class PipelineError(Exception):
    """Fatal error that aborts the run before anything is exported."""

    stage = "pipeline"


class SourceUnavailable(PipelineError):
    """The listings fetch failed or returned an unparseable payload."""

    stage = "ingestion"


class SchemaMismatch(PipelineError):
    """Expected columns are missing from the fetched payload."""

    stage = "normalization"


def log_error(message: str, output_dir: Path = Path("data")):
    """Log errors to <output_dir>/errors.log so failed runs leave a trace."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    error_log_path = output_dir / "errors.log"

    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    with open(error_log_path, "a") as f:
        f.write(f"[{timestamp}] {message}\n")

    logger.error(message)


def _parse_csv_payload(text: str) -> pd.DataFrame:
    """
    Parse a gis-csv response body.

    An empty body (empty price bin) is an empty table, not an error.
    """
    if not text.strip():
        return pd.DataFrame()
    try:
        return pd.read_csv(io.StringIO(text))
    except pd.errors.EmptyDataError:
        return pd.DataFrame()
    except pd.errors.ParserError as e:
        raise SourceUnavailable(f"Unparseable CSV payload: {e}") from e


def fetch_price_bin(config: QueryConfig, region_id: str, min_price: int, max_price: int) -> pd.DataFrame:
    """
    Download sold listings for one region and one price bin.

    Returns:
        DataFrame of raw Redfin rows (possibly empty)

    Raises:
        SourceUnavailable: on transport errors, HTTP errors or bad payloads
    """
    params = config.request_params(region_id, min_price, max_price)

    try:
        response = requests.get(GIS_CSV_URL, params=params, headers=HEADERS, timeout=config.timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise SourceUnavailable(
            f"Redfin request failed for region {region_id} "
            f"(${min_price:,}-${max_price:,}): {type(e).__name__}: {e}"
        ) from e

    df = _parse_csv_payload(response.text)
    logger.info(f"  Region {region_id} ${min_price:,}-${max_price:,}: {len(df)} rows")
    return df


def fetch_sold_listings(config: QueryConfig) -> pd.DataFrame:
    """
    Download every (region, price bin) combination and stack the results.

    Returns:
        DataFrame of raw rows, not yet deduplicated

    Raises:
        SourceUnavailable: if any request fails
    """
    logger.info("Downloading Redfin sold listings...")

    frames = []
    requests_made = 0
    for region_id in config.region_ids:
        for min_price, max_price in config.price_bins():
            if requests_made and config.pause:
                time.sleep(config.pause)
            frames.append(fetch_price_bin(config, region_id, min_price, max_price))
            requests_made += 1

    frames = [f for f in frames if not f.empty]
    if not frames:
        logger.warning("⚠️  All price bins came back empty")
        return pd.DataFrame()

    raw = pd.concat(frames, ignore_index=True)
    logger.info(f"✅ Downloaded {len(raw)} raw rows from {requests_made} requests")
    return raw


def load_raw_csv(path: Path) -> pd.DataFrame:
    """
    Reuse a raw table exported by an earlier run instead of downloading.

    Raises:
        SourceUnavailable: if the file is missing or unreadable
    """
    path = Path(path)
    if not path.exists():
        raise SourceUnavailable(f"Raw CSV not found: {path}")

    try:
        raw = pd.read_csv(path, keep_default_na=False, na_values=[''], low_memory=False)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise SourceUnavailable(f"Could not read raw CSV {path}: {type(e).__name__}: {e}") from e

    logger.info(f"✅ Loaded {len(raw)} raw rows from {path}")
    return raw


def run_ingestion(config: QueryConfig, raw_csv: Path = None) -> pd.DataFrame:
    """
    Run the ingestion phase: local CSV if given, otherwise Redfin.

    Returns:
        Raw listings DataFrame
    """
    logger.info("=" * 60)
    logger.info("STARTING DATA INGESTION")
    logger.info("=" * 60)

    if raw_csv is not None:
        logger.info(f"Using existing raw CSV {raw_csv} - skipping download")
        return load_raw_csv(raw_csv)

    for key, value in config.describe().items():
        logger.info(f"  {key}: {value}")
    return fetch_sold_listings(config)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    raw = run_ingestion(QueryConfig.from_env())
    print(f"{len(raw)} raw rows")
