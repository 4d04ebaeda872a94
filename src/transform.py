"""
Redfin PPSF Trends: Transformation Logic

Three stages, each returning a new DataFrame:
1. normalize_records: dedupe, clean names, drop unsold/condo rows, extract ids
2. derive_features: PPSF, sale date parts, HOA flag, relative coordinates,
   categorical beds/baths
3. summarize_by_beds / summarize_by_beds_baths: PPSF per group with a
   10th-90th percentile band

ppsf_avg is sum(price) / sum(square_feet) (total dollars over total area),
while lb/ub are percentiles of per-row PPSF. Keep both as they are.
"""

import re
import logging

import numpy as np
import pandas as pd

from ingest import SchemaMismatch
from query import QueryConfig

logger = logging.getLogger(__name__)

# Columns every downstream step relies on (after clean_column_names)
REQUIRED_COLUMNS = [
    'sold_date', 'property_type', 'price', 'square_feet', 'beds', 'baths',
    'latitude', 'longitude', 'hoa_month', 'url', 'mls_number',
]

# Market metadata and listing-site bookkeeping
DROP_COLUMNS = [
    'days_on_market', 'next_open_house_start_time', 'next_open_house_end_time',
    'sale_type', 'city', 'state_or_province', 'status', 'source', 'favorite',
    'interested', 'zip_or_postal_code',
]

# Consumed by derive_features once the ids are extracted
DERIVED_DROP_COLUMNS = ['url', 'mls_number', 'address']

EXCLUDED_PROPERTY_TYPES = ['CONDO/CO-OP']

NUMERIC_COLUMNS = ['price', 'square_feet', 'beds', 'baths', 'hoa_month', 'latitude', 'longitude']

# Redfin exports "March-11-2022"; the other two show up in hand-edited files
SOLD_DATE_FORMATS = ['%B-%d-%Y', '%m/%d/%Y', '%Y-%m-%d']

SUMMARY_COLUMNS = ['n', 'ppsf_avg', 'lb', 'ub']
LOWER_QUANTILE = 0.10
UPPER_QUANTILE = 0.90


def clean_name(name) -> str:
    """
    Convert a column header to lower snake_case.

    "MLS#" -> "mls_number", "HOA/MONTH" -> "hoa_month",
    "$/SQUARE FEET" -> "usd_square_feet". Already-clean names are unchanged.

    "$" is spelled out so Redfin's list-price PPSF column gets its own name
    instead of a "square_feet_2" suffix that depends on column order.
    """
    name = str(name).strip()
    name = name.replace('#', ' number ').replace('%', ' percent ').replace('$', ' usd ')
    name = re.sub(r'([a-z0-9])([A-Z])', r'\1_\2', name)
    name = re.sub(r'[^0-9a-zA-Z]+', '_', name).strip('_').lower()
    if not name:
        name = 'x'
    if name[0].isdigit():
        name = 'x' + name
    return name


def clean_column_names(df: pd.DataFrame) -> pd.DataFrame:
    """
    Clean every column name, suffix duplicates (_2, _3, ...) and shorten
    Redfin's "URL (SEE https://...)" header to plain "url".
    """
    seen = {}
    names = []
    for column in df.columns:
        name = clean_name(column)
        if name.startswith('url_see_'):
            name = 'url'
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 1
        names.append(name)

    result = df.copy()
    result.columns = names
    return result


def _text_columns(df: pd.DataFrame) -> list:
    return [
        col for col in df.columns
        if pd.api.types.is_object_dtype(df[col]) or isinstance(df[col].dtype, pd.StringDtype)
    ]


def _upper(value):
    return value.upper() if isinstance(value, str) else value


def trailing_number(url) -> float:
    """Numeric last path segment of a URL, e.g. ".../home/38529016" -> 38529016."""
    if pd.isna(url) or not isinstance(url, str):
        return np.nan

    match = re.search(r'/([^/]+)$', url.strip())
    if match is None:
        return np.nan
    try:
        return float(match.group(1))
    except ValueError:
        return np.nan


def strip_prefix_number(value, prefix: str) -> float:
    """MLS number without its alphabetic prefix, e.g. "MDFR2011234" -> 2011234."""
    if pd.isna(value):
        return np.nan

    text = str(value).strip()
    if prefix and text.upper().startswith(prefix.upper()):
        text = text[len(prefix):]
    try:
        return float(text)
    except ValueError:
        return np.nan


def normalize_records(raw: pd.DataFrame, mls_prefix: str = 'MDFR') -> pd.DataFrame:
    """
    Turn raw Redfin rows into one row per distinct sold property.

    Step order matters: duplicates are dropped before names are cleaned, and
    text is upper-cased before the condo filter and id extraction.

    Args:
        raw: Raw listings as returned by ingest
        mls_prefix: Alphabetic prefix stripped from MLS numbers

    Returns:
        Normalized DataFrame

    Raises:
        SchemaMismatch: if a required column is missing
    """
    logger.info("Normalizing raw records...")

    if raw.empty and len(raw.columns) == 0:
        logger.warning("⚠️  No raw records to normalize")
        return pd.DataFrame(columns=REQUIRED_COLUMNS + ['url_id', 'mls_id'])

    df = raw.drop_duplicates()
    logger.info(f"Dropped {len(raw) - len(df)} duplicate rows")

    df = clean_column_names(df)

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise SchemaMismatch(f"Raw listings are missing required columns: {missing}")

    # Active and pending listings have no sold date
    before_count = len(df)
    df = df[df['sold_date'].notna()]
    logger.info(f"Dropped {before_count - len(df)} rows without a sold date")

    df = df.drop(columns=[col for col in DROP_COLUMNS if col in df.columns])

    df = df.copy()
    for col in _text_columns(df):
        df[col] = df[col].map(_upper)

    before_count = len(df)
    df = df[~df['property_type'].isin(EXCLUDED_PROPERTY_TYPES)].copy()
    logger.info(f"Dropped {before_count - len(df)} condo/co-op rows")

    df['url_id'] = df['url'].map(trailing_number).astype(float)
    df['mls_id'] = df['mls_number'].map(lambda v: strip_prefix_number(v, mls_prefix)).astype(float)

    for col in _text_columns(df):
        df[col] = df[col].fillna('UNKNOWN')

    df = df.reset_index(drop=True)
    logger.info(f"✅ Normalized {len(df)} records")
    return df


def parse_sold_date(values: pd.Series) -> pd.Series:
    """Parse sold dates trying each known format in turn; failures become NaT."""
    text = values.astype(str).str.strip()
    parsed = pd.to_datetime(text, format=SOLD_DATE_FORMATS[0], errors='coerce')
    for fmt in SOLD_DATE_FORMATS[1:]:
        if not parsed.isna().any():
            break
        parsed = parsed.fillna(pd.to_datetime(text, format=fmt, errors='coerce'))
    return parsed


def rescale_coordinates(values: pd.Series) -> pd.Series:
    """
    Shift to a zero minimum and scale so the maximum is 100.

    When every value is identical the result is 0 for every row.
    """
    shifted = values - values.min()
    span = shifted.max()
    if pd.isna(span) or span == 0:
        return shifted * 0
    return shifted / span * 100


def category_label(value):
    """Compact label for a bed/bath count: 3.0 -> "3", 2.5 -> "2.5"."""
    if pd.isna(value):
        return None
    return f"{float(value):g}"


def _label_or_na(values: pd.Series) -> pd.Series:
    """Count labels as plain strings with "NA" for a missing count."""
    return values.astype(object).where(values.notna(), 'NA').astype(str)


def as_category(values: pd.Series) -> pd.Categorical:
    """Ordered categorical of count labels, categories in numeric order."""
    categories = [category_label(v) for v in sorted(values.dropna().unique())]
    return pd.Categorical(values.map(category_label), categories=categories, ordered=True)


def derive_features(normalized: pd.DataFrame) -> pd.DataFrame:
    """
    Add PPSF, date parts, HOA flag, relative coordinates and the beds_baths key.

    Rows without a parseable sold date, or with a missing or non-positive
    price or square footage, are dropped before anything is computed.

    Args:
        normalized: Output of normalize_records

    Returns:
        Derived DataFrame with categorical beds and baths
    """
    logger.info("Deriving features...")

    df = normalized.copy()
    for col in NUMERIC_COLUMNS:
        df[col] = pd.to_numeric(df[col], errors='coerce')

    df['sold_date'] = parse_sold_date(df['sold_date'])
    before_count = len(df)
    df = df[df['sold_date'].notna()]
    logger.info(f"Dropped {before_count - len(df)} rows with an unparseable sold date")

    before_count = len(df)
    valid = (
        df['price'].notna() & df['square_feet'].notna()
        & (df['price'] > 0) & (df['square_feet'] > 0)
    )
    df = df[valid].copy()
    logger.info(f"Dropped {before_count - len(df)} rows with missing or zero price/square feet")

    df['sold_year'] = df['sold_date'].dt.year.astype(int)
    df['sold_month'] = df['sold_date'].dt.month.astype(int)
    df['sold_quarter'] = (df['sold_month'] + 2) // 3
    df['sold_day'] = df['sold_date'].dt.day.astype(int)

    # Flag first, then default the fee
    df['hoa_month_bool'] = df['hoa_month'].notna().astype(int)
    df['hoa_month'] = df['hoa_month'].fillna(0)

    df['ppsf'] = df['price'] / df['square_feet']

    df['longitude'] = rescale_coordinates(df['longitude'])
    df['latitude'] = rescale_coordinates(df['latitude'])

    df['beds_baths'] = (
        _label_or_na(df['beds'].map(category_label)) + '_' + _label_or_na(df['baths'].map(category_label))
    )

    df['beds'] = as_category(df['beds'])
    df['baths'] = as_category(df['baths'])

    df = df.drop(columns=[col for col in DERIVED_DROP_COLUMNS if col in df.columns])
    df = df.reset_index(drop=True)

    logger.info(f"✅ Derived features for {len(df)} records")
    return df


def _lower_bound(ppsf: pd.Series) -> float:
    return ppsf.quantile(LOWER_QUANTILE, interpolation='linear')


def _upper_bound(ppsf: pd.Series) -> float:
    return ppsf.quantile(UPPER_QUANTILE, interpolation='linear')


def summarize_ppsf(derived: pd.DataFrame, keys: list) -> pd.DataFrame:
    """
    PPSF statistics per group.

    A missing bed or bath count forms its own group, so the group sizes
    always add up to the number of derived rows.

    Args:
        derived: Output of derive_features
        keys: Grouping columns

    Returns:
        DataFrame with keys + n, ppsf_avg, lb, ub
    """
    if derived.empty:
        return pd.DataFrame(columns=keys + SUMMARY_COLUMNS)

    summary = (
        derived.groupby(keys, observed=True, dropna=False)
        .agg(
            n=('ppsf', 'size'),
            price_sum=('price', 'sum'),
            square_feet_sum=('square_feet', 'sum'),
            lb=('ppsf', _lower_bound),
            ub=('ppsf', _upper_bound),
        )
        .reset_index()
    )
    summary['ppsf_avg'] = summary['price_sum'] / summary['square_feet_sum']

    summary = summary[keys + SUMMARY_COLUMNS]
    return summary.sort_values(keys).reset_index(drop=True)


def summarize_by_beds(derived: pd.DataFrame) -> pd.DataFrame:
    """
    View A: PPSF by sale year and bedrooms.

    Sparse groups (even n=1) are kept.
    """
    logger.info("Summarizing PPSF by year x beds...")
    summary = summarize_ppsf(derived, ['sold_year', 'beds'])
    logger.info(f"Calculated {len(summary)} year x beds groups")
    return summary


def summarize_by_beds_baths(derived: pd.DataFrame) -> pd.DataFrame:
    """
    View B: PPSF by sale year, bedrooms and bathrooms.

    nyr counts the distinct sale years seen for each beds x baths crossing.
    Crossings missing more than one year relative to the best-covered
    crossing are dropped.
    """
    logger.info("Summarizing PPSF by year x beds x baths...")

    keys = ['sold_year', 'beds', 'baths']
    summary = summarize_ppsf(derived, keys)
    if summary.empty:
        return pd.DataFrame(columns=keys + ['beds_baths'] + SUMMARY_COLUMNS + ['nyr'])

    summary.insert(3, 'beds_baths', _label_or_na(summary['beds']) + '_' + _label_or_na(summary['baths']))
    summary['nyr'] = (
        summary.groupby(['beds', 'baths'], observed=True, dropna=False)['sold_year'].transform('nunique')
    )

    nyr_max = summary['nyr'].max()
    before_count = summary['beds_baths'].nunique()
    summary = summary[summary['nyr'] >= nyr_max - 1].reset_index(drop=True)
    dropped = before_count - summary['beds_baths'].nunique()
    logger.info(
        f"Kept {summary['beds_baths'].nunique()} beds x baths crossings "
        f"(dropped {dropped} seen in fewer than {nyr_max - 1} years)"
    )
    return summary


def run_transformation(raw: pd.DataFrame, config: QueryConfig = None) -> dict:
    """
    Normalize, derive and summarize.

    Returns:
        dict: Tables keyed raw, normalized, derived, by_beds, by_beds_baths
    """
    logger.info("=" * 60)
    logger.info("STARTING TRANSFORMATION")
    logger.info("=" * 60)

    config = config or QueryConfig()

    results = {'raw': raw}
    results['normalized'] = normalize_records(raw, mls_prefix=config.mls_prefix)
    results['derived'] = derive_features(results['normalized'])
    results['by_beds'] = summarize_by_beds(results['derived'])
    results['by_beds_baths'] = summarize_by_beds_baths(results['derived'])

    logger.info("✅ Transformation complete")
    return results


if __name__ == "__main__":
    import sys

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    raw = pd.read_csv(sys.argv[1] if len(sys.argv) > 1 else "data/redfin_raw.csv", low_memory=False)
    results = run_transformation(raw)

    print("\n" + "=" * 60)
    print("TRANSFORMATION RESULTS SUMMARY")
    print("=" * 60)
    for name, df in results.items():
        print(f"{name}: {len(df)} records")
