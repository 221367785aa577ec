"""
Data Loader Module
==================

Handles configuration loading, CSV ingestion and basic table health checks.

Functions:
    - load_config: Load YAML configuration file
    - load_data: Load the raw listing CSV
    - validate_data: Report table-level quality issues
    - generate_sample_listings: Build a synthetic raw listing table
    - print_data_summary: Console overview of a table
"""

import os
import logging
from pathlib import Path
from typing import Dict, Any, Optional, Sequence, Tuple

import pandas as pd
import numpy as np
import yaml

from .curation import mask_sentinels
from .errors import SchemaError
from .schema import WEEKDAY_LEVELS

logger = logging.getLogger(__name__)


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def load_data(
    file_path: str,
    required_columns: Optional[Sequence[str]] = None
) -> pd.DataFrame:
    """
    Load the raw listing table from CSV.

    Sentinel codes are left untouched here; the curator decides what
    counts as missing.

    Args:
        file_path: Path to the CSV file
        required_columns: Columns that must be present (optional validation)

    Returns:
        DataFrame containing the raw records

    Raises:
        FileNotFoundError: If data file doesn't exist
        SchemaError: If the file cannot be parsed or lacks required columns
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    try:
        df = pd.read_csv(file_path, keep_default_na=False, na_values=[""])
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise SchemaError(f"Unreadable listing table {file_path}: {e}") from e

    logger.info(f"Loaded data from {file_path}: {df.shape[0]} rows × {df.shape[1]} columns")

    if required_columns is not None:
        absent = [c for c in required_columns if c not in df.columns]
        if absent:
            raise SchemaError(
                f"Missing required columns {absent}. Columns: {list(df.columns)}"
            )

    return df


def validate_data(
    df: pd.DataFrame,
    sentinels: Sequence[Any] = (),
    strict: bool = True
) -> Tuple[bool, Dict[str, Any]]:
    """
    Validate table-level quality constraints of the raw listings.

    Checks:
        - Table is not empty
        - Missing values (explicit NaN)
        - Sentinel-coded cells
        - Duplicate rows

    Args:
        df: DataFrame to validate
        sentinels: Codes that stand for a missing value
        strict: If True, raise errors on validation failure

    Returns:
        Tuple of (is_valid, validation_report)
    """
    report = {
        "total_rows": len(df),
        "total_columns": len(df.columns),
        "column_names": list(df.columns),
        "issues": []
    }

    if df.empty:
        report["issues"].append("Table has no rows")
        logger.warning("Table has no rows")

    missing_counts = df.isnull().sum()
    total_missing = int(missing_counts.sum())
    if total_missing > 0:
        missing_pct = (total_missing / max(df.size, 1)) * 100
        issue = f"Missing values: {total_missing} ({missing_pct:.2f}%)"
        report["issues"].append(issue)
        report["missing_by_column"] = missing_counts[missing_counts > 0].to_dict()
        logger.warning(issue)

    if sentinels:
        # Same matching rules as curation, so the counts are what curation will mask
        sentinel_counts = {
            col: int(mask_sentinels(df[col], sentinels).isna().sum() - df[col].isna().sum())
            for col in df.columns
        }
        sentinel_counts = {col: n for col, n in sentinel_counts.items() if n > 0}
        if sentinel_counts:
            issue = f"Sentinel-coded cells: {sum(sentinel_counts.values())}"
            report["issues"].append(issue)
            report["sentinels_by_column"] = sentinel_counts
            logger.warning(issue)

    duplicates = int(df.duplicated().sum())
    if duplicates > 0:
        issue = f"Duplicate rows found: {duplicates}"
        report["issues"].append(issue)
        logger.warning(issue)

    is_valid = len(report["issues"]) == 0
    report["is_valid"] = is_valid

    if strict and not is_valid:
        raise ValueError(f"Data validation failed: {report['issues']}")

    return is_valid, report


def generate_sample_listings(
    n_rows: int = 500,
    random_state: int = 42,
    missing_rate: float = 0.05
) -> pd.DataFrame:
    """
    Build a synthetic raw listing table shaped like the real source data.

    Besides the listing attributes it carries ad metadata, coarse geography,
    constant columns and sparsely filled columns, and uses the usual
    sentinel codes (-1, -999, "?", "") for missing cells.

    Args:
        n_rows: Number of listings
        random_state: Seed for the random generator
        missing_rate: Base fraction of sentinel-coded cells per affected column

    Returns:
        Raw listing DataFrame
    """
    rng = np.random.default_rng(random_state)
    n = n_rows

    rooms = rng.integers(1, 7, n)
    bedrooms = np.maximum(rooms - rng.integers(0, 2, n), 1)
    bathrooms = rng.integers(1, 4, n)
    total_floors = rng.integers(1, 21, n)
    floor = rng.integers(0, total_floors + 1)
    parking_spaces = rng.integers(0, 3, n)
    photo_count = rng.integers(0, 31, n)
    area_sqm = np.round(np.clip(rooms * rng.uniform(15, 30, n) + rng.normal(0, 5, n), 15, None), 1)
    rent = np.round(area_sqm * rng.uniform(8, 20, n), 2)
    condo_fee = np.round(area_sqm * rng.uniform(1, 4, n), 2)
    property_tax = np.round(rent * rng.uniform(0.5, 1.5, n), 2)
    furnished = rng.integers(0, 2, n)
    pets_allowed = rng.integers(0, 2, n)
    elevator = ((total_floors > 4) | (rng.random(n) < 0.2)).astype(int)
    posted_weekday = rng.choice(WEEKDAY_LEVELS, n)

    weekend = np.isin(posted_weekday, ["Saturday", "Sunday"]).astype(float)
    rate = np.exp(1.5 + 0.04 * photo_count - 0.0002 * rent + 0.2 * furnished + 0.1 * weekend)
    hits = rng.poisson(rate)

    df = pd.DataFrame({
        "listing_id": np.arange(1, n + 1),
        "advertiser_id": rng.integers(1, 50, n),
        "created_at": pd.date_range("2023-01-01", periods=n, freq="D").strftime("%Y-%m-%d"),
        "country": "PT",
        "state": rng.choice(["Lisboa", "Porto"], n),
        "region": rng.choice(["Norte", "Centro", "Sul"], n),
        "currency": "EUR",
        "listing_type": "apartment",
        "rooms": rooms,
        "bedrooms": bedrooms,
        "bathrooms": bathrooms,
        "floor": floor,
        "total_floors": total_floors,
        "parking_spaces": parking_spaces,
        "photo_count": photo_count,
        "area_sqm": area_sqm,
        "rent": rent,
        "condo_fee": condo_fee,
        "property_tax": property_tax,
        "furnished": furnished,
        "pets_allowed": pets_allowed,
        "elevator": elevator,
        "posted_weekday": posted_weekday,
        "balcony_area": np.round(rng.uniform(2, 15, n), 1),
        "heating_type": rng.choice(["gas", "electric", "heat_pump"], n),
        "energy_rating": rng.choice(list("ABCDEF"), n),
        "contacts": rng.poisson(hits * 0.2),
        "favorites": rng.poisson(hits * 0.1),
        "days_online": rng.integers(1, 90, n),
        "ad_position": rng.integers(1, 200, n),
        "hits": hits,
    })

    def _pick(rate: float) -> np.ndarray:
        return rng.random(n) < rate

    # Sparse columns end up above the default missingness threshold
    df.loc[_pick(0.8), "balcony_area"] = np.nan
    df.loc[_pick(0.7), "heating_type"] = ""
    df.loc[_pick(0.2), "energy_rating"] = "?"

    df.loc[_pick(missing_rate), "rooms"] = -1
    df.loc[_pick(missing_rate), "bathrooms"] = -1
    df.loc[_pick(missing_rate / 2), "area_sqm"] = -999
    df.loc[_pick(missing_rate * 2), "condo_fee"] = np.nan
    df["property_tax"] = df["property_tax"].astype(object)
    df.loc[_pick(missing_rate), "property_tax"] = "?"
    df.loc[_pick(missing_rate / 2), "posted_weekday"] = ""

    logger.info(f"Generated {n} synthetic listings (seed={random_state})")
    return df


def print_data_summary(df: pd.DataFrame) -> None:
    """
    Print a formatted summary of the dataset to console.

    Args:
        df: DataFrame to summarize
    """
    print("\n" + "=" * 60)
    print("DATASET SUMMARY")
    print("=" * 60)
    print(f"Shape: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"Memory Usage: {df.memory_usage(deep=True).sum() / 1024:.2f} KB")
    print("\nColumn Information:")
    print("-" * 40)

    for col in df.columns:
        dtype = df[col].dtype
        non_null = df[col].count()
        null_pct = (1 - non_null / max(len(df), 1)) * 100
        print(f"  {col}: {dtype} | {non_null} non-null ({null_pct:.1f}% missing)")

    numeric = df.select_dtypes(include=[np.number])
    if not numeric.empty:
        print("\nBasic Statistics:")
        print("-" * 40)
        print(numeric.describe().round(4).to_string())
    print("=" * 60 + "\n")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    try:
        config = load_config()
        print("Configuration loaded successfully!")
        print(f"Missing threshold: {config['curation']['missing_threshold']}")
    except FileNotFoundError as e:
        print(f"Config not found: {e}")

    data_path = "data/raw/listings.csv"
    if os.path.exists(data_path):
        df = load_data(data_path)
    else:
        print(f"No data file found at {data_path}, using synthetic listings")
        df = generate_sample_listings()
    print_data_summary(df)
    is_valid, report = validate_data(df, sentinels=[-1, -999, "?"], strict=False)
    print(f"Validation passed: {is_valid}")
