"""
Data Curation Module
====================

Turns the raw listing table into the curated table: sentinel codes become
explicit missing values, uninformative columns are dropped and the remaining
gaps are imputed.

Classes:
    - ListingCurator: fit/transform curator holding the retention decisions
      and imputation values

Functions:
    - curate_pipeline: Run curation end to end and optionally save the table
    - print_curation_summary: Console summary of the curation report
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from .errors import CurationError, ImputationError, SchemaError
from .schema import (
    COARSE_GEOGRAPHY_COLUMNS,
    INTEGER_KINDS,
    LISTING_SCHEMA,
    METADATA_COLUMNS,
    FeatureSchema,
)

logger = logging.getLogger(__name__)

DEFAULT_SENTINELS = (-1, -999, "?", "NA", "n/a", "")


def mask_sentinels(series: pd.Series, sentinels: Iterable[Any]) -> pd.Series:
    """Replace sentinel codes in ``series`` with NaN."""
    sentinels = list(sentinels)
    if not sentinels:
        return series
    masked = series.mask(series.isin(sentinels))
    if masked.dtype == object:
        # CSV columns holding a text sentinel keep numbers as strings
        tokens = {str(s) for s in sentinels}
        as_text = masked.astype(str).str.strip()
        masked = masked.mask(masked.notna() & as_text.isin(tokens))
    return masked


class ListingCurator:
    """
    Curation of raw listing records into a complete, fixed-schema table.

    ``fit`` decides which columns survive and computes the imputation
    statistics from non-missing cells; ``transform`` applies those
    decisions to any table with the same raw layout.
    """

    def __init__(
        self,
        schema: FeatureSchema = LISTING_SCHEMA,
        missing_threshold: float = 0.5,
        min_features: int = 10,
        sentinels: Sequence[Any] = DEFAULT_SENTINELS,
        column_sentinels: Optional[Dict[str, Sequence[Any]]] = None,
        metadata_columns: Sequence[str] = METADATA_COLUMNS,
        geography_columns: Sequence[str] = COARSE_GEOGRAPHY_COLUMNS
    ):
        """
        Initialize the curator.

        Args:
            schema: Listing schema the curated table must follow
            missing_threshold: Drop columns whose missing fraction exceeds this
            min_features: Minimum number of retained features
            sentinels: Codes meaning "missing" in every column
            column_sentinels: Extra codes for specific columns
            metadata_columns: Ad metadata columns, always dropped
            geography_columns: Coarse geography columns, always dropped
        """
        if not 0.0 <= missing_threshold <= 1.0:
            raise ValueError(f"missing_threshold must be in [0, 1], got {missing_threshold}")
        if min_features < 1:
            raise ValueError(f"min_features must be positive, got {min_features}")

        self.schema = schema
        self.missing_threshold = missing_threshold
        self.min_features = min_features
        self.sentinels = list(sentinels)
        self.column_sentinels = {k: list(v) for k, v in (column_sentinels or {}).items()}
        self.metadata_columns = list(metadata_columns)
        self.geography_columns = list(geography_columns)

        self.retained_schema: Optional[FeatureSchema] = None
        self.imputation_values: Dict[str, Any] = {}
        self.report: Dict[str, Any] = {}
        self._is_fitted = False

    def _normalize_missing(self, df: pd.DataFrame) -> pd.DataFrame:
        """Mask sentinels and coerce numeric schema columns to numbers."""
        df = df.copy()
        for col in df.columns:
            codes = self.sentinels + self.column_sentinels.get(col, [])
            df[col] = mask_sentinels(df[col], codes)

        for spec in self.schema.numeric:
            if spec.name not in df.columns:
                continue
            try:
                values = pd.to_numeric(df[spec.name], errors="raise")
            except (ValueError, TypeError) as e:
                raise SchemaError(f"Non-numeric values in column '{spec.name}': {e}") from e
            codes = self.sentinels + self.column_sentinels.get(spec.name, [])
            df[spec.name] = mask_sentinels(values, [c for c in codes if not isinstance(c, str)])

        target = self.schema.target
        if target in df.columns:
            try:
                df[target] = pd.to_numeric(df[target], errors="raise")
            except (ValueError, TypeError) as e:
                raise SchemaError(f"Non-numeric values in target '{target}': {e}") from e

        return df

    def fit(self, df: pd.DataFrame) -> 'ListingCurator':
        """
        Decide column retention and compute imputation values.

        Args:
            df: Raw listing table

        Returns:
            Self for method chaining

        Raises:
            SchemaError: If schema columns or the target are absent
            CurationError: If the target has gaps or too few features remain
            ImputationError: If a retained column has no observed values
        """
        expected = self.schema.names + [self.schema.target]
        absent = [c for c in expected if c not in df.columns]
        if absent:
            raise SchemaError(f"Raw table is missing schema columns: {absent}")

        df = self._normalize_missing(df)

        n_missing_target = int(df[self.schema.target].isna().sum())
        if n_missing_target:
            raise CurationError(
                f"Target '{self.schema.target}' is missing in {n_missing_target} rows"
            )

        dropped: Dict[str, str] = {}
        missing_fraction = df.isna().mean()

        for col in df.columns:
            if col == self.schema.target:
                continue
            if col in self.metadata_columns:
                dropped[col] = "metadata"
            elif col in self.geography_columns:
                dropped[col] = "geography"
            elif missing_fraction[col] > self.missing_threshold:
                dropped[col] = "missing"
            elif df[col].nunique(dropna=True) <= 1 and missing_fraction[col] < 1.0:
                dropped[col] = "constant"
            elif col not in self.schema:
                dropped[col] = "unlisted"

        retained = [name for name in self.schema.names if name not in dropped]
        for col, reason in dropped.items():
            logger.info(f"Dropping column '{col}' ({reason})")

        if len(retained) < self.min_features:
            raise CurationError(
                f"Only {len(retained)} features retained, at least {self.min_features} required. "
                f"Dropped: {dropped}"
            )

        self.retained_schema = self.schema.subset(retained)

        self.imputation_values = {}
        for spec in self.retained_schema:
            observed = df[spec.name].dropna()
            if observed.empty:
                raise ImputationError(f"Column '{spec.name}' has no observed values to impute from")
            if spec.imputation == "mode":
                value = observed.mode().iloc[0]
            else:
                value = float(observed.mean())
            if isinstance(value, np.generic):
                value = value.item()
            self.imputation_values[spec.name] = value

        self.report = {
            "n_rows": int(len(df)),
            "n_raw_columns": int(df.shape[1]),
            "retained": retained,
            "dropped": dropped,
            "missing_fraction": {c: float(missing_fraction[c]) for c in retained},
            "imputed_cells": {c: int(df[c].isna().sum()) for c in retained},
            "imputation_values": dict(self.imputation_values),
        }

        self._is_fitted = True
        logger.info(
            f"Curator fitted: {len(retained)} features retained, {len(dropped)} columns dropped"
        )
        return self

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Apply the fitted retention decisions and imputation values.

        The target column is carried over when present and must be complete.

        Args:
            df: Raw (or already curated) listing table

        Returns:
            Curated DataFrame with the retained features (and target)
        """
        if not self._is_fitted:
            raise ValueError("Curator must be fitted before transform. Call fit() first.")

        absent = [c for c in self.retained_schema.names if c not in df.columns]
        if absent:
            raise SchemaError(f"Table is missing retained columns: {absent}")

        target = self.schema.target
        columns = self.retained_schema.names + ([target] if target in df.columns else [])
        curated = self._normalize_missing(df[columns])

        for spec in self.retained_schema:
            curated[spec.name] = curated[spec.name].fillna(self.imputation_values[spec.name])
            if spec.kind in INTEGER_KINDS:
                curated[spec.name] = curated[spec.name].round().astype(np.int64)

        if target in curated.columns:
            if curated[target].isna().any():
                raise CurationError(f"Target '{target}' has missing values")
            curated[target] = curated[target].astype(np.int64)

        self.retained_schema.validate(
            curated, stage="curation", require_target=target in curated.columns
        )
        return curated

    def fit_transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """Fit the curator and return the curated table."""
        self.fit(df)
        return self.transform(df)


def curate_pipeline(
    df: pd.DataFrame,
    schema: FeatureSchema = LISTING_SCHEMA,
    missing_threshold: float = 0.5,
    min_features: int = 10,
    sentinels: Sequence[Any] = DEFAULT_SENTINELS,
    column_sentinels: Optional[Dict[str, Sequence[Any]]] = None,
    save_path: Optional[str] = None
) -> Dict[str, Any]:
    """
    Complete curation step for the raw listing table.

    Args:
        df: Raw listing DataFrame
        schema: Listing schema
        missing_threshold: Missing fraction above which a column is dropped
        min_features: Minimum number of retained features
        sentinels: Codes meaning "missing"
        column_sentinels: Extra per-column codes
        save_path: Path to save the curated table as CSV (optional)

    Returns:
        Dictionary containing:
            - curated: Curated DataFrame
            - curator: Fitted ListingCurator
            - schema: Retained FeatureSchema
            - report: Curation report
    """
    logger.info("=" * 60)
    logger.info("STARTING DATA CURATION")
    logger.info("=" * 60)

    curator = ListingCurator(
        schema=schema,
        missing_threshold=missing_threshold,
        min_features=min_features,
        sentinels=sentinels,
        column_sentinels=column_sentinels
    )
    curated = curator.fit_transform(df)

    if save_path:
        Path(save_path).parent.mkdir(parents=True, exist_ok=True)
        curated.to_csv(save_path, index=False)
        logger.info(f"Curated table saved to {save_path}")

    logger.info("=" * 60)
    logger.info("CURATION COMPLETE")
    logger.info(f"  Rows: {len(curated)}")
    logger.info(f"  Features retained: {len(curator.retained_schema)}")
    logger.info("=" * 60)

    return {
        'curated': curated,
        'curator': curator,
        'schema': curator.retained_schema,
        'report': curator.report
    }


def print_curation_summary(report: Dict[str, Any]) -> None:
    """
    Print a summary of the curation report.

    Args:
        report: Report dictionary from ListingCurator
    """
    print("\n" + "=" * 50)
    print("CURATION SUMMARY")
    print("=" * 50)
    print(f"Rows: {report['n_rows']}")
    print(f"Raw columns: {report['n_raw_columns']}")
    print(f"Retained features: {len(report['retained'])}")

    by_reason: Dict[str, List[str]] = {}
    for col, reason in report['dropped'].items():
        by_reason.setdefault(reason, []).append(col)
    print("\nDropped columns:")
    for reason, cols in sorted(by_reason.items()):
        print(f"  - {reason}: {', '.join(cols)}")

    print("\nImputation:")
    for col in report['retained']:
        n = report['imputed_cells'][col]
        if n:
            print(f"  - {col}: {n} cells <- {report['imputation_values'][col]}")
    print("=" * 50 + "\n")
