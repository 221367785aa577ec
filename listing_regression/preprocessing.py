"""
Data Preprocessing Module
=========================

Turns the curated listing table into model-ready feature matrices.

Functions:
    - ListingPreprocessor.split: Seeded random train/test partition
    - ListingPreprocessor.fit: Learn min-max parameters on the reference partition
    - ListingPreprocessor.transform: One-hot encoding plus min-max scaling
    - preprocess_pipeline: Split, fit and transform in one call
"""

import logging
from pathlib import Path
from typing import Dict, Any, Tuple, Optional, List

import pandas as pd
import numpy as np
from sklearn.model_selection import train_test_split
from sklearn.preprocessing import MinMaxScaler, OneHotEncoder
import joblib

from .errors import SchemaError, UnseenCategoryError
from .schema import FeatureSchema, LISTING_SCHEMA

logger = logging.getLogger(__name__)

SCALER_FIT_MODES = ("train", "full")
UNKNOWN_CATEGORY_POLICIES = ("error", "bucket")
UNKNOWN_LEVEL = "unknown"


class ListingPreprocessor:
    """
    Preprocessing pipeline for curated listing records.

    Categorical features are one-hot encoded against the fixed level set of
    the schema; every other feature is min-max scaled with parameters learned
    on the reference partition only. Indicator columns are never scaled.
    """

    def __init__(
        self,
        schema: FeatureSchema = LISTING_SCHEMA,
        test_size: float = 0.2,
        random_state: int = 42,
        scaler_fit_on: str = "train",
        unknown_category: str = "error"
    ):
        """
        Initialize the preprocessor.

        Args:
            schema: Schema of the curated table
            test_size: Fraction of rows held out for testing
            random_state: Seed of the train/test shuffle
            scaler_fit_on: "train" fits the scaler on the training partition;
                "full" fits it on train+test (leaks test statistics, kept only
                to reproduce earlier reported numbers)
            unknown_category: "error" rejects unseen categorical levels;
                "bucket" maps them to an extra "<feature>_unknown" column
        """
        if not 0.0 < test_size < 1.0:
            raise ValueError(f"test_size must be in (0, 1), got {test_size}")
        if scaler_fit_on not in SCALER_FIT_MODES:
            raise ValueError(f"scaler_fit_on must be one of {SCALER_FIT_MODES}, got '{scaler_fit_on}'")
        if unknown_category not in UNKNOWN_CATEGORY_POLICIES:
            raise ValueError(
                f"unknown_category must be one of {UNKNOWN_CATEGORY_POLICIES}, got '{unknown_category}'"
            )

        self.schema = schema
        self.test_size = test_size
        self.random_state = random_state
        self.scaler_fit_on = scaler_fit_on
        self.unknown_category = unknown_category

        self.scaler: Optional[MinMaxScaler] = None
        self.encoders: Dict[str, OneHotEncoder] = {}
        self.numeric_columns: List[str] = [f.name for f in schema.numeric]
        self.categorical_columns: List[str] = [f.name for f in schema.categorical]
        self._is_fitted = False

    def split(self, df: pd.DataFrame) -> Tuple[pd.Index, pd.Index]:
        """
        Partition row labels into training and test sets.

        The same ``random_state`` always yields the same partition.

        Args:
            df: Curated DataFrame

        Returns:
            Tuple of (train_index, test_index)

        Raises:
            SchemaError: If row labels repeat
        """
        if len(df) < 2:
            raise ValueError(f"Need at least 2 rows to split, got {len(df)}")
        if not df.index.is_unique:
            raise SchemaError(
                f"Row labels must be unique to split by label; "
                f"{int(df.index.duplicated().sum())} repeated labels found (reset the index first)"
            )

        train_idx, test_idx = train_test_split(
            df.index.to_numpy(),
            test_size=self.test_size,
            random_state=self.random_state,
            shuffle=True
        )

        logger.info(
            f"Train/Test split: {len(train_idx)} train rows, {len(test_idx)} test rows "
            f"(seed={self.random_state})"
        )
        return pd.Index(train_idx), pd.Index(test_idx)

    def _levels(self, column: str) -> List[str]:
        levels = list(self.schema.get(column).levels)
        if self.unknown_category == "bucket":
            levels.append(UNKNOWN_LEVEL)
        return levels

    def fit(self, df: pd.DataFrame, train_index: Optional[pd.Index] = None) -> 'ListingPreprocessor':
        """
        Fit the preprocessor (learn scaling parameters).

        Args:
            df: Curated DataFrame
            train_index: Row labels of the training partition. When omitted,
                ``df`` itself is the reference partition.

        Returns:
            Self for method chaining
        """
        self.schema.validate(df, stage="preprocessing", require_target=False)

        if train_index is not None and not df.index.is_unique:
            raise SchemaError("Row labels must be unique when selecting the training partition")

        if self.scaler_fit_on == "full" or train_index is None:
            reference = df
        else:
            reference = df.loc[train_index]

        if self.scaler_fit_on == "full" and train_index is not None:
            logger.warning(
                "Fitting MinMaxScaler on train+test rows: test statistics leak into training"
            )

        if reference.empty:
            raise ValueError("Reference partition for the scaler is empty")

        self.scaler = MinMaxScaler(feature_range=(0, 1), clip=True)
        self.scaler.fit(reference[self.numeric_columns].to_numpy(dtype=float))
        logger.info(f"Fitted MinMaxScaler on {len(reference)} rows ({self.scaler_fit_on})")

        self.encoders = {}
        for column in self.categorical_columns:
            levels = self._levels(column)
            encoder = OneHotEncoder(
                categories=[levels],
                handle_unknown="error",
                sparse_output=False,
                dtype=np.float64
            )
            encoder.fit(np.array(levels, dtype=object).reshape(-1, 1))
            self.encoders[column] = encoder

        self._is_fitted = True
        return self

    def _encode(self, df: pd.DataFrame, column: str) -> np.ndarray:
        values = df[column].astype(str)
        levels = set(self.schema.get(column).levels)
        unseen = set(values.unique()) - levels

        if unseen:
            if self.unknown_category == "error":
                raise UnseenCategoryError(column, unseen)
            logger.warning(f"Mapping unseen levels {sorted(unseen)} of '{column}' to '{UNKNOWN_LEVEL}'")
            values = values.where(values.isin(levels), UNKNOWN_LEVEL)

        return self.encoders[column].transform(values.to_numpy(dtype=object).reshape(-1, 1))

    def transform(self, df: pd.DataFrame) -> np.ndarray:
        """
        Transform data using fitted parameters.

        Args:
            df: Curated DataFrame (target column optional)

        Returns:
            Feature matrix; scaled numeric columns first, then indicators
        """
        if not self._is_fitted:
            raise ValueError("Preprocessor must be fitted before transform. Call fit() first.")

        self.schema.validate(df, stage="preprocessing", require_target=False)

        blocks = [self.scaler.transform(df[self.numeric_columns].to_numpy(dtype=float))]
        for column in self.categorical_columns:
            blocks.append(self._encode(df, column))

        return np.hstack(blocks)

    def transform_target(self, df: pd.DataFrame) -> np.ndarray:
        """Return the target vector of ``df`` in row order."""
        if self.schema.target not in df.columns:
            raise ValueError(f"Target column '{self.schema.target}' not found")
        return df[self.schema.target].to_numpy(dtype=float)

    def fit_transform(self, df: pd.DataFrame) -> np.ndarray:
        """
        Fit and transform in one step.

        Args:
            df: DataFrame to fit and transform

        Returns:
            Feature matrix
        """
        self.fit(df)
        return self.transform(df)

    @property
    def scaler_params(self) -> Dict[str, Tuple[float, float]]:
        """Per-column (min, max) learned from the reference partition."""
        if not self._is_fitted:
            raise ValueError("Preprocessor must be fitted first.")
        return {
            col: (float(lo), float(hi))
            for col, lo, hi in zip(self.numeric_columns, self.scaler.data_min_, self.scaler.data_max_)
        }

    def get_feature_names(self) -> List[str]:
        """
        Names of the feature matrix columns, in order.

        Returns:
            List of feature names; indicators are named '<feature>_<level>'
        """
        if not self._is_fitted:
            raise ValueError("Preprocessor must be fitted first.")

        names = list(self.numeric_columns)
        for column in self.categorical_columns:
            names.extend(f"{column}_{level}" for level in self._levels(column))
        return names

    @property
    def indicator_mask(self) -> np.ndarray:
        """Boolean mask over feature columns, True for one-hot indicators."""
        n_numeric = len(self.numeric_columns)
        mask = np.zeros(len(self.get_feature_names()), dtype=bool)
        mask[n_numeric:] = True
        return mask

    def save(self, filepath: str) -> None:
        """
        Save the preprocessor state to disk.

        Args:
            filepath: Path to save the preprocessor
        """
        state = {
            'schema': self.schema,
            'test_size': self.test_size,
            'random_state': self.random_state,
            'scaler_fit_on': self.scaler_fit_on,
            'unknown_category': self.unknown_category,
            'scaler': self.scaler,
            'encoders': self.encoders,
            '_is_fitted': self._is_fitted
        }
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(state, filepath)
        logger.info(f"Preprocessor saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'ListingPreprocessor':
        """
        Load a preprocessor from disk.

        Args:
            filepath: Path to the saved preprocessor

        Returns:
            Loaded ListingPreprocessor instance
        """
        state = joblib.load(filepath)

        preprocessor = cls(
            schema=state['schema'],
            test_size=state['test_size'],
            random_state=state['random_state'],
            scaler_fit_on=state['scaler_fit_on'],
            unknown_category=state['unknown_category']
        )
        preprocessor.scaler = state['scaler']
        preprocessor.encoders = state['encoders']
        preprocessor._is_fitted = state['_is_fitted']

        logger.info(f"Preprocessor loaded from {filepath}")
        return preprocessor


def preprocess_pipeline(
    curated: pd.DataFrame,
    schema: FeatureSchema = LISTING_SCHEMA,
    test_size: float = 0.2,
    random_state: int = 42,
    scaler_fit_on: str = "train",
    unknown_category: str = "error",
    save_preprocessor: Optional[str] = None
) -> Dict[str, Any]:
    """
    Complete preprocessing pipeline for the curated listing table.

    Args:
        curated: Curated DataFrame (features + target)
        schema: Schema of the curated table
        test_size: Held-out fraction
        random_state: Split seed
        scaler_fit_on: Scaler reference partition ("train" or "full")
        unknown_category: Unseen categorical level policy
        save_preprocessor: Path to save the fitted preprocessor

    Returns:
        Dictionary containing:
            - X_train, X_test, y_train, y_test: Split datasets
            - train_index, test_index: Row labels of each partition
            - preprocessor: Fitted ListingPreprocessor
            - feature_names: Names of the feature columns
            - scaler_params: Per-column (min, max)
    """
    logger.info("=" * 60)
    logger.info("STARTING DATA PREPROCESSING")
    logger.info("=" * 60)

    preprocessor = ListingPreprocessor(
        schema=schema,
        test_size=test_size,
        random_state=random_state,
        scaler_fit_on=scaler_fit_on,
        unknown_category=unknown_category
    )

    train_index, test_index = preprocessor.split(curated)
    preprocessor.fit(curated, train_index)

    train_df = curated.loc[train_index]
    test_df = curated.loc[test_index]

    X_train = preprocessor.transform(train_df)
    X_test = preprocessor.transform(test_df)
    y_train = preprocessor.transform_target(train_df)
    y_test = preprocessor.transform_target(test_df)

    if save_preprocessor:
        preprocessor.save(save_preprocessor)

    result = {
        'X_train': X_train,
        'X_test': X_test,
        'y_train': y_train,
        'y_test': y_test,
        'train_index': train_index,
        'test_index': test_index,
        'preprocessor': preprocessor,
        'feature_names': preprocessor.get_feature_names(),
        'scaler_params': preprocessor.scaler_params
    }

    logger.info("=" * 60)
    logger.info("PREPROCESSING COMPLETE")
    logger.info(f"  Training samples: {len(X_train)}")
    logger.info(f"  Test samples: {len(X_test)}")
    logger.info(f"  Features per sample: {X_train.shape[1]}")
    logger.info("=" * 60)

    return result


def print_preprocessing_summary(result: Dict[str, Any]) -> None:
    """
    Print a summary of the preprocessing results.

    Args:
        result: Dictionary from preprocess_pipeline
    """
    preprocessor = result['preprocessor']
    print("\n" + "=" * 50)
    print("PREPROCESSING SUMMARY")
    print("=" * 50)
    print(f"Training samples: {result['X_train'].shape[0]}")
    print(f"Test samples: {result['X_test'].shape[0]}")
    print(f"Features per sample: {result['X_train'].shape[1]}")
    print(f"Indicator columns: {int(preprocessor.indicator_mask.sum())}")
    print(f"\nTest fraction: {preprocessor.test_size}")
    print(f"Split seed: {preprocessor.random_state}")
    print(f"Scaler fitted on: {preprocessor.scaler_fit_on}")
    print(f"Unseen categories: {preprocessor.unknown_category}")
    print("=" * 50 + "\n")
