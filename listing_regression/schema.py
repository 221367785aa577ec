"""
Listing Schema Module
=====================

Explicit, ordered feature schema shared by curation, preprocessing and
training. Every stage validates its input frame against the schema instead
of relying on column positions.

Classes:
    - FeatureKind: Semantic type of a feature (drives imputation and encoding)
    - FeatureSpec: Name, kind and (for categoricals) the fixed level set
    - FeatureSchema: Ordered feature list plus the target column
"""

from enum import Enum
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

import pandas as pd
from pandas.api.types import is_numeric_dtype

from .errors import SchemaError


class FeatureKind(str, Enum):
    """Semantic type of a listing attribute."""

    COUNT = "count"
    FLAG = "flag"
    COST = "cost"
    MEASURE = "measure"
    CATEGORICAL = "categorical"


# Kinds imputed with the column mode; everything else uses the mean
MODE_IMPUTED_KINDS = (FeatureKind.COUNT, FeatureKind.FLAG, FeatureKind.CATEGORICAL)
INTEGER_KINDS = (FeatureKind.COUNT, FeatureKind.FLAG)


class FeatureSpec(NamedTuple):
    name: str
    kind: FeatureKind
    levels: Optional[Tuple[str, ...]] = None
    description: str = ""

    @property
    def imputation(self) -> str:
        return "mode" if self.kind in MODE_IMPUTED_KINDS else "mean"

    @property
    def is_categorical(self) -> bool:
        return self.kind == FeatureKind.CATEGORICAL


class FeatureSchema:
    """
    Ordered collection of feature specs plus the regression target.

    The order of ``features`` is the column order used to build feature
    matrices downstream.
    """

    def __init__(self, features: Iterable[FeatureSpec], target: str = "hits"):
        self.features: List[FeatureSpec] = list(features)
        self.target = target

        names = [f.name for f in self.features]
        if len(set(names)) != len(names):
            raise SchemaError(f"Duplicate feature names in schema: {names}")
        if target in names:
            raise SchemaError(f"Target '{target}' cannot also be a feature")
        for spec in self.features:
            if spec.is_categorical and not spec.levels:
                raise SchemaError(f"Categorical feature '{spec.name}' needs a level set")

        self._by_name: Dict[str, FeatureSpec] = {f.name: f for f in self.features}

    def __len__(self) -> int:
        return len(self.features)

    def __iter__(self):
        return iter(self.features)

    def __contains__(self, name: str) -> bool:
        return name in self._by_name

    def __repr__(self) -> str:
        return f"FeatureSchema({self.names}, target='{self.target}')"

    @property
    def names(self) -> List[str]:
        return [f.name for f in self.features]

    @property
    def categorical(self) -> List[FeatureSpec]:
        return [f for f in self.features if f.is_categorical]

    @property
    def numeric(self) -> List[FeatureSpec]:
        return [f for f in self.features if not f.is_categorical]

    def get(self, name: str) -> FeatureSpec:
        try:
            return self._by_name[name]
        except KeyError:
            raise SchemaError(f"Unknown feature '{name}'") from None

    def subset(self, names: Iterable[str]) -> "FeatureSchema":
        """Return a schema restricted to ``names``, keeping schema order."""
        keep = set(names)
        unknown = keep - set(self.names)
        if unknown:
            raise SchemaError(f"Features not in schema: {sorted(unknown)}")
        return FeatureSchema([f for f in self.features if f.name in keep], self.target)

    def validate(
        self,
        df: pd.DataFrame,
        stage: str,
        require_target: bool = True,
        require_complete: bool = True
    ) -> None:
        """
        Check that ``df`` carries every schema column with a usable dtype.

        Args:
            df: Frame to check
            stage: Name of the calling stage (used in error messages)
            require_target: Whether the target column must be present
            require_complete: Whether missing values are an error

        Raises:
            SchemaError: On missing columns, non-numeric numeric features
                or (when ``require_complete``) missing values
        """
        expected = self.names + ([self.target] if require_target else [])
        absent = [c for c in expected if c not in df.columns]
        if absent:
            raise SchemaError(f"[{stage}] missing columns: {absent}")

        for spec in self.numeric:
            if not is_numeric_dtype(df[spec.name]):
                raise SchemaError(
                    f"[{stage}] column '{spec.name}' should be numeric, got {df[spec.name].dtype}"
                )

        if require_complete:
            incomplete = [c for c in expected if df[c].isna().any()]
            if incomplete:
                raise SchemaError(f"[{stage}] columns still contain missing values: {incomplete}")


WEEKDAY_LEVELS = (
    "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"
)

LISTING_SCHEMA = FeatureSchema(
    [
        FeatureSpec("rooms", FeatureKind.COUNT, description="Total number of rooms"),
        FeatureSpec("bedrooms", FeatureKind.COUNT, description="Number of bedrooms"),
        FeatureSpec("bathrooms", FeatureKind.COUNT, description="Number of bathrooms"),
        FeatureSpec("floor", FeatureKind.COUNT, description="Floor the apartment is on"),
        FeatureSpec("total_floors", FeatureKind.COUNT, description="Floors in the building"),
        FeatureSpec("parking_spaces", FeatureKind.COUNT, description="Parking spaces included"),
        FeatureSpec("photo_count", FeatureKind.COUNT, description="Photos attached to the ad"),
        FeatureSpec("area_sqm", FeatureKind.MEASURE, description="Living area in square metres"),
        FeatureSpec("rent", FeatureKind.COST, description="Monthly rent"),
        FeatureSpec("condo_fee", FeatureKind.COST, description="Monthly condominium fee"),
        FeatureSpec("property_tax", FeatureKind.COST, description="Yearly property tax"),
        FeatureSpec("furnished", FeatureKind.FLAG, description="1 if furnished"),
        FeatureSpec("pets_allowed", FeatureKind.FLAG, description="1 if pets are allowed"),
        FeatureSpec("elevator", FeatureKind.FLAG, description="1 if the building has an elevator"),
        FeatureSpec(
            "posted_weekday",
            FeatureKind.CATEGORICAL,
            levels=WEEKDAY_LEVELS,
            description="Day of the week the ad was published"
        ),
    ],
    target="hits"
)

# Ad-performance counters and identifiers: they describe the ad, not the apartment
METADATA_COLUMNS = (
    "listing_id",
    "advertiser_id",
    "contacts",
    "favorites",
    "days_online",
    "ad_position",
    "created_at",
)

# Location fields too coarse to separate listings within one market
COARSE_GEOGRAPHY_COLUMNS = (
    "country",
    "state",
    "region",
)
