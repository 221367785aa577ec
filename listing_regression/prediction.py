"""
Prediction Module
=================

Scores new listing records with a fitted model.

New records go through the same curation (stored imputation values) and
preprocessing (stored scaler parameters and level sets) as the training
data before they reach the model.
"""

import logging
from pathlib import Path
from datetime import datetime
from typing import Any, Dict, Optional

import pandas as pd

from .curation import ListingCurator
from .evaluation import rmse
from .model import FittedModel
from .preprocessing import ListingPreprocessor

logger = logging.getLogger(__name__)


def predict_listings(
    model: FittedModel,
    curator: ListingCurator,
    preprocessor: ListingPreprocessor,
    df: pd.DataFrame,
    id_column: Optional[str] = "listing_id"
) -> pd.DataFrame:
    """
    Predict the expected number of hits for new listings.

    Args:
        model: Fitted model
        curator: Curator fitted on the training table
        preprocessor: Preprocessor fitted on the training partition
        df: Raw listing records (target column optional)
        id_column: Identifier column copied to the output when present

    Returns:
        DataFrame with one row per input record and a 'predicted_hits' column
    """
    curated = curator.transform(df)
    X = preprocessor.transform(curated)
    predictions = model.predict(X)

    result = pd.DataFrame(index=df.index)
    if id_column and id_column in df.columns:
        result[id_column] = df[id_column]
    result['predicted_hits'] = predictions
    result['model'] = model.name

    target = curator.schema.target
    if target in curated.columns:
        result[target] = curated[target]
        result['error'] = result['predicted_hits'] - result[target]

    logger.info(f"Predicted {len(result)} listings with '{model.name}'")
    return result


def save_predictions(
    predictions: pd.DataFrame,
    output_dir: str = "data/predictions/"
) -> str:
    """
    Save predictions to a timestamped CSV file.

    Args:
        predictions: DataFrame from predict_listings
        output_dir: Directory for the CSV file

    Returns:
        Path to the saved file
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    csv_path = output_path / f"predictions_{datetime.now().strftime('%Y%m%d_%H%M%S')}.csv"
    predictions.to_csv(csv_path, index=False)
    logger.info(f"Predictions saved to {csv_path}")
    return str(csv_path)


def summarize_predictions(predictions: pd.DataFrame, target: str = "hits") -> Dict[str, Any]:
    """Basic statistics of a prediction table; RMSE when known hits are present."""
    summary = {
        'n_listings': int(len(predictions)),
        'mean_predicted_hits': float(predictions['predicted_hits'].mean()),
        'min_predicted_hits': float(predictions['predicted_hits'].min()),
        'max_predicted_hits': float(predictions['predicted_hits'].max()),
    }
    if target in predictions.columns:
        summary['rmse'] = rmse(predictions[target], predictions['predicted_hits'])
    return summary


def print_prediction_summary(predictions: pd.DataFrame, csv_path: Optional[str] = None) -> None:
    """
    Print a summary of the predictions.

    Args:
        predictions: DataFrame from predict_listings
        csv_path: Where the predictions were saved (optional)
    """
    summary = summarize_predictions(predictions)
    print("\n" + "=" * 50)
    print("PREDICTION SUMMARY")
    print("=" * 50)
    print(f"Model: {predictions['model'].iloc[0] if len(predictions) else '-'}")
    print(f"Listings: {summary['n_listings']}")
    print(f"Mean predicted hits: {summary['mean_predicted_hits']:.2f}")
    print(f"Range: {summary['min_predicted_hits']:.2f} – {summary['max_predicted_hits']:.2f}")
    if 'rmse' in summary:
        print(f"RMSE against known hits: {summary['rmse']:.4f}")
    if csv_path:
        print(f"Saved to: {csv_path}")
    print("=" * 50 + "\n")
