"""
Test Suite for Prediction Module
=================================

Tests for scoring new listings and summarizing the predictions.
"""

import pytest
import numpy as np
import pandas as pd
import matplotlib
matplotlib.use("Agg")

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from listing_regression.curation import ListingCurator
from listing_regression.data_loader import generate_sample_listings
from listing_regression.evaluation import rmse
from listing_regression.model import ModelSpec, train_model
from listing_regression.prediction import predict_listings, save_predictions, summarize_predictions
from listing_regression.preprocessing import preprocess_pipeline


@pytest.fixture
def fitted_stages():
    """Curator, preprocessor and linear model fitted on synthetic listings."""
    curator = ListingCurator().fit(generate_sample_listings(300, random_state=7))
    result = preprocess_pipeline(
        curator.transform(generate_sample_listings(300, random_state=7)),
        schema=curator.retained_schema
    )
    model = train_model(ModelSpec('linear'), result['X_train'], result['y_train'])
    return curator, result['preprocessor'], model


class TestSummarizePredictions:
    """Tests for summarize_predictions."""

    def test_known_rmse(self):
        predictions = pd.DataFrame({'predicted_hits': [0.0, 0.0], 'hits': [3, 4], 'model': 'm'})
        summary = summarize_predictions(predictions)

        assert summary['rmse'] == pytest.approx(np.sqrt(12.5))
        assert summary['n_listings'] == 2

    def test_without_known_hits(self):
        predictions = pd.DataFrame({'predicted_hits': [1.0, 2.0, 6.0], 'model': 'm'})
        summary = summarize_predictions(predictions)

        assert 'rmse' not in summary
        assert summary['mean_predicted_hits'] == pytest.approx(3.0)
        assert summary['min_predicted_hits'] == 1.0
        assert summary['max_predicted_hits'] == 6.0


class TestPredictListings:
    """Tests for predict_listings."""

    def test_new_listings(self, fitted_stages):
        curator, preprocessor, model = fitted_stages
        new = generate_sample_listings(40, random_state=11)

        predictions = predict_listings(model, curator, preprocessor, new)

        assert len(predictions) == 40
        for column in ['listing_id', 'predicted_hits', 'model', 'hits', 'error']:
            assert column in predictions.columns
        np.testing.assert_allclose(
            predictions['error'], predictions['predicted_hits'] - predictions['hits']
        )
        assert summarize_predictions(predictions)['rmse'] == pytest.approx(
            rmse(predictions['hits'], predictions['predicted_hits'])
        )

    def test_without_target(self, fitted_stages):
        curator, preprocessor, model = fitted_stages
        new = generate_sample_listings(10, random_state=11).drop(columns=['hits'])

        predictions = predict_listings(model, curator, preprocessor, new)

        assert 'error' not in predictions.columns
        assert 'rmse' not in summarize_predictions(predictions)

    def test_save(self, fitted_stages, tmp_path):
        curator, preprocessor, model = fitted_stages
        predictions = predict_listings(
            model, curator, preprocessor, generate_sample_listings(10, random_state=11)
        )

        csv_path = save_predictions(predictions, output_dir=str(tmp_path / "out"))

        saved = pd.read_csv(csv_path)
        assert len(saved) == 10
        assert 'predicted_hits' in saved.columns


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
