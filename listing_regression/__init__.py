"""
Apartment Listing Regression Benchmark
======================================

Curates an apartment-listing table, fits a set of off-the-shelf regressors
to predict ad hits, compares them by RMSE and benchmarks their fit time.

Modules:
    - data_loader: Configuration, CSV ingestion and synthetic listings
    - schema: Named feature schema shared by every stage
    - curation: Sentinel handling, column retention and imputation
    - preprocessing: One-hot encoding, train/test split and min-max scaling
    - model: Model specs, training and the averaging ensemble
    - evaluation: RMSE-based model comparison
    - benchmark: Repeated-fit timing harness
    - prediction: Scoring of new listings
"""

__version__ = "1.0.0"
__author__ = "Listing Regression Contributors"
