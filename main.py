#!/usr/bin/env python3
"""
Apartment Listing Regression Benchmark - Main Pipeline
=======================================================

Orchestrates the regression comparison on the apartment-listing dataset.

Phases:
    1. Curation - Sentinel handling, column retention and imputation
    2. Preprocessing - One-hot encoding, train/test split and min-max scaling
    3. Training - Linear, Poisson, tree, forest, SVR, MLP and voting ensemble
    4. Evaluation - RMSE comparison on the held-out partition
    5. Benchmark - Repeated-fit timing of the designated models

Usage:
    # Run complete pipeline
    python main.py --data data/raw/listings.csv

    # Run specific phase
    python main.py --data data/raw/listings.csv --phase curate

    # Run with custom config
    python main.py --data data/raw/listings.csv --config config/config.yaml

    # Create a synthetic dataset to try the pipeline
    python main.py --data data/raw/listings.csv --generate-sample 2000
"""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional

import pandas as pd

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from listing_regression.data_loader import (
    load_config, load_data, validate_data, print_data_summary, generate_sample_listings
)
from listing_regression.curation import curate_pipeline, print_curation_summary, DEFAULT_SENTINELS
from listing_regression.preprocessing import preprocess_pipeline, print_preprocessing_summary
from listing_regression.model import build_model_specs, train_models, print_model_summary
from listing_regression.evaluation import evaluate_models, print_evaluation_report
from listing_regression.benchmark import run_benchmarks, print_timing_report
from listing_regression.prediction import predict_listings, save_predictions, print_prediction_summary

PHASES = ['curate', 'preprocess', 'train', 'evaluate', 'benchmark']


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    """Configure logging for the pipeline."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_dir is not None:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        log_file = Path(log_dir) / f'pipeline_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log'
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def run_curation(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 1: Data Curation.

    Args:
        df: Raw listing table
        config: Configuration dictionary

    Returns:
        Curation result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 1: DATA CURATION")
    print("=" * 70)

    cur_config = config.get('curation', {})

    result = curate_pipeline(
        df,
        missing_threshold=cur_config.get('missing_threshold', 0.5),
        min_features=cur_config.get('min_features', 10),
        sentinels=cur_config.get('sentinels', DEFAULT_SENTINELS),
        column_sentinels=cur_config.get('column_sentinels') or {},
        save_path=config.get('data', {}).get('curated_path', 'data/interim/curated_listings.csv')
    )

    print_curation_summary(result['report'])

    return result


def run_preprocessing(
    cur_result: Dict[str, Any],
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute Phase 2: Data Preprocessing.

    Args:
        cur_result: Curation result dictionary
        config: Configuration dictionary

    Returns:
        Preprocessing result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 2: DATA PREPROCESSING")
    print("=" * 70)

    prep_config = config.get('preprocessing', {})

    result = preprocess_pipeline(
        cur_result['curated'],
        schema=cur_result['schema'],
        test_size=prep_config.get('test_size', 0.2),
        random_state=prep_config.get('random_state', 42),
        scaler_fit_on=prep_config.get('scaler_fit_on', 'train'),
        unknown_category=prep_config.get('unknown_category', 'error'),
        save_preprocessor=config.get('output', {}).get('preprocessor_path', 'models/preprocessor.joblib')
    )

    print_preprocessing_summary(result)

    return result


def run_training(
    prep_result: Dict[str, Any],
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute Phase 3: Model Training.

    Args:
        prep_result: Preprocessing result dictionary
        config: Configuration dictionary

    Returns:
        Fitted models keyed by name
    """
    print("\n" + "=" * 70)
    print("PHASE 3: MODEL TRAINING")
    print("=" * 70)

    Path(config.get('output', {}).get('model_dir', 'models/')).mkdir(parents=True, exist_ok=True)

    models = train_models(
        build_model_specs(config),
        prep_result['X_train'],
        prep_result['y_train'],
        feature_names=prep_result['feature_names'],
        time_budget=config.get('training', {}).get('time_budget'),
        save_dir=config.get('output', {}).get('model_dir', 'models/')
    )

    print_model_summary(models)

    return models


def run_evaluation(
    models: Dict[str, Any],
    prep_result: Dict[str, Any],
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute Phase 4: Model Evaluation.

    Args:
        models: Fitted models keyed by name
        prep_result: Preprocessing result dictionary
        config: Configuration dictionary

    Returns:
        Evaluation result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 4: MODEL EVALUATION")
    print("=" * 70)

    result = evaluate_models(
        models,
        prep_result['X_test'],
        prep_result['y_test'],
        output_dir=config.get('output', {}).get('reports_path', 'reports/'),
        show_plots=False
    )

    print_evaluation_report(result['metrics'])

    return result


def run_benchmark(
    prep_result: Dict[str, Any],
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute Phase 5: Fit-time Benchmark.

    Args:
        prep_result: Preprocessing result dictionary
        config: Configuration dictionary

    Returns:
        Benchmark result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 5: FIT-TIME BENCHMARK")
    print("=" * 70)

    bench_config = config.get('benchmark', {})
    specs = {s.name: s for s in build_model_specs(config)}
    names = bench_config.get('models', ['linear'])
    unknown = [n for n in names if n not in specs]
    if unknown:
        raise ValueError(f"Benchmark models not defined in config: {unknown}")

    result = run_benchmarks(
        [specs[n] for n in names],
        prep_result['X_train'],
        prep_result['y_train'],
        n_runs=bench_config.get('n_runs', 100),
        time_budget=bench_config.get('time_budget'),
        output_dir=config.get('output', {}).get('reports_path', 'reports/'),
        show_plots=False
    )

    print_timing_report(result['results'])

    return result


def run_prediction(
    predict_path: str,
    model,
    cur_result: Dict[str, Any],
    prep_result: Dict[str, Any],
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Score new listings with the best model.

    Args:
        predict_path: CSV of listings to score
        model: Fitted model to use
        cur_result: Curation result dictionary
        prep_result: Preprocessing result dictionary
        config: Configuration dictionary

    Returns:
        Dictionary with the predictions table and CSV path
    """
    print("\n" + "=" * 70)
    print("PREDICTION")
    print("=" * 70)

    new_listings = load_data(predict_path)
    predictions = predict_listings(
        model, cur_result['curator'], prep_result['preprocessor'], new_listings
    )
    csv_path = save_predictions(
        predictions, config.get('data', {}).get('predictions_path', 'data/predictions/')
    )
    print_prediction_summary(predictions, csv_path)

    return {'predictions': predictions, 'csv_path': csv_path}


def run_full_pipeline(
    data_path: str,
    config_path: str = "config/config.yaml",
    predict_path: Optional[str] = None
) -> Dict[str, Any]:
    """
    Execute the complete pipeline.

    Args:
        data_path: Path to input CSV file
        config_path: Path to configuration file
        predict_path: CSV of new listings to score with the best model (optional)

    Returns:
        Dictionary containing all phase results
    """
    config = load_config(config_path)
    return run_phases(data_path, config, PHASES, predict_path)


def run_phases(
    data_path: str,
    config: Dict[str, Any],
    phases: list,
    predict_path: Optional[str] = None
) -> Dict[str, Any]:
    """
    Run the pipeline up to and including the requested phases.

    Earlier phases are always executed because every phase consumes the
    output of the previous one.

    Args:
        data_path: Path to input CSV file
        config: Configuration dictionary
        phases: Phases to run (subset of PHASES)
        predict_path: CSV of new listings to score (optional)

    Returns:
        Dictionary containing the results of the executed phases
    """
    print("\n" + "=" * 70)
    print("APARTMENT LISTING REGRESSION PIPELINE")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    df = load_data(data_path)
    print_data_summary(df)

    sentinels = config.get('curation', {}).get('sentinels', DEFAULT_SENTINELS)
    is_valid, _ = validate_data(df, sentinels=sentinels, strict=False)
    if not is_valid:
        print("⚠️  Data quality issues detected. Curation will handle them...")

    last = max(PHASES.index(p) for p in phases)
    results: Dict[str, Any] = {'config': config, 'data_shape': df.shape}

    results['curation'] = run_curation(df, config)
    if last >= PHASES.index('preprocess'):
        results['preprocessing'] = run_preprocessing(results['curation'], config)
    if last >= PHASES.index('train'):
        results['models'] = run_training(results['preprocessing'], config)
    if last >= PHASES.index('evaluate'):
        results['evaluation'] = run_evaluation(results['models'], results['preprocessing'], config)
    if 'benchmark' in phases:
        results['benchmark'] = run_benchmark(results['preprocessing'], config)

    if predict_path and 'evaluation' in results:
        best = results['evaluation']['best_model']
        results['prediction'] = run_prediction(
            predict_path, results['models'][best],
            results['curation'], results['preprocessing'], config
        )

    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  • Input data: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"  • Features retained: {len(results['curation']['schema'])}")
    if 'evaluation' in results:
        best = results['evaluation']['best_model']
        print(f"  • Best model: {best} "
              f"(RMSE {results['evaluation']['metrics'][best]['rmse']:.4f})")
    if 'benchmark' in results:
        for name, r in results['benchmark']['results'].items():
            print(f"  • Fit time {name}: {r.mean:.6f}s ± {r.std:.6f}s over {r.n_runs} runs")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return results


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Regression benchmark on apartment listings",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --data data/raw/listings.csv
  python main.py --data data/raw/listings.csv --phase evaluate
  python main.py --data data/raw/listings.csv --generate-sample 2000
        """
    )

    parser.add_argument(
        '--data', '-d',
        type=str,
        required=True,
        help='Path to the raw listing CSV file'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/config.yaml',
        help='Path to configuration file (default: config/config.yaml)'
    )

    parser.add_argument(
        '--phase', '-p',
        type=str,
        choices=PHASES + ['all'],
        default='all',
        help='Run the pipeline up to this phase (default: all)'
    )

    parser.add_argument(
        '--predict',
        type=str,
        default=None,
        help='CSV of new listings to score with the best model'
    )

    parser.add_argument(
        '--generate-sample',
        type=int,
        default=None,
        metavar='N',
        help='Write N synthetic listings to --data before running'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args()

    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        return 1

    config = load_config(args.config)
    level = 'DEBUG' if args.verbose else config.get('logging', {}).get('level', 'INFO')
    setup_logging(level, log_dir=config.get('logging', {}).get('dir', 'logs'))

    if args.generate_sample:
        Path(args.data).parent.mkdir(parents=True, exist_ok=True)
        generate_sample_listings(args.generate_sample).to_csv(args.data, index=False)
        print(f"Wrote {args.generate_sample} synthetic listings to {args.data}")

    if not Path(args.data).exists():
        print(f"Error: Data file not found: {args.data}")
        print("\nPlace the raw listing CSV there or pass --generate-sample N.")
        return 1

    phases = PHASES if args.phase == 'all' else PHASES[:PHASES.index(args.phase) + 1]

    try:
        run_phases(args.data, config, phases, args.predict)
        return 0

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
