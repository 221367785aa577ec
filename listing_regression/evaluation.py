"""
Model Evaluation Module
=======================

Scores fitted models on the held-out partition.

Features:
    - RMSE (primary metric), MAE and R² per model
    - Metrics report saved as JSON
    - Model comparison bar chart
"""

import logging
import json
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

import numpy as np
import matplotlib.pyplot as plt
from sklearn.metrics import mean_squared_error, mean_absolute_error, r2_score

from .model import FittedModel

logger = logging.getLogger(__name__)


def _check_targets(y_true: np.ndarray, y_pred: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    y_true = np.asarray(y_true, dtype=float).ravel()
    y_pred = np.asarray(y_pred, dtype=float).ravel()
    if len(y_true) != len(y_pred):
        raise ValueError(
            f"Predictions and actuals differ in length: {len(y_pred)} vs {len(y_true)}"
        )
    if len(y_true) == 0:
        raise ValueError("Cannot evaluate on an empty test set")
    return y_true, y_pred


def rmse(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """
    Root-mean-squared error between actual and predicted targets.

    Args:
        y_true: Ground truth values
        y_pred: Predicted values

    Returns:
        sqrt(mean((y_pred - y_true)^2))

    Raises:
        ValueError: On length mismatch or empty input
    """
    y_true, y_pred = _check_targets(y_true, y_pred)
    return float(np.sqrt(mean_squared_error(y_true, y_pred)))


def calculate_metrics(y_true: np.ndarray, y_pred: np.ndarray) -> Dict[str, float]:
    """
    Calculate evaluation metrics for one set of predictions.

    Args:
        y_true: Ground truth values
        y_pred: Predicted values

    Returns:
        Dictionary with rmse, mae, r2, mean_error and n_samples
    """
    y_true, y_pred = _check_targets(y_true, y_pred)
    errors = y_true - y_pred

    return {
        'rmse': float(np.sqrt(mean_squared_error(y_true, y_pred))),
        'mae': float(mean_absolute_error(y_true, y_pred)),
        # R² is undefined for a single sample
        'r2': float(r2_score(y_true, y_pred)) if len(y_true) > 1 else float('nan'),
        'mean_error': float(np.mean(errors)),
        'max_error': float(np.max(np.abs(errors))),
        'n_samples': int(len(y_true))
    }


def evaluate_model(
    model: FittedModel,
    X_test: np.ndarray,
    y_test: np.ndarray
) -> Dict[str, Any]:
    """
    Predict the test partition with ``model`` and score it.

    Args:
        model: Fitted model
        X_test: Test features
        y_test: Test targets

    Returns:
        Metrics dictionary, tagged with the model name, kind and convergence
    """
    y_pred = model.predict(X_test)
    metrics = calculate_metrics(y_test, y_pred)
    metrics.update({
        'model': model.name,
        'kind': model.kind.value,
        'converged': bool(model.converged),
    })
    return metrics


def plot_model_comparison(
    metrics: Dict[str, Dict[str, Any]],
    figsize: Tuple[int, int] = (12, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Create a bar chart of RMSE and MAE for each model.

    Args:
        metrics: Per-model metrics keyed by model name
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    names = list(metrics.keys())
    rmse_values = [metrics[n]['rmse'] for n in names]
    mae_values = [metrics[n]['mae'] for n in names]
    best = names[int(np.argmin(rmse_values))]

    fig, axes = plt.subplots(1, 2, figsize=figsize)

    x = np.arange(len(names))
    width = 0.6
    colors = ['seagreen' if n == best else 'steelblue' for n in names]

    axes[0].bar(x, rmse_values, width, color=colors, alpha=0.8)
    axes[0].set_xlabel('Model')
    axes[0].set_ylabel('RMSE')
    axes[0].set_title('Root Mean Squared Error', fontweight='bold')
    axes[0].set_xticks(x)
    axes[0].set_xticklabels(names, rotation=45, ha='right')

    axes[1].bar(x, mae_values, width, color='coral', alpha=0.8)
    axes[1].set_xlabel('Model')
    axes[1].set_ylabel('MAE')
    axes[1].set_title('Mean Absolute Error', fontweight='bold')
    axes[1].set_xticks(x)
    axes[1].set_xticklabels(names, rotation=45, ha='right')

    plt.suptitle(f'Model Comparison on Held-out Listings (best: {best})', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Model comparison plot saved to {save_path}")

    return fig


def evaluate_models(
    models: Dict[str, FittedModel],
    X_test: np.ndarray,
    y_test: np.ndarray,
    output_dir: Optional[str] = "reports/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Evaluate every fitted model and write the metrics report.

    Args:
        models: Fitted models keyed by name
        X_test: Test features
        y_test: Test targets
        output_dir: Directory for output files (None to skip writing)
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing metrics, best model name and file paths
    """
    if not models:
        raise ValueError("No models to evaluate")

    logger.info("=" * 60)
    logger.info("STARTING MODEL EVALUATION")
    logger.info("=" * 60)

    metrics = {}
    for name, model in models.items():
        metrics[name] = evaluate_model(model, X_test, y_test)
        logger.info(f"  {name}: RMSE={metrics[name]['rmse']:.4f}")

    best = min(metrics, key=lambda n: metrics[n]['rmse'])
    result = {
        'metrics': metrics,
        'best_model': best,
        'figures': [],
        'metrics_file': None
    }

    if output_dir is not None:
        output_dir = Path(output_dir)
        figures_dir = output_dir / "figures"
        metrics_dir = output_dir / "metrics"
        figures_dir.mkdir(parents=True, exist_ok=True)
        metrics_dir.mkdir(parents=True, exist_ok=True)

        metrics_file = metrics_dir / "evaluation_metrics.json"
        with open(metrics_file, 'w') as f:
            json.dump({'best_model': best, 'models': metrics}, f, indent=2)
        logger.info(f"Metrics saved to {metrics_file}")
        result['metrics_file'] = str(metrics_file)

        plot_model_comparison(metrics, save_path=str(figures_dir / "eval_model_comparison.png"))
        result['figures'].append("eval_model_comparison.png")

        if show_plots:
            plt.show()
        else:
            plt.close('all')

    logger.info("=" * 60)
    logger.info("EVALUATION COMPLETE")
    logger.info(f"  Best model: {best} (RMSE={metrics[best]['rmse']:.6f})")
    logger.info("=" * 60)

    return result


def print_evaluation_report(metrics: Dict[str, Dict[str, Any]]) -> None:
    """
    Print a formatted evaluation report to console.

    Args:
        metrics: Per-model metrics keyed by model name
    """
    print("\n" + "=" * 70)
    print("MODEL EVALUATION REPORT")
    print("=" * 70)
    print(f"{'Model':<16} {'RMSE':<12} {'MAE':<12} {'R²':<12} {'Converged':<10}")
    print("-" * 70)

    for name, m in sorted(metrics.items(), key=lambda item: item[1]['rmse']):
        print(f"{name:<16} {m['rmse']:<12.4f} {m['mae']:<12.4f} "
              f"{m['r2']:<12.4f} {'yes' if m.get('converged', True) else 'NO':<10}")

    print("-" * 70)
    print(f"  • Samples evaluated: {next(iter(metrics.values()))['n_samples']}")
    print("=" * 70 + "\n")
