"""
Benchmark Harness Module
========================

Measures how long it takes to fit a model configuration from scratch.

Each repetition fits a freshly initialised estimator on a private copy of
the training data and keeps only the elapsed wall-clock time. Repeated runs
of the same configuration vary, so the report always carries the sample
standard deviation next to the mean.
"""

import logging
import json
import time
from pathlib import Path
from typing import Dict, Any, List, Optional, Sequence, Tuple

import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns

from .model import ModelSpec, train_model

logger = logging.getLogger(__name__)


class BenchmarkResult:
    """Duration sample of one model configuration."""

    def __init__(
        self,
        model_name: str,
        kind: str,
        durations: Sequence[float],
        non_converged: int = 0,
        diagnostics: Optional[List[str]] = None
    ):
        self.model_name = model_name
        self.kind = kind
        self.durations = np.asarray(durations, dtype=float)
        self.non_converged = int(non_converged)
        self.diagnostics = list(diagnostics or [])

    @property
    def n_runs(self) -> int:
        return int(len(self.durations))

    @property
    def mean(self) -> float:
        return float(np.mean(self.durations))

    @property
    def std(self) -> float:
        """Sample standard deviation (ddof=1); 0.0 for a single run."""
        if self.n_runs < 2:
            return 0.0
        return float(np.std(self.durations, ddof=1))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'model': self.model_name,
            'kind': self.kind,
            'n_runs': self.n_runs,
            'mean_seconds': self.mean,
            'std_seconds': self.std,
            'min_seconds': float(np.min(self.durations)),
            'max_seconds': float(np.max(self.durations)),
            'non_converged': self.non_converged,
            'durations': self.durations.tolist(),
        }

    def __repr__(self) -> str:
        return (f"BenchmarkResult('{self.model_name}', n={self.n_runs}, "
                f"mean={self.mean:.6f}s, std={self.std:.6f}s)")


def benchmark_fit(
    spec: ModelSpec,
    X: np.ndarray,
    y: np.ndarray,
    n_runs: int = 100,
    time_budget: Optional[float] = None
) -> BenchmarkResult:
    """
    Fit ``spec`` from scratch ``n_runs`` times and record each duration.

    Non-convergence is counted but does not fail the run; a
    FitTimeoutError from ``time_budget`` propagates.

    Args:
        spec: Model configuration to benchmark
        X: Training features (left untouched)
        y: Training targets (left untouched)
        n_runs: Number of repetitions
        time_budget: Wall-clock budget in seconds per fit (optional)

    Returns:
        BenchmarkResult with the duration of every repetition
    """
    if n_runs < 1:
        raise ValueError(f"n_runs must be at least 1, got {n_runs}")

    X = np.asarray(X, dtype=float)
    y = np.asarray(y, dtype=float)

    durations = []
    non_converged = 0
    diagnostics: List[str] = []

    logger.info(f"Benchmarking {spec.name} ({spec.kind.value}) over {n_runs} runs...")

    for _ in range(n_runs):
        X_run = X.copy()
        y_run = y.copy()

        start = time.perf_counter()
        model = train_model(spec, X_run, y_run, time_budget=time_budget)
        durations.append(time.perf_counter() - start)

        if not model.converged:
            non_converged += 1
            if not diagnostics:
                diagnostics = list(model.diagnostics)
        del model

    result = BenchmarkResult(spec.name, spec.kind.value, durations, non_converged, diagnostics)

    logger.info(
        f"  {spec.name}: mean={result.mean:.6f}s, std={result.std:.6f}s"
        + (f", {non_converged} runs did not converge" if non_converged else "")
    )
    return result


def plot_timing_distribution(
    results: Dict[str, BenchmarkResult],
    figsize: Tuple[int, int] = (12, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Plot the fit-time distribution of each benchmarked model.

    Args:
        results: Benchmark results keyed by model name
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(1, 1, figsize=figsize)

    for name, result in results.items():
        sns.histplot(result.durations, ax=ax, bins=30, alpha=0.5,
                     label=f'{name} ({result.mean:.4f}s ± {result.std:.4f}s)')
        ax.axvline(result.mean, linestyle='--', linewidth=1.5)

    ax.set_xlabel('Fit duration (s)')
    ax.set_ylabel('Runs')
    ax.set_title('Wall-clock Fit Time Distribution', fontsize=14, fontweight='bold')
    ax.legend(fontsize=8)
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Timing distribution plot saved to {save_path}")

    return fig


def run_benchmarks(
    specs: Sequence[ModelSpec],
    X: np.ndarray,
    y: np.ndarray,
    n_runs: int = 100,
    time_budget: Optional[float] = None,
    output_dir: Optional[str] = "reports/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Benchmark several model configurations and write the timing report.

    Args:
        specs: Model configurations to benchmark
        X: Training features
        y: Training targets
        n_runs: Repetitions per configuration
        time_budget: Wall-clock budget in seconds per fit
        output_dir: Directory for output files (None to skip writing)
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing results, figures and the timing file path
    """
    logger.info("=" * 60)
    logger.info("STARTING FIT-TIME BENCHMARK")
    logger.info("=" * 60)

    results = {
        spec.name: benchmark_fit(spec, X, y, n_runs=n_runs, time_budget=time_budget)
        for spec in specs
    }

    report = {
        'results': results,
        'figures': [],
        'timing_file': None
    }

    if output_dir is not None:
        output_dir = Path(output_dir)
        figures_dir = output_dir / "figures"
        metrics_dir = output_dir / "metrics"
        figures_dir.mkdir(parents=True, exist_ok=True)
        metrics_dir.mkdir(parents=True, exist_ok=True)

        timing_file = metrics_dir / "timing_report.json"
        with open(timing_file, 'w') as f:
            json.dump({name: r.to_dict() for name, r in results.items()}, f, indent=2)
        logger.info(f"Timing report saved to {timing_file}")
        report['timing_file'] = str(timing_file)

        plot_timing_distribution(results, save_path=str(figures_dir / "benchmark_fit_times.png"))
        report['figures'].append("benchmark_fit_times.png")

        if show_plots:
            plt.show()
        else:
            plt.close('all')

    logger.info("=" * 60)
    logger.info("BENCHMARK COMPLETE")
    logger.info("=" * 60)

    return report


def print_timing_report(results: Dict[str, BenchmarkResult]) -> None:
    """
    Print a formatted timing report to console.

    Args:
        results: Benchmark results keyed by model name
    """
    print("\n" + "=" * 70)
    print("FIT-TIME BENCHMARK")
    print("=" * 70)
    print(f"{'Model':<16} {'Runs':<8} {'Mean (s)':<14} {'Std (s)':<14} {'Not converged':<14}")
    print("-" * 70)
    for name, r in results.items():
        print(f"{name:<16} {r.n_runs:<8} {r.mean:<14.6f} {r.std:<14.6f} {r.non_converged:<14}")
    print("=" * 70 + "\n")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    rng = np.random.default_rng(42)
    X = rng.random((300, 10))
    y = X @ rng.random(10) + rng.normal(0, 0.1, 300)

    results = {
        s.name: benchmark_fit(s, X, y, n_runs=20)
        for s in [ModelSpec('linear'), ModelSpec('mlp', params={'max_iter': 50})]
    }
    print_timing_report(results)
