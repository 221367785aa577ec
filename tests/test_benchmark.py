"""
Test Suite for Benchmark Module
================================

Tests for repeated-fit timing.
"""

import json

import pytest
import numpy as np
import matplotlib
matplotlib.use("Agg")

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from listing_regression.benchmark import BenchmarkResult, benchmark_fit, run_benchmarks
from listing_regression.errors import FitTimeoutError
from listing_regression.model import ModelSpec


@pytest.fixture
def train_data():
    rng = np.random.default_rng(5)
    X = rng.random((100, 5))
    y = X @ np.array([1.0, -2.0, 0.5, 0.0, 3.0]) + rng.normal(0, 0.1, 100)
    return X, y


class TestBenchmarkResult:
    """Tests for BenchmarkResult."""

    def test_statistics(self):
        result = BenchmarkResult('linear', 'linear', [0.1, 0.2, 0.3, 0.4])

        assert result.n_runs == 4
        assert result.mean == pytest.approx(0.25)
        assert result.std == pytest.approx(np.std([0.1, 0.2, 0.3, 0.4], ddof=1))

    def test_single_run_std(self):
        assert BenchmarkResult('linear', 'linear', [0.5]).std == 0.0

    def test_to_dict(self):
        entry = BenchmarkResult('mlp', 'mlp', [0.1, 0.3], non_converged=2).to_dict()

        assert entry['n_runs'] == 2
        assert entry['non_converged'] == 2
        assert entry['min_seconds'] == pytest.approx(0.1)
        assert entry['max_seconds'] == pytest.approx(0.3)
        assert entry['durations'] == [0.1, 0.3]


class TestBenchmarkFit:
    """Tests for benchmark_fit."""

    def test_hundred_runs(self, train_data):
        """Test that N runs give N non-negative durations and consistent statistics."""
        X, y = train_data
        result = benchmark_fit(ModelSpec('linear'), X, y, n_runs=100)

        assert result.n_runs == 100
        assert (result.durations >= 0).all()
        assert result.mean == pytest.approx(np.mean(result.durations))
        assert result.std == pytest.approx(np.std(result.durations, ddof=1))
        assert result.non_converged == 0

    def test_inputs_untouched(self, train_data):
        """Test that benchmarking leaves the training data unchanged."""
        X, y = train_data
        X_before, y_before = X.copy(), y.copy()

        benchmark_fit(ModelSpec('tree'), X, y, n_runs=5)

        np.testing.assert_array_equal(X, X_before)
        np.testing.assert_array_equal(y, y_before)

    def test_non_convergence_counted(self, train_data):
        """Test that capped runs are counted and the benchmark completes."""
        X, y = train_data
        result = benchmark_fit(ModelSpec('mlp', params={'max_iter': 2}), X, y, n_runs=3)

        assert result.n_runs == 3
        assert result.non_converged == 3
        assert result.diagnostics

    def test_ensemble(self, train_data):
        X, y = train_data
        spec = ModelSpec('ensemble', name='voting', members=[ModelSpec('linear'), ModelSpec('tree')])

        result = benchmark_fit(spec, X, y, n_runs=3)

        assert result.n_runs == 3
        assert result.kind == 'ensemble'

    def test_single_run(self, train_data):
        X, y = train_data
        result = benchmark_fit(ModelSpec('linear'), X, y, n_runs=1)

        assert result.n_runs == 1
        assert result.std == 0.0

    def test_invalid_run_count(self, train_data):
        X, y = train_data
        with pytest.raises(ValueError, match="n_runs"):
            benchmark_fit(ModelSpec('linear'), X, y, n_runs=0)

    def test_budget_exceeded(self):
        """Test that a fit over its budget aborts the benchmark."""
        rng = np.random.default_rng(0)
        X = rng.random((2000, 20))
        y = rng.random(2000)
        spec = ModelSpec('mlp', params={'hidden_layer_sizes': [50], 'max_iter': 500})

        with pytest.raises(FitTimeoutError):
            benchmark_fit(spec, X, y, n_runs=2, time_budget=0.001)


class TestRunBenchmarks:
    """Tests for run_benchmarks."""

    def test_timing_report_written(self, train_data, tmp_path):
        X, y = train_data
        report = run_benchmarks(
            [ModelSpec('linear'), ModelSpec('tree')], X, y, n_runs=5, output_dir=str(tmp_path)
        )

        assert list(report['results']) == ['linear', 'tree']
        with open(report['timing_file']) as f:
            saved = json.load(f)
        assert saved['linear']['n_runs'] == 5
        assert len(saved['tree']['durations']) == 5
        assert (tmp_path / "figures" / "benchmark_fit_times.png").exists()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
