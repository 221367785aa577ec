"""
Test Suite for Model Module
============================

Tests for model specs, training, convergence tracking, the fit time
budget and the averaging ensemble.
"""

import signal
import time

import pytest
import numpy as np

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from listing_regression.errors import FitTimeoutError
from listing_regression.evaluation import rmse
from listing_regression.model import (
    DEFAULT_HYPERPARAMETERS,
    EnsembleModel,
    FittedModel,
    ModelKind,
    ModelSpec,
    build_model_specs,
    fit_estimator,
    fit_time_budget,
    train_model,
    train_models,
)


class SlowRegressor:
    """Estimator whose fit sleeps, for time budget tests."""

    def __init__(self, seconds=2.0):
        self.seconds = seconds

    def fit(self, X, y):
        time.sleep(self.seconds)
        return self


@pytest.fixture
def linear_data():
    """y = 2x + noise(sigma=10) on x in [0, 1000]."""
    rng = np.random.default_rng(0)
    x = rng.uniform(0, 1000, 100)
    y = 2 * x + rng.normal(0, 10, 100)
    return x.reshape(-1, 1), y


@pytest.fixture
def listing_like_data():
    """Scaled features with a Poisson count target."""
    rng = np.random.default_rng(1)
    X = rng.random((200, 6))
    y = rng.poisson(np.exp(1 + X[:, 0] - X[:, 1])).astype(float)
    return X, y


class TestModelSpec:
    """Tests for ModelSpec class."""

    def test_defaults_recorded(self):
        spec = ModelSpec('mlp')

        assert spec.name == 'mlp'
        assert spec.kind == ModelKind.MLP
        assert spec.params == DEFAULT_HYPERPARAMETERS[ModelKind.MLP]

    def test_overrides(self):
        spec = ModelSpec('mlp', name='tiny', params={'hidden_layer_sizes': [1], 'max_iter': 5})

        assert spec.name == 'tiny'
        assert spec.params['hidden_layer_sizes'] == (1,)
        assert spec.params['max_iter'] == 5
        assert spec.params['solver'] == 'adam'

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            ModelSpec('gradient_boosting')

    def test_unknown_hyperparameter(self):
        with pytest.raises(ValueError, match="Unknown hyperparameters"):
            ModelSpec('svr', params={'epsilonn': 0.5})

    def test_ensemble_needs_members(self):
        with pytest.raises(ValueError, match="at least one member"):
            ModelSpec('ensemble', name='voting')

    def test_ensemble_cannot_nest(self):
        inner = ModelSpec('ensemble', name='inner', members=[ModelSpec('linear')])
        with pytest.raises(ValueError, match="cannot contain ensembles"):
            ModelSpec('ensemble', name='outer', members=[inner])

    def test_members_only_for_ensembles(self):
        with pytest.raises(ValueError, match="Only ensembles"):
            ModelSpec('linear', members=[ModelSpec('svr')])

    def test_to_dict(self):
        entry = ModelSpec('mlp', params={'hidden_layer_sizes': [3, 2]}).to_dict()

        assert entry['kind'] == 'mlp'
        assert entry['params']['hidden_layer_sizes'] == [3, 2]


class TestBuildModelSpecs:
    """Tests for build_model_specs."""

    def test_from_config(self):
        config = {
            'models': {
                'linear': {'kind': 'linear'},
                'svr': {'kind': 'svr', 'params': {'epsilon': 0.5}},
                'forest': {'kind': 'random_forest', 'params': {'n_estimators': 5}},
            },
            'ensemble': {'name': 'voting', 'members': ['linear', 'svr']},
        }
        specs = build_model_specs(config)

        assert [s.name for s in specs] == ['linear', 'svr', 'forest', 'voting']
        assert specs[1].params['epsilon'] == 0.5
        assert specs[-1].kind == ModelKind.ENSEMBLE
        assert specs[-1].members[0] is specs[0]

    def test_disabled_ensemble(self):
        config = {
            'models': {'linear': {'kind': 'linear'}},
            'ensemble': {'enabled': False, 'members': ['linear']},
        }
        assert [s.name for s in build_model_specs(config)] == ['linear']

    def test_undefined_member(self):
        config = {
            'models': {'linear': {'kind': 'linear'}},
            'ensemble': {'members': ['linear', 'svr']},
        }
        with pytest.raises(ValueError, match="svr"):
            build_model_specs(config)


class TestTraining:
    """Tests for train_model and train_models."""

    def test_linear_recovers_slope(self, linear_data):
        """Test OLS on a noisy line recovers the slope and predicts well."""
        X, y = linear_data
        X_train, X_test = X[:80], X[80:]
        y_train, y_test = y[:80], y[80:]

        model = train_model(ModelSpec('linear'), X_train, y_train)

        assert abs(model.estimator.coef_[0] - 2.0) < 0.05
        assert rmse(y_test, model.predict(X_test)) < 20
        assert model.converged

    @pytest.mark.parametrize("kind", ['linear', 'poisson', 'tree', 'random_forest', 'svr', 'mlp'])
    def test_every_kind_fits_and_predicts(self, kind, listing_like_data):
        X, y = listing_like_data
        params = {'n_estimators': 10} if kind == 'random_forest' else None

        model = train_model(ModelSpec(kind, params=params), X, y)
        predictions = model.predict(X)

        assert isinstance(model, FittedModel)
        assert predictions.shape == (200,)
        assert np.isfinite(predictions).all()
        assert model.training_info['n_samples'] == 200
        assert model.training_info['training_duration_seconds'] >= 0

    def test_non_convergence_is_reported_not_fatal(self, listing_like_data):
        """Test that an iteration cap flags the model but keeps it usable."""
        X, y = listing_like_data
        model = train_model(ModelSpec('mlp', params={'max_iter': 2}), X, y)

        assert model.converged == False
        assert model.n_iter == 2
        assert model.diagnostics
        assert "Maximum iterations" in model.diagnostics[0]
        assert model.predict(X).shape == (200,)

    def test_poisson_iterations_recorded(self, listing_like_data):
        X, y = listing_like_data
        model = train_model(ModelSpec('poisson'), X, y)

        assert model.n_iter is not None
        assert model.n_iter >= 1

    def test_fresh_state_per_fit(self, listing_like_data):
        """Test that two fits of one spec do not share an estimator."""
        X, y = listing_like_data
        spec = ModelSpec('tree')

        first = train_model(spec, X, y)
        second = train_model(spec, X, y)

        assert first.estimator is not second.estimator
        np.testing.assert_array_equal(first.predict(X), second.predict(X))

    def test_misaligned_data(self, listing_like_data):
        X, y = listing_like_data
        with pytest.raises(ValueError, match="not aligned"):
            train_model(ModelSpec('linear'), X, y[:-1])

    def test_empty_data(self):
        with pytest.raises(ValueError, match="empty"):
            train_model(ModelSpec('linear'), np.empty((0, 3)), np.empty(0))

    def test_wrong_feature_count_at_predict(self, listing_like_data):
        X, y = listing_like_data
        model = train_model(ModelSpec('linear'), X, y)

        with pytest.raises(ValueError, match="Expected 6 features"):
            model.predict(X[:, :4])

    def test_train_models_unique_names(self, listing_like_data):
        X, y = listing_like_data
        with pytest.raises(ValueError, match="unique"):
            train_models([ModelSpec('linear'), ModelSpec('linear')], X, y)

    def test_train_models_saves(self, listing_like_data, tmp_path):
        """Test saving and loading every trained model."""
        X, y = listing_like_data
        specs = build_model_specs({
            'models': {'linear': {'kind': 'linear'}, 'tree': {'kind': 'tree'}},
            'ensemble': {'name': 'voting', 'members': ['linear', 'tree']},
        })
        models = train_models(specs, X, y, save_dir=str(tmp_path))

        assert list(models) == ['linear', 'tree', 'voting']
        for name, model in models.items():
            loaded = FittedModel.load(str(tmp_path / f"{name}.joblib"))
            assert loaded.name == name
            np.testing.assert_array_equal(loaded.predict(X), model.predict(X))


class TestEnsemble:
    """Tests for EnsembleModel."""

    def test_prediction_is_member_mean(self, listing_like_data):
        """Test that the ensemble predicts the unweighted mean of its members."""
        X, y = listing_like_data
        specs = [ModelSpec('linear'), ModelSpec('tree'), ModelSpec('svr')]
        ensemble = train_model(ModelSpec('ensemble', name='voting', members=specs), X, y)

        expected = np.mean(np.vstack([m.predict(X) for m in ensemble.members]), axis=0)

        assert isinstance(ensemble, EnsembleModel)
        np.testing.assert_array_equal(ensemble.predict(X), expected)

    def test_single_member_equals_member(self, listing_like_data):
        X, y = listing_like_data
        ensemble = train_model(
            ModelSpec('ensemble', name='solo', members=[ModelSpec('linear')]), X, y
        )

        np.testing.assert_array_equal(ensemble.predict(X), ensemble.members[0].predict(X))

    def test_members_reused_by_reference(self, listing_like_data):
        """Test that already fitted members are not refitted."""
        X, y = listing_like_data
        fitted = {
            'linear': train_model(ModelSpec('linear'), X, y),
            'tree': train_model(ModelSpec('tree'), X, y),
        }
        spec = ModelSpec(
            'ensemble', name='voting', members=[ModelSpec('linear'), ModelSpec('tree')]
        )
        ensemble = train_model(spec, X, y, fitted=fitted)

        assert ensemble.members[0] is fitted['linear']
        assert ensemble.members[1] is fitted['tree']

    def test_convergence_follows_members(self, listing_like_data):
        X, y = listing_like_data
        spec = ModelSpec('ensemble', name='voting', members=[
            ModelSpec('linear'),
            ModelSpec('mlp', params={'max_iter': 2}),
        ])
        ensemble = train_model(spec, X, y)

        assert ensemble.converged == False
        assert ensemble.diagnostics

    def test_members_must_agree_on_width(self, listing_like_data):
        X, y = listing_like_data
        narrow = train_model(ModelSpec('linear'), X[:, :3], y)
        wide = train_model(ModelSpec('tree'), X, y)

        with pytest.raises(ValueError, match="disagree"):
            EnsembleModel(ModelSpec('ensemble', members=[ModelSpec('linear')]), [narrow, wide])

    def test_build_estimator_rejected(self):
        spec = ModelSpec('ensemble', members=[ModelSpec('linear')])
        with pytest.raises(ValueError):
            spec.build_estimator()


class TestTimeBudget:
    """Tests for the wall-clock fit budget."""

    def test_slow_fit_aborted(self):
        """Test that a fit exceeding its budget raises FitTimeoutError."""
        start = time.perf_counter()
        with pytest.raises(FitTimeoutError) as exc_info:
            fit_estimator(SlowRegressor(2.0), np.zeros((4, 1)), np.zeros(4),
                          time_budget=0.2, label="slow")

        assert exc_info.value.label == "slow"
        assert exc_info.value.seconds == 0.2
        if hasattr(signal, "setitimer"):
            assert time.perf_counter() - start < 1.5

    def test_fast_fit_within_budget(self, listing_like_data):
        X, y = listing_like_data
        model = train_model(ModelSpec('linear'), X, y, time_budget=30)

        assert model.converged

    def test_invalid_budget(self):
        with pytest.raises(ValueError):
            with fit_time_budget(0):
                pass

    @pytest.mark.skipif(not hasattr(signal, "SIGALRM"), reason="SIGALRM not available")
    def test_handler_restored(self):
        """Test that the previous SIGALRM handler is reinstated."""
        before = signal.getsignal(signal.SIGALRM)

        with fit_time_budget(5):
            pass
        with pytest.raises(FitTimeoutError):
            with fit_time_budget(0.05):
                time.sleep(1)

        assert signal.getsignal(signal.SIGALRM) == before
        assert signal.getitimer(signal.ITIMER_REAL) == (0.0, 0.0)

    @pytest.mark.skipif(not hasattr(signal, "setitimer"), reason="setitimer not available")
    def test_foreign_handler_falls_back_to_default(self, monkeypatch):
        """Test that a handler unknown to Python is restored as SIG_DFL."""
        real_signal = signal.signal
        installed = []

        def fake_signal(signum, handler):
            installed.append(handler)
            real_signal(signum, handler)
            return None if len(installed) == 1 else signal.SIG_DFL

        monkeypatch.setattr(signal, "signal", fake_signal)
        with fit_time_budget(5):
            pass
        monkeypatch.undo()

        assert installed[-1] == signal.SIG_DFL
        assert signal.getsignal(signal.SIGALRM) == signal.SIG_DFL

    @pytest.mark.skipif(not hasattr(signal, "setitimer"), reason="setitimer not available")
    def test_handler_restored_when_disarm_interrupted(self, monkeypatch):
        """Test that an alarm landing while the timer is disarmed still restores the handler."""
        before = signal.getsignal(signal.SIGALRM)
        real_setitimer = signal.setitimer

        def late_alarm(which, seconds):
            real_setitimer(which, seconds)
            if seconds == 0:
                raise FitTimeoutError("late", 5)

        monkeypatch.setattr(signal, "setitimer", late_alarm)
        with pytest.raises(FitTimeoutError):
            with fit_time_budget(5):
                pass
        monkeypatch.undo()

        assert signal.getsignal(signal.SIGALRM) == before


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
