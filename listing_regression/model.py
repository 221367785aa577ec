"""
Model Training Module
=====================

Fits the regression algorithms compared on the listing data.

Features:
    - Closed set of algorithm variants with an explicit hyperparameter record each
    - Convergence tracking (non-convergence is flagged, never fatal)
    - Optional wall-clock budget per fit
    - Averaging ensemble over already fitted models
    - Model persistence (save/load)
"""

import copy
import logging
import signal
import threading
import time
import warnings
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Dict, Any, List, Optional, Sequence, Union

import numpy as np
import joblib
from sklearn.ensemble import RandomForestRegressor
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LinearRegression, PoissonRegressor
from sklearn.neural_network import MLPRegressor
from sklearn.svm import SVR
from sklearn.tree import DecisionTreeRegressor

from .errors import FitTimeoutError

logger = logging.getLogger(__name__)


class ModelKind(str, Enum):
    """Regression algorithms available to the trainer."""

    LINEAR = "linear"
    POISSON = "poisson"
    TREE = "tree"
    RANDOM_FOREST = "random_forest"
    SVR = "svr"
    MLP = "mlp"
    ENSEMBLE = "ensemble"


ESTIMATORS = {
    ModelKind.LINEAR: LinearRegression,
    ModelKind.POISSON: PoissonRegressor,
    ModelKind.TREE: DecisionTreeRegressor,
    ModelKind.RANDOM_FOREST: RandomForestRegressor,
    ModelKind.SVR: SVR,
    ModelKind.MLP: MLPRegressor,
}

# Every value is spelled out so results do not depend on library defaults
DEFAULT_HYPERPARAMETERS: Dict[ModelKind, Dict[str, Any]] = {
    ModelKind.LINEAR: {
        'fit_intercept': True,
    },
    ModelKind.POISSON: {
        'alpha': 1.0,
        'fit_intercept': True,
        'solver': 'lbfgs',
        'max_iter': 100,
        'tol': 1e-4,
    },
    ModelKind.TREE: {
        'criterion': 'squared_error',
        'max_depth': None,
        'min_samples_split': 2,
        'min_samples_leaf': 1,
        'random_state': 42,
    },
    ModelKind.RANDOM_FOREST: {
        'n_estimators': 100,
        'criterion': 'squared_error',
        'max_depth': None,
        'min_samples_leaf': 1,
        'bootstrap': True,
        'random_state': 42,
        'n_jobs': 1,
    },
    ModelKind.SVR: {
        'kernel': 'rbf',
        'C': 1.0,
        'epsilon': 0.1,
        'gamma': 'scale',
        'tol': 1e-3,
        'max_iter': -1,
    },
    ModelKind.MLP: {
        'hidden_layer_sizes': (1,),
        'activation': 'relu',
        'solver': 'adam',
        'learning_rate_init': 0.001,
        'max_iter': 200,
        'tol': 1e-4,
        'random_state': 42,
    },
    ModelKind.ENSEMBLE: {},
}


class ModelSpec:
    """
    Configuration record of one model: algorithm, name and hyperparameters.

    Ensemble specs carry the specs of their members instead of
    hyperparameters.
    """

    def __init__(
        self,
        kind: Union[str, ModelKind],
        name: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        members: Optional[Sequence['ModelSpec']] = None
    ):
        self.kind = ModelKind(kind)
        self.name = name or self.kind.value

        overrides = dict(params or {})
        unknown = set(overrides) - set(DEFAULT_HYPERPARAMETERS[self.kind])
        if unknown:
            raise ValueError(
                f"Unknown hyperparameters for {self.kind.value}: {sorted(unknown)}"
            )
        if 'hidden_layer_sizes' in overrides:
            overrides['hidden_layer_sizes'] = tuple(overrides['hidden_layer_sizes'])
        self.params = {**DEFAULT_HYPERPARAMETERS[self.kind], **overrides}

        self.members: List[ModelSpec] = list(members or [])
        if self.kind == ModelKind.ENSEMBLE:
            if not self.members:
                raise ValueError(f"Ensemble '{self.name}' needs at least one member")
            nested = [m.name for m in self.members if m.kind == ModelKind.ENSEMBLE]
            if nested:
                raise ValueError(f"Ensemble '{self.name}' cannot contain ensembles: {nested}")
        elif self.members:
            raise ValueError(f"Only ensembles take members, got members for {self.kind.value}")

    def __repr__(self) -> str:
        if self.kind == ModelKind.ENSEMBLE:
            return f"ModelSpec(ensemble '{self.name}', members={[m.name for m in self.members]})"
        return f"ModelSpec({self.kind.value} '{self.name}', {self.params})"

    def build_estimator(self):
        """Create a fresh, unfitted scikit-learn estimator."""
        if self.kind == ModelKind.ENSEMBLE:
            raise ValueError("Ensembles are built from fitted members, not a single estimator")
        return ESTIMATORS[self.kind](**self.params)

    def to_dict(self) -> Dict[str, Any]:
        entry = {'name': self.name, 'kind': self.kind.value}
        if self.kind == ModelKind.ENSEMBLE:
            entry['members'] = [m.name for m in self.members]
        else:
            entry['params'] = {
                k: list(v) if isinstance(v, tuple) else v for k, v in self.params.items()
            }
        return entry


def build_model_specs(config: Dict[str, Any]) -> List[ModelSpec]:
    """
    Build model specs from the ``models`` and ``ensemble`` config sections.

    ``models`` maps a model name to ``{'kind': ..., 'params': {...}}``; the
    optional ``ensemble`` section names the members to average.

    Args:
        config: Configuration dictionary

    Returns:
        List of ModelSpec, ensemble last
    """
    specs: List[ModelSpec] = []
    for name, entry in (config.get('models') or {}).items():
        entry = entry or {}
        specs.append(ModelSpec(entry.get('kind', name), name=name, params=entry.get('params')))

    ensemble_config = config.get('ensemble') or {}
    if ensemble_config.get('enabled', True) and ensemble_config.get('members'):
        by_name = {s.name: s for s in specs}
        missing = [m for m in ensemble_config['members'] if m not in by_name]
        if missing:
            raise ValueError(f"Ensemble members not defined under 'models': {missing}")
        specs.append(ModelSpec(
            ModelKind.ENSEMBLE,
            name=ensemble_config.get('name', 'voting'),
            members=[by_name[m] for m in ensemble_config['members']]
        ))

    return specs


@contextmanager
def fit_time_budget(seconds: Optional[float], label: str = "fit"):
    """
    Abort the enclosed block once ``seconds`` of wall-clock time have passed.

    Uses SIGALRM when running in the main thread of a POSIX process; the
    signal is only handled between Python bytecodes, so a long native call
    finishes its current step first. Elsewhere the elapsed time is checked
    after the block completes.

    Raises:
        FitTimeoutError: If the budget is exceeded
    """
    if seconds is None:
        yield
        return
    if seconds <= 0:
        raise ValueError(f"Time budget must be positive, got {seconds}")

    if not hasattr(signal, "setitimer") or threading.current_thread() is not threading.main_thread():
        start = time.perf_counter()
        yield
        if time.perf_counter() - start > seconds:
            raise FitTimeoutError(label, seconds)
        return

    def _on_alarm(signum, frame):
        raise FitTimeoutError(label, seconds)

    previous = signal.signal(signal.SIGALRM, _on_alarm)
    if previous is None:
        # Handler installed outside Python
        previous = signal.SIG_DFL
    try:
        signal.setitimer(signal.ITIMER_REAL, seconds)
        yield
    finally:
        try:
            signal.setitimer(signal.ITIMER_REAL, 0)
        finally:
            signal.signal(signal.SIGALRM, previous)


def fit_estimator(
    estimator,
    X: np.ndarray,
    y: np.ndarray,
    time_budget: Optional[float] = None,
    label: str = "estimator"
) -> Dict[str, Any]:
    """
    Fit ``estimator`` in place, capturing convergence warnings.

    Args:
        estimator: Unfitted scikit-learn style estimator
        X: Feature array of shape (n_samples, n_features)
        y: Target array of shape (n_samples,)
        time_budget: Wall-clock budget in seconds (optional)
        label: Name used in log and error messages

    Returns:
        Dictionary with converged, n_iter, diagnostics and duration
    """
    start = time.perf_counter()
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", ConvergenceWarning)
        with fit_time_budget(time_budget, label):
            estimator.fit(X, y)
    duration = time.perf_counter() - start

    diagnostics = [str(w.message) for w in caught if issubclass(w.category, ConvergenceWarning)]
    for w in caught:
        if not issubclass(w.category, ConvergenceWarning):
            warnings.warn_explicit(w.message, w.category, w.filename, w.lineno)

    n_iter = getattr(estimator, 'n_iter_', None)
    if n_iter is not None:
        n_iter = int(np.max(n_iter))

    if diagnostics:
        logger.warning(f"{label} did not converge (n_iter={n_iter}): {diagnostics[0]}")

    return {
        'converged': not diagnostics,
        'n_iter': n_iter,
        'diagnostics': diagnostics,
        'duration': duration,
    }


class FittedModel:
    """
    A fitted regressor together with its spec and training diagnostics.

    ``converged`` is False when the solver stopped at its iteration cap;
    the model is still usable for prediction.
    """

    def __init__(
        self,
        spec: ModelSpec,
        estimator,
        feature_names: Optional[List[str]] = None,
        converged: bool = True,
        n_iter: Optional[int] = None,
        diagnostics: Optional[List[str]] = None,
        training_info: Optional[Dict[str, Any]] = None
    ):
        self.spec = spec
        self.estimator = estimator
        self.feature_names = list(feature_names) if feature_names is not None else None
        self.converged = converged
        self.n_iter = n_iter
        self.diagnostics = list(diagnostics or [])
        self.training_info = dict(training_info or {})

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def kind(self) -> ModelKind:
        return self.spec.kind

    @property
    def n_features_in_(self) -> Optional[int]:
        return getattr(self.estimator, 'n_features_in_', None)

    def __repr__(self) -> str:
        flag = "" if self.converged else ", not converged"
        return f"FittedModel('{self.name}', {self.kind.value}{flag})"

    def _check_features(self, X: np.ndarray) -> None:
        if X.ndim != 2:
            raise ValueError(f"Expected a 2D feature array, got shape {X.shape}")
        expected = self.n_features_in_
        if expected is not None and X.shape[1] != expected:
            raise ValueError(f"Expected {expected} features, but got {X.shape[1]}")

    def predict(self, X: np.ndarray) -> np.ndarray:
        """
        Make predictions using the fitted model.

        Args:
            X: Feature array of shape (n_samples, n_features)

        Returns:
            Predictions array of shape (n_samples,)
        """
        X = np.asarray(X, dtype=float)
        self._check_features(X)
        return np.asarray(self.estimator.predict(X), dtype=float)

    def save(self, filepath: str) -> None:
        """
        Save the fitted model to disk.

        Args:
            filepath: Path to save the model
        """
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(self, filepath)
        logger.info(f"Model '{self.name}' saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'FittedModel':
        """
        Load a fitted model from disk.

        Args:
            filepath: Path to the saved model

        Returns:
            Loaded FittedModel (or EnsembleModel)
        """
        model = joblib.load(filepath)
        if not isinstance(model, FittedModel):
            raise TypeError(f"{filepath} does not hold a FittedModel, got {type(model).__name__}")
        logger.info(f"Model loaded from {filepath}")
        return model


class EnsembleModel(FittedModel):
    """
    Averaging ensemble: the prediction is the unweighted mean of the members.

    Members are held by reference and may be evaluated on their own too.
    """

    def __init__(
        self,
        spec: ModelSpec,
        members: Sequence[FittedModel],
        feature_names: Optional[List[str]] = None,
        training_info: Optional[Dict[str, Any]] = None
    ):
        members = list(members)
        if not members:
            raise ValueError("Ensemble needs at least one fitted member")
        not_fitted = [m for m in members if not isinstance(m, FittedModel)]
        if not_fitted:
            raise ValueError(f"Ensemble members must be fitted models, got {not_fitted}")

        widths = {m.n_features_in_ for m in members if m.n_features_in_ is not None}
        if len(widths) > 1:
            raise ValueError(f"Ensemble members disagree on feature count: {sorted(widths)}")

        super().__init__(
            spec,
            estimator=None,
            feature_names=feature_names,
            converged=all(m.converged for m in members),
            diagnostics=[d for m in members for d in m.diagnostics],
            training_info=training_info
        )
        self.members = members

    @property
    def n_features_in_(self) -> Optional[int]:
        return self.members[0].n_features_in_

    def predict(self, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=float)
        self._check_features(X)
        predictions = np.vstack([m.predict(X) for m in self.members])
        return predictions.mean(axis=0)


def train_model(
    spec: ModelSpec,
    X: np.ndarray,
    y: np.ndarray,
    feature_names: Optional[List[str]] = None,
    fitted: Optional[Dict[str, FittedModel]] = None,
    time_budget: Optional[float] = None
) -> FittedModel:
    """
    Fit one model described by ``spec`` on fresh estimator state.

    Args:
        spec: Model configuration record
        X: Training features
        y: Training targets
        feature_names: Names of the feature columns (optional)
        fitted: Already fitted models by name; ensemble members found here
            are reused by reference instead of being refitted
        time_budget: Wall-clock budget in seconds for each single fit

    Returns:
        FittedModel (EnsembleModel for ensemble specs)
    """
    X = np.asarray(X, dtype=float)
    y = np.asarray(y, dtype=float).ravel()

    if X.ndim != 2 or len(X) != len(y):
        raise ValueError(f"X and y are not aligned: X shape {X.shape}, y length {len(y)}")
    if len(X) == 0:
        raise ValueError("Cannot train on an empty dataset")
    if feature_names is not None and len(feature_names) != X.shape[1]:
        raise ValueError(
            f"Got {len(feature_names)} feature names for {X.shape[1]} feature columns"
        )

    start = time.perf_counter()

    if spec.kind == ModelKind.ENSEMBLE:
        fitted = fitted or {}
        members = []
        for member_spec in spec.members:
            if member_spec.name in fitted:
                members.append(fitted[member_spec.name])
            else:
                members.append(train_model(member_spec, X, y, feature_names, time_budget=time_budget))
        model = EnsembleModel(
            spec,
            members,
            feature_names=feature_names,
            training_info={
                'training_duration_seconds': time.perf_counter() - start,
                'n_samples': int(X.shape[0]),
                'n_features': int(X.shape[1]),
                'members': [m.name for m in members],
            }
        )
        logger.debug(f"Ensemble '{spec.name}' assembled from {[m.name for m in members]}")
        return model

    estimator = spec.build_estimator()
    result = fit_estimator(estimator, X, y, time_budget=time_budget, label=spec.name)

    model = FittedModel(
        spec,
        estimator,
        feature_names=feature_names,
        converged=result['converged'],
        n_iter=result['n_iter'],
        diagnostics=result['diagnostics'],
        training_info={
            'training_duration_seconds': result['duration'],
            'n_samples': int(X.shape[0]),
            'n_features': int(X.shape[1]),
            'hyperparameters': copy.deepcopy(spec.params),
        }
    )
    logger.debug(f"Fitted '{spec.name}' in {result['duration']:.4f}s (converged={model.converged})")
    return model


def train_models(
    specs: Sequence[ModelSpec],
    X_train: np.ndarray,
    y_train: np.ndarray,
    feature_names: Optional[List[str]] = None,
    time_budget: Optional[float] = None,
    save_dir: Optional[str] = None
) -> Dict[str, FittedModel]:
    """
    Train every configured model in order; ensembles reuse fitted members.

    Args:
        specs: Model specs (ensembles after their members)
        X_train: Training features
        y_train: Training targets
        feature_names: Names of the feature columns
        time_budget: Wall-clock budget in seconds per fit
        save_dir: Directory to save each fitted model (optional)

    Returns:
        Fitted models keyed by name, in training order
    """
    names = [s.name for s in specs]
    if len(set(names)) != len(names):
        raise ValueError(f"Model names must be unique: {names}")

    logger.info("=" * 60)
    logger.info("STARTING MODEL TRAINING")
    logger.info("=" * 60)
    logger.info(f"Training data shape: X={np.shape(X_train)}, y={np.shape(y_train)}")

    models: Dict[str, FittedModel] = {}
    for spec in specs:
        logger.info(f"Training {spec.name} ({spec.kind.value})...")
        model = train_model(
            spec, X_train, y_train,
            feature_names=feature_names,
            fitted=models,
            time_budget=time_budget
        )
        models[spec.name] = model
        logger.info(
            f"  {spec.name}: {model.training_info['training_duration_seconds']:.4f}s"
            + ("" if model.converged else " (did not converge)")
        )

        if save_dir:
            model.save(str(Path(save_dir) / f"{spec.name}.joblib"))

    logger.info("=" * 60)
    logger.info(f"MODEL TRAINING COMPLETE ({len(models)} models)")
    logger.info("=" * 60)

    return models


def print_model_summary(models: Dict[str, FittedModel]) -> None:
    """
    Print a summary of the fitted models.

    Args:
        models: Fitted models keyed by name
    """
    print("\n" + "=" * 70)
    print("MODEL SUMMARY")
    print("=" * 70)
    print(f"{'Model':<16} {'Kind':<14} {'Fit time (s)':<14} {'Iterations':<12} {'Converged':<10}")
    print("-" * 70)
    for name, model in models.items():
        n_iter = "-" if model.n_iter is None else str(model.n_iter)
        duration = model.training_info.get('training_duration_seconds', float('nan'))
        print(f"{name:<16} {model.kind.value:<14} {duration:<14.4f} {n_iter:<12} "
              f"{'yes' if model.converged else 'NO':<10}")
    for name, model in models.items():
        for note in model.diagnostics[:1]:
            print(f"  ! {name}: {note}")
    print("=" * 70 + "\n")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    rng = np.random.default_rng(42)
    X_train = rng.random((500, 8))
    y_train = rng.poisson(np.exp(1 + X_train[:, 0])).astype(float)

    specs = build_model_specs({
        'models': {
            'linear': {'kind': 'linear'},
            'poisson': {'kind': 'poisson'},
            'mlp': {'kind': 'mlp', 'params': {'max_iter': 20}},
        },
        'ensemble': {'name': 'voting', 'members': ['linear', 'poisson']},
    })
    models = train_models(specs, X_train, y_train)
    print_model_summary(models)
