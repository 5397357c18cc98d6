"""Per-edge projection models and the single ``apply_projection`` entry point.

A projection model carries cells of one dataset into the coordinate space of
its neighbour on a topology path. Three variants exist:

* ``LinearWeights``: an affine map on a fixed feature set, ``X @ W + b``.
* ``DiscriminantModel``: a fitted LDA (scores) or linear SVM (decision values).
* ``CompositeModel``: both of the above side by side; the outputs are
  column-bound, linear block first.
"""

from dataclasses import dataclass, field
from typing import Callable, Union

import numpy as np
import pandas as pd
from anndata import AnnData
from numpy import number
from numpy.typing import NDArray
from sklearn.decomposition import PCA, TruncatedSVD
from sklearn.discriminant_analysis import LinearDiscriminantAnalysis
from sklearn.pipeline import Pipeline, make_pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.svm import SVC

from stabmap._assay import _to_dense
from stabmap.exceptions import InputContractViolation

DiscriminantEstimator = Union[LinearDiscriminantAnalysis, Pipeline]

# singular values below this fraction of the largest are treated as noise
_RANK_TOLERANCE = 1e-8


@dataclass
class LinearWeights:
    features: pd.Index
    weights: NDArray[number]
    offset: NDArray[number]
    columns: pd.Index
    kind: str = field(default="linear", init=False)


@dataclass
class DiscriminantModel:
    features: pd.Index
    estimator: DiscriminantEstimator
    columns: pd.Index
    kind: str = field(default="discriminant", init=False)


@dataclass
class CompositeModel:
    linear: LinearWeights
    discriminant: DiscriminantModel
    kind: str = field(default="composite", init=False)

    @property
    def columns(self) -> pd.Index:
        return self.linear.columns.append(self.discriminant.columns)


ProjectionModel = Union[LinearWeights, DiscriminantModel, CompositeModel]


def feature_matrix(adata: AnnData, features: pd.Index):
    """Columns of ``adata.X`` for ``features``, in that order; keeps sparsity."""
    positions = adata.var_names.get_indexer(features)
    if np.any(positions < 0):
        missing = list(features[positions < 0][:5])
        raise InputContractViolation(f"features missing from assay: {missing}")
    return adata.X[:, positions]


def _apply_linear(model: LinearWeights, adata: AnnData) -> NDArray[number]:
    X = feature_matrix(adata, model.features)
    return np.asarray(X @ model.weights) + model.offset


def _apply_discriminant(model: DiscriminantModel, adata: AnnData) -> NDArray[number]:
    X = _to_dense(feature_matrix(adata, model.features))
    return _discriminant_scores(model.estimator, X)


def _apply_composite(model: CompositeModel, adata: AnnData) -> NDArray[number]:
    return np.hstack(
        [_apply_linear(model.linear, adata), _apply_discriminant(model.discriminant, adata)]
    )


_APPLY: dict[str, Callable[..., NDArray[number]]] = {
    "linear": _apply_linear,
    "discriminant": _apply_discriminant,
    "composite": _apply_composite,
}


def apply_projection(model: ProjectionModel, adata: AnnData) -> pd.DataFrame:
    """Project the cells of ``adata`` with ``model``.

    Returns:
        pd.DataFrame: Cells x ``model.columns`` coordinates.
    """
    values = _APPLY[model.kind](model, adata)
    return pd.DataFrame(values, index=adata.obs_names, columns=model.columns)


def _discriminant_scores(estimator: DiscriminantEstimator, X: NDArray[number]) -> NDArray[number]:
    if isinstance(estimator, LinearDiscriminantAnalysis):
        return estimator.transform(X)
    scores = estimator.decision_function(X)
    if scores.ndim == 1:
        scores = scores[:, None]
    return scores


def standardise(X: NDArray[number], center: bool, scale: bool):
    """Column means and scales used to standardise ``X``.

    Zero or undefined scales are replaced by one.
    """
    mean = X.mean(axis=0) if center else np.zeros(X.shape[1])
    if scale and X.shape[0] > 1:
        sd = X.std(axis=0, ddof=1)
        sd[~np.isfinite(sd) | (sd == 0)] = 1.0
    else:
        sd = np.ones(X.shape[1])
    return mean, sd


def principal_axes(Z: NDArray[number], n_components: int, center: bool) -> NDArray[number]:
    """Loadings (features x components) of an already standardised matrix.

    The number of components is capped by the rank the data can support, and
    components with negligible singular values are dropped.
    """
    n_cells, n_features = Z.shape
    if n_cells < 2:
        raise InputContractViolation("at least two cells are needed for dimension reduction")
    limit = min(n_cells - 1, n_features) if center else min(n_cells, n_features)
    n_components = max(1, min(n_components, limit))

    if center:
        reducer = PCA(n_components=n_components, svd_solver="full").fit(Z)
    else:
        reducer = TruncatedSVD(
            n_components=n_components, algorithm="randomized", random_state=0
        ).fit(Z)
    singular_values = reducer.singular_values_
    keep = singular_values > singular_values.max(initial=0.0) * _RANK_TOLERANCE
    if not np.any(keep):
        keep[0] = True
    return reducer.components_[keep].T


def fit_linear_weights(
    X: NDArray[number],
    target: pd.DataFrame,
    features: pd.Index,
    n_components: int,
    center: bool = True,
    scale: bool = True,
) -> LinearWeights:
    """Principal component regression of ``target`` on ``X``.

    ``X`` (cells x features) is standardised and reduced to at most
    ``n_components`` principal components; ``target`` (same cells) is then
    regressed on the component scores by least squares with an intercept.
    The three steps are collapsed into one affine map on the raw features.
    """
    X = np.asarray(X, dtype=float)
    mean, sd = standardise(X, center, scale)
    Z = (X - mean) / sd
    rotation = principal_axes(Z, n_components, center)
    scores = Z @ rotation

    design = np.hstack([np.ones((scores.shape[0], 1)), scores])
    coef, *_ = np.linalg.lstsq(design, target.to_numpy(dtype=float), rcond=None)
    intercept, beta = coef[0], coef[1:]

    loadings = rotation @ beta
    weights = loadings / sd[:, None]
    offset = intercept - (mean / sd) @ loadings
    return LinearWeights(
        features=pd.Index(features),
        weights=weights,
        offset=offset,
        columns=pd.Index(target.columns),
    )


def fit_discriminant(
    X: NDArray[number],
    labels: pd.Series,
    features: pd.Index,
    discriminant: str = "lda",
) -> DiscriminantModel:
    """Fit an LDA or linear SVM on the labelled rows of ``X``.

    ``labels`` is aligned with the rows of ``X``; missing labels are skipped.
    """
    X = np.asarray(X, dtype=float)
    mask = labels.notna().to_numpy()
    y = labels[mask].astype(str).to_numpy()
    n_classes = len(np.unique(y))
    if n_classes < 2:
        raise InputContractViolation(
            f"discriminant projection needs at least two labelled classes, got {n_classes}"
        )

    if discriminant == "lda":
        estimator: DiscriminantEstimator = LinearDiscriminantAnalysis()
        prefix = "LD"
    else:
        estimator = make_pipeline(StandardScaler(), SVC(kernel="linear"))
        prefix = "SV"
    estimator.fit(X[mask], y)

    n_out = _discriminant_scores(estimator, X[mask][:1]).shape[1]
    return DiscriminantModel(
        features=pd.Index(features),
        estimator=estimator,
        columns=pd.Index([f"{prefix}{j + 1}" for j in range(n_out)]),
    )


def reference_pca(
    X: NDArray[number],
    cells: pd.Index,
    n_components: int,
    center: bool = True,
    scale: bool = True,
) -> pd.DataFrame:
    """Principal component scores of a reference dataset (cells x PCs)."""
    X = np.asarray(X, dtype=float)
    mean, sd = standardise(X, center, scale)
    Z = (X - mean) / sd
    rotation = principal_axes(Z, n_components, center)
    scores = Z @ rotation
    return pd.DataFrame(
        scores,
        index=cells,
        columns=[f"PC{j + 1}" for j in range(scores.shape[1])],
    )
