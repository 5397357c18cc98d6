"""Adaptive k-nearest neighbour classification on a joint embedding."""

import logging
import math
import warnings
from typing import Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from stabmap._assay import as_coords, coordinate_groups
from stabmap._config import ClassificationConfig
from stabmap.classification._adaptive_knn import _vote_with_k
from stabmap.classification._cross_validation import cross_validated_error
from stabmap.classification._errors import (
    get_adaptive_k,
    get_best_column,
    get_binary_error_from_predictions,
    get_density_k,
    get_query_k,
    gm_mean,
    smooth_local,
)
from stabmap.exceptions import (
    InputContractViolation,
    PartialEmbeddingWarning,
    UndefinedLocalEstimateWarning,
)
from stabmap.neighbors import query_named_knn

logger = logging.getLogger(__name__)

OUTPUT_COLUMNS = ["input_labels", "resubstituted_labels", "predicted_labels", "k"]


def _check_labels(labels: Union[pd.Series, Mapping], coords: pd.DataFrame) -> pd.Series:
    labels = pd.Series(labels)
    if isinstance(labels.index, pd.RangeIndex):
        raise InputContractViolation("labels must be indexed by cell names")
    labels.index = labels.index.astype(str)
    labels = labels[labels.notna()]
    if not labels.index.is_unique:
        raise InputContractViolation("labels has duplicated cell names")
    unknown = labels.index.difference(coords.index)
    if len(unknown) > 0:
        raise InputContractViolation(
            f"labels name cells missing from coords: {list(unknown[:5])}"
        )
    if len(labels) == 0:
        raise InputContractViolation("at least one labelled cell is required")
    return labels


def build_labels_data_frame(
    labels: pd.Series, resubstituted_labels: pd.Series, k: np.ndarray
) -> pd.DataFrame:
    out = pd.DataFrame(index=resubstituted_labels.index)
    out["input_labels"] = labels.reindex(out.index)
    out["resubstituted_labels"] = resubstituted_labels
    out["predicted_labels"] = out["input_labels"].where(
        out["input_labels"].notna(), out["resubstituted_labels"]
    )
    out["k"] = np.asarray(k, dtype=int)
    return out


def _positions_to_k(positions: pd.Series, k_values: Sequence[int]) -> pd.Series:
    grid = np.asarray(k_values, dtype=float)
    values = positions.to_numpy(dtype=float)
    out = np.full(len(values), np.nan)
    defined = ~np.isnan(values)
    out[defined] = grid[values[defined].astype(int)]
    return pd.Series(out, index=positions.index)


def _balanced(config: ClassificationConfig, labels: pd.Series) -> Optional[pd.Series]:
    return labels if config.error_measure == "balanced_error" else None


def _uniform_optimised_k(E: pd.DataFrame, labels: pd.Series, config: ClassificationConfig) -> int:
    best = get_best_column(E, balanced_labels=_balanced(config, labels))
    if best is None:
        warnings.warn(
            "cross-validated error is undefined for every k, using the smallest k",
            UndefinedLocalEstimateWarning,
            stacklevel=4,
        )
        best = 0
    return config.sorted_k[best]


def _adaptive_labels_k(E: pd.DataFrame, labels: pd.Series, config: ClassificationConfig) -> pd.Series:
    per_class = _positions_to_k(
        get_adaptive_k(E, labels=labels, output_per_cell=False), config.sorted_k
    )
    undefined = per_class.index[per_class.isna()]
    if len(undefined) > 0:
        fallback = gm_mean(per_class.dropna())
        fallback = config.sorted_k[0] if math.isnan(fallback) else math.ceil(fallback)
        warnings.warn(
            f"no k estimate for classes {list(undefined)}, using k = {fallback}",
            UndefinedLocalEstimateWarning,
            stacklevel=4,
        )
        per_class.loc[undefined] = fallback
    return labels.map(per_class).astype(int)


def _adaptive_local_k(
    E: pd.DataFrame,
    coords_train: pd.DataFrame,
    config: ClassificationConfig,
) -> pd.Series:
    nhood = config.adaptive_local_nhood
    local = query_named_knn(coords_train, coords_train, min(nhood, coords_train.shape[0]))
    unsmoothed = _positions_to_k(get_adaptive_k(E, local=local), config.sorted_k)

    defined = unsmoothed.index[unsmoothed.notna()]
    if len(defined) == 0:
        warnings.warn(
            "no local k estimate is defined, using the smallest k",
            UndefinedLocalEstimateWarning,
            stacklevel=4,
        )
        unsmoothed[:] = config.sorted_k[0]
        local_defined = local
    elif len(defined) < len(unsmoothed):
        warnings.warn(
            f"{len(unsmoothed) - len(defined)} cells have no local k estimate, "
            "borrowing from neighbours",
            UndefinedLocalEstimateWarning,
            stacklevel=4,
        )
        local_defined = query_named_knn(
            coords_train.loc[defined], coords_train, min(nhood, len(defined))
        )
    else:
        local_defined = local

    smoothed = smooth_local(unsmoothed, local_defined, smooth=config.adaptive_local_smooth)
    return smoothed.astype(int)


def _classify_group(
    coords: pd.DataFrame, labels: pd.Series, config: ClassificationConfig
) -> pd.DataFrame:
    """Classify cells that share every coordinate."""
    coords_train = coords.loc[labels.index]

    if config.type == "uniform_fixed":
        k = config.k_values[0]
        knn = query_named_knn(coords_train, coords, k)
        resubstituted, used_k = _vote_with_k(knn, labels, get_query_k(knn, k))
        return build_labels_data_frame(labels, resubstituted, used_k)

    if config.type == "adaptive_density":
        density_k = get_density_k(coords, config.sorted_k, config.adaptive_density_maxk)
        train_k = density_k.loc[labels.index]
        n_train = coords_train.shape[0]
        if n_train < 2:
            raise InputContractViolation("adaptive_density needs at least two labelled cells")
        knn = query_named_knn(
            coords_train,
            coords_train,
            min(int(train_k.to_numpy().max()), n_train - 1),
            exclude_self=True,
        )
        predictions = pd.DataFrame(
            {
                scheme: _vote_with_k(knn, labels, train_k[scheme].to_numpy())[0]
                for scheme in density_k.columns
            }
        )
        E = get_binary_error_from_predictions(predictions, labels)
        best = get_best_column(E, balanced_labels=_balanced(config, labels))
        scheme = density_k.columns[0 if best is None else best]
        logger.info("Selected density scheme %s", scheme)

        cell_k = density_k[scheme].reindex(coords.index).to_numpy()
        knn = query_named_knn(coords_train, coords, int(cell_k.max()))
        resubstituted, used_k = _vote_with_k(knn, labels, cell_k)
        return build_labels_data_frame(labels, resubstituted, used_k)

    E = cross_validated_error(
        coords_train,
        labels,
        config.sorted_k,
        n_folds=config.adaptive_nfold,
        n_reps=config.adaptive_nrep,
        random_state=config.random_state,
        n_jobs=config.n_jobs,
    )

    if config.type == "uniform_optimised":
        k_adaptive: Union[int, pd.Series] = _uniform_optimised_k(E, labels, config)
        logger.info("Selected k = %d", k_adaptive)
        max_k = k_adaptive
    elif config.type == "adaptive_labels":
        k_adaptive = _adaptive_labels_k(E, labels, config)
        max_k = int(k_adaptive.max())
    else:
        k_adaptive = _adaptive_local_k(E, coords_train, config)
        max_k = int(k_adaptive.max())

    knn = query_named_knn(coords_train, coords, max_k)
    resubstituted, used_k = _vote_with_k(knn, labels, get_query_k(knn, k_adaptive))
    return build_labels_data_frame(labels, resubstituted, used_k)


def classify_embedding(
    coords: pd.DataFrame,
    labels: Union[pd.Series, Mapping],
    type: str = "adaptive_local",
    k_values: Sequence[int] = range(1, 51),
    error_measure: str = "simple_error",
    adaptive_nfold: int = 2,
    adaptive_nrep: int = 5,
    adaptive_local_nhood: int = 100,
    adaptive_local_smooth: int = 10,
    adaptive_density_maxk: int = 100,
    random_state: Optional[int] = None,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """Adaptive kNN classification of the unlabelled cells of an embedding.

    Cells named in ``labels`` form the training set; every row of ``coords``
    is classified.

    Coordinates may be missing in whole blocks, as ``stab_map`` leaves them
    for a disconnected mosaic. Cells are then classified within groups that
    share the same defined coordinates; groups without labelled cells are left
    unclassified and ``k`` becomes a nullable integer column.

    Args:
        coords: Cells x dimensions frame, typically from ``stab_map``.
        labels: Training labels indexed by cell name; missing values count as
            unlabelled.
        type: ``"adaptive_local"``, ``"adaptive_labels"``,
            ``"uniform_optimised"``, ``"uniform_fixed"`` or
            ``"adaptive_density"``.
        k_values: Candidate k. ``"uniform_fixed"`` uses the first one.
        error_measure: ``"simple_error"`` or ``"balanced_error"``; affects
            ``"uniform_optimised"`` and ``"adaptive_density"``.
        adaptive_nfold: Folds of the internal cross-validation.
        adaptive_nrep: Repetitions of the internal cross-validation.
        adaptive_local_nhood: Neighbourhood size for local optimisation.
        adaptive_local_smooth: Neighbours used to smooth local k.
        adaptive_density_maxk: Neighbours used to estimate local density.
        random_state: Seed of the fold assignment.
        n_jobs: Parallel jobs for the cross-validation grid.

    Returns:
        pd.DataFrame: Indexed like ``coords`` with columns ``input_labels``
        (NaN for unlabelled cells), ``resubstituted_labels`` (prediction for
        every cell), ``predicted_labels`` (input label where given, otherwise
        the prediction) and ``k`` (the k used for the cell).
    """
    config = ClassificationConfig(
        type=type,
        k_values=k_values,
        error_measure=error_measure,
        adaptive_nfold=adaptive_nfold,
        adaptive_nrep=adaptive_nrep,
        adaptive_local_nhood=adaptive_local_nhood,
        adaptive_local_smooth=adaptive_local_smooth,
        adaptive_density_maxk=adaptive_density_maxk,
        random_state=random_state,
        n_jobs=n_jobs,
    )
    coords = as_coords(coords, allow_missing=True)
    labels = _check_labels(labels, coords)
    groups = coordinate_groups(coords)
    if len(groups) == 1:
        return _classify_group(coords, labels, config)

    warnings.warn(
        f"embedding splits into {len(groups)} groups of cells with different "
        "defined coordinates, classifying each group separately",
        PartialEmbeddingWarning,
        stacklevel=2,
    )
    parts = []
    for cells, columns in groups:
        group_labels = labels[labels.index.isin(cells)]
        if len(group_labels) == 0:
            logger.info("No labelled cells among %d cells, leaving them unclassified", len(cells))
            part = pd.DataFrame(index=cells, columns=OUTPUT_COLUMNS, dtype=object)
        else:
            part = _classify_group(coords.loc[cells, columns], group_labels, config)
        part["k"] = part["k"].astype("Int64")
        parts.append(part)
    return pd.concat(parts, axis=0).loc[coords.index]
