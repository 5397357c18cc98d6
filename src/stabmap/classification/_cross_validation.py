"""Repeated random-fold cross-validation of kNN error at every candidate k."""

import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from numpy import intp
from numpy.typing import NDArray

from stabmap.classification._errors import combine_binary_errors, get_binary_error
from stabmap.neighbors import query_named_knn

logger = logging.getLogger(__name__)


def fold_assignments(
    n_cells: int, n_folds: int, n_reps: int, random_state: Optional[int] = None
) -> list[NDArray[intp]]:
    """Random fold of every cell, one array per repetition.

    Folds are drawn independently per cell, so their sizes and label
    composition vary. All draws happen here, up front, from one generator.
    """
    rng = np.random.default_rng(random_state)
    return [rng.integers(0, n_folds, size=n_cells) for _ in range(n_reps)]


def _fold_error(
    coords_train: pd.DataFrame,
    labels: pd.Series,
    folds: NDArray[intp],
    fold: int,
    k_values: Sequence[int],
) -> Optional[pd.DataFrame]:
    held_out = folds == fold
    if held_out.all() or not held_out.any():
        return None
    reference = coords_train[~held_out]
    query = coords_train[held_out]
    knn = query_named_knn(reference, query, min(max(k_values), reference.shape[0]))
    return get_binary_error(
        knn, k_values, labels[reference.index], labels[query.index]
    )


def cross_validated_error(
    coords_train: pd.DataFrame,
    labels: pd.Series,
    k_values: Sequence[int],
    n_folds: int = 2,
    n_reps: int = 5,
    random_state: Optional[int] = None,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """Pooled binary error matrix of the training cells.

    In every repetition cells are assigned to random folds; each fold is
    classified by its kNN among the other folds. Error rows of the same cell
    are averaged across repetitions. Cells never held out, or only in
    degenerate folds, keep an all-NaN row.

    Returns:
        pd.DataFrame: Training cells x ``K_<k>`` mean error.
    """
    assignments = fold_assignments(coords_train.shape[0], n_folds, n_reps, random_state)
    tasks = [(rep, fold) for rep in range(n_reps) for fold in range(n_folds)]
    for rep, fold in tasks:
        logger.debug("Rep %d of %d, fold %d of %d", rep + 1, n_reps, fold + 1, n_folds)

    results = Parallel(n_jobs=n_jobs)(
        delayed(_fold_error)(coords_train, labels, assignments[rep], fold, k_values)
        for rep, fold in tasks
    )
    error_list = [E for E in results if E is not None]

    columns = [f"K_{k}" for k in k_values]
    if not error_list:
        return pd.DataFrame(np.nan, index=coords_train.index, columns=columns)
    return combine_binary_errors(error_list).reindex(index=coords_train.index, columns=columns)
