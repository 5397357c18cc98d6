"""Majority votes, binary error matrices and the selection of k from them.

An error matrix is a float ``DataFrame`` with one row per evaluated cell and
one column per candidate (``K_<k>`` for neighbourhood sizes). Entries are
1.0 for a wrong classification, 0.0 for a correct one and NaN where the
classification is undefined.
"""

from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd
from numpy import floating, intp
from numpy.typing import NDArray

from stabmap.neighbors import NeighborResult, query_named_knn


def vote_mode_first(codes: NDArray[intp], k: NDArray[intp], n_classes: int) -> NDArray[intp]:
    """Majority vote over the first ``k[i]`` entries of each row of ``codes``.

    Ties between the most frequent classes go to the class that occurs first
    in the row, i.e. the one with the nearest neighbour.

    Args:
        codes: Array of shape ``(n, m)`` of class codes in ``[0, n_classes)``,
            nearest neighbour first.
        k: Array of shape ``(n,)`` with the number of leading entries per row,
            clipped to ``[1, m]``.
        n_classes: Number of classes.

    Returns:
        np.ndarray: Winning class code per row.
    """
    n, m = codes.shape
    if n == 0:
        return np.empty(0, dtype=intp)
    k = np.clip(np.asarray(k, dtype=intp), 1, m)
    rows = np.repeat(np.arange(n), m)
    positions = np.tile(np.arange(m), n)
    flat_codes = codes.ravel()
    inside = positions < np.repeat(k, m)

    counts = np.zeros((n, n_classes), dtype=intp)
    np.add.at(counts, (rows[inside], flat_codes[inside]), 1)

    first = np.full((n, n_classes), m, dtype=intp)
    np.minimum.at(first, (rows[inside], flat_codes[inside]), positions[inside])

    tied = counts == counts.max(axis=1, keepdims=True)
    return np.where(tied, first, m + 1).argmin(axis=1)


def get_mode_first(x: Sequence, first: Optional[int] = None):
    """Most frequent value among the first ``first`` values of ``x``.

    Ties are resolved by the value occurring first.
    """
    values = list(x)[:first]
    if not values:
        raise ValueError("get_mode_first needs at least one value")
    codes, uniques = pd.factorize(pd.Series(values, dtype=object))
    winner = vote_mode_first(codes[None, :], np.array([len(values)]), len(uniques))
    return uniques[winner[0]]


def _encode_neighbours(knn: NeighborResult, class_train: pd.Series):
    train_labels = class_train.reindex(knn.train_names)
    if train_labels.isna().any():
        raise ValueError("every training cell of the neighbour table needs a label")
    codes, uniques = pd.factorize(train_labels)
    return codes[knn.indices], uniques


def vote_labels(
    knn: NeighborResult, class_train: pd.Series, k: NDArray[intp]
) -> pd.Series:
    """Mode-first label of the first ``k[i]`` neighbours of every query row."""
    neighbour_codes, uniques = _encode_neighbours(knn, class_train)
    winners = vote_mode_first(neighbour_codes, k, len(uniques))
    return pd.Series(np.asarray(uniques)[winners], index=knn.query_names)


def get_binary_error(
    knn: NeighborResult,
    k_values: Sequence[int],
    class_train: pd.Series,
    class_true: pd.Series,
) -> pd.DataFrame:
    """Binary error matrix of kNN classification at every candidate k.

    One neighbour table (of the largest k available) serves all candidates.
    Columns for k larger than the neighbours in ``knn`` are NaN.
    """
    neighbour_codes, uniques = _encode_neighbours(knn, class_train)
    truth = class_true.reindex(knn.query_names).to_numpy()
    n = len(knn.query_names)

    columns = {}
    for k in k_values:
        if k > knn.k:
            columns[f"K_{k}"] = np.full(n, np.nan)
            continue
        winners = vote_mode_first(neighbour_codes, np.full(n, k), len(uniques))
        columns[f"K_{k}"] = (np.asarray(uniques)[winners] != truth).astype(float)
    return pd.DataFrame(columns, index=knn.query_names)


def get_binary_error_from_predictions(
    predictions: pd.DataFrame, labels: pd.Series
) -> pd.DataFrame:
    """Binary error matrix of precomputed predictions (cells x candidates)."""
    truth = labels.reindex(predictions.index)
    errors = predictions.ne(truth, axis=0).astype(float)
    return errors.where(predictions.notna())


def combine_binary_errors(error_list: Sequence[pd.DataFrame]) -> pd.DataFrame:
    """Pool error matrices whose rows may repeat cells.

    The matrices are concatenated and rows of the same cell averaged,
    ignoring NaN entries.
    """
    if len(error_list) == 0:
        return pd.DataFrame()
    pooled = pd.concat(error_list, axis=0)
    return pooled.groupby(level=0, sort=False).mean()


def _first_min(values: NDArray[floating]) -> NDArray[floating]:
    """Row-wise position of the first minimum, NaN for all-NaN rows."""
    undefined = np.isnan(values).all(axis=1)
    best = np.where(np.isnan(values), np.inf, values).argmin(axis=1).astype(float)
    best[undefined] = np.nan
    return best


def get_best_column(
    E: pd.DataFrame, balanced_labels: Optional[pd.Series] = None
) -> Optional[int]:
    """Position of the column with the smallest aggregate error.

    Simple error is the mean of the non-NaN entries of a column. Balanced
    error is the mean over classes of the per-class column means. Ties go to
    the first column, i.e. the smallest k on an ascending grid.

    Returns:
        int or None: None when every column is undefined.
    """
    if balanced_labels is None:
        means = E.mean(axis=0)
    else:
        groups = balanced_labels.reindex(E.index)
        means = E.groupby(groups).mean().mean(axis=0)
    best = _first_min(means.to_numpy(dtype=float)[None, :])[0]
    return None if np.isnan(best) else int(best)


def _local_means(E: pd.DataFrame, local: NeighborResult) -> NDArray[floating]:
    values = E.reindex(local.train_names).to_numpy(dtype=float)
    sums = np.zeros((len(local.query_names), values.shape[1]))
    counts = np.zeros_like(sums)
    for j in range(local.k):
        rows = values[local.indices[:, j]]
        defined = ~np.isnan(rows)
        sums += np.where(defined, rows, 0.0)
        counts += defined
    with np.errstate(invalid="ignore", divide="ignore"):
        return np.where(counts > 0, sums / counts, np.nan)


def get_adaptive_k(
    E: pd.DataFrame,
    labels: Optional[pd.Series] = None,
    local: Optional[NeighborResult] = None,
    output_per_cell: bool = True,
) -> pd.Series:
    """Best column position per class or per local neighbourhood.

    With ``labels``: every cell's best column is the first minimum of its row;
    the class choice is the most frequent of those, ties to the earliest
    column. With ``local``: each query cell of ``local`` gets the best column
    of the mean error over its neighbourhood.

    Returns:
        pd.Series: Column positions (float, NaN where undefined), indexed by
        cell, or by class when ``output_per_cell`` is False.
    """
    if labels is None and local is None:
        raise ValueError("either labels or local must be given")

    if local is not None:
        best = _first_min(_local_means(E, local))
        return pd.Series(best, index=local.query_names)

    per_cell = _first_min(E.to_numpy(dtype=float))
    cell_labels = labels.reindex(E.index)
    per_class = {}
    for cls in pd.unique(cell_labels.dropna()):
        chosen = per_cell[(cell_labels == cls).to_numpy() & ~np.isnan(per_cell)]
        if len(chosen) == 0:
            per_class[cls] = np.nan
        else:
            per_class[cls] = float(np.bincount(chosen.astype(intp)).argmax())
    per_class = pd.Series(per_class, dtype=float)

    if not output_per_cell:
        return per_class
    return cell_labels.map(per_class).astype(float)


def get_query_k(knn: NeighborResult, k_local: Union[int, pd.Series]) -> NDArray[intp]:
    """k of each query row: the k of its nearest training cell."""
    if np.isscalar(k_local):
        return np.full(len(knn.query_names), int(k_local), dtype=intp)
    train_k = k_local.reindex(knn.train_names).to_numpy()
    return train_k[knn.indices[:, 0]].astype(intp)


def smooth_local(best_k: pd.Series, local: NeighborResult, smooth: int = 10) -> pd.Series:
    """Rounded mean of ``best_k`` over the first ``smooth`` neighbours."""
    values = best_k.reindex(local.train_names).to_numpy(dtype=float)
    neighbour_k = values[local.indices[:, :smooth]]
    with np.errstate(invalid="ignore"):
        smoothed = np.rint(np.nanmean(neighbour_k, axis=1))
    return pd.Series(smoothed, index=local.query_names)


def gm_mean(x) -> float:
    """Geometric mean of the positive, finite entries of ``x``."""
    values = np.asarray(x, dtype=float)
    values = values[np.isfinite(values) & (values > 0)]
    if len(values) == 0:
        return float("nan")
    return float(np.exp(np.log(values).mean()))


def get_density_k(
    coords: pd.DataFrame, k_values: Sequence[int], dist_maxk: int = 100
) -> pd.DataFrame:
    """Density-derived k schemes for every cell.

    Local density is the inverse mean distance to the ``dist_maxk`` nearest
    other cells. For every candidate ``hi`` above the smallest candidate ``lo``
    densities are rescaled linearly onto ``[lo, hi]`` and rounded up, so denser
    cells get larger k. A single candidate yields one constant scheme.

    Returns:
        pd.DataFrame: Cells x schemes (``K_<lo>_<hi>``) of integer k.
    """
    k_sorted = sorted(set(int(k) for k in k_values))
    n = coords.shape[0]
    pairs = [(k_sorted[0], hi) for hi in k_sorted[1:]]
    if not pairs or n < 2:
        return pd.DataFrame({f"K_{k_sorted[0]}_{k_sorted[0]}": k_sorted[0]}, index=coords.index)

    knn = query_named_knn(coords, coords, min(dist_maxk, n - 1), exclude_self=True)
    mean_distance = knn.distances.mean(axis=1)
    positive = mean_distance[mean_distance > 0]
    floor = positive.min() if len(positive) else 1.0
    density = 1.0 / np.maximum(mean_distance, floor)

    spread = density.max() - density.min()
    relative = (density - density.min()) / spread if spread > 0 else np.zeros(n)

    schemes = {}
    for lo, hi in pairs:
        k = np.ceil(lo + relative * (hi - lo) - 1e-9)
        schemes[f"K_{lo}_{hi}"] = np.clip(k, lo, hi).astype(intp)
    return pd.DataFrame(schemes, index=coords.index)
