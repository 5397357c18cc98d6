"""Nearest-neighbour imputation of assay values through a joint embedding."""

import logging
import warnings
from typing import Callable, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
import scipy.sparse as sp
from anndata import AnnData

from stabmap._assay import (
    AssayLike,
    all_cell_names,
    as_coords,
    assay_collection,
    coordinate_groups,
)
from stabmap.exceptions import InputContractViolation, PartialEmbeddingWarning
from stabmap.neighbors import NeighborResult, query_named_knn

logger = logging.getLogger(__name__)

Aggregator = Union[str, Callable[..., np.ndarray]]

_LINEAR_AGGREGATORS = ("mean", "sum")


def _cell_selection(
    names: Optional[Sequence[str]], default: pd.Index, embedding: pd.DataFrame, what: str
) -> pd.Index:
    if names is None:
        return default[default.isin(embedding.index)]
    selected = pd.Index([str(name) for name in names]).unique()
    missing = selected.difference(embedding.index)
    if len(missing) > 0:
        raise InputContractViolation(
            f"{what} cells missing from the embedding: {list(missing[:5])}"
        )
    return selected


def _neighbour_matrix(knn: NeighborResult, fun: str) -> sp.csr_matrix:
    """Query x training matrix combining each query's neighbours linearly."""
    n_query, k = knn.indices.shape
    weight = 1.0 / k if fun == "mean" else 1.0
    rows = np.repeat(np.arange(n_query), k)
    return sp.csr_matrix(
        (np.full(n_query * k, weight), (rows, knn.indices.ravel())),
        shape=(n_query, len(knn.train_names)),
    )


def _aggregate(X, knn: NeighborResult, fun: Aggregator):
    if isinstance(fun, str) and fun in _LINEAR_AGGREGATORS:
        return _neighbour_matrix(knn, fun) @ X

    if sp.issparse(X):
        X = X.toarray()
    stacked = np.stack([X[knn.indices[:, j]] for j in range(knn.k)], axis=0)
    if fun == "median":
        return np.median(stacked, axis=0)
    if callable(fun):
        return np.asarray(fun(stacked, axis=0))
    raise InputContractViolation(
        f"fun must be 'mean', 'sum', 'median' or a callable, got {fun!r}"
    )


def _imputed_frame(values, features: pd.Index, cells: pd.Index) -> pd.DataFrame:
    if sp.issparse(values):
        return pd.DataFrame.sparse.from_spmatrix(
            sp.csc_matrix(values.T), index=features, columns=cells
        )
    return pd.DataFrame(np.asarray(values).T, index=features, columns=cells)


def _impute_assay(
    name: str,
    adata: AnnData,
    embedding: pd.DataFrame,
    reference_cells: pd.Index,
    query_cells: pd.Index,
    neighbours: int,
    fun: Aggregator,
    groups: list[tuple[pd.Index, pd.Index]],
) -> Optional[pd.DataFrame]:
    """Impute one assay group by group; query cells in groups without its
    reference cells are left out."""
    blocks, imputed_cells, omitted = [], [], []
    for cells, columns in groups:
        group_query = query_cells[query_cells.isin(cells)]
        if len(group_query) == 0:
            continue
        group_reference = reference_cells[reference_cells.isin(cells)]
        if len(group_reference) == 0:
            omitted.extend(group_query)
            continue
        knn = query_named_knn(
            embedding.loc[group_reference, columns],
            embedding.loc[group_query, columns],
            neighbours,
        )
        blocks.append(_aggregate(adata[group_reference].X, knn, fun))
        imputed_cells.extend(group_query)

    if omitted:
        warnings.warn(
            f"{len(omitted)} query cells share no embedding coordinates with "
            f"reference cells of {name} and are not imputed",
            PartialEmbeddingWarning,
            stacklevel=3,
        )
    if not blocks:
        return None

    values = sp.vstack(blocks, format="csr") if sp.issparse(blocks[0]) else np.vstack(blocks)
    kept = query_cells[query_cells.isin(imputed_cells)]
    order = pd.Index(imputed_cells).get_indexer(kept)
    return _imputed_frame(values[order], adata.var_names, kept)


def impute_embedding(
    assays: Mapping[str, AssayLike],
    embedding: pd.DataFrame,
    reference: Optional[Sequence[str]] = None,
    query: Optional[Sequence[str]] = None,
    neighbours: int = 5,
    fun: Aggregator = "mean",
) -> dict[str, pd.DataFrame]:
    """Impute assay values of query cells from their embedding neighbours.

    For every assay holding at least one reference cell, each query cell
    receives the aggregate of the observed values of its ``neighbours``
    nearest reference cells of that assay, nearest measured in ``embedding``.

    An embedding with missing blocks, as ``stab_map`` returns for a
    disconnected mosaic, is split into groups of cells with the same defined
    coordinates. Neighbours are searched within a group only, and query cells
    whose group holds no reference cell of an assay are left out of that
    assay's result.

    Args:
        assays: Named assays (features x cells ``DataFrame`` or ``AnnData``).
        embedding: Cells x dimensions joint embedding, e.g. from ``stab_map``.
        reference: Cells whose observed values are used. Defaults to all
            assay cells present in the embedding.
        query: Cells to impute. Defaults to all assay cells present in the
            embedding.
        neighbours: Number of nearest reference cells to aggregate.
        fun: ``"mean"``, ``"sum"``, ``"median"`` or a callable reducing a
            ``(neighbours, cells, features)`` array with ``axis=0``. The
            linear aggregators keep sparse assays sparse.

    Returns:
        dict[str, pd.DataFrame]: Features x query cells per assay, in
        collection order; assays without reference cells are skipped.
    """
    if int(neighbours) != neighbours or neighbours < 1:
        raise InputContractViolation(f"neighbours must be a positive integer, got {neighbours!r}")
    collection = assay_collection(assays)
    embedding = as_coords(embedding, "embedding", allow_missing=True)

    cells = all_cell_names(collection)
    reference_cells = _cell_selection(reference, cells, embedding, "reference")
    query_cells = _cell_selection(query, cells, embedding, "query")

    groups = coordinate_groups(embedding)
    if len(groups) > 1:
        warnings.warn(
            f"embedding splits into {len(groups)} groups of cells with different "
            "defined coordinates, imputing within each group",
            PartialEmbeddingWarning,
            stacklevel=2,
        )

    imputed = {}
    for name, adata in collection.items():
        assay_reference = adata.obs_names[adata.obs_names.isin(reference_cells)]
        if len(assay_reference) == 0:
            logger.debug("Skipping %s, it holds no reference cells", name)
            continue
        logger.info("Imputing %d features of %s", adata.n_vars, name)
        frame = _impute_assay(
            name, adata, embedding, assay_reference, query_cells, neighbours, fun, groups
        )
        if frame is not None:
            imputed[name] = frame
    return imputed
