"""Named k-nearest-neighbour queries between two labelled point sets."""

import warnings
from dataclasses import dataclass

import numpy as np
import pandas as pd
from numpy import floating, intp
from numpy.typing import NDArray
from sklearn.neighbors import NearestNeighbors

from stabmap._assay import as_coords
from stabmap.exceptions import InputContractViolation, NeighborCountExceededWarning


@dataclass
class NeighborResult:
    """Neighbours of each query row, nearest first.

    ``indices`` index the rows of the training set whose names are
    ``train_names``; row ``i`` belongs to query cell ``query_names[i]``.
    """

    indices: NDArray[intp]
    distances: NDArray[floating]
    query_names: pd.Index
    train_names: pd.Index

    @property
    def k(self) -> int:
        return self.indices.shape[1]

    def neighbor_names(self) -> NDArray:
        return np.asarray(self.train_names)[self.indices]

    def to_frame(self) -> pd.DataFrame:
        """Query cells x k frame of training cell names."""
        return pd.DataFrame(
            self.neighbor_names(),
            index=self.query_names,
            columns=[f"NN_{j + 1}" for j in range(self.k)],
        )

    def head(self, k: int) -> "NeighborResult":
        """The first ``k`` neighbours of every query row."""
        return NeighborResult(
            indices=self.indices[:, :k],
            distances=self.distances[:, :k],
            query_names=self.query_names,
            train_names=self.train_names,
        )


def query_named_knn(
    train: pd.DataFrame,
    query: pd.DataFrame,
    k: int,
    exclude_self: bool = False,
) -> NeighborResult:
    """Euclidean k nearest training rows for every query row.

    Args:
        train: Cells x dimensions frame of training points.
        query: Cells x dimensions frame of query points, same columns count.
        k: Number of neighbours.
        exclude_self: Drop, per query row, the training point carrying the
            same cell name. Query rows without a namesake in ``train`` drop
            their farthest extra neighbour instead, so every row has ``k``
            neighbours either way.

    Returns:
        NeighborResult: Neighbours in distance order.

    Warns:
        NeighborCountExceededWarning: If ``k`` exceeds the available training
            points; ``k`` is capped to that number.

    Raises:
        InputContractViolation: On missing names, dimension mismatch or an
            empty training set.
    """
    train = as_coords(train, "train")
    query = as_coords(query, "query")
    if train.shape[1] != query.shape[1]:
        raise InputContractViolation(
            f"train has {train.shape[1]} dimensions but query has {query.shape[1]}"
        )
    if int(k) != k or k < 1:
        raise InputContractViolation(f"k must be a positive integer, got {k!r}")
    k = int(k)

    n_train = train.shape[0]
    available = n_train - 1 if exclude_self else n_train
    if available < 1:
        raise InputContractViolation("not enough training points for a neighbour query")
    if k > available:
        warnings.warn(
            f"k = {k} is larger than the {available} available training points, "
            f"using k = {available}",
            NeighborCountExceededWarning,
            stacklevel=2,
        )
        k = available

    if query.shape[0] == 0:
        return NeighborResult(
            indices=np.empty((0, k), dtype=intp),
            distances=np.empty((0, k), dtype=float),
            query_names=query.index,
            train_names=train.index,
        )

    n_fetch = k + 1 if exclude_self else k
    neighbors_model = NearestNeighbors(n_neighbors=n_fetch)
    neighbors_model.fit(train.to_numpy())
    distances, indices = neighbors_model.kneighbors(query.to_numpy())

    if exclude_self:
        train_names = np.asarray(train.index)
        is_self = train_names[indices] == np.asarray(query.index)[:, None]
        no_self = ~is_self.any(axis=1)
        is_self[no_self, -1] = True
        keep = ~is_self
        indices = indices[keep].reshape(-1, k)
        distances = distances[keep].reshape(-1, k)

    return NeighborResult(
        indices=indices.astype(intp),
        distances=distances,
        query_names=query.index,
        train_names=train.index,
    )
