import warnings
from typing import Union

import numpy as np
import pandas as pd
from numpy import intp
from numpy.typing import NDArray

from stabmap.classification._errors import get_query_k, vote_labels
from stabmap.exceptions import NeighborCountExceededWarning
from stabmap.neighbors import NeighborResult


def _vote_with_k(
    knn: NeighborResult, labels: pd.Series, query_k: NDArray[intp]
) -> tuple[pd.Series, NDArray[intp]]:
    """Vote with per-row k, capping k to the neighbours available."""
    if np.any(query_k > knn.k):
        warnings.warn(
            "k is larger than nearest neighbours provided, taking all neighbours given",
            NeighborCountExceededWarning,
            stacklevel=3,
        )
        query_k = np.minimum(query_k, knn.k)
    return vote_labels(knn, labels, query_k), query_k


def adaptive_knn(
    knn: NeighborResult,
    labels: pd.Series,
    k_local: Union[int, pd.Series],
) -> pd.Series:
    """Adaptive k-nearest neighbour classification of a neighbour table.

    Each query row is classified by the mode-first vote of its first k
    neighbours, where k is the local k of its nearest training cell.

    Args:
        knn: Neighbours of the query cells among the training cells, typically
            from ``query_named_knn(train, query, k=max(k_local))``.
        labels: Labels of the training cells, indexed by cell name.
        k_local: A single k for all cells, or a k per training cell.

    Returns:
        pd.Series: Predicted label per query cell.
    """
    predictions, _ = _vote_with_k(knn, labels, get_query_k(knn, k_local))
    return predictions
