from stabmap.neighbors._knn import NeighborResult, query_named_knn

__all__ = [
    "NeighborResult",
    "query_named_knn",
]
