import logging
from typing import Union

from stabmap.classification import adaptive_knn, classify_embedding
from stabmap.datasets import assays_from_anndata, mock_mosaic_data
from stabmap.embedding import reweight_embedding, stab_map
from stabmap.imputation import impute_embedding
from stabmap.neighbors import NeighborResult, query_named_knn
from stabmap.topology import mosaic_data_topology

logging.getLogger(__name__).addHandler(logging.NullHandler())


def set_log_level(level: Union[int, str] = logging.INFO) -> None:
    """Print stabmap log records of ``level`` and above to stderr."""
    logger = logging.getLogger(__name__)
    logger.setLevel(level)
    if not any(isinstance(handler, logging.StreamHandler) for handler in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s: %(message)s"))
        logger.addHandler(handler)


__all__ = [
    "mosaic_data_topology",
    "query_named_knn",
    "NeighborResult",
    "stab_map",
    "reweight_embedding",
    "classify_embedding",
    "adaptive_knn",
    "impute_embedding",
    "mock_mosaic_data",
    "assays_from_anndata",
    "set_log_level",
]
