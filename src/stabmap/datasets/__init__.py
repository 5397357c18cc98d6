from stabmap.datasets._anndata import assays_from_anndata
from stabmap.datasets._mock import mock_mosaic_data


__all__ = [
    "assays_from_anndata",
    "mock_mosaic_data",
]
