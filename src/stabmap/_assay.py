"""Normalisation of assay inputs into AnnData objects.

An assay arrives either as a ``pandas.DataFrame`` with features as rows and
cells as columns, or as an ``AnnData`` (cells x features). Internally every
assay is an ``AnnData`` with a float ``X`` that is a dense array or CSR matrix.
"""

from typing import Mapping, Union

import numpy as np
import pandas as pd
import scipy.sparse as sp
from anndata import AnnData

from stabmap.exceptions import InputContractViolation

AssayLike = Union[pd.DataFrame, AnnData]


def _to_dense(values) -> np.ndarray:
    if sp.issparse(values):
        values = values.toarray()
    return np.asarray(values)


def _has_names(index: pd.Index) -> bool:
    return not isinstance(index, pd.RangeIndex)


def _check_unique(index: pd.Index, what: str, name: str) -> None:
    if not index.is_unique:
        dupes = index[index.duplicated()].unique().tolist()[:5]
        raise InputContractViolation(
            f"{what} names of assay '{name}' must be unique, duplicated: {dupes}"
        )


def _frame_values(frame: pd.DataFrame):
    """Return the cells x features matrix of a features x cells frame."""
    if len(frame.columns) > 0 and all(
        isinstance(dtype, pd.SparseDtype) for dtype in frame.dtypes
    ):
        return sp.csr_matrix(frame.sparse.to_coo().T, dtype=float)
    return frame.to_numpy(dtype=float).T


def as_assay(assay: AssayLike, name: str = "assay") -> AnnData:
    """Convert a single assay into a cells x features ``AnnData``.

    Args:
        assay: ``DataFrame`` (features x cells) or ``AnnData`` (cells x features).
        name: Dataset name used in error messages.

    Returns:
        AnnData: New object; the caller's data is never modified.

    Raises:
        InputContractViolation: If names are missing or duplicated, or the
            input type is not supported.
    """
    if isinstance(assay, AnnData):
        X = assay.X
        if sp.issparse(X):
            X = sp.csr_matrix(X, dtype=float)
        else:
            X = np.asarray(X, dtype=float)
        cells = pd.Index(assay.obs_names.astype(str))
        features = pd.Index(assay.var_names.astype(str))
    elif isinstance(assay, pd.DataFrame):
        if not _has_names(assay.index):
            raise InputContractViolation(
                f"assay '{name}' must have feature names as row index"
            )
        if not _has_names(assay.columns):
            raise InputContractViolation(
                f"assay '{name}' must have cell names as columns"
            )
        X = _frame_values(assay)
        cells = pd.Index(assay.columns.astype(str))
        features = pd.Index(assay.index.astype(str))
    else:
        raise InputContractViolation(
            f"assay '{name}' has unsupported type {type(assay).__name__}; "
            "expected a pandas DataFrame or AnnData"
        )

    _check_unique(features, "feature", name)
    _check_unique(cells, "cell", name)

    return AnnData(
        X=X,
        obs=pd.DataFrame(index=cells),
        var=pd.DataFrame(index=features),
    )


def assay_collection(assays: Mapping[str, AssayLike]) -> dict[str, AnnData]:
    """Normalise a named mapping of assays, preserving its order.

    Raises:
        InputContractViolation: If the mapping is empty or a cell name is
            shared by two assays.
    """
    if len(assays) == 0:
        raise InputContractViolation("assay collection is empty")

    collection: dict[str, AnnData] = {}
    owner: dict[str, str] = {}
    for name, assay in assays.items():
        adata = as_assay(assay, str(name))
        for cell in adata.obs_names:
            if cell in owner:
                raise InputContractViolation(
                    f"cell '{cell}' appears in assays '{owner[cell]}' and '{name}'"
                )
            owner[cell] = str(name)
        collection[str(name)] = adata
    return collection


def all_cell_names(collection: Mapping[str, AnnData]) -> pd.Index:
    """Union of cell names across a collection, in collection order."""
    names = [adata.obs_names for adata in collection.values()]
    if not names:
        return pd.Index([], dtype=object)
    return pd.Index(np.concatenate([np.asarray(n) for n in names]))


def as_coords(coords, what: str = "coords", allow_missing: bool = False) -> pd.DataFrame:
    """Validate a cells x dimensions coordinate frame.

    With ``allow_missing`` NaN entries are accepted as long as every cell has
    at least one defined coordinate.
    """
    if not isinstance(coords, pd.DataFrame):
        raise InputContractViolation(
            f"{what} must be a pandas DataFrame with cell names as index"
        )
    if not _has_names(coords.index):
        raise InputContractViolation(f"{what} must have cell names as row index")
    if not coords.index.is_unique:
        raise InputContractViolation(f"{what} has duplicated cell names")
    values = coords.to_numpy(dtype=float)
    missing = np.isnan(values)
    if missing.any() and not allow_missing:
        raise InputContractViolation(f"{what} contains missing values")
    if coords.shape[1] > 0 and missing.all(axis=1).any():
        empty = list(coords.index[missing.all(axis=1)][:5])
        raise InputContractViolation(f"{what} has cells without any coordinate: {empty}")
    return pd.DataFrame(values, index=coords.index.astype(str), columns=coords.columns)


def coordinate_groups(coords: pd.DataFrame) -> list[tuple[pd.Index, pd.Index]]:
    """Split cells by the set of coordinates they have defined.

    An embedding of a disconnected mosaic leaves cells without coordinates in
    the blocks of references they cannot reach. Cells sharing the same defined
    columns form one group, in order of first appearance.

    Returns:
        list: ``(cells, columns)`` per group.
    """
    defined = coords.notna().to_numpy()
    codes, patterns = pd.factorize(pd.Series([row.tobytes() for row in defined], dtype=object))
    groups = []
    for code in range(len(patterns)):
        rows = np.flatnonzero(codes == code)
        groups.append((coords.index[rows], coords.columns[defined[rows[0]]]))
    return groups
