from typing import Mapping, Optional

import pandas as pd
from anndata import AnnData


def assays_from_anndata(
    adatas: Mapping[str, AnnData],
    layer: Optional[str] = None,
    labels_key: Optional[str] = None,
):
    """Extract the assay matrix of every ``AnnData`` in a named mapping.

    The result is directly usable as the assay collection of ``stab_map``.
    With ``labels_key`` the ``obs`` column of that name is also collected,
    keyed by dataset as expected by the ``labels`` argument of ``stab_map``.
    """
    assays: dict[str, AnnData] = {}
    labels: dict[str, pd.Series] = {}
    for name, adata in adatas.items():
        if layer is not None and layer not in adata.layers:
            raise KeyError(f"layer '{layer}' not found in dataset '{name}'")
        X = adata.X if layer is None else adata.layers[layer]
        assays[name] = AnnData(
            X=X,
            obs=pd.DataFrame(index=adata.obs_names.copy()),
            var=pd.DataFrame(index=adata.var_names.copy()),
        )
        if labels_key is not None and labels_key in adata.obs:
            labels[name] = adata.obs[labels_key].copy()

    if labels_key is not None:
        return assays, labels
    return assays
