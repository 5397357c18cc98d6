from typing import Optional, Sequence

import numpy as np
import pandas as pd


def mock_mosaic_data(
    names: Sequence[str] = ("D1", "D2", "D3"),
    n_cells: Sequence[int] = (50, 50, 50),
    n_features: Sequence[range] = (range(0, 150), range(75, 225), range(150, 300)),
    n_types: int = 3,
    random_state: Optional[int] = None,
    with_labels: bool = False,
):
    """Simulated mosaic data with overlapping feature ranges.

    Cells belong to one of ``n_types`` latent types with their own mean
    profile over the full feature range; each dataset observes only its
    slice of the features, so with the default ranges D1 and D3 share no
    feature and are linked only through D2.

    Args:
        names: Dataset names.
        n_cells: Number of cells per dataset.
        n_features: Feature positions observed by each dataset.
        n_types: Number of latent cell types.
        random_state: Seed of the generator.
        with_labels: Also return the latent type of every cell.

    Returns:
        dict[str, pd.DataFrame]: Features x cells frames named
        ``gene_<i>`` x ``<dataset>_cell_<j>``, and, with ``with_labels``, a
        ``pd.Series`` of types indexed by cell name.
    """
    if not len(names) == len(n_cells) == len(n_features):
        raise ValueError("names, n_cells and n_features must have the same length")
    rng = np.random.default_rng(random_state)
    total_features = max(max(features) for features in n_features) + 1
    type_means = rng.normal(0.0, 2.0, size=(n_types, total_features))

    assays = {}
    labels = []
    for name, cells, features in zip(names, n_cells, n_features):
        positions = np.asarray(list(features))
        types = rng.integers(0, n_types, size=cells)
        values = type_means[types][:, positions] + rng.normal(size=(cells, len(positions)))
        cell_names = [f"{name}_cell_{j + 1}" for j in range(cells)]
        assays[name] = pd.DataFrame(
            values.T,
            index=[f"gene_{i + 1}" for i in positions],
            columns=cell_names,
        )
        labels.append(pd.Series([f"type_{t + 1}" for t in types], index=cell_names))

    if with_labels:
        return assays, pd.concat(labels)
    return assays
