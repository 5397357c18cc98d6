"""Stabilised mosaic integration of datasets with partially shared features."""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from anndata import AnnData

from stabmap._assay import AssayLike, _to_dense, all_cell_names, assay_collection
from stabmap._config import ComponentSpec, StabMapConfig
from stabmap.embedding._projection import (
    CompositeModel,
    ProjectionModel,
    apply_projection,
    feature_matrix,
    fit_discriminant,
    fit_linear_weights,
    reference_pca,
    _discriminant_scores,
)
from stabmap.exceptions import (
    DisconnectedTopologyError,
    InputContractViolation,
    UnreachableDatasetWarning,
)
from stabmap.topology._topology import (
    is_connected,
    shortest_paths_from,
    topology_components,
    topology_graph,
)

logger = logging.getLogger(__name__)


@dataclass
class PathModel:
    """Projection of one dataset into one reference's space.

    ``path`` runs from ``source`` to ``reference``; ``models[i]`` carries
    cells of ``path[i]`` into the coordinates of ``path[i + 1]``'s cells, i.e.
    one hop closer to the reference. Each model is fitted on coordinates
    produced by the models after it, so ``models[0]`` alone maps the source
    assay into the reference space.
    """

    source: str
    reference: str
    path: list[str]
    models: list[ProjectionModel] = field(default_factory=list)

    def project(self, adata: AnnData) -> pd.DataFrame:
        if not self.models:
            raise InputContractViolation(
                f"dataset '{self.source}' is the reference and has no projection"
            )
        return apply_projection(self.models[0], adata)


@dataclass
class _ReferenceSpace:
    coords: pd.DataFrame
    n_linear: int
    labels: Optional[pd.Series] = None


def _shared_features(child: AnnData, parent: AnnData, max_features: int) -> pd.Index:
    shared = parent.var_names[parent.var_names.isin(child.var_names)]
    if len(shared) > max_features:
        X = _to_dense(feature_matrix(parent, shared))
        variances = X.var(axis=0)
        top = np.sort(np.argsort(-variances, kind="stable")[:max_features])
        shared = shared[top]
    return shared


def _check_labels(
    labels: Optional[Mapping[str, pd.Series]],
    collection: Mapping[str, AnnData],
) -> dict[str, pd.Series]:
    checked: dict[str, pd.Series] = {}
    for name, series in (labels or {}).items():
        name = str(name)
        if name not in collection:
            raise InputContractViolation(f"labels given for unknown dataset '{name}'")
        series = pd.Series(series)
        series.index = series.index.astype(str)
        unknown = series.index.difference(collection[name].obs_names)
        if len(unknown) > 0:
            raise InputContractViolation(
                f"labels for '{name}' name cells not in that assay: {list(unknown[:5])}"
            )
        checked[name] = series.reindex(collection[name].obs_names)
    return checked


def _reference_space(
    name: str,
    adata: AnnData,
    labels: Optional[pd.Series],
    features: Optional[Sequence[str]],
    scores: Optional[pd.DataFrame],
    config: StabMapConfig,
) -> _ReferenceSpace:
    """Native coordinates of a reference dataset: PCs, then LDs if labelled."""
    if scores is not None:
        scores = pd.DataFrame(scores)
        scores.index = scores.index.astype(str)
        missing = adata.obs_names.difference(scores.index)
        if len(missing) > 0:
            raise InputContractViolation(
                f"reference scores for '{name}' lack cells: {list(missing[:5])}"
            )
        coords = scores.loc[adata.obs_names].astype(float)
    else:
        use = adata.var_names if features is None else pd.Index(features).astype(str)
        unknown = use.difference(adata.var_names)
        if len(unknown) > 0:
            raise InputContractViolation(
                f"reference features for '{name}' not in that assay: {list(unknown[:5])}"
            )
        X = _to_dense(feature_matrix(adata, use))
        coords = reference_pca(
            X,
            adata.obs_names,
            config.components_reference(name),
            center=config.center,
            scale=config.scale,
        )
    n_linear = coords.shape[1]

    if labels is not None:
        X = _to_dense(adata.X)
        model = fit_discriminant(X, labels, adata.var_names, config.discriminant)
        discriminant = pd.DataFrame(
            _discriminant_scores(model.estimator, X),
            index=adata.obs_names,
            columns=model.columns,
        )
        coords = pd.concat([coords, discriminant], axis=1)
    return _ReferenceSpace(coords=coords, n_linear=n_linear, labels=labels)


def _fit_edge(
    child: AnnData,
    parent: AnnData,
    parent_coords: pd.DataFrame,
    space: _ReferenceSpace,
    parent_is_reference: bool,
    reference: str,
    config: StabMapConfig,
) -> ProjectionModel:
    """Fit the model carrying ``child`` cells into ``parent_coords`` space."""
    shared = _shared_features(child, parent, config.max_features)
    X = _to_dense(feature_matrix(parent, shared))
    n_subset = config.components_subset(reference)

    if parent_is_reference and space.labels is not None:
        linear = fit_linear_weights(
            X,
            parent_coords.iloc[:, : space.n_linear],
            shared,
            n_subset,
            center=config.center,
            scale=config.scale,
        )
        discriminant = fit_discriminant(X, space.labels, shared, config.discriminant)
        expected = parent_coords.columns[space.n_linear :]
        if discriminant.columns.equals(expected):
            return CompositeModel(linear=linear, discriminant=discriminant)
        logger.info(
            "Shared features of %s support %d discriminant axes, expected %d; "
            "regressing all axes instead",
            reference,
            len(discriminant.columns),
            len(expected),
        )

    return fit_linear_weights(
        X, parent_coords, shared, n_subset, center=config.center, scale=config.scale
    )


def _embed_reference(
    reference: str,
    collection: Mapping[str, AnnData],
    graph,
    space: _ReferenceSpace,
    config: StabMapConfig,
) -> tuple[pd.DataFrame, dict[str, PathModel]]:
    """Coordinates in one reference's space for every reachable dataset."""
    paths = shortest_paths_from(graph, reference)
    coords = {reference: space.coords}
    path_models = {reference: PathModel(reference, reference, [reference])}

    # breadth-first order: every parent is embedded before its children
    for name, path in paths.items():
        if name == reference:
            continue
        parent = path[1]
        model = _fit_edge(
            collection[name],
            collection[parent],
            coords[parent],
            space,
            parent == reference,
            reference,
            config,
        )
        path_models[name] = PathModel(
            name, reference, path, [model] + path_models[parent].models
        )
        coords[name] = path_models[name].project(collection[name])
        logger.debug("Projected %s into %s via %s", name, reference, " -> ".join(path))

    block = pd.concat([coords[name] for name in collection if name in coords], axis=0)
    block.columns = [f"{reference}_{column}" for column in block.columns]
    return block, path_models


def stab_map(
    assays: Mapping[str, AssayLike],
    labels: Optional[Mapping[str, pd.Series]] = None,
    reference: Optional[Sequence[str]] = None,
    reference_features: Optional[Mapping[str, Sequence[str]]] = None,
    reference_scores: Optional[Mapping[str, pd.DataFrame]] = None,
    n_components_reference: ComponentSpec = 50,
    n_components_subset: ComponentSpec = 50,
    max_features: int = 1000,
    center: bool = True,
    scale: bool = True,
    discriminant: str = "lda",
    allow_disconnected: bool = False,
) -> pd.DataFrame:
    """Joint embedding of mosaic single-cell data.

    Every reference dataset is embedded by PCA of its own features (plus LDA
    axes when it is labelled). Every other dataset is carried into that space
    along its shortest path on the mosaic data topology: at each hop a
    principal component regression is fitted on the reference-side dataset,
    restricted to the features it shares with the source-side dataset, and
    applied to the source-side cells. References contribute column blocks
    named ``<reference>_<axis>``.

    Args:
        assays: Mapping of dataset name to assay (features x cells frame or
            AnnData).
        labels: Optional mapping of dataset name to cell labels. Labels of
            reference datasets add discriminant axes to their space.
        reference: Reference dataset names, all datasets by default.
        reference_features: Optional features used for a reference's PCA.
        reference_scores: Optional precomputed coordinates replacing a
            reference's PCA.
        n_components_reference: PCs per reference (int or mapping).
        n_components_subset: PCs used by each per-hop regression.
        max_features: Upper bound on the shared features used per hop.
        center: Center features before dimension reduction.
        scale: Scale features to unit variance before dimension reduction.
        discriminant: ``"lda"`` or ``"svm"`` for labelled references.
        allow_disconnected: Embed what is reachable instead of failing on a
            disconnected topology.

    Returns:
        pd.DataFrame: Cells x dimensions. ``attrs`` holds ``references``,
        ``paths`` (reference -> dataset -> path) and ``excluded_datasets``.
        With ``allow_disconnected`` cells are NaN in the blocks of references
        they cannot reach; ``classify_embedding`` and ``impute_embedding``
        then work on each group of cells with the same defined blocks.

    Raises:
        InputContractViolation: On malformed inputs.
        DisconnectedTopologyError: If the topology is disconnected and
            ``allow_disconnected`` is False.

    Warns:
        UnreachableDatasetWarning: For datasets excluded from the output.
    """
    config = StabMapConfig(
        n_components_reference=n_components_reference,
        n_components_subset=n_components_subset,
        max_features=max_features,
        center=center,
        scale=scale,
        discriminant=discriminant,
        allow_disconnected=allow_disconnected,
    )
    collection = assay_collection(assays)
    checked_labels = _check_labels(labels, collection)

    references = list(collection) if reference is None else [str(r) for r in reference]
    if len(references) == 0:
        raise InputContractViolation("at least one reference dataset is required")
    unknown = [r for r in references if r not in collection]
    if unknown:
        raise InputContractViolation(f"unknown reference datasets: {unknown}")
    references = list(dict.fromkeys(references))
    config.check_component_keys(references)

    for name in checked_labels:
        if name not in references:
            logger.info("Labels of non-reference dataset %s are not used", name)

    graph = topology_graph(collection)
    if not is_connected(graph):
        n_components = topology_components(graph)
        if not config.allow_disconnected:
            raise DisconnectedTopologyError(
                f"feature network has {n_components} components; features must "
                "overlap via names for all datasets to be integrated"
            )
        logger.warning("Feature network has %d components", n_components)

    blocks = []
    paths: dict[str, dict[str, list[str]]] = {}
    for name in references:
        logger.info("Embedding into reference %s", name)
        space = _reference_space(
            name,
            collection[name],
            checked_labels.get(name),
            (reference_features or {}).get(name),
            (reference_scores or {}).get(name),
            config,
        )
        block, path_models = _embed_reference(name, collection, graph, space, config)
        blocks.append(block)
        paths[name] = {source: model.path for source, model in path_models.items()}

    reached = {source for per_reference in paths.values() for source in per_reference}
    excluded = [name for name in collection if name not in reached]
    if excluded:
        warnings.warn(
            f"datasets with no path to any reference are excluded: {excluded}",
            UnreachableDatasetWarning,
            stacklevel=2,
        )

    cells = all_cell_names({name: collection[name] for name in collection if name in reached})
    embedding = pd.concat([block.reindex(cells) for block in blocks], axis=1)

    partial = [
        (source, name)
        for name in references
        for source in reached
        if source not in paths[name]
    ]
    if partial:
        warnings.warn(
            "datasets without a path to some references have missing coordinates "
            f"in those blocks: {sorted(partial)}",
            UnreachableDatasetWarning,
            stacklevel=2,
        )

    embedding.attrs["references"] = references
    embedding.attrs["paths"] = paths
    embedding.attrs["excluded_datasets"] = excluded
    return embedding
