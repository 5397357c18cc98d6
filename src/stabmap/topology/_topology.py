"""Mosaic data topology: a weighted overlap graph over datasets."""

import logging
import warnings
from itertools import combinations
from typing import Mapping

import networkx as nx
from anndata import AnnData

from stabmap._assay import AssayLike, assay_collection
from stabmap.exceptions import DisconnectedTopologyWarning, InputContractViolation

logger = logging.getLogger(__name__)


def mosaic_data_topology(assays: Mapping[str, AssayLike]) -> nx.Graph:
    """Build the mosaic data topology of an assay collection.

    Every dataset becomes a node, including datasets that share no feature
    with any other. Two datasets are joined by an edge when they share at
    least one feature name; the edge ``weight`` is the number of shared
    features. Nodes and edges are inserted in collection order, which fixes
    the tie-breaking of shortest paths (see :func:`shortest_paths_from`).

    Args:
        assays: Mapping of dataset name to assay.

    Returns:
        nx.Graph: Undirected weighted graph.

    Warns:
        DisconnectedTopologyWarning: If the graph has more than one component.
    """
    graph = topology_graph(assay_collection(assays))

    n_components = topology_components(graph)
    if n_components != 1:
        warnings.warn(
            f"feature network has {n_components} components; features must "
            "overlap via names for all datasets to be integrated",
            DisconnectedTopologyWarning,
            stacklevel=2,
        )
    logger.info(
        "Topology with %d datasets and %d edges", graph.number_of_nodes(), graph.number_of_edges()
    )
    return graph


def topology_graph(collection: Mapping[str, AnnData]) -> nx.Graph:
    """Overlap graph of an already normalised collection, without checks."""
    features = {name: set(adata.var_names) for name, adata in collection.items()}

    graph = nx.Graph()
    graph.add_nodes_from(collection)
    for first, second in combinations(collection, 2):
        weight = len(features[first] & features[second])
        if weight > 0:
            graph.add_edge(first, second, weight=weight)
    return graph


def topology_components(graph: nx.Graph) -> int:
    """Number of connected components."""
    return nx.number_connected_components(graph)


def is_connected(graph: nx.Graph) -> bool:
    return graph.number_of_nodes() > 0 and topology_components(graph) == 1


def shortest_paths_from(graph: nx.Graph, reference: str) -> dict[str, list[str]]:
    """Shortest (hop count) paths from every reachable dataset to ``reference``.

    Paths come from a breadth-first search rooted at ``reference``. Among
    paths of equal length the first one discovered wins: neighbours are
    visited in edge-insertion order, i.e. collection order.

    Returns:
        dict: dataset name -> path ``[dataset, ..., reference]``. Unreachable
        datasets are absent; ``reference`` maps to ``[reference]``.
    """
    if reference not in graph:
        raise InputContractViolation(f"reference '{reference}' is not a dataset")
    paths = nx.single_source_shortest_path(graph, reference)
    return {node: list(reversed(path)) for node, path in paths.items()}
