import numpy as np
import pandas as pd
import pytest

from stabmap.exceptions import DisconnectedTopologyWarning, InputContractViolation
from stabmap.topology import (
    is_connected,
    mosaic_data_topology,
    shortest_paths_from,
    topology_components,
)


def _assay(features, cells):
    return pd.DataFrame(np.ones((len(features), len(cells))), index=features, columns=cells)


def test_edge_weights_are_shared_feature_counts():
    assays = {
        "A": _assay(["f1", "f2", "f3"], ["a1", "a2"]),
        "B": _assay(["f2", "f3", "f4"], ["b1", "b2"]),
        "C": _assay(["f4", "f5"], ["c1"]),
    }

    graph = mosaic_data_topology(assays)

    assert list(graph.nodes) == ["A", "B", "C"]
    assert graph["A"]["B"]["weight"] == 2
    assert graph["B"]["C"]["weight"] == 1
    assert not graph.has_edge("A", "C")
    assert is_connected(graph)
    assert topology_components(graph) == 1


def test_isolated_dataset_is_a_node_and_warns():
    assays = {
        "A": _assay(["f1", "f2"], ["a1"]),
        "B": _assay(["f2", "f3"], ["b1"]),
        "C": _assay(["g1"], ["c1"]),
    }

    with pytest.warns(DisconnectedTopologyWarning):
        graph = mosaic_data_topology(assays)

    assert "C" in graph
    assert graph.degree("C") == 0
    assert topology_components(graph) == 2
    assert not is_connected(graph)


def test_component_count_matches_disjoint_groups():
    assays = {
        "A1": _assay(["a", "b"], ["x1"]),
        "A2": _assay(["b", "c"], ["x2"]),
        "B1": _assay(["d"], ["x3"]),
        "C1": _assay(["e", "f"], ["x4"]),
        "C2": _assay(["f"], ["x5"]),
    }

    with pytest.warns(DisconnectedTopologyWarning):
        graph = mosaic_data_topology(assays)

    assert topology_components(graph) == 3


def test_equal_length_paths_follow_collection_order():
    # R - X - Q and R - Y - Q are both two hops long
    features = {
        "R": ["f1", "f2"],
        "X": ["f1", "f3"],
        "Y": ["f2", "f4"],
        "Q": ["f3", "f4"],
    }

    def build(order):
        return mosaic_data_topology(
            {name: _assay(features[name], [f"{name}_1"]) for name in order}
        )

    paths = shortest_paths_from(build(["R", "X", "Y", "Q"]), "R")
    assert paths["Q"] == ["Q", "X", "R"]
    assert paths["R"] == ["R"]

    paths = shortest_paths_from(build(["R", "Y", "X", "Q"]), "R")
    assert paths["Q"] == ["Q", "Y", "R"]


def test_unreachable_datasets_have_no_path():
    assays = {
        "A": _assay(["f1"], ["a1"]),
        "B": _assay(["f1"], ["b1"]),
        "C": _assay(["g1"], ["c1"]),
    }
    with pytest.warns(DisconnectedTopologyWarning):
        graph = mosaic_data_topology(assays)

    assert set(shortest_paths_from(graph, "A")) == {"A", "B"}
    with pytest.raises(InputContractViolation):
        shortest_paths_from(graph, "missing")


def test_assays_without_names_are_rejected():
    unnamed = pd.DataFrame(np.ones((2, 2)), index=["f1", "f2"])

    with pytest.raises(InputContractViolation):
        mosaic_data_topology({"A": unnamed})


def test_cell_in_two_assays_is_rejected():
    with pytest.raises(InputContractViolation):
        mosaic_data_topology(
            {"A": _assay(["f1"], ["c1"]), "B": _assay(["f1"], ["c1"])}
        )
