import numpy as np
import pandas as pd
import pytest

from stabmap.classification import (
    combine_binary_errors,
    get_adaptive_k,
    get_best_column,
    get_binary_error,
    get_binary_error_from_predictions,
    get_density_k,
    get_mode_first,
    get_query_k,
    gm_mean,
    smooth_local,
    vote_mode_first,
)
from stabmap.neighbors import NeighborResult


def _neighbours(indices, query_names, train_names):
    indices = np.asarray(indices)
    return NeighborResult(
        indices=indices,
        distances=np.zeros(indices.shape),
        query_names=pd.Index(query_names),
        train_names=pd.Index(train_names),
    )


def test_mode_first_breaks_ties_by_first_occurrence():
    assert get_mode_first(["b", "a", "a", "b"]) == "b"
    assert get_mode_first(["b", "a", "a", "b"], first=3) == "a"
    assert get_mode_first([3, 1, 1]) == 1


def test_vote_mode_first_per_row_k():
    codes = np.array([[1, 0, 0, 1], [2, 2, 0, 0]])

    winners = vote_mode_first(codes, np.array([4, 1]), n_classes=3)

    np.testing.assert_array_equal(winners, [1, 2])


def test_binary_error_at_every_k():
    knn = _neighbours([[0, 1, 2]], ["q1"], ["t1", "t2", "t3"])
    train = pd.Series(["A", "B", "B"], index=["t1", "t2", "t3"])
    truth = pd.Series(["A"], index=["q1"])

    E = get_binary_error(knn, [1, 2, 3, 4], train, truth)

    assert list(E.columns) == ["K_1", "K_2", "K_3", "K_4"]
    assert E.loc["q1", "K_1"] == 0.0
    # two-way tie at k = 2 goes to the nearest neighbour's class
    assert E.loc["q1", "K_2"] == 0.0
    assert E.loc["q1", "K_3"] == 1.0
    assert np.isnan(E.loc["q1", "K_4"])


def test_binary_error_from_predictions_keeps_missing():
    predictions = pd.DataFrame(
        {"s1": ["A", "B", None], "s2": ["A", "A", "B"]}, index=["c1", "c2", "c3"]
    )
    labels = pd.Series(["A", "A", "B"], index=["c1", "c2", "c3"])

    E = get_binary_error_from_predictions(predictions, labels)

    assert E["s1"].tolist()[:2] == [0.0, 1.0]
    assert np.isnan(E.loc["c3", "s1"])
    assert E["s2"].tolist() == [0.0, 0.0, 0.0]


def test_simple_error_ignores_missing_entries():
    E = pd.DataFrame({"K_1": [np.nan, np.nan, 0.0], "K_2": [0.0, 0.0, 0.5]})

    assert get_best_column(E) == 0


def test_simple_and_balanced_error_choose_differently():
    E = pd.DataFrame(
        {"K_1": [0.0, 0.0, 0.0, 1.0], "K_2": [1.0, 0.0, 0.0, 0.0]},
        index=["c1", "c2", "c3", "c4"],
    )
    labels = pd.Series(["A", "A", "A", "B"], index=E.index)

    # simple error ties at 0.25, smallest k wins
    assert get_best_column(E) == 0
    # balanced: K_1 = (0 + 1) / 2, K_2 = (1/3 + 0) / 2
    assert get_best_column(E, balanced_labels=labels) == 1


def test_best_column_is_undefined_without_data():
    E = pd.DataFrame({"K_1": [np.nan], "K_2": [np.nan]})

    assert get_best_column(E) is None


def test_combine_pools_repeated_cells():
    first = pd.DataFrame({"K_1": [1.0, 0.0]}, index=["a", "b"])
    second = pd.DataFrame({"K_1": [0.0, np.nan]}, index=["a", "c"])

    pooled = combine_binary_errors([first, second])

    assert list(pooled.index) == ["a", "b", "c"]
    assert pooled.loc["a", "K_1"] == 0.5
    assert pooled.loc["b", "K_1"] == 0.0
    assert np.isnan(pooled.loc["c", "K_1"])


def test_adaptive_k_per_class():
    E = pd.DataFrame(
        {
            "K_1": [1.0, 0.0, 1.0, np.nan],
            "K_2": [0.0, 0.0, 0.0, np.nan],
            "K_3": [0.0, 1.0, 1.0, np.nan],
        },
        index=["c1", "c2", "c3", "c4"],
    )
    labels = pd.Series(["A", "A", "A", "B"], index=E.index)

    per_class = get_adaptive_k(E, labels=labels, output_per_cell=False)
    per_cell = get_adaptive_k(E, labels=labels)

    assert per_class["A"] == 1.0
    assert np.isnan(per_class["B"])
    assert per_cell[["c1", "c2", "c3"]].tolist() == [1.0, 1.0, 1.0]
    assert np.isnan(per_cell["c4"])


def test_adaptive_k_per_class_ties_to_earliest_candidate():
    E = pd.DataFrame({"K_1": [1.0, 0.0], "K_2": [1.0, 1.0], "K_3": [0.0, 1.0]})
    labels = pd.Series(["A", "A"])

    assert get_adaptive_k(E, labels=labels, output_per_cell=False)["A"] == 0.0


def test_adaptive_k_over_local_neighbourhood():
    E = pd.DataFrame({"K_1": [1.0, 1.0], "K_2": [0.0, 1.0]}, index=["t1", "t2"])
    local = _neighbours([[0, 1], [1, 0]], ["t1", "t2"], ["t1", "t2"])

    best = get_adaptive_k(E, local=local)

    assert best.tolist() == [1.0, 1.0]


def test_query_k_is_taken_from_nearest_training_cell():
    knn = _neighbours([[1, 0], [0, 1]], ["q1", "q2"], ["t1", "t2"])
    k_local = pd.Series([3, 7], index=["t1", "t2"])

    np.testing.assert_array_equal(get_query_k(knn, k_local), [7, 3])
    np.testing.assert_array_equal(get_query_k(knn, 4), [4, 4])


def test_smooth_local_averages_first_neighbours():
    best_k = pd.Series([1.0, 3.0, 5.0], index=["t1", "t2", "t3"])
    local = _neighbours([[0, 1, 2]], ["q1"], ["t1", "t2", "t3"])

    assert smooth_local(best_k, local, smooth=2)["q1"] == 2.0
    assert smooth_local(best_k, local, smooth=3)["q1"] == 3.0


def test_geometric_mean_skips_undefined_values():
    assert gm_mean([1.0, 4.0]) == pytest.approx(2.0)
    assert gm_mean([2.0, np.nan, -1.0, 8.0]) == pytest.approx(4.0)
    assert np.isnan(gm_mean([np.nan]))


def test_denser_cells_get_larger_density_k():
    coords = pd.DataFrame(
        {"x": [0.0, 0.1, 0.2, 0.3, 10.0]}, index=["a", "b", "c", "d", "far"]
    )

    schemes = get_density_k(coords, [1, 5], dist_maxk=2)

    assert list(schemes.columns) == ["K_1_5"]
    assert schemes.loc["far", "K_1_5"] == 1
    assert schemes["K_1_5"].max() == 5
    assert schemes.loc["b", "K_1_5"] >= schemes.loc["a", "K_1_5"]


def test_single_candidate_gives_constant_density_k():
    coords = pd.DataFrame({"x": [0.0, 1.0, 3.0]}, index=["a", "b", "c"])

    schemes = get_density_k(coords, [3])

    assert schemes["K_3_3"].tolist() == [3, 3, 3]


def test_density_schemes_share_the_smallest_candidate():
    coords = pd.DataFrame(
        {"x": [0.0, 0.1, 0.2, 0.3, 10.0]}, index=["a", "b", "c", "d", "far"]
    )

    schemes = get_density_k(coords, [5, 1, 3, 50], dist_maxk=2)

    assert list(schemes.columns) == ["K_1_3", "K_1_5", "K_1_50"]
    assert (schemes.min() == 1).all()
    assert schemes.max().tolist() == [3, 5, 50]


def test_default_grid_gives_one_density_scheme_per_upper_bound():
    coords = pd.DataFrame(
        {"x": np.arange(60, dtype=float) ** 1.5}, index=[f"c{i}" for i in range(60)]
    )

    schemes = get_density_k(coords, range(1, 51), dist_maxk=5)

    assert schemes.shape == (60, 49)
