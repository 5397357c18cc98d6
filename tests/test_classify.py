import numpy as np
import pandas as pd
import pytest

from stabmap._config import ClassificationConfig
from stabmap.classification import (
    adaptive_knn,
    classify_embedding,
    cross_validated_error,
    fold_assignments,
)
from stabmap.classification._classify import (
    _adaptive_labels_k,
    _adaptive_local_k,
    _uniform_optimised_k,
)
from stabmap.exceptions import InputContractViolation, UndefinedLocalEstimateWarning
from stabmap.neighbors import query_named_knn

TYPES = [
    "adaptive_local",
    "adaptive_labels",
    "uniform_optimised",
    "uniform_fixed",
    "adaptive_density",
]


def _blobs(seed=0):
    rng = np.random.default_rng(seed)
    centers = np.array([[0.0, 0.0], [4.0, 0.0], [0.0, 4.0]])
    classes = np.repeat(["x", "y", "z"], 20)
    values = centers[np.repeat([0, 1, 2], 20)] + rng.normal(scale=1.2, size=(60, 2))
    cells = [f"cell{i}" for i in range(60)]
    coords = pd.DataFrame(values, index=cells, columns=["dim1", "dim2"])
    labels = pd.Series(classes, index=cells)
    # every third cell is unlabelled
    labels.iloc[::3] = np.nan
    return coords, labels


def test_exact_duplicate_is_classified_with_zero_error():
    coords = pd.DataFrame(
        [[0.0, 0.0], [5.0, 5.0], [5.0, 5.0]],
        index=["t1", "t2", "q1"],
        columns=["d1", "d2"],
    )
    labels = pd.Series({"t1": "A", "t2": "B"})

    out = classify_embedding(coords, labels, type="uniform_fixed", k_values=[1])

    assert out.loc["q1", "predicted_labels"] == "B"
    assert out.loc["q1", "resubstituted_labels"] == "B"
    assert pd.isna(out.loc["q1", "input_labels"])
    assert out["resubstituted_labels"].loc[["t1", "t2"]].tolist() == ["A", "B"]


@pytest.mark.parametrize("type", TYPES)
def test_classification_is_reproducible_with_seed(type):
    coords, labels = _blobs()
    options = dict(
        type=type,
        k_values=range(1, 11),
        adaptive_local_nhood=10,
        adaptive_local_smooth=3,
        adaptive_density_maxk=10,
        random_state=7,
    )

    first = classify_embedding(coords, labels, **options)
    second = classify_embedding(coords, labels, **options)

    pd.testing.assert_frame_equal(first, second)
    assert list(first.columns) == [
        "input_labels",
        "resubstituted_labels",
        "predicted_labels",
        "k",
    ]
    assert list(first.index) == list(coords.index)
    assert first["k"].between(1, 10).all()
    assert first["resubstituted_labels"].notna().all()
    labelled = labels.dropna().index
    assert (first.loc[labelled, "predicted_labels"] == labels[labelled]).all()


def test_balanced_error_is_supported():
    coords, labels = _blobs(seed=1)

    out = classify_embedding(
        coords,
        labels,
        type="uniform_optimised",
        k_values=[1, 3, 5],
        error_measure="balanced_error",
        random_state=0,
    )

    assert out["k"].nunique() == 1
    assert out["k"].iloc[0] in (1, 3, 5)


def test_adaptive_labels_assigns_one_k_per_class():
    coords, labels = _blobs(seed=2)

    out = classify_embedding(
        coords, labels, type="adaptive_labels", k_values=range(1, 8), random_state=3
    )

    labelled = out[out["input_labels"].notna()]
    assert (labelled.groupby("input_labels")["k"].nunique() == 1).all()


def test_unknown_type_is_rejected():
    coords, labels = _blobs()

    with pytest.raises(InputContractViolation):
        classify_embedding(coords, labels, type="adaptive_global")


def test_labels_of_unknown_cells_are_rejected():
    coords, labels = _blobs()
    labels = pd.concat([labels, pd.Series({"stranger": "x"})])

    with pytest.raises(InputContractViolation):
        classify_embedding(coords, labels, type="uniform_fixed", k_values=[1])


def test_adaptive_knn_uses_k_of_nearest_training_cell():
    train = pd.DataFrame(
        {"x": [0.0, 1.0, 10.0, 11.0, 12.0]}, index=["t1", "t2", "t3", "t4", "t5"]
    )
    query = pd.DataFrame({"x": [0.4]}, index=["q"])
    labels = pd.Series(["A", "A", "B", "B", "B"], index=train.index)
    knn = query_named_knn(train, query, 5)

    small = pd.Series([1, 1, 1, 1, 1], index=train.index)
    large = pd.Series([5, 1, 1, 1, 1], index=train.index)

    assert adaptive_knn(knn, labels, small)["q"] == "A"
    assert adaptive_knn(knn, labels, large)["q"] == "B"
    assert adaptive_knn(knn, labels, 2)["q"] == "A"


def test_fold_assignments_are_seeded():
    first = fold_assignments(20, 3, 4, random_state=11)
    second = fold_assignments(20, 3, 4, random_state=11)

    assert len(first) == 4
    for a, b in zip(first, second):
        np.testing.assert_array_equal(a, b)
        assert a.min() >= 0 and a.max() < 3


def test_cross_validated_error_does_not_depend_on_jobs():
    coords, labels = _blobs()
    labels = labels.dropna()
    train = coords.loc[labels.index]

    serial = cross_validated_error(train, labels, [1, 3, 5], random_state=4, n_jobs=1)
    parallel = cross_validated_error(train, labels, [1, 3, 5], random_state=4, n_jobs=2)

    pd.testing.assert_frame_equal(serial, parallel)
    assert list(serial.columns) == ["K_1", "K_3", "K_5"]
    assert list(serial.index) == list(train.index)
    values = serial.to_numpy()
    assert np.all(np.isnan(values) | ((values >= 0) & (values <= 1)))


def test_fractional_k_values_are_rejected():
    coords, labels = _blobs()

    with pytest.raises(InputContractViolation):
        classify_embedding(coords, labels, type="uniform_fixed", k_values=[2.5])
    assert ClassificationConfig(k_values=[3.0, 1]).k_values == [3, 1]


def test_class_without_error_estimate_gets_geometric_mean_k():
    # Arrange
    config = ClassificationConfig(type="adaptive_labels", k_values=[1, 2, 4, 8])
    E = pd.DataFrame(
        [[1, 1, 0, 0], [1, 1, 0, 1], [1, 0, 1, 1], [np.nan] * 4],
        index=["a1", "a2", "b1", "c1"],
        columns=["K_1", "K_2", "K_4", "K_8"],
    )
    labels = pd.Series(["A", "A", "B", "C"], index=E.index)

    # Act
    with pytest.warns(UndefinedLocalEstimateWarning):
        k = _adaptive_labels_k(E, labels, config)

    # Assert
    assert k.to_dict() == {"a1": 4, "a2": 4, "b1": 2, "c1": 3}


def test_cells_without_local_estimate_borrow_from_neighbours():
    config = ClassificationConfig(
        k_values=[1, 2, 3], adaptive_local_nhood=2, adaptive_local_smooth=2
    )
    coords_train = pd.DataFrame(
        {"x": [0.0, 1.0, 2.5, 10.0, 11.5]}, index=["a", "b", "c", "d", "e"]
    )
    E = pd.DataFrame(
        [[1, 0, 1]] * 3 + [[np.nan] * 3] * 2,
        index=coords_train.index,
        columns=["K_1", "K_2", "K_3"],
    )

    with pytest.warns(UndefinedLocalEstimateWarning):
        k = _adaptive_local_k(E, coords_train, config)

    assert k.to_dict() == {"a": 2, "b": 2, "c": 2, "d": 2, "e": 2}


def test_no_local_estimate_falls_back_to_smallest_k():
    config = ClassificationConfig(k_values=[4, 2], adaptive_local_nhood=2)
    coords_train = pd.DataFrame({"x": [0.0, 1.0, 5.0]}, index=["a", "b", "c"])
    E = pd.DataFrame(np.nan, index=coords_train.index, columns=["K_2", "K_4"])

    with pytest.warns(UndefinedLocalEstimateWarning):
        k = _adaptive_local_k(E, coords_train, config)

    assert (k == 2).all()


def test_undefined_uniform_error_falls_back_to_smallest_k():
    config = ClassificationConfig(type="uniform_optimised", k_values=[5, 3])
    E = pd.DataFrame(np.nan, index=["a", "b"], columns=["K_3", "K_5"])
    labels = pd.Series(["x", "y"], index=E.index)

    with pytest.warns(UndefinedLocalEstimateWarning):
        k = _uniform_optimised_k(E, labels, config)

    assert k == 3
