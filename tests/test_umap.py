import numpy as np
import pytest
from sklearn.exceptions import NotFittedError

import umap_core.umap_
from umap_core import (
    UMAP,
    FitState,
    find_ab_params,
    ConfigError,
    InvalidInputError,
    MetricError,
    FitAbortedError,
)


def _blobs(n=60, dim=4, seed=0):
    rng = np.random.RandomState(seed)
    centres = rng.normal(scale=10.0, size=(3, dim))
    labels = np.arange(n) % 3
    return (centres[labels] + rng.normal(size=(n, dim))).astype(np.float32), labels


def test_find_ab_params_default_curve():
    a, b = find_ab_params(1.0, 0.1)
    assert np.isfinite(a) and a > 0.0
    assert np.isfinite(b) and b > 0.0
    assert a == pytest.approx(1.577, rel=0.05)
    assert b == pytest.approx(0.895, rel=0.05)

    x = np.linspace(0.0, 3.0, 100)
    curve = 1.0 / (1.0 + a * x ** (2 * b))
    assert curve[0] == pytest.approx(1.0)
    assert np.all(np.diff(curve) < 0.0)


def test_single_sample_skips_neighbor_search(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("neighbor search should not run")

    monkeypatch.setattr(umap_core.umap_, "nearest_neighbors", fail)
    model = UMAP(n_components=3).fit(np.array([[1.0, 2.0, 3.0]]))
    np.testing.assert_array_equal(model.embedding_, np.zeros((1, 3)))
    assert model.state_ is FitState.FIT

    with pytest.raises(InvalidInputError):
        model.transform(np.array([[1.0, 2.0, 3.0]]))


def test_n_neighbors_truncated_to_dataset():
    X, _ = _blobs(n=6)
    model = UMAP(n_neighbors=15, n_epochs=20, random_state=0)
    with pytest.warns(UserWarning, match="n_neighbors is larger"):
        model.fit(X)
    assert model._n_neighbors == 5
    assert model._knn_indices.shape == (6, 5)
    assert model.embedding_.shape == (6, 2)


@pytest.mark.parametrize(
    "params",
    [
        {"set_op_mix_ratio": 1.5},
        {"set_op_mix_ratio": -0.1},
        {"repulsion_strength": -1.0},
        {"min_dist": 2.0},
        {"min_dist": 0.0},
        {"spread": 0.0},
        {"init": "pca"},
        {"init": np.zeros((60, 3))},
        {"metric": "not_a_metric"},
        {"negative_sample_rate": -1},
        {"learning_rate": -1.0},
        {"n_neighbors": 1},
        {"n_neighbors": 2.5},
        {"n_components": 0},
        {"n_components": 1.5},
        {"n_epochs": 5},
        {"n_epochs": 50.0},
        {"local_connectivity": 0.5},
        {"a": -1.0, "b": 1.0},
        {"transform_queue_size": 0.0},
        {"leaf_size": 0},
        {"n_trees": -2},
        {"epoch_callback": "not callable"},
    ],
)
def test_invalid_parameters(params):
    with pytest.raises(ConfigError):
        UMAP(**params)


def test_invalid_parameters_set_after_construction():
    X, _ = _blobs()
    model = UMAP(n_neighbors=8, n_epochs=20, random_state=0).fit(X)
    model.set_params(min_dist=2.0)
    with pytest.raises(ConfigError):
        model.fit(X)
    assert model.state_ is FitState.FAILED
    assert not hasattr(model, "embedding_")
    assert not hasattr(model, "graph_")


def test_config_error_is_value_error():
    with pytest.raises(ValueError):
        UMAP(min_dist=-1.0)


@pytest.mark.parametrize(
    "X",
    [
        np.array([[1.0, np.nan], [2.0, 3.0], [0.0, 1.0]]),
        np.array([[1.0, np.inf], [2.0, 3.0], [0.0, 1.0]]),
        np.empty((0, 3)),
        np.array([1.0, 2.0, 3.0]),
        [[1.0, 2.0], [3.0]],
        [["a", "b"], ["c", "d"], ["e", "f"]],
    ],
)
def test_invalid_input(X):
    model = UMAP()
    with pytest.raises(InvalidInputError):
        model.fit(X)
    assert model.state_ is FitState.FAILED


def test_two_clusters_stay_apart():
    X = np.array([[0.0, 0.0], [0.0, 1.0], [10.0, 10.0], [10.0, 11.0]])
    embedding = UMAP(n_neighbors=2, n_epochs=50, random_state=42).fit_transform(X)
    assert embedding.shape == (4, 2)
    assert np.all(np.isfinite(embedding))

    def dist(i, j):
        return np.linalg.norm(embedding[i] - embedding[j])

    for i, j in [(0, 1), (2, 3)]:
        for k in range(4):
            if k in (i, j):
                continue
            assert dist(i, j) < dist(i, k)
            assert dist(i, j) < dist(j, k)


def test_blobs_are_separated():
    X, labels = _blobs(n=90)
    embedding = UMAP(n_neighbors=10, random_state=1).fit_transform(X)
    centres = np.array([embedding[labels == c].mean(axis=0) for c in range(3)])
    spread = max(
        np.linalg.norm(embedding[labels == c] - centres[c], axis=1).mean()
        for c in range(3)
    )
    gaps = [
        np.linalg.norm(centres[p] - centres[q])
        for p in range(3)
        for q in range(p + 1, 3)
    ]
    assert min(gaps) > spread


def test_fixed_seed_is_reproducible():
    X, _ = _blobs()
    first = UMAP(n_neighbors=8, n_epochs=50, random_state=7).fit_transform(X)
    second = UMAP(n_neighbors=8, n_epochs=50, random_state=7).fit_transform(X)
    assert first.tobytes() == second.tobytes()


def test_duplicate_points_are_reproducible():
    X = np.vstack([np.zeros((10, 3)), np.ones((10, 3)) * 100.0])
    first = UMAP(n_neighbors=5, n_epochs=50, random_state=0).fit_transform(X)
    second = UMAP(n_neighbors=5, n_epochs=50, random_state=0).fit_transform(X)
    assert np.all(np.isfinite(first))
    assert first.tobytes() == second.tobytes()


def test_isolated_points_embed_finitely():
    rng = np.random.RandomState(0)
    outliers = 50.0 * np.array(
        [
            [1.0, 0.0, 0.0],
            [-1.0, 0.0, 0.0],
            [0.0, 1.0, 0.0],
            [0.0, -1.0, 0.0],
            [0.0, 0.0, 1.0],
        ]
    )
    X = np.vstack([rng.normal(size=(30, 3)), outliers])

    # an intersection-only graph leaves the outliers without edges
    model = UMAP(n_neighbors=5, set_op_mix_ratio=0.0, n_epochs=50, random_state=0)
    first = model.fit_transform(X)
    degrees = np.diff(model.graph_.tocsr().indptr)
    np.testing.assert_array_equal(degrees[30:], 0)
    assert np.all(degrees[:30] > 0)
    assert np.all(np.isfinite(first))

    second = UMAP(
        n_neighbors=5, set_op_mix_ratio=0.0, n_epochs=50, random_state=0
    ).fit_transform(X)
    assert first.tobytes() == second.tobytes()


def test_state_advances_through_embedding_stages(monkeypatch):
    X, _ = _blobs()
    model = UMAP(n_neighbors=8, n_epochs=20, random_state=0)
    seen = {}

    def recording(name, func):
        def wrapper(*args, **kwargs):
            seen[name] = model.state_
            return func(*args, **kwargs)

        return wrapper

    for name in ("initialize_embedding", "make_epochs_per_sample", "optimize_layout"):
        monkeypatch.setattr(
            umap_core.umap_, name, recording(name, getattr(umap_core.umap_, name))
        )

    model.fit(X)
    assert seen["initialize_embedding"] is FitState.GRAPH_BUILT
    assert seen["make_epochs_per_sample"] is FitState.EMBEDDING_INITIALIZED
    assert seen["optimize_layout"] is FitState.OPTIMIZING
    assert model.state_ is FitState.FIT


def test_fit_publishes_graph_and_state():
    X, _ = _blobs()
    model = UMAP(n_neighbors=8, n_epochs=30, random_state=0).fit(X)
    assert model.state_ is FitState.FIT
    assert model.graph_.shape == (60, 60)
    assert abs(model.graph_ - model.graph_.T).max() == 0.0
    assert model.embedding_.dtype == np.float32
    assert model.embedding_.shape == (60, 2)


def test_random_init_and_array_init():
    X, _ = _blobs()
    model = UMAP(n_neighbors=8, n_epochs=30, init="random", random_state=0)
    assert np.all(np.isfinite(model.fit_transform(X)))

    init = np.random.RandomState(0).uniform(-5, 5, size=(60, 3))
    model = UMAP(n_neighbors=8, n_components=3, n_epochs=30, init=init, random_state=0)
    assert model.fit_transform(X).shape == (60, 3)


def test_array_init_with_wrong_rows():
    X, _ = _blobs()
    model = UMAP(n_neighbors=8, init=np.zeros((10, 2)))
    with pytest.raises(InvalidInputError):
        model.fit(X)


def test_named_and_callable_metrics():
    X, _ = _blobs(n=40, dim=3)
    embedding = UMAP(
        n_neighbors=5, n_epochs=20, metric="cosine", random_state=0
    ).fit_transform(X)
    assert np.all(np.isfinite(embedding))

    def l1(x, y):
        return np.abs(x - y).sum()

    embedding = UMAP(n_neighbors=5, n_epochs=20, metric=l1, random_state=0).fit_transform(X)
    assert np.all(np.isfinite(embedding))

    embedding = UMAP(
        n_neighbors=5,
        n_epochs=20,
        metric="minkowski",
        metric_kwds={"p": 3},
        random_state=0,
    ).fit_transform(X)
    assert np.all(np.isfinite(embedding))


def test_metric_failure_marks_fit_failed():
    X, _ = _blobs(n=20)

    def nan_metric(x, y):
        return np.nan

    model = UMAP(n_neighbors=5, metric=nan_metric)
    with pytest.raises(MetricError):
        model.fit(X)
    assert model.state_ is FitState.FAILED
    assert not hasattr(model, "embedding_")
    assert not hasattr(model, "graph_")


def test_epoch_callback_aborts_fit():
    X, _ = _blobs()
    states = []

    def callback(epoch, n_epochs, embedding):
        states.append(model.state_)
        return epoch < 3

    model = UMAP(n_neighbors=8, n_epochs=20, epoch_callback=callback, random_state=0)
    with pytest.raises(FitAbortedError):
        model.fit(X)
    assert len(states) == 4
    assert all(state is FitState.OPTIMIZING for state in states)
    assert model.state_ is FitState.FAILED
    assert not hasattr(model, "embedding_")


def test_refit_after_failure():
    X, _ = _blobs()
    model = UMAP(n_neighbors=8, n_epochs=20, random_state=0)
    with pytest.raises(InvalidInputError):
        model.fit(np.array([[np.nan, 1.0]]))
    model.fit(X)
    assert model.state_ is FitState.FIT


def test_transform_new_points():
    X, labels = _blobs(n=90)
    model = UMAP(n_neighbors=10, random_state=1).fit(X)
    before = model.embedding_.copy()

    X_new = X[:6] + 0.05
    embedding = model.transform(X_new)
    assert embedding.shape == (6, 2)
    assert np.all(np.isfinite(embedding))
    np.testing.assert_array_equal(model.embedding_, before)

    # new points land nearest to the cluster they were drawn from
    centres = np.array([before[labels == c].mean(axis=0) for c in range(3)])
    for i in range(6):
        nearest = np.argmin(np.linalg.norm(centres - embedding[i], axis=1))
        assert nearest == labels[i]


def test_transform_training_data_is_short_circuited():
    X, _ = _blobs()
    model = UMAP(n_neighbors=8, n_epochs=20, random_state=0).fit(X)
    assert model.transform(X) is model.embedding_


def test_transform_same_size_as_training_does_not_move_model():
    X, _ = _blobs()
    model = UMAP(n_neighbors=8, n_epochs=30, random_state=0).fit(X)
    before = model.embedding_.copy()
    model.transform(X + 0.01)
    np.testing.assert_array_equal(model.embedding_, before)


def test_transform_is_deterministic():
    X, _ = _blobs()
    model = UMAP(n_neighbors=8, n_epochs=30, random_state=0).fit(X)
    first = model.transform(X[:5] + 0.1)
    second = model.transform(X[:5] + 0.1)
    np.testing.assert_array_equal(first, second)


def test_transform_requires_fit():
    with pytest.raises(NotFittedError):
        UMAP().transform(np.zeros((2, 2)))


def test_transform_feature_mismatch():
    X, _ = _blobs()
    model = UMAP(n_neighbors=8, n_epochs=20, random_state=0).fit(X)
    with pytest.raises(InvalidInputError):
        model.transform(np.zeros((3, 5)))


def test_verbose_reports_progress(capsys):
    X, _ = _blobs(n=30)
    UMAP(n_neighbors=5, n_epochs=20, random_state=0, verbose=True).fit(X)
    out = capsys.readouterr().out
    assert "Construct fuzzy simplicial set" in out
    assert "Finished embedding" in out
