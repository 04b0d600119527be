import numpy as np
import pytest

from umap_core.errors import FitAbortedError
from umap_core.layouts import make_epochs_per_sample, optimize_layout


def _ring(n=20):
    head = np.arange(n, dtype=np.int64)
    tail = (head + 1) % n
    weights = np.linspace(0.2, 1.0, n)
    embedding = (
        np.random.RandomState(0).uniform(-10, 10, size=(n, 2)).astype(np.float32)
    )
    return embedding, head, tail, weights


def _rng_state():
    return np.array([11, 22, 33], dtype=np.int64)


def test_make_epochs_per_sample():
    result = make_epochs_per_sample(np.array([1.0, 0.5, 0.0]), 100)
    np.testing.assert_allclose(result, [1.0, 2.0, -1.0])


def test_make_epochs_per_sample_empty():
    assert make_epochs_per_sample(np.array([]), 10).shape == (0,)


def test_zero_epochs_leaves_embedding_unchanged():
    embedding, head, tail, weights = _ring()
    before = embedding.copy()
    result = optimize_layout(
        embedding,
        embedding,
        head,
        tail,
        0,
        embedding.shape[0],
        make_epochs_per_sample(weights, 0),
        1.577,
        0.895,
        _rng_state(),
    )
    np.testing.assert_array_equal(result, before)


def test_optimization_stays_finite_and_pulls_edges_together():
    embedding, head, tail, weights = _ring()
    before = embedding.copy()
    n_epochs = 200
    result = optimize_layout(
        embedding,
        embedding,
        head,
        tail,
        n_epochs,
        embedding.shape[0],
        make_epochs_per_sample(weights, n_epochs),
        1.577,
        0.895,
        _rng_state(),
    )
    assert np.all(np.isfinite(result))
    edge_length_before = np.linalg.norm(before[head] - before[tail], axis=1).mean()
    edge_length_after = np.linalg.norm(result[head] - result[tail], axis=1).mean()
    assert edge_length_after < edge_length_before


def test_no_negative_samples():
    embedding, head, tail, weights = _ring()
    result = optimize_layout(
        embedding,
        embedding,
        head,
        tail,
        50,
        embedding.shape[0],
        make_epochs_per_sample(weights, 50),
        1.577,
        0.895,
        _rng_state(),
        negative_sample_rate=0,
    )
    assert np.all(np.isfinite(result))


def test_fixed_tail_is_not_moved():
    embedding, head, tail, weights = _ring()
    reference = embedding.copy()
    new_points = np.zeros((20, 2), dtype=np.float32)
    optimize_layout(
        new_points,
        reference,
        head,
        tail,
        20,
        reference.shape[0],
        make_epochs_per_sample(weights, 20),
        1.577,
        0.895,
        _rng_state(),
        move_other=False,
    )
    np.testing.assert_array_equal(reference, embedding)


def test_epoch_callback_sees_every_epoch():
    embedding, head, tail, weights = _ring()
    seen = []

    def callback(epoch, n_epochs, current):
        seen.append((epoch, n_epochs, current.shape))

    optimize_layout(
        embedding,
        embedding,
        head,
        tail,
        15,
        embedding.shape[0],
        make_epochs_per_sample(weights, 15),
        1.577,
        0.895,
        _rng_state(),
        epoch_callback=callback,
    )
    assert [s[0] for s in seen] == list(range(15))
    assert all(s[1] == 15 and s[2] == (20, 2) for s in seen)


def test_epoch_callback_can_abort():
    embedding, head, tail, weights = _ring()
    seen = []

    def callback(epoch, n_epochs, current):
        seen.append(epoch)
        return epoch < 2

    with pytest.raises(FitAbortedError):
        optimize_layout(
            embedding,
            embedding,
            head,
            tail,
            15,
            embedding.shape[0],
            make_epochs_per_sample(weights, 15),
            1.577,
            0.895,
            _rng_state(),
            epoch_callback=callback,
        )
    assert seen == [0, 1, 2]


def test_same_state_gives_identical_layout():
    embedding, head, tail, weights = _ring()
    results = []
    for i in range(2):
        current = embedding.copy()
        optimize_layout(
            current,
            current,
            head,
            tail,
            30,
            current.shape[0],
            make_epochs_per_sample(weights, 30),
            1.577,
            0.895,
            _rng_state(),
        )
        results.append(current)
    np.testing.assert_array_equal(results[0], results[1])
