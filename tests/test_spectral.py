import numpy as np
import pytest
import scipy.sparse

from umap_core.spectral import spectral_layout


def _ring(n):
    rows = np.arange(n)
    cols = (rows + 1) % n
    graph = scipy.sparse.coo_matrix((np.ones(n), (rows, cols)), shape=(n, n))
    return (graph + graph.T).tocsr()


def test_ring_layout_is_reproducible():
    # a ring has repeated laplacian eigenvalues
    graph = _ring(40)
    data = np.zeros((40, 2))
    first = spectral_layout(data, graph, 2, np.random.RandomState(0))
    second = spectral_layout(data, graph, 2, np.random.RandomState(0))
    assert first.shape == (40, 2)
    assert np.all(np.isfinite(first))
    assert first.tobytes() == second.tobytes()


def test_ring_layout_spans_a_circle():
    embedding = spectral_layout(np.zeros((40, 2)), _ring(40), 2, np.random.RandomState(0))
    radii = np.linalg.norm(embedding, axis=1)
    np.testing.assert_allclose(radii, radii.mean(), rtol=1e-6)


def test_complete_graphs_in_two_components():
    block = np.ones((10, 10)) - np.eye(10)
    graph = scipy.sparse.csr_matrix(scipy.sparse.block_diag([block, block]))
    data = np.vstack([np.zeros((10, 3)), np.ones((10, 3)) * 100.0])
    with pytest.warns(UserWarning, match="separate connected components"):
        first = spectral_layout(data, graph, 2, np.random.RandomState(0))
    with pytest.warns(UserWarning, match="separate connected components"):
        second = spectral_layout(data, graph, 2, np.random.RandomState(0))
    assert np.all(np.isfinite(first))
    assert first.tobytes() == second.tobytes()
