import numpy as np

from umap_core.rp_tree import (
    make_tree,
    make_forest,
    rptree_leaf_array,
    search_flat_tree,
    search_forest,
)


def _data(n=200, dim=5, seed=0):
    return np.random.RandomState(seed).normal(size=(n, dim)).astype(np.float32)


def _rng_state():
    return np.array([2, 3, 5], dtype=np.int64)


def test_every_point_in_exactly_one_leaf():
    data = _data()
    tree = make_tree(data, _rng_state(), leaf_size=10)
    members = tree.indices[tree.indices >= 0]
    assert members.shape[0] == data.shape[0]
    np.testing.assert_array_equal(np.sort(members), np.arange(data.shape[0]))


def test_leaves_respect_leaf_size():
    data = _data()
    tree = make_tree(data, _rng_state(), leaf_size=10)
    assert tree.indices.shape[1] == 10
    sizes = (tree.indices >= 0).sum(axis=1)
    assert np.all(sizes >= 1)
    assert np.all(sizes <= 10)


def test_small_data_is_a_single_leaf():
    data = _data(n=8)
    tree = make_tree(data, _rng_state(), leaf_size=30)
    assert tree.children.shape == (1, 2)
    assert tree.children[0, 0] == 0
    np.testing.assert_array_equal(tree.indices[0, :8], np.arange(8))


def test_duplicated_points_still_split():
    data = np.ones((50, 3), dtype=np.float32)
    tree = make_tree(data, _rng_state(), leaf_size=5)
    sizes = (tree.indices >= 0).sum(axis=1)
    assert sizes.sum() == 50
    assert np.all(sizes <= 5)


def test_angular_tree():
    data = _data()
    tree = make_tree(data, _rng_state(), leaf_size=10, angular=True)
    np.testing.assert_array_equal(tree.offsets, 0.0)
    assert np.sort(tree.indices[tree.indices >= 0]).shape[0] == data.shape[0]


def test_search_flat_tree_finds_own_leaf():
    data = _data()
    tree = make_tree(data, _rng_state(), leaf_size=10)
    state = _rng_state()
    found = 0
    for i in range(data.shape[0]):
        leaf = search_flat_tree(
            data[i], tree.hyperplanes, tree.offsets, tree.children, tree.indices, state
        )
        found += i in leaf
    assert found >= 0.95 * data.shape[0]


def test_forest_leaf_size_at_least_n_neighbors():
    data = _data()
    forest = make_forest(data, 15, 3, _rng_state(), leaf_size=5)
    assert len(forest) == 3
    assert all(tree.leaf_size == 15 for tree in forest)
    leaf_array = rptree_leaf_array(forest)
    assert leaf_array.shape[1] == 15


def test_search_forest_candidates():
    data = _data()
    forest = make_forest(data, 10, 4, _rng_state())
    candidates = search_forest(data[0], forest, _rng_state())
    assert np.all(candidates >= 0)
    assert np.all(np.diff(candidates) > 0)
    assert candidates.shape[0] > 0
