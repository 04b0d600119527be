# Author: Leland McInnes <leland.mcinnes@gmail.com>
#
# License: BSD 3 clause

from warnings import warn

import numpy as np
import numba

from umap_core.distances import (
    named_distances,
    angular_distances,
    distance_args,
    pair_distances,
)
from umap_core.errors import ConfigError, MetricError
from umap_core.rp_tree import make_forest, rptree_leaf_array, search_forest
from umap_core.utils import (
    tau_rand,
    rejection_sample,
    make_rng_state,
    measure_time,
    ts,
)


class DistanceEvaluator(object):
    """Evaluate distances between pairs of rows and make sure the metric
    produced something usable.

    Parameters
    ----------
    X: array of shape (n_samples, n_features)
        The data the column indices refer to.

    metric: string or callable
        Either one of ``named_distances`` or a function
        ``metric(x, y, **metric_kwds) -> float``.

    metric_kwds: dict
        Extra arguments for the metric.

    Y: array of shape (n_queries, n_features) (optional)
        When given, row indices refer to ``Y`` rather than ``X``.
    """

    def __init__(self, X, metric, metric_kwds=None, Y=None):
        if callable(metric):
            self._dist = None
        elif metric in named_distances:
            self._dist = named_distances[metric]
            self._dist_args = distance_args(metric, metric_kwds)
        else:
            raise ConfigError("Metric is neither callable, nor a recognised string")
        self.X = X
        self.Y = X if Y is None else Y
        self.metric = metric
        self.metric_kwds = {} if metric_kwds is None else metric_kwds
        self.n_evaluations = 0

    def pairs(self, rows, cols):
        """Distances between ``Y[rows[n]]`` and ``X[cols[n]]`` as a float32
        array of the same length as ``rows``."""
        rows = np.asarray(rows, dtype=np.int64)
        cols = np.asarray(cols, dtype=np.int64)

        if self._dist is None:
            result = np.empty(rows.shape[0], dtype=np.float64)
            for n in range(rows.shape[0]):
                try:
                    result[n] = self.metric(
                        self.Y[rows[n]], self.X[cols[n]], **self.metric_kwds
                    )
                except Exception as e:
                    raise MetricError(rows[n], cols[n]) from e
        else:
            result = pair_distances(
                self._dist, self.Y, self.X, rows, cols, self._dist_args
            )
        self.n_evaluations += result.shape[0]

        bad = np.flatnonzero(~np.isfinite(result))
        if bad.shape[0] > 0:
            n = bad[0]
            raise MetricError(rows[n], cols[n], result[n])

        return result.astype(np.float32)


@numba.njit()
def make_heap(n_points, size):
    """Neighbor heaps for ``n_points`` rows of capacity ``size``: indices
    (-1 when empty), distances (inf when empty) and new/old flags."""
    indices = -1 * np.ones((n_points, size), dtype=np.int64)
    distances = np.empty((n_points, size), dtype=np.float32)
    distances[:] = np.inf
    flags = np.zeros((n_points, size), dtype=np.uint8)
    return indices, distances, flags


@numba.njit()
def _precedes(d1, i1, d2, i2):
    # Order by distance, then by index
    return d1 < d2 or (d1 == d2 and i1 < i2)


@numba.njit()
def heap_push(indices, distances, flags, row, weight, index, flag):
    """Push ``index`` at distance ``weight`` into the max-heap of ``row``
    if it is closer than the current worst entry and not already present.

    Returns
    -------
    1 if the heap changed, 0 otherwise.
    """
    size = indices.shape[1]

    if not _precedes(weight, index, distances[row, 0], indices[row, 0]):
        return 0

    for i in range(size):
        if index == indices[row, i]:
            return 0

    i = 0
    while True:
        ic1 = 2 * i + 1
        ic2 = ic1 + 1

        if ic1 >= size:
            break
        elif ic2 >= size or _precedes(
            distances[row, ic2], indices[row, ic2], distances[row, ic1], indices[row, ic1]
        ):
            i_swap = ic1
        else:
            i_swap = ic2

        if _precedes(weight, index, distances[row, i_swap], indices[row, i_swap]):
            distances[row, i] = distances[row, i_swap]
            indices[row, i] = indices[row, i_swap]
            flags[row, i] = flags[row, i_swap]
            i = i_swap
        else:
            break

    distances[row, i] = weight
    indices[row, i] = index
    flags[row, i] = flag

    return 1


@numba.njit()
def apply_updates(indices, distances, flags, p, q, d):
    """Offer every evaluated pair ``(p[n], q[n])`` to both heaps; returns the
    number of heap changes."""
    c = 0
    for n in range(p.shape[0]):
        c += heap_push(indices, distances, flags, p[n], d[n], q[n], 1)
        c += heap_push(indices, distances, flags, q[n], d[n], p[n], 1)
    return c


@numba.njit()
def push_row(indices, distances, flags, row, candidates, candidate_distances):
    for n in range(candidates.shape[0]):
        heap_push(
            indices, distances, flags, row, candidate_distances[n], candidates[n], 1
        )


def deheap_sort(indices, distances):
    """Turn the heaps into neighbor rows sorted nearest first, ties by index."""
    order = np.lexsort((indices, distances))
    return (
        np.take_along_axis(indices, order, axis=1),
        np.take_along_axis(distances, order, axis=1),
    )


def unique_pairs(p, q, n_samples):
    """Deduplicate unordered pairs and drop self pairs; the result is sorted."""
    lo = np.minimum(p, q)
    hi = np.maximum(p, q)
    keys = np.unique(lo[lo != hi] * n_samples + hi[lo != hi])
    return keys // n_samples, keys % n_samples


@numba.njit()
def leaf_pairs(leaf_array):
    """Every pair of points sharing a leaf of the forest."""
    n_pairs = 0
    for n in range(leaf_array.shape[0]):
        size = 0
        for i in range(leaf_array.shape[1]):
            if leaf_array[n, i] >= 0:
                size += 1
        n_pairs += size * (size - 1) // 2

    p = np.empty(n_pairs, dtype=np.int64)
    q = np.empty(n_pairs, dtype=np.int64)
    c = 0
    for n in range(leaf_array.shape[0]):
        for i in range(leaf_array.shape[1]):
            if leaf_array[n, i] < 0:
                break
            for j in range(i + 1, leaf_array.shape[1]):
                if leaf_array[n, j] < 0:
                    break
                p[c] = leaf_array[n, i]
                q[c] = leaf_array[n, j]
                c += 1

    return p[:c], q[:c]


@numba.njit()
def random_pairs(rows, n_samples, n_neighbors, rng_state):
    """``n_neighbors`` distinct random partners (never the point itself) for
    each of ``rows``."""
    p = np.empty(rows.shape[0] * n_neighbors, dtype=np.int64)
    q = np.empty(rows.shape[0] * n_neighbors, dtype=np.int64)
    c = 0
    for r in range(rows.shape[0]):
        i = rows[r]
        candidates = rejection_sample(n_neighbors + 1, n_samples, rng_state)
        m = 0
        for j in range(candidates.shape[0]):
            if candidates[j] == i or m == n_neighbors:
                continue
            p[c] = i
            q[c] = candidates[j]
            c += 1
            m += 1

    return p[:c], q[:c]


@numba.njit()
def build_candidates(indices, flags, max_candidates, rng_state):
    """For each point gather its neighbors and reverse neighbors, split by
    whether they are new since the last round. When there are more than
    ``max_candidates`` the ones with the smallest random priority are kept.
    New neighbors that made it into a candidate list are marked old."""
    n_vertices, n_neighbors = indices.shape

    new_indices, new_priority, new_flags = make_heap(n_vertices, max_candidates)
    old_indices, old_priority, old_flags = make_heap(n_vertices, max_candidates)

    for i in range(n_vertices):
        for j in range(n_neighbors):
            idx = indices[i, j]
            if idx < 0:
                continue
            d = tau_rand(rng_state)
            if flags[i, j]:
                heap_push(new_indices, new_priority, new_flags, i, d, idx, 1)
                heap_push(new_indices, new_priority, new_flags, idx, d, i, 1)
            else:
                heap_push(old_indices, old_priority, old_flags, i, d, idx, 0)
                heap_push(old_indices, old_priority, old_flags, idx, d, i, 0)

    for i in range(n_vertices):
        for j in range(n_neighbors):
            idx = indices[i, j]
            if idx < 0 or not flags[i, j]:
                continue
            for k in range(max_candidates):
                if new_indices[i, k] == idx:
                    flags[i, j] = 0
                    break

    return new_indices, old_indices


@numba.njit()
def local_join_pairs(new_candidates, old_candidates):
    """Pairs to try in the local join: new with new, and new with old."""
    n_vertices, max_candidates = new_candidates.shape

    n_pairs = 0
    for i in range(n_vertices):
        n_new = 0
        n_old = 0
        for j in range(max_candidates):
            if new_candidates[i, j] >= 0:
                n_new += 1
            if old_candidates[i, j] >= 0:
                n_old += 1
        n_pairs += n_new * (n_new - 1) // 2 + n_new * n_old

    p = np.empty(n_pairs, dtype=np.int64)
    q = np.empty(n_pairs, dtype=np.int64)
    c = 0
    for i in range(n_vertices):
        for j in range(max_candidates):
            x = new_candidates[i, j]
            if x < 0:
                continue
            for k in range(j + 1, max_candidates):
                y = new_candidates[i, k]
                if y < 0:
                    continue
                p[c] = x
                q[c] = y
                c += 1
            for k in range(max_candidates):
                y = old_candidates[i, k]
                if y < 0 or y == x:
                    continue
                p[c] = x
                q[c] = y
                c += 1

    return p[:c], q[:c]


def nn_descent(
    indices,
    distances,
    flags,
    evaluator,
    rng_state,
    max_candidates=50,
    n_iters=10,
    delta=0.001,
    verbose=False,
):
    """Refine neighbor heaps by nearest neighbor descent: neighbors of
    neighbors are likely to be neighbors, so every pair of points in a
    point's (forward and reverse) neighborhood is tried as a neighbor of
    the other.

    Parameters
    ----------
    indices, distances, flags: arrays of shape (n_samples, n_neighbors)
        The neighbor heaps from ``make_heap``; updated in place.

    evaluator: DistanceEvaluator

    rng_state: array of int64, shape (3,)
        The internal state of the rng

    max_candidates: int (optional, default 50)
        Upper bound on the size of each local join.

    n_iters: int (optional, default 10)
        Maximum number of descent rounds.

    delta: float (optional, default 0.001)
        Stop once fewer than ``delta * n_samples * n_neighbors`` heap
        updates happen in a round.

    verbose: bool (optional, default False)
        Whether to print status data during the computation.
    """
    n_samples, n_neighbors = indices.shape
    for n in range(n_iters):
        if verbose:
            print("\t", n, " / ", n_iters)

        new_candidates, old_candidates = build_candidates(
            indices, flags, max_candidates, rng_state
        )
        p, q = unique_pairs(
            *local_join_pairs(new_candidates, old_candidates), n_samples
        )
        if p.shape[0] == 0:
            break

        c = apply_updates(indices, distances, flags, p, q, evaluator.pairs(p, q))
        if c <= delta * n_neighbors * n_samples:
            break

    return indices, distances


@measure_time
def nearest_neighbors(
    X,
    n_neighbors,
    metric,
    metric_kwds,
    angular,
    random_state,
    leaf_size=30,
    n_trees=None,
    n_iters=None,
    verbose=False,
):
    """Compute the ``n_neighbors`` nearest points for each data point in ``X``
    under ``metric``. The result is approximate: a random projection forest
    seeds each row, then nearest neighbor descent refines it.

    Parameters
    ----------
    X: array of shape (n_samples, n_features)
        The input data to compute the k-neighbor graph of.

    n_neighbors: int
        The number of nearest neighbors to compute for each sample in ``X``;
        at most ``n_samples - 1``.

    metric: string or callable
        The metric to use for the computation.

    metric_kwds: dict
        Any arguments to pass to the metric computation function.

    angular: bool
        Whether to use angular rp trees in NN approximation.

    random_state: np.random state
        The random state to use for approximate NN computations.

    leaf_size: int (optional, default 30)
        Maximum number of points in a leaf of the forest.

    n_trees: int (optional, default None)
        Number of trees; derived from the dataset size when None.

    n_iters: int (optional, default None)
        Number of NN-descent rounds; derived from the dataset size when None.

    verbose: bool
        Whether to print status data during the computation.

    Returns
    -------
    knn_indices: array of shape (n_samples, n_neighbors)
        The indices on the ``n_neighbors`` closest points in the dataset,
        nearest first, never including the point itself.

    knn_dists: array of shape (n_samples, n_neighbors)
        The distances to the ``n_neighbors`` closest points in the dataset.

    rp_forest: list of FlatTree
        The forest used to seed the search; reused by ``transform``.
    """
    if verbose:
        print(ts(), "Finding Nearest Neighbors")

    evaluator = DistanceEvaluator(X, metric, metric_kwds)

    if metric in angular_distances:
        angular = True

    n_samples = X.shape[0]
    n_neighbors = min(n_neighbors, n_samples - 1)
    rng_state = make_rng_state(random_state)

    if n_trees is None:
        n_trees = 5 + int(round((n_samples) ** 0.5 / 20.0))
    if n_iters is None:
        n_iters = max(5, int(round(np.log2(n_samples))))

    if verbose:
        print(ts(), "Building RP forest with", str(n_trees), "trees")
    rp_forest = make_forest(X, n_neighbors, n_trees, rng_state, angular, leaf_size)
    leaf_array = rptree_leaf_array(rp_forest)

    indices, distances, flags = make_heap(n_samples, n_neighbors)
    p, q = unique_pairs(*leaf_pairs(leaf_array), n_samples)
    apply_updates(indices, distances, flags, p, q, evaluator.pairs(p, q))

    # Rows the forest left short are completed with random points
    short = np.flatnonzero(np.any(indices < 0, axis=1))
    if short.shape[0] > 0:
        p, q = random_pairs(short, n_samples, n_neighbors, rng_state)
        apply_updates(indices, distances, flags, p, q, evaluator.pairs(p, q))

    if verbose:
        print(ts(), "NN descent for", str(n_iters), "iterations")
    nn_descent(
        indices,
        distances,
        flags,
        evaluator,
        rng_state,
        max_candidates=min(60, max(2 * n_neighbors, 20)),
        n_iters=n_iters,
        verbose=verbose,
    )
    knn_indices, knn_dists = deheap_sort(indices, distances)

    if np.any(knn_indices < 0):
        warn(
            "Failed to correctly find n_neighbors for some samples. "
            "Results may be less than ideal. Try re-running with "
            "different parameters."
        )
    if verbose:
        print(ts(), "Finished Nearest Neighbor Search")

    return knn_indices, knn_dists, rp_forest


def query_neighbors(
    X_new,
    X,
    knn_indices,
    rp_forest,
    n_neighbors,
    metric,
    metric_kwds,
    rng_state,
    queue_size=4.0,
):
    """Approximate neighbors in ``X`` for points that were not part of it.

    Candidates are the leaves each new point reaches in the forest; the
    best ``queue_size * n_neighbors`` of them are expanded one hop over the
    training neighbor table before the final selection.

    Returns
    -------
    indices, dists: arrays of shape (n_new_samples, n_neighbors)
    """
    evaluator = DistanceEvaluator(X, metric, metric_kwds, Y=X_new)
    n_queue = max(n_neighbors, int(n_neighbors * queue_size))

    indices, distances, flags = make_heap(X_new.shape[0], n_neighbors)
    for i in range(X_new.shape[0]):
        candidates = search_forest(X_new[i], rp_forest, rng_state)
        if candidates.shape[0] < n_neighbors:
            candidates = np.union1d(
                candidates, rejection_sample(n_neighbors, X.shape[0], rng_state)
            )
        candidate_distances = evaluator.pairs(
            np.full(candidates.shape[0], i), candidates
        )

        queue = candidates[np.lexsort((candidates, candidate_distances))[:n_queue]]
        expanded = np.setdiff1d(np.unique(knn_indices[queue]), candidates)
        expanded = expanded[expanded >= 0]
        if expanded.shape[0] > 0:
            candidates = np.concatenate((candidates, expanded))
            candidate_distances = np.concatenate(
                (
                    candidate_distances,
                    evaluator.pairs(np.full(expanded.shape[0], i), expanded),
                )
            )

        push_row(indices, distances, flags, i, candidates, candidate_distances)

    return deheap_sort(indices, distances)
