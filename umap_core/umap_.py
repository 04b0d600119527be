# Author: Leland McInnes <leland.mcinnes@gmail.com>
#
# License: BSD 3 clause
import enum
import locale
from warnings import warn

import joblib
import numpy as np
import numba
import scipy.sparse
from scipy.optimize import curve_fit
from sklearn.base import BaseEstimator
from sklearn.preprocessing import normalize
from sklearn.utils import check_random_state, check_array
from sklearn.utils.validation import check_is_fitted

from umap_core.errors import (
    ConfigError,
    InvalidInputError,
    NumericInstabilityError,
)
from umap_core.layouts import make_epochs_per_sample, optimize_layout
from umap_core.distances import named_distances
from umap_core.nndescent import nearest_neighbors, query_neighbors
from umap_core.spectral import spectral_layout
from umap_core.utils import make_rng_state, measure_time, ts

locale.setlocale(locale.LC_NUMERIC, "C")

SMOOTH_K_TOLERANCE = 1e-5
MIN_K_DIST_SCALE = 1e-3
NPY_INFINITY = np.inf


class FitState(enum.Enum):
    UNFIT = "unfit"
    NEIGHBORS_COMPUTED = "neighbors_computed"
    GRAPH_BUILT = "graph_built"
    EMBEDDING_INITIALIZED = "embedding_initialized"
    OPTIMIZING = "optimizing"
    FIT = "fit"
    FAILED = "failed"


@numba.njit()
def smooth_knn_dist(distances, k, n_iter=64, local_connectivity=1.0, bandwidth=1.0):
    """Compute a continuous version of the distance to the kth nearest
    neighbor. That is, this is similar to knn-distance but allows continuous
    k values rather than requiring an integral k. In essence we are simply
    computing the distance such that the cardinality of fuzzy set we generate
    is k.

    Parameters
    ----------
    distances: array of shape (n_samples, n_neighbors)
        Distances to nearest neighbors for each samples. Each row should be a
        sorted list of distances to a given samples nearest neighbors, not
        including the sample itself. Missing neighbors are ``inf``.

    k: float
        The number of nearest neighbors to approximate for.

    n_iter: int (optional, default 64)
        We need to binary search for the correct distance value. This is the
        max number of iterations to use in such a search.

    local_connectivity: int (optional, default 1)
        The local connectivity required -- i.e. the number of nearest
        neighbors that should be assumed to be connected at a local level.
        The higher this value the more connected the manifold becomes
        locally. In practice this should be not more than the local intrinsic
        dimension of the manifold.

    bandwidth: float (optional, default 1)
        The target bandwidth of the kernel, larger values will produce
        larger return values.

    Returns
    -------
    result: array of shape(n_samples)
        The normalization factor derived from the metric tensor approximation.

    rho: array of shape(n_samples)
        The local connectivity adjustment.
    """
    target = np.log2(k) * bandwidth
    rho = np.zeros(distances.shape[0])
    result = np.zeros(distances.shape[0])

    finite_distances = distances.ravel()[np.isfinite(distances.ravel())]
    if finite_distances.shape[0] > 0:
        mean_distances = np.mean(finite_distances)
    else:
        mean_distances = 0.0

    for i in range(distances.shape[0]):
        lo = 0.0
        hi = NPY_INFINITY
        mid = 1.0

        ith_distances = distances[i][np.isfinite(distances[i])]
        non_zero_dists = ith_distances[ith_distances > 0.0]
        if non_zero_dists.shape[0] >= local_connectivity:
            index = int(np.floor(local_connectivity))
            interpolation = local_connectivity - index
            if index > 0:
                rho[i] = non_zero_dists[index - 1]
                if interpolation > SMOOTH_K_TOLERANCE:
                    rho[i] += interpolation * (
                        non_zero_dists[index] - non_zero_dists[index - 1]
                    )
            elif non_zero_dists.shape[0] > 0:
                rho[i] = interpolation * non_zero_dists[0]
        elif non_zero_dists.shape[0] > 0:
            rho[i] = np.max(non_zero_dists)

        for n in range(n_iter):

            psum = 0.0
            for j in range(ith_distances.shape[0]):
                d = ith_distances[j] - rho[i]
                if d > 0:
                    psum += np.exp(-(d / mid))
                else:
                    psum += 1.0

            if np.fabs(psum - target) < SMOOTH_K_TOLERANCE:
                break

            if psum > target:
                hi = mid
                mid = (lo + hi) / 2.0
            else:
                lo = mid
                if hi == NPY_INFINITY:
                    mid *= 2
                else:
                    mid = (lo + hi) / 2.0

        result[i] = mid

        # Did not converge to anything sensible: clamp to a fraction of the
        # mean neighbor distance
        if rho[i] > 0.0:
            mean_ith_distances = np.mean(ith_distances)
            if result[i] < MIN_K_DIST_SCALE * mean_ith_distances:
                result[i] = MIN_K_DIST_SCALE * mean_ith_distances
        else:
            if result[i] < MIN_K_DIST_SCALE * mean_distances:
                result[i] = MIN_K_DIST_SCALE * mean_distances

    return result, rho


@numba.njit()
def compute_membership_strengths(knn_indices, knn_dists, sigmas, rhos, bipartite=False):
    """Construct the membership strength data for the 1-skeleton of each local
    fuzzy simplicial set -- this is formed as a sparse matrix where each row is
    a local fuzzy simplicial set, with a membership strength for the
    1-simplex to each other data point.

    Parameters
    ----------
    knn_indices: array of shape (n_samples, n_neighbors)
        The indices on the ``n_neighbors`` closest points in the dataset.

    knn_dists: array of shape (n_samples, n_neighbors)
        The distances to the ``n_neighbors`` closest points in the dataset.

    sigmas: array of shape(n_samples)
        The normalization factor derived from the metric tensor approximation.

    rhos: array of shape(n_samples)
        The local connectivity adjustment.

    bipartite: bool (optional, default False)
        Rows and columns index different point sets, so row ``i`` listing
        column ``i`` is not a self loop.

    Returns
    -------
    rows: array of shape (n_samples * n_neighbors)
        Row data for the resulting sparse matrix (coo format)

    cols: array of shape (n_samples * n_neighbors)
        Column data for the resulting sparse matrix (coo format)

    vals: array of shape (n_samples * n_neighbors)
        Entries for the resulting sparse matrix (coo format)
    """
    n_samples = knn_indices.shape[0]
    n_neighbors = knn_indices.shape[1]

    rows = np.zeros((n_samples * n_neighbors), dtype=np.int64)
    cols = np.zeros((n_samples * n_neighbors), dtype=np.int64)
    vals = np.zeros((n_samples * n_neighbors), dtype=np.float64)

    for i in range(n_samples):
        for j in range(n_neighbors):
            if knn_indices[i, j] == -1:
                continue  # We didn't get the full knn for i
            if not bipartite and knn_indices[i, j] == i:
                val = 0.0
            elif knn_dists[i, j] - rhos[i] <= 0.0:
                val = 1.0
            else:
                val = np.exp(-((knn_dists[i, j] - rhos[i]) / (sigmas[i])))

            rows[i * n_neighbors + j] = i
            cols[i * n_neighbors + j] = knn_indices[i, j]
            vals[i * n_neighbors + j] = val

    return rows, cols, vals


@measure_time
def fuzzy_simplicial_set(
    X,
    n_neighbors,
    random_state,
    metric,
    metric_kwds={},
    knn_indices=None,
    knn_dists=None,
    angular=False,
    set_op_mix_ratio=1.0,
    local_connectivity=1.0,
    verbose=False,
):
    """Given a set of data X, a neighborhood size, and a measure of distance
    compute the fuzzy simplicial set (here represented as a fuzzy graph in
    the form of a sparse matrix) associated to the data. This is done by
    locally approximating geodesic distance at each point, creating a fuzzy
    simplicial set for each such point, and then combining all the local
    fuzzy simplicial sets into a global one via a fuzzy union.

    Parameters
    ----------
    X: array of shape (n_samples, n_features)
        The data to be modelled as a fuzzy simplicial set.

    n_neighbors: int
        The number of neighbors to use to approximate geodesic distance.
        Larger numbers induce more global estimates of the manifold that can
        miss finer detail, while smaller values will focus on fine manifold
        structure to the detriment of the larger picture.

    random_state: numpy RandomState or equivalent
        A state capable being used as a numpy random state.

    metric: string or function
        The metric to use to compute distances in high dimensional space;
        only used when the neighbors are not supplied.

    metric_kwds: dict (optional, default {})
        Arguments to pass on to the metric, such as the ``p`` value for
        Minkowski distance.

    knn_indices: array of shape (n_samples, n_neighbors) (optional)
        If the k-nearest neighbors of each point has already been calculated
        you can pass them in here to save computation time. Rows must not
        list the point itself; missing entries are -1.

    knn_dists: array of shape (n_samples, n_neighbors) (optional)
        The distances matching ``knn_indices``, nearest first.

    angular: bool (optional, default False)
        Whether to use angular/cosine distance for the random projection
        forest for seeding NN-descent to determine approximate nearest
        neighbors.

    set_op_mix_ratio: float (optional, default 1.0)
        Interpolate between (fuzzy) union and intersection as the set operation
        used to combine local fuzzy simplicial sets to obtain a global fuzzy
        simplicial sets. Both fuzzy set operations use the product t-norm.
        The value of this parameter should be between 0.0 and 1.0; a value of
        1.0 will use a pure fuzzy union, while 0.0 will use a pure fuzzy
        intersection.

    local_connectivity: int (optional, default 1)
        The local connectivity required -- i.e. the number of nearest
        neighbors that should be assumed to be connected at a local level.
        The higher this value the more connected the manifold becomes
        locally. In practice this should be not more than the local intrinsic
        dimension of the manifold.

    verbose: bool (optional, default False)
        Whether to report information on the current progress of the algorithm.

    Returns
    -------
    fuzzy_simplicial_set: csr_matrix
        A fuzzy simplicial set represented as a sparse matrix. The (i,
        j) entry of the matrix represents the membership strength of the
        1-simplex between the ith and jth sample points.
    """
    if knn_indices is None or knn_dists is None:
        knn_indices, knn_dists, _ = nearest_neighbors(
            X, n_neighbors, metric, metric_kwds, angular, random_state, verbose=verbose
        )

    knn_dists = np.where(knn_indices >= 0, knn_dists, np.inf).astype(np.float64)

    sigmas, rhos = smooth_knn_dist(
        knn_dists, float(n_neighbors), local_connectivity=float(local_connectivity)
    )

    rows, cols, vals = compute_membership_strengths(
        knn_indices, knn_dists, sigmas, rhos
    )

    result = scipy.sparse.coo_matrix(
        (vals, (rows, cols)), shape=(X.shape[0], X.shape[0])
    )
    result.eliminate_zeros()

    transpose = result.transpose()

    prod_matrix = result.multiply(transpose)

    result = (
        set_op_mix_ratio * (result + transpose - prod_matrix)
        + (1.0 - set_op_mix_ratio) * prod_matrix
    )

    result = scipy.sparse.csr_matrix(result)
    result.eliminate_zeros()

    return result


def find_ab_params(spread, min_dist):
    """Fit a, b params for the differentiable curve used in lower
    dimensional fuzzy simplicial complex construction. We want the
    smooth curve (from a pre-defined family with simple gradient) that
    best matches an offset exponential decay.
    """

    def curve(x, a, b):
        return 1.0 / (1.0 + a * x ** (2 * b))

    xv = np.linspace(0, spread * 3, 300)
    yv = np.zeros(xv.shape)
    yv[xv < min_dist] = 1.0
    yv[xv >= min_dist] = np.exp(-(xv[xv >= min_dist] - min_dist) / spread)
    try:
        params, covar = curve_fit(curve, xv, yv, p0=(1.0, 1.0), bounds=(0.0, np.inf))
    except (RuntimeError, ValueError) as e:
        raise NumericInstabilityError(
            "Could not fit a, b for spread={} and min_dist={}".format(spread, min_dist)
        ) from e

    a, b = params
    if not (np.isfinite(a) and np.isfinite(b)) or a <= 0.0 or b <= 0.0:
        raise NumericInstabilityError(
            "Fitting a, b for spread={} and min_dist={} diverged to a={}, b={}".format(
                spread, min_dist, a, b
            )
        )
    return float(a), float(b)


@numba.njit()
def init_transform(indices, weights, embedding):
    """Given indices and weights and an original embeddings
    initialize the positions of new points relative to the
    indices and weights (of their neighbors in the source data).

    Parameters
    ----------
    indices: array of shape (n_new_samples, n_neighbors)
        The indices of the neighbors of each new sample

    weights: array of shape (n_new_samples, n_neighbors)
        The membership strengths of associated 1-simplices
        for each of the new samples.

    embedding: array of shape (n_samples, dim)
        The original embedding of the source data.

    Returns
    -------
    new_embedding: array of shape (n_new_samples, dim)
        An initial embedding of the new sample points.
    """
    result = np.zeros((indices.shape[0], embedding.shape[1]), dtype=np.float32)

    for i in range(indices.shape[0]):
        for j in range(indices.shape[1]):
            if indices[i, j] < 0:
                continue
            for d in range(embedding.shape[1]):
                result[i, d] += weights[i, j] * embedding[indices[i, j], d]

    return result


def initialize_embedding(data, graph, n_components, init, random_state, metric, metric_kwds):
    """Place the points before optimization: spectral layout of the graph,
    uniform noise in [-10, 10], or an explicit array."""
    if isinstance(init, str) and init == "random":
        embedding = random_state.uniform(
            low=-10.0, high=10.0, size=(graph.shape[0], n_components)
        ).astype(np.float32)
    elif isinstance(init, str) and init == "spectral":
        # We add a little noise to avoid local minima for optimization to come
        initialisation = spectral_layout(
            data,
            graph,
            n_components,
            random_state,
            metric=metric,
            metric_kwds=metric_kwds,
        )
        max_coord = np.abs(initialisation).max()
        expansion = 10.0 / max_coord if max_coord > 0.0 else 1.0
        embedding = (initialisation * expansion).astype(
            np.float32
        ) + random_state.normal(
            scale=0.0001, size=[graph.shape[0], n_components]
        ).astype(
            np.float32
        )
    else:
        embedding = np.array(init, dtype=np.float32)

    return np.ascontiguousarray(embedding, dtype=np.float32)


@measure_time
def simplicial_set_embedding(
    data,
    graph,
    n_components,
    initial_alpha,
    a,
    b,
    gamma,
    negative_sample_rate,
    n_epochs,
    init,
    random_state,
    metric,
    metric_kwds,
    epoch_callback=None,
    stage_callback=None,
    verbose=False,
):
    """Perform a fuzzy simplicial set embedding, using a specified
    initialisation method and then minimizing the fuzzy set cross entropy
    between the 1-skeletons of the high and low dimensional fuzzy simplicial
    sets.

    Parameters
    ----------
    data: array of shape (n_samples, n_features)
        The source data to be embedded by UMAP.

    graph: sparse matrix
        The 1-skeleton of the high dimensional fuzzy simplicial set as
        represented by a graph for which we require a sparse matrix for the
        (weighted) adjacency matrix.

    n_components: int
        The dimensionality of the euclidean space into which to embed the data.

    initial_alpha: float
        Initial learning rate for the SGD.

    a: float
        Parameter of differentiable approximation of right adjoint functor

    b: float
        Parameter of differentiable approximation of right adjoint functor

    gamma: float
        Weight to apply to negative samples.

    negative_sample_rate: int (optional, default 5)
        The number of negative samples to select per positive sample
        in the optimization process. Increasing this value will result
        in greater repulsive force being applied, greater optimization
        cost, but slightly more accuracy.

    n_epochs: int or None
        The number of training epochs to be used in optimizing the
        low dimensional embedding. Larger values result in more accurate
        embeddings. If None is specified a value will be selected based on
        the size of the input dataset (200 for large datasets, 500 for small).

    init: string or array
        How to initialize the low dimensional embedding. Options are:
            * 'spectral': use a spectral embedding of the fuzzy 1-skeleton
            * 'random': assign initial embedding positions at random.
            * A numpy array of initial embedding positions.

    random_state: numpy RandomState or equivalent
        A state capable being used as a numpy random state.

    metric: string or callable
        The metric used to measure distance in high dimensional space; used if
        multiple connected components need to be layed out.

    metric_kwds: dict
        Key word arguments to be passed to the metric function; used if
        multiple connected components need to be layed out.

    epoch_callback: callable (optional, default None)
        Forwarded to ``optimize_layout``.

    stage_callback: callable (optional, default None)
        Called with ``FitState.EMBEDDING_INITIALIZED`` once the initial
        embedding exists and with ``FitState.OPTIMIZING`` right before the
        first epoch.

    verbose: bool (optional, default False)
        Whether to report information on the current progress of the algorithm.

    Returns
    -------
    embedding: array of shape (n_samples, n_components)
        The optimized of ``graph`` into an ``n_components`` dimensional
        euclidean space.
    """
    graph = graph.tocoo()
    graph.sum_duplicates()
    n_vertices = graph.shape[1]

    if n_epochs is None:
        # For smaller datasets we can use more epochs
        if graph.shape[0] <= 10000:
            n_epochs = 500
        else:
            n_epochs = 200

    if n_epochs > 0 and graph.nnz > 0:
        graph.data[graph.data < (graph.data.max() / float(n_epochs))] = 0.0
        graph.eliminate_zeros()

    embedding = initialize_embedding(
        data, graph, n_components, init, random_state, metric, metric_kwds
    )
    if stage_callback is not None:
        stage_callback(FitState.EMBEDDING_INITIALIZED)

    epochs_per_sample = make_epochs_per_sample(graph.data, n_epochs)

    head = graph.row.astype(np.int64)
    tail = graph.col.astype(np.int64)

    rng_state = make_rng_state(random_state)

    if verbose:
        print(ts(), "Optimizing layout for", n_epochs, "epochs")

    if stage_callback is not None:
        stage_callback(FitState.OPTIMIZING)
    embedding = optimize_layout(
        embedding,
        embedding,
        head,
        tail,
        n_epochs,
        n_vertices,
        epochs_per_sample,
        a,
        b,
        rng_state,
        gamma,
        initial_alpha,
        negative_sample_rate,
        epoch_callback=epoch_callback,
        verbose=verbose,
    )

    return embedding


class UMAP(BaseEstimator):
    """Uniform Manifold Approximation and Projection

    Finds a low dimensional embedding of the data that approximates
    an underlying manifold.

    Parameters
    ----------
    n_neighbors: int (optional, default 15)
        The size of local neighborhood (in terms of number of neighboring
        sample points) used for manifold approximation. Larger values
        result in more global views of the manifold, while smaller
        values result in more local data being preserved. In general
        values should be in the range 2 to 100.

    n_components: int (optional, default 2)
        The dimension of the space to embed into. This defaults to 2 to
        provide easy visualization, but can reasonably be set to any
        integer value in the range 2 to 100.

    metric: string or function (optional, default 'euclidean')
        The metric to use to compute distances in high dimensional space.
        If a string is passed it must be one of the names understood by
        ``sklearn.metrics.pairwise_distances`` listed below. If a general
        metric is required a function ``metric(x, y, **metric_kwds)`` that
        takes two 1d arrays and returns a float can be provided. Valid
        string metrics include:
            * euclidean (or l2)
            * sqeuclidean
            * manhattan (or l1, cityblock)
            * chebyshev
            * minkowski
            * canberra
            * braycurtis
            * cosine
            * correlation
            * hamming

    metric_kwds: dict (optional, default None)
        Arguments to pass on to the metric, such as the ``p`` value for
        Minkowski distance. If None then no arguments are passed on.

    n_epochs: int (optional, default None)
        The number of training epochs to be used in optimizing the
        low dimensional embedding. Larger values result in more accurate
        embeddings. If None is specified a value will be selected based on
        the size of the input dataset (200 for large datasets, 500 for small).

    learning_rate: float (optional, default 1.0)
        The initial learning rate for the embedding optimization.

    init: string (optional, default 'spectral')
        How to initialize the low dimensional embedding. Options are:
            * 'spectral': use a spectral embedding of the fuzzy 1-skeleton
            * 'random': assign initial embedding positions at random.
            * A numpy array of initial embedding positions.

    min_dist: float (optional, default 0.1)
        The effective minimum distance between embedded points. Smaller values
        will result in a more clustered/clumped embedding where nearby points
        on the manifold are drawn closer together, while larger values will
        result on a more even dispersal of points. The value should be set
        relative to the ``spread`` value, which determines the scale at which
        embedded points will be spread out.

    spread: float (optional, default 1.0)
        The effective scale of embedded points. In combination with ``min_dist``
        this determines how clustered/clumped the embedded points are.

    set_op_mix_ratio: float (optional, default 1.0)
        Interpolate between (fuzzy) union and intersection as the set operation
        used to combine local fuzzy simplicial sets to obtain a global fuzzy
        simplicial sets. Both fuzzy set operations use the product t-norm.
        The value of this parameter should be between 0.0 and 1.0; a value of
        1.0 will use a pure fuzzy union, while 0.0 will use a pure fuzzy
        intersection.

    local_connectivity: float (optional, default 1)
        The local connectivity required -- i.e. the number of nearest
        neighbors that should be assumed to be connected at a local level.
        The higher this value the more connected the manifold becomes
        locally. In practice this should be not more than the local intrinsic
        dimension of the manifold.

    repulsion_strength: float (optional, default 1.0)
        Weighting applied to negative samples in low dimensional embedding
        optimization. Values higher than one will result in greater weight
        being given to negative samples.

    negative_sample_rate: int (optional, default 5)
        The number of negative samples to select per positive sample
        in the optimization process. Increasing this value will result
        in greater repulsive force being applied, greater optimization
        cost, but slightly more accuracy.

    transform_queue_size: float (optional, default 4.0)
        For transform operations (embedding new points using a trained model_
        this will control how aggressively to search for nearest neighbors.
        Larger values will result in slower performance but more accurate
        nearest neighbor evaluation.

    a: float (optional, default None)
        More specific parameters controlling the embedding. If None these
        values are set automatically as determined by ``min_dist`` and
        ``spread``.
    b: float (optional, default None)
        More specific parameters controlling the embedding. If None these
        values are set automatically as determined by ``min_dist`` and
        ``spread``.

    random_state: int, RandomState instance or None, optional (default: None)
        If int, random_state is the seed used by the random number generator;
        If RandomState instance, random_state is the random number generator;
        If None, the random number generator is the RandomState instance used
        by `np.random`. Fixing it makes the embedding reproducible.

    angular_rp_forest: bool (optional, default False)
        Whether to use an angular random projection forest to initialise
        the approximate nearest neighbor search. This can be faster, but is
        mostly on useful for metric that use an angular style distance such
        as cosine, correlation etc. In the case of those metrics angular forests
        will be chosen automatically.

    leaf_size: int (optional, default 30)
        Maximum number of points in a leaf of the random projection trees.
        Never smaller than ``n_neighbors``.

    n_trees: int (optional, default None)
        Number of random projection trees. If None it grows with the square
        root of the dataset size.

    n_iters: int (optional, default None)
        Maximum number of nearest neighbor descent rounds. If None it grows
        with the log of the dataset size.

    epoch_callback: callable (optional, default None)
        Called as ``epoch_callback(epoch, n_epochs, embedding)`` between
        optimization epochs. Returning False aborts the fit.

    transform_seed: int (optional, default 42)
        Random seed used for the stochastic aspects of the transform operation.
        This ensures consistency in transform operations.

    verbose: bool (optional, default False)
        Controls verbosity of logging.
    """

    def __init__(
        self,
        n_neighbors=15,
        n_components=2,
        metric="euclidean",
        metric_kwds=None,
        n_epochs=None,
        learning_rate=1.0,
        init="spectral",
        min_dist=0.1,
        spread=1.0,
        set_op_mix_ratio=1.0,
        local_connectivity=1.0,
        repulsion_strength=1.0,
        negative_sample_rate=5,
        transform_queue_size=4.0,
        a=None,
        b=None,
        random_state=None,
        angular_rp_forest=False,
        leaf_size=30,
        n_trees=None,
        n_iters=None,
        epoch_callback=None,
        transform_seed=42,
        verbose=False,
    ):
        self.n_neighbors = n_neighbors
        self.n_components = n_components
        self.metric = metric
        self.metric_kwds = metric_kwds
        self.n_epochs = n_epochs
        self.learning_rate = learning_rate
        self.init = init
        self.min_dist = min_dist
        self.spread = spread
        self.set_op_mix_ratio = set_op_mix_ratio
        self.local_connectivity = local_connectivity
        self.repulsion_strength = repulsion_strength
        self.negative_sample_rate = negative_sample_rate
        self.transform_queue_size = transform_queue_size
        self.a = a
        self.b = b
        self.random_state = random_state
        self.angular_rp_forest = angular_rp_forest
        self.leaf_size = leaf_size
        self.n_trees = n_trees
        self.n_iters = n_iters
        self.epoch_callback = epoch_callback
        self.transform_seed = transform_seed
        self.verbose = verbose

        self._validate_parameters()

    def _validate_parameters(self):
        if self.set_op_mix_ratio < 0.0 or self.set_op_mix_ratio > 1.0:
            raise ConfigError("set_op_mix_ratio must be between 0.0 and 1.0")
        if self.repulsion_strength < 0.0:
            raise ConfigError("repulsion_strength cannot be negative")
        if self.spread <= 0.0:
            raise ConfigError("spread must be greater than 0.0")
        if self.min_dist > self.spread:
            raise ConfigError("min_dist must be less than or equal to spread")
        if self.min_dist <= 0.0:
            raise ConfigError("min_dist must be greater than 0.0")
        if not isinstance(self.init, str) and not isinstance(self.init, np.ndarray):
            raise ConfigError("init must be a string or ndarray")
        if isinstance(self.init, str) and self.init not in ("spectral", "random"):
            raise ConfigError('string init values must be "spectral" or "random"')
        if (
            isinstance(self.init, np.ndarray)
            and (self.init.ndim != 2 or self.init.shape[1] != self.n_components)
        ):
            raise ConfigError("init ndarray must match n_components value")
        if not callable(self.metric) and self.metric not in named_distances:
            raise ConfigError("metric must be callable or one of " + ", ".join(named_distances))
        if self.negative_sample_rate < 0:
            raise ConfigError("negative sample rate must be positive")
        if self.learning_rate < 0.0:
            raise ConfigError("learning_rate must be positive")
        if not isinstance(self.n_neighbors, (int, np.integer)) or self.n_neighbors < 2:
            raise ConfigError("n_neighbors must be an int of at least 2")
        if not isinstance(self.n_components, (int, np.integer)):
            raise ConfigError("n_components must be an int")
        if self.n_components < 1:
            raise ConfigError("n_components must be greater than 0")
        if self.n_epochs is not None and (
            not isinstance(self.n_epochs, (int, np.integer)) or self.n_epochs <= 10
        ):
            raise ConfigError("n_epochs must be a positive integer " "larger than 10")
        if self.local_connectivity < 1.0:
            raise ConfigError("local_connectivity must be at least 1.0")
        for name in ("a", "b"):
            value = getattr(self, name)
            if value is not None and not value > 0.0:
                raise ConfigError("{} must be positive".format(name))
        if self.transform_queue_size <= 0.0:
            raise ConfigError("transform_queue_size must be positive")
        for name in ("leaf_size", "n_trees", "n_iters"):
            value = getattr(self, name)
            if value is not None and (
                not isinstance(value, (int, np.integer)) or value < 1
            ):
                raise ConfigError("{} must be a positive integer".format(name))
        if self.epoch_callback is not None and not callable(self.epoch_callback):
            raise ConfigError("epoch_callback must be callable")

    def _unpublish(self):
        for attr in ("embedding_", "graph_"):
            if hasattr(self, attr):
                delattr(self, attr)

    def fit(self, X, y=None):
        """Fit X into an embedded space.

        Parameters
        ----------
        X : array, shape (n_samples, n_features)
            Contains a sample per row.

        y : ignored

        Returns
        -------
        self
        """
        self._unpublish()
        self.state_ = FitState.UNFIT
        try:
            self._fit(X)
        except Exception:
            self.state_ = FitState.FAILED
            self._unpublish()
            raise
        self.state_ = FitState.FIT
        return self

    def _fit(self, X):
        self._validate_parameters()

        try:
            X = check_array(X, dtype=np.float32, order="C")
        except (TypeError, ValueError) as e:
            raise InvalidInputError(str(e)) from e
        self._raw_data = X

        # Handle all the optional arguments, setting default
        if self.a is None or self.b is None:
            self._a, self._b = find_ab_params(self.spread, self.min_dist)
        else:
            self._a = self.a
            self._b = self.b

        if self.metric_kwds is not None:
            self._metric_kwds = self.metric_kwds
        else:
            self._metric_kwds = {}

        if isinstance(self.init, np.ndarray):
            init = check_array(self.init, dtype=np.float32, accept_sparse=False)
            if init.shape[0] != X.shape[0]:
                raise InvalidInputError("init ndarray must have one row per sample")
        else:
            init = self.init

        self._initial_alpha = self.learning_rate

        if self.verbose:
            print(str(self))

        # Error check n_neighbors based on data size
        if X.shape[0] <= self.n_neighbors:
            if X.shape[0] == 1:
                self.embedding_ = np.zeros(
                    (1, self.n_components), dtype=np.float32
                )  # needed to sklearn comparability
                self._n_neighbors = 0
                return

            warn(
                "n_neighbors is larger than the dataset size; truncating to "
                "X.shape[0] - 1"
            )
            self._n_neighbors = X.shape[0] - 1
        else:
            self._n_neighbors = self.n_neighbors

        random_state = check_random_state(self.random_state)

        if self.verbose:
            print(ts(), "Construct fuzzy simplicial set")

        (self._knn_indices, self._knn_dists, self._rp_forest) = nearest_neighbors(
            X,
            self._n_neighbors,
            self.metric,
            self._metric_kwds,
            self.angular_rp_forest,
            random_state,
            leaf_size=self.leaf_size,
            n_trees=self.n_trees,
            n_iters=self.n_iters,
            verbose=self.verbose,
        )
        self.state_ = FitState.NEIGHBORS_COMPUTED

        graph = fuzzy_simplicial_set(
            X,
            self._n_neighbors,
            random_state,
            self.metric,
            self._metric_kwds,
            self._knn_indices,
            self._knn_dists,
            self.angular_rp_forest,
            self.set_op_mix_ratio,
            self.local_connectivity,
            verbose=self.verbose,
        )
        self.state_ = FitState.GRAPH_BUILT

        if self.verbose:
            print(ts(), "Construct embedding")

        def advance(state):
            self.state_ = state

        embedding = simplicial_set_embedding(
            self._raw_data,
            graph,
            self.n_components,
            self._initial_alpha,
            self._a,
            self._b,
            self.repulsion_strength,
            self.negative_sample_rate,
            self.n_epochs,
            init,
            random_state,
            self.metric,
            self._metric_kwds,
            epoch_callback=self.epoch_callback,
            stage_callback=advance,
            verbose=self.verbose,
        )

        if not np.all(np.isfinite(embedding)):
            raise NumericInstabilityError(
                "Layout optimization produced non-finite coordinates"
            )

        if self.verbose:
            print(ts(), " Finished embedding")

        self._input_hash = joblib.hash(self._raw_data)
        self.graph_ = graph
        self.embedding_ = embedding

    def fit_transform(self, X, y=None):
        """Fit X into an embedded space and return that transformed
        output.

        Parameters
        ----------
        X : array, shape (n_samples, n_features)
            Contains a sample per row.

        y : ignored

        Returns
        -------
        embedding_ : array, shape (n_samples, n_components)
            Embedding of the training data in low-dimensional space.
        """
        self.fit(X)
        return self.embedding_

    def transform(self, X):
        """Transform X into the existing embedded space and return that
        transformed output.

        Parameters
        ----------
        X : array, shape (n_samples, n_features)
            New data to be transformed.

        Returns
        -------
        X_new : array, shape (n_samples, n_components)
            Embedding of the new data in low-dimensional space.
        """
        check_is_fitted(self, "embedding_")
        # If we fit just a single instance then error
        if self.embedding_.shape[0] == 1:
            raise InvalidInputError(
                "Transform unavailable when model was fit with "
                "only a single data sample."
            )
        try:
            X = check_array(X, dtype=np.float32, order="C")
        except (TypeError, ValueError) as e:
            raise InvalidInputError(str(e)) from e
        if X.shape[1] != self._raw_data.shape[1]:
            raise InvalidInputError(
                "X has {} features, but the model was fit with {}".format(
                    X.shape[1], self._raw_data.shape[1]
                )
            )
        # If we just have the original input then short circuit things
        x_hash = joblib.hash(X)
        if x_hash == self._input_hash:
            return self.embedding_

        random_state = check_random_state(self.transform_seed)
        rng_state = make_rng_state(random_state)

        indices, dists = query_neighbors(
            X,
            self._raw_data,
            self._knn_indices,
            self._rp_forest,
            self._n_neighbors,
            self.metric,
            self._metric_kwds,
            rng_state,
            queue_size=self.transform_queue_size,
        )
        dists = dists.astype(np.float64)

        adjusted_local_connectivity = max(0.0, self.local_connectivity - 1.0)
        sigmas, rhos = smooth_knn_dist(
            dists,
            float(self._n_neighbors),
            local_connectivity=adjusted_local_connectivity,
        )

        rows, cols, vals = compute_membership_strengths(
            indices, dists, sigmas, rhos, True
        )

        # Every row has the same number of neighbors
        weights = normalize(vals.reshape(X.shape[0], self._n_neighbors), norm="l1")
        embedding = init_transform(indices, weights, self.embedding_)

        graph = scipy.sparse.coo_matrix(
            (vals, (rows, cols)), shape=(X.shape[0], self._raw_data.shape[0])
        )
        graph.eliminate_zeros()

        if self.n_epochs is None:
            # For smaller datasets we can use more epochs
            if graph.shape[0] <= 10000:
                n_epochs = 100
            else:
                n_epochs = 30
        else:
            n_epochs = int(self.n_epochs // 3.0)

        if graph.nnz > 0:
            graph.data[graph.data < (graph.data.max() / float(n_epochs))] = 0.0
            graph.eliminate_zeros()

        epochs_per_sample = make_epochs_per_sample(graph.data, n_epochs)

        head = graph.row.astype(np.int64)
        tail = graph.col.astype(np.int64)

        embedding = optimize_layout(
            embedding,
            self.embedding_.astype(np.float32, copy=False),
            head,
            tail,
            n_epochs,
            graph.shape[1],
            epochs_per_sample,
            self._a,
            self._b,
            rng_state,
            self.repulsion_strength,
            self._initial_alpha,
            self.negative_sample_rate,
            move_other=False,
            verbose=self.verbose,
        )

        if not np.all(np.isfinite(embedding)):
            raise NumericInstabilityError(
                "Layout optimization produced non-finite coordinates"
            )

        return embedding
