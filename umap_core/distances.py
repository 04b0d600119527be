# Author: Leland McInnes <leland.mcinnes@gmail.com>
#
# License: BSD 3 clause
import numpy as np
import numba

from umap_core.errors import ConfigError


@numba.njit()
def euclidean(x, y):
    """Standard euclidean distance.

    ..math::
        D(x, y) = \\sqrt{\\sum_i (x_i - y_i)^2}
    """
    result = 0.0
    for i in range(x.shape[0]):
        result += (x[i] - y[i]) ** 2
    return np.sqrt(result)


@numba.njit()
def sqeuclidean(x, y):
    result = 0.0
    for i in range(x.shape[0]):
        result += (x[i] - y[i]) ** 2
    return result


@numba.njit()
def manhattan(x, y):
    """Manhattan, taxicab, or l1 distance.

    ..math::
        D(x, y) = \\sum_i |x_i - y_i|
    """
    result = 0.0
    for i in range(x.shape[0]):
        result += np.abs(x[i] - y[i])

    return result


@numba.njit()
def chebyshev(x, y):
    """Chebyshev, or l-infinity distance.

    ..math::
        D(x, y) = \\max_i |x_i - y_i|
    """
    result = 0.0
    for i in range(x.shape[0]):
        result = max(result, np.abs(x[i] - y[i]))

    return result


@numba.njit()
def minkowski(x, y, p=2.0):
    """Minkowski distance.

    ..math::
        D(x, y) = \\left(\\sum_i |x_i - y_i|^p\\right)^{\\frac{1}{p}}

    This is a general distance. For p=1 it is equivalent to
    manhattan distance, for p=2 it is Euclidean distance, and
    for p=infinity it is Chebyshev distance. In general it is better
    to use the more specialised functions for those distances.
    """
    result = 0.0
    for i in range(x.shape[0]):
        result += (np.abs(x[i] - y[i])) ** p

    return result ** (1.0 / p)


@numba.njit()
def hamming(x, y):
    result = 0.0
    for i in range(x.shape[0]):
        if x[i] != y[i]:
            result += 1.0

    return float(result) / x.shape[0]


@numba.njit()
def canberra(x, y):
    result = 0.0
    for i in range(x.shape[0]):
        denominator = np.abs(x[i]) + np.abs(y[i])
        if denominator > 0:
            result += np.abs(x[i] - y[i]) / denominator

    return result


@numba.njit()
def bray_curtis(x, y):
    numerator = 0.0
    denominator = 0.0
    for i in range(x.shape[0]):
        numerator += np.abs(x[i] - y[i])
        denominator += np.abs(x[i] + y[i])

    if denominator > 0.0:
        return float(numerator) / denominator
    else:
        return 0.0


@numba.njit()
def cosine(x, y):
    result = 0.0
    norm_x = 0.0
    norm_y = 0.0
    for i in range(x.shape[0]):
        result += x[i] * y[i]
        norm_x += x[i] ** 2
        norm_y += y[i] ** 2

    if norm_x == 0.0 and norm_y == 0.0:
        return 0.0
    elif norm_x == 0.0 or norm_y == 0.0:
        return 1.0
    else:
        return 1.0 - (result / np.sqrt(norm_x * norm_y))


@numba.njit()
def correlation(x, y):
    mu_x = 0.0
    mu_y = 0.0
    norm_x = 0.0
    norm_y = 0.0
    dot_product = 0.0

    for i in range(x.shape[0]):
        mu_x += x[i]
        mu_y += y[i]

    mu_x /= x.shape[0]
    mu_y /= x.shape[0]

    for i in range(x.shape[0]):
        shifted_x = x[i] - mu_x
        shifted_y = y[i] - mu_y
        norm_x += shifted_x ** 2
        norm_y += shifted_y ** 2
        dot_product += shifted_x * shifted_y

    if norm_x == 0.0 and norm_y == 0.0:
        return 0.0
    elif dot_product == 0.0:
        return 1.0
    else:
        return 1.0 - (dot_product / np.sqrt(norm_x * norm_y))


named_distances = {
    "euclidean": euclidean,
    "l2": euclidean,
    "sqeuclidean": sqeuclidean,
    "manhattan": manhattan,
    "l1": manhattan,
    "cityblock": manhattan,
    "chebyshev": chebyshev,
    "minkowski": minkowski,
    "canberra": canberra,
    "braycurtis": bray_curtis,
    "cosine": cosine,
    "correlation": correlation,
    "hamming": hamming,
}

angular_distances = ("cosine", "correlation")


def distance_args(metric, metric_kwds):
    """The extra positional arguments ``named_distances[metric]`` is called
    with, taken from ``metric_kwds``."""
    metric_kwds = {} if metric_kwds is None else dict(metric_kwds)
    if metric == "minkowski":
        p = float(metric_kwds.pop("p", 2.0))
        if not p > 0.0:
            raise ConfigError("minkowski p must be positive")
        args = (p,)
    else:
        args = ()

    if metric_kwds:
        raise ConfigError(
            "Metric {!r} does not take arguments {}".format(
                metric, ", ".join(sorted(metric_kwds))
            )
        )
    return args


@numba.njit()
def pair_distances(dist, Y, X, rows, cols, dist_args):
    """Distances ``dist(Y[rows[n]], X[cols[n]])`` for every pair ``n``."""
    result = np.empty(rows.shape[0], dtype=np.float64)
    for n in range(rows.shape[0]):
        result[n] = dist(Y[rows[n]], X[cols[n]], *dist_args)
    return result
