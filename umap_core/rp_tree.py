# Author: Leland McInnes <leland.mcinnes@gmail.com>
#
# License: BSD 3 clause

from collections import namedtuple

import numpy as np
import numba

from umap_core.utils import tau_rand_int, norm

EPS = 1e-8

# A tree is an arena of nodes addressed by position. ``children[node]`` holds
# the two child node numbers of an internal node; a leaf stores
# ``-leaf_number`` in ``children[node, 0]`` and -1 in ``children[node, 1]``.
# ``indices[leaf]`` lists the points of that leaf padded with -1.
FlatTree = namedtuple(
    "FlatTree", ["hyperplanes", "offsets", "children", "indices", "leaf_size"]
)


@numba.njit(fastmath=True)
def angular_random_projection_split(data, indices, rng_state):
    """Given a set of ``indices`` for data points from ``data``, create
    a random hyperplane to split the data, returning two arrays indices
    that fall on either side of the hyperplane. This is the basis for a
    random projection tree, which simply uses this splitting recursively.
    This particular split uses cosine distance to determine the hyperplane
    and which side each data sample falls on.

    Parameters
    ----------
    data: array of shape (n_samples, n_features)
        The original data to be split

    indices: array of shape (tree_node_size,)
        The indices of the elements in the ``data`` array that are to
        be split in the current operation.

    rng_state: array of int64, shape (3,)
        The internal state of the rng

    Returns
    -------
    indices_left: array
        The elements of ``indices`` that fall on the "left" side of the
        random hyperplane.

    indices_right: array
        The elements of ``indices`` that fall on the "left" side of the
        random hyperplane.

    hyperplane_vector: array of shape (n_features,)
        The unit normal of the splitting hyperplane.

    hyperplane_offset: float
        Always 0.0; angular hyperplanes pass through the origin.
    """
    dim = data.shape[1]

    # Select two random points, set the hyperplane between them
    left_index = tau_rand_int(rng_state) % indices.shape[0]
    right_index = tau_rand_int(rng_state) % indices.shape[0]
    right_index += left_index == right_index
    right_index = right_index % indices.shape[0]
    left = indices[left_index]
    right = indices[right_index]

    left_norm = norm(data[left])
    right_norm = norm(data[right])

    if abs(left_norm) < EPS:
        left_norm = 1.0

    if abs(right_norm) < EPS:
        right_norm = 1.0

    # Compute the normal vector to the hyperplane (the vector between
    # the two normalized points)
    hyperplane_vector = np.empty(dim, dtype=np.float32)

    for d in range(dim):
        hyperplane_vector[d] = (data[left, d] / left_norm) - (
            data[right, d] / right_norm
        )

    hyperplane_norm = norm(hyperplane_vector)
    if abs(hyperplane_norm) < EPS:
        hyperplane_norm = 1.0

    for d in range(dim):
        hyperplane_vector[d] = hyperplane_vector[d] / hyperplane_norm

    # For each point compute the margin (project into normal vector)
    # If we are on lower side of the hyperplane put in one pile, otherwise
    # put it in the other pile (if we hit hyperplane on the nose, flip a coin)
    n_left = 0
    n_right = 0
    side = np.empty(indices.shape[0], np.int8)
    for i in range(indices.shape[0]):
        margin = 0.0
        for d in range(dim):
            margin += hyperplane_vector[d] * data[indices[i], d]

        if abs(margin) < EPS:
            side[i] = tau_rand_int(rng_state) % 2
            if side[i] == 0:
                n_left += 1
            else:
                n_right += 1
        elif margin > 0:
            side[i] = 0
            n_left += 1
        else:
            side[i] = 1
            n_right += 1

    # Degenerate split (duplicated points): alternate sides instead
    if n_left == 0 or n_right == 0:
        n_left = 0
        n_right = 0
        for i in range(indices.shape[0]):
            side[i] = i % 2
            if side[i] == 0:
                n_left += 1
            else:
                n_right += 1

    # Now that we have the counts allocate arrays
    indices_left = np.empty(n_left, dtype=np.int64)
    indices_right = np.empty(n_right, dtype=np.int64)

    # Populate the arrays with indices according to which side they fell on
    n_left = 0
    n_right = 0
    for i in range(side.shape[0]):
        if side[i] == 0:
            indices_left[n_left] = indices[i]
            n_left += 1
        else:
            indices_right[n_right] = indices[i]
            n_right += 1

    return indices_left, indices_right, hyperplane_vector, 0.0


@numba.njit(fastmath=True)
def euclidean_random_projection_split(data, indices, rng_state):
    """Given a set of ``indices`` for data points from ``data``, create
    a random hyperplane to split the data, returning two arrays indices
    that fall on either side of the hyperplane. This is the basis for a
    random projection tree, which simply uses this splitting recursively.
    This particular split uses euclidean distance to determine the hyperplane
    and which side each data sample falls on.

    Parameters
    ----------
    data: array of shape (n_samples, n_features)
        The original data to be split

    indices: array of shape (tree_node_size,)
        The indices of the elements in the ``data`` array that are to
        be split in the current operation.

    rng_state: array of int64, shape (3,)
        The internal state of the rng

    Returns
    -------
    indices_left: array
        The elements of ``indices`` that fall on the "left" side of the
        random hyperplane.

    indices_right: array
        The elements of ``indices`` that fall on the "left" side of the
        random hyperplane.

    hyperplane_vector: array of shape (n_features,)
        The normal of the perpendicular bisector of the two sampled points.

    hyperplane_offset: float
        Offset of the bisector, so that ``margin = offset + <normal, x>``.
    """
    dim = data.shape[1]

    # Select two random points, set the hyperplane between them
    left_index = tau_rand_int(rng_state) % indices.shape[0]
    right_index = tau_rand_int(rng_state) % indices.shape[0]
    right_index += left_index == right_index
    right_index = right_index % indices.shape[0]
    left = indices[left_index]
    right = indices[right_index]

    # Compute the normal vector to the hyperplane (the vector between
    # the two points) and the offset from the origin
    hyperplane_offset = 0.0
    hyperplane_vector = np.empty(dim, dtype=np.float32)

    for d in range(dim):
        hyperplane_vector[d] = data[left, d] - data[right, d]
        hyperplane_offset -= (
            hyperplane_vector[d] * (data[left, d] + data[right, d]) / 2.0
        )

    # For each point compute the margin (project into normal vector, add offset)
    # If we are on lower side of the hyperplane put in one pile, otherwise
    # put it in the other pile (if we hit hyperplane on the nose, flip a coin)
    n_left = 0
    n_right = 0
    side = np.empty(indices.shape[0], np.int8)
    for i in range(indices.shape[0]):
        margin = hyperplane_offset
        for d in range(dim):
            margin += hyperplane_vector[d] * data[indices[i], d]

        if abs(margin) < EPS:
            side[i] = tau_rand_int(rng_state) % 2
            if side[i] == 0:
                n_left += 1
            else:
                n_right += 1
        elif margin > 0:
            side[i] = 0
            n_left += 1
        else:
            side[i] = 1
            n_right += 1

    # Degenerate split (duplicated points): alternate sides instead
    if n_left == 0 or n_right == 0:
        n_left = 0
        n_right = 0
        for i in range(indices.shape[0]):
            side[i] = i % 2
            if side[i] == 0:
                n_left += 1
            else:
                n_right += 1

    # Now that we have the counts allocate arrays
    indices_left = np.empty(n_left, dtype=np.int64)
    indices_right = np.empty(n_right, dtype=np.int64)

    # Populate the arrays with indices according to which side they fell on
    n_left = 0
    n_right = 0
    for i in range(side.shape[0]):
        if side[i] == 0:
            indices_left[n_left] = indices[i]
            n_left += 1
        else:
            indices_right[n_right] = indices[i]
            n_right += 1

    return indices_left, indices_right, hyperplane_vector, hyperplane_offset


def make_tree(data, rng_state, leaf_size=30, angular=False):
    """Construct a random projection tree over ``data`` directly in flat form.

    Nodes are numbered in depth-first (pre-)order: an internal node is
    followed by its whole left subtree, then its right subtree.

    Parameters
    ----------
    data: array of shape (n_samples, n_features)
        The data to be split; float32.

    rng_state: array of int64, shape (3,)
        The internal state of the rng

    leaf_size: int (optional, default 30)
        Nodes holding more than this many points are split further.

    angular: bool (optional, default False)
        Split with angular (cosine) hyperplanes rather than euclidean
        perpendicular bisectors.

    Returns
    -------
    tree: FlatTree
    """
    if angular:
        split = angular_random_projection_split
    else:
        split = euclidean_random_projection_split

    hyperplanes = []
    offsets = []
    children = []
    leaves = []

    # Work stack of (indices, parent node, side of the parent)
    stack = [(np.arange(data.shape[0], dtype=np.int64), -1, 0)]
    while stack:
        indices, parent, parent_side = stack.pop()
        node = len(children)
        if parent >= 0:
            children[parent][parent_side] = node

        if indices.shape[0] > leaf_size:
            left_indices, right_indices, hyperplane, offset = split(
                data, indices, rng_state
            )
            hyperplanes.append(hyperplane)
            offsets.append(offset)
            children.append([-1, -1])
            # Right is pushed first so the left subtree is numbered first
            stack.append((right_indices, node, 1))
            stack.append((left_indices, node, 0))
        else:
            hyperplanes.append(np.zeros(data.shape[1], dtype=np.float32))
            offsets.append(0.0)
            children.append([-len(leaves), -1])
            leaves.append(indices)

    flat_indices = -1 * np.ones((len(leaves), leaf_size), dtype=np.int64)
    for leaf_num, indices in enumerate(leaves):
        flat_indices[leaf_num, : indices.shape[0]] = indices

    return FlatTree(
        np.vstack(hyperplanes).astype(np.float32),
        np.asarray(offsets, dtype=np.float32),
        np.asarray(children, dtype=np.int64),
        flat_indices,
        leaf_size,
    )


@numba.njit()
def select_side(hyperplane, offset, point, rng_state):
    margin = offset
    for d in range(point.shape[0]):
        margin += hyperplane[d] * point[d]

    if abs(margin) < EPS:
        side = tau_rand_int(rng_state) % 2
        if side == 0:
            return 0
        else:
            return 1
    elif margin > 0:
        return 0
    else:
        return 1


@numba.njit()
def search_flat_tree(point, hyperplanes, offsets, children, indices, rng_state):
    """Descend a flattened tree to the leaf ``point`` falls in and return the
    (-1 padded) indices stored in that leaf."""
    node = 0
    while children[node, 0] > 0:
        side = select_side(hyperplanes[node], offsets[node], point, rng_state)
        if side == 0:
            node = children[node, 0]
        else:
            node = children[node, 1]

    return indices[-children[node, 0]]


def make_forest(data, n_neighbors, n_trees, rng_state, angular=False, leaf_size=30):
    """Build a random projection forest with ``n_trees``.

    Parameters
    ----------
    data: array of shape (n_samples, n_features)

    n_neighbors: int
        Leaves never get smaller than the neighborhood we are looking for.

    n_trees: int
        The number of trees in the forest.

    rng_state: array of int64, shape (3,)
        The internal state of the rng; one state is shared by the whole
        forest so the trees differ.

    angular: bool (optional, default False)
        Whether to use angular splits.

    leaf_size: int (optional, default 30)
        Maximum number of points held by a leaf.

    Returns
    -------
    forest: list of FlatTree
    """
    leaf_size = max(leaf_size, n_neighbors)
    return [
        make_tree(data, rng_state, leaf_size, angular) for i in range(n_trees)
    ]


def rptree_leaf_array(rp_forest):
    """Stack the leaves of every tree in the forest into a single array of
    shape (total_leaves, leaf_size) padded with -1."""
    if len(rp_forest) > 0:
        leaf_array = np.vstack([tree.indices for tree in rp_forest])
    else:
        leaf_array = np.array([[-1]])

    return leaf_array


def search_forest(point, rp_forest, rng_state):
    """Collect the sorted, deduplicated union of the leaves ``point`` reaches
    in each tree of the forest."""
    candidates = [
        search_flat_tree(
            point,
            tree.hyperplanes,
            tree.offsets,
            tree.children,
            tree.indices,
            rng_state,
        )
        for tree in rp_forest
    ]
    if len(candidates) == 0:
        return np.empty(0, dtype=np.int64)
    candidates = np.unique(np.concatenate(candidates))
    return candidates[candidates >= 0]
