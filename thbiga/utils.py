import numpy as np
import scipy.sparse


def as_points(x, sdim):
    """Bring `x` into the shape `(n, sdim)` of an array of points.

    Returns the array and a flag which is True if `x` was a single point.
    """
    x = np.asarray(x, dtype=float)
    if x.ndim == 0:
        if sdim != 1:
            raise ValueError('scalar input for domain of dimension %d' % sdim)
        return x.reshape((1, 1)), True
    if x.ndim == 1:
        if sdim == 1:
            return x.reshape((-1, 1)), False
        if x.shape[0] != sdim:
            raise ValueError('expected point of dimension %d, got %d' % (sdim, x.shape[0]))
        return x.reshape((1, sdim)), True
    if x.ndim != 2 or x.shape[1] != sdim:
        raise ValueError('expected points of shape (n, %d), got %s' % (sdim, x.shape))
    return x, False

def multi_kron_sparse(As, format='csr'):
    """Compute the (sparse) Kronecker product of a sequence of sparse matrices."""
    if len(As) == 1:
        return As[0].asformat(format, copy=True)
    else:
        return scipy.sparse.kron(As[0], multi_kron_sparse(As[1:], format=format), format=format)

def cartesian_product(arrays):
    """Compute the Cartesian product of any number of input arrays."""
    L = len(arrays)
    shp = tuple(a.shape[0] for a in arrays)
    arr = np.empty(shp + (L,), dtype=arrays[0].dtype)
    for i in range(L):
        # broadcast the i-th array along all but the i-th axis
        ix = L * [np.newaxis]
        ix[i] = slice(shp[i])
        arr[..., i] = arrays[i][tuple(ix)]
    return arr.reshape((-1, L))

def summed_area_table(mask):
    """Inclusive prefix sums along all axes, padded with a leading zero in each axis."""
    S = np.asarray(mask, dtype=np.int64)
    for ax in range(S.ndim):
        S = np.cumsum(S, axis=ax)
    return np.pad(S, [(1, 0)] * S.ndim)

def box_counts(mask, ranges, table=None):
    """Count the True cells of a boolean array within a tensor grid of boxes.

    Args:
        mask (ndarray): boolean array with `d` axes
        ranges (seq): per axis a pair `(lo, hi)` of integer arrays of equal
            length `n_k`, describing the half-open index ranges of the boxes
            along that axis
        table: optionally, a precomputed :func:`summed_area_table` of `mask`

    Returns:
        ndarray: integer array of shape `(n_0, ..., n_{d-1})` with the number of
        True entries in each box
    """
    if table is None:
        table = summed_area_table(mask)
    d = len(ranges)
    shape = tuple(len(lo) for (lo, _) in ranges)
    result = np.zeros(shape, dtype=np.int64)
    # inclusion-exclusion over the 2^d corners of each box
    for corner in range(2**d):
        sel = []
        sign = 1
        for k in range(d):
            if (corner >> k) & 1:
                sel.append(np.asarray(ranges[k][1]))
            else:
                sel.append(np.asarray(ranges[k][0]))
                sign = -sign
        result += sign * table[np.ix_(*sel)]
    return result
