"""Tensor product operators acting on full tensors.

A tensor is represented as an :class:`numpy.ndarray` whose leading axes
correspond to the parametric directions in xyz order.
"""
import numpy as np


def _modek_tensordot_sparse(B, X, k):
    # same as the np.tensordot() operation in `apply_tprod`, but for sparse
    # matrices and LinearOperators
    nk = X.shape[k]
    assert nk == B.shape[1]

    # bring the k-th axis to the front
    Xk = np.rollaxis(X, k, 0)
    shp = Xk.shape

    # matricize and apply operator B
    Xk = Xk.reshape((nk, -1))
    Yk = B.dot(Xk)
    if Yk.shape[0] != nk:   # size changed?
        shp = (Yk.shape[0],) + shp[1:]
    # reshape back, new axis is in first position
    return np.reshape(np.asarray(Yk), shp)

def apply_tprod(ops, A):
    """Apply multi-way tensor product of operators to tensor `A`.

    Args:
        ops (seq): a list of matrices, sparse matrices, or LinearOperators
        A (ndarray): the tensor to apply the multi-way tensor product to
    Returns:
        a new tensor with the same number of axes as `A` that is the result of
        applying the tensor product operator ``ops[0] x ... x ops[-1]`` to `A`.

    The initial dimensions of `A` must match the sizes of the
    operators, but `A` is allowed to have an arbitrary number of
    trailing dimensions. ``None`` is a valid operator and is
    treated like the identity.

    An interpretation of this operation is that the Kronecker product of the
    matrices `ops` is applied to the vectorization of the tensor `A`.
    """
    n = len(ops)
    for i in reversed(range(n)):
        if ops[i] is not None:
            if isinstance(ops[i], np.ndarray):
                A = np.tensordot(ops[i], A, axes=([1],[n-1]))
            else:
                A = _modek_tensordot_sparse(ops[i], A, n-1)
        else:   # None means identity
            A = np.rollaxis(A, n-1, 0)   # bring this axis to the front
    return A
