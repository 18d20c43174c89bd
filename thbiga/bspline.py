# -*- coding: utf-8 -*-
"""Functions and classes for B-spline basis functions.

Points in the parameter domain are given as arrays of shape `(n, d)` whose
`k`-th column is the coordinate in the `k`-th parametric direction. Tensor
product indices are raveled in lexicographic order with the last direction
varying fastest (``numpy.ravel_multi_index`` with ``order='C'``).
"""

import numpy as np
import scipy.sparse
import scipy.sparse.linalg
import scipy.interpolate

from .errors import InvalidKnotVector, DimensionMismatch, NoConvergenceError
from .tensor import apply_tprod
from .utils import as_points

_BDSPEC_NAMES = {
    'left':   (0, 0),
    'right':  (0, 1),
    'bottom': (1, 0),
    'top':    (1, 1),
    'front':  (2, 0),
    'back':   (2, 1),
}

def _parse_bdspec(bdspec, dim):
    """Convert a boundary specification into an `(axis, side)` pair."""
    if isinstance(bdspec, str):
        if bdspec not in _BDSPEC_NAMES:
            raise ValueError('invalid bdspec ' + bdspec)
        bd = _BDSPEC_NAMES[bdspec]
    else:
        bd = tuple(bdspec)
        if len(bd) == 1:    # ((axis, side),)
            bd = tuple(bd[0])
        if len(bd) != 2 or bd[1] not in (0, 1):
            raise ValueError('invalid bdspec ' + str(bdspec))
    if not 0 <= bd[0] < dim:
        raise ValueError('invalid bdspec %s for space of dimension %d'
            % (bdspec, dim))
    return (int(bd[0]), int(bd[1]))


class KnotVector:
    """Represents a B-spline knot vector together with a spline degree.

    Args:
        knots (ndarray): the 1D knot vector. Usually an open knot vector,
            i.e., the first and last knot are repeated `p+1` times.
            Any knot may be repeated at most `p+1` times.
        p (int): the spline degree.

    Raises:
        InvalidKnotVector: if the knots are not non-decreasing, if there are
            fewer than `2p+2` knots, if a knot is repeated more than `p+1`
            times or if the knots span an interval of length zero.

    This class is commonly used to represent the B-spline basis
    over the given knot vector with the given spline degree.
    The B-splines are normalized in the sense that they satisfy a
    partition of unity property.

    A more convenient way to create knot vectors is the :func:`make_knots` function.

    Attributes:
        kv (ndarray): vector of knots
        p (int): spline degree
    """

    def __init__(self, knots, p):
        knots = np.asarray(knots, dtype=float)
        if knots.ndim != 1:
            raise InvalidKnotVector('knots should be a 1D array')
        if int(p) != p or p < 0:
            raise InvalidKnotVector('invalid spline degree %s' % (p,))
        p = int(p)
        if knots.size < 2 * p + 2:
            raise InvalidKnotVector('need at least %d knots for degree %d, got %d'
                    % (2 * p + 2, p, knots.size))
        if np.any(knots[1:] < knots[:-1]):
            raise InvalidKnotVector('knots should be increasing')
        if not knots[0] < knots[-1]:
            raise InvalidKnotVector('knot vector spans an empty interval')
        _, counts = np.unique(knots, return_counts=True)
        if counts.max() > p + 1:
            raise InvalidKnotVector('knot multiplicity %d exceeds p+1 = %d'
                    % (counts.max(), p + 1))
        self.kv = knots
        self.p = p
        self._mesh = None    # knots with duplicates removed (on demand)
        self._knots_to_mesh = None   # knot indices to mesh indices (on demand)

    def __str__(self):
        return '<KnotVector p=%d sz=%d>' % (self.p, self.kv.size)

    def __repr__(self):
        return 'KnotVector(%s, %s)' % (repr(self.kv), repr(self.p))

    def __eq__(self, other):
        if not isinstance(other, KnotVector):
            return NotImplemented
        if self.p == other.p and len(self.kv) == len(other.kv):
            if np.allclose(self.kv, other.kv, atol=1e-8, rtol=1e-8):
                return True
        return False

    @property
    def numknots(self):
        return self.kv.size

    @property
    def numdofs(self):
        """Number of basis functions in a B-spline basis defined over this knot vector"""
        return self.kv.size - self.p - 1

    @property
    def numspans(self):
        """Number of nontrivial intervals in the knot vector"""
        return self.mesh.size - 1

    def support(self, j=None):
        """Support of the knot vector or, if `j` is passed, of the j-th B-spline"""
        if j is None:
            return (self.kv[0], self.kv[-1])
        else:
            return (self.kv[j], self.kv[j+self.p+1])

    def support_idx(self, j):
        """Knot indices of support of j-th B-spline"""
        return (j, j+self.p+1)

    def _ensure_mesh(self):
        if self._knots_to_mesh is None:
            self._mesh, self._knots_to_mesh = np.unique(self.kv, return_inverse=True)

    @property
    def mesh(self):
        """Return the mesh, i.e., the vector of unique knots in the knot vector."""
        self._ensure_mesh()
        return self._mesh

    def multiplicity(self, u):
        """Number of times the knot `u` occurs in the knot vector (0 if it does not)."""
        return int(np.count_nonzero(self.kv == u))

    def mesh_support_idx(self, j):
        """Return the first and one beyond the last mesh index of the support of `j`"""
        self._ensure_mesh()
        supp = self.support_idx(j)
        return (self._knots_to_mesh[supp[0]], self._knots_to_mesh[supp[1]])

    def mesh_support_idx_all(self):
        """Compute an integer array of size `N × 2`, where N = self.numdofs, which
        contains for each B-spline the result of :func:`mesh_support_idx`.
        """
        self._ensure_mesh()
        n = self.numdofs
        startend = np.stack((np.arange(0,n), np.arange(self.p+1, n+self.p+1)), axis=1)
        return self._knots_to_mesh[startend]

    def findspans(self, u):
        """Vectorized version of :meth:`findspan`.

        Points outside the knot vector are assigned to the first or last
        nonempty span.
        """
        u = np.asarray(u, dtype=float)
        idx = np.searchsorted(self.kv, u, side='right') - 1
        return np.clip(idx, self.p, self.kv.size - self.p - 2)

    def findspan(self, u):
        """Returns an index i such that
         kv[i] <= u < kv[i+1]     (except for the boundary, where u <= kv[m-p] is allowed)
         and p <= i < len(kv) - 1 - p"""
        return int(self.findspans(u))

    def findcells(self, u):
        """Return the mesh index of the knot span containing each point in `u`."""
        self._ensure_mesh()
        return self._knots_to_mesh[self.findspans(u)]

    def first_active(self, k):
        """Index of first active basis function in interval (kv[k], kv[k+1])"""
        return k - self.p

    def first_active_at(self, u):
        """Index of first active basis function in the interval which contains `u`."""
        return self.first_active(self.findspan(u))

    def greville(self):
        """Compute Gréville abscissae for this knot vector"""
        p = self.p
        if p == 0:
            return (self.kv[1:] + self.kv[:-1]) / 2     # cell middle points
        else:
            # running averages over p knots
            g = (np.convolve(self.kv, np.ones(p) / p))[p:-p]
            # rounding may move points out of the support interval
            return np.clip(g, self.kv[0], self.kv[-1])

    def refine(self, new_knots=None, mult=1):
        """Return the refinement of this knot vector by inserting `new_knots`,
        or performing uniform (dyadic) refinement if none are given."""
        if new_knots is None:
            mesh = self.mesh
            new_knots = (mesh[1:] + mesh[:-1]) / 2
            if mult>1:
                new_knots = np.hstack(mult*[new_knots,])
        kvnew = np.sort(np.concatenate((self.kv, new_knots)))
        return KnotVector(kvnew, self.p)


def make_knots(p, a, b, n, mult=1):
    """Create an open knot vector of degree `p` over an interval `(a,b)` with `n` knot spans.

    This automatically repeats the first and last knots `p+1` times in order
    to create an open knot vector. Interior knots are single by default, i.e., have
    maximum continuity.

    Args:
        p (int): the spline degree
        a (float): the starting point of the interval
        b (float): the end point of the interval
        n (int): the number of knot spans to divide the interval into
        mult (int): the multiplicity of interior knots

    Returns:
        :class:`KnotVector`: the new knot vector
    """
    kv = np.concatenate(
            (np.repeat(a, p+1),
             np.repeat(np.linspace(a, b, n+1)[1:-1], mult),
             np.repeat(b, p+1)))
    return KnotVector(kv, p)

################################################################################

def ev(knotvec, coeffs, u):
    """Evaluate a spline with given B-spline coefficients at all points `u`.

    Args:
        knotvec (:class:`KnotVector`): B-spline knot vector
        coeffs (`ndarray`): 1D array of coefficients, length `knotvec.numdofs`
        u (`ndarray`): 1D array of evaluation points

    Returns:
        `ndarray`: the vector of function values
    """
    assert len(coeffs) == knotvec.numdofs, 'Wrong size of coefficient vector'
    return scipy.interpolate.splev(u, (knotvec.kv, coeffs, knotvec.p))

def deriv(knotvec, coeffs, deriv, u):
    """Evaluate a derivative of the spline with given B-spline coefficients at all points `u`.

    Args:
        knotvec (:class:`KnotVector`): B-spline knot vector
        coeffs (`ndarray`): 1D array of coefficients, length `knotvec.numdofs`
        deriv (int): which derivative to evaluate
        u (`ndarray`): 1D array of evaluation points

    Returns:
        `ndarray`: the vector of function derivatives
    """
    assert len(coeffs) == knotvec.numdofs, 'Wrong size of coefficient vector'
    return scipy.interpolate.splev(u, (knotvec.kv, coeffs, knotvec.p), der=deriv)

################################################################################

def active_deriv(knotvec, u, numderiv):
    """Evaluate all active B-spline basis functions and their derivatives
    up to `numderiv` at the points `u`.

    Returns an array with shape (numderiv+1, p+1) if `u` is scalar or
    an array with shape (numderiv+1, p+1, u.size) otherwise. Entry `[k, r]`
    belongs to the `k`-th derivative of the basis function with index
    ``first_active_at(u) + r``.
    """
    if np.isscalar(u):
        return active_deriv(knotvec, np.array([u]), numderiv)[:, :, 0]
    kv, p = knotvec.kv, knotvec.p
    u = np.asarray(u, dtype=float).ravel()
    n = u.size
    span = knotvec.findspans(u)

    NDU   = np.empty((p+1, p+1, n))
    left  = np.empty((p, n))
    right = np.empty((p, n))
    result = np.zeros((numderiv+1, p+1, n))

    NDU[0, 0] = 1.0
    for j in range(1, p+1):
        # knot splits
        left[j-1]  = u - kv[span+1-j]
        right[j-1] = kv[span+j] - u
        saved = np.zeros(n)

        for r in range(j):
            # strictly lower triangular part: knot differences of distance j
            NDU[j, r] = right[r] + left[j-r-1]
            temp = NDU[r, j-1] / NDU[j, r]
            # upper triangular part: basis functions of degree j
            NDU[r, j] = saved + right[r] * temp
            saved = left[j-r-1] * temp

        NDU[j, j] = saved

    result[0] = NDU[:, p]

    # derivatives of order > p vanish
    maxderiv = min(numderiv, p)
    a1 = np.empty((p+1, n))
    a2 = np.empty((p+1, n))

    for r in range(p+1):    # loop over basis functions
        a1[0] = 1.0
        fac = p         # fac = p! / (p-k)!

        for k in range(1, maxderiv+1):
            rk = r - k
            pk = p - k
            d = np.zeros(n)

            if r >= k:
                a2[0] = a1[0] / NDU[pk+1, rk]
                d = a2[0] * NDU[rk, pk]

            j1 = 1 if rk >= -1 else -rk
            j2 = k-1 if r-1 <= pk else p - r

            for j in range(j1, j2+1):
                a2[j] = (a1[j] - a1[j-1]) / NDU[pk+1, rk+j]
                d = d + a2[j] * NDU[rk+j, pk]

            if r <= pk:
                a2[k] = -a1[k-1] / NDU[pk+1, r]
                d = d + a2[k] * NDU[r, pk]

            result[k, r] = d * fac
            fac *= pk

            (a1, a2) = (a2, a1)

    return result

def active_ev(knotvec, u):
    """Evaluate all active B-spline basis functions at the points `u`.

    Returns an array of shape (p+1, u.size) if `u` is an array."""
    if np.isscalar(u):
        return active_ev(knotvec, np.array([u]))[:, 0]
    else:
        return active_deriv(knotvec, u, 0)[0, :]

################################################################################

def collocation(kv, nodes):
    """Compute collocation matrix for B-spline basis at the given interpolation nodes.

    Args:
        kv (:class:`KnotVector`): the B-spline knot vector
        nodes (array): array of nodes at which to evaluate the B-splines

    Returns:
        A Scipy CSR matrix with shape `(len(nodes), kv.numdofs)` whose entry at
        `(i,j)` is the value of the `j`-th B-spline evaluated at `nodes[i]`.
    """
    return collocation_derivs(kv, nodes, derivs=0)[0]

def collocation_derivs(kv, nodes, derivs=1):
    """Compute collocation matrix and derivative collocation matrices for B-spline
    basis at the given interpolation nodes.

    Returns a list of derivs+1 sparse CSR matrices with shape (nodes.size, kv.numdofs)."""
    nodes = np.asarray(nodes, dtype=float).ravel()
    m = nodes.size
    n = kv.numdofs
    p = kv.p
    indices, values = collocation_derivs_info(kv, nodes, derivs)

    # I: p + 1 entries per row
    I = np.repeat(np.arange(m), p + 1)
    # J: arange(indices[k], indices[k] + p + 1) per row
    J = (indices[:, None] + np.arange(p + 1)[None, :]).ravel()

    return [scipy.sparse.coo_matrix((values[d].ravel(), (I,J)), shape=(m,n)).tocsr()
            for d in range(derivs + 1)]

def collocation_derivs_info(kv, nodes, derivs=1):
    """Return two arrays: one containing the index of the first active B-spline
    per evaluation node, and one containing the values of the active functions
    and their derivatives up to order `derivs`. The latter has shape
    `(derivs + 1) x len(nodes) x (p + 1)`.

    Corresponds to a row-wise representation of the matrices computed by
    :func:`collocation_derivs`.
    """
    nodes = np.asarray(nodes, dtype=float).ravel()
    values = active_deriv(kv, nodes, derivs)    # (derivs+1) x (p+1) x n
    indices = kv.findspans(nodes) - kv.p
    return indices, values.swapaxes(-2, -1)     # (derivs+1) x n x (p+1)

def interpolate(kv, func, nodes=None):
    """Interpolate function in B-spline basis at given nodes (or Gréville abscissae by default)"""
    if nodes is None:
        nodes = kv.greville()
    else:
        nodes = np.asarray(nodes, dtype=float)
    C = collocation(kv, nodes)
    vals = func(nodes)
    return scipy.sparse.linalg.spsolve(C.tocsc(), vals)

def fit_lsq(kv, nodes, values):
    """Least squares fit of B-spline coefficients to the given samples.

    Args:
        kv (:class:`KnotVector`): the B-spline basis of the fitted curve
        nodes (array): the `m` parameter values of the samples
        values (array): the sample values, shape `(m,)` or `(m, k)` for
            vector-valued data

    Returns:
        ndarray: coefficients with shape `(kv.numdofs,) + values.shape[1:]`
    """
    nodes = np.asarray(nodes, dtype=float)
    values = np.asarray(values, dtype=float)
    if values.shape[0] != nodes.size:
        raise DimensionMismatch('got %d nodes but %d samples' % (nodes.size, values.shape[0]))
    C = collocation(kv, nodes).toarray()
    coeffs, _, _, _ = np.linalg.lstsq(C, values, rcond=None)
    return coeffs

################################################################################

def prolongation(kv1, kv2):
    """Compute prolongation matrix between B-spline bases.

    Given two B-spline bases, where the first spans a subspace of the second
    one, compute the matrix which maps spline coefficients from the first
    basis to the coefficients of the same function in the second basis.

    Args:
        kv1 (:class:`KnotVector`): source B-spline basis knot vector
        kv2 (:class:`KnotVector`): target B-spline basis knot vector

    Returns:
        csr_matrix: sparse matrix which prolongs coefficients from `kv1` to `kv2`
    """
    g = kv2.greville()
    C1 = collocation(kv1, g).toarray()
    C2 = collocation(kv2, g).tocsc()
    P = scipy.sparse.linalg.spsolve(C2, C1)
    P = np.asarray(P).reshape((kv2.numdofs, kv1.numdofs))
    # prune matrix
    P[np.abs(P) < 1e-15] = 0.0
    return scipy.sparse.csr_matrix(P)

def knot_insertion(kv, u):
    """Return a sparse matrix of size `(n+1) x n`, with `n = kv.numdofs`, which
    maps coefficients from `kv` to a new knot vector obtained by inserting the
    new knot `u` into `kv`.
    """
    n, p = kv.numdofs, kv.p
    k = kv.findspan(u)
    knots = kv.kv

    rows, cols, vals = [], [], []
    # coefficients outside the affected area are left unchanged
    for i in range(k - p + 1):
        rows.append(i); cols.append(i); vals.append(1.0)
    for i in range(k + 1, n + 1):
        rows.append(i); cols.append(i - 1); vals.append(1.0)
    for i in range(k - p + 1, k + 1):
        a = (u - knots[i]) / (knots[i + p] - knots[i])
        rows.extend((i, i)); cols.extend((i - 1, i)); vals.extend((1 - a, a))

    return scipy.sparse.coo_matrix((vals, (rows, cols)), shape=(n+1, n)).tocsr()

def uniform_refinement(kv):
    """Dyadic refinement of `kv` by inserting the midpoints of all knot spans
    one at a time.

    Returns:
        a pair `(kv2, P)` of the refined knot vector and the sparse two-scale
        matrix of size `kv2.numdofs x kv.numdofs`, the product of the
        :func:`knot_insertion` matrices
    """
    mesh = kv.mesh
    P = scipy.sparse.identity(kv.numdofs, format='csr')
    for u in (mesh[1:] + mesh[:-1]) / 2:
        P = knot_insertion(kv, u).dot(P)
        kv = kv.refine([u])
    return kv, P.tocsr()

################################################################################

def _tp_info(kvs, points, derivs):
    """Per-direction collocation information for an unstructured set of points."""
    info = [collocation_derivs_info(kv, points[:, k], derivs) for (k, kv) in enumerate(kvs)]
    first = tuple(ind for (ind, _) in info)
    values = tuple(val for (_, val) in info)
    return first, values

def _tp_combine(kvs, first, values, D):
    """Combine per-direction information into raveled indices and values of
    the active tensor product functions for the derivative multi-index `D`.

    Returns two arrays of shape `(n, prod(p_k + 1))`; within each row the
    indices are increasing.
    """
    n = first[0].shape[0]
    idx = np.zeros((n, 1), dtype=int)
    vals = np.ones((n, 1))
    for k, kv in enumerate(kvs):
        local = first[k][:, None] + np.arange(kv.p + 1)[None, :]
        idx = (idx[:, :, None] * kv.numdofs + local[:, None, :]).reshape((n, -1))
        vals = (vals[:, :, None] * values[k][D[k]][:, None, :]).reshape((n, -1))
    return idx, vals

def tp_active(kvs, points, derivs=None):
    """Indices and values of the active tensor product B-splines at the given points.

    Args:
        kvs: tuple of :class:`KnotVector` instances
        points (ndarray): points of shape `(n, len(kvs))`
        derivs: optionally, a sequence of derivative orders per direction

    Returns:
        a pair of arrays `(indices, values)`, each of shape `(n, nact)`
    """
    if derivs is None:
        derivs = len(kvs) * (0,)
    first, values = _tp_info(kvs, points, max(derivs))
    return _tp_combine(kvs, first, values, derivs)

def hessian_indices(dim):
    """Pairs `(i, j)` of directions in the order in which second derivatives
    are returned: first the pure derivatives, then the mixed ones with `i < j`."""
    return [(i, i) for i in range(dim)] + \
           [(i, j) for i in range(dim) for j in range(i+1, dim)]

def derivative_multi_indices(dim, order):
    """Derivative multi-indices for all components of the given order."""
    if order == 0:
        return [dim * (0,)]
    elif order == 1:
        return [tuple(int(k == i) for k in range(dim)) for i in range(dim)]
    elif order == 2:
        result = []
        for (i, j) in hessian_indices(dim):
            D = dim * [0]
            D[i] += 1
            D[j] += 1
            result.append(tuple(D))
        return result
    else:
        raise ValueError('derivatives of order %d are not supported' % order)

################################################################################

class BSplineFunc:
    """Any function that is given in terms of a tensor product B-spline basis with coefficients.

    Arguments:
        kvs (seq): tuple of `d` :class:`KnotVector`.
        coeffs (ndarray): coefficient array

    `kvs` represents a tensor product B-spline basis, where the *i*-th
    :class:`KnotVector` describes the B-spline basis in the *i*-th
    parametric direction.

    `coeffs` is the array of coefficients with respect to this tensor product basis.
    The length of its first `d` axes must match the number of degrees of freedom
    in the corresponding :class:`KnotVector`.
    Trailing axes, if any, determine the output dimension of the function.

    For convenience, if `coeffs` is a vector, it is reshaped to the proper
    size for the tensor product basis. The result is a scalar-valued function.

    Attributes:
        kvs (seq): the knot vectors representing the tensor product basis
        coeffs (ndarray): the coefficients for the function or geometry
        sdim (int): dimension of the parameter domain
        dim (int): dimension of the output of the function
    """
    def __init__(self, kvs, coeffs):
        if isinstance(kvs, KnotVector):
            kvs = (kvs,)
        self.kvs = tuple(kvs)
        self.sdim = len(kvs)    # source dimension

        N = tuple(kv.numdofs for kv in kvs)
        coeffs = np.asanyarray(coeffs, dtype=float)
        if coeffs.ndim == 1:
            assert coeffs.shape[0] == np.prod(N), "Wrong length of coefficient vector"
            coeffs = coeffs.reshape(N)
        assert N == coeffs.shape[:self.sdim], "Wrong shape of coefficients"
        self.coeffs = coeffs

        # determine target dimension
        dim = coeffs.shape[self.sdim:]
        if len(dim) == 0:
            dim = 1
        elif len(dim) == 1:
            dim = dim[0]
        self.dim = dim

    def __call__(self, x):
        return self.eval(x)

    def output_shape(self):
        return self.coeffs.shape[self.sdim:]

    def is_scalar(self):
        """Returns True if the function is scalar-valued."""
        return len(self.output_shape()) == 0

    def is_vector(self):
        """Returns True if the function is vector-valued."""
        return len(self.output_shape()) == 1

    @property
    def support(self):
        """Return a sequence of pairs `(lower,upper)`, one per source dimension,
        which describe the extent of the support in the parameter space."""
        return tuple(kv.support() for kv in self.kvs)

    def _flat_coeffs(self):
        return self.coeffs.reshape((-1,) + self.output_shape())

    def eval(self, x):
        """Evaluate the function at one or several points of the parameter domain.

        Args:
            x: a single point (sequence of length :attr:`sdim`) or an array of
                points with shape `(n, sdim)`

        Returns:
            ndarray: the function values, with shape ``output_shape()`` for a
            single point or ``(n,) + output_shape()`` otherwise
        """
        pts, single = as_points(x, self.sdim)
        idx, vals = tp_active(self.kvs, pts)
        y = np.einsum('na,na...->n...', vals, self._flat_coeffs()[idx])
        return y[0] if single else y

    def jacobian(self, x):
        """Evaluate the Jacobian at one or several points of the parameter domain.

        Returns:
            ndarray: array of shape ``output_shape() + (sdim,)`` per point; for
            scalar functions this is the gradient
        """
        pts, single = as_points(x, self.sdim)
        first, values = _tp_info(self.kvs, pts, 1)
        C = self._flat_coeffs()
        comps = []
        for D in derivative_multi_indices(self.sdim, 1):
            idx, vals = _tp_combine(self.kvs, first, values, D)
            comps.append(np.einsum('na,na...->n...', vals, C[idx]))
        jac = np.stack(comps, axis=-1)
        return jac[0] if single else jac

    def hessian(self, x):
        """Evaluate the second derivatives at one or several points.

        The last axis contains the components in the order given by
        :func:`hessian_indices`, i.e., `(d_00, d_11, d_01)` in 2D.
        """
        pts, single = as_points(x, self.sdim)
        first, values = _tp_info(self.kvs, pts, 2)
        C = self._flat_coeffs()
        comps = []
        for D in derivative_multi_indices(self.sdim, 2):
            idx, vals = _tp_combine(self.kvs, first, values, D)
            comps.append(np.einsum('na,na...->n...', vals, C[idx]))
        hess = np.stack(comps, axis=-1)
        return hess[0] if single else hess

    def grid_eval(self, gridaxes):
        """Evaluate the function on a tensor product grid.

        Args:
            gridaxes (seq): list of 1D vectors describing the tensor product
                grid, one per parametric direction (in xyz order).

        Returns:
            ndarray: array of function values; shape corresponds to input grid.
        """
        assert len(gridaxes) == self.sdim, "Input has wrong dimension"
        colloc = [collocation(self.kvs[i], np.ravel(gridaxes[i])) for i in range(self.sdim)]
        return apply_tprod(colloc, self.coeffs)

    def bounding_box(self, grid=1):
        """Compute a bounding box for the image of this geometry.

        By default, only the corners are taken into account. By choosing
        `grid > 1`, a finer grid can be used (for non-convex geometries).

        Returns:
            a tuple of `(lower,upper)` limits per dimension (in XY order)
        """
        grid = [np.linspace(s[0], s[1], grid+1) for s in self.support]
        X = self.grid_eval(grid).reshape((-1, self.dim))
        return tuple((X[:, d].min(), X[:, d].max()) for d in range(self.dim))

    def find_inverse(self, x, seed=None, tol=1e-8, maxiter=100):
        """Find the coordinates in the parameter domain which correspond to the
        physical point `x` by Newton-Raphson iteration.

        See :func:`.geometry.newton_raphson`.
        """
        from .geometry import newton_raphson
        res = newton_raphson(self, x, seed=seed, tol=tol, maxiter=maxiter,
                bounds=self.support, strict=True, full_output=True)
        if not res.converged:
            # the iteration ended on the boundary of the parameter domain
            raise NoConvergenceError('find_inverse', res.num_iter, res.x)
        return res.x

    def boundary(self, bdspec):
        """Return one side of the boundary as a :class:`BSplineFunc`.

        Args:
            bdspec: the side of the boundary to return, as an `(axis, side)` pair

        Returns:
            :class:`BSplineFunc`: representation of the boundary side;
            has :attr:`sdim` reduced by 1 and the same :attr:`dim` as this function
        """
        axis, side = _parse_bdspec(bdspec, self.sdim)
        slices = self.sdim * [slice(None)]
        slices[axis] = -side    # 0 or -1
        kvs = list(self.kvs)
        del kvs[axis]
        return BSplineFunc(kvs, self.coeffs[tuple(slices)])

    def translate(self, offset):
        """Return a version of this geometry translated by the specified offset."""
        return BSplineFunc(self.kvs, self.coeffs + offset)

    def scale_axis(self, factor, axis):
        """Stretch the image of this geometry by `factor` along the
        coordinate `axis` and return the result."""
        assert self.is_vector(), 'Can only stretch vector-valued functions'
        C = self.coeffs.copy()
        C[..., axis] *= factor
        return BSplineFunc(self.kvs, C)
