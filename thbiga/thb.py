"""Truncated hierarchical B-spline (THB-spline) bases.

A :class:`THBSplineBasis` has the same active functions as the underlying
:class:`.HTensorBasis`, but coarse functions are *truncated*: their
representation in terms of finer B-splines drops all contributions of
B-splines whose support lies in the refinement region of the finer level.
The resulting basis forms a partition of unity and retains non-negativity.

Each basis function is described by an entry in a flat list, indexed by the
canonical index of the function:

* :class:`Plain` -- the function is the level-`ℓ` B-spline itself;
* :class:`Truncated` -- the function is a combination of B-splines of its
  *presentation level* `k > ℓ` with the sparse coefficient row vector `coefs`
  of shape `(1, N_k)`.

A function of level `ℓ` is truncated iff its support intersects `Ω_{ℓ+1}`.
Its presentation level is the finest level `k` whose refinement region
intersects its support.
"""
import collections
import logging

import numpy as np
import scipy.sparse

from . import bspline, utils
from .errors import LogicError
from .hierarchical import HTensorBasis
from .tensor import apply_tprod

logger = logging.getLogger(__name__)

Plain = collections.namedtuple('Plain', ['level', 'index'])
Plain.__doc__ = """A basis function equal to the B-spline `index` of level `level`."""

Truncated = collections.namedtuple('Truncated',
        ['level', 'index', 'presentation_level', 'coefs'])
Truncated.__doc__ = """A truncated basis function, given by its sparse
coefficients over the B-splines of level `presentation_level`."""


class THBSplineBasis(HTensorBasis):
    """A truncated hierarchical B-spline basis.

    Args:
        kvs: a sequence of `d` :class:`.KnotVector` instances, or a
            :class:`.TensorBSplineBasis`, describing the coarsest level

    The truncation data is recomputed by :meth:`represent_basis` after every
    structural change. This must complete before the basis is evaluated
    again; instances are not safe against concurrent modification.
    """
    def __init__(self, kvs):
        self._functions = []
        self._R = []
        super().__init__(kvs)

    def _rebuild(self):
        super()._rebuild()
        self.represent_basis()

    ############################################################
    # truncation
    ############################################################

    def _presentation_level(self, lv, cells):
        """Finest level whose refinement region meets the descendants of the
        given cell box of level `lv`."""
        k = lv
        for m in range(lv + 1, self.num_levels):
            shift = m - lv
            ranges = [(np.array([lo << shift]), np.array([hi << shift])) for (lo, hi) in cells]
            if utils.box_counts(None, ranges, table=self._tables[m])[(0,) * self.dim] == 0:
                break
            k = m
        return k

    def _truncate(self, lv, j, k, P_csc):
        """Compute the truncated representation of B-spline `j` of level `lv`
        on level `k`.

        The coefficients are carried in a dense window which is prolonged one
        level at a time; after each step, the coefficients of B-splines whose
        support lies in the refinement region are set to zero.
        """
        B = self._bases[lv]
        lo = np.array(np.unravel_index(j, B.shape))
        hi = lo + 1
        window = np.ones((1,) * self.dim)
        for m in range(lv, k):
            blocks = []
            new_lo, new_hi = lo.copy(), hi.copy()
            for d in range(self.dim):
                P = P_csc[m][d][:, lo[d]:hi[d]]
                rows = P.nonzero()[0]
                new_lo[d], new_hi[d] = rows.min(), rows.max() + 1
                blocks.append(P[new_lo[d]:new_hi[d]].toarray())
            window = apply_tprod(blocks, window)
            lo, hi = new_lo, new_hi
            box = tuple(slice(a, b) for (a, b) in zip(lo, hi))
            contained = self._contained[m + 1][box]
            window[contained] = 0.0

        shape_k = self._bases[k].shape
        local = np.nonzero(window)
        values = window[local]
        cols = np.ravel_multi_index(tuple(l + o for (l, o) in zip(local, lo)), shape_k)
        order = np.argsort(cols)
        return scipy.sparse.csr_matrix(
                (values[order], (np.zeros(len(cols), dtype=int), cols[order])),
                shape=(1, self._bases[k].numdofs))

    def represent_basis(self):
        """Recompute the truncation state of all active functions.

        Calling this repeatedly without structural changes in between yields
        identical results.
        """
        P_csc = [[P.tocsc() for P in Ps] for Ps in self._P1d]
        functions = []
        rows = [[] for _ in range(self.num_levels)]
        cols = [[] for _ in range(self.num_levels)]
        vals = [[] for _ in range(self.num_levels)]
        for lv in range(self.num_levels):
            B = self._bases[lv]
            for j in self._active[lv]:
                i = len(functions)
                if lv == self.max_level:
                    k = lv
                else:
                    k = self._presentation_level(lv, B.support_cells(j))
                if k == lv:
                    functions.append(Plain(lv, int(j)))
                    rows[lv].append([j])
                    vals[lv].append([1.0])
                else:
                    coefs = self._truncate(lv, j, k, P_csc)
                    functions.append(Truncated(lv, int(j), k, coefs))
                    rows[k].append(coefs.indices)
                    vals[k].append(coefs.data)
                cols[k].append(np.full(len(rows[k][-1]), i))
        self._functions = functions
        self._R = []
        for m in range(self.num_levels):
            if rows[m]:
                I, J, V = (np.concatenate(rows[m]), np.concatenate(cols[m]),
                           np.concatenate(vals[m]))
            else:
                I = J = np.zeros(0, dtype=int)
                V = np.zeros(0)
            self._R.append(scipy.sparse.csr_matrix((V, (I, J)),
                shape=(self._bases[m].numdofs, len(functions))))
        if logger.isEnabledFor(logging.DEBUG):
            levels = collections.Counter(f.presentation_level for f in self.truncated_items())
            logger.debug('represent_basis: %d of %d functions truncated, presentation levels %s',
                    self.num_truncated, len(functions), dict(levels))

    def _level_representation(self, lv):
        return self._R[lv]

    ############################################################
    # queries
    ############################################################

    @property
    def functions(self):
        """The list of :class:`Plain` and :class:`Truncated` entries in canonical order."""
        return list(self._functions)

    def function(self, i):
        """The :class:`Plain` or :class:`Truncated` entry of the `i`-th function."""
        return self._functions[i]

    @property
    def num_truncated(self):
        return sum(1 for f in self._functions if isinstance(f, Truncated))

    def is_truncated(self, i):
        return isinstance(self._functions[i], Truncated)

    def truncation_flag(self, i):
        """-1 if the `i`-th function is not truncated, otherwise its presentation level."""
        f = self._functions[i]
        return f.presentation_level if isinstance(f, Truncated) else -1

    def presentation_level(self, i):
        """Level of the B-splines in terms of which the `i`-th function is represented."""
        f = self._functions[i]
        return f.presentation_level if isinstance(f, Truncated) else f.level

    def truncated_items(self):
        """Iterate over the :class:`Truncated` entries."""
        for f in self._functions:
            if isinstance(f, Truncated):
                yield f

    def get_coefs(self, i):
        """Sparse coefficients of the truncated function `i` on its presentation level.

        Raises:
            LogicError: if the function is not truncated
        """
        f = self._functions[i]
        if not isinstance(f, Truncated):
            raise LogicError('basis function %d is not truncated' % i)
        return f.coefs

    ############################################################
    # evaluation
    ############################################################

    def _single(self, i, x, order):
        f = self._functions[i]
        pts = self._bases[0].check_domain(x)
        if isinstance(f, Truncated):
            mats = self._bases[f.presentation_level]._matrices(pts, order)
            comps = [M.dot(f.coefs.T).toarray().ravel() for M in mats]
        else:
            mats = self._bases[f.level]._matrices(pts, order)
            comps = [M[:, f.index].toarray().ravel() for M in mats]
        return comps

    def eval_single(self, i, x):
        """Values of the `i`-th basis function at the points `x`."""
        return self._single(i, x, 0)[0]

    def deriv_single(self, i, x):
        """Gradient of the `i`-th basis function; array of shape `(n, dim)`."""
        return np.stack(self._single(i, x, 1), axis=-1)

    def deriv2_single(self, i, x):
        """Second derivatives of the `i`-th basis function; array of shape
        `(n, dim*(dim+1)/2)` in the order of :func:`.bspline.hessian_indices`."""
        return np.stack(self._single(i, x, 2), axis=-1)

    def _fast_evaluate(self, x, order):
        pts = self._bases[0].check_domain(x)
        Ds = bspline.derivative_multi_indices(self.dim, order)
        out = [[] for _ in Ds]
        levels = [m for m in range(self.num_levels) if self._R[m].nnz > 0]
        for pt in pts:
            rows = [scipy.sparse.csr_matrix((1, self.numdofs)) for _ in Ds]
            for m in levels:
                # one evaluation of the level basis serves all functions presented on it
                kvs = self._bases[m].kvs
                first, values = bspline._tp_info(kvs, pt[None, :], order)
                for c, D in enumerate(Ds):
                    idx, v = bspline._tp_combine(kvs, first, values, D)
                    rows[c] = rows[c] + scipy.sparse.csr_matrix(v).dot(self._R[m][idx[0]])
            for c in range(len(Ds)):
                out[c].append(rows[c])
        return [scipy.sparse.vstack(o, format='csr') if o
                else scipy.sparse.csr_matrix((0, self.numdofs)) for o in out]

    def fast_eval(self, x):
        """Same as :meth:`eval`, but evaluated point by point with the
        functions grouped by presentation level."""
        return self._fast_evaluate(x, 0)[0]

    def fast_deriv(self, x):
        return tuple(self._fast_evaluate(x, 1))

    def fast_deriv2(self, x):
        return tuple(self._fast_evaluate(x, 2))
