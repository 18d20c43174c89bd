"""This module implements hierarchical tensor product B-spline bases
(HB-splines) over a sequence of nested, dyadically refined levels.

The main class is :class:`HTensorBasis`. Its truncated variant,
:class:`.THBSplineBasis`, lives in :mod:`thbiga.thb` and shares the
refinement machinery implemented here.

The hierarchy is described by a sequence of nested domains

    Ω_0 ⊇ Ω_1 ⊇ ... ⊇ Ω_L,

where `Ω_0` is the whole parameter domain and each `Ω_ℓ` is stored as a
boolean array over the cells of level `ℓ` (the **refinement region** of that
level). A cell of level `ℓ` with multi-index `c` has the `2^d` children
`2c + {0,1}^d` on level `ℓ+1`. A B-spline of level `ℓ` is **active** if its
support is contained in `Ω_ℓ`, but not in the union of level-`ℓ` cells all of
whose children lie in `Ω_{ℓ+1}`. The **active level** of a point is the largest
`ℓ` such that the point lies in `Ω_ℓ`.

Whenever an ordering of the degrees of freedom is required, we use the
following **canonical order**: first, all active basis functions on the
coarsest level, then all active basis functions on the next finer level, and so
on until the finest level. Within each level, the functions are ordered by
their flat tensor product index (see :mod:`thbiga.tensorbasis`).

Refinement is performed by inserting boxes of cells (see
:meth:`HTensorBasis.insert_box`); after every structural change, the activity
bitmaps of all levels are recomputed using summed-area tables over the
refinement regions.
"""
import logging

import numpy as np
import scipy.sparse
import scipy.sparse.linalg

from . import bspline, utils
from .bspline import _parse_bdspec
from .errors import LogicError
from .tensorbasis import TensorBSplineBasis

logger = logging.getLogger(__name__)


def _children_view(mask, parent_shape):
    """Reshape a fine cell mask so that the children of each coarse cell form
    separate axes of length 2."""
    shp = []
    for n in parent_shape:
        shp.extend((n, 2))
    return mask.reshape(shp)

def _upsample(mask):
    """Mark all children of the cells marked in `mask`."""
    for ax in range(mask.ndim):
        mask = np.repeat(mask, 2, axis=ax)
    return mask

def _cell_ranges(kvs):
    """Per direction, the cell ranges `(first, end)` of all B-spline supports."""
    ranges = []
    for kv in kvs:
        msi = kv.mesh_support_idx_all()
        ranges.append((msi[:, 0], msi[:, 1]))
    return ranges

def _box_sizes(ranges):
    """Number of cells in each box of a tensor grid of boxes."""
    sizes = np.ones(tuple(len(lo) for (lo, _) in ranges), dtype=np.int64)
    for k, (lo, hi) in enumerate(ranges):
        shp = [1] * len(ranges)
        shp[k] = -1
        sizes = sizes * (hi - lo).reshape(shp)
    return sizes


class HTensorBasis:
    """A hierarchical tensor product B-spline basis.

    Args:
        kvs: a sequence of `d` :class:`.KnotVector` instances, or a
            :class:`.TensorBSplineBasis`, describing the coarsest level

    Levels are created lazily by :meth:`insert_box`; each new level is the
    dyadic refinement of the previous one. No level is ever removed.
    """
    def __init__(self, kvs):
        if isinstance(kvs, TensorBSplineBasis):
            base = kvs
        else:
            base = TensorBSplineBasis(kvs)
        self.dim = base.dim
        self._bases = [base]
        self._regions = [np.ones(base.mesh_shape, dtype=bool)]
        self._P1d = []      # univariate prolongators between consecutive levels
        self._rebuild()

    def __str__(self):
        return '<%s dim=%d levels=%d numdofs=%d>' % (
            type(self).__name__, self.dim, self.num_levels, self.numdofs)

    ############################################################
    # levels
    ############################################################

    @property
    def num_levels(self):
        """The number of levels in this hierarchical basis."""
        return len(self._bases)

    @property
    def max_level(self):
        return len(self._bases) - 1

    @property
    def domain(self):
        return self._bases[0].domain

    def basis_of_level(self, lv):
        """Return the :class:`.TensorBSplineBasis` of level `lv`."""
        if not 0 <= lv < self.num_levels:
            raise LogicError('level %d does not exist (max. level is %d)' % (lv, self.max_level))
        return self._bases[lv]

    def knotvectors(self, lv):
        return self.basis_of_level(lv).kvs

    def refinement_region(self, lv):
        """Boolean array over the cells of level `lv` marking `Ω_lv`."""
        return self._regions[lv].copy()

    def _add_level(self):
        refined = [bspline.uniform_refinement(kv) for kv in self._bases[-1].kvs]
        fine = TensorBSplineBasis([kv for (kv, _) in refined])
        self._P1d.append([P for (_, P) in refined])
        self._bases.append(fine)
        self._regions.append(np.zeros(fine.mesh_shape, dtype=bool))

    def _ensure_levels(self, lv):
        """Make sure that level `lv` exists."""
        while self.max_level < lv:
            self._add_level()

    def prolongation(self, lv):
        """Sparse matrix which prolongs tensor product coefficients from level
        `lv` to level `lv+1`."""
        return utils.multi_kron_sparse(self._P1d[lv])

    ############################################################
    # refinement
    ############################################################

    def _mark_box(self, lv, low, high):
        """Add a box of level-`lv` cells to `Ω_lv` and the covering boxes to
        all coarser regions. Returns True if any region changed."""
        if lv < 0:
            raise ValueError('invalid level %d' % lv)
        if len(low) != self.dim or len(high) != self.dim:
            raise ValueError('box corners should have length %d' % self.dim)
        self._ensure_levels(lv)
        shape = self._bases[lv].mesh_shape
        low = np.clip(np.asarray(low, dtype=int), 0, shape)
        high = np.clip(np.asarray(high, dtype=int), 0, shape)
        if np.any(high <= low):
            return False
        changed = False
        for m in range(lv, 0, -1):
            shift = lv - m
            lo = low >> shift
            hi = -((-high) >> shift)   # round up
            box = tuple(slice(a, b) for (a, b) in zip(lo, hi))
            if not self._regions[m][box].all():
                self._regions[m][box] = True
                changed = True
        return changed

    def insert_box(self, level, low, high):
        """Refine the region given by a box of cells on the given level.

        Args:
            level (int): the level on which the box is specified
            low: multi-index of the first cell in the box
            high: multi-index one beyond the last cell in the box (i.e., the
                box is the half-open range ``low <= c < high``)

        Cells of coarser levels which overlap the box are added to the
        refinement regions of their levels, such that the regions remain
        nested. Missing levels are created. Inserting a box a second time has
        no effect.

        Returns:
            bool: whether the basis changed
        """
        nlevels = self.num_levels
        changed = self._mark_box(level, low, high)
        logger.debug('insert_box(%d, %s, %s): %s', level, tuple(low), tuple(high),
                'changed' if changed else 'no change')
        if changed or self.num_levels != nlevels:
            self._rebuild()
        return changed

    def insert_boxes(self, boxes):
        """Insert several boxes `(level, low, high)` and rebuild the basis once."""
        nlevels = self.num_levels
        changed = False
        for (level, low, high) in boxes:
            changed = self._mark_box(level, low, high) or changed
        if changed or self.num_levels != nlevels:
            self._rebuild()
        return changed

    def refine_region(self, lv, region_function):
        """Refine all cells of `Ω_lv` whose cell center satisfies `region_function`.

        `region_function` should be a function of `dim` scalar arguments (e.g., `(x,y)`)
        which returns True if the point is within the refinement region.
        The children of the selected cells are added to `Ω_{lv+1}`.
        """
        if not 0 <= lv <= self.max_level:
            raise LogicError('level %d does not exist' % lv)
        nlevels = self.num_levels
        self._ensure_levels(lv + 1)
        meshes = [kv.mesh for kv in self._bases[lv].kvs]
        centers = [0.5 * (m[1:] + m[:-1]) for m in meshes]
        cells = np.argwhere(self._regions[lv])
        marked = np.zeros(self._bases[lv].mesh_shape, dtype=bool)
        for c in cells:
            if region_function(*(centers[k][c[k]] for k in range(self.dim))):
                marked[tuple(c)] = True
        fine = _upsample(marked)
        changed = bool(np.any(fine & ~self._regions[lv + 1]))
        logger.debug('refine_region(%d): %d cells marked', lv, np.count_nonzero(marked))
        self._regions[lv + 1] |= fine
        if changed or self.num_levels != nlevels:
            self._rebuild()
        return changed

    def uniform_refine(self):
        """Refine every level dyadically, keeping the refinement pattern.

        The basis of the former level 1 becomes the new level 0 and a new
        finest level is appended.
        """
        self._add_level()
        self._bases.pop(0)
        self._P1d.pop(0)
        old_regions = self._regions[:-1]
        self._regions = [np.ones(self._bases[0].mesh_shape, dtype=bool)]
        self._regions.extend(_upsample(R) for R in old_regions[1:])
        # drop empty trailing levels, but keep at least one
        while len(self._bases) > 1 and not self._regions[-1].any():
            self._bases.pop()
            self._regions.pop()
            self._P1d.pop()
        self._rebuild()

    ############################################################
    # activity
    ############################################################

    def _covered(self, lv):
        """Cells of level `lv` all of whose children lie in `Ω_{lv+1}`."""
        if lv == self.max_level:
            return np.zeros(self._bases[lv].mesh_shape, dtype=bool)
        shape = self._bases[lv].mesh_shape
        axes = tuple(range(1, 2 * self.dim, 2))
        return _children_view(self._regions[lv + 1], shape).all(axis=axes)

    def _partial(self, lv):
        """Cells of level `lv` some of whose children lie in `Ω_{lv+1}`."""
        if lv == self.max_level:
            return np.zeros(self._bases[lv].mesh_shape, dtype=bool)
        shape = self._bases[lv].mesh_shape
        axes = tuple(range(1, 2 * self.dim, 2))
        return _children_view(self._regions[lv + 1], shape).any(axis=axes)

    def _rebuild(self):
        """Recompute the active functions of all levels."""
        self._tables = [utils.summed_area_table(R) for R in self._regions]
        self._active = []
        self._contained = []
        for lv, B in enumerate(self._bases):
            ranges = _cell_ranges(B.kvs)
            sizes = _box_sizes(ranges)
            contained = utils.box_counts(None, ranges, table=self._tables[lv]) == sizes
            covered = utils.box_counts(self._covered(lv), ranges) == sizes
            self._contained.append(contained)
            self._active.append(np.flatnonzero(contained & ~covered))
        self._offsets = np.concatenate(([0], np.cumsum([len(a) for a in self._active])))
        logger.debug('%s rebuilt: active functions per level %s', type(self).__name__,
                self.numactive)

    @property
    def numactive(self):
        """A tuple containing the number of active basis functions per level."""
        return tuple(len(a) for a in self._active)

    @property
    def numdofs(self):
        """The total number of active basis functions."""
        return int(self._offsets[-1])

    def active_indices(self, lv=None):
        """Flat tensor indices of the active functions of level `lv`, or a
        list of these arrays for all levels."""
        if lv is None:
            return [a.copy() for a in self._active]
        return self._active[lv].copy()

    def is_contained(self, lv):
        """Boolean array over the functions of level `lv`, True for functions
        whose support lies in `Ω_lv`."""
        return self._contained[lv].copy()

    def level_of(self, i):
        """Level of the `i`-th basis function (in canonical order)."""
        i = np.asarray(i)
        if np.any(i < 0) or np.any(i >= self.numdofs):
            raise IndexError('basis function index out of range')
        lv = np.searchsorted(self._offsets, i, side='right') - 1
        return int(lv) if lv.ndim == 0 else lv

    def flat_tensor_index_of(self, i):
        """Flat tensor index of the `i`-th basis function within its level."""
        lv = self.level_of(i)
        return int(self._active[lv][i - self._offsets[lv]])

    def global_index(self, lv, flat):
        """Canonical index of the active function with flat tensor index
        `flat` on level `lv`."""
        act = self._active[lv]
        pos = np.searchsorted(act, flat)
        if pos >= len(act) or act[pos] != flat:
            raise LogicError('function %d on level %d is not active' % (flat, lv))
        return int(self._offsets[lv] + pos)

    def level_slice(self, lv):
        """Slice of the canonical indices belonging to level `lv`."""
        return slice(int(self._offsets[lv]), int(self._offsets[lv + 1]))

    def function_support(self, i):
        """Support of the `i`-th basis function as `(lower, upper)` pairs."""
        lv = self.level_of(i)
        return self._bases[lv].function_support(self.flat_tensor_index_of(i))

    def active_level_at(self, x):
        """Active level at each of the given points."""
        pts = self._bases[0].check_domain(x)
        levels = np.zeros(pts.shape[0], dtype=int)
        for lv in range(1, self.num_levels):
            cells = tuple(kv.findcells(pts[:, k])
                          for (k, kv) in enumerate(self._bases[lv].kvs))
            levels[self._regions[lv][cells]] = lv
        return levels

    def active_functions(self, x):
        """Return the list of `(level, flat_index)` pairs of all active basis
        functions which do not vanish around the point `x`, in canonical order.

        Raises:
            OutOfDomain: if `x` lies outside the parameter domain
        """
        result = []
        top = self.active_level_at(x)[0]
        for lv in range(top + 1):
            cand = self._bases[lv].active_functions(x)
            act = cand[np.isin(cand, self._active[lv])]
            result.extend((lv, int(j)) for j in act)
        return result

    def active_indices_at(self, x):
        """Canonical indices of the functions returned by :meth:`active_functions`."""
        return np.array([self.global_index(lv, j) for (lv, j) in self.active_functions(x)],
                dtype=int)

    ############################################################
    # mesh
    ############################################################

    def _leaf_cells(self):
        """Leaf cells of the hierarchical mesh, as a list of boolean arrays
        over the cells of each level."""
        leaves = []
        K = np.ones(self._bases[0].mesh_shape, dtype=bool)
        for lv in range(self.num_levels):
            partial = self._partial(lv)
            leaves.append(K & ~partial)
            if lv < self.max_level:
                K = _upsample(K & partial)
        return leaves

    def active_cells(self, lv=None):
        """Flat indices of the cells of level `lv` which are elements of the
        hierarchical mesh, or a list of these arrays for all levels."""
        leaves = self._leaf_cells()
        if lv is None:
            return [np.flatnonzero(L) for L in leaves]
        return np.flatnonzero(leaves[lv])

    @property
    def num_elements(self):
        """The total number of elements of the hierarchical mesh."""
        return sum(np.count_nonzero(L) for L in self._leaf_cells())

    def element_extents(self):
        """Array of shape `(num_elements, dim, 2)` with lower and upper
        corners of all elements, ordered by level and flat cell index."""
        result = []
        for lv, L in enumerate(self._leaf_cells()):
            if L.any():
                ext = self._bases[lv].element_extents()
                result.append(ext[L.ravel()])
        return np.concatenate(result, axis=0)

    def boundary_breaks(self, bdspec):
        """Element boundaries along the given side, one array per direction.

        The entry for the fixed direction contains only the coordinate of
        the side.
        """
        axis, side = _parse_bdspec(bdspec, self.dim)
        value = self.domain[axis][side]
        ext = self.element_extents()
        on_side = ext[:, axis, side] == value
        result = []
        for k in range(self.dim):
            if k == axis:
                result.append(np.array([value]))
            else:
                result.append(np.unique(ext[on_side, k, :]))
        return result

    def boundary_dofs(self, bdspec):
        """Canonical indices of the basis functions which do not vanish on the given side."""
        axis, side = _parse_bdspec(bdspec, self.dim)
        result = []
        for lv, B in enumerate(self._bases):
            mi = B.unravel_index(self._active[lv])
            pos = 0 if side == 0 else B.shape[axis] - 1
            onbd = np.flatnonzero(mi[:, axis] == pos)
            result.append(self._offsets[lv] + onbd)
        return np.concatenate(result).astype(int)

    ############################################################
    # representation and evaluation
    ############################################################

    def _level_representation(self, lv):
        """Sparse matrix of shape `(N_lv, numdofs)` mapping canonical
        coefficients to the level-`lv` tensor product B-splines evaluated
        directly on that level."""
        act = self._active[lv]
        cols = self._offsets[lv] + np.arange(len(act))
        return scipy.sparse.csr_matrix((np.ones(len(act)), (act, cols)),
                shape=(self._bases[lv].numdofs, self.numdofs))

    def represent_fine(self, lv=None):
        """Compute a matrix which represents all basis functions up to level
        `lv` in terms of the tensor product B-splines of level `lv`.

        By default, `lv` is the finest level. The returned matrix has size
        `N_lv × numdofs`; columns of functions on finer levels are zero.
        """
        if lv is None:
            lv = self.max_level
        if not 0 <= lv <= self.max_level:
            raise LogicError('level %d does not exist' % lv)
        R = None
        for m in range(lv + 1):
            Rm = self._level_representation(m)
            R = Rm if R is None else self.prolongation(m - 1).dot(R) + Rm
        return R.tocsr()

    def transfer(self, old):
        """Compute the matrix which maps coefficients with respect to the
        basis `old` to the coefficients of the same function in this basis.

        `old` must be a basis of the same type over the same coarsest level
        whose refinement regions are contained in the ones of this basis,
        e.g., a copy of this basis taken before :meth:`insert_box`.

        Returns:
            csr_matrix: matrix of size `numdofs × old.numdofs`

        Raises:
            LogicError: if `old` is not nested in this basis
        """
        if type(old) is not type(self) or old.basis_of_level(0) != self._bases[0]:
            raise LogicError('can only transfer from a basis of the same type and coarsest level')
        for m, Rm in enumerate(old._regions):
            outside = Rm if m > self.max_level else Rm & ~self._regions[m]
            if outside.any():
                raise LogicError('refinement region of level %d is not nested' % m)
        lv = min(old.max_level, self.max_level)
        A = old.represent_fine(lv)
        for m in range(lv, self.max_level):
            A = self.prolongation(m).dot(A)
        # R has full column rank and the range of A lies in its range
        R = self.represent_fine()
        RtR = R.T.dot(R).tocsc()
        T = scipy.sparse.linalg.splu(RtR).solve(R.T.dot(A).toarray())
        # prune matrix
        T[np.abs(T) < 1e-12] = 0.0
        return scipy.sparse.csr_matrix(T)

    def _evaluate(self, x, order):
        pts = self._bases[0].check_domain(x)
        result = None
        for lv, B in enumerate(self._bases):
            R = self._level_representation(lv)
            if R.nnz == 0:
                continue
            vals = [M.dot(R) for M in B._matrices(pts, order)]
            result = vals if result is None else [A + V for (A, V) in zip(result, vals)]
        return [A.tocsr() for A in result]

    def eval(self, x):
        """Evaluate all basis functions at the points `x`.

        Returns:
            csr_matrix: matrix of shape `(n, numdofs)` whose columns are in canonical order
        """
        return self._evaluate(x, 0)[0]

    def deriv(self, x):
        """Evaluate all first derivatives; returns a tuple of `dim` sparse matrices."""
        return tuple(self._evaluate(x, 1))

    def deriv2(self, x):
        """Evaluate all second derivatives; returns a tuple of sparse matrices
        in the order of :func:`.bspline.hessian_indices`."""
        return tuple(self._evaluate(x, 2))
