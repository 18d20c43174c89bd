"""Tensor product B-spline bases.

A :class:`TensorBSplineBasis` is the Cartesian product of `d` univariate
B-spline bases. Basis functions are identified either by a multi-index
``(i_0, ..., i_{d-1})`` or by a flat index; the flat index is obtained by
raveling the multi-index in C order, i.e., the last direction varies fastest.
"""
import numpy as np
import scipy.sparse

from . import bspline
from .bspline import KnotVector, _parse_bdspec
from .errors import OutOfDomain
from .utils import as_points, multi_kron_sparse

# relative tolerance for points lying slightly outside the domain
DOMAIN_TOL = 1e-12


class TensorBSplineBasis:
    """A tensor product B-spline basis.

    Args:
        kvs: a sequence of :class:`.KnotVector` instances, one per
            parametric direction (in xyz order)

    Attributes:
        kvs (tuple): the knot vectors
        dim (int): dimension of the parameter domain
        shape (tuple): number of basis functions per direction
    """
    def __init__(self, kvs):
        if isinstance(kvs, KnotVector):
            kvs = (kvs,)
        self.kvs = tuple(kvs)
        self.dim = len(self.kvs)
        self.shape = tuple(kv.numdofs for kv in self.kvs)

    def __repr__(self):
        return 'TensorBSplineBasis(%r)' % (self.kvs,)

    def __str__(self):
        return '<TensorBSplineBasis dim=%d shape=%s degrees=%s>' % (
            self.dim, self.shape, self.degrees)

    def __eq__(self, other):
        if not isinstance(other, TensorBSplineBasis):
            return NotImplemented
        return self.dim == other.dim and all(
            kv1 == kv2 for (kv1, kv2) in zip(self.kvs, other.kvs))

    @property
    def numdofs(self):
        """Total number of basis functions."""
        return int(np.prod(self.shape))

    @property
    def degrees(self):
        return tuple(kv.p for kv in self.kvs)

    @property
    def mesh_shape(self):
        """Number of cells (nonempty knot spans) per direction."""
        return tuple(kv.numspans for kv in self.kvs)

    @property
    def num_elements(self):
        return int(np.prod(self.mesh_shape))

    @property
    def domain(self):
        """Tuple of `(lower, upper)` pairs per direction."""
        return tuple(kv.support() for kv in self.kvs)

    def ravel_index(self, multi_index):
        """Convert a multi-index (or an array of them) into flat indices."""
        return np.ravel_multi_index(tuple(np.asarray(multi_index).T), self.shape)

    def unravel_index(self, flat):
        """Convert flat indices into an array of multi-indices."""
        return np.stack(np.unravel_index(flat, self.shape), axis=-1)

    def function_support(self, j):
        """Support of the `j`-th basis function as a tuple of `(lower, upper)`
        pairs per direction."""
        mi = np.unravel_index(j, self.shape)
        return tuple(kv.support(i) for (kv, i) in zip(self.kvs, mi))

    def support_cells(self, j):
        """Cell index ranges `(first, end)` per direction covered by the
        support of the `j`-th basis function."""
        mi = np.unravel_index(j, self.shape)
        return tuple(kv.mesh_support_idx(i) for (kv, i) in zip(self.kvs, mi))

    def check_domain(self, x):
        """Return the points `x` as an `(n, dim)` array, raising
        :class:`.OutOfDomain` if any of them lies outside the domain.

        Points within a small tolerance of the boundary are moved onto it.
        """
        pts, _ = as_points(x, self.dim)
        pts = pts.copy()
        for k, (a, b) in enumerate(self.domain):
            tol = DOMAIN_TOL * (b - a)
            col = pts[:, k]
            bad = (col < a - tol) | (col > b + tol) | ~np.isfinite(col)
            if np.any(bad):
                raise OutOfDomain(pts[bad][0], self.domain)
            pts[:, k] = np.clip(col, a, b)
        return pts

    def active_functions(self, x):
        """Flat indices of all basis functions which do not vanish
        identically around the point `x`, in increasing order."""
        pts = self.check_domain(x)
        if pts.shape[0] != 1:
            raise ValueError('active_functions expects a single point')
        idx, _ = bspline.tp_active(self.kvs, pts)
        return idx[0]

    def _matrices(self, x, order):
        pts = self.check_domain(x)
        n = pts.shape[0]
        first, values = bspline._tp_info(self.kvs, pts, order)
        result = []
        for D in bspline.derivative_multi_indices(self.dim, order):
            idx, vals = bspline._tp_combine(self.kvs, first, values, D)
            I = np.repeat(np.arange(n), idx.shape[1])
            result.append(scipy.sparse.coo_matrix(
                (vals.ravel(), (I, idx.ravel())), shape=(n, self.numdofs)).tocsr())
        return result

    def eval(self, x):
        """Evaluate all basis functions at the points `x`.

        Returns:
            csr_matrix: matrix of shape `(n, numdofs)` with the function values
        """
        return self._matrices(x, 0)[0]

    collocation = eval

    def deriv(self, x):
        """Evaluate all first derivatives; returns a tuple of `dim` sparse matrices."""
        return tuple(self._matrices(x, 1))

    def deriv2(self, x):
        """Evaluate all second derivatives; returns a tuple of sparse matrices
        in the order of :func:`.bspline.hessian_indices`."""
        return tuple(self._matrices(x, 2))

    def grid_collocation(self, grid):
        """Kronecker product collocation matrix on a tensor grid (xyz order)."""
        return multi_kron_sparse([bspline.collocation(kv, g) for (kv, g) in zip(self.kvs, grid)])

    def uniform_refine(self):
        """Return the basis obtained by dyadic refinement in all directions."""
        return TensorBSplineBasis([kv.refine() for kv in self.kvs])

    refine = uniform_refine

    def prolongation(self, fine):
        """Sparse matrix which maps coefficients in this basis to
        coefficients in the finer basis `fine`."""
        return multi_kron_sparse([bspline.prolongation(kv1, kv2)
                                  for (kv1, kv2) in zip(self.kvs, fine.kvs)])

    def boundary_dofs(self, bdspec):
        """Flat indices of the basis functions which do not vanish on the given side."""
        axis, side = _parse_bdspec(bdspec, self.dim)
        ranges = [np.arange(n) for n in self.shape]
        ranges[axis] = np.array([0 if side == 0 else self.shape[axis] - 1])
        return np.ravel_multi_index(np.ix_(*ranges), self.shape).ravel()

    def boundary_basis(self, bdspec):
        """The tensor product basis on the given side, of dimension `dim - 1`.

        Its flat indices enumerate :meth:`boundary_dofs` in the same order.
        """
        axis, _ = _parse_bdspec(bdspec, self.dim)
        kvs = list(self.kvs)
        del kvs[axis]
        return TensorBSplineBasis(kvs)

    def boundary_breaks(self, bdspec):
        """Element boundaries along the given side, one array per direction.

        The entry for the fixed direction contains only the coordinate of
        the side.
        """
        axis, side = _parse_bdspec(bdspec, self.dim)
        result = [kv.mesh.copy() for kv in self.kvs]
        result[axis] = np.array([self.domain[axis][side]])
        return result

    def element_extents(self):
        """Array of shape `(num_elements, dim, 2)` with lower and upper
        corners of all cells, in flat cell order."""
        meshes = [kv.mesh for kv in self.kvs]
        cells = np.stack(np.unravel_index(np.arange(self.num_elements), self.mesh_shape), axis=-1)
        lo = np.stack([meshes[k][cells[:, k]] for k in range(self.dim)], axis=-1)
        hi = np.stack([meshes[k][cells[:, k] + 1] for k in range(self.dim)], axis=-1)
        return np.stack((lo, hi), axis=-1)
