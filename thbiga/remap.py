"""Parameter correspondence across patch interfaces.

Given an :class:`.Interface` of a :class:`.MultiPatch`, an
:class:`InterfaceRemap` maps parameters on the side of the first patch to the
parameters of the same physical points on the side of the second patch, and
provides a partition of the interface into intervals on which both sides are
polynomial (the *breakpoints*), for use in quadrature along the interface.

The construction proceeds as follows:

1. The parameter bounds of both sides are taken from the bases; the
   direction fixed by the side is collapsed to its value.
2. The corners of each side are projected onto the other side by
   Newton-Raphson iteration. Where the projection is tighter than the own
   bounds, the bounds are shrunk to the common part, and the interface is
   marked as non-matching.
3. Unless disabled, the map which identifies the two bounding boxes
   (permuting and flipping directions as given by the interface) is tested on
   a grid of sample points. If the geometries agree under it, the remap is
   *affine*.
4. Otherwise (only for 2D patches), the correspondence is sampled,
   each sample refined by Newton-Raphson inversion of the second geometry,
   and a spline curve is fitted through the parameter pairs. The quality of
   the fit is reported as :attr:`InterfaceRemap.fit_error`.

A remap refers to the patches of its multipatch by index. It remains valid
only as long as the multipatch does not change; afterwards, every query raises
:class:`.StaleHandle`. Once constructed, a remap is not modified and may be
shared between threads.
"""
import bisect
import logging

import numpy as np

from . import bspline
from .bspline import BSplineFunc
from .errors import DimensionMismatch, LogicError, UnsupportedDimension
from .geometry import newton_raphson
from .quadrature import make_tensor_quadrature
from .utils import as_points, cartesian_product

logger = logging.getLogger(__name__)

NEWTON_TOL_BOUNDS = 1e-8
NEWTON_TOL_FIT = 1e-5
NEWTON_MAXITER = 100
AFFINE_TOL = 1e-6
BREAK_TOL_AFFINE = 1e-5
BREAK_TOL_FITTED = 1e-4
FIT_SAMPLES = 11
FIT_DEGREE = 4
FIT_INTERIOR_KNOTS = 5
FIT_CHECK_SAMPLES = 10
# relative to the width of the parameter bounds
MATCHING_TOL = 1e-7

AFFINE_NEVER = -1
AFFINE_ALWAYS = 0


def _side_bounds(basis, side):
    """Parameter box of a side, shape `(dim, 2)`, with the fixed direction collapsed."""
    B = np.array(basis.domain, dtype=float)
    B[side.axis, :] = B[side.axis, side.side]
    return B

def _box_corners(bounds):
    """All corners of a parameter box; collapsed directions contribute once."""
    axes = [np.unique(b) for b in bounds]
    return cartesian_product(axes)

def _add_break(breaks, t, tol):
    # insert into the sorted list unless there is a value within tol
    pos = bisect.bisect_left(breaks, t - tol)
    if pos == len(breaks) or breaks[pos] > t + tol:
        breaks.insert(pos, t)

def _affine_map(X, src, dst, dir_map, orientation):
    """Map points from the box `src` to the box `dst` with direction `k` of the
    source corresponding to direction `dir_map[k]` of the destination."""
    Y = np.empty_like(X)
    for k, j in enumerate(dir_map):
        w_src = src[k, 1] - src[k, 0]
        w_dst = dst[j, 1] - dst[j, 0]
        s = (X[:, k] - src[k, 0]) / w_src if w_src > 0 else np.zeros(X.shape[0])
        if not orientation[k]:
            s = 1.0 - s
        Y[:, j] = dst[j, 0] + s * w_dst
    return Y


class InterfaceRemap:
    """Map between the parameter domains of the two sides of an interface.

    Args:
        mp (:class:`.MultiPatch`): the multipatch containing the interface
        interface (:class:`.Interface`): the interface; points of
            `interface.first` are mapped to points of `interface.second`
        check_affine (int): :data:`AFFINE_NEVER` to always construct a fitted
            map, :data:`AFFINE_ALWAYS` to assume that the interface is affine
            without checking, or a positive number `steps` of additional
            sample points per direction used to verify the affine map
        matching_tol (float): relative tolerance for the comparison of
            parameter bounds
        strict (bool): if True, non-convergence of a Newton-Raphson
            iteration raises :class:`.NoConvergenceError`

    Raises:
        DimensionMismatch: if the two geometries have different dimensions
        UnsupportedDimension: if the interface is not affine and the patches
            are not two-dimensional

    Attributes:
        interface (:class:`.Interface`): the interface
        fit_error (float): for fitted maps, the maximum deviation of the
            fitted parameters from the exact preimages at a set of check
            points; `None` for affine maps
        nonconverged (list): the construction stages in which a Newton-Raphson
            iteration did not converge; empty if all converged
    """
    def __init__(self, mp, interface, check_affine=1, matching_tol=MATCHING_TOL, strict=False):
        self._mp = mp
        self._generation = mp.generation
        self.interface = interface
        self._strict = strict
        first, second = interface.first, interface.second
        self._g1, self._g2 = mp.patches[first.patch], mp.patches[second.patch]
        self._b1, self._b2 = mp.bases[first.patch], mp.bases[second.patch]
        if self._g1.sdim != self._g2.sdim or self._g1.dim != self._g2.dim:
            raise DimensionMismatch('geometries of dimensions (%d, %d) and (%d, %d) cannot form an interface'
                    % (self._g1.sdim, self._g1.dim, self._g2.sdim, self._g2.dim))
        self.dim = self._g1.sdim
        self.fit_error = None
        self.nonconverged = []
        self._fit = None

        self._bounds1 = _side_bounds(self._b1, first)
        self._bounds2 = _side_bounds(self._b2, second)
        self._matching = self._shrink_bounds(matching_tol)

        if check_affine == AFFINE_NEVER:
            self._affine = False
        elif check_affine == AFFINE_ALWAYS:
            self._affine = True
        else:
            self._affine = self._check_if_affine(check_affine)

        if self._affine:
            self._breakpoints = self._affine_breakpoints()
        else:
            if self.dim != 2:
                raise UnsupportedDimension(
                    'non-affine interfaces are only supported for 2D patches, got dimension %d' % self.dim)
            self._construct_fitted_map()
            self._breakpoints = self._fitted_breakpoints()

        logger.info('InterfaceRemap %s -> %s: affine=%s matching=%s breakpoints=%s%s',
                tuple(first), tuple(second), self._affine, self._matching,
                [len(b) for b in self._breakpoints],
                '' if self.fit_error is None else ' fit error=%g' % self.fit_error)

    def __str__(self):
        return self.describe()

    def _check(self):
        self._mp.check_generation(self._generation)

    def _newton(self, geo, x, seed, tol, bounds, stage):
        res = newton_raphson(geo, x, seed=seed, tol=tol, maxiter=NEWTON_MAXITER,
                bounds=bounds, strict=self._strict, full_output=True)
        if not (res.converged or res.projected):
            if stage not in self.nonconverged:
                self.nonconverged.append(stage)
        return res.x

    ############################################################
    # bounds and affine map
    ############################################################

    def _transfer_bounds(self, g_to, bounds_to, g_from, bounds_from):
        """Project the corners of `bounds_from` (on `g_from`) into the side box
        `bounds_to` of `g_to` and return the bounding box of the results."""
        corners_to = _box_corners(bounds_to)
        images_to = g_to.eval(corners_to)
        pts = []
        for c in _box_corners(bounds_from):
            target = g_from.eval(c[np.newaxis])[0]
            seed = corners_to[np.argmin(np.linalg.norm(images_to - target, axis=1))]
            pts.append(self._newton(g_to, target, seed, NEWTON_TOL_BOUNDS, bounds_to, 'bounds'))
        pts = np.array(pts)
        return np.stack((pts.min(axis=0), pts.max(axis=0)), axis=1)

    def _shrink_bounds(self, matching_tol):
        """Restrict both sides to their common part; returns True if nothing changed."""
        t1 = self._transfer_bounds(self._g1, self._bounds1, self._g2, self._bounds2)
        t2 = self._transfer_bounds(self._g2, self._bounds2, self._g1, self._bounds1)
        matching = True
        for (B, T, side) in ((self._bounds1, t1, self.interface.first),
                             (self._bounds2, t2, self.interface.second)):
            for k in range(self.dim):
                if k == side.axis:
                    continue
                tol = matching_tol * (B[k, 1] - B[k, 0])
                if T[k, 0] > B[k, 0] + tol:
                    B[k, 0] = T[k, 0]
                    matching = False
                if T[k, 1] < B[k, 1] - tol:
                    B[k, 1] = T[k, 1]
                    matching = False
        return matching

    def _to_second(self, X):
        return _affine_map(X, self._bounds1, self._bounds2,
                self.interface.dir_map, self.interface.orientation)

    def _to_first(self, X):
        sw = self.interface.swapped()
        return _affine_map(X, self._bounds2, self._bounds1, sw.dir_map, sw.orientation)

    def _check_if_affine(self, steps):
        axes = [np.linspace(lo, hi, steps + 2) if lo < hi else np.array([lo])
                for (lo, hi) in self._bounds1]
        X = cartesian_product(axes)
        err = np.linalg.norm(self._g1.eval(X) - self._g2.eval(self._to_second(X)))
        logger.debug('affine check with %d points: mismatch %g', X.shape[0], err)
        return err < AFFINE_TOL

    ############################################################
    # fitted map
    ############################################################

    def _enrich(self, t, bounds, axis):
        """Points on a 2D side with free coordinate `t`."""
        X = np.empty((len(t), 2))
        X[:, axis] = bounds[axis, 0]
        X[:, 1 - axis] = t
        return X

    def _construct_fitted_map(self):
        first, second = self.interface.first, self.interface.second
        f1, f2 = first.axis, second.axis
        t1, t2 = 1 - f1, 1 - f2
        lo1, hi1 = self._bounds1[t1]
        lo2, hi2 = self._bounds2[t2]

        s1 = np.linspace(lo1, hi1, FIT_SAMPLES)
        s2 = np.linspace(lo2, hi2, FIT_SAMPLES)
        if not self.interface.orientation[t1]:
            s2 = s2[::-1]
        P1 = self._enrich(s1, self._bounds1, f1)
        P2 = self._enrich(s2, self._bounds2, f2)
        X1 = self._g1.eval(P1)
        X2 = self._g2.eval(P2)

        pre = np.empty_like(P1)
        for i in range(FIT_SAMPLES):
            seed = P2[np.argmin(np.linalg.norm(X2 - X1[i], axis=1))]
            pre[i] = self._newton(self._g2, X1[i], seed, NEWTON_TOL_FIT, self._bounds2, 'fit')

        kv = bspline.make_knots(FIT_DEGREE, lo1, hi1, FIT_INTERIOR_KNOTS + 1)
        self._fit = BSplineFunc(kv, bspline.fit_lsq(kv, s1, pre))
        self._samples = (P1, X1)

        # compare against exact preimages at a second set of points
        c = np.linspace(lo1, hi1, FIT_CHECK_SAMPLES)
        fitted = self._eval_fitted(self._enrich(c, self._bounds1, f1))
        Xc = self._g1.eval(self._enrich(c, self._bounds1, f1))
        exact = np.array([self._newton(self._g2, Xc[i], fitted[i], NEWTON_TOL_BOUNDS,
                                       self._bounds2, 'fit_check')
                          for i in range(FIT_CHECK_SAMPLES)])
        self.fit_error = float(np.max(np.abs(fitted[:, t2] - exact[:, t2])))
        logger.debug('fitted interface map: degree %d, %d interior knots, fit error %g',
                FIT_DEGREE, FIT_INTERIOR_KNOTS, self.fit_error)

    def _eval_fitted(self, X):
        t1 = 1 - self.interface.first.axis
        Y = self._fit.eval(X[:, t1])
        Y = np.clip(Y, self._bounds2[:, 0], self._bounds2[:, 1])
        Y[:, self.interface.second.axis] = self._bounds2[self.interface.second.axis, 0]
        return Y

    ############################################################
    # breakpoints
    ############################################################

    def _affine_breakpoints(self):
        first, second = self.interface.first, self.interface.second
        breaks = [[] for _ in range(self.dim)]
        br1 = self._b1.boundary_breaks(first.bdspec)
        for k in range(self.dim):
            lo, hi = self._bounds1[k]
            _add_break(breaks[k], lo, BREAK_TOL_AFFINE)
            for t in br1[k]:
                if lo <= t <= hi:
                    _add_break(breaks[k], t, BREAK_TOL_AFFINE)
            _add_break(breaks[k], hi, BREAK_TOL_AFFINE)

        # breaks of the second side, mapped into the first side
        br2 = self._b2.boundary_breaks(second.bdspec)
        sw = self.interface.swapped()
        for j in range(self.dim):
            if j == second.axis:
                continue
            vals = np.asarray(br2[j])
            lo2, hi2 = self._bounds2[j]
            vals = vals[(vals >= lo2) & (vals <= hi2)]
            X = np.tile(self._bounds2[:, 0], (len(vals), 1))
            X[:, j] = vals
            k = sw.dir_map[j]
            lo, hi = self._bounds1[k]
            for t in _affine_map(X, self._bounds2, self._bounds1, sw.dir_map, sw.orientation)[:, k]:
                if lo - BREAK_TOL_AFFINE <= t <= hi + BREAK_TOL_AFFINE:
                    _add_break(breaks[k], t, BREAK_TOL_AFFINE)
        return [np.array(b) for b in breaks]

    def _fitted_breakpoints(self):
        first, second = self.interface.first, self.interface.second
        f1, f2 = first.axis, second.axis
        t1, t2 = 1 - f1, 1 - f2
        lo1, hi1 = self._bounds1[t1]
        lo2, hi2 = self._bounds2[t2]

        b1 = np.asarray(self._b1.boundary_breaks(first.bdspec)[t1])
        b1 = np.concatenate(([lo1], b1[(b1 >= lo1) & (b1 <= hi1)], [hi1]))
        b2 = np.asarray(self._b2.boundary_breaks(second.bdspec)[t2])
        b2 = np.concatenate(([lo2], b2[(b2 >= lo2) & (b2 <= hi2)], [hi2]))

        # element corners of both sides in physical space
        P1 = self._enrich(b1, self._bounds1, f1)
        X = np.concatenate((self._g1.eval(P1),
                            self._g2.eval(self._enrich(b2, self._bounds2, f2))))
        seeds = np.concatenate((P1, np.empty((len(b2), 2))))
        S1, SX = self._samples
        for i in range(len(b1), len(X)):
            seeds[i] = S1[np.argmin(np.linalg.norm(SX - X[i], axis=1))]

        breaks = []
        for i in range(len(X)):
            xi = self._newton(self._g1, X[i], seeds[i], NEWTON_TOL_BOUNDS, self._bounds1, 'breakpoints')
            _add_break(breaks, float(np.clip(xi[t1], lo1, hi1)), BREAK_TOL_FITTED)

        result = [None, None]
        result[t1] = np.array(breaks)
        result[f1] = np.array([self._bounds1[f1, 0]])
        return result

    ############################################################
    # public interface
    ############################################################

    def _clamp(self, x):
        X, single = as_points(x, self.dim)
        X = np.clip(X, self._bounds1[:, 0], self._bounds1[:, 1])
        return X, single

    def eval(self, x):
        """Map parameters on the first side to parameters on the second side.

        Args:
            x: a single point or an array of points of shape `(n, dim)` in the
                parameter domain of the first patch; points outside the
                interface bounds are moved to the nearest point within them

        Returns:
            ndarray: the corresponding parameters in the second patch
        """
        self._check()
        X, single = self._clamp(x)
        Y = self._to_second(X) if self._affine else self._eval_fitted(X)
        return Y[0] if single else Y

    __call__ = eval

    def inverse(self, y):
        """Map parameters on the second side back to the first side.

        Raises:
            LogicError: if the remap is not affine
        """
        self._check()
        if not self._affine:
            raise LogicError('the inverse is only available for affine interface maps')
        Y, single = as_points(y, self.dim)
        Y = np.clip(Y, self._bounds2[:, 0], self._bounds2[:, 1])
        X = self._to_first(Y)
        return X[0] if single else X

    def is_matching(self):
        """Whether both sides cover the same part of the interface."""
        self._check()
        return self._matching

    def is_affine(self):
        self._check()
        return self._affine

    def breakpoints(self):
        """Sorted breakpoints per direction of the first patch.

        The entry for the direction fixed by the side contains only its
        parameter value.
        """
        self._check()
        return [b.copy() for b in self._breakpoints]

    def parameter_bounds(self, side=1):
        """Parameter bounds of the first (`side=1`) or second (`side=2`)
        side as an array of shape `(dim, 2)`."""
        self._check()
        if side == 1:
            return self._bounds1.copy()
        elif side == 2:
            return self._bounds2.copy()
        raise ValueError('side should be 1 or 2')

    def quadrature(self, nqp):
        """Gauss quadrature along the interface with `nqp` nodes per
        direction on each interval between consecutive breakpoints.

        Returns:
            a triple `(X1, X2, w)`: the nodes in the parameter domain of
            the first patch, the corresponding nodes in the second patch, and
            the weights with respect to the parameter of the first side
        """
        self._check()
        fixed = self.interface.first.axis
        free = [k for k in range(self.dim) if k != fixed]
        grid, weights = make_tensor_quadrature([self._breakpoints[k] for k in free], nqp)
        nodes = cartesian_product(list(grid))
        X1 = np.empty((nodes.shape[0], self.dim))
        X1[:, fixed] = self._bounds1[fixed, 0]
        X1[:, free] = nodes
        w = cartesian_product(list(weights)).prod(axis=1)
        return X1, self.eval(X1), w

    def describe(self):
        """Human readable summary of the remap."""
        first, second = self.interface.first, self.interface.second
        lines = [
            'Side 1: patch %d, axis %d, side %d' % tuple(first),
            'Side 2: patch %d, axis %d, side %d' % tuple(second),
            'Affine: %s' % ('yes' if self._affine else 'no'),
            'Matching: %s' % ('yes' if self._matching else 'no'),
            'Parameter bounds 1: %s' % self._bounds1.tolist(),
            'Parameter bounds 2: %s' % self._bounds2.tolist(),
        ]
        if self.fit_error is not None:
            lines.append('Fit error: %g' % self.fit_error)
        if self.nonconverged:
            lines.append('Newton-Raphson did not converge in: %s' % ', '.join(self.nonconverged))
        for k, b in enumerate(self._breakpoints):
            lines.append('Breakpoints in direction %d: %s' % (k, b.tolist()))
        return '\n'.join(lines)
