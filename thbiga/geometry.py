"""Functions for creating tensor product B-spline geometry maps and for
inverting them by Newton-Raphson iteration.

All geometries are :class:`.BSplineFunc` instances whose parametric
directions and physical coordinates are both in xyz order.
"""
import collections
import functools
import logging
import warnings

import numpy as np

from . import bspline
from .bspline import BSplineFunc
from .errors import NoConvergenceError, NonConvergenceWarning

logger = logging.getLogger(__name__)

NewtonResult = collections.namedtuple('NewtonResult',
        ['x', 'converged', 'num_iter', 'residual', 'projected'])


def newton_raphson(geo, x, seed=None, tol=1e-8, maxiter=100, bounds=None,
                   strict=False, full_output=False):
    """Find the parameter `xi` with ``geo(xi) = x`` by Gauss-Newton iteration.

    Args:
        geo: the geometry map; must provide `eval`, `jacobian` and `support`
        x: the physical point to invert
        seed: the starting value (by default, the center of the parameter domain)
        tol (float): tolerance for the residual norm ``|geo(xi) - x|``
        maxiter (int): maximum number of iterations
        bounds: optionally, a sequence of `(lower, upper)` pairs per
            parametric direction; the iterates are clamped to this box
        strict (bool): if True, raise :class:`.NoConvergenceError` instead of
            warning if the iteration does not converge
        full_output (bool): if True, return a :class:`NewtonResult` instead
            of only the parameter

    If the iterates stop moving against an active bound while the residual is
    still above the tolerance, the target lies outside the image of the box
    and the iteration terminates with the closest parameter found (`projected`
    is set in the result). If they stall anywhere else, e.g., due to a
    singular Jacobian, or if the iteration cap is exhausted, a
    :class:`.NonConvergenceWarning` is issued and the last iterate is returned.
    """
    x = np.asarray(x, dtype=float)
    supp = np.array(geo.support, dtype=float).reshape((-1, 2))
    if seed is None:
        seed = supp.mean(axis=1)
    xi = np.array(seed, dtype=float).ravel()
    if bounds is not None:
        bounds = np.array(bounds, dtype=float).reshape((-1, 2))
        xi = np.clip(xi, bounds[:, 0], bounds[:, 1])

    converged = projected = False
    residual = np.inf
    it = 0
    while True:
        delta = np.ravel(x - geo.eval(xi[np.newaxis])[0])
        residual = np.linalg.norm(delta)
        if residual <= tol:
            converged = True
            break
        if it >= maxiter:
            break
        J = np.reshape(geo.jacobian(xi[np.newaxis])[0], (delta.size, xi.size))
        step = np.linalg.lstsq(J, delta, rcond=None)[0]
        xi_new = xi + step
        clamped = False
        if bounds is not None:
            xi_clip = np.clip(xi_new, bounds[:, 0], bounds[:, 1])
            clamped = bool(np.any(xi_clip != xi_new))
            xi_new = xi_clip
        it += 1
        if np.linalg.norm(xi_new - xi) <= tol * 1e-2:
            # stalled; only a stall against an active bound is a projection
            projected = clamped
            xi = xi_new
            break
        xi = xi_new

    logger.debug('newton_raphson: %d iterations, residual %g%s', it, residual,
            ' (projected onto bounds)' if projected else '')
    if not (converged or projected):
        if strict:
            raise NoConvergenceError('newton_raphson', it, xi)
        msg = 'Newton-Raphson iteration did not converge after %d iterations, residual %g' % (it, residual)
        logger.warning(msg)
        warnings.warn(msg, NonConvergenceWarning, stacklevel=2)
    if full_output:
        return NewtonResult(xi, converged, it, residual, projected)
    return xi

def invert_points(geo, X, seeds=None, **kwargs):
    """Apply :func:`newton_raphson` to each row of `X`.

    Returns the array of parameters and a boolean array which is True where
    the iteration converged or ended on the bounds.
    """
    X = np.atleast_2d(X)
    results = []
    for i in range(X.shape[0]):
        seed = None if seeds is None else seeds[i]
        results.append(newton_raphson(geo, X[i], seed=seed, full_output=True, **kwargs))
    xi = np.array([r.x for r in results])
    ok = np.array([r.converged or r.projected for r in results], dtype=bool)
    return xi, ok

################################################################################
# Examples of geometries
################################################################################

def unit_square(num_intervals=1, support=None):
    """Unit square with given number of intervals per direction.

    Returns:
        :class:`.BSplineFunc` 2D geometry
    """
    return unit_cube(dim=2, num_intervals=num_intervals, support=support)

def unit_cube(dim=3, num_intervals=1, support=None):
    """The `dim`-dimensional unit cube with `num_intervals` intervals
    per coordinate direction.

    Returns:
        :class:`.BSplineFunc` geometry
    """
    if support is None:
        support = dim * ((0.0, 1.0),)
    assert len(support) == dim, "Wrong dimension of support!"
    return functools.reduce(tensor_product,
            tuple(line_segment(0.0, 1.0, intervals=num_intervals, support=S) for S in support))

def identity(extents):
    """Identity mapping (using linear splines) over a d-dimensional box
    given by `extents` as a list of (min,max) pairs or of :class:`.KnotVector`.

    Returns:
        :class:`.BSplineFunc` geometry
    """
    # if any inputs are KnotVectors, extract their supports
    extents = [
        ex.support() if isinstance(ex, bspline.KnotVector) else ex
        for ex in extents
    ]
    return functools.reduce(tensor_product,
            (line_segment(ex[0], ex[1], support=ex) for ex in extents))

def bilinear_quad(corners, support=None):
    """Bilinear quadrilateral patch with the given corners.

    Args:
        corners: array of shape `(4, dim)` containing, in this order, the images
            of the parameter corners `(0,0)`, `(1,0)`, `(0,1)` and `(1,1)`
        support: optionally, the parameter domain as two `(min,max)` pairs

    Returns:
        :class:`.BSplineFunc` 2D geometry
    """
    P = np.asarray(corners, dtype=float)
    assert P.shape[0] == 4, 'need four corners'
    if support is None:
        support = ((0.0, 1.0), (0.0, 1.0))
    kvs = tuple(bspline.make_knots(1, a, b, 1) for (a, b) in support)
    coeffs = np.array([[P[0], P[2]], [P[1], P[3]]])     # indexed by (i_x, i_y)
    return BSplineFunc(kvs, coeffs)

################################################################################
# Functions for creating curves
################################################################################

def line_segment(x0, x1, intervals=1, support=None):
    """Return a :class:`.BSplineFunc` which describes the line between the
    vectors `x0` and `x1`.

    If specified, `support` describes the parameter interval of the curve;
    by default, it is the interval (0,1).

    If specified, `intervals` is the number of intervals in the underlying
    linear spline space. By default, the minimal spline space with 2 dofs is
    used.
    """
    if np.isscalar(x0): x0 = [x0]
    if np.isscalar(x1): x1 = [x1]
    assert len(x0) == len(x1), 'Vectors must have same dimension'
    # produce 1D arrays
    x0 = np.array(x0, dtype=float).ravel()
    x1 = np.array(x1, dtype=float).ravel()
    # interpolate linearly
    S = np.linspace(0.0, 1.0, intervals+1).reshape((intervals+1, 1))
    coeffs = (1-S) * x0 + S * x1
    a, b = support if support is not None else (0.0, 1.0)
    return BSplineFunc(bspline.make_knots(1, a, b, intervals), coeffs)

################################################################################
# Operations on geometries
################################################################################

def tensor_product(G1, G2, *Gs):
    r"""Compute the tensor product of two or more :class:`.BSplineFunc` functions.
    This means that given two input functions

    .. math:: G_1(x), G_2(y),

    it returns a new function

    .. math:: G(x,y) = G_1(x) \times G_2(y),

    where :math:`\times` means that vectors are joined together.
    The result has source dimension (:attr:`.BSplineFunc.sdim`) equal to the
    sum of the source dimensions of the input functions, and target dimension
    (:attr:`.BSplineFunc.dim`) equal to the sum of the target dimensions of the
    input functions.
    """
    if Gs != ():
        return tensor_product(G1, tensor_product(G2, *Gs))
    Cs = []
    for G in (G1, G2):
        C = G.coeffs
        if G.is_scalar():
            C = C[..., np.newaxis]
        assert C.ndim == G.sdim + 1, 'only implemented for scalar- or vector-valued functions'
        Cs.append(C)

    SD1, SD2 = (C.shape[:G.sdim] for (C, G) in zip(Cs, (G1, G2)))
    VD1, VD2 = Cs[0].shape[-1], Cs[1].shape[-1]
    C1 = np.broadcast_to(Cs[0].reshape(SD1 + len(SD2) * (1,) + (VD1,)), SD1 + SD2 + (VD1,))
    C2 = np.broadcast_to(Cs[1].reshape(len(SD1) * (1,) + SD2 + (VD2,)), SD1 + SD2 + (VD2,))
    return BSplineFunc(G1.kvs + G2.kvs, np.concatenate((C1, C2), axis=-1))
