# -*- coding: utf-8 -*-
import pytest

from thbiga.bspline import *
from thbiga.errors import InvalidKnotVector

def test_invalid_knotvectors():
    with pytest.raises(InvalidKnotVector):
        KnotVector([0.0, 0.0, 1.0, 0.5, 1.0, 1.0], 1)     # not monotone
    with pytest.raises(InvalidKnotVector):
        KnotVector([0.0, 0.0, 0.0, 1.0, 1.0, 1.0], 1)     # multiplicity > p+1
    with pytest.raises(InvalidKnotVector):
        KnotVector([0.0, 0.0, 0.5, 1.0, 1.0], 2)          # too few knots
    with pytest.raises(InvalidKnotVector):
        KnotVector([0.0, 0.0, 1.0, 1.0], -1)
    with pytest.raises(InvalidKnotVector):
        KnotVector([0.0, 0.0, 0.0, 0.0], 1)               # empty domain
    # interior knot of multiplicity p+1 is admissible
    kv = KnotVector([0.0, 0.0, 0.0, 0.5, 0.5, 0.5, 1.0, 1.0, 1.0], 2)
    assert kv.numdofs == 6
    assert kv.multiplicity(0.5) == 3
    assert kv.multiplicity(0.25) == 0

def test_knotvector():
    kv = make_knots(3, 0.0, 1.0, 4)
    assert kv.numdofs == kv.numknots - kv.p - 1 == 7
    assert kv.numspans == 4
    assert np.allclose(kv.mesh, [0.0, 0.25, 0.5, 0.75, 1.0])
    assert kv.findspan(0.0) == 3
    assert kv.findspan(0.3) == 4
    assert kv.findspan(1.0) == 6        # last span includes the right end
    assert kv.first_active_at(0.3) == 1
    assert np.array_equal(kv.findcells([0.0, 0.3, 0.75, 1.0]), [0, 1, 3, 3])
    assert kv == make_knots(3, 0.0, 1.0, 4)
    assert kv != make_knots(2, 0.0, 1.0, 4)

def test_eval():
    kv = make_knots(4, 0.0, 1.0, 25)
    coeffs = np.random.rand(kv.numdofs)
    x = np.linspace(0.0, 1.0, 100)
    values = ev(kv, coeffs, x)
    values2 = collocation(kv, x).dot(coeffs)
    assert np.linalg.norm(values - values2) < 1e-10

def test_active_deriv():
    kv = make_knots(3, 0.0, 2.0, 7)
    x = np.random.rand(50) * 2.0
    coeffs = np.random.rand(kv.numdofs)
    allders = collocation_derivs(kv, x, derivs=2)
    for k in (1, 2):
        assert np.allclose(allders[k].dot(coeffs), deriv(kv, coeffs, k, x))
    # p+1 functions are active everywhere
    assert all(allders[0].getrow(i).nnz <= kv.p + 1 for i in range(len(x)))
    # partition of unity
    assert np.allclose(allders[0].sum(axis=1), 1.0)
    assert np.allclose(allders[1].sum(axis=1), 0.0)

def test_high_derivatives_vanish():
    kv = make_knots(2, 0.0, 1.0, 5)
    D = active_deriv(kv, np.linspace(0, 1, 13), 3)
    assert D.shape == (4, 3, 13)
    assert np.allclose(D[3], 0.0)
    # scalar input
    assert active_deriv(kv, 0.3, 1).shape == (2, 3)
    assert np.isclose(active_ev(kv, 0.3).sum(), 1.0)

def test_refine():
    kv = make_knots(2, 0.0, 1.0, 4)
    kv2 = kv.refine([0.1])
    assert kv2.p == kv.p and np.array_equal(kv2.kv,
            [0.0, 0.0, 0.0, 0.1, 0.25, 0.5, 0.75, 1.0, 1.0, 1.0])
    kv2 = kv.refine()
    assert kv2.p == kv.p and np.array_equal(kv2.kv, make_knots(2, 0.0, 1.0, 8).kv)

def test_prolongation():
    kv = make_knots(3, 0.0, 1.0, 10)
    coeffs = np.random.rand(kv.numdofs)
    kv2 = kv.refine()
    P = prolongation(kv, kv2)
    coeffs2 = P.dot(coeffs)
    x = np.linspace(0.0, 1.0, 100)
    assert np.allclose(ev(kv, coeffs, x), ev(kv2, coeffs2, x))

def test_knot_insertion():
    kv = make_knots(3, 0.0, 1.0, 4)
    coeffs = np.random.rand(kv.numdofs)
    P = knot_insertion(kv, 0.4)
    kv2 = kv.refine([0.4])
    x = np.linspace(0.0, 1.0, 50)
    assert P.shape == (kv.numdofs + 1, kv.numdofs)
    assert np.allclose(ev(kv, coeffs, x), ev(kv2, P.dot(coeffs), x))

def test_uniform_refinement():
    for kv in (make_knots(3, 0.0, 1.0, 5),
               KnotVector([0., 0., 0., 0.5, 0.5, 1., 1., 1.], 2)):
        kv2, P = uniform_refinement(kv)
        assert kv2 == kv.refine()
        assert P.shape == (kv2.numdofs, kv.numdofs)
        # same as the prolongation computed by interpolation
        assert np.allclose(P.toarray(), prolongation(kv, kv2).toarray())
        # partition of unity is preserved
        assert np.allclose(P.sum(axis=1), 1.0)
        assert P.min() >= 0.0

def test_fit_lsq():
    kv = make_knots(4, 0.0, 1.0, 6)
    t = np.linspace(0.0, 1.0, 11)
    # polynomials of degree <= 4 are reproduced exactly
    vals = np.stack((t**3 - t, 2*t + 1), axis=1)
    C = fit_lsq(kv, t, vals)
    assert C.shape == (kv.numdofs, 2)
    s = np.random.rand(20)
    F = BSplineFunc(kv, C)
    assert np.allclose(F.eval(s), np.stack((s**3 - s, 2*s + 1), axis=1))

def test_bsplinefunc():
    kvs = (make_knots(2, 0.0, 1.0, 3), make_knots(3, 0.0, 2.0, 4))
    coeffs = np.random.rand(kvs[0].numdofs, kvs[1].numdofs, 2)
    F = BSplineFunc(kvs, coeffs)
    assert F.sdim == 2 and F.dim == 2
    grid = (np.linspace(0, 1, 5), np.linspace(0, 2, 6))
    G = F.grid_eval(grid)
    X = np.array([(x, y) for x in grid[0] for y in grid[1]])
    assert np.allclose(F.eval(X), G.reshape((-1, 2)))
    # single point
    assert np.allclose(F.eval((0.5, 1.0)), F.eval([[0.5, 1.0]])[0])

def test_bsplinefunc_derivatives():
    kvs = (make_knots(3, 0.0, 1.0, 2), make_knots(3, 0.0, 1.0, 2))
    # f(x,y) = x^2 y + y^3, interpolated exactly
    g = [kv.greville() for kv in kvs]
    F = np.array([[x**2 * y + y**3 for y in g[1]] for x in g[0]])
    C = [collocation(kv, gk).toarray() for (kv, gk) in zip(kvs, g)]
    coeffs = np.linalg.solve(C[0], np.linalg.solve(C[1], F.T).T)
    f = BSplineFunc(kvs, coeffs)
    X = np.random.rand(10, 2)
    x, y = X[:, 0], X[:, 1]
    assert np.allclose(f.eval(X), x**2 * y + y**3)
    assert np.allclose(f.jacobian(X), np.stack((2*x*y, x**2 + 3*y**2), axis=-1))
    # pure derivatives first, then mixed
    assert np.allclose(f.hessian(X), np.stack((2*y, 6*y, 2*x), axis=-1))
    assert hessian_indices(3) == [(0,0), (1,1), (2,2), (0,1), (0,2), (1,2)]

def test_boundary():
    kvs = (make_knots(2, 0.0, 1.0, 3), make_knots(1, 0.0, 1.0, 2))
    coeffs = np.random.rand(kvs[0].numdofs, kvs[1].numdofs, 2)
    F = BSplineFunc(kvs, coeffs)
    t = np.linspace(0, 1, 7)
    right = F.boundary((0, 1))
    assert right.sdim == 1
    assert np.allclose(right.eval(t), F.eval(np.stack((np.ones(7), t), axis=1)))
    bottom = F.boundary('bottom')
    assert np.allclose(bottom.eval(t), F.eval(np.stack((t, np.zeros(7)), axis=1)))
    with pytest.raises(ValueError):
        F.boundary((2, 0))

def test_transformations():
    kvs = (make_knots(1, 0.0, 1.0, 1), make_knots(1, 0.0, 1.0, 1))
    coeffs = np.array([[[0., 0.], [0., 1.]], [[1., 0.], [1., 1.]]])
    F = BSplineFunc(kvs, coeffs)
    G = F.scale_axis(2.0, 1)
    assert np.allclose(G.eval((0.5, 0.5)), (0.5, 1.0))
    assert np.allclose(F.translate((1, 0)).eval((0.5, 0.5)), (1.5, 0.5))
    assert np.allclose(F.bounding_box(), ((0, 1), (0, 1)))
    assert np.allclose(F.find_inverse((0.25, 0.75)), (0.25, 0.75))
