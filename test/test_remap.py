import pytest

from thbiga.remap import *
from thbiga import bspline, geometry, remap
from thbiga.tensorbasis import TensorBSplineBasis
from thbiga.topology import MultiPatch, PatchSide, make_interface
from thbiga.errors import (DimensionMismatch, LogicError, NoConvergenceError,
        NonConvergenceWarning, StaleHandle, UnsupportedDimension)

from numpy.random import rand

def _two_squares(p=2, n1=8, n2=8):
    B1 = TensorBSplineBasis((bspline.make_knots(p, 0.0, 1.0, n1),) * 2)
    B2 = TensorBSplineBasis((bspline.make_knots(p, 1.0, 2.0, n2),
                             bspline.make_knots(p, 0.0, 1.0, n2)))
    return MultiPatch([(geometry.unit_square(), B1),
                       (geometry.identity([(1.0, 2.0), (0.0, 1.0)]), B2)])

def _curved_pair():
    # second patch: x = 1 + u, y = 0.9 v + 0.1 v^2
    curve = bspline.BSplineFunc(bspline.make_knots(2, 0.0, 1.0, 1), [0.0, 0.45, 1.0])
    G2 = geometry.tensor_product(geometry.line_segment(1.0, 2.0), curve)
    return MultiPatch([geometry.unit_square(4), G2])

def _physical_match(mp, r, n=20):
    intf = r.interface
    B = r.parameter_bounds(1)
    X1 = np.empty((n, 2))
    X1[:, :] = B[:, 0] + rand(n, 2) * (B[:, 1] - B[:, 0])
    P1 = mp.patches[intf.first.patch].eval(X1)
    P2 = mp.patches[intf.second.patch].eval(r.eval(X1))
    return np.max(np.abs(P1 - P2))

def test_two_squares():
    mp = _two_squares()
    assert len(mp.interfaces) == 1
    r = InterfaceRemap(mp, mp.interfaces[0])
    assert r.is_affine()
    assert r.is_matching()
    assert r.fit_error is None
    assert r.nonconverged == []
    br = r.breakpoints()
    assert np.array_equal(br[0], [1.0])
    assert np.allclose(br[1], np.linspace(0, 1, 9))
    X = np.stack((np.ones(5), np.linspace(0, 1, 5)), axis=1)
    assert np.allclose(r.eval(X), X)
    assert np.allclose(r((1.0, 0.3)), (1.0, 0.3))
    assert np.allclose(r.parameter_bounds(1), [(1, 1), (0, 1)])
    assert np.allclose(r.parameter_bounds(2), [(1, 1), (0, 1)])
    assert 'Affine: yes' in r.describe()
    assert 'Matching: yes' in str(r)

def test_affine_roundtrip():
    mp = _two_squares()
    r = InterfaceRemap(mp, mp.interfaces[0])
    X = np.stack((np.ones(10), rand(10)), axis=1)
    assert np.max(np.abs(r.inverse(r.eval(X)) - X)) < 1e-10
    # viewed from the other side
    r2 = InterfaceRemap(mp, mp.interfaces[0].swapped())
    assert r2.is_affine() and r2.is_matching()
    assert np.max(np.abs(r2.eval(r.eval(X)) - X)) < 1e-10

def test_nonconforming_breakpoints():
    mp = _two_squares(n1=8, n2=3)
    r = InterfaceRemap(mp, mp.interfaces[0])
    assert r.is_matching()
    br = r.breakpoints()[1]
    expected = np.union1d(np.linspace(0, 1, 9), np.linspace(0, 1, 4))
    assert np.allclose(br, expected)

def test_flipped():
    G2 = geometry.bilinear_quad([(1, 1), (2, 1), (1, 0), (2, 0)])
    mp = MultiPatch([geometry.unit_square(2), G2])
    intf = mp.interfaces[0]
    assert intf.orientation == (True, False)
    r = InterfaceRemap(mp, intf)
    assert r.is_affine() and r.is_matching()
    assert np.allclose(r.eval((1.0, 0.25)), (0.0, 0.75))
    X = np.stack((np.ones(10), rand(10)), axis=1)
    assert np.max(np.abs(r.inverse(r.eval(X)) - X)) < 1e-10
    assert _physical_match(mp, r) < 1e-10
    assert np.allclose(r.breakpoints()[1], [0.0, 0.5, 1.0])

def test_nonmatching():
    G2 = geometry.identity([(1.0, 2.0), (0.0, 1.0)]).translate((0.0, 0.5))
    mp = MultiPatch([geometry.unit_square(4), G2], interfaces=[])
    mp.add_interface(0, 'right', 1, 'left')
    r = InterfaceRemap(mp, mp.interfaces[0])
    assert not r.is_matching()
    assert r.is_affine()
    assert np.allclose(r.parameter_bounds(1), [(1, 1), (0.5, 1)])
    assert np.allclose(r.parameter_bounds(2), [(1, 1), (0, 0.5)])
    assert np.allclose(r.eval((1.0, 0.75)), (1.0, 0.25))
    assert np.allclose(r.breakpoints()[1], [0.5, 0.75, 1.0])
    assert 'Matching: no' in r.describe()
    # ending on the bounds is not a failure, even in strict mode
    assert not InterfaceRemap(mp, mp.interfaces[0], strict=True).is_matching()

def test_clamping():
    G2 = geometry.identity([(1.0, 2.0), (0.0, 1.0)]).translate((0.0, 0.5))
    mp = MultiPatch([geometry.unit_square(4), G2], interfaces=[])
    mp.add_interface(0, 'right', 1, 'left')
    r = InterfaceRemap(mp, mp.interfaces[0])
    # points outside the interface bounds are moved onto them
    assert np.allclose(r.eval((1.0, 0.1)), (1.0, 0.0))
    assert np.allclose(r.eval((0.3, 0.75)), (1.0, 0.25))
    assert np.allclose(r.inverse((1.0, 0.9)), (1.0, 1.0))

def test_quadrature():
    mp = _two_squares(n1=4, n2=2)
    r = InterfaceRemap(mp, mp.interfaces[0])
    X1, X2, w = r.quadrature(3)
    assert X1.shape == X2.shape == (12, 2)
    assert np.allclose(X1[:, 0], 1.0)
    assert np.allclose(X1, X2)
    assert np.isclose(w.sum(), 1.0)
    assert np.isclose(np.dot(w, X1[:, 1]**2), 1.0 / 3.0)

def test_fitted_stretched():
    # parameter domain [0,1] x [0,2] mapped onto [1,2] x [0,1]
    G2 = geometry.tensor_product(geometry.line_segment(1.0, 2.0),
            geometry.line_segment(0.0, 1.0, support=(0.0, 2.0)))
    mp = MultiPatch([geometry.unit_square(), G2])
    r = InterfaceRemap(mp, mp.interfaces[0], check_affine=AFFINE_NEVER)
    assert not r.is_affine()
    assert r.is_matching()
    assert r.fit_error is not None and r.fit_error < 1e-4
    assert r.nonconverged == []
    assert np.allclose(r.eval((1.0, 0.25)), (0.0, 0.5), atol=1e-4)
    assert _physical_match(mp, r) < 1e-4
    assert 'Fit error' in r.describe()
    with pytest.raises(LogicError):
        r.inverse((0.0, 0.5))
    # the affine check recognizes the map
    assert InterfaceRemap(mp, mp.interfaces[0]).is_affine()

def test_fitted_curved():
    mp = _curved_pair()
    r = InterfaceRemap(mp, mp.interfaces[0])
    assert not r.is_affine()
    assert r.is_matching()
    assert r.fit_error < 1e-4
    assert _physical_match(mp, r) < 1e-4
    br = r.breakpoints()
    assert np.array_equal(br[0], [1.0])
    assert np.allclose(br[1], [0.0, 0.25, 0.5, 0.75, 1.0], atol=1e-6)
    X1, X2, w = r.quadrature(2)
    assert np.isclose(w.sum(), 1.0)
    P1 = mp.patches[0].eval(X1)
    P2 = mp.patches[1].eval(X2)
    assert np.max(np.abs(P1 - P2)) < 1e-4

def test_assume_affine():
    mp = _curved_pair()
    r = InterfaceRemap(mp, mp.interfaces[0], check_affine=AFFINE_ALWAYS)
    assert r.is_affine()
    assert np.allclose(r.eval((1.0, 0.5)), (0.0, 0.5))

def test_unsupported_dimension():
    curve = bspline.BSplineFunc(bspline.make_knots(2, 0.0, 1.0, 1), [0.0, 0.45, 1.0])
    G2 = geometry.tensor_product(geometry.line_segment(1.0, 2.0), curve,
            geometry.line_segment(0.0, 1.0))
    mp = MultiPatch([geometry.unit_cube(), G2])
    assert len(mp.interfaces) == 1
    with pytest.raises(UnsupportedDimension):
        InterfaceRemap(mp, mp.interfaces[0])
    # affine interfaces work in 3D
    mp = MultiPatch([geometry.unit_cube(num_intervals=2), geometry.unit_cube().translate((1, 0, 0))])
    r = InterfaceRemap(mp, mp.interfaces[0])
    assert r.is_affine() and r.is_matching()
    br = r.breakpoints()
    assert np.array_equal(br[0], [1.0])
    assert np.allclose(br[1], [0, 0.5, 1]) and np.allclose(br[2], [0, 0.5, 1])
    X1, X2, w = r.quadrature(2)
    assert X1.shape == (16, 3)
    assert np.isclose(w.sum(), 1.0)

def test_dimension_mismatch():
    mp = _two_squares()
    # bypass the checks of MultiPatch.add_patch
    cube = geometry.unit_cube()
    mp.patches.append(cube)
    mp.bases.append(TensorBSplineBasis(cube.kvs))
    intf = make_interface(PatchSide(0, 0, 1), PatchSide(2, 0, 0), 2)
    with pytest.raises(DimensionMismatch):
        InterfaceRemap(mp, intf)

def test_stale_handle():
    mp = _two_squares()
    r = InterfaceRemap(mp, mp.interfaces[0])
    r.eval((1.0, 0.5))
    mp.uniform_refine()
    with pytest.raises(StaleHandle):
        r.eval((1.0, 0.5))
    with pytest.raises(StaleHandle):
        r.breakpoints()
    with pytest.raises(StaleHandle):
        r.is_matching()

def test_nonconvergence(monkeypatch):
    monkeypatch.setattr(remap, 'NEWTON_MAXITER', 0)
    mp = _curved_pair()
    with pytest.warns(NonConvergenceWarning):
        r = InterfaceRemap(mp, mp.interfaces[0])
    assert 'fit' in r.nonconverged
    assert 'Newton-Raphson did not converge' in r.describe()
    with pytest.raises(NoConvergenceError):
        InterfaceRemap(mp, mp.interfaces[0], strict=True)
