import copy

import pytest

from thbiga.hierarchical import *
from thbiga import bspline
from thbiga.errors import LogicError, OutOfDomain

from numpy.random import rand

def _make_hb(p=2, n=4, dim=2):
    kv = bspline.make_knots(p, 0.0, 1.0, n)
    return HTensorBasis(dim * (kv,))

def create_example(p, dim, n0, num_levels=3, cls=HTensorBasis):
    hb = cls(dim * (bspline.make_knots(p, 0.0, 1.0, n0),))
    delta = 0.5
    for lv in range(num_levels):
        hb.refine_region(lv, lambda *X: min(X) > 1 - delta**(lv+1))
    return hb

def test_single_level():
    hb = _make_hb()
    assert hb.num_levels == 1
    assert hb.numactive == (36,)
    assert hb.numdofs == 36
    assert hb.num_elements == 16
    X = rand(10, 2)
    assert np.allclose(hb.eval(X).toarray(), hb.basis_of_level(0).eval(X).toarray())

def test_insert_box():
    hb = _make_hb()
    # lower left quadrant, given in cells of level 1
    assert hb.insert_box(1, (0, 0), (4, 4))
    assert hb.num_levels == 2
    assert hb.numactive == (32, 16)
    assert hb.numdofs == 48
    assert np.array_equal(hb.refinement_region(1)[:4, :4], np.ones((4, 4), dtype=bool))
    assert np.count_nonzero(hb.refinement_region(1)) == 16
    # inserting the same box again has no effect
    assert not hb.insert_box(1, (0, 0), (4, 4))
    assert hb.numdofs == 48
    # empty and clipped boxes
    assert not hb.insert_box(1, (3, 3), (3, 5))
    assert not hb.insert_box(1, (-2, -2), (2, 2))
    with pytest.raises(ValueError):
        hb.insert_box(1, (0, 0, 0), (1, 1, 1))

def test_nested_regions():
    hb = _make_hb()
    # a box on level 2 creates level 1 and marks the covering cells there
    hb.insert_box(2, (3, 5), (6, 7))
    assert hb.num_levels == 3
    R1 = hb.refinement_region(1)
    assert np.array_equal(np.argwhere(R1), [(1, 2), (1, 3), (2, 2), (2, 3)])
    R2 = hb.refinement_region(2)
    assert np.count_nonzero(R2) == 6
    for lv in (1, 2):
        coarse = hb.refinement_region(lv - 1)
        fine = hb.refinement_region(lv)
        parents = np.argwhere(fine) // 2
        assert coarse[tuple(parents.T)].all()

def test_lazy_levels():
    hb = _make_hb()
    # a region function which marks nothing still creates the next level
    assert not hb.refine_region(0, lambda x, y: False)
    assert hb.num_levels == 2
    assert hb.numactive == (36, 0)
    with pytest.raises(LogicError):
        hb.basis_of_level(2)
    with pytest.raises(LogicError):
        hb.refine_region(3, lambda x, y: True)

def test_refine_region():
    hb1 = _make_hb()
    hb1.insert_box(1, (0, 0), (4, 4))
    hb2 = _make_hb()
    assert hb2.refine_region(0, lambda x, y: x < 0.5 and y < 0.5)
    assert hb1.numactive == hb2.numactive
    for lv in range(2):
        assert np.array_equal(hb1.refinement_region(lv), hb2.refinement_region(lv))

def test_insert_boxes():
    hb1 = _make_hb()
    hb1.insert_box(1, (0, 0), (4, 4))
    hb1.insert_box(2, (0, 0), (2, 2))
    hb2 = _make_hb()
    assert hb2.insert_boxes([(1, (0, 0), (4, 4)), (2, (0, 0), (2, 2))])
    assert hb1.numactive == hb2.numactive
    assert hb1.num_levels == hb2.num_levels == 3

def test_indices():
    hb = _make_hb()
    hb.insert_box(1, (0, 0), (4, 4))
    for i in (0, 17, 31, 32, 47):
        lv = hb.level_of(i)
        j = hb.flat_tensor_index_of(i)
        assert hb.global_index(lv, j) == i
        assert j in hb.active_indices(lv)
    assert hb.level_of(31) == 0 and hb.level_of(32) == 1
    assert hb.level_slice(1) == slice(32, 48)
    # function (0,0) on level 0 is deactivated
    with pytest.raises(LogicError):
        hb.global_index(0, 0)
    with pytest.raises(IndexError):
        hb.level_of(48)
    assert np.allclose(hb.function_support(32), ((0.0, 0.125), (0.0, 0.125)))

def test_active_functions():
    hb = _make_hb()
    hb.insert_box(1, (0, 0), (4, 4))
    assert np.array_equal(hb.active_level_at([(0.1, 0.1), (0.8, 0.8), (0.5, 0.2)]), [1, 0, 0])
    act = hb.active_functions((0.8, 0.8))
    assert len(act) == 9 and all(lv == 0 for (lv, _) in act)
    act = hb.active_functions((0.1, 0.1))
    assert len(act) == 14
    assert sum(1 for (lv, _) in act if lv == 1) == 9
    # in canonical order
    idx = hb.active_indices_at((0.1, 0.1))
    assert np.all(np.diff(idx) > 0)
    # all other functions vanish at the point
    M = hb.eval((0.1, 0.1)).toarray().ravel()
    others = np.setdiff1d(np.arange(hb.numdofs), idx)
    assert np.allclose(M[others], 0.0)
    with pytest.raises(OutOfDomain):
        hb.active_functions((1.2, 0.5))

def test_cells():
    hb = _make_hb()
    hb.insert_box(1, (0, 0), (4, 4))
    assert hb.num_elements == 28
    cells = hb.active_cells()
    assert len(cells[0]) == 12 and len(cells[1]) == 16
    ext = hb.element_extents()
    assert ext.shape == (28, 2, 2)
    areas = np.prod(ext[:, :, 1] - ext[:, :, 0], axis=1)
    assert np.isclose(areas.sum(), 1.0)
    br = hb.boundary_breaks('left')
    assert np.array_equal(br[0], [0.0])
    assert np.allclose(br[1], [0, 0.125, 0.25, 0.375, 0.5, 0.75, 1.0])

def test_cells_three_levels():
    hb = create_example(p=2, dim=2, n0=4, num_levels=2)
    assert hb.num_levels == 3
    ext = hb.element_extents()
    assert ext.shape[0] == hb.num_elements
    areas = np.prod(ext[:, :, 1] - ext[:, :, 0], axis=1)
    assert np.isclose(areas.sum(), 1.0)
    # the finest elements lie in the refined corner
    fine = ext[-len(hb.active_cells(2)):]
    assert np.all(fine[:, :, 0] >= 0.75 - 1e-12)

def test_boundary_dofs():
    hb = _make_hb()
    hb.insert_box(1, (0, 0), (4, 4))
    bd = hb.boundary_dofs('left')
    # level 0: functions (0, j) with j >= 2; level 1: functions (0, j) with j < 4
    assert len(bd) == 4 + 4
    t = np.linspace(0, 1, 17)
    M = hb.eval(np.stack((np.zeros_like(t), t), axis=1)).toarray()
    others = np.setdiff1d(np.arange(hb.numdofs), bd)
    assert np.allclose(M[:, others], 0.0)

def test_uniform_refine():
    hb = _make_hb()
    hb.insert_box(1, (0, 0), (4, 4))
    hb.uniform_refine()
    assert hb.num_levels == 2
    assert hb.basis_of_level(0).mesh_shape == (8, 8)
    assert hb.numactive == (84, 64)
    assert np.count_nonzero(hb.refinement_region(1)) == 64

def test_represent_fine():
    hb = create_example(p=2, dim=2, n0=4, num_levels=2)
    R = hb.represent_fine()
    B = hb.basis_of_level(hb.max_level)
    assert R.shape == (B.numdofs, hb.numdofs)
    X = rand(20, 2)
    assert np.allclose(hb.eval(X).toarray(), B.eval(X).dot(R).toarray())
    # representation on an intermediate level leaves out finer functions
    R1 = hb.represent_fine(1)
    assert R1.shape[0] == hb.basis_of_level(1).numdofs
    assert R1[:, hb.level_slice(2)].nnz == 0
    # derivatives are consistent with the representation
    for D, DB in zip(hb.deriv(X), B.deriv(X)):
        assert np.allclose(D.toarray(), DB.dot(R).toarray())

def test_hb_linear_independence():
    hb = create_example(p=3, dim=2, n0=4, num_levels=2)
    R = hb.represent_fine().toarray()
    assert np.linalg.matrix_rank(R) == hb.numdofs

def test_transfer():
    hb = _make_hb()
    hb.insert_box(1, (0, 0), (4, 4))
    old = copy.deepcopy(hb)
    assert hb.insert_box(2, (0, 0), (4, 4))
    T = hb.transfer(old)
    assert T.shape == (hb.numdofs, old.numdofs)
    c = rand(old.numdofs)
    X = rand(25, 2)
    assert np.allclose(old.eval(X).dot(c), hb.eval(X).dot(T.dot(c)))
    # functions which stay active are mapped to themselves
    for i in range(old.numdofs):
        lv, j = old.level_of(i), old.flat_tensor_index_of(i)
        if j in hb.active_indices(lv):
            col = T[:, i].toarray().ravel()
            assert np.allclose(col, np.eye(hb.numdofs)[hb.global_index(lv, j)])
    # transfer from a single level
    coarse = _make_hb()
    T0 = hb.transfer(coarse)
    c = rand(coarse.numdofs)
    assert np.allclose(coarse.eval(X).dot(c), hb.eval(X).dot(T0.dot(c)))

def test_transfer_not_nested():
    hb = _make_hb()
    hb.insert_box(1, (0, 0), (4, 4))
    other = _make_hb()
    other.insert_box(1, (4, 4), (8, 8))
    with pytest.raises(LogicError):
        hb.transfer(other)
    refined = copy.deepcopy(hb)
    refined.uniform_refine()
    with pytest.raises(LogicError):
        refined.transfer(hb)
