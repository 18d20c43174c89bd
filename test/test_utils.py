from thbiga.utils import *
import pytest
from numpy.random import rand

def _random_banded(n, bw):
    return scipy.sparse.spdiags(rand(2*bw+1, n), np.arange(-bw,bw+1), n, n).tocsr()

def test_as_points():
    X, single = as_points((0.5, 0.25), 2)
    assert single and X.shape == (1, 2)
    X, single = as_points(rand(7, 3), 3)
    assert not single and X.shape == (7, 3)
    X, single = as_points(np.linspace(0, 1, 5), 1)
    assert not single and X.shape == (5, 1)
    X, single = as_points(0.3, 1)
    assert single and X.shape == (1, 1)
    with pytest.raises(ValueError):
        as_points((0.5, 0.25, 0.1), 2)
    with pytest.raises(ValueError):
        as_points(rand(4, 2), 3)

def test_multi_kron_sparse():
    As = (_random_banded(5, 1), _random_banded(4, 2), _random_banded(3, 0))
    X = multi_kron_sparse(As)
    Y = np.kron(As[0].toarray(), np.kron(As[1].toarray(), As[2].toarray()))
    assert X.shape == (60, 60)
    assert np.allclose(X.toarray(), Y)

def test_cartesian_product():
    X = cartesian_product((np.array([0, 1]), np.array([2, 3, 4])))
    assert np.array_equal(X, [[0,2], [0,3], [0,4], [1,2], [1,3], [1,4]])

def test_box_counts():
    mask = rand(7, 9, 4) < 0.4
    lo = [np.array([0, 2, 3]), np.array([1, 0]), np.array([0, 1, 2, 3])]
    hi = [np.array([4, 7, 3]), np.array([9, 5]), np.array([2, 4, 3, 4])]
    C = box_counts(mask, list(zip(lo, hi)))
    assert C.shape == (3, 2, 4)
    for i in range(3):
        for j in range(2):
            for k in range(4):
                expected = np.count_nonzero(mask[lo[0][i]:hi[0][i],
                                                 lo[1][j]:hi[1][j],
                                                 lo[2][k]:hi[2][k]])
                assert C[i, j, k] == expected
    # precomputed table gives the same result
    T = summed_area_table(mask)
    assert T.shape == (8, 10, 5)
    assert np.array_equal(box_counts(None, list(zip(lo, hi)), table=T), C)
