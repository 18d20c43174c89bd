"""Global numbering of degrees of freedom across patch interfaces.

Each patch numbers its basis functions locally. A :class:`DofMapper` merges
the local degrees of freedom of conforming interfaces, i.e., interfaces whose
:class:`.InterfaceRemap` is affine and matching and whose two sides carry the
same univariate bases (up to reparametrization and orientation). The local
dofs of all patches are concatenated in patch order; identified dofs share one
global index. Global indices are assigned in the order in which their first
local dof occurs.

Interfaces which do not meet these conditions are left uncoupled; their remaps
are available in :attr:`DofMapper.uncoupled` for assemblers which enforce
continuity weakly.
"""
import logging

import networkx as nx
import numpy as np
import scipy.sparse

from .remap import InterfaceRemap
from .tensorbasis import TensorBSplineBasis

logger = logging.getLogger(__name__)


def _normalized_knots(kv, flip=False):
    a, b = kv.support()
    t = (kv.kv - a) / (b - a)
    if flip:
        t = 1.0 - t[::-1]
    return t


class DofMapper:
    """Global dof numbering for a :class:`.MultiPatch`.

    Args:
        mp (:class:`.MultiPatch`): the multipatch
        conforming_only (bool): only couple conforming interfaces; this is
            currently the only supported mode

    Attributes:
        coupled (list): the interfaces whose dofs were merged, as `(interface, remap)` pairs
        uncoupled (list): the remaining interfaces, as `(interface, remap)` pairs
    """
    def __init__(self, mp, conforming_only=True):
        if not conforming_only:
            raise NotImplementedError('only conforming interfaces can be coupled')
        self._mp = mp
        self._generation = mp.generation
        self.N = [B.numdofs for B in mp.bases]
        self.N_ofs = np.concatenate(([0], np.cumsum(self.N))).astype(int)
        self.coupled = []
        self.uncoupled = []

        G = nx.Graph()
        G.add_nodes_from(range(self.N_ofs[-1]))
        for intf in mp.interfaces:
            remap = InterfaceRemap(mp, intf)
            pairs = self._match_dofs(intf, remap)
            if pairs is None:
                self.uncoupled.append((intf, remap))
                continue
            d1, d2 = pairs
            G.add_edges_from(zip(d1 + self.N_ofs[intf.first.patch],
                                 d2 + self.N_ofs[intf.second.patch]))
            self.coupled.append((intf, remap))

        rep = np.arange(self.N_ofs[-1])
        for comp in nx.connected_components(G):
            comp = list(comp)
            rep[comp] = min(comp)
        _, self._global, counts = np.unique(rep, return_inverse=True, return_counts=True)
        self._shared = counts[self._global] > 1
        logger.debug('DofMapper: %d local dofs, %d global dofs, %d coupled and %d uncoupled interfaces',
                self.num_local_dofs, self.num_free_dofs, len(self.coupled), len(self.uncoupled))

    def _match_dofs(self, intf, remap):
        """Pairs of local dof indices identified by a conforming interface,
        or None if the interface is not conforming."""
        B1, B2 = self._mp.bases[intf.first.patch], self._mp.bases[intf.second.patch]
        if not (isinstance(B1, TensorBSplineBasis) and isinstance(B2, TensorBSplineBasis)):
            return None
        if not (remap.is_affine() and remap.is_matching()):
            return None
        first, second = intf.first, intf.second
        for k in intf.free_directions():
            kv1, kv2 = B1.kvs[k], B2.kvs[intf.dir_map[k]]
            if kv1.p != kv2.p or kv1.numknots != kv2.numknots:
                return None
            if not np.allclose(_normalized_knots(kv1),
                               _normalized_knots(kv2, flip=not intf.orientation[k])):
                return None

        d1 = B1.boundary_dofs(first.bdspec)
        M1 = B1.unravel_index(d1)
        M2 = np.empty_like(M1)
        for k in range(B1.dim):
            j = intf.dir_map[k]
            if k == first.axis:
                M2[:, j] = 0 if second.side == 0 else B2.shape[j] - 1
            elif intf.orientation[k]:
                M2[:, j] = M1[:, k]
            else:
                M2[:, j] = B2.shape[j] - 1 - M1[:, k]
        return d1, B2.ravel_index(M2)

    def _check(self):
        self._mp.check_generation(self._generation)

    @property
    def num_local_dofs(self):
        """Total number of dofs of all patches before merging."""
        return int(self.N_ofs[-1])

    @property
    def num_free_dofs(self):
        """Number of global dofs after merging interface dofs."""
        return int(self._global.max()) + 1 if len(self._global) else 0

    numdofs = num_free_dofs

    @property
    def patch_slices(self):
        """Slices of the concatenated local dof vector belonging to each patch."""
        return [slice(self.N_ofs[p], self.N_ofs[p+1]) for p in range(len(self.N))]

    def index(self, local, patch):
        """Global index of the local dof(s) `local` of `patch`."""
        self._check()
        g = self._global[self.N_ofs[patch] + np.asarray(local)]
        return int(g) if g.ndim == 0 else g

    def global_indices(self, patch):
        """Global indices of all local dofs of `patch`, in local order."""
        self._check()
        return self._global[self.patch_slices[patch]].copy()

    def is_coupled(self, local, patch):
        """Whether the local dof(s) are shared with another patch."""
        self._check()
        c = self._shared[self.N_ofs[patch] + np.asarray(local)]
        return bool(c) if c.ndim == 0 else c

    def coupling_matrix(self):
        """Sparse matrix of shape `num_local_dofs × num_free_dofs` which maps
        global coefficients to the concatenated local coefficients."""
        self._check()
        n = self.num_local_dofs
        return scipy.sparse.csr_matrix((np.ones(n), (np.arange(n), self._global)),
                shape=(n, self.num_free_dofs))
