"""Multi-patch topology: patches, their sides and the interfaces between them.

A side of a patch is described by a :class:`PatchSide` `(patch, axis, side)`,
where `axis` is the parametric direction which is constant along the side and
`side` is 0 for the lower and 1 for the upper end of the parameter interval.

An :class:`Interface` connects two sides. Its direction map and orientation
describe how the local coordinate axes correspond:

* ``dir_map[k]`` is the direction of the second patch which corresponds to
  direction `k` of the first patch; in particular, ``dir_map[first.axis] ==
  second.axis``;
* ``orientation[k]`` is True if direction `k` of the first patch and direction
  ``dir_map[k]`` of the second patch run the same way. For the fixed direction,
  this is True iff the two sides lie on opposite ends of their intervals.

A :class:`MultiPatch` owns the geometries and bases of all patches. Every
structural change (adding patches or interfaces, refining a basis) increases
its :attr:`MultiPatch.generation`; objects derived from a multipatch, such as
:class:`.InterfaceRemap`, record the generation at which they were created and
refuse to work once it has changed.
"""
import collections
import itertools
import logging

import networkx as nx
import numpy as np
import scipy.spatial

from .bspline import _parse_bdspec
from .errors import DimensionMismatch, LogicError, StaleHandle
from .hierarchical import HTensorBasis
from .tensorbasis import TensorBSplineBasis

logger = logging.getLogger(__name__)


class PatchSide(collections.namedtuple('PatchSide', ['patch', 'axis', 'side'])):
    """One side of the boundary of a patch."""
    __slots__ = ()

    @property
    def index(self):
        """Integer index `2*axis + side` of this side within its patch."""
        return 2 * self.axis + self.side

    @property
    def bdspec(self):
        return (self.axis, self.side)

    def parameter_value(self, domain):
        """Value of the fixed coordinate on this side for the given domain."""
        return domain[self.axis][self.side]


class Interface(collections.namedtuple('Interface', ['first', 'second', 'dir_map', 'orientation'])):
    """An interface between two patch sides; see the module documentation."""
    __slots__ = ()

    def swapped(self):
        """The same interface viewed from the second patch."""
        d = len(self.dir_map)
        inv = [0] * d
        orient = [True] * d
        for k in range(d):
            inv[self.dir_map[k]] = k
            orient[self.dir_map[k]] = self.orientation[k]
        return Interface(self.second, self.first, tuple(inv), tuple(orient))

    def free_directions(self):
        """Directions of the first patch along the interface."""
        return tuple(k for k in range(len(self.dir_map)) if k != self.first.axis)


def make_interface(side1, side2, dim, dir_map=None, orientation=None):
    """Create an :class:`Interface` with the default direction map (free
    directions of both sides matched in increasing order) unless given."""
    if dir_map is None:
        free1 = [k for k in range(dim) if k != side1.axis]
        free2 = [k for k in range(dim) if k != side2.axis]
        dm = [0] * dim
        dm[side1.axis] = side2.axis
        for (k1, k2) in zip(free1, free2):
            dm[k1] = k2
        dir_map = tuple(dm)
    if orientation is None:
        orientation = dim * (True,)
    orientation = list(bool(o) for o in orientation)
    orientation[side1.axis] = (side1.side != side2.side)
    dir_map = tuple(int(k) for k in dir_map)
    if sorted(dir_map) != list(range(dim)) or dir_map[side1.axis] != side2.axis:
        raise ValueError('invalid direction map %s' % (dir_map,))
    return Interface(side1, side2, dir_map, tuple(orientation))

################################################################################
# interface detection
################################################################################

# helper functions for interface detection
def _bb_rect(G):
    # geo bounding box as a Rectangle
    bb = G.bounding_box()
    return scipy.spatial.Rectangle(
        tuple(bb_i[0] for bb_i in bb),
        tuple(bb_i[1] for bb_i in bb))

def _side_corners(G, axis, side):
    bd = G.boundary((axis, side))
    return bd.grid_eval([np.array(s) for s in bd.support])

def _check_corner_match(C1, C2, atol):
    # check if the corners of two sides match with any possible permutation and flip
    sdim = C1.ndim - 1
    for perm in itertools.permutations(range(sdim)):
        for flip in itertools.product(*(sdim * [(False, True)])):
            X2 = C2
            for (j, f) in enumerate(flip):
                if f: X2 = np.flip(X2, axis=j)
            X2 = X2.transpose(perm + (sdim,))
            if np.allclose(C1, X2, atol=atol, rtol=0):
                return True, (perm, flip)
    return False, (None, None)

def detect_interfaces(geos, tol=1e-10):
    """Automatically detect interfaces between patches by matching the corners
    of their sides.

    Args:
        geos: a list of geometry maps, all with the same source and target dimension
        tol (float): matching tolerance relative to the patch diameters

    Returns:
        A pair `(connected, interfaces)`, where `connected` is a `bool`
        describing whether the detected patch graph is connected, and
        `interfaces` is a list of the detected :class:`Interface` instances.
    """
    interfaces = []
    bbs = [_bb_rect(geo) for geo in geos]
    diams = [bb.max_distance_rectangle(bb) for bb in bbs]

    # set up a graph of patch connectivity for later checking
    patch_graph = nx.Graph()
    patch_graph.add_nodes_from(range(len(geos)))

    for p1 in range(len(geos)):
        for p2 in range(p1 + 1, len(geos)):
            G1, G2 = geos[p1], geos[p2]
            if G1.sdim != G2.sdim or G1.dim != G2.dim:
                continue
            maxdiam = max(diams[p1], diams[p2])
            if bbs[p1].min_distance_rectangle(bbs[p2]) >= tol * maxdiam:
                continue    # bounding boxes do not touch
            d = G1.sdim
            for (ax1, s1) in itertools.product(range(d), (0, 1)):
                C1 = _side_corners(G1, ax1, s1)
                for (ax2, s2) in itertools.product(range(d), (0, 1)):
                    C2 = _side_corners(G2, ax2, s2)
                    match, (perm, flip) = _check_corner_match(C1, C2, tol * maxdiam)
                    if not match:
                        continue
                    free1 = [k for k in range(d) if k != ax1]
                    free2 = [k for k in range(d) if k != ax2]
                    dir_map = [0] * d
                    orientation = [True] * d
                    dir_map[ax1] = ax2
                    for i in range(d - 1):
                        dir_map[free1[i]] = free2[perm[i]]
                        orientation[free1[i]] = not flip[perm[i]]
                    interfaces.append(make_interface(PatchSide(p1, ax1, s1),
                        PatchSide(p2, ax2, s2), d, dir_map, orientation))
                    patch_graph.add_edge(p1, p2)

    return nx.is_connected(patch_graph), interfaces

################################################################################
# MultiPatch
################################################################################

class MultiPatch:
    """Represents a multipatch domain, consisting of a number of patches
    together with their bases and the interfaces between them.

    Args:
        patches: optionally, a list of geometries or of `(geo, basis)` pairs
        interfaces: optionally, a list of :class:`Interface` instances. If not
            given, the interfaces are detected automatically
            (see :meth:`compute_topology`).

    Attributes:
        patches (list): the geometry maps (:class:`.BSplineFunc`)
        bases (list): the bases of the patches, either
            :class:`.TensorBSplineBasis` or hierarchical bases
        interfaces (list): the :class:`Interface` instances
    """
    def __init__(self, patches=(), interfaces=None):
        self.patches = []
        self.bases = []
        self.interfaces = []
        self._generation = 0
        for P in patches:
            if isinstance(P, tuple):
                self.add_patch(*P)
            else:
                self.add_patch(P)
        if interfaces is None:
            if self.patches:
                self.compute_topology()
        else:
            for intf in interfaces:
                self._add_interface(intf)

    def __str__(self):
        return '<MultiPatch patches=%d interfaces=%d generation=%d>' % (
            self.numpatches, len(self.interfaces), self._generation)

    @property
    def generation(self):
        """Counter which increases with every structural change."""
        return self._generation

    def _bump(self):
        self._generation += 1

    def check_generation(self, created):
        """Raise :class:`.StaleHandle` if the multipatch changed since generation `created`."""
        if created != self._generation:
            raise StaleHandle(created, self._generation)

    @property
    def numpatches(self):
        """Number of patches in the multipatch structure."""
        return len(self.patches)

    @property
    def dim(self):
        """Dimension of the parameter domains."""
        return self.patches[0].sdim

    @property
    def geo_dim(self):
        """Dimension of the physical space."""
        return self.patches[0].dim

    def side(self, patch, bdspec):
        axis, side = _parse_bdspec(bdspec, self.patches[patch].sdim)
        return PatchSide(patch, axis, side)

    def add_patch(self, geo, basis=None):
        """Add a patch with the given geometry; by default, its basis is the
        tensor product basis of the geometry. Returns the patch index."""
        if basis is None:
            basis = TensorBSplineBasis(geo.kvs)
        if basis.dim != geo.sdim:
            raise DimensionMismatch('basis of dimension %d for geometry of dimension %d'
                    % (basis.dim, geo.sdim))
        if self.patches and (geo.sdim != self.dim or geo.dim != self.geo_dim):
            raise DimensionMismatch('patch dimensions (%d, %d) differ from (%d, %d)'
                    % (geo.sdim, geo.dim, self.dim, self.geo_dim))
        if not np.allclose(basis.domain, geo.support):
            raise ValueError('basis domain %s does not match geometry support %s'
                    % (basis.domain, geo.support))
        self.patches.append(geo)
        self.bases.append(basis)
        self._bump()
        return len(self.patches) - 1

    def _add_interface(self, intf):
        G1, G2 = self.patches[intf.first.patch], self.patches[intf.second.patch]
        if G1.sdim != G2.sdim or G1.dim != G2.dim:
            raise DimensionMismatch('cannot join patches of dimensions (%d, %d) and (%d, %d)'
                    % (G1.sdim, G1.dim, G2.sdim, G2.dim))
        self.interfaces.append(intf)
        self._bump()

    def add_interface(self, p1, bdspec1, p2, bdspec2, dir_map=None, orientation=None):
        """Declare that side `bdspec1` of patch `p1` is glued to side
        `bdspec2` of patch `p2`.

        If `dir_map` is not given, the free directions of both sides are
        matched in increasing order. `orientation` defaults to all directions
        running the same way.
        """
        side1, side2 = self.side(p1, bdspec1), self.side(p2, bdspec2)
        intf = make_interface(side1, side2, self.dim, dir_map, orientation)
        self._add_interface(intf)
        return intf

    def compute_topology(self, tol=1e-10):
        """Detect all interfaces geometrically, replacing the current ones.

        Returns:
            bool: whether the patch graph is connected
        """
        connected, interfaces = detect_interfaces(self.patches, tol=tol)
        self.interfaces = interfaces
        self._bump()
        logger.debug('compute_topology: %d interfaces, connected=%s', len(interfaces), connected)
        return connected

    def is_connected(self):
        """Whether the graph of patches joined by interfaces is connected."""
        G = nx.Graph()
        G.add_nodes_from(range(self.numpatches))
        G.add_edges_from((intf.first.patch, intf.second.patch) for intf in self.interfaces)
        return self.numpatches > 0 and nx.is_connected(G)

    def interfaces_of(self, patch):
        """All interfaces involving the given patch, oriented such that it is
        the first patch."""
        result = []
        for intf in self.interfaces:
            if intf.first.patch == patch:
                result.append(intf)
            elif intf.second.patch == patch:
                result.append(intf.swapped())
        return result

    def boundaries(self):
        """All patch sides which are not part of an interface."""
        used = set()
        for intf in self.interfaces:
            used.add(intf.first)
            used.add(intf.second)
        return [PatchSide(p, ax, s)
                for p in range(self.numpatches)
                for ax in range(self.patches[p].sdim)
                for s in (0, 1)
                if PatchSide(p, ax, s) not in used]

    def set_basis(self, patch, basis):
        """Replace the basis of a patch."""
        if not np.allclose(basis.domain, self.patches[patch].support):
            raise ValueError('basis domain does not match geometry support')
        self.bases[patch] = basis
        self._bump()

    def uniform_refine(self, patch=None):
        """Refine the bases of all patches (or of only the given one) uniformly."""
        patches = range(self.numpatches) if patch is None else (patch,)
        for p in patches:
            B = self.bases[p]
            if isinstance(B, TensorBSplineBasis):
                self.bases[p] = B.uniform_refine()
            else:
                B.uniform_refine()
        self._bump()

    refine = uniform_refine

    def insert_box(self, patch, level, low, high):
        """Insert a refinement box into the hierarchical basis of a patch.

        Raises:
            LogicError: if the basis of the patch is not hierarchical
        """
        if not isinstance(self.bases[patch], HTensorBasis):
            raise LogicError('patch %d does not have a hierarchical basis' % patch)
        changed = self.bases[patch].insert_box(level, low, high)
        if changed:
            self._bump()
        return changed
