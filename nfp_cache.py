"""
NFP cache and work-item derivation

Each individual needs one inner NFP per part (part inside the bin) and one
outer NFP for every ordered pair of parts (earlier part fixed, later part
moving). The cache maps NfpKey -> NFP rings and is replaced every round: a
new cache holds only the entries the current population still references,
plus the freshly computed ones.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from geometry.clipper_ops import DEFAULT_CLIPPER_SCALE, minkowski_difference
from geometry.nfp import no_fit_polygon, no_fit_polygon_rectangle
from geometry.polygon import Containment, Point, Polygon, is_rectangle, point_in_polygon, polygon_area
from nesting_errors import GEOMETRY_ANOMALY, WORKER_FAILURE, error_handler, handle_errors

logger = logging.getLogger(__name__)

Ring = List[Point]


class NfpKey(NamedTuple):
    """Identity of one NFP: B placed inside/outside A at the given rotations"""
    a_id: int
    b_id: int
    inside: bool
    a_rotation: float
    b_rotation: float


@dataclass
class NfpPair:
    """One unit of NFP work: the two polygons, unrotated, and the key to compute"""
    key: NfpKey
    a: Polygon
    b: Polygon


class NfpCache:
    """Read-only mapping of NfpKey to NFP rings; updates return a new cache."""

    def __init__(self, entries: Optional[Mapping[NfpKey, List[Ring]]] = None):
        self._entries: Dict[NfpKey, List[Ring]] = dict(entries or {})

    def __contains__(self, key) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def get(self, key: NfpKey) -> Optional[List[Ring]]:
        return self._entries.get(key)

    def keys(self):
        return self._entries.keys()

    def subset(self, keys: Iterable[NfpKey]) -> Dict[NfpKey, List[Ring]]:
        """Plain dict of the requested entries that exist."""
        return {key: self._entries[key] for key in keys if key in self._entries}

    def retain(self, keys: Iterable[NfpKey]) -> 'NfpCache':
        """New cache containing only the given keys."""
        return NfpCache(self.subset(keys))

    def merged(self, results: Iterable[Tuple[NfpKey, Optional[List[Ring]]]]) -> 'NfpCache':
        """New cache with computed results added; null results are not stored."""
        entries = dict(self._entries)
        for key, value in results:
            if value:
                entries[key] = value
        return NfpCache(entries)


def individual_nfp_keys(placement: Sequence[Polygon], rotations: Sequence[float], bin_id: int = -1) -> List[NfpKey]:
    """Every key one individual's placement needs, in placement order."""
    keys = []
    for i, part in enumerate(placement):
        keys.append(NfpKey(bin_id, part.id, True, 0, rotations[i]))
        for j in range(i):
            keys.append(NfpKey(placement[j].id, part.id, False, rotations[j], rotations[i]))
    return keys


def plan_nfp_pairs(individuals: Iterable, bin_polygon: Polygon, cache: NfpCache,
                   referenced: Iterable = ()) -> Tuple[NfpCache, List[NfpPair], List[NfpKey]]:
    """
    Work out which NFPs a set of individuals needs.

    Returns the carried-over cache (entries still referenced), the pairs that
    have to be computed, and the full list of required keys. Entries of the
    `referenced` individuals are carried over too but never computed.
    """
    required: Dict[NfpKey, NfpPair] = {}
    for individual in individuals:
        placement = individual.placement
        rotations = individual.rotation
        for key in individual_nfp_keys(placement, rotations, bin_polygon.id):
            if key in required:
                continue
            if key.inside:
                a = bin_polygon
            else:
                a = next(p for p in placement if p.id == key.a_id)
            b = next(p for p in placement if p.id == key.b_id)
            required[key] = NfpPair(key, a, b)

    kept = set(required)
    for individual in referenced:
        kept.update(individual_nfp_keys(individual.placement, individual.rotation, bin_polygon.id))

    retained = cache.retain(kept)
    pending = [pair for key, pair in required.items() if key not in retained]
    logger.debug(f"[NFP] {len(required)} keys required, {len(retained)} cached, {len(pending)} to compute")
    return retained, pending, list(required.keys())


def _outer_nfp(A: Polygon, B: Polygon, search_edges: bool, clipper_scale: float) -> Optional[List[Ring]]:
    if search_edges:
        return no_fit_polygon(A.points, B.points, False, True)
    return minkowski_difference(A.points, B.points, clipper_scale)


@handle_errors(WORKER_FAILURE)
def compute_nfp(pair: NfpPair, search_edges: bool = False, use_holes: bool = False,
                clipper_scale: float = DEFAULT_CLIPPER_SCALE) -> Optional[List[Ring]]:
    """
    Compute the NFP for one pair. Returns None when no NFP exists or the
    result fails the sanity checks; that is reported, not raised.
    """
    key = pair.key
    A = pair.a.rotated(key.a_rotation)
    B = pair.b.rotated(key.b_rotation)

    if key.inside:
        if is_rectangle(A.points, 0.001):
            nfp = no_fit_polygon_rectangle(A.points, B.points)
        else:
            nfp = no_fit_polygon(A.points, B.points, True, search_edges)

        if not nfp:
            # the part may simply not fit in the bin
            logger.warning(f"[NFP] No inner NFP for {key}")
            return None
        return [ring[::-1] if polygon_area(ring) > 0 else list(ring) for ring in nfp]

    nfp = _outer_nfp(A, B, search_edges, clipper_scale)
    if not nfp:
        error_handler.log_anomaly(GEOMETRY_ANOMALY, f"[NFP] Outer NFP could not be generated for {key}",
                                  {'key': key})
        return None

    a_area = abs(A.area())
    for i, ring in enumerate(nfp):
        # with search_edges only the first loop is guaranteed to enclose A
        if not search_edges or i == 0:
            ring_area = abs(polygon_area(ring))
            if ring_area < a_area:
                error_handler.log_anomaly(GEOMETRY_ANOMALY,
                                          f"[NFP] Outer NFP area {ring_area:.4f} smaller than A ({a_area:.4f})",
                                          {'key': key})
                return None

    rings = []
    for i, ring in enumerate(nfp):
        ring = list(ring)
        if polygon_area(ring) > 0:
            ring.reverse()
        # later loops inside the first one are holes
        if i > 0 and point_in_polygon(ring[0], rings[0]) is Containment.INSIDE:
            if polygon_area(ring) < 0:
                ring.reverse()
        rings.append(ring)

    if use_holes and A.children:
        b_bounds = B.bounds()
        for hole in A.children:
            h_bounds = hole.bounds()
            # no need to try if B's bounding box is too big
            if h_bounds.width > b_bounds.width and h_bounds.height > b_bounds.height:
                # orbit inside the hole with the same winding as a bin
                container = hole.oriented(negative=True)
                hole_nfp = no_fit_polygon(container.points, B.points, True, search_edges)
                for ring in hole_nfp or []:
                    rings.append(list(ring) if polygon_area(ring) > 0 else ring[::-1])

    logger.debug(f"[NFP] {key}: {len(rings)} rings")
    return rings


def compute_nfp_entry(pair: NfpPair, search_edges: bool = False, use_holes: bool = False,
                      clipper_scale: float = DEFAULT_CLIPPER_SCALE) -> Tuple[NfpKey, Optional[List[Ring]]]:
    """Work function for the executor: the key travels with the result."""
    return pair.key, compute_nfp(pair, search_edges, use_holes, clipper_scale)
