#!/usr/bin/env python3
"""
Placement Engine
Greedy bottom-left style placement of one individual using precomputed NFPs

Parts are placed in the individual's order. The first part of a bin goes to
the leftmost point of its inner NFP; every later part goes to the point of
(inner NFP - union of outer NFPs against placed parts) that keeps the
combined bounding box smallest, weighting width twice.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, NamedTuple, Optional, Sequence

from shapely.ops import unary_union

from geometry.clipper_ops import region_rings, rings_to_region
from geometry.polygon import BoundingBox, Point, Polygon, almost_equal, polygon_area
from nesting_errors import PLACEMENT_OVERFLOW, error_handler
from nfp_cache import NfpKey

logger = logging.getLogger(__name__)

Ring = List[Point]

# difference rings smaller than this are numerical slivers
MIN_REGION_AREA = 0.1
# rings smaller than this are not searched for positions
MIN_CANDIDATE_AREA = 2.0


class PlacedPart(NamedTuple):
    """Translation and rotation of one part inside a bin"""
    id: int
    x: float
    y: float
    rotation: float


@dataclass
class PlacementResult:
    """Outcome of placing one individual"""
    placements: List[List[PlacedPart]]
    fitness: float
    unplaced: List[int] = field(default_factory=list)
    bin_area: float = 0.0

    @property
    def bins_used(self) -> int:
        return len(self.placements)

    @property
    def placed_count(self) -> int:
        return sum(len(bin_parts) for bin_parts in self.placements)


@dataclass
class PlacementTask:
    """Everything a worker needs to evaluate one individual"""
    bin_polygon: Polygon
    placement: List[Polygon]
    rotations: List[float]
    nfps: Dict[NfpKey, List[Ring]]
    index: int = 0  # position of the individual in the population


def _merge_bounds(a: Optional[BoundingBox], b: BoundingBox) -> BoundingBox:
    if a is None:
        return b
    min_x = min(a.x, b.x)
    min_y = min(a.y, b.y)
    max_x = max(a.max_x, b.max_x)
    max_y = max(a.max_y, b.max_y)
    return BoundingBox(min_x, min_y, max_x - min_x, max_y - min_y)


def _shifted_bounds(bounds: BoundingBox, dx: float, dy: float) -> BoundingBox:
    return BoundingBox(bounds.x + dx, bounds.y + dy, bounds.width, bounds.height)


class PlacementEngine:
    """Places parts bin after bin until everything is placed or nothing fits"""

    def __init__(self, bin_polygon: Polygon):
        self.bin_polygon = bin_polygon
        self.bin_area = abs(polygon_area(bin_polygon.points))

    def place(self, placement: Sequence[Polygon], rotations: Sequence[float],
              nfps: Mapping[NfpKey, List[Ring]]) -> PlacementResult:
        """
        Place the parts in order and score the result.

        fitness = bins used + last bin's layout width / bin area
                  + 2 per part that could not be placed
        """
        # rotate every part once up front
        remaining = [part.rotated(angle) for part, angle in zip(placement, rotations)]

        all_placements: List[List[PlacedPart]] = []
        last_width = 0.0

        while remaining:
            placed: List[Polygon] = []
            positions: List[PlacedPart] = []
            layout_bounds: Optional[BoundingBox] = None

            for path in remaining:
                bin_nfp = nfps.get(NfpKey(self.bin_polygon.id, path.id, True, 0, path.rotation))
                if not bin_nfp:
                    # part does not fit in the bin at this rotation
                    continue

                outer_nfps = []
                for other, position in zip(placed, positions):
                    nfp = nfps.get(NfpKey(other.id, path.id, False, other.rotation, path.rotation))
                    if not nfp:
                        break
                    outer_nfps.append((nfp, position))
                if len(outer_nfps) != len(placed):
                    continue

                if not placed:
                    position = self._first_position(path, bin_nfp)
                else:
                    position = self._best_position(path, bin_nfp, outer_nfps, layout_bounds)
                if position is None:
                    continue

                placed.append(path)
                positions.append(position)
                layout_bounds = _merge_bounds(layout_bounds,
                                              _shifted_bounds(path.bounds(), position.x, position.y))

            if not positions:
                error_handler.log_anomaly(PLACEMENT_OVERFLOW,
                                          f"[PLACEMENT] Nothing placed in bin {len(all_placements) + 1}, "
                                          f"{len(remaining)} parts left over")
                break

            all_placements.append(positions)
            last_width = layout_bounds.width
            placed_ids = {id(p) for p in placed}
            remaining = [p for p in remaining if id(p) not in placed_ids]

        fitness = len(all_placements) + last_width / self.bin_area + 2 * len(remaining)
        logger.debug(f"[PLACEMENT] {len(all_placements)} bins, {len(remaining)} unplaced, fitness {fitness:.6f}")
        return PlacementResult(placements=all_placements, fitness=fitness,
                               unplaced=[p.id for p in remaining], bin_area=self.bin_area)

    @staticmethod
    def _first_position(path: Polygon, bin_nfp: List[Ring]) -> Optional[PlacedPart]:
        """Leftmost point of the inner NFP."""
        ref = path.points[0]
        best = None
        for ring in bin_nfp:
            for p in ring:
                if best is None or p.x - ref.x < best.x:
                    best = PlacedPart(path.id, p.x - ref.x, p.y - ref.y, path.rotation)
        return best

    def _best_position(self, path: Polygon, bin_nfp: List[Ring], outer_nfps,
                       layout_bounds: BoundingBox) -> Optional[PlacedPart]:
        """Feasible point minimizing 2*width + height of the layout, ties to smaller x."""
        forbidden = unary_union([rings_to_region(nfp, position.x, position.y)
                                 for nfp, position in outer_nfps])
        feasible = rings_to_region(bin_nfp).difference(forbidden)

        rings = [ring for ring in region_rings(feasible)
                 if len(ring) >= 3 and abs(polygon_area(ring)) >= MIN_REGION_AREA]
        if not rings:
            return None

        ref = path.points[0]
        path_bounds = path.bounds()
        best = None
        best_score = None
        for ring in rings:
            if abs(polygon_area(ring)) < MIN_CANDIDATE_AREA:
                continue
            for p in ring:
                dx = p.x - ref.x
                dy = p.y - ref.y
                bounds = _merge_bounds(layout_bounds, _shifted_bounds(path_bounds, dx, dy))
                score = bounds.width * 2 + bounds.height
                if (best_score is None or score < best_score
                        or (almost_equal(best_score, score) and dx < best.x)):
                    best_score = score
                    best = PlacedPart(path.id, dx, dy, path.rotation)
        return best


def evaluate_placement(task: PlacementTask) -> PlacementResult:
    """Work function for the executor: place one individual."""
    return PlacementEngine(task.bin_polygon).place(task.placement, task.rotations, task.nfps)


def apply_placement(result: PlacementResult, parts: Mapping[int, Polygon],
                    origin: Point = Point(0.0, 0.0)) -> List[List[Dict]]:
    """
    Materialize a placement: for each bin, each part rotated then translated
    (holes included), shifted back by `origin` into input coordinates.
    """
    bins = []
    for bin_parts in result.placements:
        shapes = []
        for placed in bin_parts:
            polygon = parts[placed.id].rotated(placed.rotation).translated(placed.x + origin.x,
                                                                           placed.y + origin.y)
            shapes.append({
                'id': placed.id,
                'source': polygon.source,
                'x': placed.x,
                'y': placed.y,
                'rotation': placed.rotation,
                'points': list(polygon.points),
                'children': [_shape_entry(child, True) for child in polygon.children],
            })
        bins.append(shapes)
    return bins


def _shape_entry(polygon: Polygon, is_hole: bool) -> Dict:
    # children alternate between holes and nested solids
    return {
        'points': list(polygon.points),
        'is_hole': is_hole,
        'children': [_shape_entry(child, not is_hole) for child in polygon.children],
    }
