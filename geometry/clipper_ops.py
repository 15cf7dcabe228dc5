"""
Polygon clipping operations used around the NFP kernel.

- minkowski_difference: outer NFP of two simple polygons via pyclipper
- offset_polygon: grow or shrink a ring with round joins (shapely buffer)
- clean_polygon: repair self-intersections and drop degenerate vertices
- rings_to_region / region_rings: convert NFP ring lists to shapely
  geometry and back for the placement boolean operations
"""

import logging
import math
from typing import List, Optional, Sequence

import pyclipper
from shapely import make_valid
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.ops import unary_union

from .polygon import Containment, Point, point_in_polygon, polygon_area

logger = logging.getLogger(__name__)

DEFAULT_CLIPPER_SCALE = 10_000_000


def to_clipper_path(points: Sequence[Point], scale: float) -> List[tuple]:
    return [(int(round(p.x * scale)), int(round(p.y * scale))) for p in points]


def from_clipper_path(path: Sequence[Sequence[int]], scale: float) -> List[Point]:
    return [Point(x / scale, y / scale) for x, y in path]


def minkowski_difference(a_points: Sequence[Point], b_points: Sequence[Point],
                         scale: float = DEFAULT_CLIPPER_SCALE) -> Optional[List[List[Point]]]:
    """
    Outer NFP of B around A as a single ring, computed as A (+) (-B).

    pyclipper returns several paths; the one with the smallest signed area
    is the outer boundary. The result is shifted so it tracks B's first
    vertex like the orbiting NFP does.
    """
    a_path = to_clipper_path(a_points, scale)
    b_path = [(-x, -y) for x, y in to_clipper_path(b_points, scale)]

    solution = pyclipper.MinkowskiSum(a_path, b_path, True)
    if not solution:
        return None

    best = None
    best_area = None
    for path in solution:
        ring = from_clipper_path(path, scale)
        area = polygon_area(ring)
        if best_area is None or area < best_area:
            best = ring
            best_area = area

    if best is None:
        return None

    ref = b_points[0]
    return [[Point(p.x + ref.x, p.y + ref.y) for p in best]]


def _quad_segments(distance: float, curve_tolerance: float) -> int:
    """Segments per quarter circle so the arc deviates less than curve_tolerance."""
    radius = abs(distance)
    if curve_tolerance <= 0 or radius <= curve_tolerance:
        return 1
    step = 2 * math.acos(1 - curve_tolerance / radius)
    return max(1, int(math.ceil((math.pi / 2) / step)))


def _polygons(geometry) -> List[ShapelyPolygon]:
    """Flatten any shapely geometry into its polygon members."""
    if geometry is None or geometry.is_empty:
        return []
    if isinstance(geometry, ShapelyPolygon):
        return [geometry]
    found = []
    for member in getattr(geometry, 'geoms', []):
        found.extend(_polygons(member))
    return found


def _exterior_points(polygon: ShapelyPolygon) -> List[Point]:
    # shapely repeats the first coordinate at the end
    return [Point(x, y) for x, y in list(polygon.exterior.coords)[:-1]]


def offset_polygon(points: Sequence[Point], distance: float,
                   curve_tolerance: float = 0.3) -> List[List[Point]]:
    """
    Offset a ring outward (positive distance) or inward (negative).

    Returns every resulting ring; callers treat anything other than exactly
    one ring as a failed offset and keep the original.
    """
    if not distance or math.isclose(distance, 0, abs_tol=1e-9):
        return [list(points)]

    shape = ShapelyPolygon([(p.x, p.y) for p in points])
    if not shape.is_valid:
        shape = make_valid(shape)
    buffered = shape.buffer(distance, quad_segs=_quad_segments(distance, curve_tolerance),
                            join_style='round')

    parts = _polygons(buffered)

    orientation = polygon_area(list(points))
    result = []
    for part in parts:
        ring = _exterior_points(part)
        # keep the caller's winding
        if (polygon_area(ring) > 0) != (orientation > 0):
            ring.reverse()
        result.append(ring)
    return result


def clean_polygon(points: Sequence[Point], curve_tolerance: float = 0.3) -> Optional[List[Point]]:
    """
    Remove self-intersections, keep the biggest remaining piece and strip
    vertices that deviate from a straight edge by less than curve_tolerance.
    """
    if points is None or len(points) < 3:
        return None

    shape = ShapelyPolygon([(p.x, p.y) for p in points])
    if not shape.is_valid:
        shape = make_valid(shape)

    candidates = _polygons(shape)
    if not candidates:
        return None
    biggest = max(candidates, key=lambda g: g.area)
    if biggest.is_empty or biggest.area == 0:
        return None

    simplified = biggest.simplify(curve_tolerance, preserve_topology=True)
    if simplified.is_empty or not isinstance(simplified, ShapelyPolygon):
        return None

    ring = _exterior_points(simplified)
    if len(ring) < 3:
        return None
    # shapely normalizes orientation; restore the input's
    if (polygon_area(ring) > 0) != (polygon_area(list(points)) > 0):
        ring.reverse()
    return ring


def rings_to_region(rings: Sequence[Sequence[Point]], dx: float = 0.0, dy: float = 0.0):
    """
    Turn an NFP ring list into shapely geometry, shifted by (dx, dy).

    The first ring is the outer boundary; later rings whose first point lies
    inside it are holes, others become separate regions.
    """
    if not rings or len(rings[0]) < 3:
        return ShapelyPolygon()

    def shifted(ring):
        return [(p.x + dx, p.y + dy) for p in ring]

    outer = rings[0]
    holes = []
    extra = []
    for ring in rings[1:]:
        if len(ring) < 3:
            continue
        if point_in_polygon(ring[0], outer) is Containment.INSIDE:
            holes.append(shifted(ring))
        else:
            extra.append(ShapelyPolygon(shifted(ring)))

    region = ShapelyPolygon(shifted(outer), holes)
    if not region.is_valid:
        region = make_valid(region)
    if extra:
        region = unary_union([region] + [e if e.is_valid else make_valid(e) for e in extra])
    return region


def region_rings(geometry) -> List[List[Point]]:
    """Every exterior and interior ring of a shapely (multi)polygon as point lists."""
    rings = []
    for polygon in _polygons(geometry):
        rings.append(_exterior_points(polygon))
        for interior in polygon.interiors:
            rings.append([Point(x, y) for x, y in list(interior.coords)[:-1]])
    return rings
