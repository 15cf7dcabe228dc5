"""
Polygon primitives for the nesting geometry kernel.

This module provides the value types and low-level predicates used by the
no-fit-polygon code and the placement engine:
  - Point / BoundingBox / Polygon value types
  - signed area, bounds, rotation and translation
  - tri-state point-in-polygon test
  - on-segment, line intersection and polygon intersection predicates

IMPORTANT: polygon_area() follows the shoelace variant where a NEGATIVE area
means counter-clockwise winding (y axis pointing up). Every part and the bin
are normalized to negative area before nesting; holes carry the opposite
sign.

All equality and collinearity tests use the TOL tolerance (1e-9).
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

# floating point comparison tolerance
TOL = 1e-9


class GeometryError(Exception):
    """Custom exception for invalid polygon input."""
    pass


class Point(NamedTuple):
    """2D point"""
    x: float
    y: float


class Containment(Enum):
    """Result of a point-in-polygon test"""
    INSIDE = "inside"
    OUTSIDE = "outside"
    INDETERMINATE = "indeterminate"  # exactly on a vertex or an edge


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned bounding box"""
    x: float
    y: float
    width: float
    height: float

    @property
    def max_x(self) -> float:
        return self.x + self.width

    @property
    def max_y(self) -> float:
        return self.y + self.height


@dataclass
class Polygon:
    """
    An ordered ring of points, closed implicitly (first point is not repeated).

    `children` holds nested hole polygons as plain values; a child never
    refers back to its parent. The part tree keeps the parent relation as ids.
    """
    points: List[Point]
    id: int = 0
    rotation: float = 0.0
    children: List['Polygon'] = field(default_factory=list)
    source: Optional[int] = None
    _bounds: Optional[BoundingBox] = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        self.points = [Point(float(p[0]), float(p[1])) for p in self.points]

    @classmethod
    def from_points(cls, points: Iterable[Sequence[float]], **kwargs) -> 'Polygon':
        """Build a validated polygon from any iterable of (x, y) pairs."""
        pts = [Point(float(p[0]), float(p[1])) for p in points]
        if len(pts) < 3:
            raise GeometryError(f"Polygon needs at least 3 points, got {len(pts)}")
        for p in pts:
            if not (math.isfinite(p.x) and math.isfinite(p.y)):
                raise GeometryError(f"Non-finite coordinate in polygon: {p}")
        return cls(pts, **kwargs)

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self):
        return iter(self.points)

    def __getitem__(self, index):
        return self.points[index]

    def bounds(self) -> BoundingBox:
        if self._bounds is None:
            self._bounds = get_polygon_bounds(self.points)
        return self._bounds

    def area(self) -> float:
        return polygon_area(self.points)

    def with_points(self, points: Sequence[Point], children: Optional[List['Polygon']] = None) -> 'Polygon':
        """Copy carrying the same identity but new coordinates."""
        return replace(self, points=list(points),
                       children=self.children if children is None else children,
                       _bounds=None)

    def reversed(self) -> 'Polygon':
        return self.with_points(self.points[::-1])

    def oriented(self, negative: bool = True) -> 'Polygon':
        """Return this polygon wound so that its signed area is negative (or positive)."""
        area = self.area()
        if (negative and area > 0) or (not negative and area < 0):
            return self.reversed()
        return self

    def rotated(self, angle: float) -> 'Polygon':
        """Rotate about the origin by `angle` degrees, children included."""
        rotated = rotate_polygon(self.points, angle)
        children = [child.rotated(angle) for child in self.children]
        result = self.with_points(rotated, children)
        result.rotation = angle
        return result

    def translated(self, dx: float, dy: float) -> 'Polygon':
        children = [child.translated(dx, dy) for child in self.children]
        return self.with_points([Point(p.x + dx, p.y + dy) for p in self.points], children)


def almost_equal(a: float, b: float, tolerance: Optional[float] = None) -> bool:
    if not tolerance:
        tolerance = TOL
    return abs(a - b) < tolerance


def points_equal(p1: Point, p2: Point) -> bool:
    return almost_equal(p1.x, p2.x) and almost_equal(p1.y, p2.y)


def normalize_vector(v: Point) -> Point:
    """Scale a vector to unit length."""
    sq = v.x * v.x + v.y * v.y
    if almost_equal(sq, 1):
        return v
    inverse = 1 / math.sqrt(sq)
    return Point(v.x * inverse, v.y * inverse)


def polygon_area(points: Sequence[Point]) -> float:
    """
    Signed shoelace area, assuming no self-intersections.

    A negative result indicates counter-clockwise winding.
    """
    area = 0.0
    n = len(points)
    j = n - 1
    for i in range(n):
        area += (points[j].x + points[i].x) * (points[j].y - points[i].y)
        j = i
    return 0.5 * area


def get_polygon_bounds(points: Sequence[Point]) -> Optional[BoundingBox]:
    """Return the axis-aligned bounding box, or None for degenerate input."""
    if points is None or len(points) < 3:
        return None
    arr = np.asarray(points, dtype=float)
    min_x, min_y = arr.min(axis=0)
    max_x, max_y = arr.max(axis=0)
    return BoundingBox(float(min_x), float(min_y), float(max_x - min_x), float(max_y - min_y))


def rotate_polygon(points: Sequence[Point], angle: float) -> List[Point]:
    """Rotate points about the origin by `angle` degrees."""
    if not points:
        return []
    radians = math.radians(angle)
    cos_a = math.cos(radians)
    sin_a = math.sin(radians)
    arr = np.asarray(points, dtype=float)
    xs = arr[:, 0] * cos_a - arr[:, 1] * sin_a
    ys = arr[:, 0] * sin_a + arr[:, 1] * cos_a
    return [Point(float(x), float(y)) for x, y in zip(xs, ys)]


def on_segment(a: Point, b: Point, p: Point) -> bool:
    """True if p lies on segment AB, excluding the endpoints."""
    # vertical line
    if almost_equal(a.x, b.x) and almost_equal(p.x, a.x):
        return (not almost_equal(p.y, b.y) and not almost_equal(p.y, a.y)
                and min(a.y, b.y) < p.y < max(a.y, b.y))

    # horizontal line
    if almost_equal(a.y, b.y) and almost_equal(p.y, a.y):
        return (not almost_equal(p.x, b.x) and not almost_equal(p.x, a.x)
                and min(a.x, b.x) < p.x < max(a.x, b.x))

    # range check
    if ((p.x < a.x and p.x < b.x) or (p.x > a.x and p.x > b.x)
            or (p.y < a.y and p.y < b.y) or (p.y > a.y and p.y > b.y)):
        return False

    if points_equal(p, a) or points_equal(p, b):
        return False

    cross = (p.y - a.y) * (b.x - a.x) - (p.x - a.x) * (b.y - a.y)
    if abs(cross) > TOL:
        return False

    dot = (p.x - a.x) * (b.x - a.x) + (p.y - a.y) * (b.y - a.y)
    if dot < 0 or almost_equal(dot, 0):
        return False

    len2 = (b.x - a.x) * (b.x - a.x) + (b.y - a.y) * (b.y - a.y)
    if dot > len2 or almost_equal(dot, len2):
        return False

    return True


def line_intersect(a: Point, b: Point, e: Point, f: Point, infinite: bool = False) -> Optional[Point]:
    """
    Intersection of AB and EF, or None when they miss or are parallel.

    With `infinite` set both are treated as unbounded lines; otherwise they are
    finite segments and endpoints that merely coincide do not count.
    """
    a1 = b.y - a.y
    b1 = a.x - b.x
    c1 = b.x * a.y - a.x * b.y
    a2 = f.y - e.y
    b2 = e.x - f.x
    c2 = f.x * e.y - e.x * f.y

    denom = a1 * b2 - a2 * b1
    if denom == 0:
        return None

    x = (b1 * c2 - b2 * c1) / denom
    y = (a2 * c1 - a1 * c2) / denom
    if not (math.isfinite(x) and math.isfinite(y)):
        return None

    if not infinite:
        if abs(a.x - b.x) > TOL and (x < a.x or x > b.x if a.x < b.x else x > a.x or x < b.x):
            return None
        if abs(a.y - b.y) > TOL and (y < a.y or y > b.y if a.y < b.y else y > a.y or y < b.y):
            return None
        if abs(e.x - f.x) > TOL and (x < e.x or x > f.x if e.x < f.x else x > e.x or x < f.x):
            return None
        if abs(e.y - f.y) > TOL and (y < e.y or y > f.y if e.y < f.y else y > e.y or y < f.y):
            return None

    return Point(x, y)


def point_in_polygon(point: Point, polygon: Sequence[Point],
                     offset: Tuple[float, float] = (0.0, 0.0)) -> Containment:
    """
    Ray-casting containment test.

    Returns Containment.INDETERMINATE when the point coincides with a vertex
    or lies exactly on an edge; callers have to decide what that means.
    """
    if polygon is None or len(polygon) < 3:
        return Containment.INDETERMINATE

    ox, oy = offset
    inside = False
    n = len(polygon)
    j = n - 1
    for i in range(n):
        xi = polygon[i].x + ox
        yi = polygon[i].y + oy
        xj = polygon[j].x + ox
        yj = polygon[j].y + oy
        j = i

        if almost_equal(xi, point.x) and almost_equal(yi, point.y):
            return Containment.INDETERMINATE

        if on_segment(Point(xi, yi), Point(xj, yj), point):
            return Containment.INDETERMINATE

        # ignore very small lines
        if almost_equal(xi, xj) and almost_equal(yi, yj):
            continue

        if ((yi > point.y) != (yj > point.y)) and (point.x < (xj - xi) * (point.y - yi) / (yj - yi) + xi):
            inside = not inside

    return Containment.INSIDE if inside else Containment.OUTSIDE


def _closed(points: Sequence[Point]) -> List[Point]:
    pts = list(points)
    if pts and pts[0] != pts[-1]:
        pts.append(pts[0])
    return pts


def _opposite_sides(first: Containment, second: Containment) -> bool:
    return {first, second} == {Containment.INSIDE, Containment.OUTSIDE}


def intersect(a_points: Sequence[Point], b_points: Sequence[Point],
              a_offset: Tuple[float, float] = (0.0, 0.0),
              b_offset: Tuple[float, float] = (0.0, 0.0)) -> bool:
    """
    True if the two polygons overlap (touching is not overlapping).

    Vertices lying on the other polygon's edges are resolved by checking on
    which side their neighbouring vertices fall.
    """
    A = _closed(a_points)
    B = _closed(b_points)
    aox, aoy = a_offset
    box, boy = b_offset
    len_a = len(A)
    len_b = len(B)

    for i in range(len_a - 1):
        for j in range(len_b - 1):
            a1 = Point(A[i].x + aox, A[i].y + aoy)
            a2 = Point(A[i + 1].x + aox, A[i + 1].y + aoy)
            b1 = Point(B[j].x + box, B[j].y + boy)
            b2 = Point(B[j + 1].x + box, B[j + 1].y + boy)

            prev_b = len_b - 1 if j == 0 else j - 1
            prev_a = len_a - 1 if i == 0 else i - 1
            next_b = 0 if j + 1 == len_b - 1 else j + 2
            next_a = 0 if i + 1 == len_a - 1 else i + 2

            # step past the duplicated closing point
            if points_equal(B[prev_b], B[j]):
                prev_b = len_b - 1 if prev_b == 0 else prev_b - 1
            if points_equal(A[prev_a], A[i]):
                prev_a = len_a - 1 if prev_a == 0 else prev_a - 1
            if points_equal(B[next_b], B[j + 1]):
                next_b = 0 if next_b == len_b - 1 else next_b + 1
            if points_equal(A[next_a], A[i + 1]):
                next_a = 0 if next_a == len_a - 1 else next_a + 1

            a0 = Point(A[prev_a].x + aox, A[prev_a].y + aoy)
            b0 = Point(B[prev_b].x + box, B[prev_b].y + boy)
            a3 = Point(A[next_a].x + aox, A[next_a].y + aoy)
            b3 = Point(B[next_b].x + box, B[next_b].y + boy)

            if on_segment(a1, a2, b1) or points_equal(a1, b1):
                if _opposite_sides(point_in_polygon(b0, A, a_offset), point_in_polygon(b2, A, a_offset)):
                    return True
                continue

            if on_segment(a1, a2, b2) or points_equal(a2, b2):
                if _opposite_sides(point_in_polygon(b1, A, a_offset), point_in_polygon(b3, A, a_offset)):
                    return True
                continue

            if on_segment(b1, b2, a1) or points_equal(a1, b2):
                if _opposite_sides(point_in_polygon(a0, B, b_offset), point_in_polygon(a2, B, b_offset)):
                    return True
                continue

            if on_segment(b1, b2, a2) or points_equal(a2, b1):
                if _opposite_sides(point_in_polygon(a1, B, b_offset), point_in_polygon(a3, B, b_offset)):
                    return True
                continue

            if line_intersect(b1, b2, a1, a2) is not None:
                return True

    return False


def is_rectangle(points: Sequence[Point], tolerance: Optional[float] = None) -> bool:
    """True if every vertex lies on the polygon's own bounding box."""
    bb = get_polygon_bounds(points)
    if bb is None:
        return False
    tolerance = tolerance or TOL
    for p in points:
        if not almost_equal(p.x, bb.x, tolerance) and not almost_equal(p.x, bb.max_x, tolerance):
            return False
        if not almost_equal(p.y, bb.y, tolerance) and not almost_equal(p.y, bb.max_y, tolerance):
            return False
    return True
