"""
No-fit polygon computation by orbiting.

Given a static polygon A and a movable polygon B, the no-fit polygon (NFP) is
the locus traced by B's reference point (its first vertex) while B slides
around A keeping contact without overlapping. Orbiting inside A yields the
inner-fit polygon used for the bin.

Provided here:
  - slide / projection distance helpers
  - search_start_point: finds a non-overlapping contact position
  - no_fit_polygon: the orbiting loop, optionally exploring every edge
  - no_fit_polygon_rectangle: closed form inner NFP for rectangular A

Polygons are plain point sequences; positions of B are passed as an explicit
(dx, dy) offset instead of being stored on the polygon.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set, Tuple

from .polygon import (
    TOL, Containment, Point, almost_equal, get_polygon_bounds, intersect,
    normalize_vector, on_segment, point_in_polygon,
)

logger = logging.getLogger(__name__)

Offset = Tuple[float, float]
Ring = List[Point]

# touching contact kinds
VERTEX_VERTEX = 0
B_VERTEX_ON_A_EDGE = 1
A_VERTEX_ON_B_EDGE = 2


@dataclass
class TranslationVector:
    """Candidate slide direction together with the A vertices it runs between."""
    x: float
    y: float
    a_vertices: Tuple[int, ...] = field(default_factory=tuple)


def _close(points: Sequence[Point]) -> Ring:
    ring = list(points)
    if ring and ring[0] != ring[-1]:
        ring.append(ring[0])
    return ring


def point_distance(p: Point, s1: Point, s2: Point, normal: Point, infinite: bool = False) -> Optional[float]:
    """Distance p has to travel along `normal` to hit segment s1-s2, or None."""
    normal = normalize_vector(normal)
    direction = Point(normal.y, -normal.x)

    pdot = p.x * direction.x + p.y * direction.y
    s1dot = s1.x * direction.x + s1.y * direction.y
    s2dot = s2.x * direction.x + s2.y * direction.y

    pdotnorm = p.x * normal.x + p.y * normal.y
    s1dotnorm = s1.x * normal.x + s1.y * normal.y
    s2dotnorm = s2.x * normal.x + s2.y * normal.y

    if not infinite:
        below_both = ((pdot < s1dot or almost_equal(pdot, s1dot))
                      and (pdot < s2dot or almost_equal(pdot, s2dot)))
        above_both = ((pdot > s1dot or almost_equal(pdot, s1dot))
                      and (pdot > s2dot or almost_equal(pdot, s2dot)))
        if below_both or above_both:
            # misses the segment or lands exactly on a vertex
            return None
        if almost_equal(pdot, s1dot) and almost_equal(pdot, s2dot):
            if pdotnorm > s1dotnorm and pdotnorm > s2dotnorm:
                return min(pdotnorm - s1dotnorm, pdotnorm - s2dotnorm)
            if pdotnorm < s1dotnorm and pdotnorm < s2dotnorm:
                return -min(s1dotnorm - pdotnorm, s2dotnorm - pdotnorm)

    return -(pdotnorm - s1dotnorm + (s1dotnorm - s2dotnorm) * (s1dot - pdot) / (s1dot - s2dot))


def segment_distance(a: Point, b: Point, e: Point, f: Point, direction: Point) -> Optional[float]:
    """How far segment AB can move along `direction` before it hits EF."""
    normal = Point(direction.y, -direction.x)
    reverse = Point(-direction.x, -direction.y)

    dot_a = a.x * normal.x + a.y * normal.y
    dot_b = b.x * normal.x + b.y * normal.y
    dot_e = e.x * normal.x + e.y * normal.y
    dot_f = f.x * normal.x + f.y * normal.y

    cross_a = a.x * direction.x + a.y * direction.y
    cross_b = b.x * direction.x + b.y * direction.y
    cross_e = e.x * direction.x + e.y * direction.y
    cross_f = f.x * direction.x + f.y * direction.y

    ab_min = min(dot_a, dot_b)
    ab_max = max(dot_a, dot_b)
    ef_max = max(dot_e, dot_f)
    ef_min = min(dot_e, dot_f)

    # segments that merely touch at one point
    if almost_equal(ab_max, ef_min, TOL) or almost_equal(ab_min, ef_max, TOL):
        return None
    # segments miss each other completely
    if ab_max < ef_min or ab_min > ef_max:
        return None

    if (ab_max > ef_max and ab_min < ef_min) or (ef_max > ab_max and ef_min < ab_min):
        overlap = 1.0
    else:
        min_max = min(ab_max, ef_max)
        max_min = max(ab_min, ef_min)
        max_max = max(ab_max, ef_max)
        min_min = min(ab_min, ef_min)
        overlap = (min_max - max_min) / (max_max - min_min)

    cross_abe = (e.y - a.y) * (b.x - a.x) - (e.x - a.x) * (b.y - a.y)
    cross_abf = (f.y - a.y) * (b.x - a.x) - (f.x - a.x) * (b.y - a.y)

    # collinear
    if almost_equal(cross_abe, 0) and almost_equal(cross_abf, 0):
        ab_norm = normalize_vector(Point(b.y - a.y, a.x - b.x))
        ef_norm = normalize_vector(Point(f.y - e.y, e.x - f.x))

        # segment normals must point in opposite directions
        if (abs(ab_norm.y * ef_norm.x - ab_norm.x * ef_norm.y) < TOL
                and ab_norm.y * ef_norm.y + ab_norm.x * ef_norm.x < 0):
            normdot = ab_norm.y * direction.y + ab_norm.x * direction.x
            # the segments merely slide along each other
            if almost_equal(normdot, 0, TOL):
                return None
            if normdot < 0:
                return 0.0
        return None

    distances = []

    # coincident points
    if almost_equal(dot_a, dot_e):
        distances.append(cross_a - cross_e)
    elif almost_equal(dot_a, dot_f):
        distances.append(cross_a - cross_f)
    elif ef_min < dot_a < ef_max:
        d = point_distance(a, e, f, reverse)
        if d is not None and almost_equal(d, 0):
            # A touches EF but AB is moving away
            d_b = point_distance(b, e, f, reverse, True)
            if d_b < 0 or almost_equal(d_b * overlap, 0):
                d = None
        if d is not None:
            distances.append(d)

    if almost_equal(dot_b, dot_e):
        distances.append(cross_b - cross_e)
    elif almost_equal(dot_b, dot_f):
        distances.append(cross_b - cross_f)
    elif ef_min < dot_b < ef_max:
        d = point_distance(b, e, f, reverse)
        if d is not None and almost_equal(d, 0):
            d_a = point_distance(a, e, f, reverse, True)
            if d_a < 0 or almost_equal(d_a * overlap, 0):
                d = None
        if d is not None:
            distances.append(d)

    if ab_min < dot_e < ab_max:
        d = point_distance(e, a, b, direction)
        if d is not None and almost_equal(d, 0):
            d_f = point_distance(f, a, b, direction, True)
            if d_f < 0 or almost_equal(d_f * overlap, 0):
                d = None
        if d is not None:
            distances.append(d)

    if ab_min < dot_f < ab_max:
        d = point_distance(f, a, b, direction)
        if d is not None and almost_equal(d, 0):
            d_e = point_distance(e, a, b, direction, True)
            if d_e < 0 or almost_equal(d_e * overlap, 0):
                d = None
        if d is not None:
            distances.append(d)

    if not distances:
        return None
    return min(distances)


def polygon_slide_distance(a_points: Sequence[Point], b_points: Sequence[Point], direction: Point,
                           ignore_negative: bool = False,
                           a_offset: Offset = (0.0, 0.0), b_offset: Offset = (0.0, 0.0)) -> Optional[float]:
    """Smallest distance B can slide along `direction` before colliding with A."""
    edge_a = _close(a_points)
    edge_b = _close(b_points)
    aox, aoy = a_offset
    box, boy = b_offset
    unit = normalize_vector(direction)

    distance = None
    for i in range(len(edge_b) - 1):
        b1 = Point(edge_b[i].x + box, edge_b[i].y + boy)
        b2 = Point(edge_b[i + 1].x + box, edge_b[i + 1].y + boy)
        if almost_equal(b1.x, b2.x) and almost_equal(b1.y, b2.y):
            continue
        for j in range(len(edge_a) - 1):
            a1 = Point(edge_a[j].x + aox, edge_a[j].y + aoy)
            a2 = Point(edge_a[j + 1].x + aox, edge_a[j + 1].y + aoy)
            if almost_equal(a1.x, a2.x) and almost_equal(a1.y, a2.y):
                continue  # ignore extremely small lines

            d = segment_distance(a1, a2, b1, b2, unit)
            if d is not None and (distance is None or d < distance):
                if not ignore_negative or d > 0 or almost_equal(d, 0):
                    distance = d
    return distance


def polygon_projection_distance(a_points: Sequence[Point], b_points: Sequence[Point], direction: Point,
                                a_offset: Offset = (0.0, 0.0),
                                b_offset: Offset = (0.0, 0.0)) -> Optional[float]:
    """Project every vertex of B onto A along `direction`; return the largest of the shortest projections."""
    edge_a = _close(a_points)
    edge_b = _close(b_points)
    aox, aoy = a_offset
    box, boy = b_offset

    distance = None
    for i in range(len(edge_b)):
        p = Point(edge_b[i].x + box, edge_b[i].y + boy)
        min_projection = None
        for j in range(len(edge_a) - 1):
            s1 = Point(edge_a[j].x + aox, edge_a[j].y + aoy)
            s2 = Point(edge_a[j + 1].x + aox, edge_a[j + 1].y + aoy)

            if abs((s2.y - s1.y) * direction.x - (s2.x - s1.x) * direction.y) < TOL:
                continue

            d = point_distance(p, s1, s2, direction)
            if d is not None and (min_projection is None or d < min_projection):
                min_projection = d
        if min_projection is not None and (distance is None or min_projection > distance):
            distance = min_projection
    return distance


def _in_nfp(p: Point, nfp_list: Optional[List[Ring]]) -> bool:
    if not nfp_list:
        return False
    for ring in nfp_list:
        for q in ring:
            if almost_equal(p.x, q.x) and almost_equal(p.y, q.y):
                return True
    return False


def _b_containment(a_ring: Ring, b_ring: Ring, offset: Offset) -> Containment:
    """Side of A that B lies on, decided by the first vertex not on A's boundary."""
    for q in b_ring:
        state = point_in_polygon(Point(q.x + offset[0], q.y + offset[1]), a_ring)
        if state is not Containment.INDETERMINATE:
            return state
    return Containment.INDETERMINATE


def search_start_point(a_points: Sequence[Point], b_points: Sequence[Point], inside: bool,
                       nfp_list: Optional[List[Ring]] = None,
                       marked: Optional[Set[int]] = None) -> Optional[Point]:
    """
    Find an offset for B touching A where B is on the requested side and does
    not overlap A, skipping positions already on a traced NFP.

    `marked` is the set of A vertex indices already used as contacts; it is
    updated in place so repeated searches move on to unexplored vertices.
    """
    if marked is None:
        marked = set()
    a_ring = _close(a_points)
    b_ring = _close(b_points)
    wanted = Containment.INSIDE if inside else Containment.OUTSIDE

    for i in range(len(a_ring) - 1):
        if i in marked:
            continue
        marked.add(i)
        for j in range(len(b_ring)):
            offset = (a_ring[i].x - b_ring[j].x, a_ring[i].y - b_ring[j].y)

            b_inside = _b_containment(a_ring, b_ring, offset)
            if b_inside is Containment.INDETERMINATE:
                # A and B are the same
                return None

            start = Point(*offset)
            if b_inside is wanted and not intersect(a_ring, b_ring, b_offset=offset) and not _in_nfp(start, nfp_list):
                return start

            # slide B along the edge
            vx = a_ring[i + 1].x - a_ring[i].x
            vy = a_ring[i + 1].y - a_ring[i].y

            d1 = polygon_projection_distance(a_ring, b_ring, Point(vx, vy), b_offset=offset)
            d2 = polygon_projection_distance(b_ring, a_ring, Point(-vx, -vy), a_offset=offset)

            if d1 is None and d2 is None:
                d = None
            elif d1 is None:
                d = d2
            elif d2 is None:
                d = d1
            else:
                d = min(d1, d2)

            # only slide until no longer negative
            if d is None or almost_equal(d, 0) or d <= 0:
                continue

            vd2 = vx * vx + vy * vy
            if d * d < vd2 and not almost_equal(d * d, vd2):
                vd = math.sqrt(vd2)
                vx *= d / vd
                vy *= d / vd

            offset = (offset[0] + vx, offset[1] + vy)
            b_inside = _b_containment(a_ring, b_ring, offset)
            start = Point(*offset)
            if b_inside is wanted and not intersect(a_ring, b_ring, b_offset=offset) and not _in_nfp(start, nfp_list):
                return start

    return None


def no_fit_polygon_rectangle(a_points: Sequence[Point], b_points: Sequence[Point]) -> Optional[List[Ring]]:
    """Inner NFP of B inside a rectangular A; None if B does not fit either way."""
    a_box = get_polygon_bounds(a_points)
    b_box = get_polygon_bounds(b_points)
    if a_box is None or b_box is None:
        return None
    if b_box.width > a_box.width or b_box.height > a_box.height:
        return None

    ref = b_points[0]
    min_x = a_box.x - b_box.x + ref.x
    max_x = a_box.max_x - b_box.max_x + ref.x
    min_y = a_box.y - b_box.y + ref.y
    max_y = a_box.max_y - b_box.max_y + ref.y
    return [[
        Point(min_x, min_y),
        Point(max_x, min_y),
        Point(max_x, max_y),
        Point(min_x, max_y),
    ]]


def _touching_contacts(A: Ring, B: Ring, offset: Offset) -> List[Tuple[int, int, int]]:
    ox, oy = offset
    contacts = []
    len_a = len(A)
    len_b = len(B)
    for i in range(len_a):
        next_i = 0 if i == len_a - 1 else i + 1
        for j in range(len_b):
            next_j = 0 if j == len_b - 1 else j + 1
            bj = Point(B[j].x + ox, B[j].y + oy)
            if almost_equal(A[i].x, bj.x) and almost_equal(A[i].y, bj.y):
                contacts.append((VERTEX_VERTEX, i, j))
            elif on_segment(A[i], A[next_i], bj):
                contacts.append((B_VERTEX_ON_A_EDGE, next_i, j))
            elif on_segment(bj, Point(B[next_j].x + ox, B[next_j].y + oy), A[i]):
                contacts.append((A_VERTEX_ON_B_EDGE, i, next_j))
    return contacts


def _translation_vectors(A: Ring, B: Ring, offset: Offset,
                         contacts: List[Tuple[int, int, int]], marked: Set[int]) -> List[TranslationVector]:
    ox, oy = offset
    len_a = len(A)
    len_b = len(B)
    vectors = []
    for kind, ia, ib in contacts:
        marked.add(ia)
        prev_ia = len_a - 1 if ia - 1 < 0 else ia - 1
        next_ia = 0 if ia + 1 >= len_a else ia + 1
        prev_ib = len_b - 1 if ib - 1 < 0 else ib - 1
        next_ib = 0 if ib + 1 >= len_b else ib + 1

        vertex_a, prev_a, next_a = A[ia], A[prev_ia], A[next_ia]
        vertex_b, prev_b, next_b = B[ib], B[prev_ib], B[next_ib]

        if kind == VERTEX_VERTEX:
            vectors.append(TranslationVector(prev_a.x - vertex_a.x, prev_a.y - vertex_a.y, (ia, prev_ia)))
            vectors.append(TranslationVector(next_a.x - vertex_a.x, next_a.y - vertex_a.y, (ia, next_ia)))
            # B vectors need to be inverted
            vectors.append(TranslationVector(vertex_b.x - prev_b.x, vertex_b.y - prev_b.y))
            vectors.append(TranslationVector(vertex_b.x - next_b.x, vertex_b.y - next_b.y))
        elif kind == B_VERTEX_ON_A_EDGE:
            vectors.append(TranslationVector(vertex_a.x - (vertex_b.x + ox), vertex_a.y - (vertex_b.y + oy),
                                             (prev_ia, ia)))
            vectors.append(TranslationVector(prev_a.x - (vertex_b.x + ox), prev_a.y - (vertex_b.y + oy),
                                             (ia, prev_ia)))
        else:
            vectors.append(TranslationVector(vertex_a.x - (vertex_b.x + ox), vertex_a.y - (vertex_b.y + oy)))
            vectors.append(TranslationVector(vertex_a.x - (prev_b.x + ox), vertex_a.y - (prev_b.y + oy)))
    return vectors


def _points_back(vector: TranslationVector, previous: Optional[TranslationVector]) -> bool:
    """True if `vector` is antiparallel to the previous move."""
    if previous is None:
        return False
    if vector.y * previous.y + vector.x * previous.x >= 0:
        return False
    length = math.sqrt(vector.x * vector.x + vector.y * vector.y)
    prev_length = math.sqrt(previous.x * previous.x + previous.y * previous.y)
    ux, uy = vector.x / length, vector.y / length
    px, py = previous.x / prev_length, previous.y / prev_length
    return abs(uy * px - ux * py) < 0.0001


def _orbit(A: Ring, B: Ring, start: Point, marked: Set[int]) -> Optional[Ring]:
    """Trace a single NFP loop starting with B at `start`. None if it does not close."""
    offset = (start.x, start.y)
    previous = None
    reference = Point(B[0].x + offset[0], B[0].y + offset[1])
    origin = reference
    nfp = [reference]

    limit = 10 * (len(A) + len(B))
    for _ in range(limit):
        contacts = _touching_contacts(A, B, offset)
        vectors = _translation_vectors(A, B, offset, contacts, marked)

        translate = None
        max_d = 0.0
        for vector in vectors:
            if vector.x == 0 and vector.y == 0:
                continue
            if _points_back(vector, previous):
                continue

            d = polygon_slide_distance(A, B, Point(vector.x, vector.y), True, b_offset=offset)
            vec_d2 = vector.x * vector.x + vector.y * vector.y
            if d is None or d * d > vec_d2:
                d = math.sqrt(vec_d2)

            if d > max_d:
                max_d = d
                translate = vector

        if translate is None or almost_equal(max_d, 0):
            logger.debug(f"[NFP] Orbit stalled after {len(nfp)} points")
            return None

        marked.update(translate.a_vertices)

        tx, ty = translate.x, translate.y
        length2 = tx * tx + ty * ty
        if max_d * max_d < length2 and not almost_equal(max_d * max_d, length2):
            scale = math.sqrt((max_d * max_d) / length2)
            tx *= scale
            ty *= scale
        previous = TranslationVector(tx, ty)

        reference = Point(reference.x + tx, reference.y + ty)
        if almost_equal(reference.x, origin.x) and almost_equal(reference.y, origin.y):
            return nfp

        # starting on a shared horizontal edge may close on an earlier point
        if any(almost_equal(reference.x, p.x) and almost_equal(reference.y, p.y) for p in nfp[:-1]):
            return nfp

        nfp.append(reference)
        offset = (offset[0] + tx, offset[1] + ty)

    logger.debug(f"[NFP] Orbit hit the iteration cap ({limit}) without closing")
    return None


def no_fit_polygon(a_points: Sequence[Point], b_points: Sequence[Point], inside: bool = False,
                   search_edges: bool = False) -> Optional[List[Ring]]:
    """
    Compute the NFP of B around A (or inside A when `inside` is set).

    Returns a list of closed rings (closing point not repeated) expressed in
    terms of B's reference point, or None when no loop could be traced. With
    `search_edges` every edge of A is explored, which can produce several
    loops for concave shapes.
    """
    if a_points is None or len(a_points) < 3 or b_points is None or len(b_points) < 3:
        return None

    A = [Point(p[0], p[1]) for p in a_points]
    B = [Point(p[0], p[1]) for p in b_points]
    marked: Set[int] = set()

    if not inside:
        # B's top-most point at A's bottom-most point gives a contact with no overlap
        min_a_index = min(range(len(A)), key=lambda k: (A[k].y, k))
        max_b_index = max(range(len(B)), key=lambda k: (B[k].y, -k))
        start = Point(A[min_a_index].x - B[max_b_index].x, A[min_a_index].y - B[max_b_index].y)
    else:
        start = search_start_point(A, B, True, None, marked)

    nfp_list: List[Ring] = []
    while start is not None:
        ring = _orbit(A, B, start, marked)
        if ring:
            nfp_list.append(ring)

        if not search_edges:
            break
        start = search_start_point(A, B, inside, nfp_list, marked)

    return nfp_list or None
