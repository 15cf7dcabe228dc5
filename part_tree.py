"""
Part tree construction and input preparation

Turns raw input rings into nestable polygons:
  - cleans every ring and drops degenerate ones
  - nests rings into parts and holes (a ring inside another is its child)
  - applies spacing offsets, alternating outward/inward with depth
  - normalizes winding and moves the bin to the origin

The tree is an arena: nodes are addressed by id and refer to each other by
id only.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from geometry.clipper_ops import clean_polygon, offset_polygon
from geometry.polygon import (
    BoundingBox, Containment, GeometryError, Point, Polygon, almost_equal,
    get_polygon_bounds, point_in_polygon, polygon_area,
)

logger = logging.getLogger(__name__)

BIN_ID = -1


@dataclass
class PartNode:
    """One ring of the input, either a part (even depth) or a hole (odd depth)"""
    id: int
    points: List[Point]
    source: int
    source_area: float  # |area| before spacing offsets
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)
    depth: int = 0

    @property
    def is_hole(self) -> bool:
        return self.depth % 2 == 1


@dataclass
class PartTree:
    """Arena of part nodes; `roots` are the top-level parts in id order"""
    nodes: Dict[int, PartNode] = field(default_factory=dict)
    roots: List[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.roots)

    def polygon(self, node_id: int) -> Polygon:
        """Materialize a node and its descendants as a Polygon value."""
        node = self.nodes[node_id]
        children = [self.polygon(child) for child in node.children]
        return Polygon(list(node.points), id=node.id, children=children, source=node.source)

    def source_area(self, node_id: int) -> float:
        return self.nodes[node_id].source_area


@dataclass
class PreparedBin:
    """Bin polygon moved to the origin, plus its original placement for output"""
    polygon: Polygon
    width: float
    height: float
    original_bounds: BoundingBox
    origin: Point = Point(0.0, 0.0)  # shift applied to move the bin to the origin

    @property
    def area(self) -> float:
        return abs(self.polygon.area())


def _strip_closing_point(points: List[Point]) -> List[Point]:
    if len(points) > 1:
        start, end = points[0], points[-1]
        if almost_equal(start.x, end.x) and almost_equal(start.y, end.y):
            return points[:-1]
    return points


def _as_points(ring: Iterable[Sequence[float]]) -> List[Point]:
    return [Point(float(p[0]), float(p[1])) for p in ring]


def build_part_tree(rings: Sequence[Iterable[Sequence[float]]], curve_tolerance: float = 0.3) -> PartTree:
    """
    Clean the input rings and nest them into a part tree.

    A ring becomes the child of the first other ring that strictly contains
    its first point. Top-level parts are numbered first (0..n-1), then the
    children of each part in turn, depth first.
    """
    cleaned: List[Tuple[int, List[Point]]] = []
    min_area = curve_tolerance * curve_tolerance
    for source, ring in enumerate(rings):
        points = _as_points(ring)
        if len(points) < 3:
            logger.warning(f"[TREE] Ring {source} skipped: fewer than 3 points")
            continue
        clean = clean_polygon(points, curve_tolerance)
        if not clean or len(clean) < 3 or abs(polygon_area(clean)) <= min_area:
            logger.warning(f"[TREE] Ring {source} skipped: degenerate after cleaning")
            continue
        cleaned.append((source, clean))

    # index in `cleaned` of each ring's container, if any
    container: Dict[int, Optional[int]] = {}
    for i, (_, points) in enumerate(cleaned):
        container[i] = None
        for j, (_, other) in enumerate(cleaned):
            if i == j:
                continue
            if point_in_polygon(points[0], other) is Containment.INSIDE:
                container[i] = j
                break

    # a ring may have been attached to an outer ancestor; move it to the
    # innermost ring that contains it
    for i, (_, points) in enumerate(cleaned):
        parent = container[i]
        if parent is None:
            continue
        for j, (_, other) in enumerate(cleaned):
            if j in (i, parent):
                continue
            if (abs(polygon_area(other)) < abs(polygon_area(cleaned[parent][1]))
                    and point_in_polygon(points[0], other) is Containment.INSIDE):
                parent = j
        container[i] = parent

    children_of: Dict[Optional[int], List[int]] = {}
    for i in range(len(cleaned)):
        children_of.setdefault(container[i], []).append(i)

    tree = PartTree()
    next_id = 0

    def assign(indices: List[int], parent_id: Optional[int], depth: int) -> None:
        nonlocal next_id
        ids = []
        for index in indices:
            source, points = cleaned[index]
            node = PartNode(id=next_id, points=points, source=source,
                            source_area=abs(polygon_area(points)), parent=parent_id, depth=depth)
            tree.nodes[node.id] = node
            if parent_id is None:
                tree.roots.append(node.id)
            else:
                tree.nodes[parent_id].children.append(node.id)
            ids.append((index, node.id))
            next_id += 1
        for index, node_id in ids:
            if index in children_of:
                assign(children_of[index], node_id, depth + 1)

    assign(children_of.get(None, []), None, 0)
    logger.info(f"[TREE] Built tree: {len(tree.roots)} parts, {len(tree.nodes) - len(tree.roots)} holes")
    return tree


def prepare_parts(tree: PartTree, spacing: float = 0.0, curve_tolerance: float = 0.3) -> List[Polygon]:
    """
    Apply spacing and winding rules and return the top-level parts.

    Parts grow by spacing/2, holes shrink by the same amount (alternating
    with depth). Parts end up with negative area, holes with positive.
    """
    def prepare(node_id: int) -> Polygon:
        node = tree.nodes[node_id]
        points = _strip_closing_point(list(node.points))
        offset = 0.5 * spacing * (-1 if node.is_hole else 1)
        if spacing > 0:
            offset_rings = offset_polygon(points, offset, curve_tolerance)
            if len(offset_rings) == 1:
                points = offset_rings[0]
            else:
                logger.warning(f"[TREE] Offset of node {node_id} produced {len(offset_rings)} rings, keeping original")
        points = _strip_closing_point(points)

        area = polygon_area(points)
        if (node.is_hole and area < 0) or (not node.is_hole and area > 0):
            points = points[::-1]

        children = [prepare(child) for child in node.children]
        return Polygon(points, id=node.id, children=children, source=node.source)

    return [prepare(root) for root in tree.roots]


def prepare_bin(ring: Iterable[Sequence[float]], spacing: float = 0.0, curve_tolerance: float = 0.3) -> PreparedBin:
    """Clean, shrink by spacing/2 and move the bin so its bounds start at the origin."""
    points = _as_points(ring)
    if len(points) < 3:
        raise GeometryError(f"Bin needs at least 3 points, got {len(points)}")

    clean = clean_polygon(points, curve_tolerance)
    if not clean or len(clean) < 3:
        raise GeometryError("Bin polygon is degenerate after cleaning")

    original_bounds = get_polygon_bounds(clean)

    if spacing > 0:
        offset_rings = offset_polygon(clean, -0.5 * spacing, curve_tolerance)
        if len(offset_rings) == 1:
            clean = offset_rings[0]
        else:
            # zero or several rings means the offset went wrong
            logger.warning(f"[TREE] Bin offset produced {len(offset_rings)} rings, keeping original")

    clean = _strip_closing_point(clean)
    bounds = get_polygon_bounds(clean)
    shifted = [Point(p.x - bounds.x, p.y - bounds.y) for p in clean]
    if polygon_area(shifted) > 0:
        shifted.reverse()

    polygon = Polygon(shifted, id=BIN_ID)
    logger.info(f"[TREE] Bin prepared: {bounds.width:.3f} x {bounds.height:.3f}, {len(shifted)} points")
    return PreparedBin(polygon=polygon, width=bounds.width, height=bounds.height,
                       original_bounds=original_bounds, origin=Point(bounds.x, bounds.y))
