"""
Geometry kernel for irregular-shape nesting.

This package provides the polygon primitives and the no-fit polygon code the
nesting engine is built on.

Key functions:
- no_fit_polygon(A, B, inside, search_edges): orbiting NFP of B around/inside A
- no_fit_polygon_rectangle(A, B): closed form inner NFP for rectangular A
- minkowski_difference(A, B): outer NFP via pyclipper
- point_in_polygon / intersect / polygon_area / get_polygon_bounds
"""

from .polygon import (
    TOL, BoundingBox, Containment, GeometryError, Point, Polygon, almost_equal,
    get_polygon_bounds, intersect, is_rectangle, line_intersect, on_segment,
    point_in_polygon, polygon_area, rotate_polygon,
)
from .nfp import (
    no_fit_polygon, no_fit_polygon_rectangle, point_distance, polygon_projection_distance,
    polygon_slide_distance, search_start_point, segment_distance,
)
from .clipper_ops import clean_polygon, minkowski_difference, offset_polygon

__all__ = [
    "TOL", "BoundingBox", "Containment", "GeometryError", "Point", "Polygon",
    "almost_equal", "get_polygon_bounds", "intersect", "is_rectangle", "line_intersect",
    "on_segment", "point_in_polygon", "polygon_area", "rotate_polygon",
    "no_fit_polygon", "no_fit_polygon_rectangle", "point_distance",
    "polygon_projection_distance", "polygon_slide_distance", "search_start_point",
    "segment_distance", "clean_polygon", "minkowski_difference", "offset_polygon",
]
