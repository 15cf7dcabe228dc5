"""
Tests for NFP key derivation, the generation-scoped cache and NFP work items.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import nfp_cache
from conftest import rect
from genetic_optimizer import Individual
from geometry.polygon import Point, Polygon, get_polygon_bounds, polygon_area
from nesting_errors import GEOMETRY_ANOMALY, error_handler
from nfp_cache import (
    NfpCache, NfpKey, NfpPair, compute_nfp, compute_nfp_entry, individual_nfp_keys, plan_nfp_pairs,
)


def make_parts(count, size=2):
    return [Polygon(rect(size + i, size), id=i) for i in range(count)]


def test_individual_key_count():
    parts = make_parts(4)
    keys = individual_nfp_keys(parts, [0, 90, 0, 90])
    # one inner key per part, one outer key per ordered pair
    assert len(keys) == 4 + 4 * 3 // 2
    assert len(set(keys)) == len(keys)
    assert NfpKey(-1, 2, True, 0, 0) in keys
    assert NfpKey(0, 3, False, 0, 90) in keys
    assert NfpKey(3, 0, False, 90, 0) not in keys


def test_plan_deduplicates_and_reuses_cache(bin_polygon):
    parts = make_parts(3)
    first = Individual(list(parts), [0, 0, 0])
    twin = Individual(list(parts), [0, 0, 0])

    cached_key = NfpKey(-1, 0, True, 0, 0)
    stale_key = NfpKey(-1, 0, True, 0, 180)
    cache = NfpCache({cached_key: [rect(1, 1)], stale_key: [rect(1, 1)]})

    retained, pending, required = plan_nfp_pairs([first, twin], bin_polygon, cache)
    assert len(required) == 6
    assert list(retained.keys()) == [cached_key]
    assert len(pending) == 5
    assert all(pair.key != cached_key for pair in pending)
    # inner pairs use the bin as the fixed polygon
    inner = [pair for pair in pending if pair.key.inside]
    assert all(pair.a is bin_polygon for pair in inner)
    outer = next(pair for pair in pending if pair.key == NfpKey(0, 2, False, 0, 0))
    assert outer.a.id == 0 and outer.b.id == 2


def test_cache_updates_return_new_cache():
    key_a = NfpKey(0, 1, False, 0, 0)
    key_b = NfpKey(1, 2, False, 0, 0)
    cache = NfpCache({key_a: [rect(1, 1)]})

    merged = cache.merged([(key_b, [rect(2, 2)]), (NfpKey(2, 3, False, 0, 0), None)])
    assert len(cache) == 1
    assert len(merged) == 2
    assert key_b in merged and key_b not in cache
    assert merged.get(NfpKey(2, 3, False, 0, 0)) is None

    retained = merged.retain([key_b])
    assert list(retained) == [key_b]
    assert merged.subset([key_a, NfpKey(9, 9, False, 0, 0)]) == {key_a: [rect(1, 1)]}


def test_inner_nfp_has_negative_winding(bin_polygon):
    part = Polygon(rect(4, 4), id=0)
    nfp = compute_nfp(NfpPair(NfpKey(-1, 0, True, 0, 0), bin_polygon, part))
    assert len(nfp) == 1
    assert polygon_area(nfp[0]) < 0
    assert abs(polygon_area(nfp[0])) == pytest.approx(36)


def test_inner_nfp_of_rotated_part(bin_polygon):
    part = Polygon(rect(8, 2), id=0)
    nfp = compute_nfp(NfpPair(NfpKey(-1, 0, True, 0, 90), bin_polygon, part))
    bounds = get_polygon_bounds(nfp[0])
    # 2 x 8 once rotated: 8 positions across, 2 up
    assert bounds.width == pytest.approx(8)
    assert bounds.height == pytest.approx(2)


def test_inner_nfp_missing_when_part_too_big(bin_polygon):
    part = Polygon(rect(12, 4), id=0)
    key, nfp = compute_nfp_entry(NfpPair(NfpKey(-1, 0, True, 0, 0), bin_polygon, part))
    assert key == NfpKey(-1, 0, True, 0, 0)
    assert nfp is None


def test_outer_nfp(square4):
    a = Polygon(square4, id=0)
    b = Polygon(square4, id=1)
    nfp = compute_nfp(NfpPair(NfpKey(0, 1, False, 0, 0), a, b))
    assert len(nfp) == 1
    assert polygon_area(nfp[0]) < 0
    assert abs(polygon_area(nfp[0])) == pytest.approx(64)


def test_outer_nfp_by_orbiting(square4):
    a = Polygon(square4, id=0)
    b = Polygon(rect(2, 2), id=1)
    nfp = compute_nfp(NfpPair(NfpKey(0, 1, False, 0, 0), a, b), search_edges=True)
    assert abs(polygon_area(nfp[0])) == pytest.approx(36)


def test_outer_nfp_includes_hole_positions():
    hole = Polygon(rect(10, 10, x=5, y=5)[::-1], id=1)
    frame = Polygon(rect(20, 20), id=0, children=[hole])
    small = Polygon(rect(4, 4), id=2)
    key = NfpKey(0, 2, False, 0, 0)

    without_holes = compute_nfp(NfpPair(key, frame, small))
    with_holes = compute_nfp(NfpPair(key, frame, small), use_holes=True)

    assert len(without_holes) == 1
    assert len(with_holes) == 2
    inner = with_holes[1]
    assert polygon_area(inner) > 0
    assert abs(polygon_area(inner)) == pytest.approx(36)
    bounds = get_polygon_bounds(inner)
    assert bounds.x == pytest.approx(5) and bounds.y == pytest.approx(5)


def test_hole_too_small_is_skipped():
    hole = Polygon(rect(3, 3, x=5, y=5)[::-1], id=1)
    frame = Polygon(rect(20, 20), id=0, children=[hole])
    small = Polygon(rect(4, 4), id=2)
    nfp = compute_nfp(NfpPair(NfpKey(0, 2, False, 0, 0), frame, small), use_holes=True)
    assert len(nfp) == 1


def test_compute_nfp_reraises_worker_errors():
    broken = NfpPair(NfpKey(0, 1, False, 0, 0), None, Polygon([Point(0, 0)] * 3, id=1))
    with pytest.raises(AttributeError):
        compute_nfp(broken)


def test_undersized_outer_nfp_is_rejected(monkeypatch, square4):
    error_handler.reset_error_counts()
    monkeypatch.setattr(nfp_cache, 'minkowski_difference', lambda a, b, scale: [rect(1, 1)])

    a = Polygon(square4, id=0)
    b = Polygon(rect(2, 2), id=1)
    assert compute_nfp(NfpPair(NfpKey(0, 1, False, 0, 0), a, b)) is None
    assert error_handler.error_counts[GEOMETRY_ANOMALY] == 1
    incident = error_handler.recent_incidents(GEOMETRY_ANOMALY)[0]
    assert incident['context']['key'] == NfpKey(0, 1, False, 0, 0)


def test_inner_nfp_in_concave_bin():
    sheet = Polygon([Point(0, 0), Point(10, 0), Point(10, 5), Point(5, 5), Point(5, 10), Point(0, 10)], id=-1)
    part = Polygon(rect(4, 4), id=0)
    nfp = compute_nfp(NfpPair(NfpKey(-1, 0, True, 0, 0), sheet, part))
    assert len(nfp) == 1
    assert polygon_area(nfp[0]) < 0
    assert abs(polygon_area(nfp[0])) == pytest.approx(11)


def test_plan_keeps_entries_of_referenced_individuals(bin_polygon):
    parts = make_parts(2)
    elite = Individual(list(parts), [0, 0])
    child = Individual(list(parts[::-1]), [0, 0])
    elite_key = NfpKey(0, 1, False, 0, 0)
    cache = NfpCache({key: [rect(1, 1)] for key in individual_nfp_keys(elite.placement, elite.rotation)})

    retained, pending, required = plan_nfp_pairs([child], bin_polygon, cache, referenced=[elite])
    # the elite's outer NFP is kept but not required by the child
    assert elite_key in retained and elite_key not in required
    assert [pair.key for pair in pending] == [NfpKey(1, 0, False, 0, 0)]

    narrowed, _, _ = plan_nfp_pairs([child], bin_polygon, cache)
    assert elite_key not in narrowed
