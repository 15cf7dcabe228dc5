"""
Tests for the parallel executor.
"""

import os
import sys
import threading

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import rect
from geometry.polygon import polygon_area
from parallel_executor import BatchError, ParallelExecutor


def square(value):
    return value * value


def fail_on_three(value):
    if value == 3:
        raise ValueError("bad item")
    return value


def test_results_follow_input_order():
    with ParallelExecutor(max_workers=4, backend='thread') as executor:
        pairs = executor.map(square, [5, 1, 4, 2, 3])
    assert pairs == [(5, 25), (1, 1), (4, 16), (2, 4), (3, 9)]


def test_progress_reports_every_item():
    calls = []
    with ParallelExecutor(max_workers=2, backend='thread') as executor:
        executor.map(square, range(7), lambda done, total: calls.append((done, total)))
    assert [done for done, _ in calls] == list(range(1, 8))
    assert all(total == 7 for _, total in calls)


def test_progress_callback_runs_on_calling_thread():
    threads = set()
    with ParallelExecutor(max_workers=3, backend='thread') as executor:
        executor.map(square, range(5), lambda done, total: threads.add(threading.current_thread()))
    assert threads == {threading.current_thread()}


def test_failure_rejects_batch():
    with ParallelExecutor(max_workers=2, backend='thread') as executor:
        with pytest.raises(BatchError) as info:
            executor.map(fail_on_three, [1, 2, 3, 4])
        # pool stays usable after a failed batch
        assert executor.map(square, [2]) == [(2, 4)]
    assert info.value.item == 3
    assert isinstance(info.value.error, ValueError)
    assert info.value.total == 4


def test_empty_batch():
    executor = ParallelExecutor(max_workers=2, backend='thread')
    assert executor.map(square, []) == []
    # nothing submitted, no pool created
    assert executor._pool is None


def test_unknown_backend():
    with pytest.raises(ValueError):
        ParallelExecutor(backend='gpu')


def test_default_worker_count():
    executor = ParallelExecutor(backend='thread')
    assert executor.max_workers >= 1


def test_process_backend():
    rings = [rect(2, 3), rect(4, 4), rect(1, 5)]
    with ParallelExecutor(max_workers=2, backend='process') as executor:
        pairs = executor.map(polygon_area, rings)
    assert [area for _, area in pairs] == pytest.approx([-6.0, -16.0, -5.0])
