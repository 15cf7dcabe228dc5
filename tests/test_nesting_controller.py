"""
Tests for the nesting controller: rounds, reporting, lifecycle and failure handling.
"""

import os
import random
import sys
import threading

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import rect
from nesting_config import NestingConfig
from nesting_controller import NestingController
from nfp_cache import individual_nfp_keys
from parallel_executor import BatchError, ParallelExecutor


def as_tuples(points):
    return [(p.x, p.y) for p in points]


def make_controller(executor=None, **options):
    settings = dict(population_size=3, rotations=1, executor_backend='thread', max_workers=2,
                    poll_interval=0.01)
    settings.update(options)
    return NestingController(NestingConfig(**settings), executor=executor, rng=random.Random(5))


class FailingExecutor(ParallelExecutor):
    def map(self, func, items, progress_callback=None):
        raise BatchError(items[0] if items else None, RuntimeError("worker died"), 0, len(items))


class StoppingExecutor(ParallelExecutor):
    """Stops the controller while the first batch is in flight."""

    controller = None

    def map(self, func, items, progress_callback=None):
        result = super().map(func, items, progress_callback)
        self.controller.stop()
        return result


class BlockingExecutor(ParallelExecutor):
    """Holds every batch until released."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.entered = threading.Event()
        self.release = threading.Event()

    def map(self, func, items, progress_callback=None):
        self.entered.set()
        self.release.wait(timeout=30)
        return super().map(func, items, progress_callback)


def test_start_without_parts_returns_false():
    controller = make_controller()
    assert controller.start() is False
    assert controller.load([], as_tuples(rect(10, 10))) is False
    assert controller.start() is False


def test_load_rejects_degenerate_bin():
    controller = make_controller()
    assert controller.load([as_tuples(rect(4, 4))], [(0, 0), (5, 0), (10, 0)]) is False
    assert controller.bin is None


def test_step_reports_improvement_then_nothing():
    calls = []
    controller = make_controller()
    controller.display_callback = lambda *args: calls.append(args)
    assert controller.load([as_tuples(rect(4, 4))], as_tuples(rect(10, 10)))

    result = controller.step()
    assert result.fitness == pytest.approx(1.04)
    assert controller.progress == 1.0
    placements, efficiency, placed, total = calls[0]
    assert efficiency == pytest.approx(0.16)
    assert (placed, total) == (1, 1)
    assert placements[0][0].id == 0

    # every individual is evaluated in one round; the next round breeds
    assert all(ind.fitness is not None for ind in controller.population())
    controller.step()
    assert controller.optimizer.generation_count == 1
    assert calls[1] == ()
    assert controller.best.fitness == pytest.approx(1.04)
    controller.shutdown()


def test_cache_keeps_only_referenced_entries():
    controller = make_controller()
    controller.load([as_tuples(rect(4, 4)), as_tuples(rect(3, 2))], as_tuples(rect(10, 10)))
    controller.step()
    # two inner NFPs and one outer NFP per ordering
    assert 3 <= len(controller.nfp_cache) <= 4
    controller.shutdown()


def test_placement_returned_in_input_coordinates():
    controller = make_controller()
    controller.load([as_tuples(rect(4, 4))], as_tuples(rect(10, 10, x=100, y=50)))
    controller.step()
    shapes = controller.apply_placement()
    xs = [p.x for p in shapes[0][0]['points']]
    ys = [p.y for p in shapes[0][0]['points']]
    assert min(xs) == pytest.approx(100) and max(xs) == pytest.approx(104)
    assert min(ys) == pytest.approx(50) and max(ys) == pytest.approx(54)
    controller.shutdown()


def test_unplaceable_part_is_counted():
    controller = make_controller()
    controller.load([as_tuples(rect(4, 4)), as_tuples(rect(12, 12))], as_tuples(rect(10, 10)))
    result = controller.step()
    assert result.fitness == pytest.approx(3.04)
    assert result.placed_count == 1
    assert controller.efficiency() == pytest.approx(0.16)
    controller.shutdown()


def test_update_config_resets_run():
    controller = make_controller()
    controller.load([as_tuples(rect(4, 4))], as_tuples(rect(10, 10)))
    controller.step()
    assert controller.best is not None

    config = controller.update_config(spacing=1, rotations=2)
    assert config['spacing'] == 1.0 and config['rotations'] == 2
    assert controller.best is None
    assert controller.optimizer is None
    assert len(controller.nfp_cache) == 0
    assert controller.bin.width == pytest.approx(9, abs=1e-6)
    controller.shutdown()


def test_round_finishing_after_stop_is_discarded():
    executor = StoppingExecutor(max_workers=2, backend='thread')
    controller = make_controller(executor=executor)
    executor.controller = controller
    controller.load([as_tuples(rect(4, 4))], as_tuples(rect(10, 10)))

    assert controller.step() is None
    assert controller.best is None
    assert len(controller.nfp_cache) == 0
    executor.shutdown()


def test_background_loop_finds_a_result():
    found = threading.Event()
    progress = []
    controller = make_controller()
    controller.load([as_tuples(rect(4, 4)), as_tuples(rect(5, 3))], as_tuples(rect(10, 10)))

    def on_display(*args):
        if args:
            found.set()

    assert controller.start(progress_callback=progress.append, display_callback=on_display)
    assert found.wait(timeout=30)
    controller.stop()
    assert not controller.is_running
    assert controller.best is not None
    assert all(0.0 <= value <= 1.0 for value in progress)
    # NFP progress arrives while the round is still running
    assert any(0.0 < value < 1.0 for value in progress)
    controller.shutdown()


def test_repeated_batch_failures_stop_the_run():
    errors = []
    controller = make_controller(executor=FailingExecutor(backend='thread'), max_batch_failures=2)
    controller.error_callback = errors.append
    controller.load([as_tuples(rect(4, 4))], as_tuples(rect(10, 10)))

    assert controller.step() is None
    assert errors == []
    assert controller.step() is None
    assert len(errors) == 1
    assert isinstance(errors[0], BatchError)
    assert isinstance(errors[0].error, RuntimeError)
    assert controller.best is None


def test_background_loop_reports_failure():
    failed = threading.Event()
    controller = make_controller(executor=FailingExecutor(backend='thread'), max_batch_failures=2)
    controller.load([as_tuples(rect(4, 4))], as_tuples(rect(10, 10)))

    assert controller.start(on_error=lambda error: failed.set())
    assert failed.wait(timeout=30)
    controller.stop()
    assert not controller.is_running
    controller.shutdown()


def test_stop_returns_while_round_is_in_flight():
    executor = BlockingExecutor(max_workers=2, backend='thread')
    controller = make_controller(executor=executor)
    controller.load([as_tuples(rect(4, 4))], as_tuples(rect(10, 10)))

    assert controller.start()
    assert executor.entered.wait(timeout=30)
    poller = controller._thread
    controller.stop()
    assert poller.is_alive()
    assert not controller.is_running

    executor.release.set()
    controller.shutdown()
    assert not poller.is_alive()
    assert controller.best is None
    executor.shutdown()


def test_elite_entries_survive_the_next_generation():
    controller = make_controller()
    controller.load([as_tuples(rect(4, 4)), as_tuples(rect(3, 2))], as_tuples(rect(10, 10)))
    controller.step()
    controller.step()

    elite = controller.population()[0]
    assert elite.fitness is not None
    for key in individual_nfp_keys(elite.placement, elite.rotation, controller.bin.polygon.id):
        assert key in controller.nfp_cache
    controller.shutdown()
