#!/usr/bin/env python3
"""
Nesting Controller
Drives the genetic search: derives NFP work, fans it out to the executor,
evaluates placements and reports improvements.

Usage:
    controller = NestingController(NestingConfig(rotations=4))
    controller.load(part_rings, bin_ring)
    controller.start(progress_callback, display_callback)
    ...
    controller.stop()
"""

import logging
import random
import threading
from functools import partial
from typing import Callable, Dict, List, Optional, Sequence

from genetic_optimizer import GeneticOptimizer, Individual
from geometry.polygon import GeometryError, Polygon
from nesting_config import NestingConfig
from nesting_errors import BATCH_FAILURE, error_handler, log_performance
from nfp_cache import NfpCache, compute_nfp_entry, individual_nfp_keys, plan_nfp_pairs
from parallel_executor import BatchError, ParallelExecutor
from part_tree import PartTree, PreparedBin, build_part_tree, prepare_bin, prepare_parts
from placement_engine import PlacementResult, PlacementTask, apply_placement, evaluate_placement

logger = logging.getLogger(__name__)

# options whose change invalidates the executor pool
_EXECUTOR_OPTIONS = ('max_workers', 'executor_backend')


class NestingController:
    """
    Owns the run state: prepared parts and bin, the optimizer, the NFP cache
    and the best result so far. One round evaluates every individual of the
    population that has no fitness yet.
    """

    def __init__(self, config: Optional[NestingConfig] = None,
                 executor: Optional[ParallelExecutor] = None,
                 rng: Optional[random.Random] = None):
        self.config = config or NestingConfig()
        self._setup_logging()
        self.rng = rng or random.Random()

        self._executor = executor
        self._owns_executor = executor is None

        self._part_rings: List = []
        self._bin_ring: Optional[Sequence] = None
        self.tree: Optional[PartTree] = None
        self.parts: List[Polygon] = []
        self.bin: Optional[PreparedBin] = None

        self.optimizer: Optional[GeneticOptimizer] = None
        self.nfp_cache = NfpCache()
        self.best: Optional[PlacementResult] = None
        self.progress = 0.0
        self.working = False

        self._run_id = 0
        self._round_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._consecutive_failures = 0

        self.progress_callback: Optional[Callable[[float], None]] = None
        self.display_callback: Optional[Callable] = None
        self.error_callback: Optional[Callable[[Exception], None]] = None

    def _setup_logging(self):
        """Setup logging configuration"""
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    @property
    def executor(self) -> ParallelExecutor:
        if self._executor is None:
            self._executor = ParallelExecutor(self.config.max_workers, self.config.executor_backend)
            self._owns_executor = True
        return self._executor

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def update_config(self, **kwargs) -> Dict:
        """Apply options and reset the run; returns the resulting configuration."""
        changed = self.config.update_config(**kwargs)
        if any(name in changed for name in _EXECUTOR_OPTIONS) and self._owns_executor and self._executor:
            self._executor.shutdown()
            self._executor = None
        self._reset_run()
        if self._bin_ring is not None:
            self._prepare()
        return self.config.get_config()

    def _reset_run(self):
        self._run_id += 1
        self.best = None
        self.nfp_cache = NfpCache()
        self.optimizer = None
        self.progress = 0.0
        self._consecutive_failures = 0

    def load(self, part_rings: Sequence[Sequence[Sequence[float]]], bin_ring: Sequence[Sequence[float]]) -> bool:
        """
        Set the shapes to nest. Returns False when there is nothing to nest
        or the bin is unusable.
        """
        self._part_rings = list(part_rings)
        self._bin_ring = bin_ring
        self._reset_run()
        return self._prepare()

    def _prepare(self) -> bool:
        cfg = self.config
        try:
            self.bin = prepare_bin(self._bin_ring, cfg.spacing, cfg.curve_tolerance)
        except GeometryError as e:
            logger.error(f"[NEST] Invalid bin: {e}")
            self.bin = None
            return False

        self.tree = build_part_tree(self._part_rings, cfg.curve_tolerance)
        self.parts = prepare_parts(self.tree, cfg.spacing, cfg.curve_tolerance)
        logger.info(f"[NEST] Loaded {len(self.parts)} parts, bin {self.bin.width:.3f} x {self.bin.height:.3f}")
        return bool(self.parts)

    def start(self, progress_callback: Optional[Callable[[float], None]] = None,
              display_callback: Optional[Callable] = None,
              on_error: Optional[Callable[[Exception], None]] = None) -> bool:
        """Start the background polling loop. False if nothing is loaded."""
        if not self.parts or self.bin is None:
            logger.warning("[NEST] Nothing to nest, not starting")
            return False
        if self.is_running:
            self.stop()

        self.progress_callback = progress_callback
        self.display_callback = display_callback
        self.error_callback = on_error
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._poll, args=(self._stop_event,),
                                        name='nest-controller', daemon=True)
        self._thread.start()
        logger.info(f"[NEST] Started with {self.config.get_config()}")
        return True

    def stop(self):
        """
        Stop polling without waiting. A round in flight finishes in the
        background and its result is dropped.
        """
        self._run_id += 1
        self._stop_event.set()
        logger.info("[NEST] Stopped")

    def shutdown(self):
        """Stop, wait for the polling thread and release the executor."""
        self.stop()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._thread = None
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown()
            self._executor = None

    def _poll(self, stop_event: threading.Event):
        while not stop_event.wait(self.config.poll_interval):
            if not self.working:
                try:
                    self.step()
                except Exception as e:
                    self._record_failure(e)
            if stop_event.is_set():
                break
            if self.progress_callback:
                self.progress_callback(self.progress)

    def _build_optimizer(self) -> GeneticOptimizer:
        # largest parts first
        adam = sorted(self.parts, key=lambda p: abs(p.area()), reverse=True)
        return GeneticOptimizer(adam, self.bin.polygon.bounds(), self.config, self.rng)

    def _on_nfp_progress(self, completed: int, total: int):
        self.progress = completed / total
        if self.progress_callback:
            self.progress_callback(self.progress)

    @log_performance
    def step(self) -> Optional[PlacementResult]:
        """
        Run one round synchronously: compute missing NFPs, evaluate every
        unevaluated individual and update the best result.
        """
        if not self.parts or self.bin is None:
            return None
        if not self._round_lock.acquire(blocking=False):
            return None

        run_id = self._run_id
        self.working = True
        try:
            if self.optimizer is None:
                self.optimizer = self._build_optimizer()

            pending = [ind for ind in self.optimizer.population if ind.fitness is None]
            if not pending:
                self.optimizer.generation()
                pending = [ind for ind in self.optimizer.population if ind.fitness is None]

            # evaluated individuals (the elite) keep their entries for the next generation
            retained, pairs, _ = plan_nfp_pairs(pending, self.bin.polygon, self.nfp_cache,
                                                referenced=self.optimizer.population)
            self.progress = 0.0 if pairs else 1.0
            work = partial(compute_nfp_entry, search_edges=self.config.search_edges,
                           use_holes=self.config.use_holes, clipper_scale=self.config.clipper_scale)
            try:
                computed = self.executor.map(work, pairs, self._on_nfp_progress)
            except BatchError as e:
                self._record_failure(e)
                return None

            cache = retained.merged(result for _, result in computed)
            if run_id != self._run_id:
                logger.info("[NEST] Round discarded after stop/reset")
                return None
            self.nfp_cache = cache

            tasks = [
                PlacementTask(self.bin.polygon, ind.placement, ind.rotation,
                              cache.subset(individual_nfp_keys(ind.placement, ind.rotation, self.bin.polygon.id)),
                              index)
                for index, ind in enumerate(pending)
            ]
            try:
                evaluated = self.executor.map(evaluate_placement, tasks)
            except BatchError as e:
                self._record_failure(e)
                return None

            if run_id != self._run_id:
                logger.info("[NEST] Round discarded after stop/reset")
                return None

            self._consecutive_failures = 0
            round_best = None
            for task, result in evaluated:
                pending[task.index].fitness = result.fitness
                if round_best is None or result.fitness < round_best.fitness:
                    round_best = result

            self._report(round_best)
            return round_best
        finally:
            self.working = False
            self._round_lock.release()

    def _report(self, result: PlacementResult):
        if self.best is None or result.fitness < self.best.fitness:
            self.best = result
            efficiency = self.efficiency(result)
            logger.info(f"[NEST] New best fitness {result.fitness:.6f}: {result.placed_count}/{len(self.parts)} "
                        f"parts in {result.bins_used} bins, efficiency {efficiency:.2%}")
            if self.display_callback:
                self.display_callback(result.placements, efficiency, result.placed_count, len(self.parts))
        elif self.display_callback:
            self.display_callback()

    def _record_failure(self, error: Exception):
        cause = error.error if isinstance(error, BatchError) else error
        context = {'item': repr(error.item)[:200]} if isinstance(error, BatchError) else {}
        error_handler.log_error(BATCH_FAILURE, cause, context)
        self._consecutive_failures += 1

        if self._consecutive_failures >= self.config.max_batch_failures:
            logger.critical(f"[NEST] {self._consecutive_failures} consecutive failed rounds, stopping")
            self._run_id += 1
            self._stop_event.set()
            if self.error_callback:
                self.error_callback(error)

    def efficiency(self, result: Optional[PlacementResult] = None) -> float:
        """Placed source area over the area of all bins used."""
        result = result or self.best
        if result is None or not result.placements or self.bin is None:
            return 0.0
        placed_area = sum(self.tree.source_area(p.id) for bin_parts in result.placements for p in bin_parts)
        return placed_area / (result.bins_used * self.bin.area)

    def apply_placement(self, result: Optional[PlacementResult] = None) -> List[List[Dict]]:
        """Transformed source polygons of a result (the best one by default)."""
        result = result or self.best
        if result is None:
            return []
        parts_by_id = {part.id: self.tree.polygon(part.id) for part in self.parts}
        return apply_placement(result, parts_by_id, self.bin.origin)

    def population(self) -> List[Individual]:
        return list(self.optimizer.population) if self.optimizer else []


def test_nesting_controller():
    """Nest a few rectangles and an L shape into a 100 x 60 sheet"""
    print("Testing Nesting Controller")
    print("=" * 50)

    parts = [
        [(0, 0), (40, 0), (40, 20), (0, 20)],
        [(0, 0), (30, 0), (30, 30), (0, 30)],
        [(0, 0), (25, 0), (25, 10), (10, 10), (10, 25), (0, 25)],
        [(0, 0), (20, 0), (20, 15), (0, 15)],
    ]
    sheet = [(0, 0), (100, 0), (100, 60), (0, 60)]

    config = NestingConfig(population_size=6, rotations=4, executor_backend='thread', max_workers=4)
    controller = NestingController(config, rng=random.Random(7))
    if not controller.load(parts, sheet):
        print("Nothing to nest")
        return

    for round_number in range(5):
        result = controller.step()
        if result is not None:
            print(f"Round {round_number + 1}: fitness {result.fitness:.4f}, "
                  f"{result.placed_count}/{len(controller.parts)} placed in {result.bins_used} bins")

    best = controller.best
    print(f"\nBest fitness: {best.fitness:.4f}, efficiency {controller.efficiency():.2%}")
    for bin_index, shapes in enumerate(controller.apply_placement()):
        for shape in shapes:
            print(f"  bin {bin_index}: part {shape['id']} at ({shape['x']:.2f}, {shape['y']:.2f}) "
                  f"rotated {shape['rotation']:.0f}")
    controller.shutdown()


if __name__ == "__main__":
    test_nesting_controller()
