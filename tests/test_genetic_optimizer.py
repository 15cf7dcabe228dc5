"""
Tests for the genetic optimizer: population setup, crossover, mutation and elitism.
"""

import os
import random
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import rect
from genetic_optimizer import GeneticOptimizer, Individual
from geometry.polygon import BoundingBox, Polygon
from nesting_config import NestingConfig

BIN_BOUNDS = BoundingBox(0, 0, 100, 50)


def make_parts(count):
    return [Polygon(rect(5 + i, 3), id=i) for i in range(count)]


def make_optimizer(parts=None, seed=1, **options):
    config = NestingConfig(**options)
    return GeneticOptimizer(parts or make_parts(6), BIN_BOUNDS, config, random.Random(seed))


def test_population_starts_from_adam():
    parts = make_parts(6)
    optimizer = make_optimizer(parts, population_size=8)
    assert len(optimizer.population) == 8
    assert optimizer.population[0].ids == [p.id for p in parts]
    for individual in optimizer.population:
        assert sorted(individual.ids) == list(range(6))
        assert len(individual.rotation) == 6


def test_single_rotation_always_zero():
    optimizer = make_optimizer(rotations=1, mutation_rate=100)
    for individual in optimizer.population:
        assert individual.rotation == [0] * 6


def test_angles_come_from_candidates():
    optimizer = make_optimizer(rotations=4, population_size=20, mutation_rate=50)
    for individual in optimizer.population:
        assert set(individual.rotation) <= {0, 90, 180, 270}


def test_random_angle_falls_back_to_zero():
    big = Polygon(rect(200, 200), id=0)
    optimizer = make_optimizer([big], rotations=8)
    assert all(optimizer.random_angle(big) == 0 for _ in range(10))


def test_random_angle_rejects_angles_that_do_not_fit():
    # 60 x 10 fits the 100 x 50 bin only lying down
    long_part = Polygon(rect(60, 10), id=0)
    optimizer = make_optimizer([long_part], rotations=4)
    for _ in range(20):
        assert optimizer.random_angle(long_part) in (0, 180)


def test_mutate_returns_new_individual():
    optimizer = make_optimizer(mutation_rate=100)
    original = optimizer.population[0]
    ids = list(original.ids)
    rotation = list(original.rotation)

    mutant = optimizer.mutate(original)
    assert mutant is not original
    assert original.ids == ids and original.rotation == rotation
    assert sorted(mutant.ids) == sorted(ids)
    assert mutant.fitness is None


def test_mate_produces_permutations():
    optimizer = make_optimizer()
    parts = make_parts(6)
    male = Individual(list(parts), [0, 90, 180, 270, 0, 90])
    female = Individual(list(reversed(parts)), [270] * 6)

    male_angles = dict(zip(male.ids, male.rotation))

    for _ in range(20):
        first, second = optimizer.mate(male, female)
        assert sorted(first.ids) == list(range(6))
        assert sorted(second.ids) == list(range(6))
        # genes carry their parent's rotation
        for child in (first, second):
            for part_id, angle in zip(child.ids, child.rotation):
                assert angle in (male_angles[part_id], 270)


def test_individual_mate_appends_missing_genes():
    parts = make_parts(4)
    head = Individual(parts[:2], [90, 90])
    other = Individual([parts[3], parts[0], parts[2], parts[1]], [0, 0, 180, 0])
    head.mate(other)
    assert head.ids == [0, 1, 3, 2]
    assert head.rotation == [90, 90, 0, 180]


def test_generation_keeps_elite():
    optimizer = make_optimizer(population_size=6)
    for index, individual in enumerate(optimizer.population):
        individual.fitness = 10.0 - index
    elite = optimizer.population[-1]

    optimizer.generation()
    assert optimizer.generation_count == 1
    assert len(optimizer.population) == 6
    assert optimizer.population[0] is elite
    assert optimizer.population[0].fitness == 5.0
    assert all(ind.fitness is None for ind in optimizer.population[1:])


def test_best_never_worsens_over_generations():
    optimizer = make_optimizer(population_size=5, seed=3)
    rng = random.Random(11)
    best_so_far = None
    for _ in range(10):
        for individual in optimizer.population:
            if individual.fitness is None:
                individual.fitness = rng.uniform(1, 2)
        best = optimizer.best().fitness
        if best_so_far is not None:
            assert best <= best_so_far
        best_so_far = best
        optimizer.generation()


def test_unevaluated_individuals_rank_last():
    optimizer = make_optimizer(population_size=4)
    optimizer.population[2].fitness = 1.5
    chosen = optimizer.population[2]
    optimizer.generation()
    assert optimizer.population[0] is chosen


def test_weighted_selection_excludes():
    optimizer = make_optimizer(population_size=3)
    excluded = optimizer.population[0]
    for _ in range(20):
        assert optimizer.random_weighted_individual(excluded) is not excluded
