#!/usr/bin/env python3
"""
Genetic Optimizer for part ordering and rotation

Each individual is an insertion order of the parts plus one rotation angle
per position. The population starts from a single "Adam" ordering and its
mutated clones; each generation keeps the best individual and fills the rest
with mutated children of rank-weighted parents.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from geometry.polygon import BoundingBox, Polygon
from nesting_config import NestingConfig

logger = logging.getLogger(__name__)


@dataclass
class Individual:
    """One candidate solution: insertion order and per-position rotation"""
    placement: List[Polygon]
    rotation: List[float]
    fitness: Optional[float] = None

    def __len__(self) -> int:
        return len(self.placement)

    @property
    def ids(self) -> List[int]:
        return [part.id for part in self.placement]

    def clone(self) -> 'Individual':
        return Individual(list(self.placement), list(self.rotation))

    def cut(self, cut_point: int) -> 'Individual':
        return Individual(self.placement[:cut_point], self.rotation[:cut_point])

    def mate(self, other: 'Individual'):
        """Append the other's genes whose part is not present yet, in its order."""
        present = set(self.ids)
        for part, angle in zip(other.placement, other.rotation):
            if part.id not in present:
                self.placement.append(part)
                self.rotation.append(angle)
                present.add(part.id)


class GeneticOptimizer:
    """
    Population of part orderings, evolved by crossover, mutation and elitism.

    Lower fitness is better. Individuals are evaluated outside this class;
    generation() expects every individual to carry a fitness.
    """

    def __init__(self, adam: Sequence[Polygon], bin_bounds: BoundingBox,
                 config: Optional[NestingConfig] = None, rng: Optional[random.Random] = None):
        self.config = config or NestingConfig()
        self.bin_bounds = bin_bounds
        self.rng = rng or random.Random()
        self.generation_count = 0

        angles = [self.random_angle(part) for part in adam]
        self.population: List[Individual] = [Individual(list(adam), angles)]
        while len(self.population) < self.config.population_size:
            self.population.append(self.mutate(self.population[0]))

        logger.info(f"[GA] Initialized population of {len(self.population)} with {len(adam)} parts")

    def random_angle(self, part: Polygon) -> float:
        """
        A random candidate angle at which the part's bounding box is smaller
        than the bin's; 0 if no angle qualifies.
        """
        angle_count = max(self.config.rotations, 1)
        angles = [i * (360 / angle_count) for i in range(angle_count)]
        self.rng.shuffle(angles)

        for angle in angles:
            bounds = part.rotated(angle).bounds()
            if bounds.width < self.bin_bounds.width and bounds.height < self.bin_bounds.height:
                return angle
        return 0

    def mutate(self, individual: Individual) -> Individual:
        """Mutated copy: swap neighbours and re-roll rotations with mutationRate% each."""
        threshold = 0.01 * self.config.mutation_rate
        clone = individual.clone()
        size = len(clone)

        for i in range(size):
            if self.rng.random() < threshold:
                j = i + 1
                if j < size:
                    clone.placement[i], clone.placement[j] = clone.placement[j], clone.placement[i]

            if self.rng.random() < threshold:
                clone.rotation[i] = self.random_angle(clone.placement[i])

        return clone

    def mate(self, male: Individual, female: Individual) -> Tuple[Individual, Individual]:
        """Single point crossover; both children are full permutations."""
        cut_point = round(self.rng.uniform(0.1, 0.9) * (len(male) - 1))
        first = male.cut(cut_point)
        second = female.cut(cut_point)
        first.mate(female)
        second.mate(male)
        return first, second

    def random_weighted_individual(self, exclude: Optional[Individual] = None) -> Individual:
        """Pick an individual with linearly decreasing weight by rank."""
        candidates = [ind for ind in self.population if ind is not exclude]
        if not candidates:
            return self.population[0]
        size = len(candidates)
        weights = [size - rank for rank in range(size)]
        return self.rng.choices(candidates, weights=weights, k=1)[0]

    def generation(self):
        """Replace the population; the best individual survives unchanged."""
        unevaluated = sum(1 for ind in self.population if ind.fitness is None)
        if unevaluated:
            logger.warning(f"[GA] {unevaluated} individuals without fitness ranked last")
        self.population.sort(key=lambda ind: float('inf') if ind.fitness is None else ind.fitness)

        result = [self.population[0]]
        size = len(self.population)
        while len(result) < size:
            male = self.random_weighted_individual()
            female = self.random_weighted_individual(male)
            children = self.mate(male, female)

            result.append(self.mutate(children[0]))
            if len(result) < size:
                result.append(self.mutate(children[1]))

        self.population = result
        self.generation_count += 1
        logger.info(f"[GA] Generation {self.generation_count}: elite fitness {result[0].fitness}")

    def best(self) -> Optional[Individual]:
        evaluated = [ind for ind in self.population if ind.fitness is not None]
        if not evaluated:
            return None
        return min(evaluated, key=lambda ind: ind.fitness)
