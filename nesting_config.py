"""
Configuration management for the nesting engine
"""

import copy
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# user-facing option names accepted in addition to the attribute names
_ALIASES = {
    'curveTolerance': 'curve_tolerance',
    'spacing': 'spacing',
    'rotations': 'rotations',
    'populationSize': 'population_size',
    'mutationRate': 'mutation_rate',
    'useHoles': 'use_holes',
    'exploreConcave': 'explore_concave',
    'clipperScale': 'clipper_scale',
    'maxWorkers': 'max_workers',
    'executorBackend': 'executor_backend',
    'pollInterval': 'poll_interval',
    'maxBatchFailures': 'max_batch_failures',
}

EXECUTOR_BACKENDS = ('process', 'thread')


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


# option -> predicate deciding whether a new value is well-formed
_VALIDATORS = {
    'curve_tolerance': lambda v: _is_number(v) and v > 0,
    'spacing': lambda v: _is_number(v) and v >= 0,
    'rotations': lambda v: _is_int(v) and v > 0,
    'population_size': lambda v: _is_int(v) and v > 2,
    'mutation_rate': lambda v: _is_int(v) and v > 0,
    'use_holes': lambda v: isinstance(v, bool),
    'explore_concave': lambda v: isinstance(v, bool),
    'clipper_scale': lambda v: _is_number(v) and v > 0,
    'max_workers': lambda v: v is None or (_is_int(v) and v > 0),
    'executor_backend': lambda v: v in EXECUTOR_BACKENDS,
    'poll_interval': lambda v: _is_number(v) and v > 0,
    'max_batch_failures': lambda v: _is_int(v) and v > 0,
}


@dataclass
class NestingConfig:
    """Options for one nesting run"""
    curve_tolerance: float = 0.3  # flattening / cleaning tolerance
    spacing: float = 0.0  # gap between parts and to the bin edge
    rotations: int = 4  # number of evenly spaced candidate angles
    population_size: int = 10
    mutation_rate: int = 10  # percent per gene
    use_holes: bool = False  # nest small parts inside holes of larger ones
    explore_concave: bool = False  # multi-loop NFP search, no Minkowski fast path
    clipper_scale: int = 10_000_000
    max_workers: Optional[int] = None  # None = os.cpu_count()
    executor_backend: str = 'process'
    poll_interval: float = 0.1  # seconds between controller ticks
    max_batch_failures: int = 3  # consecutive failed rounds before stopping

    def update_config(self, **kwargs) -> Dict[str, Any]:
        """
        Update configuration with provided values.

        Only recognized, well-formed values are applied; anything else is
        logged and the previous value kept. Returns the options that changed.
        """
        applied = {}
        for key, value in kwargs.items():
            name = _ALIASES.get(key, key)
            validator = _VALIDATORS.get(name)
            if validator is None:
                logger.warning(f"[CONFIG] Unknown option ignored: {key}")
                continue
            if not validator(value):
                logger.warning(f"[CONFIG] Invalid value for {key}: {value!r}, keeping {getattr(self, name)!r}")
                continue
            if name in ('curve_tolerance', 'spacing', 'poll_interval'):
                value = float(value)
            if getattr(self, name) != value:
                setattr(self, name, value)
                applied[name] = value
        if applied:
            logger.info(f"[CONFIG] Updated: {applied}")
        return applied

    def get_config(self) -> Dict[str, Any]:
        """Get a copy of the current configuration"""
        return copy.deepcopy(asdict(self))

    @property
    def search_edges(self) -> bool:
        return self.explore_concave
