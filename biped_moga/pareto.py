"""Pareto ranking and fitness-weighted mating selection."""

from __future__ import annotations

from typing import List

import numpy as np
from deap import base, tools
from deap.tools.emo import assignCrowdingDist

from biped_moga.config import SELECTION_DECAY


class _Ranked:
    """Minimal DEAP individual: a population index carrying a fitness."""

    __slots__ = ("index", "fitness")

    def __init__(self, index: int, fitness: base.Fitness):
        self.index = index
        self.fitness = fitness


def _individuals(fitness: np.ndarray) -> List[_Ranked]:
    n_obj = fitness.shape[1]
    # every objective is maximized
    fit_cls = type("ParetoFitness", (base.Fitness,), {"weights": (1.0,) * n_obj})
    individuals = []
    for i, row in enumerate(fitness):
        fit = fit_cls()
        fit.values = tuple(float(v) for v in row)
        individuals.append(_Ranked(i, fit))
    return individuals


def rank(fitness: np.ndarray) -> np.ndarray:
    """Front number (1 = non-dominated) of every individual."""
    fitness = np.asarray(fitness, dtype=np.float64)
    n = fitness.shape[0]
    fronts_of = np.zeros(n, dtype=np.int64)
    if n == 0:
        return fronts_of
    for k, front in enumerate(tools.sortNondominated(_individuals(fitness), k=n), start=1):
        for ind in front:
            fronts_of[ind.index] = k
    return fronts_of


def fronts(fronts_of: np.ndarray) -> List[np.ndarray]:
    """Indices of each front, best front first."""
    return [np.flatnonzero(fronts_of == k) for k in range(1, int(fronts_of.max(initial=0)) + 1)]


def dominates(a: np.ndarray, b: np.ndarray) -> bool:
    return bool(np.all(a >= b) and np.any(a > b))


def crowding(fitness: np.ndarray, fronts_of: np.ndarray) -> np.ndarray:
    """NSGA-II crowding distance, computed within each front."""
    individuals = _individuals(np.asarray(fitness, dtype=np.float64))
    dist = np.zeros(len(individuals))
    for members in fronts(fronts_of):
        front = [individuals[i] for i in members]
        assignCrowdingDist(front)
        for ind in front:
            dist[ind.index] = ind.fitness.crowding_dist
    return dist


def order(fitness: np.ndarray, fronts_of: np.ndarray, tie_break: str = "sum") -> np.ndarray:
    """Indices best first: by front, then by the tie-break key, then by index."""
    fitness = np.asarray(fitness, dtype=np.float64)
    idx = np.arange(fronts_of.shape[0])
    if tie_break == "sum":
        secondary = -fitness.sum(axis=1)
    elif tie_break == "crowding":
        secondary = -crowding(fitness, fronts_of)
    else:
        secondary = np.zeros(idx.shape[0])
    return np.lexsort((idx, secondary, fronts_of))


def selection_weights(
    fronts_of: np.ndarray,
    weighted: bool = True,
    scheme: str = "inverse",
    decay: float = SELECTION_DECAY,
) -> np.ndarray:
    """Sampling probabilities; earlier fronts weigh more when pairing is weighted."""
    fronts_of = np.asarray(fronts_of)
    if not weighted:
        weights = np.ones(fronts_of.shape[0])
    elif scheme == "geometric":
        weights = decay ** (fronts_of - 1.0)
    else:
        weights = 1.0 / fronts_of
    return weights / weights.sum()


def sample_parent(weights: np.ndarray, rng: np.random.Generator) -> int:
    """Draw one index with replacement; drawing a parent never excludes it."""
    return int(rng.choice(weights.shape[0], p=weights))
