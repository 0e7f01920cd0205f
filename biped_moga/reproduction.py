"""Builds generation g+1 from a ranked generation g."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from biped_moga.config import Fittest, MutationConfig, SelectionConfig
from biped_moga.genome import GeneSpec, crossover, mutate
from biped_moga.pareto import order, sample_parent, selection_weights


@dataclass(frozen=True)
class Offspring:
    """Next genome matrix plus the fitness rows inherited by unchanged elite copies."""

    genomes: np.ndarray
    inherited: np.ndarray
    ranking: np.ndarray


def breed(
    spec: GeneSpec,
    genomes: np.ndarray,
    fitness: np.ndarray,
    fronts_of: np.ndarray,
    fittest: Fittest,
    rng: np.random.Generator,
    mutation: MutationConfig = MutationConfig(),
    crossover_scheme: str = "2point",
    selection: SelectionConfig = SelectionConfig(),
    child_mutation: bool = True,
) -> Offspring:
    population = genomes.shape[0]
    fittest.validate(population)
    ranking = order(fitness, fronts_of, selection.tie_break)
    n_fit = fitness.shape[1]

    new = np.empty_like(genomes, dtype=np.float64)
    inherited = np.full((population, n_fit), np.nan)
    k = 0

    # Fittest copy
    for i in ranking[: fittest.elite]:
        new[k] = genomes[i]
        inherited[k] = fitness[i]
        k += 1

    # Mutated fittest copy
    for i in ranking[: fittest.mutated]:
        new[k] = mutate(spec, genomes[i], rng, mutation.rate, mutation.scheme, mutation.scale)
        k += 1

    # Fittest children
    weights = selection_weights(fronts_of, selection.weighted_pairing, selection.scheme, selection.decay)
    while k < population:
        pa = sample_parent(weights, rng)
        pb = sample_parent(weights, rng)
        children = crossover(spec, genomes[pa], genomes[pb], rng, crossover_scheme)
        for child in children:
            if k == population:
                break
            if child_mutation:
                child = mutate(spec, child, rng, mutation.rate, mutation.scheme, mutation.scale)
            new[k] = child
            k += 1

    return Offspring(genomes=new, inherited=inherited, ranking=ranking)
