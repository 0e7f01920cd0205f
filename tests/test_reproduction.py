import numpy as np
import pytest

from biped_moga.config import Fittest, MutationConfig, RunConfig
from biped_moga.errors import ConfigurationError
from biped_moga.genome import GeneSpec
from biped_moga.pareto import rank
from biped_moga.reproduction import breed


@pytest.fixture
def spec():
    return GeneSpec.from_ranges({f"g{i}": (-1.0, 1.0) for i in range(6)})


def ranked(spec, n, seed=0):
    rng = np.random.default_rng(seed)
    genomes = spec.random(rng, n)
    fitness = rng.random((n, 3))
    return genomes, fitness, rank(fitness)


@pytest.mark.parametrize("population, split", [(7, (1, 1, 5)), (10, (2, 2, 6)), (11, (1, 0, 10)), (9, (3, 3, 3))])
def test_next_generation_has_population_rows(spec, population, split):
    genomes, fitness, fronts_of = ranked(spec, population)
    out = breed(spec, genomes, fitness, fronts_of, Fittest(*split), np.random.default_rng(1))
    assert out.genomes.shape == (population, spec.length)
    assert np.all(out.genomes >= spec.low) and np.all(out.genomes <= spec.high)


def test_default_split():
    assert Fittest.default(1000) == Fittest(200, 200, 600)
    assert Fittest.default(7) == Fittest(1, 1, 5)
    assert Fittest.default(3) == Fittest(0, 0, 3)
    config = RunConfig.from_population(5, 1000)
    assert config.fittest.total == 1000


def test_mismatched_split_is_rejected(spec):
    with pytest.raises(ConfigurationError):
        RunConfig.with_fittest(5, 10, (2, 2, 5))
    genomes, fitness, fronts_of = ranked(spec, 10)
    with pytest.raises(ConfigurationError):
        breed(spec, genomes, fitness, fronts_of, Fittest(3, 3, 3), np.random.default_rng(0))


def test_elite_copies_inherit_fitness(spec):
    genomes, fitness, fronts_of = ranked(spec, 10)
    out = breed(spec, genomes, fitness, fronts_of, Fittest(2, 2, 6), np.random.default_rng(2))
    best = out.ranking[:2]
    assert np.array_equal(out.genomes[:2], genomes[best])
    assert np.array_equal(out.inherited[:2], fitness[best])
    assert np.isnan(out.inherited[2:]).all()
    assert fronts_of[best[0]] == 1
    assert fronts_of[best[0]] <= fronts_of[best[1]]


def test_breeding_is_deterministic(spec):
    genomes, fitness, fronts_of = ranked(spec, 10)
    a = breed(spec, genomes, fitness, fronts_of, Fittest(2, 2, 6), np.random.default_rng(5))
    b = breed(spec, genomes, fitness, fronts_of, Fittest(2, 2, 6), np.random.default_rng(5))
    assert np.array_equal(a.genomes, b.genomes)


def test_no_mutation_keeps_parent_genes(spec):
    genomes, fitness, fronts_of = ranked(spec, 8)
    out = breed(
        spec,
        genomes,
        fitness,
        fronts_of,
        Fittest(0, 2, 6),
        np.random.default_rng(3),
        mutation=MutationConfig(rate=0.0),
    )
    # mutated copies with rate 0 are plain copies of the top two
    assert np.array_equal(out.genomes[:2], genomes[out.ranking[:2]])
    # children only recombine existing values gene by gene
    for child in out.genomes[2:]:
        assert all(np.any(genomes[:, j] == child[j]) for j in range(spec.length))
