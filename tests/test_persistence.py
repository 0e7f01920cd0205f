import json

import numpy as np
import pytest

from biped_moga.config import MutationConfig, RunConfig, SelectionConfig
from biped_moga.errors import IncompatibleStateError
from biped_moga.genome import GeneSpec
from biped_moga.persistence import CONFIG_FILE, STATE_FILE, RunState, exists, load_state, save_state


@pytest.fixture
def state():
    prior = GeneSpec.from_ranges({"k": (0.0, 1.0)})
    spec = GeneSpec.from_ranges({"a": (-1.0, 1.0), "b": (0.0, 2.0)}).with_base(prior, [0.5])
    config = RunConfig.with_fittest(
        4,
        5,
        (1, 1, 3),
        seed=3,
        mutation=MutationConfig(rate=0.2, scheme="uniform"),
        crossover="1point",
        selection=SelectionConfig(weighted_pairing=False, tie_break="crowding"),
        eval_timeout=2.5,
    )
    rng = np.random.default_rng(0)
    pending = np.full((5, 2), np.nan)
    pending[0] = [0.3, 0.4]
    return RunState(
        gene_spec=spec,
        config=config,
        fitness_names=["HeightFit", "VelFit"],
        genomes=rng.random((5, 3, 3)),
        fitness=rng.random((5, 2, 2)),
        pending=pending,
        progress=2,
    )


def test_round_trip(tmp_path, state):
    assert not exists(tmp_path)
    save_state(tmp_path, state)
    assert exists(tmp_path)
    loaded = load_state(tmp_path)

    assert loaded.gene_spec == state.gene_spec
    assert loaded.config == state.config
    assert loaded.fitness_names == state.fitness_names
    assert loaded.progress == 2
    assert np.array_equal(loaded.genomes, state.genomes)
    assert np.array_equal(loaded.fitness, state.fitness)
    assert np.array_equal(loaded.pending, state.pending, equal_nan=True)
    assert not loaded.config.weighted_pairing


def test_readable_metadata(tmp_path, state):
    save_state(tmp_path, state)
    meta = json.loads((tmp_path / CONFIG_FILE).read_text())
    assert meta["progress"] == 2
    assert meta["config"]["fittest"] == {"elite": 1, "mutated": 1, "children": 3}
    assert not (tmp_path / (STATE_FILE + ".tmp")).exists()


def test_overwrite_keeps_latest(tmp_path, state):
    save_state(tmp_path, state)
    state.progress = 3
    state.fitness = np.concatenate([state.fitness, state.fitness[:, :, :1]], axis=2)
    save_state(tmp_path, state)
    assert load_state(tmp_path).fitness.shape == (5, 2, 3)


def test_genome_lookup(state):
    assert np.array_equal(state.genome(1), state.genomes[1, :, 1])
    assert np.array_equal(state.genome(0, generation=1), state.genomes[0, :, 0])


def test_unknown_format_version(tmp_path, state, monkeypatch):
    monkeypatch.setattr("biped_moga.persistence.FORMAT_VERSION", 99)
    save_state(tmp_path, state)
    monkeypatch.undo()
    with pytest.raises(IncompatibleStateError):
        load_state(tmp_path)
