from dataclasses import replace

import numpy as np
import pytest

from conftest import FAST_EPISODE, IC, FakeBiped

from biped_moga.config import RunConfig
from biped_moga.console import console, set_verbose
from biped_moga.errors import ConfigurationError, IncompatibleStateError, RunStateError
from biped_moga.evaluator import FitnessEvaluator
from biped_moga.fitness import default_registry
from biped_moga.optimizer import Moga, RunStatus
from biped_moga.persistence import load_state


def test_first_step(small_config, evaluator):
    moga = Moga(small_config, evaluator).initialize()
    assert moga.status is RunStatus.INITIALIZED
    moga.step()
    assert moga.progress == 1
    assert moga.fitness.shape == (20, 2, 1)
    assert moga.genomes.shape == (20, evaluator.gene_spec.length, 2)
    assert moga.status is RunStatus.BRED


def test_full_run(small_config, evaluator):
    reports = []
    moga = Moga(small_config, evaluator, generation_fcn=reports.append).run()
    assert moga.status is RunStatus.DONE
    assert moga.progress == 3
    assert moga.fitness.shape == (20, 2, 3)
    assert moga.genomes.shape[2] == 3
    assert [r.generation for r in reports] == [1, 2, 3]
    assert len(moga.logbook) == 3

    report = reports[-1]
    assert report.fitness_names == ("HeightFit", "VelFit")
    with pytest.raises(ValueError):
        report.fitness[0, 0] = 1.0
    assert set(np.unique(report.fronts)) >= {1}


def test_illegal_transitions(small_config, evaluator):
    moga = Moga(small_config, evaluator)
    with pytest.raises(RunStateError):
        moga.step()
    moga.initialize()
    with pytest.raises(RunStateError):
        moga.initialize()
    moga.run()
    with pytest.raises(RunStateError):
        moga.step()


def test_resume_matches_single_pass(tmp_path, small_config, evaluator):
    single = Moga(small_config, evaluator).run()

    first = Moga(small_config, evaluator, file_out=tmp_path).initialize()
    first.step()
    assert load_state(tmp_path).progress == 1

    resumed = Moga(small_config, evaluator, file_out=tmp_path).start(tmp_path)
    assert resumed.progress == 1
    assert resumed.status is RunStatus.BRED
    resumed.run()

    assert np.array_equal(resumed.genomes, single.genomes)
    assert np.array_equal(resumed.fitness, single.fitness)
    assert load_state(tmp_path).progress == 3


def test_resume_breeds_missing_generation(small_config, evaluator):
    single = Moga(small_config, evaluator).run()

    state = Moga(small_config, evaluator).initialize().step().state()
    # drop the bred slice as if the run stopped right after evaluating
    state.genomes = state.genomes[:, :, :1]
    resumed = Moga(small_config, evaluator).resume(state)
    assert resumed.status is RunStatus.BRED
    resumed.run()
    assert np.array_equal(resumed.genomes, single.genomes)


def test_redo_ignores_saved_state(tmp_path, small_config, evaluator):
    Moga(small_config, evaluator, file_out=tmp_path).run()
    moga = Moga(small_config, evaluator).start(tmp_path, redo=True)
    assert moga.progress == 0
    assert moga.status is RunStatus.INITIALIZED


def test_extending_a_finished_run(tmp_path, small_config, evaluator):
    Moga(small_config, evaluator, file_out=tmp_path).run()
    longer = small_config.extended(4)
    moga = Moga(longer, evaluator).start(tmp_path)
    assert moga.status is RunStatus.BRED
    moga.run()
    assert moga.progress == 4


def test_incompatible_resume(tmp_path, small_config, evaluator, nn_spec, nn_config):
    Moga(small_config, evaluator, file_out=tmp_path).initialize().step()
    state = load_state(tmp_path)

    other_pop = RunConfig.from_population(3, 25, seed=7, verbose=False)
    with pytest.raises(IncompatibleStateError):
        Moga(other_pop, evaluator).resume(state)

    three = FitnessEvaluator(
        nn_spec,
        nn_config,
        FakeBiped(),
        IC,
        episode=FAST_EPISODE,
        registry=default_registry().select("HeightFit", "VelFit", "EigenFit"),
    )
    with pytest.raises(IncompatibleStateError):
        Moga(small_config, three).resume(state)


def test_find(small_config, evaluator):
    moga = Moga(small_config, evaluator).run()
    fit = moga.fitness[:, :, -1]

    everyone = moga.find([-np.inf, -np.inf], max_results=100)
    assert everyone.count == 20
    assert everyone.indices.tolist() == list(range(20))

    many = moga.find([-np.inf, -np.inf])
    assert many.count == 20
    assert many.indices is None and many.fitness is None

    best = fit[:, 1].max()
    top = moga.find({"VelFit": best}, max_results=20)
    assert top.count >= 1
    assert np.all(top.fitness[:, 1] == best)

    by_index = moga.find({1: best}, generation=3, max_results=20)
    assert by_index.indices.tolist() == top.indices.tolist()

    with pytest.raises(ConfigurationError):
        moga.find([0.0])
    with pytest.raises(ConfigurationError):
        moga.find({"ZMPFit": 0.1})


def test_quiet_run_leaves_shared_console_alone(small_config, evaluator):
    set_verbose(True)
    seen = []
    moga = Moga(small_config, evaluator, generation_fcn=lambda report: seen.append(console.quiet))
    assert console.quiet is False
    moga.run()
    assert seen == [True, True, True]
    assert console.quiet is False


def test_resume_warns_on_changed_breeding_settings(tmp_path, small_config, evaluator):
    Moga(small_config, evaluator, file_out=tmp_path).initialize().step()

    with console.capture() as captured:
        Moga(replace(small_config, verbose=True), evaluator).start(tmp_path)
    assert "changed from the saved run" not in captured.get()

    with console.capture() as captured:
        Moga(replace(small_config, seed=8, verbose=True), evaluator).start(tmp_path)
    text = captured.get()
    assert "seed" in text
    assert "fittest" not in text
