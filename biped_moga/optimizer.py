"""Multi-objective genetic algorithm: the generation loop and its resumable state.

A run walks through ``UNINITIALIZED -> INITIALIZED -> EVALUATING -> RANKED ->
BRED -> EVALUATING -> ... -> DONE``. Generations are numbered from 1 and
``progress`` is the last one fully evaluated. Every random draw of a
generation comes from ``default_rng([seed, g])``, so a run resumed from disk
continues exactly as an uninterrupted one would.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Sequence, Union

import numpy as np
from deap import tools

from biped_moga import persistence
from biped_moga.config import MAX_FIND_RESULTS, RunConfig
from biped_moga.console import console, verbosity
from biped_moga.errors import ConfigurationError, IncompatibleStateError, RunStateError
from biped_moga.evaluator import FitnessEvaluator
from biped_moga.pareto import rank
from biped_moga.persistence import RunState
from biped_moga.population import PopulationManager
from biped_moga.reproduction import breed


class RunStatus(Enum):
    UNINITIALIZED = auto()
    INITIALIZED = auto()
    EVALUATING = auto()
    RANKED = auto()
    BRED = auto()
    DONE = auto()


@dataclass(frozen=True)
class GenerationReport:
    """Read-only results of one completed generation."""

    generation: int
    genomes: np.ndarray
    fitness: np.ndarray
    fronts: np.ndarray
    fitness_names: Sequence[str]
    stats: Dict[str, np.ndarray]


@dataclass(frozen=True)
class FindResult:
    count: int
    indices: Optional[np.ndarray]
    fitness: Optional[np.ndarray]


GenerationFcn = Callable[[GenerationReport], None]

# config fields that decide how generations are bred
BREEDING_SETTINGS = ("seed", "fittest", "mutation", "crossover", "child_mutation", "selection")


def _read_only(arr: np.ndarray) -> np.ndarray:
    arr = np.array(arr, copy=True)
    arr.flags.writeable = False
    return arr


def _logged(method):
    """Run ``method`` with the console set to the run's own verbosity."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with verbosity(self.config.verbose):
            return method(self, *args, **kwargs)

    return wrapper


class Moga:
    def __init__(
        self,
        config: RunConfig,
        evaluator: FitnessEvaluator,
        generation_fcn: Optional[GenerationFcn] = None,
        file_out: Optional[Union[str, Path]] = None,
    ):
        self.config = config
        self.evaluator = evaluator
        self.gene_spec = evaluator.gene_spec
        self.registry = evaluator.registry
        self.generation_fcn = generation_fcn
        self.file_out = Path(file_out) if file_out is not None else None
        self.status = RunStatus.UNINITIALIZED
        self.fronts: Optional[np.ndarray] = None

        self.pop = PopulationManager(
            population=config.population,
            n_genes=self.gene_spec.length,
            evaluate=evaluator,
            minimum=evaluator.minimum(),
            workers=config.workers,
            executor=config.executor,
            eval_timeout=config.eval_timeout,
        )

        self.stats = tools.Statistics(key=lambda row: row)
        self.stats.register("avg", np.mean, axis=0)
        self.stats.register("min", np.min, axis=0)
        self.stats.register("max", np.max, axis=0)
        self.logbook = tools.Logbook()
        self.logbook.header = ["gen", "nfront1", "avg", "max"]

    # ---------- Properties ----------
    @property
    def progress(self) -> int:
        return self.pop.progress

    @property
    def genomes(self) -> np.ndarray:
        return self.pop.genomes

    @property
    def fitness(self) -> np.ndarray:
        return self.pop.fitness

    @property
    def fitness_names(self):
        return self.registry.names

    def rng(self, generation: int) -> np.random.Generator:
        return np.random.default_rng([self.config.seed, generation])

    def _expect(self, *allowed: RunStatus) -> None:
        if self.status not in allowed:
            names = ", ".join(s.name for s in allowed)
            raise RunStateError(f"Run is {self.status.name}, expected one of: {names}")

    # ---------- Start / resume ----------
    @_logged
    def initialize(self) -> "Moga":
        """Draw generation 1 uniformly inside the gene ranges."""
        self._expect(RunStatus.UNINITIALIZED)
        self.pop.seed(self.gene_spec.random(self.rng(0), self.config.population))
        self.status = RunStatus.INITIALIZED
        console.log(
            f"[bold cyan]Initialized MOGA: pop={self.config.population} "
            f"gens={self.config.generations} genes={self.gene_spec.length} "
            f"objectives={self.fitness_names}[/bold cyan]"
        )
        return self

    @_logged
    def start(self, file_in: Optional[Union[str, Path]] = None, redo: bool = False) -> "Moga":
        """Resume from ``file_in`` when it holds a saved run, else start at generation 1."""
        if file_in is not None and not redo and persistence.exists(file_in):
            return self.resume(persistence.load_state(file_in))
        if redo:
            console.log("[yellow]Redo requested, restarting from generation 1[/yellow]")
        return self.initialize()

    @_logged
    def resume(self, state: RunState) -> "Moga":
        self._expect(RunStatus.UNINITIALIZED)
        if state.gene_spec != self.gene_spec:
            raise IncompatibleStateError("Persisted gene specification differs from the current one")
        if state.config.population != self.config.population:
            raise IncompatibleStateError(
                f"Persisted population {state.config.population} != configured {self.config.population}"
            )
        if list(state.fitness_names) != list(self.fitness_names):
            raise IncompatibleStateError(
                f"Persisted fitness functions {state.fitness_names} != configured {self.fitness_names}"
            )
        drift = [
            name
            for name in BREEDING_SETTINGS
            if getattr(state.config, name) != getattr(self.config, name)
        ]
        if drift:
            console.log(
                f"[yellow]Resuming with {', '.join(drift)} changed from the saved run; "
                f"later generations will differ from an uninterrupted run[/yellow]"
            )
        self.pop.load(state.genomes, state.fitness, state.pending, state.progress)
        console.log(f"[cyan]Resuming after generation {state.progress}[/cyan]")

        if self.pop.n_generations == 0:
            self.status = RunStatus.UNINITIALIZED
            return self.initialize()
        if self.progress >= self.config.generations:
            self.fronts = rank(self.pop.generation_fitness(self.progress)) if self.progress else None
            self.status = RunStatus.DONE
        elif self.pop.n_generations == self.progress:
            # last evaluated generation was never bred
            self.fronts = rank(self.pop.generation_fitness(self.progress))
            self.status = RunStatus.RANKED
            self._breed()
        else:
            self.status = RunStatus.BRED if self.progress else RunStatus.INITIALIZED
        return self

    # ---------- Generation loop ----------
    @_logged
    def step(self) -> "Moga":
        """Evaluate, rank, report and breed one generation."""
        self._expect(RunStatus.INITIALIZED, RunStatus.BRED)
        g = self.progress + 1
        console.rule(f"[bold green]Generation {g}/{self.config.generations}[/bold green]")

        self.status = RunStatus.EVALUATING
        fit = self.pop.evaluate_generation(g)
        self.pop.advance_progress()

        self.fronts = rank(fit)
        self.status = RunStatus.RANKED
        self._report(g, fit)

        if g < self.config.generations:
            self._breed()
        else:
            self.status = RunStatus.DONE
        self._save()
        return self

    @_logged
    def run(self) -> "Moga":
        if self.status is RunStatus.UNINITIALIZED:
            self.initialize()
        while self.status is not RunStatus.DONE:
            self.step()
        console.log(f"[bold magenta]Done after {self.progress} generations[/bold magenta]")
        return self

    def _breed(self) -> None:
        self._expect(RunStatus.RANKED)
        g = self.progress
        offspring = breed(
            self.gene_spec,
            self.pop.generation_genomes(g),
            self.pop.generation_fitness(g),
            self.fronts,
            self.config.fittest,
            self.rng(g),
            mutation=self.config.mutation,
            crossover_scheme=self.config.crossover,
            selection=self.config.selection,
            child_mutation=self.config.child_mutation,
        )
        self.pop.add_generation(offspring.genomes, offspring.inherited)
        self.status = RunStatus.BRED

    def _report(self, g: int, fit: np.ndarray) -> None:
        record = self.stats.compile(list(fit))
        n_front1 = int(np.sum(self.fronts == 1))
        self.logbook.record(gen=g, nfront1=n_front1, **record)
        for name, avg, best in zip(self.fitness_names, record["avg"], record["max"]):
            console.log(f"  {name:>14}: avg={avg:.4f} max={best:.4f}")
        console.log(f"Pareto front 1 holds {n_front1}/{self.config.population} individuals")

        if self.generation_fcn is not None:
            report = GenerationReport(
                generation=g,
                genomes=_read_only(self.pop.generation_genomes(g)),
                fitness=_read_only(fit),
                fronts=_read_only(self.fronts),
                fitness_names=tuple(self.fitness_names),
                stats={k: _read_only(v) for k, v in record.items()},
            )
            self.generation_fcn(report)

    # ---------- State ----------
    def state(self) -> RunState:
        return RunState(
            gene_spec=self.gene_spec,
            config=self.config,
            fitness_names=list(self.fitness_names),
            genomes=self.pop.genomes.copy(),
            fitness=self.pop.fitness.copy(),
            pending=self.pop.pending.copy(),
            progress=self.progress,
        )

    def _save(self) -> None:
        if self.file_out is None:
            return
        persistence.save_state(self.file_out, self.state())
        console.log(f"Saved run state to {self.file_out}")

    # ---------- Queries ----------
    @_logged
    def find(
        self,
        thresholds: Union[Sequence[float], Mapping[Union[int, str], float]],
        generation: Optional[int] = None,
        max_results: int = MAX_FIND_RESULTS,
    ) -> FindResult:
        """Individuals meeting every per-objective minimum in ``generation``.

        ``thresholds`` is either one minimum per fitness function or a mapping
        of function name/index to minimum (others unconstrained). When more
        than ``max_results`` individuals qualify only the count is returned.
        """
        g = self.progress if generation is None else generation
        fit = self.pop.generation_fitness(g)

        if isinstance(thresholds, Mapping):
            reqs = np.full(len(self.registry), -np.inf)
            for key, value in thresholds.items():
                reqs[self.registry.index(key)] = value
        else:
            reqs = np.asarray(thresholds, dtype=np.float64)
            if reqs.shape != (len(self.registry),):
                raise ConfigurationError(
                    f"Number of fitness values is incorrect: got {reqs.size}, expected {len(self.registry)}"
                )

        hits = np.flatnonzero(np.all(fit >= reqs, axis=1))
        if hits.size > max_results:
            console.log(f"{hits.size} results fit the requirements")
            return FindResult(count=int(hits.size), indices=None, fitness=None)
        return FindResult(count=int(hits.size), indices=hits, fitness=np.array(fit[hits]))
