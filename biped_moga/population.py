"""Population manager: owns the genome and fitness tensors of a run."""

from __future__ import annotations

import concurrent.futures
import os
import time
from concurrent.futures import FIRST_COMPLETED, Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor
from typing import Callable, Dict, Optional

import numpy as np
import numpy.typing as npt

from biped_moga.console import console
from biped_moga.errors import IncompatibleStateError, RunStateError

TIMEOUT_POLL = 0.05      # seconds between checks on running evaluations


def _read_only(arr: np.ndarray) -> np.ndarray:
    view = arr.view()
    view.flags.writeable = False
    return view


class PopulationManager:
    """Genomes ``Seqs[i, gene, g]`` and fitness ``Fit[i, function, g]``.

    Both tensors only ever grow along the generation axis. ``pending`` holds
    the fitness rows of the generation being evaluated; rows that are still
    NaN have not been evaluated yet.
    """

    def __init__(
        self,
        population: int,
        n_genes: int,
        evaluate: Callable[[np.ndarray], np.ndarray],
        minimum: np.ndarray,
        workers: int = 1,
        executor: str = "serial",
        eval_timeout: Optional[float] = None,
    ):
        self.population = population
        self.n_genes = n_genes
        self.evaluate = evaluate
        self.minimum = np.asarray(minimum, dtype=np.float64)
        self.n_fitness = self.minimum.shape[0]
        self.workers = workers
        self.executor = executor
        self.eval_timeout = eval_timeout

        self.genomes = np.empty((population, n_genes, 0), dtype=np.float64)
        self.fitness = np.empty((population, self.n_fitness, 0), dtype=np.float64)
        self.pending = np.full((population, self.n_fitness), np.nan)
        self.progress = 0

    # ---------- State ----------
    @property
    def n_generations(self) -> int:
        """Generations whose genomes exist (evaluated or not)."""
        return self.genomes.shape[2]

    def load(self, genomes: np.ndarray, fitness: np.ndarray, pending: np.ndarray, progress: int) -> None:
        expected = (self.population, self.n_genes)
        if genomes.shape[:2] != expected:
            raise IncompatibleStateError(f"Persisted genomes {genomes.shape[:2]} != expected {expected}")
        if fitness.shape[:2] != (self.population, self.n_fitness):
            raise IncompatibleStateError(
                f"Persisted fitness {fitness.shape[:2]} != expected {(self.population, self.n_fitness)}"
            )
        if fitness.shape[2] != progress or genomes.shape[2] not in (progress, progress + 1):
            raise IncompatibleStateError(
                f"Progress {progress} inconsistent with {genomes.shape[2]} genome and "
                f"{fitness.shape[2]} fitness generations"
            )
        self.genomes = np.array(genomes, dtype=np.float64)
        self.fitness = np.array(fitness, dtype=np.float64)
        self.pending = np.array(pending, dtype=np.float64).reshape(self.population, self.n_fitness)
        self.progress = int(progress)

    def seed(self, genomes: np.ndarray) -> int:
        """Store the first generation."""
        if self.n_generations:
            raise RunStateError("Population already holds a first generation")
        return self.add_generation(genomes)

    def add_generation(self, genomes: np.ndarray, inherited: Optional[np.ndarray] = None) -> int:
        """Append the genomes of the next generation.

        ``inherited[i]`` is the fitness row carried over for an unchanged copy,
        or NaN where the genome still has to be evaluated.
        """
        if self.n_generations != self.progress:
            raise RunStateError(f"Generation {self.n_generations} is not evaluated yet")
        genomes = np.asarray(genomes, dtype=np.float64)
        if genomes.shape != (self.population, self.n_genes):
            raise ValueError(f"Genome matrix {genomes.shape} != {(self.population, self.n_genes)}")
        self.genomes = np.concatenate([self.genomes, genomes[:, :, None]], axis=2)
        if inherited is None:
            self.pending = np.full((self.population, self.n_fitness), np.nan)
        else:
            self.pending = np.array(inherited, dtype=np.float64).reshape(self.population, self.n_fitness)
        return self.n_generations

    def generation_genomes(self, generation: int) -> np.ndarray:
        return _read_only(self.genomes[:, :, generation - 1])

    def generation_fitness(self, generation: int) -> np.ndarray:
        if not 1 <= generation <= self.progress:
            raise IndexError(f"Generation {generation} has not been evaluated (progress {self.progress})")
        return _read_only(self.fitness[:, :, generation - 1])

    # ---------- Evaluation ----------
    def evaluate_generation(self, generation: int) -> np.ndarray:
        """Evaluate every pending genome of ``generation`` and append its fitness."""
        if generation != self.progress + 1 or generation > self.n_generations:
            raise RunStateError(
                f"Cannot evaluate generation {generation}: progress {self.progress}, "
                f"{self.n_generations} generations bred"
            )
        genomes = self.genomes[:, :, generation - 1]
        todo = [i for i in range(self.population) if np.isnan(self.pending[i]).any()]
        console.log(f"Evaluating {len(todo)}/{self.population} genomes of generation {generation}")

        for i, fit in self._map(genomes, todo).items():
            self.pending[i] = fit

        self.fitness = np.concatenate([self.fitness, self.pending[:, :, None]], axis=2)
        return self.pending.copy()

    def advance_progress(self) -> int:
        if self.fitness.shape[2] != self.progress + 1:
            raise RunStateError(f"Generation {self.progress + 1} is not fully evaluated")
        self.progress += 1
        return self.progress

    def _map(self, genomes: np.ndarray, todo: list[int]) -> Dict[int, npt.NDArray[np.float64]]:
        if self.executor == "serial" or self.workers <= 1 or len(todo) <= 1:
            return {i: self._checked(self.evaluate(genomes[i])) for i in todo}

        pool_cls = ProcessPoolExecutor if self.executor == "process" else ThreadPoolExecutor
        workers = min(self.workers, len(todo), os.cpu_count() or 1) if self.executor == "process" else self.workers
        pool: Executor = pool_cls(max_workers=workers)
        try:
            futures = {pool.submit(self.evaluate, genomes[i].copy()): i for i in todo}
            if self.eval_timeout is None:
                return {i: self._checked(fut.result()) for fut, i in futures.items()}
            return self._collect(futures, workers)
        finally:
            pool.shutdown(wait=self.eval_timeout is None, cancel_futures=True)

    def _collect(self, futures: Dict[Future, int], workers: int) -> Dict[int, npt.NDArray[np.float64]]:
        """Gather pooled results, timing each call from the moment a worker picks it up.

        Calls still waiting in the queue are never timed out or cancelled. A
        timed-out call keeps its worker busy until it returns, so at most
        ``workers`` clocks run at once.
        """
        results: Dict[int, npt.NDArray[np.float64]] = {}
        started: Dict[Future, float] = {}
        pending = set(futures)
        poll = min(TIMEOUT_POLL, self.eval_timeout / 4)
        while pending:
            done, pending = concurrent.futures.wait(pending, timeout=poll, return_when=FIRST_COMPLETED)
            for fut in done:
                results[futures[fut]] = self._checked(fut.result())

            now = time.monotonic()
            busy = sum(1 for fut in started if not fut.done())
            for fut in sorted(pending, key=futures.get):
                if fut not in started:
                    if busy >= workers or not fut.running():
                        continue
                    started[fut] = now
                    busy += 1
                elif now - started[fut] > self.eval_timeout:
                    i = futures[fut]
                    console.log(f"[yellow]Genome {i} timed out after {self.eval_timeout}s, assigning minimum fitness[/yellow]")
                    results[i] = self.minimum.copy()
                    pending.discard(fut)
        return results

    def _checked(self, fit: np.ndarray) -> np.ndarray:
        fit = np.asarray(fit, dtype=np.float64).reshape(-1)
        if fit.shape[0] != self.n_fitness:
            raise ValueError(f"Fitness vector of length {fit.shape[0]} != {self.n_fitness} functions")
        return np.where(np.isfinite(fit), fit, self.minimum)
