"""Scores one genome: decode, build controller, simulate, apply every fitness function."""

from __future__ import annotations

from typing import Any, Optional, Sequence

import numpy as np

from biped_moga.config import ControllerConfig
from biped_moga.console import console
from biped_moga.controllers import build_controller
from biped_moga.fitness import FitnessRegistry, default_registry
from biped_moga.genome import GeneSpec
from biped_moga.simulation import EpisodeConfig, Simulator, run_episode


class FitnessEvaluator:
    def __init__(
        self,
        gene_spec: GeneSpec,
        controller_config: ControllerConfig,
        simulator: Simulator,
        initial_conditions: Sequence[float],
        episode: Optional[EpisodeConfig] = None,
        registry: Optional[FitnessRegistry] = None,
    ):
        self.gene_spec = gene_spec
        self.controller_config = controller_config
        self.simulator = simulator
        self.initial_conditions = np.array(initial_conditions, dtype=np.float64)
        self.episode = episode or EpisodeConfig()
        self.registry = registry if registry is not None else default_registry()

    @property
    def n_fitness(self) -> int:
        return len(self.registry)

    def minimum(self) -> np.ndarray:
        return self.registry.minimums()

    def evaluate(self, genome: Any) -> np.ndarray:
        """Fitness vector in registry order; failed episodes get the minimum vector."""
        fields = self.gene_spec.decode(genome)
        controller = build_controller(fields, self.controller_config)
        try:
            sim = run_episode(self.simulator, controller, self.initial_conditions, self.episode)
            fit = self.registry.evaluate(sim)
        except Exception as e:
            console.log(f"[yellow]Evaluation failed, assigning minimum fitness: {e}[/yellow]")
            return self.minimum()
        return np.where(np.isfinite(fit), fit, self.minimum())

    __call__ = evaluate
