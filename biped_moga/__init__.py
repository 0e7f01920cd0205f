"""Multi-objective genetic algorithm for evolving biped walking controllers."""

from biped_moga.config import ControllerConfig, Fittest, MutationConfig, RunConfig, SelectionConfig
from biped_moga.console import console
from biped_moga.controllers import build_controller, controller_gene_spec
from biped_moga.errors import (
    ConfigurationError,
    GeneSpecError,
    GenomeLengthError,
    IncompatibleStateError,
    MogaError,
    RunStateError,
    SimulationError,
)
from biped_moga.evaluator import FitnessEvaluator
from biped_moga.fitness import BUILTIN, FitnessFunction, FitnessRegistry, default_registry, registry_from_names
from biped_moga.genome import GeneField, GeneSpec, crossover, mutate
from biped_moga.optimizer import FindResult, GenerationReport, Moga, RunStatus
from biped_moga.persistence import RunState, load_state, save_state
from biped_moga.simulation import EpisodeConfig, SimulationRecord, Simulator, Terrain, run_episode

__all__ = [
    "BUILTIN",
    "ConfigurationError",
    "ControllerConfig",
    "EpisodeConfig",
    "FindResult",
    "FitnessEvaluator",
    "FitnessFunction",
    "FitnessRegistry",
    "Fittest",
    "GeneField",
    "GeneSpec",
    "GeneSpecError",
    "GenerationReport",
    "GenomeLengthError",
    "IncompatibleStateError",
    "Moga",
    "MogaError",
    "MutationConfig",
    "RunConfig",
    "RunState",
    "RunStateError",
    "RunStatus",
    "SelectionConfig",
    "SimulationError",
    "SimulationRecord",
    "Simulator",
    "Terrain",
    "build_controller",
    "console",
    "controller_gene_spec",
    "crossover",
    "default_registry",
    "load_state",
    "mutate",
    "registry_from_names",
    "run_episode",
    "save_state",
]
