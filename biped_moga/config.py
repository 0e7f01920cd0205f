"""Run configuration: defaults and validated configuration records."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Optional, Tuple

from biped_moga.errors import ConfigurationError

# ---------- Defaults ----------
SEED = 42
N_GEN = 5
POP_SIZE = 1000
TOP_FRACTION = 5         # default elite group = population // TOP_FRACTION

MUT_RATE = 0.1           # per-gene mutation probability
MUT_SCALE = 0.1          # gaussian sigma as a fraction of the field range
MUT_SCHEME = "norm"
CX_SCHEME = "2point"

SELECTION_DECAY = 0.5    # geometric front weighting
MAX_FIND_RESULTS = 10

TORQUE_LIMIT = 20.0
WEIGHT_RANGE = (-2.0, 2.0)
PHASE_RANGE = (-math.pi, math.pi)
FREQ_RANGE = (0.4, 2.0)

MUTATION_SCHEMES = ("norm", "uniform")
CROSSOVER_SCHEMES = ("1point", "2point", "uniform")
WEIGHTING_SCHEMES = ("inverse", "geometric")
TIE_BREAKS = ("sum", "crowding", "none")
EXECUTORS = ("serial", "thread", "process")
CONTROLLER_KINDS = ("nn", "cpg")


def _check_choice(value: str, choices: Tuple[str, ...], what: str) -> None:
    if value not in choices:
        raise ConfigurationError(f"Unknown {what} '{value}', expected one of {choices}")


@dataclass(frozen=True)
class MutationConfig:
    rate: float = MUT_RATE
    scheme: str = MUT_SCHEME
    scale: float = MUT_SCALE

    def __post_init__(self):
        _check_choice(self.scheme, MUTATION_SCHEMES, "mutation scheme")
        if not 0.0 <= self.rate <= 1.0:
            raise ConfigurationError(f"Mutation rate {self.rate} outside [0, 1]")
        if self.scale < 0:
            raise ConfigurationError(f"Mutation scale {self.scale} is negative")


@dataclass(frozen=True)
class SelectionConfig:
    """Mating selection.

    With ``weighted_pairing`` individuals of earlier Pareto fronts are drawn
    more often: ``inverse`` weighs front k by 1/k, ``geometric`` by
    ``decay ** (k - 1)``. ``tie_break`` orders individuals inside a front when
    picking the elite.
    """

    weighted_pairing: bool = True
    scheme: str = "inverse"
    decay: float = SELECTION_DECAY
    tie_break: str = "sum"

    def __post_init__(self):
        _check_choice(self.scheme, WEIGHTING_SCHEMES, "weighting scheme")
        _check_choice(self.tie_break, TIE_BREAKS, "tie-break")
        if not 0.0 < self.decay <= 1.0:
            raise ConfigurationError(f"Selection decay {self.decay} outside (0, 1]")


@dataclass(frozen=True)
class Fittest:
    """Split of the next generation into elite copies, mutated elite and children."""

    elite: int
    mutated: int
    children: int

    @classmethod
    def default(cls, population: int) -> "Fittest":
        top = population // TOP_FRACTION
        return cls(top, top, population - 2 * top)

    @property
    def total(self) -> int:
        return self.elite + self.mutated + self.children

    def validate(self, population: int) -> None:
        if min(self.elite, self.mutated, self.children) < 0:
            raise ConfigurationError(f"Negative group size in {self}")
        if self.total != population:
            raise ConfigurationError(
                f"Fittest {self.elite}+{self.mutated}+{self.children}={self.total} "
                f"does not match population {population}"
            )


@dataclass(frozen=True)
class ControllerConfig:
    """Run-level controller architecture (not evolved)."""

    kind: str = "nn"
    n_inputs: int = 4
    n_outputs: int = 2
    hidden_sizes: Tuple[int, ...] = ()
    activations: Tuple[str, ...] = ("purelin",)
    torque_limit: float = TORQUE_LIMIT
    weight_range: Tuple[float, float] = WEIGHT_RANGE
    phase_range: Tuple[float, float] = PHASE_RANGE
    freq_range: Tuple[float, float] = FREQ_RANGE

    def __post_init__(self):
        _check_choice(self.kind, CONTROLLER_KINDS, "controller type")
        object.__setattr__(self, "hidden_sizes", tuple(int(h) for h in self.hidden_sizes))
        object.__setattr__(self, "activations", tuple(self.activations))
        object.__setattr__(self, "weight_range", tuple(float(w) for w in self.weight_range))
        object.__setattr__(self, "phase_range", tuple(float(p) for p in self.phase_range))
        object.__setattr__(self, "freq_range", tuple(float(f) for f in self.freq_range))
        if self.n_inputs <= 0 or self.n_outputs <= 0:
            raise ConfigurationError("Controller needs at least one input and one output")
        if any(h <= 0 for h in self.hidden_sizes):
            raise ConfigurationError(f"Hidden layer sizes must be positive: {self.hidden_sizes}")
        if self.kind == "nn" and len(self.activations) != len(self.hidden_sizes) + 1:
            raise ConfigurationError(
                f"{len(self.hidden_sizes) + 1} layers need as many activations, "
                f"got {len(self.activations)}"
            )
        if self.torque_limit <= 0:
            raise ConfigurationError(f"Torque limit {self.torque_limit} must be positive")

    @classmethod
    def network(
        cls,
        n_inputs: int,
        n_outputs: int,
        hidden_sizes: Tuple[int, ...] = (),
        activations: Optional[Tuple[str, ...]] = None,
        torque_limit: float = TORQUE_LIMIT,
        weight_range: Tuple[float, float] = WEIGHT_RANGE,
    ) -> "ControllerConfig":
        if activations is None:
            activations = ("tansig",) * len(hidden_sizes) + ("purelin",)
        return cls(
            kind="nn",
            n_inputs=n_inputs,
            n_outputs=n_outputs,
            hidden_sizes=tuple(hidden_sizes),
            activations=tuple(activations),
            torque_limit=torque_limit,
            weight_range=weight_range,
        )

    @classmethod
    def cpg(
        cls,
        n_joints: int,
        torque_limit: float = TORQUE_LIMIT,
        phase_range: Tuple[float, float] = PHASE_RANGE,
        freq_range: Tuple[float, float] = FREQ_RANGE,
        n_inputs: int = 4,
    ) -> "ControllerConfig":
        return cls(
            kind="cpg",
            n_inputs=n_inputs,
            n_outputs=n_joints,
            torque_limit=torque_limit,
            phase_range=phase_range,
            freq_range=freq_range,
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ControllerConfig":
        return cls(**data)


@dataclass(frozen=True)
class RunConfig:
    generations: int
    population: int
    fittest: Fittest
    seed: int = SEED
    mutation: MutationConfig = field(default_factory=MutationConfig)
    crossover: str = CX_SCHEME
    child_mutation: bool = True
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    workers: int = 1
    executor: str = "serial"
    eval_timeout: Optional[float] = None
    verbose: bool = True

    def __post_init__(self):
        if self.generations < 1:
            raise ConfigurationError(f"Need at least one generation, got {self.generations}")
        if self.population < 1:
            raise ConfigurationError(f"Need a positive population, got {self.population}")
        self.fittest.validate(self.population)
        _check_choice(self.crossover, CROSSOVER_SCHEMES, "crossover scheme")
        _check_choice(self.executor, EXECUTORS, "executor")
        if self.workers < 1:
            raise ConfigurationError(f"Need at least one worker, got {self.workers}")
        if self.eval_timeout is not None and self.eval_timeout <= 0:
            raise ConfigurationError(f"Evaluation timeout {self.eval_timeout} must be positive")

    @classmethod
    def from_population(cls, generations: int = N_GEN, population: int = POP_SIZE, **kwargs: Any) -> "RunConfig":
        """Default split: a fifth copied, a fifth mutated, the rest bred."""
        return cls(generations, population, Fittest.default(population), **kwargs)

    @classmethod
    def with_fittest(
        cls, generations: int, population: int, fittest: Tuple[int, int, int], **kwargs: Any
    ) -> "RunConfig":
        return cls(generations, population, Fittest(*fittest), **kwargs)

    @property
    def weighted_pairing(self) -> bool:
        return self.selection.weighted_pairing

    def extended(self, generations: int) -> "RunConfig":
        return replace(self, generations=generations)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "RunConfig":
        data = dict(data)
        data["fittest"] = Fittest(**data["fittest"])
        data["mutation"] = MutationConfig(**data["mutation"])
        data["selection"] = SelectionConfig(**data["selection"])
        return cls(**data)
