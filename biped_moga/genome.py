"""Genome codec: gene specification, encoding and the genetic operators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import numpy.typing as npt

from biped_moga.config import CX_SCHEME, CROSSOVER_SCHEMES, MUT_SCALE, MUT_SCHEME, MUTATION_SCHEMES
from biped_moga.errors import ConfigurationError, GeneSpecError, GenomeLengthError

Genome = npt.NDArray[np.float64]

BASE_POSITIONS = ("prefix", "suffix")


@dataclass(frozen=True)
class GeneField:
    name: str
    low: float
    high: float

    def __post_init__(self):
        if not np.isfinite(self.low) or not np.isfinite(self.high):
            raise GeneSpecError(f"Gene '{self.name}' has a non-finite range")
        if self.high < self.low:
            raise GeneSpecError(f"Gene '{self.name}' range [{self.low}, {self.high}] is inverted")


class GeneSpec:
    """Ordered, named and bounded layout of a genome.

    A spec may carry a block of base genes optimized by a previous run. Base
    genes keep the values they were given: the operators below never change
    them, and every genome produced through the spec has them restored.
    """

    def __init__(
        self,
        fields: Iterable[GeneField],
        base_fields: Iterable[GeneField] = (),
        base_values: Optional[Sequence[float]] = None,
        base_position: str = "prefix",
    ):
        own = list(fields)
        base = list(base_fields)
        if base_position not in BASE_POSITIONS:
            raise GeneSpecError(f"Base position must be one of {BASE_POSITIONS}, got '{base_position}'")
        if base and base_values is None:
            raise GeneSpecError("Base genes given without values")
        values = np.asarray(base_values if base_values is not None else [], dtype=np.float64)
        if values.shape != (len(base),):
            raise GeneSpecError(f"{len(base)} base genes need as many values, got {values.size}")

        ordered = base + own if base_position == "prefix" else own + base
        names = [f.name for f in ordered]
        if len(set(names)) != len(names):
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise GeneSpecError(f"Duplicate gene names: {dupes}")

        self.own_fields: Tuple[GeneField, ...] = tuple(own)
        self.base_fields: Tuple[GeneField, ...] = tuple(base)
        self.base_position = base_position
        self.fields: Tuple[GeneField, ...] = tuple(ordered)
        self.names: Tuple[str, ...] = tuple(names)
        self.low = np.array([f.low for f in ordered], dtype=np.float64)
        self.high = np.array([f.high for f in ordered], dtype=np.float64)

        self.evolvable = np.ones(len(ordered), dtype=bool)
        if base:
            start = 0 if base_position == "prefix" else len(own)
            self._base_idx = np.arange(start, start + len(base))
            self.evolvable[self._base_idx] = False
        else:
            self._base_idx = np.arange(0)
        self.base_values = values
        if base and np.any((values < self.low[self._base_idx]) | (values > self.high[self._base_idx])):
            raise GeneSpecError("Base gene values fall outside their ranges")

    @classmethod
    def from_ranges(cls, ranges: Dict[str, Tuple[float, float]]) -> "GeneSpec":
        return cls(GeneField(name, lo, hi) for name, (lo, hi) in ranges.items())

    @property
    def length(self) -> int:
        return len(self.fields)

    @property
    def n_evolvable(self) -> int:
        return int(self.evolvable.sum())

    def __len__(self) -> int:
        return self.length

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GeneSpec):
            return NotImplemented
        return (
            self.fields == other.fields
            and self.base_fields == other.base_fields
            and self.base_position == other.base_position
            and np.array_equal(self.base_values, other.base_values)
        )

    def __repr__(self) -> str:
        return f"GeneSpec(length={self.length}, base={len(self.base_fields)})"

    def check_length(self, genome: Sequence[float]) -> Genome:
        arr = np.asarray(genome, dtype=np.float64)
        if arr.ndim != 1 or arr.shape[0] != self.length:
            raise GenomeLengthError(self.length, arr.size if arr.ndim == 1 else -1)
        return arr

    def encode(self, values: Sequence[float]) -> Genome:
        genome = self.check_length(values).copy()
        if not np.all(np.isfinite(genome)):
            raise GeneSpecError("Genome contains non-finite values")
        outside = (genome < self.low) | (genome > self.high)
        if outside.any():
            bad = [self.names[i] for i in np.flatnonzero(outside)]
            raise GeneSpecError(f"Genes out of range: {bad}")
        return self.apply_base(genome)

    def decode(self, genome: Sequence[float]) -> Dict[str, float]:
        arr = self.check_length(genome)
        return {name: float(v) for name, v in zip(self.names, arr)}

    def apply_base(self, genome: Genome) -> Genome:
        """Restore base gene values in place and return the genome."""
        if self._base_idx.size:
            genome[self._base_idx] = self.base_values
        return genome

    def clamp(self, genome: Genome) -> Genome:
        np.clip(genome, self.low, self.high, out=genome)
        return genome

    def random(self, rng: np.random.Generator, n: int) -> npt.NDArray[np.float64]:
        """Draw ``n`` genomes uniformly inside the field ranges."""
        genomes = rng.uniform(self.low, self.high, size=(n, self.length))
        for row in genomes:
            self.apply_base(row)
        return genomes

    def with_base(
        self,
        base_spec: "GeneSpec",
        base_values: Sequence[float],
        position: str = "prefix",
    ) -> "GeneSpec":
        """Merge the genes of a previous run as a fixed block."""
        values = base_spec.check_length(base_values)
        return GeneSpec(
            self.own_fields,
            base_fields=base_spec.fields,
            base_values=values,
            base_position=position,
        )

    def to_dict(self) -> dict:
        return {
            "fields": [[f.name, f.low, f.high] for f in self.own_fields],
            "base_fields": [[f.name, f.low, f.high] for f in self.base_fields],
            "base_values": self.base_values.tolist(),
            "base_position": self.base_position,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GeneSpec":
        return cls(
            (GeneField(n, lo, hi) for n, lo, hi in data["fields"]),
            base_fields=[GeneField(n, lo, hi) for n, lo, hi in data.get("base_fields", [])],
            base_values=data.get("base_values") or None,
            base_position=data.get("base_position", "prefix"),
        )


# ---------- Operators ----------
def crossover(
    spec: GeneSpec,
    parent_a: Genome,
    parent_b: Genome,
    rng: np.random.Generator,
    scheme: str = CX_SCHEME,
) -> Tuple[Genome, Genome]:
    """Swap a segment (or a random mask) of evolvable genes between two parents."""
    a = spec.check_length(parent_a)
    b = spec.check_length(parent_b)
    if scheme not in CROSSOVER_SCHEMES:
        raise ConfigurationError(f"Unknown crossover scheme '{scheme}'")
    child_a, child_b = a.copy(), b.copy()
    idx = np.flatnonzero(spec.evolvable)
    n = idx.size

    if scheme == "2point" and n >= 1:
        i, j = np.sort(rng.choice(n + 1, size=2, replace=False))
        swap = idx[i:j]
    elif scheme == "1point" and n >= 2:
        point = int(rng.integers(1, n))
        swap = idx[point:]
    elif scheme == "uniform" and n >= 1:
        swap = idx[rng.random(n) < 0.5]
    else:
        swap = idx[:0]

    child_a[swap] = b[swap]
    child_b[swap] = a[swap]
    return spec.apply_base(child_a), spec.apply_base(child_b)


def mutate(
    spec: GeneSpec,
    genome: Genome,
    rng: np.random.Generator,
    rate: float,
    scheme: str = MUT_SCHEME,
    scale: float = MUT_SCALE,
) -> Genome:
    """Perturb each evolvable gene with probability ``rate``, then clamp."""
    out = spec.check_length(genome).copy()
    if scheme not in MUTATION_SCHEMES:
        raise ConfigurationError(f"Unknown mutation scheme '{scheme}'")
    if rate <= 0:
        return out

    to_mut = (rng.random(spec.length) < rate) & spec.evolvable
    if scheme == "norm":
        noise = rng.normal(loc=0.0, scale=scale * (spec.high - spec.low))
        out[to_mut] += noise[to_mut]
    else:
        fresh = rng.uniform(spec.low, spec.high)
        out[to_mut] = fresh[to_mut]
    return spec.apply_base(spec.clamp(out))


def field_block(prefix: str, shape: Tuple[int, ...], low: float, high: float) -> List[GeneField]:
    """Fields ``prefix{i}_{j}...`` for every index of ``shape``, row-major."""
    return [
        GeneField(prefix + "_".join(str(i) for i in index), low, high)
        for index in np.ndindex(*shape)
    ]
