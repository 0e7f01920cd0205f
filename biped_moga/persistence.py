"""Saving and loading the resumable state of a run.

A run directory holds ``population.npz``, which carries the genome, fitness
and pending tensors together with the JSON metadata (gene spec, run config,
fitness names, progress), and is swapped in atomically so that the progress
counter and the arrays always agree. ``config.json`` is a readable copy of
the metadata.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

import numpy as np

from biped_moga.config import RunConfig
from biped_moga.errors import IncompatibleStateError
from biped_moga.genome import GeneSpec

STATE_FILE = "population.npz"
CONFIG_FILE = "config.json"
FORMAT_VERSION = 1

PathLike = Union[str, Path]


@dataclass
class RunState:
    gene_spec: GeneSpec
    config: RunConfig
    fitness_names: List[str]
    genomes: np.ndarray
    fitness: np.ndarray
    pending: np.ndarray
    progress: int

    def genome(self, index: int, generation: Optional[int] = None) -> np.ndarray:
        """Genome ``index`` of ``generation`` (default: last evaluated)."""
        g = self.progress if generation is None else generation
        return self.genomes[index, :, g - 1].copy()

    def meta(self) -> dict:
        return {
            "version": FORMAT_VERSION,
            "progress": int(self.progress),
            "fitness_names": list(self.fitness_names),
            "gene_spec": self.gene_spec.to_dict(),
            "config": self.config.to_dict(),
        }


def exists(path: PathLike) -> bool:
    return (Path(path) / STATE_FILE).is_file()


def save_state(path: PathLike, state: RunState) -> Path:
    run_dir = Path(path)
    run_dir.mkdir(parents=True, exist_ok=True)
    meta = json.dumps(state.meta(), indent=2)

    tmp = run_dir / (STATE_FILE + ".tmp")
    with open(tmp, "wb") as f:
        np.savez_compressed(
            f,
            genomes=state.genomes,
            fitness=state.fitness,
            pending=state.pending,
            meta=np.array(meta),
        )
    os.replace(tmp, run_dir / STATE_FILE)

    with open(run_dir / CONFIG_FILE, "w") as f:
        f.write(meta)
    return run_dir


def load_state(path: PathLike) -> RunState:
    run_dir = Path(path)
    with np.load(run_dir / STATE_FILE) as arrays:
        meta = json.loads(str(arrays["meta"]))
        genomes = arrays["genomes"]
        fitness = arrays["fitness"]
        pending = arrays["pending"]
    if meta.get("version") != FORMAT_VERSION:
        raise IncompatibleStateError(f"Unsupported state format {meta.get('version')} in {run_dir}")
    return RunState(
        gene_spec=GeneSpec.from_dict(meta["gene_spec"]),
        config=RunConfig.from_dict(meta["config"]),
        fitness_names=list(meta["fitness_names"]),
        genomes=genomes,
        fitness=fitness,
        pending=pending,
        progress=int(meta["progress"]),
    )
