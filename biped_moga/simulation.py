"""Contract between the optimizer and the external biped simulator.

The simulator itself lives outside this package. It receives a controller,
initial conditions and an :class:`EpisodeConfig`, and returns a
:class:`SimulationRecord`. Records are read-only to the optimizer; fitness
functions that need another experiment (walking on a slope) branch an
independent re-run through :meth:`SimulationRecord.branch`.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Protocol

import numpy as np
import numpy.typing as npt

from biped_moga.controllers import Controller

Array = npt.NDArray[np.float64]

SLOPE_DURATION = 120.0
SLOPE_TSTEP = 0.1
SLOPE_LEADWAY = 1.0
SLOPE_GAIN_RANGE = (0.01, 0.04)


@dataclass(frozen=True)
class Terrain:
    """Ground profile.

    ``kind="flat"`` is level ground. ``kind="incline"`` starts level until
    ``start_x`` and then steepens with distance at rate ``slope_gain``
    (positive uphill, negative downhill); the simulator reports the steepest
    slope the biped sustained in ``max_slope``/``min_slope``.
    """

    kind: str = "flat"
    start_slope: float = 0.0
    slope_gain: float = 0.0
    start_x: float = 0.0


@dataclass(frozen=True)
class EpisodeConfig:
    duration: float = 10.0
    tstep: float = 0.01
    terrain: Terrain = field(default_factory=Terrain)

    @classmethod
    def incline(cls, velocity: float, direction: int) -> "EpisodeConfig":
        """Slope experiment whose steepening rate is tuned to the flat-ground speed."""
        gain = float(np.clip(0.015 / velocity, *SLOPE_GAIN_RANGE))
        terrain = Terrain("incline", start_slope=0.0, slope_gain=direction * gain, start_x=SLOPE_LEADWAY)
        return cls(duration=SLOPE_DURATION, tstep=SLOPE_TSTEP, terrain=terrain)


class Simulator(Protocol):
    def run(self, controller: Controller, initial_conditions: Array, episode: EpisodeConfig) -> "SimulationRecord":
        ...


@dataclass(frozen=True)
class EpisodeSource:
    """Everything needed to replay an episode under different conditions."""

    simulator: Simulator
    controller: Controller
    initial_conditions: Array
    episode: EpisodeConfig


@dataclass(frozen=True, eq=False)
class SimulationRecord:
    """One episode as reported by the simulator.

    Time series share their first axis with ``t``. ``hip``/``support`` hold
    absolute (x, y) positions, ``feet_x`` the absolute x of both feet,
    ``joint_velocities`` the stance and swing angular velocities and ``grf``
    the (x, y) ground reaction force on the stance foot. ``end_time`` is the
    configured episode length; ``t[-1]`` is earlier when the biped fell.
    """

    t: Array
    state: Array
    torques: Array
    support: Array
    hip: Array
    feet_x: Array
    joint_velocities: Array
    grf: Array
    leg_length: float
    weight: float
    end_time: float
    tstep: float
    period: Optional[float] = None
    eigenvalues: Optional[Array] = None
    max_slope: Optional[float] = None
    min_slope: Optional[float] = None
    source: Optional[EpisodeSource] = field(default=None, repr=False)

    @property
    def n_samples(self) -> int:
        return int(np.asarray(self.t).shape[0])

    @property
    def distance_traveled(self) -> float:
        if self.n_samples == 0:
            return 0.0
        return float(abs(self.hip[-1, 0] - self.hip[0, 0]))

    @property
    def support_travel(self) -> float:
        if self.n_samples == 0:
            return 0.0
        return float(self.support[-1, 0] - self.support[0, 0])

    def branch(self, episode: EpisodeConfig) -> "SimulationRecord":
        """Re-run the episode on cloned state; the clone belongs to the branch."""
        if self.source is None:
            raise ValueError("Record has no episode source to branch from")
        src = self.source
        return run_episode(
            src.simulator,
            copy.deepcopy(src.controller),
            np.array(src.initial_conditions, dtype=np.float64, copy=True),
            episode,
        )


def run_episode(
    simulator: Simulator,
    controller: Controller,
    initial_conditions: Any,
    episode: EpisodeConfig,
) -> SimulationRecord:
    ic = np.array(initial_conditions, dtype=np.float64, copy=True)
    record = simulator.run(controller, ic.copy(), episode)
    return replace(record, source=EpisodeSource(simulator, controller, ic, episode))
