"""Built-in fitness functions and the registry that orders them.

Every function takes a :class:`SimulationRecord` and returns ``(fit, out)``
where ``out`` is optional auxiliary data. Degenerate episodes score the
function's minimum instead of raising.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, List, Sequence, Tuple, Union

import numpy as np

from biped_moga.console import console
from biped_moga.errors import ConfigurationError, SimulationError
from biped_moga.simulation import EpisodeConfig, SimulationRecord

FitnessResult = Tuple[float, Any]

MIN_TRAVEL = 3.0             # leg lengths needed before gait quality is scored
MIN_HEIGHT_TRAVEL = 0.1      # leg lengths; below this the biped is standing still
HEIGHT_FULL = 0.85           # hip height (fraction of L) with full points
HEIGHT_ZERO = 0.70           # hip height (fraction of L) with no points
MAX_VEL = 1.5                # leg lengths per second
COT_GAIN = 5.0
FOOT_FRONT = 0.4             # ankle to toes [m]
FOOT_BACK = 0.1              # ankle to heel [m]
GRF_EPS = 1e-6


# ---------- Fitness functions ----------
def height_fit(sim: SimulationRecord) -> FitnessResult:
    """Time spent with the hip high above ground.

    Full points between 100% and 85% of leg length, going linearly to zero at
    70% (85% is an aperture of 63 deg between the legs, 70% is 90 deg).
    """
    L = sim.leg_length
    if sim.n_samples < 2 or sim.distance_traveled < MIN_HEIGHT_TRAVEL * L:
        return 0.0, None
    y = sim.hip[:, 1]
    points = np.clip((y - HEIGHT_ZERO * L) / ((HEIGHT_FULL - HEIGHT_ZERO) * L), 0.0, 1.0)
    norm = sim.end_time - 2 * sim.tstep
    if norm <= 0:
        return 0.0, None
    fit = float(np.trapezoid(points, sim.t)) / norm
    return min(max(fit, 0.0), 1.0), None


def vel_fit(sim: SimulationRecord) -> FitnessResult:
    """Forward progress up to a capped velocity; backward drift scores negative."""
    if sim.n_samples == 0:
        return 0.0, sim
    L = sim.leg_length
    x0 = sim.support[0, 0]
    # trailing foot for forward reach, leading foot for backward reach
    fwd = max(0.0, float(np.max(np.min(sim.feet_x, axis=1))) - x0)
    bwd = min(0.0, float(np.min(np.max(sim.feet_x, axis=1))) - x0)

    local_max = MAX_VEL * L * float(sim.t[-1])    # shorter than global if the biped fell
    global_max = MAX_VEL * L * sim.end_time
    if global_max <= 0:
        return 0.0, sim
    if abs(bwd) > fwd:
        fit = max(bwd, -local_max) / global_max
    else:
        fit = min(fwd, local_max) / global_max
    return fit, sim


def nrg_eff_fit(sim: SimulationRecord) -> FitnessResult:
    """Cost of transport mapped to (0, 1]: COT 0 -> 1, 0.12 -> 0.625, 0.3 -> 0.4."""
    distance = sim.distance_traveled
    if sim.n_samples < 2 or distance < MIN_TRAVEL * sim.leg_length or sim.weight <= 0:
        return 0.0, None

    t = sim.t
    st_trq, sw_trq = sim.torques[:, 0], sim.torques[:, 1]
    st_vel, sw_vel = sim.joint_velocities[:, 0], sim.joint_velocities[:, 1]
    effort = np.trapezoid(np.abs(st_trq * st_vel), t) + np.trapezoid(np.abs(sw_trq * sw_vel), t)
    d_potential = sim.weight * (sim.hip[-1, 1] - sim.hip[0, 1])

    cot = max((effort - d_potential) / (sim.weight * distance), 0.0)
    fit = 1.0 / (1.0 + COT_GAIN * cot)
    if not math.isfinite(fit):
        return 0.0, None
    return fit, None


def eigen_fit(sim: SimulationRecord) -> FitnessResult:
    """Stability of the limit cycle from the Poincare map eigenvalues."""
    if sim.period is None or sim.eigenvalues is None or np.size(sim.eigenvalues) == 0:
        return 0.0, None
    fit = 1.0 - float(np.max(np.abs(sim.eigenvalues)))
    if not fit > 0:
        return 0.0, None
    return fit, None


def uphill_fit(sim: SimulationRecord) -> FitnessResult:
    return (float(sim.max_slope) if sim.max_slope is not None else 0.0), None


def downhill_fit(sim: SimulationRecord) -> FitnessResult:
    return (-float(sim.min_slope) if sim.min_slope is not None else 0.0), None


def _slope_run(sim: SimulationRecord, direction: int, score: Callable[[SimulationRecord], FitnessResult]) -> FitnessResult:
    distance = sim.distance_traveled
    if sim.n_samples < 2 or distance < MIN_TRAVEL * sim.leg_length or sim.source is None:
        return 0.0, None
    velocity = distance / float(sim.t[-1])
    try:
        slope_sim = sim.branch(EpisodeConfig.incline(velocity, direction))
    except SimulationError as e:
        console.log(f"[yellow]Slope run failed: {e}[/yellow]")
        return 0.0, None
    fit, _ = score(slope_sim)
    return fit, slope_sim


def uphill_fit_run(sim: SimulationRecord) -> FitnessResult:
    return _slope_run(sim, 1, uphill_fit)


def downhill_fit_run(sim: SimulationRecord) -> FitnessResult:
    return _slope_run(sim, -1, downhill_fit)


def zmp_fit(sim: SimulationRecord) -> FitnessResult:
    """Zero-moment point margin inside the estimated foot."""
    if sim.n_samples == 0 or sim.support_travel < MIN_TRAVEL * sim.leg_length:
        return 0.0, None
    ankle = sim.torques[:, 0]
    grf_y = sim.grf[:, 1]
    valid = np.abs(grf_y) > GRF_EPS
    if not valid.any():
        return 0.0, None
    zmp = ankle[valid] / grf_y[valid]    # ankle torque / GRFy

    front, back = float(np.max(zmp)), float(np.min(zmp))
    if abs(front) / FOOT_FRONT > abs(back) / FOOT_BACK:
        fit = max(1.0 - abs(front) / FOOT_FRONT, 0.0)
    else:
        fit = max(1.0 - abs(back) / FOOT_BACK, 0.0)
    # nonlinear so that small margins still get some points
    fit = math.cos(math.pi / 2 * (1.0 - fit) ** 2) ** 2
    return fit, None


# ---------- Registry ----------
@dataclass(frozen=True)
class FitnessFunction:
    name: str
    func: Callable[[SimulationRecord], FitnessResult]
    minimum: float = 0.0

    def __call__(self, sim: SimulationRecord) -> FitnessResult:
        fit, out = self.func(sim)
        fit = float(fit)
        if not math.isfinite(fit):
            return self.minimum, out
        return fit, out


class FitnessRegistry:
    """Ordered collection of fitness functions; order defines the fitness vector."""

    def __init__(self, functions: Iterable[FitnessFunction]):
        self._functions: List[FitnessFunction] = list(functions)
        names = self.names
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate fitness function names: {names}")

    def __len__(self) -> int:
        return len(self._functions)

    def __iter__(self) -> Iterator[FitnessFunction]:
        return iter(self._functions)

    def __getitem__(self, key: Union[int, str]) -> FitnessFunction:
        return self._functions[self.index(key)]

    @property
    def names(self) -> List[str]:
        return [f.name for f in self._functions]

    def index(self, key: Union[int, str]) -> int:
        if isinstance(key, str):
            try:
                return self.names.index(key)
            except ValueError:
                raise ConfigurationError(f"Unknown fitness function '{key}'") from None
        if not 0 <= key < len(self):
            raise ConfigurationError(f"Fitness index {key} outside 0..{len(self) - 1}")
        return int(key)

    def minimums(self) -> np.ndarray:
        return np.array([f.minimum for f in self._functions], dtype=np.float64)

    def add(self, function: FitnessFunction) -> "FitnessRegistry":
        return FitnessRegistry([*self._functions, function])

    def select(self, *names: str) -> "FitnessRegistry":
        return FitnessRegistry(self[n] for n in names)

    def evaluate(self, sim: SimulationRecord) -> np.ndarray:
        return np.array([f(sim)[0] for f in self._functions], dtype=np.float64)


BUILTIN = {
    f.name: f
    for f in (
        FitnessFunction("HeightFit", height_fit),
        FitnessFunction("VelFit", vel_fit, minimum=-1.0),
        FitnessFunction("NrgEffFit", nrg_eff_fit),
        FitnessFunction("EigenFit", eigen_fit),
        FitnessFunction("UphillFitRun", uphill_fit_run),
        FitnessFunction("DownhillFitRun", downhill_fit_run),
        FitnessFunction("ZMPFit", zmp_fit),
        FitnessFunction("UphillFit", uphill_fit),
        FitnessFunction("DownhillFit", downhill_fit),
    )
}

DEFAULT_FITNESS = ("HeightFit", "VelFit", "NrgEffFit", "EigenFit", "UphillFitRun", "DownhillFitRun", "ZMPFit")


def default_registry() -> FitnessRegistry:
    return registry_from_names(DEFAULT_FITNESS)


def registry_from_names(names: Sequence[str]) -> FitnessRegistry:
    try:
        return FitnessRegistry(BUILTIN[n] for n in names)
    except KeyError as e:
        raise ConfigurationError(f"Unknown fitness function {e}, expected one of {sorted(BUILTIN)}") from e
