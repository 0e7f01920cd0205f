"""Shared fixtures: a kinematic stand-in for the biped simulator."""

import numpy as np
import pytest

from biped_moga.config import ControllerConfig, RunConfig
from biped_moga.console import set_verbose
from biped_moga.controllers import controller_gene_spec
from biped_moga.errors import SimulationError
from biped_moga.evaluator import FitnessEvaluator
from biped_moga.fitness import default_registry
from biped_moga.simulation import EpisodeConfig, SimulationRecord

IC = np.array([0.0, 0.0, 0.0, 0.0])
FAST_EPISODE = EpisodeConfig(duration=2.0, tstep=0.05)


class FakeBiped:
    """Moves the hip forward at a speed set by the first torque.

    The hip height follows the second torque and the state fed back to the
    controller is ``[x, y, speed, t]``. Nothing here is physics; it only has
    to be deterministic and respond to the controller.
    """

    def __init__(self, leg_length=1.0, weight=10.0, fail=False):
        self.leg_length = leg_length
        self.weight = weight
        self.fail = fail
        self.calls = 0

    def run(self, controller, initial_conditions, episode):
        self.calls += 1
        if self.fail:
            raise SimulationError("integration did not converge")

        L = self.leg_length
        t = np.arange(0.0, episode.duration + 0.5 * episode.tstep, episode.tstep)
        n = t.shape[0]
        state = np.array(initial_conditions, dtype=np.float64)
        x, y = float(state[0]), 0.8 * L

        states = np.zeros((n, 4))
        torques = np.zeros((n, 2))
        hip = np.zeros((n, 2))
        for k, tk in enumerate(t):
            u = np.asarray(controller.output(tk, state), dtype=np.float64)
            speed = float(np.clip(0.1 * u[0], -1.5, 1.5)) * L
            if k:
                x += speed * episode.tstep
            y = L * (0.8 + 0.1 * np.tanh(u[1]))
            state = np.array([x, y, speed, tk])
            states[k], torques[k], hip[k] = state, u[:2], (x, y)

        support = np.column_stack([np.floor(hip[:, 0] / (0.5 * L)) * 0.5 * L, np.zeros(n)])
        feet_x = np.column_stack([hip[:, 0] - 0.1 * L, hip[:, 0] + 0.1 * L])
        travel = hip[-1, 0] - hip[0, 0]

        terrain = episode.terrain
        max_slope = min_slope = None
        if terrain.kind == "incline":
            reached = terrain.slope_gain * max(0.0, abs(travel) - terrain.start_x)
            max_slope, min_slope = max(reached, 0.0), min(reached, 0.0)

        moving = abs(travel) > 0.1 * L
        return SimulationRecord(
            t=t,
            state=states,
            torques=torques,
            support=support,
            hip=hip,
            feet_x=feet_x,
            joint_velocities=0.1 * torques,
            grf=np.column_stack([np.zeros(n), np.full(n, self.weight)]),
            leg_length=L,
            weight=self.weight,
            end_time=episode.duration,
            tstep=episode.tstep,
            period=1.0 if moving else None,
            eigenvalues=np.array([0.2, 0.5]) if moving else None,
            max_slope=max_slope,
            min_slope=min_slope,
        )


class ConstantController:
    def __init__(self, torques):
        self.torques = np.asarray(torques, dtype=np.float64)

    def output(self, time, state):
        return self.torques.copy()


def make_record(hip_x, hip_y=None, leg_length=1.0, end_time=None, **kwargs):
    """Record with a hand-written hip trajectory sampled every 0.1 s."""
    hip_x = np.asarray(hip_x, dtype=np.float64)
    n = hip_x.shape[0]
    t = np.arange(n) * 0.1
    hip_y = np.full(n, 0.9 * leg_length) if hip_y is None else np.asarray(hip_y, dtype=np.float64)
    fields = dict(
        t=t,
        state=np.zeros((n, 4)),
        torques=np.ones((n, 2)),
        support=np.column_stack([hip_x, np.zeros(n)]),
        hip=np.column_stack([hip_x, hip_y]),
        feet_x=np.column_stack([hip_x - 0.1, hip_x + 0.1]),
        joint_velocities=np.full((n, 2), 0.5),
        grf=np.column_stack([np.zeros(n), np.full(n, 100.0)]),
        leg_length=leg_length,
        weight=100.0,
        end_time=float(t[-1]) if end_time is None else end_time,
        tstep=0.1,
    )
    fields.update(kwargs)
    return SimulationRecord(**fields)


@pytest.fixture(autouse=True)
def quiet_console():
    set_verbose(False)
    yield
    set_verbose(True)


@pytest.fixture
def biped():
    return FakeBiped()


@pytest.fixture
def nn_config():
    return ControllerConfig.network(4, 2, hidden_sizes=(3,))


@pytest.fixture
def nn_spec(nn_config):
    return controller_gene_spec(nn_config)


@pytest.fixture
def evaluator(nn_spec, nn_config, biped):
    registry = default_registry().select("HeightFit", "VelFit")
    return FitnessEvaluator(nn_spec, nn_config, biped, IC, episode=FAST_EPISODE, registry=registry)


@pytest.fixture
def small_config():
    return RunConfig.from_population(3, 20, seed=7, verbose=False)
