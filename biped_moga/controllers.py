"""Controller adapter: builds runnable NN or CPG policies from decoded genes."""

from __future__ import annotations

import math
from typing import Mapping, Protocol, Sequence

import numpy as np
import numpy.typing as npt
import torch
from torch import nn

from biped_moga.config import ControllerConfig
from biped_moga.errors import ConfigurationError, GeneSpecError
from biped_moga.genome import GeneField, GeneSpec, field_block

# transfer function names and their plain aliases
ACTIVATIONS = {
    "purelin": nn.Identity,
    "linear": nn.Identity,
    "tansig": nn.Tanh,
    "tanh": nn.Tanh,
    "logsig": nn.Sigmoid,
    "sigmoid": nn.Sigmoid,
    "poslin": nn.ReLU,
    "relu": nn.ReLU,
}


class Controller(Protocol):
    def output(self, time: float, state: Sequence[float]) -> npt.NDArray[np.float64]:
        ...


def _layer_sizes(config: ControllerConfig) -> list[int]:
    return [config.n_inputs, *config.hidden_sizes, config.n_outputs]


# ---------- Gene layouts ----------
def network_gene_spec(config: ControllerConfig) -> GeneSpec:
    """One gene per weight and bias, layer by layer: ``w{l}_{row}_{col}``, ``b{l}_{row}``."""
    lo, hi = config.weight_range
    sizes = _layer_sizes(config)
    fields: list[GeneField] = []
    for layer, (n_in, n_out) in enumerate(zip(sizes[:-1], sizes[1:])):
        fields += field_block(f"w{layer}_", (n_out, n_in), lo, hi)
        fields += field_block(f"b{layer}_", (n_out,), lo, hi)
    return GeneSpec(fields)


def cpg_gene_spec(config: ControllerConfig) -> GeneSpec:
    """Amplitude, phase and bias per joint plus one shared frequency."""
    limit = config.torque_limit
    fields: list[GeneField] = []
    for j in range(config.n_outputs):
        fields.append(GeneField(f"amp{j}", 0.0, limit))
        fields.append(GeneField(f"phase{j}", *config.phase_range))
        fields.append(GeneField(f"bias{j}", -0.5 * limit, 0.5 * limit))
    fields.append(GeneField("freq", *config.freq_range))
    return GeneSpec(fields)


def controller_gene_spec(config: ControllerConfig) -> GeneSpec:
    if config.kind == "nn":
        return network_gene_spec(config)
    return cpg_gene_spec(config)


# ---------- Controllers ----------
class NetworkController:
    """Feed-forward torch network mapping the biped state to joint torques."""

    def __init__(self, net: nn.Sequential, n_inputs: int, torque_limit: float):
        self.net = net.eval()
        self.n_inputs = n_inputs
        self.torque_limit = torque_limit

    def output(self, time: float, state: Sequence[float]) -> npt.NDArray[np.float64]:
        x = np.asarray(state, dtype=np.float32).reshape(-1)
        if x.shape[0] != self.n_inputs:
            raise ValueError(f"State length {x.shape[0]} != network inputs {self.n_inputs}")
        with torch.inference_mode():
            y = self.net(torch.from_numpy(x)).detach().cpu().numpy().astype(np.float64)
        return np.clip(y, -self.torque_limit, self.torque_limit)


class PatternGenerator:
    """One sine oscillator per joint sharing a common frequency."""

    def __init__(self, amplitudes, phases, biases, frequency: float, torque_limit: float, n_inputs: int):
        self.amplitudes = np.asarray(amplitudes, dtype=np.float64)
        self.phases = np.asarray(phases, dtype=np.float64)
        self.biases = np.asarray(biases, dtype=np.float64)
        self.omega = 2.0 * math.pi * float(frequency)
        self.torque_limit = torque_limit
        self.n_inputs = n_inputs

    def output(self, time: float, state: Sequence[float]) -> npt.NDArray[np.float64]:
        if np.asarray(state).size != self.n_inputs:
            raise ValueError(f"State length {np.asarray(state).size} != expected {self.n_inputs}")
        u = self.amplitudes * np.sin(self.omega * float(time) + self.phases) + self.biases
        return np.clip(u, -self.torque_limit, self.torque_limit)


def _take(fields: Mapping[str, float], names: Sequence[str]) -> np.ndarray:
    try:
        return np.array([fields[n] for n in names], dtype=np.float64)
    except KeyError as e:
        raise GeneSpecError(f"Controller gene {e} missing from decoded genome") from e


def build_network(fields: Mapping[str, float], config: ControllerConfig) -> NetworkController:
    sizes = _layer_sizes(config)
    layers: list[nn.Module] = []
    for layer, (n_in, n_out) in enumerate(zip(sizes[:-1], sizes[1:])):
        linear = nn.Linear(n_in, n_out)
        w = _take(fields, [f.name for f in field_block(f"w{layer}_", (n_out, n_in), 0, 0)])
        b = _take(fields, [f.name for f in field_block(f"b{layer}_", (n_out,), 0, 0)])
        with torch.no_grad():
            linear.weight.copy_(torch.from_numpy(w.reshape(n_out, n_in)))
            linear.bias.copy_(torch.from_numpy(b))
        try:
            activation = ACTIVATIONS[config.activations[layer]]
        except KeyError as e:
            raise ConfigurationError(f"Unknown activation {e}, expected one of {sorted(ACTIVATIONS)}") from e
        layers += [linear, activation()]
    return NetworkController(nn.Sequential(*layers), config.n_inputs, config.torque_limit)


def build_pattern_generator(fields: Mapping[str, float], config: ControllerConfig) -> PatternGenerator:
    joints = range(config.n_outputs)
    return PatternGenerator(
        amplitudes=_take(fields, [f"amp{j}" for j in joints]),
        phases=_take(fields, [f"phase{j}" for j in joints]),
        biases=_take(fields, [f"bias{j}" for j in joints]),
        frequency=_take(fields, ["freq"])[0],
        torque_limit=config.torque_limit,
        n_inputs=config.n_inputs,
    )


def build_controller(fields: Mapping[str, float], config: ControllerConfig) -> Controller:
    if config.kind == "nn":
        return build_network(fields, config)
    return build_pattern_generator(fields, config)
