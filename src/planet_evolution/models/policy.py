"""Torch-backed policy artifacts: the model provider used by the orchestrator.

A policy is a small fully connected network whose weights are stored in the
lineage's numeric representation. Integer lineages store fixed-point values
(``real * NumericType.scale``) clamped to the type's range; ``float32``
lineages round-trip through single precision. Every tensor is kept in
``float64`` in memory and quantised after each mutation, so one code path
serves all twelve representations.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import torch

from planet_evolution.config import LayerConfig
from planet_evolution.errors import MalformedArtifactOrSummary
from planet_evolution.layout import ArtifactLayout
from planet_evolution.lineage import Lineage, Mode, NumericType
from planet_evolution.utils.atomic_io import atomic_write_json, read_json

logger = logging.getLogger(__name__)

ARTIFACT_FORMAT = "planet_evolution.policy/v1"

_ACTIVATIONS = {
    "linear": lambda x: x,
    "relu": torch.relu,
    "tanh": torch.tanh,
    "sigmoid": torch.sigmoid,
    "leaky_relu": lambda x: torch.nn.functional.leaky_relu(x, 0.01),
}


def quantize(tensor: torch.Tensor, numeric_type: NumericType) -> torch.Tensor:
    """Project ``tensor`` onto the values ``numeric_type`` can represent."""
    if numeric_type is NumericType.FLOAT64:
        return tensor
    if numeric_type is NumericType.FLOAT32:
        return tensor.to(torch.float32).to(torch.float64)
    lo, hi = numeric_type.bounds
    return torch.clamp(torch.round(tensor), min=lo, max=hi)


def _export(tensor: torch.Tensor, numeric_type: NumericType) -> list:
    if numeric_type.is_integer:
        return _nest([int(v) for v in tensor.flatten().tolist()], tensor.shape)
    if numeric_type is NumericType.FLOAT32:
        return tensor.to(torch.float32).tolist()
    return tensor.tolist()


def _nest(flat: list[int], shape: torch.Size) -> list:
    if len(shape) == 1:
        return list(flat)
    step = math.prod(shape[1:])
    return [_nest(flat[i * step : (i + 1) * step], shape[1:]) for i in range(shape[0])]


@dataclass
class PolicyArtifact:
    """In-memory policy network plus the metadata persisted alongside it."""

    numeric_type: NumericType
    mode: Mode
    layers: List[LayerConfig]
    weights: List[torch.Tensor]
    biases: List[torch.Tensor]
    replay: Optional[Dict[str, Any]] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def input_size(self) -> int:
        return self.layers[0].width * self.layers[0].height

    @property
    def output_size(self) -> int:
        return self.layers[-1].width * self.layers[-1].height

    def act(self, observation: Sequence[float]) -> list[float]:
        """Forward pass on one observation, padded or truncated to the input size."""
        values = list(observation)[: self.input_size]
        values += [0.0] * (self.input_size - len(values))
        x = torch.tensor(values, dtype=torch.float64)
        scale = self.numeric_type.scale
        with torch.no_grad():
            for layer, weight, bias in zip(self.layers[1:], self.weights, self.biases):
                activation = _ACTIVATIONS.get(layer.activation, _ACTIVATIONS["linear"])
                x = activation(weight @ x / scale + bias / scale)
        return [float(v) for v in x.tolist()]

    def to_payload(self) -> dict[str, Any]:
        return {
            "format": ARTIFACT_FORMAT,
            "numeric_type": self.numeric_type.value,
            "mode": self.mode.value,
            "layers": [layer.model_dump() for layer in self.layers],
            "replay": self.replay,
            "meta": self.meta,
            "weights": [_export(w, self.numeric_type) for w in self.weights],
            "biases": [_export(b, self.numeric_type) for b in self.biases],
        }

    @classmethod
    def from_payload(cls, payload: Any, source: Path | str = "<memory>") -> "PolicyArtifact":
        if not isinstance(payload, dict) or payload.get("format") != ARTIFACT_FORMAT:
            raise MalformedArtifactOrSummary(source, f"not a {ARTIFACT_FORMAT} document")
        try:
            numeric_type = NumericType(payload["numeric_type"])
            mode = Mode(payload["mode"])
            layers = [LayerConfig.model_validate(layer) for layer in payload["layers"]]
            weights = [torch.tensor(w, dtype=torch.float64) for w in payload["weights"]]
            biases = [torch.tensor(b, dtype=torch.float64) for b in payload["biases"]]
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedArtifactOrSummary(source, f"invalid policy payload: {exc}") from exc
        sizes = [layer.width * layer.height for layer in layers]
        if len(weights) != len(sizes) - 1 or len(biases) != len(sizes) - 1:
            raise MalformedArtifactOrSummary(source, "layer count does not match weight count")
        for i, (weight, bias) in enumerate(zip(weights, biases)):
            if tuple(weight.shape) != (sizes[i + 1], sizes[i]) or tuple(bias.shape) != (sizes[i + 1],):
                raise MalformedArtifactOrSummary(source, f"connection {i} has the wrong shape")
        return cls(
            numeric_type=numeric_type,
            mode=mode,
            layers=layers,
            weights=weights,
            biases=biases,
            replay=payload.get("replay"),
            meta=dict(payload.get("meta") or {}),
        )


def build_policy(
    numeric_type: NumericType,
    mode: Mode,
    layers: Sequence[LayerConfig],
    *,
    seed: int,
) -> PolicyArtifact:
    """Fresh policy with uniform fan-in scaled weights and zero biases."""
    generator = torch.Generator().manual_seed(seed)
    sizes = [layer.width * layer.height for layer in layers]
    weights: list[torch.Tensor] = []
    biases: list[torch.Tensor] = []
    for fan_in, fan_out in zip(sizes[:-1], sizes[1:]):
        limit = 1.0 / math.sqrt(fan_in)
        raw = (torch.rand((fan_out, fan_in), generator=generator, dtype=torch.float64) * 2.0 - 1.0) * limit
        if numeric_type.is_unsigned:
            raw = raw.abs()
        weights.append(quantize(raw * numeric_type.scale, numeric_type))
        biases.append(torch.zeros(fan_out, dtype=torch.float64))
    return PolicyArtifact(
        numeric_type=numeric_type,
        mode=mode,
        layers=list(layers),
        weights=weights,
        biases=biases,
        replay=mode.replay_settings(),
    )


class TorchPolicyProvider:
    """Loads, saves, clones and mutates :class:`PolicyArtifact` files."""

    def load(self, path: Path) -> PolicyArtifact:
        return PolicyArtifact.from_payload(read_json(path), path)

    def save(self, artifact: PolicyArtifact, path: Path) -> None:
        atomic_write_json(path, artifact.to_payload())

    def clone(self, artifact: PolicyArtifact) -> PolicyArtifact:
        return PolicyArtifact(
            numeric_type=artifact.numeric_type,
            mode=artifact.mode,
            layers=[layer.model_copy() for layer in artifact.layers],
            weights=[w.clone() for w in artifact.weights],
            biases=[b.clone() for b in artifact.biases],
            replay=None if artifact.replay is None else dict(artifact.replay),
            meta=dict(artifact.meta),
        )

    def perturb(self, artifact: PolicyArtifact, stddev: float, seed: int) -> PolicyArtifact:
        """Add seeded Gaussian noise (``stddev`` in real units) to every parameter, in place."""
        generator = torch.Generator().manual_seed(seed)
        sigma = stddev * artifact.numeric_type.scale
        for tensors in (artifact.weights, artifact.biases):
            for i, tensor in enumerate(tensors):
                noise = torch.randn(tensor.shape, generator=generator, dtype=torch.float64) * sigma
                tensors[i] = quantize(tensor + noise, artifact.numeric_type)
        return artifact


def seed_initial_models(
    layout: ArtifactLayout,
    lineages: Sequence[Lineage],
    layers: Sequence[LayerConfig],
    *,
    seed: int,
    provider: Optional[TorchPolicyProvider] = None,
) -> list[Path]:
    """Write ``models/0/{type}_{mode}.json`` for every lineage that lacks one."""
    provider = provider or TorchPolicyProvider()
    created: list[Path] = []
    for lineage in lineages:
        path = layout.base_model(lineage, 0)
        if path.exists():
            logger.info("Base model already present: %s", path)
            continue
        policy = build_policy(lineage.numeric_type, lineage.mode, layers, seed=seed)
        provider.save(policy, path)
        logger.info("Built %-8s | mode %s -> %s", lineage.numeric_type.value, lineage.mode.value, path)
        created.append(path)
    return created


__all__ = [
    "ARTIFACT_FORMAT",
    "PolicyArtifact",
    "TorchPolicyProvider",
    "build_policy",
    "quantize",
    "seed_initial_models",
]
