from __future__ import annotations

import json
from pathlib import Path

import pytest
import torch

from planet_evolution.config import LayerConfig
from planet_evolution.errors import MalformedArtifactOrSummary
from planet_evolution.layout import ArtifactLayout
from planet_evolution.lineage import Lineage, Mode, NumericType
from planet_evolution.models.policy import (
    PolicyArtifact,
    TorchPolicyProvider,
    build_policy,
    quantize,
    seed_initial_models,
)

LAYERS = [
    LayerConfig(width=6, activation="linear"),
    LayerConfig(width=5, activation="relu"),
    LayerConfig(width=3, activation="tanh"),
]


def test_saved_policy_reloads_to_identical_bytes(tmp_path: Path) -> None:
    provider = TorchPolicyProvider()
    policy = build_policy(NumericType.FLOAT32, Mode.REPLAY, LAYERS, seed=7)
    first = tmp_path / "a.json"
    second = tmp_path / "b.json"
    provider.save(policy, first)
    provider.save(provider.load(first), second)
    assert first.read_bytes() == second.read_bytes()
    assert provider.load(first).replay == Mode.REPLAY.replay_settings()


def test_perturb_is_deterministic_per_seed(tmp_path: Path) -> None:
    provider = TorchPolicyProvider()
    base = build_policy(NumericType.FLOAT64, Mode.STANDARD, LAYERS, seed=1)
    a = provider.perturb(provider.clone(base), 0.1, 3)
    b = provider.perturb(provider.clone(base), 0.1, 3)
    c = provider.perturb(provider.clone(base), 0.1, 4)
    assert all(torch.equal(x, y) for x, y in zip(a.weights, b.weights))
    assert not all(torch.equal(x, y) for x, y in zip(a.weights, c.weights))
    assert not all(torch.equal(x, y) for x, y in zip(a.weights, base.weights))


def test_clone_is_independent() -> None:
    provider = TorchPolicyProvider()
    base = build_policy(NumericType.FLOAT32, Mode.STANDARD, LAYERS, seed=1)
    before = [w.clone() for w in base.weights]
    provider.perturb(provider.clone(base), 0.5, 9)
    assert all(torch.equal(x, y) for x, y in zip(before, base.weights))


@pytest.mark.parametrize("numeric_type", [NumericType.INT8, NumericType.UINT8, NumericType.INT16])
def test_integer_lineages_stay_in_range(numeric_type: NumericType) -> None:
    provider = TorchPolicyProvider()
    policy = build_policy(numeric_type, Mode.STANDARD, LAYERS, seed=2)
    provider.perturb(policy, 5.0, 11)
    lo, hi = numeric_type.bounds
    for tensor in policy.weights + policy.biases:
        assert torch.all(tensor == torch.round(tensor))
        assert float(tensor.min()) >= lo
        assert float(tensor.max()) <= hi


def test_integer_weights_serialise_as_ints(tmp_path: Path) -> None:
    provider = TorchPolicyProvider()
    path = tmp_path / "int.json"
    provider.save(build_policy(NumericType.INT32, Mode.STANDARD, LAYERS, seed=3), path)
    payload = json.loads(path.read_text())
    values = [v for matrix in payload["weights"] for row in matrix for v in row]
    assert values and all(isinstance(v, int) for v in values)


def test_quantize_float32_rounds_through_single_precision() -> None:
    value = torch.tensor([0.1], dtype=torch.float64)
    assert float(quantize(value, NumericType.FLOAT32)[0]) == float(torch.tensor(0.1, dtype=torch.float32))
    assert quantize(value, NumericType.FLOAT64) is value


def test_act_pads_observation_and_respects_activation() -> None:
    policy = build_policy(NumericType.INT16, Mode.STANDARD, LAYERS, seed=5)
    output = policy.act([1.0, 2.0])
    assert len(output) == 3
    assert all(-1.0 <= value <= 1.0 for value in output)
    assert policy.act([1.0, 2.0, 0.0, 0.0, 0.0, 0.0, 99.0]) == policy.act([1.0, 2.0])


def test_from_payload_rejects_wrong_shapes() -> None:
    payload = build_policy(NumericType.FLOAT32, Mode.STANDARD, LAYERS, seed=1).to_payload()
    payload["weights"][0] = [[0.0]]
    with pytest.raises(MalformedArtifactOrSummary):
        PolicyArtifact.from_payload(payload)
    with pytest.raises(MalformedArtifactOrSummary):
        PolicyArtifact.from_payload({"format": "something-else"})


def test_seed_initial_models_only_fills_gaps(tmp_path: Path) -> None:
    layout = ArtifactLayout(tmp_path / "models")
    lineages = [Lineage(NumericType.FLOAT32, Mode.STANDARD), Lineage(NumericType.UINT8, Mode.REPLAY)]
    created = seed_initial_models(layout, lineages, LAYERS, seed=42)
    assert created == [layout.base_model(lineage, 0) for lineage in lineages]
    before = created[0].read_bytes()
    assert seed_initial_models(layout, lineages, LAYERS, seed=99) == []
    assert created[0].read_bytes() == before
