"""Configuration models for planet evolution experiments."""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

Vec3 = tuple[float, float, float]

_VEC3_RE = re.compile(
    r"^\(\s*([-+]?[\d.]+(?:[eE][-+]?\d+)?)\s*,\s*([-+]?[\d.]+(?:[eE][-+]?\d+)?)\s*,"
    r"\s*([-+]?[\d.]+(?:[eE][-+]?\d+)?)\s*\)$"
)


def parse_vec3(text: str) -> Vec3:
    """Parse the ``"(x,y,z)"`` planet notation used in experiment files."""
    match = _VEC3_RE.match(text.strip())
    if match is None:
        raise ValueError(f"invalid vector {text!r}; expected '(x,y,z)'")
    x, y, z = (float(group) for group in match.groups())
    return (x, y, z)


class LayerConfig(BaseModel):
    width: int = Field(..., ge=1)
    height: int = Field(1, ge=1)
    activation: str = Field("linear", description="linear | relu | tanh | sigmoid | leaky_relu")


def _default_layers() -> list[LayerConfig]:
    return [
        LayerConfig(width=6, activation="linear"),
        LayerConfig(width=128, activation="relu"),
        LayerConfig(width=128, activation="relu"),
        LayerConfig(width=3, activation="tanh"),
    ]


class NetworkConfig(BaseModel):
    layers: List[LayerConfig] = Field(default_factory=_default_layers)

    @field_validator("layers")
    @classmethod
    def _at_least_two(cls, layers: list[LayerConfig]) -> list[LayerConfig]:
        if len(layers) < 2:
            raise ValueError("a policy network needs an input and an output layer")
        return layers


class RuntimeConfig(BaseModel):
    """Agent runtime endpoint (the simulated world's TCP command server)."""

    host: str = Field("localhost", description="Overridden by GAME_HOST when set.")
    port: int = Field(14000, ge=1, le=65535, description="Overridden by GAME_PORT when set.")
    auth_pass: str = "my_secure_password"
    delimiter: str = "<???DONE???---"
    connect_timeout: float = Field(5.0, gt=0.0)
    request_timeout: float = Field(10.0, gt=0.0)
    probe_attempts: int = Field(10, ge=1)
    probe_delay: float = Field(2.0, ge=0.0)
    probe_timeout: float = Field(2.0, gt=0.0)


class WorldConfig(BaseModel):
    planet_spacing: float = Field(800.0, gt=0.0)
    spawn_radius: float = Field(120.0, ge=0.0)
    goal_offset: Vec3 = (0.0, 100.0, 0.0)
    clamp: float = Field(20.0, gt=0.0, description="Symmetric bound on each unit's control output.")
    unit_type: str = "AutoUnit"
    unit_namespace: str = "openfluke.com"


class EvaluationWindowConfig(BaseModel):
    duration_seconds: float = Field(10.0, gt=0.0)
    tick_rate: float = Field(10.0, gt=0.0, description="Pulses per second.")


class TopologyConfig(BaseModel):
    hosts: List[str] = Field(default_factory=list, description="Defaults to the runtime host.")
    start_port: int = Field(14000, ge=1, le=65535)
    port_step: int = Field(3, ge=1)
    num_pods: int = Field(1, ge=1)


class StatusConfig(BaseModel):
    buffer_limit: int = Field(1024, ge=1, description="Status events kept in memory.")
    log_file: Optional[str] = Field("status.jsonl", description="JSONL file under models_root; None disables.")


class LedgerConfig(BaseModel):
    filename: str = ".ledger.sqlite"
    lease_seconds: float = Field(600.0, gt=0.0)


class ExperimentConfig(BaseModel):
    """Top-level experiment file, compatible with the original JSON layout."""

    name: str = "experiment"
    description: str = ""
    numerical_types: List[str] = Field(default_factory=lambda: ["float32"])
    modes: List[str] = Field(default_factory=lambda: ["Standard", "Replay", "DynamicReplay"])
    planets: List[str] = Field(default_factory=lambda: ["(0,0,0)"])
    episodes: int = Field(1, ge=0, description="Number of generations to run.")
    spectrum_steps: int = Field(8, ge=1, description="Variants per lineage per generation.")
    spectrum_max_stddev: float = Field(0.1, ge=0.0)
    evaluation_spawns_per_planet: int = Field(3, ge=1)
    seed: int = 42
    models_root: Path = Field(Path("models"))
    network: NetworkConfig = Field(
        default_factory=NetworkConfig,  # type: ignore[arg-type]
        validation_alias=AliasChoices("network", "network_config"),
    )
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)  # type: ignore[arg-type]
    world: WorldConfig = Field(default_factory=WorldConfig)  # type: ignore[arg-type]
    evaluation: EvaluationWindowConfig = Field(default_factory=EvaluationWindowConfig)  # type: ignore[arg-type]
    topology: TopologyConfig = Field(default_factory=TopologyConfig)  # type: ignore[arg-type]
    status: StatusConfig = Field(default_factory=StatusConfig)  # type: ignore[arg-type]
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)  # type: ignore[arg-type]

    @field_validator("planets")
    @classmethod
    def _planets_parse(cls, planets: list[str]) -> list[str]:
        for planet in planets:
            parse_vec3(planet)
        return planets

    def planet_vectors(self) -> list[Vec3]:
        return [parse_vec3(planet) for planet in self.planets]

    @property
    def units_per_variant(self) -> int:
        return self.evaluation_spawns_per_planet * len(self.planets)


def _apply_env_overrides(config: ExperimentConfig) -> ExperimentConfig:
    host = os.getenv("GAME_HOST", "").strip()
    if host:
        config.runtime.host = host
    port = os.getenv("GAME_PORT", "").strip()
    if port:
        config.runtime.port = int(port)
    return config


def load_experiment_config(path: Path | str, *, env_overrides: bool = True) -> ExperimentConfig:
    """Load an experiment from JSON (original format) or YAML (via OmegaConf)."""
    source = Path(path)
    if source.suffix.lower() in {".yaml", ".yml"}:
        from omegaconf import OmegaConf

        data = OmegaConf.to_container(OmegaConf.load(source), resolve=True)
    else:
        data = json.loads(source.read_text(encoding="utf-8"))
    config = ExperimentConfig.model_validate(data)
    return _apply_env_overrides(config) if env_overrides else config


__all__ = [
    "EvaluationWindowConfig",
    "ExperimentConfig",
    "LayerConfig",
    "LedgerConfig",
    "NetworkConfig",
    "RuntimeConfig",
    "StatusConfig",
    "TopologyConfig",
    "Vec3",
    "WorldConfig",
    "load_experiment_config",
    "parse_vec3",
]
