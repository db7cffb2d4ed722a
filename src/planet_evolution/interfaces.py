"""Contracts of the external collaborators the orchestrator drives.

The orchestrator never looks inside a model artifact; it only moves it
between the model provider, the artifact tree and the agent runtime.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, Sequence

from planet_evolution.config import Vec3


@dataclass
class UnitSpec:
    """One unit to spawn: a named instance of a variant at a world position."""

    name: str
    artifact: Any
    position: Vec3
    clamp: tuple[float, float]
    unit_type: str = "AutoUnit"


@dataclass
class RuntimeSession:
    """Units a lineage currently has alive in the world."""

    key: str
    units: dict[str, UnitSpec] = field(default_factory=dict)


@dataclass
class PlanetInfo:
    name: str
    position: Vec3
    host: str
    port: int


@dataclass
class WorldSnapshot:
    planets: list[PlanetInfo] = field(default_factory=list)
    units_by_host: dict[str, list[str]] = field(default_factory=dict)


class ModelProvider(Protocol):
    def load(self, path: Path) -> Any: ...

    def save(self, artifact: Any, path: Path) -> None: ...

    def clone(self, artifact: Any) -> Any: ...

    def perturb(self, artifact: Any, stddev: float, seed: int) -> Any: ...


class AgentRuntime(Protocol):
    def open_session(self, key: str) -> RuntimeSession: ...

    async def spawn(self, session: RuntimeSession, unit: UnitSpec) -> None: ...

    async def unfreeze_all(self, session: RuntimeSession) -> None: ...

    async def pulse(self, session: RuntimeSession, tick_rate: float, duration: float) -> None: ...

    async def refresh_position(self, session: RuntimeSession, unit_name: str) -> Vec3: ...

    async def despawn(self, session: RuntimeSession, unit_name: str) -> None: ...

    async def destroy_all(self, session: RuntimeSession) -> None: ...


class Topology(Protocol):
    async def scan(self, hosts: Sequence[str]) -> WorldSnapshot: ...

    def generate_unit_id(self, artifact_path: str, namespace: str, generation: int, sequence: int) -> str: ...

    def sphere_points(self, n: int, radius: float, center: Vec3) -> list[Vec3]: ...


__all__ = [
    "AgentRuntime",
    "ModelProvider",
    "PlanetInfo",
    "RuntimeSession",
    "Topology",
    "UnitSpec",
    "WorldSnapshot",
]
