"""World topology: pod discovery, spawn geometry and reachability probing."""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from pydantic import BaseModel, Field

from planet_evolution.config import RuntimeConfig, TopologyConfig, Vec3
from planet_evolution.environment.runtime import TcpAgentRuntime
from planet_evolution.errors import PlanetEvolutionError, RemoteUnavailable
from planet_evolution.interfaces import PlanetInfo, WorldSnapshot
from planet_evolution.utils.ids import generate_unit_id

logger = logging.getLogger(__name__)

_GOLDEN_ANGLE = math.pi * (3.0 - math.sqrt(5.0))

RuntimeFactory = Callable[..., TcpAgentRuntime]


def sphere_points(n: int, radius: float, center: Vec3) -> list[Vec3]:
    """``n`` near-uniform points on a sphere around ``center`` (Fibonacci lattice)."""
    if n <= 0:
        return []
    cx, cy, cz = center
    points: list[Vec3] = []
    for i in range(n):
        y = 1.0 - (2.0 * i + 1.0) / n
        ring = math.sqrt(max(0.0, 1.0 - y * y))
        theta = _GOLDEN_ANGLE * i
        points.append(
            (
                cx + math.cos(theta) * ring * radius,
                cy + y * radius,
                cz + math.sin(theta) * ring * radius,
            )
        )
    return points


class WorldStatus(BaseModel):
    """Point-in-time summary of a world scan."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    planets: int = 0
    units_per_host: dict[str, int] = Field(default_factory=dict)
    total_units: int = 0

    @classmethod
    def from_snapshot(cls, snapshot: WorldSnapshot) -> "WorldStatus":
        counts = {host: len(units) for host, units in snapshot.units_by_host.items()}
        return cls(planets=len(snapshot.planets), units_per_host=counts, total_units=sum(counts.values()))


class WorldTopology:
    """Scans every configured pod (``start_port + pod * port_step``) on each host."""

    def __init__(
        self,
        topology: TopologyConfig,
        runtime: RuntimeConfig,
        *,
        runtime_factory: Optional[RuntimeFactory] = None,
    ) -> None:
        self.topology = topology
        self.runtime = runtime
        self.runtime_factory = runtime_factory or TcpAgentRuntime

    def pod_ports(self) -> list[int]:
        return [self.topology.start_port + pod * self.topology.port_step for pod in range(self.topology.num_pods)]

    async def scan(self, hosts: Sequence[str]) -> WorldSnapshot:
        snapshot = WorldSnapshot()
        for host in hosts or [self.runtime.host]:
            for port in self.pod_ports():
                client = self.runtime_factory(self.runtime, host=host, port=port)
                address = f"{host}:{port}"
                try:
                    planets = await client.get_planets()
                    cubes = await client.list_cubes()
                except PlanetEvolutionError as exc:
                    logger.warning("Scan of %s failed: %s", address, exc)
                    continue
                for record in planets:
                    x, y, z = (list(record.position) + [0.0, 0.0, 0.0])[:3]
                    snapshot.planets.append(PlanetInfo(record.name, (x, y, z), host, port))
                snapshot.units_by_host[address] = cubes
        return snapshot

    def generate_unit_id(self, artifact_path: str, namespace: str, generation: int, sequence: int) -> str:
        return generate_unit_id(artifact_path, namespace, generation, sequence)

    def sphere_points(self, n: int, radius: float, center: Vec3) -> list[Vec3]:
        return sphere_points(n, radius, center)


async def probe_with_retries(
    client: TcpAgentRuntime,
    *,
    attempts: int,
    delay: float,
    timeout: float,
) -> int:
    """Ping ``client`` until it answers. Returns the attempt that succeeded."""
    last: Optional[PlanetEvolutionError] = None
    for attempt in range(1, attempts + 1):
        try:
            await client.ping(timeout)
            logger.info("Runtime %s reachable (attempt %d/%d)", client.address, attempt, attempts)
            return attempt
        except PlanetEvolutionError as exc:
            last = exc
            logger.warning("Runtime %s not reachable (attempt %d/%d): %s", client.address, attempt, attempts, exc)
        if attempt < attempts:
            await asyncio.sleep(delay)
    raise RemoteUnavailable(f"{client.address} unreachable after {attempts} attempts: {last}")


__all__ = ["WorldStatus", "WorldTopology", "probe_with_retries", "sphere_points"]
