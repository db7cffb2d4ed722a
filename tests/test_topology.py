from __future__ import annotations

import asyncio
import math

import pytest

from planet_evolution.config import RuntimeConfig, TopologyConfig
from planet_evolution.environment.messages import PlanetRecord
from planet_evolution.environment.topology import WorldStatus, WorldTopology, probe_with_retries, sphere_points
from planet_evolution.errors import RemoteUnavailable
from planet_evolution.utils.ids import generate_unit_id


def test_sphere_points_sit_on_the_sphere() -> None:
    center = (800.0, 0.0, -800.0)
    points = sphere_points(7, 120.0, center)
    assert len(points) == 7
    assert len(set(points)) == 7
    for point in points:
        assert math.dist(point, center) == pytest.approx(120.0)


def test_single_point_lies_on_the_equator() -> None:
    [point] = sphere_points(1, 10.0, (0.0, 5.0, 0.0))
    assert point[1] == pytest.approx(5.0)
    assert sphere_points(0, 10.0, (0.0, 0.0, 0.0)) == []


def test_unit_ids_are_stable_and_distinct() -> None:
    a = generate_unit_id("0/mutated_float32_Standard/variant_1.json", "openfluke.com", 0, 0)
    assert a == generate_unit_id("0/mutated_float32_Standard/variant_1.json", "openfluke.com", 0, 0)
    assert a != generate_unit_id("0/mutated_float32_Standard/variant_1.json", "openfluke.com", 0, 1)
    assert a != generate_unit_id("0/mutated_float32_Standard/variant_1.json", "openfluke.com", 1, 0)


class _FakeClient:
    def __init__(self, config: RuntimeConfig, *, host: str, port: int) -> None:
        self.host = host
        self.port = port
        self.address = f"{host}:{port}"
        self.pings = 0

    async def get_planets(self) -> list[PlanetRecord]:
        if self.port == 14003:
            raise RemoteUnavailable("pod down")
        return [PlanetRecord(name=f"p{self.port}", position=[1.0, 2.0, 3.0])]

    async def list_cubes(self) -> list[str]:
        return ["u1", "u2"] if self.host == "a" else []


def test_scan_walks_every_pod_and_skips_unreachable() -> None:
    topology = WorldTopology(
        TopologyConfig(start_port=14000, port_step=3, num_pods=3),
        RuntimeConfig(),
        runtime_factory=_FakeClient,
    )
    assert topology.pod_ports() == [14000, 14003, 14006]
    snapshot = asyncio.run(topology.scan(["a", "b"]))
    assert sorted(snapshot.units_by_host) == ["a:14000", "a:14006", "b:14000", "b:14006"]
    assert len(snapshot.planets) == 4
    assert snapshot.planets[0].position == (1.0, 2.0, 3.0)
    status = WorldStatus.from_snapshot(snapshot)
    assert status.total_units == 4
    assert status.units_per_host["a:14000"] == 2


class _FlakyClient:
    address = "flaky:14000"

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.pings = 0

    async def ping(self, timeout=None) -> None:
        self.pings += 1
        if self.pings <= self.failures:
            raise RemoteUnavailable("connection refused")


def test_probe_retries_until_reachable() -> None:
    client = _FlakyClient(failures=2)
    assert asyncio.run(probe_with_retries(client, attempts=5, delay=0.0, timeout=0.1)) == 3


def test_probe_gives_up_after_attempt_cap() -> None:
    client = _FlakyClient(failures=10)
    with pytest.raises(RemoteUnavailable):
        asyncio.run(probe_with_retries(client, attempts=3, delay=0.0, timeout=0.1))
    assert client.pings == 3
