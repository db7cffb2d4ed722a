import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import pytest

from planet_evolution.config import ExperimentConfig, LayerConfig, NetworkConfig
from planet_evolution.errors import RemoteUnavailable
from planet_evolution.interfaces import RuntimeSession, UnitSpec


class SimulatedCrash(Exception):
    """Stands in for the process being killed mid-dispatch."""


class FakeRuntime:
    """In-memory agent runtime: every unit rises ``lift`` units during a pulse."""

    Crash = SimulatedCrash

    def __init__(self, lift: float = 10.0, policy_driven: bool = False) -> None:
        self.lift = lift
        self.policy_driven = policy_driven
        self.positions: dict[str, tuple[float, float, float]] = {}
        self.spawned: list[str] = []
        self.fail_spawn: set[str] = set()
        self.fail_refresh: set[str] = set()
        self.calls: list[str] = []
        self.pulses = 0
        self.crash_on_pulse: int | None = None
        self.destroyed: list[str] = []

    def open_session(self, key: str) -> RuntimeSession:
        return RuntimeSession(key=key)

    async def spawn(self, session: RuntimeSession, unit: UnitSpec) -> None:
        self.calls.append("spawn")
        if unit.name in self.fail_spawn:
            raise RemoteUnavailable(f"refused {unit.name}")
        self.spawned.append(unit.name)
        self.positions[unit.name] = unit.position
        session.units[unit.name] = unit

    async def unfreeze_all(self, session: RuntimeSession) -> None:
        self.calls.append("unfreeze_all")

    async def pulse(self, session: RuntimeSession, tick_rate: float, duration: float) -> None:
        self.calls.append("pulse")
        self.pulses += 1
        if self.crash_on_pulse is not None and self.pulses >= self.crash_on_pulse:
            raise SimulatedCrash(f"killed during pulse {self.pulses}")
        for name, unit in session.units.items():
            x, y, z = self.positions[name]
            lift = self.lift
            if self.policy_driven:
                lift += 10.0 * unit.artifact.act([x, y, z, 0.0, 0.0, 0.0])[1]
            self.positions[name] = (x, y + lift, z)

    async def refresh_position(self, session: RuntimeSession, unit_name: str) -> tuple[float, float, float]:
        self.calls.append("refresh_position")
        if unit_name in self.fail_refresh:
            raise RemoteUnavailable(f"lost {unit_name}")
        return self.positions[unit_name]

    async def despawn(self, session: RuntimeSession, unit_name: str) -> None:
        self.calls.append("despawn")
        session.units.pop(unit_name, None)

    async def destroy_all(self, session: RuntimeSession) -> None:
        self.calls.append("destroy_all")
        self.destroyed.append(session.key)
        session.units.clear()


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def small_config(tmp_path: Path) -> ExperimentConfig:
    return ExperimentConfig(
        name="test",
        numerical_types=["float32"],
        modes=["Standard"],
        planets=["(0,0,0)", "(1,0,0)"],
        episodes=2,
        spectrum_steps=4,
        spectrum_max_stddev=0.1,
        evaluation_spawns_per_planet=3,
        models_root=tmp_path / "models",
        network=NetworkConfig(
            layers=[
                LayerConfig(width=6, activation="linear"),
                LayerConfig(width=4, activation="relu"),
                LayerConfig(width=3, activation="tanh"),
            ]
        ),
    )


@pytest.fixture
def runtime_factory() -> type[FakeRuntime]:
    return FakeRuntime
