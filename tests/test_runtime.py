from __future__ import annotations

import asyncio
import json

import pytest

from planet_evolution.config import RuntimeConfig
from planet_evolution.environment.runtime import TcpAgentRuntime
from planet_evolution.errors import RemoteUnavailable, RuntimeCommandError
from planet_evolution.interfaces import UnitSpec

DELIMITER = "<???DONE???---"


class _World:
    """Minimal command server speaking the runtime's delimited-JSON protocol."""

    def __init__(self, password: str = "secret", drop_on_info: int | None = None) -> None:
        self.password = password
        self.cubes: dict[str, dict] = {}
        self.forces: list[tuple[str, list[float]]] = []
        self.commands: list[str] = []
        self.drop_on_info = drop_on_info

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        authed = False
        marker = DELIMITER.encode()
        try:
            while True:
                try:
                    frame = await reader.readuntil(marker)
                except (asyncio.IncompleteReadError, ConnectionError):
                    break
                message = json.loads(frame[: -len(marker)])
                self.commands.append(message["type"])
                if message["type"] == "get_cube_info" and self.commands.count("get_cube_info") == self.drop_on_info:
                    break
                if message["type"] == "auth":
                    authed = message.get("password") == self.password
                    reply = {"status": "ok"} if authed else {"status": "error", "message": "bad password"}
                elif not authed:
                    reply = {"status": "error", "message": "not authenticated"}
                else:
                    reply = self.command(message)
                writer.write((json.dumps(reply) + DELIMITER).encode())
                await writer.drain()
        finally:
            writer.close()

    def command(self, message: dict) -> dict:
        kind = message["type"]
        if kind == "spawn_cube":
            if message["name"] in self.cubes:
                return {"status": "error", "message": "duplicate"}
            self.cubes[message["name"]] = {"position": list(message["position"]), "session": message["session"]}
            return {"status": "ok"}
        if kind == "get_cube_info":
            cube = self.cubes.get(message["name"])
            if cube is None:
                return {"status": "error", "message": "no such cube"}
            return {"status": "ok", "data": {"name": message["name"], "position": cube["position"]}}
        if kind == "apply_force":
            self.forces.append((message["name"], message["force"]))
            cube = self.cubes[message["name"]]
            cube["position"] = [p + f * 0.1 for p, f in zip(cube["position"], message["force"])]
            return {"status": "ok"}
        if kind == "despawn_cube":
            self.cubes.pop(message["name"], None)
            return {"status": "ok"}
        if kind == "destroy_all_cubes":
            for name in [n for n, c in self.cubes.items() if c["session"] == message.get("session")]:
                del self.cubes[name]
            return {"status": "ok"}
        if kind == "list_cubes":
            return {"status": "ok", "data": {"cubes": sorted(self.cubes)}}
        if kind == "get_planets":
            return {"status": "ok", "data": {"planets": [{"name": "terra", "position": [0, 0, 0]}]}}
        return {"status": "ok"}


class _Policy:
    def act(self, observation: list[float]) -> list[float]:
        return [100.0, -100.0, 0.5]


async def _with_world(scenario, password: str = "secret", world: _World | None = None):
    world = world or _World()
    server = await asyncio.start_server(world.handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    runtime = TcpAgentRuntime(RuntimeConfig(host="127.0.0.1", port=port, auth_pass=password, delimiter=DELIMITER))
    try:
        return world, await scenario(runtime)
    finally:
        server.close()
        await server.wait_closed()


def test_full_unit_lifecycle_over_tcp() -> None:
    async def scenario(runtime: TcpAgentRuntime):
        session = runtime.open_session("float32_Standard")
        unit = UnitSpec("unit-1", _Policy(), (1.0, 2.0, 3.0), (-20.0, 20.0))
        await runtime.spawn(session, unit)
        await runtime.unfreeze_all(session)
        await runtime.pulse(session, tick_rate=50.0, duration=0.1)
        position = await runtime.refresh_position(session, "unit-1")
        cubes = await runtime.list_cubes()
        await runtime.destroy_all(session)
        return position, cubes, session

    world, (position, cubes, session) = asyncio.run(_with_world(scenario))
    assert cubes == ["unit-1"]
    assert world.forces
    assert all(force == [20.0, -20.0, 0.5] for _, force in world.forces)
    assert position[0] > 1.0 and position[1] < 2.0
    assert world.cubes == {}
    assert session.units == {}
    assert world.commands.count("auth") >= 5


def test_error_reply_raises_command_error() -> None:
    async def scenario(runtime: TcpAgentRuntime):
        session = runtime.open_session("k")
        with pytest.raises(RuntimeCommandError):
            await runtime.refresh_position(session, "ghost")
        await runtime.spawn(session, UnitSpec("dup", None, (0.0, 0.0, 0.0), (-1.0, 1.0)))
        with pytest.raises(RuntimeCommandError):
            await runtime.spawn(session, UnitSpec("dup", None, (0.0, 0.0, 0.0), (-1.0, 1.0)))
        await runtime.despawn(session, "dup")
        return session

    world, session = asyncio.run(_with_world(scenario))
    assert "dup" not in world.cubes
    assert session.units == {}


def test_wrong_password_is_rejected() -> None:
    async def scenario(runtime: TcpAgentRuntime):
        with pytest.raises(RuntimeCommandError):
            await runtime.ping()

    asyncio.run(_with_world(scenario, password="wrong"))


def test_planets_come_back_typed() -> None:
    async def scenario(runtime: TcpAgentRuntime):
        return await runtime.get_planets()

    _, planets = asyncio.run(_with_world(scenario))
    assert [(p.name, p.position) for p in planets] == [("terra", [0.0, 0.0, 0.0])]


def test_closed_port_is_unavailable() -> None:
    async def scenario() -> None:
        server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()
        runtime = TcpAgentRuntime(RuntimeConfig(host="127.0.0.1", port=port, connect_timeout=1.0))
        with pytest.raises(RemoteUnavailable):
            await runtime.ping()

    asyncio.run(scenario())


def test_pulse_reconnects_once_after_dropped_connection(caplog: pytest.LogCaptureFixture) -> None:
    async def scenario(runtime: TcpAgentRuntime):
        session = runtime.open_session("k")
        for name in ("u1", "u2"):
            await runtime.spawn(session, UnitSpec(name, _Policy(), (0.0, 0.0, 0.0), (-20.0, 20.0)))
        await runtime.pulse(session, tick_rate=50.0, duration=0.2)

    world, _ = asyncio.run(_with_world(scenario, world=_World(drop_on_info=3)))
    # two spawns, the pulse connection and one reconnect
    assert world.commands.count("auth") == 4
    skipped = [r for r in caplog.records if r.getMessage().startswith("Skipping tick")]
    assert len(skipped) == 1
    assert world.commands.count("get_cube_info") > 4
