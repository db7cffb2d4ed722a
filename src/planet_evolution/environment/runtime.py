"""Asyncio TCP client for the simulated world's command server.

Every message is a JSON object followed by the configured delimiter. A
connection authenticates with its first message; one-shot commands open a
fresh connection, while a pulse keeps one connection for its whole window.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from planet_evolution.config import RuntimeConfig, Vec3
from planet_evolution.environment.messages import (
    ApplyForceRequest,
    AuthRequest,
    CubeInfo,
    PlanetRecord,
    Reply,
    SessionRequest,
    SpawnCubeRequest,
    UnitRequest,
    decode_reply,
    encode,
)
from planet_evolution.errors import RemoteUnavailable, RuntimeCommandError
from planet_evolution.interfaces import RuntimeSession, UnitSpec

logger = logging.getLogger(__name__)

_FRAME_LIMIT = 1 << 22


class _Connection:
    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        delimiter: str,
        timeout: float,
        address: str,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.delimiter = delimiter
        self._marker = delimiter.encode("utf-8")
        self.timeout = timeout
        self.address = address
        self.broken = False

    async def request(self, message: BaseModel) -> Reply:
        command = getattr(message, "type", type(message).__name__)
        try:
            self.writer.write(encode(message, self.delimiter))
            await self.writer.drain()
            frame = await asyncio.wait_for(self.reader.readuntil(self._marker), self.timeout)
        except (asyncio.IncompleteReadError, asyncio.LimitOverrunError) as exc:
            # the stream can no longer be framed
            self.broken = True
            raise RuntimeCommandError(f"{command}: connection to {self.address} closed mid-reply") from exc
        except (OSError, asyncio.TimeoutError) as exc:
            raise RemoteUnavailable(f"{command}: {self.address}: {exc!r}") from exc
        return decode_reply(frame[: -len(self._marker)], command)

    async def close(self) -> None:
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError:
            logger.debug("Connection to %s closed uncleanly", self.address)


class TcpAgentRuntime:
    """Agent runtime addressed by ``host:port`` with a shared auth token."""

    def __init__(self, config: RuntimeConfig, *, host: Optional[str] = None, port: Optional[int] = None) -> None:
        self.config = config
        self.host = host or config.host
        self.port = port or config.port

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    async def _open(self, timeout: Optional[float] = None) -> _Connection:
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port, limit=_FRAME_LIMIT),
                timeout or self.config.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as exc:
            raise RemoteUnavailable(f"cannot connect to {self.address}: {exc!r}") from exc
        conn = _Connection(reader, writer, self.config.delimiter, self.config.request_timeout, self.address)
        try:
            await conn.request(AuthRequest(password=self.config.auth_pass))
        except Exception:
            await conn.close()
            raise
        return conn

    async def _call(self, message: BaseModel) -> Reply:
        conn = await self._open()
        try:
            return await conn.request(message)
        finally:
            await conn.close()

    async def ping(self, timeout: Optional[float] = None) -> None:
        """Connect and authenticate, nothing else."""
        conn = await self._open(timeout)
        await conn.close()

    def open_session(self, key: str) -> RuntimeSession:
        return RuntimeSession(key=key)

    async def spawn(self, session: RuntimeSession, unit: UnitSpec) -> None:
        request = SpawnCubeRequest(
            session=session.key,
            name=unit.name,
            position=list(unit.position),
            unit_type=unit.unit_type,
            clamp=list(unit.clamp),
        )
        await self._call(request)
        session.units[unit.name] = unit

    async def unfreeze_all(self, session: RuntimeSession) -> None:
        await self._call(SessionRequest(type="unfreeze_all", session=session.key))

    async def pulse(self, session: RuntimeSession, tick_rate: float, duration: float) -> None:
        """Drive every unit of the session at ``tick_rate`` until ``duration`` elapses.

        A dropped connection ends the current tick and is reopened once; if
        the reconnect fails, :class:`RemoteUnavailable` ends the pulse.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration
        interval = 1.0 / tick_rate
        conn = await self._open()
        ticks = 0
        try:
            while loop.time() < deadline:
                for unit in list(session.units.values()):
                    await self._drive(conn, unit)
                    if conn.broken:
                        break
                if conn.broken:
                    logger.warning("Pulse connection to %s dropped, reconnecting", self.address)
                    await conn.close()
                    conn = await self._open()
                ticks += 1
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                await asyncio.sleep(min(interval, remaining))
        finally:
            await conn.close()
        logger.debug("Pulsed %s for %.1fs (%d ticks)", session.key, duration, ticks)

    async def _drive(self, conn: _Connection, unit: UnitSpec) -> None:
        try:
            info = _cube_info(await conn.request(UnitRequest(type="get_cube_info", name=unit.name)))
            force = _control(unit, list(info.position) + list(info.velocity))
            await conn.request(ApplyForceRequest(name=unit.name, force=force))
        except RuntimeCommandError as exc:
            logger.warning("Skipping tick for %s: %s", unit.name, exc)

    async def refresh_position(self, session: RuntimeSession, unit_name: str) -> Vec3:
        info = _cube_info(await self._call(UnitRequest(type="get_cube_info", name=unit_name)))
        x, y, z = info.position[:3]
        return (float(x), float(y), float(z))

    async def despawn(self, session: RuntimeSession, unit_name: str) -> None:
        await self._call(UnitRequest(type="despawn_cube", name=unit_name))
        session.units.pop(unit_name, None)

    async def destroy_all(self, session: RuntimeSession) -> None:
        await self._call(SessionRequest(type="destroy_all_cubes", session=session.key))
        session.units.clear()

    async def get_planets(self) -> list[PlanetRecord]:
        reply = await self._call(SessionRequest(type="get_planets"))
        try:
            return [PlanetRecord.model_validate(item) for item in reply.data.get("planets", [])]
        except ValidationError as exc:
            raise RuntimeCommandError(f"get_planets: {exc}") from exc

    async def list_cubes(self) -> list[str]:
        reply = await self._call(SessionRequest(type="list_cubes"))
        return [str(name) for name in reply.data.get("cubes", [])]


def _cube_info(reply: Reply) -> CubeInfo:
    try:
        info = CubeInfo.model_validate(reply.data)
    except ValidationError as exc:
        raise RuntimeCommandError(f"get_cube_info: {exc}") from exc
    if len(info.position) < 3:
        raise RuntimeCommandError(f"get_cube_info: position {info.position} is not 3-dimensional")
    return info


def _control(unit: UnitSpec, observation: list[float]) -> list[float]:
    lo, hi = unit.clamp
    act: Any = getattr(unit.artifact, "act", None)
    output = list(act(observation)) if callable(act) else []
    output = (output + [0.0, 0.0, 0.0])[:3]
    return [min(max(float(value), lo), hi) for value in output]


__all__ = ["TcpAgentRuntime"]
