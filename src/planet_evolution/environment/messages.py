"""Wire schema for the agent runtime's delimited-JSON command protocol."""

from __future__ import annotations

import json
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from planet_evolution.errors import RuntimeCommandError


class AuthRequest(BaseModel):
    type: Literal["auth"] = "auth"
    password: str


class SpawnCubeRequest(BaseModel):
    type: Literal["spawn_cube"] = "spawn_cube"
    session: str
    name: str
    position: list[float]
    unit_type: str = "AutoUnit"
    clamp: list[float] = Field(default_factory=lambda: [-20.0, 20.0])


class UnitRequest(BaseModel):
    """Commands addressed to one unit: ``get_cube_info`` and ``despawn_cube``."""

    type: Literal["get_cube_info", "despawn_cube"]
    name: str


class ApplyForceRequest(BaseModel):
    type: Literal["apply_force"] = "apply_force"
    name: str
    force: list[float]


class SessionRequest(BaseModel):
    """Commands scoped to a lineage session or to the whole world."""

    type: Literal["unfreeze_all", "destroy_all_cubes", "list_cubes", "get_planets"]
    session: Optional[str] = None


class Reply(BaseModel):
    status: Literal["ok", "error"]
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)


class CubeInfo(BaseModel):
    name: str = ""
    position: list[float]
    velocity: list[float] = Field(default_factory=lambda: [0.0, 0.0, 0.0])


class PlanetRecord(BaseModel):
    name: str
    position: list[float]


def encode(message: BaseModel, delimiter: str) -> bytes:
    return (message.model_dump_json(exclude_none=True) + delimiter).encode("utf-8")


def decode_reply(frame: bytes, command: str) -> Reply:
    """Parse one reply frame; ``status == "error"`` raises."""
    try:
        reply = Reply.model_validate(json.loads(frame.decode("utf-8")))
    except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
        raise RuntimeCommandError(f"{command}: malformed reply: {exc}") from exc
    if reply.status != "ok":
        raise RuntimeCommandError(f"{command}: {reply.message or 'rejected'}")
    return reply


__all__ = [
    "ApplyForceRequest",
    "AuthRequest",
    "CubeInfo",
    "PlanetRecord",
    "Reply",
    "SessionRequest",
    "SpawnCubeRequest",
    "UnitRequest",
    "decode_reply",
    "encode",
]
