"""Identifier helpers."""

from __future__ import annotations

import os
import secrets
import socket
import uuid


def generate_unit_id(artifact_path: str, namespace: str, generation: int, sequence: int) -> str:
    """Deterministic, globally unique unit name for one spawn slot of a variant."""
    space = uuid.uuid5(uuid.NAMESPACE_DNS, namespace)
    return str(uuid.uuid5(space, f"{artifact_path}|{generation}|{sequence}"))


def lease_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{secrets.token_hex(4)}"


__all__ = ["generate_unit_id", "lease_owner"]
