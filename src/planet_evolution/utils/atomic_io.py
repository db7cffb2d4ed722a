"""Atomic artifact read/write helpers.

Every artifact in the models tree is written to a sibling temp file and
renamed into place, so readers never observe a truncated document. JSON is
serialised deterministically (sorted keys, fixed indent) so two equal payloads
always produce identical bytes.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from planet_evolution.errors import MalformedArtifactOrSummary, WriteFailure


def dumps_json(payload: Any) -> bytes:
    """Deterministic JSON encoding used for every persisted document."""
    return (json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False) + "\n").encode("utf-8")


def atomic_write_bytes(path: Path | str, data: bytes) -> None:
    """Write ``data`` to ``path`` via a temp file and ``os.replace``."""
    target = Path(path)
    tmp_path = target.with_name(f".{target.name}.{os.getpid()}.tmp")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with tmp_path.open("wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, target)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise WriteFailure(target, str(exc)) from exc


def atomic_write_json(path: Path | str, payload: Any) -> None:
    # unserialisable payloads are programming errors and propagate as TypeError
    atomic_write_bytes(path, dumps_json(payload))


def write_json_once(path: Path | str, payload: Any) -> bool:
    """Write ``payload`` unless ``path`` already exists. Returns True on write."""
    target = Path(path)
    if target.exists():
        return False
    atomic_write_json(target, payload)
    return True


def read_json(path: Path | str) -> Any:
    """Read a JSON document, mapping parse errors to :class:`MalformedArtifactOrSummary`.

    Missing files raise ``FileNotFoundError`` unchanged so callers can tell
    "not produced yet" apart from "produced but broken".
    """
    source = Path(path)
    raw = source.read_bytes()
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedArtifactOrSummary(source, f"invalid JSON: {exc}") from exc


__all__ = ["atomic_write_bytes", "atomic_write_json", "dumps_json", "read_json", "write_json_once"]
