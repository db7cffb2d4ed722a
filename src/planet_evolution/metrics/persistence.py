"""Persistent status sink."""

from __future__ import annotations

import json
from pathlib import Path

from planet_evolution.metrics.status import StatusEvent


class StatusSink:
    """Append-only JSONL writer for status events."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def log_status(self, event: StatusEvent) -> None:
        self._append({"type": "status", **event.model_dump(mode="json")})

    def _append(self, payload: dict[str, object]) -> None:
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, ensure_ascii=False) + "\n")


def read_status_log(path: Path) -> list[StatusEvent]:
    events: list[StatusEvent] = []
    if not path.exists():
        return events
    with path.open("r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            record = json.loads(line)
            record.pop("type", None)
            events.append(StatusEvent.model_validate(record))
    return events


__all__ = ["StatusSink", "read_status_log"]
